"""Analytics API."""
from __future__ import annotations

from fastapi import APIRouter, Request

from sessionvault.analytics import compute_analytics
from sessionvault.routers.sync import load_index

analytics_router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@analytics_router.get("")
async def get_analytics(request: Request):
    index = await load_index(request)
    return compute_analytics(index)


@analytics_router.get("/cost")
async def get_cost(request: Request):
    analytics = compute_analytics(await load_index(request))
    return {"costByDay": analytics.costByDay, "costByModel": analytics.costByModel}


@analytics_router.get("/heatmap")
async def get_heatmap(request: Request):
    analytics = compute_analytics(await load_index(request))
    return analytics.activityHeatmap
