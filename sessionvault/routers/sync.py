"""Sync, index status and settings API."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from sessionvault import __version__, config
from sessionvault.models import SessionIndex

logger = logging.getLogger("sessionvault.api")

sync_router = APIRouter(prefix="/api/sync", tags=["sync"])
system_router = APIRouter(prefix="/api", tags=["system"])
settings_router = APIRouter(prefix="/api/settings", tags=["settings"])


class IntervalRequest(BaseModel):
    intervalSeconds: int = Field(..., ge=config.MIN_SYNC_INTERVAL_SECONDS)


def _get_state(request: Request, name: str, label: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{label} not initialized")
    return value


def get_sync_engine(request: Request):
    return _get_state(request, "sync_engine", "Sync engine")


def get_index_cache(request: Request):
    return _get_state(request, "index_cache", "Index cache")


def get_scheduler(request: Request):
    return _get_state(request, "sync_scheduler", "Sync scheduler")


def get_session_parser(request: Request):
    return _get_state(request, "session_parser", "Session parser")


async def load_index(request: Request) -> SessionIndex:
    return await asyncio.to_thread(get_index_cache(request).get_index)


def index_counts(index: SessionIndex) -> dict[str, Any]:
    return {
        "lastIndexedAt": index.lastIndexedAt,
        "projectCount": len(index.projects),
        "sessionCount": sum(len(p.sessions) for p in index.projects),
    }


@sync_router.get("/status")
async def get_sync_status(request: Request):
    return get_sync_engine(request).get_status()


@sync_router.post("")
async def trigger_sync(request: Request):
    """Run a sync cycle now, then rebuild the index."""
    engine = get_sync_engine(request)
    cache = get_index_cache(request)
    status = await engine.run_sync()
    index = await asyncio.to_thread(cache.reindex)
    return {"sync": status, "index": index_counts(index)}


@sync_router.put("/interval")
async def set_sync_interval(request: Request, req: IntervalRequest):
    scheduler = get_scheduler(request)
    await scheduler.restart(req.intervalSeconds)
    logger.info("Sync interval changed to %ds", req.intervalSeconds)
    return {"intervalSeconds": scheduler.interval_seconds, "running": scheduler.is_running}


@system_router.get("/status")
async def get_status(request: Request):
    """Index health and counts."""
    index = await load_index(request)
    runtime = getattr(request.app.state, "runtime_config", None)
    return {
        "status": "ok",
        "version": __version__,
        "sourceDirs": [str(p) for p in runtime.sourceDirs] if runtime else [],
        "dataDir": str(runtime.dataDir) if runtime else "",
        **index_counts(index),
        "agentCount": sum(len(p.agents) for p in index.projects),
        "messageCount": sum(p.messageCount for p in index.projects),
        "hasStats": index.globalStats is not None,
        "promptHistoryCount": len(index.promptHistory),
    }


@system_router.post("/reindex")
async def reindex(request: Request):
    index = await asyncio.to_thread(get_index_cache(request).reindex)
    return {
        "status": "reindexed",
        "lastIndexedAt": index.lastIndexedAt,
        "projectCount": len(index.projects),
    }


@settings_router.get("")
async def get_settings(request: Request):
    path = getattr(request.app.state, "settings_path", None)
    return config.read_settings(path)


@settings_router.put("")
async def update_settings(request: Request, settings: config.AppSettings):
    """Validate and persist settings. Source and data dir changes apply on restart."""
    validation = await asyncio.to_thread(config.validate_settings, settings)
    if not validation.valid:
        raise HTTPException(status_code=400, detail=validation.model_dump())

    path = getattr(request.app.state, "settings_path", None)
    config.write_settings(settings, path)
    scheduler = getattr(request.app.state, "sync_scheduler", None)
    if scheduler is not None and settings.syncIntervalSeconds:
        await scheduler.restart(settings.syncIntervalSeconds)
    return validation
