"""Read-only API over the session index: projects, sessions, tasks, search."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from sessionvault.models import Project, Session, SessionRef
from sessionvault.parsers.sessions import pair_tool_calls
from sessionvault.routers.sync import get_session_parser, load_index
from sessionvault.search import search_sessions

logger = logging.getLogger("sessionvault.api")

projects_router = APIRouter(prefix="/api/projects", tags=["projects"])
sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])
tasks_router = APIRouter(prefix="/api/tasks", tags=["tasks"])
search_router = APIRouter(prefix="/api/search", tags=["search"])


def _session_summary(session: SessionRef) -> dict[str, Any]:
    return {
        "id": session.id,
        "summary": session.summary,
        "messageCount": session.messageCount,
        "model": session.model,
        "gitBranch": session.gitBranch,
        "slug": session.slug,
        "modifiedAt": session.modifiedAt,
        "startedAt": session.startedAt,
        "fileSize": session.fileSize,
        "agentCount": len(session.agents),
        "estimatedCostUsd": session.estimatedCostUsd,
        "isPartial": session.isPartial,
    }


def _project_summary(project: Project) -> dict[str, Any]:
    return {
        "id": project.id,
        "path": project.path,
        "name": project.name,
        "sessionCount": len(project.sessions),
        "agentCount": len(project.agents),
        "taskCount": sum(len(tl.tasks) for tl in project.tasks),
        "lastActiveAt": project.lastActiveAt,
        "messageCount": project.messageCount,
        "sourceIds": project.sourceIds,
    }


async def _parse(request: Request, path: str, session_id: str, project_id: str) -> Session:
    parser = get_session_parser(request)
    try:
        session = await asyncio.to_thread(parser.parse, path, session_id, project_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail=f"Session file for {session_id} is missing")
    pair_tool_calls(session.messages)
    return session


# ── Projects ───────────────────────────────────────────────────────

@projects_router.get("")
async def list_projects(request: Request):
    index = await load_index(request)
    return [_project_summary(p) for p in index.projects]


@projects_router.get("/{project_id}")
async def get_project(request: Request, project_id: str):
    index = await load_index(request)
    project = index.find_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    return {
        **_project_summary(project),
        "sessions": [_session_summary(s) for s in project.sessions],
        "agents": [
            {"agentId": a.agentId, "parentSessionId": a.parentSessionId, "description": a.description}
            for a in project.agents
        ],
        "tasks": project.tasks,
    }


@projects_router.get("/{project_id}/sessions")
async def list_project_sessions(request: Request, project_id: str):
    index = await load_index(request)
    project = index.find_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    return [_session_summary(s) for s in project.sessions]


# ── Sessions ───────────────────────────────────────────────────────

@sessions_router.get("/{session_id}")
async def get_session(request: Request, session_id: str):
    """Full parsed session with tool calls paired to their results."""
    index = await load_index(request)
    for project in index.projects:
        for ref in project.sessions:
            if ref.id != session_id:
                continue
            if ref.isPartial:
                raise HTTPException(status_code=404, detail=f"Session {session_id} has no conversation log")
            session = await _parse(request, ref.filePath, ref.id, ref.projectId)
            return {**session.model_dump(), "projectName": project.name, "projectId": project.id}
    raise HTTPException(status_code=404, detail=f"Session {session_id} not found")


@sessions_router.get("/{session_id}/messages")
async def get_session_messages(
    request: Request,
    session_id: str,
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    index = await load_index(request)
    ref = index.find_session(session_id)
    if not ref or ref.isPartial:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    session = await _parse(request, ref.filePath, ref.id, ref.projectId)
    total = len(session.messages)
    return {
        "messages": session.messages[offset:offset + limit],
        "total": total,
        "offset": offset,
        "limit": limit,
        "hasMore": offset + limit < total,
    }


@sessions_router.get("/agents/{project_id}/{agent_id}")
async def get_agent_session(request: Request, project_id: str, agent_id: str):
    index = await load_index(request)
    project = index.find_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    agent = next((a for a in project.agents if a.agentId == agent_id and a.filePath), None)
    if not agent:
        raise HTTPException(status_code=404, detail=f"Agent {agent_id} not found")
    session = await _parse(request, agent.filePath, agent_id, project.id)
    return {**session.model_dump(), "projectName": project.name, "parentSessionId": agent.parentSessionId}


# ── Tasks ──────────────────────────────────────────────────────────

@tasks_router.get("")
async def list_tasks(request: Request):
    index = await load_index(request)
    items = []
    for project in index.projects:
        for task_list in project.tasks:
            for task in task_list.tasks:
                items.append({
                    **task.model_dump(),
                    "projectId": project.id,
                    "projectName": project.name,
                    "sessionId": task_list.sessionId,
                    "agentId": task_list.agentId,
                })
    return items


@tasks_router.get("/{session_id}")
async def get_session_tasks(request: Request, session_id: str):
    index = await load_index(request)
    for project in index.projects:
        for task_list in project.tasks:
            if task_list.sessionId == session_id:
                return task_list
    return {"sessionId": session_id, "tasks": []}


# ── Search ─────────────────────────────────────────────────────────

@search_router.get("")
async def search(
    request: Request,
    q: str = Query(""),
    project: Optional[str] = None,
    model: Optional[str] = None,
    after: Optional[datetime] = None,
    before: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
):
    if not q:
        return []
    index = await load_index(request)
    parser = get_session_parser(request)
    return await asyncio.to_thread(
        search_sessions, index, parser, q, project, model, after, before, limit
    )
