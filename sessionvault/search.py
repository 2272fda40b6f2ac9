"""Full-text search over parsed session content."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sessionvault.models import Message, Project, SearchResult, SessionIndex, SessionRef
from sessionvault.parsers.sessions import SessionParser

logger = logging.getLogger("sessionvault.search")

SNIPPET_CONTEXT_CHARS = 60


def make_snippet(text: str, query: str) -> Optional[str]:
    """Return ``query`` in context, or None when absent. Case-insensitive."""
    idx = text.lower().find(query.lower())
    if idx < 0:
        return None
    start = max(0, idx - SNIPPET_CONTEXT_CHARS)
    end = min(len(text), idx + len(query) + SNIPPET_CONTEXT_CHARS)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(text) else ""
    return f"{prefix}{text[start:end]}{suffix}"


def _as_comparable(value: datetime, reference: datetime) -> datetime:
    # Naive filter bounds are taken to be in the index's timezone.
    if value.tzinfo is None and reference.tzinfo is not None:
        return value.replace(tzinfo=reference.tzinfo)
    if value.tzinfo is not None and reference.tzinfo is None:
        return value.replace(tzinfo=None)
    return value


def _session_matches(
    session: SessionRef,
    model: Optional[str],
    after: Optional[datetime],
    before: Optional[datetime],
) -> bool:
    if model and session.model != model:
        return False
    if after and session.modifiedAt < _as_comparable(after, session.modifiedAt):
        return False
    if before and session.modifiedAt > _as_comparable(before, session.modifiedAt):
        return False
    return True


def _message_hits(message: Message, query: str) -> list[tuple[str, str]]:
    """At most one text hit and one thinking hit per message."""
    hits: list[tuple[str, str]] = []
    for block in message.content:
        if block.text:
            snippet = make_snippet(block.text, query)
            if snippet is not None:
                hits.append((message.type, snippet))
                break
    for block in message.thinking or []:
        snippet = make_snippet(block.thinking, query)
        if snippet is not None:
            hits.append(("thinking", snippet))
            break
    return hits


def search_sessions(
    index: SessionIndex,
    parser: SessionParser,
    query: str,
    project: Optional[str] = None,
    model: Optional[str] = None,
    after: Optional[datetime] = None,
    before: Optional[datetime] = None,
    limit: int = 50,
) -> list[SearchResult]:
    if not query or limit <= 0:
        return []

    results: list[SearchResult] = []
    for proj in index.projects:
        if project and project not in (proj.id, proj.name) and project not in proj.sourceIds:
            continue
        for session_ref in proj.sessions:
            if not _session_matches(session_ref, model, after, before):
                continue
            if _search_session(proj, session_ref, parser, query, limit, results):
                return results
    return results


def _search_session(
    project: Project,
    session_ref: SessionRef,
    parser: SessionParser,
    query: str,
    limit: int,
    results: list[SearchResult],
) -> bool:
    """Append hits for one session; True once ``limit`` is reached."""
    try:
        session = parser.parse(session_ref.filePath, session_ref.id, session_ref.projectId)
    except OSError as e:
        logger.warning("Skipping unreadable session %s during search: %s", session_ref.id, e)
        return False

    for message in session.messages:
        for hit_type, snippet in _message_hits(message, query):
            results.append(
                SearchResult(
                    sessionId=session_ref.id,
                    projectId=project.id,
                    projectName=project.name,
                    messageUuid=message.uuid,
                    type=hit_type,
                    snippet=snippet,
                    timestamp=message.timestamp,
                    model=message.model,
                )
            )
            if len(results) >= limit:
                return True
    return False
