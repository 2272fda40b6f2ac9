"""Parse per-session task list files (``todos/{sessionId}-agent-{agentId}.json``)."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from sessionvault.models import Task, TaskList

logger = logging.getLogger("sessionvault.tasks")

_AGENT_SEPARATOR = "-agent-"


def _split_task_file_name(file_name: str) -> tuple[str, str | None]:
    stem = file_name[:-5] if file_name.endswith(".json") else file_name
    session_id, sep, agent_id = stem.partition(_AGENT_SEPARATOR)
    return session_id, (agent_id or None) if sep else None


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


def _parse_task(item: dict[str, Any], position: int) -> Task:
    description = item.get("description")
    metadata = item.get("metadata")
    return Task(
        id=str(item.get("id") or position),
        subject=str(item.get("subject") or item.get("content") or item.get("title") or "Untitled"),
        description=str(description) if description else None,
        status=str(item.get("status") or "pending"),
        blocks=_string_list(item.get("blocks")),
        blockedBy=_string_list(item.get("blockedBy")),
        metadata=metadata if isinstance(metadata, dict) else {},
    )


def parse_task_file(path: Path) -> TaskList:
    """Read one task file. Raises ``ValueError``/``OSError`` on unreadable input."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    session_id, agent_id = _split_task_file_name(Path(path).name)

    tasks: list[Task] = []
    if isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                tasks.append(_parse_task(item, len(tasks)))

    return TaskList(sessionId=session_id, agentId=agent_id, tasks=tasks)


def load_task_lists(todos_dir: Path, session_ids: list[str]) -> list[TaskList]:
    """Collect non-empty task lists whose file name embeds one of ``session_ids``."""
    if not session_ids:
        return []
    try:
        files = sorted(p for p in Path(todos_dir).iterdir() if p.suffix == ".json" and p.is_file())
    except OSError:
        return []

    task_lists: list[TaskList] = []
    for path in files:
        if not any(session_id in path.name for session_id in session_ids):
            continue
        try:
            task_list = parse_task_file(path)
        except (OSError, ValueError) as e:
            logger.warning("Skipping unreadable task file %s: %s", path.name, e)
            continue
        if task_list.tasks:
            task_lists.append(task_list)
    return task_lists
