"""Directory → index scanner.

Walks the mirrored working directory and builds the in-memory SessionIndex
(projects → sessions → sub-agents → task lists). Sessions are only read
lightly here; full parsing happens on demand in ``parsers.sessions``.
"""
from __future__ import annotations

import logging
import re
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from sessionvault.date_utils import parse_timestamp, utc_now
from sessionvault.models import AgentRef, Project, SessionIndex, SessionRef, TokenUsage
from sessionvault.observability import record_index_build
from sessionvault.parsers.stats import read_prompt_history, read_stats_cache
from sessionvault.parsers.tasks import load_task_lists
from sessionvault.paths import working_paths
from sessionvault.pricing import estimate_cost
from sessionvault.project_identity import (
    decode_project_path,
    group_project_ids,
    looks_like_session_id,
    project_display_name,
)
from sessionvault.records import AssistantRecord, QueueOperationRecord, UserRecord, parse_line

logger = logging.getLogger("sessionvault.scanner")

METADATA_LINE_WINDOW = 20
SUMMARY_MAX_CHARS = 200
PREVIEW_MAX_CHARS = 200
SESSION_LOG_SUFFIX = ".jsonl"
AGENT_PREFIX = "agent-"
SUBAGENTS_DIR = "subagents"
TOOL_RESULTS_DIR = "tool-results"

_COMMAND_MARKUP_PATTERN = re.compile(
    r"<(command-message|command-name|command-args)>[\s\S]*?</\1>",
    re.IGNORECASE,
)
_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


def strip_command_markup(text: str) -> str:
    return _COMMAND_MARKUP_PATTERN.sub("", text).strip()


def _first_user_text(record: UserRecord) -> Optional[str]:
    if record.message is None:
        return None
    content = record.message.content
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                return str(block["text"])
    return None


def _is_session_log(name: str) -> bool:
    return name.endswith(SESSION_LOG_SUFFIX) and not name.startswith(AGENT_PREFIX)


def _agent_id_from_file(name: str) -> str:
    return name[len(AGENT_PREFIX):-len(SESSION_LOG_SUFFIX)]


def scan_session_ref(
    session_id: str,
    project_id: str,
    path: Path,
) -> tuple[SessionRef, dict[str, str]]:
    """Build a SessionRef from one log plus the sub-agent descriptions it enqueued.

    Metadata comes from the first lines only; token usage and the model are
    still picked up from every line.
    """
    stat = path.stat()
    ref = SessionRef(
        id=session_id,
        projectId=project_id,
        filePath=str(path),
        fileSize=stat.st_size,
        modifiedAt=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )
    descriptions: dict[str, str] = {}

    lines = [line for line in path.read_text(encoding="utf-8", errors="replace").splitlines() if line.strip()]
    ref.messageCount = len(lines)

    usage = TokenUsage()
    saw_usage = False
    summary: Optional[str] = None

    for idx, line in enumerate(lines):
        try:
            record = parse_line(line)
        except (ValueError, ValidationError):
            continue

        if ref.startedAt is None and record.timestamp is not None:
            ref.startedAt = parse_timestamp(record.timestamp)

        if isinstance(record, QueueOperationRecord):
            task = record.enqueued_task()
            if task and isinstance(task.get("description"), str):
                descriptions[str(task["task_id"])] = task["description"]
            continue

        in_window = idx < METADATA_LINE_WINDOW

        if in_window and isinstance(record, UserRecord) and record.message is not None:
            ref.slug = ref.slug or record.slug
            ref.version = ref.version or record.version
            ref.gitBranch = ref.gitBranch or record.gitBranch
            if summary is None and not record.isMeta:
                text = _first_user_text(record)
                cleaned = strip_command_markup(text) if text else ""
                if cleaned:
                    summary = cleaned[:SUMMARY_MAX_CHARS]

        if isinstance(record, AssistantRecord) and record.message is not None:
            if not ref.model and record.message.model:
                ref.model = record.message.model
            if record.message.usage is not None:
                usage = usage + record.message.usage.to_token_usage()
                saw_usage = True

    ref.summary = summary
    if saw_usage:
        ref.tokenUsage = usage
        ref.estimatedCostUsd = estimate_cost(ref.model, usage)
    return ref, descriptions


def _discover_subagents(
    session_dir: Path,
    session_id: str,
    project_id: str,
    descriptions: dict[str, str] | None = None,
) -> list[AgentRef]:
    subagents_dir = session_dir / SUBAGENTS_DIR
    try:
        names = sorted(p.name for p in subagents_dir.iterdir() if p.is_file())
    except OSError:
        return []

    agents: list[AgentRef] = []
    for name in names:
        if not (name.startswith(AGENT_PREFIX) and name.endswith(SESSION_LOG_SUFFIX)):
            continue
        agent_id = _agent_id_from_file(name)
        agents.append(
            AgentRef(
                agentId=agent_id,
                filePath=str(subagents_dir / name),
                parentSessionId=session_id,
                projectId=project_id,
                description=(descriptions or {}).get(agent_id),
            )
        )
    return agents


def _read_preview(path: Path) -> str:
    with path.open("r", encoding="utf-8", errors="replace") as fh:
        return " ".join(fh.read(PREVIEW_MAX_CHARS * 4).split())[:PREVIEW_MAX_CHARS]


def scan_orphan_session(session_dir: Path, project_id: str) -> Optional[SessionRef]:
    """Synthesize a partial SessionRef for a session directory with no primary log."""
    session_id = session_dir.name
    tool_results_dir = session_dir / TOOL_RESULTS_DIR
    try:
        result_files = sorted(p for p in tool_results_dir.iterdir() if p.is_file())
    except OSError:
        result_files = []

    agents = _discover_subagents(session_dir, session_id, project_id)
    if not result_files and not agents:
        return None

    preview = ""
    if result_files:
        try:
            preview = _read_preview(result_files[0])
        except OSError as e:
            logger.warning("Failed to read tool result preview in %s: %s", session_dir, e)
    if not preview:
        preview = f"Partial session ({len(result_files)} tool results, {len(agents)} sub-agents)"

    artifact_paths = result_files + [Path(agent.filePath) for agent in agents]
    modified = max([_mtime(p) for p in artifact_paths] + [_mtime(session_dir)])

    return SessionRef(
        id=session_id,
        projectId=project_id,
        filePath=str(session_dir),
        fileSize=sum(p.stat().st_size for p in artifact_paths),
        modifiedAt=modified,
        summary=preview,
        messageCount=len(result_files),
        agents=agents,
        isPartial=True,
    )


def scan_project_dir(raw_id: str, project_path: Path, project_id: str | None = None) -> Project:
    """Scan one physical project directory. Task lists are attached later."""
    project_id = project_id or raw_id
    entries = sorted(project_path.iterdir(), key=lambda p: p.name)
    sessions: list[SessionRef] = []
    agents: list[AgentRef] = []
    last_active = _EPOCH
    message_count = 0
    seen_ids: set[str] = set()

    for entry in entries:
        if not (entry.is_file() and _is_session_log(entry.name)):
            continue
        session_id = entry.name[: -len(SESSION_LOG_SUFFIX)]
        try:
            ref, descriptions = scan_session_ref(session_id, project_id, entry)
            session_agents = _discover_subagents(project_path / session_id, session_id, project_id, descriptions)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to scan session %s in %s: %s", entry.name, raw_id, e)
            continue

        ref.agents.extend(session_agents)
        agents.extend(session_agents)
        sessions.append(ref)
        seen_ids.add(session_id)
        last_active = max(last_active, ref.modifiedAt)
        message_count += ref.messageCount or 0

    for entry in entries:
        if entry.name in seen_ids or not entry.is_dir() or not looks_like_session_id(entry.name):
            continue
        try:
            orphan = scan_orphan_session(entry, project_id)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to scan partial session %s in %s: %s", entry.name, raw_id, e)
            continue
        if orphan is None:
            continue
        sessions.append(orphan)
        agents.extend(orphan.agents)
        last_active = max(last_active, orphan.modifiedAt)
        message_count += orphan.messageCount or 0

    sessions.sort(key=lambda s: s.modifiedAt, reverse=True)

    return Project(
        id=project_id,
        path=decode_project_path(project_id),
        name=project_display_name(project_id),
        sessions=sessions,
        agents=agents,
        lastActiveAt=last_active,
        messageCount=message_count,
        sourceIds=[raw_id],
    )


def merge_projects(project_id: str, parts: list[Project]) -> Project:
    """Merge physical scans of one logical project, deduplicating sessions by id.

    A session with a log in any directory wins over a partial ref for the same id.
    """
    by_id: dict[str, SessionRef] = {}
    for part in parts:
        for session in part.sessions:
            kept = by_id.get(session.id)
            if kept is None or (kept.isPartial and not session.isPartial):
                by_id[session.id] = session
    sessions = list(by_id.values())
    sessions.sort(key=lambda s: s.modifiedAt, reverse=True)

    agents: list[AgentRef] = []
    seen_agents: set[tuple[str, str]] = set()
    for part in parts:
        for agent in part.agents:
            key = (agent.parentSessionId, agent.agentId)
            if key not in seen_agents:
                seen_agents.add(key)
                agents.append(agent)

    return Project(
        id=project_id,
        path=decode_project_path(project_id),
        name=project_display_name(project_id),
        sessions=sessions,
        agents=agents,
        tasks=[task for part in parts for task in part.tasks],
        lastActiveAt=max(part.lastActiveAt for part in parts),
        messageCount=sum(session.messageCount or 0 for session in sessions),
        sourceIds=[raw for part in parts for raw in part.sourceIds],
    )


def scan_projects(projects_dir: Path, todos_dir: Path) -> list[Project]:
    try:
        raw_ids = sorted(p.name for p in projects_dir.iterdir() if p.is_dir())
    except OSError:
        return []

    projects: list[Project] = []
    for project_id, group in group_project_ids(raw_ids).items():
        parts: list[Project] = []
        for raw_id in group:
            try:
                parts.append(scan_project_dir(raw_id, projects_dir / raw_id, project_id))
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to scan project %s: %s", raw_id, e)
        if not parts:
            continue

        project = parts[0] if len(parts) == 1 else merge_projects(project_id, parts)
        if len(parts) > 1:
            logger.info("Merged %d directories into project %s: %s", len(parts), project_id, group)
        project.tasks = load_task_lists(todos_dir, [s.id for s in project.sessions])
        projects.append(project)

    projects.sort(key=lambda p: p.lastActiveAt, reverse=True)
    return projects


def build_index(data_dir: Path) -> SessionIndex:
    """Rebuild the whole index from the working directory."""
    paths = working_paths(data_dir)
    t0 = time.monotonic()
    projects = scan_projects(paths.projects_dir, paths.todos_dir)
    index = SessionIndex(
        projects=projects,
        globalStats=read_stats_cache(paths.stats_file),
        promptHistory=read_prompt_history(paths.history_file),
        lastIndexedAt=utc_now(),
    )
    elapsed = (time.monotonic() - t0) * 1000
    record_index_build(elapsed)
    logger.info(
        "Indexed %d projects, %d sessions in %dms",
        len(projects),
        sum(len(p.sessions) for p in projects),
        int(elapsed),
    )
    return index


class IndexCache:
    """Holds the last built index; rebuilt lazily after ``invalidate()``."""

    def __init__(self, data_dir: Path, builder: Callable[[Path], SessionIndex] = build_index):
        self.data_dir = Path(data_dir)
        self._builder = builder
        self._index: Optional[SessionIndex] = None
        self._generation = 0
        self._build_lock = threading.Lock()

    @property
    def is_built(self) -> bool:
        return self._index is not None

    def get_index(self) -> SessionIndex:
        index = self._index
        if index is not None:
            return index
        with self._build_lock:
            index = self._index
            if index is not None:
                return index
            return self._rebuild_locked()

    def reindex(self) -> SessionIndex:
        with self._build_lock:
            return self._rebuild_locked()

    def invalidate(self) -> None:
        self._generation += 1
        self._index = None

    def _rebuild_locked(self) -> SessionIndex:
        generation = self._generation
        index = self._builder(self.data_dir)
        # An invalidate() during the build means the tree changed underneath it.
        if generation == self._generation:
            self._index = index
        return index
