"""Parse JSONL session logs into Session models."""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from sessionvault import config
from sessionvault.date_utils import parse_timestamp
from sessionvault.models import (
    AgentRef,
    ContentBlock,
    Message,
    Session,
    SessionMetadata,
    ThinkingBlock,
    TokenUsage,
    ToolCall,
)
from sessionvault.observability import record_parser_failure
from sessionvault.pricing import estimate_cost
from sessionvault.records import (
    NON_MESSAGE_TYPES,
    AssistantRecord,
    QueueOperationRecord,
    Record,
    SystemRecord,
    UserRecord,
    parse_line,
)

logger = logging.getLogger("sessionvault.parser")

ERROR_MARKERS = ("Error:", "<tool_use_error>")


def _coerce_blocks(raw_content: Any) -> list[ContentBlock]:
    if isinstance(raw_content, str):
        return [ContentBlock(type="text", text=raw_content)]
    if not isinstance(raw_content, list):
        return []
    blocks: list[ContentBlock] = []
    for item in raw_content:
        if isinstance(item, dict):
            blocks.append(ContentBlock.model_validate(item))
        elif isinstance(item, str):
            blocks.append(ContentBlock(type="text", text=item))
    return blocks


def _message_fields(record: Record, line: str) -> dict[str, Any]:
    return {
        "uuid": record.uuid or "",
        "parentUuid": record.parentUuid or None,
        "type": record.type,
        "timestamp": parse_timestamp(record.timestamp),
        "gitBranch": record.gitBranch,
        "cwd": record.cwd,
        "sessionId": record.sessionId,
        "version": record.version,
        "slug": record.slug,
        "isSidechain": record.isSidechain,
        "isMeta": record.isMeta,
        "agentId": record.agentId,
        "rawLine": line,
    }


def _assistant_message(record: AssistantRecord, line: str) -> Message:
    payload = record.message
    content: list[ContentBlock] = []
    thinking: list[ThinkingBlock] = []
    tool_calls: list[ToolCall] = []
    model = payload.model if payload else None
    token_usage: Optional[TokenUsage] = None
    cost: Optional[float] = None

    if payload is not None:
        for block in _coerce_blocks(payload.content):
            if block.type == "thinking":
                extra = block.model_extra or {}
                thinking.append(
                    ThinkingBlock(
                        thinking=str(extra.get("thinking") or ""),
                        signature=extra.get("signature"),
                    )
                )
                continue
            if block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id or "", name=block.name or "", input=block.input))
            content.append(block)

        if payload.usage is not None:
            token_usage = payload.usage.to_token_usage()
            if model:
                cost = estimate_cost(model, token_usage)

    return Message(
        role="assistant",
        content=content,
        thinking=thinking or None,
        model=model,
        tokenUsage=token_usage,
        costUsd=cost,
        toolCalls=tool_calls or None,
        **_message_fields(record, line),
    )


def _user_message(record: UserRecord, line: str) -> Message:
    content = _coerce_blocks(record.message.content) if record.message else []
    role = "tool" if any(block.type == "tool_result" for block in content) else "user"
    return Message(
        role=role,
        content=content,
        toolUseResult=record.toolUseResult,
        sourceToolAssistantUUID=record.sourceToolAssistantUUID,
        **_message_fields(record, line),
    )


def _system_message(record: Record, line: str) -> Message:
    raw_content = getattr(record, "content", None)
    if raw_content is None and isinstance(record, SystemRecord):
        raw_content = record.subtype
    return Message(
        role="system",
        content=_coerce_blocks(raw_content) if isinstance(raw_content, (str, list)) else [],
        **_message_fields(record, line),
    )


def parse_message(record: Record, line: str) -> Optional[Message]:
    """Classify one record into a Message. Non-message records return None."""
    if isinstance(record, NON_MESSAGE_TYPES):
        return None
    if isinstance(record, AssistantRecord):
        return _assistant_message(record, line)
    if isinstance(record, UserRecord):
        return _user_message(record, line)
    return _system_message(record, line)


def agent_ref_from_enqueue(record: QueueOperationRecord, session_id: str, project_id: str) -> Optional[AgentRef]:
    task = record.enqueued_task()
    if task is None:
        return None
    description = task.get("description")
    return AgentRef(
        agentId=str(task["task_id"]),
        filePath="",
        parentSessionId=session_id,
        projectId=project_id,
        description=description if isinstance(description, str) else None,
    )


def _is_error_result(result: Any, flagged: bool) -> bool:
    if flagged:
        return True
    return isinstance(result, str) and result.startswith(ERROR_MARKERS)


def pair_tool_calls(messages: list[Message]) -> list[Message]:
    """Attach tool_result blocks to the ToolCall that produced them.

    Safe to call repeatedly: each pass recomputes the same attached state.
    """
    results: dict[str, tuple[Any, bool]] = {}
    for msg in messages:
        if msg.role != "tool":
            continue
        for block in msg.content:
            if block.type == "tool_result" and block.tool_use_id:
                results[block.tool_use_id] = (block.content, bool(block.is_error))

    for msg in messages:
        for call in msg.toolCalls or []:
            if call.id not in results:
                continue
            result, flagged = results[call.id]
            call.result = result
            call.isError = _is_error_result(result, flagged)

    return messages


def build_message_tree(messages: list[Message]) -> dict[Optional[str], list[Message]]:
    """Group messages by parent uuid; the ``None`` key holds the roots."""
    known = {msg.uuid for msg in messages if msg.uuid}
    children: dict[Optional[str], list[Message]] = {}
    for msg in messages:
        parent = msg.parentUuid if msg.parentUuid in known else None
        children.setdefault(parent, []).append(msg)
    return children


def parse_session_file(path: Path, session_id: str, project_id: str) -> Session:
    """Parse a whole session log without caching."""
    text = Path(path).read_text(encoding="utf-8", errors="replace")

    messages: list[Message] = []
    agents: list[AgentRef] = []
    usage = TokenUsage()
    total_cost = 0.0
    first_model: Optional[str] = None
    slug = git_branch = cwd = version = None
    started_at = ended_at = None
    skipped = 0

    for line_no, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            record = parse_line(line)
            if isinstance(record, QueueOperationRecord):
                agent = agent_ref_from_enqueue(record, session_id, project_id)
                if agent is not None:
                    agents.append(agent)
                continue
            # Content blocks are only validated here, so a bad block skips its line.
            msg = parse_message(record, line)
        except (ValueError, ValidationError) as e:
            skipped += 1
            record_parser_failure("session")
            logger.warning("Skipping malformed line %d in %s: %s", line_no, session_id, e)
            continue

        if msg is None:
            continue
        messages.append(msg)

        slug = slug or record.slug
        git_branch = git_branch or record.gitBranch
        cwd = cwd or record.cwd
        version = version or record.version

        if msg.timestamp is not None:
            if started_at is None or msg.timestamp < started_at:
                started_at = msg.timestamp
            if ended_at is None or msg.timestamp > ended_at:
                ended_at = msg.timestamp

        if msg.role == "assistant" and msg.tokenUsage is not None:
            usage = usage + msg.tokenUsage
        if msg.model and not first_model:
            first_model = msg.model
        if msg.costUsd:
            total_cost += msg.costUsd

    if total_cost == 0 and first_model:
        total_cost = estimate_cost(first_model, usage)

    if skipped:
        logger.info("Parsed %s with %d malformed line(s) skipped", session_id, skipped)

    duration_ms = None
    if started_at is not None and ended_at is not None:
        duration_ms = int((ended_at - started_at).total_seconds() * 1000)

    return Session(
        id=session_id,
        projectId=project_id,
        messages=messages,
        agents=agents,
        metadata=SessionMetadata(
            slug=slug,
            model=first_model,
            gitBranch=git_branch,
            cwd=cwd,
            version=version,
            startedAt=started_at,
            endedAt=ended_at,
            durationMs=duration_ms,
            totalMessages=len(messages),
            tokenUsage=usage,
            estimatedCostUsd=total_cost,
        ),
    )


class SessionCache:
    """Bounded cache of parsed sessions, evicting the oldest insertion first.

    Concurrent loads of the same key run the loader once; later callers wait
    for and reuse that result.
    """

    def __init__(self, max_size: int = 50):
        self.max_size = max(1, max_size)
        self._entries: OrderedDict[str, Session] = OrderedDict()
        self._lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def get_or_load(self, key: str, loader: Callable[[], Session]) -> Session:
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                return cached
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            with self._lock:
                cached = self._entries.get(key)
                if cached is not None:
                    return cached
            try:
                value = loader()
                with self._lock:
                    self._put(key, value)
                return value
            finally:
                with self._lock:
                    if self._key_locks.get(key) is key_lock:
                        del self._key_locks[key]

    def _put(self, key: str, value: Session) -> None:
        self._entries[key] = value
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted session %s from parse cache", evicted)


class SessionParser:
    """Parses sessions on demand, caching results by session id."""

    def __init__(self, cache_size: int = config.SESSION_CACHE_SIZE):
        self.cache = SessionCache(cache_size)
        self.parse_count = 0

    def parse(self, path: Path | str, session_id: str, project_id: str) -> Session:
        def load() -> Session:
            self.parse_count += 1
            return parse_session_file(Path(path), session_id, project_id)

        return self.cache.get_or_load(session_id, load)
