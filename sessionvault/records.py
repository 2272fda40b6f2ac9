"""Typed variants of the JSONL records found in session logs.

Every line of a session log is a JSON object whose ``type`` selects one of
the variants below. Unknown types decode to ``OtherRecord`` so newer log
formats keep flowing through the parser.
"""
from __future__ import annotations

import json
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator

from sessionvault.models import TokenUsage

ENQUEUE_OPERATION = "enqueue"


class UsagePayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0

    @field_validator(
        "input_tokens",
        "output_tokens",
        "cache_read_input_tokens",
        "cache_creation_input_tokens",
        mode="before",
    )
    @classmethod
    def _none_as_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    def to_token_usage(self) -> TokenUsage:
        return TokenUsage(
            inputTokens=self.input_tokens,
            outputTokens=self.output_tokens,
            cacheReadTokens=self.cache_read_input_tokens,
            cacheCreateTokens=self.cache_creation_input_tokens,
        )


class MessagePayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Optional[str] = None
    model: Optional[str] = None
    content: Any = None
    usage: Optional[UsagePayload] = None


class _RecordBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    uuid: Optional[str] = None
    parentUuid: Optional[str] = None
    timestamp: Any = None  # ISO string, occasionally epoch millis
    sessionId: Optional[str] = None
    cwd: Optional[str] = None
    gitBranch: Optional[str] = None
    version: Optional[str] = None
    slug: Optional[str] = None
    isMeta: Optional[bool] = None
    isSidechain: Optional[bool] = None
    agentId: Optional[str] = None


class UserRecord(_RecordBase):
    type: Literal["user"]
    message: Optional[MessagePayload] = None
    toolUseResult: Any = None
    sourceToolAssistantUUID: Optional[str] = None


class AssistantRecord(_RecordBase):
    type: Literal["assistant"]
    message: Optional[MessagePayload] = None


class QueueOperationRecord(_RecordBase):
    type: Literal["queue-operation"]
    operation: str = ""
    content: Any = None

    @property
    def is_enqueue(self) -> bool:
        return self.operation == ENQUEUE_OPERATION

    def enqueued_task(self) -> Optional[dict[str, Any]]:
        """Return the enqueued sub-agent payload, decoding string content."""
        if not self.is_enqueue:
            return None
        payload = self.content
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError:
                return None
        if not isinstance(payload, dict) or not payload.get("task_id"):
            return None
        return payload


class ProgressRecord(_RecordBase):
    type: Literal["progress"]


class FileHistorySnapshotRecord(_RecordBase):
    type: Literal["file-history-snapshot"]


class SystemRecord(_RecordBase):
    type: Literal["system"]
    subtype: Optional[str] = None
    content: Any = None


class OtherRecord(_RecordBase):
    pass


Record = Union[
    UserRecord,
    AssistantRecord,
    QueueOperationRecord,
    ProgressRecord,
    FileHistorySnapshotRecord,
    SystemRecord,
    OtherRecord,
]

_RECORD_TYPES: dict[str, type[_RecordBase]] = {
    "user": UserRecord,
    "assistant": AssistantRecord,
    "queue-operation": QueueOperationRecord,
    "progress": ProgressRecord,
    "file-history-snapshot": FileHistorySnapshotRecord,
    "system": SystemRecord,
}

# Records that never become messages.
NON_MESSAGE_TYPES = (QueueOperationRecord, ProgressRecord, FileHistorySnapshotRecord)


def decode_record(raw: dict[str, Any]) -> Record:
    """Validate a decoded JSON object into its record variant.

    Raises ``pydantic.ValidationError`` when the object does not fit its variant.
    """
    record_type = raw.get("type")
    if not isinstance(record_type, str) or not record_type:
        raw = {**raw, "type": "unknown"}
        record_type = "unknown"
    model = _RECORD_TYPES.get(record_type, OtherRecord)
    return model.model_validate(raw)


def parse_line(line: str) -> Record:
    """Decode one JSONL line. Raises ``ValueError`` for malformed input."""
    raw = json.loads(line)
    if not isinstance(raw, dict):
        raise ValueError("record is not a JSON object")
    return decode_record(raw)
