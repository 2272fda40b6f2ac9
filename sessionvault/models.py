"""Pydantic models matching the dashboard's TypeScript types."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Token accounting ───────────────────────────────────────────────

class TokenUsage(BaseModel):
    inputTokens: int = 0
    outputTokens: int = 0
    cacheReadTokens: int = 0
    cacheCreateTokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            inputTokens=self.inputTokens + other.inputTokens,
            outputTokens=self.outputTokens + other.outputTokens,
            cacheReadTokens=self.cacheReadTokens + other.cacheReadTokens,
            cacheCreateTokens=self.cacheCreateTokens + other.cacheCreateTokens,
        )

    @property
    def total(self) -> int:
        return self.inputTokens + self.outputTokens + self.cacheReadTokens + self.cacheCreateTokens


# ── Parsed session models ──────────────────────────────────────────

class ContentBlock(BaseModel):
    """One block of message content. Unknown block keys are preserved."""

    model_config = ConfigDict(extra="allow")

    type: str = "text"
    text: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    input: Any = None
    content: Any = None
    tool_use_id: Optional[str] = None
    is_error: Optional[bool] = None


class ThinkingBlock(BaseModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: Optional[str] = None


class ToolCall(BaseModel):
    id: str
    name: str = ""
    input: Any = None
    result: Any = None
    isError: bool = False


class AgentRef(BaseModel):
    agentId: str
    filePath: str = ""
    parentSessionId: str
    projectId: str
    description: Optional[str] = None


class Message(BaseModel):
    uuid: str = ""
    parentUuid: Optional[str] = None  # foreign key, see build_message_tree
    type: str
    role: str  # "user" | "assistant" | "tool" | "system"
    content: list[ContentBlock] = Field(default_factory=list)
    thinking: Optional[list[ThinkingBlock]] = None
    timestamp: Optional[datetime] = None
    model: Optional[str] = None
    tokenUsage: Optional[TokenUsage] = None
    costUsd: Optional[float] = None
    toolCalls: Optional[list[ToolCall]] = None
    gitBranch: Optional[str] = None
    cwd: Optional[str] = None
    sessionId: Optional[str] = None
    version: Optional[str] = None
    slug: Optional[str] = None
    isSidechain: Optional[bool] = None
    isMeta: Optional[bool] = None
    rawLine: str = ""
    toolUseResult: Any = None
    sourceToolAssistantUUID: Optional[str] = None
    agentId: Optional[str] = None


class SessionMetadata(BaseModel):
    slug: Optional[str] = None
    model: Optional[str] = None
    gitBranch: Optional[str] = None
    cwd: Optional[str] = None
    version: Optional[str] = None
    startedAt: Optional[datetime] = None
    endedAt: Optional[datetime] = None
    durationMs: Optional[int] = None
    totalMessages: int = 0
    tokenUsage: TokenUsage = Field(default_factory=TokenUsage)
    estimatedCostUsd: float = 0.0


class Session(BaseModel):
    id: str
    projectId: str
    messages: list[Message] = Field(default_factory=list)
    agents: list[AgentRef] = Field(default_factory=list)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)


# ── Task-related models ────────────────────────────────────────────

class Task(BaseModel):
    id: str
    subject: str = "Untitled"
    description: Optional[str] = None
    status: str = "pending"
    blocks: list[str] = Field(default_factory=list)
    blockedBy: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskList(BaseModel):
    sessionId: str
    agentId: Optional[str] = None
    tasks: list[Task] = Field(default_factory=list)


# ── Index models ───────────────────────────────────────────────────

class SessionRef(BaseModel):
    id: str
    projectId: str
    filePath: str
    fileSize: int = 0
    modifiedAt: datetime
    summary: Optional[str] = None
    messageCount: Optional[int] = None
    model: Optional[str] = None
    gitBranch: Optional[str] = None
    slug: Optional[str] = None
    version: Optional[str] = None
    startedAt: Optional[datetime] = None
    agents: list[AgentRef] = Field(default_factory=list)
    tokenUsage: Optional[TokenUsage] = None
    estimatedCostUsd: Optional[float] = None
    isPartial: bool = False


class Project(BaseModel):
    id: str
    path: str
    name: str
    sessions: list[SessionRef] = Field(default_factory=list)
    agents: list[AgentRef] = Field(default_factory=list)
    tasks: list[TaskList] = Field(default_factory=list)
    lastActiveAt: datetime
    messageCount: int = 0
    sourceIds: list[str] = Field(default_factory=list)


class LongestSession(BaseModel):
    model_config = ConfigDict(extra="allow")

    sessionId: str = ""
    duration: int = 0
    messageCount: int = 0
    timestamp: str = ""


class DailyActivity(BaseModel):
    date: str
    messageCount: int = 0
    sessionCount: int = 0
    toolCallCount: int = 0


class DailyModelTokens(BaseModel):
    date: str
    tokensByModel: dict[str, int] = Field(default_factory=dict)


class ModelUsageEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    inputTokens: int = 0
    outputTokens: int = 0
    cacheReadInputTokens: int = 0
    cacheCreationInputTokens: int = 0
    webSearchRequests: int = 0
    costUSD: float = 0.0
    contextWindow: int = 0
    maxOutputTokens: int = 0


class GlobalStats(BaseModel):
    """Snapshot of the assistant's own ``stats-cache.json``."""

    model_config = ConfigDict(extra="allow")

    version: int = 0
    lastComputedDate: str = ""
    dailyActivity: list[DailyActivity] = Field(default_factory=list)
    dailyModelTokens: list[DailyModelTokens] = Field(default_factory=list)
    modelUsage: dict[str, ModelUsageEntry] = Field(default_factory=dict)
    totalSessions: int = 0
    totalMessages: int = 0
    longestSession: Optional[LongestSession] = None
    firstSessionDate: str = ""
    hourCounts: dict[str, int] = Field(default_factory=dict)


class PromptEntry(BaseModel):
    display: str = ""
    pastedContents: dict[str, Any] = Field(default_factory=dict)
    timestamp: int = 0
    project: str = ""
    sessionId: str = ""


class SessionIndex(BaseModel):
    projects: list[Project] = Field(default_factory=list)
    globalStats: Optional[GlobalStats] = None
    promptHistory: list[PromptEntry] = Field(default_factory=list)
    lastIndexedAt: datetime

    def find_project(self, project_id: str) -> Optional[Project]:
        for project in self.projects:
            if project.id == project_id or project_id in project.sourceIds:
                return project
        return None

    def find_session(self, session_id: str) -> Optional[SessionRef]:
        for project in self.projects:
            for session in project.sessions:
                if session.id == session_id:
                    return session
        return None

    def find_agent(self, agent_id: str) -> Optional[AgentRef]:
        for project in self.projects:
            for agent in project.agents:
                if agent.agentId == agent_id:
                    return agent
        return None


# ── Sync models ────────────────────────────────────────────────────

class SyncedFile(BaseModel):
    relativePath: str
    sourceIndex: int = 0
    sourceMtimeMs: float
    sourceSizeBytes: int
    syncedAt: str


class SyncError(BaseModel):
    timestamp: str
    relativePath: str
    sourceIndex: Optional[int] = None
    error: str


class SyncState(BaseModel):
    version: int
    lastSyncAt: str = ""
    lastSyncDurationMs: int = 0
    syncCount: int = 0
    sourceDirs: list[str] = Field(default_factory=list)
    fileInventory: dict[str, SyncedFile] = Field(default_factory=dict)
    errors: list[SyncError] = Field(default_factory=list)


class SyncStatus(BaseModel):
    lastSyncAt: Optional[str] = None
    lastSyncDurationMs: int = 0
    syncCount: int = 0
    sourceDirs: list[str] = Field(default_factory=list)
    totalFiles: int = 0
    totalSizeBytes: int = 0
    errors: list[SyncError] = Field(default_factory=list)
    isSyncing: bool = False


# ── Analytics + search models ──────────────────────────────────────

class CostByDay(BaseModel):
    date: str
    costUsd: float = 0.0


class TokensByDay(BaseModel):
    date: str
    input: int = 0
    output: int = 0


class TopProject(BaseModel):
    id: str
    name: str
    sessions: int = 0
    messages: int = 0
    cost: float = 0.0


class HeatmapCell(BaseModel):
    day: int  # 0 = Monday
    hour: int
    count: int = 0


class Analytics(BaseModel):
    totalSessions: int = 0
    totalMessages: int = 0
    firstSessionDate: str = ""
    dailyActivity: list[DailyActivity] = Field(default_factory=list)
    modelUsage: dict[str, ModelUsageEntry] = Field(default_factory=dict)
    hourCounts: dict[str, int] = Field(default_factory=dict)
    longestSession: Optional[LongestSession] = None
    costByDay: list[CostByDay] = Field(default_factory=list)
    costByModel: dict[str, float] = Field(default_factory=dict)
    costByProject: dict[str, float] = Field(default_factory=dict)
    tokensByDay: list[TokensByDay] = Field(default_factory=list)
    topProjects: list[TopProject] = Field(default_factory=list)
    activityHeatmap: list[HeatmapCell] = Field(default_factory=list)


class SearchResult(BaseModel):
    sessionId: str
    projectId: str
    projectName: str
    messageUuid: str
    type: str
    snippet: str
    timestamp: Optional[datetime] = None
    model: Optional[str] = None
