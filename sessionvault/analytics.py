"""Aggregate usage analytics from the session index.

Cost and token figures are derived from indexed sessions only. The
assistant's own ``stats-cache.json`` often covers a different set of
sessions, so only its hour counts, first-session date and longest session
are passed through.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import timezone

from sessionvault.models import (
    Analytics,
    CostByDay,
    DailyActivity,
    HeatmapCell,
    ModelUsageEntry,
    SessionIndex,
    SessionRef,
    TokensByDay,
    TopProject,
)


def session_day(session: SessionRef) -> str:
    moment = session.startedAt or session.modifiedAt
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date().isoformat()


def compute_analytics(index: SessionIndex) -> Analytics:
    model_usage: dict[str, ModelUsageEntry] = {}
    cost_by_model: dict[str, float] = defaultdict(float)
    cost_by_project: dict[str, float] = {}
    daily: dict[str, dict[str, float]] = defaultdict(lambda: {"sessions": 0, "messages": 0, "cost": 0.0})
    tokens_by_day: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    heatmap: dict[tuple[int, int], int] = defaultdict(int)
    top_projects: list[TopProject] = []

    for project in index.projects:
        project_cost = 0.0
        for session in project.sessions:
            cost = session.estimatedCostUsd or 0.0
            project_cost += cost

            if session.tokenUsage and session.model:
                usage = model_usage.setdefault(session.model, ModelUsageEntry())
                usage.inputTokens += session.tokenUsage.inputTokens
                usage.outputTokens += session.tokenUsage.outputTokens
                usage.cacheReadInputTokens += session.tokenUsage.cacheReadTokens
                usage.cacheCreationInputTokens += session.tokenUsage.cacheCreateTokens
                cost_by_model[session.model] += cost

            day = session_day(session)
            daily[day]["sessions"] += 1
            daily[day]["messages"] += session.messageCount or 0
            daily[day]["cost"] += cost
            if session.tokenUsage:
                tokens_by_day[day][0] += session.tokenUsage.inputTokens
                tokens_by_day[day][1] += session.tokenUsage.outputTokens

            if session.startedAt is not None:
                started = session.startedAt
                if started.tzinfo is not None:
                    started = started.astimezone(timezone.utc)
                heatmap[(started.weekday(), started.hour)] += 1

        cost_by_project[project.id] = project_cost
        top_projects.append(
            TopProject(
                id=project.id,
                name=project.name,
                sessions=len(project.sessions),
                messages=project.messageCount,
                cost=project_cost,
            )
        )

    for model, cost in cost_by_model.items():
        model_usage[model].costUSD = cost

    days = sorted(daily)
    stats = index.globalStats
    return Analytics(
        totalSessions=sum(len(p.sessions) for p in index.projects),
        totalMessages=sum(p.messageCount for p in index.projects),
        firstSessionDate=(stats.firstSessionDate if stats else "") or (days[0] if days else ""),
        dailyActivity=[
            DailyActivity(
                date=day,
                messageCount=int(daily[day]["messages"]),
                sessionCount=int(daily[day]["sessions"]),
            )
            for day in days
        ],
        modelUsage=model_usage,
        hourCounts=dict(stats.hourCounts) if stats else {},
        longestSession=stats.longestSession if stats else None,
        costByDay=[CostByDay(date=day, costUsd=daily[day]["cost"]) for day in days],
        costByModel=dict(cost_by_model),
        costByProject=cost_by_project,
        tokensByDay=[
            TokensByDay(date=day, input=tokens_by_day[day][0], output=tokens_by_day[day][1])
            for day in sorted(tokens_by_day)
        ],
        topProjects=sorted(top_projects, key=lambda p: p.sessions, reverse=True),
        activityHeatmap=[
            HeatmapCell(day=day, hour=hour, count=count)
            for (day, hour), count in sorted(heatmap.items())
        ],
    )
