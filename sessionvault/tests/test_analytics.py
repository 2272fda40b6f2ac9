import unittest
from datetime import datetime, timezone

from sessionvault.analytics import compute_analytics
from sessionvault.models import GlobalStats, Project, SessionIndex, SessionRef, TokenUsage


def _session(session_id: str, project_id: str, started: datetime | None, *, model=None, usage=None, cost=None, messages=0):
    return SessionRef(
        id=session_id,
        projectId=project_id,
        filePath=f"/tmp/{session_id}.jsonl",
        modifiedAt=datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc),
        startedAt=started,
        model=model,
        tokenUsage=usage,
        estimatedCostUsd=cost,
        messageCount=messages,
    )


class AnalyticsTests(unittest.TestCase):
    def _index(self) -> SessionIndex:
        monday_9 = datetime(2026, 2, 16, 9, 30, tzinfo=timezone.utc)
        tuesday_14 = datetime(2026, 2, 17, 14, 0, tzinfo=timezone.utc)
        app = Project(
            id="-home-me-app",
            path="/home/me/app",
            name="app",
            lastActiveAt=tuesday_14,
            messageCount=30,
            sessions=[
                _session("s1", "-home-me-app", monday_9, model="claude-sonnet-4-20250514",
                         usage=TokenUsage(inputTokens=100, outputTokens=50), cost=1.5, messages=10),
                _session("s2", "-home-me-app", tuesday_14, model="claude-sonnet-4-20250514",
                         usage=TokenUsage(inputTokens=10, outputTokens=5), cost=0.5, messages=20),
            ],
        )
        lib = Project(
            id="-home-me-lib",
            path="/home/me/lib",
            name="lib",
            lastActiveAt=monday_9,
            messageCount=3,
            sessions=[_session("s3", "-home-me-lib", None, messages=3)],
        )
        return SessionIndex(
            projects=[lib, app],
            globalStats=GlobalStats(hourCounts={"9": 4}, firstSessionDate="2025-12-01T00:00:00Z", totalSessions=999),
            lastIndexedAt=tuesday_14,
        )

    def test_totals_come_from_the_index(self) -> None:
        analytics = compute_analytics(self._index())

        self.assertEqual(analytics.totalSessions, 3)
        self.assertEqual(analytics.totalMessages, 33)
        self.assertEqual(analytics.hourCounts, {"9": 4})
        self.assertEqual(analytics.firstSessionDate, "2025-12-01T00:00:00Z")

    def test_model_usage_and_costs(self) -> None:
        analytics = compute_analytics(self._index())

        usage = analytics.modelUsage["claude-sonnet-4-20250514"]
        self.assertEqual(usage.inputTokens, 110)
        self.assertEqual(usage.outputTokens, 55)
        self.assertAlmostEqual(usage.costUSD, 2.0)
        self.assertAlmostEqual(analytics.costByModel["claude-sonnet-4-20250514"], 2.0)
        self.assertAlmostEqual(analytics.costByProject["-home-me-app"], 2.0)
        self.assertEqual(analytics.costByProject["-home-me-lib"], 0.0)

    def test_daily_series_use_start_date_then_modified_date(self) -> None:
        analytics = compute_analytics(self._index())

        self.assertEqual([d.date for d in analytics.dailyActivity], ["2026-02-16", "2026-02-17", "2026-02-20"])
        self.assertEqual([d.sessionCount for d in analytics.dailyActivity], [1, 1, 1])
        self.assertEqual([c.costUsd for c in analytics.costByDay], [1.5, 0.5, 0.0])
        self.assertEqual([(t.date, t.input, t.output) for t in analytics.tokensByDay],
                         [("2026-02-16", 100, 50), ("2026-02-17", 10, 5)])

    def test_top_projects_and_heatmap(self) -> None:
        analytics = compute_analytics(self._index())

        self.assertEqual([p.name for p in analytics.topProjects], ["app", "lib"])
        self.assertEqual(
            [(c.day, c.hour, c.count) for c in analytics.activityHeatmap],
            [(0, 9, 1), (1, 14, 1)],
        )

    def test_empty_index(self) -> None:
        analytics = compute_analytics(SessionIndex(lastIndexedAt=datetime.now(timezone.utc)))

        self.assertEqual(analytics.totalSessions, 0)
        self.assertEqual(analytics.firstSessionDate, "")
        self.assertEqual(analytics.activityHeatmap, [])


if __name__ == "__main__":
    unittest.main()
