import json
import tempfile
import unittest
from pathlib import Path

from sessionvault.parsers.stats import read_prompt_history, read_stats_cache


class StatsReaderTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)

    def test_stats_cache_preserves_unknown_keys(self) -> None:
        path = self.root / "stats-cache.json"
        path.write_text(
            json.dumps(
                {
                    "version": 2,
                    "totalSessions": 9,
                    "hourCounts": {"10": 3},
                    "longestSession": {"sessionId": "s1", "duration": 60000, "messageCount": 4, "timestamp": "t"},
                    "newField": [1, 2],
                }
            ),
            encoding="utf-8",
        )

        stats = read_stats_cache(path)

        self.assertEqual(stats.totalSessions, 9)
        self.assertEqual(stats.hourCounts, {"10": 3})
        self.assertEqual(stats.longestSession.sessionId, "s1")
        self.assertEqual(stats.model_extra["newField"], [1, 2])

    def test_missing_or_corrupt_stats_yield_none(self) -> None:
        self.assertIsNone(read_stats_cache(self.root / "missing.json"))
        corrupt = self.root / "stats-cache.json"
        corrupt.write_text("{", encoding="utf-8")
        self.assertIsNone(read_stats_cache(corrupt))

    def test_prompt_history_skips_bad_lines(self) -> None:
        path = self.root / "history.jsonl"
        path.write_text(
            "\n".join(
                [
                    json.dumps({"display": "fix bug", "timestamp": 1700000000000, "project": "/p", "sessionId": "s1"}),
                    "garbage",
                    "[]",
                    json.dumps({"display": "second", "pastedContents": {"1": {"content": "x"}}}),
                ]
            ),
            encoding="utf-8",
        )

        entries = read_prompt_history(path)

        self.assertEqual([e.display for e in entries], ["fix bug", "second"])
        self.assertEqual(entries[0].timestamp, 1700000000000)
        self.assertEqual(entries[1].pastedContents, {"1": {"content": "x"}})
        self.assertEqual(read_prompt_history(self.root / "missing.jsonl"), [])


if __name__ == "__main__":
    unittest.main()
