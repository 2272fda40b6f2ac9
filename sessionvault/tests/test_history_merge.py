import json
import tempfile
import unittest
from pathlib import Path

from sessionvault.mirror.history import history_shadow_name, merge_history_files, merge_history_records


class HistoryMergeTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)

    def _shadow(self, idx: int, records: list, extra: str = "") -> Path:
        path = self.root / history_shadow_name(idx)
        path.write_text("\n".join(json.dumps(r) for r in records) + "\n" + extra, encoding="utf-8")
        return path

    def test_dedupes_by_session_and_timestamp_newest_first(self) -> None:
        merged = merge_history_records(
            [
                [{"sessionId": "s1", "timestamp": 1, "display": "first"}],
                [
                    {"sessionId": "s1", "timestamp": 1, "display": "duplicate"},
                    {"sessionId": "s2", "timestamp": 1, "display": "other session"},
                    {"sessionId": "s1", "timestamp": 5, "display": "later"},
                ],
            ]
        )

        self.assertEqual([r["display"] for r in merged], ["later", "first", "other session"])

    def test_merge_files_writes_combined_log(self) -> None:
        a = self._shadow(0, [{"sessionId": "s1", "timestamp": 10, "display": "a"}], extra="garbage\n")
        b = self._shadow(1, [{"sessionId": "s2", "timestamp": 20, "display": "b"}])
        dest = self.root / "history.jsonl"

        count = merge_history_files([a, b, self.root / "history-9.jsonl"], dest)

        self.assertEqual(count, 2)
        lines = [json.loads(line) for line in dest.read_text(encoding="utf-8").splitlines()]
        self.assertEqual([r["display"] for r in lines], ["b", "a"])

    def test_shadow_names_are_per_source(self) -> None:
        self.assertEqual(history_shadow_name(0), "history-0.jsonl")
        self.assertEqual(history_shadow_name(3), "history-3.jsonl")


if __name__ == "__main__":
    unittest.main()
