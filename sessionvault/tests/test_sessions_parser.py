import json
import tempfile
import threading
import unittest
from pathlib import Path

from sessionvault.parsers.sessions import (
    SessionCache,
    SessionParser,
    build_message_tree,
    pair_tool_calls,
    parse_session_file,
)


def _assistant(uuid: str, content: list, parent: str | None = None, **extra) -> dict:
    return {
        "type": "assistant",
        "uuid": uuid,
        "parentUuid": parent,
        "timestamp": extra.pop("timestamp", "2026-02-16T10:00:00Z"),
        "message": {
            "role": "assistant",
            "model": extra.pop("model", "claude-sonnet-4-20250514"),
            "usage": extra.pop("usage", {"input_tokens": 10, "output_tokens": 20}),
            "content": content,
        },
        **extra,
    }


def _tool_result(uuid: str, tool_use_id: str, content, parent: str | None = None, is_error: bool | None = None) -> dict:
    block = {"type": "tool_result", "tool_use_id": tool_use_id, "content": content}
    if is_error is not None:
        block["is_error"] = is_error
    return {
        "type": "user",
        "uuid": uuid,
        "parentUuid": parent,
        "timestamp": "2026-02-16T10:00:05Z",
        "message": {"role": "user", "content": [block]},
    }


class SessionParserTests(unittest.TestCase):
    def _write_jsonl(self, lines: list, relative_path: str = "session.jsonl") -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            "\n".join(line if isinstance(line, str) else json.dumps(line) for line in lines),
            encoding="utf-8",
        )
        return path

    def test_tool_use_and_result_are_paired(self) -> None:
        path = self._write_jsonl(
            [
                {
                    "type": "user",
                    "uuid": "u1",
                    "timestamp": "2026-02-16T09:59:00Z",
                    "message": {"role": "user", "content": "Read the readme"},
                },
                _assistant(
                    "a1",
                    [{"type": "tool_use", "id": "toolu_1", "name": "Read", "input": {"file_path": "README.md"}}],
                    parent="u1",
                ),
                _tool_result("t1", "toolu_1", "Read output", parent="a1"),
            ]
        )

        session = parse_session_file(path, "s1", "proj")
        pair_tool_calls(session.messages)

        self.assertEqual([m.role for m in session.messages], ["user", "assistant", "tool"])
        call = session.messages[1].toolCalls[0]
        self.assertEqual(call.name, "Read")
        self.assertEqual(call.result, "Read output")
        self.assertFalse(call.isError)

    def test_pairing_is_idempotent_and_detects_error_markers(self) -> None:
        path = self._write_jsonl(
            [
                _assistant(
                    "a1",
                    [
                        {"type": "tool_use", "id": "toolu_1", "name": "Bash", "input": {}},
                        {"type": "tool_use", "id": "toolu_2", "name": "Edit", "input": {}},
                        {"type": "tool_use", "id": "toolu_3", "name": "Grep", "input": {}},
                    ],
                ),
                _tool_result("t1", "toolu_1", "Error: command failed", parent="a1"),
                _tool_result("t2", "toolu_2", "patched", parent="t1", is_error=True),
            ]
        )
        session = parse_session_file(path, "s1", "proj")

        pair_tool_calls(session.messages)
        first = [c.model_dump() for c in session.messages[0].toolCalls]
        pair_tool_calls(session.messages)
        second = [c.model_dump() for c in session.messages[0].toolCalls]

        self.assertEqual(first, second)
        calls = session.messages[0].toolCalls
        self.assertTrue(calls[0].isError)
        self.assertTrue(calls[1].isError)
        self.assertIsNone(calls[2].result)
        self.assertFalse(calls[2].isError)

    def test_malformed_lines_are_skipped(self) -> None:
        path = self._write_jsonl(
            [
                "{not json",
                "[1, 2]",
                _assistant("a1", [{"type": "text", "text": "hello"}]),
                "",
            ]
        )

        session = parse_session_file(path, "s1", "proj")

        self.assertEqual(len(session.messages), 1)
        self.assertEqual(session.messages[0].content[0].text, "hello")

    def test_badly_typed_content_blocks_skip_only_their_line(self) -> None:
        path = self._write_jsonl(
            [
                _assistant("a1", [{"type": "text", "text": "first"}]),
                _assistant("a2", [{"type": "text", "text": 5}], parent="a1"),
                _assistant("a3", [{"type": "thinking", "thinking": "hm", "signature": 7}], parent="a1"),
                _assistant("a4", [{"type": "tool_use", "id": 42, "name": "Bash", "input": {}}], parent="a1"),
                _assistant("a5", [{"type": "text", "text": "last"}], parent="a1"),
            ]
        )

        session = parse_session_file(path, "s1", "proj")

        self.assertEqual([m.uuid for m in session.messages], ["a1", "a5"])
        self.assertEqual(session.metadata.totalMessages, 2)

    def test_metadata_aggregates_usage_cost_and_duration(self) -> None:
        path = self._write_jsonl(
            [
                _assistant(
                    "a1",
                    [{"type": "text", "text": "one"}],
                    usage={"input_tokens": 1_000_000, "output_tokens": 0},
                    timestamp="2026-02-16T10:00:00Z",
                    slug="brave-otter",
                    gitBranch="main",
                ),
                _assistant(
                    "a2",
                    [{"type": "text", "text": "two"}],
                    parent="a1",
                    usage={"input_tokens": 0, "output_tokens": 1_000_000},
                    timestamp="2026-02-16T10:01:00Z",
                ),
            ]
        )

        session = parse_session_file(path, "s1", "proj")
        meta = session.metadata

        self.assertEqual(meta.tokenUsage.inputTokens, 1_000_000)
        self.assertEqual(meta.tokenUsage.outputTokens, 1_000_000)
        self.assertAlmostEqual(meta.estimatedCostUsd, 18.0)
        self.assertEqual(meta.durationMs, 60_000)
        self.assertEqual(meta.slug, "brave-otter")
        self.assertEqual(meta.gitBranch, "main")
        self.assertEqual(meta.model, "claude-sonnet-4-20250514")
        self.assertEqual(meta.totalMessages, 2)

    def test_thinking_blocks_are_split_from_content(self) -> None:
        path = self._write_jsonl(
            [
                _assistant(
                    "a1",
                    [
                        {"type": "thinking", "thinking": "let me plan", "signature": "sig"},
                        {"type": "text", "text": "answer"},
                    ],
                )
            ]
        )

        msg = parse_session_file(path, "s1", "proj").messages[0]

        self.assertEqual(msg.thinking[0].thinking, "let me plan")
        self.assertEqual([b.type for b in msg.content], ["text"])

    def test_enqueue_operations_become_agents_not_messages(self) -> None:
        path = self._write_jsonl(
            [
                {
                    "type": "queue-operation",
                    "operation": "enqueue",
                    "timestamp": "2026-02-16T10:00:00Z",
                    "content": json.dumps({"task_id": "abc123", "description": "Explore repo"}),
                },
                {"type": "progress", "timestamp": "2026-02-16T10:00:01Z"},
                {"type": "file-history-snapshot"},
                _assistant("a1", [{"type": "text", "text": "done"}]),
            ]
        )

        session = parse_session_file(path, "s1", "proj")

        self.assertEqual(len(session.messages), 1)
        self.assertEqual(len(session.agents), 1)
        self.assertEqual(session.agents[0].agentId, "abc123")
        self.assertEqual(session.agents[0].description, "Explore repo")
        self.assertEqual(session.agents[0].parentSessionId, "s1")

    def test_message_tree_groups_children_by_parent(self) -> None:
        path = self._write_jsonl(
            [
                {"type": "user", "uuid": "u1", "message": {"role": "user", "content": "hi"}},
                _assistant("a1", [{"type": "text", "text": "x"}], parent="u1"),
                _assistant("a2", [{"type": "text", "text": "y"}], parent="u1"),
            ]
        )

        tree = build_message_tree(parse_session_file(path, "s1", "proj").messages)

        self.assertEqual([m.uuid for m in tree[None]], ["u1"])
        self.assertEqual([m.uuid for m in tree["u1"]], ["a1", "a2"])


class SessionCacheTests(unittest.TestCase):
    def test_cache_is_bounded_and_evicts_oldest_insertion(self) -> None:
        cache = SessionCache(max_size=2)
        loads = []

        def _loader(key):
            def load():
                loads.append(key)
                return key

            return load

        cache.get_or_load("a", _loader("a"))
        cache.get_or_load("b", _loader("b"))
        cache.get_or_load("a", _loader("a"))
        cache.get_or_load("c", _loader("c"))

        self.assertEqual(len(cache), 2)
        self.assertNotIn("a", cache)
        self.assertEqual(cache.keys(), ["b", "c"])
        self.assertEqual(loads, ["a", "b", "c"])

    def test_concurrent_loads_of_one_key_run_once(self) -> None:
        cache = SessionCache(max_size=4)
        gate = threading.Event()
        calls = []

        def load():
            calls.append(1)
            gate.wait(5)
            return "value"

        results = []
        threads = [threading.Thread(target=lambda: results.append(cache.get_or_load("k", load))) for _ in range(4)]
        for thread in threads:
            thread.start()
        gate.set()
        for thread in threads:
            thread.join(5)

        self.assertEqual(calls, [1])
        self.assertEqual(results, ["value"] * 4)

    def test_parser_reuses_cached_sessions(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "s1.jsonl"
        path.write_text(json.dumps(_assistant("a1", [{"type": "text", "text": "x"}])), encoding="utf-8")
        parser = SessionParser(cache_size=2)

        first = parser.parse(path, "s1", "proj")
        second = parser.parse(str(path), "s1", "proj")

        self.assertIs(first, second)
        self.assertEqual(parser.parse_count, 1)


if __name__ == "__main__":
    unittest.main()
