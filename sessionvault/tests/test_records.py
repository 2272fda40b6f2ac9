import json
import unittest

from pydantic import ValidationError

from sessionvault.records import (
    AssistantRecord,
    OtherRecord,
    QueueOperationRecord,
    SystemRecord,
    UserRecord,
    decode_record,
    parse_line,
)


class RecordDecodingTests(unittest.TestCase):
    def test_dispatches_on_type(self) -> None:
        self.assertIsInstance(decode_record({"type": "user", "message": {"content": "hi"}}), UserRecord)
        self.assertIsInstance(decode_record({"type": "assistant"}), AssistantRecord)
        self.assertIsInstance(decode_record({"type": "system", "subtype": "compact"}), SystemRecord)
        self.assertIsInstance(decode_record({"type": "queue-operation", "operation": "dequeue"}), QueueOperationRecord)

    def test_unknown_types_fall_back_and_keep_extra_keys(self) -> None:
        record = decode_record({"type": "summary", "summary": "Refactor", "leafUuid": "x"})

        self.assertIsInstance(record, OtherRecord)
        self.assertEqual(record.type, "summary")
        self.assertEqual(record.model_extra["leafUuid"], "x")

        untyped = decode_record({"foo": 1})
        self.assertEqual(untyped.type, "unknown")

    def test_usage_nulls_count_as_zero(self) -> None:
        record = parse_line(
            json.dumps(
                {
                    "type": "assistant",
                    "message": {"usage": {"input_tokens": 5, "output_tokens": None, "cache_read_input_tokens": 2}},
                }
            )
        )

        usage = record.message.usage.to_token_usage()
        self.assertEqual(usage.inputTokens, 5)
        self.assertEqual(usage.outputTokens, 0)
        self.assertEqual(usage.cacheReadTokens, 2)
        self.assertEqual(usage.total, 7)

    def test_epoch_timestamps_are_accepted(self) -> None:
        record = parse_line(json.dumps({"type": "user", "timestamp": 1771236000000}))
        self.assertEqual(record.timestamp, 1771236000000)

    def test_enqueued_task_decodes_string_payloads(self) -> None:
        record = decode_record(
            {
                "type": "queue-operation",
                "operation": "enqueue",
                "content": json.dumps({"task_id": "t1", "description": "d"}),
            }
        )
        self.assertEqual(record.enqueued_task()["task_id"], "t1")

        without_id = decode_record({"type": "queue-operation", "operation": "enqueue", "content": {"description": "d"}})
        self.assertIsNone(without_id.enqueued_task())

        garbled = decode_record({"type": "queue-operation", "operation": "enqueue", "content": "{oops"})
        self.assertIsNone(garbled.enqueued_task())

    def test_non_object_lines_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_line("[]")
        with self.assertRaises(ValueError):
            parse_line("not json")

    def test_wrong_field_types_raise_validation_errors(self) -> None:
        with self.assertRaises(ValidationError):
            decode_record({"type": "user", "isMeta": {"nested": True}})


if __name__ == "__main__":
    unittest.main()
