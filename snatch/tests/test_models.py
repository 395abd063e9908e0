import unittest
from datetime import timezone

from pydantic import ValidationError

from snatch.models import (
    AssistantEntry,
    SummaryEntry,
    SystemEntry,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
    UnknownEntry,
    UserEntry,
    decode_entry,
)
from snatch.tests.builders import assistant_record, summary_record, system_record, tool_use, user_record


class EntryDecodingTests(unittest.TestCase):
    def test_user_string_content_becomes_single_text_block(self) -> None:
        entry = decode_entry(user_record("u0", None, content="hi there"))
        self.assertIsInstance(entry, UserEntry)
        self.assertEqual(entry.role, "user")
        self.assertEqual(entry.uuid, "u0")
        self.assertIsNone(entry.parent_uuid)
        self.assertEqual(entry.session_id, "session-0001")
        self.assertEqual(len(entry.content_blocks), 1)
        self.assertIsInstance(entry.content_blocks[0], TextBlock)
        self.assertEqual(entry.text, "hi there")

    def test_assistant_blocks_dispatch_on_type(self) -> None:
        entry = decode_entry(
            assistant_record(
                "a1",
                "u0",
                content=[
                    {"type": "thinking", "thinking": "hmm", "signature": "s"},
                    {"type": "text", "text": "answer"},
                    tool_use("toolu_1", "Bash", command="ls"),
                    {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"}},
                ],
            )
        )
        self.assertIsInstance(entry, AssistantEntry)
        kinds = [type(block) for block in entry.content_blocks]
        self.assertEqual(kinds, [ThinkingBlock, TextBlock, ToolUseBlock, UnknownBlock])
        self.assertEqual(entry.model, "claude-sonnet-4")
        self.assertEqual(entry.tool_uses()[0].input, {"command": "ls"})
        self.assertEqual(len(entry.thinking_blocks()), 1)

        wire = entry.to_wire()
        image = wire["message"]["content"][3]
        self.assertEqual(image["type"], "image")
        self.assertEqual(image["source"]["media_type"], "image/png")

    def test_system_and_summary_variants(self) -> None:
        system = decode_entry(system_record("s1", "a0", content="compacted"))
        self.assertIsInstance(system, SystemEntry)
        self.assertEqual(system.subtype, "informational")
        self.assertEqual(system.text, "compacted")

        summary = decode_entry(summary_record("A summary", leaf_uuid="a9"))
        self.assertIsInstance(summary, SummaryEntry)
        self.assertIsNone(summary.uuid)
        self.assertEqual(summary.leaf_uuid, "a9")
        self.assertEqual(summary.text, "A summary")

    def test_unknown_record_type_keeps_every_field(self) -> None:
        raw = {
            "type": "file-history-snapshot",
            "messageId": "m1",
            "snapshot": {"trackedFileBackups": {}, "timestamp": "2026-02-16T10:00:00Z"},
            "uuid": "x1",
        }
        entry = decode_entry(raw)
        self.assertIsInstance(entry, UnknownEntry)
        self.assertEqual(entry.role, "file-history-snapshot")
        self.assertEqual(entry.uuid, "x1")
        self.assertIsNone(entry.timestamp)
        self.assertFalse(entry.is_sidechain)
        self.assertEqual(entry.raw, raw)

    def test_unknown_fields_are_preserved_on_serialization(self) -> None:
        record = user_record("u0", None, futureField={"nested": [1, 2]})
        record["message"]["newMessageKey"] = "kept"
        wire = decode_entry(record).to_wire()
        self.assertEqual(wire["futureField"], {"nested": [1, 2]})
        self.assertEqual(wire["message"]["newMessageKey"], "kept")
        self.assertEqual(wire["sessionId"], "session-0001")
        self.assertEqual(next(iter(wire)), "type")

    def test_absent_sidechain_flag_is_not_invented(self) -> None:
        entry = decode_entry(user_record("u0", None))
        self.assertFalse(entry.sidechain_explicit)
        self.assertFalse(entry.is_sidechain)
        self.assertNotIn("isSidechain", entry.to_wire())

        flagged = decode_entry(user_record("u1", "u0", sidechain=True))
        self.assertTrue(flagged.sidechain_explicit)
        self.assertTrue(flagged.is_sidechain)
        self.assertTrue(flagged.to_wire()["isSidechain"])

    def test_missing_provenance_field_fails_validation(self) -> None:
        record = user_record("u0", None)
        del record["sessionId"]
        with self.assertRaises(ValidationError):
            decode_entry(record)

    def test_unparseable_timestamp_fails_validation(self) -> None:
        with self.assertRaises(ValidationError):
            decode_entry(user_record("u0", None, timestamp="yesterday-ish"))

    def test_naive_timestamp_is_treated_as_utc(self) -> None:
        entry = decode_entry(user_record("u0", None, timestamp="2026-02-16T10:00:00"))
        self.assertEqual(entry.timestamp.tzinfo, timezone.utc)

    def test_non_object_and_untyped_values_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            decode_entry([1, 2, 3])
        with self.assertRaises(ValueError):
            decode_entry({"uuid": "u0"})

    def test_entries_are_immutable(self) -> None:
        entry = decode_entry(user_record("u0", None))
        with self.assertRaises(ValidationError):
            entry.uuid = "other"


class UsageTests(unittest.TestCase):
    def test_null_usage_fields_become_zero(self) -> None:
        entry = decode_entry(
            assistant_record(
                "a1",
                "u0",
                usage={
                    "input_tokens": 7,
                    "output_tokens": None,
                    "cache_read_input_tokens": 3,
                    "service_tier": "standard",
                },
            )
        )
        self.assertEqual(entry.usage.output_tokens, 0)
        self.assertEqual(entry.usage.cache_creation_input_tokens, 0)
        self.assertEqual(entry.usage.total_input_tokens, 10)
        self.assertEqual(entry.usage.total_tokens, 10)

    def test_missing_usage_reads_as_zero(self) -> None:
        record = assistant_record("a1", "u0")
        del record["message"]["usage"]
        entry = decode_entry(record)
        self.assertIsNone(entry.message.usage)
        self.assertEqual(entry.usage.total_tokens, 0)

    def test_negative_usage_fails_validation(self) -> None:
        with self.assertRaises(ValidationError):
            decode_entry(assistant_record("a1", "u0", usage={"input_tokens": -1}))


class ToolBlockTests(unittest.TestCase):
    def test_mcp_and_server_tool_helpers(self) -> None:
        mcp = ToolUseBlock(id="toolu_1", name="mcp__github__create_issue", input={})
        self.assertTrue(mcp.is_mcp_tool)
        self.assertEqual(mcp.mcp_server, "github")
        self.assertFalse(mcp.is_server_tool)

        server = ToolUseBlock(id="srvtoolu_9", name="web_search", input={})
        self.assertTrue(server.is_server_tool)
        self.assertIsNone(server.mcp_server)

    def test_tool_result_text_content(self) -> None:
        listed = ToolResultBlock(
            tool_use_id="toolu_1",
            content=[{"type": "text", "text": "line one"}, {"type": "text", "text": "line two"}],
            is_error=True,
        )
        self.assertEqual(listed.text_content(), "line one\nline two")
        self.assertTrue(listed.is_error_result)

        empty = ToolResultBlock(tool_use_id="toolu_2")
        self.assertEqual(empty.text_content(), "")
        self.assertFalse(empty.is_error_result)


if __name__ == "__main__":
    unittest.main()
