import unittest

from snatch.analytics import U64_MAX, compute_statistics
from snatch.parsers.jsonl import JsonlParser
from snatch.reconstruction.conversation import Conversation
from snatch.tests.builders import (
    assistant_record,
    branching_session,
    linear_session,
    summary_record,
    system_record,
    system_summary_session,
    thinking_session,
    to_jsonl,
    tool_result,
    tool_use,
    user_record,
)


def _stats(records: list[dict]):
    conversation = Conversation.from_entries(JsonlParser(lenient=False).parse_str(to_jsonl(records)))
    return compute_statistics(conversation)


class StatisticsTests(unittest.TestCase):
    def test_linear_session_counts(self) -> None:
        stats = _stats(linear_session())
        self.assertEqual(stats.message_counts.user, 3)
        self.assertEqual(stats.message_counts.assistant, 3)
        self.assertEqual(stats.message_counts.total, 6)
        self.assertEqual(stats.tool_uses, 1)
        self.assertEqual(stats.tool_results_total, 1)
        self.assertEqual(stats.tool_result_blocks, 1)
        self.assertEqual(stats.tool_use_result_records, 0)
        self.assertTrue(stats.tools_balanced)
        self.assertEqual(stats.tool_counts, {"Read": 1})
        self.assertEqual(stats.unanswered_tool_uses, [])
        self.assertEqual(stats.unmatched_tool_results, [])
        self.assertEqual(stats.main_thread_length, 6)
        self.assertEqual(stats.branch_count, 0)
        self.assertEqual(stats.max_depth, 5)

    def test_tool_use_result_without_block_counts_once(self) -> None:
        records = [
            user_record("u0", None),
            assistant_record("a1", "u0", content=[tool_use("toolu_1", "Bash", command="ls")]),
            user_record("u2", "a1", content="(output)", tool_use_result={"stdout": "a b"}),
        ]
        stats = _stats(records)
        self.assertEqual(stats.tool_uses, 1)
        self.assertEqual(stats.tool_result_blocks, 0)
        self.assertEqual(stats.tool_use_result_records, 1)
        self.assertEqual(stats.tool_results_total, 1)
        self.assertTrue(stats.tools_balanced)
        self.assertEqual(stats.unanswered_tool_uses, ["toolu_1"])

    def test_unbalanced_tools_are_reported(self) -> None:
        records = [
            user_record("u0", None),
            assistant_record("a1", "u0", content=[tool_use("toolu_1"), tool_use("toolu_2", "Grep")]),
            user_record("u2", "a1", content=[tool_result("toolu_1", is_error=True), tool_result("toolu_x")]),
        ]
        stats = _stats(records)
        self.assertEqual(stats.tool_uses, 2)
        self.assertEqual(stats.tool_results_total, 2)
        self.assertEqual(stats.unanswered_tool_uses, ["toolu_2"])
        self.assertEqual(stats.unmatched_tool_results, ["toolu_x"])
        self.assertEqual(stats.error_tool_results, 1)

    def test_result_in_unrelated_branch_is_unmatched(self) -> None:
        records = [
            user_record("u0", None),
            assistant_record("a1", "u0", content=[tool_use("toolu_1")]),
            user_record("other", "u0", content=[tool_result("toolu_1")], second=2),
        ]
        stats = _stats(records)
        self.assertEqual(stats.unanswered_tool_uses, ["toolu_1"])
        self.assertEqual(stats.unmatched_tool_results, ["toolu_1"])
        self.assertTrue(stats.tools_balanced)

    def test_thinking_session(self) -> None:
        stats = _stats(thinking_session())
        self.assertEqual(stats.thinking_blocks, 1)

    def test_system_and_summary_are_counted(self) -> None:
        stats = _stats(system_summary_session() + [system_record("s9", None, second=9)])
        self.assertEqual(stats.message_counts.system, 2)
        self.assertEqual(stats.message_counts.summary, 1)
        self.assertEqual(stats.message_counts.total, 6)

    def test_unknown_records_are_counted(self) -> None:
        stats = _stats([user_record("u0", None), {"type": "queue-operation", "operation": "enqueue"}])
        self.assertEqual(stats.message_counts.unknown, 1)
        self.assertEqual(stats.message_counts.total, 2)

    def test_token_usage_and_models(self) -> None:
        records = [
            user_record("u0", None),
            assistant_record(
                "a1",
                "u0",
                model="claude-opus",
                usage={
                    "input_tokens": 10,
                    "output_tokens": 20,
                    "cache_creation_input_tokens": 30,
                    "cache_read_input_tokens": 40,
                },
            ),
            user_record("u2", "a1", second=2),
            assistant_record("a3", "u2", model="claude-haiku", usage={"input_tokens": 1, "output_tokens": 2}, second=3),
            user_record("u4", "a3", second=4),
            assistant_record("a5", "u4", model="claude-opus", usage={"input_tokens": 1}, second=5),
        ]
        stats = _stats(records)
        usage = stats.token_usage
        self.assertEqual(usage.input_tokens, 12)
        self.assertEqual(usage.output_tokens, 22)
        self.assertEqual(usage.cache_creation_input_tokens, 30)
        self.assertEqual(usage.cache_read_input_tokens, 40)
        self.assertEqual(usage.total_tokens, 104)
        self.assertEqual(stats.models, {"claude-opus": 2, "claude-haiku": 1})
        self.assertEqual(stats.primary_model, "claude-opus")

    def test_time_span(self) -> None:
        stats = _stats(linear_session())
        self.assertIsNotNone(stats.time_span)
        self.assertEqual(stats.duration_seconds, 5.0)
        self.assertLess(stats.time_span.start, stats.time_span.end)

    def test_time_span_absent_without_timestamps(self) -> None:
        summary = summary_record("only a summary")
        summary["uuid"] = "s0"
        stats = _stats([summary])
        self.assertIsNone(stats.time_span)
        self.assertIsNone(stats.duration_seconds)

    def test_branch_and_sidechain_counts(self) -> None:
        stats = _stats(branching_session())
        self.assertEqual(stats.branch_count, 1)
        self.assertEqual(stats.sidechain_count, 2)
        self.assertEqual(stats.main_thread_length, 4)

    def test_sums_saturate_and_report_overflow(self) -> None:
        big = {"input_tokens": U64_MAX, "output_tokens": 1}
        records = [
            user_record("u0", None),
            assistant_record("a1", "u0", usage=big),
            user_record("u2", "a1", second=2),
            assistant_record("a3", "u2", usage=big, second=3),
        ]
        with self.assertLogs("snatch.analytics", level="WARNING") as captured:
            stats = _stats(records)
        self.assertTrue(stats.overflow)
        self.assertEqual(stats.token_usage.input_tokens, U64_MAX)
        self.assertEqual(stats.token_usage.output_tokens, 2)
        self.assertEqual(stats.token_usage.total_tokens, U64_MAX)
        self.assertEqual(len(captured.output), 1)

    def test_no_overflow_for_ordinary_sessions(self) -> None:
        self.assertFalse(_stats(linear_session()).overflow)

    def test_serialized_statistics_use_camel_case(self) -> None:
        payload = _stats(linear_session()).to_dict()
        self.assertEqual(payload["messageCounts"]["total"], 6)
        self.assertIn("toolsBalanced", payload)
        self.assertIn("totalTokens", payload["tokenUsage"])


if __name__ == "__main__":
    unittest.main()
