import unittest

from snatch.analytics import compute_statistics
from snatch.parsers.jsonl import JsonlParser
from snatch.reconstruction.conversation import Conversation
from snatch.reconstruction.messages import (
    RetryStatistics,
    group_messages,
    retry_statistics,
    track_retries,
)
from snatch.tests.builders import (
    assistant_record,
    system_record,
    to_jsonl,
    tool_result,
    tool_use,
    user_record,
)


def _build(records: list[dict]) -> Conversation:
    return Conversation.from_entries(JsonlParser(lenient=False).parse_str(to_jsonl(records)))


def _streamed_session() -> list[dict]:
    """One API response split over two records, then a tool round trip."""
    thinking_chunk = assistant_record(
        "a1",
        "u0",
        content=[{"type": "thinking", "thinking": "Need to look at the file.", "signature": "sig"}],
        usage={"input_tokens": 10, "output_tokens": 3},
        second=1,
    )
    tool_chunk = assistant_record(
        "a2",
        "a1",
        content=[{"type": "text", "text": "Reading the file"}, tool_use("toolu_1")],
        usage={"input_tokens": 10, "output_tokens": 20},
        second=2,
    )
    for record in (thinking_chunk, tool_chunk):
        record["message"]["id"] = "msg_shared"
    thinking_chunk["message"]["stop_reason"] = None
    tool_chunk["message"]["stop_reason"] = "tool_use"
    return [
        user_record("u0", None, content="Open the README"),
        thinking_chunk,
        tool_chunk,
        user_record("u3", "a2", content=[tool_result("toolu_1", "# README")], second=3),
        assistant_record("a4", "u3", text="It is a README.", second=4),
    ]


class MessageGroupingTests(unittest.TestCase):
    def test_chunks_sharing_a_message_id_are_merged(self) -> None:
        groups = group_messages(_build(_streamed_session()))
        self.assertEqual([g.message_id for g in groups], ["msg_shared", "msg_a4"])

        streamed = groups[0]
        self.assertEqual(streamed.chunk_count, 2)
        self.assertEqual(streamed.uuid, "a1")
        self.assertEqual(streamed.model, "claude-sonnet-4")
        self.assertEqual([b.type for b in streamed.content], ["thinking", "text", "tool_use"])
        self.assertTrue(streamed.has_thinking)
        self.assertTrue(streamed.has_tool_use)
        self.assertEqual(streamed.thinking, "Need to look at the file.")
        self.assertEqual(streamed.text, "Reading the file")
        self.assertEqual([b.id for b in streamed.tool_uses], ["toolu_1"])
        self.assertEqual(streamed.stop_reason, "tool_use")
        self.assertEqual(streamed.usage.output_tokens, 20)

        single = groups[1]
        self.assertEqual(single.chunk_count, 1)
        self.assertFalse(single.has_thinking)
        self.assertEqual(single.text, "It is a README.")

    def test_records_without_message_id_stand_alone(self) -> None:
        records = [user_record("u0"), assistant_record("a1", "u0"), assistant_record("a2", "a1", second=2)]
        for record in records[1:]:
            record["message"]["id"] = ""
        groups = group_messages(_build(records))
        self.assertEqual([g.message_id for g in groups], ["a1", "a2"])

    def test_statistics_count_logical_messages(self) -> None:
        stats = compute_statistics(_build(_streamed_session()))
        self.assertEqual(stats.message_counts.assistant, 3)
        self.assertEqual(stats.assistant_messages, 2)


def _api_error(uuid: str, parent: str, attempt: int, delay_ms: float, second: int) -> dict:
    return system_record(
        uuid,
        parent,
        content="API Error: 529 overloaded",
        second=second,
        subtype="api_error",
        level="error",
        retryAttempt=attempt,
        maxRetries=10,
        retryInMs=delay_ms,
    )


class RetryChainTests(unittest.TestCase):
    def _conversation(self) -> Conversation:
        return _build(
            [
                user_record("u0", None, content="Summarise the log"),
                _api_error("e1", "u0", 1, 500, second=1),
                _api_error("e2", "e1", 2, 1000, second=2),
                assistant_record("a3", "e2", text="Summary", second=3),
                _api_error("e4", "a3", 1, 500, second=4),
            ]
        )

    def test_attempts_are_chained_through_parents(self) -> None:
        chains = track_retries(self._conversation())
        self.assertEqual(len(chains), 2)

        recovered, abandoned = chains
        self.assertEqual(recovered.anchor, "u0")
        self.assertEqual([a.uuid for a in recovered.attempts], ["e1", "e2"])
        self.assertEqual(recovered.total_delay_ms, 1500)
        self.assertEqual(recovered.attempts[0].max_retries, 10)
        self.assertTrue(recovered.succeeded)

        self.assertEqual(abandoned.anchor, "a3")
        self.assertEqual(abandoned.attempt_count, 1)
        self.assertFalse(abandoned.succeeded)

    def test_retry_statistics(self) -> None:
        stats = retry_statistics(track_retries(self._conversation()))
        self.assertEqual(stats.total_chains, 2)
        self.assertEqual(stats.total_retries, 3)
        self.assertEqual(stats.max_retries_seen, 2)
        self.assertEqual(stats.successful_recoveries, 1)
        self.assertEqual(stats.success_rate, 50.0)
        self.assertEqual(RetryStatistics().success_rate, 0.0)

        summary = compute_statistics(self._conversation())
        self.assertEqual(summary.retry_chains, 2)
        self.assertEqual(summary.api_retries, 3)
        self.assertEqual(summary.retry_recoveries, 1)

    def test_informational_system_records_are_ignored(self) -> None:
        conversation = _build([user_record("u0"), system_record("s1", "u0")])
        self.assertEqual(track_retries(conversation), [])


if __name__ == "__main__":
    unittest.main()
