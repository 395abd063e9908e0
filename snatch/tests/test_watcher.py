import asyncio
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

from watchfiles import Change

from snatch.tests.builders import linear_session, to_jsonl
from snatch.watcher import SessionWatcher


class SessionWatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        self.watcher = SessionWatcher(lambda *args: None, debounce_ms=50)

    def test_classify_changes_filters_and_deduplicates(self) -> None:
        session = self.root / "a.jsonl"
        other = self.root / "b.jsonl"
        changes = {
            (Change.added, str(session)),
            (Change.modified, str(session)),
            (Change.deleted, str(other)),
            (Change.modified, str(self.root / "notes.md")),
        }
        self.assertEqual(
            self.watcher._classify_changes(changes),
            [("modified", session), ("deleted", other)],
        )

    def test_deletion_wins_over_modification(self) -> None:
        session = self.root / "a.jsonl"
        changes = {(Change.modified, str(session)), (Change.deleted, str(session))}
        self.assertEqual(self.watcher._classify_changes(changes), [("deleted", session)])

    def test_single_file_target_ignores_siblings(self) -> None:
        session = self.root / "a.jsonl"
        session.write_text("", encoding="utf-8")
        changes = {(Change.modified, str(session)), (Change.modified, str(self.root / "b.jsonl"))}
        self.assertEqual(
            self.watcher._classify_changes(changes, session.resolve()),
            [("modified", session)],
        )

    def test_process_parses_and_builds(self) -> None:
        session = self.root / "a.jsonl"
        session.write_text(to_jsonl(linear_session()) + "garbage\n", encoding="utf-8")
        path, result, conversation = self.watcher.process("modified", session)
        self.assertEqual(path, session)
        self.assertEqual(result.stats.lines_skipped, 1)
        self.assertEqual(len(conversation.main_thread), 6)

    def test_process_deleted_and_unreadable(self) -> None:
        session = self.root / "gone.jsonl"
        self.assertEqual(self.watcher.process("deleted", session), (session, None, None))
        with self.assertLogs("snatch.watcher", level="WARNING"):
            self.assertIsNone(self.watcher.process("modified", session))

    def test_process_without_conversation_records(self) -> None:
        session = self.root / "a.jsonl"
        session.write_text('{"type": "queue-operation"}\n', encoding="utf-8")
        _, result, conversation = self.watcher.process("modified", session)
        self.assertEqual(result.stats.entries_parsed, 1)
        self.assertIsNone(conversation)


class SessionWatcherLifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.session = Path(tmpdir.name) / "live.jsonl"
        self.session.write_text(to_jsonl(linear_session()), encoding="utf-8")

    async def test_initial_dispatch_and_stop(self) -> None:
        seen = []
        delivered = asyncio.Event()

        async def callback(path, result, conversation):
            seen.append((path, len(result.entries), conversation.main_thread[-1]))
            delivered.set()

        watcher = SessionWatcher(callback, debounce_ms=50)
        await watcher.start(self.session, initial=True)
        self.assertTrue(watcher.is_running)
        await asyncio.wait_for(delivered.wait(), timeout=5)
        await watcher.stop()

        self.assertFalse(watcher.is_running)
        self.assertEqual(seen, [(self.session, 6, "a5")])

    async def test_callback_errors_are_logged(self) -> None:
        delivered = asyncio.Event()

        def callback(path, result, conversation):
            delivered.set()
            raise RuntimeError("consumer broke")

        watcher = SessionWatcher(callback, debounce_ms=50)
        with self.assertLogs("snatch.watcher", level="ERROR") as captured:
            await watcher.start(self.session)
            await asyncio.wait_for(delivered.wait(), timeout=5)
            await watcher.stop()
        self.assertTrue(any("consumer broke" in line for line in captured.output))

    async def test_parsing_runs_off_the_event_loop(self) -> None:
        loop_thread = threading.get_ident()
        parse_threads = []
        delivered = asyncio.Event()
        watcher = SessionWatcher(lambda *args: delivered.set(), debounce_ms=50)
        parse = watcher.process

        def recording_process(change_type, path):
            parse_threads.append(threading.get_ident())
            return parse(change_type, path)

        with patch.object(watcher, "process", side_effect=recording_process):
            await watcher.start(self.session)
            await asyncio.wait_for(delivered.wait(), timeout=5)
            await watcher.stop()

        self.assertTrue(parse_threads)
        self.assertNotIn(loop_thread, parse_threads)

    async def test_missing_target_stops_immediately(self) -> None:
        watcher = SessionWatcher(lambda *args: None)
        with self.assertLogs("snatch.watcher", level="WARNING"):
            await watcher.run(self.session.with_name("missing.jsonl"))
        self.assertFalse(watcher.is_running)


if __name__ == "__main__":
    unittest.main()
