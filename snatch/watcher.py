"""Live transcript watcher using watchfiles.

Watches a transcript file or a directory of transcripts and, on every change,
re-parses the affected file leniently, rebuilds its conversation and hands
the result to a callback.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from watchfiles import Change, awatch

from snatch import config
from snatch.errors import EmptyInputError, SnatchDecodeError, SnatchIOError
from snatch.parsers.jsonl import ParseResult, parse_transcript
from snatch.parsers.registry import is_transcript
from snatch.reconstruction.conversation import Conversation, build_conversation

logger = logging.getLogger("snatch.watcher")

WatchCallback = Callable[[Path, Optional[ParseResult], Optional[Conversation]], Any]


class SessionWatcher:
    """Background watcher that re-parses transcripts on change.

    Uses `watchfiles` (Rust-accelerated) for efficient watching. A deleted
    transcript is reported to the callback with `None` for both results.
    """

    def __init__(
        self,
        callback: WatchCallback,
        *,
        debounce_ms: Optional[int] = None,
        lenient: bool = True,
    ) -> None:
        self._callback = callback
        self._debounce_ms = config.WATCH_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self._lenient = lenient
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self, target: Path, *, initial: bool = True) -> None:
        """Start watching `target` in a background task."""
        if self._running:
            logger.warning("Session watcher already running")
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(Path(target), initial))
        logger.info("Session watcher started for %s", target)

    async def stop(self) -> None:
        """Stop the watcher and wait for its task to finish."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Session watcher stopped")

    async def run(self, target: Path, *, initial: bool = True) -> None:
        """Watch `target` in the foreground until cancelled."""
        self._running = True
        self._stop_event = asyncio.Event()
        await self._watch_loop(Path(target), initial)

    @property
    def is_running(self) -> bool:
        return self._running

    async def _watch_loop(self, target: Path, initial: bool) -> None:
        if not target.exists():
            logger.warning("Watch target %s does not exist, watcher has nothing to monitor", target)
            self._running = False
            return

        watch_root = target if target.is_dir() else target.parent
        only_file = None if target.is_dir() else target.resolve()
        logger.info("Watching %s", target)

        try:
            if initial and only_file is not None:
                await self._dispatch(await asyncio.to_thread(self.process, "modified", target))
            async for changes in awatch(
                watch_root,
                stop_event=self._stop_event,
                debounce=self._debounce_ms,
            ):
                if not self._running:
                    break
                classified = self._classify_changes(changes, only_file)
                if classified:
                    logger.debug("Detected %d transcript changes", len(classified))
                for change_type, path in classified:
                    await self._dispatch(await asyncio.to_thread(self.process, change_type, path))
        except asyncio.CancelledError:
            logger.info("Session watcher task cancelled")
            raise
        finally:
            self._running = False

    def _classify_changes(
        self,
        changes: set[tuple[Change, str]],
        only_file: Optional[Path] = None,
    ) -> list[tuple[str, Path]]:
        """Classify raw watchfiles changes into (change_type, path) pairs.

        Only transcript files are returned, one entry per path, in path order.
        """
        result: dict[Path, str] = {}
        for change_type, path_str in changes:
            path = Path(path_str)
            if not is_transcript(path):
                continue
            if only_file is not None and path.resolve() != only_file:
                continue
            if change_type == Change.deleted:
                result[path] = "deleted"
            elif change_type in (Change.modified, Change.added):
                result.setdefault(path, "modified")
        return sorted(((kind, path) for path, kind in result.items()), key=lambda item: str(item[1]))

    def process(
        self, change_type: str, path: Path
    ) -> Optional[tuple[Path, Optional[ParseResult], Optional[Conversation]]]:
        """Re-parse one changed transcript; None when it could not be read.

        Blocking; the watch loop runs it in a worker thread.
        """
        if change_type == "deleted":
            logger.info("Transcript removed: %s", path)
            return path, None, None
        try:
            result = parse_transcript(path, lenient=self._lenient)
        except (SnatchIOError, SnatchDecodeError) as exc:
            logger.warning("Could not parse %s: %s", path, exc)
            return None
        try:
            conversation: Optional[Conversation] = build_conversation(result.entries, source=str(path))
        except EmptyInputError:
            conversation = None
        return path, result, conversation

    async def _dispatch(
        self, outcome: Optional[tuple[Path, Optional[ParseResult], Optional[Conversation]]]
    ) -> None:
        if outcome is None:
            return
        try:
            returned = self._callback(*outcome)
            if inspect.isawaitable(returned):
                await returned
        except Exception as exc:  # noqa: BLE001
            logger.error("Watch callback failed for %s: %s", outcome[0], exc)
