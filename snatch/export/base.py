"""Exporter base class and the traversal helpers renderers share."""
from __future__ import annotations

import io
import logging
from typing import Any, BinaryIO, Optional

from snatch.errors import ExportError, SnatchError
from snatch.export.options import ExportOptions, Traversal
from snatch.models import ThinkingBlock, ToolResultBlock, ToolUseBlock
from snatch.parsers.jsonl import ParseStats
from snatch.reconstruction.conversation import Conversation

logger = logging.getLogger("snatch.export")


def select_entries(conversation: Conversation, traversal: Traversal | str) -> list[Any]:
    """Entries in the order a renderer should emit them."""
    traversal = Traversal(traversal)
    if traversal is Traversal.MAIN_THREAD:
        return conversation.main_thread_entries()
    if traversal is Traversal.ROOTS:
        return [conversation.get(uuid) for uuid in conversation.roots]
    return list(conversation.walk()) + conversation.detached


def visible_blocks(entry: Any, options: ExportOptions) -> list[Any]:
    blocks = []
    for block in entry.content_blocks:
        if isinstance(block, ThinkingBlock) and not options.include_thinking:
            continue
        if isinstance(block, ToolUseBlock) and not options.include_tool_use:
            continue
        if isinstance(block, ToolResultBlock) and not options.include_tool_results:
            continue
        blocks.append(block)
    return blocks


class Utf8Sink:
    """Text facade over a binary sink; every write is encoded as UTF-8."""

    def __init__(self, sink: BinaryIO) -> None:
        self._sink = sink

    def write(self, text: str) -> None:
        self._sink.write(text.encode("utf-8"))

    def line(self, text: str = "") -> None:
        self.write(text + "\n")


class Exporter:
    """Renders a conversation into a binary sink.

    Subclasses implement `render`; `export` wraps it so that any failure
    reaches the caller as `ExportError`.
    """

    name = ""

    def export(
        self,
        conversation: Conversation,
        sink: BinaryIO,
        options: Optional[ExportOptions] = None,
        *,
        parse_stats: Optional[ParseStats] = None,
    ) -> None:
        options = options or ExportOptions()
        try:
            self.render(conversation, Utf8Sink(sink), options, parse_stats)
        except SnatchError:
            raise
        except (OSError, ValueError, TypeError) as exc:
            logger.error("%s export failed: %s", self.name, exc)
            raise ExportError(f"{self.name} export failed: {exc}") from exc

    def export_to_string(
        self,
        conversation: Conversation,
        options: Optional[ExportOptions] = None,
        *,
        parse_stats: Optional[ParseStats] = None,
    ) -> str:
        buffer = io.BytesIO()
        self.export(conversation, buffer, options, parse_stats=parse_stats)
        return buffer.getvalue().decode("utf-8")

    def render(
        self,
        conversation: Conversation,
        out: Utf8Sink,
        options: ExportOptions,
        parse_stats: Optional[ParseStats],
    ) -> None:
        raise NotImplementedError
