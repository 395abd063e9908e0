"""Plain-text transcript exporter with fixed-width wrapping."""
from __future__ import annotations

import json
import textwrap
from typing import Any, Iterator, Optional

from snatch.analytics import compute_statistics
from snatch.date_utils import format_duration, format_human
from snatch.export.base import Exporter, Utf8Sink, select_entries, visible_blocks
from snatch.export.markdown import tool_result_text
from snatch.export.options import ExportOptions
from snatch.models import (
    AssistantEntry,
    SystemEntry,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from snatch.parsers.jsonl import ParseStats
from snatch.reconstruction.conversation import Conversation

LINE_WIDTH = 100
MAX_RESULT_LINES = 50
_QUOTE = "  | "


def wrap_lines(text: str, width: int = LINE_WIDTH, prefix: str = "") -> Iterator[str]:
    """Wrap each line of `text` to `width` columns, keeping its leading indent."""
    for raw in text.splitlines() or [""]:
        stripped = raw.lstrip(" \t")
        indent = prefix + raw[: len(raw) - len(stripped)]
        if not stripped:
            yield prefix.rstrip()
            continue
        # Very deep indentation would leave no room for text.
        if len(indent) > width // 2:
            indent = prefix
        yield from textwrap.wrap(
            stripped,
            width=width,
            initial_indent=indent,
            subsequent_indent=indent,
            break_on_hyphens=False,
            drop_whitespace=True,
        )


class TextExporter(Exporter):
    name = "text"

    def render(
        self,
        conversation: Conversation,
        out: Utf8Sink,
        options: ExportOptions,
        parse_stats: Optional[ParseStats],
    ) -> None:
        separator = "-" * LINE_WIDTH
        self._write_header(out, conversation, options, separator)
        for entry in select_entries(conversation, options.traversal):
            self._write_entry(out, conversation, entry, options)
        out.line(separator)
        out.line("END OF CONVERSATION")
        out.line(separator)

    def _write_header(self, out: Utf8Sink, conversation: Conversation, options: ExportOptions, separator: str) -> None:
        stats = compute_statistics(conversation)
        out.line(separator)
        out.line(options.html_title.upper())
        out.line(separator)
        out.line()
        if options.include_metadata and conversation.session_id:
            out.line(f"Session ID: {conversation.session_id}")
        if options.include_timestamps and stats.time_span is not None:
            out.line(f"Started: {format_human(stats.time_span.start)}")
            out.line(f"Ended: {format_human(stats.time_span.end)}")
            out.line(f"Duration: {format_duration(stats.duration_seconds)}")
        if options.include_metadata:
            counts = stats.message_counts
            out.line()
            out.line("STATISTICS:")
            out.line(f"  Messages: {counts.total} ({counts.user} user, {counts.assistant} assistant)")
            out.line(f"  Total Tokens: {stats.token_usage.total_tokens}")
            out.line(f"  Tool Invocations: {stats.tool_uses}")
            if stats.thinking_blocks:
                out.line(f"  Thinking Blocks: {stats.thinking_blocks}")
            if stats.primary_model:
                out.line(f"  Primary Model: {stats.primary_model}")
        out.line()

    def _write_entry(self, out: Utf8Sink, conversation: Conversation, entry: Any, options: ExportOptions) -> None:
        blocks = visible_blocks(entry, options)
        if not blocks:
            return
        label = entry.role.upper()
        if isinstance(entry, SystemEntry) and entry.subtype:
            label += f" ({entry.subtype})"
        heading = f"[{label}]"
        if entry.uuid and conversation.is_sidechain(entry.uuid):
            heading += " [sidechain]"
        if options.include_timestamps and entry.timestamp is not None:
            heading += f" ({format_human(entry.timestamp)})"
        out.line(heading)
        out.line()
        for block in blocks:
            self._write_block(out, block)
        if options.include_metadata and isinstance(entry, AssistantEntry) and entry.message.usage is not None:
            out.line(f"  [Tokens: {entry.usage.total_input_tokens} in, {entry.usage.output_tokens} out]")
            out.line()
        out.line()

    def _write_block(self, out: Utf8Sink, block: Any) -> None:
        if isinstance(block, TextBlock):
            for line in wrap_lines(block.text):
                out.line(line)
            out.line()
        elif isinstance(block, ThinkingBlock):
            out.line("  [THINKING]")
            for line in wrap_lines(block.thinking, prefix=_QUOTE):
                out.line(line)
            out.line("  [/THINKING]")
            out.line()
        elif isinstance(block, ToolUseBlock):
            out.line(f"  [TOOL: {block.name}]")
            out.line(f"  ID: {block.id}")
            payload = json.dumps(block.input, ensure_ascii=False, indent=2)
            for line in wrap_lines(payload, prefix=_QUOTE):
                out.line(line)
            out.line("  [/TOOL]")
            out.line()
        elif isinstance(block, ToolResultBlock):
            status = "ERROR" if block.is_error_result else "OK"
            out.line(f"  [RESULT: {block.tool_use_id} ({status})]")
            lines = list(wrap_lines(tool_result_text(block), prefix=_QUOTE)) if block.content else []
            for line in lines[:MAX_RESULT_LINES]:
                out.line(line)
            if len(lines) > MAX_RESULT_LINES:
                out.line(f"{_QUOTE}... ({len(lines) - MAX_RESULT_LINES} more lines)")
            out.line("  [/RESULT]")
            out.line()
        else:
            out.line(f"  [{(block.type or 'unknown').upper()} BLOCK]")
            out.line()
