"""Markdown exporter, with a plain-text mode that emits no markdown syntax."""
from __future__ import annotations

import json
import re
from typing import Any, Optional

from snatch.analytics import ConversationStatistics, compute_statistics
from snatch.date_utils import format_duration, format_human
from snatch.export.base import Exporter, Utf8Sink, select_entries, visible_blocks
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

THINKING_COLLAPSE_CHARS = 2000
TOOL_RESULT_COLLAPSE_CHARS = 5000

_ROLE_HEADINGS = {
    "user": ("👤", "User"),
    "assistant": ("🤖", "Assistant"),
    "system": ("⚙️", "System"),
    "summary": ("📝", "Summary"),
}

_BACKTICK_RUN = re.compile(r"`{3,}")


def fence_for(text: str) -> str:
    """A code fence longer than any backtick run inside `text`."""
    longest = max((len(m.group(0)) for m in _BACKTICK_RUN.finditer(text)), default=0)
    return "`" * max(3, longest + 1)


def tool_result_text(block: ToolResultBlock) -> str:
    if block.content is None or isinstance(block.content, str):
        return block.content or ""
    text = block.text_content()
    return text if text else json.dumps(block.content, ensure_ascii=False, indent=2)


class MarkdownExporter(Exporter):
    name = "markdown"

    def render(
        self,
        conversation: Conversation,
        out: Utf8Sink,
        options: ExportOptions,
        parse_stats: Optional[ParseStats],
    ) -> None:
        stats = compute_statistics(conversation)
        self._write_header(out, conversation, stats, options)
        for entry in select_entries(conversation, options.traversal):
            self._write_entry(out, conversation, entry, options)

    # ── header ──────────────────────────────────────────────────────

    def _field(self, out: Utf8Sink, label: str, value: Any, options: ExportOptions, *, code: bool = False) -> None:
        if value in (None, ""):
            return
        if options.plain_text:
            out.line(f"{label}: {value}")
        elif code:
            out.line(f"- **{label}:** `{value}`")
        else:
            out.line(f"- **{label}:** {value}")

    def _write_header(
        self,
        out: Utf8Sink,
        conversation: Conversation,
        stats: ConversationStatistics,
        options: ExportOptions,
    ) -> None:
        title = options.html_title
        if options.plain_text:
            out.line(title)
            out.line("=" * len(title))
        else:
            out.line(f"# {title}")
        out.line()

        if options.include_metadata:
            first = next(iter(conversation.main_thread_entries() or conversation.entries()), None)
            self._field(out, "Session ID", conversation.session_id, options, code=True)
            self._field(out, "Claude Code Version", getattr(first, "version", None), options)
            self._field(out, "Working Directory", getattr(first, "cwd", None), options, code=True)
            self._field(out, "Git Branch", getattr(first, "git_branch", None), options, code=True)
            self._field(out, "Primary Model", stats.primary_model, options)

        if options.include_timestamps and stats.time_span is not None:
            self._field(out, "Started", format_human(stats.time_span.start), options)
            self._field(out, "Ended", format_human(stats.time_span.end), options)
            self._field(out, "Duration", format_duration(stats.duration_seconds), options)

        if options.include_metadata:
            counts = stats.message_counts
            out.line()
            if options.plain_text:
                out.line("Statistics")
                out.line("----------")
            else:
                out.line("## Statistics")
                out.line()
            self._field(
                out,
                "Messages",
                f"{counts.total} ({counts.user} user, {counts.assistant} assistant)",
                options,
            )
            self._field(out, "Total Tokens", stats.token_usage.total_tokens, options)
            self._field(out, "Input Tokens", stats.token_usage.input_tokens, options)
            self._field(out, "Output Tokens", stats.token_usage.output_tokens, options)
            self._field(out, "Tool Invocations", stats.tool_uses, options)
            if stats.thinking_blocks:
                self._field(out, "Thinking Blocks", stats.thinking_blocks, options)
            if stats.branch_count:
                self._field(out, "Branch Points", stats.branch_count, options)

        out.line()
        if not options.plain_text:
            out.line("---")
            out.line()

    # ── entries ─────────────────────────────────────────────────────

    def _heading(self, conversation: Conversation, entry: Any, options: ExportOptions) -> str:
        icon, label = _ROLE_HEADINGS[entry.role]
        sidechain = bool(entry.uuid) and conversation.is_sidechain(entry.uuid)
        subtype = entry.subtype if isinstance(entry, SystemEntry) else None
        timestamp = format_human(entry.timestamp) if options.include_timestamps else ""
        if options.plain_text:
            parts = [label.upper()]
            if subtype:
                parts.append(f"({subtype})")
            if sidechain:
                parts.append("[sidechain]")
            if timestamp:
                parts.append(f"[{timestamp}]")
            return " ".join(parts) + ":"
        heading = f"## {icon} {label}"
        if subtype:
            heading += f" ({subtype})"
        if sidechain:
            heading += " *(sidechain)*"
        if timestamp:
            heading += f" *({timestamp})*"
        return heading

    def _write_entry(self, out: Utf8Sink, conversation: Conversation, entry: Any, options: ExportOptions) -> None:
        if entry.role not in _ROLE_HEADINGS:
            if options.include_metadata:
                self._write_unknown(out, entry, options)
            return
        blocks = visible_blocks(entry, options)
        if not blocks:
            return
        out.line(self._heading(conversation, entry, options))
        out.line()
        for block in blocks:
            self._write_block(out, block, options)
        if options.include_metadata and isinstance(entry, AssistantEntry):
            self._write_assistant_meta(out, entry, options)

    def _write_unknown(self, out: Utf8Sink, entry: Any, options: ExportOptions) -> None:
        body = json.dumps(entry.raw, ensure_ascii=False, indent=2)
        if options.plain_text:
            out.line(f"[{entry.type}]")
            out.line(body)
        else:
            fence = fence_for(body)
            out.line(f"## ❔ {entry.type}")
            out.line()
            out.line(f"{fence}json")
            out.line(body)
            out.line(fence)
        out.line()

    def _write_assistant_meta(self, out: Utf8Sink, entry: AssistantEntry, options: ExportOptions) -> None:
        parts = []
        if entry.model:
            parts.append(f"Model: {entry.model}")
        if entry.message.stop_reason:
            parts.append(f"Stop reason: {entry.message.stop_reason}")
        if entry.message.usage is not None:
            parts.append(f"Tokens: {entry.usage.total_input_tokens} in, {entry.usage.output_tokens} out")
        if not parts:
            return
        line = " | ".join(parts)
        out.line(line if options.plain_text else f"*{line}*")
        out.line()

    def _write_block(self, out: Utf8Sink, block: Any, options: ExportOptions) -> None:
        if isinstance(block, TextBlock):
            out.line(block.text)
            out.line()
        elif isinstance(block, ThinkingBlock):
            self._write_thinking(out, block, options)
        elif isinstance(block, ToolUseBlock):
            self._write_tool_use(out, block, options)
        elif isinstance(block, ToolResultBlock):
            self._write_tool_result(out, block, options)
        else:
            marker = f"[{block.type or 'unknown'} block]"
            out.line(marker if options.plain_text else f"*{marker}*")
            out.line()

    def _write_thinking(self, out: Utf8Sink, block: ThinkingBlock, options: ExportOptions) -> None:
        if options.plain_text:
            out.line("[THINKING]")
            out.line(block.thinking)
            out.line("[/THINKING]")
            out.line()
            return
        collapse = len(block.thinking) > THINKING_COLLAPSE_CHARS
        fence = fence_for(block.thinking)
        if collapse:
            out.line("<details>")
            out.line(f"<summary>💭 Thinking ({len(block.thinking)} chars)</summary>")
        else:
            out.line("### 💭 Thinking")
        out.line()
        out.line(fence)
        out.line(block.thinking)
        out.line(fence)
        if collapse:
            out.line()
            out.line("</details>")
        out.line()

    def _write_tool_use(self, out: Utf8Sink, block: ToolUseBlock, options: ExportOptions) -> None:
        payload = json.dumps(block.input, ensure_ascii=False, indent=2)
        if options.plain_text:
            out.line(f"[TOOL: {block.name}]")
            out.line(f"ID: {block.id}")
            out.line(f"Input: {payload}")
            out.line("[/TOOL]")
            out.line()
            return
        if block.is_mcp_tool:
            icon = "🔌"
        elif block.is_server_tool:
            icon = "🖥️"
        else:
            icon = "🔧"
        fence = fence_for(payload)
        out.line(f"### {icon} Tool: `{block.name}`")
        out.line()
        out.line(f"**ID:** `{block.id}`")
        out.line()
        out.line("**Input:**")
        out.line(f"{fence}json")
        out.line(payload)
        out.line(fence)
        out.line()

    def _write_tool_result(self, out: Utf8Sink, block: ToolResultBlock, options: ExportOptions) -> None:
        content = tool_result_text(block)
        if options.plain_text:
            out.line(f"[TOOL RESULT: {block.tool_use_id}]")
            if block.is_error_result:
                out.line("STATUS: ERROR")
            if content:
                out.line(content)
            out.line("[/TOOL RESULT]")
            out.line()
            return
        status = "❌ Error" if block.is_error_result else "✅ Result"
        collapse = len(content) > TOOL_RESULT_COLLAPSE_CHARS
        if collapse:
            out.line("<details>")
            out.line(f"<summary>{status} for `{block.tool_use_id}` ({len(content)} chars)</summary>")
        else:
            out.line(f"#### {status} for `{block.tool_use_id}`")
        out.line()
        if content:
            fence = fence_for(content)
            out.line(fence)
            out.line(content)
            out.line(fence)
        if collapse:
            out.line()
            out.line("</details>")
        out.line()
