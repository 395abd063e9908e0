"""Standalone HTML page exporter."""
from __future__ import annotations

import html
import json
from typing import Any, Optional

from snatch.analytics import ConversationStatistics, compute_statistics
from snatch.date_utils import format_duration, format_human, format_iso_utc
from snatch.export.base import Exporter, Utf8Sink, select_entries, visible_blocks
from snatch.export.markdown import THINKING_COLLAPSE_CHARS, tool_result_text
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

_LIGHT = {
    "bg": "#f2f3f6",
    "panel": "#ffffff",
    "border": "#d0d0d0",
    "text": "#222222",
    "muted": "#5f5f5f",
    "user": "#e8f0fe",
    "assistant": "#f6f6f6",
    "system": "#fff8e1",
    "summary": "#ede7f6",
    "code": "#f4f4f4",
    "error": "#c62828",
}

_DARK = {
    "bg": "#15171c",
    "panel": "#1e2128",
    "border": "#3a3f4b",
    "text": "#e6e6e6",
    "muted": "#9aa0aa",
    "user": "#1f2a3d",
    "assistant": "#23262e",
    "system": "#3a3220",
    "summary": "#2d2640",
    "code": "#2a2d35",
    "error": "#ef9a9a",
}


def _stylesheet(dark: bool) -> str:
    palette = _DARK if dark else _LIGHT
    variables = "\n".join(f"  --{name}: {value};" for name, value in palette.items())
    return f""":root {{
{variables}
  font-family: system-ui, Segoe UI, Arial, sans-serif;
}}

body {{
  margin: 0;
  padding: 16px;
  background: var(--bg);
  color: var(--text);
}}

header {{
  margin-bottom: 12px;
}}

h1 {{
  font-size: 20px;
  margin: 0 0 4px 0;
}}

.meta {{
  font-size: 13px;
  color: var(--muted);
}}

.entry {{
  background: var(--panel);
  border: 1px solid var(--border);
  border-radius: 8px;
  padding: 10px 14px;
  margin: 10px 0;
}}

.entry.user {{ background: var(--user); }}
.entry.assistant {{ background: var(--assistant); }}
.entry.system {{ background: var(--system); }}
.entry.summary {{ background: var(--summary); }}
.entry.sidechain {{ margin-left: 32px; border-style: dashed; }}

.role {{
  font-weight: 700;
  margin-right: 8px;
}}

.badge {{
  font-size: 11px;
  color: var(--muted);
  border: 1px solid var(--border);
  border-radius: 4px;
  padding: 0 4px;
  margin-right: 6px;
}}

.text {{
  white-space: pre-wrap;
  word-break: break-word;
  margin: 8px 0;
}}

pre {{
  background: var(--code);
  border-radius: 6px;
  padding: 8px;
  overflow-x: auto;
  white-space: pre-wrap;
  word-break: break-word;
}}

.tool-name {{
  font-family: monospace;
  font-weight: 700;
}}

.error {{
  color: var(--error);
}}

.footer {{
  font-size: 12px;
  color: var(--muted);
}}
"""


def _esc(value: Any) -> str:
    return html.escape("" if value is None else str(value))


class HtmlExporter(Exporter):
    name = "html"

    def render(
        self,
        conversation: Conversation,
        out: Utf8Sink,
        options: ExportOptions,
        parse_stats: Optional[ParseStats],
    ) -> None:
        stats = compute_statistics(conversation)
        title = _esc(options.html_title)
        out.line("<!doctype html>")
        out.line('<html lang="en">')
        out.line("<head>")
        out.line('<meta charset="utf-8">')
        out.line('<meta name="viewport" content="width=device-width, initial-scale=1">')
        out.line(f"<title>{title}</title>")
        out.line(f"<style>\n{_stylesheet(options.html_dark_theme)}</style>")
        out.line("</head>")
        out.line(f'<body class="{"dark" if options.html_dark_theme else "light"}">')
        out.line("<header>")
        out.line(f"<h1>{title}</h1>")
        self._write_meta(out, conversation, stats, options)
        out.line("</header>")
        out.line("<main>")
        for entry in select_entries(conversation, options.traversal):
            self._write_entry(out, conversation, entry, options)
        out.line("</main>")
        out.line(
            f'<p class="footer">{stats.message_counts.total} records, '
            f"{stats.tool_uses} tool calls, {stats.token_usage.total_tokens} tokens</p>"
        )
        out.line("</body>")
        out.line("</html>")

    def _write_meta(
        self,
        out: Utf8Sink,
        conversation: Conversation,
        stats: ConversationStatistics,
        options: ExportOptions,
    ) -> None:
        parts = []
        if options.include_metadata:
            if conversation.session_id:
                parts.append(f"session={_esc(conversation.session_id)}")
            if stats.primary_model:
                parts.append(f"model={_esc(stats.primary_model)}")
            if stats.branch_count:
                parts.append(f"branches={stats.branch_count}")
        if options.include_timestamps and stats.time_span is not None:
            parts.append(f"started={_esc(format_human(stats.time_span.start))}")
            parts.append(f"duration={_esc(format_duration(stats.duration_seconds))}")
        if parts:
            out.line(f'<div class="meta">{" | ".join(parts)}</div>')

    def _write_entry(self, out: Utf8Sink, conversation: Conversation, entry: Any, options: ExportOptions) -> None:
        blocks = visible_blocks(entry, options)
        if not blocks:
            return
        classes = ["entry", _esc(entry.role)]
        sidechain = bool(entry.uuid) and conversation.is_sidechain(entry.uuid)
        if sidechain:
            classes.append("sidechain")
        anchor = f' id="{_esc(entry.uuid)}"' if entry.uuid else ""
        out.line(f'<section class="{" ".join(classes)}"{anchor}>')

        header = [f'<span class="role">{_esc(entry.role.capitalize())}</span>']
        if isinstance(entry, SystemEntry) and entry.subtype:
            header.append(f'<span class="badge">{_esc(entry.subtype)}</span>')
        if sidechain:
            header.append('<span class="badge">sidechain</span>')
        if options.include_timestamps and entry.timestamp is not None:
            header.append(
                f'<time class="meta" datetime="{_esc(format_iso_utc(entry.timestamp))}">'
                f"{_esc(format_human(entry.timestamp))}</time>"
            )
        out.line(f"<div>{''.join(header)}</div>")

        for block in blocks:
            self._write_block(out, block)

        if options.include_metadata and isinstance(entry, AssistantEntry):
            details = []
            if entry.model:
                details.append(f"model {_esc(entry.model)}")
            if entry.message.usage is not None:
                details.append(f"{entry.usage.total_input_tokens} in / {entry.usage.output_tokens} out tokens")
            if details:
                out.line(f'<div class="meta">{" | ".join(details)}</div>')
        out.line("</section>")

    def _write_block(self, out: Utf8Sink, block: Any) -> None:
        if isinstance(block, TextBlock):
            out.line(f'<div class="text">{_esc(block.text)}</div>')
        elif isinstance(block, ThinkingBlock):
            opened = "" if len(block.thinking) > THINKING_COLLAPSE_CHARS else " open"
            out.line(f'<details class="thinking"{opened}><summary>Thinking</summary>')
            out.line(f"<pre>{_esc(block.thinking)}</pre>")
            out.line("</details>")
        elif isinstance(block, ToolUseBlock):
            payload = json.dumps(block.input, ensure_ascii=False, indent=2)
            out.line('<div class="tool-use">')
            out.line(f'<div>Tool: <span class="tool-name">{_esc(block.name)}</span> '
                     f'<span class="badge">{_esc(block.id)}</span></div>')
            out.line(f"<pre>{_esc(payload)}</pre>")
            out.line("</div>")
        elif isinstance(block, ToolResultBlock):
            status = '<span class="error">Error</span>' if block.is_error_result else "Result"
            out.line(f'<details class="tool-result"><summary>{status} for '
                     f'<span class="tool-name">{_esc(block.tool_use_id)}</span></summary>')
            out.line(f"<pre>{_esc(tool_result_text(block))}</pre>")
            out.line("</details>")
        else:
            out.line(f'<div class="meta">[{_esc(block.type or "unknown")} block]</div>')
