"""JSON exporter: a bare record array or an envelope with tree and statistics."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

from snatch.analytics import compute_statistics
from snatch.date_utils import format_iso_utc
from snatch.export.base import Exporter, Utf8Sink, select_entries
from snatch.export.options import ExportOptions
from snatch.parsers.jsonl import ParseStats
from snatch.reconstruction.conversation import Conversation

SCHEMA_ID = "snatch.conversation/v1"

_BLOCK_OPTION = {
    "thinking": "include_thinking",
    "tool_use": "include_tool_use",
    "tool_result": "include_tool_results",
}


def _hidden(block: Any, options: ExportOptions) -> bool:
    if not isinstance(block, dict):
        return False
    option = _BLOCK_OPTION.get(block.get("type"))
    return option is not None and not getattr(options, option)


def wire_record(entry: Any, options: ExportOptions) -> dict[str, Any]:
    """Wire-format dict for `entry` with hidden block kinds removed."""
    data = entry.to_wire()
    message = data.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), list):
        message["content"] = [b for b in message["content"] if not _hidden(b, options)]
    return data


class JsonExporter(Exporter):
    name = "json"

    def render(
        self,
        conversation: Conversation,
        out: Utf8Sink,
        options: ExportOptions,
        parse_stats: Optional[ParseStats],
    ) -> None:
        records = [wire_record(e, options) for e in select_entries(conversation, options.traversal)]
        payload: Any = records
        if options.envelope:
            payload = self._envelope(conversation, records, options, parse_stats)
        if options.pretty:
            out.write(json.dumps(payload, ensure_ascii=False, indent=2))
            out.line()
        else:
            out.write(json.dumps(payload, ensure_ascii=False, separators=(",", ":")))

    def _envelope(
        self,
        conversation: Conversation,
        records: list[dict[str, Any]],
        options: ExportOptions,
        parse_stats: Optional[ParseStats],
    ) -> dict[str, Any]:
        first = next(iter(conversation.main_thread_entries() or conversation.entries()), None)
        envelope: dict[str, Any] = {
            "schema": SCHEMA_ID,
            "exportedAt": format_iso_utc(datetime.now(timezone.utc)),
            "session": {
                "sessionId": conversation.session_id,
                "version": getattr(first, "version", None),
                "cwd": getattr(first, "cwd", None),
                "gitBranch": getattr(first, "git_branch", None),
            },
            "traversal": options.traversal.value,
            "tree": {
                "roots": conversation.roots,
                "mainThread": conversation.main_thread,
                "branchPoints": conversation.branch_points,
                "sidechainHeads": conversation.sidechain_heads,
            },
            "statistics": compute_statistics(conversation).to_dict(),
            "issues": [
                {"kind": issue.kind.value, "uuid": issue.uuid, "message": issue.message}
                for issue in conversation.issues
            ],
        }
        if parse_stats is not None:
            envelope["parse"] = parse_stats.to_dict()
        envelope["entries"] = records
        return envelope
