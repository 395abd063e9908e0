"""Exporter registry keyed on format name."""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional

from snatch.errors import ExportError
from snatch.export.base import Exporter
from snatch.export.html_export import HtmlExporter
from snatch.export.json_export import JsonExporter
from snatch.export.markdown import MarkdownExporter
from snatch.export.options import ExportOptions
from snatch.export.text import TextExporter
from snatch.parsers.jsonl import ParseStats
from snatch.reconstruction.conversation import Conversation

logger = logging.getLogger("snatch.export")

EXPORT_FORMATS = ("markdown", "json", "html", "text")

_EXPORTERS: dict[str, type[Exporter]] = {
    "json": JsonExporter,
    "markdown": MarkdownExporter,
    "md": MarkdownExporter,
    "html": HtmlExporter,
    "htm": HtmlExporter,
    "text": TextExporter,
    "txt": TextExporter,
}


def get_exporter(fmt: str) -> Exporter:
    exporter_cls = _EXPORTERS.get((fmt or "").strip().lower())
    if exporter_cls is None:
        raise ExportError(f"Unknown export format '{fmt}' (expected one of: {', '.join(EXPORT_FORMATS)})")
    return exporter_cls()


def format_for_path(path: Path) -> Optional[str]:
    """Export format implied by a file extension, if any."""
    suffix = path.suffix.lower().lstrip(".")
    return suffix if suffix in _EXPORTERS else None


def export_conversation(
    conversation: Conversation,
    fmt: str,
    sink: BinaryIO,
    options: Optional[ExportOptions] = None,
    *,
    parse_stats: Optional[ParseStats] = None,
) -> None:
    get_exporter(fmt).export(conversation, sink, options, parse_stats=parse_stats)


def export_to_string(
    conversation: Conversation,
    fmt: str,
    options: Optional[ExportOptions] = None,
    *,
    parse_stats: Optional[ParseStats] = None,
) -> str:
    return get_exporter(fmt).export_to_string(conversation, options, parse_stats=parse_stats)


def export_to_path(
    conversation: Conversation,
    fmt: str,
    path: Path | str,
    options: Optional[ExportOptions] = None,
    *,
    parse_stats: Optional[ParseStats] = None,
) -> Path:
    """Render into a temporary file beside `path`, then rename it into place.

    A failed export leaves any existing file at `path` untouched.
    """
    target = Path(path)
    exporter = get_exporter(fmt)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    except OSError as exc:
        raise ExportError(f"Cannot write to {target.parent}: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            exporter.export(conversation, handle, options, parse_stats=parse_stats)
        os.replace(tmp_path, target)
    except BaseException as exc:
        tmp_path.unlink(missing_ok=True)
        if isinstance(exc, OSError):
            raise ExportError(f"Failed to write {target}: {exc}") from exc
        raise
    logger.info("Exported %s to %s", exporter.name, target)
    return target
