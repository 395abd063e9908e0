"""Conversation exporters."""

from snatch.export.base import Exporter, select_entries, visible_blocks
from snatch.export.options import (
    ExportOptions,
    Traversal,
    load_export_defaults,
    save_export_defaults,
)
from snatch.export.registry import (
    EXPORT_FORMATS,
    export_conversation,
    export_to_path,
    export_to_string,
    format_for_path,
    get_exporter,
)

__all__ = [
    "EXPORT_FORMATS",
    "ExportOptions",
    "Exporter",
    "Traversal",
    "export_conversation",
    "export_to_path",
    "export_to_string",
    "format_for_path",
    "get_exporter",
    "load_export_defaults",
    "save_export_defaults",
    "select_entries",
    "visible_blocks",
]
