"""Rendering options shared by every exporter, and their YAML defaults."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from snatch import config
from snatch.errors import ConfigError

EXPORT_SECTION = "export"


class Traversal(str, Enum):
    MAIN_THREAD = "main_thread"
    FULL_TREE = "full_tree"
    ROOTS = "roots"


class ExportOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    include_thinking: bool = False
    include_metadata: bool = False
    include_tool_results: bool = True
    include_tool_use: bool = True
    include_timestamps: bool = True
    plain_text: bool = False
    pretty: bool = False
    envelope: bool = True
    html_title: str = "Claude Code Conversation"
    html_dark_theme: bool = False
    traversal: Traversal = Traversal.MAIN_THREAD

    def merged(self, **changes: Any) -> "ExportOptions":
        """Return a validated copy with `changes` applied; None values are ignored."""
        data = self.model_dump()
        data.update({k: v for k, v in changes.items() if v is not None})
        return ExportOptions.model_validate(data)


def load_export_defaults(path: Path | None = None) -> ExportOptions:
    """Read the `export:` section of the settings file into `ExportOptions`."""
    data = config.load_config_file(path)
    section = data.get(EXPORT_SECTION) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{EXPORT_SECTION}' must be a mapping of option names to values")
    try:
        return ExportOptions.model_validate(section)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors(include_url=False)
        )
        raise ConfigError(f"Invalid export defaults: {problems}") from exc


def save_export_defaults(options: ExportOptions, path: Path | None = None) -> Path:
    """Write `options` to the settings file, keeping its other sections."""
    data = config.load_config_file(path)
    data[EXPORT_SECTION] = options.model_dump(mode="json")
    return config.save_config_file(data, path)
