"""snatch configuration."""
import os
from pathlib import Path
from typing import Any

import yaml

from snatch.errors import ConfigError


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _default_config_path() -> Path:
    base = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "snatch" / "config.yaml"


# Parser
LENIENT = _env_bool("SNATCH_LENIENT", True)
MAX_PARSE_ERRORS = max(0, _env_int("SNATCH_MAX_PARSE_ERRORS", 256))
PREVIEW_CHARS = max(0, _env_int("SNATCH_PREVIEW_CHARS", 100))

# Logging
LOG_LEVEL = os.getenv("SNATCH_LOG_LEVEL", "INFO").upper()

# Export defaults file
CONFIG_PATH = Path(os.getenv("SNATCH_CONFIG_PATH") or _default_config_path())

# Watcher
WATCH_DEBOUNCE_MS = _env_int("SNATCH_WATCH_DEBOUNCE_MS", 1600)

# Observability
OTEL_ENABLED = _env_bool("SNATCH_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("SNATCH_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("SNATCH_OTEL_SERVICE_NAME", "snatch")


def load_config_file(path: Path | None = None) -> dict[str, Any]:
    """Read the YAML settings file; a missing file yields an empty mapping."""
    config_path = Path(path) if path is not None else CONFIG_PATH
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {config_path}: {exc}") from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {config_path}")
    return data


def save_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = Path(path) if path is not None else CONFIG_PATH
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(
            yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
    except OSError as exc:
        raise ConfigError(f"Failed to write config file {config_path}: {exc}") from exc
    return config_path
