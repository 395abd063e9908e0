"""Shared timestamp normalization and formatting helpers."""
from __future__ import annotations

from datetime import datetime, timezone


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes so mixed inputs stay comparable."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def format_iso_utc(value: datetime | None) -> str:
    if value is None:
        return ""
    dt = ensure_utc(value).astimezone(timezone.utc).replace(microsecond=0)
    return dt.isoformat().replace("+00:00", "Z")


def format_human(value: datetime | None) -> str:
    if value is None:
        return ""
    return ensure_utc(value).astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_duration(seconds: float | None) -> str:
    """Render a duration as e.g. `1h 02m 03s`, `4m 05s` or `12s`."""
    if seconds is None:
        return ""
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"
