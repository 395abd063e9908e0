"""Transcript parser registry keyed on file suffix."""
from __future__ import annotations

import logging
from pathlib import Path

from snatch.errors import SnatchError
from snatch.parsers.jsonl import ParseResult, parse_transcript

logger = logging.getLogger("snatch.parser")

TRANSCRIPT_SUFFIXES = (".jsonl",)


def is_transcript(path: Path) -> bool:
    return path.suffix.lower() in TRANSCRIPT_SUFFIXES


def parse_session_file(path: Path, *, lenient: bool | None = None) -> ParseResult | None:
    """Parse a session file by delegating to the parser for its suffix.

    Claude Code `.jsonl` transcripts go to the streaming JSONL parser; any
    other suffix yields None.
    """
    if is_transcript(path):
        return parse_transcript(path, lenient=lenient)
    return None


def recent_transcripts(sessions_dir: Path, max_files: int = 50) -> list[Path]:
    """Transcript files in `sessions_dir`, newest first."""
    if not sessions_dir.is_dir():
        return []
    candidates = [p for p in sessions_dir.glob("*") if p.is_file() and is_transcript(p)]
    return sorted(candidates, key=lambda p: p.stat().st_mtime, reverse=True)[: max(0, max_files)]


def scan_sessions(sessions_dir: Path, max_files: int = 50) -> list[ParseResult]:
    """Scan and parse recent transcripts; unreadable files are logged and skipped."""
    results: list[ParseResult] = []
    for path in recent_transcripts(sessions_dir, max_files):
        try:
            result = parse_session_file(path)
        except SnatchError as exc:
            logger.warning("Skipping %s: %s", path, exc)
            continue
        if result is not None:
            results.append(result)
    return results
