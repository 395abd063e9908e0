"""Streaming JSONL parser for Claude Code transcripts.

Each non-empty line is decoded as one JSON object and validated into a log
entry variant (see `snatch.models`). The parser reads its source line by line
and never holds more than the current line in memory besides the output.

In lenient mode malformed lines are counted, recorded in a bounded error list
and skipped; in strict mode the first malformed line aborts the run with a
`SnatchDecodeError` naming its line number and byte offset. I/O failures of
the source always propagate as `SnatchIOError`.
"""
from __future__ import annotations

import io
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Iterator, Union

from pydantic import ValidationError

from snatch import config
from snatch.errors import SnatchDecodeError, SnatchIOError
from snatch.models import AssistantEntry, decode_entry
from snatch.observability import (
    is_enabled,
    record_ingestion,
    record_lines_skipped,
    record_parser_failure,
    record_tokens,
    start_span,
)

logger = logging.getLogger("snatch.parser")

_BOM = "\ufeff"
_READ_BUFFER_BYTES = 64 * 1024

Line = Union[bytes, str]


@dataclass(frozen=True)
class ParseIssue:
    line: int
    byte_offset: int
    message: str
    preview: str = ""

    def __str__(self) -> str:
        return f"line {self.line} (byte {self.byte_offset}): {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "line": self.line,
            "byteOffset": self.byte_offset,
            "message": self.message,
            "preview": self.preview,
        }


@dataclass
class ParseStats:
    lines_processed: int = 0
    entries_parsed: int = 0
    lines_skipped: int = 0
    empty_lines: int = 0
    errors: list[ParseIssue] = field(default_factory=list)
    errors_dropped: int = 0
    bytes_read: int = 0
    schema_version: str | None = None

    @property
    def success_rate(self) -> float:
        rate = 100.0 * self.entries_parsed / max(1, self.lines_processed - self.empty_lines)
        return min(100.0, max(0.0, rate))

    @property
    def error_count(self) -> int:
        return len(self.errors) + self.errors_dropped

    def is_consistent(self) -> bool:
        return self.lines_processed == self.entries_parsed + self.lines_skipped + self.empty_lines

    def to_dict(self) -> dict[str, Any]:
        return {
            "linesProcessed": self.lines_processed,
            "entriesParsed": self.entries_parsed,
            "linesSkipped": self.lines_skipped,
            "emptyLines": self.empty_lines,
            "bytesRead": self.bytes_read,
            "successRate": round(self.success_rate, 2),
            "schemaVersion": self.schema_version,
            "errors": [issue.to_dict() for issue in self.errors],
            "errorsDropped": self.errors_dropped,
        }


@dataclass
class ParseResult:
    entries: list[Any]
    stats: ParseStats
    source: str = ""


def _preview(raw: Line, limit: int) -> str:
    if limit <= 0:
        return ""
    if isinstance(raw, bytes):
        text = raw[: limit * 4].decode("utf-8", errors="replace")
    else:
        text = raw[: limit * 2]
    text = text.rstrip("\r\n")
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def _describe_validation_error(exc: ValidationError) -> str:
    errors = exc.errors(include_url=False)
    if not errors:
        return "schema validation failed"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    if first.get("type") == "missing":
        message = "missing required field"
    extra = f" (+{len(errors) - 1} more)" if len(errors) > 1 else ""
    return f"{location}: {message}{extra}" if location else f"{message}{extra}"


def _describe_decode_error(exc: BaseException) -> str:
    if isinstance(exc, json.JSONDecodeError):
        return f"invalid JSON: {exc.msg} at column {exc.colno}"
    if isinstance(exc, UnicodeDecodeError):
        return f"invalid UTF-8 at byte {exc.start} of the line"
    if isinstance(exc, RecursionError):
        return "JSON nesting too deep"
    return str(exc) or exc.__class__.__name__


def _iter_text_lines(text: str) -> Iterator[str]:
    start = 0
    length = len(text)
    while start < length:
        end = text.find("\n", start)
        if end == -1:
            yield text[start:]
            return
        yield text[start : end + 1]
        start = end + 1


def _iter_reader_lines(reader: IO[Any]) -> Iterator[Line]:
    while True:
        try:
            chunk = reader.readline()
        except (OSError, UnicodeDecodeError) as exc:
            raise SnatchIOError(f"Failed to read from source: {exc}") from exc
        if not chunk:
            return
        yield chunk


class JsonlParser:
    """Line-oriented decoder producing log entries and per-run statistics."""

    def __init__(
        self,
        *,
        lenient: bool | None = None,
        max_errors: int | None = None,
        preview_chars: int | None = None,
    ) -> None:
        self.lenient = config.LENIENT if lenient is None else lenient
        self.max_errors = config.MAX_PARSE_ERRORS if max_errors is None else max(0, max_errors)
        self.preview_chars = config.PREVIEW_CHARS if preview_chars is None else max(0, preview_chars)
        self.stats = ParseStats()

    def parse_str(self, text: str) -> list[Any]:
        return list(self._iter_lines(_iter_text_lines(text)))

    def parse_bytes(self, data: bytes) -> list[Any]:
        return self.parse_reader(io.BytesIO(data))

    def parse_reader(self, reader: IO[Any]) -> list[Any]:
        """Parse every line `reader` yields.

        Binary readers give exact byte offsets and `bytes_read`. Text readers
        opened with universal newlines hand back `\r\n` already folded to
        `\n`, so offsets past such lines undercount by one byte per line;
        prefer binary readers when offsets matter.
        """
        return list(self.iter_entries(reader))

    def iter_entries(self, reader: IO[Any]) -> Iterator[Any]:
        """Yield entries one at a time; `stats` is complete once exhausted."""
        return self._iter_lines(_iter_reader_lines(reader))

    def parse_file(self, path: Path | str) -> list[Any]:
        path = Path(path)
        try:
            handle = open(path, "rb", buffering=_READ_BUFFER_BYTES)
        except OSError as exc:
            raise SnatchIOError.from_os_error(exc, path) from exc
        with handle:
            return self.parse_reader(handle)

    def _iter_lines(self, lines: Iterator[Line]) -> Iterator[Any]:
        self.stats = ParseStats()
        offset = 0
        for line_no, raw in enumerate(lines, start=1):
            size = len(raw) if isinstance(raw, bytes) else len(raw.encode("utf-8", "surrogatepass"))
            entry = self._parse_line(line_no, offset, raw)
            offset += size
            self.stats.bytes_read = offset
            if entry is not None:
                yield entry

    def _parse_line(self, line_no: int, offset: int, raw: Line) -> Any | None:
        self.stats.lines_processed += 1
        try:
            text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        except UnicodeDecodeError as exc:
            return self._reject(line_no, offset, _describe_decode_error(exc), raw)

        if text.endswith("\n"):
            text = text[:-1]
        if text.endswith("\r"):
            text = text[:-1]
        if line_no == 1 and text.startswith(_BOM):
            text = text[len(_BOM):]

        if not text.strip():
            self.stats.empty_lines += 1
            return None

        try:
            entry = decode_entry(json.loads(text))
        except ValidationError as exc:
            return self._reject(line_no, offset, _describe_validation_error(exc), raw)
        except (ValueError, RecursionError) as exc:
            return self._reject(line_no, offset, _describe_decode_error(exc), raw)

        self.stats.entries_parsed += 1
        if self.stats.schema_version is None:
            version = getattr(entry, "version", None)
            if isinstance(version, str) and version:
                self.stats.schema_version = version
        return entry

    def _reject(self, line_no: int, offset: int, cause: str, raw: Line) -> None:
        if not self.lenient:
            raise SnatchDecodeError(line_no, offset, cause)
        self.stats.lines_skipped += 1
        if len(self.stats.errors) < self.max_errors:
            self.stats.errors.append(
                ParseIssue(line_no, offset, cause, _preview(raw, self.preview_chars))
            )
        else:
            self.stats.errors_dropped += 1
        logger.debug("Skipping line %d (byte %d): %s", line_no, offset, cause)
        return None


def _log_summary(source: str, stats: ParseStats) -> None:
    logger.info(
        "Parsed %s: %d entries, %d skipped, %d empty (%.1f%% success)",
        source,
        stats.entries_parsed,
        stats.lines_skipped,
        stats.empty_lines,
        stats.success_rate,
    )


def parse_transcript(path: Path | str, *, lenient: bool | None = None) -> ParseResult:
    """Parse a transcript file, with logging and telemetry around the run."""
    path = Path(path)
    parser = JsonlParser(lenient=lenient)
    t0 = time.monotonic()
    with start_span("snatch.parse", {"snatch.source": str(path), "snatch.lenient": parser.lenient}) as span:
        try:
            entries = parser.parse_file(path)
        except (SnatchDecodeError, SnatchIOError):
            record_parser_failure("jsonl", source=str(path))
            record_ingestion("transcript", "error", (time.monotonic() - t0) * 1000, source=str(path))
            raise
        if span is not None:
            span.set_attribute("snatch.entries_parsed", parser.stats.entries_parsed)
            span.set_attribute("snatch.lines_skipped", parser.stats.lines_skipped)
    record_ingestion("transcript", "success", (time.monotonic() - t0) * 1000, source=str(path))
    record_lines_skipped(parser.stats.lines_skipped, source=str(path))
    if is_enabled():
        for entry in entries:
            if isinstance(entry, AssistantEntry) and entry.message.usage is not None:
                record_tokens(
                    model=entry.model,
                    token_input=entry.usage.total_input_tokens,
                    token_output=entry.usage.output_tokens,
                    source=str(path),
                )
    _log_summary(str(path), parser.stats)
    return ParseResult(entries=entries, stats=parser.stats, source=str(path))


def parse_text(text: str, *, lenient: bool | None = None, source: str = "<string>") -> ParseResult:
    parser = JsonlParser(lenient=lenient)
    entries = parser.parse_str(text)
    _log_summary(source, parser.stats)
    return ParseResult(entries=entries, stats=parser.stats, source=source)


def parse_session(
    source: Path | str | bytes | IO[Any], *, lenient: bool | None = None
) -> ParseResult:
    """Parse a transcript from a path, raw bytes or an open file object.

    Strings are treated as paths; use `parse_text` for in-memory JSONL text.
    """
    if isinstance(source, (str, Path)):
        return parse_transcript(source, lenient=lenient)
    parser = JsonlParser(lenient=lenient)
    if isinstance(source, (bytes, bytearray, memoryview)):
        label = "<bytes>"
        entries = parser.parse_bytes(bytes(source))
    else:
        label = str(getattr(source, "name", "<stream>"))
        entries = parser.parse_reader(source)
    _log_summary(label, parser.stats)
    return ParseResult(entries=entries, stats=parser.stats, source=label)
