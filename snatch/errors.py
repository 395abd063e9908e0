"""Error taxonomy for transcript ingest, reconstruction and export."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class ErrorKind(str, Enum):
    IO = "io"
    DECODE = "decode"
    DUPLICATE_UUID = "duplicate_uuid"
    ORPHAN_PARENT = "orphan_parent"
    EMPTY_INPUT = "empty_input"
    OVERFLOW = "overflow"
    EXPORT = "export"
    CONFIG = "config"


# Exit codes used by the CLI (BSD sysexits where one applies).
EXIT_SUCCESS = 0
EXIT_GENERAL_ERROR = 1
EXIT_PARSE_ERROR = 2
EXIT_FILE_NOT_FOUND = 3
EXIT_PERMISSION_DENIED = 4
EXIT_CONFIG_ERROR = 5
EXIT_EXPORT_ERROR = 6
EXIT_DATA_ERROR = 65
EXIT_IO_ERROR = 74
EXIT_INTERRUPTED = 130


class SnatchError(Exception):
    """Base class for every error surfaced by the library."""

    kind: ErrorKind = ErrorKind.IO
    exit_code: int = EXIT_GENERAL_ERROR


class SnatchIOError(SnatchError):
    kind = ErrorKind.IO
    exit_code = EXIT_IO_ERROR

    def __init__(self, message: str, *, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None

    @classmethod
    def from_os_error(cls, exc: OSError, path: Path | str) -> "SnatchIOError":
        if isinstance(exc, FileNotFoundError):
            err = cls(f"File not found: {path}", path=path)
            err.exit_code = EXIT_FILE_NOT_FOUND
        elif isinstance(exc, PermissionError):
            err = cls(f"Permission denied: {path}", path=path)
            err.exit_code = EXIT_PERMISSION_DENIED
        elif isinstance(exc, IsADirectoryError):
            err = cls(f"Expected a file but found a directory: {path}", path=path)
        else:
            err = cls(f"I/O error reading {path}: {exc.strerror or exc}", path=path)
        return err


class SnatchDecodeError(SnatchError, ValueError):
    """One line did not decode as a JSON object or did not satisfy the schema."""

    kind = ErrorKind.DECODE
    exit_code = EXIT_PARSE_ERROR

    def __init__(self, line: int, byte_offset: int | None, cause: str) -> None:
        self.line = line
        self.byte_offset = byte_offset
        self.cause = cause
        super().__init__(self._render())

    def _render(self) -> str:
        if self.byte_offset is None:
            return f"line {self.line}: {self.cause}"
        return f"line {self.line} (byte {self.byte_offset}): {self.cause}"


class EmptyInputError(SnatchError):
    kind = ErrorKind.EMPTY_INPUT
    exit_code = EXIT_DATA_ERROR

    def __init__(self, message: str = "no records with a resolvable uuid") -> None:
        super().__init__(message)


class ExportError(SnatchError):
    kind = ErrorKind.EXPORT
    exit_code = EXIT_EXPORT_ERROR


class ConfigError(SnatchError, ValueError):
    kind = ErrorKind.CONFIG
    exit_code = EXIT_CONFIG_ERROR


@dataclass(frozen=True)
class TreeIssue:
    """A non-fatal irregularity found while building or measuring a conversation."""

    kind: ErrorKind
    uuid: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"
