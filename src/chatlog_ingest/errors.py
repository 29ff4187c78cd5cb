"""Error classification for parsing and import failures.

Every failure that crosses a public boundary carries a stable ``code`` so
callers can special-case it (an unrecognized format triggers diagnosis, for
example) without string matching on messages.
"""

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatlog_ingest.models import FormatDiagnosis


class ChatlogIngestError(Exception):
    """Base exception for all chatlog-ingest errors."""

    code = "error.unknown"


class UnrecognizedFormatError(ChatlogIngestError):
    """No registered format matches the file."""

    code = "error.unrecognized_format"

    def __init__(self, path: Path | str, diagnosis: "FormatDiagnosis | None" = None) -> None:
        self.path = str(path)
        self.diagnosis = diagnosis
        message = f"Unrecognized file format: {self.path}"
        if diagnosis is not None:
            message = f"{message} ({diagnosis.suggestion})"
        super().__init__(message)


class ParseError(ChatlogIngestError):
    """A record or stream could not be interpreted by the matched parser."""

    code = "error.parse_failed"


class MissingMetaError(ParseError):
    """The event stream ended without producing chat metadata."""

    code = "error.missing_meta"


class FileReadError(ChatlogIngestError):
    """The file is unreadable or disappeared mid-read."""

    code = "error.file_read"


class PersistenceError(ChatlogIngestError):
    """A batch write was rejected by the session store."""

    code = "error.persistence"


class WorkerCrashedError(ChatlogIngestError):
    """The import worker exited without reporting a result."""

    code = "error.worker_crashed"


class ImportTimeoutError(ChatlogIngestError):
    """The import worker did not finish within the caller's timeout."""

    code = "error.timeout"


def error_code(exc: BaseException) -> str:
    """Return the classification code for any exception."""
    if isinstance(exc, ChatlogIngestError):
        return exc.code
    if isinstance(exc, OSError):
        return FileReadError.code
    return ChatlogIngestError.code
