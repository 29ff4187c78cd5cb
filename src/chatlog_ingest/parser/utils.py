"""File, timestamp and progress helpers shared by the sniffer and parsers."""

import os
import time
from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO

import ijson
from ijson.common import ObjectBuilder

from chatlog_ingest.models import DEFAULT_CHUNK_SIZE, ParseProgress, ProgressStage

# Head window read for sniffing; independent of file size
HEAD_SIZE = 8 * 1024

# Numeric timestamps at or above this are treated as milliseconds
MILLISECONDS_THRESHOLD = 100_000_000_000

_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y-%m-%d %H:%M",
    "%d.%m.%Y %H:%M:%S",
)


def read_file_head_bytes(path: Path | str, size: int = HEAD_SIZE) -> bytes:
    """Read at most ``size`` bytes from the start of a file."""
    with open(path, "rb") as f:
        return f.read(size)


def read_file_head(path: Path | str, size: int = HEAD_SIZE) -> str:
    """Read the head window of a file as text.

    Invalid UTF-8 (including a multi-byte character cut at the window edge)
    is dropped rather than raised, and a leading BOM is removed.

    Args:
        path: File to read
        size: Maximum number of bytes to read

    Returns:
        Decoded head content
    """
    head = read_file_head_bytes(path, size).decode("utf-8", errors="ignore")
    return head.lstrip("\ufeff")


def get_extension(path: Path | str) -> str:
    """Return the lower-cased file extension including the dot."""
    return Path(path).suffix.lower()


def get_file_size(path: Path | str) -> int:
    return os.path.getsize(path)


def format_file_size(num_bytes: int) -> str:
    """Format a byte count for display (e.g. "1.5 MB")."""
    size = float(num_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def decode_line(line: bytes) -> str:
    """Decode one record, tolerating bad bytes and a BOM on the first line."""
    return line.decode("utf-8", errors="replace").lstrip("\ufeff").strip()


def iter_lines(
    path: Path | str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    start: int = 0,
) -> Iterator[tuple[bytes, int]]:
    """Yield the lines of a file by reading fixed-size chunks.

    A record that straddles two chunks is carried over as a remainder, so
    record boundaries never depend on where a chunk happens to end. Memory
    use is bounded by one chunk plus the longest single line.

    Args:
        path: File to read
        chunk_size: Bytes per read
        start: Byte offset to start reading from

    Yields:
        Tuples of (line without newline or trailing CR, file offset after the line)
    """
    with open(path, "rb") as f:
        f.seek(start)
        position = start
        remainder = b""
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            lines = (remainder + chunk).split(b"\n")
            remainder = lines.pop()
            for line in lines:
                position += len(line) + 1
                yield line.rstrip(b"\r"), position

        if remainder:
            position += len(remainder)
            yield remainder.rstrip(b"\r"), position


def _parse_datetime_string(text: str) -> int | None:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return int(datetime.fromisoformat(text).timestamp())
    except ValueError:
        pass
    for fmt in _DATETIME_FORMATS:
        try:
            return int(datetime.strptime(text, fmt).timestamp())
        except ValueError:
            continue
    return None


def parse_timestamp(value: object) -> int | None:
    """Normalize a source timestamp to Unix seconds.

    Accepts epoch seconds or milliseconds (told apart by magnitude), numeric
    strings, ISO 8601 strings (with or without ``Z``) and a few common
    ``date time`` layouts. Naive date strings are read as local time.

    Args:
        value: Raw timestamp from the source record

    Returns:
        Unix timestamp in seconds, or None if the value can't be interpreted
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        ts = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            ts = float(text)
        except ValueError:
            return _parse_datetime_string(text)
    else:
        return None

    if abs(ts) >= MILLISECONDS_THRESHOLD:
        ts /= 1000
    return int(ts)


def create_progress(
    stage: str,
    bytes_read: int,
    total_bytes: int,
    messages_processed: int,
    message: str = "",
) -> ParseProgress:
    """Build a progress record with a byte-based percentage.

    The percentage stays below 100 until the ``done`` stage so that the
    final event is the only one reporting completion.
    """
    if stage == ProgressStage.DONE:
        percentage = 100
    elif total_bytes > 0:
        percentage = min(99, int(bytes_read * 100 / total_bytes))
    else:
        percentage = 0

    return ParseProgress(
        stage=stage,
        percentage=percentage,
        bytes_read=bytes_read,
        total_bytes=total_bytes,
        messages_processed=messages_processed,
        message=message,
    )


def scale_progress(progress: ParseProgress, start: int, end: int) -> ParseProgress:
    """Map a 0-100 percentage into ``start``..``end``.

    Used when one file is read in two passes that report through the same
    callback. The ``done`` event keeps its 100.
    """
    if progress.stage == ProgressStage.DONE:
        return progress
    return replace(progress, percentage=start + progress.percentage * (end - start) // 100)


class ProgressThrottle:
    """Decides when a parser may emit another progress event.

    An event is allowed once ``interval_seconds`` have passed or ``min_bytes``
    more bytes have been read since the last allowed event, whichever comes
    first.
    """

    def __init__(
        self,
        interval_seconds: float = 0.5,
        min_bytes: int = DEFAULT_CHUNK_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interval = interval_seconds
        self._min_bytes = min_bytes
        self._clock = clock
        self._last_time = clock()
        self._last_bytes = 0

    def should_emit(self, bytes_read: int) -> bool:
        now = self._clock()
        if now - self._last_time >= self._interval or bytes_read - self._last_bytes >= self._min_bytes:
            self._last_time = now
            self._last_bytes = bytes_read
            return True
        return False


def iter_json_objects(handle: BinaryIO, targets: dict[str, str]) -> Iterator[tuple[str, Any]]:
    """Stream selected values out of one large JSON document.

    Walks ``ijson`` parse events and materializes only the values whose
    ijson prefix is listed in ``targets`` (e.g. ``"messages.item"``), one at
    a time, so memory holds a single record rather than the document.

    Args:
        handle: Binary file handle positioned at the start of the document
        targets: Mapping of ijson prefix to the kind label yielded with it

    Yields:
        Tuples of (kind label, value) in document order
    """
    builder: ObjectBuilder | None = None
    current = ""
    for prefix, event, value in ijson.parse(handle, use_float=True):
        if builder is None:
            if prefix not in targets:
                continue
            if event in ("start_map", "start_array"):
                builder = ObjectBuilder()
                current = prefix
                builder.event(event, value)
            elif event not in ("end_map", "end_array", "map_key"):
                yield targets[prefix], value
            continue

        builder.event(event, value)
        if prefix == current and event in ("end_map", "end_array"):
            yield targets[current], builder.value
            builder = None
