"""Chat-log parsing entry points.

A process-wide FormatSniffer is populated with every built-in format when
this package is imported. All functions below go through it.

``parse_file()`` is the streaming primitive. ``parse_file_sync()``,
``parse_file_info()`` and ``stream_parse_file()`` are projections over the
same event stream for callers that want a materialized result, a summary or
callbacks.
"""

from collections.abc import Callable, Iterator
from dataclasses import replace
from pathlib import Path

from chatlog_ingest.errors import ChatlogIngestError, FileReadError, MissingMetaError, UnrecognizedFormatError
from chatlog_ingest.logging import LogCallback, get_logger
from chatlog_ingest.models import (
    DEFAULT_BATCH_SIZE,
    FileInfo,
    FormatDiagnosis,
    FormatFeature,
    ParsedMember,
    ParsedMessage,
    ParsedMeta,
    ParseEvent,
    ParseOptions,
    ParseProgress,
    ParseResult,
    ProgressCallback,
)
from chatlog_ingest.parser.base import FormatModule, Parser, Preprocessor
from chatlog_ingest.parser.formats import FORMATS
from chatlog_ingest.parser.sniffer import FormatSniffer
from chatlog_ingest.parser.utils import get_file_size, scale_progress

__all__ = [
    "detect_format",
    "diagnose_format",
    "get_parser",
    "get_preprocessor",
    "get_supported_formats",
    "needs_preprocess",
    "parse_file",
    "parse_file_info",
    "parse_file_sync",
    "sniffer",
    "stream_parse_file",
]

logger = get_logger("parser")

# Percentage range given to the preprocessing pass; the parse of the
# intermediate file reports in the rest
PREPROCESS_PROGRESS_SHARE = 50

sniffer = FormatSniffer()
sniffer.register_all(FORMATS)


def detect_format(path: Path | str) -> FormatFeature | None:
    """Return the format of ``path``, or None if nothing matches."""
    return sniffer.sniff(path)


def diagnose_format(path: Path | str) -> FormatDiagnosis:
    return sniffer.diagnose(path)


def get_parser(path: Path | str) -> Parser | None:
    return sniffer.get_parser(path)


def get_supported_formats() -> list[FormatFeature]:
    return sniffer.get_supported_formats()


def get_preprocessor(path: Path | str) -> Preprocessor | None:
    module = sniffer.get_module(path)
    return module.preprocessor if module else None


def _needs_preprocess(module: FormatModule, path: Path, threshold: int | None) -> bool:
    if module.preprocessor is None:
        return False
    size = get_file_size(path)
    if threshold is not None:
        return size >= threshold
    return module.preprocessor.needs_preprocess(path, size)


def needs_preprocess(path: Path | str, threshold: int | None = None) -> bool:
    """Whether parsing ``path`` would go through its format's preprocessor.

    Args:
        path: File to check
        threshold: Size in bytes overriding the preprocessor's own threshold

    Returns:
        False for unrecognized files and formats without a preprocessor
    """
    module = sniffer.get_module(path)
    if module is None:
        return False
    return _needs_preprocess(module, Path(path), threshold)


def parse_file(options: ParseOptions) -> Iterator[ParseEvent]:
    """Sniff and parse a file into a lazy stream of events.

    Unrecognized files produce a single error event carrying an
    UnrecognizedFormatError with the full diagnosis. Files that need
    preprocessing are rewritten first; the intermediate file is removed
    when the stream finishes or the generator is closed. Progress of the
    two passes is mapped into one non-decreasing percentage range.

    Args:
        options: Per-invocation options

    Yields:
        ParseEvents: meta, then members/messages/progress, ending in either
        a done progress event or a single error event
    """
    path = options.file_path
    if not path.is_file():
        yield ParseEvent.error(FileReadError(f"File not found: {path}"))
        return

    module = sniffer.get_module(path)
    if module is None:
        diagnosis = sniffer.diagnose(path)
        logger.warning("Unrecognized format: path=%s suggestion=%s", path, diagnosis.suggestion)
        yield ParseEvent.error(UnrecognizedFormatError(path, diagnosis))
        return

    logger.info("Detected format: path=%s format=%s", path, module.feature.id)

    if not _needs_preprocess(module, path, options.preprocess_threshold):
        yield from module.parser.parse(options)
        return

    on_progress = options.on_progress
    try:
        intermediate = module.preprocessor.preprocess(
            path, _scaled_callback(on_progress, 0, PREPROCESS_PROGRESS_SHARE)
        )
    except OSError as exc:
        yield ParseEvent.error(FileReadError(f"Cannot read {path}: {exc}"))
        return
    except ChatlogIngestError as exc:
        logger.error("Preprocessing failed: path=%s error=%s", path, exc)
        yield ParseEvent.error(exc)
        return

    options = replace(
        options,
        file_path=intermediate,
        on_progress=_scaled_callback(on_progress, PREPROCESS_PROGRESS_SHARE, 99),
    )
    try:
        for event in module.parser.parse(options):
            if event.type == "progress":
                event = ParseEvent.progress(scale_progress(event.data, PREPROCESS_PROGRESS_SHARE, 99))
            yield event
    finally:
        module.preprocessor.cleanup(intermediate)


def _scaled_callback(
    on_progress: ProgressCallback | None, start: int, end: int
) -> ProgressCallback | None:
    if on_progress is None:
        return None

    def forward(progress: ParseProgress) -> None:
        on_progress(scale_progress(progress, start, end))

    return forward


def _raise_on_error(event: ParseEvent) -> None:
    if event.type == "error":
        raise event.data


def parse_file_sync(path: Path | str, on_progress: ProgressCallback | None = None) -> ParseResult:
    """Parse a whole file into memory.

    Args:
        path: File to parse
        on_progress: Optional progress callback

    Returns:
        ParseResult with meta, every member batch and every message batch
        concatenated in stream order

    Raises:
        ChatlogIngestError: The stream's error, or MissingMetaError if the
            stream never produced meta
    """
    meta: ParsedMeta | None = None
    members: list[ParsedMember] = []
    messages: list[ParsedMessage] = []

    for event in parse_file(ParseOptions(file_path=path, on_progress=on_progress)):
        _raise_on_error(event)
        if event.type == "meta":
            meta = event.data
        elif event.type == "members":
            members.extend(event.data)
        elif event.type == "messages":
            messages.extend(event.data)

    if meta is None:
        raise MissingMetaError(f"No chat metadata found in {path}")
    return ParseResult(meta=meta, members=members, messages=messages)


def parse_file_info(path: Path | str, on_progress: ProgressCallback | None = None) -> FileInfo:
    """Summarize a file without keeping its messages.

    Member count is the number of distinct platform ids seen. The platform
    is the one the chat metadata names, falling back to the format's.

    Raises:
        UnrecognizedFormatError: If no format matches
        ChatlogIngestError: Any other error from the stream
    """
    path = Path(path)
    feature = sniffer.sniff(path)
    if feature is None:
        raise UnrecognizedFormatError(path, sniffer.diagnose(path))

    name = path.stem
    platform = feature.platform
    member_ids: set[str] = set()
    message_count = 0
    for event in parse_file(ParseOptions(file_path=path, on_progress=on_progress)):
        _raise_on_error(event)
        if event.type == "meta":
            name = event.data.name
            platform = event.data.platform or feature.platform
        elif event.type == "members":
            member_ids.update(m.platform_id for m in event.data)
        elif event.type == "messages":
            message_count += len(event.data)

    return FileInfo(
        name=name,
        format=feature.id,
        platform=platform,
        message_count=message_count,
        member_count=len(member_ids),
        file_size=get_file_size(path),
    )


def stream_parse_file(
    path: Path | str,
    *,
    on_progress: ProgressCallback | None = None,
    on_meta: Callable[[ParsedMeta], None] | None = None,
    on_members: Callable[[list[ParsedMember]], None] | None = None,
    on_message_batch: Callable[[list[ParsedMessage]], None] | None = None,
    on_log: LogCallback | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> None:
    """Parse a file and hand each event to the matching callback.

    Callbacks run synchronously in stream order; the next batch isn't read
    until the previous callback returns.

    Raises:
        ChatlogIngestError: The stream's error event, if any
    """
    options = ParseOptions(file_path=path, batch_size=batch_size, on_progress=on_progress, on_log=on_log)
    for event in parse_file(options):
        _raise_on_error(event)
        if event.type == "meta" and on_meta is not None:
            on_meta(event.data)
        elif event.type == "members" and on_members is not None:
            on_members(event.data)
        elif event.type == "messages" and on_message_batch is not None:
            on_message_batch(event.data)
