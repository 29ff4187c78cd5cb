"""Parser for generic line-delimited chat logs (.jsonl).

Fallback for tools that dump one message per line without any header:

    {"sender": "alice", "content": "hi", "ts": 1700000000}

Recognized keys: sender, content, senderName / name, ts / timestamp / time,
type (numeric message type), id, replyTo. Chat metadata comes from the
file name.
"""

import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from chatlog_ingest.logging import get_logger, log_forwarder
from chatlog_ingest.models import (
    FormatFeature,
    FormatSignatures,
    MessageType,
    ParsedMessage,
    ParsedMeta,
    ParseEvent,
    ParseOptions,
    ProgressStage,
)
from chatlog_ingest.parser.base import BatchBuffer, FormatModule, Parser
from chatlog_ingest.parser.formats.chatlab_jsonl import message_type
from chatlog_ingest.parser.utils import (
    ProgressThrottle,
    create_progress,
    decode_line,
    iter_lines,
    parse_timestamp,
)

logger = get_logger("parser.generic")

PLATFORM = "unknown"

feature = FormatFeature(
    id="generic_jsonl",
    name="Generic JSONL",
    platform=PLATFORM,
    priority=90,
    extensions=(".jsonl",),
    signatures=FormatSignatures(required_fields=("sender", "content")),
)


def _first(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if record.get(key) is not None:
            return record[key]
    return None


def message_from_line(record: dict[str, Any]) -> ParsedMessage | None:
    sender = record.get("sender")
    ts = parse_timestamp(_first(record, "ts", "timestamp", "time"))
    if sender is None or ts is None:
        return None

    name = _first(record, "senderName", "name")
    content = record.get("content")
    msg_id = record.get("id")
    reply_to = record.get("replyTo")
    return ParsedMessage(
        sender_platform_id=str(sender),
        sender_account_name="" if name is None else str(name),
        timestamp=ts,
        type=message_type(record.get("type", MessageType.TEXT)),
        content=None if content is None else str(content),
        platform_message_id=None if msg_id is None else str(msg_id),
        reply_to_message_id=None if reply_to is None else str(reply_to),
    )


class GenericJsonlParser(Parser):
    """Parser for header-less one-message-per-line JSONL logs."""

    feature = feature

    def _parse(self, options: ParseOptions, total_bytes: int) -> Iterator[ParseEvent]:
        emit_log = log_forwarder(logger, options.on_log)
        path = Path(options.file_path)
        yield ParseEvent.meta(ParsedMeta(name=path.stem, platform=PLATFORM))

        buffer = BatchBuffer(options.batch_size)
        throttle = ProgressThrottle(options.progress_interval, options.chunk_size)
        skipped = 0

        for line, position in iter_lines(path, options.chunk_size):
            text = decode_line(line)
            if not text:
                continue
            try:
                record = json.loads(text)
            except json.JSONDecodeError:
                record = None

            message = message_from_line(record) if isinstance(record, dict) else None
            if message is None:
                skipped += 1
                continue
            yield from buffer.add_message(message)

            if throttle.should_emit(position):
                yield ParseEvent.progress(
                    create_progress(ProgressStage.PARSING, position, total_bytes, buffer.messages_processed)
                )

        yield from buffer.flush()

        if skipped:
            emit_log("warning", f"Skipped {skipped} unreadable lines in {path}")


module = FormatModule(feature=feature, parser=GenericJsonlParser())
