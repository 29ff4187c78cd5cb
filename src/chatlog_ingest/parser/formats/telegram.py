"""Parser for Telegram Desktop chat exports (result.json).

The export is one JSON object:
- name: Chat title
- type: Chat kind (personal_chat, private_group, public_supergroup, ...)
- id: Numeric chat id
- messages: Array of message objects
  - id, type ("message" or "service"), date, date_unixtime
  - from / from_id: Sender display name and id (actor / actor_id for services)
  - text: String, or array of strings and entity objects with a "text" key
  - photo, file, media_type, sticker_emoji: Media attachments
  - reply_to_message_id, forwarded_from: Threading details

The document is streamed with ijson so only one message object is held in
memory. Telegram writes name/type/id before the messages array, so the
metadata is complete by the time the first message arrives.
"""

import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from chatlog_ingest.errors import ParseError
from chatlog_ingest.logging import get_logger, log_forwarder
from chatlog_ingest.models import (
    ChatType,
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
from chatlog_ingest.parser.utils import (
    ProgressThrottle,
    create_progress,
    iter_json_objects,
    parse_timestamp,
)

logger = get_logger("parser.telegram")

PLATFORM = "telegram"

PRIVATE_CHAT_TYPES = ("personal_chat", "bot_chat", "saved_messages")
CHAT_TYPES = PRIVATE_CHAT_TYPES + (
    "private_group",
    "private_supergroup",
    "public_supergroup",
    "private_channel",
    "public_channel",
)

MEDIA_TYPES = {
    "sticker": MessageType.EMOJI,
    "voice_message": MessageType.VOICE,
    "audio_file": MessageType.VOICE,
    "video_file": MessageType.VIDEO,
    "video_message": MessageType.VIDEO,
    "animation": MessageType.VIDEO,
}

_STREAM_TARGETS = {
    "name": "name",
    "type": "type",
    "id": "id",
    "messages.item": "message",
}

feature = FormatFeature(
    id="telegram_json",
    name="Telegram Desktop JSON",
    platform=PLATFORM,
    priority=20,
    extensions=(".json",),
    signatures=FormatSignatures(
        required_fields=("name", "type", "id", "messages"),
        field_patterns={
            "type": re.compile(r'"type"\s*:\s*"(?:' + "|".join(CHAT_TYPES) + r')"'),
        },
    ),
)


def render_text(text: Any) -> str:
    """Flatten Telegram's text field (string or entity array) to plain text."""
    if isinstance(text, str):
        return text
    if isinstance(text, list):
        parts = []
        for part in text:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict):
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return ""


def classify(msg: dict[str, Any]) -> MessageType:
    """Map a Telegram message object to a normalized message type."""
    if msg.get("type") == "service":
        return MessageType.SYSTEM
    if "photo" in msg:
        return MessageType.IMAGE

    media_type = msg.get("media_type")
    if media_type in MEDIA_TYPES:
        return MEDIA_TYPES[media_type]
    if "file" in msg:
        return MessageType.FILE
    if "location_information" in msg:
        return MessageType.LOCATION
    if "contact_information" in msg:
        return MessageType.CONTACT
    if "poll" in msg or media_type:
        return MessageType.OTHER
    if msg.get("forwarded_from"):
        return MessageType.FORWARD
    if msg.get("reply_to_message_id") is not None:
        return MessageType.REPLY
    return MessageType.TEXT


def _fallback_content(msg: dict[str, Any], msg_type: MessageType) -> str | None:
    """Describe non-text messages the way Telegram's own viewer labels them."""
    if msg_type == MessageType.SYSTEM:
        actor = msg.get("actor") or ""
        action = str(msg.get("action", "")).replace("_", " ")
        return f"{actor} {action}".strip() or None
    if msg_type == MessageType.EMOJI and msg.get("sticker_emoji"):
        return f"[Sticker {msg['sticker_emoji']}]"
    if msg_type == MessageType.IMAGE:
        return "[Photo]"
    if msg_type == MessageType.FILE:
        return f"[File: {msg.get('file_name') or msg.get('file')}]"
    return None


def message_from_telegram(msg: dict[str, Any]) -> ParsedMessage | None:
    """Convert one Telegram message object, or None if it has no usable date."""
    ts = parse_timestamp(msg.get("date_unixtime"))
    if ts is None:
        ts = parse_timestamp(msg.get("date"))
    if ts is None:
        return None

    msg_type = classify(msg)
    is_service = msg.get("type") == "service"
    name = msg.get("actor") if is_service else msg.get("from")
    sender_id = msg.get("actor_id") if is_service else msg.get("from_id")
    if sender_id is None:
        sender_id = name or ("system" if is_service else "unknown")
    if not name:
        name = str(sender_id)

    content = render_text(msg.get("text")) or _fallback_content(msg, msg_type)

    extra: dict[str, Any] = {}
    for key in ("photo", "file", "media_type", "forwarded_from", "edited_unixtime", "action"):
        if msg.get(key) is not None:
            extra[key] = msg[key]

    reply_to = msg.get("reply_to_message_id")
    return ParsedMessage(
        sender_platform_id=str(sender_id),
        sender_account_name=str(name),
        timestamp=ts,
        type=msg_type,
        content=content,
        platform_message_id=None if msg.get("id") is None else str(msg["id"]),
        reply_to_message_id=None if reply_to is None else str(reply_to),
        extra=extra,
    )


def meta_from_header(header: dict[str, Any], fallback_name: str) -> ParsedMeta:
    chat_type = header.get("type")
    is_private = chat_type in PRIVATE_CHAT_TYPES
    chat_id = header.get("id")
    return ParsedMeta(
        name=str(header.get("name") or fallback_name),
        platform=PLATFORM,
        type=ChatType.PRIVATE if is_private else ChatType.GROUP,
        group_id=None if is_private or chat_id is None else str(chat_id),
        extra={"telegram_type": chat_type} if chat_type else {},
    )


class TelegramParser(Parser):
    """Parser for Telegram Desktop JSON exports."""

    feature = feature

    def _parse(self, options: ParseOptions, total_bytes: int) -> Iterator[ParseEvent]:
        emit_log = log_forwarder(logger, options.on_log)
        path = Path(options.file_path)
        buffer = BatchBuffer(options.batch_size)
        throttle = ProgressThrottle(options.progress_interval, options.chunk_size)
        header: dict[str, Any] = {}
        meta_emitted = False
        skipped = 0

        with open(path, "rb") as f:
            try:
                for kind, value in iter_json_objects(f, _STREAM_TARGETS):
                    if kind != "message":
                        header.setdefault(kind, value)
                        continue

                    if not meta_emitted:
                        meta_emitted = True
                        yield ParseEvent.meta(meta_from_header(header, path.stem))

                    message = message_from_telegram(value) if isinstance(value, dict) else None
                    if message is None:
                        skipped += 1
                        continue
                    yield from buffer.add_message(message)

                    position = f.tell()
                    if throttle.should_emit(position):
                        yield ParseEvent.progress(
                            create_progress(ProgressStage.PARSING, position, total_bytes, buffer.messages_processed)
                        )
            except ValueError as exc:
                # ijson's JSONError and IncompleteJSONError are ValueErrors
                raise ParseError(f"Invalid Telegram export {path}: {exc}") from exc

        if not meta_emitted:
            yield ParseEvent.meta(meta_from_header(header, path.stem))

        yield from buffer.flush()

        if skipped:
            emit_log("warning", f"Skipped {skipped} Telegram messages without a usable date in {path}")


module = FormatModule(feature=feature, parser=TelegramParser())
