"""Parser for ChatLab line-delimited exports (.jsonl).

Each line is a JSON object tagged by ``_type``:
- header: ``{"_type": "header", "chatlab": {...}, "meta": {...}}``
- member: ``{"_type": "member", "platformId": ..., "accountName": ..., ...}``
- message: ``{"_type": "message", "sender": ..., "timestamp": ..., "type": 0, "content": ...}``

The header normally comes first. Files without one get metadata derived
from the file name. Malformed lines are skipped and reported through the
log callback.
"""

import json
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from chatlog_ingest.logging import get_logger, log_forwarder
from chatlog_ingest.models import (
    ChatType,
    FormatFeature,
    FormatSignatures,
    MessageType,
    ParsedMember,
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
    decode_line,
    iter_lines,
    parse_timestamp,
)

logger = get_logger("parser.chatlab")

PLATFORM = "chatlab"

# Number of malformed lines reported individually before summarizing
MAX_REPORTED_SKIPS = 3

feature = FormatFeature(
    id="chatlab_jsonl",
    name="ChatLab JSONL",
    platform=PLATFORM,
    priority=1,
    extensions=(".jsonl",),
    signatures=FormatSignatures(
        head=(re.compile(r'"_type"\s*:\s*"header"'),),
        required_fields=("chatlab", "meta"),
    ),
)


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _roles(value: Any) -> list[str]:
    """Roles may be plain strings or ``{"id": ..., "name": ...}`` objects."""
    if not isinstance(value, list):
        return []
    roles = []
    for role in value:
        if isinstance(role, dict):
            role = role.get("id") or role.get("name")
        if role:
            roles.append(str(role))
    return roles


def meta_from_record(data: dict[str, Any], fallback_name: str) -> ParsedMeta:
    """Build ParsedMeta from a ChatLab ``meta`` object."""
    chat_type = data.get("type")
    return ParsedMeta(
        name=str(data.get("name") or fallback_name),
        platform=str(data.get("platform") or PLATFORM),
        type=chat_type if chat_type in (ChatType.GROUP, ChatType.PRIVATE) else ChatType.GROUP,
        group_id=_optional_str(data.get("groupId")),
        group_avatar=_optional_str(data.get("groupAvatar")),
        owner_id=_optional_str(data.get("ownerId")),
        extra={k: v for k, v in data.items() if k not in ("name", "platform", "type", "groupId", "groupAvatar", "ownerId")},
    )


def member_from_record(data: dict[str, Any]) -> ParsedMember | None:
    """Build ParsedMember from a ChatLab member object, or None if it has no id."""
    platform_id = _optional_str(data.get("platformId"))
    if platform_id is None:
        return None
    aliases = data.get("aliases")
    return ParsedMember(
        platform_id=platform_id,
        account_name=str(data.get("accountName") or platform_id),
        group_nickname=_optional_str(data.get("groupNickname")),
        aliases=[str(a) for a in aliases] if isinstance(aliases, list) else [],
        avatar=_optional_str(data.get("avatar")),
        roles=_roles(data.get("roles")),
    )


def message_type(value: Any) -> MessageType:
    try:
        return MessageType(int(value))
    except (TypeError, ValueError):
        return MessageType.OTHER


def message_from_record(data: dict[str, Any]) -> ParsedMessage | None:
    """Build ParsedMessage from a ChatLab message object.

    Returns None when the sender or timestamp is missing or unreadable. A
    missing account name is left empty for BatchBuffer to resolve.
    """
    sender = _optional_str(data.get("sender"))
    ts = parse_timestamp(data.get("timestamp"))
    if sender is None or ts is None:
        return None

    content = data.get("content")
    return ParsedMessage(
        sender_platform_id=sender,
        sender_account_name=str(data.get("accountName") or ""),
        sender_group_nickname=_optional_str(data.get("groupNickname")),
        timestamp=ts,
        type=message_type(data.get("type", MessageType.TEXT)),
        content=None if content is None else str(content),
        platform_message_id=_optional_str(data.get("platformMessageId")),
        reply_to_message_id=_optional_str(data.get("replyToMessageId")),
    )


def parse_chatlab_lines(options: ParseOptions, total_bytes: int, fallback_name: str) -> Iterator[ParseEvent]:
    """Stream ChatLab JSONL records from ``options.file_path``.

    Shared by the JSONL format and the preprocessed form of ChatLab JSON.

    Args:
        options: Parse options
        total_bytes: Size of the file being read
        fallback_name: Chat name used when no header supplies one

    Yields:
        ParseEvents (meta, members, messages, progress)
    """
    emit_log = log_forwarder(logger, options.on_log)
    buffer = BatchBuffer(options.batch_size)
    throttle = ProgressThrottle(options.progress_interval, options.chunk_size)
    meta_emitted = False
    skipped = 0

    for line, position in iter_lines(options.file_path, options.chunk_size):
        text = decode_line(line)
        if not text:
            continue

        try:
            record = json.loads(text)
        except json.JSONDecodeError:
            record = None

        kind = record.get("_type") if isinstance(record, dict) else None
        if kind == "header":
            if meta_emitted:
                emit_log("warning", f"Ignoring header found after content at byte {position}")
                continue
            meta_emitted = True
            yield ParseEvent.meta(meta_from_record(record.get("meta") or {}, fallback_name))
            continue

        events: list[ParseEvent] | None = None
        if kind == "member":
            member = member_from_record(record)
            if member is not None:
                events = buffer.add_member(member)
        elif kind == "message":
            message = message_from_record(record)
            if message is not None:
                events = buffer.add_message(message)
        elif kind is not None:
            # Unknown record kinds from newer exporters
            continue

        if events is None:
            skipped += 1
            if skipped <= MAX_REPORTED_SKIPS:
                emit_log("warning", f"Skipping malformed line ending at byte {position}")
            continue

        if not meta_emitted:
            meta_emitted = True
            yield ParseEvent.meta(ParsedMeta(name=fallback_name, platform=PLATFORM))

        yield from events

        if throttle.should_emit(position):
            yield ParseEvent.progress(
                create_progress(ProgressStage.PARSING, position, total_bytes, buffer.messages_processed)
            )

    if not meta_emitted:
        yield ParseEvent.meta(ParsedMeta(name=fallback_name, platform=PLATFORM))

    yield from buffer.flush()

    if skipped > MAX_REPORTED_SKIPS:
        emit_log("warning", f"Skipped {skipped} malformed lines in {options.file_path}")


class ChatLabJsonlParser(Parser):
    """Parser for ChatLab JSONL exports."""

    feature = feature

    def _parse(self, options: ParseOptions, total_bytes: int) -> Iterator[ParseEvent]:
        return parse_chatlab_lines(options, total_bytes, Path(options.file_path).stem)


module = FormatModule(feature=feature, parser=ChatLabJsonlParser())
