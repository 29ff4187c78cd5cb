"""Parser for QQ legacy text exports (.txt).

The QQ desktop client's "export as text" writes a banner, then one record
per message: a header line with time, nickname and QQ number (or e-mail for
some accounts), followed by the content lines.

    消息记录（此消息记录为文本格式，不支持重新导入）
    ================================================================
    消息分组:我的QQ群
    ================================================================
    消息对象:Weekend Hiking
    ================================================================

    2023-01-01 12:00:00 Alice(10001)
    Hello everyone

Group nicknames change over time; each message keeps the nickname it was
sent under.
"""

import re
from collections.abc import Iterator
from pathlib import Path

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
    decode_line,
    iter_lines,
    parse_timestamp,
    read_file_head,
)

PLATFORM = "qq"

SYSTEM_IDS = ("10000", "1000000")

RECORD_HEADER = re.compile(
    r"^(?P<time>\d{4}-\d{1,2}-\d{1,2} \d{1,2}:\d{2}:\d{2}) (?P<nick>.*?)(?:\((?P<uin>\d+)\)|<(?P<mail>[^>]+)>)$"
)
CHAT_OBJECT = re.compile(r"消息对象[:：](?P<name>.+)")
CHAT_GROUP = re.compile(r"消息分组[:：](?P<group>.+)")

feature = FormatFeature(
    id="qq_txt",
    name="QQ text export",
    platform=PLATFORM,
    priority=31,
    extensions=(".txt",),
    signatures=FormatSignatures(
        head=(re.compile(r"消息记录（此消息记录为文本格式"), re.compile(r"(?m)^消息分组[:：]")),
        field_patterns={"object": CHAT_OBJECT},
    ),
)


def classify(content: str, sender_id: str) -> MessageType:
    text = content.strip()
    if sender_id in SYSTEM_IDS:
        return MessageType.SYSTEM
    if "撤回了一条消息" in text:
        return MessageType.RECALL
    if text == "[图片]":
        return MessageType.IMAGE
    if text == "[表情]":
        return MessageType.EMOJI
    if text.startswith("[文件]"):
        return MessageType.FILE
    if text == "[语音]":
        return MessageType.VOICE
    if text == "[视频]":
        return MessageType.VIDEO
    return MessageType.TEXT


def meta_from_head(head: str, fallback_name: str) -> ParsedMeta:
    name_match = CHAT_OBJECT.search(head)
    group_match = CHAT_GROUP.search(head)
    group = group_match.group("group").strip() if group_match else ""
    return ParsedMeta(
        name=name_match.group("name").strip() if name_match else fallback_name,
        platform=PLATFORM,
        type=ChatType.GROUP if "群" in group else ChatType.PRIVATE,
        extra={"qq_group": group} if group else {},
    )


class QQTextParser(Parser):
    """Parser for QQ text exports."""

    feature = feature

    def _parse(self, options: ParseOptions, total_bytes: int) -> Iterator[ParseEvent]:
        path = Path(options.file_path)
        yield ParseEvent.meta(meta_from_head(read_file_head(path), path.stem))

        buffer = BatchBuffer(options.batch_size)
        throttle = ProgressThrottle(options.progress_interval, options.chunk_size)
        pending: ParsedMessage | None = None
        lines: list[str] = []

        def finish() -> ParsedMessage:
            content = "\n".join(lines).strip("\n")
            pending.content = content
            pending.type = classify(content, pending.sender_platform_id)
            return pending

        for line, position in iter_lines(path, options.chunk_size):
            text = decode_line(line)
            match = RECORD_HEADER.match(text)
            if match is None:
                if pending is not None:
                    lines.append(text)
                continue

            ts = parse_timestamp(match.group("time"))
            if ts is None:
                continue

            if pending is not None:
                yield from buffer.add_message(finish())

            sender_id = match.group("uin") or match.group("mail")
            nick = match.group("nick").strip() or sender_id
            pending = ParsedMessage(
                sender_platform_id=sender_id,
                sender_account_name=nick,
                timestamp=ts,
                type=MessageType.TEXT,
                content="",
            )
            lines = []

            if throttle.should_emit(position):
                yield ParseEvent.progress(
                    create_progress(ProgressStage.PARSING, position, total_bytes, buffer.messages_processed)
                )

        if pending is not None:
            yield from buffer.add_message(finish())

        yield from buffer.flush()


module = FormatModule(feature=feature, parser=QQTextParser())
