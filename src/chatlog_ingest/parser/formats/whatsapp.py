"""Parser for WhatsApp plain-text chat exports (.txt).

WhatsApp writes one record per message, continuing multi-line messages on
the following lines. Two line layouts exist:

    [31/12/2023, 21:15:32] Alice: Happy new year       (iOS)
    31/12/2023, 21:15 - Alice: Happy new year          (Android)

Date order (day/month vs month/day) follows the phone's locale and is not
written anywhere, so it is inferred from the dates in the head window.
Lines without a "Name: " part are system notices. Senders are identified by
display name, which is all the export provides.
"""

import re
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

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
    iter_lines,
    read_file_head,
)

logger = get_logger("parser.whatsapp")

PLATFORM = "whatsapp"

SYSTEM_SENDER = "system"

_DATE = r"(?P<date>\d{1,4}[./-]\d{1,2}[./-]\d{1,4})"
_TIME = r"(?P<time>\d{1,2}:\d{2}(?::\d{2})?(?:\s?[APap]\.?\s?[Mm]\.?)?)"

BRACKET_LINE = re.compile(rf"^\[{_DATE},\s*{_TIME}\]\s(?P<rest>.*)$")
DASH_LINE = re.compile(rf"^{_DATE},\s*{_TIME}\s[-–]\s(?P<rest>.*)$")

HEAD_BRACKET = re.compile("(?m)^\u200e?" r"\[\d{1,4}[./-]\d{1,2}[./-]\d{1,4},\s*\d{1,2}:\d{2}[^\]\n]*\]\s")
HEAD_DASH = re.compile(r"(?m)^\d{1,4}[./-]\d{1,2}[./-]\d{1,4},\s*\d{1,2}:\d{2}[^\n]{0,12}?\s[-–]\s")

FILE_NAME_PREFIXES = ("WhatsApp Chat with ", "WhatsApp Chat - ", "WhatsApp-Chat mit ")

MEDIA_MARKERS = {
    "image omitted": MessageType.IMAGE,
    "video omitted": MessageType.VIDEO,
    "gif omitted": MessageType.VIDEO,
    "audio omitted": MessageType.VOICE,
    "sticker omitted": MessageType.EMOJI,
    "document omitted": MessageType.FILE,
    "contact card omitted": MessageType.CONTACT,
    "<media omitted>": MessageType.OTHER,
}

DELETED_MARKERS = ("this message was deleted", "you deleted this message")

feature = FormatFeature(
    id="whatsapp_txt",
    name="WhatsApp text export",
    platform=PLATFORM,
    priority=30,
    extensions=(".txt",),
    signatures=FormatSignatures(head=(HEAD_BRACKET, HEAD_DASH)),
)


def normalize_line(text: str) -> str:
    """Drop direction marks and odd spaces WhatsApp inserts around timestamps."""
    return text.replace("\u200e", "").replace("\u200f", "").replace("\u202f", " ").replace("\xa0", " ")


def match_record(text: str) -> re.Match[str] | None:
    return BRACKET_LINE.match(text) or DASH_LINE.match(text)


def infer_day_first(head: str) -> bool:
    """Guess date order from the dates in the head window.

    A first field above 12 means day-first, a second field above 12 means
    month-first. With no evidence, day-first (the more common locale) wins.
    """
    for line in head.splitlines():
        match = match_record(normalize_line(line))
        if match is None:
            continue
        parts = re.split(r"[./-]", match.group("date"))
        if len(parts[0]) == 4:
            continue
        if int(parts[0]) > 12:
            return True
        if int(parts[1]) > 12:
            return False
    return True


def parse_datetime(date_text: str, time_text: str, day_first: bool) -> int:
    """Convert WhatsApp's date and time fields to a Unix timestamp (local time)."""
    fields = re.split(r"[./-]", date_text)
    parts = [int(p) for p in fields]
    if len(fields[0]) == 4:
        year, month, day = parts
    elif day_first:
        day, month, year = parts
    else:
        month, day, year = parts
    if year < 100:
        year += 2000

    clock = time_text.strip().lower().replace(".", "").replace(" ", "")
    meridiem = None
    if clock.endswith(("am", "pm")):
        meridiem = clock[-2:]
        clock = clock[:-2]
    clock_parts = [int(p) for p in clock.split(":")]
    hour, minute = clock_parts[0], clock_parts[1]
    second = clock_parts[2] if len(clock_parts) > 2 else 0
    if meridiem == "pm" and hour < 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0

    return int(datetime(year, month, day, hour, minute, second).timestamp())


def classify(content: str) -> MessageType:
    lowered = content.strip().lower()
    if lowered in DELETED_MARKERS:
        return MessageType.RECALL
    if lowered in MEDIA_MARKERS:
        return MEDIA_MARKERS[lowered]
    if lowered.startswith("<attached:"):
        return MessageType.FILE
    if lowered.startswith("location: "):
        return MessageType.LOCATION
    return MessageType.TEXT


def finish(message: ParsedMessage) -> ParsedMessage:
    """Classify a message once all of its continuation lines are in."""
    if message.type != MessageType.SYSTEM:
        message.type = classify(message.content or "")
    return message


def chat_name_from_path(path: Path) -> str:
    name = path.stem
    for prefix in FILE_NAME_PREFIXES:
        if name.startswith(prefix):
            return name[len(prefix):]
    return name


def infer_chat_type(head: str) -> str:
    """More than two distinct senders in the head window means a group chat."""
    senders = set()
    for line in head.splitlines():
        match = match_record(normalize_line(line))
        if match is not None and ": " in match.group("rest"):
            senders.add(match.group("rest").split(": ", 1)[0])
    return ChatType.GROUP if len(senders) > 2 else ChatType.PRIVATE


class WhatsAppParser(Parser):
    """Parser for WhatsApp text exports."""

    feature = feature

    def _parse(self, options: ParseOptions, total_bytes: int) -> Iterator[ParseEvent]:
        emit_log = log_forwarder(logger, options.on_log)
        path = Path(options.file_path)
        head = read_file_head(path)
        day_first = infer_day_first(head)
        yield ParseEvent.meta(
            ParsedMeta(
                name=chat_name_from_path(path),
                platform=PLATFORM,
                type=infer_chat_type(head),
                extra={"day_first": day_first},
            )
        )

        buffer = BatchBuffer(options.batch_size)
        throttle = ProgressThrottle(options.progress_interval, options.chunk_size)
        pending: ParsedMessage | None = None
        bad_dates = 0

        for line, position in iter_lines(path, options.chunk_size):
            text = normalize_line(line.decode("utf-8", errors="replace")).lstrip("\ufeff")
            match = match_record(text)

            if match is None:
                # Continuation of a multi-line message
                if pending is not None:
                    pending.content = f"{pending.content}\n{text}"
                continue

            if pending is not None:
                yield from buffer.add_message(finish(pending))
                pending = None

            try:
                ts = parse_datetime(match.group("date"), match.group("time"), day_first)
            except ValueError:
                bad_dates += 1
                continue

            rest = match.group("rest")
            if ": " in rest:
                sender, content = rest.split(": ", 1)
                pending = ParsedMessage(
                    sender_platform_id=sender,
                    sender_account_name=sender,
                    timestamp=ts,
                    type=MessageType.TEXT,
                    content=content,
                )
            else:
                pending = ParsedMessage(
                    sender_platform_id=SYSTEM_SENDER,
                    sender_account_name="System",
                    timestamp=ts,
                    type=MessageType.SYSTEM,
                    content=rest,
                )

            if throttle.should_emit(position):
                yield ParseEvent.progress(
                    create_progress(ProgressStage.PARSING, position, total_bytes, buffer.messages_processed)
                )

        if pending is not None:
            yield from buffer.add_message(finish(pending))

        yield from buffer.flush()

        if bad_dates:
            emit_log("warning", f"Skipped {bad_dates} WhatsApp records with invalid dates in {path}")


module = FormatModule(feature=feature, parser=WhatsAppParser())
