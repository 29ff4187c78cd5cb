"""Tests for the generic JSONL parser."""

import json
from pathlib import Path

from chatlog_ingest.models import MessageType, ParseEvent, ParseOptions
from chatlog_ingest.parser.formats.generic_jsonl import GenericJsonlParser, message_from_line


def collect(events: list[ParseEvent], kind: str) -> list:
    return [item for e in events if e.type == kind for item in e.data]


class TestMessageFromLine:
    """Tests for record conversion."""

    def test_alternate_keys(self) -> None:
        message = message_from_line({"sender": 7, "name": "Seven", "content": "x", "timestamp": "1700000000", "id": 3})

        assert message.sender_platform_id == "7"
        assert message.sender_account_name == "Seven"
        assert message.timestamp == 1700000000
        assert message.platform_message_id == "3"

    def test_type_and_reply(self) -> None:
        message = message_from_line({"sender": "a", "content": "", "time": 1, "type": 1, "replyTo": "m0"})

        assert message.type == MessageType.IMAGE
        assert message.reply_to_message_id == "m0"

    def test_unknown_type(self) -> None:
        message = message_from_line({"sender": "a", "content": "x", "ts": 1, "type": "sticker"})

        assert message.type == MessageType.OTHER

    def test_requires_sender_and_time(self) -> None:
        assert message_from_line({"content": "x", "ts": 1}) is None
        assert message_from_line({"sender": "a", "content": "x"}) is None


class TestGenericJsonlParser:
    """Tests for GenericJsonlParser."""

    def test_meta_from_file_name(self, tmp_path: Path) -> None:
        path = tmp_path / "support-desk.jsonl"
        path.write_text(json.dumps({"sender": "a", "content": "hi", "ts": 1}) + "\n")

        events = list(GenericJsonlParser().parse(ParseOptions(file_path=path)))

        assert events[0].data.name == "support-desk"
        assert events[0].data.platform == "unknown"

    def test_malformed_lines_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "log.jsonl"
        path.write_text(
            json.dumps({"sender": "a", "content": "one", "ts": 1}) + "\n"
            "{broken\n"
            "[1, 2]\n"
            "\n"
            + json.dumps({"sender": "b", "senderName": "Bee", "content": "two", "ts": 2}) + "\n"
        )
        logs: list[tuple[str, str]] = []

        events = list(GenericJsonlParser().parse(ParseOptions(file_path=path, on_log=lambda *a: logs.append(a))))

        assert [m.content for m in collect(events, "messages")] == ["one", "two"]
        assert [m.account_name for m in collect(events, "members")] == ["a", "Bee"]
        assert any("Skipped 2" in msg for _, msg in logs)
