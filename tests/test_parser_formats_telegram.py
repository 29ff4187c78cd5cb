"""Tests for the Telegram Desktop JSON parser."""

import json
from datetime import datetime
from pathlib import Path

import pytest

from chatlog_ingest.errors import ParseError
from chatlog_ingest.models import ChatType, MessageType, ParseEvent, ParseOptions
from chatlog_ingest.parser.formats.telegram import TelegramParser, classify, render_text


def collect(events: list[ParseEvent], kind: str) -> list:
    return [item for e in events if e.type == kind for item in e.data]


@pytest.fixture
def export_file(tmp_path: Path) -> Path:
    """Provide a Telegram group export."""
    data = {
        "name": "Hiking Club",
        "type": "private_supergroup",
        "id": 4242,
        "messages": [
            {"id": 1, "type": "service", "date": "2023-11-14T22:13:20", "date_unixtime": "1700000000",
             "actor": "Alice", "actor_id": "user1", "action": "create_group", "text": ""},
            {"id": 2, "type": "message", "date_unixtime": "1700000010", "from": "Alice", "from_id": "user1",
             "text": "Hello"},
            {"id": 3, "type": "message", "date_unixtime": "1700000020", "from": "Bob", "from_id": "user2",
             "text": ["see ", {"type": "link", "text": "https://example.org"}]},
            {"id": 4, "type": "message", "date_unixtime": "1700000030", "from": "Bob", "from_id": "user2",
             "photo": "photos/p1.jpg", "text": ""},
            {"id": 5, "type": "message", "date_unixtime": "1700000040", "from": "Alice", "from_id": "user1",
             "file": "stickers/s.webp", "media_type": "sticker", "sticker_emoji": "+", "text": ""},
            {"id": 6, "type": "message", "date_unixtime": "1700000050", "from": "Alicia", "from_id": "user1",
             "reply_to_message_id": 2, "text": "replying"},
            {"id": 7, "type": "message", "date_unixtime": "1700000060", "from": "Bob", "from_id": "user2",
             "file": "voice/v.ogg", "media_type": "voice_message", "text": ""},
            {"id": 8, "type": "message", "date": "not a date", "from": "Bob", "from_id": "user2", "text": "lost"},
        ],
    }
    path = tmp_path / "result.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestHelpers:
    """Tests for text flattening and classification."""

    def test_render_text_string(self) -> None:
        assert render_text("plain") == "plain"

    def test_render_text_entities(self) -> None:
        assert render_text(["a ", {"type": "bold", "text": "b"}, " c"]) == "a b c"

    def test_render_text_missing(self) -> None:
        assert render_text(None) == ""

    @pytest.mark.parametrize(
        ("msg", "expected"),
        [
            ({"type": "service"}, MessageType.SYSTEM),
            ({"photo": "p.jpg"}, MessageType.IMAGE),
            ({"media_type": "video_file", "file": "v.mp4"}, MessageType.VIDEO),
            ({"media_type": "animation", "file": "a.mp4"}, MessageType.VIDEO),
            ({"file": "doc.pdf"}, MessageType.FILE),
            ({"location_information": {"latitude": 1}}, MessageType.LOCATION),
            ({"contact_information": {"first_name": "A"}}, MessageType.CONTACT),
            ({"poll": {"question": "?"}}, MessageType.OTHER),
            ({"forwarded_from": "Channel", "text": "x"}, MessageType.FORWARD),
            ({"reply_to_message_id": 3, "text": "x"}, MessageType.REPLY),
            ({"text": "x"}, MessageType.TEXT),
        ],
    )
    def test_classify(self, msg: dict, expected: MessageType) -> None:
        assert classify(msg) == expected


class TestTelegramParser:
    """Tests for TelegramParser."""

    def test_meta(self, export_file: Path) -> None:
        events = list(TelegramParser().parse(ParseOptions(file_path=export_file)))
        meta = events[0].data

        assert events[0].type == "meta"
        assert meta.name == "Hiking Club"
        assert meta.platform == "telegram"
        assert meta.type == ChatType.GROUP
        assert meta.group_id == "4242"

    def test_messages(self, export_file: Path) -> None:
        events = list(TelegramParser().parse(ParseOptions(file_path=export_file)))
        messages = collect(events, "messages")

        assert [m.type for m in messages] == [
            MessageType.SYSTEM,
            MessageType.TEXT,
            MessageType.TEXT,
            MessageType.IMAGE,
            MessageType.EMOJI,
            MessageType.REPLY,
            MessageType.VOICE,
        ]
        assert messages[0].content == "Alice create group"
        assert messages[2].content == "see https://example.org"
        assert messages[3].content == "[Photo]"
        assert messages[5].reply_to_message_id == "2"
        assert messages[1].timestamp == 1700000010
        assert messages[1].platform_message_id == "2"

    def test_renamed_member_re_emitted(self, export_file: Path) -> None:
        events = list(TelegramParser().parse(ParseOptions(file_path=export_file)))
        members = collect(events, "members")

        assert [(m.platform_id, m.account_name) for m in members] == [
            ("user1", "Alice"),
            ("user2", "Bob"),
            ("user1", "Alicia"),
        ]

    def test_members_precede_their_messages(self, export_file: Path) -> None:
        events = list(TelegramParser().parse(ParseOptions(file_path=export_file, batch_size=2)))
        seen: set[str] = set()

        for event in events:
            if event.type == "members":
                seen.update(m.platform_id for m in event.data)
            elif event.type == "messages":
                assert {m.sender_platform_id for m in event.data} <= seen

    def test_undated_message_skipped(self, export_file: Path) -> None:
        logs: list[tuple[str, str]] = []
        events = list(TelegramParser().parse(ParseOptions(file_path=export_file, on_log=lambda *a: logs.append(a))))

        assert len(collect(events, "messages")) == 7
        assert any("Skipped 1" in msg for _, msg in logs)

    def test_date_fallback(self, tmp_path: Path) -> None:
        path = tmp_path / "result.json"
        path.write_text(json.dumps({
            "name": "Bob", "type": "personal_chat", "id": 7,
            "messages": [{"id": 1, "type": "message", "date": "2023-11-14T22:13:20", "from": "Bob",
                          "from_id": "user2", "text": "hi"}],
        }))

        events = list(TelegramParser().parse(ParseOptions(file_path=path)))

        assert collect(events, "messages")[0].timestamp == int(datetime(2023, 11, 14, 22, 13, 20).timestamp())
        assert events[0].data.type == ChatType.PRIVATE
        assert events[0].data.group_id is None

    def test_no_messages(self, tmp_path: Path) -> None:
        path = tmp_path / "result.json"
        path.write_text(json.dumps({"name": "Empty", "type": "private_group", "id": 1, "messages": []}))

        events = list(TelegramParser().parse(ParseOptions(file_path=path)))

        assert [e.type for e in events] == ["meta", "progress"]
        assert events[0].data.name == "Empty"

    def test_truncated_export(self, tmp_path: Path) -> None:
        path = tmp_path / "result.json"
        path.write_text('{"name": "x", "type": "personal_chat", "id": 1, "messages": [{"id": 1,')

        events = list(TelegramParser().parse(ParseOptions(file_path=path)))

        assert [e.type for e in events] == ["error"]
        assert isinstance(events[0].data, ParseError)
