"""Tests for format sniffing and diagnosis."""

import json
import re
from pathlib import Path

import pytest

from chatlog_ingest.models import FormatFeature
from chatlog_ingest.parser.base import FormatModule
from chatlog_ingest.parser.formats import FORMATS, chatlab_json, chatlab_jsonl, telegram, whatsapp
from chatlog_ingest.parser.sniffer import (
    FormatSniffer,
    check_feature,
    field_present,
    matches_feature,
)


@pytest.fixture
def sniffer() -> FormatSniffer:
    """Provide a sniffer with every built-in format."""
    s = FormatSniffer()
    s.register_all(FORMATS)
    return s


def write_json(path: Path, data: object) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestFieldPresent:
    """Tests for the textual required-field heuristic."""

    def test_plain_key(self) -> None:
        assert field_present('{"meta": {}}', "meta") is True

    def test_key_with_spacing(self) -> None:
        assert field_present('{"meta"   :\n {}}', "meta") is True

    def test_missing_key(self) -> None:
        assert field_present('{"other": 1}', "meta") is False

    def test_quoted_value_also_counts(self) -> None:
        """The heuristic accepts the quoted name anywhere, even as a value."""
        assert field_present('{"kind": "meta"}', "meta") is True

    def test_dotted_name(self) -> None:
        head = '{"meta": {"name": "Chat", "platform": "qq"}}'

        assert field_present(head, "meta.name") is True
        assert field_present(head, "meta.owner") is False


class TestRegistry:
    """Tests for registration order."""

    def test_formats_sorted_by_priority(self, sniffer: FormatSniffer) -> None:
        ids = [f.id for f in sniffer.get_supported_formats()]

        assert ids == ["chatlab_jsonl", "chatlab_json", "telegram_json", "whatsapp_txt", "qq_txt", "generic_jsonl"]

    def test_equal_priority_keeps_registration_order(self) -> None:
        s = FormatSniffer()
        for name in ("first", "second", "third"):
            feature = FormatFeature(id=name, name=name, platform="t", priority=5, extensions=(".x",))
            s.register(FormatModule(feature=feature, parser=chatlab_jsonl.module.parser))

        assert [f.id for f in s.get_supported_formats()] == ["first", "second", "third"]

    def test_get_parser_by_id(self, sniffer: FormatSniffer) -> None:
        assert sniffer.get_parser_by_id("telegram_json") is telegram.module.parser
        assert sniffer.get_parser_by_id("nope") is None

    def test_priority_decides_between_matches(self, tmp_path: Path) -> None:
        """When two formats match, the lower priority value wins."""
        loose = FormatFeature(id="loose", name="Loose", platform="t", priority=50, extensions=(".jsonl",))
        s = FormatSniffer()
        s.register(FormatModule(feature=loose, parser=chatlab_jsonl.module.parser))
        s.register(chatlab_jsonl.module)

        path = tmp_path / "chat.jsonl"
        path.write_text('{"_type": "header", "chatlab": {}, "meta": {}}\n')

        assert s.sniff(path).id == "chatlab_jsonl"


class TestSniff:
    """Tests for detection of each built-in format."""

    def test_chatlab_jsonl(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = tmp_path / "chat.jsonl"
        path.write_text('{"_type": "header", "chatlab": {"version": "0.0.2"}, "meta": {"name": "x"}}\n')

        assert sniffer.sniff(path).id == "chatlab_jsonl"

    def test_chatlab_json(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = write_json(tmp_path / "chat.json", {"chatlab": {"version": "0.0.2"}, "meta": {"name": "x"}, "messages": []})

        assert sniffer.sniff(path).id == "chatlab_json"

    def test_telegram(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = write_json(tmp_path / "result.json", {"name": "Group", "type": "private_supergroup", "id": 1, "messages": []})

        assert sniffer.sniff(path).id == "telegram_json"

    def test_whatsapp(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = tmp_path / "chat.txt"
        path.write_text("[31/12/2023, 21:15:32] Alice: Happy new year\n")

        assert sniffer.sniff(path).id == "whatsapp_txt"

    def test_qq(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = tmp_path / "qq.txt"
        path.write_text("消息记录（此消息记录为文本格式，不支持重新导入）\n\n消息分组:我的QQ群\n消息对象:Hiking\n", encoding="utf-8")

        assert sniffer.sniff(path).id == "qq_txt"

    def test_generic_jsonl(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = tmp_path / "log.jsonl"
        path.write_text('{"sender": "a", "content": "hi", "ts": 1}\n')

        assert sniffer.sniff(path).id == "generic_jsonl"

    def test_unsupported_extension(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        """No format accepts .csv, whatever the content."""
        path = tmp_path / "chat.csv"
        path.write_text('{"_type": "header", "chatlab": {}, "meta": {}}\n')

        assert sniffer.sniff(path) is None
        assert sniffer.get_parser(path) is None

    def test_extension_is_case_insensitive(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = tmp_path / "CHAT.JSONL"
        path.write_text('{"_type": "header", "chatlab": {}, "meta": {}}\n')

        assert sniffer.sniff(path).id == "chatlab_jsonl"

    def test_missing_file_sniffs_as_none(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        assert sniffer.sniff(tmp_path / "missing.json") is None

    def test_field_beyond_head_window_is_missed(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        """Detection only sees the head window."""
        path = tmp_path / "late.json"
        path.write_text('{"padding": "' + "x" * 10000 + '", "chatlab": {}, "meta": {}}')

        assert sniffer.sniff(path) is None


class TestCheckFeature:
    """Tests for per-step match checks."""

    def test_extension_mismatch_skips_other_steps(self) -> None:
        check = check_feature(chatlab_json.feature, ".txt", '{"chatlab": {}}')

        assert check.extension_match is False
        assert check.head_signature_match is None
        assert check.required_fields_match is None
        assert check.full_match is False

    def test_reports_every_step(self) -> None:
        check = check_feature(chatlab_json.feature, ".json", '{"meta": {}}')

        assert check.head_signature_match is False
        assert check.required_fields_match is False
        assert check.missing_fields == ["chatlab"]

    def test_agrees_with_matches_feature(self) -> None:
        head = '{"name": "G", "type": "public_channel", "id": 5, "messages": []}'
        for feature in (telegram.feature, chatlab_json.feature, whatsapp.feature):
            for ext in (".json", ".txt"):
                assert check_feature(feature, ext, head).full_match is matches_feature(feature, ext, head)


class TestDiagnose:
    """Tests for diagnosis."""

    def test_recognized(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = tmp_path / "chat.jsonl"
        path.write_text('{"_type": "header", "chatlab": {}, "meta": {}}\n')

        diagnosis = sniffer.diagnose(path)

        assert diagnosis.recognized is True
        assert diagnosis.matched_format.id == "chatlab_jsonl"
        assert diagnosis.suggestion == "Recognized as ChatLab JSONL"
        assert len(diagnosis.checks) == len(FORMATS)

    def test_plain_text_without_signature(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        """A .txt file matching no text format names the extension."""
        path = tmp_path / "notes.txt"
        path.write_text("just some notes\nnothing chat-like here\n")

        assert sniffer.sniff(path) is None
        diagnosis = sniffer.diagnose(path)

        assert diagnosis.recognized is False
        assert '".txt"' in diagnosis.suggestion
        assert "No format matched" in diagnosis.suggestion
        assert {m.format_id for m in diagnosis.partial_matches} == {"whatsapp_txt", "qq_txt"}

    def test_single_missing_required_field(self, tmp_path: Path) -> None:
        """Extension and one field match, second field missing: one partial match."""
        s = FormatSniffer()
        s.register(chatlab_json.module)
        path = write_json(tmp_path / "export.json", {"chatlab": {"version": "0.0.2"}, "messages": []})

        diagnosis = s.diagnose(path)

        assert len(diagnosis.partial_matches) == 1
        assert diagnosis.partial_matches[0].missing_fields == ["meta"]
        assert "missing required fields: meta" in diagnosis.suggestion
        assert "ChatLab JSON" in diagnosis.suggestion

    def test_unsupported_extension_suggestion(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = tmp_path / "chat.csv"
        path.write_text("a,b\n")

        diagnosis = sniffer.diagnose(path)

        assert diagnosis.partial_matches == []
        assert '".csv"' in diagnosis.suggestion
        assert "no registered format accepts" in diagnosis.suggestion

    def test_not_json_content(self, tmp_path: Path) -> None:
        s = FormatSniffer()
        s.register(chatlab_json.module)
        path = tmp_path / "broken.json"
        path.write_text("this is not json")

        diagnosis = s.diagnose(path)

        assert "content is not valid JSON" in diagnosis.suggestion

    def test_diagnosis_is_idempotent(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = write_json(tmp_path / "x.json", {"chatlab": {}, "members": []})

        assert sniffer.diagnose(path).to_dict() == sniffer.diagnose(path).to_dict()

    def test_diagnose_never_raises_on_missing_file(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        diagnosis = sniffer.diagnose(tmp_path / "missing.json")

        assert diagnosis.recognized is False
        assert diagnosis.suggestion

    def test_to_dict_is_serializable(self, sniffer: FormatSniffer, tmp_path: Path) -> None:
        path = write_json(tmp_path / "x.json", {"chatlab": {}, "meta": {}})

        data = sniffer.diagnose(path).to_dict()

        assert json.loads(json.dumps(data))["recognized"] is True
        assert re.compile(data["matched_format"]["signatures"]["head"][0])
