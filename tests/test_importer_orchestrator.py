"""Tests for the import orchestrator."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from chatlog_ingest.errors import PersistenceError
from chatlog_ingest.importer import orchestrator
from chatlog_ingest.importer.orchestrator import ImportResult, run_import
from chatlog_ingest.importer.store import SQLiteSessionStore
from chatlog_ingest.models import ParseOptions, ParseProgress
from chatlog_ingest.parser import parse_file


@pytest.fixture
def store(tmp_path: Path) -> SQLiteSessionStore:
    """Provide a SQLiteSessionStore in a temporary directory."""
    s = SQLiteSessionStore(tmp_path / "sessions")
    yield s
    s.close_all()


@pytest.fixture
def mock_store() -> MagicMock:
    """Provide a mock store that hands out a fixed session id."""
    s = MagicMock()
    s.create_session.return_value = "session-1"
    return s


@pytest.fixture
def log_file(tmp_path: Path) -> Path:
    """Provide a generic JSONL log with 10 messages from 3 senders."""
    path = tmp_path / "log.jsonl"
    path.write_text(
        "".join(json.dumps({"sender": f"s{i % 3}", "content": str(i), "ts": 1700000000 + i}) + "\n" for i in range(10))
    )
    return path


@pytest.fixture
def truncated_telegram(tmp_path: Path) -> Path:
    """Provide a Telegram export cut off after its first message."""
    path = tmp_path / "result.json"
    path.write_text(
        '{"name": "Chat", "type": "personal_chat", "id": 1, "messages": ['
        '{"id": 1, "type": "message", "date_unixtime": "1700000000", "from": "A", "from_id": "a", "text": "hi"},'
        '{"id": 2, "type": "message", '
    )
    return path


class TestRunImport:
    """Tests for run_import."""

    def test_success(self, log_file: Path, store: SQLiteSessionStore) -> None:
        result = run_import(log_file, store)

        assert result.success is True
        assert result.error_code is None
        assert result.message_count == 10
        assert result.member_count == 3
        summary = store.get_session(result.session_id)
        assert summary.message_count == 10
        assert summary.format_id == "generic_jsonl"

    def test_progress_stages(self, log_file: Path, store: SQLiteSessionStore) -> None:
        received: list[ParseProgress] = []

        run_import(log_file, store, on_progress=received.append)

        assert received[0].stage == "detecting"
        assert received[-1].stage == "done"
        assert received[-1].percentage == 100

    def test_one_store_call_per_batch(self, log_file: Path, mock_store: MagicMock) -> None:
        run_import(log_file, mock_store, batch_size=4)

        assert mock_store.append_messages.call_count == 3
        for call in mock_store.append_messages.call_args_list:
            assert call.args[0] == "session-1"
            assert len(call.args[1]) <= 4
        mock_store.close.assert_called_once_with("session-1")

    def test_unrecognized_does_not_touch_store(self, tmp_path: Path, mock_store: MagicMock) -> None:
        path = tmp_path / "data.csv"
        path.write_text("a,b\n")

        result = run_import(path, mock_store)

        assert result.success is False
        assert result.error_code == "error.unrecognized_format"
        assert "no registered format accepts" in result.error
        mock_store.create_session.assert_not_called()
        mock_store.close.assert_not_called()

    def test_parse_error_keeps_committed_batches(self, truncated_telegram: Path, store: SQLiteSessionStore) -> None:
        result = run_import(truncated_telegram, store, batch_size=1)

        assert result.success is False
        assert result.error_code == "error.parse_failed"
        assert result.session_id is not None
        assert result.message_count == 1
        assert store.get_session(result.session_id).message_count == 1

    def test_persistence_error(self, log_file: Path, mock_store: MagicMock) -> None:
        mock_store.append_messages.side_effect = PersistenceError("disk full")

        result = run_import(log_file, mock_store)

        assert result.success is False
        assert result.error_code == "error.persistence"
        assert result.error == "disk full"
        mock_store.close.assert_called_once_with("session-1")

    def test_unexpected_store_exception(self, log_file: Path, mock_store: MagicMock) -> None:
        mock_store.append_members.side_effect = RuntimeError("connection reset")

        result = run_import(log_file, mock_store)

        assert result.success is False
        assert result.error_code == "error.persistence"
        mock_store.close.assert_called_once_with("session-1")

    def test_preprocess_threshold(self, tmp_path: Path, store: SQLiteSessionStore) -> None:
        path = tmp_path / "export.json"
        path.write_text(json.dumps({
            "chatlab": {"version": "0.0.2"},
            "meta": {"name": "Export"},
            "messages": [{"sender": "a", "timestamp": 1700000000, "content": "x"}],
        }))

        result = run_import(path, store, preprocess_threshold=1)

        assert result.success is True
        assert store.get_session(result.session_id).name == "Export"

    def test_chunk_size_reaches_parser(
        self, log_file: Path, store: SQLiteSessionStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        seen: list[ParseOptions] = []

        def recording_parse_file(options: ParseOptions):
            seen.append(options)
            return parse_file(options)

        monkeypatch.setattr(orchestrator, "parse_file", recording_parse_file)

        result = run_import(log_file, store, chunk_size=64)

        assert result.success is True
        assert result.message_count == 10
        assert seen[0].chunk_size == 64


class TestImportResult:
    """Tests for ImportResult serialization."""

    def test_round_trip(self) -> None:
        result = ImportResult(success=False, error="x", error_code="error.unknown", message_count=2)

        assert ImportResult.from_dict(result.to_dict()) == result
