"""Tests for configuration loading."""

from pathlib import Path

import pytest

from chatlog_ingest.config import Config, expand_env_var, load_config
from chatlog_ingest.models import DEFAULT_BATCH_SIZE


def write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "absent.yaml")

        assert config == Config()
        assert config.importer.batch_size == DEFAULT_BATCH_SIZE
        assert config.storage.backend == "sqlite"

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(write_config(tmp_path, ""))

        assert config.importer.preprocess_threshold_mb == 50

    def test_sections(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, f"""
logging:
  dir: {tmp_path}/logs
  level: DEBUG
import:
  batch_size: 250
  preprocess_threshold_mb: 10
  progress_interval_seconds: 0.1
storage:
  backend: typesense
  sessions_dir: {tmp_path}/sessions
typesense:
  host: search.local
  port: 9108
""")
        config = load_config(path)

        assert config.log_dir == tmp_path / "logs"
        assert config.log_level == "DEBUG"
        assert config.importer.batch_size == 250
        assert config.importer.preprocess_threshold_bytes == 10 * 1024 * 1024
        assert config.importer.progress_interval_seconds == 0.1
        assert config.storage.backend == "typesense"
        assert config.storage.sessions_dir == tmp_path / "sessions"
        assert config.typesense.host == "search.local"
        assert config.typesense.port == 9108

    def test_api_key_from_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CHATLOG_TS_KEY", "secret")
        path = write_config(tmp_path, "typesense:\n  api_key: ${CHATLOG_TS_KEY}\n")

        assert load_config(path).typesense.api_key == "secret"

    def test_unknown_backend(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "storage:\n  backend: postgres\n")

        with pytest.raises(ValueError, match="postgres"):
            load_config(path)

    def test_non_positive_batch_size(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "import:\n  batch_size: 0\n")

        with pytest.raises(ValueError, match="batch_size"):
            load_config(path)


def test_expand_env_var_leaves_unset_reference(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHATLOG_UNSET", raising=False)

    assert expand_env_var("${CHATLOG_UNSET}") == "${CHATLOG_UNSET}"
    assert expand_env_var("plain") == "plain"
