"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from chatlog_ingest.logging import DEFAULT_LOG_DIR
from chatlog_ingest.models import DEFAULT_BATCH_SIZE, DEFAULT_CHUNK_SIZE

STORAGE_BACKENDS = ("sqlite", "typesense")


@dataclass
class ImportConfig:
    batch_size: int = DEFAULT_BATCH_SIZE
    preprocess_threshold_mb: int = 50
    progress_interval_seconds: float = 0.5
    read_chunk_size: int = DEFAULT_CHUNK_SIZE

    @property
    def preprocess_threshold_bytes(self) -> int:
        return self.preprocess_threshold_mb * 1024 * 1024


@dataclass
class StorageConfig:
    backend: str = "sqlite"
    sessions_dir: Path = field(default_factory=lambda: Path.home() / "chatlog-ingest" / "sessions")


@dataclass
class TypesenseConfig:
    host: str = "localhost"
    port: int = 8108
    protocol: str = "http"
    api_key: str = "dev-api-key"


@dataclass
class Config:
    log_dir: Path = field(default_factory=lambda: DEFAULT_LOG_DIR)
    log_level: str = "INFO"
    importer: ImportConfig = field(default_factory=ImportConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    typesense: TypesenseConfig = field(default_factory=TypesenseConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def find_config_file() -> Path | None:
    """Return the first existing config file from the standard locations."""
    search_paths = [
        Path.cwd() / "config.yaml",
        Path.home() / ".config" / "chatlog-ingest" / "config.yaml",
        Path("/etc/chatlog-ingest/config.yaml"),
    ]
    for path in search_paths:
        if path.exists():
            return path
    return None


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file.

    Missing files and missing keys fall back to defaults.

    Raises:
        ValueError: If the storage backend is not one of STORAGE_BACKENDS
            or batch_size is not positive
    """
    if config_path is None:
        config_path = find_config_file()

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    import_data = data.get("import", {})
    importer = ImportConfig(
        batch_size=int(import_data.get("batch_size", DEFAULT_BATCH_SIZE)),
        preprocess_threshold_mb=int(import_data.get("preprocess_threshold_mb", 50)),
        progress_interval_seconds=float(import_data.get("progress_interval_seconds", 0.5)),
        read_chunk_size=int(import_data.get("read_chunk_size", DEFAULT_CHUNK_SIZE)),
    )
    if importer.batch_size <= 0:
        raise ValueError(f"import.batch_size must be positive, got {importer.batch_size}")

    storage_data = data.get("storage", {})
    storage = StorageConfig(
        backend=storage_data.get("backend", "sqlite"),
        sessions_dir=expand_path(storage_data.get("sessions_dir", "~/chatlog-ingest/sessions")),
    )
    if storage.backend not in STORAGE_BACKENDS:
        raise ValueError(f"Unknown storage backend: {storage.backend}")

    ts_data = data.get("typesense", {})
    typesense = TypesenseConfig(
        host=ts_data.get("host", "localhost"),
        port=ts_data.get("port", 8108),
        protocol=ts_data.get("protocol", "http"),
        api_key=expand_env_var(ts_data.get("api_key", "dev-api-key")),
    )

    logging_data = data.get("logging", {})

    return Config(
        log_dir=expand_path(logging_data.get("dir", str(DEFAULT_LOG_DIR))),
        log_level=logging_data.get("level", "INFO"),
        importer=importer,
        storage=storage,
        typesense=typesense,
    )
