"""Drives a parse into a session store, batch by batch."""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from chatlog_ingest.errors import ChatlogIngestError, PersistenceError, UnrecognizedFormatError, error_code
from chatlog_ingest.logging import get_logger
from chatlog_ingest.models import DEFAULT_BATCH_SIZE, DEFAULT_CHUNK_SIZE, ParseOptions, ProgressCallback, ProgressStage
from chatlog_ingest.importer.store import SessionStore
from chatlog_ingest.parser import parse_file, sniffer
from chatlog_ingest.parser.utils import create_progress, get_file_size

logger = get_logger("importer")


@dataclass
class ImportResult:
    """Outcome of one import."""

    success: bool
    session_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    message_count: int = 0
    member_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportResult":
        return cls(**data)


def run_import(
    path: Path | str,
    store: SessionStore,
    on_progress: ProgressCallback | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    preprocess_threshold: int | None = None,
    progress_interval: float = 0.5,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> ImportResult:
    """Import one chat export into ``store``.

    Each members or messages batch becomes one store call, so a failure
    part-way leaves the batches committed before it in place. The session
    is closed whenever one was created.

    Args:
        path: File to import
        store: Destination store
        on_progress: Optional callback receiving every progress update
        batch_size: Maximum members/messages per batch
        preprocess_threshold: Size in bytes above which large files are
            preprocessed (None keeps each format's default)
        progress_interval: Minimum seconds between progress updates
        chunk_size: Bytes read from the file per chunk

    Returns:
        ImportResult; failures are reported here rather than raised
    """
    path = Path(path)
    if on_progress is not None:
        total = get_file_size(path) if path.is_file() else 0
        on_progress(create_progress(ProgressStage.DETECTING, 0, total, 0, "Detecting format"))

    module = sniffer.get_module(path)
    if module is None:
        exc = UnrecognizedFormatError(path, sniffer.diagnose(path))
        logger.warning("Import rejected: path=%s error=%s", path, exc)
        return ImportResult(success=False, error=str(exc), error_code=exc.code)

    options = ParseOptions(
        file_path=path,
        batch_size=batch_size,
        on_progress=on_progress,
        progress_interval=progress_interval,
        chunk_size=chunk_size,
        preprocess_threshold=preprocess_threshold,
    )

    session_id: str | None = None
    member_count = 0
    message_count = 0
    events = parse_file(options)
    try:
        for event in events:
            if event.type == "error":
                exc = event.data
                logger.error("Import failed: path=%s error=%s", path, exc)
                return ImportResult(
                    success=False,
                    session_id=session_id,
                    error=str(exc),
                    error_code=error_code(exc),
                    message_count=message_count,
                    member_count=member_count,
                )
            if event.type == "meta":
                session_id = store.create_session(event.data, str(path), module.feature.id)
            elif event.type == "members":
                store.append_members(session_id, event.data)
                member_count += len(event.data)
            elif event.type == "messages":
                store.append_messages(session_id, event.data)
                message_count += len(event.data)
    except Exception as exc:
        # parse_file reports its own failures as events; anything raised here came from the store
        if isinstance(exc, ChatlogIngestError):
            logger.error("Import failed while saving: path=%s session_id=%s error=%s", path, session_id, exc)
            code = error_code(exc)
        else:
            logger.exception("Store failure: path=%s session_id=%s", path, session_id)
            code = PersistenceError.code
        return ImportResult(
            success=False,
            session_id=session_id,
            error=str(exc),
            error_code=code,
            message_count=message_count,
            member_count=member_count,
        )
    finally:
        events.close()
        if session_id is not None:
            store.close(session_id)

    logger.info(
        "Import finished: path=%s session_id=%s members=%d messages=%d",
        path,
        session_id,
        member_count,
        message_count,
    )
    return ImportResult(
        success=True,
        session_id=session_id,
        message_count=message_count,
        member_count=member_count,
    )
