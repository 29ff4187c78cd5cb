"""Import pipeline: parse a chat export and persist it batch by batch."""

from chatlog_ingest.importer.orchestrator import ImportResult, run_import
from chatlog_ingest.importer.store import SessionStore, SessionSummary, SQLiteSessionStore
from chatlog_ingest.importer.worker import ImportWorker, build_store, stream_import

__all__ = [
    "ImportResult",
    "ImportWorker",
    "SQLiteSessionStore",
    "SessionStore",
    "SessionSummary",
    "build_store",
    "run_import",
    "stream_import",
]
