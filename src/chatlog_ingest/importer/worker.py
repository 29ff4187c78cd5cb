"""Runs each import in its own process.

The child owns the file handle, the parser and the store connection. It
talks to the parent only through a queue of ``("progress", dict)`` and
``("result", dict)`` tuples, so the parent stays responsive and a crashing
import can't take it down. Abandoning an import means terminating the
child; batches it already committed stay committed.
"""

import multiprocessing
import queue
import time
from pathlib import Path

from chatlog_ingest.config import Config
from chatlog_ingest.errors import ImportTimeoutError, WorkerCrashedError, error_code
from chatlog_ingest.importer.indexer import TypesenseSessionStore
from chatlog_ingest.importer.orchestrator import ImportResult, run_import
from chatlog_ingest.importer.store import SessionStore, SQLiteSessionStore
from chatlog_ingest.logging import get_logger, setup_logging
from chatlog_ingest.models import ParseProgress, ProgressCallback

logger = get_logger("worker")

POLL_INTERVAL = 0.1

WorkerMessage = tuple[str, dict]


def build_store(config: Config) -> SessionStore:
    """Create the session store selected by ``config.storage.backend``."""
    if config.storage.backend == "typesense":
        store = TypesenseSessionStore(config.typesense)
        store.ensure_collections()
        return store
    return SQLiteSessionStore(config.storage.sessions_dir)


def _worker_main(path: str, config: Config, channel: multiprocessing.Queue) -> None:
    """Child process entry point."""
    setup_logging("worker", config.log_dir, config.log_level, console=False)

    def forward(progress: ParseProgress) -> None:
        channel.put(("progress", progress.to_dict()))

    try:
        store = build_store(config)
        result = run_import(
            path,
            store,
            on_progress=forward,
            batch_size=config.importer.batch_size,
            preprocess_threshold=config.importer.preprocess_threshold_bytes,
            progress_interval=config.importer.progress_interval_seconds,
            chunk_size=config.importer.read_chunk_size,
        )
    except Exception as exc:
        logger.exception("Import worker failed: path=%s", path)
        result = ImportResult(success=False, error=str(exc), error_code=error_code(exc))

    channel.put(("result", result.to_dict()))


class ImportWorker:
    """Handle on one import child process."""

    def __init__(self, path: Path | str, config: Config) -> None:
        self.path = str(path)
        self.config = config
        self._context = multiprocessing.get_context("spawn")
        self._queue: multiprocessing.Queue | None = None
        self._process: multiprocessing.Process | None = None

    def start(self) -> None:
        """Spawn the child process."""
        self._queue = self._context.Queue()
        self._process = self._context.Process(
            target=_worker_main,
            args=(self.path, self.config, self._queue),
            name=f"chatlog-import-{Path(self.path).name}",
            daemon=True,
        )
        self._process.start()
        logger.info("Started import worker: path=%s pid=%s", self.path, self._process.pid)

    def poll(self, timeout: float | None = None) -> WorkerMessage | None:
        """Wait up to ``timeout`` seconds for the next message from the child.

        Returns:
            ``(kind, payload)`` tuple, or None if nothing arrived in time
        """
        if self._queue is None:
            raise RuntimeError("Worker not started")
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def is_alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    @property
    def exitcode(self) -> int | None:
        return self._process.exitcode if self._process else None

    def join(self, timeout: float | None = None) -> None:
        if self._process is not None:
            self._process.join(timeout)

    def terminate(self) -> None:
        """Kill the child. Batches it already committed are kept."""
        if self._process is not None and self._process.is_alive():
            logger.warning("Terminating import worker: path=%s pid=%s", self.path, self._process.pid)
            self._process.terminate()
            self._process.join()


def stream_import(
    path: Path | str,
    config: Config,
    on_progress: ProgressCallback | None = None,
    *,
    timeout: float | None = None,
) -> ImportResult:
    """Import a file in a child process, relaying its progress.

    Args:
        path: File to import
        config: Configuration the child builds its store from
        on_progress: Optional callback, invoked in the calling process
        timeout: Seconds before the child is terminated (None waits forever)

    Returns:
        The child's ImportResult, or a failed result with
        ``error.worker_crashed`` / ``error.timeout``
    """
    worker = ImportWorker(path, config)
    worker.start()
    deadline = time.monotonic() + timeout if timeout is not None else None

    try:
        while True:
            if deadline is not None and time.monotonic() > deadline:
                worker.terminate()
                exc = ImportTimeoutError(f"Import of {path} timed out after {timeout}s")
                logger.error("Import worker timed out: path=%s timeout=%s", path, timeout)
                return ImportResult(success=False, error=str(exc), error_code=exc.code)

            message = worker.poll(POLL_INTERVAL)
            if message is None:
                if worker.is_alive():
                    continue
                # The child may have exited right after its final put
                message = worker.poll(POLL_INTERVAL)
                if message is None:
                    exc = WorkerCrashedError(f"Import worker exited without a result (exit code {worker.exitcode})")
                    logger.error("Import worker crashed: path=%s exitcode=%s", path, worker.exitcode)
                    return ImportResult(success=False, error=str(exc), error_code=exc.code)

            kind, payload = message
            if kind == "progress":
                if on_progress is not None:
                    on_progress(ParseProgress(**payload))
            elif kind == "result":
                return ImportResult.from_dict(payload)
    finally:
        worker.join(timeout=5)
        worker.terminate()
