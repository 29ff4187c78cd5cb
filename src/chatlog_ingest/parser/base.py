"""Base parser interface, preprocessor interface and format modules."""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from chatlog_ingest.errors import ChatlogIngestError, FileReadError, ParseError
from chatlog_ingest.logging import get_logger, log_forwarder
from chatlog_ingest.models import (
    FormatFeature,
    ParsedMember,
    ParsedMessage,
    ParseEvent,
    ParseOptions,
    ProgressCallback,
    ProgressStage,
)
from chatlog_ingest.parser.utils import create_progress, get_file_size

__all__ = ["BatchBuffer", "FormatModule", "Parser", "Preprocessor"]

logger = get_logger("parser")


class Parser(ABC):
    """Base class for export-format parsers.

    Subclasses set the ``feature`` class attribute and implement ``_parse()``
    as a generator of ParseEvents. ``parse()`` wraps it so that callers see a
    well-formed stream: meta before any content, at most one terminal error
    event, and a closing ``done`` progress event after a successful run.
    Nothing raised inside ``_parse()`` escapes ``parse()``.
    """

    feature: FormatFeature

    def parse(self, options: ParseOptions) -> Iterator[ParseEvent]:
        """Parse a file into a lazy, single-pass stream of events.

        Args:
            options: Per-invocation options (path, batch size, callbacks)

        Yields:
            ParseEvents in source order
        """
        emit_log = log_forwarder(logger, options.on_log)
        path = options.file_path
        meta_seen = False
        messages_processed = 0
        total_bytes = 0

        try:
            total_bytes = get_file_size(path)
            for event in self._parse(options, total_bytes):
                if event.type == "error":
                    emit_log("error", f"Parse failed: path={path} error={event.data}")
                    yield event
                    return
                if event.type == "meta":
                    if meta_seen:
                        raise ParseError(f"Parser produced a second meta event for {path}")
                    meta_seen = True
                elif event.type in ("members", "messages") and not meta_seen:
                    raise ParseError(f"Parser produced {event.type} before meta for {path}")
                elif event.type == "progress" and options.on_progress is not None:
                    options.on_progress(event.data)

                if event.type == "messages":
                    messages_processed += len(event.data)
                yield event
        except OSError as exc:
            emit_log("error", f"Cannot read file: path={path} error={exc}")
            yield ParseEvent.error(FileReadError(f"Cannot read {path}: {exc}"))
            return
        except ChatlogIngestError as exc:
            emit_log("error", f"Parse failed: path={path} error={exc}")
            yield ParseEvent.error(exc)
            return
        except Exception as exc:
            logger.exception("Unexpected parser failure: format=%s path=%s", self.feature.id, path)
            yield ParseEvent.error(ParseError(f"Failed to parse {path}: {exc}"))
            return

        done = create_progress(
            ProgressStage.DONE,
            total_bytes,
            total_bytes,
            messages_processed,
            f"Parsed {messages_processed} messages",
        )
        if options.on_progress is not None:
            options.on_progress(done)
        emit_log("info", f"Parsed file: format={self.feature.id} path={path} messages={messages_processed}")
        yield ParseEvent.progress(done)

    @abstractmethod
    def _parse(self, options: ParseOptions, total_bytes: int) -> Iterator[ParseEvent]:
        """Format-specific event generation.

        May raise; ``parse()`` converts exceptions into a terminal error event.

        Args:
            options: Per-invocation options
            total_bytes: Size of the input file

        Yields:
            ParseEvents
        """


class Preprocessor(ABC):
    """Rewrites a non-streamable file into a line-delimited intermediate."""

    @abstractmethod
    def needs_preprocess(self, path: Path, file_size: int) -> bool:
        """Whether ``path`` should be rewritten before parsing."""

    @abstractmethod
    def preprocess(self, path: Path, on_progress: ProgressCallback | None = None) -> Path:
        """Write the intermediate file and return its path.

        The caller owns the returned file and removes it with ``cleanup()``.
        """

    def cleanup(self, path: Path) -> None:
        path.unlink(missing_ok=True)


@dataclass(frozen=True)
class FormatModule:
    """A format's signature paired with its parser and optional preprocessor."""

    feature: FormatFeature
    parser: Parser
    preprocessor: Preprocessor | None = None


class BatchBuffer:
    """Accumulates members and messages into bounded batches.

    Senders are tracked by platform id. A sender seen for the first time,
    or seen again under a different name, is queued as a member so that
    every message's sender has appeared in a members batch no later than
    the messages batch that references it. Renames are re-emitted rather
    than collapsed, which keeps name history intact downstream. A message
    without an account name takes the sender's last known name.
    """

    def __init__(self, batch_size: int) -> None:
        self.batch_size = batch_size
        self.messages_processed = 0
        self.members_emitted = 0
        self._known: dict[str, tuple[str, str | None]] = {}
        self._members: list[ParsedMember] = []
        self._messages: list[ParsedMessage] = []

    def add_member(self, member: ParsedMember) -> list[ParseEvent]:
        """Queue a declared member; returns events to emit when the batch is full."""
        self._known[member.platform_id] = (member.account_name, member.group_nickname)
        self._members.append(member)
        if len(self._members) >= self.batch_size:
            return [self._take_members()]
        return []

    def add_message(self, message: ParsedMessage) -> list[ParseEvent]:
        """Queue a message; returns events to emit when the batch is full."""
        platform_id = message.sender_platform_id
        known = self._known.get(platform_id)
        if not message.sender_account_name:
            message.sender_account_name = known[0] if known else platform_id

        account, nickname = message.sender_account_name, message.sender_group_nickname
        if known is None or account != known[0] or (nickname and nickname != known[1]):
            self._known[platform_id] = (account, nickname or (known[1] if known else None))
            self._members.append(
                ParsedMember(platform_id=platform_id, account_name=account, group_nickname=nickname)
            )

        self._messages.append(message)
        self.messages_processed += 1
        if len(self._messages) >= self.batch_size:
            return self.flush()
        if len(self._members) >= self.batch_size:
            return [self._take_members()]
        return []

    def flush(self) -> list[ParseEvent]:
        """Emit whatever is queued: members first, then messages."""
        events: list[ParseEvent] = []
        if self._members:
            events.append(self._take_members())
        if self._messages:
            events.append(ParseEvent.messages(self._messages))
            self._messages = []
        return events

    def _take_members(self) -> ParseEvent:
        members, self._members = self._members, []
        self.members_emitted += len(members)
        return ParseEvent.members(members)
