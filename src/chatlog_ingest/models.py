"""Normalized chat data models and parse-event types."""

import re
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any

from chatlog_ingest.logging import LogCallback

DEFAULT_BATCH_SIZE = 5000
DEFAULT_CHUNK_SIZE = 1024 * 1024


class MessageType(IntEnum):
    """Normalized message type discriminator shared with the session store."""

    TEXT = 0
    IMAGE = 1
    VOICE = 2
    VIDEO = 3
    FILE = 4
    EMOJI = 5
    LINK = 7
    LOCATION = 8
    RED_PACKET = 20
    TRANSFER = 21
    POKE = 22
    CALL = 23
    SHARE = 24
    REPLY = 25
    FORWARD = 26
    CONTACT = 27
    SYSTEM = 80
    RECALL = 81
    OTHER = 99


class ChatType:
    GROUP = "group"
    PRIVATE = "private"


class ProgressStage:
    DETECTING = "detecting"
    READING = "reading"
    PARSING = "parsing"
    SAVING = "saving"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class FormatSignatures:
    """Sniffing signatures for a format.

    ``head`` patterns are alternatives (any one must match), while every
    ``required_fields`` name and every ``field_patterns`` entry must match.
    """

    head: tuple[re.Pattern[str], ...] = ()
    required_fields: tuple[str, ...] = ()
    field_patterns: dict[str, re.Pattern[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class FormatFeature:
    """Identifies a supported export format."""

    id: str
    name: str
    platform: str
    priority: int
    extensions: tuple[str, ...]
    signatures: FormatSignatures = field(default_factory=FormatSignatures)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict."""
        return {
            "id": self.id,
            "name": self.name,
            "platform": self.platform,
            "priority": self.priority,
            "extensions": list(self.extensions),
            "signatures": {
                "head": [p.pattern for p in self.signatures.head],
                "required_fields": list(self.signatures.required_fields),
                "field_patterns": {k: p.pattern for k, p in self.signatures.field_patterns.items()},
            },
        }


@dataclass
class ParsedMeta:
    """Chat-level metadata, one per parsed file."""

    name: str
    platform: str
    type: str = ChatType.GROUP
    group_id: str | None = None
    group_avatar: str | None = None
    owner_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class ParsedMember:
    """A chat participant as declared (or first seen) in the source."""

    platform_id: str
    account_name: str
    group_nickname: str | None = None
    aliases: list[str] = field(default_factory=list)
    avatar: str | None = None
    roles: list[str] = field(default_factory=list)


@dataclass
class ParsedMessage:
    """A single normalized chat event."""

    sender_platform_id: str
    sender_account_name: str
    timestamp: int  # Unix timestamp (seconds)
    type: MessageType
    content: str | None
    sender_group_nickname: str | None = None
    platform_message_id: str | None = None
    reply_to_message_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class ParseProgress:
    stage: str
    percentage: int
    bytes_read: int = 0
    total_bytes: int = 0
    messages_processed: int = 0
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


ProgressCallback = Callable[[ParseProgress], None]


@dataclass
class ParseOptions:
    """Per-invocation parser configuration."""

    file_path: Path
    batch_size: int = DEFAULT_BATCH_SIZE
    on_progress: ProgressCallback | None = None
    on_log: LogCallback | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    progress_interval: float = 0.5
    # Overrides the preprocessor's own size threshold when set
    preprocess_threshold: int | None = None

    def __post_init__(self) -> None:
        self.file_path = Path(self.file_path)
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")


@dataclass(frozen=True)
class ParseEvent:
    """One item of a parser's event stream.

    ``type`` is one of "meta", "members", "messages", "progress" or "error";
    ``data`` holds the matching payload.
    """

    type: str
    data: Any

    @classmethod
    def meta(cls, meta: ParsedMeta) -> "ParseEvent":
        return cls("meta", meta)

    @classmethod
    def members(cls, members: list[ParsedMember]) -> "ParseEvent":
        return cls("members", members)

    @classmethod
    def messages(cls, messages: list[ParsedMessage]) -> "ParseEvent":
        return cls("messages", messages)

    @classmethod
    def progress(cls, progress: ParseProgress) -> "ParseEvent":
        return cls("progress", progress)

    @classmethod
    def error(cls, error: Exception) -> "ParseEvent":
        return cls("error", error)


@dataclass
class FormatMatchCheck:
    """Per-format sniffing detail used by diagnosis."""

    format_id: str
    format_name: str
    extension_match: bool
    head_signature_match: bool | None = None
    required_fields_match: bool | None = None
    field_patterns_match: bool | None = None
    missing_fields: list[str] = field(default_factory=list)
    full_match: bool = False


@dataclass
class FormatDiagnosis:
    recognized: bool
    matched_format: FormatFeature | None
    checks: list[FormatMatchCheck]
    partial_matches: list[FormatMatchCheck]
    suggestion: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict."""
        return {
            "recognized": self.recognized,
            "matched_format": self.matched_format.to_dict() if self.matched_format else None,
            "checks": [asdict(c) for c in self.checks],
            "partial_matches": [
                {"format_name": m.format_name, "missing_fields": list(m.missing_fields)}
                for m in self.partial_matches
            ],
            "suggestion": self.suggestion,
        }


@dataclass
class ParseResult:
    meta: ParsedMeta
    members: list[ParsedMember]
    messages: list[ParsedMessage]


@dataclass
class FileInfo:
    name: str
    format: str
    platform: str
    message_count: int
    member_count: int
    file_size: int
