"""Session persistence with one SQLite database per imported chat."""

import json
import sqlite3
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Self

from chatlog_ingest.errors import PersistenceError
from chatlog_ingest.logging import get_logger
from chatlog_ingest.models import ParsedMember, ParsedMessage, ParsedMeta

logger = get_logger("store")

SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    name TEXT NOT NULL,
    platform TEXT NOT NULL,
    type TEXT NOT NULL,
    group_id TEXT,
    group_avatar TEXT,
    owner_id TEXT,
    extra TEXT,
    source_path TEXT,
    format_id TEXT,
    imported_at INTEGER
);

CREATE TABLE IF NOT EXISTS member (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    platform_id TEXT NOT NULL UNIQUE,
    account_name TEXT,
    group_nickname TEXT,
    aliases TEXT,
    avatar TEXT,
    roles TEXT
);

CREATE TABLE IF NOT EXISTS member_name_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    member_id INTEGER NOT NULL REFERENCES member(id),
    name_type TEXT NOT NULL,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS message (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sender_id INTEGER NOT NULL REFERENCES member(id),
    sender_account_name TEXT,
    sender_group_nickname TEXT,
    ts INTEGER NOT NULL,
    type INTEGER NOT NULL,
    content TEXT,
    platform_message_id TEXT,
    reply_to_message_id TEXT,
    extra TEXT
);

CREATE INDEX IF NOT EXISTS idx_message_ts ON message(ts);
CREATE INDEX IF NOT EXISTS idx_message_sender ON message(sender_id);
"""


class SessionStore(Protocol):
    """Write contract the importer drives, one batch per call."""

    def create_session(self, meta: ParsedMeta, source_path: str, format_id: str) -> str: ...

    def append_members(self, session_id: str, members: list[ParsedMember]) -> None: ...

    def append_messages(self, session_id: str, messages: list[ParsedMessage]) -> None: ...

    def close(self, session_id: str) -> None: ...


@dataclass
class SessionSummary:
    """Stored session with its row counts."""

    session_id: str
    name: str
    platform: str
    type: str
    format_id: str | None
    source_path: str | None
    member_count: int
    message_count: int


def _json_or_none(value: object) -> str | None:
    return json.dumps(value, ensure_ascii=False) if value else None


class SQLiteSessionStore:
    """Stores each session in ``<sessions_dir>/<session_id>.db``.

    Every append runs in a single transaction, so a batch is either fully
    written or absent. Members are upserted by platform id with the most
    recent names winning; each name a member takes on is kept in
    member_name_history.
    """

    def __init__(self, sessions_dir: Path) -> None:
        """Initialize the store.

        Args:
            sessions_dir: Directory holding session databases. Created if
                it doesn't exist.
        """
        self._sessions_dir = Path(sessions_dir)
        self._sessions_dir.mkdir(parents=True, exist_ok=True)
        self._conns: dict[str, sqlite3.Connection] = {}
        self._member_ids: dict[str, dict[str, int]] = {}

    def db_path(self, session_id: str) -> Path:
        return self._sessions_dir / f"{session_id}.db"

    def _connect(self, path: Path) -> sqlite3.Connection:
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        return conn

    def _conn(self, session_id: str) -> sqlite3.Connection:
        conn = self._conns.get(session_id)
        if conn is None:
            raise PersistenceError(f"Session is not open: {session_id}")
        return conn

    def create_session(self, meta: ParsedMeta, source_path: str, format_id: str) -> str:
        """Create a new session database and write its metadata.

        Args:
            meta: Chat metadata
            source_path: File the session was imported from
            format_id: Detected format id

        Returns:
            New session id

        Raises:
            PersistenceError: If the database can't be created
        """
        session_id = uuid.uuid4().hex
        try:
            conn = self._connect(self.db_path(session_id))
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot create session {session_id}: {exc}") from exc

        try:
            conn.executescript(SCHEMA)
            with conn:
                conn.execute(
                    """
                    INSERT INTO meta (id, name, platform, type, group_id, group_avatar,
                                      owner_id, extra, source_path, format_id, imported_at)
                    VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        meta.name,
                        meta.platform,
                        meta.type,
                        meta.group_id,
                        meta.group_avatar,
                        meta.owner_id,
                        _json_or_none(meta.extra),
                        source_path,
                        format_id,
                        int(time.time()),
                    ),
                )
        except sqlite3.Error as exc:
            conn.close()
            raise PersistenceError(f"Cannot create session {session_id}: {exc}") from exc

        self._conns[session_id] = conn
        self._member_ids[session_id] = {}
        logger.info("Created session: session_id=%s name=%s platform=%s", session_id, meta.name, meta.platform)
        return session_id

    def _upsert_member(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        platform_id: str,
        account_name: str | None,
        group_nickname: str | None,
        extra: ParsedMember | None = None,
    ) -> int:
        row = conn.execute(
            "SELECT id, account_name, group_nickname FROM member WHERE platform_id = ?",
            (platform_id,),
        ).fetchone()

        if row is None:
            cursor = conn.execute(
                """
                INSERT INTO member (platform_id, account_name, group_nickname, aliases, avatar, roles)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    platform_id,
                    account_name,
                    group_nickname,
                    _json_or_none(extra.aliases) if extra else None,
                    extra.avatar if extra else None,
                    _json_or_none(extra.roles) if extra else None,
                ),
            )
            member_id = cursor.lastrowid
            changed = {"account_name": account_name, "group_nickname": group_nickname}
        else:
            member_id = row["id"]
            changed = {}
            if account_name and account_name != row["account_name"]:
                changed["account_name"] = account_name
            if group_nickname and group_nickname != row["group_nickname"]:
                changed["group_nickname"] = group_nickname
            if changed:
                set_clause = ", ".join(f"{key} = ?" for key in changed)
                conn.execute(
                    f"UPDATE member SET {set_clause} WHERE id = ?",
                    (*changed.values(), member_id),
                )
            if extra is not None and (extra.aliases or extra.avatar or extra.roles):
                conn.execute(
                    "UPDATE member SET aliases = ?, avatar = ?, roles = ? WHERE id = ?",
                    (_json_or_none(extra.aliases), extra.avatar, _json_or_none(extra.roles), member_id),
                )

        for name_type, name in changed.items():
            if name:
                conn.execute(
                    "INSERT INTO member_name_history (member_id, name_type, name) VALUES (?, ?, ?)",
                    (member_id, name_type, name),
                )

        self._member_ids[session_id][platform_id] = member_id
        return member_id

    def append_members(self, session_id: str, members: list[ParsedMember]) -> None:
        """Upsert a batch of members in one transaction.

        Raises:
            PersistenceError: If the session isn't open or the write fails
        """
        conn = self._conn(session_id)
        try:
            with conn:
                for member in members:
                    self._upsert_member(
                        conn, session_id, member.platform_id, member.account_name, member.group_nickname, member
                    )
        except sqlite3.Error as exc:
            # Rolled back; drop cached ids that may point at uncommitted rows
            self._member_ids[session_id] = {}
            raise PersistenceError(f"Cannot write members to session {session_id}: {exc}") from exc

    def append_messages(self, session_id: str, messages: list[ParsedMessage]) -> None:
        """Insert a batch of messages in one transaction.

        Senders that were never appended as members are created on the fly.

        Raises:
            PersistenceError: If the session isn't open or the write fails
        """
        conn = self._conn(session_id)
        member_ids = self._member_ids[session_id]
        try:
            with conn:
                rows = []
                for message in messages:
                    sender_id = member_ids.get(message.sender_platform_id)
                    if sender_id is None:
                        sender_id = self._upsert_member(
                            conn,
                            session_id,
                            message.sender_platform_id,
                            message.sender_account_name,
                            message.sender_group_nickname,
                        )
                    rows.append(
                        (
                            sender_id,
                            message.sender_account_name,
                            message.sender_group_nickname,
                            message.timestamp,
                            int(message.type),
                            message.content,
                            message.platform_message_id,
                            message.reply_to_message_id,
                            _json_or_none(message.extra),
                        )
                    )
                conn.executemany(
                    """
                    INSERT INTO message (sender_id, sender_account_name, sender_group_nickname, ts, type,
                                         content, platform_message_id, reply_to_message_id, extra)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            self._member_ids[session_id] = {}
            raise PersistenceError(f"Cannot write messages to session {session_id}: {exc}") from exc

    def close(self, session_id: str) -> None:
        """Release the session's connection. Closing twice is a no-op."""
        conn = self._conns.pop(session_id, None)
        self._member_ids.pop(session_id, None)
        if conn is not None:
            conn.close()

    def close_all(self) -> None:
        for session_id in list(self._conns):
            self.close(session_id)

    def get_session(self, session_id: str) -> SessionSummary | None:
        """Read a stored session's metadata and counts.

        Args:
            session_id: Session id

        Returns:
            SessionSummary, or None if no such session exists
        """
        path = self.db_path(session_id)
        if not path.exists():
            return None

        conn = self._connect(path)
        try:
            row = conn.execute(
                "SELECT name, platform, type, format_id, source_path FROM meta WHERE id = 1"
            ).fetchone()
            if row is None:
                return None
            member_count = conn.execute("SELECT COUNT(*) FROM member").fetchone()[0]
            message_count = conn.execute("SELECT COUNT(*) FROM message").fetchone()[0]
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot read session {session_id}: {exc}") from exc
        finally:
            conn.close()

        return SessionSummary(
            session_id=session_id,
            name=row["name"],
            platform=row["platform"],
            type=row["type"],
            format_id=row["format_id"],
            source_path=row["source_path"],
            member_count=member_count,
            message_count=message_count,
        )

    def list_sessions(self) -> list[SessionSummary]:
        """List all stored sessions, ordered by session id."""
        sessions = []
        for path in sorted(self._sessions_dir.glob("*.db")):
            summary = self.get_session(path.stem)
            if summary is not None:
                sessions.append(summary)
        return sessions

    def delete_session(self, session_id: str) -> bool:
        """Delete a session's database.

        Returns:
            True if a database was removed
        """
        self.close(session_id)
        path = self.db_path(session_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Deleted session: session_id=%s", session_id)
        return True

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing every open session."""
        self.close_all()
