"""Typesense sink for imported chat sessions."""

import uuid
from typing import Any

import typesense
from typesense.exceptions import ObjectNotFound, TypesenseClientError

from chatlog_ingest.config import TypesenseConfig
from chatlog_ingest.errors import PersistenceError
from chatlog_ingest.logging import get_logger
from chatlog_ingest.models import ParsedMember, ParsedMessage, ParsedMeta

logger = get_logger("indexer")

SESSIONS_SCHEMA: dict[str, Any] = {
    "name": "chat_sessions",
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "name", "type": "string"},
        {"name": "platform", "type": "string", "facet": True},
        {"name": "type", "type": "string", "facet": True},
        {"name": "format_id", "type": "string", "facet": True},
        {"name": "source_path", "type": "string"},
        {"name": "group_id", "type": "string", "optional": True},
        {"name": "owner_id", "type": "string", "optional": True},
    ],
}

MEMBERS_SCHEMA: dict[str, Any] = {
    "name": "chat_members",
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "session_id", "type": "string", "facet": True},
        {"name": "platform_id", "type": "string", "facet": True},
        {"name": "account_name", "type": "string"},
        {"name": "group_nickname", "type": "string", "optional": True},
        {"name": "aliases", "type": "string[]", "optional": True},
    ],
}

MESSAGES_SCHEMA: dict[str, Any] = {
    "name": "chat_messages",
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "session_id", "type": "string", "facet": True},
        {"name": "sender_platform_id", "type": "string", "facet": True},
        {"name": "sender_account_name", "type": "string"},
        {"name": "sender_group_nickname", "type": "string", "optional": True},
        {"name": "ts", "type": "int64", "sort": True},
        {"name": "type", "type": "int32", "facet": True},
        {"name": "content", "type": "string", "optional": True},
        {"name": "platform_message_id", "type": "string", "optional": True},
        {"name": "reply_to_message_id", "type": "string", "optional": True},
        {"name": "seq", "type": "int64"},
    ],
    "default_sorting_field": "ts",
}


def _drop_none(doc: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in doc.items() if v is not None}


class TypesenseSessionStore:
    """Writes sessions to Typesense collections.

    Members are keyed by session and platform id, so a renamed member
    overwrites its previous document. Messages are keyed by session and
    stream position, which makes re-running a batch an idempotent upsert.
    """

    def __init__(self, config: TypesenseConfig) -> None:
        """Initialize the store with Typesense configuration.

        Args:
            config: TypesenseConfig with connection details
        """
        self._config = config
        self._client = typesense.Client({
            "nodes": [{
                "host": config.host,
                "port": str(config.port),
                "protocol": config.protocol,
            }],
            "api_key": config.api_key,
            "connection_timeout_seconds": 5,
        })
        self._seq: dict[str, int] = {}

    @property
    def client(self) -> typesense.Client:
        """Access the underlying Typesense client."""
        return self._client

    def ensure_collections(self) -> None:
        """Create the session, member and message collections if missing."""
        for schema in (SESSIONS_SCHEMA, MEMBERS_SCHEMA, MESSAGES_SCHEMA):
            self._ensure_collection(schema)

    def _ensure_collection(self, schema: dict[str, Any]) -> None:
        name = schema["name"]
        try:
            self._client.collections[name].retrieve()
            logger.debug("Collection already exists: collection=%s", name)
        except ObjectNotFound:
            self._client.collections.create(schema)
            logger.info("Created collection: collection=%s", name)

    def _import(self, collection: str, documents: list[dict[str, Any]]) -> None:
        """Upsert a batch, raising if any document is rejected.

        Documents of a partly rejected batch that were accepted are deleted
        again before raising, so the batch is either fully indexed or absent.
        Upserts that replaced existing documents are deleted too.
        """
        if not documents:
            return
        try:
            results = self._client.collections[collection].documents.import_(
                documents,
                {"action": "upsert"},
            )
        except TypesenseClientError as exc:
            raise PersistenceError(f"Typesense import into {collection} failed: {exc}") from exc

        failed = [r for r in results if not r.get("success", False)]
        if failed:
            logger.warning(
                "Some documents failed to index: collection=%s success=%d failed=%d",
                collection,
                len(results) - len(failed),
                len(failed),
            )
            accepted = [doc["id"] for doc, r in zip(documents, results) if r.get("success", False)]
            self._delete_ids(collection, accepted)
            raise PersistenceError(
                f"{len(failed)} documents rejected by {collection}: {failed[0].get('error', 'unknown')}"
            )

    def _delete_ids(self, collection: str, ids: list[str]) -> None:
        if not ids:
            return
        # Backticks keep the ":" inside ids out of the filter syntax
        filter_by = "id:[" + ",".join(f"`{doc_id}`" for doc_id in ids) + "]"
        try:
            self._client.collections[collection].documents.delete({"filter_by": filter_by})
        except TypesenseClientError as exc:
            raise PersistenceError(
                f"Cannot roll back {len(ids)} documents in {collection}: {exc}"
            ) from exc
        logger.info("Rolled back partial batch: collection=%s documents=%d", collection, len(ids))

    def create_session(self, meta: ParsedMeta, source_path: str, format_id: str) -> str:
        session_id = uuid.uuid4().hex
        doc = _drop_none({
            "id": session_id,
            "name": meta.name,
            "platform": meta.platform,
            "type": meta.type,
            "format_id": format_id,
            "source_path": source_path,
            "group_id": meta.group_id,
            "owner_id": meta.owner_id,
        })
        try:
            self._client.collections[SESSIONS_SCHEMA["name"]].documents.upsert(doc)
        except TypesenseClientError as exc:
            raise PersistenceError(f"Cannot create session {session_id}: {exc}") from exc

        self._seq[session_id] = 0
        logger.info("Created session: session_id=%s name=%s platform=%s", session_id, meta.name, meta.platform)
        return session_id

    def append_members(self, session_id: str, members: list[ParsedMember]) -> None:
        documents = [
            _drop_none({
                "id": f"{session_id}:{m.platform_id}",
                "session_id": session_id,
                "platform_id": m.platform_id,
                "account_name": m.account_name,
                "group_nickname": m.group_nickname,
                "aliases": m.aliases or None,
            })
            for m in members
        ]
        self._import(MEMBERS_SCHEMA["name"], documents)

    def append_messages(self, session_id: str, messages: list[ParsedMessage]) -> None:
        start = self._seq.get(session_id, 0)
        documents = [
            _drop_none({
                "id": f"{session_id}:{seq}",
                "session_id": session_id,
                "sender_platform_id": m.sender_platform_id,
                "sender_account_name": m.sender_account_name,
                "sender_group_nickname": m.sender_group_nickname,
                "ts": m.timestamp,
                "type": int(m.type),
                "content": m.content,
                "platform_message_id": m.platform_message_id,
                "reply_to_message_id": m.reply_to_message_id,
                "seq": seq,
            })
            for seq, m in enumerate(messages, start=start)
        ]
        self._import(MESSAGES_SCHEMA["name"], documents)
        self._seq[session_id] = start + len(messages)

    def close(self, session_id: str) -> None:
        self._seq.pop(session_id, None)
