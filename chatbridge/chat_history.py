"""Application-facing entry point for chat persistence.

:class:`ChatHistory` wraps a :class:`chatbridge.db.SQLiteClient` and is
the object application code passes around.  It starts uninitialised;
:meth:`ChatHistory.initialize` opens the store and runs the schema
migrations, and every storage call made before that raises
:class:`chatbridge.errors.DatabaseNotInitializedError`.

Typical use::

    history = ChatHistory()
    history.initialize(DatabaseConfiguration(path="chat.db"))
    history.sync_chats("u1", chats)
    history.shutdown()
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
import weakref
from typing import Any, ContextManager, List, Mapping, Optional, Sequence

from .config import DatabaseConfiguration
from .db import Migration, SQLiteClient
from .dto import Chat, Message
from .errors import DatabaseNotInitializedError
from .sync import reconcile_chats

log = logging.getLogger(__name__)


class ChatHistory:
    """Stateful handle on the chat store."""

    def __init__(self) -> None:
        self._client: Optional[SQLiteClient] = None
        # Entries vanish once no sync for that user holds the lock.
        self._user_locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._user_locks_guard = threading.Lock()

    def __enter__(self) -> "ChatHistory":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    #  Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    def initialize(
        self,
        config: DatabaseConfiguration | None = None,
        migrations: Mapping[int, Migration] | None = None,
    ) -> int:
        """Open the store and upgrade its schema.

        *migrations* maps the version an upgrade starts from to the
        callable performing it; they are registered after the built-in
        baseline for version ``0`` and may replace it.  Returns the schema
        version reached.  If the upgrade fails the error propagates and
        this object stays uninitialised.
        """
        client = SQLiteClient(config)
        for version, migration in (migrations or {}).items():
            client.register_migration(version, migration)
        try:
            version = client.initialize_database()
        except Exception:
            client.shutdown()
            raise

        if self._client is not None:
            self._client.shutdown()
        self._client = client
        return version

    def shutdown(self) -> None:
        """Release the store.  Does nothing if it was never opened."""
        if self._client is None:
            return
        self._client.shutdown()
        self._client = None
        log.info("Chat store shut down")

    def _require_client(self) -> SQLiteClient:
        if self._client is None:
            raise DatabaseNotInitializedError()
        return self._client

    # ------------------------------------------------------------------
    #  Raw access
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        return self._require_client().query(sql, params)

    def query_with_client(
        self, conn: sqlite3.Connection, sql: str, params: Sequence[Any] = ()
    ) -> sqlite3.Cursor:
        return self._require_client().query_with_client(conn, sql, params)

    def transaction(self) -> ContextManager[sqlite3.Connection]:
        return self._require_client().transaction()

    def schema_version(self) -> int:
        return self._require_client().schema_version()

    # ------------------------------------------------------------------
    #  Chats
    # ------------------------------------------------------------------

    def count_chats_by_user_id(
        self, user_id: str, updated_after: int | None = None, exclude_deleted: bool = False
    ) -> int:
        return self._require_client().count_chats_by_user_id(user_id, updated_after, exclude_deleted)

    def add_chat(
        self,
        chat_id: Any,
        title: str,
        user_id: str,
        updated_at: int,
        created_at: int | None = None,
        deleted_at: int | None = None,
    ) -> None:
        self._require_client().add_chat(chat_id, title, user_id, updated_at, created_at, deleted_at)

    def add_chats(self, chats: Sequence[Chat]) -> None:
        self._require_client().add_chats(chats)

    def get_chats_by_user_id(
        self,
        user_id: str,
        updated_after: int | None = None,
        limit: int | None = 20,
        page: int = 0,
        exclude_deleted: bool = False,
    ) -> List[Chat]:
        return self._require_client().get_chats_by_user_id(
            user_id, updated_after, limit, page, exclude_deleted
        )

    def sync_chats(self, user_id: str, chats: Sequence[Chat], updated_after: int | None = None) -> None:
        """Merge the client's *chats* for *user_id* into the store.

        The server side is read once (every chat of the user updated after
        *updated_after*), the batch is reconciled against that snapshot
        with :func:`chatbridge.sync.reconcile_chats` and the result is
        written in one transaction.  Chats owned by another user are
        logged and skipped.

        With ``serialize_syncs`` enabled in the configuration, concurrent
        syncs for the same user run one after the other; otherwise they
        may each decide against a stale snapshot and the last writer wins.
        """
        client = self._require_client()
        if not chats:
            return

        with self._sync_lock(user_id, client.config):
            server_chats = client.get_chats_by_user_id(user_id, updated_after, limit=None)
            plan = reconcile_chats(user_id, chats, server_chats)
            client.apply_sync(user_id, plan.upserts, plan.deletes)

    def _sync_lock(self, user_id: str, config: DatabaseConfiguration) -> ContextManager[Any]:
        if not config.serialize_syncs:
            return contextlib.nullcontext()
        with self._user_locks_guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._user_locks[user_id] = lock
        return lock

    def rename_chat(self, chat_id: Any, title: str, updated_at: int) -> None:
        self._require_client().rename_chat(chat_id, title, updated_at)

    def delete_chat(self, chat_id: Any) -> None:
        self._require_client().delete_chat(chat_id)

    # ------------------------------------------------------------------
    #  Messages
    # ------------------------------------------------------------------

    def count_messages_by_user_id(
        self, user_id: str, created_after: int | None = None, exclude_deleted: bool = False
    ) -> int:
        return self._require_client().count_messages_by_user_id(user_id, created_after, exclude_deleted)

    def add_message(
        self,
        message_id: Any,
        chat_id: Any,
        content: str,
        role: str,
        created_at: int,
        image_url: str | None = None,
        prompt: str | None = None,
    ) -> None:
        self._require_client().add_message(
            message_id, chat_id, content, role, created_at, image_url, prompt
        )

    def add_messages(self, messages: Sequence[Message]) -> None:
        """Add messages in bulk, skipping ids that already exist."""
        self._require_client().add_messages(messages)

    def get_messages_by_chat_ids(self, chat_ids: Sequence[Any]) -> List[Message]:
        return self._require_client().get_messages_by_chat_ids(chat_ids)

    def get_messages_by_user_id(
        self,
        user_id: str,
        created_after: int | None = None,
        limit: int = 20,
        page: int = 0,
        exclude_deleted: bool = False,
    ) -> List[Message]:
        return self._require_client().get_messages_by_user_id(
            user_id, created_after, limit, page, exclude_deleted
        )


__all__ = ["ChatHistory"]
