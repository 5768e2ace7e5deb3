# chatbridge/db.py
"""Persist chats and messages in SQLite.

The store holds three tables: ``schema_versions`` records which schema
upgrades have been applied, ``chats`` holds one row per conversation and
``messages`` one row per chat line.  Deleting a chat cascades to its
messages.

:class:`SQLiteClient` owns a single connection shared by every caller.
Each operation acquires it through :meth:`SQLiteClient.connection` and
releases it on every exit path, so multi-statement work such as a
migration run or a chat sync executes on one handle from start to end.
The connection runs in autocommit mode; atomic multi-statement work goes
through :meth:`SQLiteClient.transaction`.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence

from . import queries as q
from .config import DatabaseConfiguration
from .dto import Chat, Message, now_ms, to_timestamp
from .errors import DatabaseNotInitializedError, MigrationError

log = logging.getLogger(__name__)


class Migration(Protocol):
    """A schema upgrade from one version to the next.

    The callable receives the transaction's connection and must run its
    statements through it with ``execute``.  ``executescript`` commits
    implicitly and would break the all-or-nothing guarantee of a run.
    """

    def __call__(self, conn: sqlite3.Connection) -> None: ...


class SQLiteClient:
    """Relational store for chat history."""

    def __init__(self, config: DatabaseConfiguration | None = None) -> None:
        self.config = config or DatabaseConfiguration()
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = sqlite3.connect(
            self.config.path,
            timeout=self.config.timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._migrations: Dict[int, Migration] = {}

        # Baseline schema
        self.register_migration(0, self._create_baseline_schema)

    # ------------------------------------------------------------------
    #  Connection handling
    # ------------------------------------------------------------------

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Acquire the shared connection for the duration of the block."""
        with self._lock:
            if self._conn is None:
                raise DatabaseNotInitializedError("Database connection has been shut down.")
            yield self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block inside ``BEGIN`` / ``COMMIT``; roll back on any error."""
        with self.connection() as conn:
            conn.execute("BEGIN")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Execute a single statement on its own and return all rows."""
        with self.connection() as conn:
            return conn.execute(sql, params).fetchall()

    def query_with_client(
        self, conn: sqlite3.Connection, sql: str, params: Sequence[Any] = ()
    ) -> sqlite3.Cursor:
        """Execute *sql* on an already acquired connection."""
        return conn.execute(sql, params)

    # ------------------------------------------------------------------
    #  Migrations
    # ------------------------------------------------------------------

    def register_migration(self, from_version: int, migration: Migration) -> None:
        """Register the upgrade that moves the schema from *from_version* on.

        Registering twice for the same version replaces the earlier one.
        """
        self._migrations[from_version] = migration

    def _create_baseline_schema(self, conn: sqlite3.Connection) -> None:
        self.query_with_client(conn, q.CREATE_CHATS_TABLE_QUERY)
        self.query_with_client(conn, q.CREATE_MESSAGES_TABLE_QUERY)
        for statement in q.INDEX_CHATS + q.INDEX_MESSAGES:
            self.query_with_client(conn, statement)

    def initialize_database(self) -> int:
        """Bring the schema up to the newest registered version.

        All pending upgrades run inside one transaction.  The walk starts
        at the recorded version and stops at the first version with no
        registered upgrade.  If any upgrade raises, nothing from this run
        is kept and :class:`MigrationError` is raised.

        Returns the schema version after the run.
        """
        version: Optional[int] = None
        try:
            with self.transaction() as conn:
                self.query_with_client(conn, q.CREATE_VERSION_TABLE_QUERY)
                row = self.query_with_client(conn, q.GET_SCHEMA_VERSION_QUERY).fetchone()
                version = row["version"]

                while version in self._migrations:
                    log.info("Upgrading from version %d to %d", version, version + 1)
                    self._migrations[version](conn)
                    version += 1
                    self.query_with_client(conn, q.UPDATE_SCHEMA_VERSION_QUERY, (version,))
        except Exception as exc:
            log.error("Database initialization failed: %s", exc)
            raise MigrationError(
                f"Database initialization failed: {exc}", from_version=version
            ) from exc

        log.info("Database schema is at version %d", version)
        return version

    def schema_version(self) -> int:
        """Return the recorded schema version (``0`` for a fresh store)."""
        with self.connection() as conn:
            self.query_with_client(conn, q.CREATE_VERSION_TABLE_QUERY)
            return self.query_with_client(conn, q.GET_SCHEMA_VERSION_QUERY).fetchone()["version"]

    # ------------------------------------------------------------------
    #  Chats
    # ------------------------------------------------------------------

    def count_chats_by_user_id(
        self, user_id: str, updated_after: int | None = None, exclude_deleted: bool = False
    ) -> int:
        after = to_timestamp(updated_after)
        sql = q.COUNT_CHATS_BY_USER_ID_QUERY
        if exclude_deleted:
            sql += q.NOT_DELETED_FILTER
        rows = self.query(sql, (user_id, after, after))
        return int(rows[0]["total"])

    def add_chat(
        self,
        chat_id: Any,
        title: str,
        user_id: str,
        updated_at: int,
        created_at: int | None = None,
        deleted_at: int | None = None,
    ) -> None:
        self.query(
            q.ADD_CHAT_QUERY,
            (
                chat_id,
                user_id,
                title,
                to_timestamp(created_at if created_at is not None else now_ms()),
                to_timestamp(updated_at),
                to_timestamp(deleted_at),
            ),
        )

    def add_chats(self, chats: Sequence[Chat]) -> None:
        if not chats:
            return
        with self.transaction() as conn:
            conn.executemany(q.ADD_CHATS_QUERY, _chat_rows(chats))

    def get_chats_by_user_id(
        self,
        user_id: str,
        updated_after: int | None = None,
        limit: int | None = 20,
        page: int = 0,
        exclude_deleted: bool = False,
    ) -> List[Chat]:
        """Return the user's chats, most recently updated first.

        ``limit=None`` disables paging and returns every matching chat.
        """
        after = to_timestamp(updated_after)
        sql = q.GET_CHATS_BY_USER_ID_QUERY
        params: list[Any] = [user_id, after, after]
        if exclude_deleted:
            sql += q.NOT_DELETED_FILTER
        if limit is None:
            sql += q.CHATS_ORDER
        else:
            sql += q.CHATS_ORDER_AND_PAGE
            params += [limit, page * limit]
        return [Chat.from_row(row) for row in self.query(sql, params)]

    def apply_sync(
        self, user_id: str, chats_to_sync: Sequence[Chat], chats_to_delete: Sequence[Any]
    ) -> None:
        """Upsert *chats_to_sync* and drop the messages of *chats_to_delete*.

        Both steps share one transaction.  Rows that are already tombstoned
        or owned by someone other than *user_id* are left untouched, and so
        are their messages.
        """
        if not chats_to_sync and not chats_to_delete:
            return
        try:
            with self.transaction() as conn:
                if chats_to_sync:
                    conn.executemany(q.UPSERT_CHATS_QUERY, _chat_rows(chats_to_sync))
                if chats_to_delete:
                    conn.executemany(
                        q.DELETE_MESSAGES_BY_CHAT_ID_FOR_USER,
                        [(chat_id, user_id) for chat_id in chats_to_delete],
                    )
        except Exception as exc:
            log.error("Chat sync failed: %s", exc)
            raise

    def rename_chat(self, chat_id: Any, title: str, updated_at: int) -> None:
        self.query(q.RENAME_CHAT_QUERY, (title, to_timestamp(updated_at), chat_id))

    def delete_chat(self, chat_id: Any) -> None:
        """Remove the chat row; its messages go with it."""
        self.query(q.DELETE_CHAT_QUERY, (chat_id,))

    # ------------------------------------------------------------------
    #  Messages
    # ------------------------------------------------------------------

    def count_messages_by_user_id(
        self, user_id: str, created_after: int | None = None, exclude_deleted: bool = False
    ) -> int:
        after = to_timestamp(created_after)
        sql = q.COUNT_MESSAGES_BY_USER_ID_QUERY
        if exclude_deleted:
            sql += q.NOT_DELETED_FILTER
        rows = self.query(sql, (user_id, after, after))
        return int(rows[0]["total"])

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
        """Insert one message; an id that already exists is left untouched."""
        self.query(
            q.ADD_MESSAGE_QUERY,
            (message_id, chat_id, content, role, to_timestamp(created_at), image_url, prompt),
        )

    def add_messages(self, messages: Sequence[Message]) -> None:
        """Add messages in bulk, skipping ids that already exist."""
        if not messages:
            return

        message_ids, chat_ids, contents, roles = [], [], [], []
        created_ats, image_urls, prompts = [], [], []
        for message in messages:
            message_ids.append(message.message_id)
            chat_ids.append(message.chat_id)
            contents.append(message.content)
            roles.append(message.role)
            created_ats.append(to_timestamp(message.created_at))
            image_urls.append(message.image_url)
            prompts.append(message.prompt)

        with self.transaction() as conn:
            conn.executemany(
                q.ADD_MESSAGES_QUERY,
                zip(message_ids, chat_ids, contents, roles, created_ats, image_urls, prompts),
            )

    def get_messages_by_chat_ids(self, chat_ids: Sequence[Any]) -> List[Message]:
        """Return the messages of *chat_ids*, oldest first."""
        chat_ids = list(chat_ids)
        messages: List[Message] = []
        for start in range(0, len(chat_ids), q.MAX_IN_LIST):
            batch = chat_ids[start:start + q.MAX_IN_LIST]
            sql = q.GET_MESSAGES_BY_CHAT_IDS_QUERY.format(placeholders=q.placeholders(len(batch)))
            messages.extend(Message.from_row(row) for row in self.query(sql, batch))
        # Each batch is ordered on its own; merge them.
        messages.sort(key=lambda m: m.created_at)
        return messages

    def get_messages_by_user_id(
        self,
        user_id: str,
        created_after: int | None = None,
        limit: int = 20,
        page: int = 0,
        exclude_deleted: bool = False,
    ) -> List[Message]:
        after = to_timestamp(created_after)
        sql = q.GET_MESSAGES_BY_USER_ID_QUERY
        if exclude_deleted:
            sql += q.NOT_DELETED_FILTER
        sql += q.MESSAGES_ORDER_AND_PAGE
        rows = self.query(sql, (user_id, after, after, limit, page * limit))
        return [Message.from_row(row) for row in rows]

    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Close the shared connection.  Safe to call more than once."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def _chat_rows(chats: Iterable[Chat]) -> Iterator[tuple]:
    """Positional rows for the chat insert/upsert statements."""
    chat_ids, user_ids, titles, created_ats, updated_ats, deleted_ats = [], [], [], [], [], []
    for chat in chats:
        chat_ids.append(chat.chat_id)
        user_ids.append(chat.user_id)
        titles.append(chat.title)
        created_ats.append(to_timestamp(chat.created_at if chat.created_at is not None else now_ms()))
        updated_ats.append(to_timestamp(chat.updated_at))
        deleted_ats.append(to_timestamp(chat.deleted_at))
    return zip(chat_ids, user_ids, titles, created_ats, updated_ats, deleted_ats)


__all__ = ["SQLiteClient", "Migration"]
