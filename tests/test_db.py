"""Tests for the SQLite chat store and its migration runner.

Every test gets its own database file under ``tmp_path`` so the tests
are isolated from each other and from any real ``chat_history.db``.
"""

import sqlite3
from pathlib import Path

import pytest

from chatbridge.config import DatabaseConfiguration
from chatbridge.db import SQLiteClient
from chatbridge.dto import Chat, Message
from chatbridge.errors import DatabaseNotInitializedError, MigrationError


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Return a temporary database file used for a single test."""
    return tmp_path / "chat_history.db"


@pytest.fixture
def client(db_path: Path):
    """An initialised client; shut down after the test."""
    c = SQLiteClient(DatabaseConfiguration(path=str(db_path)))
    c.initialize_database()
    yield c
    c.shutdown()


def _table_names(db_path: Path) -> set:
    with sqlite3.connect(db_path) as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


# ---------------------------------------------------------------------------
#  Migrations
# ---------------------------------------------------------------------------

def test_initialize_creates_schema(db_path: Path) -> None:
    """A fresh store ends at version 1 with the baseline tables and indexes."""
    c = SQLiteClient(DatabaseConfiguration(path=str(db_path)))
    try:
        assert c.initialize_database() == 1
        assert c.schema_version() == 1
    finally:
        c.shutdown()

    with sqlite3.connect(db_path) as conn:
        chat_cols = [row[1] for row in conn.execute("PRAGMA table_info(chats)")]
        msg_cols = [row[1] for row in conn.execute("PRAGMA table_info(messages)")]
        indexes = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")}

    assert chat_cols == ["id", "user_id", "title", "created_at", "updated_at", "deleted_at"]
    assert msg_cols == ["id", "chat_id", "content", "image_url", "role", "prompt", "created_at"]
    assert {
        "idx_chats_user_id",
        "idx_chats_updated_at",
        "idx_chats_deleted_at",
        "idx_messages_chat_id",
        "idx_messages_created_at",
    } <= indexes


def test_initialize_twice_applies_nothing_the_second_time(db_path: Path) -> None:
    calls = []

    def add_column(conn):
        calls.append(1)
        conn.execute("ALTER TABLE chats ADD COLUMN pinned INTEGER DEFAULT 0")

    c = SQLiteClient(DatabaseConfiguration(path=str(db_path)))
    c.register_migration(1, add_column)
    try:
        assert c.initialize_database() == 2
        assert c.initialize_database() == 2
    finally:
        c.shutdown()

    assert calls == [1]
    with sqlite3.connect(db_path) as conn:
        versions = [row[0] for row in conn.execute("SELECT version FROM schema_versions ORDER BY version")]
    assert versions == [1, 2]


def test_restart_resumes_from_persisted_version(db_path: Path) -> None:
    first = SQLiteClient(DatabaseConfiguration(path=str(db_path)))
    first.initialize_database()
    first.shutdown()

    calls = []
    second = SQLiteClient(DatabaseConfiguration(path=str(db_path)))
    second.register_migration(0, lambda conn: calls.append(0))
    second.register_migration(1, lambda conn: calls.append(1))
    try:
        assert second.initialize_database() == 2
    finally:
        second.shutdown()
    assert calls == [1]


def test_failed_migration_rolls_back_whole_run(client: SQLiteClient, db_path: Path) -> None:
    def half_done(conn):
        conn.execute("CREATE TABLE attachments (id INTEGER PRIMARY KEY)")
        raise RuntimeError("boom")

    client.register_migration(1, lambda conn: conn.execute("CREATE TABLE tags (id INTEGER PRIMARY KEY)"))
    client.register_migration(2, half_done)

    with pytest.raises(MigrationError) as excinfo:
        client.initialize_database()

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert excinfo.value.from_version == 2
    assert client.schema_version() == 1
    tables = _table_names(db_path)
    assert "attachments" not in tables
    assert "tags" not in tables


def test_failed_first_run_leaves_store_empty(db_path: Path) -> None:
    c = SQLiteClient(DatabaseConfiguration(path=str(db_path)))
    c.register_migration(1, lambda conn: conn.execute("NOT VALID SQL"))
    try:
        with pytest.raises(MigrationError):
            c.initialize_database()
        assert c.schema_version() == 0
    finally:
        c.shutdown()
    assert "chats" not in _table_names(db_path)


def test_gap_in_versions_stops_the_walk(db_path: Path) -> None:
    calls = []
    c = SQLiteClient(DatabaseConfiguration(path=str(db_path)))
    c.register_migration(2, lambda conn: calls.append(2))
    try:
        assert c.initialize_database() == 1
    finally:
        c.shutdown()
    assert calls == []


def test_registering_same_version_twice_keeps_the_last(db_path: Path) -> None:
    calls = []
    c = SQLiteClient(DatabaseConfiguration(path=str(db_path)))
    c.register_migration(1, lambda conn: calls.append("first"))
    c.register_migration(1, lambda conn: calls.append("second"))
    try:
        c.initialize_database()
    finally:
        c.shutdown()
    assert calls == ["second"]


# ---------------------------------------------------------------------------
#  Chats
# ---------------------------------------------------------------------------

def test_add_and_get_chats(client: SQLiteClient) -> None:
    client.add_chat("c1", "First", "u1", updated_at=1_700_000_000_123, created_at=1_700_000_000_000)
    client.add_chats([
        Chat(chat_id="c2", user_id="u1", title="Second", updated_at=1_700_000_000_500),
        Chat(chat_id="c3", user_id="u1", title="Gone", updated_at=1_700_000_000_200, deleted_at=1_700_000_000_300),
        Chat(chat_id="c4", user_id="u2", title="Other", updated_at=1_700_000_000_900),
    ])

    chats = client.get_chats_by_user_id("u1")
    assert [c.chat_id for c in chats] == ["c2", "c3", "c1"]
    assert chats[2].updated_at == 1_700_000_000_123
    assert chats[2].created_at == 1_700_000_000_000
    assert chats[1].deleted_at == 1_700_000_000_300
    assert chats[0].deleted_at is None

    assert client.count_chats_by_user_id("u1") == 3
    assert client.count_chats_by_user_id("u1", exclude_deleted=True) == 2
    assert client.count_chats_by_user_id("u1", updated_after=1_700_000_000_200) == 1
    assert [c.chat_id for c in client.get_chats_by_user_id("u1", exclude_deleted=True)] == ["c2", "c1"]


def test_get_chats_paging(client: SQLiteClient) -> None:
    client.add_chats([
        Chat(chat_id=i, user_id="u1", title=f"chat {i}", updated_at=1000 + i) for i in range(5)
    ])
    first = client.get_chats_by_user_id("u1", limit=2, page=0)
    second = client.get_chats_by_user_id("u1", limit=2, page=1)
    everything = client.get_chats_by_user_id("u1", limit=None)

    assert [c.chat_id for c in first] == [4, 3]
    assert [c.chat_id for c in second] == [2, 1]
    assert len(everything) == 5


def test_rename_chat(client: SQLiteClient) -> None:
    client.add_chat("c1", "Old", "u1", updated_at=100)
    client.rename_chat("c1", "New", updated_at=200)
    (chat,) = client.get_chats_by_user_id("u1")
    assert chat.title == "New"
    assert chat.updated_at == 200


def test_delete_chat_cascades_to_messages(client: SQLiteClient) -> None:
    client.add_chat("c1", "Doomed", "u1", updated_at=100)
    client.add_message("m1", "c1", "hello", "user", created_at=110)
    client.delete_chat("c1")
    assert client.get_chats_by_user_id("u1") == []
    assert client.get_messages_by_chat_ids(["c1"]) == []


def test_apply_sync_is_atomic(client: SQLiteClient) -> None:
    client.add_chat("c1", "Keep", "u1", updated_at=100)
    client.add_message("m1", "c1", "hello", "user", created_at=110)

    good = Chat(chat_id="c1", user_id="u1", title="Renamed", updated_at=200, deleted_at=200)
    bad = Chat(chat_id="c2", user_id="u1", title=None, updated_at=200)
    with pytest.raises(sqlite3.IntegrityError):
        client.apply_sync("u1", [good, bad], ["c1"])

    (chat,) = client.get_chats_by_user_id("u1")
    assert chat.title == "Keep"
    assert chat.deleted_at is None
    assert len(client.get_messages_by_chat_ids(["c1"])) == 1


def test_apply_sync_leaves_other_users_rows_alone(client: SQLiteClient) -> None:
    client.add_chat("c1", "Theirs", "u2", updated_at=100)
    client.add_message("m1", "c1", "private", "user", created_at=110)

    client.apply_sync(
        "u1", [Chat(chat_id="c1", user_id="u1", title="Mine", updated_at=200, deleted_at=200)], ["c1"]
    )

    (chat,) = client.get_chats_by_user_id("u2")
    assert chat.title == "Theirs"
    assert chat.deleted_at is None
    assert [m.message_id for m in client.get_messages_by_chat_ids(["c1"])] == ["m1"]


def test_apply_sync_with_many_deletes(client: SQLiteClient) -> None:
    chat_ids = [f"c{i}" for i in range(1200)]
    client.add_chats([Chat(chat_id=c, user_id="u1", title=c, updated_at=100) for c in chat_ids])
    client.add_messages([
        Message(message_id=f"m{i}", chat_id=c, content="x", role="user", created_at=110)
        for i, c in enumerate(chat_ids)
    ])

    client.apply_sync("u1", [], chat_ids)

    assert client.count_messages_by_user_id("u1") == 0


# ---------------------------------------------------------------------------
#  Messages
# ---------------------------------------------------------------------------

def test_message_insert_is_idempotent(client: SQLiteClient) -> None:
    client.add_chat("c1", "Chat", "u1", updated_at=100)
    client.add_message("m1", "c1", "original", "user", created_at=110)
    client.add_message("m1", "c1", "duplicate", "user", created_at=120)
    client.add_messages([
        Message(message_id="m1", chat_id="c1", content="bulk duplicate", role="user", created_at=130),
        Message(message_id="m2", chat_id="c1", content="reply", role="assistant", created_at=140),
        Message(message_id="m2", chat_id="c1", content="reply again", role="assistant", created_at=150),
    ])

    messages = client.get_messages_by_chat_ids(["c1"])
    assert [(m.message_id, m.content) for m in messages] == [("m1", "original"), ("m2", "reply")]


def test_messages_by_user(client: SQLiteClient) -> None:
    client.add_chat("c1", "Live", "u1", updated_at=100)
    client.add_chat("c2", "Deleted", "u1", updated_at=100, deleted_at=150)
    client.add_chat("c3", "Someone else", "u2", updated_at=100)
    client.add_messages([
        Message(message_id="m1", chat_id="c1", content="a", role="user", created_at=110),
        Message(message_id="m2", chat_id="c1", content="b", role="assistant", created_at=120,
                image_url="https://example.com/cat.png", prompt="a cat"),
        Message(message_id="m3", chat_id="c2", content="c", role="user", created_at=130),
        Message(message_id="m4", chat_id="c3", content="d", role="user", created_at=140),
    ])

    messages = client.get_messages_by_user_id("u1")
    assert [m.message_id for m in messages] == ["m1", "m2", "m3"]
    assert messages[1].image_url == "https://example.com/cat.png"
    assert messages[1].prompt == "a cat"
    assert messages[1].created_at == 120

    assert client.count_messages_by_user_id("u1") == 3
    assert client.count_messages_by_user_id("u1", created_after=110) == 2
    assert client.count_messages_by_user_id("u1", exclude_deleted=True) == 2
    assert [m.message_id for m in client.get_messages_by_user_id("u1", limit=1, page=1)] == ["m2"]
    assert [m.message_id for m in client.get_messages_by_user_id("u1", exclude_deleted=True)] == ["m1", "m2"]


def test_get_messages_by_no_chat_ids(client: SQLiteClient) -> None:
    assert client.get_messages_by_chat_ids([]) == []


def test_get_messages_by_many_chat_ids(client: SQLiteClient) -> None:
    chat_ids = [f"c{i}" for i in range(1200)]
    client.add_chats([Chat(chat_id=c, user_id="u1", title=c, updated_at=100) for c in chat_ids])
    # Newest message in the first chat so ordering must span every batch.
    client.add_messages([
        Message(message_id=f"m{i}", chat_id=c, content="x", role="user", created_at=5000 - i)
        for i, c in enumerate(chat_ids)
    ])

    messages = client.get_messages_by_chat_ids(chat_ids)

    assert len(messages) == 1200
    assert messages[0].message_id == "m1199"
    assert messages[-1].message_id == "m0"
    assert [m.created_at for m in messages] == sorted(m.created_at for m in messages)


def test_calls_after_shutdown_fail(client: SQLiteClient) -> None:
    client.shutdown()
    client.shutdown()
    with pytest.raises(DatabaseNotInitializedError):
        client.query("SELECT 1")
