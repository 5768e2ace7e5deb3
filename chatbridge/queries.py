"""SQL used by :mod:`chatbridge.db`.

Statements use sqlite's ``?`` placeholders.  Timestamps are bound as the
ISO-8601 text produced by :func:`chatbridge.dto.to_timestamp`, so plain
string comparison orders them chronologically.

Optional filters are written as ``(? IS NULL OR column > ?)`` and take
the same value twice.
"""

CREATE_VERSION_TABLE_QUERY = """
    CREATE TABLE IF NOT EXISTS schema_versions (
        version     INTEGER PRIMARY KEY,
        applied_at  TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
"""

GET_SCHEMA_VERSION_QUERY = "SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions"

UPDATE_SCHEMA_VERSION_QUERY = "INSERT INTO schema_versions (version) VALUES (?)"

# ``id`` columns carry no declared type: chat and message ids may be
# strings or integers and must come back exactly as they were stored.
CREATE_CHATS_TABLE_QUERY = """
    CREATE TABLE IF NOT EXISTS chats (
        id          NOT NULL PRIMARY KEY,
        user_id     TEXT,
        title       TEXT NOT NULL,
        created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at  TIMESTAMP NOT NULL DEFAULT '1970-01-01T00:00:00.000+00:00',
        deleted_at  TIMESTAMP DEFAULT NULL
    )
"""

CREATE_MESSAGES_TABLE_QUERY = """
    CREATE TABLE IF NOT EXISTS messages (
        id          NOT NULL PRIMARY KEY,
        chat_id     NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
        content     TEXT NOT NULL,
        image_url   TEXT,
        role        TEXT NOT NULL,
        prompt      TEXT,
        created_at  TIMESTAMP NOT NULL
    )
"""

INDEX_CHATS = (
    "CREATE INDEX IF NOT EXISTS idx_chats_user_id ON chats(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_chats_updated_at ON chats(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_chats_deleted_at ON chats(deleted_at)",
)

INDEX_MESSAGES = (
    "CREATE INDEX IF NOT EXISTS idx_messages_chat_id ON messages(chat_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_created_at ON messages(created_at)",
)

# ---------------------------------------------------------------------------
#  Chats
# ---------------------------------------------------------------------------

COUNT_CHATS_BY_USER_ID_QUERY = """
    SELECT COUNT(*) AS total
    FROM chats c
    WHERE c.user_id = ?
    AND (? IS NULL OR c.updated_at > ?)
"""

GET_CHATS_BY_USER_ID_QUERY = """
    SELECT c.id, c.user_id, c.title, c.created_at, c.updated_at, c.deleted_at
    FROM chats c
    WHERE c.user_id = ?
    AND (? IS NULL OR c.updated_at > ?)
"""

NOT_DELETED_FILTER = " AND c.deleted_at IS NULL"

CHATS_ORDER_AND_PAGE = " ORDER BY c.updated_at DESC LIMIT ? OFFSET ?"

CHATS_ORDER = " ORDER BY c.updated_at DESC"

ADD_CHAT_QUERY = """
    INSERT INTO chats (id, user_id, title, created_at, updated_at, deleted_at)
    VALUES (?, ?, ?, ?, ?, ?)
"""

# Same statement, run through ``executemany`` for bulk inserts.
ADD_CHATS_QUERY = ADD_CHAT_QUERY

# ``created_at`` is only written on first insert.  An existing row is only
# overwritten while it is live and owned by the same user.
UPSERT_CHATS_QUERY = """
    INSERT INTO chats (id, user_id, title, created_at, updated_at, deleted_at)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT (id) DO UPDATE SET
        user_id = excluded.user_id,
        title = excluded.title,
        updated_at = excluded.updated_at,
        deleted_at = excluded.deleted_at
    WHERE chats.deleted_at IS NULL AND chats.user_id = excluded.user_id
"""

RENAME_CHAT_QUERY = "UPDATE chats SET title = ?, updated_at = ? WHERE id = ?"

DELETE_CHAT_QUERY = "DELETE FROM chats WHERE id = ?"

# ---------------------------------------------------------------------------
#  Messages
# ---------------------------------------------------------------------------

ADD_MESSAGE_QUERY = """
    INSERT INTO messages (id, chat_id, content, role, created_at, image_url, prompt)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (id) DO NOTHING
"""

# Same statement, run through ``executemany`` for bulk inserts.
ADD_MESSAGES_QUERY = ADD_MESSAGE_QUERY

# Run through ``executemany``, one row per chat id.
DELETE_MESSAGES_BY_CHAT_ID_FOR_USER = """
    DELETE FROM messages
    WHERE chat_id = ?
    AND chat_id IN (SELECT id FROM chats WHERE user_id = ?)
"""

COUNT_MESSAGES_BY_USER_ID_QUERY = """
    SELECT COUNT(*) AS total
    FROM messages m
    JOIN chats c ON m.chat_id = c.id
    WHERE c.user_id = ?
    AND (? IS NULL OR m.created_at > ?)
"""

GET_MESSAGES_BY_CHAT_IDS_QUERY = """
    SELECT id, chat_id, content, role, image_url, prompt, created_at
    FROM messages
    WHERE chat_id IN ({placeholders})
    ORDER BY created_at ASC
"""

GET_MESSAGES_BY_USER_ID_QUERY = """
    SELECT m.id, m.chat_id, m.content, m.role, m.image_url, m.prompt, m.created_at
    FROM messages m
    JOIN chats c ON m.chat_id = c.id
    WHERE c.user_id = ?
    AND (? IS NULL OR m.created_at > ?)
"""

MESSAGES_ORDER_AND_PAGE = " ORDER BY m.created_at ASC LIMIT ? OFFSET ?"


# Keeps every IN list well under sqlite's bound-variable limit.
MAX_IN_LIST = 500


def placeholders(count: int) -> str:
    """Return ``"?, ?, ..."`` with *count* markers for an ``IN`` list."""
    return ", ".join("?" for _ in range(count))
