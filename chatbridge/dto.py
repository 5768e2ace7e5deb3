"""Storage records exchanged with :mod:`chatbridge.chat_history`.

All timestamps on these records are integers counting milliseconds since
the Unix epoch.  The store keeps absolute times instead; the helpers at
the bottom of this module convert between the two representations.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


@dataclass
class Chat:
    """A conversation owned by exactly one user.

    ``updated_at`` is the logical clock used to settle conflicting edits;
    ``deleted_at`` is the tombstone – once set on the server the chat is
    never revived by a sync.
    """

    chat_id: Any
    user_id: str
    title: str
    updated_at: int
    deleted_at: Optional[int] = None
    created_at: Optional[int] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Chat":
        keys = row.keys()
        return cls(
            chat_id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            updated_at=from_timestamp(row["updated_at"]),
            deleted_at=from_timestamp(row["deleted_at"]),
            created_at=from_timestamp(row["created_at"]) if "created_at" in keys else None,
        )


@dataclass
class Message:
    """A single immutable chat line."""

    message_id: Any
    chat_id: Any
    content: str
    role: str
    created_at: int
    image_url: Optional[str] = None
    prompt: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Message":
        return cls(
            message_id=row["id"],
            chat_id=row["chat_id"],
            content=row["content"],
            role=row["role"],
            created_at=from_timestamp(row["created_at"]),
            image_url=row["image_url"],
            prompt=row["prompt"],
        )


# ---------------------------------------------------------------------------
#  Timestamp conversion
# ---------------------------------------------------------------------------

def to_timestamp(ms: Optional[int]) -> Optional[str]:
    """Return the stored form (ISO-8601, UTC, millisecond precision) of *ms*.

    The fixed format keeps lexical order equal to chronological order, so
    the stored text can be compared directly in SQL.
    """
    if ms is None:
        return None
    moment = EPOCH + timedelta(milliseconds=int(ms))
    return moment.isoformat(timespec="milliseconds")


def from_timestamp(value: Optional[str]) -> Optional[int]:
    """Inverse of :func:`to_timestamp`.

    Naive values (e.g. produced by sqlite's ``CURRENT_TIMESTAMP``) are
    read as UTC.
    """
    if value is None:
        return None
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - EPOCH) // _ONE_MS


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return (datetime.now(timezone.utc) - EPOCH) // _ONE_MS


__all__ = ["Chat", "Message", "to_timestamp", "from_timestamp", "now_ms"]
