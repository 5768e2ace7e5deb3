"""Reconcile a client's chat list with what the server already holds.

The functions here are pure: they take the client records and a server
snapshot and decide what to write.  Applying the decision is the job of
:meth:`chatbridge.db.SQLiteClient.apply_sync`.

Every client record is judged on its own against the same snapshot.  A
chat id that appears twice in one batch is therefore compared twice
against the server's state *before* the batch; the later occurrence does
not see the earlier one.  The same holds for two syncs racing for one
user unless the caller serialises them (see
:meth:`chatbridge.chat_history.ChatHistory.sync_chats`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .dto import Chat

log = logging.getLogger(__name__)


@dataclass
class SyncPlan:
    """Outcome of :func:`reconcile_chats`.

    ``upserts`` are written to ``chats``; ``deletes`` are chat ids whose
    messages get removed; ``rejected`` lists the ids of records that
    belonged to another user.
    """

    upserts: List[Chat] = field(default_factory=list)
    deletes: List[Any] = field(default_factory=list)
    rejected: List[Any] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.upserts and not self.deletes


def reconcile_chats(user_id: str, chats: Iterable[Chat], server_chats: Iterable[Chat]) -> SyncPlan:
    """Decide which client chats to write and whose messages to drop.

    1. A chat owned by someone other than *user_id* is skipped and logged.
    2. A chat the server has never seen is written; if it already carries
       a tombstone its id also goes to ``deletes``.
    3. A live server chat is overwritten by a client tombstone (written
       and added to ``deletes``), or by a client edit with a strictly
       newer ``updated_at``.  Ties go to the server.
    4. A server chat that is already tombstoned is never touched again.
    """
    plan = SyncPlan()
    snapshot: Dict[Any, Chat] = {chat.chat_id: chat for chat in server_chats}

    for chat in chats:
        if chat.user_id != user_id:
            log.error(
                "Chat %s has userId %s which doesn't match the provided userId %s",
                chat.chat_id,
                chat.user_id,
                user_id,
            )
            plan.rejected.append(chat.chat_id)
            continue

        server_chat = snapshot.get(chat.chat_id)
        if server_chat is None:
            plan.upserts.append(chat)
            if chat.is_deleted:
                plan.deletes.append(chat.chat_id)
        elif server_chat.is_deleted:
            continue
        elif chat.is_deleted:
            plan.upserts.append(chat)
            plan.deletes.append(chat.chat_id)
        elif chat.updated_at > server_chat.updated_at:
            plan.upserts.append(chat)

    log.debug(
        "Sync for %s: %d upserts, %d deletes, %d rejected",
        user_id,
        len(plan.upserts),
        len(plan.deletes),
        len(plan.rejected),
    )
    return plan


__all__ = ["SyncPlan", "reconcile_chats"]
