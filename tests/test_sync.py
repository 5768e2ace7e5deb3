"""Tests for :func:`chatbridge.sync.reconcile_chats`.

The reconciler is a pure function, so these tests need no database.
"""

import logging

from chatbridge.dto import Chat
from chatbridge.sync import SyncPlan, reconcile_chats


def chat(chat_id="c1", user_id="u1", updated_at=100, deleted_at=None, title="Chat"):
    return Chat(chat_id=chat_id, user_id=user_id, title=title, updated_at=updated_at, deleted_at=deleted_at)


def test_new_chat_is_upserted() -> None:
    incoming = chat(updated_at=100)
    plan = reconcile_chats("u1", [incoming], [])
    assert plan.upserts == [incoming]
    assert plan.deletes == []


def test_new_tombstoned_chat_is_upserted_and_deleted() -> None:
    incoming = chat(updated_at=100, deleted_at=120)
    plan = reconcile_chats("u1", [incoming], [])
    assert plan.upserts == [incoming]
    assert plan.deletes == ["c1"]


def test_client_tombstone_wins_over_live_server_chat() -> None:
    incoming = chat(updated_at=50, deleted_at=60)
    plan = reconcile_chats("u1", [incoming], [chat(updated_at=40)])
    assert plan.upserts == [incoming]
    assert plan.deletes == ["c1"]


def test_client_tombstone_wins_even_when_older() -> None:
    incoming = chat(updated_at=10, deleted_at=20)
    plan = reconcile_chats("u1", [incoming], [chat(updated_at=500)])
    assert plan.upserts == [incoming]
    assert plan.deletes == ["c1"]


def test_newer_client_edit_wins() -> None:
    incoming = chat(updated_at=101, title="Renamed")
    plan = reconcile_chats("u1", [incoming], [chat(updated_at=100)])
    assert plan.upserts == [incoming]
    assert plan.deletes == []


def test_tie_goes_to_server() -> None:
    plan = reconcile_chats("u1", [chat(updated_at=100, title="Client")], [chat(updated_at=100)])
    assert plan.is_empty


def test_older_client_edit_is_dropped() -> None:
    plan = reconcile_chats("u1", [chat(updated_at=99)], [chat(updated_at=100)])
    assert plan.is_empty


def test_server_tombstone_is_terminal() -> None:
    server = [chat(updated_at=100, deleted_at=100)]
    for incoming in (chat(updated_at=10_000), chat(updated_at=10_000, deleted_at=10_001), chat(updated_at=1)):
        plan = reconcile_chats("u1", [incoming], server)
        assert plan.is_empty


def test_foreign_chat_is_rejected_and_logged(caplog) -> None:
    foreign = chat(chat_id="c9", user_id="intruder", deleted_at=5)
    own = chat(chat_id="c2")
    with caplog.at_level(logging.ERROR, logger="chatbridge.sync"):
        plan = reconcile_chats("u1", [foreign, own], [])

    assert plan.upserts == [own]
    assert plan.deletes == []
    assert plan.rejected == ["c9"]
    assert "c9" in caplog.text
    assert "intruder" in caplog.text


def test_duplicates_are_judged_against_the_same_snapshot() -> None:
    first = chat(updated_at=200, title="first")
    second = chat(updated_at=150, title="second")
    plan = reconcile_chats("u1", [first, second], [chat(updated_at=100)])
    # The second occurrence does not see the first one's upsert.
    assert plan.upserts == [first, second]


def test_empty_input_gives_empty_plan() -> None:
    plan = reconcile_chats("u1", [], [chat()])
    assert plan == SyncPlan()
    assert plan.is_empty
