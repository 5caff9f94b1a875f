"""
Tests for SyncReconciler: merge policy, stale fetch handling and change feed wiring.
"""
import asyncio

import pytest

from cardflow.errors import FetchError
from cardflow.models import BoardList, BoardSnapshot, Card
from cardflow.state import BoardState
from cardflow.sync import SyncReconciler, merge

BOARD = "board-1"
LISTS = [
    BoardList(id="A", board_id=BOARD, title="Todo", position=1024.0),
    BoardList(id="B", board_id=BOARD, title="Doing", position=2048.0),
]


def snapshot(*cards):
    return BoardSnapshot(board_id=BOARD, lists=list(LISTS), cards=list(cards))


class ControlledFetches:
    """Each fetch waits until the test resolves it."""

    def __init__(self):
        self.calls = []

    async def fetch_board(self, board_id):
        future = asyncio.get_running_loop().create_future()
        self.calls.append(future)
        return await future


def test_merge_protects_pending_card():
    state = BoardState(BOARD)
    state.replace_all(LISTS, [Card(id="x", list_id="B", title="X", position=1536.0)])
    state.pending_card_id = "x"

    lists, cards = merge(
        state,
        snapshot(
            Card(id="x", list_id="A", title="X", position=1024.0),
            Card(id="y", list_id="A", title="Y", position=2048.0),
        ),
    )

    by_id = {c.id: c for c in cards}
    assert (by_id["x"].list_id, by_id["x"].position) == ("B", 1536.0)
    assert (by_id["y"].list_id, by_id["y"].position) == ("A", 2048.0)
    assert lists == LISTS


def test_merge_without_pending_takes_snapshot():
    state = BoardState(BOARD)
    state.replace_all(LISTS, [Card(id="x", list_id="B", title="X", position=1536.0)])

    _, cards = merge(state, snapshot(Card(id="x", list_id="A", title="X", position=1024.0)))

    assert cards == [Card(id="x", list_id="A", title="X", position=1024.0)]



def test_merge_protects_cards_named_explicitly():
    state = BoardState(BOARD)
    state.replace_all(LISTS, [Card(id="x", list_id="B", title="X", position=1536.0)])

    _, cards = merge(
        state, snapshot(Card(id="x", list_id="A", title="X", position=1024.0)), protect=("x", None, "gone")
    )

    assert cards == [Card(id="x", list_id="B", title="X", position=1536.0)]

@pytest.mark.anyio
async def test_superseded_fetch_is_discarded(feed):
    storage = ControlledFetches()
    state = BoardState(BOARD)
    reconciler = SyncReconciler(state, storage, feed)

    older = asyncio.ensure_future(reconciler.refresh())
    await asyncio.sleep(0)
    newer = asyncio.ensure_future(reconciler.refresh())
    await asyncio.sleep(0)

    storage.calls[1].set_result(snapshot(Card(id="x", list_id="B", title="X", position=2.0)))
    assert await newer is True
    storage.calls[0].set_result(snapshot(Card(id="x", list_id="A", title="X", position=1.0)))
    assert await older is False

    assert state.card("x").list_id == "B"


@pytest.mark.anyio
async def test_older_completion_waits_for_newest(feed):
    storage = ControlledFetches()
    state = BoardState(BOARD)
    reconciler = SyncReconciler(state, storage, feed)

    older = asyncio.ensure_future(reconciler.refresh())
    await asyncio.sleep(0)
    newer = asyncio.ensure_future(reconciler.refresh())
    await asyncio.sleep(0)

    storage.calls[0].set_result(snapshot(Card(id="x", list_id="A", title="X", position=1.0)))
    assert await older is False
    assert not state.has_card("x")

    storage.calls[1].set_result(snapshot(Card(id="x", list_id="B", title="X", position=2.0)))
    assert await newer is True
    assert state.card("x").list_id == "B"


@pytest.mark.anyio
async def test_fetch_failure_keeps_state(storage, feed):
    messages = []
    state = BoardState(BOARD)
    reconciler = SyncReconciler(state, storage, feed, notify=messages.append)
    assert await reconciler.refresh()

    state.apply_optimistic_move("a1", "B", 3072.0)
    storage.fail_next("fetch_board")

    assert await reconciler.refresh() is False
    assert state.card("a1").list_id == "B"
    assert messages == ["Failed to load board"]


@pytest.mark.anyio
async def test_fetch_wraps_storage_errors(storage, feed):
    reconciler = SyncReconciler(BoardState("unknown"), storage, feed)
    with pytest.raises(FetchError) as info:
        await reconciler.fetch()
    assert isinstance(info.value.__cause__, KeyError)


@pytest.mark.anyio
async def test_change_notifications_trigger_refresh(storage, feed):
    state = BoardState(BOARD)
    reconciler = SyncReconciler(state, storage, feed)
    reconciler.start()

    storage.cards["a2"] = Card(id="a2", list_id="A", title="Review", position=2048.0)
    for _ in range(5):
        feed.publish("cards")
    await reconciler.settle()

    assert [c.id for c in state.cards_of("A")] == ["a1", "a2"]
    reconciler.stop()


@pytest.mark.anyio
async def test_unwatched_tables_are_ignored(storage, feed):
    state = BoardState(BOARD)
    reconciler = SyncReconciler(state, storage, feed)
    reconciler.start()

    feed.publish("activity_logs")
    await reconciler.settle()

    assert state.cards() == []
    reconciler.stop()


def test_start_and_stop_are_idempotent(storage, feed):
    reconciler = SyncReconciler(BoardState(BOARD), storage, feed)
    reconciler.start()
    reconciler.start()
    assert len(feed.subscribers) == 2
    assert reconciler.running

    reconciler.stop()
    reconciler.stop()
    assert feed.subscribers == {}
    assert not reconciler.running


def test_notification_outside_event_loop_is_dropped(storage, feed):
    state = BoardState(BOARD)
    reconciler = SyncReconciler(state, storage, feed)
    reconciler.start()
    feed.publish("lists")
    assert state.lists() == []
    reconciler.stop()
