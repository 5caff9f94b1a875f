"""Shared fixtures: an in-memory board with two lists and three cards."""

import pytest

from cardflow.feed import LocalChangeFeed
from cardflow.models import BoardList, Card
from cardflow.session import BoardSession
from cardflow.storage import MemoryStorage

BOARD = "board-1"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def feed():
    return LocalChangeFeed()


@pytest.fixture
def storage(feed):
    """List A holds a1 at 1024; list B holds b1, b2 at 1024, 2048."""
    store = MemoryStorage(feed=feed)
    store.create_board(BOARD)
    store.lists["A"] = BoardList(id="A", board_id=BOARD, title="Todo", position=1024.0)
    store.lists["B"] = BoardList(id="B", board_id=BOARD, title="Doing", position=2048.0)
    store.cards["a1"] = Card(id="a1", list_id="A", title="Write docs", position=1024.0)
    store.cards["b1"] = Card(id="b1", list_id="B", title="Fix login", position=1024.0)
    store.cards["b2"] = Card(id="b2", list_id="B", title="Ship release", position=2048.0)
    return store


@pytest.fixture
async def session(storage, feed):
    board = BoardSession(BOARD, storage, feed, user_id="u1")
    await board.open()
    yield board
    await board.settle()
    await board.close()
