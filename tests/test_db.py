"""
Tests for the SQLAlchemy storage backend against a temporary SQLite file.
"""
import pytest

from cardflow.db import CardAssignee, CardLabel, Comment, Profile, SqlStorage
from cardflow.feed import LocalChangeFeed

pytestmark = pytest.mark.anyio


@pytest.fixture
def sql(tmp_path):
    feed = LocalChangeFeed()
    storage = SqlStorage(f"sqlite:///{tmp_path / 'cardflow.db'}", feed=feed)
    storage.init_db()
    return storage


async def test_insert_and_fetch_in_position_order(sql):
    board_id = sql.create_board(title="Launch")
    later = await sql.insert_list(board_id, "Doing", 2048.0)
    first = await sql.insert_list(board_id, "Todo", 1024.0)
    c2 = await sql.insert_card(first.id, "Second", 2048.0, "u1")
    c1 = await sql.insert_card(first.id, "First", 1024.0, "u1")

    snapshot = await sql.fetch_board(board_id)

    assert [l.id for l in snapshot.lists] == [first.id, later.id]
    assert [c.id for c in snapshot.cards] == [c1.id, c2.id]
    assert snapshot.cards[0].created_by == "u1"


async def test_fetch_joins_labels_assignees_and_comments(sql):
    board_id = sql.create_board()
    board_list = await sql.insert_list(board_id, "Todo", 1024.0)
    card = await sql.insert_card(board_list.id, "Tagged", 1024.0, None)
    with sql.SessionLocal() as db:
        db.add(Profile(id="u1", full_name="Ada Lovelace"))
        db.add(CardLabel(card_id=card.id, name="bug", color="#ff0000"))
        db.add(CardAssignee(card_id=card.id, user_id="u1"))
        db.add(Comment(card_id=card.id, user_id="u1", content="on it"))
        db.add(Comment(card_id=card.id, user_id="u1", content="done"))
        db.commit()

    fetched = (await sql.fetch_board(board_id)).cards[0]

    assert [(l.name, l.color) for l in fetched.labels] == [("bug", "#ff0000")]
    assert fetched.assignees == ("Ada Lovelace",)
    assert fetched.comment_count == 2


async def test_update_card_moves_between_lists(sql):
    board_id = sql.create_board()
    source = await sql.insert_list(board_id, "Todo", 1024.0)
    target = await sql.insert_list(board_id, "Doing", 2048.0)
    card = await sql.insert_card(source.id, "Move me", 1024.0, None)

    updated = await sql.update_card(card.id, list_id=target.id, position=512.0)

    assert (updated.list_id, updated.position) == (target.id, 512.0)
    snapshot = await sql.fetch_board(board_id)
    assert (snapshot.cards[0].list_id, snapshot.cards[0].position) == (target.id, 512.0)


async def test_missing_rows_raise_key_error(sql):
    with pytest.raises(KeyError):
        await sql.fetch_board("nope")
    with pytest.raises(KeyError):
        await sql.update_card("nope", position=1.0)


async def test_writes_publish_changes(sql):
    tables = []
    for table in ("lists", "cards", "activity_logs"):
        sql.feed.subscribe(table, lambda table=table: tables.append(table))
    board_id = sql.create_board()

    board_list = await sql.insert_list(board_id, "Todo", 1024.0)
    card = await sql.insert_card(board_list.id, "Card", 1024.0, None)
    await sql.insert_activity_log(board_id, "u1", "moved_card", "card", card.id, {"from_list": "a"})

    assert tables == ["lists", "cards", "activity_logs"]
