from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol

from .feed import LocalChangeFeed
from .models import ActivityEntry, BoardList, BoardSnapshot, Card, now_utc


class BoardStorage(Protocol):
    """Row-oriented storage consumed by board sessions."""

    async def fetch_board(self, board_id: str) -> BoardSnapshot: ...

    async def insert_list(self, board_id: str, title: str, position: float) -> BoardList: ...

    async def insert_card(
        self, list_id: str, title: str, position: float, created_by: Optional[str]
    ) -> Card: ...

    async def update_card(
        self, card_id: str, *, list_id: Optional[str] = None, position: Optional[float] = None
    ) -> Card: ...

    async def insert_activity_log(
        self,
        board_id: str,
        user_id: Optional[str],
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None: ...


def _sorted(items):
    return sorted(items, key=lambda item: (item.position, item.id))


class MemoryStorage:
    """In-memory store for lists, cards and the activity log.

    Every successful write publishes the touched table on ``feed``.
    """

    def __init__(self, feed: Optional[LocalChangeFeed] = None) -> None:
        self.feed = feed
        self.boards: set[str] = set()
        self.lists: Dict[str, BoardList] = {}
        self.cards: Dict[str, Card] = {}
        self.activity: List[ActivityEntry] = []
        self._failures: Dict[str, Exception] = {}

    def create_board(self, board_id: Optional[str] = None) -> str:
        board_id = board_id or str(uuid.uuid4())
        self.boards.add(board_id)
        return board_id

    def fail_next(self, operation: str, error: Optional[Exception] = None) -> None:
        """Make the next call of ``operation`` raise ``error``."""
        self._failures[operation] = error or RuntimeError(f"{operation} failed")

    def _check(self, operation: str) -> None:
        error = self._failures.pop(operation, None)
        if error is not None:
            raise error

    def _publish(self, table: str) -> None:
        if self.feed is not None:
            self.feed.publish(table)

    # === Reads ===

    async def fetch_board(self, board_id: str) -> BoardSnapshot:
        self._check("fetch_board")
        if board_id not in self.boards:
            raise KeyError(board_id)
        lists = _sorted(l for l in self.lists.values() if l.board_id == board_id)
        list_ids = {l.id for l in lists}
        cards = _sorted(c for c in self.cards.values() if c.list_id in list_ids)
        return BoardSnapshot(board_id=board_id, lists=lists, cards=cards)

    # === Writes ===

    async def insert_list(self, board_id: str, title: str, position: float) -> BoardList:
        self._check("insert_list")
        if board_id not in self.boards:
            raise KeyError(board_id)
        board_list = BoardList(
            id=str(uuid.uuid4()),
            board_id=board_id,
            title=title,
            position=position,
            created_at=now_utc(),
        )
        self.lists[board_list.id] = board_list
        self._publish("lists")
        return board_list

    async def insert_card(
        self, list_id: str, title: str, position: float, created_by: Optional[str]
    ) -> Card:
        self._check("insert_card")
        if list_id not in self.lists:
            raise KeyError(list_id)
        card = Card(
            id=str(uuid.uuid4()),
            list_id=list_id,
            title=title,
            position=position,
            created_by=created_by,
            created_at=now_utc(),
        )
        self.cards[card.id] = card
        self._publish("cards")
        return card

    async def update_card(
        self, card_id: str, *, list_id: Optional[str] = None, position: Optional[float] = None
    ) -> Card:
        self._check("update_card")
        card = self.cards[card_id]
        if list_id is not None and list_id not in self.lists:
            raise KeyError(list_id)
        card = replace(
            card,
            list_id=card.list_id if list_id is None else list_id,
            position=card.position if position is None else position,
        )
        self.cards[card_id] = card
        self._publish("cards")
        return card

    async def insert_activity_log(
        self,
        board_id: str,
        user_id: Optional[str],
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._check("insert_activity_log")
        self.activity.append(
            ActivityEntry(
                board_id=board_id,
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=dict(metadata or {}),
            )
        )
        self._publish("activity_logs")
