from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from .errors import InvariantViolation
from .models import BoardList, BoardView, Card, ListView, card_out, list_out
from .positions import allocate_append, spread

logger = logging.getLogger(__name__)

Observer = Callable[["BoardState"], None]


def _ordered(items):
    return sorted(items, key=lambda item: (item.position, item.id))


class BoardState:
    """In-memory lists and cards of one open board.

    All mutation is synchronous and performs no I/O. Merging policy for
    authoritative snapshots lives in the reconciler; ``replace_all`` only
    swaps the data and drops cards whose list is missing.
    """

    def __init__(self, board_id: str) -> None:
        self.board_id = board_id
        self.pending_card_id: Optional[str] = None
        self._lists: Dict[str, BoardList] = {}
        self._cards: Dict[str, Card] = {}
        self._observers: List[Observer] = []

    # === Queries ===

    def lists(self) -> List[BoardList]:
        return _ordered(self._lists.values())

    def cards_of(self, list_id: str) -> List[Card]:
        return _ordered(c for c in self._cards.values() if c.list_id == list_id)

    def cards(self) -> List[Card]:
        return list(self._cards.values())

    def card(self, card_id: str) -> Card:
        return self._cards[card_id]

    def board_list(self, list_id: str) -> BoardList:
        return self._lists[list_id]

    def has_card(self, card_id: str) -> bool:
        return card_id in self._cards

    def has_list(self, list_id: str) -> bool:
        return list_id in self._lists

    def next_list_position(self) -> float:
        last = max((l.position for l in self._lists.values()), default=None)
        return allocate_append(last)

    def next_card_position(self, list_id: str) -> float:
        last = max((c.position for c in self._cards.values() if c.list_id == list_id), default=None)
        return allocate_append(last)

    # === Mutations ===

    def apply_optimistic_move(self, card_id: str, target_list_id: str, target_position: float) -> Card:
        if target_list_id not in self._lists:
            raise InvariantViolation(f"list {target_list_id} is not on board {self.board_id}")
        card = replace(self._cards[card_id], list_id=target_list_id, position=target_position)
        self._cards[card_id] = card
        self._changed()
        return card

    def replace_all(self, lists: Iterable[BoardList], cards: Iterable[Card]) -> None:
        new_lists = {l.id: l for l in lists}
        new_cards: Dict[str, Card] = {}
        for card in cards:
            if card.list_id not in new_lists:
                logger.warning("dropping card %s: list %s not on board %s", card.id, card.list_id, self.board_id)
                continue
            new_cards[card.id] = card
        self._lists = new_lists
        self._cards = new_cards
        self._changed()

    def upsert_list(self, board_list: BoardList) -> None:
        self._lists[board_list.id] = board_list
        self._changed()

    def upsert_card(self, card: Card) -> None:
        if card.list_id not in self._lists:
            raise InvariantViolation(f"card {card.id} references missing list {card.list_id}")
        self._cards[card.id] = card
        self._changed()

    def renumber(self, list_id: str, exclude: Optional[str] = None) -> List[Card]:
        """Respace a list's cards to GAP multiples, keeping their order.

        ``exclude`` leaves one card (usually the one being dropped) untouched.
        Returns the cards whose position changed so the caller can persist them.
        """
        cards = [c for c in self.cards_of(list_id) if c.id != exclude]
        changed = []
        for card, position in zip(cards, spread(len(cards))):
            if card.position != position:
                updated = replace(card, position=position)
                self._cards[card.id] = updated
                changed.append(updated)
        if changed:
            self._changed()
        return changed

    # === Observation ===

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _changed(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self)
            except Exception:
                logger.exception("board observer failed")

    def view(self, query: Optional[str] = None) -> BoardView:
        needle = query.strip().lower() if query else ""
        lists = []
        for board_list in self.lists():
            cards = self.cards_of(board_list.id)
            if needle:
                cards = [c for c in cards if needle in c.title.lower()]
            lists.append(ListView(**list_out(board_list).model_dump(), cards=[card_out(c) for c in cards]))
        return BoardView(boardId=self.board_id, lists=lists, pendingCardId=self.pending_card_id)
