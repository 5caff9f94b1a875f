from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set, Tuple

from .positions import PositionExhausted, allocate_append, allocate_between
from .state import BoardState
from .storage import BoardStorage

logger = logging.getLogger(__name__)


class DragPhase(enum.Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    PERSISTING = "persisting"


@dataclass
class DragSession:
    card_id: str
    origin_list_id: str
    origin_position: float
    origin_index: int
    user_id: Optional[str] = None
    pending: bool = False


@dataclass
class MoveResult:
    card_id: str
    from_list_id: str
    to_list_id: str
    position: float
    persisted: bool


class DragController:
    """Turns drag-start/over/end events into optimistic moves and writes.

    ``drag_over`` only ever touches local state. ``drag_end`` computes the
    final slot, applies it, persists it and, once the write lands, records
    the move in the activity log without waiting for it.
    """

    def __init__(
        self,
        state: BoardState,
        storage: BoardStorage,
        refresh: Callable[[], Awaitable[bool]],
        notify: Optional[Callable[[str], None]] = None,
        user_id: Optional[str] = None,
    ) -> None:
        self.state = state
        self.storage = storage
        self.refresh = refresh
        self.notify = notify or (lambda message: None)
        self.user_id = user_id
        self.session: Optional[DragSession] = None
        self._audits: Set[asyncio.Task] = set()

    @property
    def phase(self) -> DragPhase:
        if self.session is None:
            return DragPhase.IDLE
        return DragPhase.PERSISTING if self.session.pending else DragPhase.DRAGGING

    # === Events ===

    def drag_start(self, card_id: str, user_id: Optional[str] = None) -> bool:
        if self.session is not None:
            logger.info("ignoring drag of %s while %s is %s", card_id, self.session.card_id, self.phase.value)
            return False
        if not self.state.has_card(card_id):
            logger.info("ignoring drag of unknown card %s", card_id)
            return False
        card = self.state.card(card_id)
        siblings = self.state.cards_of(card.list_id)
        self.session = DragSession(
            card_id=card_id,
            origin_list_id=card.list_id,
            origin_position=card.position,
            origin_index=siblings.index(card),
            user_id=user_id or self.user_id,
        )
        return True

    def drag_over(self, active_id: str, over_id: Optional[str]) -> None:
        session = self.session
        if session is None or session.pending or session.card_id != active_id:
            return
        if over_id is None or not self.state.has_card(active_id):
            return
        card = self.state.card(active_id)
        if self.state.has_card(over_id):
            over = self.state.card(over_id)
            hovered = over.list_id
        elif self.state.has_list(over_id):
            over = None
            hovered = over_id
        else:
            return
        if hovered == card.list_id:
            return
        others = self._others(hovered, active_id)
        try:
            if over is None:
                position = allocate_append(others[-1].position if others else None)
            else:
                index = others.index(over)
                prev = others[index - 1].position if index > 0 else None
                position = allocate_between(prev, over.position)
        except PositionExhausted:
            # provisional only; drag_end renumbers if the final slot has no room
            if over is None:
                return
            try:
                position = allocate_append(others[-1].position)
            except PositionExhausted:
                return
        self.state.apply_optimistic_move(active_id, hovered, position)

    async def drag_end(self, active_id: str, over_id: Optional[str]) -> Optional[MoveResult]:
        session = self.session
        if session is None or session.pending or session.card_id != active_id:
            logger.info("ignoring drop of %s without a matching drag", active_id)
            return None
        if not self.state.has_card(active_id):
            self.session = None
            return None

        card = self.state.card(active_id)
        target = self._resolve(active_id, over_id)
        position: Optional[float] = None
        if target is None:
            # nowhere valid: the last provisional placement stands
            to_list, index = card.list_id, None
            position = card.position
            if to_list == session.origin_list_id and position == session.origin_position:
                self.session = None
                return None
        else:
            to_list, index = target
            if to_list == session.origin_list_id and index == session.origin_index:
                if card.list_id != to_list or card.position != session.origin_position:
                    self.state.apply_optimistic_move(active_id, to_list, session.origin_position)
                self.session = None
                return None

        session.pending = True
        self.state.pending_card_id = active_id
        try:
            if position is None:
                position = await self._allocate(to_list, index, active_id)
            self.state.apply_optimistic_move(active_id, to_list, position)
            await self.storage.update_card(active_id, list_id=to_list, position=position)
        except Exception as exc:
            logger.warning("moving card %s to list %s failed: %s", active_id, to_list, exc)
            self._finish()
            self.notify("Failed to move card")
            await self.refresh()
            attempted = card.position if position is None else position
            return MoveResult(active_id, session.origin_list_id, to_list, attempted, False)

        self._finish()
        self._audit(session, to_list)
        return MoveResult(active_id, session.origin_list_id, to_list, position, True)

    # === Helpers ===

    def _finish(self) -> None:
        self.session = None
        self.state.pending_card_id = None

    def _others(self, list_id: str, card_id: str):
        return [c for c in self.state.cards_of(list_id) if c.id != card_id]

    def _resolve(self, active_id: str, over_id: Optional[str]) -> Optional[Tuple[str, int]]:
        """Map a drop target to (list id, index among that list's other cards)."""
        if over_id is None:
            return None
        if over_id == active_id:
            card = self.state.card(active_id)
            return card.list_id, self.state.cards_of(card.list_id).index(card)
        if self.state.has_card(over_id):
            over = self.state.card(over_id)
            return over.list_id, self._others(over.list_id, active_id).index(over)
        if self.state.has_list(over_id):
            return over_id, len(self._others(over_id, active_id))
        return None

    def _position_at(self, list_id: str, index: int, card_id: str) -> float:
        others = self._others(list_id, card_id)
        if not others:
            return allocate_between(None, None)
        if index <= 0:
            return allocate_between(None, others[0].position)
        if index >= len(others):
            return allocate_append(others[-1].position)
        return allocate_between(others[index - 1].position, others[index].position)

    async def _allocate(self, list_id: str, index: int, card_id: str) -> float:
        try:
            return self._position_at(list_id, index, card_id)
        except PositionExhausted:
            logger.info("no room left in list %s, renumbering", list_id)
        for sibling in self.state.renumber(list_id, exclude=card_id):
            await self.storage.update_card(sibling.id, position=sibling.position)
        return self._position_at(list_id, index, card_id)

    def _audit(self, session: DragSession, to_list_id: str) -> None:
        coro = self.storage.insert_activity_log(
            board_id=self.state.board_id,
            user_id=session.user_id,
            action="moved_card",
            entity_type="card",
            entity_id=session.card_id,
            metadata={"from_list": session.origin_list_id, "to_list": to_list_id},
        )
        task = asyncio.get_running_loop().create_task(coro)
        self._audits.add(task)
        task.add_done_callback(self._audit_done)

    def _audit_done(self, task: asyncio.Task) -> None:
        self._audits.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("activity log for board %s failed: %s", self.state.board_id, exc)

    async def settle(self) -> None:
        """Wait for outstanding activity log writes."""
        if self._audits:
            await asyncio.gather(*list(self._audits), return_exceptions=True)
