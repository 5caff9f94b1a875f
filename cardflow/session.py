from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Deque, Optional

import pydantic

from .drag import DragController, DragPhase, MoveResult
from .errors import PersistenceError, ValidationError
from .feed import ChangeFeed
from .models import BoardList, BoardView, Card, CardCreate, ListCreate
from .state import BoardState, Observer
from .storage import BoardStorage
from .sync import SyncReconciler

logger = logging.getLogger(__name__)


def _validation_message(exc: pydantic.ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {first.get('msg', 'invalid')}" if field else first.get("msg", "invalid")


class BoardSession:
    """One open board: its state, drag handling and background sync."""

    def __init__(
        self,
        board_id: str,
        storage: BoardStorage,
        feed: ChangeFeed,
        user_id: Optional[str] = None,
        notify: Optional[Callable[[str], None]] = None,
        keep_notifications: int = 20,
    ) -> None:
        self.storage = storage
        self.user_id = user_id
        self.state = BoardState(board_id)
        self.notifications: Deque[str] = deque(maxlen=keep_notifications)
        self._on_notify = notify
        self.reconciler = SyncReconciler(self.state, storage, feed, notify=self.notify)
        self.drag = DragController(
            self.state, storage, self.reconciler.refresh, notify=self.notify, user_id=user_id
        )

    @property
    def board_id(self) -> str:
        return self.state.board_id

    def notify(self, message: str) -> None:
        """Surface a transient message to whoever renders this board."""
        logger.info("board %s: %s", self.board_id, message)
        self.notifications.append(message)
        if self._on_notify is not None:
            try:
                self._on_notify(message)
            except Exception:
                logger.exception("notification callback failed")

    # === Lifecycle ===

    async def open(self, strict: bool = False) -> bool:
        """Load the board and start following changes.

        A failed load leaves an empty, usable board unless ``strict`` is set,
        in which case the FetchError propagates and nothing is started.
        """
        if strict:
            snapshot = await self.reconciler.fetch()
            self.state.replace_all(snapshot.lists, snapshot.cards)
            loaded = True
        else:
            loaded = await self.reconciler.refresh()
        self.reconciler.start()
        return loaded

    async def close(self) -> None:
        self.reconciler.stop()
        await self.drag.settle()

    async def settle(self) -> None:
        """Wait for background refreshes and activity log writes."""
        await self.reconciler.settle()
        await self.drag.settle()

    async def __aenter__(self) -> "BoardSession":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # === Creation ===

    async def add_list(self, title: str) -> BoardList:
        try:
            payload = ListCreate(title=title)
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_message(exc)) from exc
        position = self.state.next_list_position()
        try:
            board_list = await self.storage.insert_list(self.board_id, payload.title, position)
        except Exception as exc:
            logger.warning("creating list on board %s failed: %s", self.board_id, exc)
            self.notify("Failed to create list")
            raise PersistenceError(str(exc)) from exc
        self.state.upsert_list(board_list)
        return board_list

    async def add_card(self, list_id: str, title: str, created_by: Optional[str] = None) -> Card:
        try:
            payload = CardCreate(title=title)
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_message(exc)) from exc
        if not self.state.has_list(list_id):
            raise ValidationError(f"list {list_id} is not on board {self.board_id}")
        position = self.state.next_card_position(list_id)
        try:
            card = await self.storage.insert_card(
                list_id, payload.title, position, created_by or self.user_id
            )
        except Exception as exc:
            logger.warning("creating card in list %s failed: %s", list_id, exc)
            self.notify("Failed to create card")
            raise PersistenceError(str(exc)) from exc
        self.state.upsert_card(card)
        return card

    # === Drag events ===

    @property
    def drag_phase(self) -> DragPhase:
        return self.drag.phase

    def drag_start(self, card_id: str, user_id: Optional[str] = None) -> bool:
        return self.drag.drag_start(card_id, user_id=user_id)

    def drag_over(self, active_id: str, over_id: Optional[str]) -> None:
        self.drag.drag_over(active_id, over_id)

    async def drag_end(self, active_id: str, over_id: Optional[str]) -> Optional[MoveResult]:
        return await self.drag.drag_end(active_id, over_id)

    # === Rendering ===

    def view(self, query: Optional[str] = None) -> BoardView:
        return self.state.view(query)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        return self.state.subscribe(observer)
