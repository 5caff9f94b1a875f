from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, List, Optional, Set, Tuple

from .errors import FetchError
from .feed import ChangeFeed
from .models import BoardList, BoardSnapshot, Card
from .state import BoardState
from .storage import BoardStorage

logger = logging.getLogger(__name__)

WATCHED_TABLES = ("lists", "cards")


def merge(
    state: BoardState, snapshot: BoardSnapshot, protect: Optional[Iterable[Optional[str]]] = None
) -> Tuple[List[BoardList], List[Card]]:
    """Combine a fetched snapshot with the local record of the pending card.

    The pending card's persistence has not landed yet, so the snapshot is
    stale for that card alone; its local listId/position wins. Everything
    else comes from the snapshot.

    ``protect`` overrides which card ids keep their local record; it
    defaults to the state's current pending card.
    """
    lists = list(snapshot.lists)
    if protect is None:
        protect = (state.pending_card_id,)
    protected = sorted({card_id for card_id in protect if card_id is not None and state.has_card(card_id)})
    if not protected:
        return lists, list(snapshot.cards)
    cards = [c for c in snapshot.cards if c.id not in protected]
    cards.extend(state.card(card_id) for card_id in protected)
    return lists, cards


class SyncReconciler:
    """Re-fetches the board on every change notification and merges it in.

    Fetches are numbered as they start. A completed fetch is applied only
    while it is still the newest one started, so a slow early fetch can
    never overwrite the result of a later one.
    """

    def __init__(
        self,
        state: BoardState,
        storage: BoardStorage,
        feed: ChangeFeed,
        notify: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.state = state
        self.storage = storage
        self.feed = feed
        self.notify = notify or (lambda message: None)
        self._generation = 0
        self._handles: List[int] = []
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(self._handles)

    def start(self) -> None:
        if self._handles:
            return
        self._handles = [self.feed.subscribe(table, self.on_change) for table in WATCHED_TABLES]

    def stop(self) -> None:
        for handle in self._handles:
            self.feed.unsubscribe(handle)
        self._handles = []
        for task in list(self._tasks):
            task.cancel()

    def on_change(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("change notification for board %s outside an event loop", self.state.board_id)
            return
        task = loop.create_task(self.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def settle(self) -> None:
        """Wait until every scheduled refresh has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def fetch(self) -> BoardSnapshot:
        try:
            return await self.storage.fetch_board(self.state.board_id)
        except Exception as exc:
            raise FetchError(f"failed to load board {self.state.board_id}: {exc}") from exc

    async def refresh(self) -> bool:
        """Fetch the board and merge it into the state.

        Returns False when the fetch failed or was superseded by a newer one.
        A card that was pending when the fetch started keeps its local record
        even if its write has landed by the time the snapshot arrives.
        """
        self._generation += 1
        generation = self._generation
        pending_at_start = self.state.pending_card_id
        try:
            snapshot = await self.fetch()
        except FetchError as exc:
            if generation != self._generation:
                logger.debug("superseded fetch %d failed: %s", generation, exc)
                return False
            logger.warning("%s", exc)
            self.notify("Failed to load board")
            return False
        if generation != self._generation:
            logger.debug("dropping fetch %d, superseded by %d", generation, self._generation)
            return False
        lists, cards = merge(self.state, snapshot, (pending_at_start, self.state.pending_card_id))
        self.state.replace_all(lists, cards)
        return True
