"""
Change feed: "something in this table changed" notifications.

Notifications carry no payload. Subscribers re-fetch whatever they need.
"""
from __future__ import annotations

import itertools
import logging
from typing import Callable, Dict, Protocol, Tuple

logger = logging.getLogger(__name__)

OnChange = Callable[[], None]


class ChangeFeed(Protocol):
    def subscribe(self, table: str, on_change: OnChange) -> int: ...

    def unsubscribe(self, handle: int) -> None: ...


class LocalChangeFeed:
    """In-process fan-out of table change notifications."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.subscribers: Dict[int, Tuple[str, OnChange]] = {}  # handle -> (table, callback)

    def subscribe(self, table: str, on_change: OnChange) -> int:
        """Register a callback for a table and return its handle."""
        handle = next(self._ids)
        self.subscribers[handle] = (table, on_change)
        return handle

    def unsubscribe(self, handle: int) -> None:
        self.subscribers.pop(handle, None)

    def publish(self, table: str) -> None:
        """Notify every subscriber of ``table``."""
        for handle, (subscribed, callback) in list(self.subscribers.items()):
            if subscribed != table:
                continue
            try:
                callback()
            except Exception:
                logger.exception("change subscriber %s for %s failed", handle, table)
