from __future__ import annotations

GAP = 1024.0


class PositionExhausted(ValueError):
    """No float sorts strictly between the two neighbours any more."""


def allocate_append(last: float | None) -> float:
    """Return a position after ``last``, or ``GAP`` for an empty list."""
    if last is None:
        return GAP
    position = last + GAP
    if position <= last:
        raise PositionExhausted(f"no room after {last!r}")
    return position


def allocate_between(prev: float | None, next: float | None) -> float:
    """Return a position strictly between ``prev`` and ``next``.

    Either side may be ``None`` to indicate unbounded on that side.
    Halving only sorts before ``next`` while it is positive, so a
    non-positive ``next`` steps back by ``GAP`` instead.
    """
    if prev is None and next is None:
        return GAP
    if next is None:
        return allocate_append(prev)
    if prev is None:
        return next / 2 if next > 0 else next - GAP
    if prev >= next:
        raise ValueError(f"neighbours out of order: {prev!r} >= {next!r}")
    mid = (prev + next) / 2
    if not prev < mid < next:
        raise PositionExhausted(f"no room between {prev!r} and {next!r}")
    return mid


def spread(count: int) -> list[float]:
    """Evenly spaced positions for ``count`` items, used when renumbering."""
    return [GAP * (i + 1) for i in range(count)]
