from __future__ import annotations


class CardflowError(Exception):
    """Base class for board engine errors."""


class ValidationError(CardflowError):
    """Rejected input, raised before any I/O."""


class PersistenceError(CardflowError):
    """A storage write failed."""


class FetchError(CardflowError):
    """An authoritative board fetch failed."""


class InvariantViolation(CardflowError):
    """Board data broke a structural rule, e.g. a card pointing at a missing list."""
