from __future__ import annotations

from typing import Sequence


class WatchlistError(Exception):
    """Base class for watchlist failures."""


class ValidationError(WatchlistError):
    """Malformed or missing input. Reported as a failed result, never raised to callers."""

    def __init__(self, errors: Sequence[str], warnings: Sequence[str] = ()) -> None:
        self.errors = list(errors)
        self.warnings = list(warnings)
        super().__init__(f"Invalid data: {', '.join(self.errors)}")


class DuplicateError(WatchlistError):
    """An active record already exists for the scope."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__("already on watchlist")


class PersistenceError(WatchlistError):
    """Saving the store failed after every retry."""


class CorruptionError(WatchlistError):
    """The store file could not be parsed. Handled inside the load path."""


class AlertDeliveryError(WatchlistError):
    """An alert could not be handed to its destination."""
