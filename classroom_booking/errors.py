"""Exceptions raised by booking operations.

Every failure a teacher can trigger maps onto one of these; the HTTP layer
turns them into status codes and the message is shown to the user as is.
"""

from __future__ import annotations

from typing import Optional


class BookingError(Exception):
    """Base class for booking failures."""


class BookingValidationError(BookingError):
    """Missing selection or invalid input. Nothing was sent to the store."""


class BookingConflictError(BookingError):
    """The requested slot is already taken."""

    def __init__(self, message: str, kind: Optional[str] = None) -> None:
        super().__init__(message)
        self.kind = kind


class BookingNotFoundError(BookingError):
    """The referenced booking does not exist (or is no longer in the snapshot)."""


class BookingPermissionError(BookingError):
    """The acting teacher does not own the booking."""


class StoreError(BookingError):
    """The document store rejected a read or write (network, permissions)."""
