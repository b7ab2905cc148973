"""Immutable view of both collections that the availability engine reads."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Literal, Optional

from .booking import Booking, RecurringBooking

ConflictKind = Literal["one-time", "recurring"]


@dataclass(frozen=True)
class ConflictResult:
    """Outcome of a conflict check for a proposed booking."""

    conflict: bool
    kind: Optional[ConflictKind] = None

    def describe(self) -> str:
        if self.kind == "recurring":
            return "recurring class"
        return "one-time booking"


NO_CONFLICT = ConflictResult(conflict=False)


@dataclass(frozen=True)
class Snapshot:
    """Latest copy of the ``bookings`` and ``recurringBookings`` collections.

    Records keep the store's delivery order (newest first).
    """

    bookings: tuple[Booking, ...] = ()
    recurring: tuple[RecurringBooking, ...] = ()

    def replace_bookings(self, bookings: Iterable[Booking]) -> Snapshot:
        return replace(self, bookings=tuple(bookings))

    def replace_recurring(self, recurring: Iterable[RecurringBooking]) -> Snapshot:
        return replace(self, recurring=tuple(recurring))

    def find_booking(self, booking_id: str) -> Optional[Booking]:
        return next((b for b in self.bookings if b.id == booking_id), None)

    def find_recurring(self, recurring_id: str) -> Optional[RecurringBooking]:
        return next((r for r in self.recurring if r.id == recurring_id), None)
