"""Data models for the booking layer."""

from .booking import Booking, BookingRecord, RecurringBooking, canonical_date
from .snapshot import NO_CONFLICT, ConflictKind, ConflictResult, Snapshot
from .teacher import Teacher

__all__ = [
    "Booking",
    "BookingRecord",
    "ConflictKind",
    "ConflictResult",
    "NO_CONFLICT",
    "RecurringBooking",
    "Snapshot",
    "Teacher",
    "canonical_date",
]
