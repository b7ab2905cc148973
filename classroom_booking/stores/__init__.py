"""Booking store abstractions and implementations."""

from .base import BOOKINGS, RECURRING_BOOKINGS, BookingStore
from .memory import InMemoryBookingStore

__all__ = ["BookingStore", "InMemoryBookingStore", "BOOKINGS", "RECURRING_BOOKINGS"]
