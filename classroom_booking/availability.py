"""Availability engine — conflict and fullness rules over a booking snapshot.

Everything here is a pure function of the snapshot and its arguments.  The
snapshot is whatever the store last pushed; nothing is cached between calls.

Rules:
  - A one-time booking occupies exactly (date, slot, room).
  - A recurring booking occupies (weekday, slot, room) on every matching
    date, except the dates listed in its ``exceptions``.
  - One-time conflicts are reported before recurring ones.

Known limitations, kept on purpose:
  - ``is_slot_fully_booked`` adds one-time and recurring counts without
    checking that they occupy distinct rooms.
  - ``is_recurring_room_booked`` and ``is_recurring_slot_fully_booked``
    ignore exceptions: a weekly slot stays taken even if some of its dates
    are cancelled.
"""

from __future__ import annotations

from datetime import date as date_type
from typing import Any, Optional

from classroom_booking.catalog import DAYS_OF_WEEK, ROOMS, TIME_SLOTS, TOTAL_ROOMS
from classroom_booking.models import (
    NO_CONFLICT,
    ConflictResult,
    RecurringBooking,
    Snapshot,
)


def weekday_of(date: str) -> str:
    """Weekday name of an ISO ``YYYY-MM-DD`` date."""
    # date.weekday() is Monday=0; DAYS_OF_WEEK starts on Sunday
    return DAYS_OF_WEEK[(date_type.fromisoformat(date).weekday() + 1) % 7]


def is_live_on(recurring: RecurringBooking, date: str) -> bool:
    """True if the series has an occurrence on ``date`` that isn't cancelled."""
    return recurring.day_of_week == weekday_of(date) and date not in recurring.exceptions


def conflict_for(
    snapshot: Snapshot,
    date: str,
    time_slot: str,
    room: str,
    exclude_id: Optional[str] = None,
) -> ConflictResult:
    """Check whether (date, slot, room) is already taken.

    ``exclude_id`` skips the record being edited so it doesn't conflict
    with itself.
    """
    for booking in snapshot.bookings:
        if (
            booking.date == date
            and booking.time == time_slot
            and booking.classroom == room
            and booking.id != exclude_id
        ):
            return ConflictResult(conflict=True, kind="one-time")

    day = weekday_of(date)
    for recurring in snapshot.recurring:
        if (
            recurring.day_of_week == day
            and recurring.time == time_slot
            and recurring.classroom == room
            and recurring.id != exclude_id
            and date not in recurring.exceptions
        ):
            return ConflictResult(conflict=True, kind="recurring")

    return NO_CONFLICT


def is_slot_fully_booked(
    snapshot: Snapshot, date: str, time_slot: str, room_count: int = TOTAL_ROOMS
) -> bool:
    """True if every room appears taken for (date, slot)."""
    one_time = sum(
        1 for b in snapshot.bookings if b.date == date and b.time == time_slot
    )
    day = weekday_of(date)
    recurring = sum(
        1
        for r in snapshot.recurring
        if r.day_of_week == day and r.time == time_slot and date not in r.exceptions
    )
    return one_time + recurring >= room_count


def is_room_booked_for_slot(
    snapshot: Snapshot, date: str, time_slot: str, room: str
) -> bool:
    if any(
        b.date == date and b.time == time_slot and b.classroom == room
        for b in snapshot.bookings
    ):
        return True
    day = weekday_of(date)
    return any(
        r.day_of_week == day
        and r.time == time_slot
        and r.classroom == room
        and date not in r.exceptions
        for r in snapshot.recurring
    )


def is_recurring_slot_fully_booked(
    snapshot: Snapshot, day_of_week: str, time_slot: str, room_count: int = TOTAL_ROOMS
) -> bool:
    taken = sum(
        1
        for r in snapshot.recurring
        if r.day_of_week == day_of_week and r.time == time_slot
    )
    return taken >= room_count


def is_recurring_room_booked(
    snapshot: Snapshot, day_of_week: str, time_slot: str, room: str
) -> bool:
    return any(
        r.day_of_week == day_of_week and r.time == time_slot and r.classroom == room
        for r in snapshot.recurring
    )


def add_exception(recurring: RecurringBooking, date: str) -> list[str]:
    """Exceptions with ``date`` appended. Unchanged if already present."""
    if date in recurring.exceptions:
        return list(recurring.exceptions)
    return [*recurring.exceptions, date]


def remove_exception(recurring: RecurringBooking, date: str) -> list[str]:
    """Exceptions without ``date``. Unchanged if absent."""
    return [d for d in recurring.exceptions if d != date]


# ── Grid views ───────────────────────────────────────────────────


def day_overview(snapshot: Snapshot, date: str) -> dict[str, Any]:
    """Per-slot availability of every room on one date."""
    slots = []
    for slot in TIME_SLOTS:
        slots.append({
            "time": slot,
            "fully_booked": is_slot_fully_booked(snapshot, date, slot),
            "rooms": {
                room.id: is_room_booked_for_slot(snapshot, date, slot, room.id)
                for room in ROOMS
            },
        })
    return {"date": date, "day_of_week": weekday_of(date), "slots": slots}


def recurring_overview(snapshot: Snapshot, day_of_week: str) -> dict[str, Any]:
    """Per-slot availability of every room for a weekly series on one weekday."""
    slots = []
    for slot in TIME_SLOTS:
        slots.append({
            "time": slot,
            "fully_booked": is_recurring_slot_fully_booked(snapshot, day_of_week, slot),
            "rooms": {
                room.id: is_recurring_room_booked(snapshot, day_of_week, slot, room.id)
                for room in ROOMS
            },
        })
    return {"day_of_week": day_of_week, "slots": slots}
