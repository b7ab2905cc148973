"""Cleanup sweeper — deletes one-time bookings whose slot has ended.

A booking is expired once its date is in the past, or its date is today and
the slot's end time is before the current time of day.  Recurring series are
never touched; single occurrences are suppressed through their exceptions
instead.

The sweeper runs once when started and then on a fixed interval until
stopped.  A failed delete is logged and the sweep moves on.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from classroom_booking.catalog import slot_end_minutes
from classroom_booking.models import Booking, Snapshot
from classroom_booking.stores.base import BOOKINGS, BookingStore

log = logging.getLogger("classroom_booking.cleanup")


def is_expired(booking: Booking, now: datetime) -> bool:
    today = now.date().isoformat()
    if booking.date < today:
        return True
    if booking.date == today:
        return slot_end_minutes(booking.time) < now.hour * 60 + now.minute
    return False


def expired_bookings(bookings: Iterable[Booking], now: datetime) -> list[Booking]:
    return [b for b in bookings if is_expired(b, now)]


class CleanupSweeper:
    """Periodic sweep over the session's booking snapshot.

    Typical lifecycle::

        sweeper = CleanupSweeper(store, lambda: session.snapshot)
        sweeper.start()      # sweeps now, then every interval
        ...
        await sweeper.stop() # on sign-out
    """

    def __init__(
        self,
        store: BookingStore,
        snapshot_provider: Callable[[], Snapshot],
        interval_seconds: float = 300.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._snapshot_provider = snapshot_provider
        self._interval = interval_seconds
        self._clock = clock or datetime.now
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="booking-cleanup")
        log.info("Cleanup sweeper started (every %.0fs)", self._interval)

    async def stop(self) -> None:
        """Cancel the sweep loop. Safe to call more than once."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Cleanup sweeper stopped")

    async def sweep_once(self) -> int:
        """Delete every expired one-time booking. Returns how many were removed."""
        now = self._clock()
        expired = expired_bookings(self._snapshot_provider().bookings, now)

        removed = 0
        for booking in expired:
            try:
                await self._store.delete(BOOKINGS, booking.id)
            except Exception:
                log.exception("Failed to clean up expired booking %s", booking.id)
                continue
            removed += 1
            log.info("Cleaned up expired booking %s (%s %s)",
                     booking.id, booking.date, booking.time)

        if removed:
            log.info("Cleanup completed: %d expired bookings removed", removed)
        return removed

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except Exception:
                log.exception("Error during cleanup sweep")
            await asyncio.sleep(self._interval)
