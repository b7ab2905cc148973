"""Per-teacher booking session — the context object behind every request.

Each signed-in teacher gets a BookingSession that:
  1. Holds the teacher identity handed over by the auth provider
  2. Watches both store collections and keeps the latest Snapshot
  3. Runs the cleanup sweeper while the session is active
  4. Validates, conflict-checks and submits new bookings
  5. Manages exception dates and owner-only deletion

The conflict check and the store write are not atomic: two sessions that
check the same free slot before either write lands will both succeed.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from datetime import datetime
from typing import Any, Callable, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from classroom_booking import availability
from classroom_booking.catalog import DAYS_OF_WEEK, ROOMS_BY_ID, TIME_SLOTS
from classroom_booking.cleanup import CleanupSweeper
from classroom_booking.config import Settings, settings as default_settings
from classroom_booking.errors import (
    BookingConflictError,
    BookingNotFoundError,
    BookingPermissionError,
    BookingValidationError,
    StoreError,
)
from classroom_booking.models import (
    Booking,
    ConflictResult,
    RecurringBooking,
    Snapshot,
    Teacher,
    canonical_date,
)
from classroom_booking.notifier import Notifier, redact_pii
from classroom_booking.stores.base import BOOKINGS, RECURRING_BOOKINGS, BookingStore

log = logging.getLogger("classroom_booking.session")


# ── Session registry ─────────────────────────────────────────────

_active_sessions: dict[str, "BookingSession"] = {}


def register_session(session: "BookingSession") -> str:
    """Register a session and return its unique ID."""
    session_id = secrets.token_urlsafe(18)
    session._session_id = session_id
    session._started_at = time.time()
    _active_sessions[session_id] = session
    log.info("Session registered: %s", session_id)
    return session_id


def unregister_session(session_id: str) -> "BookingSession | None":
    """Remove a session from the registry and return it."""
    session = _active_sessions.pop(session_id, None)
    log.info("Session unregistered: %s", session_id)
    return session


def get_active_sessions() -> dict[str, "BookingSession"]:
    """Return all active sessions."""
    return _active_sessions


def get_session(session_id: str) -> "BookingSession | None":
    """Look up a session by ID."""
    return _active_sessions.get(session_id)


def find_teacher_session(teacher_id: str) -> "BookingSession | None":
    """Return the active session already open for ``teacher_id``, if any."""
    for session in _active_sessions.values():
        if session.teacher.id == teacher_id and session.is_active:
            return session
    return None


def _require_date(value: str) -> str:
    try:
        return canonical_date(value)
    except (TypeError, ValueError):
        raise BookingValidationError(
            f"Invalid date: {value!r}. Please use YYYY-MM-DD."
        ) from None


class BookingSession:
    """One signed-in teacher's view of the booking system.

    Typical lifecycle::

        session = BookingSession(teacher, store, notifier)
        await session.start()       # watch collections, start sweeper

        booking = await session.create_booking(
            "2024-06-10", "09:00-10:00", "room-1", subject="Algebra",
        )

        await session.stop()        # on sign-out
    """

    def __init__(
        self,
        teacher: Teacher,
        store: BookingStore,
        notifier: Optional[Notifier] = None,
        settings: Settings | None = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._teacher = teacher
        self._store = store
        self._notifier = notifier
        self._settings = settings or default_settings
        self._clock = clock or self._school_now

        # Registry metadata (set by register_session)
        self._session_id: str = ""
        self._started_at: float = 0.0

        self._snapshot = Snapshot()
        self._unsubscribes: list[Callable[[], None]] = []
        self._sweeper = CleanupSweeper(
            store,
            lambda: self._snapshot,
            interval_seconds=self._settings.cleanup_interval_seconds,
            clock=self._clock,
        )
        self._pending: set[asyncio.Task] = set()
        self._active = False

    def _school_now(self) -> datetime:
        return datetime.now(ZoneInfo(self._settings.school_timezone))

    # ── Public API ────────────────────────────────────────────

    @property
    def teacher(self) -> Teacher:
        return self._teacher

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def sweeper(self) -> CleanupSweeper:
        return self._sweeper

    async def start(self) -> None:
        """Watch both collections and start the cleanup sweeper."""
        if self._active:
            return
        self._unsubscribes = [
            self._store.subscribe(BOOKINGS, self._on_bookings, self._on_watch_error),
            self._store.subscribe(
                RECURRING_BOOKINGS, self._on_recurring, self._on_watch_error
            ),
        ]
        self._sweeper.start()
        self._active = True
        log.info("Session started for %s", redact_pii(self._teacher.email))

    async def stop(self) -> None:
        """Stop watching, stop the sweeper, drop pending notifications."""
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []
        await self._sweeper.stop()

        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()

        if self._active:
            log.info("Session stopped for %s", redact_pii(self._teacher.email))
        self._active = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize session state for the API."""
        return {
            "session_id": self._session_id,
            "teacher": self._teacher.model_dump(),
            "started_at": self._started_at,
            "is_active": self._active,
            "sweeper_running": self._sweeper.running,
            "booking_count": len(self._snapshot.bookings),
            "recurring_count": len(self._snapshot.recurring),
        }

    # ── Queries ───────────────────────────────────────────────

    def conflict_for(
        self, date: str, time_slot: str, room: str, exclude_id: Optional[str] = None
    ) -> ConflictResult:
        return availability.conflict_for(self._snapshot, date, time_slot, room, exclude_id)

    def is_slot_fully_booked(self, date: str, time_slot: str) -> bool:
        return availability.is_slot_fully_booked(self._snapshot, date, time_slot)

    def is_room_booked_for_slot(self, date: str, time_slot: str, room: str) -> bool:
        return availability.is_room_booked_for_slot(self._snapshot, date, time_slot, room)

    def is_recurring_slot_fully_booked(self, day_of_week: str, time_slot: str) -> bool:
        return availability.is_recurring_slot_fully_booked(
            self._snapshot, day_of_week, time_slot
        )

    def is_recurring_room_booked(self, day_of_week: str, time_slot: str, room: str) -> bool:
        return availability.is_recurring_room_booked(
            self._snapshot, day_of_week, time_slot, room
        )

    def day_overview(self, date: str) -> dict[str, Any]:
        return availability.day_overview(self._snapshot, _require_date(date))

    def recurring_overview(self, day_of_week: str) -> dict[str, Any]:
        self._require_day(day_of_week)
        return availability.recurring_overview(self._snapshot, day_of_week)

    def my_bookings(self) -> list[Booking]:
        return [b for b in self._snapshot.bookings if b.owned_by(self._teacher)]

    def my_recurring_bookings(self) -> list[RecurringBooking]:
        return [r for r in self._snapshot.recurring if r.owned_by(self._teacher)]

    # ── Creation ──────────────────────────────────────────────

    async def create_booking(
        self,
        date: str,
        time_slot: str,
        room: str,
        subject: str,
        notes: str = "",
    ) -> Booking:
        """Book one room for one slot on one date."""
        if not date or not time_slot or not room:
            raise BookingValidationError("Please select date, time, and classroom")
        _require_date(date)
        self._require_slot_and_room(time_slot, room)
        subject = self._require_subject(subject)

        check = self.conflict_for(date, time_slot, room)
        if check.conflict:
            raise BookingConflictError(
                f"This slot is already booked by another {check.describe()}. "
                "Please select a different time or classroom.",
                kind=check.kind,
            )

        booking = Booking(
            teacher_id=self._teacher.id,
            teacher_email=self._teacher.email,
            teacher_name=self._teacher.name,
            subject=subject,
            date=date,
            time=time_slot,
            classroom=room,
            notes=(notes or "").strip(),
        )
        doc_id = await self._write(BOOKINGS, booking.to_store(), "booking")
        booking = booking.model_copy(update={"id": doc_id})
        log.info("One-time booking %s created: %s %s %s",
                 doc_id, date, time_slot, room)

        self._notify(booking, is_recurring=False)
        return booking

    async def create_recurring_booking(
        self,
        day_of_week: str,
        time_slot: str,
        room: str,
        subject: str,
        notes: str = "",
    ) -> RecurringBooking:
        """Book one room for one slot every week on ``day_of_week``."""
        if not day_of_week or not time_slot or not room:
            raise BookingValidationError("Please select day, time, and classroom")
        self._require_day(day_of_week)
        self._require_slot_and_room(time_slot, room)
        subject = self._require_subject(subject)

        if self.is_recurring_room_booked(day_of_week, time_slot, room):
            raise BookingConflictError(
                "This recurring slot is already booked. "
                "Please select a different time or classroom.",
                kind="recurring",
            )

        recurring = RecurringBooking(
            teacher_id=self._teacher.id,
            teacher_email=self._teacher.email,
            teacher_name=self._teacher.name,
            subject=subject,
            day_of_week=day_of_week,
            time=time_slot,
            classroom=room,
            notes=(notes or "").strip(),
        )
        doc_id = await self._write(RECURRING_BOOKINGS, recurring.to_store(), "recurring booking")
        recurring = recurring.model_copy(update={"id": doc_id})
        log.info("Recurring booking %s created: every %s %s %s",
                 doc_id, day_of_week, time_slot, room)

        self._notify(recurring, is_recurring=True)
        return recurring

    # ── Exceptions ────────────────────────────────────────────

    async def cancel_occurrence(self, recurring_id: str, date: str) -> bool:
        """Cancel one date of a weekly series.

        Returns False if that date was already cancelled.
        """
        recurring = self._owned_recurring(recurring_id)
        _require_date(date)
        if availability.weekday_of(date) != recurring.day_of_week:
            raise BookingValidationError(
                f"This date is not a {recurring.day_of_week}. "
                "Please select the correct day."
            )

        current = await self._fetch_recurring(recurring_id)
        if date in current.exceptions:
            log.info("Occurrence %s of %s already cancelled", date, recurring_id)
            return False

        await self._update_exceptions(recurring_id, availability.add_exception(current, date))
        log.info("Cancelled occurrence %s of recurring booking %s", date, recurring_id)
        return True

    async def restore_occurrence(self, recurring_id: str, date: str) -> bool:
        """Undo a cancelled date. Returns False if it wasn't cancelled."""
        self._owned_recurring(recurring_id)
        _require_date(date)

        current = await self._fetch_recurring(recurring_id)
        if date not in current.exceptions:
            return False

        await self._update_exceptions(
            recurring_id, availability.remove_exception(current, date)
        )
        log.info("Restored occurrence %s of recurring booking %s", date, recurring_id)
        return True

    # ── Deletion ──────────────────────────────────────────────

    async def delete_booking(self, booking_id: str) -> None:
        booking = self._snapshot.find_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError("Booking not found")
        if not booking.owned_by(self._teacher):
            raise BookingPermissionError("You can only delete your own bookings")
        await self._remove(BOOKINGS, booking_id, "booking")
        log.info("Deleted booking %s", booking_id)

    async def delete_recurring_booking(self, recurring_id: str) -> None:
        self._owned_recurring(recurring_id)
        await self._remove(RECURRING_BOOKINGS, recurring_id, "recurring booking")
        log.info("Deleted recurring booking %s", recurring_id)

    # ── Internal: snapshot feed ──────────────────────────────

    def _on_bookings(self, docs: list[dict[str, Any]]) -> None:
        self._snapshot = self._snapshot.replace_bookings(
            self._parse(Booking, docs)
        )
        log.debug("Loaded %d one-time bookings", len(self._snapshot.bookings))

    def _on_recurring(self, docs: list[dict[str, Any]]) -> None:
        self._snapshot = self._snapshot.replace_recurring(
            self._parse(RecurringBooking, docs)
        )
        log.debug("Loaded %d recurring bookings", len(self._snapshot.recurring))

    def _on_watch_error(self, exc: Exception) -> None:
        log.error("Error loading bookings: %s", exc)

    @staticmethod
    def _parse(model, docs: list[dict[str, Any]]) -> list:
        records = []
        for doc in docs:
            try:
                records.append(model.from_store(doc))
            except ValidationError as exc:
                log.warning("Skipping malformed %s %s: %s",
                            model.__name__, doc.get("id", "?"), exc.errors()[:1])
        return records

    # ── Internal: validation ─────────────────────────────────

    @staticmethod
    def _require_day(day_of_week: str) -> None:
        if day_of_week not in DAYS_OF_WEEK:
            raise BookingValidationError(f"Unknown day of week: {day_of_week}")

    @staticmethod
    def _require_slot_and_room(time_slot: str, room: str) -> None:
        if time_slot not in TIME_SLOTS:
            raise BookingValidationError(f"Unknown time slot: {time_slot}")
        if room not in ROOMS_BY_ID:
            raise BookingValidationError(f"Unknown classroom: {room}")

    @staticmethod
    def _require_subject(subject: str) -> str:
        subject = (subject or "").strip()
        if not subject:
            raise BookingValidationError("Please enter a subject")
        return subject

    def _owned_recurring(self, recurring_id: str) -> RecurringBooking:
        recurring = self._snapshot.find_recurring(recurring_id)
        if recurring is None:
            raise BookingNotFoundError("Recurring booking not found")
        if not recurring.owned_by(self._teacher):
            raise BookingPermissionError("You can only change your own recurring bookings")
        return recurring

    # ── Internal: store access ───────────────────────────────

    async def _write(self, collection: str, data: dict[str, Any], what: str) -> str:
        try:
            return await self._store.create(collection, data)
        except StoreError as exc:
            log.error("Error creating %s: %s", what, exc)
            raise StoreError(f"Error creating {what}: {exc}") from exc

    async def _remove(self, collection: str, doc_id: str, what: str) -> None:
        try:
            await self._store.delete(collection, doc_id)
        except StoreError as exc:
            log.error("Error deleting %s %s: %s", what, doc_id, exc)
            raise StoreError(f"Error deleting {what}: {exc}") from exc

    async def _fetch_recurring(self, recurring_id: str) -> RecurringBooking:
        doc = await self._store.get(RECURRING_BOOKINGS, recurring_id)
        if doc is None:
            raise BookingNotFoundError("Recurring booking not found")
        try:
            return RecurringBooking.from_store(doc)
        except ValidationError as exc:
            log.error("Stored recurring booking %s is malformed: %s",
                      recurring_id, exc.errors()[:1])
            raise StoreError(
                f"Recurring booking {recurring_id} is unreadable"
            ) from exc

    async def _update_exceptions(self, recurring_id: str, exceptions: list[str]) -> None:
        try:
            await self._store.update(
                RECURRING_BOOKINGS, recurring_id, {"exceptions": exceptions}
            )
        except StoreError as exc:
            log.error("Error updating recurring booking %s: %s", recurring_id, exc)
            raise StoreError(f"Error updating class: {exc}") from exc

    # ── Internal: notifications ──────────────────────────────

    def _notify(self, record: Union[Booking, RecurringBooking], is_recurring: bool) -> None:
        """Send the notice in the background; the caller does not wait for it."""
        if self._notifier is None:
            return
        task = asyncio.create_task(self._send_notification(record, is_recurring))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send_notification(
        self, record: Union[Booking, RecurringBooking], is_recurring: bool
    ) -> None:
        try:
            result = await self._notifier.send_notification(record, is_recurring)
        except Exception:
            log.exception("Notification for %s failed", record.id)
            return
        if result.total:
            log.info("Notified %s teachers about %s", result.ratio, record.id)
        elif result.error:
            log.warning("Notification for %s not sent: %s", record.id, result.error)
