"""Tests for BookingSession — creation flow, exceptions, deletion, lifecycle."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from classroom_booking.config import Settings
from classroom_booking.errors import (
    BookingConflictError,
    BookingNotFoundError,
    BookingPermissionError,
    BookingValidationError,
    StoreError,
)
from classroom_booking.models import Teacher
from classroom_booking.notifier import NotificationResult, Notifier
from classroom_booking.session import (
    BookingSession,
    find_teacher_session,
    get_active_sessions,
    get_session,
    register_session,
    unregister_session,
)
from classroom_booking.stores import BOOKINGS, RECURRING_BOOKINGS, InMemoryBookingStore

ANA = Teacher(id="t-ana", email="ana@school.test", display_name="Ana")
BEN = Teacher(id="t-ben", email="ben@school.test")

# Well before every booking date used below, so the sweeper leaves them alone
NOW = datetime(2024, 6, 1, 8, 0)


def quiet_settings():
    return Settings(cleanup_interval_seconds=3600, _env_file=None)


def make_notifier():
    notifier = AsyncMock(spec=Notifier)
    notifier.send_notification.return_value = NotificationResult(
        success=True, total=1, successful=1
    )
    return notifier


@pytest.fixture
def store():
    return InMemoryBookingStore()


@pytest.fixture
def notifier():
    return make_notifier()


@pytest_asyncio.fixture
async def session(store, notifier):
    s = BookingSession(ANA, store, notifier, settings=quiet_settings(), clock=lambda: NOW)
    await s.start()
    yield s
    await s.stop()


@pytest_asyncio.fixture
async def ben_session(store):
    s = BookingSession(BEN, store, settings=quiet_settings(), clock=lambda: NOW)
    await s.start()
    yield s
    await s.stop()


# ── Lifecycle ───────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, store):
        s = BookingSession(ANA, store, settings=quiet_settings(), clock=lambda: NOW)
        assert s.is_active is False

        await s.start()
        assert s.is_active is True
        assert s.sweeper.running is True

        await s.stop()
        assert s.is_active is False
        assert s.sweeper.running is False

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, store):
        s = BookingSession(ANA, store, settings=quiet_settings(), clock=lambda: NOW)
        await s.start()
        await s.stop()

        await store.create(BOOKINGS, {
            "teacherId": "x", "teacherEmail": "x@school.test", "subject": "Art",
            "date": "2024-06-10", "time": "09:00-10:00", "classroom": "room-1",
        })
        assert s.snapshot.bookings == ()

    @pytest.mark.asyncio
    async def test_start_sweeps_expired_bookings(self, store):
        old_id = await store.create(BOOKINGS, {
            "teacherId": "x", "teacherEmail": "x@school.test", "subject": "Art",
            "date": "2024-05-01", "time": "09:00-10:00", "classroom": "room-1",
        })
        s = BookingSession(ANA, store, settings=quiet_settings(), clock=lambda: NOW)
        await s.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert await store.get(BOOKINGS, old_id) is None
        assert s.snapshot.bookings == ()
        await s.stop()

    @pytest.mark.asyncio
    async def test_malformed_records_are_skipped(self, store, session):
        await store.create(BOOKINGS, {"subject": "no teacher, no date"})
        await store.create(BOOKINGS, {
            "teacherId": "x", "teacherEmail": "x@school.test", "subject": "Art",
            "date": "2024-06-10", "time": "09:00-10:00", "classroom": "room-1",
        })
        assert len(session.snapshot.bookings) == 1

    @pytest.mark.asyncio
    async def test_to_dict(self, session):
        data = session.to_dict()
        assert data["teacher"]["email"] == "ana@school.test"
        assert data["is_active"] is True
        assert data["sweeper_running"] is True


# ── One-time bookings ───────────────────────────────────────────────


class TestCreateBooking:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("args", [
        ("", "09:00-10:00", "room-1", "Maths"),
        ("2024-06-10", "", "room-1", "Maths"),
        ("2024-06-10", "09:00-10:00", "", "Maths"),
        ("10/06/2024", "09:00-10:00", "room-1", "Maths"),
        ("2024-06-10", "09:30-10:30", "room-1", "Maths"),
        ("2024-06-10", "09:00-10:00", "room-9", "Maths"),
        ("2024-06-10", "09:00-10:00", "room-1", "   "),
    ])
    async def test_validation_errors(self, session, store, notifier, args):
        with pytest.raises(BookingValidationError):
            await session.create_booking(*args)
        assert session.snapshot.bookings == ()
        notifier.send_notification.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("date", ["20240610", "2024-W24-1", "2024-6-10"])
    async def test_non_canonical_date_cannot_double_book(
        self, session, ben_session, store, date
    ):
        await session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Algebra")

        with pytest.raises(BookingValidationError):
            await ben_session.create_booking(date, "09:00-10:00", "room-1", "Art")
        assert len(ben_session.snapshot.bookings) == 1

    @pytest.mark.asyncio
    async def test_creates_record_with_store_field_names(self, session, store):
        booking = await session.create_booking(
            "2024-06-10", "09:00-10:00", "room-1", " Algebra ", notes=" Chapter 3 "
        )

        assert booking.id
        doc = await store.get(BOOKINGS, booking.id)
        assert doc["teacherId"] == "t-ana"
        assert doc["teacherEmail"] == "ana@school.test"
        assert doc["teacherName"] == "Ana"
        assert doc["subject"] == "Algebra"
        assert doc["notes"] == "Chapter 3"
        assert doc["classroom"] == "room-1"
        assert doc["type"] == "one-time"
        assert doc["timestamp"] is not None

        assert session.snapshot.find_booking(booking.id) is not None

    @pytest.mark.asyncio
    async def test_display_name_falls_back_to_email(self, ben_session, store):
        booking = await ben_session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Art")
        assert booking.teacher_name == "ben"

    @pytest.mark.asyncio
    async def test_notifies_after_write(self, session, notifier):
        booking = await session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Algebra")
        await asyncio.sleep(0)

        notifier.send_notification.assert_awaited_once()
        record, is_recurring = notifier.send_notification.await_args.args
        assert record.id == booking.id
        assert is_recurring is False

    @pytest.mark.asyncio
    async def test_duplicate_rejected_as_one_time(self, session, ben_session, store):
        await session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Algebra")

        with pytest.raises(BookingConflictError) as exc_info:
            await ben_session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Art")

        assert exc_info.value.kind == "one-time"
        assert "one-time booking" in str(exc_info.value)
        assert len(ben_session.snapshot.bookings) == 1

    @pytest.mark.asyncio
    async def test_store_failure_surfaces_and_skips_notification(self, session, store, notifier):
        store.create = AsyncMock(side_effect=StoreError("network down"))

        with pytest.raises(StoreError) as exc_info:
            await session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Algebra")

        assert "Error creating booking" in str(exc_info.value)
        await asyncio.sleep(0)
        notifier.send_notification.assert_not_called()

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_booking(self, session, notifier):
        notifier.send_notification.side_effect = RuntimeError("smtp exploded")

        booking = await session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Algebra")
        await asyncio.sleep(0)

        assert session.snapshot.find_booking(booking.id) is not None


# ── End-to-end scenario ─────────────────────────────────────────────


class TestScenario:
    @pytest.mark.asyncio
    async def test_one_time_then_recurring_then_exception(self, session, ben_session):
        await session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Algebra")

        with pytest.raises(BookingConflictError) as exc_info:
            await ben_session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Art")
        assert exc_info.value.kind == "one-time"

        series = await ben_session.create_recurring_booking(
            "Monday", "09:00-10:00", "room-2", "Art"
        )
        result = session.conflict_for("2024-06-10", "09:00-10:00", "room-2")
        assert result.conflict is True
        assert result.kind == "recurring"

        assert await ben_session.cancel_occurrence(series.id, "2024-06-10") is True
        assert session.conflict_for("2024-06-10", "09:00-10:00", "room-2").conflict is False

        assert await ben_session.restore_occurrence(series.id, "2024-06-10") is True
        assert session.conflict_for("2024-06-10", "09:00-10:00", "room-2").kind == "recurring"

    @pytest.mark.asyncio
    async def test_recurring_blocks_one_time_creation(self, session, ben_session):
        await ben_session.create_recurring_booking("Monday", "09:00-10:00", "room-2", "Art")

        with pytest.raises(BookingConflictError) as exc_info:
            await session.create_booking("2024-06-17", "09:00-10:00", "room-2", "Algebra")
        assert exc_info.value.kind == "recurring"
        assert "recurring class" in str(exc_info.value)


# ── Recurring bookings ──────────────────────────────────────────────


class TestRecurring:
    @pytest.mark.asyncio
    async def test_create(self, session, store, notifier):
        series = await session.create_recurring_booking(
            "Wednesday", "13:00-14:00", "room-4", "Drama"
        )
        doc = await store.get(RECURRING_BOOKINGS, series.id)
        assert doc["dayOfWeek"] == "Wednesday"
        assert doc["exceptions"] == []
        assert doc["type"] == "recurring"

        await asyncio.sleep(0)
        assert notifier.send_notification.await_args.args[1] is True

    @pytest.mark.asyncio
    async def test_unknown_day(self, session):
        with pytest.raises(BookingValidationError):
            await session.create_recurring_booking("Funday", "13:00-14:00", "room-4", "Drama")

    @pytest.mark.asyncio
    async def test_duplicate_series_rejected(self, session, ben_session):
        await session.create_recurring_booking("Wednesday", "13:00-14:00", "room-4", "Drama")
        with pytest.raises(BookingConflictError) as exc_info:
            await ben_session.create_recurring_booking("Wednesday", "13:00-14:00", "room-4", "Art")
        assert exc_info.value.kind == "recurring"

    @pytest.mark.asyncio
    async def test_duplicate_series_rejected_even_with_exceptions(self, session, ben_session):
        series = await session.create_recurring_booking(
            "Monday", "13:00-14:00", "room-4", "Drama"
        )
        await session.cancel_occurrence(series.id, "2024-06-10")
        with pytest.raises(BookingConflictError):
            await ben_session.create_recurring_booking("Monday", "13:00-14:00", "room-4", "Art")

    @pytest.mark.asyncio
    async def test_cancel_wrong_weekday(self, session):
        series = await session.create_recurring_booking("Monday", "13:00-14:00", "room-4", "Drama")
        with pytest.raises(BookingValidationError) as exc_info:
            await session.cancel_occurrence(series.id, "2024-06-11")
        assert "not a Monday" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_cancel_with_compact_date_rejected(self, session, store):
        series = await session.create_recurring_booking("Monday", "13:00-14:00", "room-4", "Drama")

        with pytest.raises(BookingValidationError):
            await session.cancel_occurrence(series.id, "20240610")

        assert (await store.get(RECURRING_BOOKINGS, series.id))["exceptions"] == []
        assert session.conflict_for("2024-06-10", "13:00-14:00", "room-4").kind == "recurring"

    @pytest.mark.asyncio
    async def test_malformed_stored_series_is_a_store_error(self, session, store):
        series = await session.create_recurring_booking("Monday", "13:00-14:00", "room-4", "Drama")
        store.get = AsyncMock(return_value={"id": series.id, "subject": "Drama"})

        with pytest.raises(StoreError):
            await session.cancel_occurrence(series.id, "2024-06-10")

    @pytest.mark.asyncio
    async def test_cancel_twice_reports_already_cancelled(self, session, store):
        series = await session.create_recurring_booking("Monday", "13:00-14:00", "room-4", "Drama")

        assert await session.cancel_occurrence(series.id, "2024-06-10") is True
        assert await session.cancel_occurrence(series.id, "2024-06-10") is False

        doc = await store.get(RECURRING_BOOKINGS, series.id)
        assert doc["exceptions"] == ["2024-06-10"]

    @pytest.mark.asyncio
    async def test_restore_absent_date_is_noop(self, session, store):
        series = await session.create_recurring_booking("Monday", "13:00-14:00", "room-4", "Drama")
        assert await session.restore_occurrence(series.id, "2024-06-10") is False
        assert (await store.get(RECURRING_BOOKINGS, series.id))["exceptions"] == []

    @pytest.mark.asyncio
    async def test_cancel_requires_owner(self, session, ben_session):
        series = await session.create_recurring_booking("Monday", "13:00-14:00", "room-4", "Drama")
        with pytest.raises(BookingPermissionError):
            await ben_session.cancel_occurrence(series.id, "2024-06-10")

    @pytest.mark.asyncio
    async def test_cancel_unknown_series(self, session):
        with pytest.raises(BookingNotFoundError):
            await session.cancel_occurrence("missing", "2024-06-10")


# ── Deletion ────────────────────────────────────────────────────────


class TestDeletion:
    @pytest.mark.asyncio
    async def test_owner_deletes_booking(self, session, store):
        booking = await session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Algebra")
        await session.delete_booking(booking.id)

        assert await store.get(BOOKINGS, booking.id) is None
        assert session.snapshot.bookings == ()

    @pytest.mark.asyncio
    async def test_other_teacher_cannot_delete(self, session, ben_session, store):
        booking = await session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Algebra")
        with pytest.raises(BookingPermissionError):
            await ben_session.delete_booking(booking.id)
        assert await store.get(BOOKINGS, booking.id) is not None

    @pytest.mark.asyncio
    async def test_delete_unknown(self, session):
        with pytest.raises(BookingNotFoundError):
            await session.delete_booking("missing")

    @pytest.mark.asyncio
    async def test_owner_deletes_series(self, session, ben_session):
        series = await session.create_recurring_booking("Monday", "13:00-14:00", "room-4", "Drama")
        with pytest.raises(BookingPermissionError):
            await ben_session.delete_recurring_booking(series.id)

        await session.delete_recurring_booking(series.id)
        assert session.snapshot.recurring == ()

    @pytest.mark.asyncio
    async def test_my_bookings(self, session, ben_session):
        await session.create_booking("2024-06-10", "09:00-10:00", "room-1", "Algebra")
        await ben_session.create_booking("2024-06-10", "09:00-10:00", "room-2", "Art")
        await ben_session.create_recurring_booking("Monday", "13:00-14:00", "room-4", "Art")

        assert [b.subject for b in session.my_bookings()] == ["Algebra"]
        assert session.my_recurring_bookings() == []
        assert len(ben_session.my_recurring_bookings()) == 1


# ── Registry ────────────────────────────────────────────────────────


class TestRegistry:
    def test_register_and_unregister(self, store):
        s = BookingSession(ANA, store, settings=quiet_settings())
        sid = register_session(s)

        assert s.session_id == sid
        assert get_session(sid) is s
        assert sid in get_active_sessions()

        assert unregister_session(sid) is s
        assert get_session(sid) is None
        assert unregister_session(sid) is None

    @pytest.mark.asyncio
    async def test_find_teacher_session_only_returns_active(self, store):
        s = BookingSession(ANA, store, settings=quiet_settings(), clock=lambda: NOW)
        sid = register_session(s)
        try:
            assert find_teacher_session("t-ana") is None

            await s.start()
            assert find_teacher_session("t-ana") is s
            assert find_teacher_session("t-ben") is None
        finally:
            unregister_session(sid)
            await s.stop()
