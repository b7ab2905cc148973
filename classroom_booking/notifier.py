"""Email notifications to other teachers via the Formspree forms API.

Notices go out one recipient at a time.  Each recipient gets a fixed number
of attempts with a fixed delay in between; a failure for one recipient does
not stop the others.  The result reports how many got through instead of a
single pass/fail.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date as date_type
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

import httpx
from pydantic import BaseModel

from classroom_booking.catalog import room_name
from classroom_booking.config import Settings, settings as default_settings
from classroom_booking.models import Booking, RecurringBooking

log = logging.getLogger("classroom_booking.notifier")

FORMSPREE_URL = "https://formspree.io/f/{form_id}"

BookingLike = Union[Booking, RecurringBooking]


class DeliveryResult(BaseModel):
    """Outcome for one recipient."""

    email: str
    success: bool
    attempts: int = 0
    error: str = ""


class NotificationResult(BaseModel):
    """Tally over all recipients of one notice."""

    success: bool
    total: int = 0
    successful: int = 0
    failed: int = 0
    results: list[DeliveryResult] = []
    message: str = ""
    error: str = ""

    @property
    def ratio(self) -> str:
        return f"{self.successful}/{self.total}"


class Notifier(ABC):
    """Sends booking notices to the other teachers."""

    @abstractmethod
    async def send_notification(
        self, record: BookingLike, is_recurring: bool = False
    ) -> NotificationResult:
        """Notify every configured teacher except the one who booked."""


# ── Templates ────────────────────────────────────────────────────

_RULE = "-" * 50


def format_date_for_email(value: str) -> str:
    try:
        return date_type.fromisoformat(value).strftime("%A, %B %d, %Y")
    except ValueError:
        return value


def _notes_line(record: BookingLike) -> str:
    return f"Notes: {record.notes}\n" if record.notes else ""


def one_time_email_content(record: Booking, app_url: str = "") -> str:
    return (
        "NEW CLASSROOM BOOKING NOTIFICATION\n\n"
        "A new class has been scheduled in the Classroom Booking System.\n\n"
        "BOOKING DETAILS:\n"
        f"{_RULE}\n"
        f"Teacher: {record.teacher_name}\n"
        f"Email: {record.teacher_email}\n"
        f"Subject: {record.subject}\n"
        f"Classroom: {room_name(record.classroom)}\n"
        f"Date: {format_date_for_email(record.date)}\n"
        f"Time: {record.time}\n"
        f"{_notes_line(record)}"
        f"{_RULE}\n\n"
        "This classroom is now booked for the specified time.\n"
        "Please check the booking system for any scheduling needs.\n\n"
        f"Booking system: {app_url}\n\n"
        f"Automated notification - {datetime.now():%Y-%m-%d %H:%M}"
    )


def recurring_email_content(record: RecurringBooking, app_url: str = "") -> str:
    return (
        "NEW WEEKLY RECURRING CLASS NOTIFICATION\n\n"
        "A new weekly recurring class has been scheduled in the "
        "Classroom Booking System.\n\n"
        "RECURRING CLASS DETAILS:\n"
        f"{_RULE}\n"
        f"Teacher: {record.teacher_name}\n"
        f"Email: {record.teacher_email}\n"
        f"Subject: {record.subject}\n"
        f"Classroom: {room_name(record.classroom)}\n"
        f"Schedule: Every {record.day_of_week}\n"
        f"Time: {record.time}\n"
        f"{_notes_line(record)}"
        f"{_RULE}\n\n"
        "DURATION: This recurring class will run for 52 weeks (1 year).\n"
        "This time slot is now blocked for the entire duration.\n\n"
        f"Booking system: {app_url}\n\n"
        f"Automated notification - {datetime.now():%Y-%m-%d %H:%M}"
    )


# ── Formspree ────────────────────────────────────────────────────


class FormspreeNotifier(Notifier):
    """Notifier that posts one Formspree submission per recipient."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or default_settings
        self._client = client
        self._sleep = sleep

    @property
    def url(self) -> str:
        return FORMSPREE_URL.format(form_id=self._settings.formspree_form_id)

    def recipients_for(self, record: BookingLike) -> list[str]:
        return [
            email
            for email in self._settings.teacher_emails
            if email.strip() and email != record.teacher_email
        ]

    async def send_notification(
        self, record: BookingLike, is_recurring: bool = False
    ) -> NotificationResult:
        if not self._settings.email_configured:
            log.error("Formspree not configured; set FORMSPREE_FORM_ID")
            return NotificationResult(
                success=False, error="Email service not configured"
            )

        recipients = self.recipients_for(record)
        if not recipients:
            log.info("No other teachers to notify")
            return NotificationResult(success=True, message="No other teachers to notify")

        room = room_name(record.classroom)
        if is_recurring:
            subject = f"New Weekly Recurring Class: {room} - {record.subject}"
            content = recurring_email_content(record, self._settings.app_url)
        else:
            subject = f"New Booking: {room} - {record.subject}"
            content = one_time_email_content(record, self._settings.app_url)

        log.info("Sending notifications to %d teachers via Formspree", len(recipients))
        results = await self._send_all(recipients, subject, content, record)

        successful = sum(1 for r in results if r.success)
        failed = [r for r in results if not r.success]
        log.info("Email results: %d/%d successful", successful, len(results))
        if failed:
            log.warning("Some emails failed: %s",
                        [(redact_pii(r.email), r.error) for r in failed])

        return NotificationResult(
            success=successful > 0,
            total=len(results),
            successful=successful,
            failed=len(failed),
            results=results,
        )

    async def send_test(self, email: str) -> DeliveryResult:
        """Send a sample one-time notice to ``email`` to check the setup."""
        sample = Booking(
            teacher_id="test",
            teacher_email="test@example.com",
            teacher_name="Test Teacher",
            subject="Test Booking Notification",
            date=date_type.today().isoformat(),
            time="10:00-11:00",
            classroom="room-1",
            notes="This is a test notification to verify email service is working correctly.",
        )
        if not self._settings.email_configured:
            return DeliveryResult(email=email, success=False,
                                  error="Email service not configured")
        content = one_time_email_content(sample, self._settings.app_url)
        results = await self._send_all(
            [email], "Test Email - Classroom Booking System", content, sample
        )
        return results[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _send_all(
        self, recipients: list[str], subject: str, content: str, record: BookingLike
    ) -> list[DeliveryResult]:
        if self._client is not None:
            return [
                await self._send_email(self._client, email, subject, content, record)
                for email in recipients
            ]
        async with httpx.AsyncClient(timeout=15) as client:
            return [
                await self._send_email(client, email, subject, content, record)
                for email in recipients
            ]

    def _payload(
        self, to_email: str, subject: str, content: str, record: BookingLike
    ) -> dict:
        when = record.date if isinstance(record, Booking) else record.day_of_week
        return {
            "_replyto": self._settings.email_from,
            "_subject": subject,
            "email": to_email,
            "name": to_email.split("@")[0],
            "message": content,
            "booking_type": record.type,
            "teacher_name": record.teacher_name,
            "classroom": room_name(record.classroom),
            "subject_taught": record.subject,
            "date": when,
            "time": record.time,
            "_cc": self._settings.email_from,
        }

    async def _send_email(
        self,
        client: httpx.AsyncClient,
        to_email: str,
        subject: str,
        content: str,
        record: BookingLike,
    ) -> DeliveryResult:
        max_attempts = max(1, self._settings.email_max_retries)
        payload = self._payload(to_email, subject, content, record)
        error = ""

        for attempt in range(1, max_attempts + 1):
            log.info("Sending email to %s (attempt %d/%d)",
                     redact_pii(to_email), attempt, max_attempts)
            try:
                resp = await client.post(
                    self.url, json=payload, headers={"Accept": "application/json"}
                )
                if resp.is_success:
                    return DeliveryResult(email=to_email, success=True, attempts=attempt)
                error = f"Formspree error: {_error_detail(resp)}"
            except httpx.HTTPError as exc:
                error = str(exc) or exc.__class__.__name__

            log.warning("Email to %s failed (attempt %d): %s",
                        redact_pii(to_email), attempt, error)
            if attempt < max_attempts:
                await self._sleep(self._settings.email_retry_delay)

        return DeliveryResult(
            email=to_email, success=False, attempts=max_attempts, error=error
        )


def _error_detail(resp: httpx.Response) -> str:
    detail: Optional[str] = None
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        detail = data.get("error")
    return detail or resp.reason_phrase or str(resp.status_code)


def redact_pii(value: str) -> str:
    """Mask an address for logging — show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]
