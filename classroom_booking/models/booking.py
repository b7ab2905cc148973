"""Pydantic models for booking records as they are stored.

Field names on the wire are the camelCase names the ``bookings`` and
``recurringBookings`` collections already use; Python code reads the
snake_case attributes.
"""

from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from classroom_booking.catalog import DAYS_OF_WEEK
from classroom_booking.models.teacher import Teacher


def canonical_date(value: str) -> str:
    """Return ``value`` if it is a date written exactly as ``YYYY-MM-DD``.

    Dates are compared as strings everywhere, so other ISO spellings such as
    ``20240610`` or ``2024-W24-1`` are rejected.
    """
    if date_type.fromisoformat(value).isoformat() != value:
        raise ValueError(f"not a YYYY-MM-DD date: {value!r}")
    return value


class BookingRecord(BaseModel):
    """Fields shared by one-time and recurring bookings."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str = ""
    teacher_id: str = Field(alias="teacherId")
    teacher_email: str = Field(alias="teacherEmail")
    teacher_name: str = Field(default="", alias="teacherName")
    subject: str
    time: str  # HH:MM-HH:MM
    classroom: str  # room id
    notes: str = ""
    timestamp: Optional[datetime] = None

    @property
    def teacher(self) -> Teacher:
        return Teacher(
            id=self.teacher_id,
            email=self.teacher_email,
            display_name=self.teacher_name,
        )

    def owned_by(self, teacher: Teacher) -> bool:
        return self.teacher_id == teacher.id

    def to_store(self) -> dict[str, Any]:
        """Document fields to write. The store assigns id and timestamp."""
        return self.model_dump(by_alias=True, exclude={"id", "timestamp"})

    @classmethod
    def from_store(cls, doc: dict[str, Any]):
        return cls.model_validate(doc)


class Booking(BookingRecord):
    """A one-time booking of one room for one slot on one date."""

    type: Literal["one-time"] = "one-time"
    date: str  # YYYY-MM-DD

    @field_validator("date")
    @classmethod
    def _iso_date(cls, value: str) -> str:
        return canonical_date(value)


class RecurringBooking(BookingRecord):
    """A weekly series; ``exceptions`` lists cancelled occurrence dates."""

    type: Literal["recurring"] = "recurring"
    day_of_week: str = Field(alias="dayOfWeek")
    exceptions: list[str] = []

    @field_validator("day_of_week")
    @classmethod
    def _known_day(cls, value: str) -> str:
        if value not in DAYS_OF_WEEK:
            raise ValueError(f"unknown day of week: {value!r}")
        return value
