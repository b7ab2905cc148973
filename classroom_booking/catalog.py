"""Static catalog: rooms, daily time slots and weekday names."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Room:
    """A bookable classroom."""

    id: str
    name: str
    capacity: int


ROOMS: tuple[Room, ...] = (
    Room("room-1", "Classroom 1", 30),
    Room("room-2", "Classroom 2", 25),
    Room("room-3", "Classroom 3", 40),
    Room("room-4", "Classroom 4", 35),
    Room("room-5", "Classroom 5", 20),
    Room("room-6", "Classroom 6", 45),
)

ROOMS_BY_ID: dict[str, Room] = {room.id: room for room in ROOMS}

TOTAL_ROOMS = len(ROOMS)

TIME_SLOTS: tuple[str, ...] = (
    "08:00-09:00",
    "09:00-10:00",
    "10:00-11:00",
    "11:00-12:00",
    "12:00-13:00",
    "13:00-14:00",
    "14:00-15:00",
    "15:00-16:00",
    "16:00-17:00",
    "17:00-18:00",
)

# Sunday first, matching how the weekly grid is laid out
DAYS_OF_WEEK: tuple[str, ...] = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)


def room_name(room_id: str) -> str:
    """Display name for a room id, or the id itself if unknown."""
    room = ROOMS_BY_ID.get(room_id)
    return room.name if room else room_id


def slot_end_minutes(time_slot: str) -> int:
    """Minutes after midnight at which ``HH:MM-HH:MM`` ends."""
    _, end = time_slot.split("-", 1)
    hours, minutes = end.split(":")
    return int(hours) * 60 + int(minutes)


def to_dict() -> dict:
    """Serialize the catalog for the API."""
    return {
        "rooms": [
            {"id": r.id, "name": r.name, "capacity": r.capacity} for r in ROOMS
        ],
        "time_slots": list(TIME_SLOTS),
        "days_of_week": list(DAYS_OF_WEEK),
    }
