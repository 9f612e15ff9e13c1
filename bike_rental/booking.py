from datetime import datetime
from typing import Iterable

from .errors import InvalidRangeError
from .models import Reservation


def has_time_overlap(new_start: datetime, new_end: datetime, exist_start: datetime, exist_end: datetime) -> bool:
    """Return True when two time intervals share at least one instant.

    Intervals are treated as half-open ranges: [start, end)
    so back-to-back bookings (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    """
    return new_start < exist_end and exist_start < new_end


def to_local_naive(value: datetime) -> datetime:
    """Stored times are naive local time; convert aware values into that form."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def validate_range(start: datetime, end: datetime) -> None:
    if start >= end:
        raise InvalidRangeError("Reservation start time must be earlier than end time.")


def can_reserve(
    new_start: datetime,
    new_end: datetime,
    existing_reservations: Iterable[Reservation],
    exclude_reservation_id: int | None = None,
) -> bool:
    """Return True if the requested interval does not overlap any existing reservation."""
    validate_range(new_start, new_end)

    for reservation in existing_reservations:
        if exclude_reservation_id is not None and reservation.id == exclude_reservation_id:
            continue
        if has_time_overlap(new_start, new_end, reservation.start, reservation.end):
            return False
    return True
