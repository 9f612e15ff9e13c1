from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .booking import can_reserve, to_local_naive, validate_range
from .models import Bike, BikeStatus, Reservation
from .yaml_store import RentalYamlRepository

DISPLAY_DATE_FORMAT = "%d/%m/%Y %H:%M"


@dataclass(frozen=True)
class DisplayReservation:
    start_date: str
    end_date: str

    def to_dict(self) -> dict[str, str]:
        return {"startDate": self.start_date, "endDate": self.end_date}


def format_display_date(value: datetime) -> str:
    # Aware values are shown in the system's local time; naive values already are.
    if value.tzinfo is not None:
        value = value.astimezone()
    return value.strftime(DISPLAY_DATE_FORMAT)


class AvailabilityChecker:
    def __init__(self, repository: RentalYamlRepository) -> None:
        self.repository = repository

    def is_available(
        self,
        bike_id: int,
        start: datetime,
        end: datetime,
        exclude_reservation_id: int | None = None,
    ) -> bool:
        """Return True if no other reservation of the bike overlaps [start, end).

        Advisory only: callers that go on to write must hold the bike's lock
        (see BookingWorkflow) between this check and the write.
        """
        start, end = to_local_naive(start), to_local_naive(end)
        validate_range(start, end)
        existing = self.repository.list_reservations_for_bike(bike_id)
        return can_reserve(start, end, existing, exclude_reservation_id=exclude_reservation_id)


class ActiveReservationResolver:
    def __init__(self, repository: RentalYamlRepository) -> None:
        self.repository = repository

    def get_ongoing_reservations(self, bike_id: int, now: datetime) -> list[Reservation]:
        return [
            record
            for record in self.repository.list_reservations_for_bike(bike_id)
            if record.start <= now < record.end
        ]

    def get_display_reservations(
        self,
        bike_id: int,
        exclude_reservation_id: int | None = None,
    ) -> list[DisplayReservation]:
        return [
            DisplayReservation(
                start_date=format_display_date(record.start),
                end_date=format_display_date(record.end),
            )
            for record in self.repository.list_reservations_for_bike(bike_id)
            if exclude_reservation_id is None or record.id != exclude_reservation_id
        ]


class BikeStatusDeriver:
    def __init__(self, resolver: ActiveReservationResolver) -> None:
        self.resolver = resolver

    def derive_status(self, bike: Bike, now: datetime) -> BikeStatus:
        if self.resolver.get_ongoing_reservations(bike.id, now):
            return BikeStatus.UNAVAILABLE
        return BikeStatus.AVAILABLE
