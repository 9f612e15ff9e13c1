from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any
import logging

from .availability import ActiveReservationResolver, BikeStatusDeriver
from .errors import InvalidIdentifierError, NotFoundError
from .models import Bike, Customer, Reservation
from .yaml_store import RentalYamlRepository

logger = logging.getLogger(__name__)


def parse_identifier(value: Any, kind: str) -> int:
    """Turn a raw id into a positive int, or raise InvalidIdentifierError."""
    if isinstance(value, bool):
        raise InvalidIdentifierError(kind, value)
    try:
        identifier = int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidIdentifierError(kind, value) from None
    if identifier <= 0:
        raise InvalidIdentifierError(kind, value)
    return identifier


class ReservationsService:
    def __init__(self, repository: RentalYamlRepository) -> None:
        self.repository = repository

    def list(self) -> list[Reservation]:
        return self.repository.list_reservations()

    def get_by_id(self, reservation_id: int) -> Reservation | None:
        if reservation_id <= 0:
            return None
        return self.repository.find_reservation(reservation_id)

    def add(self, reservation: Reservation) -> Reservation:
        created = self.repository.insert_reservation(reservation)
        logger.info(
            "Reservation %s created for bike %s (%s - %s)",
            created.id,
            created.bike_id,
            created.start.isoformat(timespec="minutes"),
            created.end.isoformat(timespec="minutes"),
        )
        return created

    def update(self, reservation_id: int, updated: Reservation) -> Reservation | None:
        """Replace bike, customer and period of a reservation. Unknown ids are a no-op."""
        stored = self.repository.replace_reservation(reservation_id, updated)
        if stored is None:
            logger.info("Reservation %s not found, update skipped", reservation_id)
            return None
        logger.info("Reservation %s updated", reservation_id)
        return stored

    def delete(self, reservation_id: int) -> None:
        if self.repository.remove_reservation(reservation_id):
            logger.info("Reservation %s deleted", reservation_id)

    def get_bike_price(self, bike_id: int) -> Decimal:
        bike = self.repository.find_bike(bike_id)
        if bike is None:
            raise NotFoundError("Bike", bike_id)
        return bike.price_per_hour


class BikesService:
    def __init__(self, repository: RentalYamlRepository) -> None:
        self.repository = repository
        self.deriver = BikeStatusDeriver(ActiveReservationResolver(repository))

    def get_all(self, now: datetime | None = None) -> list[Bike]:
        effective_now = now or datetime.now()
        return [self._with_live_status(bike, effective_now) for bike in self.repository.list_bikes()]

    def get_by_id(self, bike_id: int, now: datetime | None = None) -> Bike | None:
        if bike_id <= 0:
            return None
        bike = self.repository.find_bike(bike_id)
        if bike is None:
            return None
        return self._with_live_status(bike, now or datetime.now())

    def add(self, bike: Bike) -> Bike:
        created = self.repository.add_bike(bike)
        logger.info("Bike %s added", created.id)
        return created

    def update(self, bike_id: int, bike: Bike) -> Bike | None:
        # The status column is owned by the reservation write path.
        current = self.repository.find_bike(bike_id)
        if current is None:
            return None
        return self.repository.replace_bike(bike_id, replace(bike, status=current.status))

    def delete(self, bike_id: int) -> None:
        if self.repository.remove_bike(bike_id):
            logger.info("Bike %s deleted", bike_id)

    def update_status_based_on_reservations(self, bike: Bike, now: datetime | None = None) -> Bike:
        status = self.deriver.derive_status(bike, now or datetime.now())
        if status != bike.status:
            logger.info("Bike %s status changed: %s -> %s", bike.id, bike.status.value, status.value)
            self.repository.update_bike_status(bike.id, status)
        return replace(bike, status=status)

    def refresh_status(self, bike_id: int, now: datetime | None = None) -> Bike | None:
        bike = self.repository.find_bike(bike_id)
        if bike is None:
            return None
        return self.update_status_based_on_reservations(bike, now)

    def _with_live_status(self, bike: Bike, now: datetime) -> Bike:
        return replace(bike, status=self.deriver.derive_status(bike, now))


class CustomersService:
    def __init__(self, repository: RentalYamlRepository) -> None:
        self.repository = repository

    def get_all(self) -> list[Customer]:
        return self.repository.list_customers()

    def get_by_id(self, customer_id: int) -> Customer | None:
        if customer_id <= 0:
            return None
        return self.repository.find_customer(customer_id)

    def add(self, customer: Customer) -> Customer:
        created = self.repository.add_customer(customer)
        logger.info("Customer %s added", created.id)
        return created

    def update(self, customer_id: int, customer: Customer) -> Customer | None:
        return self.repository.replace_customer(customer_id, customer)

    def delete(self, customer_id: int) -> None:
        if self.repository.remove_customer(customer_id):
            logger.info("Customer %s deleted", customer_id)

    def link_user(self, customer_id: int, user_id: str) -> Customer:
        customer = self.repository.find_customer(customer_id)
        if customer is None:
            raise NotFoundError("Customer", customer_id)
        linked = self.repository.replace_customer(customer_id, replace(customer, user_id=user_id))
        logger.info("Customer %s linked to user %s", customer_id, user_id)
        return linked
