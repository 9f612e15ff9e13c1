from __future__ import annotations

from contextlib import ExitStack, contextmanager
from datetime import datetime
from typing import Callable, Iterator
import logging
import threading

from .availability import AvailabilityChecker
from .booking import to_local_naive, validate_range
from .errors import AvailabilityConflictError, NotFoundError
from .models import Reservation
from .services import BikesService, ReservationsService, parse_identifier
from .yaml_store import RentalYamlRepository

logger = logging.getLogger(__name__)


class BikeLocks:
    """One mutex per bike id, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def _lock_for(self, bike_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(bike_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[bike_id] = lock
            return lock

    @contextmanager
    def hold(self, *bike_ids: int) -> Iterator[None]:
        # Ascending order keeps two-bike edits from deadlocking each other.
        with ExitStack() as stack:
            for bike_id in sorted(set(bike_ids)):
                stack.enter_context(self._lock_for(bike_id))
            yield


class BookingWorkflow:
    """Check-then-write sequences for reservations, serialised per bike."""

    def __init__(
        self,
        repository: RentalYamlRepository,
        now_provider: Callable[[], datetime] | None = None,
        locks: BikeLocks | None = None,
    ) -> None:
        self.repository = repository
        self.clock: Callable[[], datetime] = now_provider or datetime.now
        self.locks = locks or BikeLocks()
        self.checker = AvailabilityChecker(repository)
        self.reservations = ReservationsService(repository)
        self.bikes = BikesService(repository)

    def create(self, bike_id: object, customer_id: object, start: datetime, end: datetime) -> Reservation:
        bike_key, customer_key, start, end = self._validate_request(bike_id, customer_id, start, end)

        with self.locks.hold(bike_key):
            if not self.checker.is_available(bike_key, start, end):
                logger.warning("Rejected overlapping booking for bike %s (%s - %s)", bike_key, start, end)
                raise AvailabilityConflictError(bike_key)
            with self.repository.locked():
                self._require_references(bike_key, customer_key)
                created = self.reservations.add(
                    Reservation(bike_id=bike_key, customer_id=customer_key, start=start, end=end)
                )
            self.bikes.refresh_status(bike_key, self.clock())
        return created

    def edit(
        self,
        reservation_id: object,
        bike_id: object,
        customer_id: object,
        start: datetime,
        end: datetime,
    ) -> Reservation:
        reservation_key = parse_identifier(reservation_id, "Reservation")
        bike_key, customer_key, start, end = self._validate_request(bike_id, customer_id, start, end)

        while True:
            current = self.reservations.get_by_id(reservation_key)
            if current is None:
                raise NotFoundError("Reservation", reservation_key)
            previous_bike_id = current.bike_id

            with self.locks.hold(previous_bike_id, bike_key):
                # Re-read under the lock: a concurrent edit may have moved or removed it.
                current = self.reservations.get_by_id(reservation_key)
                if current is None:
                    raise NotFoundError("Reservation", reservation_key)
                if current.bike_id != previous_bike_id:
                    continue

                if not self.checker.is_available(bike_key, start, end, exclude_reservation_id=reservation_key):
                    logger.warning(
                        "Rejected overlapping edit of reservation %s on bike %s", reservation_key, bike_key
                    )
                    raise AvailabilityConflictError(bike_key)

                with self.repository.locked():
                    self._require_references(bike_key, customer_key)
                    updated = self.reservations.update(
                        reservation_key,
                        Reservation(bike_id=bike_key, customer_id=customer_key, start=start, end=end),
                    )
                now = self.clock()
                self.bikes.refresh_status(bike_key, now)
                if previous_bike_id != bike_key:
                    self.bikes.refresh_status(previous_bike_id, now)
                return updated

    def cancel(self, reservation_id: object) -> None:
        reservation_key = parse_identifier(reservation_id, "Reservation")
        while True:
            current = self.reservations.get_by_id(reservation_key)
            if current is None:
                return

            with self.locks.hold(current.bike_id):
                latest = self.reservations.get_by_id(reservation_key)
                if latest is not None and latest.bike_id != current.bike_id:
                    continue
                self.reservations.delete(reservation_key)
                self.bikes.refresh_status(current.bike_id, self.clock())
                return

    def _validate_request(
        self,
        bike_id: object,
        customer_id: object,
        start: datetime,
        end: datetime,
    ) -> tuple[int, int, datetime, datetime]:
        bike_key = parse_identifier(bike_id, "Bike")
        customer_key = parse_identifier(customer_id, "Customer")
        start, end = to_local_naive(start), to_local_naive(end)
        validate_range(start, end)
        self._require_references(bike_key, customer_key)
        return bike_key, customer_key, start, end

    def _require_references(self, bike_key: int, customer_key: int) -> None:
        # Repeated under the storage lock right before writing, so bike and customer deletes cannot interleave.
        if self.repository.find_bike(bike_key) is None:
            raise NotFoundError("Bike", bike_key)
        if self.repository.find_customer(customer_key) is None:
            raise NotFoundError("Customer", customer_key)
