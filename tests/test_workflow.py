import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from unittest import mock

from bike_rental import (
    OVERLAP_ERROR_KEY,
    AvailabilityConflictError,
    Bike,
    BikeLocks,
    BikeStatus,
    BikeType,
    BookingWorkflow,
    Customer,
    InvalidIdentifierError,
    InvalidRangeError,
    NotFoundError,
    RentalYamlRepository,
)

NOW = datetime(2026, 3, 2, 9, 0)


class TestBookingWorkflow(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self._temp_dir.cleanup)
        self.repo = RentalYamlRepository(Path(self._temp_dir.name) / "data")
        self.bike = self.repo.add_bike(Bike(type=BikeType.SIMPLE, price_per_hour=Decimal("10.00")))
        self.other_bike = self.repo.add_bike(Bike(type=BikeType.HYBRID, price_per_hour=Decimal("8.00")))
        self.customer = self.repo.add_customer(Customer(name="John Doe", user_id="user-john"))
        self.now = NOW
        self.workflow = BookingWorkflow(self.repo, now_provider=lambda: self.now)
        self.existing = self.workflow.create(
            self.bike.id,
            self.customer.id,
            NOW + timedelta(days=1),
            NOW + timedelta(days=2),
        )

    def test_overlapping_booking_is_rejected_without_writing(self) -> None:
        start = NOW + timedelta(days=1, hours=10)
        with self.assertRaises(AvailabilityConflictError) as caught:
            self.workflow.create(self.bike.id, self.customer.id, start, start + timedelta(hours=1))

        self.assertEqual(caught.exception.error_key, OVERLAP_ERROR_KEY)
        self.assertEqual(caught.exception.error_key, "ReservationOverlap")
        self.assertEqual(len(self.repo.list_reservations()), 1)

    def test_back_to_back_booking_is_created(self) -> None:
        start = NOW + timedelta(days=2)
        created = self.workflow.create(self.bike.id, self.customer.id, start, start + timedelta(hours=1))

        self.assertEqual(created.start, start)
        self.assertEqual(len(self.repo.list_reservations_for_bike(self.bike.id)), 2)

    def test_wrapping_booking_is_rejected(self) -> None:
        with self.assertRaises(AvailabilityConflictError):
            self.workflow.create(
                self.bike.id,
                self.customer.id,
                NOW + timedelta(days=1) - timedelta(hours=1),
                NOW + timedelta(days=2) + timedelta(hours=1),
            )

    def test_invalid_input_is_rejected(self) -> None:
        with self.assertRaises(InvalidRangeError):
            self.workflow.create(self.bike.id, self.customer.id, NOW + timedelta(days=5), NOW + timedelta(days=4))
        with self.assertRaises(InvalidIdentifierError):
            self.workflow.create(-1, self.customer.id, NOW + timedelta(days=5), NOW + timedelta(days=6))
        with self.assertRaises(NotFoundError):
            self.workflow.create(999, self.customer.id, NOW + timedelta(days=5), NOW + timedelta(days=6))
        with self.assertRaises(NotFoundError):
            self.workflow.create(self.bike.id, 999, NOW + timedelta(days=5), NOW + timedelta(days=6))

    def test_edit_against_itself_is_allowed(self) -> None:
        updated = self.workflow.edit(
            self.existing.id,
            self.bike.id,
            self.customer.id,
            self.existing.start,
            self.existing.end + timedelta(hours=2),
        )

        self.assertEqual(updated.id, self.existing.id)
        self.assertEqual(self.repo.find_reservation(self.existing.id).end, self.existing.end + timedelta(hours=2))

    def test_edit_into_another_reservation_is_rejected(self) -> None:
        later = self.workflow.create(self.bike.id, self.customer.id, NOW + timedelta(days=3), NOW + timedelta(days=4))

        with self.assertRaises(AvailabilityConflictError):
            self.workflow.edit(
                later.id,
                self.bike.id,
                self.customer.id,
                NOW + timedelta(days=1, hours=12),
                NOW + timedelta(days=3, hours=1),
            )
        self.assertEqual(self.repo.find_reservation(later.id), later)

    def test_edit_of_unknown_reservation_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.workflow.edit(999, self.bike.id, self.customer.id, NOW + timedelta(days=5), NOW + timedelta(days=6))

    def test_edit_moving_to_another_bike_refreshes_both_statuses(self) -> None:
        self.now = NOW + timedelta(days=1, hours=1)
        self.workflow.bikes.refresh_status(self.bike.id, self.now)
        self.assertEqual(self.repo.find_bike(self.bike.id).status, BikeStatus.UNAVAILABLE)

        self.workflow.edit(
            self.existing.id,
            self.other_bike.id,
            self.customer.id,
            self.existing.start,
            self.existing.end,
        )

        self.assertEqual(self.repo.find_bike(self.bike.id).status, BikeStatus.AVAILABLE)
        self.assertEqual(self.repo.find_bike(self.other_bike.id).status, BikeStatus.UNAVAILABLE)

    def test_create_refreshes_status_for_ongoing_booking(self) -> None:
        created = self.workflow.create(
            self.other_bike.id,
            self.customer.id,
            NOW - timedelta(hours=1),
            NOW + timedelta(hours=1),
        )

        self.assertEqual(self.repo.find_bike(self.other_bike.id).status, BikeStatus.UNAVAILABLE)

        self.workflow.cancel(created.id)
        self.assertEqual(self.repo.find_bike(self.other_bike.id).status, BikeStatus.AVAILABLE)

    def test_aware_datetimes_are_stored_as_local_time(self) -> None:
        start = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
        created = self.workflow.create(self.other_bike.id, self.customer.id, start, start + timedelta(hours=2))

        expected = start.astimezone().replace(tzinfo=None)
        self.assertIsNone(created.start.tzinfo)
        self.assertEqual(created.start, expected)
        stored = self.repo.find_reservation(created.id)
        self.assertIsNone(stored.start.tzinfo)
        self.assertEqual(stored.end, expected + timedelta(hours=2))
        # Naive and converted rows must still sort and compare together.
        self.assertEqual(len(self.repo.list_reservations()), 2)
        self.workflow.bikes.refresh_status(self.other_bike.id, self.now)

    def test_aware_range_overlapping_naive_reservation_is_rejected(self) -> None:
        start = (NOW + timedelta(days=1, hours=3)).astimezone().astimezone(timezone.utc)
        later = self.workflow.create(self.bike.id, self.customer.id, NOW + timedelta(days=3), NOW + timedelta(days=4))

        with self.assertRaises(AvailabilityConflictError):
            self.workflow.create(self.bike.id, self.customer.id, start, start + timedelta(hours=1))
        with self.assertRaises(AvailabilityConflictError):
            self.workflow.edit(later.id, self.bike.id, self.customer.id, start, start + timedelta(hours=1))
        self.assertEqual(len(self.repo.list_reservations()), 2)

    def test_create_after_bike_or_customer_removal_is_not_found(self) -> None:
        self.repo.remove_bike(self.other_bike.id)
        with self.assertRaises(NotFoundError):
            self.workflow.create(self.other_bike.id, self.customer.id, NOW + timedelta(days=5), NOW + timedelta(days=6))

        self.repo.remove_customer(self.customer.id)
        with self.assertRaises(NotFoundError):
            self.workflow.create(self.bike.id, self.customer.id, NOW + timedelta(days=5), NOW + timedelta(days=6))
        self.assertEqual(self.repo.list_reservations(), [])

    def test_customer_removed_during_create_blocks_the_write(self) -> None:
        check = self.workflow.checker.is_available

        def remove_customer_then_check(*args, **kwargs):
            self.repo.remove_customer(self.customer.id)
            return check(*args, **kwargs)

        with mock.patch.object(self.workflow.checker, "is_available", side_effect=remove_customer_then_check):
            with self.assertRaises(NotFoundError):
                self.workflow.create(
                    self.other_bike.id, self.customer.id, NOW + timedelta(days=5), NOW + timedelta(days=6)
                )

        self.assertEqual(self.repo.list_reservations(), [])

    def test_bike_removed_during_edit_blocks_the_write(self) -> None:
        check = self.workflow.checker.is_available

        def remove_bike_then_check(*args, **kwargs):
            self.repo.remove_bike(self.other_bike.id)
            return check(*args, **kwargs)

        with mock.patch.object(self.workflow.checker, "is_available", side_effect=remove_bike_then_check):
            with self.assertRaises(NotFoundError):
                self.workflow.edit(
                    self.existing.id, self.other_bike.id, self.customer.id, self.existing.start, self.existing.end
                )

        self.assertEqual(self.repo.find_reservation(self.existing.id), self.existing)
        self.assertEqual(self.repo.list_reservations_for_bike(self.other_bike.id), [])

    def test_bike_removal_waits_for_locked_storage(self) -> None:
        removed = threading.Event()

        def remove() -> None:
            self.repo.remove_bike(self.other_bike.id)
            removed.set()

        with self.repo.locked():
            thread = threading.Thread(target=remove)
            thread.start()
            self.assertFalse(removed.wait(0.1))
            self.assertIsNotNone(self.repo.find_bike(self.other_bike.id))
        thread.join(timeout=1)
        self.assertTrue(removed.is_set())
        self.assertIsNone(self.repo.find_bike(self.other_bike.id))

    def test_cancel_of_unknown_reservation_is_a_no_op(self) -> None:
        self.workflow.cancel(999)
        self.assertEqual(len(self.repo.list_reservations()), 1)

    def test_concurrent_conflicting_bookings_commit_only_once(self) -> None:
        start = NOW + timedelta(days=5)
        end = start + timedelta(hours=2)
        workers = 8
        barrier = threading.Barrier(workers)
        created: list[int] = []
        conflicts: list[AvailabilityConflictError] = []
        results_lock = threading.Lock()

        def book() -> None:
            barrier.wait()
            try:
                record = self.workflow.create(self.bike.id, self.customer.id, start, end)
            except AvailabilityConflictError as error:
                with results_lock:
                    conflicts.append(error)
            else:
                with results_lock:
                    created.append(record.id)

        threads = [threading.Thread(target=book) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(created), 1)
        self.assertEqual(len(conflicts), workers - 1)
        booked = [row for row in self.repo.list_reservations_for_bike(self.bike.id) if row.start == start]
        self.assertEqual(len(booked), 1)

    def test_concurrent_bookings_on_different_bikes_are_all_kept(self) -> None:
        bikes = [self.repo.add_bike(Bike(type=BikeType.DOUBLE, price_per_hour=Decimal("12.00"))) for _ in range(6)]
        barrier = threading.Barrier(len(bikes))

        def book(bike_id: int) -> None:
            barrier.wait()
            self.workflow.create(bike_id, self.customer.id, NOW + timedelta(days=6), NOW + timedelta(days=6, hours=1))

        threads = [threading.Thread(target=book, args=(bike.id,)) for bike in bikes]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for bike in bikes:
            self.assertEqual(len(self.repo.list_reservations_for_bike(bike.id)), 1)


class TestBikeLocks(unittest.TestCase):
    def test_same_bike_lock_is_reused(self) -> None:
        locks = BikeLocks()
        with locks.hold(1, 2):
            acquired = threading.Event()

            def try_lock() -> None:
                with locks.hold(2):
                    acquired.set()

            thread = threading.Thread(target=try_lock)
            thread.start()
            self.assertFalse(acquired.wait(0.1))
        thread.join(timeout=1)
        self.assertTrue(acquired.is_set())

    def test_duplicate_ids_are_locked_once(self) -> None:
        locks = BikeLocks()
        with locks.hold(3, 3):
            pass


if __name__ == "__main__":
    unittest.main()
