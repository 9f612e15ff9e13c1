from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator
import logging
import shutil
import threading

import yaml

from .errors import RentalStorageError
from .models import Bike, BikeStatus, BikeType, Customer, Reservation

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "data"


class RentalYamlRepository:
    """Storage for bikes, customers and reservations kept as YAML lists.

    Every public call reads the files again, so callers always see current
    state. Read-modify-write sequences on a file run under one re-entrant lock.
    """

    def __init__(self, base_dir: str | Path = DEFAULT_DATA_DIR) -> None:
        self.base_dir = Path(base_dir)
        self.bikes_file = self.base_dir / "bikes.yaml"
        self.customers_file = self.base_dir / "customers.yaml"
        self.reservations_file = self.base_dir / "reservations.yaml"
        self._lock = threading.RLock()
        self._ensure_files()

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the storage lock so several calls act as one step against deletes."""
        with self._lock:
            yield

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.bikes_file, self.customers_file, self.reservations_file):
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            else:
                logger.warning("Skipping row %d of %s: row is not a mapping", index, path.name)
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise RentalStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            logger.exception("Could not back up corrupted file %s", path.name)

        path.write_text("[]\n", encoding="utf-8")
        logger.warning("Recovered corrupted YAML file %s (backup: %s): %s", path.name, backup_path.name, error)

    def _find_row(self, path: Path, row_id: int) -> dict[str, Any] | None:
        for row in self._read_yaml_list(path):
            if _row_id(row) == row_id:
                return row
        return None

    def _insert_row(self, path: Path, payload: dict[str, Any]) -> int:
        with self._lock:
            rows = self._read_yaml_list(path)
            new_id = max((_row_id(row) for row in rows), default=0) + 1
            payload["id"] = new_id
            rows.append(payload)
            self._write_yaml_list(path, rows)
            return new_id

    def _replace_row(self, path: Path, row_id: int, payload: dict[str, Any]) -> bool:
        with self._lock:
            rows = self._read_yaml_list(path)
            for index, row in enumerate(rows):
                if _row_id(row) == row_id:
                    payload["id"] = row_id
                    rows[index] = payload
                    self._write_yaml_list(path, rows)
                    return True
            return False

    def _remove_rows(self, path: Path, predicate: Any) -> int:
        with self._lock:
            rows = self._read_yaml_list(path)
            remaining = [row for row in rows if not predicate(row)]
            removed = len(rows) - len(remaining)
            if removed:
                self._write_yaml_list(path, remaining)
            return removed

    # Bikes

    def list_bikes(self) -> list[Bike]:
        rows = self._read_yaml_list(self.bikes_file)
        return sorted((Bike.from_dict(row) for row in rows), key=lambda bike: bike.id)

    def find_bike(self, bike_id: int) -> Bike | None:
        row = self._find_row(self.bikes_file, bike_id)
        return Bike.from_dict(row) if row is not None else None

    def add_bike(self, bike: Bike) -> Bike:
        new_id = self._insert_row(self.bikes_file, bike.to_dict())
        return replace(bike, id=new_id)

    def replace_bike(self, bike_id: int, bike: Bike) -> Bike | None:
        if not self._replace_row(self.bikes_file, bike_id, bike.to_dict()):
            return None
        return replace(bike, id=bike_id)

    def update_bike_status(self, bike_id: int, status: BikeStatus) -> Bike | None:
        with self._lock:
            current = self.find_bike(bike_id)
            if current is None:
                return None
            if current.status == status:
                return current
            return self.replace_bike(bike_id, replace(current, status=status))

    def remove_bike(self, bike_id: int) -> bool:
        with self._lock:
            removed = self._remove_rows(self.bikes_file, lambda row: _row_id(row) == bike_id)
            if removed:
                self._remove_rows(self.reservations_file, lambda row: int(row["bike_id"]) == bike_id)
            return bool(removed)

    # Customers

    def list_customers(self) -> list[Customer]:
        rows = self._read_yaml_list(self.customers_file)
        return sorted((Customer.from_dict(row) for row in rows), key=lambda customer: customer.id)

    def find_customer(self, customer_id: int) -> Customer | None:
        row = self._find_row(self.customers_file, customer_id)
        return Customer.from_dict(row) if row is not None else None

    def find_customer_by_user_key(self, user_key: str) -> Customer | None:
        for customer in self.list_customers():
            if customer.user_id is not None and customer.user_id == user_key:
                return customer
        return None

    def add_customer(self, customer: Customer) -> Customer:
        new_id = self._insert_row(self.customers_file, customer.to_dict())
        return replace(customer, id=new_id)

    def replace_customer(self, customer_id: int, customer: Customer) -> Customer | None:
        if not self._replace_row(self.customers_file, customer_id, customer.to_dict()):
            return None
        return replace(customer, id=customer_id)

    def remove_customer(self, customer_id: int) -> bool:
        with self._lock:
            removed = self._remove_rows(self.customers_file, lambda row: _row_id(row) == customer_id)
            if removed:
                self._remove_rows(self.reservations_file, lambda row: int(row["customer_id"]) == customer_id)
            return bool(removed)

    # Reservations

    def list_reservations(self) -> list[Reservation]:
        rows = self._read_yaml_list(self.reservations_file)
        return sorted((Reservation.from_dict(row) for row in rows), key=lambda record: (record.start, record.id))

    def find_reservation(self, reservation_id: int) -> Reservation | None:
        row = self._find_row(self.reservations_file, reservation_id)
        return Reservation.from_dict(row) if row is not None else None

    def list_reservations_for_bike(self, bike_id: int) -> list[Reservation]:
        return [record for record in self.list_reservations() if record.bike_id == bike_id]

    def insert_reservation(self, reservation: Reservation) -> Reservation:
        new_id = self._insert_row(self.reservations_file, reservation.to_dict())
        return replace(reservation, id=new_id)

    def replace_reservation(self, reservation_id: int, reservation: Reservation) -> Reservation | None:
        if not self._replace_row(self.reservations_file, reservation_id, reservation.to_dict()):
            return None
        return replace(reservation, id=reservation_id)

    def remove_reservation(self, reservation_id: int) -> bool:
        return bool(self._remove_rows(self.reservations_file, lambda row: _row_id(row) == reservation_id))

    def seed_demo_data(self, now: datetime | None = None, overwrite: bool = True) -> None:
        effective_now = (now or datetime.now()).replace(minute=0, second=0, microsecond=0)
        with self._lock:
            if overwrite:
                for path in (self.bikes_file, self.customers_file, self.reservations_file):
                    self._write_yaml_list(path, [])

            bikes = [
                self.add_bike(Bike(type=BikeType.SIMPLE, price_per_hour=Decimal("10.00"))),
                self.add_bike(Bike(type=BikeType.MOUNTAIN, price_per_hour=Decimal("15.00"))),
                self.add_bike(Bike(type=BikeType.HYBRID, price_per_hour=Decimal("8.00"))),
                self.add_bike(Bike(type=BikeType.DOUBLE, price_per_hour=Decimal("18.50"))),
            ]
            customers = [
                self.add_customer(Customer(name="John Doe", email="john@example.com", user_id="user-john")),
                self.add_customer(Customer(name="Jane Smith", email="jane@example.com", user_id="user-jane")),
                self.add_customer(Customer(name="Walk-in Customer", email="walkin@example.com")),
            ]

            self.insert_reservation(
                Reservation(
                    bike_id=bikes[0].id,
                    customer_id=customers[0].id,
                    start=effective_now + timedelta(days=1),
                    end=effective_now + timedelta(days=2),
                )
            )
            self.insert_reservation(
                Reservation(
                    bike_id=bikes[1].id,
                    customer_id=customers[1].id,
                    start=effective_now - timedelta(hours=1),
                    end=effective_now + timedelta(hours=3),
                )
            )
            self.update_bike_status(bikes[1].id, BikeStatus.UNAVAILABLE)
        logger.info("Seeded demo data into %s", self.base_dir)


def _row_id(row: dict[str, Any]) -> int:
    return int(row.get("id") or 0)
