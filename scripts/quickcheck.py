from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
import traceback

from bike_rental import AvailabilityConflictError, BikesService, BookingWorkflow, RentalYamlRepository


def main() -> int:
    print("[INFO] Bike Rental Quick Check")
    print("[INFO] Seeding demo data...")

    repo = RentalYamlRepository("data")
    now = datetime.now().replace(minute=0, second=0, microsecond=0)
    repo.seed_demo_data(now=now, overwrite=True)
    print(f"[OK] Bikes: {len(repo.list_bikes())}, customers: {len(repo.list_customers())}")

    workflow = BookingWorkflow(repo)
    bike = repo.list_bikes()[0]
    customer = repo.list_customers()[0]

    created = workflow.create(bike.id, customer.id, now + timedelta(days=2), now + timedelta(days=2, hours=3))
    print(f"[OK] Back-to-back booking accepted: reservation {created.id} on bike {bike.id}")

    try:
        workflow.create(bike.id, customer.id, now + timedelta(days=1, hours=10), now + timedelta(days=1, hours=11))
        print("[ERROR] Overlapping booking was accepted.")
        return 1
    except AvailabilityConflictError as error:
        print(f"[OK] Overlapping booking rejected: {error.error_key}")

    for row in BikesService(repo).get_all(now):
        print(f"[OK] {row.label}: {row.status.value}")

    print(f"[OK] Reservations YAML: {Path('data/reservations.yaml').resolve()}")
    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
