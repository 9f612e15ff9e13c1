from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable
import logging
import os

from flask import Flask, jsonify, request

from .availability import DISPLAY_DATE_FORMAT, ActiveReservationResolver, format_display_date
from .booking import to_local_naive
from .errors import AvailabilityConflictError, InvalidRangeError, NotFoundError, RentalStorageError
from .forms import Client, ReservationFormAssembler, ViewerContext, viewer_from_claims
from .models import Bike, Customer, Reservation
from .services import BikesService, CustomersService, ReservationsService, parse_identifier
from .workflow import BookingWorkflow
from .yaml_store import DEFAULT_DATA_DIR, RentalYamlRepository

logger = logging.getLogger(__name__)

DATA_DIR_ENV = "BIKE_RENTAL_DATA_DIR"
USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"
ADMIN_ROLE = "admin"


def create_app(
    data_dir: str | Path | None = None,
    now_provider: Callable[[], datetime] | None = None,
) -> Flask:
    app = Flask(__name__)
    repository = RentalYamlRepository(data_dir or os.environ.get(DATA_DIR_ENV, DEFAULT_DATA_DIR))
    clock: Callable[[], datetime] = now_provider or datetime.now

    reservations = ReservationsService(repository)
    bikes = BikesService(repository)
    customers = CustomersService(repository)
    resolver = ActiveReservationResolver(repository)
    assembler = ReservationFormAssembler(repository, resolver)
    workflow = BookingWorkflow(repository, now_provider=clock)

    def _viewer() -> ViewerContext:
        role = request.headers.get(USER_ROLE_HEADER, "").strip().lower()
        user_id = request.headers.get(USER_ID_HEADER, "").strip() or None
        return viewer_from_claims(role == ADMIN_ROLE, user_id)

    def _may_book_for(viewer: ViewerContext, customer_id: int) -> bool:
        if not isinstance(viewer, Client):
            return True
        return any(customer.id == customer_id for customer in assembler.selectable_customers(viewer))

    @app.errorhandler(NotFoundError)
    def handle_not_found(error: NotFoundError) -> Any:
        # Malformed ids land here too and get the same "not found" answer.
        return jsonify({"ok": False, "message": f"{error.kind} not found."}), 404

    @app.errorhandler(RentalStorageError)
    def handle_storage_error(error: RentalStorageError) -> Any:
        logger.exception("Storage failure while handling %s %s", request.method, request.path)
        return jsonify({"ok": False, "message": "Storage is unavailable."}), 500

    @app.get("/api/bikes")
    def list_bikes() -> Any:
        return jsonify({"ok": True, "bikes": [_serialize_bike(bike) for bike in bikes.get_all(clock())]})

    @app.get("/api/bikes/<bike_id>")
    def get_bike(bike_id: str) -> Any:
        key = parse_identifier(bike_id, "Bike")
        bike = bikes.get_by_id(key, clock())
        if bike is None:
            raise NotFoundError("Bike", key)
        return jsonify({"ok": True, "bike": _serialize_bike(bike)})

    @app.get("/api/bikes/<bike_id>/reservation-data")
    def bike_reservation_data(bike_id: str) -> Any:
        key = parse_identifier(bike_id, "Bike")
        exclude = _optional_identifier(request.args.get("exclude"), "Reservation")
        price = reservations.get_bike_price(key)
        return jsonify(
            {
                "pricePerHour": float(price),
                "activeReservations": [item.to_dict() for item in resolver.get_display_reservations(key, exclude)],
            }
        )

    @app.get("/api/customers")
    def list_customers() -> Any:
        return jsonify({"ok": True, "customers": [_serialize_customer(row) for row in customers.get_all()]})

    @app.get("/api/customers/<customer_id>")
    def get_customer(customer_id: str) -> Any:
        key = parse_identifier(customer_id, "Customer")
        customer = customers.get_by_id(key)
        if customer is None:
            raise NotFoundError("Customer", key)
        return jsonify({"ok": True, "customer": _serialize_customer(customer)})

    @app.get("/api/reservations")
    def list_reservations() -> Any:
        return jsonify({"ok": True, "reservations": [_serialize_reservation(row) for row in reservations.list()]})

    @app.get("/api/reservations/<reservation_id>")
    def get_reservation(reservation_id: str) -> Any:
        key = parse_identifier(reservation_id, "Reservation")
        record = reservations.get_by_id(key)
        if record is None:
            raise NotFoundError("Reservation", key)
        return jsonify({"ok": True, "reservation": _serialize_reservation(record)})

    @app.get("/api/reservations/form")
    def reservation_form() -> Any:
        bike_key = _optional_identifier(request.args.get("bike_id"), "Bike")
        exclude = _optional_identifier(request.args.get("reservation_id"), "Reservation")
        if exclude is not None and reservations.get_by_id(exclude) is None:
            raise NotFoundError("Reservation", exclude)
        form = assembler.build_form_values(bike_key, _viewer(), exclude_reservation_id=exclude)
        return jsonify({"ok": True, "form": form.to_dict()})

    def _submit(reservation_id: int | None) -> Any:
        payload = request.get_json(silent=True)
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            return jsonify({"ok": False, "message": "Request body must be a JSON object."}), 400
        viewer = _viewer()

        try:
            start = _parse_datetime(payload.get("start"))
            end = _parse_datetime(payload.get("end"))
        except ValueError as error:
            return jsonify({"ok": False, "message": str(error), "submitted": payload}), 400

        customer_key = parse_identifier(payload.get("customer_id"), "Customer")
        if not _may_book_for(viewer, customer_key):
            return jsonify({"ok": False, "message": "You can only book for your own customer account."}), 403

        try:
            if reservation_id is None:
                record = workflow.create(payload.get("bike_id"), customer_key, start, end)
            else:
                record = workflow.edit(reservation_id, payload.get("bike_id"), customer_key, start, end)
        except InvalidRangeError as error:
            return (
                jsonify({"ok": False, "errors": {"InvalidRange": str(error)}, "submitted": payload}),
                400,
            )
        except AvailabilityConflictError as error:
            form = assembler.build_form_values(error.bike_id, viewer, exclude_reservation_id=reservation_id)
            return (
                jsonify(
                    {
                        "ok": False,
                        "errors": {error.error_key: str(error)},
                        "form": form.to_dict(),
                        "submitted": payload,
                    }
                ),
                409,
            )

        status_code = 201 if reservation_id is None else 200
        return jsonify({"ok": True, "reservation": _serialize_reservation(record)}), status_code

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        return _submit(None)

    @app.post("/api/reservations/<reservation_id>/update")
    def update_reservation(reservation_id: str) -> Any:
        key = parse_identifier(reservation_id, "Reservation")
        existing = reservations.get_by_id(key)
        if existing is None:
            raise NotFoundError("Reservation", key)
        if not _may_book_for(_viewer(), existing.customer_id):
            return jsonify({"ok": False, "message": "This reservation belongs to another customer."}), 403
        return _submit(key)

    @app.post("/api/reservations/<reservation_id>/delete")
    def delete_reservation(reservation_id: str) -> Any:
        key = parse_identifier(reservation_id, "Reservation")
        existing = reservations.get_by_id(key)
        if existing is not None and not _may_book_for(_viewer(), existing.customer_id):
            return jsonify({"ok": False, "message": "This reservation belongs to another customer."}), 403
        workflow.cancel(key)
        return jsonify({"ok": True, "reservation_id": key})

    return app


def _optional_identifier(value: str | None, kind: str) -> int | None:
    if value is None or not str(value).strip():
        return None
    return parse_identifier(value, kind)


def _parse_datetime(value: Any) -> datetime:
    text = str(value or "").strip()
    if not text:
        raise ValueError("start and end are required.")
    try:
        return to_local_naive(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        return datetime.strptime(text, DISPLAY_DATE_FORMAT)
    except ValueError:
        raise ValueError(f"Unrecognised date: {text}") from None


def _serialize_bike(bike: Bike) -> dict[str, Any]:
    return {
        "id": bike.id,
        "type": bike.type.value,
        "price_per_hour": float(bike.price_per_hour),
        "status": bike.status.value,
        "label": bike.label,
        "has_image": bike.image is not None,
    }


def _serialize_customer(customer: Customer) -> dict[str, Any]:
    return {
        "id": customer.id,
        "name": customer.name,
        "email": customer.email,
        "has_account": customer.user_id is not None,
    }


def _serialize_reservation(record: Reservation) -> dict[str, Any]:
    return {
        "id": record.id,
        "bike_id": record.bike_id,
        "customer_id": record.customer_id,
        "start": record.start.isoformat(timespec="minutes"),
        "end": record.end.isoformat(timespec="minutes"),
        "startDate": format_display_date(record.start),
        "endDate": format_display_date(record.end),
    }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
