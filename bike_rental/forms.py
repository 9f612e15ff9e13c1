from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Union

from .availability import ActiveReservationResolver, DisplayReservation
from .errors import NotFoundError
from .models import Customer
from .yaml_store import RentalYamlRepository


@dataclass(frozen=True)
class Administrator:
    pass


@dataclass(frozen=True)
class Client:
    customer_key: str | None


ViewerContext = Union[Administrator, Client]


def viewer_from_claims(is_admin: bool, user_id: str | None) -> ViewerContext:
    if is_admin:
        return Administrator()
    return Client(customer_key=user_id)


@dataclass(frozen=True)
class Option:
    value: int
    label: str

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "label": self.label}


@dataclass(frozen=True)
class FormValues:
    bikes: list[Option]
    customers: list[Option]
    price_per_hour: Decimal | None
    active_reservations: list[DisplayReservation] = field(default_factory=list)
    selected_bike_id: int | None = None

    @property
    def can_book(self) -> bool:
        return bool(self.customers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bikes": [option.to_dict() for option in self.bikes],
            "customers": [option.to_dict() for option in self.customers],
            "pricePerHour": float(self.price_per_hour) if self.price_per_hour is not None else None,
            "activeReservations": [item.to_dict() for item in self.active_reservations],
            "selectedBikeId": self.selected_bike_id,
            "canBook": self.can_book,
        }


class ReservationFormAssembler:
    """Collects everything a booking form needs, scoped to the viewer."""

    def __init__(self, repository: RentalYamlRepository, resolver: ActiveReservationResolver | None = None) -> None:
        self.repository = repository
        self.resolver = resolver or ActiveReservationResolver(repository)

    def selectable_customers(self, viewer: ViewerContext) -> list[Customer]:
        if isinstance(viewer, Administrator):
            return self.repository.list_customers()
        if isinstance(viewer, Client):
            if not viewer.customer_key:
                return []
            customer = self.repository.find_customer_by_user_key(viewer.customer_key)
            return [customer] if customer is not None else []
        raise TypeError(f"Unsupported viewer context: {viewer!r}")

    def build_form_values(
        self,
        selected_bike_id: int | None,
        viewer: ViewerContext,
        exclude_reservation_id: int | None = None,
    ) -> FormValues:
        bikes = [Option(value=bike.id, label=bike.label) for bike in self.repository.list_bikes()]
        customers = [
            Option(value=customer.id, label=_customer_label(customer))
            for customer in self.selectable_customers(viewer)
        ]

        if selected_bike_id is None:
            return FormValues(bikes=bikes, customers=customers, price_per_hour=None)

        bike = self.repository.find_bike(selected_bike_id)
        if bike is None:
            raise NotFoundError("Bike", selected_bike_id)

        return FormValues(
            bikes=bikes,
            customers=customers,
            price_per_hour=bike.price_per_hour,
            active_reservations=self.resolver.get_display_reservations(bike.id, exclude_reservation_id),
            selected_bike_id=selected_bike_id,
        )


def _customer_label(customer: Customer) -> str:
    if customer.email:
        return f"{customer.name} ({customer.email})"
    return customer.name
