from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from .errors import InvalidRangeError


class BikeType(str, Enum):
    SIMPLE = "Simple"
    MOUNTAIN = "Mountain"
    HYBRID = "Hybrid"
    DOUBLE = "Double"
    ELECTRIC = "Electric"


class BikeStatus(str, Enum):
    AVAILABLE = "Available"
    UNAVAILABLE = "Unavailable"


@dataclass(frozen=True, kw_only=True)
class Bike:
    id: int | None = None
    type: BikeType
    price_per_hour: Decimal
    # Cache of BikeStatusDeriver's output, refreshed by the reservation write path.
    status: BikeStatus = BikeStatus.AVAILABLE
    image: bytes | None = None

    def __post_init__(self) -> None:
        if self.price_per_hour < 0:
            raise ValueError("price_per_hour must not be negative.")

    @property
    def label(self) -> str:
        return f"#{self.id} {self.type.value} ({self.price_per_hour}/h)"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "price_per_hour": str(self.price_per_hour),
            "status": self.status.value,
        }
        if self.image is not None:
            payload["image"] = base64.b64encode(self.image).decode("ascii")
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Bike":
        image = data.get("image")
        return Bike(
            id=int(data["id"]),
            type=BikeType(str(data["type"])),
            price_per_hour=Decimal(str(data["price_per_hour"])),
            status=BikeStatus(str(data.get("status", BikeStatus.AVAILABLE.value))),
            image=base64.b64decode(image) if image is not None else None,
        )


@dataclass(frozen=True, kw_only=True)
class Customer:
    id: int | None = None
    name: str
    email: str | None = None
    # External identity key; None until an account is provisioned.
    user_id: str | None = None
    phone_number: str | None = None
    personal_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "user_id": self.user_id,
            "phone_number": self.phone_number,
            "personal_id": self.personal_id,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Customer":
        return Customer(
            id=int(data["id"]),
            name=str(data["name"]),
            email=_optional_str(data.get("email")),
            user_id=_optional_str(data.get("user_id")),
            phone_number=_optional_str(data.get("phone_number")),
            personal_id=_optional_str(data.get("personal_id")),
        )


@dataclass(frozen=True, kw_only=True)
class Reservation:
    id: int | None = None
    bike_id: int
    customer_id: int
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise InvalidRangeError("Reservation start time must be earlier than end time.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bike_id": self.bike_id,
            "customer_id": self.customer_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Reservation":
        return Reservation(
            id=int(data["id"]),
            bike_id=int(data["bike_id"]),
            customer_id=int(data["customer_id"]),
            start=datetime.fromisoformat(str(data["start"])),
            end=datetime.fromisoformat(str(data["end"])),
        )


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None
