class RentalError(Exception):
    pass


class NotFoundError(RentalError, LookupError):
    def __init__(self, kind: str, identifier: object) -> None:
        super().__init__(f"{kind} {identifier!r} was not found.")
        self.kind = kind
        self.identifier = identifier


class InvalidIdentifierError(NotFoundError):
    """A malformed or non-positive id. Callers treat it exactly like NotFoundError."""


class InvalidRangeError(RentalError, ValueError):
    pass


OVERLAP_ERROR_KEY = "ReservationOverlap"


class AvailabilityConflictError(RentalError, ValueError):
    error_key = OVERLAP_ERROR_KEY

    def __init__(self, bike_id: int) -> None:
        super().__init__(f"Bike {bike_id} is already reserved for part of the requested period.")
        self.bike_id = bike_id


class RentalStorageError(RuntimeError):
    pass
