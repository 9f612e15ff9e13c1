from .availability import (
	DISPLAY_DATE_FORMAT,
	ActiveReservationResolver,
	AvailabilityChecker,
	BikeStatusDeriver,
	DisplayReservation,
)
from .booking import can_reserve, has_time_overlap
from .errors import (
	OVERLAP_ERROR_KEY,
	AvailabilityConflictError,
	InvalidIdentifierError,
	InvalidRangeError,
	NotFoundError,
	RentalError,
	RentalStorageError,
)
from .forms import Administrator, Client, FormValues, Option, ReservationFormAssembler, ViewerContext
from .models import Bike, BikeStatus, BikeType, Customer, Reservation
from .services import BikesService, CustomersService, ReservationsService
from .workflow import BikeLocks, BookingWorkflow
from .yaml_store import RentalYamlRepository

__all__ = [
	"DISPLAY_DATE_FORMAT",
	"ActiveReservationResolver",
	"AvailabilityChecker",
	"BikeStatusDeriver",
	"DisplayReservation",
	"can_reserve",
	"has_time_overlap",
	"OVERLAP_ERROR_KEY",
	"AvailabilityConflictError",
	"InvalidIdentifierError",
	"InvalidRangeError",
	"NotFoundError",
	"RentalError",
	"RentalStorageError",
	"Administrator",
	"Client",
	"FormValues",
	"Option",
	"ReservationFormAssembler",
	"ViewerContext",
	"Bike",
	"BikeStatus",
	"BikeType",
	"Customer",
	"Reservation",
	"BikesService",
	"CustomersService",
	"ReservationsService",
	"BikeLocks",
	"BookingWorkflow",
	"RentalYamlRepository",
]
