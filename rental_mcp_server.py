from __future__ import annotations

from datetime import datetime
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from bike_rental import AvailabilityChecker, BookingWorkflow, RentalYamlRepository, ReservationsService
from bike_rental.availability import ActiveReservationResolver
from bike_rental.booking import to_local_naive

mcp = FastMCP(
    "Bike Rental MCP Server",
    instructions="Expose bikes, availability checks and bookings from the bike_rental project.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / "data"
REPOSITORY = RentalYamlRepository(DATA_DIR)
WORKFLOW = BookingWorkflow(REPOSITORY)


@mcp.resource("rental://bikes")
async def list_bikes() -> list[dict[str, object]]:
    """List bikes with their type and hourly rate."""
    return [bike.to_dict() for bike in REPOSITORY.list_bikes()]


@mcp.tool()
def bike_reservation_data(bike_id: int) -> dict[str, object]:
    """Return the hourly rate and the booked periods of a bike."""
    price = ReservationsService(REPOSITORY).get_bike_price(bike_id)
    periods = ActiveReservationResolver(REPOSITORY).get_display_reservations(bike_id)
    return {"pricePerHour": float(price), "activeReservations": [item.to_dict() for item in periods]}


@mcp.tool()
def check_availability(bike_id: int, start_iso: str, end_iso: str) -> bool:
    """Check whether a bike is free for the given ISO period."""
    checker = AvailabilityChecker(REPOSITORY)
    start = to_local_naive(datetime.fromisoformat(start_iso))
    end = to_local_naive(datetime.fromisoformat(end_iso))
    return checker.is_available(bike_id, start, end)


@mcp.tool()
def book_reservation(bike_id: int, customer_id: int, start_iso: str, end_iso: str) -> dict[str, object]:
    """Create a reservation using ISO timestamps."""
    created = WORKFLOW.create(
        bike_id,
        customer_id,
        to_local_naive(datetime.fromisoformat(start_iso)),
        to_local_naive(datetime.fromisoformat(end_iso)),
    )
    return created.to_dict()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
