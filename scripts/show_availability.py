import argparse
import asyncio
import json
import sys
from datetime import date, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from loguru import logger

from charterdesk import schemas
from charterdesk.core.config import get_settings
from charterdesk.main import _availability_response, _bookings_response
from charterdesk.services.booking_service import build_booking_service


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print charter availability or bookings as JSON")
    parser.add_argument(
        "view",
        choices=("availability", "bookings", "assigned"),
        help="Which view to print",
    )
    parser.add_argument("--start", type=date.fromisoformat, default=None, help="YYYY-MM-DD (default: today)")
    parser.add_argument("--days", type=int, default=7, help="Number of days to cover")
    parser.add_argument(
        "--product",
        type=int,
        action="append",
        default=None,
        help="Restrict availability to a product id (repeatable)",
    )
    parser.add_argument("--status", default=None, help="Booking status filter")
    parser.add_argument("--instructor", type=int, default=None, help="Staff member id for the assigned view")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> schemas.Envelope:
    start = args.start or date.today()
    end = start + timedelta(days=max(args.days, 1) - 1)
    service = build_booking_service(get_settings())
    try:
        if args.view == "availability":
            result = await service.get_availability(start, end, args.product)
            return _availability_response(result)
        if args.view == "bookings":
            result = await service.get_aggregated_bookings(start, end, args.status)
            return _bookings_response(result)
        if args.instructor is None:
            raise SystemExit("--instructor is required for the assigned view")
        result = await service.get_assigned_bookings(start, end, args.instructor)
        return _bookings_response(result)
    finally:
        await service.aclose()


def main() -> None:
    args = parse_args()
    response = asyncio.run(run(args))
    if not response.source_available:
        logger.warning("Source unavailable: {}", response.message)
    print(json.dumps(response.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    main()
