from __future__ import annotations

from datetime import date
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query

from . import schemas
from .core.config import settings
from .services.booking_service import (
    AvailabilityResult,
    BookingService,
    BookingsResult,
    build_booking_service,
)

app = FastAPI(title="Charter Desk API", version="0.1.0", debug=settings.debug)


@lru_cache
def get_booking_service() -> BookingService:
    return build_booking_service(settings)


def _booking_service() -> BookingService:
    """Provide the process-wide booking service."""

    return get_booking_service()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    """Close upstream HTTP clients when the API stops."""

    if get_booking_service.cache_info().currsize:
        await get_booking_service().aclose()


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be a YYYY-MM-DD date")


def _parse_product_ids(raw: str | None) -> list[int]:
    if not raw:
        return []
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid product id '{part}'")
    return ids


def _availability_response(result: AvailabilityResult) -> schemas.AvailabilityResponse:
    return schemas.AvailabilityResponse(
        success=result.success,
        source_available=result.source_available,
        partial=result.partial,
        cached=result.cached,
        message=result.message,
        timezone=result.timezone,
        total=result.total,
        slots={
            day: [schemas.AvailabilitySlotOut.from_domain(slot, result.timezone) for slot in slots]
            for day, slots in result.slots_by_date.items()
        },
    )


def _bookings_response(result: BookingsResult) -> schemas.BookingsResponse:
    return schemas.BookingsResponse(
        success=result.success,
        source_available=result.source_available,
        partial=result.partial,
        cached=result.cached,
        message=result.message,
        timezone=result.timezone,
        total=result.total,
        bookings={
            day: [schemas.BookingEventOut.from_domain(event) for event in events]
            for day, events in result.events_by_date.items()
        },
    )


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


@app.get("/availability", response_model=schemas.AvailabilityResponse, tags=["availability"])
async def get_availability(
    *,
    start: Annotated[str, Query(description="First business-local date (YYYY-MM-DD)")],
    end: Annotated[str, Query(description="Last business-local date (YYYY-MM-DD)")],
    product_ids: Annotated[
        str | None, Query(description="Comma separated product ids", example="12,34")
    ] = None,
    service: BookingService = Depends(_booking_service),
):
    """Per-slot capacity usage grouped by business-local date."""

    start_date, end_date = _parse_date(start, "start"), _parse_date(end, "end")
    try:
        result = await service.get_availability(
            start_date, end_date, _parse_product_ids(product_ids)
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _availability_response(result)


@app.get("/bookings", response_model=schemas.BookingsResponse, tags=["bookings"])
async def get_bookings(
    *,
    start: Annotated[str, Query(description="First business-local date (YYYY-MM-DD)")],
    end: Annotated[str, Query(description="Last business-local date (YYYY-MM-DD)")],
    status: Annotated[str | None, Query(description="Booking status filter")] = None,
    service: BookingService = Depends(_booking_service),
):
    """All bookings in the range grouped by business-local date."""

    start_date, end_date = _parse_date(start, "start"), _parse_date(end, "end")
    try:
        result = await service.get_aggregated_bookings(start_date, end_date, status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _bookings_response(result)


@app.get(
    "/instructor/assigned-bookings",
    response_model=schemas.BookingsResponse,
    tags=["bookings"],
)
async def get_assigned_bookings(
    *,
    instructor_id: Annotated[int, Query(description="Staff member id")],
    start: Annotated[str, Query(description="First business-local date (YYYY-MM-DD)")],
    end: Annotated[str, Query(description="Last business-local date (YYYY-MM-DD)")],
    service: BookingService = Depends(_booking_service),
):
    """Bookings reconciled against the staff member's assignments."""

    start_date, end_date = _parse_date(start, "start"), _parse_date(end, "end")
    try:
        result = await service.get_assigned_bookings(start_date, end_date, instructor_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _bookings_response(result)


@app.get("/timezone", response_model=schemas.TimezoneInfo, tags=["system"])
async def get_timezone(service: BookingService = Depends(_booking_service)):
    """Report the business timezone and where it came from."""

    await service.resolver.resolve()
    return schemas.TimezoneInfo.from_mapping(service.resolver.describe())
