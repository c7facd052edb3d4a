from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from charterdesk.domain import AvailabilitySlot, CustomerSnippet, NormalizedBookingEvent
from ingestion.timeparse import format_local


class CustomerOut(BaseModel):
    name: str
    email: str = ""
    phone: str | None = None

    @classmethod
    def from_domain(cls, customer: CustomerSnippet) -> "CustomerOut":
        return cls(name=customer.name, email=customer.email, phone=customer.phone)


class AvailabilitySlotOut(BaseModel):
    product_id: int
    product_name: str
    start: datetime
    end: datetime
    start_local: str
    used: int
    total: int | None = None
    remaining: int | None = None

    @classmethod
    def from_domain(cls, slot: AvailabilitySlot, tz: str) -> "AvailabilitySlotOut":
        remaining = None
        if slot.total is not None:
            remaining = max(0, slot.total - slot.used)
        return cls(
            product_id=slot.product_id,
            product_name=slot.product_name,
            start=slot.start_at,
            end=slot.end_at,
            start_local=format_local(slot.start_ms, tz),
            used=slot.used,
            total=slot.total,
            remaining=remaining,
        )


class BookingEventOut(BaseModel):
    id: str
    booking_id: int | None = None
    product_id: int | None = None
    order_id: int | None = None
    title: str
    start: datetime | None = None
    end: datetime | None = None
    start_local: str | None = None
    all_day: bool = False
    participants: int
    status: str
    customer: CustomerOut
    resource_id: int | None = None
    display_timezone: str
    google_calendar_event_id: str | None = None

    @classmethod
    def from_domain(cls, event: NormalizedBookingEvent) -> "BookingEventOut":
        start_local = None
        if event.start_ms is not None:
            start_local = format_local(event.start_ms, event.display_timezone)
        return cls(
            id=f"wc-{event.booking_id}",
            booking_id=event.booking_id,
            product_id=event.product_id,
            order_id=event.order_id,
            title=event.title,
            start=event.start_at,
            end=event.end_at,
            start_local=start_local,
            all_day=event.all_day,
            participants=event.participants,
            status=event.status,
            customer=CustomerOut.from_domain(event.customer),
            resource_id=event.resource_id,
            display_timezone=event.display_timezone,
            google_calendar_event_id=event.google_calendar_event_id,
        )


class Envelope(BaseModel):
    success: bool = True
    source_available: bool = True
    partial: bool = False
    cached: bool = False
    message: str | None = None
    timezone: str
    total: int = 0


class AvailabilityResponse(Envelope):
    slots: dict[str, list[AvailabilitySlotOut]] = Field(default_factory=dict)


class BookingsResponse(Envelope):
    bookings: dict[str, list[BookingEventOut]] = Field(default_factory=dict)


class TimezoneInfo(BaseModel):
    timezone: str
    source: str
    resolved_at: datetime | None = None

    @classmethod
    def from_mapping(cls, payload: dict[str, Any]) -> "TimezoneInfo":
        return cls.model_validate(payload)
