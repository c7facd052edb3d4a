"""Typed domain representations used across ingestion, aggregation, and APIs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ingestion.timeparse import ms_to_datetime

RawBookingRecord = dict[str, Any]


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class CustomerSnippet:
    """Contact details carried alongside a booking."""

    name: str
    email: str = ""
    phone: str | None = None


@dataclass(frozen=True, slots=True)
class NormalizedBookingEvent:
    """Immutable, UTC-normalized view of one upstream booking record."""

    booking_id: int | None
    product_id: int | None
    order_id: int | None
    title: str
    start_ms: int | None
    end_ms: int | None
    participants: int
    status: str
    customer: CustomerSnippet
    display_timezone: str
    all_day: bool = False
    resource_id: int | None = None
    person_counts_raw: Any = None
    created_ms: int | None = None
    modified_ms: int | None = None
    google_calendar_event_id: str | None = None

    @property
    def start_at(self) -> datetime | None:
        return ms_to_datetime(self.start_ms)

    @property
    def end_at(self) -> datetime | None:
        return ms_to_datetime(self.end_ms)


@dataclass(slots=True)
class AvailabilitySlot:
    """Bookings folded together for one (product, slot start) pair."""

    product_id: int
    product_name: str
    start_ms: int
    end_ms: int
    used: int = 0
    total: int | None = None

    def fold(self, event: NormalizedBookingEvent) -> None:
        self.used += max(1, event.participants)
        if event.end_ms is not None and event.end_ms > self.end_ms:
            self.end_ms = event.end_ms

    @property
    def start_at(self) -> datetime:
        return ms_to_datetime(self.start_ms)

    @property
    def end_at(self) -> datetime:
        return ms_to_datetime(self.end_ms)


@dataclass(frozen=True, slots=True)
class AssignedBookingRef:
    """Minimal booking descriptor from the staff assignment source."""

    booking_id: int | None
    product_id: int | None
    start_ms: int | None
    end_ms: int | None = None
    persons: int | None = None
    title: str | None = None


@dataclass(slots=True)
class IngestedBookings:
    """Normalized bookings plus what the upstream fetch reported about itself."""

    events: list[NormalizedBookingEvent] = field(default_factory=list)
    timezone: str = "UTC"
    source_available: bool = True
    partial: bool = False
    message: str | None = None
