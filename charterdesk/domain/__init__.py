"""Domain models representing normalized booking data."""

from .models import (
    AssignedBookingRef,
    AvailabilitySlot,
    BookingStatus,
    CustomerSnippet,
    IngestedBookings,
    NormalizedBookingEvent,
    RawBookingRecord,
)

__all__ = [
    "AssignedBookingRef",
    "AvailabilitySlot",
    "BookingStatus",
    "CustomerSnippet",
    "IngestedBookings",
    "NormalizedBookingEvent",
    "RawBookingRecord",
]
