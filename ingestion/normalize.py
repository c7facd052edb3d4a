from __future__ import annotations

import json
import math
from collections.abc import Mapping
from typing import Any

from charterdesk.domain import (
    AssignedBookingRef,
    CustomerSnippet,
    NormalizedBookingEvent,
    RawBookingRecord,
)

from .timeparse import to_utc_millis


def _as_number(value: Any) -> float:
    """Coerce a single count-like value, treating junk as zero."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def participant_count(value: Any) -> int:
    """Collapse an upstream ``person_counts`` value into a participant total.

    Upstream sends a plain number, a list of per-category counts, a mapping
    of category to count, a JSON string of either, or nothing at all. The
    result is always at least 1.
    """

    if isinstance(value, str):
        text = value.strip()
        if text[:1] in {"[", "{"}:
            try:
                value = json.loads(text)
            except json.JSONDecodeError:
                return 1

    if isinstance(value, Mapping):
        total = sum(_as_number(item) for item in value.values())
    elif isinstance(value, (list, tuple)):
        total = sum(_as_number(item) for item in value)
    else:
        total = _as_number(value)

    return max(1, int(total))


def _parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def parse_id(value: Any) -> int | None:
    """Return a positive integer identifier, or ``None`` when absent."""

    parsed = _parse_int(value)
    return parsed if parsed and parsed > 0 else None


def parse_capacity(raw_product: Mapping[str, Any] | None) -> int | None:
    """Read the per-slot capacity from a bookable-product payload.

    A zero or missing capacity means unknown, never "full".
    """

    if not isinstance(raw_product, Mapping):
        return None
    for key in ("max_bookings_per_block", "max_persons"):
        parsed = _parse_int(raw_product.get(key))
        if parsed and parsed > 0:
            return parsed
    return None


def build_customer(raw_booking: RawBookingRecord) -> CustomerSnippet:
    customer = raw_booking.get("customer")
    if isinstance(customer, Mapping):
        first = str(customer.get("first_name") or "").strip()
        last = str(customer.get("last_name") or "").strip()
        name = f"{first} {last}".strip() or "Unknown"
        return CustomerSnippet(
            name=name,
            email=str(customer.get("email") or ""),
            phone=customer.get("phone") or None,
        )
    return CustomerSnippet(name="Unknown")


def _raw_start(raw_booking: RawBookingRecord) -> Any:
    for key in ("start", "booking_start", "_booking_start"):
        if raw_booking.get(key) not in (None, ""):
            return raw_booking[key]
    return None


def _raw_end(raw_booking: RawBookingRecord) -> Any:
    for key in ("end", "booking_end", "_booking_end"):
        if raw_booking.get(key) not in (None, ""):
            return raw_booking[key]
    return None


def normalize_booking(
    raw_booking: RawBookingRecord,
    site_tz: str,
    *,
    product_names: Mapping[int, str] | None = None,
) -> NormalizedBookingEvent:
    booking_id = parse_id(raw_booking.get("id"))
    product_id = parse_id(raw_booking.get("product_id"))

    embedded_product = raw_booking.get("product")
    product_name = None
    if isinstance(embedded_product, Mapping):
        product_name = embedded_product.get("name") or None
    if not product_name and product_id is not None and product_names:
        product_name = product_names.get(product_id)

    start_ms = to_utc_millis(_raw_start(raw_booking), site_tz)
    end_ms = to_utc_millis(_raw_end(raw_booking), site_tz)
    if end_ms is None or (start_ms is not None and end_ms < start_ms):
        end_ms = start_ms

    display_tz = raw_booking.get("local_timezone") or site_tz
    calendar_event_id = raw_booking.get("google_calendar_event_id")

    return NormalizedBookingEvent(
        booking_id=booking_id,
        product_id=product_id,
        order_id=parse_id(raw_booking.get("order_id")),
        title=str(product_name or f"Booking #{raw_booking.get('id')}"),
        start_ms=start_ms,
        end_ms=end_ms,
        participants=participant_count(raw_booking.get("person_counts")),
        status=str(raw_booking.get("status") or "pending").lower(),
        customer=build_customer(raw_booking),
        display_timezone=str(display_tz),
        all_day=bool(raw_booking.get("all_day")),
        resource_id=parse_id(raw_booking.get("resource_id")),
        person_counts_raw=raw_booking.get("person_counts"),
        created_ms=to_utc_millis(raw_booking.get("date_created"), site_tz),
        modified_ms=to_utc_millis(raw_booking.get("date_modified"), site_tz),
        google_calendar_event_id=str(calendar_event_id) if calendar_event_id else None,
    )


def normalize_assigned(raw_ref: Mapping[str, Any], site_tz: str) -> AssignedBookingRef:
    persons = raw_ref.get("persons")
    return AssignedBookingRef(
        booking_id=parse_id(raw_ref.get("id") or raw_ref.get("booking_id")),
        product_id=parse_id(raw_ref.get("product_id")),
        start_ms=to_utc_millis(raw_ref.get("start"), site_tz),
        end_ms=to_utc_millis(raw_ref.get("end"), site_tz),
        persons=participant_count(persons) if persons not in (None, "") else None,
        title=raw_ref.get("title") or None,
    )
