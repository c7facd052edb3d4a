"""Fold normalized bookings into per-product, per-slot capacity usage."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from loguru import logger

from charterdesk.domain import AvailabilitySlot, NormalizedBookingEvent
from ingestion.timeparse import local_date_key


def default_product_name(product_id: int) -> str:
    return f"Product #{product_id}"


def _slot_sort_key(slot: AvailabilitySlot) -> tuple[int, str, int]:
    return (slot.start_ms, slot.product_name, slot.product_id)


class AvailabilityAggregator:
    """Group bookings by exact ``(product_id, start_ms)``.

    Slots never bucket nearby start times together; two bookings share a slot
    only when their normalized starts are identical.
    """

    def __init__(self, *, excluded_statuses: Iterable[str] = ()) -> None:
        self.excluded_statuses = frozenset(status.lower() for status in excluded_statuses)

    def aggregate(
        self,
        events: Iterable[NormalizedBookingEvent],
        *,
        names: Mapping[int, str] | None = None,
        capacities: Mapping[int, int | None] | None = None,
    ) -> dict[int, list[AvailabilitySlot]]:
        names = names or {}
        capacities = capacities or {}
        slots: dict[tuple[int, int], AvailabilitySlot] = {}
        skipped = 0

        for event in events:
            if event.start_ms is None or event.product_id is None:
                skipped += 1
                continue
            if event.status in self.excluded_statuses:
                continue
            key = (event.product_id, event.start_ms)
            slot = slots.get(key)
            if slot is None:
                slot = AvailabilitySlot(
                    product_id=event.product_id,
                    product_name=names.get(event.product_id)
                    or default_product_name(event.product_id),
                    start_ms=event.start_ms,
                    end_ms=event.start_ms,
                    total=capacities.get(event.product_id),
                )
                slots[key] = slot
            slot.fold(event)

        if skipped:
            logger.debug("Skipped {} bookings without a usable start or product", skipped)

        by_product: dict[int, list[AvailabilitySlot]] = {}
        for slot in sorted(slots.values(), key=_slot_sort_key):
            by_product.setdefault(slot.product_id, []).append(slot)
        return by_product


def group_by_date(
    slots_by_product: Mapping[int, list[AvailabilitySlot]], tz: str
) -> dict[str, list[AvailabilitySlot]]:
    """Re-index slots by their business-local calendar date."""

    by_date: dict[str, list[AvailabilitySlot]] = {}
    for slots in slots_by_product.values():
        for slot in slots:
            by_date.setdefault(local_date_key(slot.start_ms, tz), []).append(slot)
    for day_slots in by_date.values():
        day_slots.sort(key=_slot_sort_key)
    return dict(sorted(by_date.items()))


def group_events_by_date(
    events: Iterable[NormalizedBookingEvent], tz: str
) -> dict[str, list[NormalizedBookingEvent]]:
    """Group bookings by local start date, ordered by start then title."""

    by_date: dict[str, list[NormalizedBookingEvent]] = {}
    for event in events:
        if event.start_ms is None:
            continue
        by_date.setdefault(local_date_key(event.start_ms, tz), []).append(event)
    for day_events in by_date.values():
        day_events.sort(key=lambda item: (item.start_ms, item.title, item.booking_id or 0))
    return dict(sorted(by_date.items()))
