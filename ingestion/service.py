from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import date

from loguru import logger

from charterdesk.domain import IngestedBookings, NormalizedBookingEvent

from .client import WooCommerceClient
from .normalize import normalize_booking, parse_id
from .timeparse import local_day_bounds

NameResolver = Callable[[Iterable[int]], Awaitable[Mapping[int, str]]]

NOT_CONFIGURED_MESSAGE = (
    "WooCommerce credentials not configured; set WOOCOMMERCE_STORE_URL, "
    "WOOCOMMERCE_CONSUMER_KEY and WOOCOMMERCE_CONSUMER_SECRET to load bookings."
)


def _within_range(
    event: NormalizedBookingEvent, min_ms: int | None, max_ms: int | None
) -> bool:
    if event.start_ms is None:
        return True
    if min_ms is not None and event.start_ms < min_ms:
        return False
    if max_ms is not None and event.start_ms > max_ms:
        return False
    return True


async def ingest_bookings(
    client: WooCommerceClient,
    *,
    site_tz: str,
    start_date: date | None = None,
    end_date: date | None = None,
    status: str | None = None,
    resolve_names: NameResolver | None = None,
) -> IngestedBookings:
    """Fetch bookings for a date range and normalize them against ``site_tz``.

    Never raises for upstream trouble: an unconfigured store or a failing
    first page yields an empty result flagged as unavailable, later page
    failures yield a partial one.
    """

    if not client.configured:
        logger.warning("WooCommerce not configured; returning empty bookings")
        return IngestedBookings(
            timezone=site_tz, source_available=False, message=NOT_CONFIGURED_MESSAGE
        )

    page_set = await client.fetch_bookings(
        start_date=start_date.isoformat() if start_date else None,
        end_date=end_date.isoformat() if end_date else None,
        status=status,
    )
    if page_set.failed and page_set.pages_fetched == 0:
        return IngestedBookings(
            timezone=site_tz,
            source_available=False,
            message=f"Booking source unavailable ({page_set.error})",
        )

    records = page_set.records
    names: Mapping[int, str] = {}
    if resolve_names is not None:
        product_ids = {
            pid
            for pid in (parse_id(record.get("product_id")) for record in records)
            if pid is not None
        }
        if product_ids:
            names = await resolve_names(product_ids)

    min_ms = local_day_bounds(start_date, site_tz)[0] if start_date else None
    max_ms = local_day_bounds(end_date, site_tz)[1] if end_date else None

    events: list[NormalizedBookingEvent] = []
    unknown_start = 0
    for record in records:
        event = normalize_booking(record, site_tz, product_names=names)
        if event.start_ms is None:
            unknown_start += 1
        if _within_range(event, min_ms, max_ms):
            events.append(event)

    if unknown_start:
        logger.warning("{} bookings carried an unparseable start time", unknown_start)

    message = None
    if page_set.failed:
        message = f"Showing partial bookings ({page_set.error})"
    elif not page_set.exhausted:
        message = f"Showing the first {page_set.pages_fetched} pages of bookings"

    logger.info("Ingested {} bookings in {}", len(events), site_tz)
    return IngestedBookings(
        events=events,
        timezone=site_tz,
        source_available=True,
        partial=page_set.truncated,
        message=message,
    )
