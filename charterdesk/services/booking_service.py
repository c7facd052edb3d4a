"""Read-only facade the API uses to serve availability and booking views."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from functools import partial

import httpx
from loguru import logger

from charterdesk.core.config import Settings, settings as default_settings
from charterdesk.domain import (
    AssignedBookingRef,
    AvailabilitySlot,
    IngestedBookings,
    NormalizedBookingEvent,
)
from ingestion.assignments import AssignmentClient
from ingestion.client import WooCommerceClient, gather_bounded
from ingestion.normalize import normalize_assigned
from ingestion.service import ingest_bookings

from .availability import AvailabilityAggregator, group_by_date, group_events_by_date
from .cache import MISS, TTLCache
from .reconcile import AssignmentReconciler
from .timezone import TimezoneResolver


@dataclass(frozen=True, slots=True)
class BookingQuery:
    start_date: date
    end_date: date
    product_ids: tuple[int, ...] = ()
    status: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.start_date, date) or not isinstance(self.end_date, date):
            raise ValueError("start_date and end_date must be dates")
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if any(not isinstance(pid, int) or pid <= 0 for pid in self.product_ids):
            raise ValueError("product_ids must be positive integers")
        object.__setattr__(self, "product_ids", tuple(sorted(set(self.product_ids))))
        if self.status is not None:
            object.__setattr__(self, "status", self.status.strip().lower() or None)

    @property
    def span_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def shifted(self, days: int) -> "BookingQuery":
        delta = timedelta(days=days)
        return replace(self, start_date=self.start_date + delta, end_date=self.end_date + delta)

    def bookings_key(self) -> tuple:
        return ("bookings", self.start_date, self.end_date, self.status)

    def availability_key(self) -> tuple:
        return ("availability", self.start_date, self.end_date, self.product_ids)


@dataclass(slots=True)
class ServiceResult:
    timezone: str = "UTC"
    success: bool = True
    source_available: bool = True
    partial: bool = False
    cached: bool = False
    message: str | None = None


@dataclass(slots=True)
class AvailabilityResult(ServiceResult):
    slots_by_date: dict[str, list[AvailabilitySlot]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(len(slots) for slots in self.slots_by_date.values())


@dataclass(slots=True)
class BookingsResult(ServiceResult):
    events_by_date: dict[str, list[NormalizedBookingEvent]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(len(events) for events in self.events_by_date.values())


def _source_available(result: IngestedBookings | AvailabilityResult) -> bool:
    return result.source_available


class BookingService:
    """Cached availability, booking, and staff-assignment views.

    Every public method returns a well-formed result; upstream problems show
    up as ``source_available=False`` or ``partial=True`` rather than as
    exceptions. Only malformed queries raise ``ValueError``.
    """

    def __init__(
        self,
        client: WooCommerceClient,
        assignments: AssignmentClient,
        resolver: TimezoneResolver,
        *,
        config: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or default_settings
        self.client = client
        self.assignments = assignments
        self.resolver = resolver
        self.bookings_cache: TTLCache[IngestedBookings] = TTLCache(
            self.config.bookings_ttl_seconds,
            name="bookings",
            clock=clock,
            should_cache=_source_available,
        )
        self.availability_cache: TTLCache[AvailabilityResult] = TTLCache(
            self.config.availability_ttl_seconds,
            name="availability",
            clock=clock,
            should_cache=_source_available,
        )
        self.assignment_cache: TTLCache[list[AssignedBookingRef]] = TTLCache(
            self.config.assignments_ttl_seconds, name="assignments", clock=clock
        )
        self.product_names: TTLCache[str] = TTLCache(
            self.config.product_ttl_seconds, name="product-names", clock=clock
        )
        self.capacities: TTLCache[int | None] = TTLCache(
            self.config.product_ttl_seconds, name="capacities", clock=clock
        )
        self.aggregator = AvailabilityAggregator(
            excluded_statuses=self.config.availability_excluded_statuses
        )
        self.reconciler = AssignmentReconciler(self.config.reconcile_policy)
        self._prefetch_tasks: set[asyncio.Task] = set()

    @property
    def timezone(self) -> str:
        return self.resolver.context.timezone

    async def resolve_product_names(self, product_ids: Iterable[int]) -> dict[int, str]:
        names: dict[int, str] = {}
        missing: list[int] = []
        for pid in set(product_ids):
            cached = self.product_names.get(pid)
            if cached is MISS:
                missing.append(pid)
            else:
                names[pid] = cached
        if missing and self.client.configured:
            fetched = await self.client.fetch_product_names(missing)
            for pid, name in fetched.items():
                self.product_names.set(pid, name)
            names.update(fetched)
        return names

    async def resolve_capacities(self, product_ids: Iterable[int]) -> dict[int, int | None]:
        async def lookup(pid: int) -> int | None:
            return await self.capacities.get_or_load(
                pid, lambda: self.client.fetch_product_capacity(pid)
            )

        return await gather_bounded(
            sorted(set(product_ids)), self.config.product_lookup_workers, lookup
        )

    async def _ingest(self, query: BookingQuery) -> IngestedBookings:
        site_tz = await self.resolver.resolve()
        return await ingest_bookings(
            self.client,
            site_tz=site_tz,
            start_date=query.start_date,
            end_date=query.end_date,
            status=query.status,
            resolve_names=self.resolve_product_names,
        )

    async def _bookings(
        self, query: BookingQuery, *, allow_stale: bool = False
    ) -> tuple[IngestedBookings, bool]:
        key = query.bookings_key()
        cached = self.bookings_cache.get(key) is not MISS
        if allow_stale:
            ingested, stale = await self.bookings_cache.get_or_load_stale(
                key,
                lambda: self._ingest(query),
                grace=self.config.bookings_stale_grace_seconds,
            )
            cached = cached or stale
        else:
            ingested = await self.bookings_cache.get_or_load(key, lambda: self._ingest(query))
        return ingested, cached

    async def _build_availability(self, query: BookingQuery) -> AvailabilityResult:
        ingested, _ = await self._bookings(
            BookingQuery(query.start_date, query.end_date)
        )
        allowed = set(query.product_ids)
        events = [
            event
            for event in ingested.events
            if not allowed or event.product_id in allowed
        ]
        product_ids = {event.product_id for event in events if event.product_id is not None}
        names: dict[int, str] = {}
        capacities: dict[int, int | None] = {}
        if product_ids and self.client.configured:
            names = await self.resolve_product_names(product_ids)
            capacities = await self.resolve_capacities(product_ids)

        by_product = self.aggregator.aggregate(events, names=names, capacities=capacities)
        return AvailabilityResult(
            slots_by_date=group_by_date(by_product, ingested.timezone),
            timezone=ingested.timezone,
            source_available=ingested.source_available,
            partial=ingested.partial,
            message=ingested.message,
        )

    async def get_availability(
        self,
        start_date: date,
        end_date: date,
        product_ids: Sequence[int] | None = None,
    ) -> AvailabilityResult:
        query = BookingQuery(start_date, end_date, product_ids=tuple(product_ids or ()))
        key = query.availability_key()
        cached = self.availability_cache.get(key) is not MISS
        try:
            result = await self.availability_cache.get_or_load(
                key, lambda: self._build_availability(query)
            )
        except Exception:  # noqa: BLE001
            logger.exception("Availability query {} failed", key)
            return AvailabilityResult(
                timezone=self.timezone,
                success=False,
                source_available=False,
                message="Availability could not be loaded",
            )
        self._schedule_prefetch(query, "availability")
        return replace(result, cached=cached)

    async def get_aggregated_bookings(
        self,
        start_date: date,
        end_date: date,
        status: str | None = None,
    ) -> BookingsResult:
        query = BookingQuery(start_date, end_date, status=status)
        try:
            ingested, cached = await self._bookings(query, allow_stale=True)
        except Exception:  # noqa: BLE001
            logger.exception("Bookings query {} failed", query.bookings_key())
            return BookingsResult(
                timezone=self.timezone,
                success=False,
                source_available=False,
                message="Bookings could not be loaded",
            )
        self._schedule_prefetch(query, "bookings")
        return BookingsResult(
            events_by_date=group_events_by_date(ingested.events, ingested.timezone),
            timezone=ingested.timezone,
            source_available=ingested.source_available,
            partial=ingested.partial,
            cached=cached,
            message=ingested.message,
        )

    async def _load_assigned(
        self, subject_id: int, query: BookingQuery
    ) -> list[AssignedBookingRef]:
        site_tz = await self.resolver.resolve()
        raw_refs = await self.assignments.fetch_assigned(
            subject_id,
            start_date=query.start_date,
            end_date=query.end_date,
            site_tz=site_tz,
        )
        return [normalize_assigned(raw, site_tz) for raw in raw_refs]

    async def get_assigned_bookings(
        self,
        start_date: date,
        end_date: date,
        subject_id: int,
    ) -> BookingsResult:
        if not isinstance(subject_id, int) or subject_id <= 0:
            raise ValueError("subject_id must be a positive integer")
        query = BookingQuery(start_date, end_date)

        if not self.assignments.configured:
            logger.warning("WordPress not configured; no staff assignments available")
            return BookingsResult(
                timezone=self.timezone,
                source_available=False,
                message="Assignment source not configured; set WP_BASE_URL.",
            )

        assignment_key = ("assigned", subject_id, query.start_date, query.end_date)
        try:
            (ingested, cached), refs = await asyncio.gather(
                self._bookings(query, allow_stale=True),
                self.assignment_cache.get_or_load(
                    assignment_key, lambda: self._load_assigned(subject_id, query)
                ),
            )
            events = self.reconciler.filter_by_assignment(
                ingested.events, refs, tz=ingested.timezone
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Assignment lookup for subject {} failed: {}", subject_id, exc)
            return BookingsResult(
                timezone=self.timezone,
                source_available=False,
                message="Assignment source unavailable",
            )
        except Exception:  # noqa: BLE001
            logger.exception("Assigned bookings query for subject {} failed", subject_id)
            return BookingsResult(
                timezone=self.timezone,
                success=False,
                source_available=False,
                message="Assigned bookings could not be loaded",
            )

        logger.info(
            "Subject {} has {} of {} bookings assigned",
            subject_id,
            len(events),
            len(ingested.events),
        )
        return BookingsResult(
            events_by_date=group_events_by_date(events, ingested.timezone),
            timezone=ingested.timezone,
            source_available=ingested.source_available,
            partial=ingested.partial,
            cached=cached,
            message=ingested.message,
        )

    def _schedule_prefetch(self, query: BookingQuery, kind: str) -> None:
        if not self.config.prefetch_enabled:
            return
        if query.span_days < self.config.prefetch_min_span_days:
            return
        for neighbour in (query.shifted(-query.span_days), query.shifted(query.span_days)):
            if kind == "availability":
                cache, key = self.availability_cache, neighbour.availability_key()
            else:
                cache, key = self.bookings_cache, neighbour.bookings_key()
            if cache.get(key) is not MISS or cache.is_loading(key):
                continue
            task = asyncio.ensure_future(self._prefetch(neighbour, kind))
            self._prefetch_tasks.add(task)
            task.add_done_callback(self._prefetch_tasks.discard)

    async def _prefetch(self, query: BookingQuery, kind: str) -> None:
        if kind == "availability":
            cache, key = self.availability_cache, query.availability_key()
            loader = partial(self._build_availability, query)
        else:
            cache, key = self.bookings_cache, query.bookings_key()
            loader = partial(self._ingest, query)
        try:
            await cache.get_or_load(key, loader)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Prefetch of {} {} failed: {}", kind, key, exc)

    async def drain_background(self) -> None:
        """Wait for outstanding prefetches to finish."""

        while self._prefetch_tasks:
            await asyncio.gather(*list(self._prefetch_tasks))

    async def aclose(self) -> None:
        for task in list(self._prefetch_tasks):
            task.cancel()
        await asyncio.gather(*self._prefetch_tasks, return_exceptions=True)
        await self.client.aclose()
        await self.assignments.aclose()
        await self.resolver.aclose()


def build_booking_service(config: Settings | None = None) -> BookingService:
    config = config or default_settings
    return BookingService(
        WooCommerceClient(config=config),
        AssignmentClient(config=config),
        TimezoneResolver(config=config),
        config=config,
    )
