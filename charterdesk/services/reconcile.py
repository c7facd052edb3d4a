"""Match bookings against staff assignments from a separately kept source.

The assignment source and the booking source do not share a reliable
foreign key, so matching walks a fixed list of tiers from strictest to
loosest and stops at the first tier that finds a partner.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from enum import Enum

from loguru import logger

from charterdesk.core.config import ReconcilePolicy
from charterdesk.domain import AssignedBookingRef, NormalizedBookingEvent
from ingestion.timeparse import local_date_key


class MatchTier(str, Enum):
    EXACT_ID = "exact_id"
    PRODUCT_NEAR_TIME = "product_near_time"
    PRODUCT_SAME_DAY = "product_same_day"
    TIME_ONLY = "time_only"


Matcher = Callable[
    [NormalizedBookingEvent, AssignedBookingRef, ReconcilePolicy, str | None], bool
]


def _same_product(event: NormalizedBookingEvent, ref: AssignedBookingRef) -> bool:
    return (
        event.product_id is not None
        and ref.product_id is not None
        and event.product_id == ref.product_id
    )


def _start_gap(event: NormalizedBookingEvent, ref: AssignedBookingRef) -> int | None:
    if event.start_ms is None or ref.start_ms is None:
        return None
    return abs(event.start_ms - ref.start_ms)


def match_exact_id(
    event: NormalizedBookingEvent,
    ref: AssignedBookingRef,
    policy: ReconcilePolicy,
    tz: str | None = None,
) -> bool:
    return (
        event.booking_id is not None
        and ref.booking_id is not None
        and event.booking_id == ref.booking_id
    )


def match_product_near_time(
    event: NormalizedBookingEvent,
    ref: AssignedBookingRef,
    policy: ReconcilePolicy,
    tz: str | None = None,
) -> bool:
    if not _same_product(event, ref):
        return False
    gap = _start_gap(event, ref)
    return gap is not None and gap <= policy.product_window_ms


def match_product_same_day(
    event: NormalizedBookingEvent,
    ref: AssignedBookingRef,
    policy: ReconcilePolicy,
    tz: str | None = None,
) -> bool:
    """Same product on the same business-local date.

    ``tz`` is the business timezone; without it the booking's own display
    timezone is used.
    """

    if not _same_product(event, ref):
        return False
    if event.start_ms is None or ref.start_ms is None:
        return False
    tz = tz or event.display_timezone
    return local_date_key(event.start_ms, tz) == local_date_key(ref.start_ms, tz)


def match_time_only(
    event: NormalizedBookingEvent,
    ref: AssignedBookingRef,
    policy: ReconcilePolicy,
    tz: str | None = None,
) -> bool:
    gap = _start_gap(event, ref)
    return gap is not None and gap <= policy.time_only_window_ms


TIERS: tuple[tuple[MatchTier, Matcher], ...] = (
    (MatchTier.EXACT_ID, match_exact_id),
    (MatchTier.PRODUCT_NEAR_TIME, match_product_near_time),
    (MatchTier.PRODUCT_SAME_DAY, match_product_same_day),
    (MatchTier.TIME_ONLY, match_time_only),
)


class AssignmentReconciler:
    def __init__(
        self,
        policy: ReconcilePolicy | None = None,
        *,
        tiers: Sequence[tuple[MatchTier, Matcher]] = TIERS,
    ) -> None:
        self.policy = policy or ReconcilePolicy()
        self.tiers = tuple(tiers)

    def match_tier(
        self,
        event: NormalizedBookingEvent,
        assigned: Sequence[AssignedBookingRef],
        tz: str | None = None,
    ) -> MatchTier | None:
        """Return the first tier under which ``event`` matches any assignment."""

        for tier, matcher in self.tiers:
            if any(matcher(event, ref, self.policy, tz) for ref in assigned):
                return tier
        return None

    def filter_by_assignment(
        self,
        events: Iterable[NormalizedBookingEvent],
        assigned: Sequence[AssignedBookingRef],
        *,
        tz: str | None = None,
    ) -> list[NormalizedBookingEvent]:
        if not assigned:
            return []
        kept: list[NormalizedBookingEvent] = []
        tally: Counter[str] = Counter()
        for event in events:
            tier = self.match_tier(event, assigned, tz)
            if tier is None:
                tally["unmatched"] += 1
                continue
            tally[tier.value] += 1
            kept.append(event)
        logger.debug("Assignment reconciliation tiers: {}", dict(tally))
        return kept
