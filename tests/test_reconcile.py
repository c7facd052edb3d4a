from __future__ import annotations

from dataclasses import replace

from charterdesk.core.config import ReconcilePolicy
from charterdesk.domain import AssignedBookingRef, CustomerSnippet, NormalizedBookingEvent
from charterdesk.services.reconcile import (
    AssignmentReconciler,
    MatchTier,
    match_product_same_day,
    match_time_only,
)

NY = "America/New_York"
HOUR = 60 * 60 * 1000
# 2024-06-20 08:00 in New York
BASE = 1718884800000


def _event(booking_id, product_id, start_ms):
    return NormalizedBookingEvent(
        booking_id=booking_id,
        product_id=product_id,
        order_id=None,
        title=f"Booking #{booking_id}",
        start_ms=start_ms,
        end_ms=start_ms,
        participants=1,
        status="confirmed",
        customer=CustomerSnippet(name="Unknown"),
        display_timezone=NY,
    )


def test_exact_id_wins_over_same_day_fallback():
    event = _event(101, 7, BASE)
    assigned = [
        AssignedBookingRef(booking_id=999, product_id=7, start_ms=BASE + 8 * HOUR),
        AssignedBookingRef(booking_id=101, product_id=3, start_ms=BASE - 30 * 24 * HOUR),
    ]

    assert AssignmentReconciler().match_tier(event, assigned) is MatchTier.EXACT_ID


def test_tiers_are_walked_in_order():
    reconciler = AssignmentReconciler()
    near = AssignedBookingRef(booking_id=None, product_id=7, start_ms=BASE + 5 * HOUR)
    same_day = AssignedBookingRef(booking_id=None, product_id=7, start_ms=BASE + 8 * HOUR)
    time_only = AssignedBookingRef(booking_id=None, product_id=None, start_ms=BASE + HOUR)
    event = _event(1, 7, BASE)

    assert reconciler.match_tier(event, [same_day, near]) is MatchTier.PRODUCT_NEAR_TIME
    assert reconciler.match_tier(event, [same_day]) is MatchTier.PRODUCT_SAME_DAY
    assert reconciler.match_tier(event, [time_only]) is MatchTier.TIME_ONLY
    assert reconciler.match_tier(event, []) is None


def test_same_day_uses_local_calendar_date():
    policy = ReconcilePolicy()
    # 23:00 local on the 20th is already the 21st in UTC
    late = AssignedBookingRef(booking_id=None, product_id=7, start_ms=BASE + 15 * HOUR)
    next_day = AssignedBookingRef(booking_id=None, product_id=7, start_ms=BASE + 17 * HOUR)
    event = _event(1, 7, BASE)

    assert match_product_same_day(event, late, policy)
    assert not match_product_same_day(event, next_day, policy)


def test_time_only_window_is_configurable():
    event = _event(1, 7, BASE)
    ref = AssignedBookingRef(booking_id=None, product_id=None, start_ms=BASE + 2 * HOUR)

    assert not match_time_only(event, ref, ReconcilePolicy())
    assert match_time_only(event, ref, ReconcilePolicy(time_only_window_ms=3 * HOUR))


def test_missing_start_never_matches_on_time():
    event = _event(1, 7, None)
    ref = AssignedBookingRef(booking_id=None, product_id=7, start_ms=BASE)

    assert AssignmentReconciler().match_tier(event, [ref]) is None


def test_filter_by_assignment_keeps_matched_events():
    events = [_event(1, 7, BASE), _event(2, 8, BASE + 48 * HOUR), _event(3, 9, BASE + 24 * HOUR)]
    assigned = [
        AssignedBookingRef(booking_id=1, product_id=None, start_ms=None),
        AssignedBookingRef(booking_id=None, product_id=9, start_ms=BASE + 25 * HOUR),
    ]

    kept = AssignmentReconciler().filter_by_assignment(events, assigned)

    assert sorted(event.booking_id for event in kept) == [1, 3]
    assert AssignmentReconciler().filter_by_assignment(events, []) == []


def test_same_day_compares_in_business_timezone():
    # 21:00 on the 20th in Tokyo, 08:00 on the 20th in New York
    event = replace(_event(101, 7, BASE), display_timezone="Asia/Tokyo")
    # 16:00 on the 20th in New York, 05:00 on the 21st in Tokyo
    later = AssignedBookingRef(booking_id=None, product_id=7, start_ms=BASE + 8 * HOUR)
    policy = ReconcilePolicy()

    assert match_product_same_day(event, later, policy, NY) is True
    assert match_product_same_day(event, later, policy) is False

    reconciler = AssignmentReconciler()
    assert reconciler.match_tier(event, [later], NY) is MatchTier.PRODUCT_SAME_DAY
    assert reconciler.match_tier(event, [later]) is None
    assert reconciler.filter_by_assignment([event], [later], tz=NY) == [event]
