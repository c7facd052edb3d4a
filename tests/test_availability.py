from __future__ import annotations

import random

from charterdesk.services.availability import AvailabilityAggregator, group_by_date
from ingestion.normalize import normalize_booking

NY = "America/New_York"


def _events(raw_records):
    return [normalize_booking(raw, NY) for raw in raw_records]


def _summary(by_product):
    return [
        (slot.product_id, slot.start_ms, slot.end_ms, slot.used, slot.product_name)
        for slots in by_product.values()
        for slot in slots
    ]


def test_groups_on_exact_product_and_start(sample_bookings):
    by_product = AvailabilityAggregator().aggregate(
        _events(sample_bookings), names={77: "Reef Trip"}, capacities={77: 6}
    )

    assert sorted(by_product) == [77, 78]
    (reef,) = by_product[77]
    assert reef.used == 5
    assert reef.total == 6
    assert reef.product_name == "Reef Trip"
    assert reef.end_ms == 1718884800000
    (night,) = by_product[78]
    assert night.product_name == "Product #78"
    assert night.used == 1


def test_missing_capacity_is_none_not_zero(sample_bookings):
    by_product = AvailabilityAggregator().aggregate(_events(sample_bookings))

    for slots in by_product.values():
        for slot in slots:
            assert slot.total is None
            assert slot.used >= 1


def test_aggregation_is_order_independent(sample_bookings):
    extra = [
        {"id": 5000 + i, "product_id": 80 + i % 3, "start": 1718870400 + (i % 4) * 3600,
         "end": 1718870400 + (i % 4) * 3600 + 600 * i, "person_counts": [i % 3, 1]}
        for i in range(20)
    ]
    records = sample_bookings + extra
    aggregator = AvailabilityAggregator()
    baseline = _summary(aggregator.aggregate(_events(records)))

    rng = random.Random(7)
    for _ in range(5):
        shuffled = list(records)
        rng.shuffle(shuffled)
        assert _summary(aggregator.aggregate(_events(shuffled))) == baseline


def test_nearby_starts_are_not_bucketed():
    events = _events(
        [
            {"id": 1, "product_id": 9, "start": "2024-06-20 08:00"},
            {"id": 2, "product_id": 9, "start": "2024-06-20 08:01"},
        ]
    )
    (slots,) = AvailabilityAggregator().aggregate(events).values()
    assert len(slots) == 2


def test_excluded_statuses_do_not_count(sample_bookings):
    aggregator = AvailabilityAggregator(excluded_statuses=["PAID"])
    (reef,) = aggregator.aggregate(_events(sample_bookings))[77]
    assert reef.used == 3


def test_group_by_date_uses_business_local_day():
    events = _events(
        [
            {"id": 1, "product_id": 9, "start": "2024-06-20 23:30"},
            {"id": 2, "product_id": 8, "start": "2024-06-21 00:30"},
            {"id": 3, "product_id": 7, "start": "2024-06-20 06:00"},
        ]
    )
    by_date = group_by_date(AvailabilityAggregator().aggregate(events), NY)

    assert list(by_date) == ["2024-06-20", "2024-06-21"]
    assert [slot.product_id for slot in by_date["2024-06-20"]] == [7, 9]
    assert [slot.product_id for slot in by_date["2024-06-21"]] == [8]
