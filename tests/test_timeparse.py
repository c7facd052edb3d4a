from __future__ import annotations

from datetime import date

import pytest

from ingestion.timeparse import (
    MAX_VALID_MS,
    MIN_VALID_MS,
    format_local,
    local_date_key,
    local_day_bounds,
    to_utc_millis,
)

NY = "America/New_York"


@pytest.mark.parametrize(
    "raw, expected",
    [
        (1700000000, 1700000000000),
        (1700000000000, 1700000000000),
        ("1700000000", 1700000000000),
        ("1700000000000", 1700000000000),
        (1700000000.5, 1700000000500),
    ],
)
def test_numeric_inputs_use_seconds_below_threshold(raw, expected):
    assert to_utc_millis(raw, NY) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", True, 12, "0", "garbage", "2024-13-40 10:00"])
def test_unusable_inputs_return_none(raw):
    assert to_utc_millis(raw, NY) is None


def test_values_before_sanity_floor_are_rejected():
    assert to_utc_millis(MIN_VALID_MS - 1, NY) is None
    assert to_utc_millis("1999-12-31T23:59:59Z", NY) is None


@pytest.mark.parametrize(
    "raw, tz",
    [
        (300000000000000, NY),
        ("300000000000000", NY),
        (1e300, NY),
        (MAX_VALID_MS + 1, NY),
        ("9999-12-31T23:00:00-05:00", NY),
        ("9999-12-31 23:00", "Asia/Tokyo"),
    ],
)
def test_values_past_ceiling_are_rejected(raw, tz):
    assert to_utc_millis(raw, tz) is None


def test_ceiling_value_still_formats():
    assert to_utc_millis(MAX_VALID_MS, NY) == MAX_VALID_MS
    assert format_local(MAX_VALID_MS, "Pacific/Kiritimati").startswith("9999-12-30")


def test_offset_strings_are_absolute():
    expected = 1718904600000  # 2024-06-20T17:30:00Z
    assert to_utc_millis("2024-06-20T13:30:00-04:00", "Asia/Tokyo") == expected
    assert to_utc_millis("2024-06-20T17:30:00Z", "Asia/Tokyo") == expected
    assert to_utc_millis("2024-06-20T17:30:00+0000", NY) == expected


def test_naive_strings_use_business_timezone():
    # 04:00 EDT is 08:00 UTC
    assert to_utc_millis("2024-06-20 04:00:00", NY) == 1718870400000
    assert to_utc_millis("2024-06-20T04:00", NY) == 1718870400000
    assert to_utc_millis("2024-06-20 04:00", "UTC") == 1718856000000


def test_date_only_defaults_to_local_midnight():
    assert format_local(to_utc_millis("2024-01-15", NY), NY) == "2024-01-15 00:00"


@pytest.mark.parametrize(
    "wall",
    ["2024-06-20 09:15", "2024-01-05 23:45", "2024-03-10 01:59", "2024-03-10 03:00", "2024-11-03 00:30"],
)
def test_naive_round_trip_reproduces_wall_clock(wall):
    assert format_local(to_utc_millis(wall, NY), NY) == wall


def test_spring_forward_gap_shifts_by_at_most_dst_delta():
    ms = to_utc_millis("2024-03-10 02:30", NY)

    assert ms is not None
    before = to_utc_millis("2024-03-10 01:30", NY)
    after = to_utc_millis("2024-03-10 03:30", NY)
    assert before <= ms <= after
    assert format_local(ms, NY) in {"2024-03-10 01:30", "2024-03-10 03:30"}


def test_day_bounds_cover_a_local_day():
    start, end = local_day_bounds(date(2024, 6, 20), NY)

    assert local_date_key(start, NY) == "2024-06-20"
    assert local_date_key(end, NY) == "2024-06-20"
    assert local_date_key(end + 1, NY) == "2024-06-21"
    assert end - start + 1 == 24 * 60 * 60 * 1000


def test_day_bounds_on_short_dst_day():
    start, end = local_day_bounds(date(2024, 3, 10), NY)
    assert end - start + 1 == 23 * 60 * 60 * 1000


def test_unknown_timezone_falls_back_to_utc():
    assert to_utc_millis("2024-06-20 04:00", "Mars/Olympus") == 1718856000000
