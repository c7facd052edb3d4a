"""Timestamp normalization for upstream booking payloads.

Upstream systems report booking times as epoch seconds, epoch milliseconds,
ISO strings with an offset, or naive ``YYYY-MM-DD HH:MM[:SS]`` wall-clock
strings in the business timezone. Everything is converted to UTC epoch
milliseconds so that slots can be compared by exact equality.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser
from loguru import logger

MS_THRESHOLD = 1_000_000_000_000
MIN_VALID_MS = int(datetime(2000, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)
# Leaves room for any zone offset before datetime.max.
MAX_VALID_MS = int(datetime(9999, 12, 30, tzinfo=timezone.utc).timestamp() * 1000)

_DIGITS = re.compile(r"^\d+$")
_ABSOLUTE_SUFFIX = re.compile(r"(?:[zZ]|[+\-]\d{2}:?\d{2})$")
_NAIVE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})(?:[ T](\d{2}):(\d{2})(?::(\d{2}))?)?$"
)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def get_zone(name: str | None) -> ZoneInfo:
    """Return the zone for ``name``, falling back to UTC for unknown names."""

    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '{}', falling back to UTC", name)
        return ZoneInfo("UTC")


def is_valid_zone(name: Any) -> bool:
    if not isinstance(name, str) or not name.strip():
        return False
    try:
        ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _from_number(value: float | int) -> int | None:
    if not math.isfinite(value):
        return None
    millis = value * 1000 if abs(value) < MS_THRESHOLD else value
    millis = int(millis)
    return millis if MIN_VALID_MS <= millis <= MAX_VALID_MS else None


def _offset_ms(utc_ms: int, zone: ZoneInfo) -> int:
    instant = _EPOCH + timedelta(milliseconds=utc_ms)
    offset = instant.astimezone(zone).utcoffset() or timedelta(0)
    return offset // _ONE_MS


def zoned_naive_to_utc_ms(value: str, tz: str) -> int | None:
    """Interpret ``value`` as wall-clock time in ``tz`` and return UTC millis.

    The zone offset is read at the naive instant, applied, then re-read at the
    corrected instant; near DST transitions the first reading can be off by
    the DST delta and the second one settles it.
    """

    match = _NAIVE.match(value)
    if not match:
        return None
    year, month, day, hour, minute, second = (
        int(part) if part is not None else 0 for part in match.groups()
    )
    try:
        wall = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError:
        return None

    zone = get_zone(tz)
    local_ms = (wall - _EPOCH) // _ONE_MS
    if local_ms > MAX_VALID_MS:
        return None
    offset = _offset_ms(local_ms, zone)
    utc_ms = local_ms - offset
    corrected = _offset_ms(utc_ms, zone)
    if corrected != offset:
        utc_ms = local_ms - corrected
    return utc_ms


def to_utc_millis(raw: Any, tz: str) -> int | None:
    """Convert a heterogeneous upstream timestamp into UTC epoch milliseconds.

    Returns ``None`` for empty, malformed, or out-of-range values; callers
    treat ``None`` as an unknown time.
    """

    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, (int, float)):
        return _from_number(raw)

    text = str(raw).strip()
    if not text:
        return None

    if _DIGITS.match(text):
        return _from_number(int(text))

    if _ABSOLUTE_SUFFIX.search(text):
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        millis = (parsed - _EPOCH) // _ONE_MS
        return millis if MIN_VALID_MS <= millis <= MAX_VALID_MS else None

    millis = zoned_naive_to_utc_ms(text.replace(" ", "T", 1), tz)
    if millis is None or not MIN_VALID_MS <= millis <= MAX_VALID_MS:
        return None
    return millis


def ms_to_datetime(value: int | None) -> datetime | None:
    if value is None:
        return None
    return _EPOCH + timedelta(milliseconds=value)


def format_local(value: int, tz: str, fmt: str = "%Y-%m-%d %H:%M") -> str:
    """Format UTC millis as wall-clock time in ``tz``."""

    return ms_to_datetime(value).astimezone(get_zone(tz)).strftime(fmt)


def local_date_key(value: int, tz: str) -> str:
    return format_local(value, tz, "%Y-%m-%d")


def local_day_bounds(day: date, tz: str) -> tuple[int, int]:
    """Return UTC millis for the first and last millisecond of ``day`` in ``tz``."""

    start = zoned_naive_to_utc_ms(day.isoformat(), tz)
    next_start = zoned_naive_to_utc_ms((day + timedelta(days=1)).isoformat(), tz)
    return start, next_start - 1
