"""Minimal cron expression support for plan schedules.

Five fields (``minute hour day month weekday``) or six with a leading
seconds field.  Each field is ``*``, ``*/step``, ``a-b``, ``a-b/step``, a
comma list of those, or a single number.  Weekday ``0`` and ``7`` are both
Sunday.  Seconds are validated but ignored when computing the next run, which
is resolved at minute granularity.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from loguru import logger

# (low, high) per field for the five-field form
_RANGES = [(0, 59), (0, 23), (1, 31), (1, 12), (0, 7)]
_SECONDS_RANGE = (0, 59)

# One leap year of minutes
_SCAN_LIMIT = 366 * 24 * 60


def _split(expression: str) -> Optional[list[str]]:
    fields = expression.split()
    if len(fields) == 6:
        fields = fields[1:]
    elif len(fields) != 5:
        return None
    return fields


def _parse_int(text: str) -> Optional[int]:
    return int(text) if text.isdigit() else None


def _expand(field: str, low: int, high: int) -> Optional[set[int]]:
    """Values matched by *field* within ``[low, high]``, or None if malformed."""
    values: set[int] = set()
    for part in field.split(","):
        if not part:
            return None
        step = 1
        if "/" in part:
            base, _, step_text = part.partition("/")
            parsed = _parse_int(step_text)
            if parsed is None or parsed < 1:
                return None
            step = parsed
        else:
            base = part

        if base == "*":
            start, end = low, high
        elif "-" in base:
            first, _, last = base.partition("-")
            start, end = _parse_int(first), _parse_int(last)
            if start is None or end is None or start > end:
                return None
        else:
            start = _parse_int(base)
            if start is None:
                return None
            # "5/15" means from 5 to the top of the range
            end = high if "/" in part else start

        if start < low or end > high:
            return None
        values.update(range(start, end + 1, step))
    return values


def is_valid_cron_field(field: str, low: int, high: int) -> bool:
    return _expand(field, low, high) is not None


def is_valid_cron_expression(expression: str) -> bool:
    """True for a well-formed five- or six-field expression."""
    parts = expression.split()
    if len(parts) == 6:
        if not is_valid_cron_field(parts[0], *_SECONDS_RANGE):
            return False
        parts = parts[1:]
    elif len(parts) != 5:
        return False
    return all(is_valid_cron_field(f, lo, hi) for f, (lo, hi) in zip(parts, _RANGES))


def matches_cron_field(field: str, value: int, low: int, high: int) -> bool:
    values = _expand(field, low, high)
    return values is not None and value in values


def _matches(allowed: list[set[int]], moment: datetime) -> bool:
    minutes, hours, days, months, weekdays = allowed
    # Python: Monday=0..Sunday=6; cron: Sunday=0 (or 7)..Saturday=6
    cron_weekday = (moment.weekday() + 1) % 7
    return (
        moment.minute in minutes
        and moment.hour in hours
        and moment.day in days
        and moment.month in months
        and (cron_weekday in weekdays or (cron_weekday == 0 and 7 in weekdays))
    )


def _fallback(now: datetime) -> datetime:
    return (now + timedelta(hours=1)).replace(minute=0, second=0, microsecond=0)


def calculate_next_run(expression: str, now: Optional[datetime] = None) -> datetime:
    """First minute strictly after *now* that matches *expression*.

    Scans forward minute by minute for up to 366 days.  When the expression
    is invalid or nothing matches in that window, returns the top of the
    hour one hour after *now*.
    """
    now = now or datetime.now(timezone.utc)
    fields = _split(expression)
    if fields is None or not is_valid_cron_expression(expression):
        logger.warning(f"[SCHEDULE] Invalid cron expression {expression!r}, using fallback")
        return _fallback(now)

    allowed = [_expand(f, lo, hi) or set() for f, (lo, hi) in zip(fields, _RANGES)]
    candidate = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
    for _ in range(_SCAN_LIMIT):
        if _matches(allowed, candidate):
            return candidate
        candidate += timedelta(minutes=1)

    logger.warning(f"[SCHEDULE] No match for {expression!r} within 366 days, using fallback")
    return _fallback(now)
