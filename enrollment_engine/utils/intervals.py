# utils/intervals.py
"""
Date and time-of-day interval helpers used by conflict detection.

Two schedule windows conflict when their inclusive date ranges share at least one
calendar day and their time-of-day ranges intersect half-open, so a session that
ends at 12:00 never conflicts with one that starts at 12:00.

Everything here is lenient: malformed input parses to ``None`` and an overlap check
that cannot parse its input answers "no conflict". Strict validation happens where
the input enters the system.
"""

import re
from collections import namedtuple
from datetime import date, datetime, time

HHMM_PATTERN = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$')

# One schedule window: every day from start_date to end_date, start_time to end_time
TimeWindow = namedtuple('TimeWindow', ['start_date', 'end_date', 'start_time', 'end_time'])


def parse_date(value):
    """
    Parse a calendar date.

    Accepts ``date``/``datetime`` objects, ``YYYY-MM-DD`` (optionally followed by a
    time part) and ``DD/MM/YYYY``. Returns ``None`` when the value is missing or is
    not a real calendar date.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    for fmt, candidate in (('%Y-%m-%d', text[:10]), ('%d/%m/%Y', text)):
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    return None


def parse_hhmm(value):
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a ``time``; ``None`` if malformed."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.time().replace(microsecond=0)
    if isinstance(value, time):
        return value

    match = HHMM_PATTERN.match(str(value).strip())
    if not match:
        return None

    hours, minutes, seconds = match.groups()
    return time(int(hours), int(minutes), int(seconds or 0))


def format_hhmm(value):
    """Render a time-like value as ``HH:MM`` (``None`` stays ``None``)."""
    parsed = parse_hhmm(value)
    return parsed.strftime('%H:%M') if parsed else None


def combine(day, hhmm):
    """Join a date and a time-of-day into a naive datetime, or ``None``."""
    parsed_day = parse_date(day)
    parsed_time = parse_hhmm(hhmm)
    if parsed_day is None or parsed_time is None:
        return None
    return datetime.combine(parsed_day, parsed_time)


def ranges_overlap(a_start, a_end, a_from, a_to, b_start, b_end, b_from, b_to):
    """
    Decide whether two (date range, time-of-day range) pairs conflict.

    Date ranges are inclusive; time ranges are half-open. Any value that does
    not parse, or a date range whose end precedes its start, yields ``False``.
    """
    a_start, a_end = parse_date(a_start), parse_date(a_end)
    b_start, b_end = parse_date(b_start), parse_date(b_end)
    a_from, a_to = parse_hhmm(a_from), parse_hhmm(a_to)
    b_from, b_to = parse_hhmm(b_from), parse_hhmm(b_to)

    if None in (a_start, a_end, b_start, b_end, a_from, a_to, b_from, b_to):
        return False
    if a_end < a_start or b_end < b_start:
        return False

    dates_intersect = a_start <= b_end and b_start <= a_end
    if not dates_intersect:
        return False

    return a_from < b_to and b_from < a_to


def windows_overlap(a, b):
    """``ranges_overlap`` for two ``TimeWindow`` values."""
    return ranges_overlap(
        a.start_date, a.end_date, a.start_time, a.end_time,
        b.start_date, b.end_date, b.start_time, b.end_time,
    )


def any_overlap(windows_a, windows_b):
    """True when any window of the first list conflicts with any of the second."""
    return any(windows_overlap(a, b) for a in windows_a for b in windows_b)
