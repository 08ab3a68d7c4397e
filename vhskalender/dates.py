"""
German date and time parsing.

The site writes dates in a handful of shapes:

    Sa., 15.11.2025, um 09:00 Uhr
    Montag • 10.11.2025 • 17:00 - 20:15 Uhr
    Sa. 06.09.2025, 9.15 Uhr            (search result table)

All values are wall-clock times in Germany. They are anchored to the
Europe/Berlin zone so the UTC offset (CET/CEST) is picked per calendar date.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, time, timedelta, timezone
from typing import List, NamedTuple, Optional
from zoneinfo import ZoneInfo

from vhskalender.errors import UnparseableDateError, UnparseableTimeRangeError
from vhskalender.model import CourseSession

BERLIN = ZoneInfo("Europe/Berlin")

DEFAULT_SESSION_LENGTH = timedelta(hours=3)

WEEKDAY_ABBREV = ("Mo", "Di", "Mi", "Do", "Fr", "Sa", "So")

_DATE_RE = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})")
_RANGE_RE = re.compile(r"(\d{1,2})[:.](\d{2})\s*[-–]\s*(\d{1,2})[:.](\d{2})")
_AT_TIME_RE = re.compile(r"\bum\s+(\d{1,2})[:.](\d{2})", re.IGNORECASE)
_UHR_TIME_RE = re.compile(r"(\d{1,2})[:.](\d{2})\s*Uhr", re.IGNORECASE)
_ROOM_RE = re.compile(r"^raum\b", re.IGNORECASE)


class TimeRange(NamedTuple):
    start: time
    end: time


def _clean(text: str) -> str:
    return unicodedata.normalize("NFKC", text or "").strip()


def local_datetime(day: date, at: time = time(0, 0)) -> datetime:
    """Wall-clock time on `day` in Berlin, with the offset valid on that date."""
    return datetime.combine(day, at, tzinfo=BERLIN)


def shift(value: datetime, delta: timedelta) -> datetime:
    """Add elapsed time (not wall-clock time) to an aware datetime."""
    return (value.astimezone(timezone.utc) + delta).astimezone(BERLIN)


def _make_time(hour: str, minute: str) -> Optional[time]:
    try:
        return time(int(hour), int(minute))
    except ValueError:
        return None


def _find_time(text: str) -> Optional[time]:
    """
    First explicit clock time in text: range start, "um HH:MM" or "HH.MM Uhr".
    """
    for pattern in (_RANGE_RE, _AT_TIME_RE, _UHR_TIME_RE):
        m = pattern.search(text)
        if m:
            return _make_time(m.group(1), m.group(2))
    return None


def has_time_component(text: str) -> bool:
    s = _clean(text)
    m = _DATE_RE.search(s)
    rest = s[m.end():] if m else s
    return _find_time(rest) is not None


def parse_german_date(text: str) -> datetime:
    """
    Parse a German date expression into an aware Europe/Berlin datetime.

    Without an explicit time the result is local midnight. Falls back to
    ISO-8601 before giving up with UnparseableDateError.
    """
    s = _clean(text)
    m = _DATE_RE.search(s)
    if m:
        dd, mm, yyyy = (int(g) for g in m.groups())
        try:
            day = date(yyyy, mm, dd)
        except ValueError as error:
            raise UnparseableDateError(f"Unable to parse German date: {text!r}") from error
        # search for the time only after the date so "06.09" is never read as a clock time
        at = _find_time(s[m.end():])
        return local_datetime(day, at or time(0, 0))
    return _parse_iso(s, text)


def _parse_iso(s: str, original: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError as error:
        raise UnparseableDateError(f"Unable to parse German date: {original!r}") from error
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=BERLIN)
    return parsed.astimezone(BERLIN)


def parse_iso_datetime(value: str) -> tuple[datetime, bool]:
    """
    Parse an ISO-8601 string (JSON-LD style). Returns (datetime, has_time).
    """
    s = _clean(value)
    has_time = "T" in s or " " in s
    return _parse_iso(s, value), has_time


def parse_time_range(text: str) -> TimeRange:
    s = _clean(text)
    m = _RANGE_RE.search(s)
    if not m:
        raise UnparseableTimeRangeError(f"Unable to parse time range: {text!r}")
    start = _make_time(m.group(1), m.group(2))
    end = _make_time(m.group(3), m.group(4))
    if start is None or end is None:
        raise UnparseableTimeRangeError(f"Unable to parse time range: {text!r}")
    return TimeRange(start, end)


def _split_entry(text: str) -> List[str]:
    s = _clean(text).replace("|", "•")
    return [p.strip() for p in s.split("•") if p.strip()]


def parse_schedule_entry(text: str) -> CourseSession:
    """
    Parse one schedule row such as
    "Mittwoch • 12.11.2025 • 17:00 - 20:15 Uhr • VHS in Greifswald • Raum 12".

    Date and time segments are located independently. With only "um HH:MM"
    the session is assumed to last three hours. Segments after the date/time
    give the venue and the room.
    """
    parts = _split_entry(text)

    date_idx = next((i for i, p in enumerate(parts) if _DATE_RE.search(p)), None)
    if date_idx is None:
        raise UnparseableDateError(f"No date in schedule entry: {text!r}")
    day = parse_german_date(parts[date_idx]).date()

    time_idx = next(
        (i for i, p in enumerate(parts) if _RANGE_RE.search(p) or _AT_TIME_RE.search(p)),
        None,
    )
    if time_idx is None:
        raise UnparseableTimeRangeError(f"No time in schedule entry: {text!r}")

    time_part = parts[time_idx]
    if _RANGE_RE.search(time_part):
        rng = parse_time_range(time_part)
        start = local_datetime(day, rng.start)
        end = local_datetime(day, rng.end)
    else:
        m = _AT_TIME_RE.search(time_part)
        at = _make_time(m.group(1), m.group(2)) if m else None
        if at is None:
            raise UnparseableTimeRangeError(f"Unable to parse time: {text!r}")
        start = local_datetime(day, at)
        end = shift(start, DEFAULT_SESSION_LENGTH)

    location = ""
    room: Optional[str] = None
    for part in parts[max(date_idx, time_idx) + 1:]:
        if _ROOM_RE.match(part):
            room = room or part
        elif not location:
            location = part

    return CourseSession(date=start.date(), start=start, end=end, location=location, room=room)


def format_german_datetime(value: datetime) -> str:
    """Inverse of parse_german_date for display: "Mo., 03.11.2025, um 17:00 Uhr"."""
    local = value.astimezone(BERLIN)
    weekday = WEEKDAY_ABBREV[local.weekday()]
    return f"{weekday}., {local:%d.%m.%Y}, um {local:%H:%M} Uhr"
