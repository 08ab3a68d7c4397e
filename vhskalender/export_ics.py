"""
iCalendar (.ics) export.

Courses become calendar events that can be imported into:
- Google Calendar
- Outlook
- Apple Calendar

A course with a schedule gets one event per session; a course without one
gets a single event at its start (no end unless one is known).
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from vhskalender.model import CourseSummary, Location

PRODID = "-//vhs-vg.de//course-calendar//DE"
UID_DOMAIN = "vhs-vg.de"
CATEGORY = "VHS Kurse"
CAL_TIMEZONE = "Europe/Berlin"

# RFC 5545 content lines: at most 75 octets, continuation starts with a space
MAX_LINE_OCTETS = 75


def _ics_escape(text: str) -> str:
    """
    Escape text for ICS fields (very small subset, sufficient for our use).
    """
    return (
        text.replace("\\", "\\\\").replace("\r\n", "\\n").replace("\n", "\\n").replace(";", "\\;").replace(",", "\\,")
    )


def _fold(line: str) -> List[str]:
    out: List[str] = []
    current = ""
    limit = MAX_LINE_OCTETS
    for ch in line:
        if len((current + ch).encode("utf-8")) > limit:
            out.append(current)
            current = " "
            limit = MAX_LINE_OCTETS
        current += ch
    out.append(current)
    return out


def _dt_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _join_location(*parts: Optional[str]) -> str:
    return ", ".join(p.strip() for p in parts if p and p.strip())


def _event(
    uid: str,
    start: datetime,
    end: Optional[datetime],
    summary: str,
    description: str,
    location: str,
    url: str,
    categories: Sequence[str],
    dtstamp: str,
) -> List[str]:
    lines = ["BEGIN:VEVENT", f"UID:{_ics_escape(uid)}", f"DTSTAMP:{dtstamp}", f"DTSTART:{_dt_utc(start)}"]
    if end is not None:
        lines.append(f"DTEND:{_dt_utc(end)}")
    lines.append(f"SUMMARY:{_ics_escape(summary)}")
    if description:
        lines.append(f"DESCRIPTION:{_ics_escape(description)}")
    if location:
        lines.append(f"LOCATION:{_ics_escape(location)}")
    if url:
        lines.append(f"URL:{url}")
    lines.append("CATEGORIES:" + ",".join(_ics_escape(c) for c in categories if c))
    lines.append("END:VEVENT")
    return lines


def _course_events(course: CourseSummary, location: Optional[Location], dtstamp: str) -> List[List[str]]:
    prefix = f"{location.id}-" if location is not None else ""
    base_uid = f"{prefix}{course.identity_key}".lower()
    categories = [CATEGORY, location.name if location is not None else ""]
    details = course.details

    if details is not None and details.schedule:
        total = details.number_of_dates or len(details.schedule)
        events = []
        for idx, session in enumerate(details.schedule, start=1):
            title = f"{details.title} (Termin {idx}/{total})" if total > 1 else details.title
            events.append(
                _event(
                    uid=f"{base_uid}-{idx}@{UID_DOMAIN}",
                    start=session.start,
                    end=session.end,
                    summary=title,
                    description=details.description,
                    location=_join_location(
                        details.location.name or session.location,
                        details.location.room or session.room,
                        details.location.address,
                    ),
                    url=course.detail_url,
                    categories=categories,
                    dtstamp=dtstamp,
                )
            )
        return events

    # with_details() already moved the detail start/end onto the summary
    if course.start is None:
        return []
    if details is not None:
        summary = details.title
        description = details.description
        where = _join_location(details.location.name, details.location.room, details.location.address)
    else:
        summary, description, where = course.title, "", course.location_text
    return [
        _event(
            uid=f"{base_uid}@{UID_DOMAIN}",
            start=course.start,
            end=course.end,
            summary=summary,
            description=description,
            location=where,
            url=course.detail_url,
            categories=categories,
            dtstamp=dtstamp,
        )
    ]


def build_course_calendar(
    courses: Iterable[CourseSummary],
    location: Optional[Location] = None,
    calendar_name: Optional[str] = None,
) -> tuple[str, int]:
    """
    Render courses as an iCalendar document. Returns (text, number of events).
    Courses without any start instant are left out.
    """
    if calendar_name is None:
        calendar_name = f"VHS VG Kurse - {location.name}" if location is not None else "VHS VG Kurse"

    lines: List[str] = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{_ics_escape(calendar_name)}",
        f"X-WR-TIMEZONE:{CAL_TIMEZONE}",
    ]

    dtstamp = _dt_utc(datetime.now(timezone.utc))
    count = 0
    for course in courses:
        for event in _course_events(course, location, dtstamp):
            lines.extend(event)
            count += 1

    lines.append("END:VCALENDAR")

    folded: List[str] = []
    for line in lines:
        folded.extend(_fold(line))
    # ICS standard uses CRLF
    return "\r\n".join(folded) + "\r\n", count


def export_courses_to_ics(
    courses: Iterable[CourseSummary],
    out_path: str | Path,
    location: Optional[Location] = None,
    calendar_name: Optional[str] = None,
) -> int:
    """
    Export courses to an .ics file. Returns number of exported events.
    """
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    text, count = build_course_calendar(courses, location, calendar_name)
    # newline="" keeps the CRLF line endings on every platform
    with out.open("w", encoding="utf-8", newline="") as fh:
        fh.write(text)
    return count
