"""
Central data model definitions used across the project.

This module defines the canonical structure of course records so that:
- all modules share the same field names
- listing rows, detail pages and calendar export agree on one shape
- records stay immutable once produced (enrichment returns a copy)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Optional, Tuple


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class CourseSession:
    """
    One concrete meeting of a course (one row of the schedule table).

    `date` is the local calendar date of `start`, never taken from a UTC-shifted value.
    """

    date: date
    start: datetime
    end: datetime
    location: str = ""
    room: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "location": self.location,
            "room": self.room,
        }


@dataclass(frozen=True)
class CourseLocation:
    name: str = ""
    room: Optional[str] = None
    address: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "room": self.room, "address": self.address}


@dataclass(frozen=True)
class CourseDetails:
    """
    Everything extracted from one course detail page.

    `end` is start + duration of the first session. For courses whose sessions
    differ in length this is an approximation, not the total course duration.
    """

    id: str
    title: str
    description: str
    start: Optional[datetime]
    end: Optional[datetime]
    duration_text: str
    number_of_dates: int
    schedule: Tuple[CourseSession, ...] = ()
    location: CourseLocation = field(default_factory=CourseLocation)
    bookable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "start": _iso(self.start),
            "end": _iso(self.end),
            "duration_text": self.duration_text,
            "number_of_dates": self.number_of_dates,
            "schedule": [s.to_dict() for s in self.schedule],
            "location": self.location.to_dict(),
            "bookable": self.bookable,
        }


@dataclass(frozen=True)
class CourseSummary:
    """
    Represents one row of the course search results table.
    """

    id: str
    title: str
    detail_url: str
    start: Optional[datetime]
    location_text: str
    available: bool
    bookable: bool
    end: Optional[datetime] = None
    date_text: str = ""
    occupancy_text: str = ""
    details: Optional[CourseDetails] = None

    @property
    def identity_key(self) -> str:
        return self.id or self.detail_url

    def with_details(self, details: CourseDetails) -> "CourseSummary":
        """
        Return an enriched copy; detail values replace the listing's start/end.
        """
        return replace(
            self,
            start=details.start or self.start,
            end=details.end,
            details=details,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "detail_url": self.detail_url,
            "start": _iso(self.start),
            "end": _iso(self.end),
            "location_text": self.location_text,
            "available": self.available,
            "bookable": self.bookable,
        }
        if self.details is not None:
            d = self.details
            # the detail page wins; the listing title stays available
            out.update(
                {
                    "title": d.title or self.title,
                    "listing_title": self.title,
                    "bookable": d.bookable,
                    "description": d.description,
                    "duration_text": d.duration_text,
                    "number_of_dates": d.number_of_dates,
                    "schedule": [s.to_dict() for s in d.schedule],
                    "location": d.location.to_dict(),
                }
            )
        return out


@dataclass(frozen=True)
class BatchStats:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    cache_hits: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cache_hits": self.cache_hits,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass(frozen=True)
class Location:
    id: str
    name: str
    address: str = ""
    count: Optional[int] = None


@dataclass(frozen=True)
class CoursesResult:
    """
    Outbound shape of one crawl: courses plus bookkeeping for the caller.
    """

    courses: Tuple[CourseSummary, ...]
    expected_count: Optional[int] = None
    warnings: Tuple[str, ...] = ()
    details_stats: Optional[BatchStats] = None
    location: Optional[Location] = None

    @property
    def count(self) -> int:
        return len(self.courses)

    def to_dict(self) -> dict[str, Any]:
        return {
            "courses": [c.to_dict() for c in self.courses],
            "count": self.count,
            "expected_count": self.expected_count,
            "warnings": list(self.warnings),
            "details_stats": self.details_stats.to_dict() if self.details_stats else None,
        }
