"""
Course detail pages: fetching one page, and many pages in adaptive batches.

Detail fetches are the bulk of the traffic of a crawl with details, so they
run through the batch processor with a feedback policy: when the site slows
down or starts failing, the next batch gets smaller; when it answers quickly
and cleanly, the next batch grows a little.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote

from vhskalender.batch import ItemOutcome, clamp_batch_size, process_in_batches
from vhskalender.config import Settings, settings as default_settings
from vhskalender.errors import InvalidArgumentError
from vhskalender.fetch import fetch_html
from vhskalender.model import BatchStats, CourseDetails
from vhskalender.parse import parse_course_details
from vhskalender.session import SessionPool, SessionStore

logger = logging.getLogger(__name__)

# Observed ids look like 252A21003 / 252P40405
COURSE_ID_RE = re.compile(r"^[0-9]{3}[A-Z][0-9]{5}$", re.IGNORECASE)
COURSE_ID_IN_URL_RE = re.compile(r"/([0-9]{3}[A-Z][0-9]{5})\b", re.IGNORECASE)


def validate_course_id(course_id: str) -> str:
    course_id = (course_id or "").strip()
    if not COURSE_ID_RE.match(course_id):
        raise InvalidArgumentError(f"Invalid course id format: {course_id!r}")
    return course_id


def course_id_from_url(url: str) -> Optional[str]:
    m = COURSE_ID_IN_URL_RE.search(url or "")
    return m.group(1) if m else None


def build_course_url(course_id: str, settings: Optional[Settings] = None) -> str:
    cfg = settings or default_settings
    return f"{cfg.base_url}/kurse/kurs/{quote(course_id, safe='')}"


async def fetch_course_details(
    course_id: str,
    session: Optional[SessionStore] = None,
    location_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> CourseDetails:
    course_id = validate_course_id(course_id)
    html = await fetch_html(build_course_url(course_id, settings), session=session, settings=settings)
    return parse_course_details(html, course_id, location_id=location_id)


# ---------------------------------------------------------------------------
# Batch policy
# ---------------------------------------------------------------------------


@dataclass
class AdaptiveBatchPolicy:
    """
    Next-batch sizing from the outcome of the batch that just finished.

    - error rate > 20% or mean latency > 1.2 s  -> shrink by 25%
    - no errors and mean latency < 0.6 s         -> grow by up to 10%
    - otherwise                                  -> keep the size
    """

    ceiling: int
    shrink_error_rate: float = 0.2
    shrink_latency: float = 1.2
    grow_latency: float = 0.6
    history: List[int] = field(default_factory=list)

    def next_size(self, outcomes: Sequence[ItemOutcome], size: int) -> int:
        if not outcomes:
            return clamp_batch_size(size, self.ceiling)

        errors = sum(1 for o in outcomes if not o.ok)
        error_rate = errors / len(outcomes)
        timed = [o.duration_seconds for o in outcomes if not o.cache_hit]
        latency = sum(timed) / len(timed) if timed else 0.0

        if error_rate > self.shrink_error_rate or latency > self.shrink_latency:
            new_size = int(size * 0.75)
        elif errors == 0 and latency < self.grow_latency:
            new_size = int(size * 1.1)
        else:
            new_size = size

        new_size = clamp_batch_size(new_size, self.ceiling)
        if new_size != size:
            logger.info(
                "Batch size %d -> %d (error rate %.0f%%, mean latency %.2fs)",
                size, new_size, error_rate * 100, latency,
            )
        return new_size

    def __call__(self, batch_index: int, outcomes: List[ItemOutcome], duration: float, size: int) -> int:
        new_size = self.next_size(outcomes, size)
        self.history.append(new_size)
        return new_size


# ---------------------------------------------------------------------------
# Batch fetch
# ---------------------------------------------------------------------------


@dataclass
class DetailsBatchResult:
    details: Dict[str, CourseDetails]
    errors: Dict[str, BaseException]
    stats: BatchStats


async def fetch_course_details_batch(
    course_ids: Sequence[str],
    batch_size: Optional[int] = None,
    pool: Optional[SessionPool] = None,
    location_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> DetailsBatchResult:
    """
    Fetch details for many course ids; failures are collected per id.

    Each id is routed to the pool session picked by its stable hash, so the
    same course always reuses the same cookies.
    """
    cfg = settings or default_settings
    ceiling = max(1, cfg.detail_concurrency)
    if pool is None:
        pool = SessionPool(cfg.session_pool_size, timeout_seconds=cfg.session_timeout, debug=cfg.cookie_debug)
    policy = AdaptiveBatchPolicy(ceiling=ceiling)

    async def worker(course_id: str) -> CourseDetails:
        return await fetch_course_details(
            course_id,
            session=pool.for_key(course_id),
            location_id=location_id,
            settings=cfg,
        )

    result = await process_in_batches(
        list(course_ids),
        worker,
        batch_size=batch_size or cfg.detail_batch_size,
        concurrency_ceiling=ceiling,
        key=lambda cid: cid.upper(),
        on_batch_end=policy,
    )

    details: Dict[str, CourseDetails] = {}
    errors: Dict[str, BaseException] = {}
    for outcome in result.outcomes:
        if outcome.ok:
            details[outcome.item] = outcome.value
        else:
            errors[outcome.item] = outcome.error

    stats = result.stats
    if stats.failed:
        logger.warning(
            "Course details: %d succeeded, %d failed in %.0f ms",
            stats.succeeded, stats.failed, stats.duration_seconds * 1000,
        )
    else:
        logger.info("Course details: all %d fetched in %.0f ms", stats.succeeded, stats.duration_seconds * 1000)

    return DetailsBatchResult(details=details, errors=errors, stats=stats)
