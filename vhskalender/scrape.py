from __future__ import annotations

import logging
import time
from typing import List, Optional

from vhskalender.config import Settings, settings as default_settings
from vhskalender.details import COURSE_ID_RE, course_id_from_url, fetch_course_details_batch
from vhskalender.errors import NotFoundError
from vhskalender.locations import get_locations, resolve_location
from vhskalender.model import CourseSummary, CoursesResult, Location
from vhskalender.parse import parse_course_results
from vhskalender.search import crawl_result_pages, extract_selected_location_count, merge_summaries
from vhskalender.session import SessionPool, SessionStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def details_id(course: CourseSummary) -> Optional[str]:
    """
    Course id usable for a detail page: the listed course number if it looks
    like one (e.g. 252A21003), else the id at the end of the detail URL.
    """
    if course.id and COURSE_ID_RE.match(course.id):
        return course.id
    return course_id_from_url(course.detail_url)


async def _resolve(location_id: str, cfg: Settings) -> Location:
    try:
        return resolve_location(location_id)
    except NotFoundError:
        # not one of the main houses; the live search form may still list it
        live = {loc.id: loc for loc in await get_locations(cfg)}
        return resolve_location(location_id, known=live)


# ---------------------------------------------------------------------------
# Core logic
# ---------------------------------------------------------------------------


async def get_courses(
    location_id: str,
    include_details: bool = False,
    batch_size: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> CoursesResult:
    """
    Full course list for one location id ("anklam", "greifswald", ...).

    Steps:
        1. resolve the location id to the display name used by the search form
        2. submit the search and fetch every result page with one session
        3. parse all pages and drop duplicates (id, else detail URL)
        4. compare with the count shown in the filter sidebar
        5. optionally enrich each course with its detail page

    Unknown location ids and a missing search form raise; everything that
    only affects part of the result ends up in `warnings`.
    """
    cfg = settings or default_settings
    started = time.perf_counter()

    location = await _resolve(location_id, cfg)
    logger.info("Fetching courses for %s (%s)", location.name, location.id)

    session = SessionStore(cfg.session_timeout, debug=cfg.cookie_debug)
    crawl = await crawl_result_pages(location.name, session, settings=cfg)

    warnings: List[str] = list(crawl.warnings)
    pages = [parse_course_results(html, crawl.base_href, warnings) for html in crawl.pages]
    courses = merge_summaries(pages)

    expected_count = extract_selected_location_count(crawl.initial_html, location.name)
    if expected_count is not None and expected_count != len(courses):
        message = f"Parsed {len(courses)} courses but filter shows {expected_count}."
        logger.warning("Course count mismatch for %s: %s", location.id, message)
        warnings.append(message)

    details_stats = None
    if include_details:
        ids = [details_id(c) for c in courses]
        valid_ids = [cid for cid in ids if cid]

        missing = len(courses) - len(valid_ids)
        if missing:
            message = f"{missing} course(s) missing a valid id for details fetch"
            logger.warning(message)
            warnings.append(message)

        pool = SessionPool(cfg.session_pool_size, timeout_seconds=cfg.session_timeout, debug=cfg.cookie_debug)
        batch = await fetch_course_details_batch(
            valid_ids,
            batch_size=batch_size,
            pool=pool,
            location_id=location.id,
            settings=cfg,
        )

        courses = [
            c.with_details(batch.details[cid]) if cid and cid in batch.details else c
            for c, cid in zip(courses, ids)
        ]
        if batch.errors:
            warnings.append(f"Failed to fetch details for {len(batch.errors)} course(s)")
        details_stats = batch.stats

    logger.info(
        "Fetched %d course(s) for %s in %.0f ms",
        len(courses), location.id, (time.perf_counter() - started) * 1000,
    )
    return CoursesResult(
        courses=tuple(courses),
        expected_count=expected_count,
        warnings=tuple(warnings),
        details_stats=details_stats,
        location=location,
    )
