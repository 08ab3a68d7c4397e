"""
Course search on the website: form discovery, request body and pagination.

Flow of one crawl:

    1. GET /kurse and read the action URL of the search form
    2. POST the encoded filter body to that URL (session cookies are issued here)
    3. collect the page links of the pagination bar
    4. GET every page concurrently with the SAME session

The server keeps the result set per session, so step 4 must reuse the
cookies from step 2 or the page links point into a different result set.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from urllib.parse import urlencode, urljoin, urlsplit

from bs4 import BeautifulSoup

from vhskalender.config import Settings, settings as default_settings
from vhskalender.errors import FetchError, InvalidArgumentError, MissingActionError, NotFoundError
from vhskalender.fetch import fetch_html
from vhskalender.model import CourseSummary
from vhskalender.session import SessionStore

logger = logging.getLogger(__name__)

SEARCH_FORM_SELECTOR = (
    "div > div.hauptseite_kurse > div > div.kw-kursuebersicht > div.kw-nurbuchbare > form"
)
PAGINATION_SELECTOR = "div.kw-paginationleiste > nav > ul"
PAGINATION_LINK_SELECTOR = "a.page-link, a.blaetternindex"

RESET = "__reset__"

_COUNT_IN_LABEL_RE = re.compile(r"\((\d+)\)")


@dataclass
class CrawlResult:
    form_url: str
    base_href: str
    pages: List[str] = field(default_factory=list)
    page_urls: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def initial_html(self) -> str:
        return self.pages[0] if self.pages else ""


# ---------------------------------------------------------------------------
# Search form
# ---------------------------------------------------------------------------


def extract_search_form_url(html: str, page_url: str) -> str:
    """
    Absolute action URL of the course search form on the listing page.
    """
    soup = BeautifulSoup(html, "html.parser")
    form = soup.select_one(SEARCH_FORM_SELECTOR)
    if form is None:
        raise NotFoundError(f"Search form not found at {page_url} using selector '{SEARCH_FORM_SELECTOR}'")

    action = (form.get("action") or "").strip()
    if not action:
        raise MissingActionError(f"Form action URL missing at {page_url}")

    return urljoin(page_url, action)


async def resolve_search_form_url(
    session: Optional[SessionStore] = None,
    settings: Optional[Settings] = None,
) -> str:
    cfg = settings or default_settings
    html = await fetch_html(cfg.search_page_url, session=session, settings=cfg)
    url = extract_search_form_url(html, cfg.search_page_url)
    logger.debug("Resolved search form url %s", url)
    return url


# ---------------------------------------------------------------------------
# Request body
# ---------------------------------------------------------------------------


def build_course_search_request(location_name: str) -> str:
    """
    URL-encoded POST body selecting one location with the default filters:
    no courses that already started, no fully booked courses. Every filter
    group that is not used gets an explicit reset marker.
    """
    if not location_name or not location_name.strip():
        raise InvalidArgumentError("Location name is required to build course search request")

    # fixed order keeps the body deterministic
    params = [
        ("katortfilter[]", location_name),
        ("katortfilter[]", RESET),
        ("katwotagefilter[]", RESET),
        ("katzeitraumfilter", RESET),
        ("katkeinebegonnenenfilter[]", "1"),
        ("katkeinebegonnenenfilter[]", RESET),
        ("katneuerkursfilter[]", RESET),
        ("katnichtvollefilter[]", "1"),
        ("katnichtvollefilter[]", RESET),
    ]
    return urlencode(params)


def course_search_headers() -> dict[str, str]:
    return {"Content-Type": "application/x-www-form-urlencoded"}


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


def extract_pagination_links(html: str, base_href: str) -> List[str]:
    """
    Absolute, de-duplicated page URLs from the pagination bar (first-seen order).
    The "next" chevron usually repeats a numbered page; it is not fetched twice.
    """
    soup = BeautifulSoup(html, "html.parser")
    container = soup.select_one(PAGINATION_SELECTOR)
    if container is None:
        return []

    urls: List[str] = []
    for a in container.select(PAGINATION_LINK_SELECTOR):
        href = (a.get("href") or "").strip()
        if not href:
            continue
        url = urljoin(base_href, href)
        if not urlsplit(url).netloc:
            continue
        if url not in urls:
            urls.append(url)
    return urls


def extract_selected_location_count(html: str, location_name: str) -> Optional[int]:
    """
    Result count the site shows next to the location filter, e.g. "Anklam (66)".
    """
    soup = BeautifulSoup(html, "html.parser")
    needle = location_name.lower()
    for label in soup.select("#kw-filter-ortvalues label"):
        text = " ".join(label.get_text(" ").split())
        if needle in text.lower():
            m = _COUNT_IN_LABEL_RE.search(text)
            if m:
                return int(m.group(1))
    return None


def merge_summaries(pages: Iterable[Iterable[CourseSummary]]) -> List[CourseSummary]:
    """
    Merge parsed pages; a course seen on two pages is kept once (first seen wins).
    """
    merged: dict[str, CourseSummary] = {}
    for page in pages:
        for course in page:
            merged.setdefault(course.identity_key, course)
    return list(merged.values())


# ---------------------------------------------------------------------------
# Crawl
# ---------------------------------------------------------------------------


async def crawl_result_pages(
    location_name: str,
    session: SessionStore,
    settings: Optional[Settings] = None,
) -> CrawlResult:
    """
    Submit the search for one location and fetch every result page.

    A missing search form aborts the crawl. A single pagination page that
    fails is reported as a warning and the remaining pages are still used.
    """
    cfg = settings or default_settings
    body = build_course_search_request(location_name)

    form_url = await resolve_search_form_url(session=session, settings=cfg)
    parts = urlsplit(form_url)
    base_href = f"{parts.scheme}://{parts.netloc}/"

    initial_html = await fetch_html(
        form_url,
        method="POST",
        data=body,
        headers=course_search_headers(),
        session=session,
        settings=cfg,
    )
    result = CrawlResult(form_url=form_url, base_href=base_href, pages=[initial_html], page_urls=[form_url])

    page_links = extract_pagination_links(initial_html, base_href)
    logger.debug("Found %d pagination link(s) for %s", len(page_links), location_name)
    if not page_links:
        return result

    fetched = await asyncio.gather(
        *(fetch_html(url, session=session, settings=cfg) for url in page_links),
        return_exceptions=True,
    )
    for url, page in zip(page_links, fetched):
        if isinstance(page, FetchError):
            message = f"Failed to fetch result page {url}: {page}"
            logger.warning(message)
            result.warnings.append(message)
            continue
        if isinstance(page, BaseException):
            raise page
        result.pages.append(page)
        result.page_urls.append(url)

    return result
