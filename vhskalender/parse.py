"""
Parsing (HTML -> model objects).

- Search result pages: one CourseSummary per table row
- Course detail pages: one CourseDetails per page, built from three layered
  sources (JSON-LD block, labeled fields, the schedule table)

Important rules:
- the schedule table #kw-kurstage is the ONLY source of sessions; sidebar
  lists repeat the same dates and would double-count them
- a row/entry that cannot be parsed is skipped, never fatal
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag

from vhskalender.address import normalize_address
from vhskalender.dates import has_time_component, parse_german_date, parse_iso_datetime, parse_schedule_entry, shift
from vhskalender.errors import ParseError
from vhskalender.model import CourseDetails, CourseLocation, CourseSession, CourseSummary

logger = logging.getLogger(__name__)

COURSE_PREFIX = "vhs Kurs: "

_OCCUPANCY_RE = re.compile(r"(\d+)\s*von\s*(\d+)", re.IGNORECASE)
_DATE_IN_ROW_RE = re.compile(r"\d{1,2}\.\d{1,2}\.\d{4}")
_COUNT_RE = re.compile(r"(\d+)")
_DURATION_COUNT_RE = re.compile(r"(\d+)\s*Termin", re.IGNORECASE)

BLOCK_TAGS = [
    "p", "div", "section", "article", "li", "ul", "ol", "dl", "dt", "dd",
    "table", "tr", "blockquote", "h1", "h2", "h3", "h4", "h5", "h6",
]
HIDDEN_CLASSES = {"visually-hidden", "sr-only", "d-none", "hidden"}

# Ranked containers for the last-resort paragraph description
DESCRIPTION_CONTAINERS = (
    ".hauptseite_mitstatus",
    "div.hauptseite_ohnestatus",
    "main",
    "#content",
    ".course-detail",
)

JSON_LD_COURSE_TYPES = {"Course", "EducationalOccupationalProgram"}

LABEL_VALUE_TAGS = {"dt": "dd", "th": "td"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _text(el: Optional[Tag]) -> str:
    """Element text with all whitespace collapsed to single spaces."""
    if el is None:
        return ""
    return " ".join(el.get_text(" ").split())


def _is_hidden(tag: Tag) -> bool:
    if tag.has_attr("hidden") or tag.get("aria-hidden") == "true":
        return True
    if HIDDEN_CLASSES.intersection(tag.get("class") or []):
        return True
    style = (tag.get("style") or "").replace(" ", "").lower()
    return "display:none" in style or "visibility:hidden" in style


def html_to_text(node: Tag | str) -> str:
    """
    Reconstruct readable plain text from an HTML fragment.

    Block-level tags and <br> become line breaks; script/style and hidden
    elements are dropped; runs of blank lines collapse to one.
    """
    fragment = BeautifulSoup(str(node), "html.parser")

    for tag in fragment.find_all(["script", "style", "noscript", "template"]):
        tag.extract()
    for tag in fragment.find_all(_is_hidden):
        tag.extract()
    for br in fragment.find_all("br"):
        br.replace_with("\n")
    for tag in fragment.find_all(BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")

    lines = [" ".join(line.split()) for line in fragment.get_text().splitlines()]

    out: List[str] = []
    for line in lines:
        if line or (out and out[-1]):
            out.append(line)
    return "\n".join(out).strip()


def _absolute_url(href: str, base_href: str) -> Optional[str]:
    href = (href or "").strip()
    if not href:
        return None
    url = urljoin(base_href or "", href)
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return url


def add_course_prefix(title: str) -> str:
    """
    Prefix a course title with "vhs Kurs: " unless it already carries it.
    Whitespace-only titles are returned unchanged.
    """
    if not title or not title.strip():
        return title
    stripped = title.strip()
    if stripped.lower().startswith(COURSE_PREFIX.lower()):
        return title
    return f"{COURSE_PREFIX}{stripped}"


# ---------------------------------------------------------------------------
# Search result pages
# ---------------------------------------------------------------------------


def parse_available(occupancy: str) -> Optional[bool]:
    """
    "4 von 6" -> True (places left). None when the label has another format.
    """
    m = _OCCUPANCY_RE.search(occupancy or "")
    if not m:
        return None
    used, total = int(m.group(1)), int(m.group(2))
    return used < total


def parse_course_results(
    html: str,
    base_href: str,
    warnings: Optional[List[str]] = None,
) -> List[CourseSummary]:
    """
    Parse the result table of one search page into CourseSummary objects.

    Row order is preserved. Rows without a title or a resolvable detail link
    are dropped; every other oddity degrades a field instead of the row.
    """
    soup = BeautifulSoup(html, "html.parser")
    table = soup.select_one("div.kw-kursuebersicht > table")
    if table is None:
        return []

    courses: List[CourseSummary] = []
    for row in table.select("tr.kw-table-row"):
        link = row.select_one('td[headers="kue-columnheader2"] a')
        title = _text(link)
        href = (link.get("href") if link else None) or row.get("data-href") or ""
        detail_url = _absolute_url(href, base_href)
        if not title or not detail_url:
            continue

        date_text = _text(row.select_one('td[headers="kue-columnheader3"]')).replace(" ,", ",")
        location_text = _text(row.select_one('td[headers="kue-columnheader4"]'))
        occupancy_text = _text(row.select_one('td[headers="kue-columnheader5"]'))
        course_number = _text(row.select_one('td[headers="kue-columnheader6"]'))

        start = None
        if date_text:
            try:
                start = parse_german_date(date_text)
            except ParseError:
                logger.debug("Unparseable date %r for %s", date_text, detail_url)

        available = parse_available(occupancy_text)
        if available is None:
            message = f"Unexpected occupancy label {occupancy_text!r} for course {course_number or title}"
            logger.warning(message)
            if warnings is not None:
                warnings.append(message)
            available = True

        ampel = row.select_one(".ampelicon")
        bookable = ampel is not None and "buchbar" in (ampel.get("class") or [])

        courses.append(
            CourseSummary(
                id=course_number,
                title=title,
                detail_url=detail_url,
                start=start,
                location_text=location_text,
                available=available,
                bookable=bookable,
                date_text=date_text,
                occupancy_text=occupancy_text,
            )
        )

    return courses


# ---------------------------------------------------------------------------
# Course detail pages
# ---------------------------------------------------------------------------


def extract_json_ld(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    """All JSON-LD objects on the page; malformed blocks are ignored."""
    out: List[Dict[str, Any]] = []
    for script in soup.select('script[type="application/ld+json"]'):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring malformed JSON-LD block")
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if isinstance(item, dict) and isinstance(item.get("@graph"), list):
                out.extend(x for x in item["@graph"] if isinstance(x, dict))
            elif isinstance(item, dict):
                out.append(item)
    return out


def find_course_json_ld(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    for block in extract_json_ld(soup):
        types = block.get("@type")
        types = types if isinstance(types, list) else [types]
        if JSON_LD_COURSE_TYPES.intersection(t for t in types if isinstance(t, str)):
            return block
    return None


def _first_course_instance(course: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not course:
        return {}
    instances = course.get("hasCourseInstance")
    if isinstance(instances, dict):
        instances = [instances]
    if not isinstance(instances, list):
        return {}
    instances = [i for i in instances if isinstance(i, dict)]
    return next((i for i in instances if i.get("startDate")), instances[0] if instances else {})


def _json_ld_address(location: Dict[str, Any]) -> str:
    address = location.get("address")
    if isinstance(address, str):
        return address.strip()
    if not isinstance(address, dict):
        return ""
    parts = [address.get("streetAddress"), address.get("postalCode"), address.get("addressLocality")]
    return ", ".join(str(p).strip() for p in parts if p and str(p).strip())


def _in_schedule_table(el: Tag) -> bool:
    return el.find_parent(id="kw-kurstage") is not None


def extract_labeled_field(soup: BeautifulSoup, label: str) -> Optional[str]:
    """
    Value of a "Label: value" field. Tries dt->dd, th->td and .label pairs
    first, then the text around any "Label:" node. The schedule table is
    never searched; its header cells are column names.
    """
    exact = re.compile(rf"^{re.escape(label)}\s*:?$", re.IGNORECASE)
    for el in soup.select("dt, th, .label"):
        if _in_schedule_table(el) or not exact.match(_text(el)):
            continue
        value_tag = LABEL_VALUE_TAGS.get(el.name)
        sibling = el.find_next_sibling(value_tag) if value_tag else el.find_next_sibling()
        value = _text(sibling)
        if value:
            return value

    marker = re.compile(rf"\b{re.escape(label)}\s*:", re.IGNORECASE)
    inline = re.compile(rf"\b{re.escape(label)}\s*:\s*(\S.*)", re.IGNORECASE)
    for node in soup.find_all(string=marker):
        parent = node.parent
        if parent is None or parent.name in ("script", "style") or _in_schedule_table(parent):
            continue
        # label and value are often split: <p><strong>Beginn:</strong> Mo., ...</p>
        candidates = [" ".join(node.split()), _text(parent)]
        if parent.parent is not None:
            candidates.append(_text(parent.parent))
        for text in candidates:
            m = inline.search(text)
            if m:
                return m.group(1).strip()
    return None


def extract_schedule(soup: BeautifulSoup) -> List[CourseSession]:
    """
    Sessions from the schedule table #kw-kurstage (header rows skipped).
    """
    table = soup.select_one("#kw-kurstage")
    if table is None:
        return []

    sessions: List[CourseSession] = []
    for row in table.find_all("tr"):
        if row.find("th"):
            continue
        cells = [_text(td) for td in row.find_all("td")]
        cells = [c for c in cells if c]
        if not cells:
            continue
        row_text = " • ".join(cells)
        if not _DATE_IN_ROW_RE.search(row_text):
            continue
        try:
            sessions.append(parse_schedule_entry(row_text))
        except ParseError as error:
            logger.debug("Skipping schedule row %r: %s", row_text, error)
    return sessions


def extract_description(soup: BeautifulSoup, json_ld: Optional[Dict[str, Any]] = None) -> str:
    primary = soup.select_one(".kw-kurs-info-text")
    if primary is not None:
        text = html_to_text(primary)
        if text:
            return text

    if json_ld and isinstance(json_ld.get("description"), str):
        text = html_to_text(json_ld["description"])
        if text:
            return text

    for selector in DESCRIPTION_CONTAINERS:
        paragraphs = [_text(p) for container in soup.select(selector) for p in container.find_all("p")]
        paragraphs = [p for p in paragraphs if p]
        if paragraphs:
            return "\n".join(paragraphs)

    return "\n".join(t for t in (_text(p) for p in soup.find_all("p")) if t)


def _parse_number_of_dates(termine: Optional[str], duration: str, schedule_length: int) -> int:
    if termine:
        m = _COUNT_RE.search(termine)
        if m:
            return int(m.group(1))
    if duration:
        m = _DURATION_COUNT_RE.search(duration)
        if m:
            return int(m.group(1))
    return schedule_length


def _labeled_start(soup: BeautifulSoup) -> Tuple[Optional[datetime], bool]:
    beginn = extract_labeled_field(soup, "Beginn")
    if not beginn:
        return None, False
    try:
        return parse_german_date(beginn), has_time_component(beginn)
    except ParseError:
        return None, False


def _json_ld_start(instance: Dict[str, Any]) -> Tuple[Optional[datetime], bool]:
    raw = instance.get("startDate")
    if not isinstance(raw, str) or not raw.strip():
        return None, False
    try:
        return parse_iso_datetime(raw)
    except ParseError:
        return None, False


def parse_course_details(html: str, course_id: str, location_id: Optional[str] = None) -> CourseDetails:
    """
    Parse a course detail page.

    Start instant: the first candidate that carries a clock time wins, in the
    order schedule table > "Beginn" field > JSON-LD; if none has a time, the
    first date-only candidate in the same order is used.
    """
    soup = BeautifulSoup(html, "html.parser")
    json_ld = find_course_json_ld(soup)
    instance = _first_course_instance(json_ld)

    title = _text(soup.find("h1")) or str((json_ld or {}).get("name") or "").strip()
    title = add_course_prefix(title)

    description = extract_description(soup, json_ld)
    schedule = extract_schedule(soup)

    start_candidates = (
        (schedule[0].start, True) if schedule else (None, False),
        _labeled_start(soup),
        _json_ld_start(instance),
    )
    start = next((value for value, timed in start_candidates if value is not None and timed), None)
    if start is None:
        start = next((value for value, _ in start_candidates if value is not None), None)

    end = None
    if start is not None and schedule:
        first = schedule[0]
        end = shift(start, first.end - first.start)

    duration_text = extract_labeled_field(soup, "Dauer") or ""
    number_of_dates = _parse_number_of_dates(
        extract_labeled_field(soup, "Termine"), duration_text, len(schedule)
    )

    json_location = instance.get("location") if isinstance(instance.get("location"), dict) else {}
    venue = (
        str(json_location.get("name") or "").strip()
        or extract_labeled_field(soup, "Kursort")
        or extract_labeled_field(soup, "Ort")
        or (schedule[0].location if schedule else "")
    )
    address = _json_ld_address(json_location) or normalize_address(venue, location_id)
    location = CourseLocation(
        name=venue,
        room=schedule[0].room if schedule else None,
        address=address,
    )

    bookable = soup.select_one(".ampelicon.buchbar") is not None

    return CourseDetails(
        id=course_id,
        title=title,
        description=description,
        start=start,
        end=end,
        duration_text=duration_text,
        number_of_dates=number_of_dates,
        schedule=tuple(schedule),
        location=location,
        bookable=bookable,
    )
