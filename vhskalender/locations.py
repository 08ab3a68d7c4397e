"""
Known course locations (Außenstellen) and their discovery on the search page.

The crawl takes a location id ("anklam"); the search form expects the
display name ("Anklam"). The three main houses are known statically; the
live search form may list more, with result counts, and the branch overview
page (Außenstellenübersicht) gives their postal addresses.
"""

from __future__ import annotations

import asyncio
import logging
import re
import unicodedata
from typing import Dict, List, Optional

from bs4 import BeautifulSoup

from vhskalender.config import Settings, settings as default_settings
from vhskalender.errors import FetchError, InvalidArgumentError, NotFoundError
from vhskalender.fetch import fetch_html
from vhskalender.model import Location
from vhskalender.search import RESET

logger = logging.getLogger(__name__)

STATIC_LOCATIONS: Dict[str, Location] = {
    "anklam": Location(id="anklam", name="Anklam", address="Markt 7 (Lilienthal-Center), 17389 Anklam"),
    "greifswald": Location(id="greifswald", name="Greifswald", address="Martin-Luther-Straße 7a, 17489 Greifswald"),
    "pasewalk": Location(id="pasewalk", name="Pasewalk", address="Gemeindewiesenweg 8, 17309 Pasewalk"),
}

INSTITUTION_NAME = "Volkshochschule Vorpommern-Greifswald"

_COUNT_RE = re.compile(r"\((\d+)\)")
_BRANCH_PREFIX_RE = re.compile(r"^Au(?:ß|ss)enstelle:\s*", re.IGNORECASE)


def slugify(text: str) -> str:
    """Location id from a display name: "Heringsdorf (Usedom)" -> "heringsdorf-usedom"."""
    s = (text or "").lower()
    for src, dst in (("ä", "ae"), ("ö", "oe"), ("ü", "ue"), ("ß", "ss")):
        s = s.replace(src, dst)
    s = unicodedata.normalize("NFKD", s).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", s).strip("-")


def resolve_location(location_id: str, known: Optional[Dict[str, Location]] = None) -> Location:
    """
    Look up a location by id. Unknown ids abort the crawl with NotFoundError.
    """
    if not location_id or not location_id.strip():
        raise InvalidArgumentError("location id is required")
    known = known if known is not None else STATIC_LOCATIONS
    location = known.get(location_id.strip().lower())
    if location is None:
        raise NotFoundError(f"Unknown location id '{location_id}'. Known ids: {', '.join(sorted(known))}")
    return location


def _split_count(label: str) -> tuple[str, Optional[int]]:
    m = _COUNT_RE.search(label)
    if not m:
        return label.strip(), None
    return _COUNT_RE.sub("", label).strip(), int(m.group(1))


def extract_locations_from_search_form(html: str) -> List[Location]:
    """
    Location options of the search form (checkboxes or a dropdown), with
    result counts when shown.
    """
    soup = BeautifulSoup(html, "html.parser")
    found: List[Location] = []

    for el in soup.select('input[name="katortfilter[]"]'):
        value = (el.get("value") or "").strip()
        if not value or value == RESET:
            continue

        label_text = ""
        input_id = el.get("id")
        if input_id:
            label = soup.find("label", attrs={"for": input_id})
            if label is not None:
                label_text = label.get_text(" ")
        if not label_text:
            parent_label = el.find_parent("label")
            if parent_label is not None:
                label_text = parent_label.get_text(" ")
        label_text = " ".join((label_text or value).split())

        container = el.find_parent(["li", "div"])
        badge = container.select_one(".badge, small") if container is not None else None
        badge_text = " ".join(badge.get_text(" ").split()) if badge is not None else ""

        name, count = _split_count(label_text)
        if badge_text and name.endswith(badge_text):
            name = name[: -len(badge_text)].strip()
        if count is None and badge_text:
            digits = re.sub(r"[^0-9]", "", badge_text)
            count = int(digits) if digits else None
        found.append(Location(id=slugify(name), name=name, count=count))

    # dropdown variant of the same filter
    for option in soup.select('select[name="katortfilter[]"] option'):
        value = (option.get("value") or "").strip()
        if not value or value == RESET:
            continue
        name, count = _split_count(" ".join(option.get_text(" ").split()) or value)
        found.append(Location(id=slugify(name), name=name, count=count))

    if not found:
        for label in soup.select("#kw-filter-ortvalues li label"):
            text = " ".join(label.get_text(" ").split())
            if not text:
                continue
            name, count = _split_count(text)
            found.append(Location(id=slugify(name), name=name, count=count))

    unique: Dict[str, Location] = {}
    for loc in found:
        if loc.id:
            unique.setdefault(loc.id, loc)
    return list(unique.values())


def extract_location_details(html: str) -> Dict[str, str]:
    """
    Postal addresses from the branch overview page (Außenstellenübersicht),
    keyed by location id.

    Each branch is a `.card` whose h2 reads "Außenstelle: <Name>"; the address
    paragraph carries a visually hidden "Adresse:" label and uses <br> as line
    separator.
    """
    soup = BeautifulSoup(html, "html.parser")
    container = soup.select_one("div.hauptseite_ohnestatus")
    if container is None:
        return {}

    details: Dict[str, str] = {}
    for card in container.select(".card"):
        h2 = card.find("h2")
        heading = " ".join(h2.get_text(" ").split()) if h2 is not None else ""
        name = _BRANCH_PREFIX_RE.sub("", heading).strip()
        if not name:
            continue

        address = ""
        for p in card.find_all("p"):
            hidden = p.select("span.visually-hidden")
            if not any("Adresse:" in span.get_text() for span in hidden):
                continue
            for span in hidden:
                span.decompose()
            for br in p.find_all("br"):
                br.replace_with(", ")
            address = re.sub(r"\s+,", ",", " ".join(p.get_text().split())).strip(" ,")
            break

        if address:
            details.setdefault(slugify(name), f"{INSTITUTION_NAME}, {address}")

    logger.debug("Extracted %d location address(es) from overview page", len(details))
    return details


async def _fetch_location_details(cfg: Settings) -> Dict[str, str]:
    try:
        html = await fetch_html(cfg.locations_page_url, settings=cfg)
    except FetchError as error:
        logger.warning("Location overview unavailable, using static addresses: %s", error)
        return {}
    return extract_location_details(html)


async def get_locations(settings: Optional[Settings] = None) -> List[Location]:
    """
    Locations offered by the live search form, with addresses from the branch
    overview page (static addresses where the page has none).
    Falls back to the static list when the form lists nothing.
    """
    cfg = settings or default_settings
    html, addresses = await asyncio.gather(
        fetch_html(cfg.search_page_url, settings=cfg),
        _fetch_location_details(cfg),
    )
    live = extract_locations_from_search_form(html)
    if not live:
        logger.warning("No locations found on search form, using static list")
        return list(STATIC_LOCATIONS.values())

    out: List[Location] = []
    for loc in live:
        static = STATIC_LOCATIONS.get(loc.id)
        address = addresses.get(loc.id) or (static.address if static else "")
        out.append(Location(id=loc.id, name=loc.name, address=address, count=loc.count))
    logger.info("Extracted %d location(s) from search form", len(out))
    return out
