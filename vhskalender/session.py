"""
Cookie-based session handling for the course website.

The search results are paginated per server-side session: the result pages
only line up when every request after the search POST carries the cookies
issued by that POST. A SessionStore is a small cookie jar with idle expiry.

A SessionPool holds a few independent stores so that concurrent detail
fetches do not all funnel through one jar. Items are routed by a stable
hash, so the same course always lands on the same session.
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from vhskalender.errors import CookieParseSkip

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "vhs-vg.de"

# A comma separates two cookies only when the next thing is "name=".
# The comma inside "Expires=Wed, 21 Oct 2026 07:28:00 GMT" is followed by a
# day number and a space, so it never matches.
_COOKIE_BOUNDARY = re.compile(r",\s*(?=[^;,=\s]+=)")


@dataclass
class CookieRecord:
    value: str
    domain: Optional[str] = None
    path: Optional[str] = None
    expires: Optional[datetime] = None
    secure: bool = False
    http_only: bool = False
    same_site: Optional[str] = None


def registrable_domain(host_or_url: str) -> str:
    """
    Two-label domain of a host ("www.vhs-vg.de" -> "vhs-vg.de").
    Hosts with fewer than two labels are returned unchanged.
    """
    host = host_or_url
    if "://" in host_or_url:
        host = urlsplit(host_or_url).hostname or ""
    host = host.strip().lstrip(".").lower()
    if not host:
        return DEFAULT_DOMAIN
    parts = host.split(".")
    if len(parts) >= 2:
        return ".".join(parts[-2:])
    return host


def split_set_cookie_header(header: str) -> List[str]:
    """
    Split a comma-joined Set-Cookie header into single cookie lines.
    """
    return [p.strip() for p in _COOKIE_BOUNDARY.split(header) if p.strip()]


def parse_set_cookie(line: str) -> tuple[str, CookieRecord]:
    """
    Parse one Set-Cookie line. Raises CookieParseSkip for malformed lines.
    """
    parts = [p.strip() for p in line.split(";")]
    name_value = parts[0] if parts else ""
    name, sep, value = name_value.partition("=")
    name = name.strip()
    if not sep or not name:
        raise CookieParseSkip(f"Malformed cookie: {line!r}")

    record = CookieRecord(value=value.strip())
    for attr in parts[1:]:
        key, _, raw = attr.partition("=")
        key = key.strip().lower()
        raw = raw.strip()
        if key == "domain":
            record.domain = raw.lstrip(".") or None
        elif key == "path":
            record.path = raw or None
        elif key == "expires":
            record.expires = _parse_expires(raw)
        elif key == "secure":
            record.secure = True
        elif key == "httponly":
            record.http_only = True
        elif key == "samesite":
            record.same_site = raw or None
        # unknown attributes (Max-Age, Priority, ...) are ignored
    return name, record


def _parse_expires(raw: str) -> Optional[datetime]:
    if not raw:
        return None
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SessionStore:
    """
    Per-origin cookie jar with idle expiry.

    Cookies are keyed by registrable domain, then by cookie name. Mutation is
    serialized with a lock; reads take the same lock to get a consistent view.
    """

    def __init__(
        self,
        timeout_seconds: float = 15 * 60,
        debug: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cookies: Dict[str, Dict[str, CookieRecord]] = {}
        self._timeout = timeout_seconds
        self._debug = debug
        self._clock = clock
        self._last_updated = 0.0
        self._lock = threading.Lock()

    def is_expired(self) -> bool:
        if not self._last_updated:
            return True
        return self._clock() - self._last_updated > self._timeout

    def reset(self) -> None:
        with self._lock:
            self._cookies.clear()
            self._last_updated = 0.0

    def cookie_names(self, url: str) -> List[str]:
        with self._lock:
            return list(self._cookies.get(registrable_domain(url), {}))

    def attach_cookies(self, url: str) -> str:
        """
        Build the Cookie header for a request to `url` ("" when nothing applies).
        """
        dkey = registrable_domain(url)
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        with self._lock:
            domain_cookies = dict(self._cookies.get(dkey, {}))

        parts = [
            f"{name}={rec.value}"
            for name, rec in domain_cookies.items()
            if rec.expires is None or rec.expires >= now
        ]
        if self._debug and parts:
            logger.debug("Attach %d cookie(s) for %s", len(parts), dkey)
        return "; ".join(parts)

    def ingest(self, url: str, set_cookie_values: str | Iterable[str] | None) -> int:
        """
        Store cookies from Set-Cookie header value(s). Returns the number stored.
        """
        if not set_cookie_values:
            return 0
        if isinstance(set_cookie_values, str):
            set_cookie_values = [set_cookie_values]

        lines: List[str] = []
        for value in set_cookie_values:
            lines.extend(split_set_cookie_header(value))

        stored = 0
        with self._lock:
            for line in lines:
                try:
                    name, record = parse_set_cookie(line)
                except CookieParseSkip as error:
                    logger.debug("Skipping cookie: %s", error)
                    continue
                dkey = registrable_domain(record.domain) if record.domain else registrable_domain(url)
                self._cookies.setdefault(dkey, {})[name] = record
                stored += 1
                if self._debug:
                    logger.debug("Stored cookie %s for %s", name, dkey)
            if stored:
                self._last_updated = self._clock()
        return stored


def stable_hash(key: str) -> int:
    """Process-independent hash (str.__hash__ is salted per interpreter run)."""
    return int(hashlib.sha1(key.encode("utf-8")).hexdigest()[:8], 16)


class SessionPool:
    """
    A small fixed set of independent SessionStores, picked per item by stable hash.
    """

    def __init__(self, size: int = 4, timeout_seconds: float = 15 * 60, debug: bool = False) -> None:
        if size < 1:
            size = 1
        self.sessions: List[SessionStore] = [
            SessionStore(timeout_seconds=timeout_seconds, debug=debug) for _ in range(size)
        ]

    def __len__(self) -> int:
        return len(self.sessions)

    def index_for(self, key: str) -> int:
        return stable_hash(key) % len(self.sessions)

    def for_key(self, key: str) -> SessionStore:
        return self.sessions[self.index_for(key)]
