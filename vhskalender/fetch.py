"""
HTTP boundary.

All requests to the course website go through fetch_html(): it attaches the
session's cookies, applies a fixed timeout, stores Set-Cookie values back into
the session and turns requests' exceptions into the scraper's error taxonomy.

requests is blocking, so the call runs in a worker thread (asyncio.to_thread);
callers can then gather many fetches concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Mapping, Optional

import requests

from vhskalender.config import Settings, settings as default_settings
from vhskalender.errors import FetchError, HttpError, RequestTimeoutError
from vhskalender.session import SessionStore

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 200

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "de-DE,de;q=0.9,en;q=0.5",
}


def send_request(
    method: str,
    url: str,
    *,
    data: Optional[str],
    headers: Mapping[str, str],
    timeout: float,
) -> requests.Response:
    """
    Blocking request. requests applies `timeout` to the connect and to each
    socket read separately, so a slowly dripping body can take longer;
    request_with_deadline() puts a limit on the whole call.
    """
    try:
        return requests.request(
            method=method,
            url=url,
            data=data,
            headers=dict(headers),
            timeout=(timeout, timeout),
            allow_redirects=True,
        )
    except requests.exceptions.Timeout as error:
        raise RequestTimeoutError(url, timeout) from error
    except requests.exceptions.RequestException as error:
        raise FetchError(f"{method} {url} failed: {error}") from error


async def request_with_deadline(
    method: str,
    url: str,
    *,
    data: Optional[str] = None,
    headers: Mapping[str, str] = DEFAULT_HEADERS,
    timeout: float,
) -> requests.Response:
    """
    send_request() in a worker thread, failing with RequestTimeoutError once
    `timeout` seconds have passed in total.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(send_request, method, url, data=data, headers=headers, timeout=timeout),
            timeout=timeout,
        )
    except asyncio.TimeoutError as error:
        # the worker thread finishes on its own once requests' read timeout fires
        raise RequestTimeoutError(url, timeout) from error


async def fetch_html(
    url: str,
    *,
    method: str = "GET",
    data: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
    session: Optional[SessionStore] = None,
    timeout: Optional[float] = None,
    settings: Optional[Settings] = None,
) -> str:
    """
    Fetch a page and return its text. Raises RequestTimeoutError / HttpError / FetchError.
    """
    cfg = settings or default_settings
    timeout = timeout if timeout is not None else cfg.request_timeout
    method = method.upper()

    request_headers = dict(DEFAULT_HEADERS)
    if headers:
        request_headers.update(headers)

    if session is not None:
        if session.is_expired():
            # soft reset; the next response issues a fresh session cookie
            session.reset()
        cookie_header = session.attach_cookies(url)
        if cookie_header:
            request_headers["Cookie"] = cookie_header

    logger.debug("HTTP %s %s (timeout=%ss, session=%s)", method, url, timeout, session is not None)
    started = time.perf_counter()
    try:
        response = await request_with_deadline(
            method, url, data=data, headers=request_headers, timeout=timeout
        )
    except FetchError as error:
        logger.error("HTTP %s %s failed after %.0f ms: %s", method, url, _elapsed_ms(started), error)
        raise

    if session is not None:
        # requests folds repeated Set-Cookie headers into one comma-joined value;
        # redirect hops (POST -> 303 -> GET) may issue cookies too
        for hop in (*response.history, response):
            session.ingest(hop.url or url, hop.headers.get("Set-Cookie"))

    elapsed = _elapsed_ms(started)
    if not response.ok:
        snippet = (response.text or "")[:SNIPPET_LENGTH]
        logger.error("HTTP %s %s -> %s in %.0f ms", method, url, response.status_code, elapsed)
        raise HttpError(response.status_code, url, snippet)

    logger.info("HTTP %s %s -> %s in %.0f ms", method, url, response.status_code, elapsed)
    return response.text


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
