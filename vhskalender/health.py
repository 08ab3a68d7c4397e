"""
Lightweight reachability check for the course website.

A HEAD request is tried first; servers that refuse it (or a connection error)
get a second chance with GET, whose body must look like an HTML page.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from vhskalender.config import Settings, settings as default_settings
from vhskalender.errors import FetchError, RequestTimeoutError
from vhskalender.fetch import request_with_deadline

logger = logging.getLogger(__name__)

SLOW_RESPONSE_SECONDS = 10.0

_HTML_MARKERS = (re.compile(r"<html[^>]*>", re.I), re.compile(r"<head[^>]*>", re.I), re.compile(r"<body[^>]*>", re.I))


@dataclass(frozen=True)
class HealthStatus:
    status: str  # healthy | degraded | unhealthy
    response_time: float
    status_code: Optional[int]
    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "response_time_ms": round(self.response_time * 1000),
            "status_code": self.status_code,
            "message": self.message,
            "timestamp": self.timestamp,
        }


def _speed_status(elapsed: float) -> str:
    return "healthy" if elapsed <= SLOW_RESPONSE_SECONDS else "degraded"


def _speed_message(status: str) -> str:
    return "Website is accessible" if status == "healthy" else "Website is slow but reachable"


async def check_website_health(timeout: Optional[float] = None, settings: Optional[Settings] = None) -> HealthStatus:
    cfg = settings or default_settings
    timeout = timeout if timeout is not None else cfg.request_timeout
    url = cfg.base_url + "/"

    started = time.perf_counter()
    try:
        response = await request_with_deadline("HEAD", url, timeout=timeout)
    except RequestTimeoutError:
        return HealthStatus("unhealthy", time.perf_counter() - started, None, "Timeout while connecting to website")
    except FetchError as error:
        logger.debug("HEAD %s failed (%s), retrying with GET", url, error)
    else:
        elapsed = time.perf_counter() - started
        if response.ok:
            status = _speed_status(elapsed)
            return HealthStatus(status, elapsed, response.status_code, _speed_message(status))
        if response.status_code != 405:
            return HealthStatus("unhealthy", elapsed, response.status_code, f"HTTP {response.status_code} from website")

    started = time.perf_counter()
    try:
        response = await request_with_deadline("GET", url, timeout=timeout)
    except RequestTimeoutError:
        return HealthStatus("unhealthy", time.perf_counter() - started, None, "Timeout while connecting to website")
    except FetchError as error:
        return HealthStatus(
            "unhealthy", time.perf_counter() - started, None, f"Network error while connecting to website: {error}"
        )

    elapsed = time.perf_counter() - started
    if not response.ok:
        return HealthStatus("unhealthy", elapsed, response.status_code, f"HTTP {response.status_code} from website")
    if not all(marker.search(response.text or "") for marker in _HTML_MARKERS):
        return HealthStatus("degraded", elapsed, response.status_code, "Website responded without expected HTML structure")

    status = _speed_status(elapsed)
    return HealthStatus(status, elapsed, response.status_code, _speed_message(status))
