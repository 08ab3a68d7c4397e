"""Configuration utilities.

Central place to load environment driven settings (base url, timeouts,
concurrency limits). Avoids scattering os.getenv calls around the codebase.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load .env once on module import
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    base_url: str = os.getenv("VHS_BASE_URL", "https://www.vhs-vg.de").rstrip("/")
    request_timeout: float = float(os.getenv("VHS_REQUEST_TIMEOUT", "10"))
    session_timeout: float = float(os.getenv("VHS_SESSION_TIMEOUT", str(15 * 60)))
    cookie_debug: bool = _env_flag("VHS_COOKIE_DEBUG")
    detail_concurrency: int = int(os.getenv("COURSE_DETAIL_CONCURRENCY", "20"))
    detail_batch_size: int = int(os.getenv("COURSE_DETAIL_BATCH_SIZE", "20"))
    session_pool_size: int = int(os.getenv("VHS_SESSION_POOL_SIZE", "4"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def search_page_url(self) -> str:
        return f"{self.base_url}/kurse"

    @property
    def locations_page_url(self) -> str:
        return f"{self.base_url}/ihre-vhs/aussenstellenuebersicht"

    @property
    def base_href(self) -> str:
        return f"{self.base_url}/"


settings = Settings()
