"""Course scraper and calendar export for the VHS Vorpommern-Greifswald website."""

from vhskalender.scrape import get_courses

__all__ = ["get_courses"]
