"""
CLI (Command Line Interface).

Terminal commands for quick lookups and for testing against the live site, e.g.:

    vhskalender locations
    vhskalender courses <location_id> [--details] [--out courses.json]
    vhskalender details <course_id>
    vhskalender export <location_id> <file.ics> [--details]
    vhskalender health

Note:
- Results are printed as plain text; log output goes to stderr
- Every command exits via SystemExit: 0 success, 1 failure, 2 usage error
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from vhskalender.config import settings
from vhskalender.dates import format_german_datetime
from vhskalender.details import fetch_course_details
from vhskalender.errors import CourseScraperError
from vhskalender.export_ics import export_courses_to_ics
from vhskalender.health import check_website_health
from vhskalender.locations import get_locations
from vhskalender.logging_config import setup_logging
from vhskalender.scrape import get_courses

logger = logging.getLogger(__name__)

# show max rows in plain listings
MAX_ROWS = 50


def _when(value: Any) -> str:
    return format_german_datetime(value) if value is not None else "(no date)"


def _write_json(data: Any, out_path: str) -> None:
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def _print_warnings(warnings: Any) -> None:
    for w in warnings:
        print(f"Warning: {w}")


async def _cmd_locations(args: argparse.Namespace) -> int:
    locations = await get_locations()
    if not locations:
        print("No locations found.")
        return 0
    for loc in locations:
        count = f" ({loc.count})" if loc.count is not None else ""
        address = f" | {loc.address}" if loc.address else ""
        print(f"{loc.id} | {loc.name}{count}{address}")
    return 0


async def _cmd_courses(args: argparse.Namespace) -> int:
    result = await get_courses(args.location, include_details=args.details, batch_size=args.batch_size)

    if args.out:
        _write_json(result.to_dict(), args.out)
        print(f"Wrote {result.count} courses to: {args.out}")
    else:
        for c in result.courses[:MAX_ROWS]:
            flag = "" if c.available else " [full]"
            print(f"{c.id or '-'} | {_when(c.start)} | {c.title}{flag}")
        if result.count > MAX_ROWS:
            print(f"... and {result.count - MAX_ROWS} more courses")

    summary = f"Courses: {result.count}"
    if result.expected_count is not None:
        summary += f" (site shows {result.expected_count})"
    print(summary)
    if result.details_stats is not None:
        s = result.details_stats
        print(f"Details: {s.succeeded}/{s.attempted} fetched, {s.failed} failed, {s.cache_hits} cache hits")
    _print_warnings(result.warnings)
    return 0


async def _cmd_details(args: argparse.Namespace) -> int:
    details = await fetch_course_details(args.course_id, location_id=args.location)

    if args.json:
        print(json.dumps(details.to_dict(), ensure_ascii=False, indent=2))
        return 0

    print(details.title)
    print(f"Start: {_when(details.start)}")
    if details.end is not None:
        print(f"End:   {_when(details.end)}")
    if details.duration_text:
        print(f"Dauer: {details.duration_text}")
    where = ", ".join(x for x in (details.location.name, details.location.room, details.location.address) if x)
    if where:
        print(f"Ort:   {where}")
    print(f"Termine: {details.number_of_dates}")
    for s in details.schedule:
        room = f" ({s.room})" if s.room else ""
        print(f"- {format_german_datetime(s.start)} - {s.end.astimezone(s.start.tzinfo):%H:%M} Uhr{room}")
    return 0


async def _cmd_export(args: argparse.Namespace) -> int:
    out_path = (args.out or "").strip()
    if not out_path:
        print("Please provide output .ics path.")
        return 1

    result = await get_courses(args.location, include_details=args.details, batch_size=args.batch_size)
    if not result.courses:
        print("No courses to export.")
        return 0

    n = export_courses_to_ics(result.courses, out_path, location=result.location)
    print(f"Exported {n} events to: {out_path}")
    _print_warnings(result.warnings)
    return 0


async def _cmd_health(args: argparse.Namespace) -> int:
    status = await check_website_health()
    code = status.status_code if status.status_code is not None else "-"
    print(f"{status.status}: {status.message} (HTTP {code}, {status.response_time * 1000:.0f} ms)")
    return 0 if status.status != "unhealthy" else 1


COMMANDS = {
    "locations": _cmd_locations,
    "courses": _cmd_courses,
    "details": _cmd_details,
    "export": _cmd_export,
    "health": _cmd_health,
}


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="vhskalender", description="VHS Vorpommern-Greifswald course scraper")
    parser.add_argument("--log-level", type=str, default=settings.log_level, help="Logging level (default: %(default)s)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("locations", help="List course locations")

    p_courses = sub.add_parser("courses", help="List courses of one location")
    p_courses.add_argument("location", type=str, help="Location id (e.g. anklam)")
    p_courses.add_argument("--details", action="store_true", help="Fetch every course detail page")
    p_courses.add_argument("--batch-size", type=int, default=None, help="Initial detail batch size")
    p_courses.add_argument("--out", type=str, default=None, help="Write JSON to this file instead of printing")

    p_details = sub.add_parser("details", help="Show one course detail page")
    p_details.add_argument("course_id", type=str, help="Course id (e.g. 252A21003)")
    p_details.add_argument("--location", type=str, default=None, help="Location id used to resolve the address")
    p_details.add_argument("--json", action="store_true", help="Print JSON")

    p_export = sub.add_parser("export", help="Export courses of one location to .ics")
    p_export.add_argument("location", type=str, help="Location id (e.g. anklam)")
    p_export.add_argument("out", type=str, help="Output file path (e.g. anklam.ics)")
    p_export.add_argument("--details", action="store_true", help="Include every session from the detail pages")
    p_export.add_argument("--batch-size", type=int, default=None, help="Initial detail batch size")

    sub.add_parser("health", help="Check whether the course website is reachable")

    return parser


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    handler = COMMANDS.get(args.command)
    if handler is None:
        raise SystemExit(2)

    try:
        code = asyncio.run(handler(args))
    except CourseScraperError as error:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {error}")
        raise SystemExit(1)

    raise SystemExit(code)
