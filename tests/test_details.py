"""
Tests for course detail pages: parsing, single fetch, batch policy and the
batch fetch over a session pool.
"""

import unittest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from vhskalender.address import GREIFSWALD_VHS
from vhskalender.batch import ItemOutcome
from vhskalender.config import Settings
from vhskalender.dates import BERLIN
from vhskalender.details import (
    AdaptiveBatchPolicy,
    build_course_url,
    course_id_from_url,
    fetch_course_details,
    fetch_course_details_batch,
    validate_course_id,
)
from vhskalender.errors import HttpError, InvalidArgumentError
from vhskalender.parse import parse_course_details
from vhskalender.session import SessionPool


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


HTML_WITH_JSON_LD = """
<html><head>
<script type="application/ld+json">
{
  "@context": "https://schema.org",
  "@type": "Course",
  "name": "telc-Pr\\u00fcfung Deutsch B2",
  "description": "<p>Nachweis der Deutschkenntnisse auf Niveau B2.</p>",
  "hasCourseInstance": [{
    "@type": "CourseInstance",
    "startDate": "2025-11-15",
    "location": {
      "name": "VHS in Pasewalk",
      "address": {
        "@type": "PostalAddress",
        "streetAddress": "Gemeindewiesenweg 8",
        "postalCode": "17309",
        "addressLocality": "Pasewalk"
      }
    }
  }]
}
</script>
</head>
<body>
<h1>telc-Prüfung Deutsch B2</h1>
<span class="ampelicon buchbar"></span>
<dl>
  <dt>Beginn:</dt><dd>Sa., 15.11.2025</dd>
  <dt>Dauer:</dt><dd>1 Termin</dd>
</dl>
<table id="kw-kurstage">
  <tr><th>Tag</th><th>Datum</th><th>Uhrzeit</th><th>Ort</th><th>Raum</th></tr>
  <tr><td>Samstag</td><td>15.11.2025</td><td>09:00 - 16:00 Uhr</td><td>VHS in Pasewalk</td><td>Raum 302</td></tr>
</table>
<ul class="termine"><li>Samstag • 15.11.2025 • 09:00 - 16:00 Uhr • VHS in Pasewalk • Raum 302</li></ul>
</body></html>
"""

HTML_WITHOUT_JSON_LD = """
<html><head><title>Anderer Kurs</title></head>
<body>
<h1>Excel Grundlagen</h1>
<div class="kw-kurs-info-text">
  <p>Einführung in Excel.</p>
  <p>Sie lernen <b>Formeln</b>, Funktionen.<br>Und Diagramme.</p>
  <span class="visually-hidden">versteckt</span>
  <script>var x = 1;</script>
</div>
<dl>
  <dt>Beginn:</dt><dd>Montag, 10.11.2025, um 17:00 Uhr</dd>
  <dt>Dauer:</dt><dd>5 Termine</dd>
  <dt>Termine:</dt><dd>5</dd>
  <dt>Kursort:</dt><dd>VHS in Greifswald</dd>
</dl>
<table id="kw-kurstage">
  <tr><td>Montag • 10.11.2025 • 17:00 - 20:15 Uhr • VHS in Greifswald • Raum 12</td></tr>
  <tr><td>Mittwoch • 12.11.2025 • 17:00 - 20:15 Uhr • VHS in Greifswald • Raum 12</td></tr>
  <tr><td>Termin nach Absprache</td></tr>
</table>
</body></html>
"""

HTML_TIMED_JSON_LD_ONLY = """
<html><head>
<script type="application/ld+json">
{"@graph": [
  {"@type": "WebPage", "name": "Seite"},
  {"@type": "EducationalOccupationalProgram", "name": "Yoga",
   "hasCourseInstance": {"startDate": "2025-11-15T09:00:00+01:00"}}
]}
</script>
</head>
<body><h1>vhs Kurs: Yoga</h1><dl><dt>Beginn:</dt><dd>Sa., 15.11.2025</dd></dl></body></html>
"""

HTML_SHORT_SESSION = """
<h1>Test Course</h1>
<div class="kw-kurs-info-text">Course description</div>
<table id="kw-kurstage">
  <tr><td>15.01.2024 • 10:00-12:30 • Room A</td></tr>
</table>
"""


class TestCourseIds(unittest.TestCase):
    def test_validate(self) -> None:
        self.assertEqual(validate_course_id(" 252A21003 "), "252A21003")
        self.assertEqual(validate_course_id("252p40405"), "252p40405")
        for bad in ("", "TEST123", "252A2100", "../252A21003"):
            with self.subTest(bad=bad):
                with self.assertRaises(InvalidArgumentError):
                    validate_course_id(bad)

    def test_course_url(self) -> None:
        self.assertEqual(build_course_url("252A21003"), "https://www.vhs-vg.de/kurse/kurs/252A21003")
        self.assertEqual(
            build_course_url("252A21003", Settings(base_url="http://localhost:8080")),
            "http://localhost:8080/kurse/kurs/252A21003",
        )

    def test_id_from_url(self) -> None:
        self.assertEqual(course_id_from_url("https://www.vhs-vg.de/kurse/kurs/Hatha-Yoga/252A30106"), "252A30106")
        self.assertIsNone(course_id_from_url("https://www.vhs-vg.de/kurse/kurs/Hatha-Yoga"))


class TestParseCourseDetails(unittest.TestCase):
    def test_json_ld_page(self) -> None:
        d = parse_course_details(HTML_WITH_JSON_LD, "252P40405", location_id="pasewalk")
        self.assertEqual(d.id, "252P40405")
        self.assertEqual(d.title, "vhs Kurs: telc-Prüfung Deutsch B2")
        self.assertEqual(d.description, "Nachweis der Deutschkenntnisse auf Niveau B2.")
        self.assertEqual(d.location.name, "VHS in Pasewalk")
        self.assertEqual(d.location.room, "Raum 302")
        self.assertEqual(d.location.address, "Gemeindewiesenweg 8, 17309, Pasewalk")
        self.assertEqual(d.number_of_dates, 1)
        self.assertEqual(d.duration_text, "1 Termin")
        self.assertTrue(d.bookable)

    def test_schedule_table_is_the_only_session_source(self) -> None:
        d = parse_course_details(HTML_WITH_JSON_LD, "252P40405")
        self.assertEqual(len(d.schedule), 1)

    def test_timed_schedule_beats_date_only_sources(self) -> None:
        d = parse_course_details(HTML_WITH_JSON_LD, "252P40405")
        self.assertEqual(d.start.astimezone(timezone.utc), utc(2025, 11, 15, 8, 0))
        self.assertEqual(d.end.astimezone(timezone.utc), utc(2025, 11, 15, 15, 0))

    def test_page_without_json_ld(self) -> None:
        d = parse_course_details(HTML_WITHOUT_JSON_LD, "252A21003", location_id="greifswald")
        self.assertEqual(d.title, "vhs Kurs: Excel Grundlagen")
        self.assertEqual(d.number_of_dates, 5)
        self.assertEqual(len(d.schedule), 2)
        self.assertEqual(d.location.name, "VHS in Greifswald")
        self.assertEqual(d.location.room, "Raum 12")
        self.assertEqual(d.location.address, GREIFSWALD_VHS)
        self.assertFalse(d.bookable)
        self.assertEqual(d.start.astimezone(timezone.utc), utc(2025, 11, 10, 16, 0))
        self.assertEqual(d.end.astimezone(timezone.utc), utc(2025, 11, 10, 19, 15))

    def test_description_is_reconstructed_text(self) -> None:
        d = parse_course_details(HTML_WITHOUT_JSON_LD, "252A21003")
        self.assertEqual(
            d.description.splitlines(),
            ["Einführung in Excel.", "", "Sie lernen Formeln, Funktionen.", "Und Diagramme."],
        )
        self.assertNotIn("versteckt", d.description)
        self.assertNotIn("var x", d.description)

    def test_timed_json_ld_beats_date_only_label(self) -> None:
        d = parse_course_details(HTML_TIMED_JSON_LD_ONLY, "252A30106")
        self.assertEqual(d.start.astimezone(timezone.utc), utc(2025, 11, 15, 8, 0))
        self.assertIsNone(d.end)
        self.assertEqual(d.title, "vhs Kurs: Yoga")
        self.assertEqual(d.schedule, ())

    def test_schedule_header_is_not_a_venue_label(self) -> None:
        html = """
        <h1>Töpfern</h1>
        <table id="kw-kurstage">
          <tr><th>Tag</th><th>Datum</th><th>Uhrzeit</th><th>Ort</th><th>Raum</th></tr>
          <tr><td>Samstag</td><td>15.11.2025</td><td>09:00 - 12:00 Uhr</td><td>VHS in Pasewalk</td><td>Raum 302</td></tr>
        </table>
        """
        d = parse_course_details(html, "252P40001", location_id="pasewalk")
        self.assertEqual(d.location.name, "VHS in Pasewalk")
        self.assertEqual(d.location.room, "Raum 302")

    def test_label_split_from_value_beats_date_only_json_ld(self) -> None:
        html = """
        <script type="application/ld+json">
        {"@type": "Course", "name": "Spanisch", "hasCourseInstance": {"startDate": "2025-11-10"}}
        </script>
        <h1>Spanisch</h1>
        <p><strong>Beginn:</strong> Mo., 10.11.2025, um 17:00 Uhr</p>
        """
        d = parse_course_details(html, "252A40002")
        local = d.start.astimezone(BERLIN)
        self.assertEqual(local.date(), date(2025, 11, 10))
        self.assertEqual((local.hour, local.minute), (17, 0))

    def test_end_follows_first_session_duration(self) -> None:
        d = parse_course_details(HTML_SHORT_SESSION, "252A00001")
        self.assertEqual(d.end - d.start, timedelta(hours=2, minutes=30))
        self.assertEqual(d.description, "Course description")

    def test_no_schedule_means_no_end(self) -> None:
        d = parse_course_details("<h1>Test Course</h1>", "252A00001")
        self.assertIsNone(d.start)
        self.assertIsNone(d.end)
        self.assertEqual(d.number_of_dates, 0)


class TestFetchCourseDetails(unittest.IsolatedAsyncioTestCase):
    async def test_fetches_course_page(self) -> None:
        fetch = AsyncMock(return_value=HTML_WITHOUT_JSON_LD)
        with patch("vhskalender.details.fetch_html", new=fetch):
            d = await fetch_course_details("252A21003")
        self.assertIn("Excel", d.title)
        self.assertEqual(fetch.await_args.args[0], "https://www.vhs-vg.de/kurse/kurs/252A21003")

    async def test_http_error_propagates(self) -> None:
        fetch = AsyncMock(side_effect=HttpError(404, "https://www.vhs-vg.de/kurse/kurs/252A99999"))
        with patch("vhskalender.details.fetch_html", new=fetch):
            with self.assertRaises(HttpError):
                await fetch_course_details("252A99999")

    async def test_invalid_id_never_hits_the_network(self) -> None:
        fetch = AsyncMock()
        with patch("vhskalender.details.fetch_html", new=fetch):
            with self.assertRaises(InvalidArgumentError):
                await fetch_course_details("TEST123")
        fetch.assert_not_awaited()


def outcomes(ok: int, failed: int, latency: float) -> list:
    out = [ItemOutcome(item=i, index=i, value=i, duration_seconds=latency) for i in range(ok)]
    out += [
        ItemOutcome(item=i, index=i, error=RuntimeError("x"), duration_seconds=latency)
        for i in range(ok, ok + failed)
    ]
    return out


class TestAdaptiveBatchPolicy(unittest.TestCase):
    def test_shrinks_on_errors(self) -> None:
        policy = AdaptiveBatchPolicy(ceiling=20)
        self.assertEqual(policy.next_size(outcomes(7, 3, 0.1), 20), 15)

    def test_shrinks_on_latency(self) -> None:
        policy = AdaptiveBatchPolicy(ceiling=20)
        self.assertEqual(policy.next_size(outcomes(10, 0, 1.5), 20), 15)

    def test_never_below_one(self) -> None:
        policy = AdaptiveBatchPolicy(ceiling=20)
        self.assertEqual(policy.next_size(outcomes(0, 1, 0.1), 1), 1)

    def test_grows_when_fast_and_clean(self) -> None:
        policy = AdaptiveBatchPolicy(ceiling=20)
        self.assertEqual(policy.next_size(outcomes(10, 0, 0.1), 10), 11)
        self.assertEqual(AdaptiveBatchPolicy(ceiling=40).next_size(outcomes(20, 0, 0.1), 20), 22)

    def test_growth_never_exceeds_ten_percent(self) -> None:
        policy = AdaptiveBatchPolicy(ceiling=20)
        for size in (1, 3, 5, 9):
            with self.subTest(size=size):
                self.assertEqual(policy.next_size(outcomes(size, 0, 0.1), size), size)

    def test_growth_is_capped_by_ceiling(self) -> None:
        policy = AdaptiveBatchPolicy(ceiling=20)
        self.assertEqual(policy.next_size(outcomes(19, 0, 0.1), 19), 20)
        self.assertEqual(policy.next_size(outcomes(20, 0, 0.1), 20), 20)

    def test_holds_in_between(self) -> None:
        policy = AdaptiveBatchPolicy(ceiling=20)
        self.assertEqual(policy.next_size(outcomes(10, 0, 0.8), 10), 10)
        self.assertEqual(policy.next_size(outcomes(9, 1, 0.1), 10), 10)

    def test_callback_records_history(self) -> None:
        policy = AdaptiveBatchPolicy(ceiling=20)
        self.assertEqual(policy(0, outcomes(10, 0, 0.1), 0.5, 10), 11)
        self.assertEqual(policy.history, [11])


class TestFetchCourseDetailsBatch(unittest.IsolatedAsyncioTestCase):
    async def test_partial_failure_and_duplicates(self) -> None:
        async def fake_fetch(url, **_):
            if url.endswith("252A00002"):
                raise HttpError(404, url)
            return HTML_WITHOUT_JSON_LD

        fetch = AsyncMock(side_effect=fake_fetch)
        cfg = Settings(detail_concurrency=2, detail_batch_size=2)
        with patch("vhskalender.details.fetch_html", new=fetch):
            result = await fetch_course_details_batch(
                ["252A00001", "252A00002", "252a00001"], pool=SessionPool(2), settings=cfg
            )

        self.assertEqual(set(result.details), {"252A00001", "252a00001"})
        self.assertEqual(list(result.errors), ["252A00002"])
        self.assertIsInstance(result.errors["252A00002"], HttpError)
        self.assertEqual(result.stats.attempted, 3)
        self.assertEqual(result.stats.succeeded, 2)
        self.assertEqual(result.stats.failed, 1)
        self.assertEqual(result.stats.cache_hits, 1)
        self.assertEqual(fetch.await_count, 2)

    async def test_same_course_uses_same_session(self) -> None:
        sessions = []

        async def fake_fetch(url, session=None, **_):
            sessions.append((url, session))
            return HTML_SHORT_SESSION

        pool = SessionPool(4)
        with patch("vhskalender.details.fetch_html", new=AsyncMock(side_effect=fake_fetch)):
            await fetch_course_details_batch(["252A00001", "252A00003"], pool=pool)

        for url, session in sessions:
            self.assertIs(session, pool.for_key(url.rsplit("/", 1)[-1]))


if __name__ == "__main__":
    unittest.main()
