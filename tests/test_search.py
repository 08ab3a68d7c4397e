"""
Tests for the search flow: form discovery, request body, pagination and the
crawl of all result pages with one session.

The network is replaced by patching vhskalender.search.fetch_html.
"""

import unittest
from unittest.mock import AsyncMock, patch

from vhskalender.errors import HttpError, InvalidArgumentError, MissingActionError, NotFoundError
from vhskalender.model import CourseSummary
from vhskalender.search import (
    build_course_search_request,
    course_search_headers,
    crawl_result_pages,
    extract_pagination_links,
    extract_search_form_url,
    extract_selected_location_count,
    merge_summaries,
)
from vhskalender.session import SessionStore

PAGE_URL = "https://www.vhs-vg.de/kurse"

SEARCH_HTML = """
<html><body>
  <div>
    <div class="hauptseite_kurse">
      <div>
        <div class="kw-kursuebersicht">
          <div class="kw-nurbuchbare">
            <form method="post" action="/kurse?kathaupt=1&amp;cHash=abc123#kw-filter"></form>
          </div>
        </div>
      </div>
    </div>
  </div>
</body></html>
"""

NO_ACTION_HTML = """
<html><body><div>
  <div class="hauptseite_kurse">
    <div><div class="kw-kursuebersicht">
      <div class="kw-nurbuchbare"><form method="post"></form></div>
    </div></div>
  </div>
</div></body></html>
"""

PAGINATION_HTML = """
<div class="kw-paginationleiste mt-4 clearfix">
  <nav>
    <ul class="pagination">
      <li class="page-item active"><span class="page-link">1</span></li>
      <li class="page-item"><a class="blaetternindex page-link" href="/kurse?browse=forward&amp;kathaupt=1&amp;knr=252A41701&amp;cHash=0c47">2</a></li>
      <li class="page-item"><a class="blaetternindex page-link" href="/kurse?browse=forward&amp;kathaupt=1&amp;knr=252A40615&amp;cHash=0545">3</a></li>
      <li class="page-item"><a class="page-link" title="nächste Seite" href="/kurse?browse=forward&amp;kathaupt=1&amp;knr=252A41701&amp;cHash=0c47"><i class="bi bi-chevron-right"></i></a></li>
    </ul>
  </nav>
</div>
<div id="kw-filter-ortvalues">
  <ul>
    <li><label for="o1">Anklam (66)</label></li>
    <li><label for="o2">Greifswald (200)</label></li>
  </ul>
</div>
"""

PAGE_2 = "https://www.vhs-vg.de/kurse?browse=forward&kathaupt=1&knr=252A41701&cHash=0c47"
PAGE_3 = "https://www.vhs-vg.de/kurse?browse=forward&kathaupt=1&knr=252A40615&cHash=0545"


class TestSearchForm(unittest.TestCase):
    def test_absolute_action_url(self) -> None:
        self.assertEqual(
            extract_search_form_url(SEARCH_HTML, PAGE_URL),
            "https://www.vhs-vg.de/kurse?kathaupt=1&cHash=abc123#kw-filter",
        )

    def test_missing_form(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            extract_search_form_url("<html><body><div>No form here</div></body></html>", PAGE_URL)
        self.assertIn("Search form not found", str(ctx.exception))

    def test_missing_action(self) -> None:
        with self.assertRaises(MissingActionError) as ctx:
            extract_search_form_url(NO_ACTION_HTML, PAGE_URL)
        self.assertIn("Form action URL missing", str(ctx.exception))


class TestSearchRequest(unittest.TestCase):
    def test_body_for_anklam(self) -> None:
        self.assertEqual(
            build_course_search_request("Anklam"),
            "katortfilter%5B%5D=Anklam"
            "&katortfilter%5B%5D=__reset__"
            "&katwotagefilter%5B%5D=__reset__"
            "&katzeitraumfilter=__reset__"
            "&katkeinebegonnenenfilter%5B%5D=1"
            "&katkeinebegonnenenfilter%5B%5D=__reset__"
            "&katneuerkursfilter%5B%5D=__reset__"
            "&katnichtvollefilter%5B%5D=1"
            "&katnichtvollefilter%5B%5D=__reset__",
        )

    def test_location_name_is_encoded(self) -> None:
        body = build_course_search_request("Heringsdorf (Usedom)")
        self.assertTrue(body.startswith("katortfilter%5B%5D=Heringsdorf+%28Usedom%29&"))

    def test_headers(self) -> None:
        self.assertEqual(course_search_headers()["Content-Type"], "application/x-www-form-urlencoded")

    def test_empty_location_rejected(self) -> None:
        for name in ("", "   "):
            with self.subTest(name=name):
                with self.assertRaises(InvalidArgumentError):
                    build_course_search_request(name)


class TestPagination(unittest.TestCase):
    def test_links_are_absolute_and_unique(self) -> None:
        urls = extract_pagination_links(PAGINATION_HTML, "https://www.vhs-vg.de/")
        self.assertEqual(urls, [PAGE_2, PAGE_3])

    def test_extraction_is_idempotent(self) -> None:
        first = extract_pagination_links(PAGINATION_HTML, "https://www.vhs-vg.de/")
        self.assertEqual(first, extract_pagination_links(PAGINATION_HTML, "https://www.vhs-vg.de/"))

    def test_no_pagination(self) -> None:
        self.assertEqual(extract_pagination_links("<div>No pagination</div>", "https://www.vhs-vg.de/"), [])

    def test_selected_location_count(self) -> None:
        self.assertEqual(extract_selected_location_count(PAGINATION_HTML, "Anklam"), 66)
        self.assertIsNone(extract_selected_location_count(PAGINATION_HTML, "Pasewalk"))


class TestMergeSummaries(unittest.TestCase):
    def _course(self, cid: str, url: str, title: str) -> CourseSummary:
        return CourseSummary(
            id=cid, title=title, detail_url=url, start=None, location_text="", available=True, bookable=True
        )

    def test_first_seen_wins(self) -> None:
        a = self._course("252A1", "https://x/1", "first")
        b = self._course("252A1", "https://x/1", "second")
        c = self._course("", "https://x/2", "no id")
        d = self._course("", "https://x/2", "no id again")
        merged = merge_summaries([[a, c], [b, d]])
        self.assertEqual([m.title for m in merged], ["first", "no id"])


class TestCrawlResultPages(unittest.IsolatedAsyncioTestCase):
    async def test_fetches_every_page_with_the_same_session(self) -> None:
        pages = {PAGE_URL: SEARCH_HTML, PAGE_2: "<p>page 2</p>", PAGE_3: "<p>page 3</p>"}
        form_url = "https://www.vhs-vg.de/kurse?kathaupt=1&cHash=abc123#kw-filter"
        calls = []

        async def fake_fetch(url, *, method="GET", data=None, headers=None, session=None, settings=None, **_):
            calls.append((method, url, session))
            if method == "POST":
                self.assertEqual(url, form_url)
                self.assertEqual(data, build_course_search_request("Anklam"))
                return PAGINATION_HTML
            return pages[url]

        session = SessionStore()
        with patch("vhskalender.search.fetch_html", new=AsyncMock(side_effect=fake_fetch)):
            result = await crawl_result_pages("Anklam", session)

        self.assertEqual(result.form_url, form_url)
        self.assertEqual(result.base_href, "https://www.vhs-vg.de/")
        self.assertEqual(result.pages, [PAGINATION_HTML, "<p>page 2</p>", "<p>page 3</p>"])
        self.assertEqual(result.warnings, [])
        self.assertEqual([m for m, _, _ in calls], ["GET", "POST", "GET", "GET"])
        self.assertTrue(all(s is session for _, _, s in calls))

    async def test_failed_page_becomes_warning(self) -> None:
        async def fake_fetch(url, *, method="GET", **_):
            if url == PAGE_URL:
                return SEARCH_HTML
            if method == "POST":
                return PAGINATION_HTML
            if url == PAGE_3:
                raise HttpError(500, url, "boom")
            return "<p>page 2</p>"

        with patch("vhskalender.search.fetch_html", new=AsyncMock(side_effect=fake_fetch)):
            result = await crawl_result_pages("Anklam", SessionStore())

        self.assertEqual(len(result.pages), 2)
        self.assertEqual(len(result.warnings), 1)
        self.assertIn(PAGE_3, result.warnings[0])

    async def test_missing_form_aborts(self) -> None:
        with patch("vhskalender.search.fetch_html", new=AsyncMock(return_value="<html></html>")):
            with self.assertRaises(NotFoundError):
                await crawl_result_pages("Anklam", SessionStore())


if __name__ == "__main__":
    unittest.main()
