"""Tests for the page fetcher.

Mocking strategy:
- ``respx`` patches ``httpx`` at the transport layer so no real network calls
  are made during ``fetch_page`` tests.
- ``time.sleep`` is patched to avoid real delays from ``settings.rate_limit_delay``.
- Playwright is not exercised (requires a browser install); the SPA path is
  covered by unit tests against ``_is_spa`` and by patching the renderer.
"""

from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest
import respx

from conftest import BASE_URL, NEWS_LIST_HTML
from scrapeplan.scraper.fetcher import _is_spa, fetch_page
from scrapeplan.scraper.models import PageSnapshot

_SPA_HTML = """\
<!DOCTYPE html>
<html>
<head><title>Gemeinde App</title></head>
<body>
  <div id="app"></div>
  <script src="/bundle.js"></script>
</body>
</html>
"""


class TestIsSpa:
    def test_detects_app_root_div(self) -> None:
        assert _is_spa(_SPA_HTML) is True

    def test_detects_next_data(self) -> None:
        html = "<html><body><script>window.__NEXT_DATA__ = {}</script></body></html>"
        assert _is_spa(html) is True

    def test_detects_angular(self) -> None:
        html = '<html ng-version="17.0.0"><body>Inhalt</body></html>'
        assert _is_spa(html) is True

    def test_script_heavy_page_with_little_text(self) -> None:
        html = "<html><body><script>" + "var x = 1;" * 300 + "</script><p>Laden …</p></body></html>"
        assert _is_spa(html) is True

    def test_plain_listing_page(self) -> None:
        assert _is_spa(NEWS_LIST_HTML) is False


class TestFetchPage:
    @respx.mock
    def test_returns_snapshot(self) -> None:
        respx.get(BASE_URL).mock(return_value=httpx.Response(200, text=NEWS_LIST_HTML))
        with patch("scrapeplan.scraper.fetcher.time.sleep"):
            page = fetch_page(BASE_URL)
        assert isinstance(page, PageSnapshot)
        assert page.url == BASE_URL
        assert page.status_code == 200
        assert "news-list" in page.html

    @respx.mock
    def test_snapshot_url_follows_redirects(self) -> None:
        respx.get("https://x.de/news").mock(
            return_value=httpx.Response(301, headers={"Location": BASE_URL})
        )
        respx.get(BASE_URL).mock(return_value=httpx.Response(200, text=NEWS_LIST_HTML))
        with patch("scrapeplan.scraper.fetcher.time.sleep"):
            page = fetch_page("https://x.de/news")
        assert page.url == BASE_URL

    @respx.mock
    def test_http_error_raises(self) -> None:
        respx.get("https://x.de/missing").mock(return_value=httpx.Response(404))
        with patch("scrapeplan.scraper.fetcher.time.sleep"):
            with pytest.raises(httpx.HTTPStatusError):
                fetch_page("https://x.de/missing")

    @respx.mock
    def test_spa_page_is_rendered(self) -> None:
        respx.get("https://x.de/app").mock(return_value=httpx.Response(200, text=_SPA_HTML))
        rendered = PageSnapshot(url="https://x.de/app", html=NEWS_LIST_HTML)
        with patch("scrapeplan.scraper.fetcher.time.sleep"), patch(
            "scrapeplan.scraper.fetcher._fetch_with_playwright", return_value=rendered
        ) as render:
            page = fetch_page("https://x.de/app")
        render.assert_called_once_with("https://x.de/app")
        assert page is rendered
