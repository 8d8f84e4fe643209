"""HTTP fetcher with optional Playwright fallback for JS-rendered pages."""

from __future__ import annotations

import re
import time

import httpx
from loguru import logger

from scrapeplan.config import settings
from scrapeplan.scraper.models import PageSnapshot

# ---------------------------------------------------------------------------
# SPA / JS-rendered page detection heuristics
# ---------------------------------------------------------------------------
_SPA_PATTERNS = [
    re.compile(r'<div[^>]+id=["\'](?:root|app|__next)["\']', re.IGNORECASE),
    re.compile(r"window\.__NEXT_DATA__", re.IGNORECASE),
    re.compile(r"window\.__NUXT__", re.IGNORECASE),
    re.compile(r"ng-version=", re.IGNORECASE),
    re.compile(r"data-reactroot", re.IGNORECASE),
]

_DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (compatible; ScrapePlan-Bot/1.0; +https://github.com/scrapeplan)"
    ),
    "Accept-Language": "de-DE,de;q=0.9,en;q=0.8",
}


def _is_spa(html: str) -> bool:
    """Return ``True`` if *html* looks like a JavaScript SPA that needs rendering."""
    for pattern in _SPA_PATTERNS:
        if pattern.search(html):
            return True
    # Very little visible text relative to the document size.
    no_scripts = re.sub(
        r"<(script|style)[^>]*>.*?</(script|style)>", "", html,
        flags=re.IGNORECASE | re.DOTALL,
    )
    stripped = re.sub(r"<[^>]+>", "", no_scripts).strip()
    return len(html) > 2000 and len(stripped) < 200


def _fetch_with_playwright(url: str) -> PageSnapshot:
    """Render *url* with a headless Chromium browser and return its HTML.

    Playwright is imported lazily so tests that don't exercise the SPA path
    don't need a browser installed.
    """
    from playwright.sync_api import sync_playwright  # noqa: PLC0415

    with sync_playwright() as pw:
        browser = pw.chromium.launch(headless=True)
        page = browser.new_page()
        page.goto(
            url,
            timeout=int(settings.request_timeout * 1000),
            wait_until="networkidle",
        )
        html = page.content()
        browser.close()

    return PageSnapshot(url=url, html=html)


def fetch_page(url: str) -> PageSnapshot:
    """Fetch *url* and return an immutable :class:`PageSnapshot`.

    Uses ``httpx`` for standard pages and falls back to a headless Playwright
    browser when a JavaScript SPA fingerprint is detected.  The snapshot URL
    is the final URL after redirects so relative links resolve correctly.

    Raises:
        httpx.HTTPStatusError: If the server returns a 4xx/5xx status code.
    """
    time.sleep(settings.rate_limit_delay)

    with httpx.Client(
        headers=_DEFAULT_HEADERS,
        timeout=settings.request_timeout,
        follow_redirects=True,
    ) as client:
        response = client.get(url)
        response.raise_for_status()
        snapshot = PageSnapshot(
            url=str(response.url),
            html=response.text,
            status_code=response.status_code,
        )

    logger.debug(f"[FETCH] {url} -> HTTP {snapshot.status_code} ({len(snapshot.html)} chars)")

    if _is_spa(snapshot.html):
        logger.info(f"[FETCH] SPA fingerprint on {url}, rendering with Playwright")
        snapshot = _fetch_with_playwright(snapshot.url)

    return snapshot
