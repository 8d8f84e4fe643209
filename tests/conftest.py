"""Shared fixtures: in-memory plan store, fake completion adapter, sample pages."""

from __future__ import annotations

import sqlite3
from typing import Generator, Union

import pytest

from scrapeplan.db.connection import get_connection
from scrapeplan.db.migrations import init_db
from scrapeplan.llm.adapter import CompletionError, CompletionRequest, CompletionResponse
from scrapeplan.scraper.models import PageSnapshot
from scrapeplan.workflow.execution import RunOutcome

BASE_URL = "https://www.example-gemeinde.de/aktuelles/index.htm"
EXAMPLE_URL = "https://www.example-gemeinde.de/aktuelles/a1.htm"

NEWS_LIST_HTML = """\
<html>
<head><title>Aktuelles</title></head>
<body>
  <header>
    <nav>
      <a href="/impressum">Impressum</a>
      <a href="/kontakt">Kontakt</a>
      <a href="/datenschutz">Datenschutz</a>
    </nav>
  </header>
  <main>
    <h1>Aktuelles aus der Gemeinde</h1>
    <ul class="news-list">
      <li><a href="/aktuelles/a1.htm">Gemeinderat beschließt neuen Haushalt</a></li>
      <li><a href="/aktuelles/a2.htm">Sitzung des Bauausschusses im Mai</a></li>
      <li><a href="/aktuelles/a3.htm">Neue Öffnungszeiten im Bürgerbüro</a></li>
      <li><a href="/aktuelles/a4.htm">Sommerfest auf dem Marktplatz geplant</a></li>
      <li><a href="/aktuelles/a5.htm">Baustelle in der Hauptstraße beendet</a></li>
    </ul>
  </main>
  <footer><a href="/sitemap">Sitemap</a></footer>
</body>
</html>
"""

NEXT_LINK_HTML = """\
<html>
<body>
  <div class="teaser-list">
    <article><a href="/news/eins">Erste Meldung mit ausreichend langem Titel</a></article>
    <article><a href="/news/zwei">Zweite Meldung mit ausreichend langem Titel</a></article>
    <article><a href="/news/drei">Dritte Meldung mit ausreichend langem Titel</a></article>
  </div>
  <nav class="paging">
    <a href="/news?page=1">1</a>
    <a href="/news?page=2" rel="next">Weiter</a>
  </nav>
</body>
</html>
"""


def news_page() -> PageSnapshot:
    return PageSnapshot(url=BASE_URL, html=NEWS_LIST_HTML)


DETAIL_HTML = "<html><body><h1>Gemeinderat tagt</h1><p>Die Sitzung beginnt um 19 Uhr.</p></body></html>"


async def fake_fetch(url: str) -> PageSnapshot:
    """Serve the news list and its detail pages; every other URL is unreachable."""
    if url == BASE_URL:
        return news_page()
    if url.startswith("https://www.example-gemeinde.de/aktuelles/a"):
        return PageSnapshot(url=url, html=DETAIL_HTML)
    raise ConnectionError(f"unreachable: {url}")


async def productive_runner(plan) -> RunOutcome:
    return RunOutcome(
        items=[{"url": EXAMPLE_URL, "sourcePage": BASE_URL}],
        pages_processed=1,
    )


async def empty_runner(plan) -> RunOutcome:
    return RunOutcome(pages_processed=1, errors=["https://x.de: timeout"])


class FakeAdapter:
    """Stand-in for ``CompletionAdapter``: replays canned answers in order.

    Each answer is either a string (returned as the completion content) or
    an exception instance (raised).  When the answers run out the last one
    is repeated.
    """

    def __init__(self, *answers: Union[str, Exception]) -> None:
        self.answers = list(answers)
        self.requests: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return CompletionResponse(content=answer, provider="fake", model="fake-model")


@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    """Fresh in-memory plan store."""
    connection = get_connection(db_path=":memory:")
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture()
def failing_adapter() -> FakeAdapter:
    return FakeAdapter(CompletionError("provider down"))
