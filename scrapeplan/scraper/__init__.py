"""Scraper package: page fetch, DOM arena and prompt-side HTML compression."""

from scrapeplan.scraper.compressor import compress_html_for_llm
from scrapeplan.scraper.dom import DomArena, DomNode, InvalidSelectorError
from scrapeplan.scraper.fetcher import fetch_page
from scrapeplan.scraper.models import PageSnapshot

__all__ = [
    "fetch_page",
    "compress_html_for_llm",
    "DomArena",
    "DomNode",
    "InvalidSelectorError",
    "PageSnapshot",
]
