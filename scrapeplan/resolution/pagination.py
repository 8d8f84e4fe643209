"""Pagination resolution: find the "next page" control of a listing page.

Tiers, first success wins:

1. Heuristic families of selectors (semantic ``rel``/``aria-label``
   attributes, well-known pagination classes, page-ish ``href`` patterns).
2. If tier 1 found links, the model may sharpen the next-link selector; the
   refinement is kept only when it matches exactly one element.
3. Without tier-1 links, the model analyses the most likely region of the
   page from scratch; its selector must resolve to be accepted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

from scrapeplan.llm.adapter import CompletionError
from scrapeplan.llm.prompts import pagination_analysis_request, pagination_verification_request
from scrapeplan.llm.results import ParseFailure, parse_pagination_analysis
from scrapeplan.resolution.models import (
    METHOD_HEURISTIC,
    METHOD_MODEL,
    METHOD_MODEL_VERIFIED,
    PaginationAnalysis,
    clamp_confidence,
)
from scrapeplan.resolution.patterns import estimate_total_pages
from scrapeplan.resolution.similarity import is_http_url, resolve_url
from scrapeplan.scraper.compressor import compress_html_for_llm
from scrapeplan.scraper.dom import DomArena
from scrapeplan.scraper.models import PageSnapshot

HEURISTIC_CONFIDENCE = 0.8
# Used for a model-only answer that reports no confidence of its own.
DEFAULT_MODEL_CONFIDENCE = 0.5


@dataclass(frozen=True)
class SelectorFamily:
    """A group of candidate anchors: ``scope`` (may be empty) plus ``anchor``."""

    scope: str
    anchor: str

    @property
    def selector(self) -> str:
        return f"{self.scope} {self.anchor}".strip()

    def scoped(self, tail: str) -> str:
        return f"{self.scope} {tail}".strip()


PAGINATION_FAMILIES = [
    SelectorFamily("", 'a[rel="next"]'),
    SelectorFamily("", 'a[rel="prev"]'),
    SelectorFamily("", 'a[aria-label*="next" i]'),
    SelectorFamily("", 'a[aria-label*="previous" i]'),
    SelectorFamily(".pagination", "a[href]"),
    SelectorFamily(".pager", "a[href]"),
    SelectorFamily(".page-numbers", "a[href]"),
    SelectorFamily(".paginate", "a[href]"),
    SelectorFamily(".page-nav", "a[href]"),
    SelectorFamily("", 'a[href*="seite"]'),
    SelectorFamily("", 'a[href*="page"]'),
    SelectorFamily("", 'a[href*="skip"]'),
    SelectorFamily("", 'a[href*="offset"]'),
    SelectorFamily("", 'a[href*="&p="]'),
    SelectorFamily("", 'a[href*="?p="]'),
    SelectorFamily("", 'a[href*="&page="]'),
    SelectorFamily("", 'a[href*="?page="]'),
]

_NEXT_TEXT = ("next", "weiter", "››", "›", "»")
_REGION_SELECTORS = ("footer", ".pagination", ".pager", "nav", "main")


def is_next_link(dom: DomArena, index: int) -> bool:
    text = dom.text(index).lower()
    aria = dom.attr(index, "aria-label").lower()
    classes = dom.attr(index, "class").lower()
    rel = dom.attr(index, "rel").lower().split()
    return (
        any(token in text for token in _NEXT_TEXT)
        or text == ">"
        or "next" in aria
        or "weiter" in aria
        or "next" in classes
        or "pn_next" in classes
        or "next" in rel
    )


def derive_next_selector(dom: DomArena, index: int, family: SelectorFamily) -> str:
    """Build a selector for the next link *index* found through *family*."""
    if "next" in dom.attr(index, "rel").lower().split():
        return family.scoped('a[rel="next"]')
    next_classes = [c for c in dom.node(index).classes if "next" in c.lower()]
    if next_classes:
        if "pn_next" in next_classes:
            return family.scoped(".pn_next")
        return family.scoped(f"a.{next_classes[0]}")
    return family.selector


@dataclass
class HeuristicPagination:
    family: Optional[SelectorFamily]
    links: list[str]
    anchors: list[int]
    next_index: Optional[int]
    next_selector: Optional[str]


class PaginationResolver:
    """Stateless next-page resolver.

    Args:
        adapter: Async completion adapter; ``None`` disables tiers 2 and 3.
    """

    def __init__(self, adapter: Any = None) -> None:
        self.adapter = adapter

    # ------------------------------------------------------------------
    # Tier 1
    # ------------------------------------------------------------------

    def detect_heuristic(self, dom: DomArena, base_url: str) -> HeuristicPagination:
        for family in PAGINATION_FAMILIES:
            anchors = dom.try_select(family.selector)
            links: list[str] = []
            kept: list[int] = []
            for idx in anchors:
                href = dom.attr(idx, "href").strip()
                if not href:
                    continue
                url = resolve_url(href, base_url)
                if is_http_url(url) and url not in links:
                    links.append(url)
                    kept.append(idx)
            if not links:
                continue

            next_index = next((idx for idx in kept if is_next_link(dom, idx)), None)
            next_selector = (
                derive_next_selector(dom, next_index, family) if next_index is not None else None
            )
            logger.debug(
                f"[PAGINATION] family {family.selector!r}: {len(links)} links, "
                f"next={next_selector!r}"
            )
            return HeuristicPagination(family, links, kept, next_index, next_selector)
        return HeuristicPagination(None, [], [], None, None)

    # ------------------------------------------------------------------
    # Tier 2
    # ------------------------------------------------------------------

    def _verification_region(self, dom: DomArena, found: HeuristicPagination) -> int:
        anchor = found.next_index if found.next_index is not None else found.anchors[0]
        if found.family is not None and found.family.scope:
            for region in dom.try_select(found.family.scope):
                if dom.contains(region, anchor):
                    return region
        parent = dom.parent(anchor)
        return parent if parent is not None else dom.body

    async def _verify(self, dom: DomArena, found: HeuristicPagination) -> Optional[PaginationAnalysis]:
        if self.adapter is None:
            return None
        region = self._verification_region(dom, found)
        request = pagination_verification_request(
            compress_html_for_llm(dom.outer_html(region), focused=True),
            found.links,
            found.next_selector,
        )
        try:
            response = await self.adapter.complete(request)
        except CompletionError as exc:
            logger.warning(f"[PAGINATION] verification unavailable: {exc}")
            return None

        result = parse_pagination_analysis(response.content)
        if isinstance(result, ParseFailure):
            logger.warning(f"[PAGINATION] unusable verification answer: {result.reason}")
            return None
        selector = result.pagination_next_selector
        if not selector:
            return None
        matches = dom.try_select(selector)
        if len(matches) != 1:
            logger.info(
                f"[PAGINATION] refined selector {selector!r} matched {len(matches)} elements, ignored"
            )
            return None
        return PaginationAnalysis(
            next_selector=selector,
            discovered_links=tuple(found.links),
            confidence=max(HEURISTIC_CONFIDENCE, result.confidence or 0.0),
            method=METHOD_MODEL_VERIFIED,
            estimated_total_pages=estimate_total_pages(found.links),
        )

    # ------------------------------------------------------------------
    # Tier 3
    # ------------------------------------------------------------------

    def _analysis_region(self, dom: DomArena, container_selector: Optional[str]) -> int:
        container = dom.try_select(container_selector)
        if container:
            parent = dom.parent(container[0])
            if parent is not None and parent != DomArena.ROOT:
                return parent
        for selector in _REGION_SELECTORS:
            match = dom.try_select(selector)
            if match:
                return match[0]
        return dom.body

    async def _analyse(
        self, dom: DomArena, base_url: str, container_selector: Optional[str]
    ) -> Optional[PaginationAnalysis]:
        if self.adapter is None:
            return None
        region = self._analysis_region(dom, container_selector)
        request = pagination_analysis_request(
            compress_html_for_llm(dom.outer_html(region), focused=True)
        )
        try:
            response = await self.adapter.complete(request)
        except CompletionError as exc:
            logger.warning(f"[PAGINATION] analysis unavailable: {exc}")
            return None

        result = parse_pagination_analysis(response.content)
        if isinstance(result, ParseFailure):
            logger.warning(f"[PAGINATION] unusable analysis answer: {result.reason}")
            return None
        selector = result.pagination_next_selector
        matches = dom.try_select(selector)
        if not selector or not matches:
            return None

        links: list[str] = []
        for href in [dom.attr(matches[0], "href")] + result.pagination_links:
            if not href:
                continue
            url = resolve_url(href, base_url)
            if is_http_url(url) and url not in links:
                links.append(url)
        confidence = (
            DEFAULT_MODEL_CONFIDENCE if result.confidence is None else clamp_confidence(result.confidence)
        )
        return PaginationAnalysis(
            next_selector=selector,
            discovered_links=tuple(links),
            confidence=confidence,
            method=METHOD_MODEL,
            estimated_total_pages=estimate_total_pages(links),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(
        self, page: PageSnapshot, container_selector: Optional[str] = None
    ) -> PaginationAnalysis:
        """Find the next-page control of *page*."""
        dom = DomArena.from_html(page.html)
        found = self.detect_heuristic(dom, page.url)

        if found.links:
            verified = await self._verify(dom, found)
            if verified is not None:
                logger.info(f"[PAGINATION] model-verified next selector {verified.next_selector!r}")
                return verified
            logger.info(
                f"[PAGINATION] heuristic next selector {found.next_selector!r} "
                f"({len(found.links)} links)"
            )
            return PaginationAnalysis(
                next_selector=found.next_selector,
                discovered_links=tuple(found.links),
                confidence=HEURISTIC_CONFIDENCE,
                method=METHOD_HEURISTIC,
                estimated_total_pages=estimate_total_pages(found.links),
            )

        analysed = await self._analyse(dom, page.url, container_selector)
        if analysed is not None:
            logger.info(f"[PAGINATION] model next selector {analysed.next_selector!r}")
            return analysed

        logger.info(f"[PAGINATION] no pagination on {page.url}")
        return PaginationAnalysis.none()
