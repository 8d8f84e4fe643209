"""Container resolution: find the element that lists items like the example.

Resolution runs in three passes over one :class:`PageSnapshot`:

1. **Heuristic** - locate the anchor pointing at the example URL, walk its
   ancestors up to ``<body>`` and keep the best-scoring list container.
2. **Model** - send the (compressed) container or page to the completion
   adapter and ask for container / content-link / next-page selectors.
3. **Reconcile** - a model container is only used when it holds the example
   anchor, and model links only when they pass the content-link check and
   include the example; otherwise the heuristic result stands, and without
   a container the page is filtered by URL similarity.

Adapter failures of any kind demote the result; :meth:`ContainerResolver.resolve`
never raises for them.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterable, Optional

from loguru import logger

from scrapeplan.config import settings
from scrapeplan.llm.adapter import CompletionError
from scrapeplan.llm.prompts import container_analysis_request
from scrapeplan.llm.results import ContainerAnalysisResult, ParseFailure, parse_container_analysis
from scrapeplan.resolution.models import (
    METHOD_HEURISTIC,
    METHOD_HEURISTIC_MODEL,
    METHOD_PATTERN_FALLBACK,
    ContainerAnalysis,
)
from scrapeplan.resolution.patterns import identify_link_patterns
from scrapeplan.resolution.similarity import (
    is_content_link,
    is_http_url,
    is_list_container,
    is_municipal_pattern,
    normalize_url,
    resolve_url,
    url_similarity,
)
from scrapeplan.scraper.compressor import compress_html_for_llm
from scrapeplan.scraper.dom import DomArena
from scrapeplan.scraper.models import PageSnapshot

# Confidence reported when only the heuristic pass produced the result.
HEURISTIC_CONFIDENCE = 0.6
# Confidence assumed for an accepted model answer that carried none.
DEFAULT_MODEL_CONFIDENCE = 0.8

MIN_CONTAINER_LINKS = 3
MAX_CONTAINER_LINKS = 100

_CONTENT_KEYWORDS = ("content", "news", "article", "list", "items", "entries", "posts")
_READ_MORE = {"weiterlesen", "mehr", "read more", "mehr lesen", "more"}


# ---------------------------------------------------------------------------
# DOM helpers
# ---------------------------------------------------------------------------

def _dedupe(urls: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            unique.append(url)
    return unique


def _href_of(dom: DomArena, index: int) -> str:
    """``href`` of *index*, or of the first anchor inside it."""
    if dom.node(index).tag == "a":
        return dom.attr(index, "href").strip()
    anchors = dom.anchors(index)
    return dom.attr(anchors[0], "href").strip() if anchors else ""


def collect_links(dom: DomArena, indices: Iterable[int], base_url: str) -> list[str]:
    """Resolve and deduplicate the links carried by *indices*."""
    resolved = []
    for idx in indices:
        href = _href_of(dom, idx)
        if not href:
            continue
        url = resolve_url(href, base_url)
        if is_http_url(url):
            resolved.append(url)
    return _dedupe(resolved)


def content_links(dom: DomArena, container: int, base_url: str) -> list[str]:
    """Deduplicated content links below *container*."""
    urls = []
    for idx in dom.anchors(container):
        url = resolve_url(dom.attr(idx, "href"), base_url)
        if is_http_url(url) and is_content_link(url, dom.text(idx)):
            urls.append(url)
    return _dedupe(urls)


def find_example_anchor(dom: DomArena, example_url: str, base_url: str) -> Optional[int]:
    """Index of the anchor linking to *example_url*: exact match first, then normalized."""
    anchors = dom.anchors()
    resolved = [(idx, resolve_url(dom.attr(idx, "href"), base_url)) for idx in anchors]
    for idx, url in resolved:
        if url == example_url:
            return idx
    target = normalize_url(example_url)
    for idx, url in resolved:
        if normalize_url(url) == target:
            return idx
    return None


def container_score(dom: DomArena, container: int, base_url: str) -> float:
    """Score how well *container* fits "a list of content items", in ``[0, 1]``."""
    links = content_links(dom, container, base_url)
    anchors = dom.anchors(container)
    score = 0.0

    ratio = len(links) / len(anchors) if anchors else 0.0
    if 0.3 <= ratio <= 0.8:
        score += ratio * 0.4
    elif ratio > 0.8:
        score += 0.2

    node = dom.node(container)
    marker = f"{node.attrs.get('class', '')} {node.id}".lower()
    if any(keyword in marker for keyword in _CONTENT_KEYWORDS):
        score += 0.3

    if node.tag in ("main", "article", "section"):
        score += 0.2
    elif node.tag in ("ul", "ol"):
        score += 0.15
    elif node.tag == "div":
        score += 0.1

    children = len(node.children)
    if children > 200:
        score -= 0.3
    elif children > 100:
        score -= 0.2
    elif 3 <= children <= 50:
        score += 0.1

    for idx in anchors:
        text = dom.text(idx).lower().strip(" >»›")
        if text in _READ_MORE or text.startswith("weiterlesen"):
            score += 0.2
            break

    if len(links) >= 3 and all(".htm" in link.lower() for link in links):
        score += 0.15

    return max(0.0, min(score, 1.0))


def _common_selector(dom: DomArena, scope: int, indices: list[int]) -> str:
    """Most frequent relative path from *scope* to *indices*."""
    paths = Counter(dom.relative_path(scope, idx) for idx in indices)
    return paths.most_common(1)[0][0] if paths else "a[href]"


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class ContainerResolver:
    """Stateless resolver; one instance may serve many concurrent pages.

    Args:
        adapter: Object with an async ``complete(request)`` method, normally a
            :class:`~scrapeplan.llm.adapter.CompletionAdapter`.  ``None``
            skips the model pass.
        confidence_threshold: Model answers below this are discarded.
    """

    def __init__(self, adapter: Any = None, confidence_threshold: Optional[float] = None) -> None:
        self.adapter = adapter
        self.confidence_threshold = (
            settings.model_confidence_threshold
            if confidence_threshold is None
            else confidence_threshold
        )

    # ------------------------------------------------------------------
    # Heuristic pass
    # ------------------------------------------------------------------

    def find_container(
        self, dom: DomArena, anchor: int, base_url: str
    ) -> tuple[Optional[int], float, int]:
        """Best list container above *anchor* as ``(index, score, link count)``."""
        best: Optional[int] = None
        best_score = 0.0
        best_count = 0
        body = dom.body
        for idx in dom.ancestors(anchor):
            if idx == body:
                break
            if not is_list_container(dom, idx):
                continue
            count = len(content_links(dom, idx, base_url))
            if not MIN_CONTAINER_LINKS <= count <= MAX_CONTAINER_LINKS:
                continue
            score = container_score(dom, idx, base_url)
            logger.debug(
                f"[CONTAINER] candidate {dom.element_path(idx)} "
                f"score={score:.3f} links={count}"
            )
            if best is None or score > best_score:
                best, best_score, best_count = idx, score, count
        return best, best_score, best_count

    def _similar_links(self, dom: DomArena, scope: int, example_url: str, base_url: str) -> list[int]:
        """Anchors below *scope* that look like content and resemble *example_url*."""
        matches = []
        for idx in dom.anchors(scope):
            url = resolve_url(dom.attr(idx, "href"), base_url)
            if not is_http_url(url) or not is_content_link(url, dom.text(idx)):
                continue
            threshold = (
                settings.municipal_similarity_score
                if is_municipal_pattern(url, example_url)
                else settings.min_similarity_score
            )
            if url_similarity(url, example_url) >= threshold:
                matches.append(idx)
        return matches

    # ------------------------------------------------------------------
    # Model pass
    # ------------------------------------------------------------------

    async def _ask_model(
        self,
        dom: DomArena,
        page: PageSnapshot,
        example_url: str,
        pagination_url: Optional[str],
        container: Optional[int],
        score: float,
        sibling_count: int,
    ) -> Optional[ContainerAnalysisResult]:
        if self.adapter is None:
            return None

        if container is not None:
            html = compress_html_for_llm(dom.outer_html(container), focused=True)
        else:
            html = compress_html_for_llm(page.html)

        request = container_analysis_request(
            example_url=example_url,
            page_url=page.url,
            html=html,
            pagination_url=pagination_url,
            container_path=dom.element_path(container) if container is not None else None,
            heuristic_confidence=score,
            sibling_count=sibling_count,
        )
        try:
            response = await self.adapter.complete(request)
        except CompletionError as exc:
            logger.warning(f"[CONTAINER] model unavailable, using heuristics: {exc}")
            return None

        result = parse_container_analysis(response.content)
        if isinstance(result, ParseFailure):
            logger.warning(f"[CONTAINER] unusable model answer: {result.reason}")
            return None

        confidence = DEFAULT_MODEL_CONFIDENCE if result.confidence is None else result.confidence
        if confidence < self.confidence_threshold:
            logger.info(
                f"[CONTAINER] model confidence {confidence:.2f} below "
                f"{self.confidence_threshold:.2f}, ignoring suggestion"
            )
            return None
        return result

    def _content_anchors(self, dom: DomArena, indices: Iterable[int], base_url: str) -> list[int]:
        """Keep the elements of *indices* whose link passes :func:`is_content_link`."""
        kept = []
        for idx in indices:
            href = _href_of(dom, idx)
            if not href:
                continue
            url = resolve_url(href, base_url)
            if is_http_url(url) and is_content_link(url, dom.text(idx)):
                kept.append(idx)
        return kept

    def _links_from_model(
        self,
        dom: DomArena,
        scope: int,
        result: ContainerAnalysisResult,
        example_url: str,
        base_url: str,
    ) -> tuple[list[str], str]:
        """Apply the model's selectors inside *scope*, first one yielding links wins."""
        for selector in (result.content_link_selector, result.example_url_selector):
            matched = self._content_anchors(dom, dom.try_select(selector, scope), base_url)
            links = collect_links(dom, matched, base_url)
            if links:
                return links, selector or ""
            if selector:
                logger.debug(f"[CONTAINER] model selector {selector!r} yielded no links")

        similar = self._similar_links(dom, scope, example_url, base_url)
        links = collect_links(dom, similar, base_url)
        return links, _common_selector(dom, scope, similar) if similar else ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(
        self,
        page: PageSnapshot,
        example_url: str,
        pagination_url: Optional[str] = None,
    ) -> ContainerAnalysis:
        """Find the container listing items like *example_url* on *page*."""
        dom = DomArena.from_html(page.html)
        base_url = page.url
        example_url = resolve_url(example_url, base_url)

        anchor = find_example_anchor(dom, example_url, base_url)
        container: Optional[int] = None
        score, sibling_count = 0.0, 0
        if anchor is None:
            logger.info(f"[CONTAINER] example {example_url} not on {base_url}")
        else:
            container, score, sibling_count = self.find_container(dom, anchor, base_url)

        result = await self._ask_model(
            dom, page, example_url, pagination_url, container, score, sibling_count
        )
        pagination_hint = None
        if result is not None and result.pagination_next_selector:
            if dom.try_select(result.pagination_next_selector):
                pagination_hint = result.pagination_next_selector

        # Model-backed result, only when its selectors hold up against the DOM.
        if result is not None:
            model_container = None
            if result.sibling_container_selector:
                matches = dom.try_select(result.sibling_container_selector)
                model_container = matches[0] if matches else None
            if (
                model_container is not None
                and anchor is not None
                and not dom.contains(model_container, anchor)
            ):
                logger.info(
                    f"[CONTAINER] model container {result.sibling_container_selector!r} "
                    f"does not hold the example link, ignoring it"
                )
                model_container = None
            target = model_container if model_container is not None else container
            if target is not None:
                links, link_selector = self._links_from_model(
                    dom, target, result, example_url, base_url
                )
                if links and anchor is not None:
                    example_link = resolve_url(dom.attr(anchor, "href"), base_url)
                    if example_link not in links:
                        logger.info(
                            f"[CONTAINER] model links miss the example {example_link}, "
                            f"keeping heuristics"
                        )
                        links = []
                if links:
                    confidence = (
                        DEFAULT_MODEL_CONFIDENCE if result.confidence is None else result.confidence
                    )
                    selector = (
                        result.sibling_container_selector
                        if model_container is not None
                        else dom.element_path(target)
                    )
                    logger.info(
                        f"[CONTAINER] {selector} via model, {len(links)} links, "
                        f"confidence {confidence:.2f}"
                    )
                    return ContainerAnalysis(
                        container_selector=selector or "",
                        content_link_selector=link_selector,
                        example_link_selector=result.example_url_selector,
                        confidence=confidence,
                        method=METHOD_HEURISTIC_MODEL,
                        reasoning=result.reasoning,
                        content_links=tuple(links),
                        container_signature=dom.signature(target),
                        pagination_hint=pagination_hint,
                        link_patterns=tuple(identify_link_patterns(links, example_url)),
                    )

        # Heuristic container with a structural link selector.
        if container is not None and anchor is not None:
            link_selector = dom.relative_path(container, anchor)
            links = collect_links(dom, dom.try_select(link_selector, container), base_url)
            if links:
                selector = dom.element_path(container)
                logger.info(f"[CONTAINER] {selector} via heuristics, {len(links)} links")
                return ContainerAnalysis(
                    container_selector=selector,
                    content_link_selector=link_selector,
                    example_link_selector=dom.element_path(anchor),
                    confidence=HEURISTIC_CONFIDENCE,
                    method=METHOD_HEURISTIC,
                    reasoning=f"Heuristic container score {score:.2f} with {sibling_count} content links",
                    content_links=tuple(links),
                    container_signature=dom.signature(container),
                    pagination_hint=pagination_hint,
                    link_patterns=tuple(identify_link_patterns(links, example_url)),
                )

        # No container: filter the whole page by similarity to the example.
        body = dom.body
        similar = self._similar_links(dom, body, example_url, base_url)
        links = collect_links(dom, similar, base_url)
        if not links:
            logger.info(f"[CONTAINER] no content links found on {base_url}")
            return ContainerAnalysis.empty("No container and no similar links found")

        logger.info(f"[CONTAINER] pattern fallback on {base_url}, {len(links)} candidate links")
        return ContainerAnalysis(
            container_selector=dom.element_path(body) if body != DomArena.ROOT else "",
            content_link_selector=_common_selector(dom, body, similar),
            confidence=0.0,
            method=METHOD_PATTERN_FALLBACK,
            reasoning="No container located; links filtered by URL similarity",
            content_links=tuple(links),
            pagination_hint=pagination_hint,
            link_patterns=tuple(identify_link_patterns(links, example_url)),
        )
