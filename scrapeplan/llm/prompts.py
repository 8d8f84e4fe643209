"""Prompt builders for the completion adapter.

Each builder returns a ready :class:`CompletionRequest`.  All of them ask for
a single JSON object; the matching ``parse_*`` function in
:mod:`scrapeplan.llm.results` turns the answer into a typed result.
"""

from __future__ import annotations

from typing import Optional, Sequence

from scrapeplan.llm.adapter import CompletionRequest

_SCRAPING_ENGINEER = (
    "You are an expert web scraping engineer. Analyze HTML structure to identify "
    "list containers and pagination elements. Respond with valid JSON only."
)
_PAGINATION_EXPERT = (
    "You are an expert at analyzing HTML structure for pagination elements. "
    "Respond with valid JSON only."
)
_DETAIL_EXPERT = (
    "You are an expert web scraping engineer. Analyze HTML content to identify CSS "
    "selectors for extracting structured data. Respond with valid JSON only."
)


def container_analysis_request(
    example_url: str,
    page_url: str,
    html: str,
    pagination_url: Optional[str] = None,
    container_path: Optional[str] = None,
    heuristic_confidence: float = 0.0,
    sibling_count: int = 0,
) -> CompletionRequest:
    """Ask for the container / content-link / next-page selectors.

    When the heuristic pass already found a container, its path, score and
    sibling count are included so the model validates it instead of starting
    from scratch.
    """
    if container_path:
        heuristic = (
            "HEURISTIC ANALYSIS RESULTS:\n"
            f"- Found container: {container_path}\n"
            f"- Container confidence: {heuristic_confidence:.2f}\n"
            f"- Sibling links found: {sibling_count}\n"
            "- Example URL was located in the HTML\n\n"
            "Validate and refine this container."
        )
    else:
        heuristic = (
            "HEURISTIC ANALYSIS RESULTS:\n"
            "- No container found by heuristic search\n"
            "- Example URL may not be present in the HTML\n\n"
            "Analyze the whole page to find similar content items."
        )

    pagination_line = f"Example Pagination URL: {pagination_url}\n" if pagination_url else ""
    prompt = (
        "Analyze this HTML to find the list container that holds links similar to "
        "the example URL.\n\n"
        f"Main Page URL: {page_url}\n"
        f"Example Content URL: {example_url}\n"
        f"{pagination_line}\n"
        f"{heuristic}\n\n"
        f"HTML Content:\n{html}\n\n"
        "Find:\n"
        "1. A CSS selector for the container holding multiple items like the example\n"
        "2. A CSS selector for the PRIMARY link of each item (one link per item)\n"
        "3. A CSS selector for the 'next page' link, if there is pagination\n\n"
        "Rules:\n"
        "- contentLinkSelector is applied inside the container: "
        "container.select(contentLinkSelector)\n"
        "- Avoid selectors that also match image links, buttons or pagination\n"
        "- Only valid CSS syntax; no :nth-child chains tied to one page\n\n"
        "Respond with JSON:\n"
        "{\n"
        '  "exampleUrlSelector": "selector matching the example link",\n'
        '  "siblingContainerSelector": "selector for the container",\n'
        '  "contentLinkSelector": "selector for the main link of each item",\n'
        '  "paginationNextSelector": "selector for the next-page link or empty",\n'
        '  "confidence": 0.85,\n'
        '  "reasoning": "short explanation"\n'
        "}"
    )
    return CompletionRequest(
        prompt=prompt,
        system_message=_SCRAPING_ENGINEER,
        temperature=0.1,
        max_tokens=2000,
    )


def pagination_verification_request(
    html: str,
    pagination_links: Sequence[str],
    current_selector: Optional[str],
) -> CompletionRequest:
    """Ask the model to sharpen a heuristically found next-page selector."""
    sample = ", ".join(list(pagination_links)[:3]) or "none"
    prompt = (
        "Analyze this pagination HTML snippet to identify the best CSS selector for "
        'the "next page" link.\n\n'
        f"Found pagination links: {sample}\n"
        f"Current next selector: {current_selector or 'none'}\n\n"
        f"HTML snippet:\n{html}\n\n"
        "Look for:\n"
        '1. Links with text like "next", "weiter", "››", ">"\n'
        '2. Links with rel="next"\n'
        '3. Links whose class contains "next"\n'
        "4. The most specific selector that matches only the next-page link\n\n"
        "Respond with JSON only:\n"
        "{\n"
        '  "paginationNextSelector": "most specific CSS selector for the next link",\n'
        '  "confidence": 0.0,\n'
        '  "reasoning": "short explanation"\n'
        "}"
    )
    return CompletionRequest(
        prompt=prompt,
        system_message=_PAGINATION_EXPERT,
        temperature=0.1,
        max_tokens=800,
    )


def pagination_analysis_request(html: str) -> CompletionRequest:
    """Ask the model to find pagination from scratch in *html*."""
    prompt = (
        "Analyze this HTML to find pagination elements. Look for:\n"
        "1. Links that navigate to next/previous pages\n"
        "2. Numbered page links (1, 2, 3, ...)\n"
        '3. "Next", "Previous", "Weiter", "Zurück" links\n'
        "4. Page navigation controls\n\n"
        f"HTML to analyze:\n{html}\n\n"
        "Respond with JSON only:\n"
        "{\n"
        '  "paginationNextSelector": "CSS selector for the next page link",\n'
        '  "paginationLinks": ["pagination URLs found"],\n'
        '  "confidence": 0.0,\n'
        '  "reasoning": "short explanation"\n'
        "}"
    )
    return CompletionRequest(
        prompt=prompt,
        system_message=_PAGINATION_EXPERT,
        temperature=0.1,
        max_tokens=1000,
    )


def detail_analysis_request(urls: Sequence[str], html: str) -> CompletionRequest:
    """Ask for detail-page field selectors across several content pages."""
    listing = "\n".join(f"{i}. {url}" for i, url in enumerate(urls, start=1))
    prompt = (
        "Analyze these content pages to identify CSS selectors for extracting "
        "structured data fields.\n\n"
        f"Content URLs analyzed:\n{listing}\n\n"
        f"HTML Content:\n{html}\n\n"
        "Give selectors for fields that appear on every page: title, description "
        "(the container of the rich HTML body), descriptionText, startDate, place, "
        "address, email, phone, website, images.  Skip fields without a "
        "consistent selector.  Prefer specific selectors over generic ones.\n\n"
        "Respond with JSON:\n"
        "{\n"
        '  "detailSelectors": {"title": "...", "description": "..."},\n'
        '  "richContentFields": ["description"],\n'
        '  "confidence": 0.85,\n'
        '  "reasoning": "short explanation"\n'
        "}"
    )
    return CompletionRequest(
        prompt=prompt,
        system_message=_DETAIL_EXPERT,
        temperature=0.1,
        max_tokens=2000,
    )
