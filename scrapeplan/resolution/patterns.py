"""Descriptive patterns over a set of discovered links."""

from __future__ import annotations

import re
from typing import Optional, Sequence
from urllib.parse import urlsplit

_PAGE_NUMBER = [
    re.compile(r"[?&/](?:page|seite)[=/](\d+)", re.IGNORECASE),
    re.compile(r"[?&]p=(\d+)", re.IGNORECASE),
]
_OFFSET = re.compile(r"[?&](?:offset|skip)=(\d+)", re.IGNORECASE)


def identify_link_patterns(links: Sequence[str], example_url: str) -> list[str]:
    """Label what the *links* have in common.

    Possible labels: ``consistent-id-pattern`` (every link has a 4+ digit
    number), ``date-pattern`` (some link embeds an ISO-like date) and
    ``consistent-path-structure`` (every path has as many segments as the
    example's).
    """
    if not links:
        return []

    patterns: list[str] = []
    if all(re.search(r"\d{4,}", link) for link in links):
        patterns.append("consistent-id-pattern")
    if any(re.search(r"\d{4}[-_]\d{2}[-_]\d{2}", link) for link in links):
        patterns.append("date-pattern")

    depth = len(urlsplit(example_url).path.split("/"))
    if all(len(urlsplit(link).path.split("/")) == depth for link in links):
        patterns.append("consistent-path-structure")
    return patterns


def estimate_total_pages(links: Sequence[str]) -> Optional[int]:
    """Guess the page count from numbered pagination links.

    Uses the highest ``page``/``seite``/``p`` number found.  Offset-style
    links (``offset=20``) count as one page each.  Without any numbers the
    number of links is returned; ``None`` when there are no links at all.
    """
    if not links:
        return None

    numbers: list[int] = []
    offsets = 0
    for link in links:
        for pattern in _PAGE_NUMBER:
            match = pattern.search(link)
            if match:
                numbers.append(int(match.group(1)))
                break
        else:
            if _OFFSET.search(link):
                offsets += 1

    if numbers:
        return max(numbers)
    if offsets:
        return offsets + 1
    return len(links)
