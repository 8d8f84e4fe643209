"""Shrink HTML before handing it to the completion service.

Structure (tags, classes, ids, hrefs, rel/aria hints) is what the model needs
to propose selectors; scripts, styling, tracking attributes and long text runs
are noise that only burns tokens.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Comment, NavigableString

_DROP_TAGS = ("script", "style", "svg", "noscript", "iframe", "template")
_DROP_ATTRS = {"style", "src", "srcset", "sizes", "alt", "tabindex", "aria-describedby", "loading"}
_DROP_ATTR_PREFIXES = ("data-", "on")
_WS = re.compile(r"\s+")
_BETWEEN_TAGS = re.compile(r">\s+<")

# Hard cap on the compressed document so a single prompt stays bounded.
MAX_COMPRESSED_CHARS = 60_000


def _truncate(text: str, limit: int) -> str:
    text = _WS.sub(" ", text)
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "…"


def compress_html_for_llm(html: str, focused: bool = False) -> str:
    """Return a compact rendition of *html* suitable for a prompt.

    Args:
        html: Markup of a whole page or of a single region.
        focused: ``True`` when *html* is already a narrowed-down region
            (container or pagination block); text nodes are cut harder
            (100 chars instead of 150) since structure matters more there.
    """
    soup = BeautifulSoup(html, "html.parser")

    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    for tag in soup.find_all(_DROP_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        for name in list(tag.attrs):
            lowered = name.lower()
            if lowered in _DROP_ATTRS or lowered.startswith(_DROP_ATTR_PREFIXES):
                del tag.attrs[name]
        if tag.name == "span" and not tag.attrs and not tag.get_text(strip=True):
            tag.decompose()

    limit = 100 if focused else 150
    for string in soup.find_all(string=True):
        if isinstance(string, NavigableString) and len(string) > limit:
            string.replace_with(_truncate(str(string), limit))

    compressed = _BETWEEN_TAGS.sub("><", _WS.sub(" ", str(soup))).strip()
    if len(compressed) > MAX_COMPRESSED_CHARS:
        compressed = compressed[:MAX_COMPRESSED_CHARS]
    return compressed
