"""URL similarity and link/container classification helpers.

Pure functions, no I/O.  They encode the rules of thumb used throughout
resolution:

* ``normalize_url`` / ``url_similarity``: how alike two item URLs are.
* ``is_municipal_pattern``: both URLs follow the numbered-``.htm`` scheme
  common on German municipal CMSes, where the filename shape says more than
  path overlap.
* ``is_content_link``: whether an anchor plausibly leads to a detail page.
* ``is_list_container``: whether an element groups repeated items.
"""

from __future__ import annotations

import re
from collections import Counter
from urllib.parse import parse_qsl, urljoin, urlsplit

from scrapeplan.scraper.dom import DomArena

# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------

def resolve_url(href: str, base_url: str) -> str:
    """Resolve *href* against *base_url*; fragments are dropped."""
    return urljoin(base_url, href.strip()).split("#", 1)[0]


def is_http_url(url: str) -> bool:
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def normalize_url(url: str) -> str:
    """Strip query string and fragment: ``scheme://host/path``.

    Idempotent.  Input that does not parse as an absolute URL is returned
    unchanged.
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc.lower()}{parts.path}"


# ---------------------------------------------------------------------------
# Municipal filename patterns
# ---------------------------------------------------------------------------

_MUNICIPAL_PATTERNS = [
    re.compile(r"\d{4,6}\.htm"),
    re.compile(r"\+.*\+.*\.htm"),
    re.compile(r"lnav=\d+"),
]

_CIVIC_KEYWORDS = (
    "sitzung",
    "tagesordnung",
    "protokoll",
    "beschluss",
    "bericht",
    "ausschuss",
    "gemeinderat",
    "stadtrat",
    "oeffentlich",
    "öffentlich",
    "veranstaltung",
)


def is_municipal_pattern(url_a: str, url_b: str) -> bool:
    """``True`` when both URLs match the same municipal filename pattern."""
    return any(p.search(url_a) and p.search(url_b) for p in _MUNICIPAL_PATTERNS)


def _filename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1] if path else ""


def _municipal_score(path_a: str, path_b: str) -> float:
    """Filename-shape similarity, at most 0.5 (the path weight)."""
    name_a, name_b = _filename(path_a), _filename(path_b)
    score = 0.0
    if ".htm" in name_a and ".htm" in name_b:
        score += 0.2
    if re.search(r"\d{4,6}\.htm", name_a) and re.search(r"\d{4,6}\.htm", name_b):
        score += 0.3
    if re.search(r"\+.*\+", name_a) and re.search(r"\+.*\+", name_b):
        score += 0.2
    kw_a = {k for k in _CIVIC_KEYWORDS if k in name_a.lower()}
    kw_b = {k for k in _CIVIC_KEYWORDS if k in name_b.lower()}
    if kw_a & kw_b:
        score += 0.1
    return min(score, 0.5)


def _path_similarity(path_a: str, path_b: str) -> float:
    segs_a = [s for s in path_a.split("/") if s]
    segs_b = [s for s in path_b.split("/") if s]
    if not segs_a and not segs_b:
        return 1.0
    if not segs_a or not segs_b:
        return 0.0
    common = sum((Counter(segs_a) & Counter(segs_b)).values())
    return common / max(len(segs_a), len(segs_b))


def _query_similarity(query_a: str, query_b: str) -> float:
    keys_a = {k for k, _ in parse_qsl(query_a, keep_blank_values=True)}
    keys_b = {k for k, _ in parse_qsl(query_b, keep_blank_values=True)}
    if not keys_a and not keys_b:
        return 1.0
    if not keys_a or not keys_b:
        return 0.0
    return len(keys_a & keys_b) / max(len(keys_a), len(keys_b))


def url_similarity(url_a: str, url_b: str) -> float:
    """Score how alike two URLs are, in ``[0, 1]``.

    Weights: same host 0.3, path 0.5, query-parameter names 0.2.  The path
    part is segment overlap; when both URLs match a municipal pattern the
    filename-shape score is used instead if it is higher.  Symmetric; a URL
    compared with itself scores 1.0.
    """
    a, b = urlsplit(url_a), urlsplit(url_b)
    if not a.netloc or not b.netloc:
        return 0.0

    score = 0.0
    if a.hostname == b.hostname:
        score += 0.3

    path_score = _path_similarity(a.path, b.path) * 0.5
    if is_municipal_pattern(url_a, url_b):
        path_score = max(path_score, _municipal_score(a.path, b.path))
    score += path_score

    score += _query_similarity(a.query, b.query) * 0.2
    return max(0.0, min(score, 1.0))


# ---------------------------------------------------------------------------
# Link classification
# ---------------------------------------------------------------------------

_NON_CONTENT_PATHS = (
    "/search",
    "/suche",
    "/login",
    "/anmelden",
    "/register",
    "/registrieren",
    "/contact",
    "/kontakt",
    "/about",
    "/ueber",
    "/privacy",
    "/datenschutz",
    "/impressum",
    "/sitemap",
    "/rss",
    "/feed",
    "/admin",
    "/cms",
)

_CONTENT_PATHS = (
    "/aktuelles/",
    "/news/",
    "/artikel/",
    "/meldungen/",
    "/termine/",
    "/veranstaltungen/",
)

_TEXT_KEYWORDS = (
    "bericht",
    "sitzung",
    "beschluss",
    "veranstaltung",
    "meldung",
    "nachricht",
    "tagesordnung",
    "protokoll",
    "ausschuss",
    "gemeinderat",
    "stadtrat",
    "öffentlich",
    "oeffentlich",
)

_NUMBERED_DOCUMENT = re.compile(r"\d+\.(?:html?|php|aspx?)(?:$|[?#])", re.IGNORECASE)
_DATE_PATTERNS = [
    re.compile(r"\d{4}[-_/]\d{2}[-_/]\d{2}"),
    re.compile(r"\d{2}[-_.]\d{2}[-_.]\d{4}"),
    re.compile(r"\d{1,2}[+.]\d{1,2}[+.]\d{4}"),
]


def is_content_link(href: str, text: str) -> bool:
    """Decide whether an anchor plausibly points at a content detail page.

    Conservative: false negatives are fine, false positives are weeded out
    later by similarity scoring.
    """
    lowered = href.lower()
    path = urlsplit(lowered).path or lowered
    if any(path.startswith(p) or f"{p}/" in path or path.endswith(p) for p in _NON_CONTENT_PATHS):
        return False

    text = " ".join(text.split())
    text_lower = text.lower()

    if _NUMBERED_DOCUMENT.search(lowered):
        return True
    if len(text) > 15 and any(k in text_lower for k in _TEXT_KEYWORDS):
        return True
    if any(k in lowered for k in _CIVIC_KEYWORDS):
        return True
    if any(p in lowered for p in _CONTENT_PATHS):
        return True
    if len(text) > 10 and ".htm" in lowered:
        return True
    if any(p.search(lowered) for p in _DATE_PATTERNS):
        return True
    return len(text) > 20


# ---------------------------------------------------------------------------
# Container classification
# ---------------------------------------------------------------------------

_LIST_TAGS = {"ul", "ol", "dl"}
_LIST_TOKENS = (
    "list",
    "items",
    "entries",
    "posts",
    "articles",
    "news",
    "events",
    "grid",
    "container",
    "teaserblock",
    "teaser",
    "topics",
    "nachrichten",
    "meldungen",
    "beitraege",
)


def is_list_container(dom: DomArena, index: int) -> bool:
    """``True`` if the element at *index* looks like it groups repeated items."""
    node = dom.node(index)
    if node.tag in _LIST_TAGS:
        return True

    marker = f"{node.attrs.get('class', '')} {node.id}".lower()
    if any(token in marker for token in _LIST_TOKENS):
        return True

    children = node.children
    if len(children) >= 3:
        tags = Counter(dom.node(c).tag for c in children)
        tag, count = tags.most_common(1)[0]
        if count / len(children) >= 0.7:
            return True
        if tags.get("article", 0) >= 3:
            return True
    return False
