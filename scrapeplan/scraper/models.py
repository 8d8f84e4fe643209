"""Data models for the fetch layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from time import time


@dataclass(frozen=True)
class PageSnapshot:
    """The HTML of a single page as it looked at ``fetched_at``.

    Owned by the caller; resolvers only ever read it.
    """

    url: str
    html: str
    fetched_at: float = field(default_factory=time)
    status_code: int = 200
