"""Result types produced by the container and pagination resolvers.

Both are frozen: once a resolver hands one back, nothing downstream mutates
it.  ``to_dict`` gives the camelCase shape used in stored plans and API
responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

# Container methods
METHOD_HEURISTIC = "heuristic"
METHOD_HEURISTIC_MODEL = "heuristic+model"
METHOD_PATTERN_FALLBACK = "pattern-fallback"
METHOD_NONE = "none"

# Pagination methods
METHOD_MODEL_VERIFIED = "heuristic+model-verified"
METHOD_MODEL = "model"


def clamp_confidence(value: Any) -> float:
    """Coerce *value* to a float in ``[0, 1]``; unusable input becomes 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return max(0.0, min(number, 1.0))


@dataclass(frozen=True)
class ContainerAnalysis:
    container_selector: str
    content_link_selector: str
    confidence: float
    method: str
    reasoning: str = ""
    example_link_selector: Optional[str] = None
    content_links: tuple[str, ...] = field(default_factory=tuple)
    container_signature: str = ""
    pagination_hint: Optional[str] = None
    link_patterns: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @classmethod
    def empty(cls, reasoning: str) -> "ContainerAnalysis":
        """A result carrying no links at all."""
        return cls(
            container_selector="",
            content_link_selector="",
            confidence=0.0,
            method=METHOD_NONE,
            reasoning=reasoning,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "containerSelector": self.container_selector,
            "contentLinkSelector": self.content_link_selector,
            "exampleLinkSelector": self.example_link_selector,
            "confidence": self.confidence,
            "method": self.method,
            "reasoning": self.reasoning,
            "contentLinks": list(self.content_links),
            "containerSignature": self.container_signature,
            "paginationHint": self.pagination_hint,
            "linkPatterns": list(self.link_patterns),
        }


@dataclass(frozen=True)
class PaginationAnalysis:
    next_selector: Optional[str]
    discovered_links: tuple[str, ...]
    confidence: float
    method: str
    estimated_total_pages: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @classmethod
    def none(cls) -> "PaginationAnalysis":
        return cls(next_selector=None, discovered_links=(), confidence=0.0, method=METHOD_NONE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nextSelector": self.next_selector,
            "discoveredLinks": list(self.discovered_links),
            "confidence": self.confidence,
            "method": self.method,
            "estimatedTotalPages": self.estimated_total_pages,
        }
