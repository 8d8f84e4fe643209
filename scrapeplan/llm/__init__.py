"""Completion adapter, prompt builders and typed result parsing."""

from scrapeplan.llm.adapter import (
    CompletionAdapter,
    CompletionError,
    CompletionRequest,
    CompletionResponse,
)
from scrapeplan.llm.usage import UsageTrackingAdapter
from scrapeplan.llm.results import (
    ContainerAnalysisResult,
    DetailAnalysisResult,
    PaginationAnalysisResult,
    ParseFailure,
    parse_container_analysis,
    parse_detail_analysis,
    parse_pagination_analysis,
)

__all__ = [
    "CompletionAdapter",
    "CompletionError",
    "CompletionRequest",
    "CompletionResponse",
    "ContainerAnalysisResult",
    "DetailAnalysisResult",
    "PaginationAnalysisResult",
    "ParseFailure",
    "UsageTrackingAdapter",
    "parse_container_analysis",
    "parse_detail_analysis",
    "parse_pagination_analysis",
]
