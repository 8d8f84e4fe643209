"""Container and pagination resolution engine."""

from scrapeplan.resolution.container import ContainerResolver, container_score
from scrapeplan.resolution.models import ContainerAnalysis, PaginationAnalysis
from scrapeplan.resolution.pagination import PaginationResolver
from scrapeplan.resolution.patterns import estimate_total_pages, identify_link_patterns
from scrapeplan.resolution.similarity import (
    is_content_link,
    is_list_container,
    is_municipal_pattern,
    normalize_url,
    url_similarity,
)

__all__ = [
    "ContainerResolver",
    "container_score",
    "ContainerAnalysis",
    "PaginationAnalysis",
    "PaginationResolver",
    "estimate_total_pages",
    "identify_link_patterns",
    "is_content_link",
    "is_list_container",
    "is_municipal_pattern",
    "normalize_url",
    "url_similarity",
]
