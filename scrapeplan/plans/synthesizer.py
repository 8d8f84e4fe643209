"""Turn resolver output into a versioned :class:`ScrapingPlan`."""

from __future__ import annotations

import copy
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlsplit

from loguru import logger

from scrapeplan.config import settings
from scrapeplan.plans.models import (
    DEFAULT_DESCRIPTION_SELECTOR,
    DEFAULT_LIST_SELECTOR,
    DEFAULT_TITLE_SELECTOR,
    PaginationInfo,
    PlanMetadata,
    RetryPolicy,
    ScrapingPlan,
)
from scrapeplan.resolution.models import ContainerAnalysis, PaginationAnalysis, clamp_confidence

_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class SynthesisOptions:
    rate_limit_ms: int = field(default_factory=lambda: settings.default_rate_limit_ms)
    detail_confidence: float = 0.0
    rich_content_fields: list[str] = field(default_factory=list)
    exclude_selectors: list[str] = field(default_factory=list)
    site_type: str = "municipal"
    language: str = "de"
    created_by: str = "ai"
    plan_id: Optional[str] = None


def generate_plan_id() -> str:
    """``plan_<epoch ms>_<9 random chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"plan_{int(time.time() * 1000)}_{suffix}"


def synthesize(
    entry_url: str,
    container: Optional[ContainerAnalysis],
    pagination: Optional[PaginationAnalysis],
    detail_selectors: Optional[dict[str, str]] = None,
    options: Optional[SynthesisOptions] = None,
) -> ScrapingPlan:
    """Assemble version 1 of a plan for *entry_url*.

    The plan's confidence is the best of the detail, container and
    pagination confidences.  Missing selectors fall back to generic defaults.
    Everything except the generated ``planId`` is deterministic.
    """
    options = options or SynthesisOptions()

    selectors = {
        "title": DEFAULT_TITLE_SELECTOR,
        "description": DEFAULT_DESCRIPTION_SELECTOR,
    }
    for name, selector in (detail_selectors or {}).items():
        if selector and selector.strip():
            selectors[name] = selector.strip()

    list_selector = DEFAULT_LIST_SELECTOR
    content_link_selector = None
    if container is not None and container.container_selector:
        list_selector = container.container_selector
        content_link_selector = container.content_link_selector or None

    pagination_selector = None
    pagination_info = None
    if pagination is not None and pagination.next_selector:
        pagination_selector = pagination.next_selector
    elif container is not None and container.pagination_hint:
        pagination_selector = container.pagination_hint
    if pagination is not None and (pagination.discovered_links or pagination_selector):
        pagination_info = PaginationInfo(
            pattern=pagination.method,
            links=list(pagination.discovered_links),
            total_pages=pagination.estimated_total_pages,
            is_paginated=True,
        )

    confidence = max(
        clamp_confidence(options.detail_confidence),
        container.confidence if container is not None else 0.0,
        pagination.confidence if pagination is not None else 0.0,
    )

    plan = ScrapingPlan(
        plan_id=options.plan_id or generate_plan_id(),
        version=1,
        entry_urls=[entry_url],
        list_selector=list_selector,
        content_link_selector=content_link_selector,
        pagination_selector=pagination_selector,
        detail_selectors=selectors,
        rich_content_fields=[f for f in options.rich_content_fields if f in selectors],
        exclude_selectors=list(options.exclude_selectors),
        rate_limit_ms=options.rate_limit_ms,
        retry_policy=RetryPolicy(),
        confidence_score=confidence,
        metadata=PlanMetadata(
            domain=urlsplit(entry_url).hostname or "",
            site_type=options.site_type,
            language=options.language,
            created_by=options.created_by,
            estimated_total_pages=pagination.estimated_total_pages if pagination else None,
        ),
        pagination_info=pagination_info,
    )
    logger.info(
        f"[PLAN] synthesized {plan.plan_id} for {entry_url} "
        f"(list={plan.list_selector!r}, confidence={plan.confidence_score:.2f})"
    )
    return plan


# ---------------------------------------------------------------------------
# Modifications
# ---------------------------------------------------------------------------

_SCALAR_FIELDS = {
    "listSelector": "list_selector",
    "contentLinkSelector": "content_link_selector",
    "paginationSelector": "pagination_selector",
}
_LIST_FIELDS = {
    "entryUrls": "entry_urls",
    "richContentFields": "rich_content_fields",
    "excludeSelectors": "exclude_selectors",
}
_METADATA_FIELDS = {
    "siteType": "site_type",
    "language": "language",
    "robotsTxtCompliant": "robots_txt_compliant",
    "gdprCompliant": "gdpr_compliant",
}
_FIXED_FIELDS = {"planId", "version"}


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


def apply_modifications(plan: ScrapingPlan, modifications: dict[str, Any]) -> ScrapingPlan:
    """Return a copy of *plan* at ``version + 1`` with *modifications* applied.

    Keys may be camelCase or snake_case.  ``detailSelectors`` and
    ``metadata`` are merged (a ``None`` selector removes that field);
    ``planId`` and ``version`` can never be overridden and unknown keys are
    ignored.
    """
    updated = copy.deepcopy(plan)
    updated.version = plan.version + 1

    for raw_key, value in modifications.items():
        key = _camel(raw_key)
        if key in _FIXED_FIELDS:
            logger.warning(f"[PLAN] {plan.plan_id}: {raw_key!r} cannot be modified")
        elif key == "rateLimitMs":
            updated.rate_limit_ms = int(value)
        elif key in _SCALAR_FIELDS:
            setattr(updated, _SCALAR_FIELDS[key], value or None)
        elif key in _LIST_FIELDS:
            setattr(updated, _LIST_FIELDS[key], [str(v) for v in value or []])
        elif key == "detailSelectors" and isinstance(value, dict):
            for name, selector in value.items():
                if selector is None:
                    updated.detail_selectors.pop(name, None)
                else:
                    updated.detail_selectors[name] = str(selector)
        elif key == "retryPolicy" and isinstance(value, dict):
            merged = {**plan.retry_policy.to_dict(), **value}
            updated.retry_policy = RetryPolicy.from_dict(merged)
        elif key == "metadata" and isinstance(value, dict):
            for meta_key, meta_value in value.items():
                attr = _METADATA_FIELDS.get(_camel(meta_key))
                if attr:
                    setattr(updated.metadata, attr, meta_value)
        else:
            logger.warning(f"[PLAN] {plan.plan_id}: ignoring unknown modification {raw_key!r}")

    if not updated.list_selector:
        updated.list_selector = DEFAULT_LIST_SELECTOR
    return updated
