"""Dataclass models for plans, lifecycle records and executions.

Plain Python objects, not ORM models.  ``to_dict`` produces the camelCase
JSON stored in the plan store and returned by the API; ``from_dict`` reads it
back and fills in defaults for anything missing, so records written by older
versions still load.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

DRAFT = "draft"
PENDING_REVIEW = "pending_review"
APPROVED = "approved"
REJECTED = "rejected"
DEPRECATED = "deprecated"
EXECUTING = "executing"
FAILED = "failed"

PLAN_STATUSES = (DRAFT, PENDING_REVIEW, APPROVED, REJECTED, DEPRECATED, EXECUTING, FAILED)

RUN_QUEUED = "queued"
RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"

DEFAULT_LIST_SELECTOR = "article, .item, .post, .entry"
DEFAULT_TITLE_SELECTOR = "h1, h2, .title, .headline"
DEFAULT_DESCRIPTION_SELECTOR = "p, .description, .content, .summary"


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


# ---------------------------------------------------------------------------
# Plan document
# ---------------------------------------------------------------------------

@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff_strategy: str = "exponential"
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    retryable_errors: list[str] = field(
        default_factory=lambda: ["TIMEOUT", "NETWORK_ERROR", "RATE_LIMIT"]
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "maxAttempts": self.max_attempts,
            "backoffStrategy": self.backoff_strategy,
            "baseDelayMs": self.base_delay_ms,
            "maxDelayMs": self.max_delay_ms,
            "retryableErrors": list(self.retryable_errors),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "RetryPolicy":
        data = data or {}
        default = cls()
        return cls(
            max_attempts=_int(data.get("maxAttempts"), default.max_attempts),
            backoff_strategy=str(data.get("backoffStrategy") or default.backoff_strategy),
            base_delay_ms=_int(data.get("baseDelayMs"), default.base_delay_ms),
            max_delay_ms=_int(data.get("maxDelayMs"), default.max_delay_ms),
            retryable_errors=_str_list(data.get("retryableErrors")) or default.retryable_errors,
        )

    def delay_ms(self, attempt: int) -> int:
        """Backoff before retry number *attempt* (1-based), capped at ``max_delay_ms``."""
        if self.backoff_strategy == "exponential":
            delay = self.base_delay_ms * (2 ** max(attempt - 1, 0))
        elif self.backoff_strategy == "linear":
            delay = self.base_delay_ms * max(attempt, 1)
        else:
            delay = self.base_delay_ms
        return min(delay, self.max_delay_ms)


@dataclass
class PlanMetadata:
    domain: str
    site_type: str = "municipal"
    language: str = "de"
    created_by: str = "ai"
    success_rate: float = 0.0
    avg_accuracy: float = 0.0
    robots_txt_compliant: bool = True
    gdpr_compliant: bool = True
    created_at: str = field(default_factory=utc_now)
    estimated_total_pages: Optional[int] = None
    last_successful_run: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "siteType": self.site_type,
            "language": self.language,
            "createdBy": self.created_by,
            "successRate": self.success_rate,
            "avgAccuracy": self.avg_accuracy,
            "robotsTxtCompliant": self.robots_txt_compliant,
            "gdprCompliant": self.gdpr_compliant,
            "createdAt": self.created_at,
            "estimatedTotalPages": self.estimated_total_pages,
            "lastSuccessfulRun": self.last_successful_run,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "PlanMetadata":
        data = data or {}
        pages = data.get("estimatedTotalPages")
        return cls(
            domain=str(data.get("domain", "")),
            site_type=str(data.get("siteType") or "municipal"),
            language=str(data.get("language") or "de"),
            created_by=str(data.get("createdBy") or "ai"),
            success_rate=_float(data.get("successRate")),
            avg_accuracy=_float(data.get("avgAccuracy")),
            robots_txt_compliant=bool(data.get("robotsTxtCompliant", True)),
            gdpr_compliant=bool(data.get("gdprCompliant", True)),
            created_at=str(data.get("createdAt") or utc_now()),
            estimated_total_pages=_int(pages) if pages is not None else None,
            last_successful_run=data.get("lastSuccessfulRun"),
        )


@dataclass
class PaginationInfo:
    pattern: str
    links: list[str] = field(default_factory=list)
    total_pages: Optional[int] = None
    is_paginated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.pattern,
            "links": list(self.links),
            "totalPages": self.total_pages,
            "isPaginated": self.is_paginated,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["PaginationInfo"]:
        if not data:
            return None
        total = data.get("totalPages")
        return cls(
            pattern=str(data.get("pattern", "")),
            links=_str_list(data.get("links")),
            total_pages=_int(total) if total is not None else None,
            is_paginated=bool(data.get("isPaginated", False)),
        )


@dataclass
class ScrapingPlan:
    plan_id: str
    version: int
    entry_urls: list[str]
    list_selector: str
    detail_selectors: dict[str, str]
    confidence_score: float
    metadata: PlanMetadata
    content_link_selector: Optional[str] = None
    pagination_selector: Optional[str] = None
    rich_content_fields: list[str] = field(default_factory=list)
    exclude_selectors: list[str] = field(default_factory=list)
    rate_limit_ms: int = 1000
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    pagination_info: Optional[PaginationInfo] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "planId": self.plan_id,
            "version": self.version,
            "entryUrls": list(self.entry_urls),
            "listSelector": self.list_selector,
            "contentLinkSelector": self.content_link_selector,
            "paginationSelector": self.pagination_selector,
            "detailSelectors": dict(self.detail_selectors),
            "richContentFields": list(self.rich_content_fields),
            "excludeSelectors": list(self.exclude_selectors),
            "rateLimitMs": self.rate_limit_ms,
            "retryPolicy": self.retry_policy.to_dict(),
            "confidenceScore": self.confidence_score,
            "metadata": self.metadata.to_dict(),
            "paginationInfo": self.pagination_info.to_dict() if self.pagination_info else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScrapingPlan":
        selectors = data.get("detailSelectors") or {}
        return cls(
            plan_id=str(data["planId"]),
            version=_int(data.get("version"), 1),
            entry_urls=_str_list(data.get("entryUrls")),
            list_selector=str(data.get("listSelector") or DEFAULT_LIST_SELECTOR),
            detail_selectors={str(k): str(v) for k, v in selectors.items()},
            confidence_score=_float(data.get("confidenceScore")),
            metadata=PlanMetadata.from_dict(data.get("metadata")),
            content_link_selector=data.get("contentLinkSelector") or None,
            pagination_selector=data.get("paginationSelector") or None,
            rich_content_fields=_str_list(data.get("richContentFields")),
            exclude_selectors=_str_list(data.get("excludeSelectors")),
            rate_limit_ms=_int(data.get("rateLimitMs"), 1000),
            retry_policy=RetryPolicy.from_dict(data.get("retryPolicy")),
            pagination_info=PaginationInfo.from_dict(data.get("paginationInfo")),
        )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@dataclass
class Approval:
    approved: bool
    reviewer_id: str
    comments: str = ""
    modifications: Optional[dict[str, Any]] = None
    timestamp: str = field(default_factory=utc_now)
    version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "approved": self.approved,
            "reviewerId": self.reviewer_id,
            "comments": self.comments,
            "modifications": self.modifications,
            "timestamp": self.timestamp,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Approval":
        mods = data.get("modifications")
        return cls(
            approved=bool(data.get("approved", False)),
            reviewer_id=str(data.get("reviewerId", "")),
            comments=str(data.get("comments") or ""),
            modifications=mods if isinstance(mods, dict) else None,
            timestamp=str(data.get("timestamp") or utc_now()),
            version=_int(data.get("version"), 1),
        )


@dataclass
class PlanLifecycleStatus:
    plan_id: str
    status: str
    current_version: int
    approvals: list[Approval] = field(default_factory=list)
    execution_history: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    last_execution_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "planId": self.plan_id,
            "status": self.status,
            "currentVersion": self.current_version,
            "approvals": [a.to_dict() for a in self.approvals],
            "executionHistory": list(self.execution_history),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "lastExecutionId": self.last_execution_id,
        }


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

@dataclass
class ExecutionMetrics:
    duration: float = 0.0
    items_extracted: int = 0
    pages_processed: int = 0
    errors_encountered: int = 0
    accuracy_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "duration": self.duration,
            "itemsExtracted": self.items_extracted,
            "pagesProcessed": self.pages_processed,
            "errorsEncountered": self.errors_encountered,
            "accuracyScore": self.accuracy_score,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ExecutionMetrics":
        data = data or {}
        return cls(
            duration=_float(data.get("duration")),
            items_extracted=_int(data.get("itemsExtracted")),
            pages_processed=_int(data.get("pagesProcessed")),
            errors_encountered=_int(data.get("errorsEncountered")),
            accuracy_score=_float(data.get("accuracyScore")),
        )


@dataclass
class ExecutionRecord:
    run_id: str
    plan_id: str
    status: str
    start_time: str
    end_time: Optional[str] = None
    metrics: ExecutionMetrics = field(default_factory=ExecutionMetrics)
    errors: list[str] = field(default_factory=list)
    items: list[dict[str, Any]] = field(default_factory=list)
    plan_version: Optional[int] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "planId": self.plan_id,
            "status": self.status,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "metrics": self.metrics.to_dict(),
            "errors": list(self.errors),
            "items": list(self.items),
            "planVersion": self.plan_version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class ValidationReport:
    is_valid: bool
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    score: int = 0
    checks: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "score": self.score,
            "checks": dict(self.checks),
        }


@dataclass
class ScheduleRecord:
    plan_id: str
    schedule: str
    active: bool = True
    created_at: str = field(default_factory=utc_now)
    next_run: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "planId": self.plan_id,
            "schedule": self.schedule,
            "active": self.active,
            "createdAt": self.created_at,
            "nextRun": self.next_run,
        }
