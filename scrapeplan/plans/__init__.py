"""Plan documents, lifecycle rules, synthesis and validation."""

from scrapeplan.plans.documentation import render_plan_markdown
from scrapeplan.plans.errors import (
    ExecutionNotFoundError,
    InvalidTransitionError,
    PlanImmutableError,
    PlanNotFoundError,
    PlanValidationError,
    VersionConflictError,
)
from scrapeplan.plans.models import (
    Approval,
    ExecutionMetrics,
    ExecutionRecord,
    PlanLifecycleStatus,
    PlanMetadata,
    RetryPolicy,
    ScheduleRecord,
    ScrapingPlan,
    ValidationReport,
)
from scrapeplan.plans.synthesizer import SynthesisOptions, apply_modifications, synthesize
from scrapeplan.plans.validation import validate_plan

__all__ = [
    "render_plan_markdown",
    "ExecutionNotFoundError",
    "InvalidTransitionError",
    "PlanImmutableError",
    "PlanNotFoundError",
    "PlanValidationError",
    "VersionConflictError",
    "Approval",
    "ExecutionMetrics",
    "ExecutionRecord",
    "PlanLifecycleStatus",
    "PlanMetadata",
    "RetryPolicy",
    "ScheduleRecord",
    "ScrapingPlan",
    "ValidationReport",
    "SynthesisOptions",
    "apply_modifications",
    "synthesize",
    "validate_plan",
]
