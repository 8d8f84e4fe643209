"""Plan endpoints.

Routes
------
POST /plans                            Generate a plan (runs the workflow)
GET  /plans                            List lifecycle records (?status=)
GET  /plans/{id}                       Lifecycle record + current plan
GET  /plans/{id}/versions/{v}          One stored version
GET  /plans/{id}/doc                   Markdown documentation
POST /plans/{id}/submit                draft|failed -> pending_review
POST /plans/{id}/review                Approve / reject (optionally with modifications)
POST /plans/{id}/modify                Write version+1 as draft
POST /plans/{id}/deprecate             Any -> deprecated
POST /plans/{id}/schedule              Store a cron schedule
POST /plans/{id}/executions            Queue (or, with ?wait=true, run) an execution
GET  /plans/{id}/modifications         Modification history
GET  /plans/{id}/notifications         Status-change notifications
GET  /plans/{id}/history               Status transitions
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, HttpUrl

from scrapeplan.api.errors import http_error
from scrapeplan.plans.models import Approval
from scrapeplan.service import PlanService
from scrapeplan.workflow.generation import GenerationOptions

router = APIRouter()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class GenerateRequest(BaseModel):
    url: HttpUrl
    example_urls: list[str] = Field(default_factory=list)
    pagination_url: Optional[str] = None
    detail_selectors: Optional[dict[str, str]] = None
    rate_limit_ms: Optional[int] = None
    site_type: str = "municipal"
    language: str = "de"


class VersionedRequest(BaseModel):
    expected_version: Optional[int] = None


class ReviewRequest(VersionedRequest):
    approved: bool
    reviewer_id: str
    comments: str = ""
    modifications: Optional[dict[str, Any]] = None


class ModifyRequest(VersionedRequest):
    modifications: dict[str, Any]
    modified_by: str = "human"


class DeprecateRequest(VersionedRequest):
    reason: str = ""


class ScheduleRequest(BaseModel):
    cron: str
    active: bool = True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _service(request: Request) -> PlanService:
    return request.app.state.service


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", status_code=201, response_model=dict[str, Any])
async def generate_plan_endpoint(body: GenerateRequest, request: Request) -> dict[str, Any]:
    """Run the generation workflow and return the stored draft plan."""
    options = GenerationOptions(
        detail_selectors=body.detail_selectors,
        pagination_url=body.pagination_url,
        site_type=body.site_type,
        language=body.language,
    )
    if body.rate_limit_ms is not None:
        options.rate_limit_ms = body.rate_limit_ms
    try:
        result = await _service(request).generate_plan(str(body.url), body.example_urls, options)
    except Exception as exc:
        raise http_error(exc) from exc
    return result.to_dict()


@router.get("", response_model=list[dict[str, Any]])
def list_plans_endpoint(request: Request, status: Optional[str] = None) -> list[dict[str, Any]]:
    return [s.to_dict() for s in _service(request).list_plans(status)]


@router.get("/{plan_id}", response_model=dict[str, Any])
def get_plan_endpoint(plan_id: str, request: Request) -> dict[str, Any]:
    """Return the lifecycle record with the current plan version embedded."""
    service = _service(request)
    try:
        status = service.get_plan_status(plan_id)
        plan = service.get_plan(plan_id, status.current_version)
    except ValueError as exc:
        raise http_error(exc) from exc
    schedule = service.get_schedule(plan_id)
    return {
        **status.to_dict(),
        "plan": plan.to_dict(),
        "schedule": schedule.to_dict() if schedule else None,
    }


@router.get("/{plan_id}/versions/{version}", response_model=dict[str, Any])
def get_plan_version_endpoint(plan_id: str, version: int, request: Request) -> dict[str, Any]:
    try:
        return _service(request).get_plan(plan_id, version).to_dict()
    except ValueError as exc:
        raise http_error(exc) from exc


@router.get("/{plan_id}/doc", response_class=PlainTextResponse)
def get_plan_doc_endpoint(plan_id: str, request: Request, version: Optional[int] = None) -> str:
    try:
        return _service(request).get_plan_documentation(plan_id, version)
    except ValueError as exc:
        raise http_error(exc) from exc


@router.post("/{plan_id}/submit", response_model=dict[str, Any])
def submit_plan_endpoint(
    plan_id: str, request: Request, body: Optional[VersionedRequest] = None
) -> dict[str, Any]:
    expected = body.expected_version if body else None
    try:
        return _service(request).submit_for_review(plan_id, expected).to_dict()
    except ValueError as exc:
        raise http_error(exc) from exc


@router.post("/{plan_id}/review", response_model=dict[str, Any])
def review_plan_endpoint(plan_id: str, body: ReviewRequest, request: Request) -> dict[str, Any]:
    approval = Approval(
        approved=body.approved,
        reviewer_id=body.reviewer_id,
        comments=body.comments,
        modifications=body.modifications,
    )
    try:
        return _service(request).review_plan(plan_id, approval, body.expected_version).to_dict()
    except ValueError as exc:
        raise http_error(exc) from exc


@router.post("/{plan_id}/modify", response_model=dict[str, Any])
def modify_plan_endpoint(plan_id: str, body: ModifyRequest, request: Request) -> dict[str, Any]:
    try:
        plan = _service(request).modify_plan(
            plan_id, body.modifications, body.expected_version, body.modified_by
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return plan.to_dict()


@router.post("/{plan_id}/deprecate", response_model=dict[str, Any])
def deprecate_plan_endpoint(
    plan_id: str, request: Request, body: Optional[DeprecateRequest] = None
) -> dict[str, Any]:
    body = body or DeprecateRequest()
    try:
        return _service(request).deprecate_plan(plan_id, body.reason, body.expected_version).to_dict()
    except ValueError as exc:
        raise http_error(exc) from exc


@router.post("/{plan_id}/schedule", response_model=dict[str, Any])
def schedule_plan_endpoint(plan_id: str, body: ScheduleRequest, request: Request) -> dict[str, Any]:
    try:
        return _service(request).schedule_plan(plan_id, body.cron, body.active).to_dict()
    except ValueError as exc:
        raise http_error(exc) from exc


@router.post("/{plan_id}/executions", status_code=202, response_model=dict[str, Any])
async def execute_plan_endpoint(plan_id: str, request: Request, wait: bool = False) -> dict[str, Any]:
    """Queue a run of the plan; ``?wait=true`` runs it before responding."""
    service = _service(request)
    try:
        if wait:
            record = await service.execute_plan(plan_id)
        else:
            record = await service.queue_execution(plan_id)
    except Exception as exc:
        raise http_error(exc) from exc
    return record.to_dict()


@router.get("/{plan_id}/modifications", response_model=list[dict[str, Any]])
def get_modifications_endpoint(plan_id: str, request: Request) -> list[dict[str, Any]]:
    try:
        return _service(request).get_modification_history(plan_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@router.get("/{plan_id}/notifications", response_model=list[dict[str, Any]])
def get_notifications_endpoint(plan_id: str, request: Request) -> list[dict[str, Any]]:
    try:
        return _service(request).get_notifications(plan_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@router.get("/{plan_id}/history", response_model=list[dict[str, Any]])
def get_history_endpoint(plan_id: str, request: Request) -> list[dict[str, Any]]:
    try:
        return _service(request).get_history(plan_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@router.get("/{plan_id}/metrics", response_model=dict[str, Any])
def get_metrics_endpoint(plan_id: str, request: Request) -> dict[str, Any]:
    try:
        return _service(request).get_metrics(plan_id)
    except ValueError as exc:
        raise http_error(exc) from exc
