"""Plan service: the orchestration layer behind the API and the CLI.

``PlanService`` wires the resolvers, the completion adapter, the workflow
engine and the plan store together.  It owns no state of its own besides the
engine's workflow records and the set of background execution tasks.

Usage::

    conn = get_connection()
    init_db(conn)
    service = PlanService(conn, adapter=CompletionAdapter())
    result = asyncio.run(service.generate_plan(url, [example_url]))
"""

from __future__ import annotations

import asyncio
import inspect
import sqlite3
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from loguru import logger

from scrapeplan.db import plans as plan_store
from scrapeplan.db.usage import get_usage
from scrapeplan.llm.results import DetailAnalysisResult
from scrapeplan.llm.usage import UsageTrackingAdapter
from scrapeplan.plans.documentation import render_plan_markdown
from scrapeplan.plans.errors import (
    ExecutionNotFoundError,
    InvalidTransitionError,
    PlanValidationError,
    VersionConflictError,
)
from scrapeplan.plans.lifecycle import check_modifiable, check_transition, recipients_for
from scrapeplan.plans.models import (
    APPROVED,
    DEPRECATED,
    DRAFT,
    EXECUTING,
    FAILED,
    PENDING_REVIEW,
    REJECTED,
    RUN_FAILED,
    RUN_QUEUED,
    Approval,
    ExecutionRecord,
    PlanLifecycleStatus,
    ScheduleRecord,
    ScrapingPlan,
    ValidationReport,
    utc_now,
)
from scrapeplan.plans.synthesizer import apply_modifications
from scrapeplan.plans.validation import validate_plan
from scrapeplan.resolution.container import ContainerResolver
from scrapeplan.resolution.models import ContainerAnalysis, PaginationAnalysis
from scrapeplan.resolution.pagination import PaginationResolver
from scrapeplan.scheduling.cron import calculate_next_run, is_valid_cron_expression
from scrapeplan.scraper.fetcher import fetch_page
from scrapeplan.scraper.models import PageSnapshot
from scrapeplan.workflow.engine import WorkflowEngine
from scrapeplan.workflow.execution import PlanRunner, execution_steps, make_plan_runner
from scrapeplan.workflow.generation import GenerationOptions, generation_steps
from scrapeplan.workflow.state import WorkflowFailedError, WorkflowState


@dataclass
class PlanGenerationResult:
    plan: ScrapingPlan
    workflow_id: str
    validation: ValidationReport
    documentation: str
    container_analyses: list[ContainerAnalysis] = field(default_factory=list)
    pagination: Optional[PaginationAnalysis] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "workflowId": self.workflow_id,
            "validation": self.validation.to_dict(),
            "documentation": self.documentation,
            "containerAnalyses": [a.to_dict() for a in self.container_analyses],
            "pagination": self.pagination.to_dict() if self.pagination else None,
        }


class PlanService:
    """Generate, review, modify, execute and schedule scraping plans.

    Args:
        conn: Open, initialised DB connection.
        adapter: Completion adapter shared by the resolvers; ``None`` runs
            the heuristics only.  Every call through it is counted in the
            store (see :meth:`get_llm_usage`).
        fetch: ``url -> PageSnapshot``, sync or async.  Sync callables run
            in a worker thread.
        engine: Workflow engine; a fresh one by default.
        runner: Plan runner used by executions; defaults to the crawling
            runner built on *fetch*.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        adapter: Any = None,
        fetch: Callable[[str], Any] = fetch_page,
        engine: Optional[WorkflowEngine] = None,
        runner: Optional[PlanRunner] = None,
    ) -> None:
        self.conn = conn
        if adapter is not None:
            adapter = UsageTrackingAdapter(adapter, conn)
        self.adapter = adapter
        self._fetch_fn = fetch
        self.engine = engine or WorkflowEngine()
        self.container_resolver = ContainerResolver(adapter)
        self.pagination_resolver = PaginationResolver(adapter)
        self.runner = runner or make_plan_runner(self._fetch)
        self._tasks: set[asyncio.Task] = set()

    async def _fetch(self, url: str) -> PageSnapshot:
        if inspect.iscoroutinefunction(self._fetch_fn):
            return await self._fetch_fn(url)
        return await asyncio.to_thread(self._fetch_fn, url)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_plan(
        self,
        url: str,
        example_urls: Sequence[str] = (),
        options: Optional[GenerationOptions] = None,
    ) -> PlanGenerationResult:
        """Run the generation workflow and store the plan as ``draft`` v1.

        Raises:
            WorkflowFailedError: A generation step failed (e.g. the entry
                page could not be fetched).  Nothing is stored in that case
                unless the failing step was after ``store_plan``.
        """
        logger.info(f"[PLAN] generating plan for {url} with {len(example_urls)} examples")
        steps = generation_steps(
            self.conn, self._fetch, self.container_resolver, self.pagination_resolver, self.adapter
        )
        workflow = await self.engine.run(
            "generation",
            steps,
            {"url": url, "example_urls": list(example_urls), "options": options or GenerationOptions()},
        )
        ctx = workflow.context
        plan: ScrapingPlan = ctx["plan"]
        detail: Optional[DetailAnalysisResult] = ctx.get("detail_analysis")
        analyses = list(ctx.get("container_analyses") or [])
        pagination = ctx.get("pagination")

        self._notify(plan.plan_id, DRAFT, plan.version, f"Plan {plan.plan_id} generated")
        return PlanGenerationResult(
            plan=plan,
            workflow_id=workflow.workflow_id,
            validation=ctx["validation"],
            documentation=render_plan_markdown(plan, analyses, detail, pagination),
            container_analyses=analyses,
            pagination=pagination,
        )

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowState]:
        return self.engine.get(workflow_id)

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def _notify(self, plan_id: str, status: str, version: int, message: str, **extra: Any) -> None:
        entry = {
            "planId": plan_id,
            "status": status,
            "version": version,
            "recipients": recipients_for(status),
            "message": message,
            "timestamp": utc_now(),
        }
        entry.update(extra)
        plan_store.record_notification(self.conn, plan_id, entry)
        logger.info(f"[LIFECYCLE] notify {', '.join(entry['recipients'])}: {message}")

    def _transition(
        self,
        plan_id: str,
        target: str,
        expected_version: Optional[int] = None,
        actor: str = "system",
        message: str = "",
        before: Optional[Callable[[PlanLifecycleStatus], None]] = None,
    ) -> PlanLifecycleStatus:
        previous: dict[str, str] = {}

        def mutate(status: PlanLifecycleStatus) -> None:
            check_transition(plan_id, status.status, target)
            previous["status"] = status.status
            if before is not None:
                before(status)
            status.status = target

        status = plan_store.compare_and_set_status(self.conn, plan_id, expected_version, mutate)
        plan_store.record_history(
            self.conn,
            plan_id,
            {
                "from": previous["status"],
                "to": target,
                "version": status.current_version,
                "timestamp": status.updated_at,
                "actor": actor,
            },
        )
        self._notify(
            plan_id,
            target,
            status.current_version,
            message or f"Plan {plan_id} is now {target}",
            previousStatus=previous["status"],
        )
        logger.info(f"[LIFECYCLE] {plan_id}: {previous['status']} -> {target}")
        return status

    def _write_version(
        self,
        plan_id: str,
        modifications: dict[str, Any],
        expected_version: Optional[int],
        modified_by: str,
        extra_mutation: Optional[Callable[[PlanLifecycleStatus], None]] = None,
    ) -> tuple[ScrapingPlan, PlanLifecycleStatus]:
        current = plan_store.get_status(self.conn, plan_id)
        base_version = current.current_version if expected_version is None else expected_version
        if base_version != current.current_version:
            raise VersionConflictError(plan_id, base_version, current.current_version)
        check_modifiable(plan_id, current.status)

        new_plan = apply_modifications(
            plan_store.get_plan_version(self.conn, plan_id, base_version), modifications
        )
        report = validate_plan(new_plan)
        if not report.is_valid:
            raise PlanValidationError(plan_id, report.issues)

        previous: dict[str, str] = {}

        def mutate(status: PlanLifecycleStatus) -> None:
            if extra_mutation is not None:
                extra_mutation(status)
            else:
                check_modifiable(plan_id, status.status)
            previous["status"] = status.status
            status.status = DRAFT

        status = plan_store.compare_and_set_status(
            self.conn, plan_id, base_version, mutate, new_plan=new_plan
        )
        plan_store.record_modification(
            self.conn,
            plan_id,
            {
                "version": new_plan.version,
                "previousVersion": base_version,
                "modifications": sorted(modifications),
                "modifiedBy": modified_by,
                "timestamp": status.updated_at,
                "validationScore": report.score,
                "warnings": report.warnings,
            },
        )
        plan_store.record_history(
            self.conn,
            plan_id,
            {
                "from": previous["status"],
                "to": DRAFT,
                "version": new_plan.version,
                "timestamp": status.updated_at,
                "actor": modified_by,
            },
        )
        logger.info(f"[LIFECYCLE] {plan_id}: v{base_version} -> v{new_plan.version} ({DRAFT})")
        return new_plan, status

    # ------------------------------------------------------------------
    # Review and lifecycle
    # ------------------------------------------------------------------

    def submit_for_review(
        self, plan_id: str, expected_version: Optional[int] = None, actor: str = "system"
    ) -> PlanLifecycleStatus:
        return self._transition(
            plan_id, PENDING_REVIEW, expected_version, actor, f"Plan {plan_id} awaits review"
        )

    def review_plan(
        self, plan_id: str, approval: Approval, expected_version: Optional[int] = None
    ) -> PlanLifecycleStatus:
        """Record *approval* and approve or reject the plan.

        An approval that carries modifications writes the modified plan as a
        new ``draft`` version, which needs its own review.

        Raises:
            PlanNotFoundError, InvalidTransitionError, VersionConflictError,
            PlanValidationError
        """
        target = APPROVED if approval.approved else REJECTED
        verdict = "approved" if approval.approved else "rejected"

        def record_approval(status: PlanLifecycleStatus) -> None:
            check_transition(plan_id, status.status, target)
            approval.version = status.current_version
            status.approvals.append(approval)

        if approval.approved and approval.modifications:
            _, status = self._write_version(
                plan_id,
                approval.modifications,
                expected_version,
                approval.reviewer_id,
                extra_mutation=record_approval,
            )
            self._notify(
                plan_id,
                DRAFT,
                status.current_version,
                f"Plan {plan_id} approved with modifications by {approval.reviewer_id}; "
                f"v{status.current_version} needs review",
                reviewerId=approval.reviewer_id,
            )
            return status

        return self._transition(
            plan_id,
            target,
            expected_version,
            approval.reviewer_id,
            f"Plan {plan_id} {verdict} by {approval.reviewer_id}"
            + (f": {approval.comments}" if approval.comments else ""),
            before=record_approval,
        )

    def modify_plan(
        self,
        plan_id: str,
        modifications: dict[str, Any],
        expected_version: Optional[int] = None,
        modified_by: str = "human",
    ) -> ScrapingPlan:
        """Write the modified plan as version+1 in ``draft``."""
        new_plan, status = self._write_version(plan_id, modifications, expected_version, modified_by)
        self._notify(plan_id, DRAFT, status.current_version, f"Plan {plan_id} modified by {modified_by}")
        return new_plan

    def deprecate_plan(
        self, plan_id: str, reason: str = "", expected_version: Optional[int] = None
    ) -> PlanLifecycleStatus:
        return self._transition(
            plan_id,
            DEPRECATED,
            expected_version,
            message=f"Plan {plan_id} deprecated" + (f": {reason}" if reason else ""),
        )

    def get_plan_status(self, plan_id: str) -> PlanLifecycleStatus:
        return plan_store.get_status(self.conn, plan_id)

    def get_plan(self, plan_id: str, version: Optional[int] = None) -> ScrapingPlan:
        if version is None:
            return plan_store.get_current_plan(self.conn, plan_id)
        return plan_store.get_plan_version(self.conn, plan_id, version)

    def get_plan_documentation(self, plan_id: str, version: Optional[int] = None) -> str:
        return render_plan_markdown(self.get_plan(plan_id, version))

    def list_plans(self, status: Optional[str] = None) -> list[PlanLifecycleStatus]:
        return plan_store.list_plans(self.conn, status)

    def get_modification_history(self, plan_id: str) -> list[dict[str, Any]]:
        plan_store.get_status(self.conn, plan_id)
        return plan_store.get_modifications(self.conn, plan_id)

    def get_notifications(self, plan_id: str) -> list[dict[str, Any]]:
        plan_store.get_status(self.conn, plan_id)
        return plan_store.get_notifications(self.conn, plan_id)

    def get_history(self, plan_id: str) -> list[dict[str, Any]]:
        plan_store.get_status(self.conn, plan_id)
        return plan_store.get_history(self.conn, plan_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def new_run_id() -> str:
        return f"run_{uuid.uuid4().hex[:16]}"

    async def execute_plan(
        self, plan_id: str, run_id: Optional[str] = None, runner: Optional[PlanRunner] = None
    ) -> ExecutionRecord:
        """Run the current version of an ``approved`` plan.

        The plan is ``executing`` for the duration of the run and returns to
        ``approved`` on success or moves to ``failed`` otherwise.

        Raises:
            InvalidTransitionError: The plan is not ``approved``.
            WorkflowFailedError: An execution step failed; the execution
                record holds the error.
        """
        run_id = run_id or self.new_run_id()

        def start(status: PlanLifecycleStatus) -> None:
            status.last_execution_id = run_id
            status.execution_history.append(run_id)

        status = self._transition(
            plan_id, EXECUTING, message=f"Plan {plan_id} executing run {run_id}", before=start
        )
        plan = plan_store.get_plan_version(self.conn, plan_id, status.current_version)

        try:
            workflow = await self.engine.run(
                "execution",
                execution_steps(self.conn, runner or self.runner),
                {"plan_id": plan_id, "run_id": run_id, "plan": plan},
            )
        except WorkflowFailedError as exc:
            record = self._mark_run_failed(plan_id, run_id, str(exc), plan.version)
            plan_store.update_metrics(self.conn, record)
            self._transition(plan_id, FAILED, message=f"Plan {plan_id} run {run_id} failed")
            raise

        self._transition(plan_id, APPROVED, message=f"Plan {plan_id} run {run_id} completed")
        return workflow.context["record"]

    def _mark_run_failed(
        self, plan_id: str, run_id: str, error: str, plan_version: Optional[int] = None
    ) -> ExecutionRecord:
        try:
            record = plan_store.get_execution(self.conn, run_id)
        except ExecutionNotFoundError:
            record = ExecutionRecord(
                run_id=run_id, plan_id=plan_id, status=RUN_FAILED, start_time=utc_now()
            )
        record.status = RUN_FAILED
        record.end_time = utc_now()
        record.errors.append(error)
        record.metrics.errors_encountered = len(record.errors)
        if plan_version is not None:
            record.plan_version = plan_version
        plan_store.save_execution(self.conn, record)
        logger.error(f"[EXECUTION] {run_id} failed: {error}")
        return record

    async def queue_execution(self, plan_id: str, run_id: Optional[str] = None) -> ExecutionRecord:
        """Record a ``queued`` run and start it in the background.

        Returns as soon as the queued record is stored.  The background task
        writes its own outcome (including failures) into that record.
        """
        status = plan_store.get_status(self.conn, plan_id)
        if status.status != APPROVED:
            raise InvalidTransitionError(plan_id, status.status, EXECUTING)

        run_id = run_id or self.new_run_id()
        record = ExecutionRecord(
            run_id=run_id,
            plan_id=plan_id,
            status=RUN_QUEUED,
            start_time=utc_now(),
            plan_version=status.current_version,
        )
        plan_store.save_execution(self.conn, record)

        task = asyncio.create_task(self._run_in_background(plan_id, run_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"[EXECUTION] queued {run_id} for {plan_id}")
        return record

    async def _run_in_background(self, plan_id: str, run_id: str) -> None:
        try:
            await self.execute_plan(plan_id, run_id)
        except WorkflowFailedError as exc:
            # Already written into the execution record and plan status.
            logger.debug(f"[EXECUTION] background run {run_id} ended: {exc}")
        except Exception as exc:
            self._mark_run_failed(plan_id, run_id, str(exc))

    async def wait_for_executions(self) -> None:
        """Wait until every queued background run has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_execution(self, run_id: str) -> ExecutionRecord:
        return plan_store.get_execution(self.conn, run_id)

    def get_metrics(self, plan_id: str) -> dict[str, str]:
        plan_store.get_status(self.conn, plan_id)
        return plan_store.get_metrics(self.conn, plan_id)

    def get_llm_usage(self) -> dict[str, Any]:
        """Completion requests, failures and tokens per provider/model."""
        return get_usage(self.conn)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule_plan(self, plan_id: str, cron: str, active: bool = True) -> ScheduleRecord:
        """Store a cron schedule for *plan_id* with its next run time.

        Raises:
            ValueError: If *cron* is not a valid five- or six-field expression.
            PlanNotFoundError: Unknown plan.
        """
        status = plan_store.get_status(self.conn, plan_id)
        if status.status == DEPRECATED:
            raise InvalidTransitionError(plan_id, status.status, "scheduled")
        if not is_valid_cron_expression(cron):
            raise ValueError(f"Invalid cron expression: {cron!r}")
        record = ScheduleRecord(
            plan_id=plan_id,
            schedule=cron,
            active=active,
            next_run=calculate_next_run(cron).isoformat(),
        )
        plan_store.save_schedule(self.conn, record)
        logger.info(f"[SCHEDULE] {plan_id} scheduled {cron!r}, next run {record.next_run}")
        return record

    def get_schedule(self, plan_id: str) -> Optional[ScheduleRecord]:
        return plan_store.get_schedule(self.conn, plan_id)
