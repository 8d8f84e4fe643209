"""Tests for PlanService: generation, lifecycle, execution and scheduling."""

from __future__ import annotations

import asyncio

import pytest

from conftest import BASE_URL, EXAMPLE_URL, FakeAdapter, empty_runner, fake_fetch, productive_runner
from scrapeplan.plans.errors import (
    InvalidTransitionError,
    PlanNotFoundError,
    PlanValidationError,
    VersionConflictError,
)
from scrapeplan.plans.models import Approval
from scrapeplan.service import PlanService
from scrapeplan.workflow import GenerationOptions, WorkflowEngine, WorkflowFailedError


@pytest.fixture()
def service(conn) -> PlanService:
    return PlanService(
        conn,
        fetch=fake_fetch,
        engine=WorkflowEngine(retention_seconds=60),
        runner=productive_runner,
    )


def _generate(service: PlanService, **kwargs):
    return asyncio.run(service.generate_plan(BASE_URL, [EXAMPLE_URL], **kwargs))


def _approved_plan(service: PlanService) -> str:
    plan_id = _generate(service).plan.plan_id
    service.submit_for_review(plan_id)
    service.review_plan(plan_id, Approval(approved=True, reviewer_id="rev"))
    return plan_id


class TestGeneration:
    def test_generate_stores_draft(self, service):
        result = _generate(service)
        plan = result.plan
        assert plan.version == 1
        assert plan.list_selector == "body > main > ul.news-list"
        assert plan.content_link_selector == "li > a"
        assert plan.confidence_score == pytest.approx(0.6)
        assert result.validation.is_valid
        assert result.validation.score == 100
        assert result.documentation.startswith(f"# Scraping Plan: {plan.plan_id}")

        status = service.get_plan_status(plan.plan_id)
        assert status.status == "draft"
        assert status.current_version == 1
        assert service.get_history(plan.plan_id)[0]["to"] == "draft"
        assert service.get_notifications(plan.plan_id)[0]["recipients"] == ["administrators"]

    def test_workflow_record_is_kept(self, service):
        result = _generate(service)
        workflow = service.get_workflow(result.workflow_id)
        assert workflow.status == "completed"
        assert [s.step_id for s in workflow.steps] == [
            "fetch_html",
            "discover_sibling_links",
            "analyze_content",
            "generate_plan",
            "validate_plan",
            "store_plan",
        ]

    def test_supplied_detail_selectors_skip_analysis(self, service):
        options = GenerationOptions(detail_selectors={"title": "h1", "description": "p"})
        plan = _generate(service, options=options).plan
        assert plan.detail_selectors == {"title": "h1", "description": "p"}

    def test_model_detail_selectors_are_used(self, conn):
        adapter = FakeAdapter(
            "not json",
            '{"detailSelectors": {"title": "h1", "startDate": ".date"}, '
            '"richContentFields": ["description"], "confidence": 0.9}',
        )
        service = PlanService(conn, adapter=adapter, fetch=fake_fetch)
        plan = _generate(service).plan
        assert plan.detail_selectors["title"] == "h1"
        assert plan.detail_selectors["startDate"] == ".date"
        assert plan.rich_content_fields == ["description"]
        assert plan.confidence_score == pytest.approx(0.9)
        usage = service.get_llm_usage()
        assert usage["models"]["fake/fake-model"]["requests"] == len(adapter.requests)
        assert usage["totals"]["failures"] == 0

    def test_failed_completions_are_counted(self, conn, failing_adapter):
        service = PlanService(conn, adapter=failing_adapter, fetch=fake_fetch)
        _generate(service)
        usage = service.get_llm_usage()
        assert usage["models"]["unknown"]["failures"] == len(failing_adapter.requests)
        assert usage["totals"]["requests"] == usage["totals"]["failures"]

    def test_usage_is_empty_without_adapter(self, service):
        _generate(service)
        assert service.get_llm_usage()["models"] == {}

    def test_unreachable_entry_page_fails(self, service):
        with pytest.raises(WorkflowFailedError) as info:
            asyncio.run(service.generate_plan("https://unreachable.example/", []))
        assert info.value.step_id == "fetch_html"
        assert service.list_plans() == []


class TestLifecycle:
    def test_submit_and_approve(self, service):
        plan_id = _approved_plan(service)
        status = service.get_plan_status(plan_id)
        assert status.status == "approved"
        assert [a.reviewer_id for a in status.approvals] == ["rev"]
        assert status.approvals[0].version == 1

        latest = service.get_notifications(plan_id)[0]
        assert latest["status"] == "approved"
        assert latest["recipients"] == ["operators", "plan_creator"]
        assert latest["previousStatus"] == "pending_review"

    def test_reject_notifies_creator_and_reviewers(self, service):
        plan_id = _generate(service).plan.plan_id
        service.submit_for_review(plan_id)
        service.review_plan(plan_id, Approval(approved=False, reviewer_id="rev", comments="too broad"))
        assert service.get_plan_status(plan_id).status == "rejected"
        latest = service.get_notifications(plan_id)[0]
        assert latest["recipients"] == ["plan_creator", "reviewers"]
        assert "too broad" in latest["message"]

    def test_review_requires_pending_review(self, service):
        plan_id = _generate(service).plan.plan_id
        with pytest.raises(InvalidTransitionError):
            service.review_plan(plan_id, Approval(approved=True, reviewer_id="rev"))
        status = service.get_plan_status(plan_id)
        assert status.status == "draft"
        assert status.approvals == []

    def test_approval_with_modifications_creates_new_draft(self, service):
        plan_id = _generate(service).plan.plan_id
        service.submit_for_review(plan_id)
        status = service.review_plan(
            plan_id,
            Approval(approved=True, reviewer_id="rev", modifications={"rateLimitMs": 2000}),
        )
        assert status.status == "draft"
        assert status.current_version == 2
        assert status.approvals[0].version == 1
        assert service.get_plan(plan_id).rate_limit_ms == 2000
        assert service.get_plan(plan_id, 1).rate_limit_ms != 2000
        assert service.get_modification_history(plan_id)[0]["modifiedBy"] == "rev"

    def test_modify_writes_new_version(self, service):
        plan_id = _generate(service).plan.plan_id
        plan = service.modify_plan(plan_id, {"listSelector": "main ul"}, expected_version=1)
        assert plan.version == 2
        assert service.get_plan(plan_id).list_selector == "main ul"
        entry = service.get_modification_history(plan_id)[0]
        assert entry["version"] == 2
        assert entry["previousVersion"] == 1
        assert entry["modifications"] == ["listSelector"]

    def test_modify_with_stale_version_conflicts(self, service):
        plan_id = _generate(service).plan.plan_id
        service.modify_plan(plan_id, {"listSelector": "main ul"})
        with pytest.raises(VersionConflictError):
            service.modify_plan(plan_id, {"listSelector": "ul"}, expected_version=1)

    def test_invalid_modification_is_not_stored(self, service):
        plan_id = _generate(service).plan.plan_id
        with pytest.raises(PlanValidationError):
            service.modify_plan(plan_id, {"entryUrls": ["ftp://x.de/list"]})
        assert service.get_plan_status(plan_id).current_version == 1

    def test_approved_plan_returns_to_draft_when_modified(self, service):
        plan_id = _approved_plan(service)
        service.modify_plan(plan_id, {"excludeSelectors": ["nav"]})
        assert service.get_plan_status(plan_id).status == "draft"

    def test_deprecated_plan_is_frozen(self, service):
        plan_id = _generate(service).plan.plan_id
        service.deprecate_plan(plan_id, reason="site relaunch")
        assert service.get_plan_status(plan_id).status == "deprecated"
        with pytest.raises(InvalidTransitionError):
            service.modify_plan(plan_id, {"listSelector": "ul"})
        with pytest.raises(InvalidTransitionError):
            service.submit_for_review(plan_id)

    def test_unknown_plan(self, service):
        with pytest.raises(PlanNotFoundError):
            service.get_plan_status("plan_missing")
        with pytest.raises(PlanNotFoundError):
            service.get_history("plan_missing")

    def test_list_plans_by_status(self, service):
        first = _generate(service).plan.plan_id
        second = _generate(service).plan.plan_id
        service.submit_for_review(second)
        assert [s.plan_id for s in service.list_plans("draft")] == [first]
        assert {s.plan_id for s in service.list_plans()} == {first, second}


class TestExecution:
    def test_successful_run(self, service):
        plan_id = _approved_plan(service)
        record = asyncio.run(service.execute_plan(plan_id, run_id="run_ok"))
        assert record.status == "completed"
        assert record.metrics.items_extracted == 1
        assert record.metrics.accuracy_score == pytest.approx(1.0)
        assert service.get_execution("run_ok").status == "completed"

        status = service.get_plan_status(plan_id)
        assert status.status == "approved"
        assert status.last_execution_id == "run_ok"
        assert status.execution_history == ["run_ok"]

        metrics = service.get_metrics(plan_id)
        assert metrics["totalRuns"] == "1"
        assert metrics["successfulRuns"] == "1"

    def test_run_without_items_fails_plan(self, service):
        plan_id = _approved_plan(service)
        with pytest.raises(WorkflowFailedError) as info:
            asyncio.run(service.execute_plan(plan_id, run_id="run_bad", runner=empty_runner))
        assert info.value.step_id == "validate_results"

        record = service.get_execution("run_bad")
        assert record.status == "failed"
        assert any("No items extracted" in e for e in record.errors)
        assert service.get_plan_status(plan_id).status == "failed"
        assert service.get_metrics(plan_id)["failedRuns"] == "1"
        assert service.get_notifications(plan_id)[0]["recipients"] == ["administrators", "operators"]

        service.submit_for_review(plan_id)
        assert service.get_plan_status(plan_id).status == "pending_review"

    def test_draft_plan_cannot_run(self, service):
        plan_id = _generate(service).plan.plan_id
        with pytest.raises(InvalidTransitionError):
            asyncio.run(service.execute_plan(plan_id))

    def test_queued_run_completes_in_background(self, service):
        plan_id = _approved_plan(service)

        async def scenario():
            queued = await service.queue_execution(plan_id)
            assert queued.status == "queued"
            await service.wait_for_executions()
            return queued.run_id

        run_id = asyncio.run(scenario())
        assert service.get_execution(run_id).status == "completed"
        assert service.get_plan_status(plan_id).status == "approved"

    def test_queue_requires_approved_plan(self, service):
        plan_id = _generate(service).plan.plan_id
        with pytest.raises(InvalidTransitionError):
            asyncio.run(service.queue_execution(plan_id))


class TestScheduling:
    def test_schedule_plan(self, service):
        plan_id = _generate(service).plan.plan_id
        record = service.schedule_plan(plan_id, "0 6 * * *")
        assert record.active
        assert record.next_run
        assert service.get_schedule(plan_id).schedule == "0 6 * * *"

    def test_invalid_cron(self, service):
        plan_id = _generate(service).plan.plan_id
        with pytest.raises(ValueError):
            service.schedule_plan(plan_id, "61 * * * *")

    def test_deprecated_plan_cannot_be_scheduled(self, service):
        plan_id = _generate(service).plan.plan_id
        service.deprecate_plan(plan_id)
        with pytest.raises(InvalidTransitionError):
            service.schedule_plan(plan_id, "0 6 * * *")
