"""Tests for the hash/list store and the plan repository on top of it."""

from __future__ import annotations

import pytest

from scrapeplan.db import plans as repo
from scrapeplan.db import store
from scrapeplan.db.migrations import current_version, init_db
from scrapeplan.db.usage import USAGE_KEY, get_usage, record_usage
from scrapeplan.plans.errors import (
    ExecutionNotFoundError,
    PlanImmutableError,
    PlanNotFoundError,
    VersionConflictError,
)
from scrapeplan.plans.models import (
    Approval,
    ExecutionMetrics,
    ExecutionRecord,
    ScheduleRecord,
    utc_now,
)
from scrapeplan.plans.synthesizer import SynthesisOptions, apply_modifications, synthesize


def _plan(plan_id: str = "plan_1"):
    return synthesize("https://x.de/news", None, None, options=SynthesisOptions(plan_id=plan_id))


class TestSchema:
    def test_init_db_is_idempotent(self, conn):
        init_db(conn)
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        }
        assert {"kv_hash", "kv_list", "schema_version"} <= tables
        assert current_version(conn) == 0


class TestHashes:
    def test_hset_and_read_back(self, conn):
        store.hset(conn, "h", {"a": "1", "b": "2"})
        store.hset(conn, "h", {"a": "3"})
        assert store.hgetall(conn, "h") == {"a": "3", "b": "2"}
        assert store.hget(conn, "h", "a") == "3"
        assert store.hget(conn, "h", "missing") is None
        assert store.exists(conn, "h")

    def test_missing_key(self, conn):
        assert store.hgetall(conn, "nope") == {}
        assert not store.exists(conn, "nope")

    def test_keys_by_prefix_escapes_wildcards(self, conn):
        store.hset(conn, "plan_status:a", {"x": "1"})
        store.hset(conn, "plan_status:b", {"x": "1"})
        store.hset(conn, "planXstatus:c", {"x": "1"})
        assert store.keys(conn, "plan_status:") == ["plan_status:a", "plan_status:b"]

    def test_delete(self, conn):
        store.hset(conn, "k", {"x": "1"})
        store.lpush(conn, "k", "v")
        store.delete(conn, "k")
        assert not store.exists(conn, "k")
        assert store.llen(conn, "k") == 0


class TestLists:
    def test_newest_first(self, conn):
        for value in ("a", "b", "c"):
            store.lpush(conn, "l", value)
        assert store.lrange(conn, "l") == ["c", "b", "a"]
        assert store.lrange(conn, "l", 0, 1) == ["c", "b"]

    def test_trim_keeps_newest(self, conn):
        for i in range(5):
            store.lpush(conn, "l", str(i), keep=3)
        assert store.lrange(conn, "l") == ["4", "3", "2"]
        assert store.llen(conn, "l") == 3


class TestTransaction:
    def test_commits_on_success(self, conn):
        with store.transaction(conn):
            store._hset(conn, "t", {"a": "1"})
            store._lpush(conn, "t", "x")
        assert store.hget(conn, "t", "a") == "1"
        assert store.lrange(conn, "t") == ["x"]

    def test_rolls_back_on_error(self, conn):
        with pytest.raises(RuntimeError):
            with store.transaction(conn):
                store._hset(conn, "t", {"a": "1"})
                raise RuntimeError("boom")
        assert not store.exists(conn, "t")


class TestPlanVersions:
    def test_create_plan_writes_draft(self, conn):
        status = repo.create_plan(conn, _plan())
        assert status.status == "draft"
        assert status.current_version == 1
        assert repo.get_current_plan(conn, "plan_1").plan_id == "plan_1"
        assert repo.list_versions(conn, "plan_1") == [1]

    def test_create_twice_is_refused(self, conn):
        repo.create_plan(conn, _plan())
        with pytest.raises(PlanImmutableError):
            repo.create_plan(conn, _plan())

    def test_unknown_plan(self, conn):
        with pytest.raises(PlanNotFoundError):
            repo.get_status(conn, "plan_missing")
        with pytest.raises(PlanNotFoundError):
            repo.get_plan_version(conn, "plan_missing", 1)

    def test_versions_of_similar_ids_do_not_mix(self, conn):
        repo.create_plan(conn, _plan("plan_1"))
        repo.create_plan(conn, _plan("plan_10"))
        assert repo.list_versions(conn, "plan_1") == [1]


class TestCompareAndSet:
    def test_mutation_is_persisted(self, conn):
        repo.create_plan(conn, _plan())

        def submit(status):
            status.status = "pending_review"

        repo.compare_and_set_status(conn, "plan_1", 1, submit)
        assert repo.get_status(conn, "plan_1").status == "pending_review"

    def test_stale_version_conflicts(self, conn):
        repo.create_plan(conn, _plan())
        with pytest.raises(VersionConflictError) as info:
            repo.compare_and_set_status(conn, "plan_1", 3, lambda s: None)
        assert info.value.actual == 1

    def test_new_version_becomes_current(self, conn):
        plan = _plan()
        repo.create_plan(conn, plan)
        updated = apply_modifications(plan, {"listSelector": "div.list"})
        status = repo.compare_and_set_status(conn, "plan_1", 1, lambda s: None, new_plan=updated)
        assert status.current_version == 2
        assert repo.get_current_plan(conn, "plan_1").list_selector == "div.list"
        assert repo.get_plan_version(conn, "plan_1", 1).list_selector == plan.list_selector
        assert repo.list_versions(conn, "plan_1") == [1, 2]

    def test_mutate_failure_rolls_back(self, conn):
        plan = _plan()
        repo.create_plan(conn, plan)
        updated = apply_modifications(plan, {"listSelector": "div.list"})

        def refuse(status):
            status.status = "approved"
            raise ValueError("nope")

        with pytest.raises(ValueError):
            repo.compare_and_set_status(conn, "plan_1", 1, refuse, new_plan=updated)
        assert repo.get_status(conn, "plan_1").status == "draft"
        assert repo.list_versions(conn, "plan_1") == [1]

    def test_approvals_survive_round_trip(self, conn):
        repo.create_plan(conn, _plan())

        def approve(status):
            status.approvals.append(Approval(approved=True, reviewer_id="rev", comments="ok"))

        repo.compare_and_set_status(conn, "plan_1", None, approve)
        approvals = repo.get_status(conn, "plan_1").approvals
        assert [a.reviewer_id for a in approvals] == ["rev"]

    def test_list_plans_filters_by_status(self, conn):
        repo.create_plan(conn, _plan("plan_a"))
        repo.create_plan(conn, _plan("plan_b"))
        repo.compare_and_set_status(conn, "plan_b", None, lambda s: setattr(s, "status", "pending_review"))
        assert {r.plan_id for r in repo.list_plans(conn)} == {"plan_a", "plan_b"}
        assert [r.plan_id for r in repo.list_plans(conn, "pending_review")] == ["plan_b"]


class TestAuditLists:
    def test_history_capped(self, conn):
        for i in range(repo.MAX_HISTORY + 5):
            repo.record_history(conn, "plan_1", {"n": i})
        history = repo.get_history(conn, "plan_1")
        assert len(history) == repo.MAX_HISTORY
        assert history[0] == {"n": repo.MAX_HISTORY + 4}

    def test_modifications_and_notifications(self, conn):
        repo.record_modification(conn, "plan_1", {"version": 2})
        repo.record_notification(conn, "plan_1", {"status": "approved"})
        assert repo.get_modifications(conn, "plan_1") == [{"version": 2}]
        assert repo.get_notifications(conn, "plan_1") == [{"status": "approved"}]


class TestExecutionsAndMetrics:
    def _record(self, run_id, status, items=0, duration=0.0):
        return ExecutionRecord(
            run_id=run_id,
            plan_id="plan_1",
            status=status,
            start_time=utc_now(),
            end_time=utc_now(),
            metrics=ExecutionMetrics(duration=duration, items_extracted=items),
            items=[{"url": "https://x.de/a"}] if items else [],
            errors=[] if status == "completed" else ["boom"],
        )

    def test_save_and_get(self, conn):
        repo.save_execution(conn, self._record("run_1", "completed", items=1, duration=2.5))
        record = repo.get_execution(conn, "run_1")
        assert record.status == "completed"
        assert record.metrics.items_extracted == 1
        assert record.metrics.duration == pytest.approx(2.5)
        assert record.items == [{"url": "https://x.de/a"}]

    def test_unknown_execution(self, conn):
        with pytest.raises(ExecutionNotFoundError):
            repo.get_execution(conn, "run_missing")

    def test_metrics_aggregate(self, conn):
        repo.update_metrics(conn, self._record("run_1", "completed", items=4, duration=2.0))
        totals = repo.update_metrics(conn, self._record("run_2", "failed", duration=4.0))
        assert totals["totalRuns"] == 2
        assert totals["successfulRuns"] == 1
        assert totals["failedRuns"] == 1
        assert totals["totalItems"] == 4
        assert totals["avgDuration"] == pytest.approx(3.0)
        assert totals["successRate"] == pytest.approx(0.5)
        stored = repo.get_metrics(conn, "plan_1")
        assert stored["lastRunId"] == "run_2"
        assert stored["lastRunStatus"] == "failed"


class TestSchedules:
    def test_round_trip(self, conn):
        repo.save_schedule(conn, ScheduleRecord(plan_id="plan_1", schedule="0 6 * * *", active=False))
        schedule = repo.get_schedule(conn, "plan_1")
        assert schedule.schedule == "0 6 * * *"
        assert schedule.active is False
        assert schedule.next_run is None

    def test_missing(self, conn):
        assert repo.get_schedule(conn, "plan_1") is None


class TestUsageCounters:
    def test_empty(self, conn):
        assert get_usage(conn) == {"models": {}, "totals": {"requests": 0, "failures": 0, "tokens": 0}}

    def test_counts_accumulate_per_model(self, conn):
        record_usage(conn, "ollama", "ministral-3:8b", tokens=30)
        record_usage(conn, "ollama", "ministral-3:8b", failed=True)
        record_usage(conn, "openai", "gpt-4o-mini", tokens=-5)
        usage = get_usage(conn)
        assert usage["models"]["ollama/ministral-3:8b"] == {"requests": 2, "failures": 1, "tokens": 30}
        assert usage["models"]["openai/gpt-4o-mini"]["tokens"] == 0
        assert usage["totals"]["requests"] == 3
        assert store.hget(conn, USAGE_KEY, "ollama/ministral-3:8b|requests") == "2"
