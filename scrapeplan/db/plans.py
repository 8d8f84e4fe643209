"""Plan, lifecycle, execution and schedule records in the hash/list store.

Key layout::

    plan:{planId}:{version}        one immutable plan version
    plan_status:{planId}           lifecycle record (the only mutable plan state)
    execution:{runId}              one execution run
    schedule:{planId}              cron schedule
    plan_metrics:{planId}          aggregated run metrics
    plan_modifications:{planId}    list, newest 50 kept
    plan_notifications:{planId}    list, newest 100 kept
    plan_history:{planId}          list, newest 100 kept

Lifecycle writes go through :func:`compare_and_set_status`, which re-reads
the record inside ``BEGIN IMMEDIATE`` and refuses to write when the caller's
expected version is stale.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Callable, Optional

from scrapeplan.db import store
from scrapeplan.plans.errors import (
    ExecutionNotFoundError,
    PlanImmutableError,
    PlanNotFoundError,
    VersionConflictError,
)
from scrapeplan.plans.models import (
    DRAFT,
    Approval,
    ExecutionMetrics,
    ExecutionRecord,
    PlanLifecycleStatus,
    ScheduleRecord,
    ScrapingPlan,
    utc_now,
)

MAX_MODIFICATIONS = 50
MAX_NOTIFICATIONS = 100
MAX_HISTORY = 100


def plan_key(plan_id: str, version: int) -> str:
    return f"plan:{plan_id}:{version}"


def status_key(plan_id: str) -> str:
    return f"plan_status:{plan_id}"


def execution_key(run_id: str) -> str:
    return f"execution:{run_id}"


def schedule_key(plan_id: str) -> str:
    return f"schedule:{plan_id}"


def metrics_key(plan_id: str) -> str:
    return f"plan_metrics:{plan_id}"


def _loads(raw: Optional[str], default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def _status_to_fields(status: PlanLifecycleStatus) -> dict[str, str]:
    return {
        "planId": status.plan_id,
        "status": status.status,
        "currentVersion": str(status.current_version),
        "approvals": json.dumps([a.to_dict() for a in status.approvals]),
        "executionHistory": json.dumps(status.execution_history),
        "createdAt": status.created_at,
        "updatedAt": status.updated_at,
        "lastExecutionId": status.last_execution_id or "",
    }


def _fields_to_status(plan_id: str, fields: dict[str, str]) -> PlanLifecycleStatus:
    approvals = _loads(fields.get("approvals"), [])
    history = _loads(fields.get("executionHistory"), [])
    return PlanLifecycleStatus(
        plan_id=fields.get("planId") or plan_id,
        status=fields.get("status") or DRAFT,
        current_version=int(fields.get("currentVersion") or 1),
        approvals=[Approval.from_dict(a) for a in approvals if isinstance(a, dict)],
        execution_history=[str(h) for h in history] if isinstance(history, list) else [],
        created_at=fields.get("createdAt") or utc_now(),
        updated_at=fields.get("updatedAt") or utc_now(),
        last_execution_id=fields.get("lastExecutionId") or None,
    )


def _execution_to_fields(record: ExecutionRecord) -> dict[str, str]:
    return {
        "runId": record.run_id,
        "planId": record.plan_id,
        "status": record.status,
        "startTime": record.start_time,
        "endTime": record.end_time or "",
        "metrics": json.dumps(record.metrics.to_dict()),
        "errors": json.dumps(record.errors),
        "items": json.dumps(record.items),
        "planVersion": "" if record.plan_version is None else str(record.plan_version),
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
    }


def _fields_to_execution(run_id: str, fields: dict[str, str]) -> ExecutionRecord:
    version = fields.get("planVersion")
    return ExecutionRecord(
        run_id=fields.get("runId") or run_id,
        plan_id=fields.get("planId", ""),
        status=fields.get("status") or "queued",
        start_time=fields.get("startTime") or "",
        end_time=fields.get("endTime") or None,
        metrics=ExecutionMetrics.from_dict(_loads(fields.get("metrics"), {})),
        errors=[str(e) for e in _loads(fields.get("errors"), [])],
        items=[i for i in _loads(fields.get("items"), []) if isinstance(i, dict)],
        plan_version=int(version) if version else None,
        created_at=fields.get("createdAt") or utc_now(),
        updated_at=fields.get("updatedAt") or utc_now(),
    )


# ---------------------------------------------------------------------------
# Plan versions
# ---------------------------------------------------------------------------

def _write_plan_version(conn: sqlite3.Connection, plan: ScrapingPlan, status: str) -> None:
    key = plan_key(plan.plan_id, plan.version)
    if store.exists(conn, key):
        raise PlanImmutableError(plan.plan_id, plan.version)
    store._hset(
        conn,
        key,
        {
            "planId": plan.plan_id,
            "version": str(plan.version),
            "plan": json.dumps(plan.to_dict()),
            "status": status,
            "createdAt": utc_now(),
        },
    )


def get_plan_version(conn: sqlite3.Connection, plan_id: str, version: int) -> ScrapingPlan:
    """Load one stored version.

    Raises:
        PlanNotFoundError: If ``plan:{plan_id}:{version}`` does not exist.
    """
    raw = store.hget(conn, plan_key(plan_id, version), "plan")
    data = _loads(raw, None)
    if not isinstance(data, dict):
        raise PlanNotFoundError(plan_id, version)
    return ScrapingPlan.from_dict(data)


def list_versions(conn: sqlite3.Connection, plan_id: str) -> list[int]:
    prefix = f"plan:{plan_id}:"
    versions = []
    for key in store.keys(conn, prefix):
        suffix = key[len(prefix):]
        if suffix.isdigit():
            versions.append(int(suffix))
    return sorted(versions)


def create_plan(conn: sqlite3.Connection, plan: ScrapingPlan) -> PlanLifecycleStatus:
    """Persist *plan* and a fresh ``draft`` lifecycle record atomically.

    Raises:
        PlanImmutableError: If the plan id (or this version) already exists.
    """
    now = utc_now()
    status = PlanLifecycleStatus(
        plan_id=plan.plan_id,
        status=DRAFT,
        current_version=plan.version,
        created_at=now,
        updated_at=now,
    )
    with store.transaction(conn):
        if store.exists(conn, status_key(plan.plan_id)):
            raise PlanImmutableError(plan.plan_id, plan.version)
        _write_plan_version(conn, plan, DRAFT)
        store._hset(conn, status_key(plan.plan_id), _status_to_fields(status))
    return status


# ---------------------------------------------------------------------------
# Lifecycle status
# ---------------------------------------------------------------------------

def get_status(conn: sqlite3.Connection, plan_id: str) -> PlanLifecycleStatus:
    """Raises :class:`PlanNotFoundError` when there is no lifecycle record."""
    fields = store.hgetall(conn, status_key(plan_id))
    if not fields:
        raise PlanNotFoundError(plan_id)
    return _fields_to_status(plan_id, fields)


def get_current_plan(conn: sqlite3.Connection, plan_id: str) -> ScrapingPlan:
    status = get_status(conn, plan_id)
    return get_plan_version(conn, plan_id, status.current_version)


def compare_and_set_status(
    conn: sqlite3.Connection,
    plan_id: str,
    expected_version: Optional[int],
    mutate: Callable[[PlanLifecycleStatus], None],
    new_plan: Optional[ScrapingPlan] = None,
) -> PlanLifecycleStatus:
    """Atomically update the lifecycle record of *plan_id*.

    Inside one ``BEGIN IMMEDIATE`` transaction: re-read the record, check
    ``currentVersion == expected_version`` (skipped when ``None``), let
    *mutate* change the record in place (it may raise to abort), optionally
    write *new_plan* as a new immutable version and make it current, then
    write the record back.

    Raises:
        PlanNotFoundError: No lifecycle record.
        VersionConflictError: The record moved past *expected_version*.
        PlanImmutableError: *new_plan*'s version already exists.
    """
    with store.transaction(conn):
        fields = store.hgetall(conn, status_key(plan_id))
        if not fields:
            raise PlanNotFoundError(plan_id)
        status = _fields_to_status(plan_id, fields)
        if expected_version is not None and status.current_version != expected_version:
            raise VersionConflictError(plan_id, expected_version, status.current_version)

        mutate(status)
        if new_plan is not None:
            if new_plan.version <= status.current_version:
                raise VersionConflictError(plan_id, new_plan.version - 1, status.current_version)
            _write_plan_version(conn, new_plan, status.status)
            status.current_version = new_plan.version
        status.updated_at = utc_now()
        store._hset(conn, status_key(plan_id), _status_to_fields(status))
    return status


def list_plans(conn: sqlite3.Connection, status: Optional[str] = None) -> list[PlanLifecycleStatus]:
    """All lifecycle records, most recently updated first."""
    records = []
    for key in store.keys(conn, "plan_status:"):
        plan_id = key[len("plan_status:"):]
        record = _fields_to_status(plan_id, store.hgetall(conn, key))
        if status is None or record.status == status:
            records.append(record)
    records.sort(key=lambda r: r.updated_at, reverse=True)
    return records


# ---------------------------------------------------------------------------
# Audit lists
# ---------------------------------------------------------------------------

def record_modification(conn: sqlite3.Connection, plan_id: str, entry: dict[str, Any]) -> None:
    store.lpush(conn, f"plan_modifications:{plan_id}", json.dumps(entry), keep=MAX_MODIFICATIONS)


def get_modifications(conn: sqlite3.Connection, plan_id: str) -> list[dict[str, Any]]:
    return [_loads(v, {}) for v in store.lrange(conn, f"plan_modifications:{plan_id}")]


def record_notification(conn: sqlite3.Connection, plan_id: str, entry: dict[str, Any]) -> None:
    store.lpush(conn, f"plan_notifications:{plan_id}", json.dumps(entry), keep=MAX_NOTIFICATIONS)


def get_notifications(conn: sqlite3.Connection, plan_id: str) -> list[dict[str, Any]]:
    return [_loads(v, {}) for v in store.lrange(conn, f"plan_notifications:{plan_id}")]


def record_history(conn: sqlite3.Connection, plan_id: str, entry: dict[str, Any]) -> None:
    store.lpush(conn, f"plan_history:{plan_id}", json.dumps(entry), keep=MAX_HISTORY)


def get_history(conn: sqlite3.Connection, plan_id: str) -> list[dict[str, Any]]:
    return [_loads(v, {}) for v in store.lrange(conn, f"plan_history:{plan_id}")]


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------

def save_execution(conn: sqlite3.Connection, record: ExecutionRecord) -> None:
    record.updated_at = utc_now()
    store.hset(conn, execution_key(record.run_id), _execution_to_fields(record))


def get_execution(conn: sqlite3.Connection, run_id: str) -> ExecutionRecord:
    """Raises :class:`ExecutionNotFoundError` for an unknown *run_id*."""
    fields = store.hgetall(conn, execution_key(run_id))
    if not fields:
        raise ExecutionNotFoundError(run_id)
    return _fields_to_execution(run_id, fields)


def update_metrics(conn: sqlite3.Connection, record: ExecutionRecord) -> dict[str, Any]:
    """Fold a finished run into ``plan_metrics:{planId}`` and return the totals."""
    key = metrics_key(record.plan_id)
    with store.transaction(conn):
        current = store.hgetall(conn, key)
        total = int(current.get("totalRuns") or 0) + 1
        succeeded = int(current.get("successfulRuns") or 0) + (record.status == "completed")
        failed = int(current.get("failedRuns") or 0) + (record.status == "failed")
        items = int(current.get("totalItems") or 0) + record.metrics.items_extracted
        prev_avg = float(current.get("avgDuration") or 0.0)
        avg = prev_avg + (record.metrics.duration - prev_avg) / total
        metrics = {
            "totalRuns": total,
            "successfulRuns": succeeded,
            "failedRuns": failed,
            "totalItems": items,
            "avgDuration": round(avg, 3),
            "successRate": round(succeeded / total, 3),
            "lastRunId": record.run_id,
            "lastRunStatus": record.status,
            "lastRunAt": record.end_time or utc_now(),
        }
        store._hset(conn, key, {k: str(v) for k, v in metrics.items()})
    return metrics


def get_metrics(conn: sqlite3.Connection, plan_id: str) -> dict[str, str]:
    return store.hgetall(conn, metrics_key(plan_id))


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

def save_schedule(conn: sqlite3.Connection, record: ScheduleRecord) -> None:
    store.hset(
        conn,
        schedule_key(record.plan_id),
        {
            "planId": record.plan_id,
            "schedule": record.schedule,
            "active": "1" if record.active else "0",
            "createdAt": record.created_at,
            "nextRun": record.next_run or "",
        },
    )


def get_schedule(conn: sqlite3.Connection, plan_id: str) -> Optional[ScheduleRecord]:
    fields = store.hgetall(conn, schedule_key(plan_id))
    if not fields:
        return None
    return ScheduleRecord(
        plan_id=fields.get("planId") or plan_id,
        schedule=fields.get("schedule", ""),
        active=fields.get("active", "1") == "1",
        created_at=fields.get("createdAt") or utc_now(),
        next_run=fields.get("nextRun") or None,
    )
