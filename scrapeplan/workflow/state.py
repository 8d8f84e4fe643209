"""In-process workflow records.

A workflow is an ordered list of steps run one after another.  Records live
in memory only: the engine keeps them while running and for a retention
window afterwards, then drops them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from scrapeplan.plans.models import utc_now

WORKFLOW_RUNNING = "running"
WORKFLOW_COMPLETED = "completed"
WORKFLOW_FAILED = "failed"
WORKFLOW_PAUSED = "paused"

STEP_PENDING = "pending"
STEP_RUNNING = "running"
STEP_COMPLETED = "completed"
STEP_FAILED = "failed"
STEP_SKIPPED = "skipped"

# A step receives the accumulated context and returns the keys it adds.
StepFn = Callable[[dict[str, Any]], Awaitable[Optional[dict[str, Any]]]]


class WorkflowFailedError(RuntimeError):
    """A workflow step raised; the workflow record is marked ``failed``."""

    def __init__(self, workflow_id: str, step_id: str, message: str = "") -> None:
        self.workflow_id = workflow_id
        self.step_id = step_id
        super().__init__(
            f"Workflow {workflow_id} failed at step {step_id!r}"
            + (f": {message}" if message else "")
        )


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "model_dump"):
        return value.model_dump(by_alias=True)
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return type(value).__name__


@dataclass
class StepSpec:
    step_id: str
    name: str
    run: StepFn


@dataclass
class Step:
    step_id: str
    name: str
    status: str = STEP_PENDING
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stepId": self.step_id,
            "name": self.name,
            "status": self.status,
            "result": _jsonable(self.result) if self.result is not None else None,
            "error": self.error,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }


@dataclass
class WorkflowState:
    workflow_id: str
    kind: str
    steps: list[Step]
    current_step: int = 0
    status: str = WORKFLOW_RUNNING
    context: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def step(self, step_id: str) -> Optional[Step]:
        return next((s for s in self.steps if s.step_id == step_id), None)

    def failed_step(self) -> Optional[Step]:
        return next((s for s in self.steps if s.status == STEP_FAILED), None)

    def to_dict(self) -> dict[str, Any]:
        # Context holds live objects (page snapshots, plans); only its keys are exposed.
        return {
            "workflowId": self.workflow_id,
            "kind": self.kind,
            "status": self.status,
            "currentStep": self.current_step,
            "steps": [s.to_dict() for s in self.steps],
            "contextKeys": sorted(self.context),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
