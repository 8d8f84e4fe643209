"""Run step sequences as a linear LangGraph ``StateGraph``.

The graph for a workflow of steps ``a, b, c`` is::

    START → a → b → c → END

Every node is a closure over the :class:`WorkflowState` record it updates,
so step bookkeeping (status, timestamps, result, error) stays out of the
graph state, which only carries the accumulated ``context`` dict.  A node
that raises stops the graph; the engine marks the workflow ``failed``, the
remaining steps ``skipped`` and raises :class:`WorkflowFailedError`.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Callable, Optional, TypedDict

from langgraph.graph import END, START, StateGraph
from loguru import logger

from scrapeplan.cache import TTLCache
from scrapeplan.config import settings
from scrapeplan.plans.models import utc_now
from scrapeplan.workflow.state import (
    STEP_COMPLETED,
    STEP_FAILED,
    STEP_PENDING,
    STEP_RUNNING,
    STEP_SKIPPED,
    WORKFLOW_COMPLETED,
    WORKFLOW_FAILED,
    Step,
    StepSpec,
    WorkflowFailedError,
    WorkflowState,
)


class GraphState(TypedDict):
    context: dict[str, Any]


def _make_node(workflow: WorkflowState, index: int, spec: StepSpec):
    """Return the graph node for step *index* of *workflow*."""

    async def node(state: GraphState) -> dict:
        step = workflow.steps[index]
        workflow.current_step = index
        step.status = STEP_RUNNING
        step.started_at = utc_now()
        workflow.updated_at = step.started_at
        logger.info(f"[WORKFLOW] {workflow.workflow_id} step {spec.step_id} started")

        try:
            result = await spec.run(state["context"]) or {}
        except Exception as exc:
            step.status = STEP_FAILED
            step.error = str(exc) or type(exc).__name__
            step.completed_at = utc_now()
            logger.error(f"[WORKFLOW] {workflow.workflow_id} step {spec.step_id} failed: {step.error}")
            raise

        step.status = STEP_COMPLETED
        step.result = result
        step.completed_at = utc_now()
        context = {**state["context"], **result}
        workflow.context = context
        logger.info(f"[WORKFLOW] {workflow.workflow_id} step {spec.step_id} completed")
        return {"context": context}

    return node


def build_graph(workflow: WorkflowState, specs: list[StepSpec]):
    """Compile the linear graph for *specs*, one node per step."""
    graph = StateGraph(GraphState)
    previous = START
    for index, spec in enumerate(specs):
        graph.add_node(spec.step_id, _make_node(workflow, index, spec))
        graph.add_edge(previous, spec.step_id)
        previous = spec.step_id
    graph.add_edge(previous, END)
    return graph.compile()


class WorkflowEngine:
    """Runs workflows and keeps their records for inspection.

    Running workflows are held until they finish; finished ones stay in a
    :class:`TTLCache` for ``retention_seconds`` and then disappear.

    Args:
        retention_seconds: Retention window for finished workflows.  Defaults
            to ``settings.workflow_retention_seconds``.
        clock: Clock for the retention cache; tests pass a fake.
    """

    def __init__(
        self,
        retention_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        ttl = settings.workflow_retention_seconds if retention_seconds is None else retention_seconds
        self._running: dict[str, WorkflowState] = {}
        self._finished: TTLCache[WorkflowState] = TTLCache(ttl, clock=clock)

    def get(self, workflow_id: str) -> Optional[WorkflowState]:
        return self._running.get(workflow_id) or self._finished.get(workflow_id)

    async def run(
        self,
        kind: str,
        specs: list[StepSpec],
        context: dict[str, Any],
        workflow_id: Optional[str] = None,
    ) -> WorkflowState:
        """Run *specs* in order over *context* and return the finished record.

        Raises:
            WorkflowFailedError: A step raised.  The original exception is
                chained as ``__cause__``.
        """
        workflow = WorkflowState(
            workflow_id=workflow_id or f"{kind}_{uuid.uuid4().hex[:12]}",
            kind=kind,
            steps=[Step(step_id=s.step_id, name=s.name) for s in specs],
            context=dict(context),
        )
        self._running[workflow.workflow_id] = workflow
        logger.info(f"[WORKFLOW] {workflow.workflow_id} ({kind}) started with {len(specs)} steps")

        graph = build_graph(workflow, specs)
        try:
            final = await graph.ainvoke({"context": dict(context)})
        except Exception as exc:
            failed = workflow.failed_step()
            if failed is None:
                # Raised outside a node body; blame the step that was current.
                failed = workflow.steps[workflow.current_step]
                failed.status = STEP_FAILED
                failed.error = str(exc) or type(exc).__name__
            for step in workflow.steps:
                if step.status == STEP_PENDING:
                    step.status = STEP_SKIPPED
            workflow.status = WORKFLOW_FAILED
            self._finish(workflow)
            raise WorkflowFailedError(workflow.workflow_id, failed.step_id, failed.error or "") from exc

        workflow.context = final["context"]
        workflow.status = WORKFLOW_COMPLETED
        self._finish(workflow)
        logger.info(f"[WORKFLOW] {workflow.workflow_id} completed")
        return workflow

    def _finish(self, workflow: WorkflowState) -> None:
        workflow.updated_at = utc_now()
        self._running.pop(workflow.workflow_id, None)
        self._finished.set(workflow.workflow_id, workflow)
        dropped = self._finished.purge()
        if dropped:
            logger.debug(f"[WORKFLOW] discarded {dropped} expired workflow record(s)")
