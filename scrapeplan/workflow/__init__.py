from scrapeplan.workflow.engine import WorkflowEngine, build_graph
from scrapeplan.workflow.execution import RunOutcome, execution_steps, make_plan_runner
from scrapeplan.workflow.generation import GenerationOptions, best_analysis, generation_steps
from scrapeplan.workflow.state import (
    Step,
    StepSpec,
    WorkflowFailedError,
    WorkflowState,
)

__all__ = [
    "GenerationOptions",
    "RunOutcome",
    "Step",
    "StepSpec",
    "WorkflowEngine",
    "WorkflowFailedError",
    "WorkflowState",
    "best_analysis",
    "build_graph",
    "execution_steps",
    "generation_steps",
    "make_plan_runner",
]
