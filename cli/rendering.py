"""Text rendering helpers for the CLI."""

from __future__ import annotations

from typing import Any

from scrapeplan.plans.models import PlanLifecycleStatus
from scrapeplan.workflow.state import WorkflowState

_STEP_ICONS = {
    "pending": "·",
    "running": "…",
    "completed": "✅",
    "failed": "❌",
    "skipped": "⏭",
}


def render_workflow(workflow: WorkflowState) -> str:
    """Render a workflow and its steps as an ASCII tree."""
    lines = [f"{workflow.kind} workflow {workflow.workflow_id} [{workflow.status}]"]
    count = len(workflow.steps)
    for i, step in enumerate(workflow.steps):
        connector = "└── " if i == count - 1 else "├── "
        icon = _STEP_ICONS.get(step.status, "?")
        line = f"{connector}{icon} {step.step_id} ({step.status})"
        if step.error:
            line += f": {step.error}"
        lines.append(line)
    return "\n".join(lines)


def render_status_line(status: PlanLifecycleStatus) -> str:
    return (
        f"  {status.plan_id}  v{status.current_version}  [{status.status}]  "
        f"updated {status.updated_at}"
    )


def render_history_entry(entry: dict[str, Any]) -> str:
    """One line per audit entry, whatever list it came from."""
    when = entry.get("timestamp", "")
    if "to" in entry:
        return f"  {when}  {entry.get('from') or '-'} -> {entry['to']}  v{entry.get('version')}  by {entry.get('actor', '?')}"
    if "previousVersion" in entry:
        fields = ", ".join(entry.get("modifications") or [])
        return f"  {when}  v{entry['previousVersion']} -> v{entry.get('version')}  [{fields}]  by {entry.get('modifiedBy', '?')}"
    recipients = ", ".join(entry.get("recipients") or [])
    return f"  {when}  {entry.get('status')} -> {recipients}: {entry.get('message', '')}"
