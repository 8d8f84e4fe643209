"""Plan commands: generate, review and run scraping plans."""

from __future__ import annotations

import asyncio
import json
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from cli.rendering import render_history_entry, render_status_line, render_workflow
from scrapeplan.db import get_connection, init_db
from scrapeplan.llm.adapter import CompletionAdapter
from scrapeplan.plans.models import Approval
from scrapeplan.service import PlanService
from scrapeplan.workflow.generation import GenerationOptions
from scrapeplan.workflow.state import WorkflowFailedError

plan_app = typer.Typer(help="Generate, review and run scraping plans.", no_args_is_help=True)


@contextmanager
def _open_service(use_llm: bool = True) -> Iterator[PlanService]:
    conn = get_connection()
    init_db(conn)
    try:
        yield PlanService(conn, adapter=CompletionAdapter() if use_llm else None)
    finally:
        conn.close()


def _fail(command: str, exc: Exception) -> None:
    typer.echo(f"[plan {command}] Error: {exc}", err=True)
    raise typer.Exit(1)


def _parse_json(command: str, raw: Optional[str]) -> Optional[dict]:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        _fail(command, ValueError(f"invalid JSON: {exc}"))
    if not isinstance(data, dict):
        _fail(command, ValueError("expected a JSON object"))
    return data


@plan_app.command("generate")
def plan_generate(
    url: str = typer.Argument(..., help="Listing page to build the plan for."),
    example: List[str] = typer.Option([], "--example", "-e", help="Example content URL (repeatable)."),
    pagination_url: Optional[str] = typer.Option(None, help="Known URL of page 2."),
    no_llm: bool = typer.Option(False, "--no-llm", help="Heuristics only, no completion calls."),
    doc: Optional[Path] = typer.Option(None, help="Write the Markdown documentation here."),
) -> None:
    """Run the generation workflow and store the plan as a draft."""
    typer.echo(f"[plan generate] Analysing {url!r} with {len(example)} example(s) …")
    with _open_service(use_llm=not no_llm) as service:
        options = GenerationOptions(pagination_url=pagination_url)
        try:
            result = asyncio.run(service.generate_plan(url, example, options))
        except WorkflowFailedError as exc:
            workflow = service.get_workflow(exc.workflow_id)
            if workflow is not None:
                typer.echo(render_workflow(workflow))
            _fail("generate", exc)

        workflow = service.get_workflow(result.workflow_id)
        if workflow is not None:
            typer.echo(render_workflow(workflow))

    plan = result.plan
    typer.echo(f"✅ Plan created: {plan.plan_id} v{plan.version} (draft)")
    typer.echo(f"   List selector : {plan.list_selector}")
    typer.echo(f"   Link selector : {plan.content_link_selector or '(none)'}")
    typer.echo(f"   Pagination    : {plan.pagination_selector or '(none)'}")
    typer.echo(f"   Confidence    : {plan.confidence_score:.2f}")
    typer.echo(f"   Validation    : score {result.validation.score}, valid={result.validation.is_valid}")
    for issue in result.validation.issues:
        typer.echo(f"   ❌ {issue}")
    for warning in result.validation.warnings:
        typer.echo(f"   ⚠️  {warning}")

    if doc is not None:
        doc.write_text(result.documentation, encoding="utf-8")
        typer.echo(f"[plan generate] Documentation written to {doc}")


@plan_app.command("list")
def plan_list(
    status: Optional[str] = typer.Option(None, help="Only plans in this status."),
) -> None:
    """List stored plans, most recently updated first."""
    with _open_service(use_llm=False) as service:
        records = service.list_plans(status)
    if not records:
        typer.echo("No plans found.")
        return
    typer.echo("Plans:")
    for record in records:
        typer.echo(render_status_line(record))


@plan_app.command("show")
def plan_show(
    plan_id: str = typer.Argument(...),
    version: Optional[int] = typer.Option(None, help="Version to show (default: current)."),
) -> None:
    """Print a plan version as JSON."""
    with _open_service(use_llm=False) as service:
        try:
            plan = service.get_plan(plan_id, version)
        except ValueError as exc:
            _fail("show", exc)
    typer.echo(json.dumps(plan.to_dict(), indent=2, ensure_ascii=False))


@plan_app.command("doc")
def plan_doc(
    plan_id: str = typer.Argument(...),
    version: Optional[int] = typer.Option(None),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout."),
) -> None:
    """Render a plan as Markdown."""
    with _open_service(use_llm=False) as service:
        try:
            markdown = service.get_plan_documentation(plan_id, version)
        except ValueError as exc:
            _fail("doc", exc)
    if output is None:
        typer.echo(markdown)
    else:
        output.write_text(markdown, encoding="utf-8")
        typer.echo(f"[plan doc] Written to {output}")


@plan_app.command("submit")
def plan_submit(
    plan_id: str = typer.Argument(...),
    expected_version: Optional[int] = typer.Option(None, help="Fail if the plan moved past this version."),
) -> None:
    """Send a draft (or failed) plan to review."""
    with _open_service(use_llm=False) as service:
        try:
            status = service.submit_for_review(plan_id, expected_version, actor="cli")
        except ValueError as exc:
            _fail("submit", exc)
    typer.echo(f"[plan submit] {plan_id} v{status.current_version} is {status.status}")


@plan_app.command("review")
def plan_review(
    plan_id: str = typer.Argument(...),
    approve: bool = typer.Option(..., "--approve/--reject", help="Verdict."),
    reviewer: str = typer.Option(..., help="Reviewer id."),
    comments: str = typer.Option("", help="Review comments."),
    modifications: Optional[str] = typer.Option(None, help="JSON object of plan fields to change."),
    expected_version: Optional[int] = typer.Option(None),
) -> None:
    """Approve or reject a plan awaiting review."""
    approval = Approval(
        approved=approve,
        reviewer_id=reviewer,
        comments=comments,
        modifications=_parse_json("review", modifications),
    )
    with _open_service(use_llm=False) as service:
        try:
            status = service.review_plan(plan_id, approval, expected_version)
        except ValueError as exc:
            _fail("review", exc)
    typer.echo(f"[plan review] {plan_id} v{status.current_version} is {status.status}")


@plan_app.command("modify")
def plan_modify(
    plan_id: str = typer.Argument(...),
    changes: str = typer.Option(..., "--json", help="JSON object of plan fields to change."),
    expected_version: Optional[int] = typer.Option(None),
    author: str = typer.Option("human", help="Who made the change."),
) -> None:
    """Write a modified copy of the plan as a new draft version."""
    modifications = _parse_json("modify", changes) or {}
    with _open_service(use_llm=False) as service:
        try:
            plan = service.modify_plan(plan_id, modifications, expected_version, author)
        except ValueError as exc:
            _fail("modify", exc)
    typer.echo(f"[plan modify] {plan_id} is now v{plan.version} (draft)")


@plan_app.command("deprecate")
def plan_deprecate(
    plan_id: str = typer.Argument(...),
    reason: str = typer.Option("", help="Why the plan is retired."),
) -> None:
    """Retire a plan for good."""
    with _open_service(use_llm=False) as service:
        try:
            service.deprecate_plan(plan_id, reason)
        except ValueError as exc:
            _fail("deprecate", exc)
    typer.echo(f"[plan deprecate] {plan_id} is deprecated")


@plan_app.command("execute")
def plan_execute(plan_id: str = typer.Argument(...)) -> None:
    """Run an approved plan now and print the run metrics."""
    with _open_service(use_llm=False) as service:
        try:
            record = asyncio.run(service.execute_plan(plan_id))
        except WorkflowFailedError as exc:
            workflow = service.get_workflow(exc.workflow_id)
            if workflow is not None:
                typer.echo(render_workflow(workflow))
            _fail("execute", exc)
        except ValueError as exc:
            _fail("execute", exc)
    metrics = record.metrics
    typer.echo(f"✅ Run {record.run_id} {record.status}")
    typer.echo(f"   Items  : {metrics.items_extracted}")
    typer.echo(f"   Pages  : {metrics.pages_processed}")
    typer.echo(f"   Errors : {metrics.errors_encountered}")
    typer.echo(f"   Took   : {metrics.duration:.1f}s")


@plan_app.command("schedule")
def plan_schedule(
    plan_id: str = typer.Argument(...),
    cron: str = typer.Argument(..., help="Cron expression, e.g. '0 6 * * 1-5'."),
) -> None:
    """Store a cron schedule for a plan."""
    with _open_service(use_llm=False) as service:
        try:
            record = service.schedule_plan(plan_id, cron)
        except ValueError as exc:
            _fail("schedule", exc)
    typer.echo(f"[plan schedule] {plan_id} runs {cron!r}, next at {record.next_run}")


@plan_app.command("history")
def plan_history(plan_id: str = typer.Argument(...)) -> None:
    """Show status transitions, modifications and notifications."""
    with _open_service(use_llm=False) as service:
        try:
            sections = [
                ("Transitions", service.get_history(plan_id)),
                ("Modifications", service.get_modification_history(plan_id)),
                ("Notifications", service.get_notifications(plan_id)),
            ]
        except ValueError as exc:
            _fail("history", exc)
    for title, entries in sections:
        typer.echo(f"{title}:")
        if not entries:
            typer.echo("  (none)")
        for entry in entries:
            typer.echo(render_history_entry(entry))
