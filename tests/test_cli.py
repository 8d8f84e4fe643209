"""Tests for the scrapeplan CLI (db, plan and cron command groups)."""

from __future__ import annotations

import functools
import json

import pytest
from typer.testing import CliRunner

from cli.main import app
from conftest import BASE_URL, EXAMPLE_URL, fake_fetch, productive_runner
from scrapeplan.service import PlanService

runner = CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Point the DB at a fresh workspace and keep the service off the network."""
    monkeypatch.setattr("scrapeplan.config.settings.workspace_dir", tmp_path)
    monkeypatch.setattr(
        "cli.commands.plan.PlanService",
        functools.partial(PlanService, fetch=fake_fetch, runner=productive_runner),
    )
    return tmp_path


def _generate(*extra: str) -> str:
    result = runner.invoke(app, ["plan", "generate", BASE_URL, "-e", EXAMPLE_URL, "--no-llm", *extra])
    assert result.exit_code == 0, result.output
    line = next(l for l in result.output.splitlines() if "Plan created:" in l)
    return line.split("Plan created: ")[1].split()[0]


def test_db_init(workspace):
    result = runner.invoke(app, ["db", "init"])
    assert result.exit_code == 0
    assert "[db init] Database ready" in result.stdout
    assert (workspace / "plans.db").exists()


def test_plan_generate_prints_summary(workspace):
    doc_path = workspace / "plan.md"
    result = runner.invoke(
        app, ["plan", "generate", BASE_URL, "-e", EXAMPLE_URL, "--no-llm", "--doc", str(doc_path)]
    )
    assert result.exit_code == 0, result.output
    assert "✅ Plan created: " in result.stdout
    assert "v1 (draft)" in result.stdout
    assert "List selector : body > main > ul.news-list" in result.stdout
    assert "✅ store_plan (completed)" in result.stdout
    assert doc_path.read_text(encoding="utf-8").startswith("# Scraping Plan: ")


def test_plan_generate_unreachable(workspace):
    result = runner.invoke(app, ["plan", "generate", "https://unreachable.example/", "--no-llm"])
    assert result.exit_code == 1
    assert "❌ fetch_html (failed)" in result.output
    assert "[plan generate] Error:" in result.output


def test_plan_list_empty(workspace):
    result = runner.invoke(app, ["plan", "list"])
    assert result.exit_code == 0
    assert "No plans found." in result.stdout


def test_plan_list_and_show(workspace):
    plan_id = _generate()
    listed = runner.invoke(app, ["plan", "list"])
    assert plan_id in listed.stdout
    assert "[draft]" in listed.stdout

    shown = runner.invoke(app, ["plan", "show", plan_id])
    assert shown.exit_code == 0
    assert json.loads(shown.stdout)["planId"] == plan_id


def test_plan_show_unknown(workspace):
    result = runner.invoke(app, ["plan", "show", "plan_missing"])
    assert result.exit_code == 1
    assert "[plan show] Error:" in result.output


def test_plan_review_and_execute(workspace):
    plan_id = _generate()

    submitted = runner.invoke(app, ["plan", "submit", plan_id])
    assert submitted.exit_code == 0
    assert "is pending_review" in submitted.stdout

    reviewed = runner.invoke(app, ["plan", "review", plan_id, "--approve", "--reviewer", "rev"])
    assert reviewed.exit_code == 0
    assert "is approved" in reviewed.stdout

    executed = runner.invoke(app, ["plan", "execute", plan_id])
    assert executed.exit_code == 0, executed.output
    assert "completed" in executed.stdout
    assert "Items  : 1" in executed.stdout

    history = runner.invoke(app, ["plan", "history", plan_id])
    assert history.exit_code == 0
    assert "Transitions:" in history.stdout
    assert "Notifications:" in history.stdout


def test_plan_review_requires_submission(workspace):
    plan_id = _generate()
    result = runner.invoke(app, ["plan", "review", plan_id, "--reject", "--reviewer", "rev"])
    assert result.exit_code == 1


def test_plan_modify(workspace):
    plan_id = _generate()
    result = runner.invoke(app, ["plan", "modify", plan_id, "--json", '{"rateLimitMs": 2500}'])
    assert result.exit_code == 0
    assert "is now v2 (draft)" in result.stdout

    bad = runner.invoke(app, ["plan", "modify", plan_id, "--json", "[1, 2]"])
    assert bad.exit_code == 1
    assert "expected a JSON object" in bad.output


def test_plan_deprecate_and_schedule(workspace):
    plan_id = _generate()
    scheduled = runner.invoke(app, ["plan", "schedule", plan_id, "0 6 * * 1-5"])
    assert scheduled.exit_code == 0
    assert "next at" in scheduled.stdout

    deprecated = runner.invoke(app, ["plan", "deprecate", plan_id, "--reason", "relaunch"])
    assert deprecated.exit_code == 0
    assert "is deprecated" in deprecated.stdout

    refused = runner.invoke(app, ["plan", "schedule", plan_id, "0 6 * * *"])
    assert refused.exit_code == 1


def test_cron_next(workspace):
    result = runner.invoke(app, ["cron", "next", "*/5 * * * *", "--count", "3"])
    assert result.exit_code == 0
    assert len(result.stdout.strip().splitlines()) == 3


def test_cron_next_invalid(workspace):
    result = runner.invoke(app, ["cron", "next", "61 * * * *"])
    assert result.exit_code == 1
    assert "Invalid cron expression" in result.output
