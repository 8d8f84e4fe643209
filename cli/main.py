"""scrapeplan CLI: entry-point for plan generation and lifecycle operations.

Usage:
    python cli/main.py --help

Sub-command groups:
    db     database setup
    plan   generate, review, execute and schedule plans
    cron   inspect cron expressions
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from scrapeplan.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from datetime import datetime, timezone

import typer

from cli.commands.plan import plan_app
from scrapeplan.config import settings
from scrapeplan.db import get_connection, init_db
from scrapeplan.scheduling.cron import calculate_next_run, is_valid_cron_expression

app = typer.Typer(
    name="scrapeplan",
    help="scrapeplan CLI.",
    no_args_is_help=True,
)

# ---------------------------------------------------------------------------
# DB commands
# ---------------------------------------------------------------------------
db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite plan store (create tables if they do not exist)."""
    conn = get_connection()
    init_db(conn)
    conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path}")


# ---------------------------------------------------------------------------
# Plan commands
# ---------------------------------------------------------------------------
app.add_typer(plan_app, name="plan")


# ---------------------------------------------------------------------------
# Cron commands
# ---------------------------------------------------------------------------
cron_app = typer.Typer(help="Cron expression helpers.", no_args_is_help=True)
app.add_typer(cron_app, name="cron")


@cron_app.command("next")
def cron_next(
    expression: str = typer.Argument(..., help="Five- or six-field cron expression."),
    count: int = typer.Option(1, help="How many upcoming runs to print."),
) -> None:
    """Print the next run time(s) of a cron expression (UTC)."""
    if not is_valid_cron_expression(expression):
        typer.echo(f"[cron next] Invalid cron expression: {expression!r}", err=True)
        raise typer.Exit(1)
    moment = datetime.now(timezone.utc)
    for _ in range(count):
        moment = calculate_next_run(expression, moment)
        typer.echo(moment.isoformat())


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
