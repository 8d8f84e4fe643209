"""Step factories for the plan execution workflow, plus the default runner.

The steps are ``prepare_execution``, ``execute_scraping``,
``validate_results``, ``store_results`` and ``update_metrics``.  The actual
page walking is delegated to a *plan runner*: any async callable taking a
:class:`ScrapingPlan` and returning a :class:`RunOutcome`.  The default
runner, built by :func:`make_plan_runner`, follows the entry pages and their
pagination and collects one content link per item.
"""

from __future__ import annotations

import asyncio
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from scrapeplan.config import settings
from scrapeplan.db import plans as plan_store
from scrapeplan.plans.errors import ExecutionNotFoundError
from scrapeplan.plans.models import (
    RUN_COMPLETED,
    RUN_RUNNING,
    ExecutionMetrics,
    ExecutionRecord,
    ScrapingPlan,
    utc_now,
)
from scrapeplan.resolution.container import collect_links
from scrapeplan.resolution.similarity import is_content_link, is_http_url, resolve_url
from scrapeplan.scraper.dom import DomArena
from scrapeplan.scraper.models import PageSnapshot
from scrapeplan.workflow.state import StepSpec

AsyncFetch = Callable[[str], Awaitable[PageSnapshot]]


@dataclass
class RunOutcome:
    items: list[dict[str, Any]] = field(default_factory=list)
    pages_processed: int = 0
    errors: list[str] = field(default_factory=list)


PlanRunner = Callable[[ScrapingPlan], Awaitable[RunOutcome]]


# ---------------------------------------------------------------------------
# Default plan runner
# ---------------------------------------------------------------------------

def extract_item_links(plan: ScrapingPlan, page: PageSnapshot) -> list[str]:
    """Content links on *page* according to the plan's selectors."""
    dom = DomArena.from_html(page.html)
    containers = dom.try_select(plan.list_selector) or [dom.body]
    for selector in plan.exclude_selectors:
        excluded = set(dom.try_select(selector))
        containers = [c for c in containers if c not in excluded]

    anchors: list[int] = []
    for container in containers:
        if plan.content_link_selector:
            anchors.extend(dom.try_select(plan.content_link_selector, container))
        else:
            anchors.extend(
                a for a in dom.anchors(container)
                if is_content_link(dom.attr(a, "href"), dom.text(a))
            )
    return collect_links(dom, anchors, page.url)


def next_page_url(plan: ScrapingPlan, page: PageSnapshot) -> Optional[str]:
    if not plan.pagination_selector:
        return None
    dom = DomArena.from_html(page.html)
    for index in dom.try_select(plan.pagination_selector):
        href = dom.attr(index, "href")
        if href:
            url = resolve_url(href, page.url)
            if is_http_url(url):
                return url
    return None


def make_plan_runner(fetch: AsyncFetch, max_pages: Optional[int] = None) -> PlanRunner:
    """Return a runner that walks each entry URL and up to *max_pages* pages of pagination."""
    limit = max_pages or settings.execution_max_pages

    async def fetch_with_retry(plan: ScrapingPlan, url: str, outcome: RunOutcome) -> Optional[PageSnapshot]:
        policy = plan.retry_policy
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await fetch(url)
            except Exception as exc:
                outcome.errors.append(f"{url}: {exc}")
                if attempt == policy.max_attempts:
                    logger.warning(f"[EXECUTION] giving up on {url} after {attempt} attempts")
                    return None
                await asyncio.sleep(policy.delay_ms(attempt) / 1000)
        return None

    async def run_plan(plan: ScrapingPlan) -> RunOutcome:
        outcome = RunOutcome()
        seen_pages: set[str] = set()
        seen_items: set[str] = set()

        for entry_url in plan.entry_urls:
            url: Optional[str] = entry_url
            pages = 0
            while url and url not in seen_pages and pages < limit:
                if seen_pages:
                    await asyncio.sleep(plan.rate_limit_ms / 1000)
                seen_pages.add(url)
                page = await fetch_with_retry(plan, url, outcome)
                if page is None:
                    break
                pages += 1
                outcome.pages_processed += 1
                for link in extract_item_links(plan, page):
                    if link not in seen_items:
                        seen_items.add(link)
                        outcome.items.append({"url": link, "sourcePage": page.url})
                url = next_page_url(plan, page)

        logger.info(
            f"[EXECUTION] {plan.plan_id}: {len(outcome.items)} items "
            f"from {outcome.pages_processed} pages, {len(outcome.errors)} errors"
        )
        return outcome

    return run_plan


# ---------------------------------------------------------------------------
# Step factories
# ---------------------------------------------------------------------------

def make_prepare_execution(conn: sqlite3.Connection):
    async def prepare_execution(context: dict[str, Any]) -> dict:
        plan: ScrapingPlan = context["plan"]
        try:
            record = plan_store.get_execution(conn, context["run_id"])
        except ExecutionNotFoundError:
            record = ExecutionRecord(
                run_id=context["run_id"], plan_id=plan.plan_id, status=RUN_RUNNING, start_time=""
            )
        record.status = RUN_RUNNING
        record.start_time = utc_now()
        record.plan_version = plan.version
        plan_store.save_execution(conn, record)
        logger.info(f"[EXECUTION] {record.run_id} running {plan.plan_id} v{plan.version}")
        return {"record": record, "started": time.monotonic()}

    return prepare_execution


def make_execute_scraping(runner: PlanRunner):
    async def execute_scraping(context: dict[str, Any]) -> dict:
        return {"outcome": await runner(context["plan"])}

    return execute_scraping


def make_validate_results():
    async def validate_results(context: dict[str, Any]) -> dict:
        outcome: RunOutcome = context["outcome"]
        if not outcome.items:
            detail = f" ({outcome.errors[-1]})" if outcome.errors else ""
            raise ValueError(f"No items extracted from {outcome.pages_processed} pages{detail}")
        valid = [i for i in outcome.items if is_http_url(i.get("url", ""))]
        accuracy = round(len(valid) / len(outcome.items), 3)
        return {"accuracy": accuracy}

    return validate_results


def make_store_results(conn: sqlite3.Connection):
    async def store_results(context: dict[str, Any]) -> dict:
        record: ExecutionRecord = context["record"]
        outcome: RunOutcome = context["outcome"]
        record.status = RUN_COMPLETED
        record.end_time = utc_now()
        record.items = list(outcome.items)
        record.errors = list(outcome.errors)
        record.metrics = ExecutionMetrics(
            duration=round(time.monotonic() - context["started"], 3),
            items_extracted=len(outcome.items),
            pages_processed=outcome.pages_processed,
            errors_encountered=len(outcome.errors),
            accuracy_score=context.get("accuracy", 0.0),
        )
        plan_store.save_execution(conn, record)
        return {"record": record}

    return store_results


def make_update_metrics(conn: sqlite3.Connection):
    async def update_metrics(context: dict[str, Any]) -> dict:
        return {"plan_metrics": plan_store.update_metrics(conn, context["record"])}

    return update_metrics


def execution_steps(conn: sqlite3.Connection, runner: PlanRunner) -> list[StepSpec]:
    return [
        StepSpec("prepare_execution", "Prepare execution", make_prepare_execution(conn)),
        StepSpec("execute_scraping", "Run plan", make_execute_scraping(runner)),
        StepSpec("validate_results", "Validate results", make_validate_results()),
        StepSpec("store_results", "Store results", make_store_results(conn)),
        StepSpec("update_metrics", "Update plan metrics", make_update_metrics(conn)),
    ]
