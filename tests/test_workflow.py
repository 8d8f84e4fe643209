"""Tests for the workflow engine, the retention cache and the default plan runner."""

from __future__ import annotations

import asyncio

import pytest

from conftest import NEWS_LIST_HTML
from scrapeplan.cache import TTLCache
from scrapeplan.plans.models import PlanMetadata, RetryPolicy, ScrapingPlan
from scrapeplan.resolution.models import ContainerAnalysis
from scrapeplan.scraper.models import PageSnapshot
from scrapeplan.workflow import (
    StepSpec,
    WorkflowEngine,
    WorkflowFailedError,
    best_analysis,
    make_plan_runner,
)
from scrapeplan.workflow.execution import extract_item_links, next_page_url


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _step(step_id, fn):
    return StepSpec(step_id, step_id.title(), fn)


async def _add_x(context):
    return {"x": 1}


async def _add_y(context):
    return {"y": context["x"] + 1}


async def _explode(context):
    raise ValueError("bad selector")


async def _nothing(context):
    return None


class TestTTLCache:
    def test_entries_expire(self):
        clock = FakeClock()
        cache = TTLCache(10, clock=clock)
        cache.set("a", 1)
        assert cache.get("a") == 1
        clock.now = 10
        assert cache.get("a") is None
        assert "a" not in cache

    def test_purge_and_len(self):
        clock = FakeClock()
        cache = TTLCache(10, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2, ttl=100)
        clock.now = 20
        assert cache.purge() == 1
        assert len(cache) == 1
        assert list(cache) == ["b"]


class TestWorkflowEngine:
    def test_steps_run_in_order_and_merge_context(self):
        engine = WorkflowEngine(retention_seconds=60)
        workflow = asyncio.run(
            engine.run("demo", [_step("a", _add_x), _step("b", _add_y), _step("c", _nothing)], {"seed": True})
        )
        assert workflow.status == "completed"
        assert workflow.context == {"seed": True, "x": 1, "y": 2}
        assert [s.status for s in workflow.steps] == ["completed"] * 3
        assert workflow.step("b").result == {"y": 2}
        assert workflow.workflow_id.startswith("demo_")
        assert engine.get(workflow.workflow_id) is workflow

    def test_failure_marks_remaining_steps_skipped(self):
        engine = WorkflowEngine(retention_seconds=60)
        specs = [_step("a", _add_x), _step("b", _explode), _step("c", _add_y)]
        with pytest.raises(WorkflowFailedError) as info:
            asyncio.run(engine.run("demo", specs, {}, workflow_id="wf_1"))

        assert info.value.step_id == "b"
        assert isinstance(info.value.__cause__, ValueError)
        workflow = engine.get("wf_1")
        assert workflow.status == "failed"
        assert [s.status for s in workflow.steps] == ["completed", "failed", "skipped"]
        assert workflow.step("b").error == "bad selector"
        assert workflow.step("a").completed_at is not None

    def test_finished_workflows_expire(self):
        clock = FakeClock()
        engine = WorkflowEngine(retention_seconds=30, clock=clock)
        workflow = asyncio.run(engine.run("demo", [_step("a", _add_x)], {}))
        clock.now = 29
        assert engine.get(workflow.workflow_id) is not None
        clock.now = 31
        assert engine.get(workflow.workflow_id) is None

    def test_expired_records_are_dropped_by_later_runs(self):
        clock = FakeClock()
        engine = WorkflowEngine(retention_seconds=10, clock=clock)
        for _ in range(5):
            asyncio.run(engine.run("demo", [_step("a", _add_x)], {}))
        clock.now = 1000
        latest = asyncio.run(engine.run("demo", [_step("a", _add_x)], {}))
        assert list(engine._finished._entries) == [latest.workflow_id]

    def test_to_dict_exposes_context_keys_only(self):
        engine = WorkflowEngine(retention_seconds=60)
        workflow = asyncio.run(engine.run("demo", [_step("a", _add_x)], {"conn": object()}))
        data = workflow.to_dict()
        assert data["contextKeys"] == ["conn", "x"]
        assert data["steps"][0]["stepId"] == "a"
        assert data["steps"][0]["result"] == {"x": 1}
        assert "context" not in data

    def test_unknown_workflow(self):
        assert WorkflowEngine().get("missing") is None


class TestBestAnalysis:
    def _analysis(self, signature, confidence):
        return ContainerAnalysis(
            container_selector="ul",
            content_link_selector="a",
            confidence=confidence,
            method="heuristic",
            container_signature=signature,
        )

    def test_picks_most_confident(self):
        best = best_analysis(
            [self._analysis("ul#[3]", 0.6), self._analysis("ul#[3]", 0.9), self._analysis("div#[4]", 0.7)]
        )
        assert best.confidence == pytest.approx(0.9)

    def test_empty(self):
        assert best_analysis([]) is None


PAGE_ONE = """\
<html><body>
  <ul class="news-list">
    <li><a href="/n/1.htm">Erste Meldung aus dem Rathaus</a></li>
    <li><a href="/n/2.htm">Zweite Meldung aus dem Rathaus</a></li>
  </ul>
  <a rel="next" href="/list?page=2">Weiter</a>
</body></html>
"""

PAGE_TWO = """\
<html><body>
  <ul class="news-list">
    <li><a href="/n/2.htm">Zweite Meldung aus dem Rathaus</a></li>
    <li><a href="/n/3.htm">Dritte Meldung aus dem Rathaus</a></li>
  </ul>
  <a rel="next" href="/list">Zurueck zum Anfang</a>
</body></html>
"""


def _plan(**overrides) -> ScrapingPlan:
    values = dict(
        plan_id="plan_run",
        version=1,
        entry_urls=["https://x.de/list"],
        list_selector="ul.news-list",
        content_link_selector="li > a",
        pagination_selector='a[rel="next"]',
        detail_selectors={"title": "h1"},
        confidence_score=0.8,
        metadata=PlanMetadata(domain="x.de"),
        rate_limit_ms=0,
        retry_policy=RetryPolicy(base_delay_ms=0),
    )
    values.update(overrides)
    return ScrapingPlan(**values)


def _site(pages: dict[str, str], failures: dict[str, int] | None = None):
    failures = dict(failures or {})
    calls: list[str] = []

    async def fetch(url: str) -> PageSnapshot:
        calls.append(url)
        if failures.get(url, 0) > 0:
            failures[url] -= 1
            raise ConnectionError("reset by peer")
        if url not in pages:
            raise ConnectionError("404")
        return PageSnapshot(url=url, html=pages[url])

    return fetch, calls


class TestPlanRunner:
    def test_follows_pagination_and_dedupes_items(self):
        fetch, calls = _site({"https://x.de/list": PAGE_ONE, "https://x.de/list?page=2": PAGE_TWO})
        outcome = asyncio.run(make_plan_runner(fetch, max_pages=5)(_plan()))
        assert calls == ["https://x.de/list", "https://x.de/list?page=2"]
        assert outcome.pages_processed == 2
        assert [i["url"] for i in outcome.items] == [
            "https://x.de/n/1.htm",
            "https://x.de/n/2.htm",
            "https://x.de/n/3.htm",
        ]
        assert outcome.items[2]["sourcePage"] == "https://x.de/list?page=2"
        assert outcome.errors == []

    def test_page_limit(self):
        fetch, calls = _site({"https://x.de/list": PAGE_ONE, "https://x.de/list?page=2": PAGE_TWO})
        outcome = asyncio.run(make_plan_runner(fetch, max_pages=1)(_plan()))
        assert outcome.pages_processed == 1
        assert len(calls) == 1

    def test_retries_then_succeeds(self):
        fetch, calls = _site({"https://x.de/list": PAGE_ONE}, failures={"https://x.de/list": 2})
        outcome = asyncio.run(make_plan_runner(fetch, max_pages=1)(_plan()))
        assert len(calls) == 3
        assert len(outcome.errors) == 2
        assert len(outcome.items) == 2

    def test_gives_up_after_max_attempts(self):
        fetch, calls = _site({})
        outcome = asyncio.run(make_plan_runner(fetch)(_plan()))
        assert len(calls) == 3
        assert outcome.items == []
        assert outcome.pages_processed == 0

    def test_without_content_link_selector_filters_content_links(self):
        plan = _plan(list_selector="main", content_link_selector=None, pagination_selector=None)
        page = PageSnapshot(url="https://www.example-gemeinde.de/aktuelles/index.htm", html=NEWS_LIST_HTML)
        links = extract_item_links(plan, page)
        assert len(links) == 5
        assert all("/aktuelles/a" in link for link in links)

    def test_next_page_url(self):
        page = PageSnapshot(url="https://x.de/list", html=PAGE_ONE)
        assert next_page_url(_plan(), page) == "https://x.de/list?page=2"
        assert next_page_url(_plan(pagination_selector=None), page) is None
