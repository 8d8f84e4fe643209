"""Step factories for the plan generation workflow.

Public factories
----------------
``make_fetch_html``              fetches the entry page.
``make_discover_sibling_links``  resolves the container for every example
                                 URL **concurrently**, then the pagination.
``make_analyze_content``         derives detail selectors from content pages.
``make_generate_plan``           synthesizes version 1 of the plan.
``make_validate_plan``           validates the plan against the entry page.
``make_store_plan``              persists the plan as ``draft``.

Every factory returns an async ``(context) -> dict`` step.  Collaborators
(fetcher, resolvers, adapter, DB connection) are captured by the closures
so the context only carries data.
"""

from __future__ import annotations

import asyncio
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from scrapeplan.config import settings
from scrapeplan.db import plans as plan_store
from scrapeplan.llm.adapter import CompletionError
from scrapeplan.llm.prompts import detail_analysis_request
from scrapeplan.llm.results import ParseFailure, parse_detail_analysis
from scrapeplan.plans.models import DRAFT, utc_now
from scrapeplan.plans.synthesizer import SynthesisOptions, synthesize
from scrapeplan.plans.validation import validate_plan
from scrapeplan.resolution.container import ContainerResolver
from scrapeplan.resolution.models import ContainerAnalysis
from scrapeplan.resolution.pagination import PaginationResolver
from scrapeplan.scraper.compressor import compress_html_for_llm
from scrapeplan.scraper.models import PageSnapshot
from scrapeplan.workflow.state import StepSpec

AsyncFetch = Callable[[str], Awaitable[PageSnapshot]]


@dataclass
class GenerationOptions:
    """Caller overrides for :func:`generation_steps`."""

    detail_selectors: Optional[dict[str, str]] = None
    pagination_url: Optional[str] = None
    rate_limit_ms: int = field(default_factory=lambda: settings.default_rate_limit_ms)
    exclude_selectors: list[str] = field(default_factory=list)
    site_type: str = "municipal"
    language: str = "de"
    created_by: str = "ai"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def best_analysis(analyses: list[ContainerAnalysis]) -> Optional[ContainerAnalysis]:
    """Keep one analysis per container signature, then pick the most confident."""
    by_signature: dict[str, ContainerAnalysis] = {}
    for analysis in analyses:
        key = analysis.container_signature or analysis.container_selector
        current = by_signature.get(key)
        if current is None or analysis.confidence > current.confidence:
            by_signature[key] = analysis
    if not by_signature:
        return None
    return max(by_signature.values(), key=lambda a: a.confidence)


async def _fetch_many(fetch: AsyncFetch, urls: list[str]) -> list[PageSnapshot]:
    results = await asyncio.gather(*(fetch(u) for u in urls), return_exceptions=True)
    pages = []
    for url, result in zip(urls, results):
        if isinstance(result, Exception):
            logger.warning(f"[WORKFLOW] could not fetch content page {url}: {result}")
            continue
        pages.append(result)
    return pages


# ---------------------------------------------------------------------------
# Step factories
# ---------------------------------------------------------------------------

def make_fetch_html(fetch: AsyncFetch):
    async def fetch_html(context: dict[str, Any]) -> dict:
        page = await fetch(context["url"])
        logger.info(f"[FETCH] entry page {page.url} ({len(page.html)} chars)")
        return {"page": page}

    return fetch_html


def make_discover_sibling_links(
    container_resolver: ContainerResolver, pagination_resolver: PaginationResolver
):
    async def discover_sibling_links(context: dict[str, Any]) -> dict:
        page: PageSnapshot = context["page"]
        options: GenerationOptions = context["options"]
        examples: list[str] = context.get("example_urls") or []

        analyses = list(
            await asyncio.gather(
                *(
                    container_resolver.resolve(page, example, options.pagination_url)
                    for example in examples
                )
            )
        )
        best = best_analysis(analyses)
        if best is None:
            logger.info(f"[CONTAINER] no example URLs for {page.url}, using default selectors")

        pagination = await pagination_resolver.resolve(
            page, best.container_selector if best and best.container_selector else None
        )
        return {"container_analyses": analyses, "container": best, "pagination": pagination}

    return discover_sibling_links


def make_analyze_content(fetch: AsyncFetch, adapter: Any = None):
    async def analyze_content(context: dict[str, Any]) -> dict:
        options: GenerationOptions = context["options"]
        if options.detail_selectors:
            return {
                "detail_selectors": dict(options.detail_selectors),
                "detail_analysis": None,
                "detail_pages": [],
            }

        best: Optional[ContainerAnalysis] = context.get("container")
        urls = list(best.content_links) if best is not None else []
        urls = urls or list(context.get("example_urls") or [])
        pages = await _fetch_many(fetch, urls[: settings.max_content_pages])
        empty = {"detail_selectors": {}, "detail_analysis": None, "detail_pages": pages}
        if not pages or adapter is None:
            return empty

        html = "\n\n".join(
            f"<!-- {p.url} -->\n{compress_html_for_llm(p.html, focused=True)}" for p in pages
        )
        request = detail_analysis_request([p.url for p in pages], html)
        try:
            response = await adapter.complete(request)
        except CompletionError as exc:
            logger.warning(f"[LLM] detail analysis unavailable: {exc}")
            return empty
        result = parse_detail_analysis(response.content)
        if isinstance(result, ParseFailure):
            logger.warning(f"[LLM] detail analysis unparsable: {result.reason}")
            return empty

        logger.info(f"[PLAN] {len(result.detail_selectors)} detail selectors from {len(pages)} pages")
        return {
            "detail_selectors": result.detail_selectors,
            "detail_analysis": result,
            "detail_pages": pages,
        }

    return analyze_content


def make_generate_plan():
    async def generate_plan(context: dict[str, Any]) -> dict:
        options: GenerationOptions = context["options"]
        detail = context.get("detail_analysis")
        plan = synthesize(
            context["url"],
            context.get("container"),
            context.get("pagination"),
            context.get("detail_selectors"),
            SynthesisOptions(
                rate_limit_ms=options.rate_limit_ms,
                detail_confidence=(detail.confidence or 0.0) if detail is not None else 0.0,
                rich_content_fields=list(detail.rich_content_fields) if detail is not None else [],
                exclude_selectors=list(options.exclude_selectors),
                site_type=options.site_type,
                language=options.language,
                created_by=options.created_by,
            ),
        )
        return {"plan": plan}

    return generate_plan


def make_validate_plan():
    async def validate(context: dict[str, Any]) -> dict:
        pages = context.get("detail_pages") or []
        report = validate_plan(context["plan"], context.get("page"), pages[0] if pages else None)
        return {"validation": report}

    return validate


def make_store_plan(conn: sqlite3.Connection):
    async def store_plan(context: dict[str, Any]) -> dict:
        plan = context["plan"]
        status = plan_store.create_plan(conn, plan)
        plan_store.record_history(
            conn,
            plan.plan_id,
            {"from": None, "to": DRAFT, "version": plan.version, "timestamp": utc_now(), "actor": "system"},
        )
        logger.info(f"[LIFECYCLE] stored {plan.plan_id} v{plan.version} as {DRAFT}")
        return {"lifecycle": status}

    return store_plan


def generation_steps(
    conn: sqlite3.Connection,
    fetch: AsyncFetch,
    container_resolver: ContainerResolver,
    pagination_resolver: PaginationResolver,
    adapter: Any = None,
) -> list[StepSpec]:
    return [
        StepSpec("fetch_html", "Fetch entry page", make_fetch_html(fetch)),
        StepSpec(
            "discover_sibling_links",
            "Resolve container and pagination",
            make_discover_sibling_links(container_resolver, pagination_resolver),
        ),
        StepSpec("analyze_content", "Analyze content pages", make_analyze_content(fetch, adapter)),
        StepSpec("generate_plan", "Synthesize plan", make_generate_plan()),
        StepSpec("validate_plan", "Validate plan", make_validate_plan()),
        StepSpec("store_plan", "Store plan", make_store_plan(conn)),
    ]
