"""Static and snapshot-based checks of a :class:`ScrapingPlan`.

Validation never raises: every problem ends up as an issue (blocking) or a
warning (advisory) on the returned :class:`ValidationReport`.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from scrapeplan.plans.models import ScrapingPlan, ValidationReport
from scrapeplan.resolution.similarity import is_http_url
from scrapeplan.scraper.dom import DomArena, InvalidSelectorError
from scrapeplan.scraper.models import PageSnapshot

MIN_POLITE_RATE_LIMIT_MS = 500


def _check_structure(plan: ScrapingPlan, report: ValidationReport) -> bool:
    if not plan.plan_id or not plan.entry_urls or not plan.list_selector:
        report.issues.append("Missing required plan fields: planId, entryUrls, or listSelector")
        return False
    if plan.version < 1:
        report.issues.append(f"Invalid plan version: {plan.version}")
        return False
    return True


def _check_urls(plan: ScrapingPlan, report: ValidationReport) -> bool:
    ok = bool(plan.entry_urls)
    for url in plan.entry_urls:
        if not is_http_url(url):
            report.issues.append(f"Invalid entry URL: {url}")
            ok = False
    return ok


def _check_selectors(
    plan: ScrapingPlan,
    report: ValidationReport,
    page: Optional[PageSnapshot],
    detail_page: Optional[PageSnapshot],
) -> bool:
    blank = DomArena.from_html("<html><body></body></html>")
    syntax_ok = True
    for name, selector in plan.detail_selectors.items():
        try:
            blank.select(selector)
        except InvalidSelectorError:
            report.issues.append(f"Invalid detail selector for {name!r}: {selector}")
            syntax_ok = False

    if page is None:
        report.warnings.append("No page snapshot available; list selector not checked")
        return False

    dom = DomArena.from_html(page.html)
    try:
        containers = dom.select(plan.list_selector)
    except InvalidSelectorError:
        report.issues.append(f"Invalid list selector: {plan.list_selector}")
        return False

    passed = syntax_ok
    if not containers:
        report.issues.append(f"List selector {plan.list_selector!r} found no elements on {page.url}")
        report.warnings.append(
            "Consider a more generic selector or check whether content loads dynamically"
        )
        passed = False
    elif plan.content_link_selector:
        links = dom.try_select(plan.content_link_selector, containers[0])
        if len(links) < 2:
            report.warnings.append(
                f"Content link selector {plan.content_link_selector!r} found only "
                f"{len(links)} element(s). Expected multiple items."
            )
            passed = False
    elif len(containers) < 2:
        report.warnings.append(
            f"List selector {plan.list_selector!r} found only {len(containers)} element(s). "
            "Expected multiple items."
        )
        passed = False

    if plan.pagination_selector:
        try:
            if not dom.select(plan.pagination_selector):
                report.warnings.append(
                    f"Pagination selector {plan.pagination_selector!r} found no elements"
                )
        except InvalidSelectorError:
            report.issues.append(f"Invalid pagination selector: {plan.pagination_selector}")
            passed = False

    if detail_page is not None:
        detail_dom = DomArena.from_html(detail_page.html)
        for name, selector in plan.detail_selectors.items():
            if not detail_dom.try_select(selector):
                report.warnings.append(
                    f"Detail selector for {name!r} ({selector}) found no elements"
                )
    return passed


def validate_plan(
    plan: ScrapingPlan,
    page: Optional[PageSnapshot] = None,
    detail_page: Optional[PageSnapshot] = None,
) -> ValidationReport:
    """Check *plan* for structure, URLs, selectors and politeness.

    Args:
        plan: The plan to check.
        page: Snapshot of the first entry URL; selectors are tested on it.
        detail_page: Optional snapshot of one content page for the detail
            selectors.

    The score starts at the share of passed checks (0..100) and loses 20
    points per issue and 5 per warning, never going below 0.
    """
    report = ValidationReport(is_valid=True)
    report.checks = {
        "structure": _check_structure(plan, report),
        "urls": _check_urls(plan, report),
        "selectors": False,
        "accessibility": False,
    }
    if report.checks["urls"]:
        report.checks["selectors"] = _check_selectors(plan, report, page, detail_page)

    if plan.rate_limit_ms < MIN_POLITE_RATE_LIMIT_MS:
        report.warnings.append(
            f"Rate limit is very aggressive (< {MIN_POLITE_RATE_LIMIT_MS}ms). "
            "Consider increasing it."
        )
    else:
        report.checks["accessibility"] = True

    report.is_valid = not report.issues
    passed = sum(1 for ok in report.checks.values() if ok)
    score = passed / len(report.checks) * 100
    score -= 20 * len(report.issues) + 5 * len(report.warnings)
    report.score = max(0, round(score))

    logger.info(
        f"[VALIDATION] {plan.plan_id} v{plan.version}: valid={report.is_valid} "
        f"score={report.score} issues={len(report.issues)} warnings={len(report.warnings)}"
    )
    return report
