"""Human-readable Markdown rendering of a plan and the analyses behind it."""

from __future__ import annotations

from typing import Optional, Sequence

from scrapeplan.llm.results import DetailAnalysisResult
from scrapeplan.plans.models import ScrapingPlan
from scrapeplan.resolution.models import ContainerAnalysis, PaginationAnalysis


def _code(value: Optional[str], missing: str = "None") -> str:
    return f"`{value}`" if value else missing


def render_plan_markdown(
    plan: ScrapingPlan,
    analyses: Sequence[ContainerAnalysis] = (),
    detail_analysis: Optional[DetailAnalysisResult] = None,
    pagination: Optional[PaginationAnalysis] = None,
) -> str:
    """Render *plan* as Markdown for reviewers."""
    lines = [
        f"# Scraping Plan: {plan.plan_id}",
        "",
        "## Overview",
        f"Version {plan.version} for `{plan.metadata.domain}`, created by "
        f"{plan.metadata.created_by}, confidence {plan.confidence_score:.2f}.",
        "",
        "## Plan Configuration",
        f"- **Entry URLs**: {', '.join(plan.entry_urls)}",
        f"- **List Selector**: {_code(plan.list_selector)}",
        f"- **Content Link Selector**: {_code(plan.content_link_selector, 'None (fallback link discovery)')}",
        f"- **Pagination Selector**: {_code(plan.pagination_selector)}",
        f"- **Rate Limit**: {plan.rate_limit_ms}ms between requests",
        f"- **Retries**: {plan.retry_policy.max_attempts} attempts, "
        f"{plan.retry_policy.backoff_strategy} backoff "
        f"({plan.retry_policy.base_delay_ms}-{plan.retry_policy.max_delay_ms}ms)",
        "",
        "## Detail Selectors",
    ]
    for name, selector in plan.detail_selectors.items():
        kind = "Rich HTML Content" if name in plan.rich_content_fields else "Text Content"
        lines.append(f"- **{name}** ({kind}): `{selector}`")

    if plan.rich_content_fields:
        lines += ["", "### Rich Content Fields"]
        lines += [f"- **{name}**: extracted as HTML" for name in plan.rich_content_fields]

    lines += ["", "## Analysis Results", "### Container Discovery"]
    if analyses:
        best = max(analyses, key=lambda a: a.confidence)
        lines += [
            f"- **Method**: {best.method}",
            f"- **Confidence**: {best.confidence:.2f}",
            f"- **Links Found**: {sum(len(a.content_links) for a in analyses)}",
            f"- **Container Signature**: {_code(best.container_signature, 'Not detected')}",
            f"- **Link Patterns**: {', '.join(best.link_patterns) or 'None'}",
        ]
        if best.reasoning:
            lines.append(f"- **Reasoning**: {best.reasoning}")
    else:
        lines.append("- No container analysis recorded")

    lines += ["", "### Pagination"]
    if pagination is not None:
        lines += [
            f"- **Method**: {pagination.method}",
            f"- **Confidence**: {pagination.confidence:.2f}",
            f"- **Links Found**: {len(pagination.discovered_links)}",
            f"- **Estimated Pages**: {pagination.estimated_total_pages or 'Unknown'}",
        ]
    else:
        lines.append("- Not analysed")

    lines += ["", "### Content Analysis"]
    if detail_analysis is not None:
        lines += [
            f"- **Confidence**: {detail_analysis.confidence or 0:.2f}",
            f"- **Selectors Extracted**: {len(detail_analysis.detail_selectors)}",
            f"- **Reasoning**: {detail_analysis.reasoning or 'N/A'}",
        ]
    else:
        lines.append("- Selectors supplied or defaulted")

    lines += ["", "## Generated At", plan.metadata.created_at]
    return "\n".join(lines)
