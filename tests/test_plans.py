"""Tests for plan synthesis, modification, validation, lifecycle rules and docs."""

from __future__ import annotations

import re

import pytest

from conftest import news_page
from scrapeplan.llm.results import DetailAnalysisResult
from scrapeplan.plans.documentation import render_plan_markdown
from scrapeplan.plans.errors import InvalidTransitionError
from scrapeplan.plans.lifecycle import (
    MODIFIABLE,
    can_transition,
    check_modifiable,
    check_transition,
    recipients_for,
)
from scrapeplan.plans.models import (
    DEFAULT_DESCRIPTION_SELECTOR,
    DEFAULT_LIST_SELECTOR,
    DEFAULT_TITLE_SELECTOR,
    PlanMetadata,
    RetryPolicy,
    ScrapingPlan,
)
from scrapeplan.plans.synthesizer import (
    SynthesisOptions,
    apply_modifications,
    generate_plan_id,
    synthesize,
)
from scrapeplan.plans.validation import validate_plan
from scrapeplan.resolution.models import ContainerAnalysis, PaginationAnalysis

ENTRY = "https://x.de/news"


def _container(**overrides) -> ContainerAnalysis:
    values = dict(
        container_selector="ul.news",
        content_link_selector="li > a",
        confidence=0.6,
        method="heuristic",
        content_links=("https://x.de/news/1", "https://x.de/news/2"),
        container_signature="ul.news#[2]",
    )
    values.update(overrides)
    return ContainerAnalysis(**values)


def _pagination() -> PaginationAnalysis:
    return PaginationAnalysis(
        next_selector='a[rel="next"]',
        discovered_links=("https://x.de/news?page=2",),
        confidence=0.8,
        method="heuristic",
        estimated_total_pages=2,
    )


def _news_plan(**overrides) -> ScrapingPlan:
    values = dict(
        plan_id="plan_test",
        version=1,
        entry_urls=[news_page().url],
        list_selector="body > main > ul.news-list",
        content_link_selector="li > a",
        detail_selectors={"title": DEFAULT_TITLE_SELECTOR, "description": DEFAULT_DESCRIPTION_SELECTOR},
        confidence_score=0.6,
        metadata=PlanMetadata(domain="www.example-gemeinde.de"),
    )
    values.update(overrides)
    return ScrapingPlan(**values)


class TestSynthesize:
    def test_full_plan(self):
        plan = synthesize(
            ENTRY,
            _container(),
            _pagination(),
            {"title": "h1.headline", "date": "  "},
            SynthesisOptions(
                detail_confidence=0.3,
                rich_content_fields=["description", "bogus"],
                plan_id="plan_test",
            ),
        )
        assert plan.plan_id == "plan_test"
        assert plan.version == 1
        assert plan.entry_urls == [ENTRY]
        assert plan.list_selector == "ul.news"
        assert plan.content_link_selector == "li > a"
        assert plan.pagination_selector == 'a[rel="next"]'
        assert plan.detail_selectors == {
            "title": "h1.headline",
            "description": DEFAULT_DESCRIPTION_SELECTOR,
        }
        assert plan.rich_content_fields == ["description"]
        assert plan.confidence_score == pytest.approx(0.8)
        assert plan.metadata.domain == "x.de"
        assert plan.metadata.estimated_total_pages == 2
        assert plan.pagination_info.is_paginated
        assert plan.pagination_info.links == ["https://x.de/news?page=2"]

    def test_defaults_without_analyses(self):
        plan = synthesize(ENTRY, None, None)
        assert plan.list_selector == DEFAULT_LIST_SELECTOR
        assert plan.content_link_selector is None
        assert plan.pagination_selector is None
        assert plan.pagination_info is None
        assert plan.confidence_score == 0.0
        assert plan.detail_selectors["title"] == DEFAULT_TITLE_SELECTOR

    def test_container_pagination_hint_used_when_no_pagination(self):
        plan = synthesize(ENTRY, _container(pagination_hint="a.weiter"), None)
        assert plan.pagination_selector == "a.weiter"

    def test_detail_confidence_can_win(self):
        plan = synthesize(ENTRY, _container(), None, options=SynthesisOptions(detail_confidence=0.95))
        assert plan.confidence_score == pytest.approx(0.95)

    def test_generated_plan_id_format(self):
        assert re.match(r"^plan_\d+_[a-z0-9]{9}$", generate_plan_id())
        assert generate_plan_id() != generate_plan_id()


class TestApplyModifications:
    def test_bumps_version_and_applies_known_keys(self):
        plan = synthesize(ENTRY, _container(), _pagination(), options=SynthesisOptions(plan_id="plan_test"))
        updated = apply_modifications(
            plan,
            {
                "listSelector": "div.list",
                "detail_selectors": {"title": None, "date": ".date"},
                "rateLimitMs": "2000",
                "metadata": {"language": "en"},
                "retryPolicy": {"maxAttempts": 5},
            },
        )
        assert updated.version == 2
        assert updated.list_selector == "div.list"
        assert "title" not in updated.detail_selectors
        assert updated.detail_selectors["date"] == ".date"
        assert updated.rate_limit_ms == 2000
        assert updated.metadata.language == "en"
        assert updated.retry_policy.max_attempts == 5
        assert updated.retry_policy.base_delay_ms == 1000

    def test_original_is_untouched(self):
        plan = synthesize(ENTRY, _container(), None, options=SynthesisOptions(plan_id="plan_test"))
        apply_modifications(plan, {"detailSelectors": {"title": "h3"}})
        assert plan.version == 1
        assert plan.detail_selectors["title"] == DEFAULT_TITLE_SELECTOR

    def test_fixed_and_unknown_keys_ignored(self):
        plan = synthesize(ENTRY, None, None, options=SynthesisOptions(plan_id="plan_test"))
        updated = apply_modifications(plan, {"planId": "other", "version": 9, "bogus": True})
        assert updated.plan_id == "plan_test"
        assert updated.version == 2

    def test_empty_list_selector_restored_to_default(self):
        plan = synthesize(ENTRY, _container(), None)
        assert apply_modifications(plan, {"listSelector": ""}).list_selector == DEFAULT_LIST_SELECTOR


class TestRetryPolicy:
    def test_exponential_is_capped(self):
        policy = RetryPolicy()
        assert [policy.delay_ms(n) for n in (1, 2, 3)] == [1000, 2000, 4000]
        assert policy.delay_ms(6) == 10000

    def test_linear(self):
        assert RetryPolicy(backoff_strategy="linear").delay_ms(3) == 3000

    def test_from_dict_fills_defaults(self):
        policy = RetryPolicy.from_dict({"maxAttempts": "x"})
        assert policy.max_attempts == 3
        assert policy.retryable_errors == ["TIMEOUT", "NETWORK_ERROR", "RATE_LIMIT"]


class TestPlanModel:
    def test_dict_round_trip(self):
        plan = synthesize(ENTRY, _container(), _pagination(), options=SynthesisOptions(plan_id="plan_test"))
        assert ScrapingPlan.from_dict(plan.to_dict()) == plan

    def test_from_minimal_dict(self):
        plan = ScrapingPlan.from_dict({"planId": "p"})
        assert plan.version == 1
        assert plan.list_selector == DEFAULT_LIST_SELECTOR
        assert plan.rate_limit_ms == 1000
        assert plan.pagination_info is None


class TestValidatePlan:
    def test_valid_plan_against_snapshot(self):
        report = validate_plan(_news_plan(), news_page())
        assert report.is_valid
        assert report.issues == []
        assert report.warnings == []
        assert report.score == 100

    def test_without_snapshot(self):
        report = validate_plan(_news_plan())
        assert report.is_valid
        assert report.checks["selectors"] is False
        assert report.score == 70

    def test_aggressive_rate_limit_warns(self):
        report = validate_plan(_news_plan(rate_limit_ms=100), news_page())
        assert report.is_valid
        assert report.checks["accessibility"] is False
        assert report.score == 70

    def test_invalid_entry_url(self):
        report = validate_plan(_news_plan(entry_urls=["ftp://x.de/file"]), news_page())
        assert not report.is_valid
        assert report.score == 30

    def test_list_selector_without_matches(self):
        report = validate_plan(_news_plan(list_selector="div.missing"), news_page())
        assert not report.is_valid
        assert len(report.issues) == 1
        assert report.score == 50

    def test_invalid_detail_selector(self):
        report = validate_plan(
            _news_plan(detail_selectors={"title": "h1[["}), news_page()
        )
        assert not report.is_valid
        assert any("title" in issue for issue in report.issues)

    def test_missing_fields(self):
        report = validate_plan(_news_plan(entry_urls=[]))
        assert not report.is_valid
        assert report.checks["structure"] is False

    def test_score_never_negative(self):
        report = validate_plan(
            _news_plan(entry_urls=["nope"], detail_selectors={"a": "[["}, rate_limit_ms=0)
        )
        assert report.score >= 0


class TestLifecycleRules:
    @pytest.mark.parametrize(
        "current,target",
        [
            ("draft", "pending_review"),
            ("pending_review", "approved"),
            ("pending_review", "rejected"),
            ("approved", "executing"),
            ("executing", "approved"),
            ("executing", "failed"),
            ("failed", "pending_review"),
            ("rejected", "deprecated"),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            ("draft", "approved"),
            ("rejected", "approved"),
            ("deprecated", "draft"),
            ("approved", "pending_review"),
        ],
    )
    def test_refused(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(InvalidTransitionError):
            check_transition("plan_x", current, target)

    def test_deprecated_and_executing_not_modifiable(self):
        assert "deprecated" not in MODIFIABLE
        with pytest.raises(InvalidTransitionError):
            check_modifiable("plan_x", "executing")
        check_modifiable("plan_x", "rejected")

    def test_recipients(self):
        assert recipients_for("approved") == ["operators", "plan_creator"]
        assert recipients_for("failed") == ["administrators", "operators"]
        assert recipients_for("draft") == ["administrators"]


class TestDocumentation:
    def test_markdown_mentions_selectors_and_analyses(self):
        plan = synthesize(
            ENTRY,
            _container(reasoning="five similar links"),
            _pagination(),
            options=SynthesisOptions(plan_id="plan_test", rich_content_fields=["description"]),
        )
        doc = render_plan_markdown(
            plan,
            analyses=[_container(reasoning="five similar links")],
            detail_analysis=DetailAnalysisResult(confidence=0.7, reasoning="h1 everywhere"),
            pagination=_pagination(),
        )
        assert doc.startswith("# Scraping Plan: plan_test")
        assert "`ul.news`" in doc
        assert "Rich HTML Content" in doc
        assert "five similar links" in doc
        assert "h1 everywhere" in doc
        assert "**Estimated Pages**: 2" in doc

    def test_markdown_without_analyses(self):
        doc = render_plan_markdown(synthesize(ENTRY, None, None))
        assert "No container analysis recorded" in doc
        assert "Not analysed" in doc
