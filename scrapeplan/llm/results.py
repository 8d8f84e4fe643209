"""Typed views of model output.

Raw completion text is turned into exactly one of
:class:`ContainerAnalysisResult`, :class:`PaginationAnalysisResult`,
:class:`DetailAnalysisResult` or :class:`ParseFailure`.  Callers branch on the
type; nothing downstream ever touches the raw JSON.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class _Result(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    confidence: Optional[float] = None
    reasoning: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, value: Any) -> Optional[float]:
        if value is None or value == "":
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return max(0.0, min(number, 1.0))

    @field_validator("reasoning", mode="before")
    @classmethod
    def coerce_reasoning(cls, value: Any) -> str:
        return "" if value is None else str(value)


def _blank_to_none(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


class ContainerAnalysisResult(_Result):
    example_url_selector: Optional[str] = Field(default=None, alias="exampleUrlSelector")
    sibling_container_selector: Optional[str] = Field(
        default=None, alias="siblingContainerSelector"
    )
    content_link_selector: Optional[str] = Field(default=None, alias="contentLinkSelector")
    pagination_next_selector: Optional[str] = Field(
        default=None, alias="paginationNextSelector"
    )

    @field_validator(
        "example_url_selector",
        "sibling_container_selector",
        "content_link_selector",
        "pagination_next_selector",
        mode="before",
    )
    @classmethod
    def clean_selectors(cls, value: Any) -> Optional[str]:
        return _blank_to_none(value)


class PaginationAnalysisResult(_Result):
    pagination_next_selector: Optional[str] = Field(
        default=None, alias="paginationNextSelector"
    )
    pagination_links: list[str] = Field(default_factory=list, alias="paginationLinks")

    @field_validator("pagination_next_selector", mode="before")
    @classmethod
    def clean_selector(cls, value: Any) -> Optional[str]:
        return _blank_to_none(value)

    @field_validator("pagination_links", mode="before")
    @classmethod
    def clean_links(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]


class DetailAnalysisResult(_Result):
    detail_selectors: dict[str, str] = Field(default_factory=dict, alias="detailSelectors")
    rich_content_fields: list[str] = Field(default_factory=list, alias="richContentFields")

    @field_validator("detail_selectors", mode="before")
    @classmethod
    def clean_selectors(cls, value: Any) -> dict[str, str]:
        if not isinstance(value, dict):
            return {}
        return {
            str(k): v.strip()
            for k, v in value.items()
            if isinstance(v, str) and v.strip()
        }

    @field_validator("rich_content_fields", mode="before")
    @classmethod
    def clean_rich_fields(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, str)]


@dataclass(frozen=True)
class ParseFailure:
    """Model output that could not be turned into a result."""

    reason: str
    raw: str = ""


ContainerOutcome = Union[ContainerAnalysisResult, ParseFailure]
PaginationOutcome = Union[PaginationAnalysisResult, ParseFailure]
DetailOutcome = Union[DetailAnalysisResult, ParseFailure]

R = TypeVar("R", bound=_Result)

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json_object(content: str) -> Optional[dict[str, Any]]:
    """Pull the first JSON object out of *content*.

    Handles bare JSON, JSON inside a Markdown code fence, and JSON embedded
    in surrounding prose.  Returns ``None`` when nothing parses to a dict.
    """
    if not content:
        return None
    fenced = _FENCE.search(content)
    text = fenced.group(1) if fenced else content

    start = text.find("{")
    if start == -1:
        return None
    decoder = json.JSONDecoder()
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    return None


def _parse(content: str, model: Type[R]) -> Union[R, ParseFailure]:
    data = extract_json_object(content)
    if data is None:
        return ParseFailure(reason="no JSON object in completion", raw=content)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        return ParseFailure(reason=f"invalid {model.__name__}: {exc}", raw=content)


def parse_container_analysis(content: str) -> ContainerOutcome:
    return _parse(content, ContainerAnalysisResult)


def parse_pagination_analysis(content: str) -> PaginationOutcome:
    return _parse(content, PaginationAnalysisResult)


def parse_detail_analysis(content: str) -> DetailOutcome:
    return _parse(content, DetailAnalysisResult)
