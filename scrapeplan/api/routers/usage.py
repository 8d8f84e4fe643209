"""Completion usage endpoint.

Routes
------
GET /usage    Requests, failures and tokens per provider/model, plus totals
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("", response_model=dict[str, Any])
def get_usage_endpoint(request: Request) -> dict[str, Any]:
    return request.app.state.service.get_llm_usage()
