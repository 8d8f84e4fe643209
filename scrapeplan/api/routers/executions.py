"""Execution record endpoints.

Routes
------
GET /executions/{run_id}    One execution record (queued, running, completed or failed)
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from scrapeplan.api.errors import http_error

router = APIRouter()


@router.get("/{run_id}", response_model=dict[str, Any])
def get_execution_endpoint(run_id: str, request: Request) -> dict[str, Any]:
    try:
        return request.app.state.service.get_execution(run_id).to_dict()
    except ValueError as exc:
        raise http_error(exc) from exc
