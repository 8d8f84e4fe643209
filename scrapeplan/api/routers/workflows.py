"""Workflow endpoints.

Routes
------
GET /workflows/{workflow_id}    Step-by-step status of a running or recently finished workflow

Workflows are in-process only and disappear after the retention window.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

router = APIRouter()


@router.get("/{workflow_id}", response_model=dict[str, Any])
def get_workflow_endpoint(workflow_id: str, request: Request) -> dict[str, Any]:
    workflow = request.app.state.service.get_workflow(workflow_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail=f"Workflow '{workflow_id}' not found.")
    return workflow.to_dict()
