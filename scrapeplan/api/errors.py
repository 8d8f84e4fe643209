"""Map service exceptions onto HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException

from scrapeplan.plans.errors import (
    ExecutionNotFoundError,
    InvalidTransitionError,
    PlanImmutableError,
    PlanNotFoundError,
    VersionConflictError,
)


def http_error(exc: Exception) -> HTTPException:
    """Return the ``HTTPException`` matching *exc*.

    404 for unknown plans and runs, 409 for lifecycle and version conflicts,
    422 for any other ``ValueError`` and 502 for everything else
    (failed workflows, completion calls, fetch errors).
    """
    if isinstance(exc, (PlanNotFoundError, ExecutionNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, VersionConflictError, PlanImmutableError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))
