"""Plan lifecycle rules: which status may follow which, and who hears about it."""

from __future__ import annotations

from scrapeplan.plans.errors import InvalidTransitionError
from scrapeplan.plans.models import (
    APPROVED,
    DEPRECATED,
    DRAFT,
    EXECUTING,
    FAILED,
    PENDING_REVIEW,
    REJECTED,
)

TRANSITIONS: dict[str, frozenset[str]] = {
    DRAFT: frozenset({PENDING_REVIEW, DEPRECATED}),
    PENDING_REVIEW: frozenset({APPROVED, REJECTED, DEPRECATED}),
    APPROVED: frozenset({EXECUTING, DEPRECATED}),
    EXECUTING: frozenset({APPROVED, FAILED, DEPRECATED}),
    FAILED: frozenset({PENDING_REVIEW, DEPRECATED}),
    REJECTED: frozenset({DEPRECATED}),
    DEPRECATED: frozenset(),
}

# States from which a new version may be written.
MODIFIABLE = frozenset({DRAFT, PENDING_REVIEW, APPROVED, REJECTED, FAILED})

_RECIPIENTS = {
    APPROVED: ["operators", "plan_creator"],
    REJECTED: ["plan_creator", "reviewers"],
    EXECUTING: ["monitoring", "operators"],
    FAILED: ["administrators", "operators"],
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def check_transition(plan_id: str, current: str, target: str) -> None:
    """Raise :class:`InvalidTransitionError` unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(plan_id, current, target)


def check_modifiable(plan_id: str, current: str) -> None:
    if current not in MODIFIABLE:
        raise InvalidTransitionError(plan_id, current, DRAFT)


def recipients_for(status: str) -> list[str]:
    return list(_RECIPIENTS.get(status, ["administrators"]))
