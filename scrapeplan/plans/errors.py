"""Errors raised by the plan store and lifecycle operations.

All of them are ``ValueError`` subclasses so callers that only care about
"bad input / bad state" can keep catching ``ValueError``.
"""

from __future__ import annotations


class PlanNotFoundError(ValueError):
    def __init__(self, plan_id: str, version: int | None = None) -> None:
        self.plan_id = plan_id
        self.version = version
        suffix = f" v{version}" if version is not None else ""
        super().__init__(f"Plan not found: {plan_id}{suffix}")


class InvalidTransitionError(ValueError):
    def __init__(self, plan_id: str, current: str, target: str) -> None:
        self.plan_id = plan_id
        self.current = current
        self.target = target
        super().__init__(f"Plan {plan_id}: cannot move from {current!r} to {target!r}")


class VersionConflictError(ValueError):
    """The stored version moved on since the caller last read it."""

    def __init__(self, plan_id: str, expected: int, actual: int) -> None:
        self.plan_id = plan_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Plan {plan_id}: expected version {expected}, store is at {actual}"
        )


class PlanImmutableError(ValueError):
    """A ``(planId, version)`` pair was written twice."""

    def __init__(self, plan_id: str, version: int) -> None:
        self.plan_id = plan_id
        self.version = version
        super().__init__(f"Plan {plan_id} v{version} already exists and is immutable")


class ExecutionNotFoundError(ValueError):
    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Execution not found: {run_id}")


class PlanValidationError(ValueError):
    """A modified plan failed validation and was not stored."""

    def __init__(self, plan_id: str, issues: list[str]) -> None:
        self.plan_id = plan_id
        self.issues = list(issues)
        super().__init__(f"Plan {plan_id} modifications failed validation: {', '.join(issues)}")
