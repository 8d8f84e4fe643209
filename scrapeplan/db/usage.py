"""Completion usage counters in the hash/list store.

Key layout::

    llm_usage    hash, fields ``{provider}/{model}|{counter}``

Counters are ``requests`` (every provider attempt), ``failures`` and
``tokens``.  Model names may contain ``:`` (``ministral-3:8b``), hence the
``|`` separator.
"""

from __future__ import annotations

import sqlite3
from typing import Any

from scrapeplan.db import store

USAGE_KEY = "llm_usage"
COUNTERS = ("requests", "failures", "tokens")


def _label(provider: str, model: str) -> str:
    return f"{provider}/{model}" if model else provider


def record_usage(
    conn: sqlite3.Connection,
    provider: str,
    model: str = "",
    tokens: int = 0,
    failed: bool = False,
) -> None:
    """Count one completion attempt against ``provider/model``."""
    label = _label(provider, model)
    with store.transaction(conn):
        current = store.hgetall(conn, USAGE_KEY)

        def bump(counter: str, amount: int) -> str:
            return str(int(current.get(f"{label}|{counter}") or 0) + amount)

        store._hset(
            conn,
            USAGE_KEY,
            {
                f"{label}|requests": bump("requests", 1),
                f"{label}|failures": bump("failures", int(failed)),
                f"{label}|tokens": bump("tokens", max(tokens, 0)),
            },
        )


def get_usage(conn: sqlite3.Connection) -> dict[str, Any]:
    """Return ``{"models": {label: counters}, "totals": counters}``."""
    models: dict[str, dict[str, int]] = {}
    for field, value in store.hgetall(conn, USAGE_KEY).items():
        label, _, counter = field.rpartition("|")
        if counter not in COUNTERS:
            continue
        models.setdefault(label, dict.fromkeys(COUNTERS, 0))[counter] = int(value)
    totals = {c: sum(m[c] for m in models.values()) for c in COUNTERS}
    return {"models": models, "totals": totals}
