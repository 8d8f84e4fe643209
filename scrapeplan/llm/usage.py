"""Usage accounting around a completion adapter."""

from __future__ import annotations

import sqlite3
from typing import Any

from scrapeplan.db.usage import record_usage
from scrapeplan.llm.adapter import CompletionError, CompletionRequest, CompletionResponse


class UsageTrackingAdapter:
    """Forward ``complete`` to *adapter* and count every provider attempt.

    Answers add one request and their tokens for the answering model; each
    failed attempt before it, or behind a :class:`CompletionError`, adds a
    request and a failure.  An error that names no attempts is counted
    against ``unknown``.
    """

    def __init__(self, adapter: Any, conn: sqlite3.Connection) -> None:
        self.adapter = adapter
        self.conn = conn

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        try:
            response = await self.adapter.complete(request)
        except CompletionError as exc:
            for provider, model in exc.attempts or [("unknown", "")]:
                record_usage(self.conn, provider, model, failed=True)
            raise
        for provider, model in response.failed_attempts:
            record_usage(self.conn, provider, model, failed=True)
        record_usage(self.conn, response.provider, response.model, tokens=response.tokens_used)
        return response
