"""FastAPI application factory.

Lifespan
--------
On startup the app opens a single SQLite connection, initialises the schema
and builds one :class:`~scrapeplan.service.PlanService` on
``app.state.service`` (the connection stays reachable as ``app.state.db``).
On shutdown it waits for queued executions and closes the connection.

Routers
-------
    /plans       generation, lifecycle, documentation, scheduling, runs
    /executions  execution records
    /workflows   in-process workflow records
    /usage       completion usage counters
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scrapeplan.db import get_connection, init_db
from scrapeplan.llm.adapter import CompletionAdapter
from scrapeplan.service import PlanService

from scrapeplan.api.routers import executions as executions_router
from scrapeplan.api.routers import plans as plans_router
from scrapeplan.api.routers import usage as usage_router
from scrapeplan.api.routers import workflows as workflows_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the DB and build the plan service on startup; clean up on shutdown."""
    conn = get_connection()
    init_db(conn)
    app.state.db = conn
    app.state.service = PlanService(conn, adapter=CompletionAdapter())
    try:
        yield
    finally:
        await app.state.service.wait_for_executions()
        conn.close()


def create_app() -> FastAPI:
    """Return a fully-configured FastAPI application instance."""
    app = FastAPI(
        title="scrapeplan API",
        description=(
            "Generates scraping plans for list/detail websites, runs them "
            "through review and approval, and executes approved plans."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Allow browser frontends on any origin (tighten for production).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(plans_router.router, prefix="/plans", tags=["plans"])
    app.include_router(executions_router.router, prefix="/executions", tags=["executions"])
    app.include_router(workflows_router.router, prefix="/workflows", tags=["workflows"])
    app.include_router(usage_router.router, prefix="/usage", tags=["usage"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn scrapeplan.api.app:app --reload
app = create_app()
