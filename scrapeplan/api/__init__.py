"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from scrapeplan.api import app

    uvicorn scrapeplan.api:app --reload
"""

from scrapeplan.api.app import app, create_app

__all__ = ["app", "create_app"]
