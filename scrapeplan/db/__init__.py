"""Database layer package.

Public re-exports so callers can write::

    from scrapeplan.db import get_connection, init_db
    from scrapeplan.db import plans
"""

from scrapeplan.db.connection import get_connection
from scrapeplan.db.migrations import init_db
from scrapeplan.db import plans, store, usage

__all__ = ["get_connection", "init_db", "plans", "store", "usage"]
