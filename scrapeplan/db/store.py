"""Hash and list primitives on top of SQLite.

The plan store speaks in two shapes only:

* **hashes**: ``key -> {field: value}`` (``kv_hash``), written field by field;
* **lists**: ``key -> [value, ...]`` (``kv_list``), pushed at the head and
  trimmed to the newest *N* entries.

Values are strings; callers JSON-encode anything structured.  Every public
write commits on its own.  Multi-step writes that must be atomic go through
:func:`transaction` and the underscore helpers, which never commit.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional

# One writer at a time per process; the connection is shared across threads.
_WRITE_LOCK = threading.RLock()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block inside ``BEGIN IMMEDIATE`` under the process write lock.

    Commits when the block exits normally, rolls back and re-raises otherwise.
    """
    with _WRITE_LOCK:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()


# ---------------------------------------------------------------------------
# Non-committing helpers (use inside ``transaction``)
# ---------------------------------------------------------------------------

def _hset(conn: sqlite3.Connection, key: str, mapping: Mapping[str, str]) -> None:
    conn.executemany(
        """
        INSERT INTO kv_hash(key, field, value, updated_at)
        VALUES (?, ?, ?, CAST(strftime('%s', 'now') AS INTEGER))
        ON CONFLICT(key, field) DO UPDATE SET
            value      = excluded.value,
            updated_at = excluded.updated_at
        """,
        [(key, f, v) for f, v in mapping.items()],
    )


def _lpush(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute("INSERT INTO kv_list(key, value) VALUES (?, ?)", (key, value))


def _ltrim(conn: sqlite3.Connection, key: str, keep: int) -> None:
    conn.execute(
        """
        DELETE FROM kv_list
        WHERE key = ?
          AND id NOT IN (
              SELECT id FROM kv_list WHERE key = ? ORDER BY id DESC LIMIT ?
          )
        """,
        (key, key, keep),
    )


# ---------------------------------------------------------------------------
# Hashes
# ---------------------------------------------------------------------------

def hset(conn: sqlite3.Connection, key: str, mapping: Mapping[str, str]) -> None:
    """Set each ``field -> value`` of *mapping* on hash *key*."""
    with _WRITE_LOCK, conn:
        _hset(conn, key, mapping)


def hget(conn: sqlite3.Connection, key: str, field: str) -> Optional[str]:
    row = conn.execute(
        "SELECT value FROM kv_hash WHERE key = ? AND field = ?", (key, field)
    ).fetchone()
    return row["value"] if row else None


def hgetall(conn: sqlite3.Connection, key: str) -> dict[str, str]:
    """All fields of hash *key*; empty dict when the key does not exist."""
    rows = conn.execute(
        "SELECT field, value FROM kv_hash WHERE key = ?", (key,)
    ).fetchall()
    return {row["field"]: row["value"] for row in rows}


def exists(conn: sqlite3.Connection, key: str) -> bool:
    row = conn.execute("SELECT 1 FROM kv_hash WHERE key = ? LIMIT 1", (key,)).fetchone()
    return row is not None


def keys(conn: sqlite3.Connection, prefix: str) -> list[str]:
    """Distinct hash keys starting with *prefix*, sorted."""
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    rows = conn.execute(
        "SELECT DISTINCT key FROM kv_hash WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
        (escaped + "%",),
    ).fetchall()
    return [row["key"] for row in rows]


def delete(conn: sqlite3.Connection, key: str) -> None:
    """Remove hash *key* and list *key*."""
    with _WRITE_LOCK, conn:
        conn.execute("DELETE FROM kv_hash WHERE key = ?", (key,))
        conn.execute("DELETE FROM kv_list WHERE key = ?", (key,))


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------

def lpush(conn: sqlite3.Connection, key: str, value: str, keep: Optional[int] = None) -> None:
    """Push *value* onto the head of list *key*, optionally trimming to *keep*."""
    with _WRITE_LOCK, conn:
        _lpush(conn, key, value)
        if keep is not None:
            _ltrim(conn, key, keep)


def ltrim(conn: sqlite3.Connection, key: str, keep: int) -> None:
    """Keep only the newest *keep* entries of list *key*."""
    with _WRITE_LOCK, conn:
        _ltrim(conn, key, keep)


def lrange(conn: sqlite3.Connection, key: str, start: int = 0, stop: int = -1) -> list[str]:
    """Entries of list *key*, newest first, ``start..stop`` inclusive (``-1`` = end)."""
    rows = conn.execute(
        "SELECT value FROM kv_list WHERE key = ? ORDER BY id DESC", (key,)
    ).fetchall()
    values = [row["value"] for row in rows]
    if stop == -1:
        return values[start:]
    return values[start:stop + 1]


def llen(conn: sqlite3.Connection, key: str) -> int:
    row = conn.execute("SELECT COUNT(*) FROM kv_list WHERE key = ?", (key,)).fetchone()
    return row[0] if row else 0
