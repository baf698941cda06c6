from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .errors import StoreError

logger = logging.getLogger(__name__)

Change = Dict[str, object]
Listener = Callable[[Change], None]
Predicate = Callable[[Change], bool]


SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS criteria (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    weight REAL NOT NULL DEFAULT 0,
    max_score REAL NOT NULL DEFAULT 100
);

CREATE TABLE IF NOT EXISTS students (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    class_name TEXT NOT NULL,
    nis TEXT,
    event_id INTEGER,
    created_at TEXT NOT NULL
);

-- judge_id is '' when a single judge scores, the unique key covers both variants
CREATE TABLE IF NOT EXISTS scores (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL,
    criterion_id INTEGER NOT NULL,
    judge_id TEXT NOT NULL DEFAULT '',
    judge_name TEXT,
    score REAL NOT NULL,
    is_final INTEGER NOT NULL DEFAULT 0,
    average_score REAL,
    event_id INTEGER,
    updated_at TEXT NOT NULL,
    UNIQUE(student_id, criterion_id, judge_id)
);

CREATE TABLE IF NOT EXISTS student_results (
    student_id INTEGER PRIMARY KEY,
    average_score REAL NOT NULL,
    weighted_sum REAL NOT NULL,
    total_weight REAL NOT NULL,
    event_id INTEGER,
    finalized_by TEXT,
    finalized_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS access_keys (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    key TEXT NOT NULL UNIQUE,
    role_label TEXT NOT NULL,
    role TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1
);
"""


class _Connection(sqlite3.Connection):
    pending_changes: Optional[List[Change]] = None


def schema_statements(script: str) -> List[str]:
    """Split a DDL script into complete statements, ignoring separators inside comments."""
    statements: List[str] = []
    buffer = ""
    for line in script.splitlines(keepends=True):
        if not buffer.strip() and line.strip().startswith("--"):
            continue
        buffer += line
        if sqlite3.complete_statement(buffer):
            statements.append(buffer.strip())
            buffer = ""
    if buffer.strip():
        raise ValueError(f"Incomplete SQL statement: {buffer.strip()[:60]}")
    return statements


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class Store:
    """SQLite-backed relational store with a best-effort change feed.

    Each call opens its own connection. ``transaction()`` takes the database
    write lock up front (``BEGIN IMMEDIATE``) so that check-then-write
    sequences run as a unit. Listeners registered with ``subscribe()`` are
    called after a successful commit, in the committing thread.
    """

    def __init__(self, path: str):
        self.path = path
        self._listeners: Dict[int, Tuple[Listener, Optional[Predicate]]] = {}
        self._next_token = 0
        self._listeners_lock = threading.Lock()

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=10, isolation_level=None, factory=_Connection)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        with self.transaction() as conn:
            # executescript would commit our open transaction, run statements one by one
            for statement in schema_statements(SCHEMA):
                conn.execute(statement)

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self.connect()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open database: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            logger.error("Read failed on %s: %s", self.path, exc)
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        pending: List[Change] = []
        try:
            conn = self.connect()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open database: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            conn.close()
            raise StoreError(f"Could not start transaction: {exc}") from exc

        conn.pending_changes = pending
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("Transaction rolled back on %s: %s", self.path, exc)
            raise StoreError(str(exc)) from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

        for change in pending:
            self.notify(change)

    # -----------------------
    # Change feed
    # -----------------------
    def subscribe(self, listener: Listener, predicate: Optional[Predicate] = None) -> int:
        with self._listeners_lock:
            self._next_token += 1
            self._listeners[self._next_token] = (listener, predicate)
            return self._next_token

    def unsubscribe(self, token: int) -> None:
        with self._listeners_lock:
            self._listeners.pop(token, None)

    def notify(self, change: Change) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners.values())
        for listener, predicate in listeners:
            if predicate is not None and not predicate(change):
                continue
            try:
                listener(change)
            except Exception:
                # delivery is best-effort; the poll fallback covers a missed notification
                logger.exception("Change listener failed for %s", change)


def record_change(conn: sqlite3.Connection, change: Change) -> None:
    """Queue a change notification, delivered only if the transaction commits."""
    pending = getattr(conn, "pending_changes", None)
    if pending is not None:
        pending.append(change)
