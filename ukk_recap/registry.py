from __future__ import annotations

import logging
import math
import sqlite3
from typing import List, Optional

from .errors import NotFound, ValidationError
from .models import Criterion, Event
from .store import Store, record_change, utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_SCORE = 100.0


def require_event(conn: sqlite3.Connection, event_id: int) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM events WHERE id=?", (event_id,)).fetchone()
    if not row:
        raise NotFound(f"Event {event_id} not found.")
    return row


def require_criterion(conn: sqlite3.Connection, criterion_id: int) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM criteria WHERE id=?", (criterion_id,)).fetchone()
    if not row:
        raise NotFound(f"Criterion {criterion_id} not found.")
    return row


def criteria_for(conn: sqlite3.Connection, event_id: Optional[int]) -> List[Criterion]:
    """Criteria of one event, or every criterion when event_id is None."""
    if event_id is None:
        rows = conn.execute("SELECT * FROM criteria ORDER BY id").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM criteria WHERE event_id=? ORDER BY id", (event_id,)
        ).fetchall()
    return [Criterion.from_row(r) for r in rows]


# -----------------------
# Events
# -----------------------
def create_event(store: Store, name: str) -> Event:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Event name is required.")
    created_at = utcnow()
    with store.transaction() as conn:
        cur = conn.execute("INSERT INTO events(name, created_at) VALUES(?,?)", (name, created_at))
        event_id = cur.lastrowid
    logger.info("Created event %s (%s)", event_id, name)
    return Event(id=event_id, name=name, created_at=created_at)


def get_event(store: Store, event_id: int) -> Event:
    with store.read() as conn:
        return Event.from_row(require_event(conn, event_id))


def list_events(store: Store) -> List[Event]:
    with store.read() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id").fetchall()
    return [Event.from_row(r) for r in rows]


def delete_event(store: Store, event_id: int) -> None:
    """Delete an event and its criteria.

    Students and score entries pointing at the event are kept with their
    event reference cleared. Draft entries for the deleted criteria go away;
    finalized entries stay so their stamped averages are unchanged.
    """
    with store.transaction() as conn:
        require_event(conn, event_id)
        conn.execute(
            """
            DELETE FROM scores
            WHERE is_final=0 AND criterion_id IN (SELECT id FROM criteria WHERE event_id=?)
            """,
            (event_id,),
        )
        conn.execute("DELETE FROM criteria WHERE event_id=?", (event_id,))
        conn.execute("UPDATE students SET event_id=NULL WHERE event_id=?", (event_id,))
        conn.execute("UPDATE scores SET event_id=NULL WHERE event_id=?", (event_id,))
        conn.execute("UPDATE student_results SET event_id=NULL WHERE event_id=?", (event_id,))
        conn.execute("DELETE FROM events WHERE id=?", (event_id,))
        record_change(conn, {"table": "events", "event_id": event_id, "is_final": True})
    logger.info("Deleted event %s", event_id)


# -----------------------
# Criteria
# -----------------------
def list_criteria(store: Store, event_id: Optional[int] = None) -> List[Criterion]:
    with store.read() as conn:
        if event_id is not None:
            require_event(conn, event_id)
        return criteria_for(conn, event_id)


def add_criterion(
    store: Store,
    event_id: int,
    name: str,
    weight: Optional[float] = None,
    max_score: Optional[float] = None,
) -> Criterion:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Criterion name is required.")
    weight = parse_number(weight, 0.0, "weight")
    max_score = parse_number(max_score, DEFAULT_MAX_SCORE, "max score")
    if weight < 0:
        raise ValidationError(f"Weight must not be negative, got {weight}.")
    if max_score <= 0:
        raise ValidationError(f"Max score must be positive, got {max_score}.")

    with store.transaction() as conn:
        require_event(conn, event_id)
        cur = conn.execute(
            "INSERT INTO criteria(event_id, name, weight, max_score) VALUES(?,?,?,?)",
            (event_id, name, weight, max_score),
        )
        criterion_id = cur.lastrowid
    logger.info("Added criterion %s to event %s (weight=%s)", name, event_id, weight)
    return Criterion(id=criterion_id, event_id=event_id, name=name, weight=weight, max_score=max_score)


def remove_criterion(store: Store, criterion_id: int) -> None:
    with store.transaction() as conn:
        require_criterion(conn, criterion_id)
        # finalized entries keep their snapshot; only draft work is discarded
        conn.execute("DELETE FROM scores WHERE criterion_id=? AND is_final=0", (criterion_id,))
        conn.execute("DELETE FROM criteria WHERE id=?", (criterion_id,))
    logger.info("Removed criterion %s", criterion_id)


def parse_number(value, default: float, label: str) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        number = float(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value!r}.")
    if not math.isfinite(number):
        raise ValidationError(f"Invalid {label}: {value!r}.")
    return number


# -----------------------
# Maintenance
# -----------------------
def reset_all(store: Store) -> None:
    """Wipe every event, student and score. Super-admin keys survive."""
    with store.transaction() as conn:
        conn.execute("DELETE FROM scores")
        conn.execute("DELETE FROM student_results")
        conn.execute("DELETE FROM students")
        conn.execute("DELETE FROM criteria")
        conn.execute("DELETE FROM events")
        conn.execute("DELETE FROM access_keys WHERE role != 'super_admin'")
        record_change(conn, {"table": "scores", "reset": True, "is_final": True})
    logger.warning("All competition data was reset")
