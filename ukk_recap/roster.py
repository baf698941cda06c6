from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from .errors import NotFound, ValidationError
from .models import Student
from .registry import require_event
from .store import Store, record_change, utcnow

logger = logging.getLogger(__name__)


def require_student(conn: sqlite3.Connection, student_id: int) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM students WHERE id=?", (student_id,)).fetchone()
    if not row:
        raise NotFound(f"Student {student_id} not found.")
    return row


def add_student(
    store: Store,
    name: str,
    class_name: str,
    nis: Optional[str] = None,
    event_id: Optional[int] = None,
) -> Student:
    name = (name or "").strip()
    class_name = (class_name or "").strip()
    nis = (nis or "").strip() or None
    if not name:
        raise ValidationError("Student name is required.")
    if not class_name:
        raise ValidationError("Student class is required.")

    with store.transaction() as conn:
        if event_id is not None:
            require_event(conn, event_id)
        cur = conn.execute(
            "INSERT INTO students(name, class_name, nis, event_id, created_at) VALUES(?,?,?,?,?)",
            (name, class_name, nis, event_id, utcnow()),
        )
        student_id = cur.lastrowid
    logger.info("Added student %s (%s, %s)", student_id, name, class_name)
    return Student(id=student_id, name=name, class_name=class_name, nis=nis, event_id=event_id)


def get_student(store: Store, student_id: int) -> Student:
    with store.read() as conn:
        return Student.from_row(require_student(conn, student_id))


def list_students(store: Store, event_id: Optional[int] = None) -> List[Student]:
    with store.read() as conn:
        if event_id is None:
            rows = conn.execute("SELECT * FROM students ORDER BY name, id").fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM students WHERE event_id=? ORDER BY name, id", (event_id,)
            ).fetchall()
    return [Student.from_row(r) for r in rows]


def delete_student(store: Store, student_id: int) -> None:
    with store.transaction() as conn:
        require_student(conn, student_id)
        was_final = conn.execute(
            "SELECT 1 FROM scores WHERE student_id=? AND is_final=1 LIMIT 1", (student_id,)
        ).fetchone()
        conn.execute("DELETE FROM scores WHERE student_id=?", (student_id,))
        conn.execute("DELETE FROM student_results WHERE student_id=?", (student_id,))
        conn.execute("DELETE FROM students WHERE id=?", (student_id,))
        if was_final:
            record_change(conn, {"table": "scores", "student_id": student_id, "is_final": True})
    logger.info("Deleted student %s", student_id)
