from __future__ import annotations

import logging
import math
import sqlite3
from typing import Dict, List, Mapping, Optional, Union

import numpy as np

from .errors import Locked, ValidationError
from .models import ScoreEntry
from .registry import require_criterion
from .roster import require_student
from .store import Store, utcnow

logger = logging.getLogger(__name__)

RawScore = Union[int, float, str, None]
JudgeId = Union[int, str, None]


def judge_key(judge_id: JudgeId) -> str:
    return "" if judge_id is None else str(judge_id)


def coerce_score(raw_value: RawScore) -> float:
    if raw_value is None or isinstance(raw_value, bool):
        raise ValidationError(f"Invalid score: {raw_value!r}.")
    try:
        value = float(str(raw_value).strip())
    except ValueError:
        raise ValidationError(f"Invalid score: {raw_value!r}.")
    if not math.isfinite(value):
        raise ValidationError(f"Invalid score: {raw_value!r}.")
    return value


def clamp_score(raw_value: RawScore, max_score: float = 100.0) -> float:
    """Clamp a raw input into [0, max_score]. Out-of-range input is not an error."""
    return float(np.clip(coerce_score(raw_value), 0.0, max_score))


def is_locked(conn: sqlite3.Connection, student_id: int) -> bool:
    row = conn.execute(
        """
        SELECT EXISTS(SELECT 1 FROM scores WHERE student_id=? AND is_final=1)
            OR EXISTS(SELECT 1 FROM student_results WHERE student_id=?) AS locked
        """,
        (student_id, student_id),
    ).fetchone()
    return bool(row["locked"])


def scores_for(conn: sqlite3.Connection, student_id: int, judge_id: JudgeId = None) -> Dict[int, float]:
    """criterion_id -> score. Without a judge, judges' scores are averaged per criterion."""
    if judge_id is None:
        rows = conn.execute(
            "SELECT criterion_id, AVG(score) AS score FROM scores WHERE student_id=? GROUP BY criterion_id",
            (student_id,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT criterion_id, score FROM scores WHERE student_id=? AND judge_id=?",
            (student_id, judge_key(judge_id)),
        ).fetchall()
    return {r["criterion_id"]: float(r["score"]) for r in rows}


def _write(
    conn: sqlite3.Connection,
    student: sqlite3.Row,
    criterion_id: int,
    raw_value: RawScore,
    judge_id: JudgeId,
    judge_name: Optional[str],
) -> ScoreEntry:
    student_id = student["id"]
    criterion = require_criterion(conn, criterion_id)
    if student["event_id"] is not None and criterion["event_id"] != student["event_id"]:
        raise ValidationError(
            f"Criterion {criterion_id} belongs to another event than student {student_id}."
        )
    score = clamp_score(raw_value, float(criterion["max_score"] or 100))
    conn.execute(
        """
        INSERT INTO scores(student_id, criterion_id, judge_id, judge_name, score, is_final, updated_at)
        VALUES(?,?,?,?,?,0,?)
        ON CONFLICT(student_id, criterion_id, judge_id)
        DO UPDATE SET score=excluded.score, judge_name=excluded.judge_name, updated_at=excluded.updated_at
        """,
        (student_id, criterion_id, judge_key(judge_id), judge_name, score, utcnow()),
    )
    return ScoreEntry(
        student_id=student_id,
        criterion_id=criterion_id,
        judge_id=judge_key(judge_id),
        score=score,
        judge_name=judge_name,
    )


def _ensure_writable(conn: sqlite3.Connection, student_id: int) -> sqlite3.Row:
    student = require_student(conn, student_id)
    if is_locked(conn, student_id):
        logger.warning("Rejected score write for finalized student %s", student_id)
        raise Locked(f"Scores for student {student_id} are final and cannot be changed.")
    return student


def upsert_score(
    store: Store,
    student_id: int,
    criterion_id: int,
    raw_value: RawScore,
    judge_id: JudgeId = None,
    judge_name: Optional[str] = None,
) -> ScoreEntry:
    with store.transaction() as conn:
        student = _ensure_writable(conn, student_id)
        return _write(conn, student, criterion_id, raw_value, judge_id, judge_name)


def upsert_scores(
    store: Store,
    student_id: int,
    values: Mapping[int, RawScore],
    judge_id: JudgeId = None,
    judge_name: Optional[str] = None,
) -> List[ScoreEntry]:
    """Save a whole score sheet. Either every value is written or none is."""
    with store.transaction() as conn:
        student = _ensure_writable(conn, student_id)
        entries = [
            _write(conn, student, int(criterion_id), raw, judge_id, judge_name)
            for criterion_id, raw in values.items()
        ]
    logger.info("Saved %d draft scores for student %s", len(entries), student_id)
    return entries


def get_scores(store: Store, student_id: int, judge_id: JudgeId = None) -> Dict[int, float]:
    with store.read() as conn:
        require_student(conn, student_id)
        return scores_for(conn, student_id, judge_id)


def get_entries(store: Store, student_id: int) -> List[ScoreEntry]:
    with store.read() as conn:
        require_student(conn, student_id)
        rows = conn.execute(
            "SELECT * FROM scores WHERE student_id=? ORDER BY criterion_id, judge_id", (student_id,)
        ).fetchall()
    return [ScoreEntry.from_row(r) for r in rows]


def score_sheet(store: Store, student_id: int) -> List[Dict[str, object]]:
    """Per-criterion breakdown of every judge's score for one student."""
    with store.read() as conn:
        require_student(conn, student_id)
        rows = conn.execute(
            """
            SELECT s.criterion_id, c.name AS criterion, c.weight, c.max_score,
                   s.judge_id, s.judge_name, s.score
            FROM scores s
            LEFT JOIN criteria c ON c.id = s.criterion_id
            WHERE s.student_id=?
            ORDER BY s.criterion_id, s.judge_id
            """,
            (student_id,),
        ).fetchall()

    sheet: Dict[int, Dict[str, object]] = {}
    for r in rows:
        item = sheet.setdefault(
            r["criterion_id"],
            {
                "criterion_id": r["criterion_id"],
                "criterion": r["criterion"] or "(removed)",
                "weight": float(r["weight"] or 0),
                "max_score": float(r["max_score"] or 100),
                "judges": {},
            },
        )
        item["judges"][r["judge_name"] or r["judge_id"] or "-"] = float(r["score"])
    return list(sheet.values())
