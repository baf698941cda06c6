from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from .errors import Locked
from .ledger import JudgeId, is_locked, judge_key
from .models import AverageResult, StudentResult, WorkflowState
from .registry import criteria_for, require_event
from .roster import require_student
from .scoring import average_for
from .store import Store, record_change, utcnow

logger = logging.getLogger(__name__)


# -----------------------
# Draft -> Final
# -----------------------
def state_of(store: Store, student_id: int) -> WorkflowState:
    with store.read() as conn:
        require_student(conn, student_id)
        return WorkflowState.FINAL if is_locked(conn, student_id) else WorkflowState.DRAFT


def get_result(store: Store, student_id: int) -> Optional[StudentResult]:
    with store.read() as conn:
        require_student(conn, student_id)
        row = conn.execute("SELECT * FROM student_results WHERE student_id=?", (student_id,)).fetchone()
    return StudentResult.from_row(row) if row else None


def _fill_missing(
    conn: sqlite3.Connection,
    student_id: int,
    event_id: Optional[int],
    judge_id: JudgeId,
    judge_name: Optional[str],
    now: str,
) -> None:
    # unscored criteria were counted as 0; store them so the final set is complete
    for criterion in criteria_for(conn, event_id):
        conn.execute(
            """
            INSERT OR IGNORE INTO scores(student_id, criterion_id, judge_id, judge_name, score, is_final, updated_at)
            SELECT ?,?,?,?,0,0,?
            WHERE NOT EXISTS(SELECT 1 FROM scores WHERE student_id=? AND criterion_id=?)
            """,
            (student_id, criterion.id, judge_key(judge_id), judge_name, now, student_id, criterion.id),
        )


def _stamp_result(
    conn: sqlite3.Connection,
    student_id: int,
    result: AverageResult,
    event_id: Optional[int],
    finalized_by: Optional[str],
    now: str,
) -> None:
    conn.execute(
        """
        INSERT INTO student_results(student_id, average_score, weighted_sum, total_weight,
                                    event_id, finalized_by, finalized_at)
        VALUES(?,?,?,?,?,?,?)
        """,
        (student_id, result.average, result.weighted_sum, result.total_weight, event_id, finalized_by, now),
    )


def _flag_entries(conn: sqlite3.Connection, student_id: int, average: float, event_id: Optional[int]) -> None:
    conn.execute(
        "UPDATE scores SET is_final=1, average_score=?, event_id=COALESCE(?, event_id) WHERE student_id=?",
        (average, event_id, student_id),
    )


def finalize(
    store: Store,
    student_id: int,
    event_id: Optional[int] = None,
    judge_id: JudgeId = None,
    finalized_by: Optional[str] = None,
) -> StudentResult:
    """
    Lock a student's score set and stamp its weighted average.

    The Draft check, the average stamp and the is_final flags are one
    transaction: a concurrent finalize or a failed write leaves the student
    in Draft with nothing stamped. A second finalize raises Locked.
    """
    now = utcnow()
    with store.transaction() as conn:
        student = require_student(conn, student_id)
        if is_locked(conn, student_id):
            logger.warning("Finalize rejected, student %s is already final", student_id)
            raise Locked(f"Scores for student {student_id} are already final.")

        if event_id is None:
            event_id = student["event_id"]
        if event_id is not None:
            require_event(conn, event_id)

        result = average_for(conn, student_id, event_id, judge_id)
        _fill_missing(conn, student_id, event_id, judge_id, finalized_by, now)
        _stamp_result(conn, student_id, result, event_id, finalized_by, now)
        _flag_entries(conn, student_id, result.average, event_id)
        record_change(conn, {"table": "scores", "student_id": student_id, "is_final": True})

    logger.info(
        "Finalized student %s: average=%.2f (weighted_sum=%s, total_weight=%s, event=%s)",
        student_id, result.average, result.weighted_sum, result.total_weight, event_id,
    )
    return StudentResult(
        student_id=student_id,
        average_score=result.average,
        weighted_sum=result.weighted_sum,
        total_weight=result.total_weight,
        event_id=event_id,
        finalized_by=finalized_by,
        finalized_at=now,
    )
