from __future__ import annotations

import sqlite3
from typing import Optional

import numpy as np

from .ledger import JudgeId, scores_for
from .models import AverageResult
from .registry import criteria_for, require_event
from .roster import require_student
from .store import Store


def average_for(
    conn: sqlite3.Connection,
    student_id: int,
    event_id: Optional[int] = None,
    judge_id: JudgeId = None,
) -> AverageResult:
    """
    Weighted average of one student's current scores:

      average = sum(score * weight) / sum(weight)

    Criteria come from event_id (every criterion when None). A criterion
    without a score counts as 0. No weight at all gives 0. The result is
    kept inside [0, 100] whatever the stored data looks like.
    """
    criteria = criteria_for(conn, event_id)
    scores = scores_for(conn, student_id, judge_id)

    weights = np.array([c.weight for c in criteria], dtype=float)
    values = np.array([scores.get(c.id, 0.0) for c in criteria], dtype=float)

    weighted_sum = float(np.dot(values, weights)) if len(criteria) else 0.0
    total_weight = float(weights.sum()) if len(criteria) else 0.0

    average = weighted_sum / total_weight if total_weight > 0 else 0.0
    average = float(np.clip(average, 0.0, 100.0))
    return AverageResult(weighted_sum=weighted_sum, total_weight=total_weight, average=average)


def compute_average(
    store: Store,
    student_id: int,
    event_id: Optional[int] = None,
    judge_id: JudgeId = None,
) -> AverageResult:
    with store.read() as conn:
        require_student(conn, student_id)
        if event_id is not None:
            require_event(conn, event_id)
        return average_for(conn, student_id, event_id, judge_id)
