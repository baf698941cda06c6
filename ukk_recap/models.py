from __future__ import annotations

import enum
import sqlite3
from dataclasses import asdict, dataclass
from typing import Dict, Optional


class WorkflowState(enum.Enum):
    DRAFT = "Draft"
    FINAL = "Final"


@dataclass(frozen=True)
class Event:
    id: int
    name: str
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Event":
        return cls(id=row["id"], name=row["name"], created_at=row["created_at"])


@dataclass(frozen=True)
class Criterion:
    id: int
    event_id: int
    name: str
    weight: float = 0.0
    max_score: float = 100.0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Criterion":
        return cls(
            id=row["id"],
            event_id=row["event_id"],
            name=row["name"],
            weight=float(row["weight"] or 0),
            max_score=float(row["max_score"] or 100),
        )


@dataclass(frozen=True)
class Student:
    id: int
    name: str
    class_name: str
    nis: Optional[str] = None
    event_id: Optional[int] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Student":
        return cls(
            id=row["id"],
            name=row["name"],
            class_name=row["class_name"],
            nis=row["nis"],
            event_id=row["event_id"],
        )


@dataclass(frozen=True)
class ScoreEntry:
    student_id: int
    criterion_id: int
    judge_id: str
    score: float
    is_final: bool = False
    average_score: Optional[float] = None
    event_id: Optional[int] = None
    judge_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ScoreEntry":
        return cls(
            student_id=row["student_id"],
            criterion_id=row["criterion_id"],
            judge_id=row["judge_id"],
            score=float(row["score"]),
            is_final=bool(row["is_final"]),
            average_score=row["average_score"],
            event_id=row["event_id"],
            judge_name=row["judge_name"],
        )


@dataclass(frozen=True)
class AverageResult:
    weighted_sum: float
    total_weight: float
    average: float


@dataclass(frozen=True)
class StudentResult:
    student_id: int
    average_score: float
    weighted_sum: float
    total_weight: float
    event_id: Optional[int]
    finalized_by: Optional[str]
    finalized_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StudentResult":
        return cls(
            student_id=row["student_id"],
            average_score=float(row["average_score"]),
            weighted_sum=float(row["weighted_sum"]),
            total_weight=float(row["total_weight"]),
            event_id=row["event_id"],
            finalized_by=row["finalized_by"],
            finalized_at=row["finalized_at"],
        )


@dataclass(frozen=True)
class LeaderboardRow:
    rank: int
    student_id: int
    name: str
    nis: str
    class_name: str
    event_name: str
    final_score: float


def to_dict(obj) -> Dict[str, object]:
    return asdict(obj)
