from __future__ import annotations

import logging
import threading
import time
from typing import Dict, List, Optional

import pandas as pd

from .errors import UKKError
from .models import LeaderboardRow
from .registry import require_event
from .store import Change, Store

logger = logging.getLogger(__name__)

COLUMNS = ["student_id", "name", "nis", "class_name", "event_name", "final_score"]


def load_final_entries(store: Store, event_id: Optional[int] = None) -> pd.DataFrame:
    """Finalized score entries, then result stamps, joined with student and event metadata.

    The stamp rows cover students finalized with no score entries (an event
    with no criteria); dedup keeps the entry rows first.
    """
    query = """
        SELECT f.student_id,
               COALESCE(st.name, 'Unknown') AS name,
               COALESCE(st.nis, '-') AS nis,
               COALESCE(st.class_name, '-') AS class_name,
               COALESCE(e.name, '-') AS event_name,
               COALESCE(f.average_score, 0) AS final_score
        FROM (
            SELECT s.student_id, s.event_id, s.average_score, 0 AS src, s.id AS seq
            FROM scores s WHERE s.is_final=1
            UNION ALL
            SELECT r.student_id, r.event_id, r.average_score, 1 AS src, r.student_id AS seq
            FROM student_results r
        ) f
        LEFT JOIN students st ON st.id = f.student_id
        LEFT JOIN events e ON e.id = f.event_id
    """
    params: tuple = ()
    if event_id is not None:
        query += " WHERE f.event_id=?"
        params = (event_id,)
    # entry id order makes "first row per student" deterministic
    query += " ORDER BY f.src, f.seq"

    with store.read() as conn:
        if event_id is not None:
            require_event(conn, event_id)
        rows = conn.execute(query, params).fetchall()

    return pd.DataFrame([tuple(r) for r in rows], columns=COLUMNS)


def leaderboard_frame(entries: pd.DataFrame) -> pd.DataFrame:
    """
    entries: finalized entries, possibly several per student.

    Returns one row per student (first entry wins), ranked by final_score
    descending. Ties: student name, then student id.
    """
    results = entries.drop_duplicates(subset="student_id", keep="first")
    results = results.astype({"final_score": float})
    results = results.sort_values(
        by=["final_score", "name", "student_id"],
        ascending=[False, True, True],
        kind="mergesort",
    ).reset_index(drop=True)

    results.insert(0, "rank", range(1, len(results) + 1))
    return results


def build_leaderboard(store: Store, event_id: Optional[int] = None) -> List[LeaderboardRow]:
    frame = leaderboard_frame(load_final_entries(store, event_id))
    return [
        LeaderboardRow(
            rank=int(r["rank"]),
            student_id=int(r["student_id"]),
            name=str(r["name"]),
            nis=str(r["nis"]),
            class_name=str(r["class_name"]),
            event_name=str(r["event_name"]),
            final_score=float(r["final_score"]),
        )
        for r in frame.to_dict(orient="records")
    ]


def recap_summary(store: Store, event_id: Optional[int] = None) -> Dict[str, float]:
    frame = leaderboard_frame(load_final_entries(store, event_id))
    if frame.empty:
        return {"count": 0, "mean": 0.0, "max": 0.0, "min": 0.0}
    scores = frame["final_score"]
    return {
        "count": int(scores.count()),
        "mean": round(float(scores.mean()), 2),
        "max": float(scores.max()),
        "min": float(scores.min()),
    }


class LeaderboardFeed:
    """
    Latest leaderboard snapshot, kept fresh by two independent triggers:
    change notifications for finalized entries and a fixed-interval poll.

    Every refresh rebuilds from the store and replaces the snapshot, so
    duplicate or out-of-order triggers are harmless.
    """

    def __init__(self, store: Store, interval: float = 5.0, event_id: Optional[int] = None):
        self.store = store
        self.interval = interval
        self.event_id = event_id
        self.refreshed_at: Optional[float] = None
        self.refresh_count = 0
        self._rows: List[LeaderboardRow] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._token: Optional[int] = None

    @property
    def rows(self) -> List[LeaderboardRow]:
        with self._lock:
            return list(self._rows)

    def refresh(self) -> List[LeaderboardRow]:
        rows = build_leaderboard(self.store, self.event_id)
        with self._lock:
            self._rows = rows
            self.refreshed_at = time.time()
            self.refresh_count += 1
        return list(rows)

    def _on_change(self, change: Change) -> None:
        logger.debug("Leaderboard refresh on change %s", change)
        self.refresh()

    def _poll(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.refresh()
            except UKKError as exc:
                logger.error("Leaderboard poll failed: %s", exc)
            except Exception:
                logger.exception("Leaderboard poll failed")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._token = self.store.subscribe(self._on_change, lambda change: bool(change.get("is_final")))
        self.refresh()
        self._thread = threading.Thread(target=self._poll, name="leaderboard-poll", daemon=True)
        self._thread.start()
        logger.info("Leaderboard feed started (poll every %ss)", self.interval)

    def stop(self) -> None:
        self._stop.set()
        if self._token is not None:
            self.store.unsubscribe(self._token)
            self._token = None
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None
        logger.info("Leaderboard feed stopped")
