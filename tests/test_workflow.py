import sqlite3

import pytest

from ukk_recap import workflow
from ukk_recap.errors import Locked, StoreError
from ukk_recap.ledger import get_entries, get_scores, upsert_score, upsert_scores
from ukk_recap.models import WorkflowState
from ukk_recap.registry import create_event, remove_criterion
from ukk_recap.roster import add_student
from ukk_recap.workflow import finalize, get_result, state_of


def test_new_student_is_draft(store, student):
    assert state_of(store, student.id) is WorkflowState.DRAFT
    assert get_result(store, student.id) is None


def test_finalize_stamps_average_and_flags_entries(store, event, criteria, student):
    upsert_score(store, student.id, criteria[0].id, 80)
    upsert_score(store, student.id, criteria[1].id, 90)

    result = finalize(store, student.id, finalized_by="Juri A")

    assert result.average_score == pytest.approx(86.0)
    assert result.event_id == event.id
    assert state_of(store, student.id) is WorkflowState.FINAL
    assert get_result(store, student.id).average_score == pytest.approx(86.0)
    for entry in get_entries(store, student.id):
        assert entry.is_final
        assert entry.average_score == pytest.approx(86.0)
        assert entry.event_id == event.id


def test_final_rejects_further_writes(store, criteria, student):
    upsert_score(store, student.id, criteria[0].id, 80)
    finalize(store, student.id)
    before = get_scores(store, student.id)

    with pytest.raises(Locked):
        upsert_score(store, student.id, criteria[0].id, 10)
    with pytest.raises(Locked):
        upsert_scores(store, student.id, {criteria[1].id: 10})

    assert get_scores(store, student.id) == before


def test_second_finalize_is_rejected(store, criteria, student):
    upsert_score(store, student.id, criteria[0].id, 80)
    first = finalize(store, student.id)
    with pytest.raises(Locked):
        finalize(store, student.id)
    assert get_result(store, student.id).average_score == first.average_score


def test_unscored_criteria_are_stored_as_zero(store, criteria, student):
    upsert_score(store, student.id, criteria[1].id, 50)
    finalize(store, student.id)
    assert get_scores(store, student.id) == {criteria[0].id: 0, criteria[1].id: 50}


def test_explicit_event_overrides_assignment(store, criteria):
    other = create_event(store, "Desain Grafis")
    s = add_student(store, "Rina", "XII DKV")
    result = finalize(store, s.id, event_id=other.id)
    assert result.event_id == other.id
    assert result.average_score == 0


def test_failed_finalize_leaves_draft(store, criteria, student, monkeypatch):
    upsert_score(store, student.id, criteria[0].id, 80)

    def broken(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(workflow, "_flag_entries", broken)
    with pytest.raises(StoreError):
        finalize(store, student.id)

    assert state_of(store, student.id) is WorkflowState.DRAFT
    assert get_result(store, student.id) is None
    assert not any(e.is_final for e in get_entries(store, student.id))


def test_removing_criterion_keeps_final_snapshot(store, criteria, student):
    upsert_score(store, student.id, criteria[0].id, 80)
    upsert_score(store, student.id, criteria[1].id, 90)
    finalize(store, student.id)

    remove_criterion(store, criteria[0].id)
    assert get_result(store, student.id).average_score == pytest.approx(86.0)
    assert len(get_entries(store, student.id)) == 2
