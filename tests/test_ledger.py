import pytest

from ukk_recap.errors import NotFound, ValidationError
from ukk_recap.ledger import clamp_score, get_entries, get_scores, score_sheet, upsert_score, upsert_scores
from ukk_recap.registry import add_criterion, create_event


@pytest.mark.parametrize("raw, stored", [(120, 100), (150, 100), (-10, 0), ("85", 85), (" 72.5 ", 72.5)])
def test_upsert_clamps_into_range(store, criteria, student, raw, stored):
    entry = upsert_score(store, student.id, criteria[0].id, raw)
    assert entry.score == stored
    assert get_scores(store, student.id)[criteria[0].id] == stored


def test_clamp_uses_criterion_max(store, event, student):
    small = add_criterion(store, event.id, "Kerapian", weight=10, max_score=20)
    assert upsert_score(store, student.id, small.id, 35).score == 20


@pytest.mark.parametrize("raw", ["", "abc", None, "nan", "inf", True])
def test_malformed_score_rejected(raw):
    with pytest.raises(ValidationError):
        clamp_score(raw)


def test_upsert_overwrites_same_key(store, criteria, student):
    upsert_score(store, student.id, criteria[0].id, 60)
    upsert_score(store, student.id, criteria[0].id, 75)
    entries = get_entries(store, student.id)
    assert len(entries) == 1
    assert entries[0].score == 75


def test_judges_keep_separate_entries(store, criteria, student):
    upsert_score(store, student.id, criteria[0].id, 60, judge_id=1, judge_name="Juri A")
    upsert_score(store, student.id, criteria[0].id, 80, judge_id=2, judge_name="Juri B")

    assert get_scores(store, student.id, judge_id=1) == {criteria[0].id: 60}
    assert get_scores(store, student.id, judge_id=2) == {criteria[0].id: 80}
    assert get_scores(store, student.id) == {criteria[0].id: 70}

    sheet = score_sheet(store, student.id)
    assert sheet[0]["criterion"] == "Persiapan"
    assert sheet[0]["judges"] == {"Juri A": 60, "Juri B": 80}


def test_unknown_student_or_criterion(store, criteria, student):
    with pytest.raises(NotFound):
        upsert_score(store, 404, criteria[0].id, 50)
    with pytest.raises(NotFound):
        upsert_score(store, student.id, 404, 50)


def test_sheet_write_is_all_or_nothing(store, criteria, student):
    with pytest.raises(ValidationError):
        upsert_scores(store, student.id, {criteria[0].id: 90, criteria[1].id: "x"})
    assert get_scores(store, student.id) == {}

    upsert_scores(store, student.id, {criteria[0].id: 90, criteria[1].id: 101})
    assert get_scores(store, student.id) == {criteria[0].id: 90, criteria[1].id: 100}


def test_criterion_of_another_event_is_rejected(store, criteria, student):
    other = create_event(store, "Akuntansi")
    foreign = add_criterion(store, other.id, "Jurnal", weight=50)
    with pytest.raises(ValidationError):
        upsert_score(store, student.id, foreign.id, 70)
    with pytest.raises(ValidationError):
        upsert_scores(store, student.id, {criteria[0].id: 80, foreign.id: 70})
    assert get_entries(store, student.id) == []
