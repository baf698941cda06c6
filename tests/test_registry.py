import pytest

from ukk_recap.access import create_access_key, list_access_keys, seed_super_admin
from ukk_recap.errors import NotFound, ValidationError
from ukk_recap.ledger import get_entries, upsert_score
from ukk_recap.registry import (
    add_criterion,
    delete_event,
    list_criteria,
    list_events,
    remove_criterion,
    reset_all,
)
from ukk_recap.roster import add_student, delete_student, get_student, list_students
from ukk_recap.workflow import finalize


def test_criteria_defaults_and_order(store, event):
    first = add_criterion(store, event.id, "Persiapan")
    second = add_criterion(store, event.id, "Hasil", weight="25")
    assert first.weight == 0
    assert first.max_score == 100
    assert [c.id for c in list_criteria(store, event.id)] == [first.id, second.id]
    assert second.weight == 25


@pytest.mark.parametrize("kwargs", [{"name": ""}, {"name": "X", "weight": -1}, {"name": "X", "max_score": 0}])
def test_criterion_validation(store, event, kwargs):
    with pytest.raises(ValidationError):
        add_criterion(store, event.id, **kwargs)


def test_unknown_ids(store):
    with pytest.raises(NotFound):
        list_criteria(store, 42)
    with pytest.raises(NotFound):
        add_criterion(store, 42, "Persiapan")
    with pytest.raises(NotFound):
        remove_criterion(store, 42)
    with pytest.raises(NotFound):
        delete_event(store, 42)


def test_delete_event_orphans_students(store, event, criteria, student):
    upsert_score(store, student.id, criteria[0].id, 70)
    delete_event(store, event.id)

    assert list_events(store) == []
    assert list_criteria(store) == []
    assert get_student(store, student.id).event_id is None
    assert get_entries(store, student.id) == []


def test_student_validation(store):
    with pytest.raises(ValidationError):
        add_student(store, "", "XII TKJ")
    with pytest.raises(ValidationError):
        add_student(store, "Budi", " ")
    with pytest.raises(NotFound):
        add_student(store, "Budi", "XII TKJ", event_id=7)


def test_students_listed_by_name(store, event):
    add_student(store, "Yusuf", "XII A", event_id=event.id)
    add_student(store, "Agus", "XII B")
    assert [s.name for s in list_students(store)] == ["Agus", "Yusuf"]
    assert [s.name for s in list_students(store, event.id)] == ["Yusuf"]


def test_finalized_student_can_still_be_deleted(store, criteria, student):
    upsert_score(store, student.id, criteria[0].id, 90)
    finalize(store, student.id)
    delete_student(store, student.id)
    with pytest.raises(NotFound):
        get_student(store, student.id)


def test_reset_all_keeps_super_admin(store, event, criteria, student):
    seed_super_admin(store, "MASTER")
    create_access_key(store, "Juri", "J-1", "Juri")
    upsert_score(store, student.id, criteria[0].id, 90)

    reset_all(store)

    assert list_events(store) == []
    assert list_students(store) == []
    assert [k.key for k in list_access_keys(store)] == ["MASTER"]
