import pytest

from ukk_recap.access import (
    Area,
    Role,
    authorize,
    create_access_key,
    delete_access_key,
    home_area,
    list_access_keys,
    open_session,
    parse_role,
    resolve_role,
    seed_super_admin,
    set_key_active,
)
from ukk_recap.errors import NotFound, ValidationError


@pytest.mark.parametrize(
    "label, role",
    [
        ("Juri", Role.JUDGE),
        ("juri tamu", Role.JUDGE),
        ("Judge", Role.JUDGE),
        ("Panel Industri", Role.JUDGE),
        ("Koordinator Akademik", Role.COORDINATOR),
        ("KOORDINATOR", Role.COORDINATOR),
        ("Admin", Role.ADMIN),
        ("Admin Sekolah", Role.ADMIN),
        ("Admin Panel", Role.ADMIN),
        ("Admin Juri", Role.ADMIN),
        ("Super Admin", Role.SUPER_ADMIN),
        ("superadmin", Role.SUPER_ADMIN),
        ("  super   admin ", Role.SUPER_ADMIN),
        ("Guru", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_role(label, role):
    assert parse_role(label) is role


def test_admins_reach_every_area():
    for area in Area:
        assert authorize(Role.ADMIN, area)
        assert authorize(Role.SUPER_ADMIN, area)


def test_admin_label_with_judge_word_is_master_key():
    role = parse_role("Admin Panel")
    assert authorize(role, Area.ROSTER)
    assert authorize(role, Area.CONFIGURATION)


def test_restricted_roles():
    assert authorize(Role.JUDGE, Area.JUDGING)
    assert not authorize(Role.JUDGE, Area.RECAP)
    assert not authorize(Role.JUDGE, Area.ROSTER)
    assert authorize(Role.COORDINATOR, Area.RECAP)
    assert not authorize(Role.COORDINATOR, Area.JUDGING)
    assert not authorize(Role.COORDINATOR, Area.CONFIGURATION)
    for area in Area:
        assert not authorize(None, area)


def test_home_area():
    assert home_area(Role.JUDGE) is Area.JUDGING
    assert home_area(Role.COORDINATOR) is Area.RECAP
    assert home_area(Role.ADMIN) is Area.ROSTER
    assert home_area(Role.SUPER_ADMIN) is Area.CONFIGURATION
    assert home_area(None) is None


def test_resolve_role_and_session(store):
    key = create_access_key(store, "Pak Joko", "JURI-001", "Juri")
    assert key.role is Role.JUDGE
    assert resolve_role(store, "JURI-001") is Role.JUDGE
    assert resolve_role(store, "  JURI-001 ") is Role.JUDGE

    session = open_session(store, "JURI-001")
    assert session.key_id == key.id
    assert session.name == "Pak Joko"
    assert session.can(Area.JUDGING)
    assert not session.can(Area.RECAP)


def test_unknown_or_inactive_key(store):
    key = create_access_key(store, "Bu Sari", "KOOR-01", "Koordinator Akademik")
    with pytest.raises(NotFound):
        resolve_role(store, "nope")
    with pytest.raises(NotFound):
        resolve_role(store, "")

    set_key_active(store, key.id, False)
    with pytest.raises(NotFound):
        resolve_role(store, "KOOR-01")
    set_key_active(store, key.id, True)
    assert resolve_role(store, "KOOR-01") is Role.COORDINATOR


def test_key_validation(store):
    with pytest.raises(ValidationError):
        create_access_key(store, "Tamu", "TAMU-1", "Guru")
    create_access_key(store, "Admin", "ADM-1", "Admin")
    with pytest.raises(ValidationError):
        create_access_key(store, "Admin 2", "ADM-1", "Admin")


def test_delete_key(store):
    key = create_access_key(store, "Admin", "ADM-1", "Admin")
    delete_access_key(store, key.id)
    assert list_access_keys(store) == []
    with pytest.raises(NotFound):
        delete_access_key(store, key.id)


def test_seed_super_admin_is_idempotent(store):
    first = seed_super_admin(store, "MASTER")
    second = seed_super_admin(store, "MASTER")
    assert first.id == second.id
    assert first.role is Role.SUPER_ADMIN
    assert len(list_access_keys(store)) == 1
