import pytest
from fastapi.testclient import TestClient

from ukk_recap.config import Settings
from ukk_recap.main import create_app
from ukk_recap.registry import add_criterion, create_event
from ukk_recap.roster import add_student
from ukk_recap.store import Store

SUPER_KEY = "LantechSuperAdmin2026"


@pytest.fixture
def store(tmp_path):
    s = Store(str(tmp_path / "ukk.sqlite"))
    s.init_db()
    return s


@pytest.fixture
def event(store):
    return create_event(store, "Teknik Komputer dan Jaringan")


@pytest.fixture
def criteria(store, event):
    return [
        add_criterion(store, event.id, "Persiapan", weight=40),
        add_criterion(store, event.id, "Pelaksanaan", weight=60),
    ]


@pytest.fixture
def student(store, event):
    return add_student(store, "Budi Santoso", "XII TKJ 1", nis="2324001", event_id=event.id)


@pytest.fixture
def client(tmp_path):
    settings = Settings(db_path=str(tmp_path / "api.sqlite"), poll_interval=60, super_admin_key=SUPER_KEY)
    with TestClient(create_app(settings)) as c:
        yield c
