from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import APIRouter, Cookie, Depends, FastAPI, Form, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from .access import (
    AccessKey,
    Area,
    Session,
    create_access_key,
    delete_access_key,
    home_area,
    list_access_keys,
    open_session,
    seed_super_admin,
    set_key_active,
)
from .config import Settings, configure_logging, load_settings
from .errors import UKKError, ValidationError
from .ledger import get_scores, score_sheet, upsert_scores
from .models import to_dict
from .ranking import LeaderboardFeed, build_leaderboard, recap_summary
from .registry import (
    add_criterion,
    create_event,
    delete_event,
    list_criteria,
    list_events,
    remove_criterion,
    reset_all,
)
from .roster import add_student, delete_student, get_student, list_students
from .scoring import compute_average
from .store import Store
from .workflow import finalize, get_result, state_of

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_key"
SESSION_MAX_AGE = 60 * 60 * 24 * 7
SCORE_FIELD_PREFIX = "c__"

AREA_PATHS: Dict[Area, str] = {
    Area.JUDGING: "/jury/students",
    Area.ROSTER: "/admin/students",
    Area.RECAP: "/recap",
    Area.CONFIGURATION: "/super/events",
}

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

router = APIRouter()


# -----------------------
# Session helpers
# -----------------------
def get_store(request: Request) -> Store:
    return request.app.state.store


def get_feed(request: Request) -> LeaderboardFeed:
    return request.app.state.feed


def current_session(
    request: Request,
    session_key: Optional[str] = Cookie(None),
    x_access_key: Optional[str] = Header(None),
) -> Session:
    key = x_access_key or session_key
    if not key:
        raise HTTPException(401, "Login required.")
    try:
        return open_session(get_store(request), key)
    except UKKError:
        raise HTTPException(401, "Invalid or inactive access key.")


def require(area: Area):
    def dependency(session: Session = Depends(current_session)) -> Session:
        if not session.can(area):
            raise HTTPException(403, f"Role '{session.role.value}' has no access to {area.value}.")
        return session

    return dependency


def key_json(key: AccessKey) -> Dict[str, object]:
    return {
        "id": key.id,
        "name": key.name,
        "key": key.key,
        "role_label": key.role_label,
        "role": key.role.value,
        "is_active": key.is_active,
    }


# -----------------------
# Routes: Home / Login
# -----------------------
@router.get("/")
def home():
    return {
        "app": "UKK Recap",
        "login": "/login",
        "areas": {area.value: path for area, path in AREA_PATHS.items()},
    }


@router.post("/login")
def login(request: Request, access_key: str = Form(...)):
    try:
        session = open_session(get_store(request), access_key)
    except UKKError as exc:
        raise HTTPException(401, str(exc))
    area = home_area(session.role)
    response = JSONResponse(
        {
            "role": session.role.value,
            "name": session.name,
            "home": AREA_PATHS[area] if area else "/",
        }
    )
    response.set_cookie(SESSION_COOKIE, access_key.strip(), httponly=True, max_age=SESSION_MAX_AGE, path="/")
    logger.info("Login: %s as %s", session.name, session.role.value)
    return response


@router.post("/logout")
def logout():
    response = JSONResponse({"home": "/"})
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response


# -----------------------
# Routes: Judge
# -----------------------
@router.get("/jury/students")
def jury_students(request: Request, event_id: Optional[int] = None, session: Session = Depends(require(Area.JUDGING))):
    store = get_store(request)
    return [
        {**to_dict(s), "state": state_of(store, s.id).value}
        for s in list_students(store, event_id)
    ]


@router.get("/jury/students/{student_id}")
def jury_student(
    request: Request,
    student_id: int,
    event_id: Optional[int] = None,
    session: Session = Depends(require(Area.JUDGING)),
):
    store = get_store(request)
    student = get_student(store, student_id)
    scoped_event = event_id if event_id is not None else student.event_id
    result = get_result(store, student_id)
    return {
        "student": to_dict(student),
        "state": state_of(store, student_id).value,
        "criteria": [to_dict(c) for c in list_criteria(store, scoped_event)],
        "my_scores": get_scores(store, student_id, session.key_id),
        "sheet": score_sheet(store, student_id),
        "average": to_dict(compute_average(store, student_id, scoped_event)),
        "result": to_dict(result) if result else None,
    }


@router.post("/jury/students/{student_id}/scores")
async def jury_save_scores(request: Request, student_id: int, session: Session = Depends(require(Area.JUDGING))):
    store = get_store(request)
    form = await request.form()

    values = {}
    for field, raw in form.items():
        if not field.startswith(SCORE_FIELD_PREFIX):
            continue
        try:
            criterion_id = int(field[len(SCORE_FIELD_PREFIX):])
        except ValueError:
            raise ValidationError(f"Invalid score field '{field}'.")
        values[criterion_id] = raw
    if not values:
        raise ValidationError("No scores submitted.")

    entries = upsert_scores(store, student_id, values, judge_id=session.key_id, judge_name=session.name)
    student = get_student(store, student_id)
    return {
        "saved": [to_dict(e) for e in entries],
        "average": to_dict(compute_average(store, student_id, student.event_id)),
    }


@router.post("/jury/students/{student_id}/finalize")
def jury_finalize(
    request: Request,
    student_id: int,
    event_id: Optional[int] = Form(None),
    session: Session = Depends(require(Area.JUDGING)),
):
    result = finalize(get_store(request), student_id, event_id=event_id, finalized_by=session.name)
    return to_dict(result)


# -----------------------
# Routes: Admin roster
# -----------------------
@router.get("/admin/students")
def admin_students(request: Request, event_id: Optional[int] = None, session: Session = Depends(require(Area.ROSTER))):
    return [to_dict(s) for s in list_students(get_store(request), event_id)]


@router.post("/admin/students", status_code=201)
def admin_add_student(
    request: Request,
    name: str = Form(...),
    class_name: str = Form(...),
    nis: Optional[str] = Form(None),
    event_id: Optional[int] = Form(None),
    session: Session = Depends(require(Area.ROSTER)),
):
    return to_dict(add_student(get_store(request), name, class_name, nis=nis, event_id=event_id))


@router.delete("/admin/students/{student_id}")
def admin_delete_student(request: Request, student_id: int, session: Session = Depends(require(Area.ROSTER))):
    delete_student(get_store(request), student_id)
    return {"deleted": student_id}


# -----------------------
# Routes: Coordinator recap
# -----------------------
@router.get("/recap")
def recap(request: Request, event_id: Optional[int] = None, session: Session = Depends(require(Area.RECAP))):
    if event_id is None:
        feed = get_feed(request)
        rows = feed.rows
        refreshed_at = feed.refreshed_at
    else:
        rows = build_leaderboard(get_store(request), event_id)
        refreshed_at = None
    return {"refreshed_at": refreshed_at, "rows": [to_dict(r) for r in rows]}


@router.post("/recap/refresh")
def recap_refresh(request: Request, session: Session = Depends(require(Area.RECAP))):
    feed = get_feed(request)
    rows = feed.refresh()
    return {"refreshed_at": feed.refreshed_at, "rows": [to_dict(r) for r in rows]}


@router.get("/recap/summary")
def recap_stats(request: Request, event_id: Optional[int] = None, session: Session = Depends(require(Area.RECAP))):
    return recap_summary(get_store(request), event_id)


# -----------------------
# Routes: Super admin configuration
# -----------------------
@router.get("/super/events")
def super_events(request: Request, session: Session = Depends(require(Area.CONFIGURATION))):
    store = get_store(request)
    return [
        {**to_dict(e), "criteria": [to_dict(c) for c in list_criteria(store, e.id)]}
        for e in list_events(store)
    ]


@router.post("/super/events", status_code=201)
def super_create_event(request: Request, name: str = Form(...), session: Session = Depends(require(Area.CONFIGURATION))):
    return to_dict(create_event(get_store(request), name))


@router.delete("/super/events/{event_id}")
def super_delete_event(request: Request, event_id: int, session: Session = Depends(require(Area.CONFIGURATION))):
    delete_event(get_store(request), event_id)
    return {"deleted": event_id}


@router.post("/super/events/{event_id}/criteria", status_code=201)
def super_add_criterion(
    request: Request,
    event_id: int,
    name: str = Form(...),
    weight: Optional[str] = Form(None),
    max_score: Optional[str] = Form(None),
    session: Session = Depends(require(Area.CONFIGURATION)),
):
    return to_dict(add_criterion(get_store(request), event_id, name, weight=weight, max_score=max_score))


@router.delete("/super/criteria/{criterion_id}")
def super_remove_criterion(request: Request, criterion_id: int, session: Session = Depends(require(Area.CONFIGURATION))):
    remove_criterion(get_store(request), criterion_id)
    return {"deleted": criterion_id}


@router.get("/super/keys")
def super_keys(request: Request, session: Session = Depends(require(Area.CONFIGURATION))):
    return [key_json(k) for k in list_access_keys(get_store(request))]


@router.post("/super/keys", status_code=201)
def super_create_key(
    request: Request,
    name: str = Form(...),
    key: str = Form(...),
    role: str = Form(...),
    session: Session = Depends(require(Area.CONFIGURATION)),
):
    return key_json(create_access_key(get_store(request), name, key, role))


@router.post("/super/keys/{key_id}/active")
def super_toggle_key(
    request: Request,
    key_id: int,
    active: bool = Form(...),
    session: Session = Depends(require(Area.CONFIGURATION)),
):
    set_key_active(get_store(request), key_id, active)
    return {"id": key_id, "is_active": active}


@router.delete("/super/keys/{key_id}")
def super_delete_key(request: Request, key_id: int, session: Session = Depends(require(Area.CONFIGURATION))):
    delete_access_key(get_store(request), key_id)
    return {"deleted": key_id}


@router.post("/super/reset")
def super_reset(request: Request, session: Session = Depends(require(Area.CONFIGURATION))):
    reset_all(get_store(request))
    logger.warning("Reset requested by %s", session.name)
    return {"reset": True}


# -----------------------
# App
# -----------------------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = (settings or load_settings()).validate()
    configure_logging(settings)

    store = Store(settings.db_path)
    feed = LeaderboardFeed(store, interval=settings.poll_interval)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.init_db()
        if settings.super_admin_key:
            seed_super_admin(store, settings.super_admin_key)
        feed.start()
        try:
            yield
        finally:
            feed.stop()

    app = FastAPI(title="UKK Recap", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.feed = feed
    app.include_router(router)

    @app.exception_handler(UKKError)
    async def _ukk_error(request: Request, exc: UKKError):
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.middleware("http")
    async def _security_headers(request: Request, call_next):
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers[header] = value
        return response

    return app


app = create_app()
