from __future__ import annotations

import enum
import logging
import sqlite3
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from .errors import NotFound, ValidationError
from .store import Store

logger = logging.getLogger(__name__)


class Role(enum.Enum):
    JUDGE = "judge"
    COORDINATOR = "coordinator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class Area(enum.Enum):
    JUDGING = "judging"
    ROSTER = "roster"
    RECAP = "recap"
    CONFIGURATION = "configuration"


# Whole-label matches, checked before keywords
_EXACT_LABELS: Dict[str, Role] = {
    "SUPER ADMIN": Role.SUPER_ADMIN,
    "SUPERADMIN": Role.SUPER_ADMIN,
}

# First keyword contained in the label wins. ADMIN is the master key and beats the others
_KEYWORD_LABELS: Tuple[Tuple[str, Role], ...] = (
    ("ADMIN", Role.ADMIN),
    ("JURI", Role.JUDGE),
    ("JUDGE", Role.JUDGE),
    ("PANEL", Role.JUDGE),
    ("KOORDINATOR", Role.COORDINATOR),
    ("AKADEMIK", Role.COORDINATOR),
)

_GRANTS: Dict[Role, FrozenSet[Area]] = {
    Role.JUDGE: frozenset({Area.JUDGING}),
    Role.COORDINATOR: frozenset({Area.RECAP}),
    Role.ADMIN: frozenset(Area),
    Role.SUPER_ADMIN: frozenset(Area),
}

_HOME: Dict[Role, Area] = {
    Role.JUDGE: Area.JUDGING,
    Role.COORDINATOR: Area.RECAP,
    Role.ADMIN: Area.ROSTER,
    Role.SUPER_ADMIN: Area.CONFIGURATION,
}


def parse_role(label: Optional[str]) -> Optional[Role]:
    """Map a free-form role label ("Juri", "Koordinator Akademik", ...) to a Role."""
    normalized = " ".join((label or "").upper().split())
    if not normalized:
        return None
    if normalized in _EXACT_LABELS:
        return _EXACT_LABELS[normalized]
    for keyword, role in _KEYWORD_LABELS:
        if keyword in normalized:
            return role
    return None


def authorize(role: Optional[Role], area: Area) -> bool:
    if role is None:
        return False
    return area in _GRANTS[role]


def home_area(role: Optional[Role]) -> Optional[Area]:
    """Where a role lands after login. None means the unauthenticated landing page."""
    if role is None:
        return None
    return _HOME[role]


@dataclass(frozen=True)
class Session:
    role: Role
    key_id: int
    name: str

    def can(self, area: Area) -> bool:
        return authorize(self.role, area)


@dataclass(frozen=True)
class AccessKey:
    id: int
    name: str
    key: str
    role_label: str
    role: Role
    is_active: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AccessKey":
        return cls(
            id=row["id"],
            name=row["name"],
            key=row["key"],
            role_label=row["role_label"],
            role=Role(row["role"]),
            is_active=bool(row["is_active"]),
        )


# -----------------------
# Credential lookup
# -----------------------
def _active_key(store: Store, access_key: str) -> sqlite3.Row:
    access_key = (access_key or "").strip()
    if not access_key:
        raise NotFound("Access key is required.")
    with store.read() as conn:
        row = conn.execute(
            "SELECT * FROM access_keys WHERE key=? AND is_active=1", (access_key,)
        ).fetchone()
    if not row:
        raise NotFound("Access key not found.")
    return row


def resolve_role(store: Store, access_key: str) -> Role:
    return Role(_active_key(store, access_key)["role"])


def open_session(store: Store, access_key: str) -> Session:
    try:
        row = _active_key(store, access_key)
    except NotFound:
        logger.warning("Login failed for an unknown access key")
        raise
    return Session(role=Role(row["role"]), key_id=row["id"], name=row["name"])


# -----------------------
# Key management
# -----------------------
def create_access_key(store: Store, name: str, key: str, role_label: str) -> AccessKey:
    name = (name or "").strip()
    key = (key or "").strip()
    role_label = (role_label or "").strip()
    if not name or not key:
        raise ValidationError("Name and key are required.")
    role = parse_role(role_label)
    if role is None:
        raise ValidationError(f"Role '{role_label}' does not match any known role.")

    with store.transaction() as conn:
        if conn.execute("SELECT 1 FROM access_keys WHERE key=?", (key,)).fetchone():
            raise ValidationError("This access key is already in use.")
        cur = conn.execute(
            "INSERT INTO access_keys(name, key, role_label, role, is_active) VALUES(?,?,?,?,1)",
            (name, key, role_label, role.value),
        )
        key_id = cur.lastrowid
    logger.info("Created access key %s for %s (%s)", key_id, name, role.value)
    return AccessKey(id=key_id, name=name, key=key, role_label=role_label, role=role, is_active=True)


def list_access_keys(store: Store) -> List[AccessKey]:
    with store.read() as conn:
        rows = conn.execute("SELECT * FROM access_keys ORDER BY id").fetchall()
    return [AccessKey.from_row(r) for r in rows]


def set_key_active(store: Store, key_id: int, active: bool) -> None:
    with store.transaction() as conn:
        cur = conn.execute("UPDATE access_keys SET is_active=? WHERE id=?", (1 if active else 0, key_id))
        if cur.rowcount == 0:
            raise NotFound(f"Access key {key_id} not found.")
    logger.info("Access key %s %s", key_id, "activated" if active else "deactivated")


def delete_access_key(store: Store, key_id: int) -> None:
    with store.transaction() as conn:
        cur = conn.execute("DELETE FROM access_keys WHERE id=?", (key_id,))
        if cur.rowcount == 0:
            raise NotFound(f"Access key {key_id} not found.")
    logger.info("Deleted access key %s", key_id)


def seed_super_admin(store: Store, key: str, name: str = "Super Admin Master") -> AccessKey:
    """Create the master key if it is missing. Safe to call on every startup."""
    with store.read() as conn:
        row = conn.execute("SELECT * FROM access_keys WHERE key=?", (key,)).fetchone()
    if row:
        logger.info("Super admin key already present")
        return AccessKey.from_row(row)
    return create_access_key(store, name, key, "Super Admin")
