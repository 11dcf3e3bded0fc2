"""Read access to user accounts (managed by the authentication layer)."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

STAFF_ROLES = ("admin", "editor")


@dataclass
class UserRecord:
    """User record from database."""

    id: int
    name: str
    email: str | None
    role: str


def get_user(conn: sqlite3.Connection, user_id: int) -> UserRecord | None:
    """Get user by ID."""
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    return UserRecord(id=row["id"], name=row["name"], email=row["email"], role=row["role"])


def list_staff_ids(conn: sqlite3.Connection) -> list[int]:
    """IDs of all admin and editor accounts."""
    rows = conn.execute(
        "SELECT id FROM users WHERE role IN (?, ?) ORDER BY id", STAFF_ROLES
    ).fetchall()
    return [row["id"] for row in rows]
