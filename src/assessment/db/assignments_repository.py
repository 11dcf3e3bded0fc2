"""Repository functions for the assignments table.

Assignments are never hard-deleted. Status changes go through
`compare_and_set_status`, which only updates the row when it is still in
one of the expected states.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Literal

import structlog

from assessment.utils.time_utils import parse_iso, to_iso

logger = structlog.get_logger(__name__)

AssignmentStatus = Literal["pending", "in_progress", "submitted", "graded"]


@dataclass
class AssignmentRecord:
    """Assignment record from database."""

    id: int
    exam_id: int
    user_id: int
    assigned_at: datetime
    start_time: datetime | None
    submit_time: datetime | None
    deadline: datetime | None
    status: AssignmentStatus
    is_practice: bool
    makeup_exam_id: int | None = None

    @property
    def is_makeup_attempt(self) -> bool:
        """Whether the assignment was issued as an attempt of a makeup record."""
        return self.makeup_exam_id is not None


def insert_assignment(
    conn: sqlite3.Connection,
    exam_id: int,
    user_id: int,
    assigned_at: datetime,
    deadline: datetime | None = None,
    is_practice: bool = False,
    makeup_exam_id: int | None = None,
) -> int:
    """Insert a new pending assignment and return its ID.

    `makeup_exam_id` links a makeup attempt to its makeup record for good;
    the link survives later reschedules of the same record.
    """
    cursor = conn.execute(
        """
        INSERT INTO assignments
            (exam_id, user_id, assigned_at, deadline, status, is_practice, makeup_exam_id, updated_at)
        VALUES (?, ?, ?, ?, 'pending', ?, ?, ?)
        """,
        (exam_id, user_id, to_iso(assigned_at), to_iso(deadline), int(is_practice), makeup_exam_id, to_iso(assigned_at)),
    )
    logger.debug("assignments.inserted", assignment_id=cursor.lastrowid, exam_id=exam_id, user_id=user_id)
    return int(cursor.lastrowid)


def get_assignment(conn: sqlite3.Connection, assignment_id: int) -> AssignmentRecord | None:
    """Get assignment by ID."""
    row = conn.execute("SELECT * FROM assignments WHERE id = ?", (assignment_id,)).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def compare_and_set_status(
    conn: sqlite3.Connection,
    assignment_id: int,
    expected: Iterable[AssignmentStatus],
    target: AssignmentStatus,
    now: datetime,
    start_time: datetime | None = None,
    submit_time: datetime | None = None,
) -> bool:
    """Move an assignment to `target` only if its status is still in `expected`.

    Timestamps passed as None are left untouched.

    Returns:
        True if the row was updated, False if the status had changed.
    """
    expected = list(expected)
    placeholders = ", ".join("?" for _ in expected)
    cursor = conn.execute(
        f"""
        UPDATE assignments
        SET status = ?,
            start_time = COALESCE(?, start_time),
            submit_time = COALESCE(?, submit_time),
            updated_at = ?
        WHERE id = ? AND status IN ({placeholders})
        """,
        (target, to_iso(start_time), to_iso(submit_time), to_iso(now), assignment_id, *expected),
    )
    return cursor.rowcount > 0


def update_deadline(conn: sqlite3.Connection, assignment_id: int, deadline: datetime, now: datetime) -> None:
    """Replace an assignment's deadline."""
    conn.execute(
        "UPDATE assignments SET deadline = ?, updated_at = ? WHERE id = ?",
        (to_iso(deadline), to_iso(now), assignment_id),
    )


def list_unsubmitted_with_deadline(conn: sqlite3.Connection) -> list[AssignmentRecord]:
    """Assignments not yet submitted that carry a deadline."""
    rows = conn.execute(
        """
        SELECT * FROM assignments
        WHERE status IN ('pending', 'in_progress') AND deadline IS NOT NULL
        ORDER BY deadline, id
        """
    ).fetchall()
    return [_row_to_record(row) for row in rows]


def list_overdue(conn: sqlite3.Connection, now: datetime) -> list[AssignmentRecord]:
    """Unsubmitted assignments whose deadline has passed."""
    return [a for a in list_unsubmitted_with_deadline(conn) if a.deadline is not None and a.deadline < now]


def list_in_progress(conn: sqlite3.Connection) -> list[AssignmentRecord]:
    """Assignments currently being taken."""
    rows = conn.execute(
        "SELECT * FROM assignments WHERE status = 'in_progress' ORDER BY id"
    ).fetchall()
    return [_row_to_record(row) for row in rows]


def _row_to_record(row: sqlite3.Row) -> AssignmentRecord:
    return AssignmentRecord(
        id=row["id"],
        exam_id=row["exam_id"],
        user_id=row["user_id"],
        assigned_at=parse_iso(row["assigned_at"]),
        start_time=parse_iso(row["start_time"]),
        submit_time=parse_iso(row["submit_time"]),
        deadline=parse_iso(row["deadline"]),
        status=row["status"],
        is_practice=bool(row["is_practice"]),
        makeup_exam_id=row["makeup_exam_id"],
    )
