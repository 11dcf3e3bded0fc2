"""Repository functions for notifications, reminder records and overdue actions.

These tables hold the persistent idempotency records of the engine:
notification keys, (assignment, reminder type) pairs and the one
`marked_overdue` action per assignment.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from assessment.utils.time_utils import parse_iso, to_iso

logger = structlog.get_logger(__name__)


@dataclass
class NotificationRecord:
    """Notification record from database."""

    id: int
    user_id: int
    notification_type: str
    title: str
    content: str
    related_exam_id: int | None
    related_assignment_id: int | None
    related_makeup_exam_id: int | None
    idempotency_key: str
    is_read: bool
    created_at: datetime


@dataclass
class OverdueAction:
    """Audit record of an overdue marking or deadline extension."""

    id: int
    assignment_id: int
    exam_id: int
    user_id: int
    action_type: str
    action_details: dict[str, Any]
    overdue_by: int | None
    original_deadline: datetime | None
    new_deadline: datetime | None
    performed_by: int | None


# =============================================================================
# NOTIFICATIONS
# =============================================================================


def insert_notification(
    conn: sqlite3.Connection,
    user_id: int,
    notification_type: str,
    title: str,
    content: str,
    idempotency_key: str,
    now: datetime,
    related_exam_id: int | None = None,
    related_assignment_id: int | None = None,
    related_makeup_exam_id: int | None = None,
) -> bool:
    """Insert a notification. Returns False if the key was already used."""
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO notifications
            (user_id, notification_type, title, content, related_exam_id,
             related_assignment_id, related_makeup_exam_id, idempotency_key, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            user_id,
            notification_type,
            title,
            content,
            related_exam_id,
            related_assignment_id,
            related_makeup_exam_id,
            idempotency_key,
            to_iso(now),
        ),
    )
    return cursor.rowcount > 0


def list_notifications(
    conn: sqlite3.Connection,
    user_id: int | None = None,
    notification_type: str | None = None,
) -> list[NotificationRecord]:
    """List notifications, oldest first, optionally filtered."""
    query = "SELECT * FROM notifications WHERE 1 = 1"
    params: list[Any] = []
    if user_id is not None:
        query += " AND user_id = ?"
        params.append(user_id)
    if notification_type is not None:
        query += " AND notification_type = ?"
        params.append(notification_type)
    query += " ORDER BY id"

    return [
        NotificationRecord(
            id=row["id"],
            user_id=row["user_id"],
            notification_type=row["notification_type"],
            title=row["title"],
            content=row["content"],
            related_exam_id=row["related_exam_id"],
            related_assignment_id=row["related_assignment_id"],
            related_makeup_exam_id=row["related_makeup_exam_id"],
            idempotency_key=row["idempotency_key"],
            is_read=bool(row["is_read"]),
            created_at=parse_iso(row["created_at"]),
        )
        for row in conn.execute(query, params).fetchall()
    ]


# =============================================================================
# REMINDERS
# =============================================================================


def has_reminder(conn: sqlite3.Connection, assignment_id: int, reminder_type: str) -> bool:
    """Whether a reminder of this type was already recorded for the assignment."""
    row = conn.execute(
        "SELECT 1 FROM exam_reminders WHERE assignment_id = ? AND reminder_type = ?",
        (assignment_id, reminder_type),
    ).fetchone()
    return row is not None


def record_reminder(conn: sqlite3.Connection, assignment_id: int, reminder_type: str, now: datetime) -> bool:
    """Record a sent reminder. Returns False if it was already recorded."""
    cursor = conn.execute(
        "INSERT OR IGNORE INTO exam_reminders (assignment_id, reminder_type, sent_at) VALUES (?, ?, ?)",
        (assignment_id, reminder_type, to_iso(now)),
    )
    return cursor.rowcount > 0


# =============================================================================
# OVERDUE ACTIONS
# =============================================================================


def insert_overdue_action(
    conn: sqlite3.Connection,
    assignment_id: int,
    exam_id: int,
    user_id: int,
    action_type: str,
    details: dict[str, Any],
    now: datetime,
    overdue_by: int | None = None,
    original_deadline: datetime | None = None,
    new_deadline: datetime | None = None,
    performed_by: int | None = None,
) -> bool:
    """Record an overdue action.

    A second `marked_overdue` for the same assignment is ignored (unique
    partial index); returns False in that case.
    """
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO overdue_actions
            (assignment_id, exam_id, user_id, action_type, action_details, overdue_by,
             original_deadline, new_deadline, performed_by, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            assignment_id,
            exam_id,
            user_id,
            action_type,
            json.dumps(details, ensure_ascii=False),
            overdue_by,
            to_iso(original_deadline),
            to_iso(new_deadline),
            performed_by,
            to_iso(now),
        ),
    )
    return cursor.rowcount > 0


def has_overdue_mark(conn: sqlite3.Connection, assignment_id: int) -> bool:
    """Whether the assignment has already been marked overdue."""
    row = conn.execute(
        "SELECT 1 FROM overdue_actions WHERE assignment_id = ? AND action_type = 'marked_overdue'",
        (assignment_id,),
    ).fetchone()
    return row is not None


def list_overdue_actions(
    conn: sqlite3.Connection,
    assignment_id: int | None = None,
    user_id: int | None = None,
    limit: int = 50,
) -> list[OverdueAction]:
    """List overdue actions, optionally for one assignment or candidate."""
    query = "SELECT * FROM overdue_actions WHERE 1 = 1"
    params: list[Any] = []
    if assignment_id is not None:
        query += " AND assignment_id = ?"
        params.append(assignment_id)
    elif user_id is not None:
        query += " AND user_id = ?"
        params.append(user_id)
    query += " ORDER BY id LIMIT ?"
    params.append(limit)

    return [
        OverdueAction(
            id=row["id"],
            assignment_id=row["assignment_id"],
            exam_id=row["exam_id"],
            user_id=row["user_id"],
            action_type=row["action_type"],
            action_details=json.loads(row["action_details"] or "{}"),
            overdue_by=row["overdue_by"],
            original_deadline=parse_iso(row["original_deadline"]),
            new_deadline=parse_iso(row["new_deadline"]),
            performed_by=row["performed_by"],
        )
        for row in conn.execute(query, params).fetchall()
    ]
