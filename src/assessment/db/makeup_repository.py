"""Repository functions for makeup exams and learning recommendations."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

import structlog

from assessment.utils.time_utils import parse_iso, to_iso

logger = structlog.get_logger(__name__)

MakeupStatus = Literal["pending", "scheduled", "completed", "expired"]
RecommendationType = Literal["weak_topics", "practice_questions", "study_materials", "ai_generated"]
Priority = Literal["high", "medium", "low"]


@dataclass
class MakeupRecord:
    """Makeup exam record from database."""

    id: int
    original_assignment_id: int
    user_id: int
    exam_id: int
    makeup_assignment_id: int | None
    makeup_count: int
    max_attempts: int
    makeup_deadline: datetime | None
    status: MakeupStatus
    original_score: int
    makeup_score: int | None
    reason: str | None
    notes: str | None
    scheduled_by: int | None


@dataclass
class RecommendationRecord:
    """Learning recommendation record from database."""

    id: int
    user_id: int
    assignment_id: int
    makeup_exam_id: int | None
    recommendation_type: RecommendationType
    title: str
    content: dict[str, Any]
    related_question_ids: list[int]
    related_category_ids: list[int]
    priority: Priority
    is_read: bool
    read_at: datetime | None


# =============================================================================
# MAKEUP EXAMS
# =============================================================================


def insert_makeup_if_absent(
    conn: sqlite3.Connection,
    original_assignment_id: int,
    user_id: int,
    exam_id: int,
    original_score: int,
    max_attempts: int,
    reason: str,
    now: datetime,
) -> tuple[int, bool]:
    """Create the makeup record of an assignment unless one already exists.

    Returns:
        (makeup_id, created)
    """
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO makeup_exams
            (original_assignment_id, user_id, exam_id, makeup_count, max_attempts,
             status, original_score, reason, created_at, updated_at)
        VALUES (?, ?, ?, 1, ?, 'pending', ?, ?, ?, ?)
        """,
        (original_assignment_id, user_id, exam_id, max_attempts, original_score, reason, to_iso(now), to_iso(now)),
    )
    created = cursor.rowcount > 0
    existing = get_makeup_by_original(conn, original_assignment_id)
    return existing.id, created


def get_makeup(conn: sqlite3.Connection, makeup_id: int) -> MakeupRecord | None:
    """Get makeup record by ID."""
    row = conn.execute("SELECT * FROM makeup_exams WHERE id = ?", (makeup_id,)).fetchone()
    return _row_to_makeup(row) if row is not None else None


def get_makeup_by_original(conn: sqlite3.Connection, assignment_id: int) -> MakeupRecord | None:
    """Get the makeup record created for an originating assignment."""
    row = conn.execute(
        "SELECT * FROM makeup_exams WHERE original_assignment_id = ?", (assignment_id,)
    ).fetchone()
    return _row_to_makeup(row) if row is not None else None


def mark_scheduled(
    conn: sqlite3.Connection,
    makeup_id: int,
    makeup_assignment_id: int,
    makeup_count: int,
    deadline: datetime,
    notes: str | None,
    scheduled_by: int | None,
    now: datetime,
) -> None:
    """Link a new makeup assignment and move the record to scheduled."""
    conn.execute(
        """
        UPDATE makeup_exams
        SET makeup_assignment_id = ?, makeup_count = ?, makeup_deadline = ?,
            status = 'scheduled', notes = ?, scheduled_by = ?, updated_at = ?
        WHERE id = ?
        """,
        (makeup_assignment_id, makeup_count, to_iso(deadline), notes, scheduled_by, to_iso(now), makeup_id),
    )


def mark_completed(conn: sqlite3.Connection, makeup_id: int, makeup_score: int, now: datetime) -> None:
    """Record the makeup score and move the record to completed."""
    conn.execute(
        """
        UPDATE makeup_exams
        SET makeup_score = ?, status = 'completed', updated_at = ?
        WHERE id = ?
        """,
        (makeup_score, to_iso(now), makeup_id),
    )


def mark_expired(conn: sqlite3.Connection, makeup_id: int, now: datetime) -> bool:
    """Move a scheduled record to expired. Returns False if it was not scheduled."""
    cursor = conn.execute(
        "UPDATE makeup_exams SET status = 'expired', updated_at = ? WHERE id = ? AND status = 'scheduled'",
        (to_iso(now), makeup_id),
    )
    return cursor.rowcount > 0


def list_makeups(
    conn: sqlite3.Connection,
    status: MakeupStatus | None = None,
    user_id: int | None = None,
) -> list[MakeupRecord]:
    """List makeup records, newest first, optionally filtered."""
    query = "SELECT * FROM makeup_exams WHERE 1 = 1"
    params: list[Any] = []
    if status is not None:
        query += " AND status = ?"
        params.append(status)
    if user_id is not None:
        query += " AND user_id = ?"
        params.append(user_id)
    query += " ORDER BY created_at DESC, id DESC"

    rows = conn.execute(query, params).fetchall()
    return [_row_to_makeup(row) for row in rows]


def count_by_status(conn: sqlite3.Connection) -> dict[str, int]:
    """Number of makeup records per status."""
    rows = conn.execute(
        "SELECT status, COUNT(*) AS n FROM makeup_exams GROUP BY status"
    ).fetchall()
    return {row["status"]: row["n"] for row in rows}


def _row_to_makeup(row: sqlite3.Row) -> MakeupRecord:
    return MakeupRecord(
        id=row["id"],
        original_assignment_id=row["original_assignment_id"],
        user_id=row["user_id"],
        exam_id=row["exam_id"],
        makeup_assignment_id=row["makeup_assignment_id"],
        makeup_count=row["makeup_count"],
        max_attempts=row["max_attempts"],
        makeup_deadline=parse_iso(row["makeup_deadline"]),
        status=row["status"],
        original_score=row["original_score"],
        makeup_score=row["makeup_score"],
        reason=row["reason"],
        notes=row["notes"],
        scheduled_by=row["scheduled_by"],
    )


# =============================================================================
# LEARNING RECOMMENDATIONS
# =============================================================================


def insert_recommendation_if_absent(
    conn: sqlite3.Connection,
    user_id: int,
    assignment_id: int,
    makeup_exam_id: int | None,
    recommendation_type: RecommendationType,
    title: str,
    content: dict[str, Any],
    related_question_ids: list[int],
    related_category_ids: list[int] | None,
    priority: Priority,
    now: datetime,
) -> bool:
    """Insert a recommendation unless one of that type exists for the assignment."""
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO learning_recommendations
            (user_id, assignment_id, makeup_exam_id, recommendation_type, title, content,
             related_question_ids, related_category_ids, priority, generated_by, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'system', ?)
        """,
        (
            user_id,
            assignment_id,
            makeup_exam_id,
            recommendation_type,
            title,
            json.dumps(content, ensure_ascii=False),
            json.dumps(related_question_ids),
            json.dumps(related_category_ids) if related_category_ids is not None else None,
            priority,
            to_iso(now),
        ),
    )
    return cursor.rowcount > 0


def list_recommendations(conn: sqlite3.Connection, user_id: int) -> list[RecommendationRecord]:
    """Recommendations of a candidate, highest priority and newest first."""
    rows = conn.execute(
        """
        SELECT * FROM learning_recommendations
        WHERE user_id = ?
        ORDER BY CASE priority WHEN 'high' THEN 0 WHEN 'medium' THEN 1 ELSE 2 END,
                 created_at DESC, id DESC
        """,
        (user_id,),
    ).fetchall()
    return [_row_to_recommendation(row) for row in rows]


def mark_recommendation_read(conn: sqlite3.Connection, recommendation_id: int, now: datetime) -> bool:
    """Flag a recommendation as read. Returns False if it does not exist."""
    cursor = conn.execute(
        "UPDATE learning_recommendations SET is_read = 1, read_at = ? WHERE id = ?",
        (to_iso(now), recommendation_id),
    )
    return cursor.rowcount > 0


def _row_to_recommendation(row: sqlite3.Row) -> RecommendationRecord:
    return RecommendationRecord(
        id=row["id"],
        user_id=row["user_id"],
        assignment_id=row["assignment_id"],
        makeup_exam_id=row["makeup_exam_id"],
        recommendation_type=row["recommendation_type"],
        title=row["title"],
        content=json.loads(row["content"]),
        related_question_ids=json.loads(row["related_question_ids"] or "[]"),
        related_category_ids=json.loads(row["related_category_ids"] or "[]"),
        priority=row["priority"],
        is_read=bool(row["is_read"]),
        read_at=parse_iso(row["read_at"]),
    )
