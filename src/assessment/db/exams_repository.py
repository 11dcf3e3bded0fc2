"""Repository functions for exams and their question lists.

Questions themselves are owned by the question bank; these functions only
read them.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Literal

import structlog

logger = structlog.get_logger(__name__)

Lifecycle = Literal["active", "archived", "deleted"]
QuestionType = Literal["true_false", "multiple_choice", "multiple_answer", "short_answer"]


@dataclass
class ExamRecord:
    """Exam record from database."""

    id: int
    title: str
    description: str | None
    time_limit: int | None
    passing_score: int
    total_score: int
    grading_method: str
    status: str
    lifecycle: Lifecycle
    created_by: int | None

    @property
    def is_available(self) -> bool:
        """Whether new assignments may be issued or started against the exam."""
        return self.lifecycle == "active"


@dataclass
class ExamQuestion:
    """A question as it appears in an exam, with its point value."""

    question_id: int
    question_order: int
    points: int | None
    type: QuestionType
    question: str
    correct_answer: str
    category_id: int | None
    category_name: str | None


def get_exam(conn: sqlite3.Connection, exam_id: int) -> ExamRecord | None:
    """Get exam by ID, whatever its lifecycle."""
    row = conn.execute("SELECT * FROM exams WHERE id = ?", (exam_id,)).fetchone()
    if row is None:
        return None
    return _row_to_exam(row)


def list_active_exams(conn: sqlite3.Connection) -> list[ExamRecord]:
    """List exams that are neither archived nor deleted."""
    rows = conn.execute(
        "SELECT * FROM exams WHERE lifecycle = 'active' ORDER BY created_at DESC, id DESC"
    ).fetchall()
    return [_row_to_exam(row) for row in rows]


def set_exam_lifecycle(conn: sqlite3.Connection, exam_id: int, lifecycle: Lifecycle) -> bool:
    """Archive, delete or restore an exam. Returns False if it does not exist."""
    cursor = conn.execute(
        "UPDATE exams SET lifecycle = ?, updated_at = datetime('now') WHERE id = ?",
        (lifecycle, exam_id),
    )
    logger.debug("exams.lifecycle_updated", exam_id=exam_id, lifecycle=lifecycle)
    return cursor.rowcount > 0


def get_exam_questions(conn: sqlite3.Connection, exam_id: int) -> list[ExamQuestion]:
    """Get the ordered question list of an exam with per-question points."""
    rows = conn.execute(
        """
        SELECT eq.question_id, eq.question_order, eq.points,
               q.type, q.question, q.correct_answer, q.category_id,
               c.name AS category_name
        FROM exam_questions eq
        JOIN questions q ON q.id = eq.question_id
        LEFT JOIN question_categories c ON c.id = q.category_id
        WHERE eq.exam_id = ?
        ORDER BY eq.question_order, eq.id
        """,
        (exam_id,),
    ).fetchall()

    return [
        ExamQuestion(
            question_id=row["question_id"],
            question_order=row["question_order"],
            points=row["points"],
            type=row["type"],
            question=row["question"],
            correct_answer=row["correct_answer"],
            category_id=row["category_id"],
            category_name=row["category_name"],
        )
        for row in rows
    ]


def _row_to_exam(row: sqlite3.Row) -> ExamRecord:
    return ExamRecord(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        time_limit=row["time_limit"],
        passing_score=row["passing_score"],
        total_score=row["total_score"],
        grading_method=row["grading_method"],
        status=row["status"],
        lifecycle=row["lifecycle"],
        created_by=row["created_by"],
    )
