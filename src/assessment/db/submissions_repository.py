"""Repository functions for submissions (one row per assignment and question)."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from assessment.utils.time_utils import to_iso

logger = structlog.get_logger(__name__)


@dataclass
class SubmissionRecord:
    """Submission record from database."""

    id: int
    assignment_id: int
    question_id: int
    answer: str
    is_correct: bool | None
    score: int | None
    ai_evaluation: dict[str, Any] | None
    teacher_comment: str | None
    ledger_recorded: bool = False


@dataclass
class WrongAnswer:
    """An incorrect submission joined with its question's category."""

    question_id: int
    question_type: str
    category_id: int | None
    category_name: str | None


def save_answer(
    conn: sqlite3.Connection,
    assignment_id: int,
    question_id: int,
    answer: str,
    now: datetime,
) -> int:
    """Insert or replace a candidate's answer, clearing any previous grade.

    The (assignment_id, question_id) identity of an existing row is kept.
    """
    conn.execute(
        """
        INSERT INTO submissions (assignment_id, question_id, answer, submitted_at, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(assignment_id, question_id) DO UPDATE SET
            answer = excluded.answer,
            is_correct = NULL,
            score = NULL,
            ai_evaluation = NULL,
            updated_at = excluded.updated_at
        """,
        (assignment_id, question_id, answer, to_iso(now), to_iso(now)),
    )
    row = conn.execute(
        "SELECT id FROM submissions WHERE assignment_id = ? AND question_id = ?",
        (assignment_id, question_id),
    ).fetchone()
    return int(row["id"])


def get_submissions(conn: sqlite3.Connection, assignment_id: int) -> list[SubmissionRecord]:
    """All submissions of an assignment."""
    rows = conn.execute(
        "SELECT * FROM submissions WHERE assignment_id = ? ORDER BY id", (assignment_id,)
    ).fetchall()
    return [_row_to_record(row) for row in rows]


def get_submission(conn: sqlite3.Connection, submission_id: int) -> SubmissionRecord | None:
    """Get submission by ID."""
    row = conn.execute("SELECT * FROM submissions WHERE id = ?", (submission_id,)).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def write_grade(
    conn: sqlite3.Connection,
    assignment_id: int,
    question_id: int,
    is_correct: bool,
    score: int,
    ai_evaluation: dict[str, Any] | None,
    now: datetime,
) -> None:
    """Store the grade of one question.

    Unanswered questions get a blank submission row so every question of a
    graded assignment has exactly one graded row.
    """
    evaluation_json = json.dumps(ai_evaluation, ensure_ascii=False) if ai_evaluation is not None else None
    conn.execute(
        """
        INSERT INTO submissions
            (assignment_id, question_id, answer, is_correct, score, ai_evaluation, submitted_at, updated_at)
        VALUES (?, ?, '', ?, ?, ?, ?, ?)
        ON CONFLICT(assignment_id, question_id) DO UPDATE SET
            is_correct = excluded.is_correct,
            score = excluded.score,
            ai_evaluation = excluded.ai_evaluation,
            updated_at = excluded.updated_at
        """,
        (assignment_id, question_id, int(is_correct), score, evaluation_json, to_iso(now), to_iso(now)),
    )


def write_manual_score(
    conn: sqlite3.Connection,
    submission_id: int,
    is_correct: bool,
    score: int,
    comment: str | None,
    now: datetime,
) -> None:
    """Store a human-assigned score and comment."""
    conn.execute(
        """
        UPDATE submissions
        SET is_correct = ?, score = ?, teacher_comment = ?, updated_at = ?
        WHERE id = ?
        """,
        (int(is_correct), score, comment, to_iso(now), submission_id),
    )


def list_wrong_answers(conn: sqlite3.Connection, assignment_id: int) -> list[WrongAnswer]:
    """Incorrect submissions of an assignment with their question categories."""
    rows = conn.execute(
        """
        SELECT s.question_id, q.type AS question_type, q.category_id, c.name AS category_name
        FROM submissions s
        JOIN questions q ON q.id = s.question_id
        LEFT JOIN question_categories c ON c.id = q.category_id
        WHERE s.assignment_id = ? AND s.is_correct = 0
        ORDER BY s.question_id
        """,
        (assignment_id,),
    ).fetchall()

    return [
        WrongAnswer(
            question_id=row["question_id"],
            question_type=row["question_type"],
            category_id=row["category_id"],
            category_name=row["category_name"],
        )
        for row in rows
    ]


def claim_unrecorded_misses(conn: sqlite3.Connection, assignment_id: int) -> list[int]:
    """Flag incorrect submissions not yet in the ledger and return their question IDs.

    Each (assignment, question) miss is handed out once; later calls skip it.
    """
    rows = conn.execute(
        """
        SELECT question_id FROM submissions
        WHERE assignment_id = ? AND is_correct = 0 AND ledger_recorded = 0
        ORDER BY question_id
        """,
        (assignment_id,),
    ).fetchall()
    question_ids = [row["question_id"] for row in rows]
    if question_ids:
        placeholders = ", ".join("?" for _ in question_ids)
        conn.execute(
            f"UPDATE submissions SET ledger_recorded = 1 WHERE assignment_id = ? AND question_id IN ({placeholders})",
            (assignment_id, *question_ids),
        )
    return question_ids


def _row_to_record(row: sqlite3.Row) -> SubmissionRecord:
    is_correct = row["is_correct"]
    evaluation = row["ai_evaluation"]
    return SubmissionRecord(
        id=row["id"],
        assignment_id=row["assignment_id"],
        question_id=row["question_id"],
        answer=row["answer"],
        is_correct=None if is_correct is None else bool(is_correct),
        score=row["score"],
        ai_evaluation=json.loads(evaluation) if evaluation else None,
        teacher_comment=row["teacher_comment"],
        ledger_recorded=bool(row["ledger_recorded"]),
    )
