"""Repository functions for the scores table (one row per assignment)."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime

import structlog

from assessment.utils.time_utils import parse_iso, to_iso

logger = structlog.get_logger(__name__)


@dataclass
class ScoreRecord:
    """Score record from database."""

    assignment_id: int
    total_score: int
    max_score: int
    percentage: int
    passed: bool
    graded_by: int | None
    graded_at: datetime
    feedback: str | None


def upsert_score(
    conn: sqlite3.Connection,
    assignment_id: int,
    total_score: int,
    max_score: int,
    percentage: int,
    passed: bool,
    graded_at: datetime,
    graded_by: int | None = None,
    feedback: str | None = None,
) -> None:
    """Insert the score of an assignment, or overwrite the existing one.

    Feedback is only replaced when a new value is given.
    """
    conn.execute(
        """
        INSERT INTO scores
            (assignment_id, total_score, max_score, percentage, passed, graded_by, graded_at, feedback)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(assignment_id) DO UPDATE SET
            total_score = excluded.total_score,
            max_score = excluded.max_score,
            percentage = excluded.percentage,
            passed = excluded.passed,
            graded_by = excluded.graded_by,
            graded_at = excluded.graded_at,
            feedback = COALESCE(excluded.feedback, scores.feedback)
        """,
        (
            assignment_id,
            total_score,
            max_score,
            percentage,
            int(passed),
            graded_by,
            to_iso(graded_at),
            feedback,
        ),
    )
    logger.debug("scores.upserted", assignment_id=assignment_id, percentage=percentage, passed=passed)


def get_score(conn: sqlite3.Connection, assignment_id: int) -> ScoreRecord | None:
    """Get the score of an assignment."""
    row = conn.execute("SELECT * FROM scores WHERE assignment_id = ?", (assignment_id,)).fetchone()
    if row is None:
        return None
    return ScoreRecord(
        assignment_id=row["assignment_id"],
        total_score=row["total_score"],
        max_score=row["max_score"],
        percentage=row["percentage"],
        passed=bool(row["passed"]),
        graded_by=row["graded_by"],
        graded_at=parse_iso(row["graded_at"]),
        feedback=row["feedback"],
    )
