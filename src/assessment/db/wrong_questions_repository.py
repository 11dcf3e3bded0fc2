"""Repository functions for the wrong-question ledger."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from assessment.utils.time_utils import parse_iso, to_iso

logger = structlog.get_logger(__name__)


@dataclass
class WrongQuestionEntry:
    """Ledger entry for one candidate and one question."""

    id: int
    user_id: int
    question_id: int
    wrong_count: int
    last_wrong_at: datetime
    is_reviewed: bool
    reviewed_at: datetime | None
    question_type: str | None = None


def record_miss(conn: sqlite3.Connection, user_id: int, question_id: int, now: datetime) -> None:
    """Insert a first miss or bump the counter of an existing entry.

    A fresh miss also clears the reviewed flag.
    """
    conn.execute(
        """
        INSERT INTO wrong_questions (user_id, question_id, wrong_count, last_wrong_at, is_reviewed)
        VALUES (?, ?, 1, ?, 0)
        ON CONFLICT(user_id, question_id) DO UPDATE SET
            wrong_count = wrong_questions.wrong_count + 1,
            last_wrong_at = excluded.last_wrong_at,
            is_reviewed = 0,
            reviewed_at = NULL
        """,
        (user_id, question_id, to_iso(now)),
    )


def get_entry(conn: sqlite3.Connection, entry_id: int) -> WrongQuestionEntry | None:
    """Get ledger entry by ID."""
    row = conn.execute("SELECT * FROM wrong_questions WHERE id = ?", (entry_id,)).fetchone()
    return _row_to_entry(row) if row is not None else None


def list_entries(
    conn: sqlite3.Connection,
    user_id: int,
    question_type: str | None = None,
    reviewed: bool | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[WrongQuestionEntry]:
    """Entries of a candidate, most-missed and most recent first."""
    query = """
        SELECT w.*, q.type AS question_type
        FROM wrong_questions w
        JOIN questions q ON q.id = w.question_id
        WHERE w.user_id = ?
    """
    params: list[Any] = [user_id]
    if question_type is not None:
        query += " AND q.type = ?"
        params.append(question_type)
    if reviewed is not None:
        query += " AND w.is_reviewed = ?"
        params.append(int(reviewed))
    query += " ORDER BY w.wrong_count DESC, w.last_wrong_at DESC, w.id"
    if limit is not None:
        query += " LIMIT ? OFFSET ?"
        params.extend([limit, offset])

    rows = conn.execute(query, params).fetchall()
    return [_row_to_entry(row) for row in rows]


def set_reviewed(conn: sqlite3.Connection, entry_ids: list[int], user_id: int, now: datetime) -> int:
    """Flag entries owned by the candidate as reviewed. Returns rows updated."""
    if not entry_ids:
        return 0
    placeholders = ", ".join("?" for _ in entry_ids)
    cursor = conn.execute(
        f"""
        UPDATE wrong_questions
        SET is_reviewed = 1, reviewed_at = ?
        WHERE user_id = ? AND id IN ({placeholders})
        """,
        (to_iso(now), user_id, *entry_ids),
    )
    return cursor.rowcount


def delete_entry(conn: sqlite3.Connection, user_id: int, question_id: int) -> bool:
    """Delete the ledger entry of a candidate for a question."""
    cursor = conn.execute(
        "DELETE FROM wrong_questions WHERE user_id = ? AND question_id = ?",
        (user_id, question_id),
    )
    return cursor.rowcount > 0


def stats(conn: sqlite3.Connection, user_id: int) -> dict[str, Any]:
    """Totals and per-question-type counts for a candidate."""
    row = conn.execute(
        """
        SELECT COUNT(*) AS total, COALESCE(SUM(is_reviewed), 0) AS reviewed
        FROM wrong_questions WHERE user_id = ?
        """,
        (user_id,),
    ).fetchone()
    by_type_rows = conn.execute(
        """
        SELECT q.type AS type, COUNT(*) AS n
        FROM wrong_questions w JOIN questions q ON q.id = w.question_id
        WHERE w.user_id = ?
        GROUP BY q.type
        """,
        (user_id,),
    ).fetchall()

    total = row["total"]
    reviewed = row["reviewed"]
    return {
        "total": total,
        "reviewed": reviewed,
        "unreviewed": total - reviewed,
        "by_type": {r["type"]: r["n"] for r in by_type_rows},
    }


def _row_to_entry(row: sqlite3.Row) -> WrongQuestionEntry:
    keys = row.keys()
    return WrongQuestionEntry(
        id=row["id"],
        user_id=row["user_id"],
        question_id=row["question_id"],
        wrong_count=row["wrong_count"],
        last_wrong_at=parse_iso(row["last_wrong_at"]),
        is_reviewed=bool(row["is_reviewed"]),
        reviewed_at=parse_iso(row["reviewed_at"]),
        question_type=row["question_type"] if "question_type" in keys else None,
    )
