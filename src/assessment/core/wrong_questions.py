"""Wrong-question ledger.

One entry per (candidate, question) counting how often the candidate missed
it. Grading records misses of non-practice assignments; reviewing and
removal are explicit candidate actions. The grading path never deletes
entries.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Iterable

import structlog

from assessment.core.errors import InvalidTransitionError, NotFoundError
from assessment.db import assignments_repository, submissions_repository, wrong_questions_repository
from assessment.db.assignments_repository import AssignmentRecord
from assessment.db.database import Database
from assessment.db.wrong_questions_repository import WrongQuestionEntry
from assessment.utils.time_utils import utc_now

logger = structlog.get_logger(__name__)


def record_misses(conn: sqlite3.Connection, user_id: int, question_ids: Iterable[int], now: datetime) -> int:
    """Upsert one miss per question inside the caller's transaction."""
    count = 0
    for question_id in question_ids:
        wrong_questions_repository.record_miss(conn, user_id, question_id, now)
        count += 1
    return count


def record_assignment_misses(conn: sqlite3.Connection, assignment: AssignmentRecord, now: datetime) -> int:
    """Add the not-yet-recorded misses of a graded assignment to its candidate's ledger.

    Practice assignments never reach the ledger. A miss already recorded for
    the same (assignment, question) is skipped, so grading, re-grading and
    explicit collection can all call this without double counting.
    """
    if assignment.is_practice:
        return 0
    question_ids = submissions_repository.claim_unrecorded_misses(conn, assignment.id)
    return record_misses(conn, assignment.user_id, question_ids, now)


def collect_wrong_questions(
    db: Database,
    assignment_id: int,
    candidate_id: int,
    now: datetime | None = None,
) -> dict[str, int]:
    """Add the incorrect submissions of an assignment to the candidate's ledger.

    Misses already recorded (by grading or an earlier collection) are not
    counted again.

    Returns:
        {"count": number of questions newly recorded}

    Raises:
        NotFoundError: If the assignment does not exist or belongs to another candidate
        InvalidTransitionError: If the assignment is a practice run
    """
    now = now or utc_now()
    with db.connect() as conn:
        assignment = assignments_repository.get_assignment(conn, assignment_id)
        if assignment is None or assignment.user_id != candidate_id:
            raise NotFoundError("assignment", assignment_id)
        if assignment.is_practice:
            raise InvalidTransitionError(f"Assignment {assignment_id} is a practice run; it has no ledger entries")
        count = record_assignment_misses(conn, assignment, now)

    logger.info("wrong_questions_collected", assignment_id=assignment_id, user_id=candidate_id, count=count)
    return {"count": count}


def list_wrong_questions(
    db: Database,
    candidate_id: int,
    question_type: str | None = None,
    reviewed: bool | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[WrongQuestionEntry]:
    """Ledger entries of a candidate, most-missed first."""
    with db.connect() as conn:
        return wrong_questions_repository.list_entries(
            conn, candidate_id, question_type=question_type, reviewed=reviewed, limit=limit, offset=offset
        )


def wrong_question_stats(db: Database, candidate_id: int) -> dict[str, Any]:
    """Total, reviewed, unreviewed and per-type counts for a candidate."""
    with db.connect() as conn:
        return wrong_questions_repository.stats(conn, candidate_id)


def mark_reviewed(db: Database, entry_id: int, candidate_id: int, now: datetime | None = None) -> WrongQuestionEntry:
    """Flag one entry as reviewed. The miss counter is left untouched.

    Raises:
        NotFoundError: If the entry does not exist or belongs to another candidate
    """
    now = now or utc_now()
    with db.connect() as conn:
        entry = wrong_questions_repository.get_entry(conn, entry_id)
        if entry is None or entry.user_id != candidate_id:
            raise NotFoundError("wrong question entry", entry_id)
        wrong_questions_repository.set_reviewed(conn, [entry_id], candidate_id, now)
        return wrong_questions_repository.get_entry(conn, entry_id)


def batch_mark_reviewed(
    db: Database, entry_ids: list[int], candidate_id: int, now: datetime | None = None
) -> int:
    """Flag several entries as reviewed; entries of other candidates are skipped."""
    now = now or utc_now()
    with db.connect() as conn:
        updated = wrong_questions_repository.set_reviewed(conn, entry_ids, candidate_id, now)

    logger.info("wrong_questions_reviewed", user_id=candidate_id, requested=len(entry_ids), updated=updated)
    return updated


def remove_wrong_question(db: Database, candidate_id: int, question_id: int) -> bool:
    """Drop an entry once the candidate answers the question correctly outside grading."""
    with db.connect() as conn:
        removed = wrong_questions_repository.delete_entry(conn, candidate_id, question_id)

    logger.info("wrong_question_removed", user_id=candidate_id, question_id=question_id, removed=removed)
    return removed
