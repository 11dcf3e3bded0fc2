"""Makeup-exam workflow.

Responsibilities:
- Create one makeup record per failed, non-practice assignment
- Derive learning recommendations from the assignment's wrong answers
- Notify the candidate and all staff accounts
- Schedule makeup attempts as new assignments, complete and expire them

Every step is idempotent: the makeup record is unique per originating
assignment, recommendations are unique per (assignment, type) and every
notice carries an idempotency key. Re-running `trigger_makeup` after a
partial failure therefore only fills in the missing steps.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any

import structlog

from assessment.config.app_config import AppConfig, load_app_config
from assessment.core.errors import (
    InvalidTransitionError,
    MakeupAttemptsExceededError,
    NotFoundError,
)
from assessment.core.notifications import (
    DatabaseNotificationSink,
    NotificationSink,
    deliver,
    exam_failed_notice,
    makeup_candidate_notice,
    makeup_completed_notice,
    makeup_expired_notice,
    makeup_scheduled_notice,
)
from assessment.db import (
    assignments_repository,
    exams_repository,
    makeup_repository,
    scores_repository,
    submissions_repository,
    users_repository,
)
from assessment.db.database import Database
from assessment.db.makeup_repository import MakeupRecord, RecommendationRecord
from assessment.db.submissions_repository import WrongAnswer
from assessment.utils.time_utils import to_iso, utc_now

logger = structlog.get_logger(__name__)

MAKEUP_STATUSES = ("pending", "scheduled", "completed", "expired")


def _candidate_name(user: users_repository.UserRecord | None, user_id: int) -> str:
    return user.name if user is not None else f"Candidate {user_id}"


def _notify_staff(
    db: Database,
    sink: NotificationSink,
    candidate_id: int,
    exam: exams_repository.ExamRecord,
    assignment_id: int,
    makeup_id: int,
    percentage: int,
) -> int:
    with db.connect() as conn:
        staff_ids = users_repository.list_staff_ids(conn)
        candidate = users_repository.get_user(conn, candidate_id)

    sent = 0
    for staff_id in staff_ids:
        notice = makeup_candidate_notice(
            staff_id=staff_id,
            candidate_name=_candidate_name(candidate, candidate_id),
            exam_id=exam.id,
            exam_title=exam.title,
            assignment_id=assignment_id,
            makeup_id=makeup_id,
            percentage=percentage,
        )
        if deliver(sink, notice):
            sent += 1
    return sent


# =============================================================================
# RECOMMENDATIONS
# =============================================================================


def build_recommendations(wrong: list[WrongAnswer], weak_topic_limit: int = 3) -> list[dict[str, Any]]:
    """Turn wrong answers into recommendation payloads.

    Categories are ranked by number of misses (ties keep first-seen order)
    and the top `weak_topic_limit` become weak topics. Returns an empty list
    when there are no wrong answers.
    """
    if not wrong:
        return []

    question_ids = [w.question_id for w in wrong]
    counts: Counter[int] = Counter()
    names: dict[int, str | None] = {}
    per_category: dict[int, list[int]] = {}
    for w in wrong:
        if w.category_id is None:
            continue
        counts[w.category_id] += 1
        names.setdefault(w.category_id, w.category_name)
        per_category.setdefault(w.category_id, []).append(w.question_id)

    recommendations: list[dict[str, Any]] = []

    weak = counts.most_common(weak_topic_limit)
    if weak:
        recommendations.append(
            {
                "recommendation_type": "weak_topics",
                "title": "Topics to strengthen",
                "content": {
                    "summary": "Based on your answers, these topics need more work:",
                    "topics": [
                        {
                            "category_id": category_id,
                            "category_name": names[category_id],
                            "wrong_count": n,
                            "question_ids": per_category[category_id],
                        }
                        for category_id, n in weak
                    ],
                },
                "related_question_ids": question_ids,
                "related_category_ids": [category_id for category_id, _ in weak],
                "priority": "high",
            }
        )

    recommendations.append(
        {
            "recommendation_type": "practice_questions",
            "title": "Questions to practise",
            "content": {
                "summary": f"Practise these {len(question_ids)} questions again before the makeup.",
                "question_ids": question_ids,
            },
            "related_question_ids": question_ids,
            "related_category_ids": None,
            "priority": "medium",
        }
    )
    return recommendations


def _generate_recommendations(
    db: Database, assignment_id: int, user_id: int, makeup_id: int, weak_topic_limit: int, now: datetime
) -> int:
    with db.connect() as conn:
        wrong = submissions_repository.list_wrong_answers(conn, assignment_id)
        created = 0
        for rec in build_recommendations(wrong, weak_topic_limit):
            if makeup_repository.insert_recommendation_if_absent(
                conn,
                user_id=user_id,
                assignment_id=assignment_id,
                makeup_exam_id=makeup_id,
                recommendation_type=rec["recommendation_type"],
                title=rec["title"],
                content=rec["content"],
                related_question_ids=rec["related_question_ids"],
                related_category_ids=rec["related_category_ids"],
                priority=rec["priority"],
                now=now,
            ):
                created += 1
    return created


# =============================================================================
# TRIGGER / COMPLETE
# =============================================================================


def trigger_makeup(
    db: Database,
    assignment_id: int,
    sink: NotificationSink | None = None,
    config: AppConfig | None = None,
    now: datetime | None = None,
) -> int | None:
    """Open the makeup workflow for a failed assignment.

    Does nothing for passed or practice assignments, or for assignments that
    are themselves makeup attempts.

    Returns:
        ID of the makeup record, or None if no makeup applies

    Raises:
        NotFoundError: If the assignment or its exam does not exist
        InvalidTransitionError: If the assignment has no score yet
    """
    config = config or load_app_config()
    sink = sink if sink is not None else DatabaseNotificationSink(db)
    now = now or utc_now()

    with db.connect() as conn:
        assignment = assignments_repository.get_assignment(conn, assignment_id)
        if assignment is None:
            raise NotFoundError("assignment", assignment_id)
        exam = exams_repository.get_exam(conn, assignment.exam_id)
        if exam is None:
            raise NotFoundError("exam", assignment.exam_id)
        score = scores_repository.get_score(conn, assignment_id)
        if score is None:
            raise InvalidTransitionError(f"Assignment {assignment_id} has not been graded")

        if score.passed or assignment.is_practice or assignment.is_makeup_attempt:
            return None

        makeup_id, created = makeup_repository.insert_makeup_if_absent(
            conn,
            original_assignment_id=assignment_id,
            user_id=assignment.user_id,
            exam_id=exam.id,
            original_score=score.percentage,
            max_attempts=config.makeup.max_attempts,
            reason=f"Scored {score.percentage}%, below the passing score of {exam.passing_score}%",
            now=now,
        )

    if created:
        logger.info("makeup_created", makeup_id=makeup_id, assignment_id=assignment_id, user_id=assignment.user_id)
    else:
        logger.debug("makeup_exists", makeup_id=makeup_id, assignment_id=assignment_id)

    deliver(
        sink,
        exam_failed_notice(
            user_id=assignment.user_id,
            exam_id=exam.id,
            exam_title=exam.title,
            assignment_id=assignment_id,
            makeup_id=makeup_id,
            percentage=score.percentage,
        ),
    )
    _generate_recommendations(db, assignment_id, assignment.user_id, makeup_id, config.makeup.weak_topic_limit, now)
    _notify_staff(db, sink, assignment.user_id, exam, assignment_id, makeup_id, score.percentage)

    return makeup_id


def complete_makeup(
    db: Database,
    makeup_id: int,
    makeup_score: int,
    passed: bool,
    sink: NotificationSink | None = None,
    now: datetime | None = None,
) -> MakeupRecord:
    """Record the graded makeup attempt and mark the record completed.

    Raises:
        NotFoundError: If the makeup record does not exist
    """
    sink = sink if sink is not None else DatabaseNotificationSink(db)
    now = now or utc_now()

    with db.connect() as conn:
        makeup = makeup_repository.get_makeup(conn, makeup_id)
        if makeup is None:
            raise NotFoundError("makeup exam", makeup_id)
        exam = exams_repository.get_exam(conn, makeup.exam_id)
        makeup_repository.mark_completed(conn, makeup_id, makeup_score, now)
        makeup = makeup_repository.get_makeup(conn, makeup_id)

    logger.info("makeup_completed", makeup_id=makeup_id, makeup_score=makeup_score, passed=passed)
    deliver(
        sink,
        makeup_completed_notice(
            user_id=makeup.user_id,
            exam_id=makeup.exam_id,
            exam_title=exam.title if exam is not None else f"Exam {makeup.exam_id}",
            makeup_id=makeup_id,
            makeup_count=makeup.makeup_count,
            makeup_score=makeup_score,
            passed=passed,
        ),
    )
    return makeup


# =============================================================================
# SCHEDULING / EXPIRY
# =============================================================================


def schedule_makeup(
    db: Database,
    makeup_id: int,
    deadline: datetime,
    notes: str | None = None,
    scheduled_by: int | None = None,
    sink: NotificationSink | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Issue a makeup attempt as a new pending assignment.

    Pending records schedule their first attempt. A completed record (the
    candidate failed the makeup again) schedules the next attempt, which
    increments the attempt counter first. The record keeps its status when
    the attempt limit is exceeded.

    Returns:
        {"assignment_id": new assignment ID}

    Raises:
        NotFoundError: If the makeup record does not exist
        InvalidTransitionError: If the record is scheduled or expired, or the exam is unavailable
        MakeupAttemptsExceededError: If the attempt would exceed max_attempts
    """
    sink = sink if sink is not None else DatabaseNotificationSink(db)
    now = now or utc_now()

    with db.connect() as conn:
        makeup = makeup_repository.get_makeup(conn, makeup_id)
        if makeup is None:
            raise NotFoundError("makeup exam", makeup_id)
        if makeup.status not in ("pending", "completed"):
            raise InvalidTransitionError(f"Makeup {makeup_id} is {makeup.status} and cannot be scheduled")

        makeup_count = makeup.makeup_count + 1 if makeup.status == "completed" else makeup.makeup_count
        if makeup_count > makeup.max_attempts:
            raise MakeupAttemptsExceededError(makeup_id, makeup_count, makeup.max_attempts)

        exam = exams_repository.get_exam(conn, makeup.exam_id)
        if exam is None:
            raise NotFoundError("exam", makeup.exam_id)
        if not exam.is_available:
            raise InvalidTransitionError(f"Exam {exam.id} is {exam.lifecycle}; makeups cannot be scheduled")

        new_assignment_id = assignments_repository.insert_assignment(
            conn,
            exam_id=exam.id,
            user_id=makeup.user_id,
            assigned_at=now,
            deadline=deadline,
            makeup_exam_id=makeup_id,
        )
        makeup_repository.mark_scheduled(
            conn,
            makeup_id,
            makeup_assignment_id=new_assignment_id,
            makeup_count=makeup_count,
            deadline=deadline,
            notes=notes,
            scheduled_by=scheduled_by,
            now=now,
        )

    logger.info(
        "makeup_scheduled",
        makeup_id=makeup_id,
        assignment_id=new_assignment_id,
        makeup_count=makeup_count,
        deadline=to_iso(deadline),
    )
    deliver(
        sink,
        makeup_scheduled_notice(
            user_id=makeup.user_id,
            exam_id=exam.id,
            exam_title=exam.title,
            makeup_id=makeup_id,
            makeup_assignment_id=new_assignment_id,
            makeup_count=makeup_count,
            deadline=deadline,
        ),
    )
    return {"assignment_id": new_assignment_id}


def expire_makeups(
    db: Database,
    sink: NotificationSink | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Expire scheduled makeups whose deadline passed before they were graded.

    Each record is expired in its own transaction; re-running the sweep is safe.

    Returns:
        {"expired": number of records expired by this run}
    """
    sink = sink if sink is not None else DatabaseNotificationSink(db)
    now = now or utc_now()

    with db.connect() as conn:
        scheduled = makeup_repository.list_makeups(conn, status="scheduled")

    expired = 0
    for makeup in scheduled:
        if makeup.makeup_deadline is None or makeup.makeup_deadline >= now:
            continue

        with db.connect() as conn:
            if makeup.makeup_assignment_id is not None:
                linked = assignments_repository.get_assignment(conn, makeup.makeup_assignment_id)
                if linked is not None and linked.status == "graded":
                    continue
            if not makeup_repository.mark_expired(conn, makeup.id, now):
                continue
            exam = exams_repository.get_exam(conn, makeup.exam_id)

        expired += 1
        logger.info("makeup_expired", makeup_id=makeup.id, deadline=to_iso(makeup.makeup_deadline))
        deliver(
            sink,
            makeup_expired_notice(
                user_id=makeup.user_id,
                exam_id=makeup.exam_id,
                exam_title=exam.title if exam is not None else f"Exam {makeup.exam_id}",
                makeup_id=makeup.id,
            ),
        )

    return {"expired": expired}


def create_makeup_for_overdue(
    db: Database,
    assignment_id: int,
    sink: NotificationSink | None = None,
    config: AppConfig | None = None,
    now: datetime | None = None,
) -> int | None:
    """Open a makeup record for an assignment that missed its deadline.

    Returns:
        ID of the makeup record, or None for practice or makeup assignments
    """
    config = config or load_app_config()
    sink = sink if sink is not None else DatabaseNotificationSink(db)
    now = now or utc_now()

    with db.connect() as conn:
        assignment = assignments_repository.get_assignment(conn, assignment_id)
        if assignment is None:
            raise NotFoundError("assignment", assignment_id)
        exam = exams_repository.get_exam(conn, assignment.exam_id)
        if exam is None:
            raise NotFoundError("exam", assignment.exam_id)
        if assignment.is_practice or assignment.is_makeup_attempt:
            return None

        makeup_id, created = makeup_repository.insert_makeup_if_absent(
            conn,
            original_assignment_id=assignment_id,
            user_id=assignment.user_id,
            exam_id=exam.id,
            original_score=0,
            max_attempts=config.makeup.max_attempts,
            reason=f"Not submitted before the deadline ({to_iso(assignment.deadline)})",
            now=now,
        )

    if created:
        logger.info("makeup_created", makeup_id=makeup_id, assignment_id=assignment_id, reason="overdue")
    _notify_staff(db, sink, assignment.user_id, exam, assignment_id, makeup_id, 0)
    return makeup_id


# =============================================================================
# QUERIES
# =============================================================================


def get_makeup(db: Database, makeup_id: int) -> MakeupRecord:
    """Get a makeup record.

    Raises:
        NotFoundError: If it does not exist
    """
    with db.connect() as conn:
        makeup = makeup_repository.get_makeup(conn, makeup_id)
    if makeup is None:
        raise NotFoundError("makeup exam", makeup_id)
    return makeup


def list_pending_makeups(db: Database) -> list[MakeupRecord]:
    """Makeup records waiting to be scheduled, newest first."""
    with db.connect() as conn:
        return makeup_repository.list_makeups(conn, status="pending")


def get_makeup_history(db: Database, candidate_id: int) -> list[MakeupRecord]:
    """All makeup records of a candidate, newest first."""
    with db.connect() as conn:
        return makeup_repository.list_makeups(conn, user_id=candidate_id)


def makeup_stats(db: Database) -> dict[str, int]:
    """Number of makeup records per status, plus the total."""
    with db.connect() as conn:
        counts = makeup_repository.count_by_status(conn)
    stats = {status: counts.get(status, 0) for status in MAKEUP_STATUSES}
    stats["total"] = sum(stats.values())
    return stats


def list_recommendations(db: Database, candidate_id: int) -> list[RecommendationRecord]:
    """Learning recommendations of a candidate, highest priority first."""
    with db.connect() as conn:
        return makeup_repository.list_recommendations(conn, candidate_id)


def mark_recommendation_read(db: Database, recommendation_id: int, now: datetime | None = None) -> None:
    """Flag a recommendation as read.

    Raises:
        NotFoundError: If it does not exist
    """
    with db.connect() as conn:
        if not makeup_repository.mark_recommendation_read(conn, recommendation_id, now or utc_now()):
            raise NotFoundError("learning recommendation", recommendation_id)
