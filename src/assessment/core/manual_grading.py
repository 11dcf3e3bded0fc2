"""Manual grading.

Staff can override the score of a single submission (typically a short
answer the model could not grade) and then recalculate the assignment's
score from the stored submission scores. Recalculation upserts the same
score row as automatic grading, records misses in the wrong-question
ledger and runs the same post-grading cascade.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from assessment.config.app_config import AppConfig, load_app_config
from assessment.core.answer_normalizer import OBJECTIVE_TYPES
from assessment.core.errors import InvalidTransitionError, NotFoundError
from assessment.core.exam_grader import (
    GRADABLE_STATUSES,
    AssignmentGradeResult,
    QuestionDetail,
    compute_percentage,
    run_post_grading,
)
from assessment.core.notifications import DatabaseNotificationSink, NotificationSink
from assessment.core.wrong_questions import record_assignment_misses
from assessment.db import assignments_repository, exams_repository, scores_repository, submissions_repository
from assessment.db.database import Database
from assessment.db.submissions_repository import SubmissionRecord
from assessment.utils.time_utils import utc_now

logger = structlog.get_logger(__name__)


def update_manual_score(
    db: Database,
    submission_id: int,
    score: int,
    comment: str | None = None,
    config: AppConfig | None = None,
    now: datetime | None = None,
) -> SubmissionRecord:
    """Set a human-assigned score on one submission.

    Objective answers count as correct only with full points; subjective
    answers when score / points reaches the pass quality.

    Raises:
        NotFoundError: If the submission, its assignment or its exam question is missing
        InvalidTransitionError: If the assignment is not submitted or the score is out of range
    """
    config = config or load_app_config()
    now = now or utc_now()

    with db.connect() as conn:
        submission = submissions_repository.get_submission(conn, submission_id)
        if submission is None:
            raise NotFoundError("submission", submission_id)
        assignment = assignments_repository.get_assignment(conn, submission.assignment_id)
        if assignment is None:
            raise NotFoundError("assignment", submission.assignment_id)
        if assignment.status not in GRADABLE_STATUSES:
            raise InvalidTransitionError(f"Assignment {assignment.id} is {assignment.status}; it cannot be graded yet")

        question = next(
            (q for q in exams_repository.get_exam_questions(conn, assignment.exam_id) if q.question_id == submission.question_id),
            None,
        )
        if question is None:
            raise NotFoundError("question", submission.question_id)

        points = question.points if question.points is not None else config.grading.default_points
        if not 0 <= score <= points:
            raise InvalidTransitionError(f"Score {score} is outside 0..{points} for question {question.question_id}")

        if question.type in OBJECTIVE_TYPES:
            is_correct = score == points
        else:
            is_correct = score * 100 >= config.grading.pass_quality * points

        submissions_repository.write_manual_score(conn, submission_id, is_correct, score, comment, now)
        updated = submissions_repository.get_submission(conn, submission_id)

    logger.info("manual_score_updated", submission_id=submission_id, score=score, is_correct=is_correct)
    return updated


def recalculate_score(
    db: Database,
    assignment_id: int,
    graded_by: int | None,
    feedback: str | None = None,
    config: AppConfig | None = None,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> AssignmentGradeResult:
    """Re-sum stored submission scores and publish them as the assignment score.

    Raises:
        NotFoundError: If the assignment or exam does not exist
        InvalidTransitionError: If the assignment is not submitted or graded
    """
    config = config or load_app_config()
    sink = sink if sink is not None else DatabaseNotificationSink(db)
    now = now or utc_now()

    with db.connect() as conn:
        assignment = assignments_repository.get_assignment(conn, assignment_id)
        if assignment is None:
            raise NotFoundError("assignment", assignment_id)
        if assignment.status not in GRADABLE_STATUSES:
            raise InvalidTransitionError(f"Assignment {assignment_id} is {assignment.status}; it cannot be graded yet")
        exam = exams_repository.get_exam(conn, assignment.exam_id)
        if exam is None:
            raise NotFoundError("exam", assignment.exam_id)

        stored = {s.question_id: s for s in submissions_repository.get_submissions(conn, assignment_id)}
        details: list[QuestionDetail] = []
        for q in exams_repository.get_exam_questions(conn, exam.id):
            submission = stored.get(q.question_id)
            details.append(
                QuestionDetail(
                    question_id=q.question_id,
                    question_type=q.type,
                    answer=submission.answer if submission else "",
                    is_correct=bool(submission and submission.is_correct),
                    score=(submission.score or 0) if submission else 0,
                    max_score=q.points if q.points is not None else config.grading.default_points,
                    ai_evaluation=submission.ai_evaluation if submission else None,
                )
            )

        total_score = sum(d.score for d in details)
        max_score = sum(d.max_score for d in details)
        percentage = compute_percentage(total_score, max_score)
        passed = percentage >= exam.passing_score

        # Questions never scored (blank or not yet graded) are stored as 0 points, incorrect.
        for d in details:
            submission = stored.get(d.question_id)
            if submission is None or submission.is_correct is None:
                submissions_repository.write_grade(
                    conn, assignment_id, d.question_id, False, d.score, d.ai_evaluation, now
                )

        assignments_repository.compare_and_set_status(conn, assignment_id, GRADABLE_STATUSES, "graded", now)
        scores_repository.upsert_score(
            conn,
            assignment_id,
            total_score=total_score,
            max_score=max_score,
            percentage=percentage,
            passed=passed,
            graded_at=now,
            graded_by=graded_by,
            feedback=feedback,
        )
        misses = record_assignment_misses(conn, assignment, now)

    logger.info(
        "score_recalculated",
        assignment_id=assignment_id,
        graded_by=graded_by,
        total_score=total_score,
        percentage=percentage,
        passed=passed,
        misses_recorded=misses,
    )

    result = AssignmentGradeResult(
        assignment_id=assignment_id,
        exam_id=exam.id,
        user_id=assignment.user_id,
        total_score=total_score,
        max_score=max_score,
        percentage=percentage,
        passed=passed,
        graded_at=now,
        details=details,
    )
    result.makeup_exam_id = run_post_grading(
        db, assignment, exam, percentage, passed, now, sink=sink, config=config, now=now
    )
    return result
