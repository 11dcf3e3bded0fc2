"""Exam grading orchestrator.

Responsibilities:
- Grade every question of a submitted assignment with the grader for its type
- Treat unanswered questions as blank (0 points, incorrect)
- Aggregate total/max score, percentage and pass/fail
- Persist submission grades, the assignment's single score row and the
  `graded` status in one transaction
- Run the post-grading cascade: makeup completion or trigger and the
  score notice

Grading is all-or-nothing and safe to retry. Model calls happen before the
write transaction; the write transaction starts with a conditional status
update that takes the write lock, so two concurrent re-grades of the same
assignment are applied one after the other, never interleaved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from assessment.config.app_config import AppConfig, load_app_config
from assessment.core.errors import InvalidTransitionError, NotFoundError
from assessment.core.grader import QuestionGrade, grade_question, round_half_up
from assessment.core.makeup_workflow import complete_makeup, trigger_makeup
from assessment.core.notifications import (
    DatabaseNotificationSink,
    NotificationSink,
    deliver,
    score_published_notice,
)
from assessment.core.wrong_questions import record_assignment_misses
from assessment.db import (
    assignments_repository,
    exams_repository,
    makeup_repository,
    scores_repository,
    submissions_repository,
)
from assessment.db.assignments_repository import AssignmentRecord
from assessment.db.database import Database
from assessment.db.exams_repository import ExamRecord
from assessment.llm.client import LLMClient, LLMConfig
from assessment.utils.time_utils import to_iso, utc_now

logger = structlog.get_logger(__name__)

GRADABLE_STATUSES = ("submitted", "graded")


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class QuestionDetail:
    """Per-question line of a grading result."""

    question_id: int
    question_type: str
    answer: str
    is_correct: bool
    score: int
    max_score: int
    ai_evaluation: dict[str, Any] | None = None
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "question_id": self.question_id,
            "question_type": self.question_type,
            "answer": self.answer,
            "is_correct": self.is_correct,
            "score": self.score,
            "max_score": self.max_score,
        }
        if self.ai_evaluation is not None:
            result["ai_evaluation"] = self.ai_evaluation
        if self.degraded:
            result["degraded"] = True
        return result


@dataclass
class AssignmentGradeResult:
    """Outcome of grading one assignment."""

    assignment_id: int
    exam_id: int
    user_id: int
    total_score: int
    max_score: int
    percentage: int
    passed: bool
    graded_at: datetime
    details: list[QuestionDetail] = field(default_factory=list)
    makeup_exam_id: int | None = None

    @property
    def degraded_count(self) -> int:
        """Number of answers the model could not grade."""
        return sum(1 for d in self.details if d.degraded)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "assignment_id": self.assignment_id,
            "exam_id": self.exam_id,
            "user_id": self.user_id,
            "total_score": self.total_score,
            "max_score": self.max_score,
            "percentage": self.percentage,
            "passed": self.passed,
            "graded_at": to_iso(self.graded_at),
            "details": [d.to_dict() for d in self.details],
            "makeup_exam_id": self.makeup_exam_id,
            "degraded_count": self.degraded_count,
        }


# =============================================================================
# AGGREGATION
# =============================================================================


def compute_percentage(total_score: int, max_score: int) -> int:
    """Percentage rounded half-up, 0 for an exam worth no points."""
    if max_score <= 0:
        return 0
    return max(0, min(100, round_half_up(total_score * 100 / max_score)))


# =============================================================================
# POST-GRADING CASCADE
# =============================================================================


def run_post_grading(
    db: Database,
    assignment: AssignmentRecord,
    exam: ExamRecord,
    percentage: int,
    passed: bool,
    graded_at: datetime,
    sink: NotificationSink,
    config: AppConfig,
    now: datetime,
) -> int | None:
    """Apply the side effects of a finished grading run.

    - The latest attempt of a makeup record completes it; re-grading an
      earlier attempt leaves the record alone and never opens a new one
    - A failed non-practice assignment opens the makeup workflow
    - The candidate is told the score

    Returns:
        ID of the makeup record the assignment opened or belongs to, if any
    """
    makeup_exam_id: int | None = None

    if assignment.is_makeup_attempt:
        with db.connect() as conn:
            makeup = makeup_repository.get_makeup(conn, assignment.makeup_exam_id)

        makeup_exam_id = assignment.makeup_exam_id
        # Only the latest attempt updates the record; earlier attempts are history.
        if (
            makeup is not None
            and makeup.makeup_assignment_id == assignment.id
            and makeup.status in ("scheduled", "completed")
        ):
            complete_makeup(db, makeup.id, percentage, passed, sink=sink, now=now)
    elif not assignment.is_practice and not passed:
        makeup_exam_id = trigger_makeup(db, assignment.id, sink=sink, config=config, now=now)

    deliver(
        sink,
        score_published_notice(
            user_id=assignment.user_id,
            exam_id=exam.id,
            exam_title=exam.title,
            assignment_id=assignment.id,
            percentage=percentage,
            passed=passed,
            graded_at=graded_at,
        ),
    )
    return makeup_exam_id


# =============================================================================
# ORCHESTRATOR
# =============================================================================


def grade_assignment(
    db: Database,
    assignment_id: int,
    client: LLMClient | None = None,
    graded_by: int | None = None,
    config: AppConfig | None = None,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> AssignmentGradeResult:
    """Grade a submitted (or re-grade a graded) assignment.

    Args:
        db: Store handle
        assignment_id: Assignment to grade
        client: Language-model client for short answers (built from config when needed)
        graded_by: Grader identity; None means automatic
        config: Application config (loaded if not provided)
        now: Grading timestamp
        sink: Notification sink (database sink if not provided)

    Returns:
        AssignmentGradeResult with per-question detail

    Raises:
        NotFoundError: If the assignment or exam does not exist
        InvalidTransitionError: If the assignment is not submitted or graded
        ExternalUnavailableError: If the store or notification sink is unreachable
    """
    config = config or load_app_config()
    sink = sink if sink is not None else DatabaseNotificationSink(db)
    now = now or utc_now()

    logger.info("grading_assignment", assignment_id=assignment_id)

    # Read phase
    with db.connect() as conn:
        assignment = assignments_repository.get_assignment(conn, assignment_id)
        if assignment is None:
            raise NotFoundError("assignment", assignment_id)
        if assignment.status not in GRADABLE_STATUSES:
            raise InvalidTransitionError(
                f"Assignment {assignment_id} is {assignment.status}; only submitted assignments can be graded"
            )
        exam = exams_repository.get_exam(conn, assignment.exam_id)
        if exam is None:
            raise NotFoundError("exam", assignment.exam_id)
        questions = exams_repository.get_exam_questions(conn, exam.id)
        answers = {s.question_id: s.answer for s in submissions_repository.get_submissions(conn, assignment_id)}

    needs_model = any(q.type == "short_answer" and (answers.get(q.question_id) or "").strip() for q in questions)
    if client is None and needs_model:
        client = LLMClient(LLMConfig.from_app_config(config))

    # Grading phase (no transaction held)
    details: list[QuestionDetail] = []
    for q in questions:
        max_points = q.points if q.points is not None else config.grading.default_points
        answer = answers.get(q.question_id, "")
        grade: QuestionGrade = grade_question(
            question_id=q.question_id,
            question_type=q.type,
            question=q.question,
            correct_answer=q.correct_answer,
            answer=answer,
            max_points=max_points,
            client=client,
            pass_quality=config.grading.pass_quality,
            delimiter=config.grading.multi_answer_delimiter,
        )
        details.append(
            QuestionDetail(
                question_id=q.question_id,
                question_type=q.type,
                answer=answer,
                is_correct=grade.is_correct,
                score=grade.score,
                max_score=max_points,
                ai_evaluation=grade.ai_evaluation,
                degraded=grade.degraded,
            )
        )

    total_score = sum(d.score for d in details)
    max_score = sum(d.max_score for d in details)
    percentage = compute_percentage(total_score, max_score)
    passed = percentage >= exam.passing_score

    # Write phase
    with db.connect() as conn:
        first_grading = assignments_repository.compare_and_set_status(
            conn, assignment_id, ["submitted"], "graded", now
        )
        if not first_grading and not assignments_repository.compare_and_set_status(
            conn, assignment_id, ["graded"], "graded", now
        ):
            raise InvalidTransitionError(f"Assignment {assignment_id} changed state during grading")

        for d in details:
            submissions_repository.write_grade(
                conn, assignment_id, d.question_id, d.is_correct, d.score, d.ai_evaluation, now
            )
        scores_repository.upsert_score(
            conn,
            assignment_id,
            total_score=total_score,
            max_score=max_score,
            percentage=percentage,
            passed=passed,
            graded_at=now,
            graded_by=graded_by,
        )
        record_assignment_misses(conn, assignment, now)

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

    logger.info(
        "assignment_graded",
        assignment_id=assignment_id,
        total_score=total_score,
        max_score=max_score,
        percentage=percentage,
        passed=passed,
        regrade=not first_grading,
        degraded=result.degraded_count,
    )

    result.makeup_exam_id = run_post_grading(
        db, assignment, exam, percentage, passed, now, sink=sink, config=config, now=now
    )
    return result
