"""Assignment state machine.

States: pending -> in_progress -> submitted -> graded

- pending -> in_progress: the candidate opens the exam; rejected once the
  deadline has passed
- in_progress -> submitted: explicit submission, or auto-submit when the
  exam's time limit elapsed; unanswered questions are graded as blank
- submitted -> graded: grading finished
- graded -> graded: re-grade, overwrites the score

Nothing moves backwards. Reopening an assignment is an administrative
override handled outside the engine.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

import structlog

from assessment.config.app_config import AppConfig, load_app_config
from assessment.core.errors import AssignmentOverdueError, InvalidTransitionError, NotFoundError
from assessment.db import assignments_repository, exams_repository, submissions_repository, users_repository
from assessment.db.assignments_repository import AssignmentRecord, AssignmentStatus
from assessment.db.database import Database
from assessment.db.exams_repository import ExamRecord
from assessment.utils.time_utils import to_iso, utc_now

logger = structlog.get_logger(__name__)

TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress"}),
    "in_progress": frozenset({"submitted"}),
    "submitted": frozenset({"graded"}),
    "graded": frozenset({"graded"}),
}


def can_transition(current: str, target: str) -> bool:
    """Whether the transition table allows current -> target."""
    return target in TRANSITIONS.get(current, frozenset())


def transition(assignment: AssignmentRecord, target: AssignmentStatus) -> AssignmentStatus:
    """Validate a status change for an assignment.

    Raises:
        InvalidTransitionError: If the table does not allow the change
    """
    if not can_transition(assignment.status, target):
        raise InvalidTransitionError(
            f"Assignment {assignment.id} cannot move from {assignment.status} to {target}"
        )
    return target


def time_limit_elapsed(assignment: AssignmentRecord, exam: ExamRecord, now: datetime) -> bool:
    """Whether an in-progress assignment ran past the exam's time limit."""
    if not exam.time_limit or assignment.start_time is None:
        return False
    return now >= assignment.start_time + timedelta(minutes=exam.time_limit)


def _load(conn, assignment_id: int) -> tuple[AssignmentRecord, ExamRecord]:
    assignment = assignments_repository.get_assignment(conn, assignment_id)
    if assignment is None:
        raise NotFoundError("assignment", assignment_id)
    exam = exams_repository.get_exam(conn, assignment.exam_id)
    if exam is None:
        raise NotFoundError("exam", assignment.exam_id)
    return assignment, exam


def get_assignment(db: Database, assignment_id: int) -> AssignmentRecord:
    """Get an assignment.

    Raises:
        NotFoundError: If it does not exist
    """
    with db.connect() as conn:
        assignment = assignments_repository.get_assignment(conn, assignment_id)
    if assignment is None:
        raise NotFoundError("assignment", assignment_id)
    return assignment


def assign_exam(
    db: Database,
    exam_id: int,
    candidate_id: int,
    deadline: datetime | None = None,
    is_practice: bool = False,
    now: datetime | None = None,
) -> AssignmentRecord:
    """Issue an exam to a candidate as a new pending assignment.

    Raises:
        NotFoundError: If the exam or candidate does not exist
        InvalidTransitionError: If the exam is archived or deleted
    """
    now = now or utc_now()
    with db.connect() as conn:
        exam = exams_repository.get_exam(conn, exam_id)
        if exam is None:
            raise NotFoundError("exam", exam_id)
        if not exam.is_available:
            raise InvalidTransitionError(f"Exam {exam_id} is {exam.lifecycle} and cannot be assigned")
        if users_repository.get_user(conn, candidate_id) is None:
            raise NotFoundError("user", candidate_id)

        assignment_id = assignments_repository.insert_assignment(
            conn, exam_id, candidate_id, assigned_at=now, deadline=deadline, is_practice=is_practice
        )
        assignment = assignments_repository.get_assignment(conn, assignment_id)

    logger.info(
        "exam_assigned",
        assignment_id=assignment_id,
        exam_id=exam_id,
        user_id=candidate_id,
        deadline=to_iso(deadline),
        is_practice=is_practice,
    )
    return assignment


def start_assignment(db: Database, assignment_id: int, now: datetime | None = None) -> AssignmentRecord:
    """Open an assignment for the candidate (pending -> in_progress).

    Starting an assignment that is already in progress resumes it.

    Raises:
        NotFoundError: If the assignment or exam does not exist
        AssignmentOverdueError: If the deadline has already passed
        InvalidTransitionError: If the assignment was submitted or the exam is unavailable
    """
    now = now or utc_now()
    with db.connect() as conn:
        assignment, exam = _load(conn, assignment_id)

        if assignment.status == "in_progress":
            logger.debug("assignment_resumed", assignment_id=assignment_id)
            return assignment

        transition(assignment, "in_progress")
        if not exam.is_available:
            raise InvalidTransitionError(f"Exam {exam.id} is {exam.lifecycle} and cannot be started")
        if assignment.deadline is not None and assignment.deadline < now:
            raise AssignmentOverdueError(assignment_id, to_iso(assignment.deadline))

        if not assignments_repository.compare_and_set_status(
            conn, assignment_id, ["pending"], "in_progress", now, start_time=now
        ):
            raise InvalidTransitionError(f"Assignment {assignment_id} changed state while starting")
        assignment = assignments_repository.get_assignment(conn, assignment_id)

    logger.info("assignment_started", assignment_id=assignment_id, exam_id=exam.id, user_id=assignment.user_id)
    return assignment


def submit_assignment(db: Database, assignment_id: int, now: datetime | None = None) -> AssignmentRecord:
    """Hand in an assignment (in_progress -> submitted).

    Raises:
        NotFoundError: If the assignment does not exist
        InvalidTransitionError: If the assignment is not in progress
    """
    now = now or utc_now()
    with db.connect() as conn:
        assignment, _ = _load(conn, assignment_id)
        transition(assignment, "submitted")
        if not assignments_repository.compare_and_set_status(
            conn, assignment_id, ["in_progress"], "submitted", now, submit_time=now
        ):
            raise InvalidTransitionError(f"Assignment {assignment_id} changed state while submitting")
        assignment = assignments_repository.get_assignment(conn, assignment_id)

    logger.info("assignment_submitted", assignment_id=assignment_id, user_id=assignment.user_id)
    return assignment


def save_answer(
    db: Database,
    assignment_id: int,
    question_id: int,
    answer: str | Iterable[str],
    config: AppConfig | None = None,
    now: datetime | None = None,
) -> int:
    """Store the candidate's answer to one question while the exam is open.

    A list of selected options is joined with the multi-answer delimiter.
    If the time limit already elapsed, the assignment is auto-submitted and
    the answer is rejected.

    Returns:
        Submission ID

    Raises:
        NotFoundError: If the assignment does not exist or the question is not in the exam
        InvalidTransitionError: If the assignment is not in progress or its time is up
    """
    config = config or load_app_config()
    now = now or utc_now()
    if not isinstance(answer, str):
        answer = config.grading.multi_answer_delimiter.join(answer)

    timed_out = False
    with db.connect() as conn:
        assignment, exam = _load(conn, assignment_id)
        if assignment.status != "in_progress":
            raise InvalidTransitionError(
                f"Answers can only be saved while in progress (assignment {assignment_id} is {assignment.status})"
            )
        question_ids = {q.question_id for q in exams_repository.get_exam_questions(conn, exam.id)}
        if question_id not in question_ids:
            raise NotFoundError("question", question_id)

        if time_limit_elapsed(assignment, exam, now):
            assignments_repository.compare_and_set_status(
                conn, assignment_id, ["in_progress"], "submitted", now, submit_time=now
            )
            timed_out = True
        else:
            submission_id = submissions_repository.save_answer(conn, assignment_id, question_id, answer, now)

    if timed_out:
        logger.info("assignment_auto_submitted", assignment_id=assignment_id, reason="answer_after_time_limit")
        raise InvalidTransitionError(f"Time limit of assignment {assignment_id} elapsed; it was submitted")

    logger.debug("answer_saved", assignment_id=assignment_id, question_id=question_id)
    return submission_id


def auto_submit_expired(db: Database, now: datetime | None = None) -> dict[str, int]:
    """Submit every in-progress assignment whose time limit elapsed.

    Returns:
        {"submitted": number of assignments submitted by this run}
    """
    now = now or utc_now()
    with db.connect() as conn:
        candidates = [
            (a, exams_repository.get_exam(conn, a.exam_id))
            for a in assignments_repository.list_in_progress(conn)
        ]

    submitted = 0
    for assignment, exam in candidates:
        if exam is None or not time_limit_elapsed(assignment, exam, now):
            continue
        with db.connect() as conn:
            moved = assignments_repository.compare_and_set_status(
                conn, assignment.id, ["in_progress"], "submitted", now, submit_time=now
            )
        if moved:
            submitted += 1
            logger.info("assignment_auto_submitted", assignment_id=assignment.id, time_limit=exam.time_limit)

    return {"submitted": submitted}
