"""Deadline sweeps.

Batch jobs meant to run periodically (e.g. daily from cron through the
`assess` CLI):

- Reminder sweep: one reminder per assignment and threshold (3 days,
  1 day, the deadline day) for unsubmitted assignments
- Overdue sweep: mark unsubmitted assignments past their deadline as
  overdue (once per assignment) and open the makeup workflow for them

Each assignment is processed and persisted on its own, so a sweep that
stops halfway only needs to be run again.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from assessment.config.app_config import AppConfig, load_app_config
from assessment.core.errors import InvalidTransitionError, NotFoundError
from assessment.core.makeup_workflow import create_makeup_for_overdue
from assessment.core.notifications import (
    DatabaseNotificationSink,
    NotificationSink,
    deadline_reminder_notice,
    deliver,
    exam_overdue_notice,
)
from assessment.db import assignments_repository, exams_repository, makeup_repository, notifications_repository
from assessment.db.assignments_repository import AssignmentRecord
from assessment.db.database import Database
from assessment.utils.time_utils import days_overdue, days_until, to_iso, utc_now

logger = structlog.get_logger(__name__)

UNSUBMITTED = ("pending", "in_progress")


def reminder_type_for(days_left: int) -> str:
    """Reminder type recorded for a threshold: 'today', '1day', '3days'..."""
    if days_left == 0:
        return "today"
    if days_left == 1:
        return "1day"
    return f"{days_left}days"


# =============================================================================
# REMINDERS
# =============================================================================


def run_reminder_sweep(
    db: Database,
    sink: NotificationSink | None = None,
    now: datetime | None = None,
    config: AppConfig | None = None,
) -> dict[str, int]:
    """Send deadline reminders that are due today and not yet sent.

    The (assignment, reminder type) record is written only after the sink
    accepted the notice.

    Returns:
        {"sent": number of reminders sent by this run}
    """
    config = config or load_app_config()
    sink = sink if sink is not None else DatabaseNotificationSink(db)
    now = now or utc_now()
    thresholds = set(config.reminders.thresholds_days)

    with db.connect() as conn:
        assignments = assignments_repository.list_unsubmitted_with_deadline(conn)

    sent = 0
    for assignment in assignments:
        days_left = days_until(assignment.deadline, now)
        if days_left not in thresholds:
            continue
        reminder_type = reminder_type_for(days_left)

        with db.connect() as conn:
            if notifications_repository.has_reminder(conn, assignment.id, reminder_type):
                continue
            exam = exams_repository.get_exam(conn, assignment.exam_id)

        notice = deadline_reminder_notice(
            user_id=assignment.user_id,
            exam_id=assignment.exam_id,
            exam_title=exam.title if exam is not None else f"Exam {assignment.exam_id}",
            assignment_id=assignment.id,
            reminder_type=reminder_type,
            days_left=days_left,
            deadline=assignment.deadline,
        )
        delivered = deliver(sink, notice)

        with db.connect() as conn:
            recorded = notifications_repository.record_reminder(conn, assignment.id, reminder_type, now)

        if delivered and recorded:
            sent += 1
            logger.info("reminder_sent", assignment_id=assignment.id, reminder_type=reminder_type)

    logger.info("reminder_sweep_finished", checked=len(assignments), sent=sent)
    return {"sent": sent}


# =============================================================================
# OVERDUE
# =============================================================================


def _mark_overdue(
    db: Database, assignment_id: int, performed_by: int | None, now: datetime
) -> tuple[AssignmentRecord, int, bool]:
    with db.connect() as conn:
        assignment = assignments_repository.get_assignment(conn, assignment_id)
        if assignment is None:
            raise NotFoundError("assignment", assignment_id)
        if assignment.status not in UNSUBMITTED:
            raise InvalidTransitionError(f"Assignment {assignment_id} was already {assignment.status}")
        if assignment.deadline is None or assignment.deadline >= now:
            raise InvalidTransitionError(f"Assignment {assignment_id} is not past its deadline")

        overdue_by = days_overdue(assignment.deadline, now)
        marked = notifications_repository.insert_overdue_action(
            conn,
            assignment_id=assignment_id,
            exam_id=assignment.exam_id,
            user_id=assignment.user_id,
            action_type="marked_overdue",
            details={"status": assignment.status, "deadline": to_iso(assignment.deadline)},
            now=now,
            overdue_by=overdue_by,
            original_deadline=assignment.deadline,
            performed_by=performed_by,
        )

    if marked:
        logger.info("assignment_marked_overdue", assignment_id=assignment_id, overdue_days=overdue_by)
    return assignment, overdue_by, marked


def mark_assignment_overdue(
    db: Database,
    assignment_id: int,
    performed_by: int | None = None,
    now: datetime | None = None,
) -> int:
    """Record that an unsubmitted assignment missed its deadline.

    Marking twice records a single action.

    Returns:
        Whole days the assignment is overdue

    Raises:
        NotFoundError: If the assignment does not exist
        InvalidTransitionError: If it was submitted or its deadline has not passed
    """
    _, overdue_by, _ = _mark_overdue(db, assignment_id, performed_by, now or utc_now())
    return overdue_by


def run_overdue_sweep(
    db: Database,
    sink: NotificationSink | None = None,
    now: datetime | None = None,
    config: AppConfig | None = None,
) -> dict[str, int]:
    """Mark overdue assignments and feed them into the makeup workflow.

    Returns:
        {"marked": assignments newly marked, "makeups_created": makeup records created}
    """
    config = config or load_app_config()
    sink = sink if sink is not None else DatabaseNotificationSink(db)
    now = now or utc_now()

    with db.connect() as conn:
        overdue = assignments_repository.list_overdue(conn, now)

    marked = 0
    makeups_created = 0
    for candidate in overdue:
        assignment, overdue_by, newly_marked = _mark_overdue(db, candidate.id, None, now)
        if newly_marked:
            marked += 1

        with db.connect() as conn:
            exam = exams_repository.get_exam(conn, assignment.exam_id)
            had_makeup = makeup_repository.get_makeup_by_original(conn, assignment.id) is not None

        deliver(
            sink,
            exam_overdue_notice(
                user_id=assignment.user_id,
                exam_id=assignment.exam_id,
                exam_title=exam.title if exam is not None else f"Exam {assignment.exam_id}",
                assignment_id=assignment.id,
                overdue_days=overdue_by,
            ),
        )

        if config.makeup.create_on_overdue and not had_makeup:
            if create_makeup_for_overdue(db, assignment.id, sink=sink, config=config, now=now) is not None:
                makeups_created += 1

    logger.info("overdue_sweep_finished", checked=len(overdue), marked=marked, makeups_created=makeups_created)
    return {"marked": marked, "makeups_created": makeups_created}


def list_overdue_assignments(db: Database, now: datetime | None = None) -> list[AssignmentRecord]:
    """Unsubmitted assignments whose deadline has passed."""
    with db.connect() as conn:
        return assignments_repository.list_overdue(conn, now or utc_now())


def extend_deadline(
    db: Database,
    assignment_id: int,
    new_deadline: datetime,
    performed_by: int | None = None,
    now: datetime | None = None,
) -> AssignmentRecord:
    """Move an unsubmitted assignment's deadline and record the extension.

    Raises:
        NotFoundError: If the assignment does not exist
        InvalidTransitionError: If it was submitted or the new deadline is not in the future
    """
    now = now or utc_now()
    with db.connect() as conn:
        assignment = assignments_repository.get_assignment(conn, assignment_id)
        if assignment is None:
            raise NotFoundError("assignment", assignment_id)
        if assignment.status not in UNSUBMITTED:
            raise InvalidTransitionError(f"Assignment {assignment_id} was already {assignment.status}")
        if new_deadline <= now:
            raise InvalidTransitionError("New deadline must be in the future")

        assignments_repository.update_deadline(conn, assignment_id, new_deadline, now)
        notifications_repository.insert_overdue_action(
            conn,
            assignment_id=assignment_id,
            exam_id=assignment.exam_id,
            user_id=assignment.user_id,
            action_type="deadline_extended",
            details={"original_deadline": to_iso(assignment.deadline), "new_deadline": to_iso(new_deadline)},
            now=now,
            original_deadline=assignment.deadline,
            new_deadline=new_deadline,
            performed_by=performed_by,
        )
        updated = assignments_repository.get_assignment(conn, assignment_id)

    logger.info(
        "deadline_extended",
        assignment_id=assignment_id,
        original_deadline=to_iso(assignment.deadline),
        new_deadline=to_iso(new_deadline),
    )
    return updated
