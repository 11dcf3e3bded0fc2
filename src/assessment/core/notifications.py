"""Notice payloads and notification sinks.

The engine only produces notices; delivery belongs to a sink. Every notice
carries a stable idempotency key, and a sink must accept each key at most
once, so retried operations never notify twice.

Sinks:
- DatabaseNotificationSink: persists into the notifications table
- MemorySink: keeps notices in a list (tests, dry runs)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

import structlog

from assessment.core.errors import ExternalUnavailableError
from assessment.db import notifications_repository
from assessment.db.database import Database
from assessment.utils.time_utils import to_iso, utc_now

logger = structlog.get_logger(__name__)

NoticeType = Literal[
    "exam_failed",
    "makeup_candidate",
    "makeup_scheduled",
    "makeup_completed",
    "makeup_expired",
    "exam_deadline_reminder",
    "exam_overdue",
    "score_published",
]


@dataclass
class Notice:
    """A notification addressed to one recipient."""

    recipient_id: int
    type: NoticeType
    title: str
    content: str
    idempotency_key: str
    exam_id: int | None = None
    assignment_id: int | None = None
    makeup_exam_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "recipient_id": self.recipient_id,
            "type": self.type,
            "title": self.title,
            "content": self.content,
            "idempotency_key": self.idempotency_key,
            "exam_id": self.exam_id,
            "assignment_id": self.assignment_id,
            "makeup_exam_id": self.makeup_exam_id,
        }


class NotificationSink(Protocol):
    """Anything that accepts notices."""

    def send(self, notice: Notice) -> bool:
        """Deliver a notice. Returns False if its key was already delivered."""
        ...


class DatabaseNotificationSink:
    """Persist notices into the notifications table."""

    def __init__(self, db: Database):
        self.db = db

    def send(self, notice: Notice) -> bool:
        with self.db.connect() as conn:
            inserted = notifications_repository.insert_notification(
                conn,
                user_id=notice.recipient_id,
                notification_type=notice.type,
                title=notice.title,
                content=notice.content,
                idempotency_key=notice.idempotency_key,
                now=utc_now(),
                related_exam_id=notice.exam_id,
                related_assignment_id=notice.assignment_id,
                related_makeup_exam_id=notice.makeup_exam_id,
            )

        if inserted:
            logger.info("notice_sent", type=notice.type, recipient_id=notice.recipient_id, key=notice.idempotency_key)
        else:
            logger.debug("notice_duplicate", key=notice.idempotency_key)
        return inserted


@dataclass
class MemorySink:
    """In-memory sink that deduplicates on idempotency key."""

    notices: list[Notice] = field(default_factory=list)

    def send(self, notice: Notice) -> bool:
        if any(n.idempotency_key == notice.idempotency_key for n in self.notices):
            return False
        self.notices.append(notice)
        return True

    def of_type(self, notice_type: str) -> list[Notice]:
        """Notices of one type, in send order."""
        return [n for n in self.notices if n.type == notice_type]


# =============================================================================
# NOTICE BUILDERS
# =============================================================================


def exam_failed_notice(
    user_id: int, exam_id: int, exam_title: str, assignment_id: int, makeup_id: int, percentage: int
) -> Notice:
    return Notice(
        recipient_id=user_id,
        type="exam_failed",
        title=f"Exam not passed: {exam_title}",
        content=(
            f"You scored {percentage}% on '{exam_title}' and did not pass. "
            "A makeup exam will be arranged; review the recommended topics in the meantime."
        ),
        idempotency_key=f"exam_failed:{assignment_id}",
        exam_id=exam_id,
        assignment_id=assignment_id,
        makeup_exam_id=makeup_id,
    )


def makeup_candidate_notice(
    staff_id: int, candidate_name: str, exam_id: int, exam_title: str, assignment_id: int, makeup_id: int, percentage: int
) -> Notice:
    return Notice(
        recipient_id=staff_id,
        type="makeup_candidate",
        title=f"Makeup needed: {candidate_name}",
        content=f"{candidate_name} scored {percentage}% on '{exam_title}'. Please schedule a makeup exam.",
        idempotency_key=f"makeup_candidate:{assignment_id}:{staff_id}",
        exam_id=exam_id,
        assignment_id=assignment_id,
        makeup_exam_id=makeup_id,
    )


def makeup_scheduled_notice(
    user_id: int, exam_id: int, exam_title: str, makeup_id: int, makeup_assignment_id: int, makeup_count: int, deadline: datetime
) -> Notice:
    return Notice(
        recipient_id=user_id,
        type="makeup_scheduled",
        title=f"Makeup exam scheduled: {exam_title}",
        content=f"Makeup attempt {makeup_count} for '{exam_title}' is due by {to_iso(deadline)}.",
        idempotency_key=f"makeup_scheduled:{makeup_id}:{makeup_count}",
        exam_id=exam_id,
        assignment_id=makeup_assignment_id,
        makeup_exam_id=makeup_id,
    )


def makeup_completed_notice(
    user_id: int, exam_id: int, exam_title: str, makeup_id: int, makeup_count: int, makeup_score: int, passed: bool
) -> Notice:
    outcome = "passed" if passed else "did not pass"
    return Notice(
        recipient_id=user_id,
        type="makeup_completed",
        title=f"Makeup exam graded: {exam_title}",
        content=f"You scored {makeup_score}% on the makeup for '{exam_title}' and {outcome}.",
        idempotency_key=f"makeup_completed:{makeup_id}:{makeup_count}",
        exam_id=exam_id,
        makeup_exam_id=makeup_id,
    )


def makeup_expired_notice(user_id: int, exam_id: int, exam_title: str, makeup_id: int) -> Notice:
    return Notice(
        recipient_id=user_id,
        type="makeup_expired",
        title=f"Makeup exam expired: {exam_title}",
        content=f"The makeup deadline for '{exam_title}' passed before the exam was completed.",
        idempotency_key=f"makeup_expired:{makeup_id}",
        exam_id=exam_id,
        makeup_exam_id=makeup_id,
    )


def deadline_reminder_notice(
    user_id: int, exam_id: int, exam_title: str, assignment_id: int, reminder_type: str, days_left: int, deadline: datetime
) -> Notice:
    if days_left == 0:
        when = "today"
    elif days_left == 1:
        when = "in 1 day"
    else:
        when = f"in {days_left} days"
    return Notice(
        recipient_id=user_id,
        type="exam_deadline_reminder",
        title=f"Exam due {when}: {exam_title}",
        content=f"'{exam_title}' is due {when} ({to_iso(deadline)}). Please complete it before the deadline.",
        idempotency_key=f"reminder:{assignment_id}:{reminder_type}",
        exam_id=exam_id,
        assignment_id=assignment_id,
    )


def exam_overdue_notice(user_id: int, exam_id: int, exam_title: str, assignment_id: int, overdue_days: int) -> Notice:
    return Notice(
        recipient_id=user_id,
        type="exam_overdue",
        title=f"Exam overdue: {exam_title}",
        content=f"'{exam_title}' is {overdue_days} day(s) past its deadline and was marked overdue.",
        idempotency_key=f"exam_overdue:{assignment_id}",
        exam_id=exam_id,
        assignment_id=assignment_id,
    )


def score_published_notice(
    user_id: int, exam_id: int, exam_title: str, assignment_id: int, percentage: int, passed: bool, graded_at: datetime
) -> Notice:
    outcome = "passed" if passed else "did not pass"
    return Notice(
        recipient_id=user_id,
        type="score_published",
        title=f"Score published: {exam_title}",
        content=f"You scored {percentage}% on '{exam_title}' and {outcome}.",
        idempotency_key=f"score_published:{assignment_id}:{to_iso(graded_at)}",
        exam_id=exam_id,
        assignment_id=assignment_id,
    )


def deliver(sink: NotificationSink, notice: Notice) -> bool:
    """Send a notice, surfacing any sink failure as ExternalUnavailableError."""
    try:
        return sink.send(notice)
    except ExternalUnavailableError:
        raise
    except Exception as e:
        logger.error("notice_delivery_failed", type=notice.type, key=notice.idempotency_key, error=str(e))
        raise ExternalUnavailableError(f"Notification sink unavailable: {e}") from e
