"""Tests for the deadline sweeps."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from assessment.core.assignment_state import assign_exam, get_assignment, start_assignment, submit_assignment
from assessment.core.errors import ExternalUnavailableError, InvalidTransitionError, NotFoundError
from assessment.core.makeup_workflow import list_pending_makeups
from assessment.core.scheduler import (
    extend_deadline,
    list_overdue_assignments,
    mark_assignment_overdue,
    reminder_type_for,
    run_overdue_sweep,
    run_reminder_sweep,
)
from assessment.db import notifications_repository

from seed_data import CANDIDATE_ID, MATH_EXAM_ID, OTHER_CANDIDATE_ID


def _assign(db, now, deadline, user_id=CANDIDATE_ID):
    return assign_exam(db, MATH_EXAM_ID, user_id, deadline=deadline, now=now).id


class TestReminderType:
    """Tests for reminder_type_for."""

    @pytest.mark.parametrize("days,expected", [(0, "today"), (1, "1day"), (3, "3days"), (7, "7days")])
    def test_names(self, days, expected):
        """Thresholds map to stable reminder names."""
        assert reminder_type_for(days) == expected


class TestReminderSweep:
    """Tests for run_reminder_sweep."""

    def test_sends_each_threshold_once(self, db, sink, config, now):
        """Assignments due in 3 days, 1 day and today get one reminder each."""
        in_three = _assign(db, now, now + timedelta(days=3))
        in_one = _assign(db, now, now + timedelta(days=1))
        today = _assign(db, now, now + timedelta(hours=6))
        _assign(db, now, now + timedelta(days=2))

        assert run_reminder_sweep(db, sink=sink, now=now, config=config) == {"sent": 3}
        assert run_reminder_sweep(db, sink=sink, now=now, config=config) == {"sent": 0}

        keys = {n.idempotency_key for n in sink.of_type("exam_deadline_reminder")}
        assert keys == {f"reminder:{in_three}:3days", f"reminder:{in_one}:1day", f"reminder:{today}:today"}

    def test_next_threshold_sent_later(self, db, sink, config, now):
        """The same assignment gets a new reminder at the next threshold."""
        assignment_id = _assign(db, now, now + timedelta(days=3))

        run_reminder_sweep(db, sink=sink, now=now, config=config)
        result = run_reminder_sweep(db, sink=sink, now=now + timedelta(days=2), config=config)

        assert result == {"sent": 1}
        with db.connect() as conn:
            assert notifications_repository.has_reminder(conn, assignment_id, "3days")
            assert notifications_repository.has_reminder(conn, assignment_id, "1day")

    def test_submitted_assignments_skipped(self, db, sink, config, now):
        """Submitted assignments get no reminders."""
        assignment_id = _assign(db, now, now + timedelta(days=1))
        start_assignment(db, assignment_id, now=now)
        submit_assignment(db, assignment_id, now=now)

        assert run_reminder_sweep(db, sink=sink, now=now, config=config) == {"sent": 0}

    def test_failed_delivery_not_recorded(self, db, sink, config, now):
        """A reminder the sink rejected is retried by the next run."""
        assignment_id = _assign(db, now, now + timedelta(days=1))
        broken = MagicMock()
        broken.send.side_effect = RuntimeError("mail server down")

        with pytest.raises(ExternalUnavailableError):
            run_reminder_sweep(db, sink=broken, now=now, config=config)
        with db.connect() as conn:
            assert not notifications_repository.has_reminder(conn, assignment_id, "1day")

        assert run_reminder_sweep(db, sink=sink, now=now, config=config) == {"sent": 1}

    def test_custom_thresholds(self, db, sink, config, now):
        """Thresholds come from configuration."""
        config.reminders.thresholds_days = [7]
        _assign(db, now, now + timedelta(days=7))
        _assign(db, now, now + timedelta(days=1))

        assert run_reminder_sweep(db, sink=sink, now=now, config=config) == {"sent": 1}


class TestOverdueSweep:
    """Tests for run_overdue_sweep."""

    def test_marks_and_opens_makeup_once(self, db, sink, config, now, rows):
        """An unsubmitted assignment past its deadline is marked and gets a makeup, once."""
        assignment_id = _assign(db, now - timedelta(days=5), now - timedelta(days=2))
        _assign(db, now, now + timedelta(days=2), user_id=OTHER_CANDIDATE_ID)

        assert run_overdue_sweep(db, sink=sink, now=now, config=config) == {"marked": 1, "makeups_created": 1}
        assert run_overdue_sweep(db, sink=sink, now=now, config=config) == {"marked": 0, "makeups_created": 0}

        assert rows(db, "overdue_actions", "assignment_id = ?", (assignment_id,)) == 1
        assert [m.original_assignment_id for m in list_pending_makeups(db)] == [assignment_id]
        assert len(sink.of_type("exam_overdue")) == 1
        assert get_assignment(db, assignment_id).status == "pending"

    def test_makeup_creation_disabled(self, db, sink, config, now, rows):
        """Overdue makeups can be switched off."""
        config.makeup.create_on_overdue = False
        _assign(db, now - timedelta(days=5), now - timedelta(days=1))

        assert run_overdue_sweep(db, sink=sink, now=now, config=config) == {"marked": 1, "makeups_created": 0}
        assert rows(db, "makeup_exams") == 0

    def test_in_progress_counts_as_unsubmitted(self, db, sink, config, now):
        """An assignment started but not submitted in time is overdue too."""
        assignment_id = _assign(db, now - timedelta(days=5), now - timedelta(hours=1))
        start_assignment(db, assignment_id, now=now - timedelta(days=1))

        assert run_overdue_sweep(db, sink=sink, now=now, config=config)["marked"] == 1


class TestMarkOverdue:
    """Tests for mark_assignment_overdue and related helpers."""

    def test_returns_overdue_days(self, db, now):
        """Marking reports whole days overdue and records one action."""
        assignment_id = _assign(db, now - timedelta(days=5), now - timedelta(days=2, hours=3))

        assert mark_assignment_overdue(db, assignment_id, performed_by=1, now=now) == 2
        assert mark_assignment_overdue(db, assignment_id, now=now) == 2

        with db.connect() as conn:
            actions = notifications_repository.list_overdue_actions(conn, assignment_id=assignment_id)
        assert len(actions) == 1
        assert actions[0].action_type == "marked_overdue"

    def test_not_past_deadline(self, db, now):
        """Assignments still within their deadline cannot be marked."""
        assignment_id = _assign(db, now, now + timedelta(days=1))

        with pytest.raises(InvalidTransitionError):
            mark_assignment_overdue(db, assignment_id, now=now)

    def test_submitted_cannot_be_marked(self, db, now):
        """Submitted assignments are never overdue."""
        assignment_id = _assign(db, now - timedelta(days=3), now + timedelta(hours=1))
        start_assignment(db, assignment_id, now=now)
        submit_assignment(db, assignment_id, now=now)

        with pytest.raises(InvalidTransitionError):
            mark_assignment_overdue(db, assignment_id, now=now + timedelta(days=1))

    def test_unknown_assignment(self, db, now):
        """Unknown assignments raise NotFoundError."""
        with pytest.raises(NotFoundError):
            mark_assignment_overdue(db, 999, now=now)

    def test_list_overdue(self, db, now):
        """Only unsubmitted assignments past their deadline are listed."""
        overdue = _assign(db, now - timedelta(days=3), now - timedelta(days=1))
        _assign(db, now, now + timedelta(days=1))
        _assign(db, now, None)

        assert [a.id for a in list_overdue_assignments(db, now=now)] == [overdue]


class TestExtendDeadline:
    """Tests for extend_deadline."""

    def test_extends_and_records(self, db, now):
        """The new deadline is stored and the extension recorded."""
        assignment_id = _assign(db, now - timedelta(days=3), now - timedelta(days=1))
        new_deadline = now + timedelta(days=3)

        updated = extend_deadline(db, assignment_id, new_deadline, performed_by=1, now=now)

        assert updated.deadline == new_deadline
        assert list_overdue_assignments(db, now=now) == []
        with db.connect() as conn:
            actions = notifications_repository.list_overdue_actions(conn, assignment_id=assignment_id)
        assert [a.action_type for a in actions] == ["deadline_extended"]

    def test_deadline_must_be_future(self, db, now):
        """Extending into the past is rejected."""
        assignment_id = _assign(db, now, now + timedelta(days=1))

        with pytest.raises(InvalidTransitionError):
            extend_deadline(db, assignment_id, now - timedelta(hours=1), now=now)
