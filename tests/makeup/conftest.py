"""Fixtures for makeup and ledger tests - graded exams."""

import pytest

from assessment.core.exam_grader import grade_assignment

from seed_data import ALL_WRONG


@pytest.fixture
def graded(db, take_exam, config, sink, now):
    """Grade an exam and return its assignment ID."""

    def _graded(answers, when=None, **kwargs):
        assignment_id = take_exam(answers, **kwargs)
        grade_assignment(db, assignment_id, config=config, now=when or now, sink=sink)
        return assignment_id

    return _graded


@pytest.fixture
def failed_makeup(graded, db):
    """ID of the pending makeup opened by a failed exam."""
    assignment_id = graded(ALL_WRONG)
    with db.connect() as conn:
        row = conn.execute(
            "SELECT id FROM makeup_exams WHERE original_assignment_id = ?", (assignment_id,)
        ).fetchone()
    return row["id"]
