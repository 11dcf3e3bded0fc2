"""Tests for the wrong-question ledger."""

from datetime import timedelta

import pytest

from assessment.core.errors import InvalidTransitionError, NotFoundError
from assessment.core.manual_grading import update_manual_score
from assessment.core.wrong_questions import (
    batch_mark_reviewed,
    collect_wrong_questions,
    list_wrong_questions,
    mark_reviewed,
    remove_wrong_question,
    wrong_question_stats,
)
from assessment.db import submissions_repository

from seed_data import ALL_WRONG, CANDIDATE_ID, OTHER_CANDIDATE_ID, Q_CHOICE, Q_MULTI, TWO_OF_THREE


class TestLedgerFromGrading:
    """Tests for misses recorded by grading."""

    def test_repeat_misses_increment(self, db, graded, now):
        """Missing a question in two exams counts twice and orders it first."""
        graded(ALL_WRONG)
        graded(TWO_OF_THREE, when=now + timedelta(days=1))

        entries = list_wrong_questions(db, CANDIDATE_ID)

        assert entries[0].question_id == Q_MULTI
        assert entries[0].wrong_count == 2
        assert entries[0].last_wrong_at == now + timedelta(days=1)
        assert sorted(e.wrong_count for e in entries) == [1, 1, 2]

    def test_new_miss_resets_reviewed(self, db, graded, now):
        """A reviewed question missed again becomes unreviewed."""
        graded(TWO_OF_THREE)
        entry = list_wrong_questions(db, CANDIDATE_ID)[0]
        mark_reviewed(db, entry.id, CANDIDATE_ID, now=now)

        graded(TWO_OF_THREE, when=now + timedelta(hours=1))

        entry = list_wrong_questions(db, CANDIDATE_ID)[0]
        assert not entry.is_reviewed
        assert entry.wrong_count == 2


class TestCollectWrongQuestions:
    """Tests for collect_wrong_questions."""

    def test_misses_from_grading_not_counted_again(self, db, graded, now):
        """Collecting after grading, or collecting twice, adds nothing."""
        assignment_id = graded(ALL_WRONG)

        assert collect_wrong_questions(db, assignment_id, CANDIDATE_ID, now=now) == {"count": 0}
        assert collect_wrong_questions(db, assignment_id, CANDIDATE_ID, now=now) == {"count": 0}
        assert [e.wrong_count for e in list_wrong_questions(db, CANDIDATE_ID)] == [1, 1, 1]

    def test_collects_manual_downgrade_once(self, db, graded, config, now):
        """An answer marked wrong by hand after grading is collected exactly once."""
        assignment_id = graded(TWO_OF_THREE)
        with db.connect() as conn:
            choice = next(
                s for s in submissions_repository.get_submissions(conn, assignment_id) if s.question_id == Q_CHOICE
            )
        update_manual_score(db, choice.id, 0, config=config, now=now)

        assert collect_wrong_questions(db, assignment_id, CANDIDATE_ID, now=now) == {"count": 1}
        assert collect_wrong_questions(db, assignment_id, CANDIDATE_ID, now=now) == {"count": 0}
        counts = {e.question_id: e.wrong_count for e in list_wrong_questions(db, CANDIDATE_ID)}
        assert counts == {Q_CHOICE: 1, Q_MULTI: 1}

    def test_practice_rejected(self, db, graded, now):
        """Practice runs never feed the ledger."""
        assignment_id = graded(ALL_WRONG, is_practice=True)

        with pytest.raises(InvalidTransitionError):
            collect_wrong_questions(db, assignment_id, CANDIDATE_ID, now=now)
        assert list_wrong_questions(db, CANDIDATE_ID) == []

    def test_other_candidate(self, db, graded, now):
        """A candidate cannot collect misses from someone else's assignment."""
        assignment_id = graded(ALL_WRONG)

        with pytest.raises(NotFoundError):
            collect_wrong_questions(db, assignment_id, OTHER_CANDIDATE_ID, now=now)
        assert list_wrong_questions(db, OTHER_CANDIDATE_ID) == []

    def test_unknown_assignment(self, db, now):
        """Unknown assignments raise NotFoundError."""
        with pytest.raises(NotFoundError):
            collect_wrong_questions(db, 999, CANDIDATE_ID, now=now)


class TestQueriesAndReview:
    """Tests for listing, reviewing and removing entries."""

    def test_filters(self, db, graded, now):
        """Entries filter by question type, review state and limit."""
        graded(ALL_WRONG)
        first = list_wrong_questions(db, CANDIDATE_ID)[0]
        mark_reviewed(db, first.id, CANDIDATE_ID, now=now)

        assert [e.question_type for e in list_wrong_questions(db, CANDIDATE_ID, question_type="true_false")] == [
            "true_false"
        ]
        assert len(list_wrong_questions(db, CANDIDATE_ID, reviewed=False)) == 2
        assert len(list_wrong_questions(db, CANDIDATE_ID, reviewed=True)) == 1
        assert len(list_wrong_questions(db, CANDIDATE_ID, limit=2)) == 2
        assert list_wrong_questions(db, OTHER_CANDIDATE_ID) == []

    def test_mark_reviewed_keeps_count(self, db, graded, now):
        """Reviewing leaves the miss counter untouched."""
        graded(TWO_OF_THREE)
        entry = list_wrong_questions(db, CANDIDATE_ID)[0]

        reviewed = mark_reviewed(db, entry.id, CANDIDATE_ID, now=now)

        assert reviewed.is_reviewed
        assert reviewed.reviewed_at == now
        assert reviewed.wrong_count == 1

    def test_mark_reviewed_other_candidate(self, db, graded, now):
        """Candidates cannot review someone else's entries."""
        graded(TWO_OF_THREE)
        entry = list_wrong_questions(db, CANDIDATE_ID)[0]

        with pytest.raises(NotFoundError):
            mark_reviewed(db, entry.id, OTHER_CANDIDATE_ID, now=now)

    def test_batch_mark_reviewed(self, db, graded, now):
        """Batch review skips entries of other candidates."""
        graded(ALL_WRONG)
        ids = [e.id for e in list_wrong_questions(db, CANDIDATE_ID)]

        assert batch_mark_reviewed(db, ids, OTHER_CANDIDATE_ID, now=now) == 0
        assert batch_mark_reviewed(db, ids, CANDIDATE_ID, now=now) == 3
        assert batch_mark_reviewed(db, [], CANDIDATE_ID, now=now) == 0

    def test_stats(self, db, graded, now):
        """Stats count totals, review state and question types."""
        graded(ALL_WRONG)
        mark_reviewed(db, list_wrong_questions(db, CANDIDATE_ID)[0].id, CANDIDATE_ID, now=now)

        stats = wrong_question_stats(db, CANDIDATE_ID)

        assert stats["total"] == 3
        assert stats["reviewed"] == 1
        assert stats["unreviewed"] == 2
        assert stats["by_type"] == {"multiple_choice": 1, "true_false": 1, "multiple_answer": 1}

    def test_remove(self, db, graded):
        """Removing deletes the entry once."""
        graded(TWO_OF_THREE)

        assert remove_wrong_question(db, CANDIDATE_ID, Q_MULTI)
        assert not remove_wrong_question(db, CANDIDATE_ID, Q_MULTI)
        assert list_wrong_questions(db, CANDIDATE_ID) == []
