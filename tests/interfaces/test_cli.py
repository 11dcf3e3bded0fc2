"""Tests for the assess CLI."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from assessment.cli.commands import app
from assessment.core.assignment_state import assign_exam, get_assignment, start_assignment
from assessment.core.makeup_workflow import get_makeup, list_pending_makeups

from seed_data import ALL_WRONG, CANDIDATE_ID, MATH_EXAM_ID, Q_MULTI, TWO_OF_THREE

runner = CliRunner()



@pytest.fixture
def env(db):
    """Point the CLI at the temporary store."""
    return {"ASSESSMENT_DB": str(db.path)}


class TestInitDbCommand:
    """Tests for assess init-db."""

    def test_creates_schema(self, tmp_path):
        """init-db creates a fresh database file and can be rerun."""
        path = tmp_path / "fresh" / "assessment.db"

        result = runner.invoke(app, ["init-db"], env={"ASSESSMENT_DB": str(path)})
        assert result.exit_code == 0
        assert "Database ready" in result.output
        assert path.exists()

        assert runner.invoke(app, ["init-db"], env={"ASSESSMENT_DB": str(path)}).exit_code == 0


class TestLifecycleCommands:
    """Tests for start, submit and grade."""

    def test_start_and_submit_with_grade(self, db, env, now):
        """submit --grade hands in and grades in one step."""
        assignment = assign_exam(db, MATH_EXAM_ID, CANDIDATE_ID, now=now)

        result = runner.invoke(app, ["start", str(assignment.id)], env=env)
        assert result.exit_code == 0
        assert "in progress" in result.output

        result = runner.invoke(app, ["submit", str(assignment.id), "--grade"], env=env)
        assert result.exit_code == 0
        assert "submitted" in result.output
        assert "Not passed: 0%" in result.output
        assert get_assignment(db, assignment.id).status == "graded"

    def test_grade_shows_per_question(self, db, env, take_exam):
        """grade prints the percentage and one line per question."""
        assignment_id = take_exam(TWO_OF_THREE)

        result = runner.invoke(app, ["grade", str(assignment_id)], env=env)

        assert result.exit_code == 0
        assert "Passed with 67%" in result.output
        assert "20/30" in result.output
        assert f"Q{Q_MULTI}" in result.output

    def test_grade_with_model_override(self, env, take_exam):
        """--provider and --model are passed to the short-answer client."""
        assignment_id = take_exam(TWO_OF_THREE)

        with patch("assessment.cli.commands.LLMClient") as client_class:
            result = runner.invoke(
                app, ["grade", str(assignment_id), "--provider", "openai", "--model", "gpt-test"], env=env
            )

        assert result.exit_code == 0
        assert client_class.call_args.kwargs == {"provider": "openai", "model": "gpt-test"}

    def test_grade_unsubmitted_fails(self, db, env, now):
        """Engine errors exit with code 1."""
        assignment = assign_exam(db, MATH_EXAM_ID, CANDIDATE_ID, now=now)

        result = runner.invoke(app, ["grade", str(assignment.id)], env=env)

        assert result.exit_code == 1
        assert "✗" in result.output

    def test_start_unknown_fails(self, env):
        """Unknown assignments exit with code 1."""
        result = runner.invoke(app, ["start", "999"], env=env)

        assert result.exit_code == 1
        assert "not found" in result.output.lower()


class TestMakeupCommands:
    """Tests for schedule-makeup and makeups."""

    def test_schedule_and_list(self, db, env, take_exam):
        """A failed exam's makeup can be listed and scheduled."""
        runner.invoke(app, ["grade", str(take_exam(ALL_WRONG))], env=env)
        makeup_id = list_pending_makeups(db)[0].id

        result = runner.invoke(app, ["makeups"], env=env)
        assert result.exit_code == 0
        assert "pending:" in result.output

        result = runner.invoke(
            app,
            ["schedule-makeup", str(makeup_id), "--deadline", "2099-01-01T09:00:00", "--by", "1"],
            env=env,
        )
        assert result.exit_code == 0
        assert f"Makeup {makeup_id} scheduled" in result.output
        assert get_makeup(db, makeup_id).status == "scheduled"

        result = runner.invoke(app, ["makeups", "--user", str(CANDIDATE_ID)], env=env)
        assert result.exit_code == 0
        assert "scheduled: 1" in result.output

    def test_invalid_deadline(self, env):
        """Unparseable deadlines are rejected before touching the store."""
        result = runner.invoke(app, ["schedule-makeup", "1", "--deadline", "next week"], env=env)

        assert result.exit_code == 1
        assert "Invalid deadline" in result.output


class TestLedgerCommands:
    """Tests for collect-wrong and wrong-questions."""

    def test_collect_and_show(self, db, env, take_exam):
        """Misses recorded by grading show up in the ledger listing and are not collected twice."""
        assignment_id = take_exam(TWO_OF_THREE)
        runner.invoke(app, ["grade", str(assignment_id)], env=env)

        result = runner.invoke(app, ["collect-wrong", str(assignment_id), str(CANDIDATE_ID)], env=env)
        assert result.exit_code == 0
        assert "0 wrong question(s) recorded" in result.output

        result = runner.invoke(app, ["wrong-questions", str(CANDIDATE_ID), "--unreviewed"], env=env)
        assert result.exit_code == 0
        assert "No wrong questions recorded" not in result.output

    def test_empty_ledger(self, env):
        """An empty ledger prints a short message."""
        result = runner.invoke(app, ["wrong-questions", str(CANDIDATE_ID)], env=env)

        assert result.exit_code == 0
        assert "No wrong questions recorded" in result.output


class TestSweepCommands:
    """Tests for the batch sweep commands."""

    def test_remind(self, db, env):
        """remind sends reminders for assignments due tomorrow."""
        tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
        assign_exam(db, MATH_EXAM_ID, CANDIDATE_ID, deadline=tomorrow)

        result = runner.invoke(app, ["remind"], env=env)
        assert result.exit_code == 0
        assert "1 reminder(s) sent" in result.output

        result = runner.invoke(app, ["remind"], env=env)
        assert "0 reminder(s) sent" in result.output

    def test_overdue(self, db, env, now):
        """overdue marks the assignment and opens a makeup."""
        assign_exam(db, MATH_EXAM_ID, CANDIDATE_ID, deadline=now - timedelta(days=1), now=now - timedelta(days=3))

        result = runner.invoke(app, ["overdue"], env=env)

        assert result.exit_code == 0
        assert "1 assignment(s) marked overdue" in result.output
        assert len(list_pending_makeups(db)) == 1

    def test_expire_makeups(self, env):
        """expire-makeups reports how many records expired."""
        result = runner.invoke(app, ["expire-makeups"], env=env)

        assert result.exit_code == 0
        assert "0 makeup(s) expired" in result.output

    def test_auto_submit(self, db, env, now):
        """auto-submit hands in assignments past their time limit."""
        with db.connect() as conn:
            conn.execute("UPDATE exams SET time_limit = 30 WHERE id = ?", (MATH_EXAM_ID,))
        assignment = assign_exam(db, MATH_EXAM_ID, CANDIDATE_ID, now=now)
        start_assignment(db, assignment.id, now=now)

        result = runner.invoke(app, ["auto-submit"], env=env)

        assert result.exit_code == 0
        assert "1 assignment(s) auto-submitted" in result.output
        assert get_assignment(db, assignment.id).status == "submitted"
