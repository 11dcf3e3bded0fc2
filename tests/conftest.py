"""Shared fixtures: temporary store, seeded exams, notification sink."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from assessment.config.app_config import AppConfig, clear_config_cache
from assessment.core.assignment_state import assign_exam, save_answer, start_assignment, submit_assignment
from assessment.core.notifications import MemorySink
from assessment.db.database import Database

from seed_data import (
    ADMIN_ID,
    CANDIDATE_ID,
    EDITOR_ID,
    ESSAY_EXAM_ID,
    MATH_EXAM_ID,
    OTHER_CANDIDATE_ID,
    Q_CHOICE,
    Q_ESSAY,
    Q_MULTI,
    Q_TRUE_FALSE,
)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Every test sees built-in defaults, never a real config file."""
    monkeypatch.setenv("ASSESSMENT_CONFIG", str(tmp_path / "no-config.yaml"))
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def now() -> datetime:
    """Fixed clock for deterministic deadlines."""
    return datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def config() -> AppConfig:
    """Default application config."""
    return AppConfig()


@pytest.fixture
def sink() -> MemorySink:
    """Notification sink that keeps notices in memory."""
    return MemorySink()


@pytest.fixture
def db(tmp_path) -> Database:
    """Seeded temporary database.

    - Math Basics (exam 1): multiple_choice, true_false and multiple_answer
      questions, 10 points each, passing score 60
    - Essay (exam 2): one short answer (10 points) and the multiple_choice
      question without explicit points, passing score 60
    """
    database = Database(tmp_path / "assessment.db")
    database.init_schema()

    with database.connect() as conn:
        conn.executemany(
            "INSERT INTO users (id, name, email, role) VALUES (?, ?, ?, ?)",
            [
                (ADMIN_ID, "Ada Admin", "ada@example.com", "admin"),
                (EDITOR_ID, "Ed Editor", "ed@example.com", "editor"),
                (CANDIDATE_ID, "Cara Candidate", "cara@example.com", "examinee"),
                (OTHER_CANDIDATE_ID, "Otto Other", "otto@example.com", "examinee"),
            ],
        )
        conn.executemany(
            "INSERT INTO question_categories (id, name) VALUES (?, ?)",
            [(1, "Algebra"), (2, "Geometry"), (3, "Logic")],
        )
        conn.executemany(
            "INSERT INTO questions (id, category_id, type, question, correct_answer) VALUES (?, ?, ?, ?, ?)",
            [
                (Q_CHOICE, 1, "multiple_choice", "What is 2 + 2? A) 3 B) 4 C) 5", "B"),
                (Q_TRUE_FALSE, 2, "true_false", "A square has four equal sides.", "true"),
                (Q_MULTI, 3, "multiple_answer", "Which are tautologies? A, B, C, D", "A,B,C"),
                (Q_ESSAY, 1, "short_answer", "Explain why 0! equals 1.", "The empty product is 1."),
            ],
        )
        conn.executemany(
            "INSERT INTO exams (id, title, time_limit, passing_score, total_score, status) VALUES (?, ?, ?, ?, ?, ?)",
            [
                (MATH_EXAM_ID, "Math Basics", None, 60, 30, "published"),
                (ESSAY_EXAM_ID, "Essay", None, 60, 20, "published"),
            ],
        )
        conn.executemany(
            "INSERT INTO exam_questions (exam_id, question_id, question_order, points) VALUES (?, ?, ?, ?)",
            [
                (MATH_EXAM_ID, Q_CHOICE, 1, 10),
                (MATH_EXAM_ID, Q_TRUE_FALSE, 2, 10),
                (MATH_EXAM_ID, Q_MULTI, 3, 10),
                (ESSAY_EXAM_ID, Q_ESSAY, 1, 10),
                (ESSAY_EXAM_ID, Q_CHOICE, 2, None),
            ],
        )

    return database


@pytest.fixture
def take_exam(db, now, config) -> Callable[..., int]:
    """Assign, start, answer and submit an exam; returns the assignment ID."""

    def _take(
        answers: dict[int, str],
        exam_id: int = MATH_EXAM_ID,
        user_id: int = CANDIDATE_ID,
        is_practice: bool = False,
        deadline: datetime | None = None,
    ) -> int:
        assignment = assign_exam(db, exam_id, user_id, deadline=deadline, is_practice=is_practice, now=now)
        start_assignment(db, assignment.id, now=now)
        for question_id, answer in answers.items():
            save_answer(db, assignment.id, question_id, answer, config=config, now=now + timedelta(minutes=1))
        submit_assignment(db, assignment.id, now=now + timedelta(minutes=5))
        return assignment.id

    return _take


def count_rows(db: Database, table: str, where: str = "1 = 1", params: tuple[Any, ...] = ()) -> int:
    """Number of rows in a table matching a condition."""
    with db.connect() as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0]


@pytest.fixture
def rows() -> Callable[..., int]:
    """Row counter helper."""
    return count_rows
