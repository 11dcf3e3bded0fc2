"""SQLite database handle and schema management.

The store handle is passed explicitly into every engine operation; there is
no module-level connection. Each `connect()` block is one transaction:
committed on success, rolled back on any error.

Write transactions are opened IMMEDIATE, so the first write statement in a
block takes the database write lock and holds it until commit. The grading
orchestrator relies on this to serialize concurrent re-grades of the same
assignment.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

from assessment.core.errors import ExternalUnavailableError

logger = structlog.get_logger(__name__)

DEFAULT_DB_PATH = Path("db/assessment.db")


class Database:
    """Handle to the assessment store.

    Example:
        db = Database(Path("db/assessment.db"))
        db.init_schema()
        with db.connect() as conn:
            row = conn.execute("SELECT * FROM exams WHERE id = ?", (1,)).fetchone()
    """

    def __init__(self, path: Path | str | None = None, busy_timeout: float = 5.0):
        self.path = Path(path) if path is not None else DEFAULT_DB_PATH
        self.busy_timeout = busy_timeout

    def __repr__(self) -> str:
        return f"Database({str(self.path)!r})"

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Open a connection as a transactional context manager.

        Yields:
            SQLite connection with row factory set to sqlite3.Row

        Raises:
            ExternalUnavailableError: If the database cannot be opened or is
                locked past the busy timeout.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                self.path,
                timeout=self.busy_timeout,
                isolation_level="IMMEDIATE",
            )
        except sqlite3.OperationalError as e:
            raise ExternalUnavailableError(f"Cannot open store {self.path}: {e}") from e

        conn.row_factory = sqlite3.Row

        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            logger.error("database.operational_error", path=str(self.path), error=str(e))
            raise ExternalUnavailableError(f"Store unavailable: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self) -> None:
        """Create all tables if they don't exist."""
        with self.connect() as conn:
            _create_schema(conn)

        logger.info("database.initialized", path=str(self.path))


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency. Unique constraints carry the
    engine's idempotency guarantees (one score per assignment, one makeup
    per originating assignment, one reminder per threshold, one ledger
    entry per candidate and question).
    """
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT,
            role TEXT NOT NULL DEFAULT 'examinee'
                CHECK(role IN ('admin', 'editor', 'viewer', 'examinee', 'pending')),
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS question_categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE
        );

        -- Question bank is maintained elsewhere; the engine only reads it.
        CREATE TABLE IF NOT EXISTS questions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            category_id INTEGER REFERENCES question_categories(id),
            type TEXT NOT NULL
                CHECK(type IN ('true_false', 'multiple_choice', 'multiple_answer', 'short_answer')),
            question TEXT NOT NULL,
            options TEXT,
            correct_answer TEXT NOT NULL,
            explanation TEXT,
            lifecycle TEXT NOT NULL DEFAULT 'active'
                CHECK(lifecycle IN ('active', 'archived', 'deleted')),
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS exams (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT,
            time_limit INTEGER,
            passing_score INTEGER NOT NULL,
            total_score INTEGER NOT NULL,
            grading_method TEXT NOT NULL DEFAULT 'auto'
                CHECK(grading_method IN ('auto', 'manual', 'mixed')),
            status TEXT NOT NULL DEFAULT 'draft'
                CHECK(status IN ('draft', 'published')),
            lifecycle TEXT NOT NULL DEFAULT 'active'
                CHECK(lifecycle IN ('active', 'archived', 'deleted')),
            created_by INTEGER,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS exam_questions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            exam_id INTEGER NOT NULL REFERENCES exams(id),
            question_id INTEGER NOT NULL REFERENCES questions(id),
            question_order INTEGER NOT NULL,
            points INTEGER,
            UNIQUE(exam_id, question_id)
        );

        CREATE TABLE IF NOT EXISTS assignments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            exam_id INTEGER NOT NULL REFERENCES exams(id),
            user_id INTEGER NOT NULL REFERENCES users(id),
            assigned_at TEXT NOT NULL,
            start_time TEXT,
            submit_time TEXT,
            deadline TEXT,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK(status IN ('pending', 'in_progress', 'submitted', 'graded')),
            is_practice INTEGER NOT NULL DEFAULT 0,
            makeup_exam_id INTEGER REFERENCES makeup_exams(id),
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS submissions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            assignment_id INTEGER NOT NULL REFERENCES assignments(id),
            question_id INTEGER NOT NULL REFERENCES questions(id),
            answer TEXT NOT NULL DEFAULT '',
            is_correct INTEGER,
            score INTEGER,
            ai_evaluation TEXT,
            teacher_comment TEXT,
            ledger_recorded INTEGER NOT NULL DEFAULT 0,
            submitted_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(assignment_id, question_id)
        );

        CREATE TABLE IF NOT EXISTS scores (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            assignment_id INTEGER NOT NULL UNIQUE REFERENCES assignments(id),
            total_score INTEGER NOT NULL,
            max_score INTEGER NOT NULL,
            percentage INTEGER NOT NULL,
            passed INTEGER NOT NULL,
            graded_by INTEGER,
            graded_at TEXT NOT NULL,
            feedback TEXT
        );

        CREATE TABLE IF NOT EXISTS wrong_questions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id),
            question_id INTEGER NOT NULL REFERENCES questions(id),
            wrong_count INTEGER NOT NULL DEFAULT 1,
            last_wrong_at TEXT NOT NULL,
            is_reviewed INTEGER NOT NULL DEFAULT 0,
            reviewed_at TEXT,
            UNIQUE(user_id, question_id)
        );

        CREATE TABLE IF NOT EXISTS makeup_exams (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            original_assignment_id INTEGER NOT NULL UNIQUE REFERENCES assignments(id),
            user_id INTEGER NOT NULL REFERENCES users(id),
            exam_id INTEGER NOT NULL REFERENCES exams(id),
            makeup_assignment_id INTEGER REFERENCES assignments(id),
            makeup_count INTEGER NOT NULL DEFAULT 1,
            max_attempts INTEGER NOT NULL DEFAULT 2,
            makeup_deadline TEXT,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK(status IN ('pending', 'scheduled', 'completed', 'expired')),
            original_score INTEGER NOT NULL,
            makeup_score INTEGER,
            reason TEXT,
            notes TEXT,
            scheduled_by INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS learning_recommendations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id),
            assignment_id INTEGER NOT NULL REFERENCES assignments(id),
            makeup_exam_id INTEGER REFERENCES makeup_exams(id),
            recommendation_type TEXT NOT NULL
                CHECK(recommendation_type IN
                      ('weak_topics', 'practice_questions', 'study_materials', 'ai_generated')),
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            related_question_ids TEXT,
            related_category_ids TEXT,
            priority TEXT NOT NULL DEFAULT 'medium'
                CHECK(priority IN ('high', 'medium', 'low')),
            generated_by TEXT NOT NULL DEFAULT 'system',
            is_read INTEGER NOT NULL DEFAULT 0,
            read_at TEXT,
            created_at TEXT NOT NULL,
            UNIQUE(assignment_id, recommendation_type)
        );

        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            notification_type TEXT NOT NULL,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            related_exam_id INTEGER,
            related_assignment_id INTEGER,
            related_makeup_exam_id INTEGER,
            idempotency_key TEXT NOT NULL UNIQUE,
            is_read INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS exam_reminders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            assignment_id INTEGER NOT NULL REFERENCES assignments(id),
            reminder_type TEXT NOT NULL,
            sent_at TEXT NOT NULL,
            UNIQUE(assignment_id, reminder_type)
        );

        CREATE TABLE IF NOT EXISTS overdue_actions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            assignment_id INTEGER NOT NULL REFERENCES assignments(id),
            exam_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            action_type TEXT NOT NULL
                CHECK(action_type IN ('marked_overdue', 'deadline_extended')),
            action_details TEXT,
            overdue_by INTEGER,
            original_deadline TEXT,
            new_deadline TEXT,
            performed_by INTEGER,
            created_at TEXT NOT NULL
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_overdue_marked_once
            ON overdue_actions(assignment_id) WHERE action_type = 'marked_overdue';
        CREATE INDEX IF NOT EXISTS idx_assignments_status ON assignments(status);
        CREATE INDEX IF NOT EXISTS idx_assignments_user ON assignments(user_id);
        CREATE INDEX IF NOT EXISTS idx_submissions_assignment ON submissions(assignment_id);
        CREATE INDEX IF NOT EXISTS idx_makeup_status ON makeup_exams(status);
        CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id);
        """
    )
