"""Request dependencies: store handle, notification sink, model client.

Tests replace these through `app.dependency_overrides`.
"""

from __future__ import annotations

import os
from pathlib import Path

from fastapi import Depends

from assessment.config.app_config import load_app_config
from assessment.core.notifications import DatabaseNotificationSink, NotificationSink
from assessment.db.database import Database
from assessment.llm.client import LLMClient


def get_db() -> Database:
    """Store handle from ASSESSMENT_DB or the configured path."""
    env_path = os.environ.get("ASSESSMENT_DB")
    return Database(Path(env_path or load_app_config().database_path))


def get_sink(db: Database = Depends(get_db)) -> NotificationSink:
    """Notices are persisted into the same store."""
    return DatabaseNotificationSink(db)


def get_llm_client() -> LLMClient | None:
    """None lets the grader build a client from config when a short answer needs one."""
    return None
