"""Database module for SQLite persistence.

Provides:
- The `Database` store handle and schema initialization
- Repository functions per entity (connection passed in by the caller)
"""

from assessment.db.database import Database

__all__ = ["Database"]
