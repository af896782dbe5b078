"""
Activity log repository implementation.

Append-only audit entries for the BI workflow, listed newest first.
"""

import json
import sqlite3
from typing import List, Optional
from uuid import UUID

from ..models.activity import ActivityLogEntry
from ..exceptions import DatabaseError
from .base import IRepository, to_db_timestamp, from_db_timestamp

# Default number of entries returned by get_recent
DEFAULT_ACTIVITY_LIMIT = 50


class ActivityLogRepository(IRepository[ActivityLogEntry]):
    """SQLite implementation of activity log repository."""

    def __init__(self, connection: sqlite3.Connection):
        self.conn = connection

    def get_by_id(self, facility_id: str, id: UUID) -> Optional[ActivityLogEntry]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM activity_log WHERE facility_id = ? AND id = ?",
            (facility_id, str(id))
        )
        row = cursor.fetchone()
        return self._row_to_entry(row) if row is not None else None

    def get_by_facility(self, facility_id: str) -> List[ActivityLogEntry]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM activity_log WHERE facility_id = ? ORDER BY created_at DESC, rowid DESC",
            (facility_id,)
        )
        return [self._row_to_entry(row) for row in cursor.fetchall()]

    def get_recent(self, facility_id: str, limit: int = DEFAULT_ACTIVITY_LIMIT) -> List[ActivityLogEntry]:
        """Get the most recent entries for a facility."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM activity_log
            WHERE facility_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (facility_id, limit)
        )
        return [self._row_to_entry(row) for row in cursor.fetchall()]

    def create(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        with self.conn.write_lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO activity_log (
                        id, facility_id, activity_type, title, operator, details, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(entry.id),
                        entry.facility_id,
                        entry.activity_type,
                        entry.title,
                        entry.operator,
                        json.dumps(entry.details, default=str),
                        to_db_timestamp(entry.created_at)
                    )
                )
                self.conn.commit()
                return entry
            except sqlite3.Error as e:
                self.conn.rollback()
                raise DatabaseError(f"Failed to create activity entry: {e}") from e

    def _row_to_entry(self, row: sqlite3.Row) -> ActivityLogEntry:
        try:
            return ActivityLogEntry(
                id=UUID(row["id"]),
                facility_id=row["facility_id"],
                activity_type=row["activity_type"],
                title=row["title"],
                operator=row["operator"],
                details=json.loads(row["details"] or "{}"),
                created_at=from_db_timestamp(row["created_at"])
            )
        except (json.JSONDecodeError, ValueError, TypeError) as e:
            raise DatabaseError(f"Failed to convert database row to ActivityLogEntry: {e}") from e
