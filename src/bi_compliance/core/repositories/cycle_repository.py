"""
Sterilization cycle repository implementation.

This module provides the SQLite implementation of
IMutableRepository[SterilizationCycle]. Cycles are created at cycle start,
updated as phases complete and closed by setting end_time.

Key design decisions:
- tools and phases are stored as JSON TEXT (SQLite has no array type)
- Timestamps are stored as UTC ISO TEXT
- Every write bumps the facility's event revision
"""

import json
import sqlite3
from typing import List, Optional

from ..models.sterilization_cycle import SterilizationCycle
from ..exceptions import DatabaseError
from .base import IMutableRepository, to_db_timestamp, from_db_timestamp, bump_revision


class CycleRepository(IMutableRepository[SterilizationCycle]):
    """SQLite implementation of sterilization cycle repository."""

    def __init__(self, connection: sqlite3.Connection):
        self.conn = connection

    def get_by_id(self, facility_id: str, id: str) -> Optional[SterilizationCycle]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM sterilization_cycles WHERE facility_id = ? AND id = ?",
            (facility_id, id)
        )
        row = cursor.fetchone()

        if row is None:
            return None

        return self._row_to_cycle(row)

    def get_by_facility(self, facility_id: str) -> List[SterilizationCycle]:
        """
        Get every cycle for a facility (closed and in progress).

        Returns:
            List of cycles ordered by start_time, then id
        """
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM sterilization_cycles WHERE facility_id = ? ORDER BY start_time, id",
            (facility_id,)
        )
        return [self._row_to_cycle(row) for row in cursor.fetchall()]

    def get_active(self, facility_id: str) -> List[SterilizationCycle]:
        """Get cycles that have not been closed yet, most recent start first."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM sterilization_cycles
            WHERE facility_id = ? AND end_time IS NULL
            ORDER BY start_time DESC, id DESC
            """,
            (facility_id,)
        )
        return [self._row_to_cycle(row) for row in cursor.fetchall()]

    def create(self, cycle: SterilizationCycle) -> SterilizationCycle:
        """
        Record a new cycle.

        Raises:
            DatabaseError: If insertion fails (e.g., duplicate id)
        """
        with self.conn.write_lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO sterilization_cycles (
                        id, facility_id, cycle_number, start_time, end_time,
                        operator, tools, phases, batch_id, status
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        cycle.id,
                        cycle.facility_id,
                        cycle.cycle_number,
                        to_db_timestamp(cycle.start_time),
                        to_db_timestamp(cycle.end_time),
                        cycle.operator,
                        json.dumps(cycle.tools),  # List -> JSON TEXT
                        json.dumps(cycle.phases),
                        cycle.batch_id,
                        cycle.status
                    )
                )
                bump_revision(cursor, cycle.facility_id)
                self.conn.commit()
                return cycle
            except sqlite3.Error as e:
                self.conn.rollback()
                raise DatabaseError(f"Failed to create sterilization cycle: {e}") from e

    def update(self, cycle: SterilizationCycle) -> SterilizationCycle:
        """
        Update a cycle (phase progress, closing it).

        Raises:
            DatabaseError: If the cycle does not exist, is already closed,
                           or the update fails
        """
        existing = self.get_by_id(cycle.facility_id, cycle.id)
        if existing is None:
            raise DatabaseError(f"Sterilization cycle {cycle.id} not found")
        if existing.end_time is not None:
            raise DatabaseError(f"Sterilization cycle {cycle.id} is closed and cannot be modified")

        with self.conn.write_lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute(
                    """
                    UPDATE sterilization_cycles SET
                        cycle_number = ?,
                        start_time = ?,
                        end_time = ?,
                        operator = ?,
                        tools = ?,
                        phases = ?,
                        batch_id = ?,
                        status = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE facility_id = ? AND id = ?
                    """,
                    (
                        cycle.cycle_number,
                        to_db_timestamp(cycle.start_time),
                        to_db_timestamp(cycle.end_time),
                        cycle.operator,
                        json.dumps(cycle.tools),
                        json.dumps(cycle.phases),
                        cycle.batch_id,
                        cycle.status,
                        cycle.facility_id,
                        cycle.id
                    )
                )
                bump_revision(cursor, cycle.facility_id)
                self.conn.commit()
                return cycle
            except sqlite3.Error as e:
                self.conn.rollback()
                raise DatabaseError(f"Failed to update sterilization cycle: {e}") from e

    def _row_to_cycle(self, row: sqlite3.Row) -> SterilizationCycle:
        """
        Convert database row to SterilizationCycle.

        Malformed JSON is an error rather than an empty list: silently
        dropping a cycle's tools would understate the quarantine.

        Raises:
            DatabaseError: If data conversion fails
        """
        try:
            return SterilizationCycle(
                id=row["id"],
                facility_id=row["facility_id"],
                cycle_number=row["cycle_number"],
                start_time=from_db_timestamp(row["start_time"]),
                end_time=from_db_timestamp(row["end_time"]),
                operator=row["operator"],
                tools=json.loads(row["tools"] or "[]"),
                phases=json.loads(row["phases"] or "[]"),
                batch_id=row["batch_id"],
                status=row["status"]
            )
        except (json.JSONDecodeError, ValueError, TypeError) as e:
            raise DatabaseError(f"Failed to convert database row to SterilizationCycle: {e}") from e
