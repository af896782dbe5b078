"""
Quarantine activation repository implementation.

Activations are kept as an append log per facility. The current activation
is the one with the latest activated_at (last writer wins); older rows stay
for the audit trail. Inserting an activation whose id already exists is a
no-op, which makes re-sending the same activation after a failed attempt
safe.
"""

import json
import sqlite3
from datetime import date
from typing import List, Optional
from uuid import UUID

from ..models.quarantine import QuarantineActivation
from ..exceptions import DatabaseError
from .base import IRepository, to_db_timestamp, from_db_timestamp


class QuarantineActivationRepository(IRepository[QuarantineActivation]):
    """SQLite implementation of quarantine activation repository."""

    def __init__(self, connection: sqlite3.Connection):
        self.conn = connection

    def get_by_id(self, facility_id: str, id: UUID) -> Optional[QuarantineActivation]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM quarantine_activations WHERE facility_id = ? AND id = ?",
            (facility_id, str(id))
        )
        row = cursor.fetchone()
        return self._row_to_activation(row) if row is not None else None

    def get_by_facility(self, facility_id: str) -> List[QuarantineActivation]:
        """Get every activation for a facility, newest first."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM quarantine_activations
            WHERE facility_id = ?
            ORDER BY activated_at DESC, rowid DESC
            """,
            (facility_id,)
        )
        return [self._row_to_activation(row) for row in cursor.fetchall()]

    def get_current(self, facility_id: str) -> Optional[QuarantineActivation]:
        """
        Get the facility's current activation.

        Returns:
            Latest activation by activated_at (ties: last inserted), or None
        """
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM quarantine_activations
            WHERE facility_id = ?
            ORDER BY activated_at DESC, rowid DESC
            LIMIT 1
            """,
            (facility_id,)
        )
        row = cursor.fetchone()
        return self._row_to_activation(row) if row is not None else None

    def get_by_result(self, facility_id: str, bi_test_result_id: UUID) -> Optional[QuarantineActivation]:
        """Get the activation raised by a committed FAIL, if it was delivered."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM quarantine_activations
            WHERE facility_id = ? AND bi_test_result_id = ?
            ORDER BY rowid
            LIMIT 1
            """,
            (facility_id, str(bi_test_result_id))
        )
        row = cursor.fetchone()
        return self._row_to_activation(row) if row is not None else None

    def count_for_day(self, facility_id: str, day: date) -> int:
        """Count activations whose incident number falls on the given day."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT COUNT(*) FROM quarantine_activations WHERE facility_id = ? AND incident_number LIKE ?",
            (facility_id, f"BI-FAIL-{day.strftime('%Y%m%d')}-%")
        )
        return cursor.fetchone()[0]

    def create(self, activation: QuarantineActivation) -> QuarantineActivation:
        """
        Store an activation.

        Idempotent on activation.id: storing the same activation twice
        leaves a single row.

        Raises:
            DatabaseError: If the insert fails
        """
        with self.conn.write_lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute(
                    """
                    INSERT OR IGNORE INTO quarantine_activations (
                        id, facility_id, bi_test_result_id, incident_number,
                        affected_tools_count, affected_batch_ids, operator, activated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(activation.id),
                        activation.facility_id,
                        str(activation.bi_test_result_id),
                        activation.incident_number,
                        activation.affected_tools_count,
                        json.dumps(activation.affected_batch_ids),
                        activation.operator,
                        to_db_timestamp(activation.activated_at)
                    )
                )
                self.conn.commit()
                return activation
            except sqlite3.Error as e:
                self.conn.rollback()
                raise DatabaseError(f"Failed to store quarantine activation: {e}") from e

    def _row_to_activation(self, row: sqlite3.Row) -> QuarantineActivation:
        try:
            return QuarantineActivation(
                id=UUID(row["id"]),
                facility_id=row["facility_id"],
                bi_test_result_id=UUID(row["bi_test_result_id"]),
                incident_number=row["incident_number"],
                affected_tools_count=row["affected_tools_count"],
                affected_batch_ids=json.loads(row["affected_batch_ids"] or "[]"),
                operator=row["operator"],
                activated_at=from_db_timestamp(row["activated_at"])
            )
        except (json.JSONDecodeError, ValueError, TypeError) as e:
            raise DatabaseError(f"Failed to convert database row to QuarantineActivation: {e}") from e
