"""
BI test result repository implementation.

This module provides the SQLite implementation of IRepository[BITestResult].
BI test results are append-only: there is no update or delete. It includes:
- Create with duplicate-day detection (UNIQUE facility/operator/test_day)
- Queries by facility, by operator/day and by day (for test numbering)
- History filtering for compliance reports

The test_day column holds the facility-local calendar date computed by the
service. The storage-level unique constraint is the final guard against two
near-simultaneous submissions for the same operator and day.
"""

import sqlite3
from datetime import date
from typing import List, Optional
from uuid import UUID

from ..models.bi_test_result import BITestResult, BITestStatus
from ..exceptions import DatabaseError, DuplicateSubmissionError
from .base import IRepository, to_db_timestamp, from_db_timestamp, bump_revision


class BITestResultRepository(IRepository[BITestResult]):
    """
    SQLite implementation of BI test result repository.

    Key features:
    - IntegrityError on the facility/operator/day constraint is mapped to
      DuplicateSubmissionError
    - Boolean conversion (passed: bool -> INTEGER 0/1)
    - Every insert bumps the facility's event revision
    """

    def __init__(self, connection: sqlite3.Connection):
        """
        Initialize repository with database connection.

        Args:
            connection: SQLite connection (should have row_factory=sqlite3.Row)
        """
        self.conn = connection

    def get_by_id(self, facility_id: str, id: UUID) -> Optional[BITestResult]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM bi_test_results WHERE facility_id = ? AND id = ?",
            (facility_id, str(id))
        )
        row = cursor.fetchone()

        if row is None:
            return None

        return self._row_to_result(row)

    def get_by_facility(self, facility_id: str) -> List[BITestResult]:
        """
        Get all BI test results for a facility, newest first.

        Returns:
            List of BITestResult objects sorted by test date (newest first)
        """
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM bi_test_results WHERE facility_id = ? ORDER BY test_date DESC, id",
            (facility_id,)
        )
        return [self._row_to_result(row) for row in cursor.fetchall()]

    def get_for_operator_day(
        self,
        facility_id: str,
        operator: str,
        test_day: date
    ) -> Optional[BITestResult]:
        """
        Get the result an operator committed on a facility-local day.

        Used by the pre-submission duplicate check.

        Args:
            facility_id: Facility ID
            operator: Operator name
            test_day: Facility-local calendar date

        Returns:
            The existing result, or None
        """
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM bi_test_results
            WHERE facility_id = ? AND operator = ? AND test_day = ?
            """,
            (facility_id, operator, test_day.isoformat())
        )
        row = cursor.fetchone()
        return self._row_to_result(row) if row is not None else None

    def count_for_day(self, facility_id: str, test_day: date) -> int:
        """Count results recorded for a facility on a facility-local day."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT COUNT(*) FROM bi_test_results WHERE facility_id = ? AND test_day = ?",
            (facility_id, test_day.isoformat())
        )
        return cursor.fetchone()[0]

    def get_history(
        self,
        facility_id: str,
        operator: Optional[str] = None,
        status: Optional[BITestStatus] = None,
        limit: Optional[int] = None
    ) -> List[BITestResult]:
        """
        Get filtered BI test history, newest first.

        Args:
            facility_id: Facility ID
            operator: Optional operator filter
            status: Optional status filter
            limit: Optional maximum number of rows

        Returns:
            List of matching BITestResult objects
        """
        query = "SELECT * FROM bi_test_results WHERE facility_id = ?"
        params: list = [facility_id]
        if operator:
            query += " AND operator = ?"
            params.append(operator)
        if status is not None:
            query += " AND status = ?"
            params.append(BITestStatus(status).value)
        query += " ORDER BY test_date DESC, id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = self.conn.cursor()
        cursor.execute(query, params)
        return [self._row_to_result(row) for row in cursor.fetchall()]

    def create(self, result: BITestResult, test_day: Optional[date] = None) -> BITestResult:
        """
        Commit a BI test result.

        Args:
            result: BITestResult to store
            test_day: Facility-local calendar date of the test. Defaults to
                      the date of result.date in its own timezone.

        Returns:
            The stored BITestResult

        Raises:
            DuplicateSubmissionError: If the operator already has a result that day
            DatabaseError: If the insert fails for any other reason
        """
        if test_day is None:
            test_day = result.date.date()

        with self.conn.write_lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO bi_test_results (
                        id, facility_id, tool_id, passed, test_date, test_day,
                        status, operator, test_number, failure_reason,
                        skip_reason, bi_lot_number
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(result.id),
                        result.facility_id,
                        result.tool_id,
                        1 if result.passed else 0,  # bool -> INTEGER
                        to_db_timestamp(result.date),
                        test_day.isoformat(),
                        result.status.value,
                        result.operator,
                        result.test_number,
                        result.failure_reason,
                        result.skip_reason,
                        result.bi_lot_number
                    )
                )
                bump_revision(cursor, result.facility_id)
                self.conn.commit()
                return result
            except sqlite3.IntegrityError as e:
                self.conn.rollback()
                if "UNIQUE" in str(e) and "test_day" in str(e):
                    raise DuplicateSubmissionError(result.facility_id, result.operator, test_day) from e
                raise DatabaseError(f"Failed to create BI test result: {e}") from e
            except sqlite3.Error as e:
                self.conn.rollback()
                raise DatabaseError(f"Failed to create BI test result: {e}") from e

    def _row_to_result(self, row: sqlite3.Row) -> BITestResult:
        """
        Convert database row to BITestResult model object.

        Raises:
            DatabaseError: If the stored row no longer validates
        """
        try:
            return BITestResult(
                id=UUID(row["id"]),
                facility_id=row["facility_id"],
                tool_id=row["tool_id"],
                passed=bool(row["passed"]),  # INTEGER -> bool
                date=from_db_timestamp(row["test_date"]),
                status=BITestStatus(row["status"]),
                operator=row["operator"],
                test_number=row["test_number"],
                failure_reason=row["failure_reason"],
                skip_reason=row["skip_reason"],
                bi_lot_number=row["bi_lot_number"]
            )
        except (ValueError, TypeError) as e:
            raise DatabaseError(f"Failed to convert database row to BITestResult: {e}") from e
