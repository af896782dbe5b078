"""
Tool repository implementation.

SQLite implementation of IMutableRepository[Tool] holding each facility's
tool roster. The quarantine engine looks tools up by id; ids missing from
the roster are handled by the engine, not here.
"""

import sqlite3
from typing import List, Optional

from ..models.tool import Tool
from ..exceptions import DatabaseError
from .base import IMutableRepository, to_db_timestamp, from_db_timestamp, bump_revision


class ToolRepository(IMutableRepository[Tool]):
    """SQLite implementation of tool repository."""

    def __init__(self, connection: sqlite3.Connection):
        self.conn = connection

    def get_by_id(self, facility_id: str, id: str) -> Optional[Tool]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM tools WHERE facility_id = ? AND id = ?",
            (facility_id, id)
        )
        row = cursor.fetchone()

        if row is None:
            return None

        return self._row_to_tool(row)

    def get_by_facility(self, facility_id: str) -> List[Tool]:
        """Get the facility's tool roster, ordered by name."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM tools WHERE facility_id = ? ORDER BY name, id",
            (facility_id,)
        )
        return [self._row_to_tool(row) for row in cursor.fetchall()]

    def create(self, tool: Tool) -> Tool:
        with self.conn.write_lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO tools (
                        id, facility_id, name, barcode, category,
                        cycle_count, max_cycles, status, last_sterilized
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        tool.id,
                        tool.facility_id,
                        tool.name,
                        tool.barcode,
                        tool.category,
                        tool.cycle_count,
                        tool.max_cycles,
                        tool.status,
                        to_db_timestamp(tool.last_sterilized)
                    )
                )
                bump_revision(cursor, tool.facility_id)
                self.conn.commit()
                return tool
            except sqlite3.Error as e:
                self.conn.rollback()
                raise DatabaseError(f"Failed to create tool: {e}") from e

    def update(self, tool: Tool) -> Tool:
        """
        Update a tool in the roster.

        Raises:
            DatabaseError: If the tool does not exist or the update fails
        """
        if self.get_by_id(tool.facility_id, tool.id) is None:
            raise DatabaseError(f"Tool {tool.id} not found")

        with self.conn.write_lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute(
                    """
                    UPDATE tools SET
                        name = ?,
                        barcode = ?,
                        category = ?,
                        cycle_count = ?,
                        max_cycles = ?,
                        status = ?,
                        last_sterilized = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE facility_id = ? AND id = ?
                    """,
                    (
                        tool.name,
                        tool.barcode,
                        tool.category,
                        tool.cycle_count,
                        tool.max_cycles,
                        tool.status,
                        to_db_timestamp(tool.last_sterilized),
                        tool.facility_id,
                        tool.id
                    )
                )
                bump_revision(cursor, tool.facility_id)
                self.conn.commit()
                return tool
            except sqlite3.Error as e:
                self.conn.rollback()
                raise DatabaseError(f"Failed to update tool: {e}") from e

    def _row_to_tool(self, row: sqlite3.Row) -> Tool:
        try:
            return Tool(
                id=row["id"],
                facility_id=row["facility_id"],
                name=row["name"],
                barcode=row["barcode"] or "",
                category=row["category"],
                cycle_count=row["cycle_count"],
                max_cycles=row["max_cycles"],
                status=row["status"],
                last_sterilized=from_db_timestamp(row["last_sterilized"])
            )
        except (ValueError, TypeError) as e:
            raise DatabaseError(f"Failed to convert database row to Tool: {e}") from e
