"""
Abstract repository interfaces and shared SQLite helpers.

This module defines the generic repository pattern interfaces used by all
concrete repositories:

- IRepository: read and append operations (BI test results, activations and
  activity entries are append-only and never updated or deleted)
- IMutableRepository: adds update for entities that change after creation
  (cycles as phases complete, tools as they are sterilized)

It also provides the timestamp conversion and revision-bump helpers shared
by the SQLite implementations.
"""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Generic, TypeVar, Optional, List

# Type variable for the entity type
# When implementing IRepository[Tool], T becomes Tool
T = TypeVar("T")


class IRepository(ABC, Generic[T]):
    """
    Abstract repository interface for facility-scoped data.

    Every entity belongs to exactly one facility, so listing is always done
    per facility.
    """

    @abstractmethod
    def get_by_id(self, facility_id: str, id) -> Optional[T]:
        """
        Get an entity by its ID.

        Args:
            facility_id: Facility the entity belongs to
            id: ID of the entity to retrieve

        Returns:
            The entity if found, None otherwise
        """
        pass

    @abstractmethod
    def get_by_facility(self, facility_id: str) -> List[T]:
        """
        Get all entities for a facility.

        Returns:
            List of entities, ordered by implementation (e.g., by date)
        """
        pass

    @abstractmethod
    def create(self, entity: T) -> T:
        """
        Create a new entity.

        Returns:
            The created entity

        Raises:
            DatabaseError: If creation fails (e.g., constraint violation)
        """
        pass


class IMutableRepository(IRepository[T]):
    """Repository for entities that are updated after creation."""

    @abstractmethod
    def update(self, entity: T) -> T:
        """
        Update an existing entity.

        Raises:
            DatabaseError: If update fails or the entity does not exist
        """
        pass


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """
    Convert a datetime to the stored TEXT form.

    Values are converted to UTC and always carry microseconds, so string
    comparison in SQL matches chronological order.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Convert stored TEXT back to an aware UTC datetime."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def bump_revision(cursor: sqlite3.Cursor, facility_id: str) -> None:
    """
    Increment a facility's event revision.

    Must run inside the same transaction as the write it accounts for, so
    a cached quarantine computation can never outlive the data it was
    computed from.
    """
    cursor.execute(
        """
        INSERT INTO event_revisions (facility_id, revision) VALUES (?, 1)
        ON CONFLICT(facility_id) DO UPDATE SET revision = revision + 1
        """,
        (facility_id,)
    )


def get_revision(conn: sqlite3.Connection, facility_id: str) -> int:
    """
    Read a facility's event revision.

    Returns:
        Current revision (0 if nothing was ever written for the facility)
    """
    cursor = conn.cursor()
    cursor.execute(
        "SELECT revision FROM event_revisions WHERE facility_id = ?",
        (facility_id,)
    )
    row = cursor.fetchone()
    return row["revision"] if row is not None else 0
