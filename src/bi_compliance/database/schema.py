"""
Database schema definitions and initialization.

This module provides database schema creation and management for the BI
compliance engine. It uses SQLite as the database backend and includes:

- Schema versioning for future migrations
- Table definitions for all entities (BI tests, cycles, tools,
  quarantine activations, activity log)
- Per-facility revision counters used to invalidate cached quarantine data
- Database path management (stored in user's home directory)

Key tables:
- bi_test_results: Daily BI tests, unique per facility/operator/calendar day
- sterilization_cycles: Autoclave runs and the tools they processed
- tools: Tool roster per facility
- quarantine_activations: Append log; the latest row per facility is current
- activity_log: Audit trail of BI workflow events
- event_revisions: Bumped on every write to tests, cycles or tools

Database location:
- Default: ~/.bi_compliance/bi_compliance.db
- In-memory: ":memory:" (for testing)
"""

import sqlite3
import threading
from pathlib import Path
from typing import Optional

from ..core.exceptions import DatabaseError

# Current schema version - increment when schema changes
SCHEMA_VERSION = 1

# Directory under the user's home holding the database and config file
APP_DIR_NAME = ".bi_compliance"


class SharedConnection(sqlite3.Connection):
    """
    SQLite connection shared by repositories across threads.

    Every repository write holds write_lock from its first statement to its
    commit or rollback. A rollback discards every uncommitted statement on
    the connection, whichever thread issued it.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.write_lock = threading.RLock()


def get_app_dir() -> Path:
    """
    Get the application data directory, creating it if needed.

    Returns:
        Path to ~/.bi_compliance
    """
    app_dir = Path.home() / APP_DIR_NAME
    app_dir.mkdir(exist_ok=True)
    return app_dir


def get_database_path() -> Path:
    """
    Get the path to the database file in user's home directory.

    Returns:
        Path to database file: ~/.bi_compliance/bi_compliance.db
    """
    return get_app_dir() / "bi_compliance.db"


def create_schema(conn: sqlite3.Connection) -> None:
    """
    Create the database schema.

    Creates all tables, indexes, and schema version tracking. Safe to call
    on an existing database (all statements use IF NOT EXISTS).

    Timestamps are stored as UTC ISO-8601 TEXT with microseconds so that
    string ordering matches chronological ordering.

    Args:
        conn: SQLite connection
    """
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        )
    """)

    cursor.execute("""
        INSERT OR REPLACE INTO schema_version (version) VALUES (?)
    """, (SCHEMA_VERSION,))

    # BI test results: append-only, never updated or deleted
    # test_day is the facility-local calendar date; the UNIQUE constraint is
    # what makes the one-test-per-operator-per-day rule race-free
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS bi_test_results (
            id TEXT PRIMARY KEY,
            facility_id TEXT NOT NULL,
            tool_id TEXT,
            passed INTEGER NOT NULL,
            test_date TEXT NOT NULL,
            test_day TEXT NOT NULL,
            status TEXT NOT NULL,
            operator TEXT NOT NULL,
            test_number TEXT,
            failure_reason TEXT,
            skip_reason TEXT,
            bi_lot_number TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (facility_id, operator, test_day),
            CHECK(status IN ('pass', 'fail', 'skip'))
        )
    """)

    # Sterilization cycles: tools and phases are JSON TEXT
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS sterilization_cycles (
            id TEXT NOT NULL,
            facility_id TEXT NOT NULL,
            cycle_number TEXT,
            start_time TEXT NOT NULL,
            end_time TEXT,
            operator TEXT NOT NULL,
            tools TEXT NOT NULL DEFAULT '[]',
            phases TEXT NOT NULL DEFAULT '[]',
            batch_id TEXT,
            status TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (facility_id, id)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS tools (
            id TEXT NOT NULL,
            facility_id TEXT NOT NULL,
            name TEXT NOT NULL,
            barcode TEXT NOT NULL DEFAULT '',
            category TEXT,
            cycle_count INTEGER NOT NULL DEFAULT 0,
            max_cycles INTEGER,
            status TEXT NOT NULL,
            last_sterilized TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (facility_id, id),
            CHECK(cycle_count >= 0)
        )
    """)

    # Quarantine activations: append log, current = latest activated_at
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS quarantine_activations (
            id TEXT PRIMARY KEY,
            facility_id TEXT NOT NULL,
            bi_test_result_id TEXT NOT NULL,
            incident_number TEXT NOT NULL,
            affected_tools_count INTEGER NOT NULL,
            affected_batch_ids TEXT NOT NULL DEFAULT '[]',
            operator TEXT NOT NULL,
            activated_at TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (bi_test_result_id) REFERENCES bi_test_results(id),
            CHECK(affected_tools_count >= 0)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS activity_log (
            id TEXT PRIMARY KEY,
            facility_id TEXT NOT NULL,
            activity_type TEXT NOT NULL,
            title TEXT NOT NULL,
            operator TEXT NOT NULL,
            details TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        )
    """)

    # Revision counter per facility, bumped on every test/cycle/tool write
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS event_revisions (
            facility_id TEXT PRIMARY KEY,
            revision INTEGER NOT NULL DEFAULT 0
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_bi_test_results_facility ON bi_test_results(facility_id, test_date)
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_cycles_facility ON sterilization_cycles(facility_id, start_time)
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_activations_facility ON quarantine_activations(facility_id, activated_at)
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_activity_log_facility ON activity_log(facility_id, created_at)
    """)

    conn.commit()


def connect(db_path: Path) -> sqlite3.Connection:
    """
    Open a connection configured the way repositories expect.

    The connection may be handed to worker threads; repositories serialize
    their write transactions on SharedConnection.write_lock.

    Args:
        db_path: Path to the database file

    Returns:
        SharedConnection with row_factory=sqlite3.Row and foreign keys on
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False, factory=SharedConnection)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def initialize_database(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """
    Initialize the database connection and create schema if needed.

    Args:
        db_path: Optional custom database path. If None, uses
                 ~/.bi_compliance/bi_compliance.db

    Returns:
        SQLite connection with row_factory set to sqlite3.Row

    Raises:
        DatabaseError: If database version is newer than application version
    """
    if db_path is None:
        db_path = get_database_path()

    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = connect(db_path)

    cursor = conn.cursor()
    cursor.execute("""
        SELECT name FROM sqlite_master
        WHERE type='table' AND name='schema_version'
    """)

    if cursor.fetchone() is None:
        create_schema(conn)
    else:
        cursor.execute("SELECT version FROM schema_version")
        row = cursor.fetchone()
        current_version = row[0] if row else 0

        if current_version < SCHEMA_VERSION:
            create_schema(conn)
        elif current_version > SCHEMA_VERSION:
            conn.close()
            raise DatabaseError(
                f"Database schema version ({current_version}) is newer than "
                f"application version ({SCHEMA_VERSION}). Please update the application."
            )

    return conn


def get_in_memory_connection() -> sqlite3.Connection:
    """
    Get an in-memory SQLite connection for testing.

    Returns:
        SQLite connection with row_factory=sqlite3.Row and schema initialized
    """
    conn = sqlite3.connect(":memory:", check_same_thread=False, factory=SharedConnection)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    create_schema(conn)
    return conn
