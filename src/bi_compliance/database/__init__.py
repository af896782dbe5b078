"""SQLite schema and connection helpers."""
