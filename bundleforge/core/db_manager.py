"""
Database manager utilities for the bundleforge SQLite backend.

Import descriptors and batch selections are both small key -> JSON records.
This module owns the canonical table definitions and applies them
idempotently so any store can open the same database file.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnPatch:
    """Represents an optional column addition to keep a table aligned."""

    name: str
    ddl: str


@dataclass(frozen=True)
class TableDefinition:
    """Wrapper describing a table and the DDL required to keep it current."""

    name: str
    create_sql: str
    column_patches: Sequence[ColumnPatch] = ()


TABLE_DEFINITIONS: tuple[TableDefinition, ...] = (
    TableDefinition(
        name="import_descriptors",
        create_sql="""
            CREATE TABLE IF NOT EXISTS import_descriptors (
                asset_path TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
    ),
    TableDefinition(
        name="batches",
        create_sql="""
            CREATE TABLE IF NOT EXISTS batches (
                name TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                position INTEGER DEFAULT 0
            )
        """,
        column_patches=(ColumnPatch("position", "INTEGER DEFAULT 0"),),
    ),
    TableDefinition(
        name="batch_meta",
        create_sql="""
            CREATE TABLE IF NOT EXISTS batch_meta (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """,
    ),
)


class DBManager:
    """Lightweight helper that applies the schema and optional patches."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def ensure_schema(self) -> None:
        """Apply all table definitions and column patches idempotently."""
        with sqlite3.connect(self.db_path) as conn:
            for table in TABLE_DEFINITIONS:
                LOGGER.debug("Ensuring table %s", table.name)
                conn.execute(table.create_sql)
                if table.column_patches:
                    self._apply_column_patches(conn, table.name, table.column_patches)
            conn.commit()

    def existing_tables(self) -> set[str]:
        """Return the set of tables currently present in the database."""
        query = "SELECT name FROM sqlite_master WHERE type='table'"
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(query).fetchall()
        return {row[0] for row in rows}

    def _apply_column_patches(
        self, conn: sqlite3.Connection, table_name: str, patches: Iterable[ColumnPatch]
    ) -> None:
        """Add missing columns to an existing table without clobbering data."""
        cursor = conn.execute(f"PRAGMA table_info({table_name})")
        existing = {row[1] for row in cursor.fetchall()}
        for patch in patches:
            if patch.name in existing:
                continue
            LOGGER.debug("Applying column patch %s.%s", table_name, patch.name)
            conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {patch.name} {patch.ddl}")


__all__ = ["ColumnPatch", "DBManager", "TABLE_DEFINITIONS", "TableDefinition"]
