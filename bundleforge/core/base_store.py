"""
Shared SQLite access helpers for the bundleforge stores.

Higher-level stores (import descriptors, batches) subclass :class:`BaseStore`
and implement domain-specific helpers on top of the key -> JSON tables.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Iterable, Optional

from bundleforge.config.runtime_paths import database_file
from bundleforge.core.db_manager import DBManager


class BaseStore:
    """Base class for store objects backed by SQLite."""

    def __init__(self, db_path: Path | str | None = None):
        self._db_manager = DBManager(db_path if db_path is not None else database_file())
        self.db_path = self._db_manager.db_path
        self._db_manager.ensure_schema()

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Yield a SQLite connection with row factory set to dict-like rows."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def execute(self, sql: str, params: Iterable | None = None) -> None:
        """Execute a SQL statement that does not return rows."""
        with self.connection() as conn:
            conn.execute(sql, list(params or []))

    def fetchall(self, sql: str, params: Iterable | None = None) -> list[sqlite3.Row]:
        with self.connection() as conn:
            cur = conn.execute(sql, list(params or []))
            return cur.fetchall()

    def fetchone(
        self, sql: str, params: Iterable | None = None
    ) -> Optional[sqlite3.Row]:
        with self.connection() as conn:
            cur = conn.execute(sql, list(params or []))
            return cur.fetchone()

    @staticmethod
    def dumps(obj: Any) -> str:
        return json.dumps(obj, ensure_ascii=False, sort_keys=True)

    @staticmethod
    def loads(raw: str) -> Any:
        return json.loads(raw)
