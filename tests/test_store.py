from __future__ import annotations

import sqlite3
from pathlib import Path

from bundleforge.core.base_store import BaseStore
from bundleforge.core.db_manager import TABLE_DEFINITIONS, DBManager


def test_schema_is_idempotent(tmp_path: Path):
    manager = DBManager(tmp_path / "nested" / "store.db")
    manager.ensure_schema()
    manager.ensure_schema()
    assert {table.name for table in TABLE_DEFINITIONS} <= manager.existing_tables()


def test_column_patch_upgrades_old_batches_table(tmp_path: Path):
    db_path = tmp_path / "old.db"
    with sqlite3.connect(db_path) as conn:
        conn.execute("CREATE TABLE batches (name TEXT PRIMARY KEY, value_json TEXT NOT NULL)")
        conn.execute(
            "INSERT INTO batches (name, value_json) VALUES (?, ?)",
            ("Legacy", '{"name": "Legacy"}'),
        )
    store = BaseStore(db_path)
    rows = store.fetchall("SELECT name, position FROM batches")
    assert [(row["name"], row["position"]) for row in rows] == [("Legacy", 0)]


def test_json_helpers_are_stable():
    assert BaseStore.dumps({"b": 1, "a": "é"}) == '{"a": "é", "b": 1}'
    assert BaseStore.loads('{"a": 1}') == {"a": 1}
