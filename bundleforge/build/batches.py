"""
Batch store and batch runner.

A batch is a named, persisted selection of content root ids. The store always
holds at least one batch; the runner feeds a batch's roots to the
orchestrator one at a time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from pydantic import BaseModel, Field, field_validator

from bundleforge.build.authoring import AuthoringWorkspace
from bundleforge.build.errors import BatchStoreError, BundleForgeError
from bundleforge.build.orchestrator import BuildOrchestrator, BuildReport
from bundleforge.build.packager import CancellationToken
from bundleforge.build.policy import PlatformPolicyTable
from bundleforge.core.base_store import BaseStore
from bundleforge.obs.structlog_adapter import get_logger

LOGGER = get_logger("bundleforge.batches", component="batches")

DEFAULT_BATCH_NAME = "Default Batch"
NEW_BATCH_PREFIX = "New Batch"
CURRENT_BATCH_KEY = "current_batch"


class Batch(BaseModel):
    name: str
    selected_content_root_ids: Set[str] = Field(default_factory=set)
    stop_on_failure: bool = False

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("batch name must not be blank")
        return value

    def payload(self) -> dict:
        return {
            "name": self.name,
            "selected_content_root_ids": sorted(self.selected_content_root_ids),
            "stop_on_failure": self.stop_on_failure,
        }


class BatchStore(BaseStore):
    """Persisted batch list backed by the ``batches`` and ``batch_meta`` tables."""

    def __init__(self, db_path=None):
        super().__init__(db_path)
        if not self.names():
            self._insert(Batch(name=DEFAULT_BATCH_NAME))
            self._set_current(DEFAULT_BATCH_NAME)

    # ------------------------------------------------------------- internals
    def _insert(self, batch: Batch) -> Batch:
        row = self.fetchone("SELECT COALESCE(MAX(position), -1) AS last FROM batches")
        position = int(row["last"]) + 1 if row is not None else 0
        self.execute(
            "INSERT INTO batches (name, value_json, position) VALUES (?, ?, ?)",
            (batch.name, self.dumps(batch.payload()), position),
        )
        return batch

    def _write(self, batch: Batch) -> Batch:
        self.execute(
            "UPDATE batches SET value_json = ? WHERE name = ?",
            (self.dumps(batch.payload()), batch.name),
        )
        return batch

    def _set_current(self, name: str) -> None:
        self.execute(
            """
            INSERT INTO batch_meta (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (CURRENT_BATCH_KEY, name),
        )

    # ---------------------------------------------------------------- reads
    def names(self) -> List[str]:
        rows = self.fetchall("SELECT name FROM batches ORDER BY position, name")
        return [row["name"] for row in rows]

    def list(self) -> List[Batch]:
        rows = self.fetchall("SELECT value_json FROM batches ORDER BY position, name")
        return [Batch.model_validate(self.loads(row["value_json"])) for row in rows]

    def get(self, name: str) -> Batch:
        row = self.fetchone("SELECT value_json FROM batches WHERE name = ?", (name,))
        if row is None:
            raise BatchStoreError("unknown batch", detail=f"no batch named '{name}'")
        return Batch.model_validate(self.loads(row["value_json"]))

    def current(self) -> Batch:
        row = self.fetchone("SELECT value FROM batch_meta WHERE key = ?", (CURRENT_BATCH_KEY,))
        names = self.names()
        name = row["value"] if row is not None and row["value"] in names else names[0]
        return self.get(name)

    # ---------------------------------------------------------------- writes
    def create(self, name: Optional[str] = None) -> Batch:
        names = self.names()
        base = name if name is not None else f"{NEW_BATCH_PREFIX} {len(names) + 1}"
        if not base.strip():
            raise BatchStoreError("batch name must not be blank")
        candidate = base
        counter = 1
        while candidate in names:
            candidate = f"{base} ({counter})"
            counter += 1
        batch = self._insert(Batch(name=candidate))
        self._set_current(candidate)
        LOGGER.info("batch created", batch=candidate)
        return batch

    def rename(self, old: str, new: str) -> Batch:
        if not new or not new.strip():
            raise BatchStoreError("batch name must not be blank")
        if new in self.names():
            raise BatchStoreError("batch name already in use", detail=f"'{new}' already exists")
        batch = self.get(old)
        was_current = self.current().name == old
        renamed = batch.model_copy(update={"name": new})
        self.execute(
            "UPDATE batches SET name = ?, value_json = ? WHERE name = ?",
            (new, self.dumps(renamed.payload()), old),
        )
        if was_current:
            self._set_current(new)
        LOGGER.info("batch renamed", old=old, new=new)
        return renamed

    def delete(self, name: str) -> Batch:
        names = self.names()
        if name not in names:
            raise BatchStoreError("unknown batch", detail=f"no batch named '{name}'")
        if len(names) <= 1:
            raise BatchStoreError(
                "cannot delete the last batch", detail="at least one batch must exist"
            )
        current = self.current().name
        self.execute("DELETE FROM batches WHERE name = ?", (name,))
        if current == name:
            self._set_current(self.names()[0])
        LOGGER.info("batch deleted", batch=name)
        return self.current()

    def switch(self, name: str) -> Batch:
        batch = self.get(name)
        self._set_current(name)
        return batch

    def set_selection(self, name: str, root_ids: Iterable[str]) -> Batch:
        batch = self.get(name).model_copy(
            update={"selected_content_root_ids": {str(item) for item in root_ids}}
        )
        return self._write(batch)

    def set_stop_on_failure(self, name: str, value: bool) -> Batch:
        batch = self.get(name).model_copy(update={"stop_on_failure": bool(value)})
        return self._write(batch)


@dataclass
class BatchOutcome:
    root_id: str
    succeeded: bool
    report: Optional[BuildReport] = None
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "root_id": self.root_id,
            "succeeded": self.succeeded,
            "error": self.error,
            "report": self.report.to_dict() if self.report is not None else None,
        }


@dataclass
class BatchRun:
    batch: str
    outcomes: List[BatchOutcome] = field(default_factory=list)
    stopped: bool = False

    @property
    def failed_root_ids(self) -> List[str]:
        return [outcome.root_id for outcome in self.outcomes if not outcome.succeeded]

    @property
    def succeeded_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)


class BatchRunner:
    """Build every root of a batch in sorted id order."""

    def __init__(self, orchestrator: BuildOrchestrator, workspace: AuthoringWorkspace):
        self.orchestrator = orchestrator
        self.workspace = workspace

    def _build_root(
        self,
        root_id: str,
        policy_table: Optional[PlatformPolicyTable],
        cancel_token: Optional[CancellationToken],
    ) -> BatchOutcome:
        try:
            root = self.workspace.resolve(root_id)
            report = self.orchestrator.build(
                root,
                root.platforms(),
                policy_table,
                cancel_token=cancel_token,
            )
        except BundleForgeError as exc:
            LOGGER.warning(
                "batch root failed", root=root_id, error_kind=exc.error_kind, detail=exc.detail
            )
            return BatchOutcome(root_id=root_id, succeeded=False, error=exc.detail)
        error = "" if report.ok else report.message
        return BatchOutcome(root_id=root_id, succeeded=report.ok, report=report, error=error)

    def run_roots(
        self,
        batch_name: str,
        root_ids: Iterable[str],
        *,
        stop_on_failure: bool = False,
        policy_table: Optional[PlatformPolicyTable] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchRun:
        run = BatchRun(batch=batch_name)
        for root_id in sorted(set(root_ids)):
            if cancel_token is not None and cancel_token.cancelled:
                run.stopped = True
                break
            outcome = self._build_root(root_id, policy_table, cancel_token)
            run.outcomes.append(outcome)
            if not outcome.succeeded and stop_on_failure:
                run.stopped = True
                break
        LOGGER.info(
            "batch finished",
            batch=batch_name,
            succeeded=run.succeeded_count,
            failed=len(run.failed_root_ids),
            stopped=run.stopped,
        )
        return run

    def run(
        self,
        batch: Batch,
        policy_table: Optional[PlatformPolicyTable] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchRun:
        return self.run_roots(
            batch.name,
            batch.selected_content_root_ids,
            stop_on_failure=batch.stop_on_failure,
            policy_table=policy_table,
            cancel_token=cancel_token,
        )

    def retry_failed(
        self,
        batch: Batch,
        previous: BatchRun,
        policy_table: Optional[PlatformPolicyTable] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchRun:
        return self.run_roots(
            batch.name,
            previous.failed_root_ids,
            stop_on_failure=batch.stop_on_failure,
            policy_table=policy_table,
            cancel_token=cancel_token,
        )


__all__ = [
    "Batch",
    "BatchOutcome",
    "BatchRun",
    "BatchRunner",
    "BatchStore",
    "DEFAULT_BATCH_NAME",
]
