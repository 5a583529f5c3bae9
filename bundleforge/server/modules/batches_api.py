from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException

from bundleforge.build.batches import BatchStore
from bundleforge.build.errors import BatchStoreError
from bundleforge.config import feature_flags

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api/batches", tags=["Batches"])
_store: Optional[BatchStore] = None


def _ensure_enabled() -> None:
    if not feature_flags.is_enabled("enable_bundle_api", default=False):
        raise HTTPException(status_code=403, detail="bundle api disabled")


def _get_store() -> BatchStore:
    global _store
    if _store is None:
        _store = BatchStore()
    return _store


def _name(payload: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def _conflict(exc: BatchStoreError) -> HTTPException:
    status = 404 if str(exc) == "unknown batch" else 409
    return HTTPException(status_code=status, detail=exc.detail)


def _listing(store: BatchStore) -> Dict[str, Any]:
    current = store.current().name
    return {
        "ok": True,
        "current": current,
        "items": [batch.payload() for batch in store.list()],
    }


@router.get("")
def list_batches() -> Dict[str, Any]:
    _ensure_enabled()
    return _listing(_get_store())


@router.get("/current")
def current_batch() -> Dict[str, Any]:
    _ensure_enabled()
    return {"ok": True, "batch": _get_store().current().payload()}


@router.post("/create")
def create_batch(payload: Dict[str, Any] = Body(default_factory=dict)) -> Dict[str, Any]:
    _ensure_enabled()
    name = payload.get("name")
    try:
        batch = _get_store().create(str(name) if name is not None else None)
    except BatchStoreError as exc:
        raise HTTPException(status_code=422, detail=exc.detail) from exc
    LOGGER.info("batches.create", extra={"event": "batches.create", "batch": batch.name})
    return {"ok": True, "batch": batch.payload()}


@router.post("/rename")
def rename_batch(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    _ensure_enabled()
    old = _name(payload, "name", "old")
    new = str(payload.get("new_name") or payload.get("new") or "")
    if not old:
        raise HTTPException(status_code=400, detail="batch name is required")
    if not new.strip():
        raise HTTPException(status_code=422, detail="new batch name must not be blank")
    try:
        batch = _get_store().rename(old, new)
    except BatchStoreError as exc:
        raise _conflict(exc) from exc
    LOGGER.info(
        "batches.rename", extra={"event": "batches.rename", "old": old, "new": new}
    )
    return {"ok": True, "batch": batch.payload()}


@router.post("/delete")
def delete_batch(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    _ensure_enabled()
    name = _name(payload, "name")
    if not name:
        raise HTTPException(status_code=400, detail="batch name is required")
    store = _get_store()
    try:
        store.delete(name)
    except BatchStoreError as exc:
        raise _conflict(exc) from exc
    LOGGER.info("batches.delete", extra={"event": "batches.delete", "batch": name})
    return _listing(store)


@router.post("/switch")
def switch_batch(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    _ensure_enabled()
    name = _name(payload, "name")
    if not name:
        raise HTTPException(status_code=400, detail="batch name is required")
    try:
        batch = _get_store().switch(name)
    except BatchStoreError as exc:
        raise _conflict(exc) from exc
    return {"ok": True, "batch": batch.payload()}


@router.post("/select")
def select_roots(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    _ensure_enabled()
    name = _name(payload, "name")
    roots = payload.get("roots")
    if not name:
        raise HTTPException(status_code=400, detail="batch name is required")
    if not isinstance(roots, list):
        raise HTTPException(status_code=400, detail="roots must be a list of root ids")
    store = _get_store()
    try:
        batch = store.set_selection(name, roots)
        if "stop_on_failure" in payload:
            batch = store.set_stop_on_failure(name, bool(payload["stop_on_failure"]))
    except BatchStoreError as exc:
        raise _conflict(exc) from exc
    return {"ok": True, "batch": batch.payload()}


__all__ = ["router"]
