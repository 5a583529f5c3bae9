from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, HTTPException

from bundleforge.build.batches import BatchRunner, BatchStore
from bundleforge.build.errors import BatchStoreError, BundleForgeError, ContentRootNotFound
from bundleforge.build.factory import create_orchestrator
from bundleforge.build.platforms import ALL_PLATFORMS, platform_name, resolve_target
from bundleforge.config import feature_flags
from bundleforge.config.settings import SettingsManager

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api/builds", tags=["Builds"])
_settings: Optional[SettingsManager] = None


def _ensure_enabled(*, builds: bool = False) -> None:
    if not feature_flags.is_enabled("enable_bundle_api", default=False):
        raise HTTPException(status_code=403, detail="bundle api disabled")
    if builds and not feature_flags.is_enabled("enable_bundle_api_builds", default=False):
        raise HTTPException(status_code=403, detail="bundle builds disabled")


def _get_settings() -> SettingsManager:
    global _settings
    if _settings is None:
        _settings = SettingsManager()
    return _settings


def _required(payload: Dict[str, Any], key: str) -> str:
    value = str(payload.get(key) or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail=f"{key} is required")
    return value


def _http_error(exc: BundleForgeError) -> HTTPException:
    status = 404 if isinstance(exc, ContentRootNotFound) else 409
    return HTTPException(
        status_code=status, detail={"error_kind": exc.error_kind, "detail": exc.detail}
    )


@router.get("/platforms")
def platforms() -> Dict[str, Any]:
    _ensure_enabled()
    settings = _get_settings().load_model()
    table = settings.policy_table()
    installed = set(settings.installed_targets)
    items: List[Dict[str, Any]] = []
    for member in ALL_PLATFORMS:
        target = resolve_target(member)
        items.append(
            {
                "platform": platform_name(member),
                "value": int(member),
                "target": target.target_id if target else None,
                "installed": bool(target and target.target_id in installed),
                "graphics_backends": table.graphics_backends(member),
            }
        )
    return {"ok": True, "items": items}


@router.get("/policies")
def policies() -> Dict[str, Any]:
    _ensure_enabled()
    return {"ok": True, "policies": _get_settings().load_model().policy_table().to_payload()}


@router.post("/policies")
def update_policies(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    _ensure_enabled()
    updates = payload.get("policies")
    if not isinstance(updates, dict):
        raise HTTPException(status_code=400, detail="policies must be an object")
    manager = _get_settings()
    try:
        manager.merge({"policies": updates})
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"ok": True, "policies": manager.load_model().policy_table().to_payload()}


@router.post("")
def start_build(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    _ensure_enabled(builds=True)
    project = _required(payload, "project")
    root_id = _required(payload, "root")
    requested = payload.get("platforms")
    settings = _get_settings().load_model()
    stop_on_failure = payload.get("stop_on_failure")
    try:
        workspace, orchestrator = create_orchestrator(project, settings=settings)
        root = workspace.resolve(root_id)
        report = orchestrator.build(
            root,
            requested or root.platforms(),
            settings.policy_table(),
            stop_on_failure=(
                settings.stop_on_failure if stop_on_failure is None else bool(stop_on_failure)
            ),
            persist_changes=bool(payload.get("persist", True)),
        )
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except BundleForgeError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    LOGGER.info(
        "builds.run",
        extra={"event": "builds.run", "root": root_id, "ok": report.ok},
    )
    return {"ok": report.ok, "report": report.to_dict()}


@router.post("/batch")
def run_batch(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    _ensure_enabled(builds=True)
    project = _required(payload, "project")
    name = str(payload.get("name") or "").strip()
    settings = _get_settings().load_model()
    store = BatchStore()
    try:
        batch = store.get(name) if name else store.current()
        workspace, orchestrator = create_orchestrator(project, settings=settings)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except BatchStoreError as exc:
        raise HTTPException(status_code=404, detail=exc.detail) from exc
    run = BatchRunner(orchestrator, workspace).run(batch, settings.policy_table())
    return {
        "ok": not run.failed_root_ids,
        "batch": run.batch,
        "stopped": run.stopped,
        "failed": run.failed_root_ids,
        "outcomes": [outcome.to_dict() for outcome in run.outcomes],
    }


__all__ = ["router"]
