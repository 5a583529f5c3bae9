from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

import typer

from bundleforge.build.batches import BatchRunner, BatchStore
from bundleforge.build.errors import BundleForgeError
from bundleforge.build.factory import create_orchestrator, open_registry
from bundleforge.build.platforms import (
    ALL_PLATFORMS,
    parse_platform,
    platform_name,
    resolve_target,
)
from bundleforge.build.policy import PlatformPolicy
from bundleforge.config.settings import SettingsManager
from bundleforge.logging_config import init_logging

app = typer.Typer(add_completion=False, help="bundleforge command line utilities.")
batch_app = typer.Typer(add_completion=False, help="Manage persisted build batches.")
app.add_typer(batch_app, name="batch")
logger = logging.getLogger(__name__)


def _settings(path: Optional[Path]) -> SettingsManager:
    return SettingsManager(path)


def _echo(payload) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def _fail(exc: BundleForgeError) -> None:
    _echo({"ok": False, "error_kind": exc.error_kind, "detail": exc.detail})
    raise typer.Exit(code=1)


@app.command()
def build(
    project: Path = typer.Argument(..., help="Project directory containing project.json."),
    root: str = typer.Argument(..., help="Content root id."),
    platform: List[str] = typer.Option(
        [], "--platform", "-p", help="Platform name; repeatable. Defaults to the root's platforms."
    ),
    stop_on_failure: Optional[bool] = typer.Option(
        None, "--stop-on-failure/--keep-going", help="Abort after the first failed platform."
    ),
    persist: bool = typer.Option(
        True, "--persist/--no-persist", help="Save pending authoring changes first."
    ),
    db: Optional[Path] = typer.Option(None, help="Descriptor database path."),
    settings_path: Optional[Path] = typer.Option(None, "--settings", help="Settings file."),
) -> None:
    """Build one content root for the requested platforms."""
    manager = _settings(settings_path)
    settings = manager.load_model()
    init_logging(level=settings.log_level)
    try:
        workspace, orchestrator = create_orchestrator(project, settings=settings, db_path=db)
        content_root = workspace.resolve(root)
        requested = platform or content_root.platforms()
        report = orchestrator.build(
            content_root,
            requested,
            settings.policy_table(),
            lambda p, done, total: typer.echo(
                f"built {platform_name(p)} ({done}/{total})", err=True
            ),
            stop_on_failure=(
                settings.stop_on_failure if stop_on_failure is None else stop_on_failure
            ),
            persist_changes=persist,
        )
    except BundleForgeError as exc:
        _fail(exc)
        return
    except (ValueError, FileNotFoundError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    logger.info("Build for %s finished: %s", root, report.message)
    _echo(report.to_dict())
    raise typer.Exit(code=0 if report.ok else 1)


@app.command()
def platforms(
    settings_path: Optional[Path] = typer.Option(None, "--settings", help="Settings file."),
) -> None:
    """List platforms with their toolchain targets and graphics backends."""
    settings = _settings(settings_path).load_model()
    table = settings.policy_table()
    installed = set(settings.installed_targets)
    rows = []
    for member in ALL_PLATFORMS:
        target = resolve_target(member)
        rows.append(
            {
                "platform": platform_name(member),
                "value": int(member),
                "target": target.target_id if target else None,
                "group": target.group if target else None,
                "installed": bool(target and target.target_id in installed),
                "graphics_backends": table.graphics_backends(member),
            }
        )
    _echo(rows)


@app.command()
def policy(
    platform: Optional[str] = typer.Argument(None, help="Platform to update."),
    preset: Optional[str] = typer.Option(None, help="Preset name: low, medium, high, max."),
    settings_path: Optional[Path] = typer.Option(None, "--settings", help="Settings file."),
) -> None:
    """Show the platform policy table, or apply a preset to one platform."""
    manager = _settings(settings_path)
    if platform and preset:
        try:
            PlatformPolicy.from_preset(preset)
            key = platform_name(parse_platform(platform))
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        manager.merge({"policies": {key: preset}})
        table = manager.load_model().policy_table()
    elif platform or preset:
        raise typer.BadParameter("pass both PLATFORM and --preset to update a policy")
    else:
        table = manager.load_model().policy_table()
    _echo(table.to_payload())


@app.command()
def release(
    bundle: str = typer.Argument(..., help="Bundle name, e.g. crate_Android."),
    db: Optional[Path] = typer.Option(None, help="Descriptor database path."),
) -> None:
    """Clear the bundle affiliation of every asset assigned to BUNDLE."""
    released = open_registry(db).release_bundle(bundle)
    logger.info("Released %d assets from %s", len(released), bundle)
    _echo({"bundle": bundle, "released": released})


def _store(db: Optional[Path]) -> BatchStore:
    return BatchStore(db)


@batch_app.command("list")
def batch_list(db: Optional[Path] = typer.Option(None, help="Batch database path.")) -> None:
    """List batches; the current batch is flagged."""
    store = _store(db)
    current = store.current().name
    _echo(
        [
            dict(batch.payload(), current=batch.name == current)
            for batch in store.list()
        ]
    )


@batch_app.command("create")
def batch_create(
    name: Optional[str] = typer.Argument(None, help="Batch name; auto-named when omitted."),
    db: Optional[Path] = typer.Option(None, help="Batch database path."),
) -> None:
    """Create a batch and make it current."""
    try:
        _echo(_store(db).create(name).payload())
    except BundleForgeError as exc:
        _fail(exc)


@batch_app.command("rename")
def batch_rename(
    old: str,
    new: str,
    db: Optional[Path] = typer.Option(None, help="Batch database path."),
) -> None:
    """Rename a batch."""
    try:
        _echo(_store(db).rename(old, new).payload())
    except BundleForgeError as exc:
        _fail(exc)


@batch_app.command("delete")
def batch_delete(
    name: str,
    db: Optional[Path] = typer.Option(None, help="Batch database path."),
) -> None:
    """Delete a batch; the last remaining batch cannot be deleted."""
    try:
        _echo(_store(db).delete(name).payload())
    except BundleForgeError as exc:
        _fail(exc)


@batch_app.command("select")
def batch_select(
    name: str,
    roots: List[str] = typer.Argument(..., help="Content root ids."),
    stop_on_failure: Optional[bool] = typer.Option(
        None, "--stop-on-failure/--keep-going", help="Stop the batch at the first failed root."
    ),
    db: Optional[Path] = typer.Option(None, help="Batch database path."),
) -> None:
    """Replace the selection of a batch."""
    store = _store(db)
    try:
        batch = store.set_selection(name, roots)
        if stop_on_failure is not None:
            batch = store.set_stop_on_failure(name, stop_on_failure)
    except BundleForgeError as exc:
        _fail(exc)
        return
    _echo(batch.payload())


@batch_app.command("run")
def batch_run(
    project: Path = typer.Argument(..., help="Project directory containing project.json."),
    name: Optional[str] = typer.Option(None, help="Batch name; defaults to the current batch."),
    db: Optional[Path] = typer.Option(None, help="Batch and descriptor database path."),
    settings_path: Optional[Path] = typer.Option(None, "--settings", help="Settings file."),
) -> None:
    """Build every root selected in a batch."""
    settings = _settings(settings_path).load_model()
    init_logging(level=settings.log_level)
    store = _store(db)
    try:
        batch = store.get(name) if name else store.current()
        workspace, orchestrator = create_orchestrator(project, settings=settings, db_path=db)
    except BundleForgeError as exc:
        _fail(exc)
        return
    run = BatchRunner(orchestrator, workspace).run(batch, settings.policy_table())
    _echo(
        {
            "batch": run.batch,
            "stopped": run.stopped,
            "succeeded": run.succeeded_count,
            "failed": run.failed_root_ids,
            "outcomes": [outcome.to_dict() for outcome in run.outcomes],
        }
    )
    raise typer.Exit(code=0 if not run.failed_root_ids else 1)


@app.command()
def serve(
    host: str = typer.Option(
        os.getenv("BUNDLEFORGE_HOST", "127.0.0.1"), help="Interface to bind."
    ),
    port: int = typer.Option(int(os.getenv("BUNDLEFORGE_PORT", "8011")), help="Port to bind."),
    log_level: str = typer.Option("info", help="uvicorn log level."),
) -> None:
    """Serve the batch and build HTTP API."""
    import uvicorn

    from bundleforge.server.app import create_app

    init_logging(level=_settings(None).load_model().log_level)
    logger.info("Starting bundleforge API on %s:%s", host, port)
    uvicorn.run(create_app(), host=host, port=port, log_level=log_level)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
