"""Wire a project directory, settings and the process-wide singletons together."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

from bundleforge.build.authoring import ProjectWorkspace
from bundleforge.build.descriptors import ImportDescriptorRegistry, get_registry, set_registry
from bundleforge.build.environment import EnvironmentController, get_build_host
from bundleforge.build.orchestrator import BuildOrchestrator
from bundleforge.build.packager import Packager
from bundleforge.config.settings import BuildSettings, SettingsManager


def open_registry(db_path: Optional[Path] = None) -> ImportDescriptorRegistry:
    """Return the process-wide registry, rebinding it to ``db_path`` when given."""
    if db_path is None:
        return get_registry()
    registry = ImportDescriptorRegistry(db_path)
    set_registry(registry)
    return registry


def create_orchestrator(
    project_dir: Path | str,
    *,
    settings: Optional[BuildSettings] = None,
    db_path: Optional[Path] = None,
    packager: Optional[Packager] = None,
) -> Tuple[ProjectWorkspace, BuildOrchestrator]:
    settings = settings if settings is not None else SettingsManager().load_model()
    workspace = ProjectWorkspace(project_dir)
    registry = open_registry(db_path)
    workspace.seed_registry(registry)

    host = get_build_host(settings.build_host)
    host.installed_targets = set(settings.installed_targets)
    orchestrator = BuildOrchestrator(
        workspace,
        registry=registry,
        controller=EnvironmentController(host),
        packager=packager,
        output_root=settings.resolved_output_root(),
        ordering=settings.platform_ordering(),
    )
    return workspace, orchestrator


__all__ = ["create_orchestrator", "open_registry"]
