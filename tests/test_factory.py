from __future__ import annotations

from bundleforge.build.descriptors import get_registry
from bundleforge.build.environment import BuildHost, get_build_host, set_build_host
from bundleforge.build.factory import create_orchestrator, open_registry
from bundleforge.build.platforms import Platform
from bundleforge.config.settings import BuildSettings


def test_create_orchestrator_wires_settings(sample_project, tmp_path):
    settings = BuildSettings(
        output_root=str(tmp_path / "bundles"),
        installed_targets=["standalone-win64", "android"],
        default_target="android",
        ordering={"priority": [], "terminal": ["StandaloneWindows64"]},
    )
    workspace, orchestrator = create_orchestrator(
        sample_project, settings=settings, db_path=tmp_path / "factory.db"
    )

    host = get_build_host()
    assert host.active_target == "android"
    assert orchestrator.controller.host is host
    assert orchestrator.registry is get_registry()
    assert "Textures/Floor.png" in orchestrator.registry

    report = orchestrator.build(
        "crate", [Platform.StandaloneWindows64, Platform.Android, Platform.iOS]
    )
    assert [r.platform for r in report.succeeded] == [
        Platform.Android,
        Platform.StandaloneWindows64,
    ]
    assert [(r.platform, r.error_kind) for r in report.failed] == [
        (Platform.iOS, "PlatformUnsupported")
    ]
    assert report.succeeded[0].artifact_path.is_relative_to(tmp_path / "bundles")
    assert host.active_target == "android"


def test_existing_host_is_kept(sample_project, tmp_path):
    existing = BuildHost(active_target="webgl")
    set_build_host(existing)
    settings = BuildSettings(installed_targets=["webgl"])
    _, orchestrator = create_orchestrator(
        sample_project, settings=settings, db_path=tmp_path / "f.db"
    )
    assert orchestrator.controller.host is existing
    assert existing.active_target == "webgl"
    assert existing.installed_targets == {"webgl"}


def test_open_registry_without_path_returns_singleton():
    assert open_registry() is get_registry()
