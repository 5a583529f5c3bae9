from __future__ import annotations

import json

import pytest

from bundleforge.build.authoring import ProjectWorkspace
from bundleforge.build.descriptors import AssetKind, ImportDescriptorRegistry
from bundleforge.build.errors import ContentRootNotFound
from bundleforge.build.platforms import Platform


def test_resolve_roots(sample_project):
    workspace = ProjectWorkspace(sample_project)
    assert workspace.root_ids() == ["crate", "lobby", "tool"]
    crate = workspace.resolve("crate")
    assert crate.kind == "prefab"
    assert crate.platforms() == [Platform.StandaloneWindows64, Platform.Android]
    with pytest.raises(ContentRootNotFound) as excinfo:
        workspace.resolve("missing")
    assert excinfo.value.detail == "unknown content root 'missing'"


def test_missing_manifest_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        ProjectWorkspace(tmp_path / "empty")


def test_scene_roots_get_enabled_build_scenes(sample_project):
    workspace = ProjectWorkspace(sample_project)
    assert workspace.declared_extra_roots(workspace.resolve("lobby")) == (
        "Scenes/Global.scene",
    )
    assert workspace.declared_extra_roots(workspace.resolve("crate")) == ()


def test_seed_registry_only_adds_missing(sample_project, tmp_path):
    registry = ImportDescriptorRegistry(tmp_path / "seed.db")
    registry.register("Textures/Floor.png", AssetKind.TEXTURE, readable=True)
    workspace = ProjectWorkspace(sample_project)
    added = workspace.seed_registry(registry)
    assert added == len(json.loads((sample_project / "project.json").read_text())["assets"]) - 1
    assert registry.get("Textures/Floor.png").readable is True
    assert registry.get("Prefabs/Editor/Tool.prefab").editor_only is True
    assert workspace.seed_registry(registry) == 0


def test_persist_pending_writes_content(sample_project):
    workspace = ProjectWorkspace(sample_project)
    root = workspace.resolve("lobby")
    assert not workspace.has_pending_changes(root)
    workspace.mark_dirty("Scenes/Lobby.scene", b"edited lobby\n")
    assert workspace.has_pending_changes(root)
    workspace.persist_pending(root)
    assert not workspace.has_pending_changes(root)
    assert (sample_project / "Scenes/Lobby.scene").read_bytes() == b"edited lobby\n"


def test_discard_pending_keeps_files(sample_project):
    workspace = ProjectWorkspace(sample_project)
    root = workspace.resolve("crate")
    original = (sample_project / "Prefabs/Crate.prefab").read_bytes()
    workspace.mark_dirty("Prefabs/Crate.prefab", b"edited crate\n")
    workspace.discard_pending(root)
    assert not workspace.has_pending_changes(root)
    assert (sample_project / "Prefabs/Crate.prefab").read_bytes() == original
