from __future__ import annotations

from typing import Dict, List

import pytest

from bundleforge.build.dependencies import ContentRoot, DependencyCollector
from bundleforge.build.descriptors import AssetKind, ImportDescriptorRegistry
from bundleforge.build.platforms import Platform

from conftest import CRATE_CLOSURE, LOBBY_CLOSURE


class _Graph:
    def __init__(self, edges: Dict[str, List[str]]):
        self.edges = edges

    def direct_dependencies(self, path: str) -> List[str]:
        return list(self.edges.get(path, ()))


def test_content_root_validates_kind_and_names_bundles():
    root = ContentRoot("lobby", "Lobby", "scene", "Scenes/Lobby.scene")
    assert root.requires_persisted
    assert root.bundle_name(Platform.WebGL) == "lobby_WebGL"
    assert root.platforms() == [
        Platform.StandaloneWindows64,
        Platform.Android,
        Platform.iOS,
        Platform.WebGL,
    ]
    with pytest.raises(ValueError):
        ContentRoot("x", "X", "texture", "X.png")


def test_collect_sample_closures(build_env):
    collector = DependencyCollector(build_env.workspace, build_env.registry)
    lobby = build_env.workspace.resolve("lobby")
    crate = build_env.workspace.resolve("crate")
    assert (
        collector.collect(lobby, build_env.workspace.declared_extra_roots(lobby))
        == LOBBY_CLOSURE
    )
    assert collector.collect(crate) == CRATE_CLOSURE
    assert collector.collect(crate) == collector.collect(crate)


def test_collect_tolerates_cycles_and_skips_excluded_subtrees(tmp_path):
    registry = ImportDescriptorRegistry(tmp_path / "deps.db")
    for path in ("Root.prefab", "A.mat", "B.mat", "Temp.asset", "Hidden.png"):
        registry.register(path, AssetKind.OTHER)
    registry.register("Temp.asset", AssetKind.OTHER, transient=True)
    graph = _Graph(
        {
            "Root.prefab": ["A.mat", "Temp.asset", "Unknown.png"],
            "A.mat": ["B.mat"],
            "B.mat": ["A.mat", "Root.prefab"],
            "Temp.asset": ["Hidden.png"],
        }
    )
    root = ContentRoot("root", "Root", "prefab", "Root.prefab")
    assert DependencyCollector(graph, registry).collect(root) == [
        "Root.prefab",
        "A.mat",
        "B.mat",
    ]


def test_collect_excluded_root_is_empty(build_env):
    collector = DependencyCollector(build_env.workspace, build_env.registry)
    assert collector.collect(build_env.workspace.resolve("tool")) == []
