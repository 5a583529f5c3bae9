from __future__ import annotations

import json
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bundleforge.build.authoring import ProjectWorkspace  # noqa: E402
from bundleforge.build.descriptors import ImportDescriptorRegistry, set_registry  # noqa: E402
from bundleforge.build.environment import (  # noqa: E402
    BuildHost,
    EnvironmentController,
    set_build_host,
)
from bundleforge.build.orchestrator import BuildOrchestrator  # noqa: E402
from bundleforge.build.packager import (  # noqa: E402
    STATUS_SUCCEEDED,
    PackageRequest,
    PackagerResult,
)
from bundleforge.config import feature_flags, runtime_paths  # noqa: E402

SAMPLE_ASSETS: Dict[str, Dict[str, Any]] = {
    "Scenes/Lobby.scene": {
        "kind": "scene",
        "dependencies": [
            "Prefabs/Crate.prefab",
            "Textures/Floor.png",
            "Editor/Gizmo.png",
        ],
    },
    "Scenes/Global.scene": {"kind": "scene", "dependencies": ["Audio/Theme.ogg"]},
    "Scenes/Unused.scene": {"kind": "scene", "dependencies": []},
    "Prefabs/Crate.prefab": {
        "kind": "prefab",
        "dependencies": ["Models/Crate.fbx", "Materials/Crate.mat"],
    },
    "Models/Crate.fbx": {"kind": "model"},
    "Materials/Crate.mat": {
        "kind": "material",
        "dependencies": ["Textures/Crate.png", "Textures/Floor.png"],
    },
    "Textures/Crate.png": {"kind": "texture", "has_alpha": True},
    "Textures/Floor.png": {"kind": "normal_map"},
    "Editor/Gizmo.png": {"kind": "texture"},
    "Audio/Theme.ogg": {"kind": "audio"},
    "Prefabs/Editor/Tool.prefab": {"kind": "prefab"},
}

SAMPLE_ROOTS: List[Dict[str, Any]] = [
    {
        "id": "lobby",
        "name": "Lobby",
        "kind": "scene",
        "source": "Scenes/Lobby.scene",
        "platforms": ["StandaloneWindows64", "Android", "iOS", "WebGL"],
    },
    {
        "id": "crate",
        "name": "Crate",
        "kind": "prefab",
        "source": "Prefabs/Crate.prefab",
        "platforms": ["StandaloneWindows64", "Android"],
    },
    {
        "id": "tool",
        "name": "Tool",
        "kind": "prefab",
        "source": "Prefabs/Editor/Tool.prefab",
    },
]

LOBBY_CLOSURE = [
    "Scenes/Lobby.scene",
    "Prefabs/Crate.prefab",
    "Models/Crate.fbx",
    "Materials/Crate.mat",
    "Textures/Crate.png",
    "Textures/Floor.png",
    "Scenes/Global.scene",
    "Audio/Theme.ogg",
]

CRATE_CLOSURE = [
    "Prefabs/Crate.prefab",
    "Models/Crate.fbx",
    "Materials/Crate.mat",
    "Textures/Crate.png",
    "Textures/Floor.png",
]


def write_project(project_dir: Path) -> Path:
    project_dir.mkdir(parents=True, exist_ok=True)
    manifest = {
        "roots": SAMPLE_ROOTS,
        "assets": SAMPLE_ASSETS,
        "build_scenes": [
            {"path": "Scenes/Lobby.scene", "enabled": True},
            {"path": "Scenes/Global.scene", "enabled": True},
            {"path": "Scenes/Unused.scene", "enabled": False},
        ],
    }
    (project_dir / "project.json").write_text(
        json.dumps(manifest, indent=2), encoding="utf-8"
    )
    for path in SAMPLE_ASSETS:
        target = project_dir / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f"asset:{path}\n", encoding="utf-8")
    return project_dir


class ScriptedPackager:
    """Packager double driven by a per-platform script.

    Script values: ``"ok"``, ``"fail"``, ``"cancel"``, an exception instance
    to raise, a ``PackagerResult``, or a callable taking the request.
    """

    def __init__(self, host: Optional[BuildHost] = None, script=None):
        self.host = host
        self.script: Dict[Any, Any] = dict(script or {})
        self.calls: List[SimpleNamespace] = []

    def package(self, request: PackageRequest) -> PackagerResult:
        self.calls.append(
            SimpleNamespace(
                request=request,
                active_target=self.host.active_target if self.host else None,
                toggles=set(self.host.feature_toggles) if self.host else set(),
            )
        )
        action = self.script.get(request.platform, "ok")
        if callable(action):
            action = action(request)
        if isinstance(action, BaseException):
            raise action
        if isinstance(action, PackagerResult):
            return action
        if action == "fail":
            return PackagerResult.failed(f"{request.bundle_name} did not package")
        if action == "cancel":
            return PackagerResult.cancelled()
        artifact = request.bundle_dir / f"{request.bundle_name}.bundle"
        artifact.parent.mkdir(parents=True, exist_ok=True)
        artifact.write_bytes("\n".join(request.assets).encode("utf-8"))
        return PackagerResult(
            status=STATUS_SUCCEEDED, artifact_path=artifact, checksum="0" * 64
        )

    @property
    def platforms(self) -> list:
        return [call.request.platform for call in self.calls]


@pytest.fixture(autouse=True)
def runtime_root(tmp_path, monkeypatch):
    root = tmp_path / "runtime"
    monkeypatch.setenv("BUNDLEFORGE_RUNTIME_ROOT", str(root))
    for name in (
        "BUNDLEFORGE_DATA_DIR",
        "BUNDLEFORGE_CONFIG_DIR",
        "BUNDLEFORGE_CACHE_DIR",
        "BUNDLEFORGE_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    runtime_paths.clear_cache()
    feature_flags.refresh_cache()
    set_registry(None)
    set_build_host(None)
    yield root
    set_registry(None)
    set_build_host(None)
    runtime_paths.clear_cache()


@pytest.fixture
def sample_project(tmp_path) -> Path:
    return write_project(tmp_path / "project")


@pytest.fixture
def build_env(sample_project, tmp_path):
    registry = ImportDescriptorRegistry(tmp_path / "descriptors.db")
    workspace = ProjectWorkspace(sample_project)
    workspace.seed_registry(registry)
    host = BuildHost()
    controller = EnvironmentController(host)
    packager = ScriptedPackager(host)
    orchestrator = BuildOrchestrator(
        workspace,
        registry=registry,
        controller=controller,
        packager=packager,
        output_root=tmp_path / "out",
    )
    return SimpleNamespace(
        workspace=workspace,
        registry=registry,
        host=host,
        controller=controller,
        packager=packager,
        orchestrator=orchestrator,
        output_root=tmp_path / "out",
    )
