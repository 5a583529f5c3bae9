"""
File-backed authoring workspace.

The real authoring framework lives outside bundleforge. ``ProjectWorkspace``
adapts a project directory with a ``project.json`` manifest so content roots,
their dependency graph and pending edits can be resolved without it::

    {
      "roots": [{"id": "lobby", "name": "Lobby", "kind": "scene",
                 "source": "Scenes/Lobby.scene", "platforms": ["WebGL"]}],
      "assets": {"Scenes/Lobby.scene": {"kind": "scene",
                                        "dependencies": ["Textures/Floor.png"]}},
      "build_scenes": [{"path": "Scenes/Global.scene", "enabled": true}]
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from bundleforge.build.dependencies import ContentRoot
from bundleforge.build.descriptors import AssetKind, ImportDescriptorRegistry, is_editor_path
from bundleforge.build.errors import ContentRootNotFound
from bundleforge.build.platforms import Platform, parse_platform
from bundleforge.obs.structlog_adapter import get_logger

LOGGER = get_logger("bundleforge.authoring", component="authoring")

MANIFEST_NAME = "project.json"


class AuthoringWorkspace(Protocol):
    def resolve(self, root_id: str) -> ContentRoot:
        ...

    def has_pending_changes(self, root: ContentRoot) -> bool:
        ...

    def persist_pending(self, root: ContentRoot) -> None:
        ...

    def discard_pending(self, root: ContentRoot) -> None:
        ...

    def declared_extra_roots(self, root: ContentRoot) -> Tuple[str, ...]:
        ...

    def asset_file(self, path: str) -> Path:
        ...


def _platform_mask(value: Any) -> Platform:
    if value in (None, "", [], 0):
        return Platform(0)
    if isinstance(value, (int, str)):
        return parse_platform(value)
    mask = Platform(0)
    for item in value:
        mask |= parse_platform(item)
    return mask


class ProjectWorkspace:
    """Authoring workspace and content graph backed by ``project.json``."""

    def __init__(self, project_dir: Path | str):
        self.project_dir = Path(project_dir).expanduser().resolve()
        self.manifest_path = self.project_dir / MANIFEST_NAME
        self._manifest: Dict[str, Any] = {}
        self._pending: Dict[str, Optional[bytes]] = {}
        self.reload()

    def reload(self) -> None:
        if not self.manifest_path.exists():
            raise FileNotFoundError(f"no {MANIFEST_NAME} in {self.project_dir}")
        self._manifest = json.loads(self.manifest_path.read_text(encoding="utf-8"))
        self._manifest.setdefault("roots", [])
        self._manifest.setdefault("assets", {})
        self._manifest.setdefault("build_scenes", [])

    # ----------------------------------------------------------------- roots
    def _root_from_entry(self, entry: Dict[str, Any]) -> ContentRoot:
        root_id = str(entry["id"])
        return ContentRoot(
            root_id=root_id,
            name=str(entry.get("name") or root_id),
            kind=str(entry.get("kind") or "prefab"),
            source_path=str(entry["source"]),
            supported_platforms=_platform_mask(entry.get("platforms")),
            extra_roots=tuple(entry.get("extra_roots") or ()),
        )

    def root_ids(self) -> List[str]:
        return sorted(str(entry["id"]) for entry in self._manifest["roots"])

    def resolve(self, root_id: str) -> ContentRoot:
        for entry in self._manifest["roots"]:
            if str(entry.get("id")) == root_id:
                return self._root_from_entry(entry)
        raise ContentRootNotFound(
            "content root not found", detail=f"unknown content root '{root_id}'"
        )

    # ---------------------------------------------------------------- assets
    def direct_dependencies(self, path: str) -> Sequence[str]:
        entry = self._manifest["assets"].get(path) or {}
        return list(entry.get("dependencies") or ())

    def asset_file(self, path: str) -> Path:
        return self.project_dir / path

    def seed_registry(self, registry: ImportDescriptorRegistry) -> int:
        """Register a descriptor for every manifest asset that lacks one."""
        added = 0
        for path, entry in sorted(self._manifest["assets"].items()):
            if path in registry:
                continue
            registry.register(
                path,
                AssetKind.coerce(entry.get("kind")),
                editor_only=bool(entry.get("editor_only", is_editor_path(path))),
                transient=bool(entry.get("transient", False)),
                readable=bool(entry.get("readable", False)),
                has_alpha=bool(entry.get("has_alpha", False)),
            )
            added += 1
        if added:
            LOGGER.info("descriptors seeded", added=added, project=str(self.project_dir))
        return added

    def declared_extra_roots(self, root: ContentRoot) -> Tuple[str, ...]:
        extras: List[str] = list(root.extra_roots)
        if root.kind == "scene":
            for scene in self._manifest["build_scenes"]:
                path = scene.get("path") if isinstance(scene, dict) else scene
                enabled = scene.get("enabled", True) if isinstance(scene, dict) else True
                if enabled and path and path != root.source_path and path not in extras:
                    extras.append(str(path))
        return tuple(extras)

    # ---------------------------------------------------------- pending edits
    def mark_dirty(self, path: str, content: Optional[bytes] = None) -> None:
        self._pending[path] = content

    def has_pending_changes(self, root: ContentRoot) -> bool:
        return bool(self._pending)

    def persist_pending(self, root: ContentRoot) -> None:
        for path, content in sorted(self._pending.items()):
            if content is None:
                continue
            target = self.asset_file(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        self.manifest_path.write_text(
            json.dumps(self._manifest, indent=2, sort_keys=True), encoding="utf-8"
        )
        LOGGER.info("pending changes persisted", root=root.root_id, count=len(self._pending))
        self._pending.clear()

    def discard_pending(self, root: ContentRoot) -> None:
        if self._pending:
            LOGGER.info("pending changes discarded", root=root.root_id, count=len(self._pending))
        self._pending.clear()


__all__ = ["AuthoringWorkspace", "MANIFEST_NAME", "ProjectWorkspace"]
