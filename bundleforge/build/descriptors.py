"""
Import descriptor registry.

Every importable asset path owns one mutable ``ImportDescriptor`` holding its
bundle affiliation and per-platform encoding overrides. The registry is a
process-wide singleton during a build; only the orchestrator mutates it, and
always before the target environment is switched.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Set

from bundleforge.build.platforms import Platform, parse_platform, platform_name
from bundleforge.build.policy import EncodingOverride, MeshCompression
from bundleforge.core.base_store import BaseStore
from bundleforge.obs.structlog_adapter import get_logger

LOGGER = get_logger("bundleforge.descriptors", component="descriptors")


class AssetKind(str, Enum):
    SCENE = "scene"
    PREFAB = "prefab"
    TEXTURE = "texture"
    NORMAL_MAP = "normal_map"
    SPRITE = "sprite"
    MODEL = "model"
    MATERIAL = "material"
    AUDIO = "audio"
    SCRIPT = "script"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: Any) -> "AssetKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "other").lower())
        except ValueError:
            return cls.OTHER


class ClaimOutcome(str, Enum):
    ASSIGNED = "assigned"
    ALREADY_AFFILIATED = "already_affiliated"
    HELD = "held"


def is_editor_path(path: str) -> bool:
    """Return True when ``path`` sits below an ``Editor`` folder."""
    return "Editor" in PurePosixPath(path.replace("\\", "/")).parts[:-1]


@dataclass
class ImportDescriptor:
    asset_path: str
    kind: AssetKind = AssetKind.OTHER
    bundle_affiliation: str = ""
    platform_overrides: Dict[Platform, EncodingOverride] = field(default_factory=dict)
    mesh_compression: str = MeshCompression.OFF.value
    editor_only: bool = False
    transient: bool = False
    readable: bool = False
    has_alpha: bool = False

    @property
    def excluded(self) -> bool:
        return self.editor_only or self.transient

    def copy(self) -> "ImportDescriptor":
        return replace(self, platform_overrides=dict(self.platform_overrides))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "asset_path": self.asset_path,
            "kind": self.kind.value,
            "bundle_affiliation": self.bundle_affiliation,
            "platform_overrides": {
                platform_name(platform): override.to_payload()
                for platform, override in sorted(
                    self.platform_overrides.items(), key=lambda item: int(item[0])
                )
            },
            "mesh_compression": self.mesh_compression,
            "editor_only": self.editor_only,
            "transient": self.transient,
            "readable": self.readable,
            "has_alpha": self.has_alpha,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ImportDescriptor":
        overrides = {
            parse_platform(key): EncodingOverride.from_payload(value)
            for key, value in (payload.get("platform_overrides") or {}).items()
        }
        return cls(
            asset_path=str(payload["asset_path"]),
            kind=AssetKind.coerce(payload.get("kind")),
            bundle_affiliation=str(payload.get("bundle_affiliation") or ""),
            platform_overrides=overrides,
            mesh_compression=str(
                payload.get("mesh_compression") or MeshCompression.OFF.value
            ),
            editor_only=bool(payload.get("editor_only", False)),
            transient=bool(payload.get("transient", False)),
            readable=bool(payload.get("readable", False)),
            has_alpha=bool(payload.get("has_alpha", False)),
        )


class ImportDescriptorRegistry(BaseStore):
    """SQLite-backed descriptor map with an in-memory cache."""

    TABLE = "import_descriptors"

    def __init__(self, db_path=None):
        super().__init__(db_path)
        self._cache: Dict[str, ImportDescriptor] | None = None
        self._under_construction: Set[str] = set()

    # ---------------------------------------------------------------- lookup
    def _descriptors(self) -> Dict[str, ImportDescriptor]:
        if self._cache is None:
            rows = self.fetchall(
                f"SELECT asset_path, value_json FROM {self.TABLE} ORDER BY asset_path"
            )
            self._cache = {
                row["asset_path"]: ImportDescriptor.from_payload(self.loads(row["value_json"]))
                for row in rows
            }
        return self._cache

    def get(self, path: str) -> Optional[ImportDescriptor]:
        descriptor = self._descriptors().get(path)
        return descriptor.copy() if descriptor is not None else None

    def all_paths(self) -> List[str]:
        return sorted(self._descriptors())

    def __contains__(self, path: object) -> bool:
        return path in self._descriptors()

    # ----------------------------------------------------------------- write
    def save(self, descriptor: ImportDescriptor) -> ImportDescriptor:
        stored = descriptor.copy()
        self.execute(
            f"""
            INSERT INTO {self.TABLE} (asset_path, value_json, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(asset_path) DO UPDATE SET
                value_json = excluded.value_json,
                updated_at = CURRENT_TIMESTAMP
            """,
            (stored.asset_path, self.dumps(stored.to_payload())),
        )
        self._descriptors()[stored.asset_path] = stored
        return stored.copy()

    def register(
        self, path: str, kind: AssetKind | str = AssetKind.OTHER, **fields: Any
    ) -> ImportDescriptor:
        """Create or replace the descriptor for ``path``."""
        fields.setdefault("editor_only", is_editor_path(path))
        descriptor = ImportDescriptor(asset_path=path, kind=AssetKind.coerce(kind), **fields)
        return self.save(descriptor)

    def ensure(self, path: str, **defaults: Any) -> ImportDescriptor:
        """Return the descriptor for ``path``, registering it with ``defaults`` if absent."""
        existing = self.get(path)
        if existing is not None:
            return existing
        kind = defaults.pop("kind", AssetKind.OTHER)
        return self.register(path, kind, **defaults)

    def delete(self, path: str) -> None:
        self.execute(f"DELETE FROM {self.TABLE} WHERE asset_path = ?", (path,))
        self._descriptors().pop(path, None)

    def set_platform_override(
        self, path: str, platform: Platform, override: EncodingOverride
    ) -> ImportDescriptor:
        descriptor = self._require(path)
        descriptor.platform_overrides[platform] = override
        return self.save(descriptor)

    def set_mesh_compression(self, path: str, level: str) -> ImportDescriptor:
        descriptor = self._require(path)
        descriptor.mesh_compression = MeshCompression(level).value
        return self.save(descriptor)

    def _require(self, path: str) -> ImportDescriptor:
        descriptor = self.get(path)
        if descriptor is None:
            raise KeyError(f"no import descriptor for '{path}'")
        return descriptor

    # ------------------------------------------------------------ affiliation
    def begin_bundle(self, bundle: str) -> None:
        self._under_construction.add(bundle)

    def end_bundle(self, bundle: str) -> None:
        self._under_construction.discard(bundle)

    def bundles_under_construction(self) -> Set[str]:
        return set(self._under_construction)

    def claim(self, path: str, bundle: str) -> ClaimOutcome:
        """Affiliate ``path`` with ``bundle`` unless another live bundle holds it."""
        descriptor = self._require(path)
        current = descriptor.bundle_affiliation
        if current == bundle:
            return ClaimOutcome.ALREADY_AFFILIATED
        if current and current in self._under_construction:
            LOGGER.warning(
                "asset held by another bundle", asset=path, bundle=bundle, holder=current
            )
            return ClaimOutcome.HELD
        descriptor.bundle_affiliation = bundle
        self.save(descriptor)
        if current:
            LOGGER.info("asset reassigned", asset=path, bundle=bundle, previous=current)
        return ClaimOutcome.ASSIGNED

    def assets_in_bundle(self, bundle: str) -> List[str]:
        return [
            path
            for path, descriptor in sorted(self._descriptors().items())
            if descriptor.bundle_affiliation == bundle
        ]

    def release_bundle(self, bundle: str) -> List[str]:
        """Clear the affiliation of every asset in ``bundle``; return their paths."""
        released = self.assets_in_bundle(bundle)
        for path in released:
            descriptor = self._require(path)
            descriptor.bundle_affiliation = ""
            self.save(descriptor)
        self._under_construction.discard(bundle)
        return released

    def reload(self) -> None:
        self._cache = None


_REGISTRY: Optional[ImportDescriptorRegistry] = None


def get_registry() -> ImportDescriptorRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = ImportDescriptorRegistry()
    return _REGISTRY


def set_registry(registry: Optional[ImportDescriptorRegistry]) -> None:
    global _REGISTRY
    _REGISTRY = registry


__all__ = [
    "AssetKind",
    "ClaimOutcome",
    "ImportDescriptor",
    "ImportDescriptorRegistry",
    "get_registry",
    "is_editor_path",
    "set_registry",
]
