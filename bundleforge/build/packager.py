"""
Packager invocation.

A packager turns a named asset closure into one platform artifact. The
orchestrator only talks to the ``Packager`` protocol; ``ArchivePackager`` is
the bundled implementation and writes deterministic, content-addressed ZIP
bundles with a provenance sidecar.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from bundleforge.build.descriptors import ImportDescriptorRegistry
from bundleforge.build.platforms import Platform, ToolchainTarget, platform_name
from bundleforge.config.feature_flags import is_enabled
from bundleforge.core import provenance
from bundleforge.core.archive import DeterministicZipBuilder, sha256_bytes
from bundleforge.obs.structlog_adapter import get_logger

LOGGER = get_logger("bundleforge.packager", component="packager")

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
MANIFEST_ENTRY = "bundle_manifest.json"


class CancellationToken:
    """Cooperative cancellation flag checked at suspension points."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class PackageRequest:
    bundle_name: str
    assets: Sequence[str]
    platform: Platform
    target: ToolchainTarget
    output_dir: Path
    cancel_token: Optional[CancellationToken] = None

    @property
    def bundle_dir(self) -> Path:
        return self.output_dir / f"{self.bundle_name}_Data"


@dataclass
class PackagerResult:
    status: str
    artifact_path: Optional[Path] = None
    checksum: Optional[str] = None
    detail: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCEEDED

    @classmethod
    def failed(cls, detail: str) -> "PackagerResult":
        return cls(status=STATUS_FAILED, detail=detail)

    @classmethod
    def cancelled(cls, detail: str = "packaging cancelled") -> "PackagerResult":
        return cls(status=STATUS_CANCELLED, detail=detail)


class Packager(Protocol):
    def package(self, request: PackageRequest) -> PackagerResult:
        ...


class _AssetSource(Protocol):
    def asset_file(self, path: str) -> Path:
        ...


class ArchivePackager:
    """Deterministic ZIP packager reading asset files from a workspace."""

    def __init__(self, workspace: _AssetSource, registry: ImportDescriptorRegistry):
        self.workspace = workspace
        self.registry = registry

    def _manifest(self, request: PackageRequest) -> Dict[str, Any]:
        assets: List[Dict[str, Any]] = []
        for path in sorted(request.assets):
            descriptor = self.registry.get(path)
            entry: Dict[str, Any] = {"path": path}
            if descriptor is not None:
                entry["kind"] = descriptor.kind.value
                entry["mesh_compression"] = descriptor.mesh_compression
                override = descriptor.platform_overrides.get(request.platform)
                entry["override"] = override.to_payload() if override else None
            assets.append(entry)
        return {
            "bundle": request.bundle_name,
            "platform": platform_name(request.platform),
            "target": request.target.target_id,
            "group": request.target.group,
            "assets": assets,
        }

    def package(self, request: PackageRequest) -> PackagerResult:
        token = request.cancel_token
        builder = DeterministicZipBuilder()
        for path in request.assets:
            if token is not None and token.cancelled:
                return PackagerResult.cancelled(token.reason or "packaging cancelled")
            source = self.workspace.asset_file(path)
            if not source.is_file():
                LOGGER.warning(
                    "asset source missing", bundle=request.bundle_name, asset=path
                )
                return PackagerResult.failed(f"asset source missing: {path}")
            builder.add_file(f"assets/{path}", source)

        manifest = self._manifest(request)
        builder.add_bytes(
            MANIFEST_ENTRY,
            json.dumps(manifest, indent=2, sort_keys=True).encode("utf-8"),
        )
        payload = builder.build()
        if token is not None and token.cancelled:
            return PackagerResult.cancelled(token.reason or "packaging cancelled")

        checksum = sha256_bytes(payload)
        bundle_dir = request.bundle_dir
        bundle_dir.mkdir(parents=True, exist_ok=True)
        artifact = bundle_dir / f"{request.bundle_name}.{checksum[:12]}.bundle"
        artifact.write_bytes(payload)

        extra: Dict[str, Any] = {"entries": len(builder)}
        if is_enabled("enable_provenance_sidecars", default=True):
            stamp = provenance.stamp_path(
                artifact,
                source="bundleforge.packager",
                inputs={
                    "bundle": request.bundle_name,
                    "platform": platform_name(request.platform),
                    "assets": sorted(request.assets),
                },
            )
            extra["provenance"] = stamp["sidecar_path"]

        LOGGER.info(
            "bundle packaged",
            bundle=request.bundle_name,
            platform=platform_name(request.platform),
            artifact=artifact.as_posix(),
            checksum=checksum,
        )
        return PackagerResult(
            status=STATUS_SUCCEEDED,
            artifact_path=artifact,
            checksum=checksum,
            extra=extra,
        )


__all__ = [
    "ArchivePackager",
    "CancellationToken",
    "MANIFEST_ENTRY",
    "PackageRequest",
    "Packager",
    "PackagerResult",
    "STATUS_CANCELLED",
    "STATUS_FAILED",
    "STATUS_SUCCEEDED",
]
