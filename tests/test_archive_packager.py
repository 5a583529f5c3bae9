from __future__ import annotations

import json
import zipfile
from pathlib import Path

from bundleforge.build.packager import (
    MANIFEST_ENTRY,
    STATUS_CANCELLED,
    STATUS_FAILED,
    STATUS_SUCCEEDED,
    ArchivePackager,
    CancellationToken,
    PackageRequest,
)
from bundleforge.build.platforms import Platform, resolve_target
from bundleforge.config import feature_flags
from bundleforge.core.archive import sha256_bytes

from conftest import CRATE_CLOSURE


def _request(output: Path, assets=CRATE_CLOSURE, token=None) -> PackageRequest:
    return PackageRequest(
        bundle_name="crate_Android",
        assets=tuple(assets),
        platform=Platform.Android,
        target=resolve_target(Platform.Android),
        output_dir=output,
        cancel_token=token,
    )


def test_package_writes_content_addressed_bundle(build_env, tmp_path):
    packager = ArchivePackager(build_env.workspace, build_env.registry)
    result = packager.package(_request(tmp_path / "out"))

    assert result.status == STATUS_SUCCEEDED
    artifact = result.artifact_path
    assert artifact.parent == tmp_path / "out" / "crate_Android_Data"
    assert artifact.name == f"crate_Android.{result.checksum[:12]}.bundle"
    assert sha256_bytes(artifact.read_bytes()) == result.checksum
    assert Path(result.extra["provenance"]).exists()

    with zipfile.ZipFile(artifact) as archive:
        names = archive.namelist()
        manifest = json.loads(archive.read(MANIFEST_ENTRY))
    assert names == sorted(f"assets/{path}" for path in CRATE_CLOSURE) + [MANIFEST_ENTRY]
    assert manifest["bundle"] == "crate_Android"
    assert manifest["target"] == "android"
    assert [entry["path"] for entry in manifest["assets"]] == sorted(CRATE_CLOSURE)


def test_package_is_deterministic(build_env, tmp_path):
    packager = ArchivePackager(build_env.workspace, build_env.registry)
    first = packager.package(_request(tmp_path / "a"))
    second = packager.package(_request(tmp_path / "b"))
    assert first.checksum == second.checksum
    assert first.artifact_path.read_bytes() == second.artifact_path.read_bytes()


def test_missing_source_fails(build_env, tmp_path):
    (build_env.workspace.project_dir / "Models/Crate.fbx").unlink()
    packager = ArchivePackager(build_env.workspace, build_env.registry)
    result = packager.package(_request(tmp_path / "out"))
    assert result.status == STATUS_FAILED
    assert result.detail == "asset source missing: Models/Crate.fbx"
    assert not (tmp_path / "out").exists()


def test_cancelled_token_stops_packaging(build_env, tmp_path):
    token = CancellationToken()
    token.cancel("user pressed stop")
    packager = ArchivePackager(build_env.workspace, build_env.registry)
    result = packager.package(_request(tmp_path / "out", token=token))
    assert result.status == STATUS_CANCELLED
    assert result.detail == "user pressed stop"


def test_sidecar_respects_feature_flag(build_env, tmp_path, monkeypatch):
    monkeypatch.setattr(
        feature_flags,
        "load_feature_flags",
        lambda **_: {"enable_provenance_sidecars": False},
    )
    packager = ArchivePackager(build_env.workspace, build_env.registry)
    result = packager.package(_request(tmp_path / "out"))
    assert result.succeeded
    assert "provenance" not in result.extra
    assert not list((tmp_path / "out").rglob("*.prov.json"))
