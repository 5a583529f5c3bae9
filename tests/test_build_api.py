from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from bundleforge.build.batches import BatchStore
from bundleforge.config.settings import SettingsManager
from bundleforge.server.app import create_app
from bundleforge.server.modules import build_api


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(build_api, "_settings", SettingsManager(tmp_path / "settings.json"))
    return TestClient(create_app())


def _flags(enabled):
    return lambda name, **__: name in enabled


def test_health(client):
    assert client.get("/health").json()["ok"] is True


def test_platforms_and_policies(client):
    resp = client.get("/api/builds/platforms")
    assert resp.status_code == 200
    items = resp.json()["items"]
    assert len(items) == 7
    assert items[0]["graphics_backends"] == ["direct3d11", "direct3d12"]

    resp = client.post("/api/builds/policies", json={"policies": {"iOS": "high"}})
    assert resp.status_code == 200
    assert resp.json()["policies"]["iOS"]["max_texture_size"] == 2048

    resp = client.post("/api/builds/policies", json={"policies": {"iOS": "ultra"}})
    assert resp.status_code == 422


def test_build_endpoint_runs_build(client, sample_project):
    resp = client.post(
        "/api/builds",
        json={"project": str(sample_project), "root": "crate", "platforms": ["Android"]},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    artifact = Path(data["report"]["succeeded"][0]["artifact_path"])
    assert artifact.exists()


def test_build_endpoint_errors(client, sample_project, tmp_path):
    resp = client.post("/api/builds", json={"project": str(sample_project), "root": "ghost"})
    assert resp.status_code == 404
    assert resp.json()["detail"]["error_kind"] == "ContentRootNotFound"

    resp = client.post("/api/builds", json={"project": str(tmp_path / "nowhere"), "root": "x"})
    assert resp.status_code == 404

    resp = client.post(
        "/api/builds",
        json={"project": str(sample_project), "root": "crate", "platforms": ["Dreamcast"]},
    )
    assert resp.status_code == 422

    resp = client.post("/api/builds", json={"root": "crate"})
    assert resp.status_code == 400


def test_batch_endpoint_runs_current_batch(client, sample_project):
    store = BatchStore()
    store.set_selection(store.current().name, ["crate"])
    resp = client.post("/api/builds/batch", json={"project": str(sample_project)})
    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert [outcome["root_id"] for outcome in data["outcomes"]] == ["crate"]


def test_builds_gated_separately(client, sample_project, monkeypatch):
    monkeypatch.setattr(
        build_api.feature_flags, "is_enabled", _flags({"enable_bundle_api"})
    )
    assert client.get("/api/builds/platforms").status_code == 200
    resp = client.post(
        "/api/builds", json={"project": str(sample_project), "root": "crate"}
    )
    assert resp.status_code == 403
