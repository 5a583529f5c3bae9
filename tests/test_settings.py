from __future__ import annotations

import json

import pytest

from bundleforge.build.platforms import Platform
from bundleforge.config import feature_flags
from bundleforge.config.runtime_paths import config_dir, settings_file
from bundleforge.config.settings import SettingsManager


def test_defaults_written_to_config_dir():
    manager = SettingsManager()
    assert manager.path == settings_file()
    data = manager.load()
    assert data["stop_on_failure"] is False
    assert data["ordering"] == {"priority": ["iOS"], "terminal": ["WebGL"]}
    assert "webgl" in data["installed_targets"]


def test_merge_deep_merges_and_persists(tmp_path):
    manager = SettingsManager(tmp_path / "settings.json")
    manager.merge({"ordering": {"terminal": ["StandaloneOSX"]}, "policies": {"Android": "low"}})

    on_disk = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert on_disk["ordering"] == {"priority": ["iOS"], "terminal": ["StandaloneOSX"]}

    model = SettingsManager(tmp_path / "settings.json").load_model()
    assert model.policy_table().get(Platform.Android).max_texture_size == 512
    ordering = model.platform_ordering()
    assert ordering.order([Platform.StandaloneOSX, Platform.WebGL]) == [
        Platform.WebGL,
        Platform.StandaloneOSX,
    ]


def test_invalid_policy_is_not_saved(tmp_path):
    manager = SettingsManager(tmp_path / "settings.json")
    with pytest.raises(ValueError):
        manager.patch("policies", {"Android": "ultra"})
    assert not (tmp_path / "settings.json").exists()


def test_unreadable_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert SettingsManager(path).load() == SettingsManager(path).defaults()


def test_output_root_and_host(tmp_path):
    manager = SettingsManager(tmp_path / "settings.json")
    manager.patch("output_root", str(tmp_path / "bundles"))
    manager.patch("installed_targets", ["standalone-win64", "android"])
    model = manager.load_model()
    assert model.resolved_output_root() == (tmp_path / "bundles").resolve()
    host = model.build_host()
    assert host.installed_targets == {"standalone-win64", "android"}
    assert manager.get("missing", "fallback") == "fallback"
    assert "properties" in manager.schema()


def test_feature_flags_read_config_file():
    assert feature_flags.is_enabled("enable_bundle_api")
    config_dir("bundleforge.json").write_text(
        json.dumps({"features": {"enable_bundle_api": False, "custom": True}}),
        encoding="utf-8",
    )
    feature_flags.refresh_cache()
    assert not feature_flags.is_enabled("enable_bundle_api")
    assert feature_flags.is_enabled("custom")
    assert not feature_flags.is_enabled("unknown")
    assert feature_flags.is_enabled("unknown", default=True)
