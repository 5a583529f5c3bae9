from __future__ import annotations

import pytest

from bundleforge.build.environment import (
    BuildHost,
    EnvironmentController,
    get_build_host,
    scripting_backend_for,
)
from bundleforge.build.errors import PlatformUnsupported, TargetEnvironmentError
from bundleforge.build.platforms import ALL_PLATFORMS, Platform


def test_controller_defaults_to_process_host():
    assert EnvironmentController().host is get_build_host()


def test_switch_applies_target_backends_and_toggles():
    host = BuildHost()
    controller = EnvironmentController(host)
    controller.switch(Platform.AndroidVR, ["vulkan"])
    assert host.active_target == "android"
    assert host.graphics_backends["android"] == ["vulkan"]
    assert host.use_default_graphics["android"] is False
    assert host.scripting_backend["android"] == "il2cpp"
    assert {"xr.openxr", "android.arch.arm64"} <= host.feature_toggles


def test_switch_clears_previous_platform_toggles():
    host = BuildHost(feature_toggles={"user.toggle"})
    controller = EnvironmentController(host)
    controller.switch(Platform.AndroidVR, ["vulkan"])
    controller.switch(Platform.WebGL, [])
    assert "xr.openxr" not in host.feature_toggles
    assert "xr.preprocess" not in host.feature_toggles
    assert host.feature_toggles == {"user.toggle", "webgl.strip-engine-code"}
    assert host.use_default_graphics["webgl"] is True
    assert "webgl" not in host.graphics_backends


@pytest.mark.parametrize("platform", ALL_PLATFORMS)
def test_switch_is_idempotent(platform):
    host = BuildHost()
    controller = EnvironmentController(host)
    controller.switch(platform)
    once = host.state()
    controller.switch(platform)
    assert host.state() == once


def test_switch_rejects_unsupported_backend_without_changes():
    host = BuildHost()
    controller = EnvironmentController(host)
    before = host.state()
    with pytest.raises(TargetEnvironmentError) as excinfo:
        controller.switch(Platform.iOS, ["direct3d11"])
    assert excinfo.value.error_kind == "EnvironmentSwitchFailed"
    assert host.state() == before


def test_resolve_rejects_uninstalled_target():
    host = BuildHost(installed_targets={"standalone-win64"})
    controller = EnvironmentController(host)
    with pytest.raises(PlatformUnsupported) as excinfo:
        controller.resolve(Platform.WebGL)
    assert str(excinfo.value) == "platform not supported by host toolchain"
    assert controller.resolve(Platform.StandaloneWindows64).target_id == "standalone-win64"


def test_session_restores_everything():
    host = BuildHost(feature_toggles={"user.toggle"})
    controller = EnvironmentController(host)
    before = host.state()
    with controller.session():
        assert host.hot_reload_suspended
        controller.switch(Platform.iOS, ["metal"])
        controller.switch(Platform.Android, ["vulkan"])
    assert host.state() == before
    assert not host.hot_reload_suspended
    assert host.switch_history == ["ios", "android", "standalone-win64"]


def test_session_restores_after_error():
    host = BuildHost()
    controller = EnvironmentController(host)
    before = host.state()
    with pytest.raises(RuntimeError):
        with controller.session():
            controller.switch(Platform.WebGL)
            raise RuntimeError("boom")
    assert host.state() == before


def test_snapshot_restores_only_once():
    controller = EnvironmentController(BuildHost())
    snapshot = controller.capture()
    controller.restore(snapshot)
    assert snapshot.consumed
    with pytest.raises(RuntimeError):
        controller.restore(snapshot)


def test_hot_reload_locks_nest():
    host = BuildHost()
    controller = EnvironmentController(host)
    controller.suspend_hot_reload()
    controller.suspend_hot_reload()
    controller.resume_hot_reload()
    assert host.hot_reload_suspended
    controller.resume_hot_reload()
    controller.resume_hot_reload()
    assert host.hot_reload_locks == 0


def test_scripting_backend_mapping():
    assert scripting_backend_for(Platform.WebGL) == "il2cpp"
    assert scripting_backend_for(Platform.StandaloneOSX) == "mono"
