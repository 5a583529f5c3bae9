"""
Target environment controller.

The build host owns exactly one active build target at a time, plus a set of
toolchain switches (graphics backends, scripting backend, feature toggles)
that the packager reads implicitly. ``EnvironmentController`` is the only
object allowed to change that state during a build, and ``session()`` makes
sure whatever it changed is put back.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from bundleforge.build.errors import PlatformUnsupported, TargetEnvironmentError
from bundleforge.build.platforms import (
    TOOLCHAIN_TARGETS,
    Platform,
    ToolchainTarget,
    platform_name,
    resolve_target,
)
from bundleforge.obs.structlog_adapter import get_logger

LOGGER = get_logger("bundleforge.environment", component="environment")

DEFAULT_TARGET = "standalone-win64"

# Graphics backends each toolchain target accepts.
SUPPORTED_GRAPHICS_BACKENDS: Dict[str, FrozenSet[str]] = {
    "standalone-win64": frozenset({"direct3d11", "direct3d12", "vulkan", "opengl-core"}),
    "standalone-osx": frozenset({"metal", "opengl-core"}),
    "standalone-linux64": frozenset({"opengl-core", "vulkan"}),
    "android": frozenset({"opengles3", "vulkan"}),
    "ios": frozenset({"metal", "opengles3"}),
    "webgl": frozenset({"webgl2", "opengles3"}),
}

IL2CPP_PLATFORMS = frozenset({Platform.Android, Platform.AndroidVR, Platform.WebGL})

PLATFORM_FEATURE_TOGGLES: Dict[Platform, FrozenSet[str]] = {
    Platform.StandaloneWindows64: frozenset({"standalone.arch.x86_64", "xr.preprocess"}),
    Platform.StandaloneOSX: frozenset({"standalone.arch.universal", "xr.preprocess"}),
    Platform.StandaloneLinux64: frozenset({"standalone.arch.x86_64", "xr.preprocess"}),
    Platform.Android: frozenset({"android.arch.arm64", "xr.preprocess"}),
    Platform.AndroidVR: frozenset({"android.arch.arm64", "xr.preprocess", "xr.openxr"}),
    Platform.iOS: frozenset({"ios.arch.arm64", "xr.preprocess"}),
    Platform.WebGL: frozenset({"webgl.strip-engine-code"}),
}

_ALL_PLATFORM_TOGGLES: FrozenSet[str] = frozenset().union(*PLATFORM_FEATURE_TOGGLES.values())


def scripting_backend_for(platform: Platform) -> str:
    return "il2cpp" if platform in IL2CPP_PLATFORMS else "mono"


@dataclass
class BuildHost:
    """Process-wide build-host state read implicitly by the packager."""

    active_target: str = DEFAULT_TARGET
    installed_targets: Set[str] = field(
        default_factory=lambda: {target.target_id for target in TOOLCHAIN_TARGETS.values()}
    )
    graphics_backends: Dict[str, List[str]] = field(default_factory=dict)
    use_default_graphics: Dict[str, bool] = field(default_factory=dict)
    scripting_backend: Dict[str, str] = field(default_factory=dict)
    feature_toggles: Set[str] = field(default_factory=set)
    hot_reload_locks: int = 0
    switch_history: List[str] = field(default_factory=list)

    def is_target_supported(self, target_id: str) -> bool:
        return target_id in self.installed_targets

    @property
    def hot_reload_suspended(self) -> bool:
        return self.hot_reload_locks > 0

    def state(self) -> Dict[str, object]:
        """Comparable view of the switchable state (history excluded)."""
        return {
            "active_target": self.active_target,
            "graphics_backends": {k: list(v) for k, v in sorted(self.graphics_backends.items())},
            "use_default_graphics": dict(sorted(self.use_default_graphics.items())),
            "scripting_backend": dict(sorted(self.scripting_backend.items())),
            "feature_toggles": sorted(self.feature_toggles),
            "hot_reload_locks": self.hot_reload_locks,
        }


_HOST: Optional[BuildHost] = None


def get_build_host(create: Optional[Callable[[], BuildHost]] = None) -> BuildHost:
    """Return the process-wide host, building it with ``create`` on first use."""
    global _HOST
    if _HOST is None:
        _HOST = create() if create is not None else BuildHost()
    return _HOST


def set_build_host(host: Optional[BuildHost]) -> None:
    global _HOST
    _HOST = host


@dataclass(frozen=True)
class EnvironmentSnapshot:
    active_target: str
    hot_reload_locks: int
    feature_toggles: FrozenSet[str]
    graphics_backends: Mapping[str, Tuple[str, ...]]
    use_default_graphics: Mapping[str, bool]
    scripting_backend: Mapping[str, str]
    _consumed: List[bool] = field(default_factory=lambda: [False], compare=False, repr=False)

    @property
    def consumed(self) -> bool:
        return self._consumed[0]

    def consume(self) -> None:
        if self._consumed[0]:
            raise RuntimeError("environment snapshot already restored")
        self._consumed[0] = True


class EnvironmentController:
    """Switches the build host between targets and restores it afterwards."""

    def __init__(self, host: Optional[BuildHost] = None):
        self.host = host if host is not None else get_build_host()
        self._applied_toggles: Set[str] = set()

    def capture(self) -> EnvironmentSnapshot:
        host = self.host
        return EnvironmentSnapshot(
            active_target=host.active_target,
            hot_reload_locks=host.hot_reload_locks,
            feature_toggles=frozenset(host.feature_toggles),
            graphics_backends=MappingProxyType(
                {key: tuple(value) for key, value in host.graphics_backends.items()}
            ),
            use_default_graphics=MappingProxyType(dict(host.use_default_graphics)),
            scripting_backend=MappingProxyType(dict(host.scripting_backend)),
        )

    def resolve(self, platform: Platform) -> ToolchainTarget:
        target = resolve_target(platform)
        if target is None or not self.host.is_target_supported(target.target_id):
            LOGGER.warning("platform unsupported", platform=platform_name(platform))
            raise PlatformUnsupported("platform not supported by host toolchain")
        return target

    def switch(self, platform: Platform, backends: Sequence[str] = ()) -> ToolchainTarget:
        """Make ``platform`` the active target and apply its toolchain settings."""
        target = self.resolve(platform)
        requested = list(backends)
        supported = SUPPORTED_GRAPHICS_BACKENDS.get(target.target_id, frozenset())
        unsupported = [name for name in requested if name not in supported]
        if unsupported:
            raise TargetEnvironmentError(
                "unsupported graphics backend combination",
                detail=(
                    f"{platform_name(platform)} cannot use graphics backend(s) "
                    f"{', '.join(unsupported)}"
                ),
            )

        host = self.host
        host.feature_toggles.difference_update(_ALL_PLATFORM_TOGGLES | self._applied_toggles)
        self._applied_toggles = set()

        if host.active_target != target.target_id:
            host.switch_history.append(target.target_id)
        host.active_target = target.target_id

        if requested:
            host.use_default_graphics[target.target_id] = False
            host.graphics_backends[target.target_id] = requested
        else:
            host.use_default_graphics[target.target_id] = True
            host.graphics_backends.pop(target.target_id, None)
        host.scripting_backend[target.group] = scripting_backend_for(platform)

        toggles = set(PLATFORM_FEATURE_TOGGLES.get(platform, frozenset()))
        host.feature_toggles.update(toggles)
        self._applied_toggles = toggles

        LOGGER.info(
            "target environment switched",
            platform=platform_name(platform),
            target=target.target_id,
            backends=requested,
        )
        return target

    def suspend_hot_reload(self) -> None:
        self.host.hot_reload_locks += 1

    def resume_hot_reload(self) -> None:
        if self.host.hot_reload_locks > 0:
            self.host.hot_reload_locks -= 1

    def restore(self, snapshot: EnvironmentSnapshot) -> None:
        snapshot.consume()
        host = self.host
        if host.active_target != snapshot.active_target:
            host.switch_history.append(snapshot.active_target)
        host.active_target = snapshot.active_target
        host.feature_toggles = set(snapshot.feature_toggles)
        host.graphics_backends = {
            key: list(value) for key, value in snapshot.graphics_backends.items()
        }
        host.use_default_graphics = dict(snapshot.use_default_graphics)
        host.scripting_backend = dict(snapshot.scripting_backend)
        host.hot_reload_locks = snapshot.hot_reload_locks
        self._applied_toggles = set()
        LOGGER.info("target environment restored", target=snapshot.active_target)

    @contextmanager
    def session(self) -> Iterator[EnvironmentSnapshot]:
        snapshot = self.capture()
        self.suspend_hot_reload()
        try:
            yield snapshot
        finally:
            self.restore(snapshot)


__all__ = [
    "BuildHost",
    "DEFAULT_TARGET",
    "EnvironmentController",
    "EnvironmentSnapshot",
    "PLATFORM_FEATURE_TOGGLES",
    "SUPPORTED_GRAPHICS_BACKENDS",
    "get_build_host",
    "scripting_backend_for",
    "set_build_host",
]
