"""
Build platforms, the static platform -> toolchain table and canonical ordering.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntFlag
from typing import Dict, FrozenSet, Iterable, List, Optional, Union


class Platform(IntFlag):
    StandaloneWindows64 = 1
    Android = 2
    iOS = 4
    StandaloneOSX = 8
    WebGL = 16
    StandaloneLinux64 = 32
    AndroidVR = 64


# Members in declaration order; iterating an IntFlag composite is not
# available on every supported interpreter.
ALL_PLATFORMS: tuple[Platform, ...] = tuple(
    sorted((member for member in Platform.__members__.values()), key=int)
)

# Used when a content root declares no supported platforms.
DEFAULT_ROOT_PLATFORMS = (
    Platform.StandaloneWindows64 | Platform.Android | Platform.iOS | Platform.WebGL
)

_ALIASES: Dict[str, Platform] = {
    "windows": Platform.StandaloneWindows64,
    "win64": Platform.StandaloneWindows64,
    "mac": Platform.StandaloneOSX,
    "osx": Platform.StandaloneOSX,
    "macos": Platform.StandaloneOSX,
    "linux": Platform.StandaloneLinux64,
    "ios": Platform.iOS,
    "android": Platform.Android,
    "quest": Platform.AndroidVR,
    "webgl": Platform.WebGL,
}

PlatformLike = Union[Platform, int, str]


def platform_name(platform: Platform) -> str:
    return Platform(platform).name or str(int(platform))


def parse_platform(value: PlatformLike) -> Platform:
    """Coerce a member name, alias or flag value into a ``Platform``."""
    if isinstance(value, Platform):
        return value
    if isinstance(value, int):
        if value <= 0 or value & ~int(_all_bits()):
            raise ValueError(f"unknown platform value {value}")
        return Platform(value)
    text = str(value).strip()
    for name, member in Platform.__members__.items():
        if name.lower() == text.lower():
            return member
    alias = _ALIASES.get(text.lower())
    if alias is None:
        raise ValueError(f"unknown platform '{value}'")
    return alias


def _all_bits() -> Platform:
    combined = Platform(0)
    for member in ALL_PLATFORMS:
        combined |= member
    return combined


def expand_platforms(
    platforms: Union[PlatformLike, Iterable[PlatformLike], None],
) -> List[Platform]:
    """Split a flag combination (or a list of them) into single platforms.

    Output follows declaration order and drops duplicates, so overlapping
    flag combinations expand to each platform once.
    """
    if platforms is None:
        return []
    if isinstance(platforms, (Platform, int, str)):
        items: Iterable[PlatformLike] = [platforms]
    else:
        items = platforms

    combined = Platform(0)
    for item in items:
        combined |= parse_platform(item)
    return [member for member in ALL_PLATFORMS if combined & member]


@dataclass(frozen=True)
class ToolchainTarget:
    target_id: str
    group: str


TOOLCHAIN_TARGETS: Dict[Platform, ToolchainTarget] = {
    Platform.StandaloneWindows64: ToolchainTarget("standalone-win64", "standalone"),
    Platform.Android: ToolchainTarget("android", "android"),
    Platform.AndroidVR: ToolchainTarget("android", "android"),
    Platform.iOS: ToolchainTarget("ios", "ios"),
    Platform.StandaloneOSX: ToolchainTarget("standalone-osx", "standalone"),
    Platform.WebGL: ToolchainTarget("webgl", "webgl"),
    Platform.StandaloneLinux64: ToolchainTarget("standalone-linux64", "standalone"),
}


def validate_toolchain_table(table: Dict[Platform, ToolchainTarget]) -> None:
    for platform, target in table.items():
        if not isinstance(platform, Platform) or bin(int(platform)).count("1") != 1:
            raise ValueError(f"toolchain table key {platform!r} is not a single platform")
        if not isinstance(target, ToolchainTarget) or not target.target_id:
            raise ValueError(f"toolchain table entry for {platform!r} is invalid")


validate_toolchain_table(TOOLCHAIN_TARGETS)


def resolve_target(
    platform: Platform, table: Optional[Dict[Platform, ToolchainTarget]] = None
) -> Optional[ToolchainTarget]:
    """Return the toolchain target for ``platform`` or ``None`` when unmapped."""
    return (table if table is not None else TOOLCHAIN_TARGETS).get(platform)


@dataclass(frozen=True)
class PlatformOrdering:
    """Canonical processing order for a build.

    Platforms in the ``priority`` slot go first (switching into them is the
    most expensive), platforms in the ``terminal`` slot go last (they leave
    the toolchain in a state that is only safe at the end). Everything else
    keeps its relative order.
    """

    priority: FrozenSet[Platform] = field(default_factory=lambda: frozenset({Platform.iOS}))
    terminal: FrozenSet[Platform] = field(
        default_factory=lambda: frozenset({Platform.WebGL})
    )

    @classmethod
    def from_names(
        cls, priority: Iterable[str] = (), terminal: Iterable[str] = ()
    ) -> "PlatformOrdering":
        return cls(
            priority=frozenset(parse_platform(name) for name in priority),
            terminal=frozenset(parse_platform(name) for name in terminal),
        )

    def order(self, platforms: Iterable[Platform]) -> List[Platform]:
        unique: List[Platform] = []
        for platform in platforms:
            if platform not in unique:
                unique.append(platform)
        first = [p for p in unique if p in self.priority and p not in self.terminal]
        last = [p for p in unique if p in self.terminal]
        middle = [p for p in unique if p not in first and p not in last]
        return first + middle + last


__all__ = [
    "ALL_PLATFORMS",
    "DEFAULT_ROOT_PLATFORMS",
    "Platform",
    "PlatformOrdering",
    "TOOLCHAIN_TARGETS",
    "ToolchainTarget",
    "expand_platforms",
    "parse_platform",
    "platform_name",
    "resolve_target",
    "validate_toolchain_table",
]
