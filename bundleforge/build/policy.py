"""
Platform policy table and per-asset encoding overrides.

A ``PlatformPolicy`` describes how textures and meshes should be encoded for
one platform. Policies are opt-in: unless ``override_defaults`` is set the
asset's own import settings are left alone.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bundleforge.build.platforms import ALL_PLATFORMS, Platform, parse_platform, platform_name
from bundleforge.obs.structlog_adapter import get_logger

if TYPE_CHECKING:
    from bundleforge.build.descriptors import ImportDescriptor, ImportDescriptorRegistry

LOGGER = get_logger("bundleforge.policy", component="policy")

TEXTURE_SIZES: tuple[int, ...] = (32, 64, 128, 256, 512, 1024, 2048, 4096, 8192)
MOBILE_GROUPS = frozenset({"android", "ios"})


class MeshCompression(str, Enum):
    OFF = "off"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class EncodingOverride:
    max_dimension: int
    use_compression: bool
    compression_quality: int
    mesh_compression: str = MeshCompression.OFF.value
    texture_format: Optional[str] = None
    overridden: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "EncodingOverride":
        return cls(
            max_dimension=int(payload.get("max_dimension", 2048)),
            use_compression=bool(payload.get("use_compression", False)),
            compression_quality=int(payload.get("compression_quality", 100)),
            mesh_compression=str(payload.get("mesh_compression", MeshCompression.OFF.value)),
            texture_format=payload.get("texture_format"),
            overridden=bool(payload.get("overridden", True)),
        )


class PlatformPolicy(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    override_defaults: bool = False
    max_texture_size: int = 2048
    compress_textures: bool = True
    compressor_quality: int = Field(default=50, ge=0, le=100)
    mesh_compression: MeshCompression = MeshCompression.OFF
    graphics_backends: List[str] = Field(default_factory=list)

    @field_validator("max_texture_size")
    @classmethod
    def _check_texture_size(cls, value: int) -> int:
        if value not in TEXTURE_SIZES:
            raise ValueError(f"max_texture_size must be one of {TEXTURE_SIZES}")
        return value

    @classmethod
    def from_preset(cls, name: str, **changes: Any) -> "PlatformPolicy":
        try:
            preset = PRESETS[name.lower()]
        except KeyError:
            raise ValueError(f"unknown policy preset '{name}'") from None
        return preset.model_copy(update=changes)


# Quick presets offered by the editor inspector, kept as named starting points.
PRESETS: Dict[str, PlatformPolicy] = {
    "low": PlatformPolicy(
        override_defaults=True,
        max_texture_size=512,
        compress_textures=True,
        compressor_quality=25,
        mesh_compression=MeshCompression.HIGH,
    ),
    "medium": PlatformPolicy(
        override_defaults=True,
        max_texture_size=1024,
        compress_textures=True,
        compressor_quality=50,
        mesh_compression=MeshCompression.MEDIUM,
    ),
    "high": PlatformPolicy(
        override_defaults=True,
        max_texture_size=2048,
        compress_textures=True,
        compressor_quality=75,
        mesh_compression=MeshCompression.LOW,
    ),
    "max": PlatformPolicy(
        override_defaults=True,
        max_texture_size=4096,
        compress_textures=False,
        compressor_quality=100,
        mesh_compression=MeshCompression.OFF,
    ),
}

DEFAULT_GRAPHICS_BACKENDS: Dict[Platform, List[str]] = {
    Platform.Android: ["opengles3"],
    Platform.AndroidVR: ["vulkan"],
    Platform.iOS: ["metal"],
    Platform.WebGL: [],
    Platform.StandaloneWindows64: ["direct3d11", "direct3d12"],
    Platform.StandaloneLinux64: ["opengl-core", "vulkan"],
    Platform.StandaloneOSX: ["metal", "opengl-core"],
}


class PlatformPolicyTable:
    """Per-platform policy lookup."""

    def __init__(self, policies: Optional[Mapping[Platform, PlatformPolicy]] = None):
        self._policies: Dict[Platform, PlatformPolicy] = dict(policies or {})

    @classmethod
    def default(cls) -> "PlatformPolicyTable":
        return cls(
            {
                platform: PlatformPolicy(graphics_backends=list(backends))
                for platform, backends in DEFAULT_GRAPHICS_BACKENDS.items()
            }
        )

    def get(self, platform: Platform) -> Optional[PlatformPolicy]:
        return self._policies.get(platform)

    def set(self, platform: Platform, policy: PlatformPolicy) -> None:
        self._policies[platform] = policy

    def graphics_backends(self, platform: Platform) -> List[str]:
        policy = self.get(platform)
        if policy is not None:
            return list(policy.graphics_backends)
        return list(DEFAULT_GRAPHICS_BACKENDS.get(platform, []))

    def platforms(self) -> List[Platform]:
        return [p for p in ALL_PLATFORMS if p in self._policies]

    def to_payload(self) -> Dict[str, Any]:
        return {
            platform_name(platform): self._policies[platform].model_dump(mode="json")
            for platform in self.platforms()
        }

    @classmethod
    def from_payload(
        cls, payload: Mapping[str, Any], *, base: Optional["PlatformPolicyTable"] = None
    ) -> "PlatformPolicyTable":
        table = cls(dict(base._policies) if base is not None else None)
        for key, value in (payload or {}).items():
            platform = parse_platform(key)
            if isinstance(value, str):
                table.set(platform, PlatformPolicy.from_preset(value))
            else:
                table.set(platform, PlatformPolicy.model_validate(value))
        return table


TEXTURE_KINDS = frozenset({"texture", "normal_map", "sprite"})
MESH_KINDS = frozenset({"model"})


def derive_texture_format(
    descriptor: "ImportDescriptor", group: str, crunched: bool
) -> str:
    alpha = descriptor.has_alpha
    if not crunched:
        return "RGBA32" if alpha else "RGB24"
    if descriptor.kind.value == "normal_map":
        if group in MOBILE_GROUPS:
            return "ETC2_RGBA8Crunched" if alpha else "ETC_RGB4Crunched"
        if group == "webgl":
            return "ETC2_RGBA8Crunched"
        return "DXT5Crunched"
    if group in MOBILE_GROUPS:
        return "ETC2_RGBA8Crunched" if alpha else "ETC2_RGB4"
    return "DXT5Crunched" if alpha else "DXT1Crunched"


def derive_texture_override(
    policy: PlatformPolicy, descriptor: "ImportDescriptor", group: str
) -> EncodingOverride:
    crunched = (
        policy.compress_textures
        and policy.compressor_quality < 100
        and not descriptor.readable
    )
    return EncodingOverride(
        max_dimension=policy.max_texture_size,
        use_compression=crunched,
        compression_quality=policy.compressor_quality if crunched else 100,
        mesh_compression=MeshCompression.OFF.value,
        texture_format=derive_texture_format(descriptor, group, crunched),
        overridden=True,
    )


def derive_mesh_compression(policy: PlatformPolicy) -> str:
    return policy.mesh_compression.value


def apply_policy(
    registry: "ImportDescriptorRegistry",
    assets: Iterable[str],
    platform: Platform,
    policy: Optional[PlatformPolicy],
    group: str,
) -> List[str]:
    """Write ``policy`` into the descriptors of ``assets``; return changed paths."""
    if policy is None or not policy.override_defaults:
        return []

    changed: List[str] = []
    for path in assets:
        descriptor = registry.get(path)
        if descriptor is None:
            continue
        kind = descriptor.kind.value
        if kind in TEXTURE_KINDS:
            override = derive_texture_override(policy, descriptor, group)
            if descriptor.platform_overrides.get(platform) != override:
                registry.set_platform_override(path, platform, override)
                changed.append(path)
        elif kind in MESH_KINDS:
            level = derive_mesh_compression(policy)
            if descriptor.mesh_compression != level:
                registry.set_mesh_compression(path, level)
                changed.append(path)

    if changed:
        LOGGER.info(
            "platform policy applied",
            platform=platform_name(platform),
            changed=len(changed),
        )
    return changed


__all__ = [
    "DEFAULT_GRAPHICS_BACKENDS",
    "EncodingOverride",
    "MESH_KINDS",
    "MeshCompression",
    "PRESETS",
    "PlatformPolicy",
    "PlatformPolicyTable",
    "TEXTURE_KINDS",
    "TEXTURE_SIZES",
    "apply_policy",
    "derive_mesh_compression",
    "derive_texture_format",
    "derive_texture_override",
]
