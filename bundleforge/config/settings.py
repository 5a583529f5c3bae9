from __future__ import annotations

# bundleforge/config/settings.py
import copy
import json
import logging
from pathlib import Path
from typing import Any, Mapping, MutableMapping

from pydantic import BaseModel, ConfigDict, Field

from bundleforge.build.environment import DEFAULT_TARGET, BuildHost
from bundleforge.build.platforms import TOOLCHAIN_TARGETS, PlatformOrdering
from bundleforge.build.policy import PlatformPolicyTable
from bundleforge.config.runtime_paths import default_output_root, settings_file

LOGGER = logging.getLogger(__name__)

DEFAULTS: dict[str, Any] = {
    "output_root": None,
    "installed_targets": sorted({target.target_id for target in TOOLCHAIN_TARGETS.values()}),
    "default_target": DEFAULT_TARGET,
    "ordering": {"priority": ["iOS"], "terminal": ["WebGL"]},
    "stop_on_failure": False,
    "log_level": "INFO",
    "policies": {},
}


def _default_section(key: str) -> Any:
    return copy.deepcopy(DEFAULTS.get(key))


def _deep_merge(
    base: MutableMapping[str, Any], updates: Mapping[str, Any]
) -> MutableMapping[str, Any]:
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), MutableMapping):
            base[key] = _deep_merge(base[key], value)  # type: ignore[index]
        else:
            base[key] = copy.deepcopy(value)
    return base


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        LOGGER.warning("Settings file %s is unreadable; using defaults", path)
        return {}
    return payload if isinstance(payload, dict) else {}


class BuildSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    output_root: str | None = None
    installed_targets: list[str] = Field(
        default_factory=lambda: _default_section("installed_targets")
    )
    default_target: str = DEFAULT_TARGET
    ordering: dict[str, list[str]] = Field(
        default_factory=lambda: _default_section("ordering")
    )
    stop_on_failure: bool = False
    log_level: str = "INFO"
    policies: dict[str, Any] = Field(default_factory=dict)

    def resolved_output_root(self) -> Path:
        if self.output_root:
            return Path(self.output_root).expanduser().resolve()
        return default_output_root()

    def platform_ordering(self) -> PlatformOrdering:
        return PlatformOrdering.from_names(
            self.ordering.get("priority", ()), self.ordering.get("terminal", ())
        )

    def policy_table(self) -> PlatformPolicyTable:
        return PlatformPolicyTable.from_payload(
            self.policies, base=PlatformPolicyTable.default()
        )

    def build_host(self) -> BuildHost:
        return BuildHost(
            active_target=self.default_target,
            installed_targets=set(self.installed_targets),
        )


class SettingsManager:
    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path is not None else settings_file()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._cached_payload: dict[str, Any] | None = None

    def _merge_sources(self) -> BuildSettings:
        base = BuildSettings().model_dump(mode="python")
        merged = _deep_merge(copy.deepcopy(base), _load_json(self.path))
        return BuildSettings.model_validate(merged)

    def _persist(self, model: BuildSettings) -> None:
        payload = model.model_dump(mode="json")
        if self._cached_payload == payload:
            return
        self.path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        self._cached_payload = copy.deepcopy(payload)

    def load_model(self) -> BuildSettings:
        return self._merge_sources()

    def load(self) -> dict[str, Any]:
        return self.load_model().model_dump(mode="json")

    def save(self, data: Mapping[str, Any] | BuildSettings) -> dict[str, Any]:
        model = data if isinstance(data, BuildSettings) else BuildSettings.model_validate(data)
        # Invalid policy payloads must not reach disk.
        model.policy_table()
        self._persist(model)
        return model.model_dump(mode="json")

    def get(self, key: str, default: Any | None = None) -> Any:
        return self.load().get(key, default)

    def patch(self, key: str, value: Any) -> dict[str, Any]:
        current = self.load()
        current[key] = value
        return self.save(current)

    def merge(self, updates: Mapping[str, Any]) -> dict[str, Any]:
        current = self.load()
        merged = _deep_merge(copy.deepcopy(current), updates)
        return self.save(merged)

    def defaults(self) -> dict[str, Any]:
        return BuildSettings().model_dump(mode="json")

    def schema(self) -> dict[str, Any]:
        return BuildSettings.model_json_schema()


__all__ = ["BuildSettings", "DEFAULTS", "SettingsManager"]
