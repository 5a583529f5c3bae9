from __future__ import annotations

import json
from pathlib import Path
from typing import Dict

from bundleforge.config.runtime_paths import config_dir

FEATURE_DEFAULTS: Dict[str, bool] = {
    "enable_bundle_api": True,
    "enable_bundle_api_builds": True,
    "enable_build_log": True,
    "enable_provenance_sidecars": True,
}

_CACHE: Dict[str, bool] | None = None
_CACHE_SIGNATURE: tuple[float, float] | None = None


def _candidate_paths() -> tuple[Path, Path]:
    return (Path("bundleforge.json"), config_dir("bundleforge.json"))


def _signature() -> tuple[float, float]:
    values: list[float] = []
    for path in _candidate_paths():
        try:
            values.append(path.stat().st_mtime)
        except FileNotFoundError:
            values.append(0.0)
    return (values[0], values[1])


def _read_features(path: Path) -> Dict[str, bool]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    data = raw.get("features") if isinstance(raw, dict) else None
    if not isinstance(data, dict):
        return {}
    result: Dict[str, bool] = {}
    for key, value in data.items():
        if isinstance(value, bool):
            result[key] = value
    return result


def load_feature_flags(*, refresh: bool = False) -> Dict[str, bool]:
    global _CACHE, _CACHE_SIGNATURE
    signature = _signature()
    if not refresh and _CACHE is not None and signature == _CACHE_SIGNATURE:
        return dict(_CACHE)

    flags: Dict[str, bool] = dict(FEATURE_DEFAULTS)
    for path in _candidate_paths():
        if not path.exists():
            continue
        flags.update(_read_features(path))

    _CACHE = flags
    _CACHE_SIGNATURE = signature
    return dict(flags)


def is_enabled(
    name: str, *, default: bool | None = None, refresh: bool = False
) -> bool:
    flags = load_feature_flags(refresh=refresh)
    if name in flags:
        return bool(flags[name])
    if default is not None:
        return bool(default)
    return False


def refresh_cache() -> Dict[str, bool]:
    return load_feature_flags(refresh=True)


__all__ = ["FEATURE_DEFAULTS", "is_enabled", "load_feature_flags", "refresh_cache"]
