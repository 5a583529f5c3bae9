"""
Runtime paths helpers for bundleforge.

This module centralises access to mutable directories (data, config, cache,
logs) and redirects them to OS-appropriate locations using ``platformdirs``.
Portable layouts are still supported via environment overrides so build
machines can keep everything next to the project when desired.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional

from platformdirs import PlatformDirs

APP_NAME = os.getenv("BUNDLEFORGE_APP_NAME", "bundleforge")
APP_AUTHOR = os.getenv("BUNDLEFORGE_APP_AUTHOR", "bundleforge")


def _expand(path: Optional[str]) -> Optional[Path]:
    if not path:
        return None
    return Path(path).expanduser().resolve()


@dataclass(frozen=True)
class _RuntimeRoots:
    data: Path
    config: Path
    cache: Path
    logs: Path


@lru_cache(maxsize=1)
def _runtime_roots() -> _RuntimeRoots:
    override_root = _expand(os.getenv("BUNDLEFORGE_RUNTIME_ROOT"))
    if override_root:
        override_root.mkdir(parents=True, exist_ok=True)
        data = override_root / "data"
        config = override_root / "config"
        cache = override_root / "cache"
        logs = override_root / "logs"
    else:
        dirs = PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=False)
        data = Path(dirs.user_data_path)
        config = Path(dirs.user_config_path)
        cache = Path(dirs.user_cache_path)
        logs = Path(dirs.user_log_path)

    data = _expand(os.getenv("BUNDLEFORGE_DATA_DIR")) or data
    config = _expand(os.getenv("BUNDLEFORGE_CONFIG_DIR")) or config
    cache = _expand(os.getenv("BUNDLEFORGE_CACHE_DIR")) or cache
    logs = _expand(os.getenv("BUNDLEFORGE_LOG_DIR")) or logs

    for root in (data, config, cache, logs):
        if root.exists() and not root.is_dir():
            raise RuntimeError(
                f"Runtime path {root} exists but is not a directory. "
                "Remove or relocate the conflicting file and retry."
            )
        root.mkdir(parents=True, exist_ok=True)

    return _RuntimeRoots(data=data, config=config, cache=cache, logs=logs)


def _join(base: Path, parts: Iterable[str | os.PathLike[str]]) -> Path:
    path = base.joinpath(*[Path(p) for p in parts if p])
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def data_dir(*parts: str | os.PathLike[str]) -> Path:
    return _join(_runtime_roots().data, parts or ())


def config_dir(*parts: str | os.PathLike[str]) -> Path:
    return _join(_runtime_roots().config, parts or ())


def cache_dir(*parts: str | os.PathLike[str]) -> Path:
    return _join(_runtime_roots().cache, parts or ())


def logs_dir(*parts: str | os.PathLike[str]) -> Path:
    return _join(_runtime_roots().logs, parts or ())


def settings_file(name: str = "settings.json") -> Path:
    return config_dir(name)


def database_file(name: str = "bundleforge.db") -> Path:
    return data_dir(name)


def build_log_file() -> Path:
    return logs_dir("builds", "builds.log")


def default_output_root() -> Path:
    return data_dir("builds", "bundles")


def clear_cache() -> None:
    """Forget the resolved roots so environment overrides are re-read."""
    _runtime_roots.cache_clear()


__all__ = [
    "build_log_file",
    "cache_dir",
    "clear_cache",
    "config_dir",
    "data_dir",
    "database_file",
    "default_output_root",
    "logs_dir",
    "settings_file",
]
