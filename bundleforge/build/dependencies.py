"""
Content roots and the dependency collector.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from bundleforge.build.descriptors import ImportDescriptorRegistry
from bundleforge.build.platforms import DEFAULT_ROOT_PLATFORMS, Platform, expand_platforms
from bundleforge.obs.structlog_adapter import get_logger

LOGGER = get_logger("bundleforge.dependencies", component="dependencies")

ROOT_KINDS = ("scene", "prefab")


@dataclass(frozen=True)
class ContentRoot:
    root_id: str
    name: str
    kind: str
    source_path: str
    supported_platforms: Platform = Platform(0)
    extra_roots: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.kind not in ROOT_KINDS:
            raise ValueError(f"content root kind must be one of {ROOT_KINDS}, got '{self.kind}'")

    @property
    def requires_persisted(self) -> bool:
        return self.kind == "scene"

    def platforms(self) -> List[Platform]:
        """Declared platforms, falling back to the builder default."""
        return expand_platforms(self.supported_platforms or DEFAULT_ROOT_PLATFORMS)

    def bundle_name(self, platform: Platform) -> str:
        return f"{self.root_id}_{platform.name}"


class ContentGraph(Protocol):
    def direct_dependencies(self, path: str) -> Sequence[str]:
        ...


class DependencyCollector:
    """Compute the deterministic, packageable asset closure of a content root."""

    def __init__(self, graph: ContentGraph, registry: ImportDescriptorRegistry):
        self.graph = graph
        self.registry = registry

    def _included(self, path: str) -> bool:
        descriptor = self.registry.get(path)
        return descriptor is not None and not descriptor.excluded

    def collect(
        self, root: ContentRoot, extra_roots: Optional[Iterable[str]] = None
    ) -> List[str]:
        starts: List[str] = [root.source_path]
        starts.extend(extra_roots if extra_roots is not None else root.extra_roots)

        closure: List[str] = []
        visited: Set[str] = set()
        for start in starts:
            # Iterative pre-order; children pushed reversed so declared order wins.
            stack = [start]
            while stack:
                path = stack.pop()
                if path in visited:
                    continue
                visited.add(path)
                if not self._included(path):
                    continue
                closure.append(path)
                children = list(self.graph.direct_dependencies(path))
                stack.extend(reversed(children))

        LOGGER.debug(
            "dependency closure collected",
            root=root.root_id,
            assets=len(closure),
            skipped=len(visited) - len(closure),
        )
        return closure


__all__ = ["ContentGraph", "ContentRoot", "DependencyCollector", "ROOT_KINDS"]
