"""Build progress reporting."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from bundleforge.build.platforms import Platform, platform_name
from bundleforge.obs.structlog_adapter import get_logger

LOGGER = get_logger("bundleforge.progress", component="progress")

BEGIN = "begin"
STARTED = "started"
COMPLETED = "completed"
SKIPPED = "skipped"
FAILED = "failed"
FINISHED = "finished"


@dataclass(frozen=True)
class ProgressEvent:
    kind: str
    root_id: str
    total: int
    completed: int
    platform: Optional[Platform] = None
    index: int = 0
    detail: str = ""
    stopping: bool = False

    @property
    def description(self) -> str:
        name = platform_name(self.platform) if self.platform is not None else ""
        if self.kind == BEGIN:
            noun = "platform" if self.total == 1 else "platforms"
            return f"Preparing {self.total} {noun}..."
        if self.kind == STARTED:
            return f"Building {name} ({self.index}/{self.total})"
        if self.kind == COMPLETED:
            return f"Finished {name} ({self.index}/{self.total})"
        if self.kind == SKIPPED:
            return f"Skipping {name}: {self.detail or 'Platform skipped.'}"
        if self.kind == FAILED:
            return f"Failed {name} ({self.index}/{self.total}): {self.detail or 'Check the build log.'}"
        return self.detail or "Bundle build complete."

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "root_id": self.root_id,
            "platform": platform_name(self.platform) if self.platform is not None else None,
            "index": self.index,
            "total": self.total,
            "completed": self.completed,
            "detail": self.detail,
            "stopping": self.stopping,
            "description": self.description,
        }


ProgressListener = Callable[[ProgressEvent], None]


class BuildProgress:
    """Collects and logs progress events for one build."""

    def __init__(self, root_id: str, listener: Optional[ProgressListener] = None):
        self.root_id = root_id
        self.listener = listener
        self.total = 0
        self.events: List[ProgressEvent] = []
        self._log = LOGGER.bind(root=root_id)

    def _emit(self, event: ProgressEvent) -> ProgressEvent:
        self.events.append(event)
        self._log.info(
            "build progress",
            kind=event.kind,
            platform=platform_name(event.platform) if event.platform is not None else None,
            completed=event.completed,
            total=event.total,
            detail=event.detail or None,
        )
        if self.listener is not None:
            self.listener(event)
        return event

    def begin(self, platforms: Sequence[Platform]) -> ProgressEvent:
        self.total = len(platforms)
        return self._emit(ProgressEvent(BEGIN, self.root_id, self.total, 0))

    def started(self, platform: Platform, index: int, completed: int) -> ProgressEvent:
        return self._emit(
            ProgressEvent(STARTED, self.root_id, self.total, completed, platform, index)
        )

    def completed(self, platform: Platform, index: int, completed: int) -> ProgressEvent:
        return self._emit(
            ProgressEvent(COMPLETED, self.root_id, self.total, completed, platform, index)
        )

    def skipped(
        self, platform: Platform, index: int, completed: int, reason: str
    ) -> ProgressEvent:
        return self._emit(
            ProgressEvent(
                SKIPPED, self.root_id, self.total, completed, platform, index, reason
            )
        )

    def failed(
        self,
        platform: Platform,
        index: int,
        completed: int,
        reason: str,
        *,
        stopping: bool = False,
    ) -> ProgressEvent:
        return self._emit(
            ProgressEvent(
                FAILED,
                self.root_id,
                self.total,
                completed,
                platform,
                index,
                reason,
                stopping,
            )
        )

    def finished(self, message: str, completed: int, *, failed: bool) -> ProgressEvent:
        return self._emit(
            ProgressEvent(
                FINISHED, self.root_id, self.total, completed, detail=message, stopping=failed
            )
        )


__all__ = [
    "BEGIN",
    "BuildProgress",
    "COMPLETED",
    "FAILED",
    "FINISHED",
    "ProgressEvent",
    "ProgressListener",
    "SKIPPED",
    "STARTED",
]
