"""
Per-platform bundle build orchestrator.

``BuildOrchestrator.start`` returns a ``BuildRun``: a generator-driven state
machine that yields a ``ProgressEvent`` at each suspension point, so the
caller decides when the next platform is attempted (and may cancel in
between). ``build`` drives a run to completion and returns the report.

Within one platform the order is fixed: descriptors are mutated, then the
target environment is switched, then the packager runs. Whatever happens,
the environment captured on entry is restored before the run ends.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Generator,
    Iterable,
    Iterator,
    List,
    Optional,
    Protocol,
    Union,
)

from bundleforge.build.authoring import AuthoringWorkspace
from bundleforge.build.dependencies import ContentRoot, DependencyCollector
from bundleforge.build.descriptors import (
    ClaimOutcome,
    ImportDescriptorRegistry,
    get_registry,
)
from bundleforge.build.environment import EnvironmentController
from bundleforge.build.errors import (
    BundleForgeError,
    HostFault,
    NoValidAssets,
    OperationCancelled,
    PackagerFailure,
    PersistenceRequired,
    PlatformUnsupported,
    TargetEnvironmentError,
)
from bundleforge.build.packager import (
    STATUS_CANCELLED,
    STATUS_SUCCEEDED,
    ArchivePackager,
    CancellationToken,
    PackageRequest,
    Packager,
    PackagerResult,
)
from bundleforge.build.platforms import (
    Platform,
    PlatformLike,
    PlatformOrdering,
    expand_platforms,
    platform_name,
)
from bundleforge.build.policy import PlatformPolicyTable, apply_policy
from bundleforge.build.progress import BuildProgress, ProgressEvent, ProgressListener
from bundleforge.config.feature_flags import is_enabled
from bundleforge.config.runtime_paths import build_log_file, default_output_root
from bundleforge.core.archive import append_json_log
from bundleforge.logging_config import reset_build_id, set_build_id
from bundleforge.obs.structlog_adapter import get_logger

LOGGER = get_logger("bundleforge.orchestrator", component="orchestrator")

NO_PLATFORMS_BUILT = "no platforms built; check detail log"

OnProgress = Callable[[Platform, int, int], None]
Hook = Callable[[], None]


class BuildProcessor(Protocol):
    """Pre/post build hook; higher ``callback_order`` runs first."""

    callback_order: int

    def pre_process(self, root: ContentRoot) -> None:
        ...

    def post_process(self, root: ContentRoot) -> None:
        ...


@dataclass
class BuildResult:
    platform: Platform
    succeeded: bool
    bundle_name: str = ""
    artifact_path: Optional[Path] = None
    checksum: Optional[str] = None
    error_detail: str = ""
    error_kind: str = ""
    held_assets: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": platform_name(self.platform),
            "succeeded": self.succeeded,
            "bundle": self.bundle_name,
            "artifact_path": self.artifact_path.as_posix() if self.artifact_path else None,
            "checksum": self.checksum,
            "error_detail": self.error_detail,
            "error_kind": self.error_kind,
            "held_assets": list(self.held_assets),
        }


@dataclass
class BuildReport:
    root_id: str
    build_id: str
    succeeded: List[BuildResult] = field(default_factory=list)
    failed: List[BuildResult] = field(default_factory=list)
    processed: List[Platform] = field(default_factory=list)
    aborted: bool = False
    abort_reason: str = ""
    message: str = ""
    finished: bool = False

    @property
    def ok(self) -> bool:
        return self.finished and not self.aborted and bool(self.succeeded)

    def record(self, result: BuildResult) -> BuildResult:
        (self.succeeded if result.succeeded else self.failed).append(result)
        return result

    def abort(self, reason: str) -> None:
        self.aborted = True
        if not self.abort_reason:
            self.abort_reason = reason

    def summary(self) -> str:
        if self.aborted:
            return self.abort_reason
        if not self.succeeded:
            return NO_PLATFORMS_BUILT
        return f"{len(self.succeeded)} of {len(self.processed)} platforms built"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_id": self.root_id,
            "build_id": self.build_id,
            "ok": self.ok,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "message": self.message,
            "processed": [platform_name(p) for p in self.processed],
            "succeeded": [result.to_dict() for result in self.succeeded],
            "failed": [result.to_dict() for result in self.failed],
        }


@dataclass
class _BuildContext:
    root: ContentRoot
    platforms: List[Platform]
    policy_table: PlatformPolicyTable
    on_progress: Optional[OnProgress]
    stop_on_failure: bool
    persist_changes: bool
    cancel_token: Optional[CancellationToken]
    pre_process_build: Optional[Hook]
    post_process_build: Optional[Hook]
    listener: Optional[ProgressListener]


class BuildRun:
    """Iterator over the progress events of one build."""

    def __init__(self, orchestrator: "BuildOrchestrator", context: _BuildContext):
        self.root = context.root
        self.report = BuildReport(root_id=context.root.root_id, build_id=uuid.uuid4().hex[:12])
        self._generator = orchestrator._execute(self.report, context)

    def __iter__(self) -> "BuildRun":
        return self

    def __next__(self) -> ProgressEvent:
        return next(self._generator)

    def close(self) -> None:
        self._generator.close()
        if not self.report.finished:
            self.report.abort("closed before start")
            self.report.message = self.report.abort_reason
            self.report.finished = True

    def run_to_completion(self) -> BuildReport:
        for _ in self:
            pass
        return self.report


class BuildOrchestrator:
    """Build one content root for a set of platforms, one platform at a time."""

    def __init__(
        self,
        workspace: AuthoringWorkspace,
        *,
        registry: Optional[ImportDescriptorRegistry] = None,
        controller: Optional[EnvironmentController] = None,
        packager: Optional[Packager] = None,
        collector: Optional[DependencyCollector] = None,
        output_root: Optional[Path] = None,
        ordering: Optional[PlatformOrdering] = None,
        processors: Iterable[BuildProcessor] = (),
    ):
        self.workspace = workspace
        self.registry = registry if registry is not None else get_registry()
        self.controller = controller if controller is not None else EnvironmentController()
        self.packager = (
            packager if packager is not None else ArchivePackager(workspace, self.registry)
        )
        self.collector = (
            collector
            if collector is not None
            else DependencyCollector(workspace, self.registry)  # type: ignore[arg-type]
        )
        self.output_root = Path(output_root) if output_root else default_output_root()
        self.ordering = ordering or PlatformOrdering()
        self.processors: List[BuildProcessor] = list(processors)

    def add_processor(self, processor: BuildProcessor) -> None:
        self.processors.append(processor)

    # ----------------------------------------------------------------- entry
    def start(
        self,
        root: Union[ContentRoot, str],
        requested_platforms: Union[PlatformLike, Iterable[PlatformLike]],
        policy_table: Optional[PlatformPolicyTable] = None,
        on_progress: Optional[OnProgress] = None,
        *,
        stop_on_failure: bool = False,
        persist_changes: bool = True,
        cancel_token: Optional[CancellationToken] = None,
        pre_process_build: Optional[Hook] = None,
        post_process_build: Optional[Hook] = None,
        listener: Optional[ProgressListener] = None,
    ) -> BuildRun:
        content_root = root if isinstance(root, ContentRoot) else self.workspace.resolve(root)
        platforms = expand_platforms(requested_platforms)
        if not platforms:
            raise ValueError("requested platforms expand to an empty set")
        context = _BuildContext(
            root=content_root,
            platforms=platforms,
            policy_table=policy_table or PlatformPolicyTable.default(),
            on_progress=on_progress,
            stop_on_failure=stop_on_failure,
            persist_changes=persist_changes,
            cancel_token=cancel_token,
            pre_process_build=pre_process_build,
            post_process_build=post_process_build,
            listener=listener,
        )
        return BuildRun(self, context)

    def build(
        self,
        root: Union[ContentRoot, str],
        requested_platforms: Union[PlatformLike, Iterable[PlatformLike]],
        policy_table: Optional[PlatformPolicyTable] = None,
        on_progress: Optional[OnProgress] = None,
        **options: Any,
    ) -> BuildReport:
        run = self.start(root, requested_platforms, policy_table, on_progress, **options)
        return run.run_to_completion()

    # ------------------------------------------------------------- internals
    def _persist(self, root: ContentRoot, persist_changes: bool) -> None:
        if not self.workspace.has_pending_changes(root):
            return
        if persist_changes:
            self.workspace.persist_pending(root)
        elif root.requires_persisted:
            raise PersistenceRequired(
                "pending changes must be saved before building",
                detail=f"content root '{root.root_id}' has unsaved changes",
            )
        else:
            self.workspace.discard_pending(root)

    def _execute(self, report: BuildReport, ctx: _BuildContext) -> Iterator[ProgressEvent]:
        root = ctx.root
        log = LOGGER.bind(build_id=report.build_id, root=root.root_id)
        token = set_build_id(report.build_id)
        processors = sorted(self.processors, key=lambda p: p.callback_order, reverse=True)
        begun: List[str] = []
        progress = BuildProgress(root.root_id, ctx.listener)
        completed = 0
        started_at = datetime.now(timezone.utc)
        log.info(
            "build started",
            platforms=[platform_name(p) for p in ctx.platforms],
            stop_on_failure=ctx.stop_on_failure,
        )
        try:
            with self.controller.session():
                try:
                    for processor in processors:
                        processor.pre_process(root)
                    if ctx.pre_process_build is not None:
                        ctx.pre_process_build()
                    self._persist(root, ctx.persist_changes)
                    completed = yield from self._loop(report, ctx, progress, begun, log)
                finally:
                    self._end_bundles(begun)
        except GeneratorExit:
            report.abort("closed by caller")
            raise
        except BundleForgeError as exc:
            report.abort(exc.error_kind)
            raise
        except Exception as exc:
            report.abort(f"HostFault: {exc}")
            log.error("build raised", exc_info=True)
            raise
        finally:
            try:
                for processor in processors:
                    processor.post_process(root)
                if ctx.post_process_build is not None:
                    ctx.post_process_build()
            finally:
                self._finish(report, started_at, log)
                reset_build_id(token)
        # The host is restored before listeners hear the build is over.
        failed = report.aborted or not report.succeeded
        yield progress.finished(report.message, completed, failed=failed)

    def _loop(
        self,
        report: BuildReport,
        ctx: _BuildContext,
        progress: BuildProgress,
        begun: List[str],
        log,
    ) -> Generator[ProgressEvent, None, int]:
        root = ctx.root
        ordered = self.ordering.order(ctx.platforms)
        total = len(ordered)
        extra_roots = self.workspace.declared_extra_roots(root)
        processed: set = set()
        completed = 0
        yield progress.begin(ordered)

        for index, platform in enumerate(ordered, start=1):
            self._end_bundles(begun)
            if platform in processed:
                continue
            if self._cancelled(ctx):
                log.info("build cancelled", remaining=total - index + 1)
                report.abort(OperationCancelled.error_kind)
                break
            processed.add(platform)
            report.processed.append(platform)
            name = platform_name(platform)
            bundle = root.bundle_name(platform)

            try:
                target = self.controller.resolve(platform)
            except PlatformUnsupported as exc:
                self._fail(report, platform, bundle, exc)
                yield progress.skipped(platform, index, completed, str(exc))
                continue

            assets = self.collector.collect(root, extra_roots)
            if not assets:
                exc = NoValidAssets("there were no valid assets to build")
                self._fail(report, platform, bundle, exc)
                yield progress.skipped(platform, index, completed, str(exc))
                continue

            self.registry.begin_bundle(bundle)
            begun.append(bundle)
            held = [
                path
                for path in assets
                if self.registry.claim(path, bundle) is ClaimOutcome.HELD
            ]
            apply_policy(
                self.registry, assets, platform, ctx.policy_table.get(platform), target.group
            )
            yield progress.started(platform, index, completed)

            if self._cancelled(ctx):
                exc = OperationCancelled(self._cancel_reason(ctx))
                self._fail(report, platform, bundle, exc)
                report.abort(exc.error_kind)
                yield progress.failed(platform, index, completed, str(exc), stopping=True)
                break

            try:
                self.controller.switch(platform, ctx.policy_table.graphics_backends(platform))
            except TargetEnvironmentError as exc:
                self._fail(report, platform, bundle, exc)
                stopping = ctx.stop_on_failure
                if stopping:
                    report.abort(exc.error_kind)
                yield progress.failed(platform, index, completed, exc.detail, stopping=stopping)
                if stopping:
                    break
                continue

            request = PackageRequest(
                bundle_name=bundle,
                assets=tuple(assets),
                platform=platform,
                target=target,
                output_dir=self.output_root,
                cancel_token=ctx.cancel_token,
            )
            try:
                result = self.packager.package(request)
            except PackagerFailure as exc:
                result = PackagerResult.failed(exc.detail)
            except OperationCancelled as exc:
                result = PackagerResult.cancelled(exc.detail)
            except Exception as exc:
                log.error("packager host fault", platform=name, exc_info=True)
                fault = HostFault("unexpected host fault", detail=f"{type(exc).__name__}: {exc}")
                self._fail(report, platform, bundle, fault)
                report.abort(fault.error_kind)
                yield progress.failed(platform, index, completed, fault.detail, stopping=True)
                break

            if result.status == STATUS_CANCELLED:
                exc = OperationCancelled("packaging cancelled", detail=result.detail)
                self._fail(report, platform, bundle, exc)
                report.abort(exc.error_kind)
                yield progress.failed(platform, index, completed, exc.detail, stopping=True)
                break

            if result.status != STATUS_SUCCEEDED:
                exc = PackagerFailure("packager failed", detail=result.detail or "packager failed")
                self._fail(report, platform, bundle, exc)
                stopping = ctx.stop_on_failure
                if stopping:
                    report.abort(exc.error_kind)
                yield progress.failed(platform, index, completed, exc.detail, stopping=stopping)
                if stopping:
                    break
                continue

            completed += 1
            report.record(
                BuildResult(
                    platform=platform,
                    succeeded=True,
                    bundle_name=bundle,
                    artifact_path=result.artifact_path,
                    checksum=result.checksum,
                    held_assets=held,
                )
            )
            log.info("platform built", platform=name, artifact=str(result.artifact_path))
            if ctx.on_progress is not None:
                ctx.on_progress(platform, completed, total)
            yield progress.completed(platform, index, completed)

        report.message = report.summary()
        return completed

    def _end_bundles(self, begun: List[str]) -> None:
        while begun:
            self.registry.end_bundle(begun.pop())

    @staticmethod
    def _cancelled(ctx: _BuildContext) -> bool:
        return ctx.cancel_token is not None and ctx.cancel_token.cancelled

    @staticmethod
    def _cancel_reason(ctx: _BuildContext) -> str:
        if ctx.cancel_token is not None and ctx.cancel_token.reason:
            return ctx.cancel_token.reason
        return "build cancelled"

    @staticmethod
    def _fail(
        report: BuildReport, platform: Platform, bundle: str, exc: BundleForgeError
    ) -> BuildResult:
        LOGGER.warning(
            "platform failed",
            platform=platform_name(platform),
            error_kind=exc.error_kind,
            detail=exc.detail,
        )
        return report.record(
            BuildResult(
                platform=platform,
                succeeded=False,
                bundle_name=bundle,
                error_detail=exc.detail,
                error_kind=exc.error_kind,
            )
        )

    def _finish(self, report: BuildReport, started_at: datetime, log) -> None:
        if not report.message or report.aborted:
            report.message = report.summary()
        report.finished = True
        log.info(
            "build finished",
            ok=report.ok,
            aborted=report.aborted,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            message=report.message,
        )
        if is_enabled("enable_build_log", default=True):
            entry = report.to_dict()
            entry["started_at"] = started_at.isoformat()
            entry["finished_at"] = datetime.now(timezone.utc).isoformat()
            append_json_log(build_log_file(), entry)


def build(
    workspace: AuthoringWorkspace,
    root: Union[ContentRoot, str],
    requested_platforms: Union[PlatformLike, Iterable[PlatformLike]],
    policy_table: Optional[PlatformPolicyTable] = None,
    on_progress: Optional[OnProgress] = None,
    **options: Any,
) -> BuildReport:
    """Convenience wrapper building with process-wide registry and host."""
    return BuildOrchestrator(workspace).build(
        root, requested_platforms, policy_table, on_progress, **options
    )


__all__ = [
    "BuildOrchestrator",
    "BuildProcessor",
    "BuildReport",
    "BuildResult",
    "BuildRun",
    "NO_PLATFORMS_BUILT",
    "OnProgress",
    "build",
]
