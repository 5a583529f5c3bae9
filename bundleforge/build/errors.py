"""Error taxonomy for bundle builds.

Each error carries an ``error_kind`` string that is copied onto failed
``BuildResult`` entries so callers can tell skips from aborts without
parsing messages.
"""

from __future__ import annotations


class BundleForgeError(Exception):
    error_kind = "BundleForgeError"
    fatal = False

    def __init__(self, message: str = "", *, detail: str | None = None) -> None:
        super().__init__(message or self.error_kind)
        self.detail = detail or message or self.error_kind


class PersistenceRequired(BundleForgeError):
    """Pending authoring changes must be saved before a scene root can build."""

    error_kind = "PersistenceRequired"
    fatal = True


class PlatformUnsupported(BundleForgeError):
    error_kind = "PlatformUnsupported"


class NoValidAssets(BundleForgeError):
    error_kind = "NoValidAssets"


class TargetEnvironmentError(BundleForgeError):
    """The target environment refused a platform/backend combination."""

    error_kind = "EnvironmentSwitchFailed"


class PackagerFailure(BundleForgeError):
    error_kind = "PackagerFailure"


class OperationCancelled(BundleForgeError):
    error_kind = "OperationCancelled"
    fatal = True


class HostFault(BundleForgeError):
    error_kind = "HostFault"
    fatal = True


class ContentRootNotFound(BundleForgeError, KeyError):
    error_kind = "ContentRootNotFound"
    fatal = True

    def __str__(self) -> str:
        return str(self.detail)


class BatchStoreError(BundleForgeError):
    error_kind = "BatchStoreError"


__all__ = [
    "BatchStoreError",
    "BundleForgeError",
    "ContentRootNotFound",
    "HostFault",
    "NoValidAssets",
    "OperationCancelled",
    "PackagerFailure",
    "PersistenceRequired",
    "PlatformUnsupported",
    "TargetEnvironmentError",
]
