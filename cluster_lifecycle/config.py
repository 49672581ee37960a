"""Configuration for the reconciler and its collaborators."""

from dataclasses import dataclass

__all__ = [
    "ReconcilerConfig",
    "MetadataConfig",
    "UpgradeConfig",
    "DEFAULT_NAMESPACE",
    "RUNNING_VERSION_ENV",
]

DEFAULT_NAMESPACE = "embedded-cluster"
"""Namespace holding the jobs and config maps owned by the controller."""

RUNNING_VERSION_ENV = "EMBEDDEDCLUSTER_VERSION"
"""Environment variable with the release version of the running controller."""


@dataclass
class ReconcilerConfig:
    """Configuration for the InstallationReconciler."""

    requeue_after: float = 3600.0
    """Seconds until the next cycle when no watch event arrives."""

    cycle_timeout: float = 300.0
    """Deadline in seconds for a single reconciliation cycle."""

    running_version: str = ""
    """Release version of the running controller, empty if unknown."""

    namespace: str = DEFAULT_NAMESPACE
    """Namespace for artifact jobs and version metadata."""

    local_artifact_mirror_image: str = "proxy.replicated.com/anonymous/replicated/embedded-cluster-local-artifact-mirror:latest"
    """Image used by the per-node artifact copy jobs."""


@dataclass
class MetadataConfig:
    """Configuration for fetching release metadata."""

    request_timeout: float = 30.0
    """Total timeout in seconds for a metadata request."""

    namespace: str = DEFAULT_NAMESPACE
    """Namespace of the locally stored version metadata."""


@dataclass
class UpgradeConfig:
    """Configuration for the one-shot upgrade command."""

    interval: float = 5.0
    """Seconds between polls while waiting for artifacts."""

    timeout: float = 1800.0
    """Seconds to wait for artifacts before giving up."""
