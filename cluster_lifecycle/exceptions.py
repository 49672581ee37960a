"""Exceptions related to cluster-lifecycle."""

__all__ = [
    "LifecycleException",
    "InputException",
    "ObjectNotFoundError",
    "AlreadyExistsError",
    "ConflictError",
    "MetadataException",
    "MetadataFetchError",
    "ValuesException",
    "ReconcileError",
    "MigrationException",
]


class LifecycleException(Exception):
    """Generic base exception used for this library."""


class InputException(LifecycleException):
    """Raised when the input files or values are not formatted as expected."""


class ObjectNotFoundError(LifecycleException):
    """Raised when an object is not found in the store."""


class AlreadyExistsError(LifecycleException):
    """Raised when creating an object that already exists in the store."""


class ConflictError(LifecycleException):
    """Raised when a write is based on a stale resource version."""


class MetadataException(LifecycleException):
    """Raised when release metadata can not be fetched or parsed."""


class MetadataFetchError(MetadataException):
    """Raised when release metadata is temporarily unreachable."""


class ValuesException(InputException):
    """Raised when a chart value document is malformed."""


class ReconcileError(LifecycleException):
    """Raised when a reconciliation stage fails and the cycle is aborted."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"failed to reconcile {stage}: {message}")
        self.stage = stage
        self.message = message


class MigrationException(LifecycleException):
    """Raised when a registry data migration can not proceed."""
