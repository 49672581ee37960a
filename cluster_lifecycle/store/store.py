"""Store module for reading and writing cluster objects."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

from cluster_lifecycle.manifest import NamedResource, Resource

__all__ = [
    "Store",
    "StoreEvent",
    "PropagationPolicy",
]

T = TypeVar("T", bound=Resource)


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    OBJECT_UPDATED = "object_updated"
    OBJECT_DELETED = "object_deleted"


class PropagationPolicy(str, Enum):
    """How dependents of a deleted object are removed."""

    BACKGROUND = "Background"
    FOREGROUND = "Foreground"


class Store(ABC):
    """Abstract base class for the typed cluster object store with listener support.

    Reads return independent copies: callers may mutate what they get back and
    must write it through `update_object` or `update_status` for the change to be
    visible. Writes are conditional on the object's `resource_version` and
    raise `ConflictError` when another writer got there first.
    """

    @abstractmethod
    async def list_objects(self, cls: type[T], namespace: str | None = None) -> list[T]:
        """List all objects of a type, optionally filtered by namespace."""

    @abstractmethod
    async def get_object(self, resource_id: NamedResource, cls: type[T]) -> T:
        """Retrieve an object by identity and type.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def create_object(self, obj: T) -> T:
        """Create a new object and return the stored copy.

        Raises:
            AlreadyExistsError: If an object with the same identity exists.
        """

    @abstractmethod
    async def update_object(self, obj: T) -> T:
        """Replace an existing object and return the stored copy.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            ConflictError: If the object was modified since it was read.
        """

    @abstractmethod
    async def update_status(self, obj: T) -> T:
        """Replace only the status of an existing object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            ConflictError: If the object was modified since it was read.
        """

    @abstractmethod
    async def delete_object(
        self,
        resource_id: NamedResource,
        propagation: PropagationPolicy = PropagationPolicy.BACKGROUND,
    ) -> None:
        """Delete an object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def patch_object(
        self, resource_id: NamedResource, cls: type[T], patch: dict[str, Any]
    ) -> T:
        """Apply a JSON merge patch to an object and return the stored copy."""

    @abstractmethod
    async def server_version(self) -> str:
        """Return the version string reported by the cluster API server."""

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, Resource], None],
    ) -> Callable[[], None]:
        """Register a callback for a store event.

        Returns a callable that can be called to remove the listener.
        """
