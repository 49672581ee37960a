"""Module for in memory object store."""

import copy
from collections import defaultdict
from collections.abc import Callable
import logging
from typing import Any, DefaultDict, TypeVar

from cluster_lifecycle.exceptions import (
    AlreadyExistsError,
    ConflictError,
    InputException,
    ObjectNotFoundError,
)
from cluster_lifecycle.manifest import NamedResource, Resource, now
from cluster_lifecycle.values import merge_patch

from .store import PropagationPolicy, Store, StoreEvent

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=Resource)

DEFAULT_SERVER_VERSION = "v1.29.1+k0s"


def _sort_key(item: tuple[NamedResource, Resource]) -> str:
    return str(item[0])


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Objects are keyed by NamedResource and copied on every read and write so
    callers never share state with the store. Every write bumps the resource
    version and fires the matching StoreEvent to registered listeners.
    """

    def __init__(self, server_version: str = DEFAULT_SERVER_VERSION) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, Resource] = {}
        self._server_version = server_version
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )
        self._next_version = 1

    def _bump(self, obj: Resource) -> None:
        obj.resource_version = self._next_version
        self._next_version += 1

    def _stored(self, resource_id: NamedResource) -> Resource:
        if (obj := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"Object {resource_id} not found")
        return obj

    def _check_version(self, obj: Resource, stored: Resource) -> None:
        if obj.resource_version and obj.resource_version != stored.resource_version:
            raise ConflictError(
                f"Object {obj.resource_id} was modified (version "
                f"{obj.resource_version} != {stored.resource_version})"
            )

    async def list_objects(
        self, cls: type[T], namespace: str | None = None
    ) -> list[T]:
        """List all objects of a type, optionally filtered by namespace."""
        return [
            copy.deepcopy(obj)  # type: ignore[misc]
            for resource_id, obj in sorted(self._objects.items(), key=_sort_key)
            if resource_id.kind == cls.kind
            and (namespace is None or resource_id.namespace == namespace)
        ]

    async def get_object(self, resource_id: NamedResource, cls: type[T]) -> T:
        """Retrieve an object by identity and type."""
        obj = self._stored(resource_id)
        if not isinstance(obj, cls):
            raise ValueError(
                f"Object {resource_id.namespaced_name} is not of type {cls.__name__} (was {obj.__class__.__name__})"
            )
        return copy.deepcopy(obj)

    async def create_object(self, obj: T) -> T:
        """Create a new object and return the stored copy."""
        resource_id = obj.resource_id
        if resource_id in self._objects:
            raise AlreadyExistsError(f"Object {resource_id} already exists")
        stored = copy.deepcopy(obj)
        if stored.creation_timestamp is None:
            stored.creation_timestamp = now()
        stored.generation = stored.generation or 1
        self._bump(stored)
        _LOGGER.debug("Adding object %s to store", resource_id)
        self._objects[resource_id] = stored
        self._fire_event(StoreEvent.OBJECT_ADDED, resource_id, stored)
        return copy.deepcopy(stored)

    async def update_object(self, obj: T) -> T:
        """Replace an existing object and return the stored copy."""
        resource_id = obj.resource_id
        existing = self._stored(resource_id)
        self._check_version(obj, existing)
        stored = copy.deepcopy(obj)
        stored.creation_timestamp = existing.creation_timestamp
        stored.generation = existing.generation
        if getattr(stored, "spec", None) != getattr(existing, "spec", None):
            stored.generation += 1
        self._bump(stored)
        _LOGGER.debug("Updating object %s in store", resource_id)
        self._objects[resource_id] = stored
        self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id, stored)
        return copy.deepcopy(stored)  # type: ignore[return-value]

    async def update_status(self, obj: T) -> T:
        """Replace only the status of an existing object."""
        resource_id = obj.resource_id
        existing = self._stored(resource_id)
        if not hasattr(existing, "status"):
            raise ValueError(f"Resource kind {resource_id.kind} has no status")
        self._check_version(obj, existing)
        stored = copy.deepcopy(existing)
        stored.status = copy.deepcopy(obj.status)  # type: ignore[attr-defined]
        self._bump(stored)
        _LOGGER.debug("Updating status of %s in store", resource_id)
        self._objects[resource_id] = stored
        self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id, stored)
        return copy.deepcopy(stored)  # type: ignore[return-value]

    async def delete_object(
        self,
        resource_id: NamedResource,
        propagation: PropagationPolicy = PropagationPolicy.BACKGROUND,
    ) -> None:
        """Delete an object."""
        obj = self._stored(resource_id)
        _LOGGER.debug("Deleting object %s (%s)", resource_id, propagation.value)
        del self._objects[resource_id]
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, obj)

    async def patch_object(
        self, resource_id: NamedResource, cls: type[T], patch: dict[str, Any]
    ) -> T:
        """Apply a JSON merge patch to an object and return the stored copy."""
        existing = await self.get_object(resource_id, cls)
        patched = merge_patch(existing.to_dict(), patch)
        try:
            obj = cls.from_dict(patched)
        except (ValueError, LookupError) as err:
            raise InputException(f"Invalid patch for {resource_id}: {err}") from err
        if obj.resource_id != resource_id:
            raise InputException(f"Patch may not change the identity of {resource_id}")
        obj.resource_version = existing.resource_version
        return await self.update_object(obj)

    async def server_version(self) -> str:
        """Return the version string reported by the cluster API server."""
        return self._server_version

    def set_server_version(self, version: str) -> None:
        """Change the version reported by the cluster API server."""
        self._server_version = version

    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, Resource], None],
    ) -> Callable[[], None]:
        """Register a callback for a store event."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)
        return remove

    def _fire_event(
        self, event: StoreEvent, resource_id: NamedResource, obj: Resource
    ) -> None:
        for callback in list(self._listeners[event]):
            callback(resource_id, obj)

    def objects(self) -> list[Resource]:
        """Return copies of all objects, sorted by identity."""
        return [
            copy.deepcopy(obj)
            for _, obj in sorted(self._objects.items(), key=_sort_key)
        ]
