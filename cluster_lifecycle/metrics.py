"""Report installation and node events to the metrics endpoint.

Reports are scheduled as background tasks. A failed report is logged and
never retried.
"""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any

import aiohttp
from mashumaro import field_options

from .exceptions import LifecycleException
from .manifest import BaseManifest, Installation
from .nodes import NodeEventsBatch
from .state import InstallationState
from .task import get_task_service

__all__ = [
    "EventType",
    "Reporter",
    "HttpReporter",
    "report_installation_changes",
    "report_node_changes",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class EventType(StrEnum):
    NODE_ADDED = "NodeAdded"
    NODE_UPDATED = "NodeUpdated"
    NODE_REMOVED = "NodeRemoved"
    UPGRADE_STARTED = "UpgradeStarted"
    UPGRADE_SUCCEEDED = "UpgradeSucceeded"
    UPGRADE_FAILED = "UpgradeFailed"


@dataclass
class UpgradeEvent(BaseManifest):
    cluster_id: str = field(metadata=field_options(alias="clusterID"))
    version: str | None = None
    reason: str | None = None

    class Config(BaseManifest.Config):
        serialize_by_alias = True


class Reporter(ABC):
    """Sends events to the metrics endpoint."""

    @abstractmethod
    async def send(self, base_url: str, event_type: EventType, payload: dict[str, Any]) -> None:
        """Send one event.

        Raises:
            LifecycleException: If the event could not be delivered.
        """


class HttpReporter(Reporter):
    """Posts events as JSON with aiohttp."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout

    async def send(self, base_url: str, event_type: EventType, payload: dict[str, Any]) -> None:
        url = f"{base_url.rstrip('/')}/embedded_cluster_metrics/{event_type}"
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json={"event": payload}) as response:
                    if response.status >= 300:
                        raise LifecycleException(
                            f"Metrics endpoint {url} returned status {response.status}"
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise LifecycleException(f"Failed to send {event_type} event: {err}") from err
        _LOGGER.debug("Reported %s event", event_type)


def _schedule(
    reporter: Reporter, base_url: str, event_type: EventType, payload: dict[str, Any]
) -> None:
    get_task_service().create_background_task(
        reporter.send(base_url, event_type, payload), name=f"report-{event_type}"
    )


def report_installation_changes(
    reporter: Reporter, before: Installation, after: Installation
) -> None:
    """Report an upgrade milestone if the installation state changed."""
    if not before.status.state or before.status.state == after.status.state:
        return
    cluster_id = after.spec.cluster_id
    state = after.status.state
    if state == InstallationState.INSTALLING:
        event_type = EventType.UPGRADE_STARTED
        event = UpgradeEvent(cluster_id=cluster_id, version=after.version)
    elif state == InstallationState.INSTALLED:
        event_type = EventType.UPGRADE_SUCCEEDED
        event = UpgradeEvent(cluster_id=cluster_id)
    elif state == InstallationState.FAILED:
        event_type = EventType.UPGRADE_FAILED
        event = UpgradeEvent(cluster_id=cluster_id, reason=after.status.reason)
    else:
        return
    _schedule(reporter, after.spec.metrics_base_url, event_type, event.to_dict())


def report_node_changes(
    reporter: Reporter, installation: Installation, batch: NodeEventsBatch
) -> None:
    base_url = installation.spec.metrics_base_url
    for event in batch.added:
        _schedule(reporter, base_url, EventType.NODE_ADDED, event.to_dict())
    for event in batch.updated:
        _schedule(reporter, base_url, EventType.NODE_UPDATED, event.to_dict())
    for removed in batch.removed:
        _schedule(reporter, base_url, EventType.NODE_REMOVED, removed.to_dict())
