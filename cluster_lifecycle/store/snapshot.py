"""Read and write the cluster state as a YAML snapshot file.

A snapshot holds every object the controller works with, grouped by kind, and
the version reported by the API server. It lets the command line tool run
reconciliation cycles against a cluster state kept on disk.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import cast

import aiofiles
import yaml

from cluster_lifecycle.exceptions import InputException
from cluster_lifecycle.manifest import (
    BaseManifest,
    ChartObject,
    ClusterConfig,
    ConfigMap,
    Installation,
    Job,
    Node,
    Plan,
    Resource,
    Secret,
)

from .in_memory import DEFAULT_SERVER_VERSION, InMemoryStore

__all__ = [
    "ClusterSnapshot",
    "read_snapshot",
    "write_snapshot",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class ClusterSnapshot(BaseManifest):
    """Serialized contents of a cluster."""

    server_version: str = DEFAULT_SERVER_VERSION
    installations: list[Installation] = field(default_factory=list)
    nodes: list[Node] = field(default_factory=list)
    cluster_configs: list[ClusterConfig] = field(default_factory=list)
    charts: list[ChartObject] = field(default_factory=list)
    plans: list[Plan] = field(default_factory=list)
    jobs: list[Job] = field(default_factory=list)
    config_maps: list[ConfigMap] = field(default_factory=list)
    secrets: list[Secret] = field(default_factory=list)

    def resources(self) -> list[Resource]:
        """Return all objects in the snapshot."""
        return [
            *self.installations,
            *self.nodes,
            *self.cluster_configs,
            *self.charts,
            *self.plans,
            *self.jobs,
            *self.config_maps,
            *self.secrets,
        ]


_KIND_FIELDS = {
    Installation.kind: "installations",
    Node.kind: "nodes",
    ClusterConfig.kind: "cluster_configs",
    ChartObject.kind: "charts",
    Plan.kind: "plans",
    Job.kind: "jobs",
    ConfigMap.kind: "config_maps",
    Secret.kind: "secrets",
}


async def load_store(snapshot: ClusterSnapshot) -> InMemoryStore:
    """Create a store holding every object of the snapshot."""
    store = InMemoryStore(server_version=snapshot.server_version)
    for obj in snapshot.resources():
        await store.create_object(obj)
    return store


async def dump_store(store: InMemoryStore) -> ClusterSnapshot:
    """Capture every object of a store in a snapshot."""
    snapshot = ClusterSnapshot(server_version=await store.server_version())
    for obj in store.objects():
        getattr(snapshot, _KIND_FIELDS[obj.kind]).append(obj)
    return snapshot


async def read_snapshot(snapshot_path: Path) -> InMemoryStore:
    """Return a store loaded from a snapshot file."""
    try:
        async with aiofiles.open(str(snapshot_path)) as snapshot_file:
            content = await snapshot_file.read()
    except OSError as err:
        raise InputException(f"Unable to read snapshot file {snapshot_path}: {err}") from err
    if not content:
        raise InputException(f"Snapshot file {snapshot_path} is empty")
    try:
        snapshot = cast(ClusterSnapshot, ClusterSnapshot.parse_yaml(content))
    except (yaml.YAMLError, ValueError, LookupError) as err:
        raise InputException(f"Invalid snapshot file {snapshot_path}: {err}") from err
    _LOGGER.debug("Loaded %d objects from %s", len(snapshot.resources()), snapshot_path)
    return await load_store(snapshot)


async def write_snapshot(snapshot_path: Path, store: InMemoryStore) -> None:
    """Write the contents of the store to a snapshot file."""
    content = (await dump_store(store)).yaml()
    async with aiofiles.open(str(snapshot_path), mode="w") as snapshot_file:
        await snapshot_file.write(content)
