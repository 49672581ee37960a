"""Track node configuration in the installation status.

Each node is summarized as an event whose hash is stored in the status. A
changed hash means the node configuration changed since the last cycle.
"""

from dataclasses import dataclass, field
import hashlib
import json
import logging

from mashumaro import field_options

from .manifest import BaseManifest, Installation, Node, NodeStatus

__all__ = [
    "NodeEvent",
    "NodeRemovedEvent",
    "NodeEventsBatch",
    "node_event",
    "reconcile_node_statuses",
]

_LOGGER = logging.getLogger(__name__)

CONTROL_PLANE_LABEL = "node-role.kubernetes.io/control-plane"


@dataclass
class NodeEvent(BaseManifest):
    """Summary of a node reported when it is added or updated."""

    cluster_id: str = field(metadata=field_options(alias="clusterID"))
    node_name: str = field(metadata=field_options(alias="nodeName"))
    role: str = ""
    kubelet_version: str = field(default="", metadata=field_options(alias="kubeletVersion"))
    labels: dict[str, str] = field(default_factory=dict)

    class Config(BaseManifest.Config):
        serialize_by_alias = True

    def hash(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass
class NodeRemovedEvent(BaseManifest):
    cluster_id: str = field(metadata=field_options(alias="clusterID"))
    node_name: str = field(metadata=field_options(alias="nodeName"))

    class Config(BaseManifest.Config):
        serialize_by_alias = True


@dataclass
class NodeEventsBatch:
    """Node changes found in one cycle, reported after the status is saved."""

    added: list[NodeEvent] = field(default_factory=list)
    updated: list[NodeEvent] = field(default_factory=list)
    removed: list[NodeRemovedEvent] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.added or self.updated or self.removed)


def node_event(cluster_id: str, node: Node) -> NodeEvent:
    return NodeEvent(
        cluster_id=cluster_id,
        node_name=node.name,
        role="controller" if CONTROL_PLANE_LABEL in node.labels else "worker",
        kubelet_version=node.kubelet_version,
        labels=dict(node.labels),
    )


def reconcile_node_statuses(
    installation: Installation, nodes: list[Node]
) -> NodeEventsBatch:
    """Update the node statuses of an installation in place from the live nodes."""
    batch = NodeEventsBatch()
    cluster_id = installation.spec.cluster_id
    known = {status.name: status for status in installation.status.node_statuses}
    for node in nodes:
        event = node_event(cluster_id, node)
        digest = event.hash()
        if (status := known.get(node.name)) is None:
            known[node.name] = NodeStatus(name=node.name, hash=digest)
            batch.added.append(event)
        elif status.hash != digest:
            status.hash = digest
            batch.updated.append(event)

    live = {node.name for node in nodes}
    for name in known:
        if name not in live:
            batch.removed.append(NodeRemovedEvent(cluster_id=cluster_id, node_name=name))
    installation.status.node_statuses = sorted(
        (status for name, status in known.items() if name in live),
        key=lambda status: status.name,
    )
    if batch:
        _LOGGER.info(
            "Node changes: %d added, %d updated, %d removed",
            len(batch.added),
            len(batch.updated),
            len(batch.removed),
        )
    return batch
