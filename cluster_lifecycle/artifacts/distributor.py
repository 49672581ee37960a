"""Distribute airgap artifacts to every node before an upgrade may start.

Each node gets a copy job. The per-node decision is made by `classify_job`,
a pure function of the existing job, the installation and the artifacts
hash. The distributor acts on each decision and `aggregate` folds the
per-node outcomes into the installation state.
"""

from dataclasses import dataclass
from enum import StrEnum
import logging

from cluster_lifecycle.config import ReconcilerConfig
from cluster_lifecycle.exceptions import AlreadyExistsError, ObjectNotFoundError
from cluster_lifecycle.manifest import Installation, Job, Node
from cluster_lifecycle.state import InstallationState
from cluster_lifecycle.store import PropagationPolicy, Store
from cluster_lifecycle.task import get_task_service

from .job import (
    CONFIG_HASH_LABEL,
    INSTALLATION_LABEL,
    artifact_job_for_node,
    artifact_job_id,
    artifacts_hash,
)

__all__ = [
    "ArtifactDistributor",
    "JobOutcome",
    "NodeJobStatus",
    "classify_job",
    "aggregate",
]

_LOGGER = logging.getLogger(__name__)

MISSING_ARTIFACTS_REASON = "Artifacts locations not specified for an airgap installation"


class JobOutcome(StrEnum):
    """What was found, and done, for the copy job of a node."""

    CREATE = "JobCreated"
    DELETE = "WaitingPreviousJobDeletion"
    SUCCEEDED = "JobSucceeded"
    FAILED = "JobFailed"
    RUNNING = "JobRunning"


@dataclass(frozen=True)
class NodeJobStatus:
    """The outcome for one node."""

    node: str
    outcome: JobOutcome
    message: str = ""

    def __str__(self) -> str:
        if self.outcome == JobOutcome.FAILED:
            return f"{self.node}({self.outcome}: {self.message})"
        return f"{self.node}({self.outcome})"


def classify_job(
    job: Job | None, installation: Installation, config_hash: str
) -> JobOutcome:
    """Decide what to do about the copy job of a node."""
    if job is None:
        return JobOutcome.CREATE
    if (
        job.labels.get(INSTALLATION_LABEL) != installation.name
        or job.labels.get(CONFIG_HASH_LABEL) != config_hash
    ):
        return JobOutcome.DELETE
    if job.status.succeeded > 0:
        return JobOutcome.SUCCEEDED
    if job.failed_condition() is not None:
        return JobOutcome.FAILED
    return JobOutcome.RUNNING


def aggregate(
    statuses: list[NodeJobStatus],
) -> tuple[InstallationState | None, str]:
    """Fold the per-node outcomes into (state, reason).

    When every node succeeded the artifacts are ready and the state is None.
    """
    if all(status.outcome == JobOutcome.SUCCEEDED for status in statuses):
        return None, ""
    ordered = sorted(statuses, key=lambda status: status.node)
    reason = "Copying artifacts to nodes: " + ", ".join(str(s) for s in ordered)
    if any(status.outcome == JobOutcome.FAILED for status in statuses):
        return InstallationState.FAILED, reason
    return InstallationState.COPYING_ARTIFACTS, reason


class ArtifactDistributor:
    """Makes sure every node holds the airgap artifacts of an installation."""

    def __init__(self, store: Store, config: ReconcilerConfig | None = None) -> None:
        self._store = store
        self._config = config or ReconcilerConfig()

    async def _get_job(self, node: Node) -> Job | None:
        try:
            return await self._store.get_object(
                artifact_job_id(node.name, self._config.namespace), Job
            )
        except ObjectNotFoundError:
            return None

    async def _reconcile_node(
        self, installation: Installation, node: Node, config_hash: str
    ) -> NodeJobStatus:
        job = await self._get_job(node)
        outcome = classify_job(job, installation, config_hash)
        if outcome == JobOutcome.CREATE:
            _LOGGER.info("Creating artifact job for node %s", node.name)
            try:
                await self._store.create_object(
                    artifact_job_for_node(
                        installation,
                        node,
                        self._config.namespace,
                        self._config.local_artifact_mirror_image,
                        config_hash,
                    )
                )
            except AlreadyExistsError:
                _LOGGER.debug("Artifact job for node %s already exists", node.name)
        elif outcome == JobOutcome.DELETE and job is not None:
            _LOGGER.info("Deleting previous artifact job for node %s", node.name)
            try:
                await self._store.delete_object(
                    job.resource_id, PropagationPolicy.FOREGROUND
                )
            except ObjectNotFoundError:
                _LOGGER.debug("Artifact job for node %s already deleted", node.name)
        message = ""
        if outcome == JobOutcome.FAILED and job is not None:
            if (condition := job.failed_condition()) is not None:
                message = condition.message
        return NodeJobStatus(node.name, outcome, message)

    async def distribute(self, installation: Installation) -> bool:
        """Advance the copy jobs of every node, returning True once all succeeded.

        When not ready the installation state and reason describe the progress
        of each node.
        """
        if installation.spec.artifacts is None:
            installation.status.set_state(
                InstallationState.FAILED, MISSING_ARTIFACTS_REASON
            )
            return False

        config_hash = artifacts_hash(installation)
        nodes = await self._store.list_objects(Node)
        statuses = await get_task_service().gather(
            self._reconcile_node(installation, node, config_hash) for node in nodes
        )
        state, reason = aggregate(statuses)
        if state is None:
            _LOGGER.info("Artifacts copied to all %d nodes", len(statuses))
            return True
        _LOGGER.info("%s", reason)
        installation.status.set_state(state, reason)
        return False
