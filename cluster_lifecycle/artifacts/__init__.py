"""Airgap artifact distribution to cluster nodes."""

from .distributor import (
    ArtifactDistributor,
    JobOutcome,
    NodeJobStatus,
    aggregate,
    classify_job,
)
from .job import artifact_job_for_node, artifact_job_id, artifacts_hash

__all__ = [
    "ArtifactDistributor",
    "JobOutcome",
    "NodeJobStatus",
    "aggregate",
    "classify_job",
    "artifact_job_for_node",
    "artifact_job_id",
    "artifacts_hash",
]
