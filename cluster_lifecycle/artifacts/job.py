"""Per-node jobs that copy airgap artifacts from the in-cluster registry."""

import copy
import hashlib
import json
from typing import Any

import yaml

from cluster_lifecycle.manifest import Installation, Job, NamedResource, Node

__all__ = [
    "INSTALLATION_LABEL",
    "CONFIG_HASH_LABEL",
    "artifacts_hash",
    "artifact_job_id",
    "artifact_job_for_node",
]

INSTALLATION_LABEL = "embedded-cluster/installation"
CONFIG_HASH_LABEL = "embedded-cluster/artifacts-config-hash"
JOB_NAME_PREFIX = "copy-artifacts-"

JOB_TEMPLATE = """
backoffLimit: 2
template:
  spec:
    restartPolicy: Never
    serviceAccountName: embedded-cluster-operator
    tolerations:
      - operator: Exists
    volumes:
      - name: host
        hostPath:
          path: /var/lib/embedded-cluster
          type: Directory
    containers:
      - name: embedded-cluster-updater
        command:
          - /usr/local/bin/local-artifact-mirror
          - pull
          - artifacts
          - --data-dir
          - /var/lib/embedded-cluster
        volumeMounts:
          - name: host
            mountPath: /var/lib/embedded-cluster
        env: []
"""

_JOB_SPEC: dict[str, Any] = yaml.safe_load(JOB_TEMPLATE)


def artifacts_hash(installation: Installation) -> str:
    """Return a short hash of the artifact locations of an installation.

    Jobs labelled with a different hash were created for another set of
    artifacts and must be replaced.
    """
    artifacts = installation.spec.artifacts
    data = artifacts.to_dict() if artifacts is not None else None
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()[:10]


def artifact_job_id(node_name: str, namespace: str) -> NamedResource:
    return NamedResource(Job.kind, namespace, f"{JOB_NAME_PREFIX}{node_name}")


def artifact_job_for_node(
    installation: Installation,
    node: Node,
    namespace: str,
    image: str,
    config_hash: str,
) -> Job:
    """Build the copy job pinned to a node."""
    labels = {
        INSTALLATION_LABEL: installation.name,
        CONFIG_HASH_LABEL: config_hash,
    }
    spec = copy.deepcopy(_JOB_SPEC)
    template = spec["template"]
    template["metadata"] = {"labels": dict(labels)}
    template["spec"]["nodeName"] = node.name
    container = template["spec"]["containers"][0]
    container["image"] = image
    container["env"].append({"name": "INSTALLATION", "value": installation.name})
    resource_id = artifact_job_id(node.name, namespace)
    return Job(
        name=resource_id.name,
        namespace=resource_id.namespace,
        labels=labels,
        spec=spec,
    )
