"""Move registry data into object storage when an airgapped cluster becomes HA.

The migration runs as a job that stops the single node registry, copies its
volume into the object storage bucket and finally creates a marker secret.
The marker secret is the only durable record that the migration completed.
"""

import logging
from typing import Any

from cluster_lifecycle.exceptions import (
    AlreadyExistsError,
    LifecycleException,
    MigrationException,
    ObjectNotFoundError,
)
from cluster_lifecycle.manifest import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    Condition,
    Installation,
    Job,
    NamedResource,
    Secret,
)
from cluster_lifecycle.store import Store

__all__ = [
    "REGISTRY_MIGRATION_CONDITION",
    "REGISTRY_NAMESPACE",
    "has_registry_migrated",
    "migrate_registry_data",
    "migration_job",
]

_LOGGER = logging.getLogger(__name__)

REGISTRY_MIGRATION_CONDITION = "RegistryMigrationStatus"
REGISTRY_NAMESPACE = "registry"
REGISTRY_S3_SECRET = "seaweedfs-s3-rw"
MIGRATION_COMPLETE_SECRET = "registry-data-migration-complete"
MIGRATION_JOB = "registry-data-migration"

KUBECTL_IMAGE = "bitnami/kubectl:1.29.5"
AWS_CLI_IMAGE = "amazon/aws-cli:latest"
S3_ENDPOINT = "http://seaweedfs-s3.seaweedfs:8333"
REGISTRY_DATA_DIR = "/var/lib/embedded-cluster/registry"


async def has_registry_migrated(
    store: Store, namespace: str = REGISTRY_NAMESPACE
) -> bool:
    """Return True if the migration marker secret exists."""
    try:
        await store.get_object(
            NamedResource(Secret.kind, namespace, MIGRATION_COMPLETE_SECRET), Secret
        )
    except ObjectNotFoundError:
        return False
    return True


def _shell(image: str, name: str, script: str, **extra: Any) -> dict[str, Any]:
    container = {
        "name": name,
        "image": image,
        "command": ["sh", "-c"],
        "args": [script],
    }
    container.update(extra)
    return container


def migration_job(namespace: str = REGISTRY_NAMESPACE) -> Job:
    """Return the job that copies the registry volume into object storage."""
    s3_env = [{"secretRef": {"name": REGISTRY_S3_SECRET}}]
    return Job(
        name=MIGRATION_JOB,
        namespace=namespace,
        spec={
            "template": {
                "spec": {
                    "restartPolicy": "OnFailure",
                    "volumes": [
                        {
                            "name": "registry-data",
                            "persistentVolumeClaim": {"claimName": "registry"},
                        }
                    ],
                    "initContainers": [
                        _shell(
                            KUBECTL_IMAGE,
                            "scale-down-registry",
                            f"kubectl scale deployment registry -n {namespace} --replicas=0",
                        ),
                        _shell(
                            AWS_CLI_IMAGE,
                            "wait-for-seaweed",
                            f"until aws s3 ls s3:// --endpoint-url={S3_ENDPOINT}; do sleep 5; done",
                            envFrom=s3_env,
                        ),
                        _shell(
                            AWS_CLI_IMAGE,
                            "migrate-registry-data",
                            f"aws s3 ls s3://registry --endpoint-url={S3_ENDPOINT} || "
                            f"aws s3api create-bucket --bucket registry --endpoint-url={S3_ENDPOINT}\n"
                            f"aws s3 sync {REGISTRY_DATA_DIR}/ s3://registry/ --endpoint-url={S3_ENDPOINT}",
                            envFrom=s3_env,
                            volumeMounts=[
                                {"name": "registry-data", "mountPath": REGISTRY_DATA_DIR}
                            ],
                        ),
                    ],
                    "containers": [
                        _shell(
                            KUBECTL_IMAGE,
                            "create-success-secret",
                            f"kubectl create secret generic -n {namespace} "
                            f"{MIGRATION_COMPLETE_SECRET} --from-literal=registry=migrated",
                        )
                    ],
                }
            }
        },
    )


def _migration_condition(installation: Installation, status: str, reason: str) -> None:
    installation.status.set_condition(
        Condition(
            type=REGISTRY_MIGRATION_CONDITION,
            status=status,
            reason=reason,
            observed_generation=installation.generation,
        )
    )


async def migrate_registry_data(
    store: Store, installation: Installation, namespace: str = REGISTRY_NAMESPACE
) -> None:
    """Start or follow the registry data migration.

    Records progress in the RegistryMigrationStatus condition of the installation.
    A migration that already completed or is still running is not restarted.

    Raises:
        MigrationException: If the migration job failed or could not be created.
    """
    if await has_registry_migrated(store, namespace):
        _migration_condition(installation, CONDITION_TRUE, "MigrationJobCompleted")
        return

    job_id = NamedResource(Job.kind, namespace, MIGRATION_JOB)
    try:
        job = await store.get_object(job_id, Job)
    except ObjectNotFoundError:
        job = None
    if job is not None:
        if job.status.active > 0:
            _LOGGER.debug("Registry migration job is still running")
            return
        if job.status.failed > 0:
            _migration_condition(installation, CONDITION_FALSE, "MigrationJobFailed")
            raise MigrationException("Registry migration job failed")
        # TODO: Surface succeeded jobs whose marker secret was never created.
        return

    _LOGGER.info("Starting registry data migration in namespace %s", namespace)
    try:
        await store.create_object(migration_job(namespace))
    except AlreadyExistsError:
        return
    except LifecycleException as err:
        _migration_condition(
            installation, CONDITION_FALSE, "MigrationJobFailedCreation"
        )
        raise MigrationException(f"Failed to create migration job: {err}") from err
    _migration_condition(installation, CONDITION_FALSE, "MigrationJobInProgress")
