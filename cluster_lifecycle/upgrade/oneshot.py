"""One-shot upgrade of a cluster to a new installation record.

Used by the `upgrade` command: it hands the new record to the controller,
waits for the airgap artifacts to reach every node and then points the
controller chart at the version shipped with the new release.
"""

import asyncio
import logging
from typing import Any

from cluster_lifecycle.artifacts import ArtifactDistributor
from cluster_lifecycle.config import DEFAULT_NAMESPACE, UpgradeConfig
from cluster_lifecycle.exceptions import (
    AlreadyExistsError,
    LifecycleException,
    MetadataException,
)
from cluster_lifecycle.manifest import ChartObject, Installation, NamedResource
from cluster_lifecycle.release import (
    ArtifactPuller,
    MetadataProvider,
    ReleaseMetadata,
    copy_version_metadata,
)
from cluster_lifecycle.state import InstallationState
from cluster_lifecycle.store import Store

__all__ = [
    "upgrade_cluster",
    "OPERATOR_CHART_ID",
]

_LOGGER = logging.getLogger(__name__)

OPERATOR_CHART = "embedded-cluster-operator"
OPERATOR_CHART_ID = NamedResource(
    ChartObject.kind, "kube-system", f"k0s-addon-chart-{OPERATOR_CHART}"
)


async def _ensure_installation(store: Store, installation: Installation) -> Installation:
    try:
        created = await store.create_object(installation)
    except AlreadyExistsError:
        _LOGGER.info("Installation %s already exists", installation.name)
        return await store.get_object(installation.resource_id, Installation)
    _LOGGER.info("Created installation %s", installation.name)
    return created


async def _wait_for_artifacts(
    distributor: ArtifactDistributor, installation: Installation, config: UpgradeConfig
) -> None:
    try:
        async with asyncio.timeout(config.timeout):
            while not await distributor.distribute(installation):
                if installation.status.state == InstallationState.FAILED:
                    raise LifecycleException(
                        f"Failed to copy artifacts: {installation.status.reason}"
                    )
                _LOGGER.info("Waiting for artifacts: %s", installation.status.reason)
                await asyncio.sleep(config.interval)
    except TimeoutError as err:
        raise LifecycleException(
            f"Timed out after {config.timeout}s waiting for artifacts: "
            f"{installation.status.reason}"
        ) from err


def _operator_chart_patch(
    installation: Installation, metadata: ReleaseMetadata
) -> dict[str, Any]:
    chart = metadata.configs.chart(OPERATOR_CHART) if metadata.configs else None
    if chart is None:
        raise MetadataException(
            f"Release {installation.version} has no {OPERATOR_CHART} chart"
        )
    return {
        "spec": {
            "chart_name": chart.chart_name,
            "version": chart.version,
            "values": chart.values,
            "namespace": chart.target_ns,
            "timeout": chart.timeout,
            "order": chart.order,
        }
    }


async def upgrade_cluster(
    store: Store,
    installation: Installation,
    metadata: MetadataProvider,
    distributor: ArtifactDistributor,
    puller: ArtifactPuller,
    config: UpgradeConfig | None = None,
    namespace: str = DEFAULT_NAMESPACE,
) -> Installation:
    """Start an upgrade to the release of `installation`.

    Returns the stored installation record.

    Raises:
        LifecycleException: If metadata can not be resolved, artifacts can not
            be distributed in time or the controller chart can not be patched.
    """
    config = config or UpgradeConfig()
    current = await _ensure_installation(store, installation)
    if current.spec.airgap:
        await copy_version_metadata(store, current, puller, namespace)
        await _wait_for_artifacts(distributor, current, config)

    release = await metadata.metadata_for(current)
    patch = _operator_chart_patch(current, release)
    _LOGGER.info(
        "Patching %s to version %s", OPERATOR_CHART_ID, patch["spec"]["version"]
    )
    await store.patch_object(OPERATOR_CHART_ID, ChartObject, patch)
    return current
