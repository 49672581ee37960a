"""Reconcile the add-on charts of an installation with the cluster."""

import logging

from cluster_lifecycle.exceptions import MetadataException, MetadataFetchError
from cluster_lifecycle.manifest import (
    MAX_REASON_LENGTH,
    ChartObject,
    ClusterConfig,
    Extensions,
    Installation,
    NamedResource,
)
from cluster_lifecycle.release import MetadataProvider
from cluster_lifecycle.state import InstallationState
from cluster_lifecycle.store import Store

from .drift import declaration_changes, detect_chart_drift, pending_charts
from .merge import merge_addons

__all__ = [
    "ChartReconciler",
    "CLUSTER_CONFIG_ID",
]

_LOGGER = logging.getLogger(__name__)

CLUSTER_CONFIG_ID = NamedResource(ClusterConfig.kind, "kube-system", "k0s")


class ChartReconciler:
    """Drives the declared add-on set toward the desired one.

    The installation status is updated in memory only, the caller persists it.
    """

    def __init__(self, store: Store, metadata: MetadataProvider) -> None:
        self._store = store
        self._metadata = metadata

    async def reconcile(self, installation: Installation) -> None:
        status = installation.status
        if not installation.version:
            if status.state == InstallationState.KUBERNETES_INSTALLED:
                status.set_state(InstallationState.INSTALLED, "Installed")
            return

        if status.state == InstallationState.FAILED or not status.kubernetes_installed:
            _LOGGER.info("Skipping chart reconciliation in state %s", status.state)
            return

        try:
            metadata = await self._metadata.metadata_for(installation)
        except MetadataFetchError:
            raise
        except MetadataException as err:
            status.set_state(InstallationState.HELM_CHART_UPDATE_FAILURE, str(err))
            return

        user = installation.user_helm
        if not (metadata.configs and metadata.configs.charts) and not (
            user and user.charts
        ):
            _LOGGER.info("Release %s has no add-ons", installation.version)
            if status.state == InstallationState.KUBERNETES_INSTALLED:
                status.set_state(InstallationState.INSTALLED, "Installed")
            return

        cluster_config = await self._store.get_object(CLUSTER_CONFIG_ID, ClusterConfig)
        applied = cluster_config.helm
        service_cidr = None
        if installation.spec.network is not None:
            service_cidr = installation.spec.network.service_cidr
        if not service_cidr and cluster_config.spec.network is not None:
            service_cidr = cluster_config.spec.network.service_cidr

        desired = merge_addons(metadata, installation, applied, service_cidr)
        live = await self._store.list_objects(ChartObject)
        errors, live_drift = detect_chart_drift(desired, live)
        pending = pending_charts(applied, live)
        changed = declaration_changes(desired, applied)
        drift = live_drift or bool(changed)

        if errors and not drift:
            reason = "failed to update helm charts: " + ",".join(errors)
            _LOGGER.info("Chart errors: %s", reason)
            status.set_state(
                InstallationState.HELM_CHART_UPDATE_FAILURE,
                reason[:MAX_REASON_LENGTH],
            )
            return

        if not drift and not pending:
            status.set_state(InstallationState.INSTALLED, "Addons upgraded")
            return

        if pending:
            status.set_state(
                InstallationState.PENDING_CHART_CREATION,
                f"Pending charts: [{', '.join(pending)}]",
            )
            return

        status.set_state(InstallationState.ADDONS_INSTALLING, "Installing addons")
        if not changed:
            # The declaration is current, the add-on agent is still applying it.
            return

        _LOGGER.info("Updating cluster declaration, changed: %s", changed)
        if cluster_config.spec.extensions is None:
            cluster_config.spec.extensions = Extensions()
        cluster_config.spec.extensions.helm = desired
        await self._store.update_object(cluster_config)
