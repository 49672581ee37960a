"""Drive the cluster distribution version toward the desired installation version.

The upgrade itself is executed by the upgrade agent from a single plan object.
The orchestrator decides whether a plan is needed, creates it, follows the
plan it owns and clears plans left behind by superseded installations.
"""

import logging
import uuid

from packaging.version import Version

from cluster_lifecycle.artifacts import ArtifactDistributor
from cluster_lifecycle.config import ReconcilerConfig
from cluster_lifecycle.exceptions import (
    MetadataException,
    MetadataFetchError,
    ObjectNotFoundError,
)
from cluster_lifecycle.manifest import (
    AirgapUpdateCommand,
    Installation,
    K0sUpdateCommand,
    Node,
    Plan,
    PlanCommand,
    PlanCommandTargets,
    PlatformResource,
)
from cluster_lifecycle.release import (
    ArtifactPuller,
    MetadataProvider,
    ReleaseMetadata,
    copy_version_metadata,
    normalize_version,
)
from cluster_lifecycle.state import KUBERNETES_INSTALLED_STATES, InstallationState
from cluster_lifecycle.store import Store

from .plan import (
    INSTALLATION_NAME_ANNOTATION,
    PLAN_ID,
    PLAN_NAME,
    installation_state_for_plan,
    plan_has_ended,
    plan_owned_by,
)
from .versions import (
    InvalidVersion,
    kubernetes_version_from_k0s,
    parse_server_version,
    should_upgrade,
)

__all__ = [
    "UpgradeOrchestrator",
    "upgrade_targets",
]

_LOGGER = logging.getLogger(__name__)

CONTROL_PLANE_LABEL = "node-role.kubernetes.io/control-plane"
PLATFORM = "linux-amd64"
LOCAL_MIRROR_URL = "http://127.0.0.1:50000"


def upgrade_targets(nodes: list[Node]) -> PlanCommandTargets:
    """Split nodes into control plane and worker targets."""
    targets = PlanCommandTargets()
    for node in nodes:
        if CONTROL_PLANE_LABEL in node.labels:
            targets.controllers.append(node.name)
        else:
            targets.workers.append(node.name)
    return targets


def _mark_kubernetes_installed(installation: Installation, reason: str = "") -> None:
    if installation.status.state in KUBERNETES_INSTALLED_STATES:
        return
    installation.status.set_state(InstallationState.KUBERNETES_INSTALLED, reason)


class UpgradeOrchestrator:
    """Upgrade stage of the reconciliation cycle.

    Only the in-memory installation status is changed, the caller persists it.
    """

    def __init__(
        self,
        store: Store,
        metadata: MetadataProvider,
        distributor: ArtifactDistributor,
        puller: ArtifactPuller,
        config: ReconcilerConfig | None = None,
    ) -> None:
        self._store = store
        self._metadata = metadata
        self._distributor = distributor
        self._puller = puller
        self._config = config or ReconcilerConfig()

    async def reconcile(self, installation: Installation) -> None:
        """Advance the upgrade of the installation by one step.

        Raises:
            MetadataFetchError: If release metadata is temporarily unreachable,
                the state is left unchanged so the next cycle retries.
        """
        if not (version := installation.version):
            _mark_kubernetes_installed(installation)
            return
        running_release = self._config.running_version
        if running_release and normalize_version(running_release) == normalize_version(
            version
        ):
            _LOGGER.debug("Running release %s is the desired release", running_release)
            _mark_kubernetes_installed(installation)
            return
        records = await self._store.list_objects(Installation)
        if len(records) <= 1:
            _mark_kubernetes_installed(installation)
            return

        if installation.spec.airgap:
            await copy_version_metadata(
                self._store, installation, self._puller, self._config.namespace
            )

        try:
            metadata = await self._metadata.metadata_for(installation)
        except MetadataFetchError:
            raise
        except MetadataException as err:
            installation.status.set_state(InstallationState.FAILED, str(err))
            return

        server_version = await self._store.server_version()
        try:
            running = parse_server_version(server_version)
        except InvalidVersion:
            installation.status.set_state(
                InstallationState.FAILED, f"Invalid running version {server_version}"
            )
            return

        desired_k0s = metadata.kubernetes_version
        try:
            desired = kubernetes_version_from_k0s(desired_k0s)
        except InvalidVersion:
            installation.status.set_state(
                InstallationState.FAILED, f"Invalid desired version {desired_k0s}"
            )
            return

        if running > desired:
            installation.status.set_state(
                InstallationState.FAILED, "Downgrades not supported"
            )
            return

        if installation.spec.airgap:
            if not await self._distributor.distribute(installation):
                return

        try:
            plan = await self._store.get_object(PLAN_ID, Plan)
        except ObjectNotFoundError:
            await self._start_upgrade(
                installation, records, metadata, running, desired
            )
            return

        if plan_owned_by(plan, installation):
            state, reason = installation_state_for_plan(plan)
            if state == InstallationState.KUBERNETES_INSTALLED:
                _mark_kubernetes_installed(installation, reason)
            else:
                installation.status.set_state(state, reason)
            return

        if not plan_has_ended(plan):
            installation.status.set_state(
                InstallationState.WAITING,
                f"Another upgrade is in progress ({plan.id})",
            )
            return

        _LOGGER.info("Deleting upgrade plan %s of a previous installation", plan.id)
        try:
            await self._store.delete_object(PLAN_ID)
        except ObjectNotFoundError:
            _LOGGER.debug("Upgrade plan %s already deleted", plan.id)

    async def _previous_k0s_version(
        self, installation: Installation, records: list[Installation]
    ) -> str:
        """Return the distribution version of the record preceding the installation."""
        others = [record for record in records if record.name != installation.name]
        if not others:
            return ""
        previous = max(others, key=lambda record: (record.created_at, record.name))
        if not previous.version:
            return ""
        metadata = await self._metadata.metadata_for(previous)
        return metadata.kubernetes_version

    async def _start_upgrade(
        self,
        installation: Installation,
        records: list[Installation],
        metadata: ReleaseMetadata,
        running: Version,
        desired: Version,
    ) -> None:
        nodes = await self._store.list_objects(Node)
        targets = upgrade_targets(nodes)
        desired_k0s = metadata.kubernetes_version
        k0s_url = (
            f"{installation.spec.metrics_base_url.rstrip('/')}"
            f"/embedded-cluster-public-files/k0s-binaries/{desired_k0s}"
        )

        commands: list[PlanCommand] = []
        if installation.spec.airgap:
            k0s_url = f"{LOCAL_MIRROR_URL}/bin/k0s-upgrade"
            commands.append(
                PlanCommand(
                    airgap_update=AirgapUpdateCommand(
                        version=installation.version,
                        workers=[node.name for node in nodes],
                        platforms={
                            PLATFORM: PlatformResource(
                                url=f"{LOCAL_MIRROR_URL}/images/images-amd64.tar"
                            )
                        },
                    )
                )
            )

        previous_k0s = ""
        # The previous record only breaks ties between equal Kubernetes versions.
        if desired == running:
            previous_k0s = await self._previous_k0s_version(installation, records)
        if should_upgrade(running, desired, desired_k0s, previous_k0s):
            commands.append(
                PlanCommand(
                    k0s_update=K0sUpdateCommand(
                        version=desired_k0s,
                        targets=targets,
                        platforms={
                            PLATFORM: PlatformResource(
                                url=k0s_url, sha256=metadata.k0s_sha or None
                            )
                        },
                    )
                )
            )

        if not commands:
            _LOGGER.info("Cluster already runs %s, no upgrade plan needed", desired_k0s)
            _mark_kubernetes_installed(installation)
            return

        plan = Plan(
            name=PLAN_NAME,
            annotations={INSTALLATION_NAME_ANNOTATION: installation.name},
            id=str(uuid.uuid4()),
            timestamp="now",
            commands=commands,
        )
        await self._store.create_object(plan)
        _LOGGER.info(
            "Created upgrade plan %s for installation %s", plan.id, installation.name
        )
        installation.status.set_state(InstallationState.ENQUEUED, "")
