"""The installation reconciliation loop.

A cycle selects the authoritative installation record and runs the stages
in order: node status, cluster version upgrade, registry storage and add-on
charts. The resulting status is saved once at the end of the cycle, then
superseded records are demoted and events are reported.
"""

from collections.abc import Awaitable, Callable, Generator
import asyncio
from contextlib import contextmanager
import copy
from dataclasses import dataclass, field
import logging

from cluster_lifecycle.artifacts import ArtifactDistributor
from cluster_lifecycle.charts import ChartReconciler
from cluster_lifecycle.config import ReconcilerConfig
from cluster_lifecycle.context import trace_context
from cluster_lifecycle.exceptions import (
    ConflictError,
    LifecycleException,
    ReconcileError,
)
from cluster_lifecycle.manifest import (
    ChartObject,
    Installation,
    Job,
    NamedResource,
    Node,
    Plan,
    Resource,
)
from cluster_lifecycle.metrics import (
    Reporter,
    report_installation_changes,
    report_node_changes,
)
from cluster_lifecycle.nodes import NodeEventsBatch, reconcile_node_statuses
from cluster_lifecycle.registry import ensure_secrets, migrate_registry_data
from cluster_lifecycle.release import ArtifactPuller, MetadataProvider
from cluster_lifecycle.state import InstallationState
from cluster_lifecycle.store import Store, StoreEvent
from cluster_lifecycle.upgrade import UpgradeOrchestrator

from .coalesce import select_authoritative

__all__ = [
    "InstallationReconciler",
    "ReconcileResult",
]

_LOGGER = logging.getLogger(__name__)

WATCHED_KINDS = frozenset(
    {Installation.kind, Node.kind, Plan.kind, ChartObject.kind, Job.kind}
)
WATCHED_UPDATE_KINDS = frozenset({Node.kind, Plan.kind, ChartObject.kind, Job.kind})


@dataclass
class ReconcileResult:
    """Outcome of a reconciliation cycle."""

    requeue_after: float
    installation: str | None = None
    state: InstallationState | None = None
    reason: str = ""
    demoted: list[str] = field(default_factory=list)
    node_events: NodeEventsBatch = field(default_factory=NodeEventsBatch)


@contextmanager
def _stage(name: str) -> Generator[None, None, None]:
    """Trace a stage and name it in any error it raises."""
    with trace_context(name):
        try:
            yield
        except ReconcileError:
            raise
        except LifecycleException as err:
            raise ReconcileError(name, str(err)) from err


class InstallationReconciler:
    """Reconciles the authoritative installation record with the cluster."""

    def __init__(
        self,
        store: Store,
        metadata: MetadataProvider,
        puller: ArtifactPuller,
        reporter: Reporter,
        config: ReconcilerConfig | None = None,
    ) -> None:
        self._store = store
        self._metadata = metadata
        self._reporter = reporter
        self._config = config or ReconcilerConfig()
        self._distributor = ArtifactDistributor(store, self._config)
        self._orchestrator = UpgradeOrchestrator(
            store, metadata, self._distributor, puller, self._config
        )
        self._charts = ChartReconciler(store, metadata)

    async def _reconcile_registry(self, installation: Installation) -> None:
        spec = installation.spec
        if not (spec.airgap and spec.high_availability) or not installation.version:
            return
        metadata = await self._metadata.metadata_for(installation)
        await ensure_secrets(self._store, installation, metadata)
        await migrate_registry_data(self._store, installation)

    async def _demote(self, records: list[Installation]) -> list[str]:
        demoted = []
        for record in records:
            try:
                await self._store.update_status(record)
            except LifecycleException as err:
                _LOGGER.warning("Failed to demote installation %s: %s", record.name, err)
                continue
            demoted.append(record.name)
        return demoted

    async def reconcile(self) -> ReconcileResult:
        """Run one reconciliation cycle.

        Raises:
            ConflictError: If the installation changed while the cycle ran.
            ReconcileError: If a stage failed, the status is not saved.
        """
        result = ReconcileResult(requeue_after=self._config.requeue_after)
        records = [
            record
            for record in await self._store.list_objects(Installation)
            if record.status.state != InstallationState.OBSOLETE
        ]
        if not records:
            _LOGGER.info("No active installations found, reconciliation ended")
            return result

        installation, superseded = select_authoritative(records)
        result.installation = installation.name
        if not installation.spec.cluster_id:
            _LOGGER.info("Installation %s has no cluster id", installation.name)
            return result

        _LOGGER.info("Reconciling installation %s", installation.name)
        before = copy.deepcopy(installation)
        with _stage("nodes"):
            nodes = await self._store.list_objects(Node)
            result.node_events = reconcile_node_statuses(installation, nodes)
        with _stage("k0s version"):
            await self._orchestrator.reconcile(installation)
        with _stage("registry"):
            await self._reconcile_registry(installation)
        with _stage("helm charts"):
            await self._charts.reconcile(installation)

        try:
            await self._store.update_status(installation)
        except ConflictError as err:
            raise ConflictError("failed to update status: conflict") from err
        except LifecycleException as err:
            raise ReconcileError("status", str(err)) from err
        result.state = installation.status.state
        result.reason = installation.status.reason

        result.demoted = await self._demote(superseded)
        if not installation.spec.airgap:
            report_installation_changes(self._reporter, before, installation)
            report_node_changes(self._reporter, installation, result.node_events)
        _LOGGER.info(
            "Installation %s is %s: %s",
            installation.name,
            installation.status.state,
            installation.status.reason,
        )
        return result

    async def run(
        self,
        once: bool = False,
        after_cycle: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """Run reconciliation cycles until cancelled.

        A cycle runs when the requeue interval elapses or when a watched object
        changes. With `once` a single cycle runs and its errors are raised.
        """
        wake = asyncio.Event()

        def _wake_on(kinds: frozenset[str]) -> Callable[[NamedResource, Resource], None]:
            def _listener(resource_id: NamedResource, obj: Resource) -> None:
                if resource_id.kind in kinds:
                    wake.set()

            return _listener

        removers = [
            self._store.add_listener(StoreEvent.OBJECT_ADDED, _wake_on(WATCHED_KINDS)),
            self._store.add_listener(StoreEvent.OBJECT_DELETED, _wake_on(WATCHED_KINDS)),
            self._store.add_listener(
                StoreEvent.OBJECT_UPDATED, _wake_on(WATCHED_UPDATE_KINDS)
            ),
        ]
        try:
            while True:
                wake.clear()
                try:
                    async with asyncio.timeout(self._config.cycle_timeout):
                        await self.reconcile()
                except TimeoutError as err:
                    if once:
                        raise LifecycleException(
                            "Reconciliation did not finish within "
                            f"{self._config.cycle_timeout}s"
                        ) from err
                    _LOGGER.warning(
                        "Reconciliation timed out after %ss", self._config.cycle_timeout
                    )
                except LifecycleException as err:
                    if once:
                        raise
                    _LOGGER.error("Reconciliation failed: %s", err)
                except Exception as err:
                    if once:
                        raise
                    _LOGGER.exception("Unexpected error during reconciliation: %s", err)
                if after_cycle is not None:
                    await after_cycle()
                if once:
                    return
                try:
                    async with asyncio.timeout(self._config.requeue_after):
                        await wake.wait()
                except TimeoutError:
                    _LOGGER.debug("Requeue interval elapsed")
        finally:
            for remove in removers:
                remove()
