"""Tests for the upgrade stage of the reconciliation cycle."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from cluster_lifecycle.artifacts import ArtifactDistributor
from cluster_lifecycle.config import ReconcilerConfig
from cluster_lifecycle.exceptions import MetadataFetchError
from cluster_lifecycle.manifest import (
    ConfigMap,
    Installation,
    Job,
    JobStatus,
    Node,
    Plan,
    PlanStatus,
)
from cluster_lifecycle.release import (
    ArtifactPuller,
    MetadataCache,
    MetadataProvider,
    ReleaseMetadata,
    local_metadata_id,
)
from cluster_lifecycle.state import InstallationState
from cluster_lifecycle.store import InMemoryStore
from cluster_lifecycle.upgrade import (
    INSTALLATION_NAME_ANNOTATION,
    PLAN_ID,
    UpgradeOrchestrator,
    upgrade_targets,
)

PREVIOUS_VERSION = "1.1.0+k8s-1.29"


class FakePuller(ArtifactPuller):
    """Serves release metadata from a dict instead of a registry."""

    def __init__(self, content: str = "{}") -> None:
        self.content = content
        self.locations: list[str] = []

    async def pull(self, location: str, outdir: Path) -> None:
        self.locations.append(location)
        (outdir / "version-metadata.json").write_text(self.content)


@pytest.fixture(name="puller")
def puller_fixture() -> FakePuller:
    return FakePuller()


@pytest.fixture(name="config")
def config_fixture() -> ReconcilerConfig:
    return ReconcilerConfig()


@pytest.fixture(name="orchestrator")
def orchestrator_fixture(
    store: InMemoryStore,
    metadata_provider: MetadataProvider,
    puller: FakePuller,
    config: ReconcilerConfig,
) -> UpgradeOrchestrator:
    return UpgradeOrchestrator(
        store,
        metadata_provider,
        ArtifactDistributor(store, config),
        puller,
        config,
    )


@pytest.fixture(name="previous_k0s")
def previous_k0s_fixture() -> str:
    return "v1.29.1+k0s.0"


@pytest.fixture(name="previous")
async def previous_fixture(
    store: InMemoryStore,
    metadata_cache: MetadataCache,
    make_installation: Callable[..., Installation],
    previous_k0s: str,
) -> Installation:
    """The installation record the cluster was installed with."""
    metadata_cache.put(
        PREVIOUS_VERSION, ReleaseMetadata(versions={"Kubernetes": previous_k0s})
    )
    return await store.create_object(
        make_installation(
            name="20240401120000",
            version=PREVIOUS_VERSION,
            minutes=-60,
            state=InstallationState.INSTALLED,
        )
    )


@pytest.fixture(name="installation")
async def installation_fixture(
    store: InMemoryStore,
    previous: Installation,
    make_installation: Callable[..., Installation],
) -> Installation:
    """A new record pointing at the release under test."""
    return await store.create_object(make_installation())


def test_upgrade_targets() -> None:
    nodes = [
        Node(name="node1", labels={"node-role.kubernetes.io/control-plane": "true"}),
        Node(name="node2"),
        Node(name="node3"),
    ]
    targets = upgrade_targets(nodes)
    assert targets.controllers == ["node1"]
    assert targets.workers == ["node2", "node3"]


async def test_no_version(
    orchestrator: UpgradeOrchestrator, make_installation: Callable[..., Installation]
) -> None:
    installation = make_installation(version="")
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.KUBERNETES_INSTALLED


async def test_single_record(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    make_installation: Callable[..., Installation],
) -> None:
    """Test a fresh install has nothing to upgrade."""
    installation = await store.create_object(make_installation())
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.KUBERNETES_INSTALLED
    assert await store.list_objects(Plan) == []


async def test_running_release_matches(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    config: ReconcilerConfig,
    installation: Installation,
) -> None:
    config.running_version = "v1.2.0+k8s-1.29"
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.KUBERNETES_INSTALLED
    assert await store.list_objects(Plan) == []


async def test_does_not_regress_installed_state(
    orchestrator: UpgradeOrchestrator,
    make_installation: Callable[..., Installation],
) -> None:
    installation = make_installation(state=InstallationState.INSTALLED)
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.INSTALLED


async def test_start_upgrade(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    installation: Installation,
    add_nodes: Callable[..., Any],
) -> None:
    """Test a plan upgrading every node is created."""
    await add_nodes("node1", "node2", "node3")
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.ENQUEUED
    assert installation.status.reason == ""

    plan = await store.get_object(PLAN_ID, Plan)
    assert plan.annotations == {INSTALLATION_NAME_ANNOTATION: installation.name}
    assert plan.id
    assert plan.timestamp == "now"
    [command] = plan.commands
    assert command.airgap_update is None
    assert command.k0s_update is not None
    assert command.k0s_update.version == "v1.29.2+k0s.0"
    assert command.k0s_update.targets.controllers == ["node1"]
    assert command.k0s_update.targets.workers == ["node2", "node3"]
    platform = command.k0s_update.platforms["linux-amd64"]
    assert platform.url == (
        "https://replicated.example.com/embedded-cluster-public-files/"
        "k0s-binaries/v1.29.2+k0s.0"
    )
    assert platform.sha256 == "3b8f2a"

    plan.status = PlanStatus(state="Schedulable")
    await store.update_object(plan)
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.INSTALLING
    assert installation.status.reason == f"Upgrade plan {plan.id} is Schedulable"

    plan = await store.get_object(PLAN_ID, Plan)
    plan.status = PlanStatus(state="Completed")
    await store.update_object(plan)
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.KUBERNETES_INSTALLED
    assert installation.status.reason == f"Upgrade plan {plan.id} completed"


async def test_failed_plan(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    installation: Installation,
) -> None:
    await store.create_object(
        Plan(
            name="autopilot",
            id="p1",
            annotations={INSTALLATION_NAME_ANNOTATION: installation.name},
            status=PlanStatus(state="ApplyFailed"),
        )
    )
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.FAILED
    assert installation.status.reason == "Upgrade plan p1 failed in state ApplyFailed"


@pytest.mark.parametrize("previous_k0s", ["v1.29.2+k0s.0"])
async def test_same_distribution_version(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    installation: Installation,
) -> None:
    """Test no plan is created when the distribution build is unchanged."""
    store.set_server_version("v1.29.2+k0s")
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.KUBERNETES_INSTALLED
    assert await store.list_objects(Plan) == []


@pytest.mark.parametrize("previous_k0s", ["v1.29.2+k0s.1"])
async def test_new_distribution_build(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    installation: Installation,
) -> None:
    store.set_server_version("v1.29.2+k0s")
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.ENQUEUED
    plan = await store.get_object(PLAN_ID, Plan)
    assert plan.commands[0].k0s_update is not None


@pytest.mark.parametrize(
    ("server_version", "reason"),
    [
        ("v1.30.0+k0s", "Downgrades not supported"),
        ("garbage", "Invalid running version garbage"),
    ],
)
async def test_running_version_errors(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    installation: Installation,
    server_version: str,
    reason: str,
) -> None:
    store.set_server_version(server_version)
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.FAILED
    assert installation.status.reason == reason


async def test_invalid_desired_version(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    metadata_cache: MetadataCache,
    previous: Installation,
    make_installation: Callable[..., Installation],
) -> None:
    metadata_cache.put("2.0.0", ReleaseMetadata(versions={"Kubernetes": "v1.29.2"}))
    installation = await store.create_object(make_installation(version="2.0.0"))
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.FAILED
    assert installation.status.reason == "Invalid desired version v1.29.2"


async def test_invalid_metadata(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    previous: Installation,
    make_installation: Callable[..., Installation],
) -> None:
    resource_id = local_metadata_id("9.9.9", "embedded-cluster")
    await store.create_object(
        ConfigMap(
            name=resource_id.name,
            namespace=resource_id.namespace,
            data={"metadata.json": "{"},
        )
    )
    installation = await store.create_object(
        make_installation(version="9.9.9", airgap=True)
    )
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.FAILED
    assert "Unable to parse release metadata" in installation.status.reason


async def test_waits_for_other_plan(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    installation: Installation,
) -> None:
    await store.create_object(
        Plan(
            name="autopilot",
            id="other",
            annotations={INSTALLATION_NAME_ANNOTATION: "20240401120000"},
            status=PlanStatus(state="SchedulableWait"),
        )
    )
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.WAITING
    assert installation.status.reason == "Another upgrade is in progress (other)"


async def test_deletes_ended_plan(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    installation: Installation,
) -> None:
    """Test a finished plan of another record is cleared for the next cycle."""
    await store.create_object(
        Plan(name="autopilot", id="other", status=PlanStatus(state="Completed"))
    )
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.UNSET
    assert await store.list_objects(Plan) == []

    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.ENQUEUED


async def test_airgap_upgrade(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    puller: FakePuller,
    previous: Installation,
    make_installation: Callable[..., Installation],
    add_nodes: Callable[..., Any],
) -> None:
    """Test the plan waits for artifacts and then upgrades images and binaries."""
    await add_nodes("node1", "node2")
    installation = await store.create_object(make_installation(airgap=True))

    await orchestrator.reconcile(installation)
    assert puller.locations == ["registry.local/metadata:1.2.0"]
    assert installation.status.state == InstallationState.COPYING_ARTIFACTS
    assert await store.list_objects(Plan) == []

    for job in await store.list_objects(Job):
        job.status = JobStatus(succeeded=1)
        await store.update_status(job)
    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.ENQUEUED

    plan = await store.get_object(PLAN_ID, Plan)
    airgap, k0s = plan.commands
    assert airgap.airgap_update is not None
    assert airgap.airgap_update.version == "1.2.0+k8s-1.29"
    assert airgap.airgap_update.workers == ["node1", "node2"]
    assert airgap.airgap_update.platforms["linux-amd64"].url == (
        "http://127.0.0.1:50000/images/images-amd64.tar"
    )
    assert k0s.k0s_update is not None
    assert k0s.k0s_update.platforms["linux-amd64"].url == (
        "http://127.0.0.1:50000/bin/k0s-upgrade"
    )


async def test_newer_kubernetes_ignores_previous_record(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    make_installation: Callable[..., Installation],
    add_nodes: Callable[..., Any],
) -> None:
    """Test an upgrade starts when the previous release metadata is unreachable."""
    await store.create_object(
        make_installation(
            name="20240401120000",
            version="0.9.0+k8s-1.28",
            minutes=-60,
            state=InstallationState.INSTALLED,
            metrics_base_url="http://127.0.0.1:1",
        )
    )
    installation = await store.create_object(make_installation())
    await add_nodes("node1", "node2")

    await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.ENQUEUED
    plan = await store.get_object(PLAN_ID, Plan)
    [command] = plan.commands
    assert command.k0s_update is not None
    assert command.k0s_update.version == "v1.29.2+k0s.0"


async def test_unreachable_metadata_keeps_state(
    store: InMemoryStore,
    orchestrator: UpgradeOrchestrator,
    previous: Installation,
    make_installation: Callable[..., Installation],
) -> None:
    """Test a transient metadata failure is raised instead of failing the record."""
    installation = await store.create_object(
        make_installation(
            version="1.3.0+k8s-1.29",
            metrics_base_url="http://127.0.0.1:1",
            state=InstallationState.INSTALLING,
        )
    )
    with pytest.raises(MetadataFetchError, match="Failed to fetch release metadata"):
        await orchestrator.reconcile(installation)
    assert installation.status.state == InstallationState.INSTALLING
    assert await store.list_objects(Plan) == []
