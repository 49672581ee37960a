"""Test fixtures shared by the cluster-lifecycle tests."""

from collections.abc import Callable
import datetime
from typing import Any

import pytest

from cluster_lifecycle.manifest import (
    ArtifactsLocation,
    Chart,
    ChartObject,
    ChartObjectSpec,
    ChartObjectStatus,
    ClusterConfig,
    ClusterConfigSpec,
    Extensions,
    HelmExtensions,
    Installation,
    InstallationConfig,
    InstallationSpec,
    InstallationStatus,
    LicenseInfo,
    Network,
    Node,
    NodeStatus,
    Repository,
)
from cluster_lifecycle.release import MetadataCache, MetadataProvider, ReleaseMetadata
from cluster_lifecycle.state import InstallationState
from cluster_lifecycle.store import InMemoryStore

VERSION = "1.2.0+k8s-1.29"
K0S_VERSION = "v1.29.2+k0s.0"
BASE_TIME = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture(name="store")
def store_fixture() -> InMemoryStore:
    """An empty store reporting a v1.29.1 cluster."""
    return InMemoryStore()


@pytest.fixture(name="release_metadata")
def release_metadata_fixture() -> ReleaseMetadata:
    """Metadata of the release installed by the tests."""
    return ReleaseMetadata(
        versions={"Kubernetes": K0S_VERSION},
        k0s_sha="3b8f2a",
        configs=HelmExtensions(
            charts=[
                Chart(
                    name="admin-console",
                    chart_name="oci://registry.example.com/admin-console",
                    version="1.109.0",
                    values="password: changeme\nservice:\n  type: NodePort\n",
                    target_ns="kotsadm",
                    order=5,
                ),
                Chart(
                    name="embedded-cluster-operator",
                    chart_name="oci://registry.example.com/embedded-cluster-operator",
                    version="0.34.0",
                    values="image:\n  tag: 0.34.0\n",
                    target_ns="embedded-cluster",
                    order=3,
                ),
            ],
            repositories=[Repository(name="main", url="https://charts.example.com")],
            concurrency_level=2,
        ),
        builtin_configs={
            "registry": HelmExtensions(
                charts=[
                    Chart(
                        name="docker-registry",
                        chart_name="oci://registry.example.com/docker-registry",
                        version="2.2.3",
                        values="replicaCount: 1\n",
                        target_ns="registry",
                        order=3,
                    )
                ]
            ),
            "registry-ha": HelmExtensions(
                charts=[
                    Chart(
                        name="docker-registry",
                        chart_name="oci://registry.example.com/docker-registry",
                        version="2.2.3",
                        values="replicaCount: 2\nsecrets:\n  s3:\n    secretRef: seaweedfs-s3-rw\n",
                        target_ns="registry",
                        order=3,
                    )
                ]
            ),
            "seaweedfs": HelmExtensions(
                charts=[
                    Chart(
                        name="seaweedfs",
                        chart_name="oci://registry.example.com/seaweedfs",
                        version="3.67.0",
                        values="filer:\n  s3:\n    existingConfigSecret: secret-seaweedfs-s3\n",
                        target_ns="seaweedfs",
                        order=2,
                    )
                ]
            ),
            "velero": HelmExtensions(
                charts=[
                    Chart(
                        name="velero",
                        chart_name="oci://registry.example.com/velero",
                        version="6.3.0",
                        target_ns="velero",
                        order=4,
                    )
                ]
            ),
        },
        protected={"admin-console": ["password"]},
    )


@pytest.fixture(name="metadata_cache")
def metadata_cache_fixture(release_metadata: ReleaseMetadata) -> MetadataCache:
    cache = MetadataCache()
    cache.put(VERSION, release_metadata)
    return cache


@pytest.fixture(name="metadata_provider")
def metadata_provider_fixture(
    store: InMemoryStore, metadata_cache: MetadataCache
) -> MetadataProvider:
    """A provider answering from the cache, without network access."""
    return MetadataProvider(store, metadata_cache)


@pytest.fixture(name="make_installation")
def make_installation_fixture() -> Callable[..., Installation]:
    """Return a factory for installation records."""

    def _make(
        name: str = "20240501120000",
        version: str = VERSION,
        minutes: int = 0,
        airgap: bool = False,
        high_availability: bool = False,
        state: InstallationState = InstallationState.UNSET,
        node_statuses: list[NodeStatus] | None = None,
        user_helm: HelmExtensions | None = None,
        disaster_recovery: bool = False,
        **spec: Any,
    ) -> Installation:
        spec.setdefault("cluster_id", "cluster-1")
        spec.setdefault("metrics_base_url", "https://replicated.example.com")
        if airgap:
            spec.setdefault(
                "artifacts",
                ArtifactsLocation(
                    images="registry.local/images:1.2.0",
                    helm_charts="registry.local/charts:1.2.0",
                    embedded_cluster_binary="registry.local/binary:1.2.0",
                    embedded_cluster_metadata="registry.local/metadata:1.2.0",
                ),
            )
        return Installation(
            name=name,
            creation_timestamp=BASE_TIME + datetime.timedelta(minutes=minutes),
            spec=InstallationSpec(
                airgap=airgap,
                high_availability=high_availability,
                binary_name="my-app",
                config=InstallationConfig(
                    version=version, extensions=Extensions(helm=user_helm)
                ),
                license_info=LicenseInfo(
                    is_disaster_recovery_supported=disaster_recovery
                ),
                **spec,
            ),
            status=InstallationStatus(state=state, node_statuses=node_statuses or []),
        )

    return _make


@pytest.fixture(name="add_cluster_config")
def add_cluster_config_fixture(
    store: InMemoryStore,
) -> Callable[..., Any]:
    """Return a helper storing the cluster declaration."""

    async def _add(
        helm: HelmExtensions | None = None, service_cidr: str | None = None
    ) -> ClusterConfig:
        return await store.create_object(
            ClusterConfig(
                name="k0s",
                namespace="kube-system",
                spec=ClusterConfigSpec(
                    network=Network(service_cidr=service_cidr),
                    extensions=Extensions(helm=helm),
                ),
            )
        )

    return _add


def _live_chart(chart: Chart, error: str = "") -> ChartObject:
    """Return the live chart the add-on agent creates for a declared chart."""
    return ChartObject(
        name=f"k0s-addon-chart-{chart.name}",
        namespace="kube-system",
        spec=ChartObjectSpec(
            chart_name=chart.chart_name,
            release_name=chart.name,
            version=chart.version,
            values=chart.values,
            namespace=chart.target_ns,
            order=chart.order,
        ),
        status=ChartObjectStatus(
            release_name=chart.name, version=chart.version, error=error
        ),
    )


@pytest.fixture(name="add_live_charts")
def add_live_charts_fixture(store: InMemoryStore) -> Callable[..., Any]:
    """Return a helper storing live charts for declared charts."""

    async def _add(charts: list[Chart], errors: dict[str, str] | None = None) -> None:
        for chart in charts:
            await store.create_object(
                _live_chart(chart, (errors or {}).get(chart.name, ""))
            )

    return _add


@pytest.fixture(name="add_nodes")
def add_nodes_fixture(store: InMemoryStore) -> Callable[..., Any]:
    """Return a helper storing nodes, the first one is a controller."""

    async def _add(*names: str) -> list[Node]:
        nodes = []
        for i, name in enumerate(names):
            labels = {"kubernetes.io/hostname": name}
            if i == 0:
                labels["node-role.kubernetes.io/control-plane"] = "true"
            nodes.append(
                await store.create_object(
                    Node(name=name, labels=labels, kubelet_version="v1.29.1+k0s")
                )
            )
        return nodes

    return _add


@pytest.fixture(name="live_chart")
def live_chart_fixture() -> Callable[..., ChartObject]:
    return _live_chart
