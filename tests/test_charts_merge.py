"""Tests for computing the desired add-on set."""

from collections.abc import Callable

import pytest

from cluster_lifecycle.charts import builtin_config_names, merge_addons
from cluster_lifecycle.charts.infra import seaweedfs_s3_endpoint
from cluster_lifecycle.exceptions import ValuesException
from cluster_lifecycle.manifest import (
    BuiltInExtension,
    Chart,
    Condition,
    HelmExtensions,
    Installation,
    InstallationConfig,
    Proxy,
    Repository,
    UnsupportedOverrides,
)
from cluster_lifecycle.registry import REGISTRY_MIGRATION_CONDITION
from cluster_lifecycle.release import ReleaseMetadata
from cluster_lifecycle.values import parse_values


def _values(result: HelmExtensions, name: str) -> dict:
    chart = result.chart(name)
    assert chart is not None, f"chart {name} not found"
    return parse_values(chart.values)


def _orders(result: HelmExtensions) -> dict[str, int]:
    return {chart.name: chart.order for chart in result.charts}


def test_builtin_config_names(make_installation: Callable[..., Installation]) -> None:
    assert builtin_config_names(make_installation()) == []
    assert builtin_config_names(make_installation(airgap=True)) == ["registry"]
    assert builtin_config_names(
        make_installation(airgap=True, high_availability=True)
    ) == ["seaweedfs"]
    assert builtin_config_names(make_installation(disaster_recovery=True)) == [
        "velero"
    ]

    installation = make_installation(airgap=True, high_availability=True)
    installation.status.set_condition(
        Condition(type=REGISTRY_MIGRATION_CONDITION, status="True")
    )
    assert builtin_config_names(installation) == ["seaweedfs", "registry-ha"]


def test_release_defaults(
    release_metadata: ReleaseMetadata,
    make_installation: Callable[..., Installation],
) -> None:
    """Test the release defaults with installation values injected."""
    result = merge_addons(release_metadata, make_installation())

    assert _orders(result) == {
        "admin-console": 105,
        "embedded-cluster-operator": 103,
    }
    assert result.concurrency_level == 2
    assert [repo.name for repo in result.repositories] == ["main"]
    assert _values(result, "admin-console") == {
        "password": "changeme",
        "service": {"type": "NodePort"},
        "embeddedClusterID": "cluster-1",
        "isAirgap": "false",
        "isHA": False,
    }
    assert _values(result, "embedded-cluster-operator") == {
        "image": {"tag": "0.34.0"},
        "embeddedBinaryName": "my-app",
        "embeddedClusterID": "cluster-1",
    }
    # The release metadata itself is left untouched.
    assert release_metadata.configs.charts[0].order == 5  # type: ignore[union-attr]


def test_no_metadata(make_installation: Callable[..., Installation]) -> None:
    result = merge_addons(None, make_installation())
    assert result.charts == []
    assert result.concurrency_level == 1


def test_airgap_registry(
    release_metadata: ReleaseMetadata,
    make_installation: Callable[..., Installation],
) -> None:
    result = merge_addons(release_metadata, make_installation(airgap=True))
    assert _orders(result)["docker-registry"] == 103
    assert _values(result, "docker-registry") == {"replicaCount": 1}
    assert _values(result, "admin-console")["isAirgap"] == "true"


@pytest.mark.parametrize(
    ("service_cidr", "endpoint"),
    [
        (None, "10.96.0.12:8333"),
        ("10.100.0.0/16", "10.100.0.12:8333"),
    ],
)
def test_high_availability_registry(
    release_metadata: ReleaseMetadata,
    make_installation: Callable[..., Installation],
    service_cidr: str | None,
    endpoint: str,
) -> None:
    """Test the HA registry is only enabled after the data migration."""
    installation = make_installation(airgap=True, high_availability=True)
    result = merge_addons(release_metadata, installation, None, service_cidr)
    assert result.chart("seaweedfs") is not None
    assert result.chart("docker-registry") is None

    installation.status.set_condition(
        Condition(type=REGISTRY_MIGRATION_CONDITION, status="True")
    )
    result = merge_addons(release_metadata, installation, None, service_cidr)
    assert _orders(result)["seaweedfs"] == 102
    assert _values(result, "docker-registry") == {
        "replicaCount": 2,
        "secrets": {"s3": {"secretRef": "seaweedfs-s3-rw"}},
        "s3": {"regionEndpoint": endpoint},
    }
    assert _values(result, "admin-console")["isHA"] is True


def test_invalid_service_cidr() -> None:
    with pytest.raises(ValuesException, match="Invalid service CIDR"):
        seaweedfs_s3_endpoint("not-a-network")


def test_disaster_recovery_with_proxy(
    release_metadata: ReleaseMetadata,
    make_installation: Callable[..., Installation],
) -> None:
    """Test proxy settings are propagated to the infrastructure charts."""
    proxy = Proxy(
        http_proxy="http://proxy:3128",
        https_proxy="https://proxy:3129",
        no_proxy="localhost",
    )
    result = merge_addons(
        release_metadata, make_installation(disaster_recovery=True, proxy=proxy)
    )
    assert _orders(result)["velero"] == 104
    assert _values(result, "velero") == {
        "configuration": {
            "extraEnvVars": {
                "HTTP_PROXY": "http://proxy:3128",
                "HTTPS_PROXY": "https://proxy:3129",
                "NO_PROXY": "localhost",
            }
        }
    }
    assert _values(result, "admin-console")["extraEnv"] == [
        {"name": "HTTP_PROXY", "value": "http://proxy:3128"},
        {"name": "HTTPS_PROXY", "value": "https://proxy:3129"},
        {"name": "NO_PROXY", "value": "localhost"},
    ]


def test_user_charts(
    release_metadata: ReleaseMetadata,
    make_installation: Callable[..., Installation],
) -> None:
    """Test user charts are combined by name or appended after the infrastructure."""
    user = HelmExtensions(
        charts=[
            Chart(
                name="admin-console",
                values="service:\n  type: LoadBalancer\n",
            ),
            Chart(name="custom", chart_name="custom/app", version="1.0.0"),
            Chart(name="early", chart_name="custom/early", version="1.0.0", order=2),
        ],
        repositories=[
            Repository(name="main", url="https://mirror.example.com"),
            Repository(name="custom", url="https://custom.example.com"),
        ],
        concurrency_level=1,
    )
    result = merge_addons(release_metadata, make_installation(user_helm=user))

    assert _orders(result) == {
        "admin-console": 105,
        "embedded-cluster-operator": 103,
        "custom": 110,
        "early": 106,
    }
    admin_console = result.chart("admin-console")
    assert admin_console is not None
    assert admin_console.version == "1.109.0"
    assert _values(result, "admin-console")["service"] == {"type": "LoadBalancer"}
    assert _values(result, "admin-console")["password"] == "changeme"
    assert {repo.name: repo.url for repo in result.repositories} == {
        "main": "https://mirror.example.com",
        "custom": "https://custom.example.com",
    }
    assert result.concurrency_level == 1


def test_user_chart_invalid_values(
    release_metadata: ReleaseMetadata,
    make_installation: Callable[..., Installation],
) -> None:
    user = HelmExtensions(charts=[Chart(name="admin-console", values="- a\n- b\n")])
    with pytest.raises(ValuesException, match="admin-console"):
        merge_addons(release_metadata, make_installation(user_helm=user))


def test_protected_values(
    release_metadata: ReleaseMetadata,
    make_installation: Callable[..., Installation],
) -> None:
    """Test protected values are carried forward from the applied declaration."""
    applied = HelmExtensions(
        charts=[
            Chart(name="admin-console", values="password: s3cret\n"),
            Chart(name="embedded-cluster-operator", values="image:\n  tag: 0.1.0\n"),
        ]
    )
    result = merge_addons(release_metadata, make_installation(), applied)
    assert _values(result, "admin-console")["password"] == "s3cret"
    assert _values(result, "embedded-cluster-operator")["image"] == {"tag": "0.34.0"}


def test_unsupported_overrides(
    release_metadata: ReleaseMetadata,
    make_installation: Callable[..., Installation],
) -> None:
    """Test overrides are applied last and ignore unknown charts."""
    installation = make_installation()
    assert installation.spec.config is not None
    installation.spec.config.unsupported_overrides = UnsupportedOverrides(
        builtin_extensions=[
            BuiltInExtension(
                name="admin-console", values="service:\n  type: ClusterIP\n"
            ),
            BuiltInExtension(name="missing", values="a: b\n"),
        ]
    )
    applied = HelmExtensions(charts=[Chart(name="admin-console", values="password: x\n")])
    result = merge_addons(release_metadata, installation, applied)
    assert _values(result, "admin-console")["service"] == {"type": "ClusterIP"}
    assert _values(result, "admin-console")["password"] == "x"
    assert result.chart("missing") is None


def test_installation_without_config(
    release_metadata: ReleaseMetadata,
    make_installation: Callable[..., Installation],
) -> None:
    installation = make_installation()
    installation.spec.config = InstallationConfig()
    result = merge_addons(release_metadata, installation)
    assert len(result.charts) == 2
