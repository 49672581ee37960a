"""Installation derived values injected into well known infrastructure charts."""

import ipaddress
import logging
from typing import Any

from cluster_lifecycle.exceptions import ValuesException
from cluster_lifecycle.manifest import Chart, Installation, Proxy
from cluster_lifecycle.values import dump_values, parse_path, parse_values, set_path

__all__ = [
    "apply_infra_values",
    "seaweedfs_s3_endpoint",
]

_LOGGER = logging.getLogger(__name__)

ADMIN_CONSOLE_CHART = "admin-console"
OPERATOR_CHART = "embedded-cluster-operator"
VELERO_CHART = "velero"
REGISTRY_CHART = "docker-registry"

DEFAULT_SERVICE_CIDR = "10.96.0.0/12"
SEAWEEDFS_S3_ADDRESS_OFFSET = 12
SEAWEEDFS_S3_PORT = 8333


def seaweedfs_s3_endpoint(service_cidr: str | None) -> str:
    """Return the fixed in-cluster address of the object storage S3 service."""
    cidr = service_cidr or DEFAULT_SERVICE_CIDR
    try:
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError as err:
        raise ValuesException(f"Invalid service CIDR '{cidr}': {err}") from err
    address = network.network_address + SEAWEEDFS_S3_ADDRESS_OFFSET
    return f"{address}:{SEAWEEDFS_S3_PORT}"


def _proxy_pairs(proxy: Proxy) -> list[tuple[str, str]]:
    return [
        ("HTTP_PROXY", proxy.http_proxy),
        ("HTTPS_PROXY", proxy.https_proxy),
        ("NO_PROXY", proxy.no_proxy),
    ]


def _chart_values(
    name: str, installation: Installation, service_cidr: str | None
) -> dict[str, Any]:
    """Return the values to set on a chart keyed by dotted path."""
    spec = installation.spec
    proxy = spec.proxy
    updates: dict[str, Any] = {}
    if name == ADMIN_CONSOLE_CHART:
        updates["embeddedClusterID"] = spec.cluster_id
        updates["isAirgap"] = "true" if spec.airgap else "false"
        updates["isHA"] = spec.high_availability
        if proxy is not None:
            updates["extraEnv"] = [
                {"name": key, "value": value} for key, value in _proxy_pairs(proxy)
            ]
    elif name == OPERATOR_CHART:
        updates["embeddedBinaryName"] = spec.binary_name
        updates["embeddedClusterID"] = spec.cluster_id
        if proxy is not None:
            updates["extraEnv"] = [
                {"name": key, "value": value} for key, value in _proxy_pairs(proxy)
            ]
    elif name == VELERO_CHART:
        if proxy is not None:
            updates["configuration.extraEnvVars"] = dict(_proxy_pairs(proxy))
    elif name == REGISTRY_CHART:
        if spec.airgap and spec.high_availability:
            updates["s3.regionEndpoint"] = seaweedfs_s3_endpoint(service_cidr)
    return updates


def apply_infra_values(
    charts: list[Chart], installation: Installation, service_cidr: str | None
) -> None:
    """Set installation specific values on the infrastructure charts in place."""
    for chart in charts:
        if not (updates := _chart_values(chart.name, installation, service_cidr)):
            continue
        values = parse_values(chart.values, f"chart {chart.name} values")
        for path, value in updates.items():
            set_path(values, parse_path(path), value)
        _LOGGER.debug("Injected %s into chart %s", sorted(updates), chart.name)
        chart.values = dump_values(values)
