"""Compute the desired add-on set of an installation.

The desired set starts from the release defaults, adds the built-in add-ons
enabled by the installation features and the user supplied charts, carries
protected values forward from the currently applied declaration, layers the
unsupported overrides and installation specific values on top and finally
assigns install order values.
"""

import copy
import logging

from cluster_lifecycle.manifest import Chart, HelmExtensions, Installation, Repository
from cluster_lifecycle.registry import REGISTRY_MIGRATION_CONDITION
from cluster_lifecycle.release import ReleaseMetadata
from cluster_lifecycle.values import (
    deep_merge,
    dump_values,
    merge_values,
    parse_values,
)

from .infra import apply_infra_values

__all__ = [
    "merge_addons",
    "builtin_config_names",
    "ADDON_ORDER_OFFSET",
    "DEFAULT_USER_CHART_ORDER",
]

_LOGGER = logging.getLogger(__name__)

SEAWEEDFS_CONFIG = "seaweedfs"
REGISTRY_CONFIG = "registry"
REGISTRY_HA_CONFIG = "registry-ha"
VELERO_CONFIG = "velero"

ADDON_ORDER_OFFSET = 100
DEFAULT_USER_CHART_ORDER = 10
DEFAULT_CONCURRENCY = 1


def builtin_config_names(installation: Installation) -> list[str]:
    """Return the built-in add-on sets enabled for an installation."""
    spec = installation.spec
    names = []
    if spec.airgap:
        if spec.high_availability:
            names.append(SEAWEEDFS_CONFIG)
            # The HA registry needs its data in object storage first.
            if installation.status.is_condition_true(REGISTRY_MIGRATION_CONDITION):
                names.append(REGISTRY_HA_CONFIG)
        else:
            names.append(REGISTRY_CONFIG)
    if spec.license_info.is_disaster_recovery_supported:
        names.append(VELERO_CONFIG)
    return names


def _combine_chart(base: Chart, override: Chart) -> Chart:
    """Merge a user chart into a chart with the same name."""
    values = base.values
    if override.values:
        values = dump_values(
            deep_merge(
                parse_values(base.values, f"chart {base.name} values"),
                parse_values(override.values, f"chart {override.name} values"),
            )
        )
    return Chart(
        name=base.name,
        chart_name=override.chart_name or base.chart_name,
        version=override.version or base.version,
        values=values,
        target_ns=override.target_ns or base.target_ns,
        timeout=override.timeout or base.timeout,
        order=override.order or base.order,
    )


def _add_charts(charts: list[Chart], additions: list[Chart]) -> list[str]:
    """Add charts in place, combining by name. Returns the names appended."""
    appended = []
    for addition in additions:
        for i, chart in enumerate(charts):
            if chart.name == addition.name:
                charts[i] = _combine_chart(chart, addition)
                break
        else:
            charts.append(copy.deepcopy(addition))
            appended.append(addition.name)
    return appended


def _add_repositories(repositories: list[Repository], additions: list[Repository]) -> None:
    for addition in additions:
        for i, repository in enumerate(repositories):
            if repository.name == addition.name:
                repositories[i] = copy.deepcopy(addition)
                break
        else:
            repositories.append(copy.deepcopy(addition))


def merge_addons(
    metadata: ReleaseMetadata | None,
    installation: Installation,
    applied: HelmExtensions | None = None,
    service_cidr: str | None = None,
) -> HelmExtensions:
    """Return the desired add-on set for an installation.

    Args:
        metadata: Metadata of the installation release, None if unknown.
        installation: The installation being reconciled.
        applied: The add-on set currently declared in the cluster, used to
            carry protected values forward.
        service_cidr: The cluster service network, used to address in-cluster
            services.

    Raises:
        ValuesException: If any value document is malformed.
    """
    if metadata is not None and metadata.configs is not None:
        result = copy.deepcopy(metadata.configs)
    else:
        result = HelmExtensions()
    if result.concurrency_level <= 0:
        result.concurrency_level = DEFAULT_CONCURRENCY

    builtin_configs = (metadata.builtin_configs if metadata else None) or {}
    for name in builtin_config_names(installation):
        if (builtin := builtin_configs.get(name)) is None:
            _LOGGER.warning("Release has no built-in add-on set %s, skipping", name)
            continue
        _add_charts(result.charts, builtin.charts)
        _add_repositories(result.repositories, builtin.repositories)

    user_charts: set[str] = set()
    if (user := installation.user_helm) is not None:
        if user.concurrency_level > 0:
            result.concurrency_level = min(
                user.concurrency_level, result.concurrency_level
            )
        user_charts.update(_add_charts(result.charts, user.charts))
        _add_repositories(result.repositories, user.repositories)

    protected = (metadata.protected if metadata else None) or {}
    if applied is not None:
        for chart in result.charts:
            paths = protected.get(chart.name)
            previous = applied.chart(chart.name)
            if not paths or previous is None:
                continue
            chart.values = merge_values(previous.values, chart.values, paths)

    if installation.spec.config is not None:
        for override in installation.spec.config.unsupported_overrides.builtin_extensions:
            if (target := result.chart(override.name)) is None:
                _LOGGER.debug("No chart %s to apply overrides to", override.name)
                continue
            target.values = dump_values(
                deep_merge(
                    parse_values(target.values, f"chart {target.name} values"),
                    parse_values(override.values, f"overrides for {override.name}"),
                )
            )

    apply_infra_values(result.charts, installation, service_cidr)

    infra_orders = [c.order for c in result.charts if c.name not in user_charts]
    min_user_order = max(infra_orders, default=0) + 1
    for chart in result.charts:
        if chart.name in user_charts:
            order = max(chart.order or DEFAULT_USER_CHART_ORDER, min_user_order)
        else:
            order = chart.order
        chart.order = ADDON_ORDER_OFFSET + order
    return result
