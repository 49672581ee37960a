"""Compare the desired add-on set with the declared and live chart state."""

import logging
from typing import Any

from cluster_lifecycle.exceptions import ValuesException
from cluster_lifecycle.manifest import Chart, ChartObject, HelmExtensions
from cluster_lifecycle.values import parse_values

__all__ = [
    "detect_chart_drift",
    "pending_charts",
    "declaration_changes",
]

_LOGGER = logging.getLogger(__name__)


def detect_chart_drift(
    desired: HelmExtensions, live: list[ChartObject]
) -> tuple[list[str], bool]:
    """Return the chart errors reported live and whether live charts differ from desired.

    Live charts are matched to desired charts by release name. Errors are
    collected from every live chart, whether or not there is drift.
    """
    errors = [chart.status.error for chart in live if chart.status.error]
    drift = False
    if len(live) != len(desired.charts):
        _LOGGER.info(
            "Number of charts differ: %d live, %d desired", len(live), len(desired.charts)
        )
        drift = True

    targets = {chart.name: chart for chart in desired.charts}
    seen = set()
    for chart in live:
        name = chart.release_name
        seen.add(name)
        if (target := targets.get(name)) is None:
            _LOGGER.info("Chart %s is not desired", name)
            drift = True
        elif target.version != chart.spec.version:
            _LOGGER.info(
                "Chart %s version differs: %s != %s",
                name,
                target.version,
                chart.spec.version,
            )
            drift = True

    if missing := [name for name in targets if name not in seen]:
        _LOGGER.info("Desired charts not found live: %s", missing)
        drift = True
    return errors, drift


def pending_charts(applied: HelmExtensions, live: list[ChartObject]) -> list[str]:
    """Return the declared charts the add-on agent has not created yet."""
    live_names = {chart.release_name for chart in live}
    return [chart.name for chart in applied.charts if chart.name not in live_names]


def _comparable(chart: Chart) -> dict[str, Any]:
    result = chart.to_dict()
    try:
        result["values"] = parse_values(chart.values)
    except ValuesException as err:
        # Malformed values are compared as text.
        _LOGGER.debug("Comparing values of chart %s as text: %s", chart.name, err)
    return result


def _repositories(extensions: HelmExtensions) -> dict[str, dict[str, Any]]:
    return {repo.name: repo.to_dict() for repo in extensions.repositories}


def declaration_changes(desired: HelmExtensions, applied: HelmExtensions) -> list[str]:
    """Return the names of charts whose declaration differs from the desired one.

    Repository or concurrency changes are reported with the name of the
    setting that changed.
    """
    changed = []
    applied_charts = {chart.name: chart for chart in applied.charts}
    for chart in desired.charts:
        previous = applied_charts.pop(chart.name, None)
        if previous is None or _comparable(previous) != _comparable(chart):
            changed.append(chart.name)
    changed.extend(applied_charts)
    if _repositories(desired) != _repositories(applied):
        changed.append("repositories")
    if desired.concurrency_level != applied.concurrency_level:
        changed.append("concurrencyLevel")
    return changed
