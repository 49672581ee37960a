"""Chart merge and drift engine.

Computes the desired add-on set of an installation, compares it against the
cluster declaration and the live charts and decides whether to re-apply.
"""

from .drift import declaration_changes, detect_chart_drift, pending_charts
from .merge import builtin_config_names, merge_addons
from .reconcile import CLUSTER_CONFIG_ID, ChartReconciler

__all__ = [
    "ChartReconciler",
    "CLUSTER_CONFIG_ID",
    "builtin_config_names",
    "declaration_changes",
    "detect_chart_drift",
    "merge_addons",
    "pending_charts",
]
