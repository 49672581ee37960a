"""Cluster distribution upgrades through the upgrade agent."""

from .oneshot import OPERATOR_CHART_ID, upgrade_cluster
from .orchestrator import UpgradeOrchestrator, upgrade_targets
from .plan import (
    INSTALLATION_NAME_ANNOTATION,
    PLAN_ID,
    PLAN_NAME,
    PlanState,
    installation_state_for_plan,
    plan_has_ended,
    plan_owned_by,
)
from .versions import kubernetes_version_from_k0s, parse_server_version, should_upgrade

__all__ = [
    "OPERATOR_CHART_ID",
    "upgrade_cluster",
    "UpgradeOrchestrator",
    "upgrade_targets",
    "INSTALLATION_NAME_ANNOTATION",
    "PLAN_ID",
    "PLAN_NAME",
    "PlanState",
    "installation_state_for_plan",
    "plan_has_ended",
    "plan_owned_by",
    "kubernetes_version_from_k0s",
    "parse_server_version",
    "should_upgrade",
]
