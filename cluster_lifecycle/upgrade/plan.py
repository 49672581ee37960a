"""The upgrade plan executed by the upgrade agent."""

from enum import StrEnum

from cluster_lifecycle.manifest import Installation, NamedResource, Plan
from cluster_lifecycle.state import InstallationState

__all__ = [
    "PLAN_NAME",
    "PLAN_ID",
    "INSTALLATION_NAME_ANNOTATION",
    "PlanState",
    "plan_owned_by",
    "plan_has_ended",
    "installation_state_for_plan",
]

PLAN_NAME = "autopilot"
PLAN_ID = NamedResource(Plan.kind, None, PLAN_NAME)
INSTALLATION_NAME_ANNOTATION = "embedded-cluster/installation-name"


class PlanState(StrEnum):
    """States reported by the upgrade agent for a plan."""

    NEW = ""
    SCHEDULABLE = "Schedulable"
    SCHEDULABLE_WAIT = "SchedulableWait"
    COMPLETED = "Completed"
    APPLY_FAILED = "ApplyFailed"
    INCOMPLETE_TARGETS = "IncompleteTargets"
    INCONSISTENT_TARGETS = "InconsistentTargets"
    RESTRICTED = "Restricted"
    WARNING = "Warning"
    MISSING_SIGNAL_NODE = "MissingSignalNode"


ACTIVE_PLAN_STATES = frozenset(
    {PlanState.NEW, PlanState.SCHEDULABLE, PlanState.SCHEDULABLE_WAIT}
)


def plan_owned_by(plan: Plan, installation: Installation) -> bool:
    """Return True if the plan was created for the installation.

    Older plans carry the installation name as their id instead of the annotation.
    """
    return (
        plan.annotations.get(INSTALLATION_NAME_ANNOTATION) == installation.name
        or plan.id == installation.name
    )


def plan_has_ended(plan: Plan) -> bool:
    """Return True if the upgrade agent will not make further progress on the plan."""
    return plan.status.state not in ACTIVE_PLAN_STATES


def installation_state_for_plan(plan: Plan) -> tuple[InstallationState, str]:
    """Map the state of an owned plan to an installation state and reason."""
    state = plan.status.state
    if state == PlanState.NEW:
        return InstallationState.ENQUEUED, f"Upgrade plan {plan.id} is enqueued"
    if state in (PlanState.SCHEDULABLE, PlanState.SCHEDULABLE_WAIT):
        return InstallationState.INSTALLING, f"Upgrade plan {plan.id} is {state}"
    if state == PlanState.COMPLETED:
        return InstallationState.KUBERNETES_INSTALLED, f"Upgrade plan {plan.id} completed"
    return InstallationState.FAILED, f"Upgrade plan {plan.id} failed in state {state}"
