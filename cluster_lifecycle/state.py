"""Installation lifecycle states and the transitions allowed between them."""

from enum import StrEnum

__all__ = [
    "InstallationState",
    "TRANSITIONS",
    "KUBERNETES_INSTALLED_STATES",
    "can_transition",
]


class InstallationState(StrEnum):
    """The lifecycle state of an installation record."""

    UNSET = ""
    """The record has not been reconciled yet."""

    ENQUEUED = "Enqueued"
    """An upgrade plan has been created and waits to be picked up."""

    INSTALLING = "Installing"
    """The upgrade plan is being executed by the upgrade agent."""

    KUBERNETES_INSTALLED = "KubernetesInstalled"
    """The cluster runs the desired version, add-ons are not reconciled yet."""

    ADDONS_INSTALLING = "AddonsInstalling"
    """A new add-on declaration was applied and is being rolled out."""

    PENDING_CHART_CREATION = "PendingChartCreation"
    """Declared charts have not yet been created by the add-on agent."""

    INSTALLED = "Installed"
    """The cluster and every add-on match the desired state."""

    HELM_CHART_UPDATE_FAILURE = "HelmChartUpdateFailure"
    """One or more charts report errors and there is no drift to correct them."""

    COPYING_ARTIFACTS = "CopyingArtifacts"
    """Airgap artifacts are being copied to the nodes."""

    WAITING = "Waiting"
    """Another installation's upgrade plan is still active."""

    FAILED = "Failed"
    """A policy violation or a failed upgrade."""

    OBSOLETE = "Obsolete"
    """Superseded by a newer installation record."""


KUBERNETES_INSTALLED_STATES = frozenset(
    {
        InstallationState.KUBERNETES_INSTALLED,
        InstallationState.ADDONS_INSTALLING,
        InstallationState.PENDING_CHART_CREATION,
        InstallationState.INSTALLED,
        InstallationState.HELM_CHART_UPDATE_FAILURE,
    }
)
"""States reached only once the cluster version upgrade has completed."""


_ACTIVE = frozenset(InstallationState) - {InstallationState.UNSET}


TRANSITIONS: dict[InstallationState, frozenset[InstallationState]] = {
    state: _ACTIVE for state in InstallationState if state != InstallationState.OBSOLETE
}
TRANSITIONS[InstallationState.OBSOLETE] = frozenset({InstallationState.OBSOLETE})


def can_transition(current: InstallationState, target: InstallationState) -> bool:
    """Return True if a record in `current` may be moved to `target`."""
    return target in TRANSITIONS[current]
