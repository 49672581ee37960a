"""Choose the authoritative installation record among the active ones."""

import copy

from cluster_lifecycle.manifest import Installation
from cluster_lifecycle.state import InstallationState

__all__ = [
    "select_authoritative",
    "OBSOLETE_REASON",
]

OBSOLETE_REASON = "This is not the most recent installation object"


def _newest_first(record: Installation) -> tuple[float, bool, str]:
    return (record.created_at, bool(record.status.node_statuses), record.name)


def select_authoritative(
    records: list[Installation],
) -> tuple[Installation, list[Installation]]:
    """Return the newest record and the others demoted to Obsolete.

    The newest record inherits the node statuses of the most recent record
    that has them when it has none of its own. The input records are not
    modified.

    Raises:
        ValueError: If there are no records.
    """
    if not records:
        raise ValueError("No installation records to select from")
    ordered = [
        copy.deepcopy(record)
        for record in sorted(records, key=_newest_first, reverse=True)
    ]
    authoritative, *others = ordered
    if not authoritative.status.node_statuses:
        for record in others:
            if record.status.node_statuses:
                authoritative.status.node_statuses = copy.deepcopy(
                    record.status.node_statuses
                )
                break
    for record in others:
        record.status.node_statuses = []
        record.status.set_state(InstallationState.OBSOLETE, OBSOLETE_REASON)
    return authoritative, others
