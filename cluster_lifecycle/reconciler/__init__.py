"""Installation reconciliation: record selection and the control loop."""

from .coalesce import OBSOLETE_REASON, select_authoritative
from .controller import InstallationReconciler, ReconcileResult

__all__ = [
    "InstallationReconciler",
    "ReconcileResult",
    "OBSOLETE_REASON",
    "select_authoritative",
]
