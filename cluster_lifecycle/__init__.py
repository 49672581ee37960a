"""
cluster-lifecycle drives a running cluster toward a declared installation.

An installation record names the desired release version and add-on set.
The controller upgrades the cluster distribution through the upgrade agent,
distributes airgap artifacts to every node and keeps the add-on charts in
line with the release, reporting progress in the record status.
"""

__all__ = [
    "manifest",
    "state",
    "store",
    "exceptions",
    "reconciler",
    # Exposed for CLI documentation, not to be used as a library
    "tool",
]
