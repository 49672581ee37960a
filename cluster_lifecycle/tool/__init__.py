"""Command line actions of cluster-lifecycle."""
