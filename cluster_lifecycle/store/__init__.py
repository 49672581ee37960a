"""
The store module provides the typed object store the controller reads cluster
state from and writes its decisions to.

- Uses NamedResource as the key for all objects.
- Stores values as dataclass instances from manifest.py for type safety.
- Distinguishes conflicts (stale writes) from missing objects.

This abstract interface allows for various implementations. The in-memory
implementation can be loaded from and saved to a snapshot file.
"""

from .store import Store, StoreEvent, PropagationPolicy
from .in_memory import InMemoryStore
from .snapshot import ClusterSnapshot, read_snapshot, write_snapshot

__all__ = [
    "Store",
    "StoreEvent",
    "PropagationPolicy",
    "InMemoryStore",
    "ClusterSnapshot",
    "read_snapshot",
    "write_snapshot",
]
