"""
Sync module: snapshots, diffing and the baseline store.

The pipelines (delta, reconcile runner, registry) are imported from their
own modules.
"""

from .models import (
    DiffResult,
    EntitySnapshot,
    SyncAction,
    VariantSnapshot,
)
from .diff import DiffInputError, compute_signature, diff
from .snapshot_store import SnapshotStore, StateFileError

__all__ = [
    "DiffResult",
    "EntitySnapshot",
    "SyncAction",
    "VariantSnapshot",
    "DiffInputError",
    "compute_signature",
    "diff",
    "SnapshotStore",
    "StateFileError",
]
