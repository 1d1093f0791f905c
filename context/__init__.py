"""
Persistent sync context for QLab transmissions.

Stores the workspace state captured after each successful transmission.
"""

from context.snapshot_store import get_snapshot_store, SnapshotStore, SnapshotInfo

__all__ = [
    "get_snapshot_store",
    "SnapshotStore",
    "SnapshotInfo",
]
