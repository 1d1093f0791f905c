"""
Snapshot Store

Persists the workspace state that was live right after each successful
transmission, so the next sync can tell source edits from remote edits.

One file per transmission:
    <cache_dir>/<source basename>_<YYYY-MM-DDTHH-MM-SS>.json

Files are kept indefinitely; the newest by modification time wins on load.
The stored tree has the same shape as a live /cueLists query and can be
indexed directly.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("qlab.context.snapshot_store")

DEFAULT_CACHE_DIR = os.path.join(os.path.expanduser("~"), ".cache", "qlab_sync")
TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"


@dataclass
class SnapshotInfo:
    """One snapshot file on disk"""
    path: Path
    source_id: str
    created_at: str
    modified: float


def snapshot_basename(source_id: str) -> str:
    """File-name stem for a source file path ("shows/uber.cue" -> "uber")."""
    return Path(source_id).stem or "workspace"


class SnapshotStore:
    """
    Keyed snapshot storage for transmitted workspace state.

    Features:
    - Timestamped snapshot per transmission
    - Most-recent lookup by modification time
    - Thread-safe save/load
    """

    def __init__(self, cache_dir: str = None):
        """
        Args:
            cache_dir: Snapshot directory. Defaults to ~/.cache/qlab_sync/
        """
        if cache_dir is None:
            cache_dir = DEFAULT_CACHE_DIR
        self.cache_dir = Path(cache_dir).expanduser()
        self._lock = threading.RLock()

    def _pattern(self, source_id: str) -> str:
        return f"{snapshot_basename(source_id)}_*.json"

    def list_snapshots(self, source_id: str) -> List[SnapshotInfo]:
        """Snapshots for ``source_id``, newest first."""
        if not self.cache_dir.exists():
            return []
        stem = snapshot_basename(source_id)
        infos = []
        for path in self.cache_dir.glob(self._pattern(source_id)):
            timestamp = path.stem[len(stem) + 1:]
            try:
                datetime.strptime(timestamp, TIMESTAMP_FORMAT)
            except ValueError:
                # "show_extra_<ts>" belongs to source "show_extra", not "show"
                continue
            infos.append(SnapshotInfo(
                path=path,
                source_id=source_id,
                created_at=timestamp,
                modified=path.stat().st_mtime,
            ))
        infos.sort(key=lambda info: info.modified, reverse=True)
        return infos

    def save(self, source_id: str, tree: Dict[str, Any], timestamp: datetime = None) -> Path:
        """Write ``tree`` as a new snapshot and return its path."""
        timestamp = timestamp or datetime.now()
        with self._lock:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            path = self.cache_dir / f"{snapshot_basename(source_id)}_{timestamp.strftime(TIMESTAMP_FORMAT)}.json"
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(tree, f, indent=2)
        logger.info("Saved workspace snapshot to %s", path)
        return path

    def load_most_recent(self, source_id: str) -> Optional[Dict[str, Any]]:
        """Newest snapshot for ``source_id``, or None when there is none."""
        with self._lock:
            snapshots = self.list_snapshots(source_id)
            if not snapshots:
                logger.info("No snapshot found for %s", source_id)
                return None
            path = snapshots[0].path
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Unreadable snapshot %s (%s) - treating as no cache", path, e)
                return None
        if not isinstance(data, dict):
            logger.warning("Snapshot %s is not a workspace tree - treating as no cache", path)
            return None
        logger.info("Loaded snapshot %s", path)
        return data


_snapshot_store: Optional[SnapshotStore] = None


def get_snapshot_store(cache_dir: str = None) -> SnapshotStore:
    """Process-wide store for the default cache directory."""
    global _snapshot_store
    if cache_dir is not None:
        return SnapshotStore(cache_dir)
    if _snapshot_store is None:
        _snapshot_store = SnapshotStore()
    return _snapshot_store
