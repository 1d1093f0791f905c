"""
QLab Workspace Session

One connected QLab workspace: connection handshake, live-state queries,
cue primitives, and the full sync flow built on the reconcile package.

Usage:
    from qlab_controls import QLabWorkspace

    ws = QLabWorkspace()
    ws.connect("1234")
    comparison = ws.transmit("shows/act1.json", source_tree)
    ws.disconnect()

The sync flow:
    reconcile  -> load last snapshot, query live state, three-way compare
    identify   -> conflicts where the remote moved off the snapshot
    resolve    -> ConflictResolver decides source / remote / skip
    apply      -> CueWriter creates, updates and moves cues
    snapshot   -> re-query live state and persist it for the next pass

Shared per-connection state (the memoized /cueLists result and the baseline
number index) is guarded by one lock. Both are rebuilt from the live query
at the start of every reconcile pass.
"""

import copy
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from context.snapshot_store import SnapshotStore
from reconcile.cue import CHILDREN_KEY, normalize_number
from reconcile.conflicts import identify_conflicts
from reconcile.engine import (
    extract_remote_chosen_updates,
    print_comparison_results,
    reconcile,
    replace_cue_with_cached,
)
from reconcile.indexer import index_cues
from reconcile.resolver import (
    REASON_USER_SKIP,
    ConflictResolver,
    PolicyResolver,
    resolve_conflicts,
)
from reconcile.schemas import CueConflict, CueMapping, ThreeWayComparison, UpdateAction

from . import addresses
from .config import QLabSettings
from .controller import QLabController
from .cue_writer import CueWriter
from .errors import (
    CueNumberConflictError,
    QLabAuthError,
    QLabConnectionError,
    QLabError,
    QLabProtocolError,
)
from .replies import OscReply, ReplyKind

logger = logging.getLogger("qlab.workspace")

STAGING_LIST_TYPE = "list"
ENRICHED_PROPERTIES = ("fileTarget", "cueTargetNumber")


class QLabWorkspace:
    """Session with a single QLab workspace"""

    def __init__(self,
                 settings: Optional[QLabSettings] = None,
                 controller: Optional[QLabController] = None,
                 snapshot_store: Optional[SnapshotStore] = None,
                 resolver: Optional[ConflictResolver] = None):
        """
        Args:
            settings: Connection and sync settings (default: from environment)
            controller: Pre-built transport (default: built from settings)
            snapshot_store: Snapshot persistence (default: settings.cache_dir)
            resolver: Conflict resolver used by transmit() (default: keep
                the source version of every conflict)
        """
        self.settings = settings or QLabSettings.from_env()
        if controller is None:
            controller = QLabController(
                host=self.settings.host,
                port=self.settings.port,
                timeout=self.settings.timeout,
                max_retries=self.settings.max_retries,
                dry_run=self.settings.dry_run,
            )
        self.controller = controller
        if self.controller.on_disconnect is None:
            self.controller.on_disconnect = self._handle_disconnect
        self.snapshot_store = snapshot_store or SnapshotStore(self.settings.cache_dir)
        self.resolver = resolver

        self.workspace_id: Optional[str] = None
        self.staging_list_id: Optional[str] = None
        self.source_dir: Optional[str] = None
        self.connected = False

        self._lock = threading.RLock()
        self._cue_lists_cache: Optional[List[Dict[str, Any]]] = None
        self._video_stages_cache: Optional[List[Dict[str, Any]]] = None
        self._baseline = CueMapping()

    # ==================== CONNECTION ====================

    def connect(self, passcode: Optional[str] = None) -> OscReply:
        """
        Connect to the front workspace.

        Raises:
            QLabConnectionError: QLab did not answer
            QLabAuthError: passcode rejected
            QLabProtocolError: any other error reply
        """
        if passcode is None:
            passcode = self.settings.passcode
        self.controller.start()

        if passcode:
            reply = self.controller.send_with_retry(addresses.connect(), passcode)
        else:
            reply = self.controller.send_with_retry(addresses.connect())

        if reply.timed_out:
            raise QLabConnectionError(
                f"no reply from QLab at {self.controller.host}:{self.controller.port} - "
                f"is QLab running with OSC access enabled?"
            )
        if reply.kind == ReplyKind.AUTH:
            raise QLabAuthError(reply.error)
        if not reply.ok:
            raise QLabProtocolError(reply.address, reply.raw, message="connect failed")
        if not reply.workspace_id:
            raise QLabProtocolError(reply.address, reply.raw, message="connect reply has no workspace_id")

        self.workspace_id = reply.workspace_id
        self.controller.set_workspace_id(reply.workspace_id)
        self.connected = True
        logger.info("Connected to QLab workspace %s at %s:%d",
                    reply.workspace_id, self.controller.host, self.controller.port)

        always = self.controller.send_with_retry(addresses.always_reply(), 1)
        if not always.ok:
            logger.warning("Could not enable alwaysReply: %s", always.error)

        try:
            self.ensure_staging_list()
        except QLabError as e:
            logger.warning("Could not create staging cue list '%s': %s",
                           self.settings.staging_list_name, e)
        try:
            self.index_existing_cues()
        except QLabError as e:
            logger.warning("Could not index existing cues: %s", e)

        return reply

    def disconnect(self):
        """Release the workspace and stop the listener."""
        if self.connected:
            self.controller.send(addresses.disconnect())
        self.controller.shutdown()
        self.connected = False
        self.workspace_id = None
        self.controller.set_workspace_id(None)
        self.invalidate_cue_lists()
        with self._lock:
            self._video_stages_cache = None
        logger.info("Disconnected from QLab")

    def _handle_disconnect(self):
        logger.error("Lost connection to QLab at %s:%d", self.controller.host, self.controller.port)
        self.connected = False
        self.invalidate_cue_lists()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False

    # ==================== CUE LIST QUERIES ====================

    def get_cue_lists(self, use_cache: bool = True) -> Optional[List[Dict[str, Any]]]:
        """
        Cue lists of the workspace (memoized until invalidated).

        Returns:
            List of cue-list dicts, or None when QLab did not answer
        """
        with self._lock:
            if use_cache and self._cue_lists_cache is not None:
                return self._cue_lists_cache

        # Lock released while waiting on QLab
        reply = self.controller.send_with_retry(addresses.cue_lists())
        if reply.timed_out:
            return None
        reply.raise_for_status()
        data = reply.data if isinstance(reply.data, list) else []
        with self._lock:
            self._cue_lists_cache = data
        return data

    def invalidate_cue_lists(self):
        with self._lock:
            self._cue_lists_cache = None

    def get_video_stages(self) -> List[Dict[str, Any]]:
        """
        Video stages of the workspace, cached for the connection.

        Returns:
            Stage dicts (``uniqueID``, ``name``, ...); empty when QLab did not
            answer or reported an error
        """
        with self._lock:
            if self._video_stages_cache is not None:
                logger.debug("Returning cached video stages (%d stages)", len(self._video_stages_cache))
                return self._video_stages_cache

        reply = self.controller.send_with_retry(addresses.video_stages())
        if not reply.ok:
            logger.warning("Could not query video stages: %s", reply.error)
            return []
        data = reply.data if isinstance(reply.data, list) else []
        stages = [stage for stage in data if isinstance(stage, dict)]
        with self._lock:
            self._video_stages_cache = stages
        return stages

    def query_current_state(self) -> Optional[Dict[str, Any]]:
        """
        Full live state as ``{"data": [cue lists...]}``.

        Lists that came back without cues are filled through their children
        query, then every cue is enriched with fileTarget and cueTargetNumber
        (not part of the /cueLists reply). A timeout falls back to the
        shallow query; other failures return None.
        """
        logger.info("Querying current workspace state")
        reply = self.controller.send_with_retry(addresses.cue_lists())
        if reply.timed_out:
            logger.warning("Full /cueLists query timed out - falling back to lightweight query")
            return self.query_lightweight_state()
        if not reply.ok:
            logger.warning("QLab error querying workspace state: %s", reply.error)
            return None
        if not isinstance(reply.data, list):
            return {"data": reply.data}

        cue_lists = reply.data
        for cue_list in cue_lists:
            if isinstance(cue_list, dict) and not cue_list.get(CHILDREN_KEY):
                self._fill_list_children(cue_list)

        for cue_list in cue_lists:
            if isinstance(cue_list, dict) and isinstance(cue_list.get(CHILDREN_KEY), list):
                self._enrich_cues(cue_list[CHILDREN_KEY])

        with self._lock:
            self._cue_lists_cache = copy.deepcopy(cue_lists)
        total = sum(len(c.get(CHILDREN_KEY) or []) for c in cue_lists if isinstance(c, dict))
        logger.info("Workspace state: %d cue lists, %d top-level cues", len(cue_lists), total)
        return {"data": cue_lists}

    def query_lightweight_state(self) -> Optional[Dict[str, Any]]:
        """Shallow /cueLists query, no children or enrichment."""
        reply = self.controller.send_with_retry(addresses.cue_lists_shallow())
        if not reply.ok:
            if reply.timed_out:
                logger.warning("Lightweight query also timed out - QLab connection may be unstable")
            else:
                logger.warning("Lightweight query failed: %s", reply.error)
            return None
        logger.info("Lightweight query succeeded - using basic cue structure")
        return {"data": reply.data if isinstance(reply.data, list) else []}

    def _fill_list_children(self, cue_list: Dict[str, Any]):
        unique_id = cue_list.get("uniqueID")
        number = normalize_number(cue_list.get("number"))
        if isinstance(unique_id, str) and unique_id:
            address = addresses.cue_children(unique_id)
        elif number:
            address = addresses.cue_children_by_number(number)
        else:
            logger.warning("Cue list %r has no number or uniqueID", cue_list.get("name"))
            return

        reply = self.controller.send_with_retry(address)
        if not reply.ok:
            logger.warning("Could not fetch cues for list %r: %s", cue_list.get("name"), reply.error)
            return
        if isinstance(reply.data, list):
            cue_list[CHILDREN_KEY] = reply.data
            logger.debug("Fetched %d cues for list %r", len(reply.data), cue_list.get("name"))

    def _enrich_cues(self, cues: List[Any]):
        for cue in cues:
            if not isinstance(cue, dict):
                continue
            unique_id = cue.get("uniqueID")
            if isinstance(unique_id, str) and unique_id:
                for prop in ENRICHED_PROPERTIES:
                    reply = self.controller.send_with_retry(addresses.cue_property(unique_id, prop))
                    if reply.ok and isinstance(reply.data, str) and reply.data:
                        cue[prop] = reply.data
            children = cue.get(CHILDREN_KEY)
            if isinstance(children, list):
                self._enrich_cues(children)

    def get_running_cues(self) -> List[Dict[str, Any]]:
        return self._shallow_cue_query(addresses.running_cues())

    def get_selected_cues(self) -> List[Dict[str, Any]]:
        return self._shallow_cue_query(addresses.selected_cues())

    def _shallow_cue_query(self, address: str) -> List[Dict[str, Any]]:
        reply = self.controller.send_with_retry(address)
        if not reply.ok:
            logger.warning("Query %s failed: %s", address, reply.error)
            return []
        if not isinstance(reply.data, list):
            return []
        return [cue for cue in reply.data if isinstance(cue, dict)]

    def subscribe_updates(self, callback: Callable[[str, List[Any]], None]) -> OscReply:
        """Route QLab push notifications (/update/...) to ``callback``."""
        self.controller.on_update = callback
        reply = self.controller.send_with_retry(addresses.updates(), 1)
        if not reply.ok:
            logger.warning("Could not subscribe to updates: %s", reply.error)
        return reply

    # ==================== STARTUP INDEXING ====================

    def ensure_staging_list(self) -> str:
        """Find or create the staging cue list and return its uniqueID."""
        name = self.settings.staging_list_name
        for cue_list in self.get_cue_lists() or []:
            if isinstance(cue_list, dict) and cue_list.get("name") == name:
                unique_id = cue_list.get("uniqueID")
                if isinstance(unique_id, str) and unique_id:
                    logger.info("Found staging cue list '%s': %s", name, unique_id)
                    self._remember_list(name, unique_id)
                    return unique_id

        logger.info("Staging cue list '%s' not found, creating it", name)
        unique_id = self.create_cue(STAGING_LIST_TYPE)
        self.set_cue_property(unique_id, "name", name)
        self.invalidate_cue_lists()
        self._remember_list(name, unique_id)
        logger.info("Created staging cue list '%s': %s", name, unique_id)
        return unique_id

    def _remember_list(self, name: str, unique_id: str):
        self.staging_list_id = unique_id
        with self._lock:
            self._baseline.list_name_to_id[name] = unique_id
            self._baseline.existing_list_ids.add(unique_id)

    def index_existing_cues(self) -> int:
        """Record every existing cue number and cue list name.

        Returns:
            Number of numbered cues indexed
        """
        cue_lists = self.get_cue_lists()
        if cue_lists is None:
            raise QLabConnectionError("no reply from QLab while indexing existing cues")

        count = 0
        with self._lock:
            for cue_list in cue_lists:
                if not isinstance(cue_list, dict):
                    continue
                name, unique_id = cue_list.get("name"), cue_list.get("uniqueID")
                if isinstance(name, str) and name and isinstance(unique_id, str):
                    self._baseline.list_name_to_id[name] = unique_id
                    self._baseline.existing_list_ids.add(unique_id)
                count += self._index_numbers(cue_list.get(CHILDREN_KEY))
        logger.info("Indexed %d existing cues with numbers and %d cue lists",
                    count, len(self._baseline.list_name_to_id))
        return count

    def _index_numbers(self, cues) -> int:
        if not isinstance(cues, list):
            return 0
        count = 0
        for cue in cues:
            if not isinstance(cue, dict):
                continue
            unique_id = cue.get("uniqueID")
            number = normalize_number(cue.get("number"))
            if isinstance(unique_id, str) and number:
                self._baseline.number_to_id[number] = unique_id
                count += 1
            count += self._index_numbers(cue.get(CHILDREN_KEY))
        return count

    def new_mapping(self) -> CueMapping:
        """Fresh per-pass mapping seeded from the connection baseline."""
        with self._lock:
            return self._baseline.copy_for_pass()

    # ==================== CUE PRIMITIVES ====================

    def create_cue(self, cue_type: str) -> str:
        """Create a cue of ``cue_type`` and return its uniqueID."""
        reply = self.controller.send_with_retry(addresses.new_cue(), cue_type)
        reply.raise_for_status()
        if not isinstance(reply.data, str) or not reply.data:
            raise QLabProtocolError(reply.address, reply.raw, message="no uniqueID in new cue reply")
        logger.info("Created %s cue with ID: %s", cue_type, reply.data)
        return reply.data

    def set_cue_property(self, unique_id: str, prop: str, *values) -> OscReply:
        """
        Set one property. Extra values are sent as separate OSC arguments
        (colors, translations).

        Raises:
            QLabProtocolError: QLab rejected the value
        """
        reply = self.controller.send_with_retry(addresses.cue_property(unique_id, prop), *values)
        if reply.timed_out:
            logger.warning("No reply setting %s on cue %s", prop, unique_id)
            return reply
        if not reply.ok:
            raise QLabProtocolError(
                reply.address, reply.raw,
                message=f"failed to set {prop}={list(values)} for cue {unique_id}",
            )
        logger.debug("Set %s=%s on cue %s", prop, list(values), unique_id)
        return reply

    def set_cue_number(self, unique_id: str, number: str, mapping: CueMapping) -> OscReply:
        """
        Assign a cue number, checking ``mapping`` for a cue already using it.

        Raises:
            CueNumberConflictError: number taken and force_cue_numbers is off
        """
        if number:
            existing_id = mapping.number_to_id.get(number)
            if existing_id and existing_id != unique_id:
                logger.warning("Cue number conflict: '%s' is already assigned to cue %s",
                               number, existing_id)
                if not self.settings.force_cue_numbers:
                    raise CueNumberConflictError(number, existing_id, unique_id)
                logger.info("Force mode: clearing number '%s' from cue %s", number, existing_id)
                self.set_cue_property(existing_id, "number", "")
                del mapping.number_to_id[number]

        reply = self.set_cue_property(unique_id, "number", number)
        if number:
            mapping.number_to_id[number] = unique_id
        return reply

    def move_cue(self, unique_id: str, index: int, parent_id: str) -> OscReply:
        """Move a cue into ``parent_id`` at child position ``index``."""
        reply = self.controller.send_with_retry(addresses.move_cue(unique_id), int(index), parent_id)
        if not reply.ok and not reply.timed_out:
            raise QLabProtocolError(
                reply.address, reply.raw,
                message=f"failed to move cue {unique_id} into {parent_id} at index {index}",
            )
        logger.debug("Moved cue %s into %s at index %d", unique_id, parent_id, index)
        return reply

    def delete_cue(self, unique_id: str) -> OscReply:
        reply = self.controller.send_with_retry(addresses.delete_cue(unique_id))
        if not reply.ok and not reply.timed_out:
            raise QLabProtocolError(reply.address, reply.raw, message=f"failed to delete cue {unique_id}")
        logger.info("Deleted cue %s", unique_id)
        return reply

    def get_base_path(self) -> Optional[str]:
        reply = self.controller.send_with_retry(addresses.base_path())
        if reply.ok and isinstance(reply.data, str) and reply.data:
            return reply.data
        return None

    def resolve_file_path(self, file_path: str) -> str:
        """
        Absolute media path for ``file_path``.

        Relative paths resolve against the source file's directory, else the
        workspace basePath, else the current working directory.
        """
        if os.path.isabs(file_path):
            return file_path
        if self.source_dir:
            return os.path.join(self.source_dir, file_path)
        base = self.get_base_path()
        if base:
            return os.path.join(base, file_path)
        logger.debug("No basePath available, resolving %s against cwd", file_path)
        return os.path.join(os.getcwd(), file_path)

    # ==================== SYNC FLOW ====================

    def reconcile(self, file_path: str, source: Dict[str, Any]) -> ThreeWayComparison:
        """Three-way compare ``source`` with its last snapshot and the live workspace."""
        self.invalidate_cue_lists()
        cache = self.snapshot_store.load_most_recent(file_path)
        current = self.query_current_state()
        if current is None:
            logger.warning("Live state unavailable - proceeding with create-only reconciliation")
        else:
            self._refresh_numbers(current)
        return reconcile(source, cache, current)

    def _refresh_numbers(self, state: Dict[str, Any]):
        """Rebuild the baseline number index from a full live-state query."""
        data = state.get("data")
        if not isinstance(data, list):
            return
        lists = [c for c in data if isinstance(c, dict) and isinstance(c.get(CHILDREN_KEY), list)]
        if not lists:
            # shallow fallback carries no cues; keep the last known numbers
            return
        with self._lock:
            self._baseline.number_to_id.clear()
            count = sum(self._index_numbers(c[CHILDREN_KEY]) for c in lists)
        logger.debug("Refreshed number index: %d numbered cues", count)

    def identify_conflicts(self, comparison: ThreeWayComparison) -> List[CueConflict]:
        return identify_conflicts(comparison)

    def resolve_conflicts(self,
                          comparison: ThreeWayComparison,
                          conflicts: List[CueConflict],
                          resolver: Optional[ConflictResolver] = None):
        resolver = resolver or self.resolver
        if resolver is None:
            logger.warning("No conflict resolver configured - keeping source for %d conflicts",
                           len(conflicts))
            resolver = PolicyResolver()
        return resolve_conflicts(comparison, conflicts, resolver)

    def apply(self, comparison: ThreeWayComparison, source: Dict[str, Any]) -> CueMapping:
        """Run one mutation pass and fold its number index into the baseline."""
        writer = CueWriter(self, self.new_mapping())
        mapping = writer.apply(comparison, source)
        with self._lock:
            self._baseline.number_to_id.update(mapping.number_to_id)
            self._baseline.list_name_to_id.update(mapping.list_name_to_id)
        self.invalidate_cue_lists()
        return mapping

    def transmit(self, file_path: str, source: Dict[str, Any]) -> ThreeWayComparison:
        """
        Full sync of ``source`` (read from ``file_path``) to the workspace.

        Returns:
            The resolved ThreeWayComparison that was applied

        Raises:
            QLabError / ReconcileError: the mutation pass failed
        """
        self.source_dir = os.path.dirname(os.path.abspath(file_path))
        logger.debug("Set source file directory: %s", self.source_dir)

        comparison = self.reconcile(file_path, source)
        print_comparison_results(comparison)

        conflicts = self.identify_conflicts(comparison)
        if conflicts:
            logger.info("Resolving %d conflicts", len(conflicts))
            self.resolve_conflicts(comparison, conflicts)

        self.apply(comparison, source)

        try:
            self.save_snapshot(file_path, comparison)
        except (QLabError, OSError) as e:
            logger.warning("Failed to save snapshot: %s", e)

        return comparison

    def receive(self) -> List[Dict[str, Any]]:
        """Live cues of every list, concatenated."""
        state = self.query_current_state()
        if state is None:
            raise QLabConnectionError("failed to query current workspace state")
        cues: List[Dict[str, Any]] = []
        data = state.get("data")
        if isinstance(data, list):
            for cue_list in data:
                if isinstance(cue_list, dict) and isinstance(cue_list.get(CHILDREN_KEY), list):
                    cues.extend(cue_list[CHILDREN_KEY])
        if not cues:
            logger.warning("No cues found in QLab workspace")
        return cues

    def extract_remote_chosen_updates(self, comparison: ThreeWayComparison) -> Dict[str, Dict[str, Any]]:
        return extract_remote_chosen_updates(comparison)

    def save_snapshot(self, file_path: str, comparison: Optional[ThreeWayComparison] = None) -> Path:
        """
        Persist the post-apply live state as the next pass's cache.

        Cues the user skipped keep their previous cached values, so the
        snapshot does not silently adopt drifted remote values.
        """
        current = self.query_current_state()
        if current is None:
            raise QLabConnectionError("failed to query workspace state for snapshot")

        if comparison is not None and comparison.has_cache and comparison.cached_data:
            cached_index = index_cues(comparison.cached_data)
            for key, result in comparison.cue_results.items():
                if result.action != UpdateAction.SKIP or result.reason != REASON_USER_SKIP:
                    continue
                cached = cached_index.get(key)
                if cached is None:
                    continue
                logger.debug("Preserving cached state for skipped cue %s", key)
                if not replace_cue_with_cached(current, cached.to_dict(include_children=False), key):
                    logger.warning("Could not preserve cached state for cue %s", key)

        return self.snapshot_store.save(file_path, current)
