"""
Three-way cue reconciliation.

Compares a source tree (desired state) against the last transmitted snapshot
(cache) and the live workspace (current), one identity key at a time:

    key not in current                 -> create  "new cue"
    in cache and current:
        nothing changed                -> skip    "unchanged since last transmission"
        only remote moved off cache    -> update  "remote modified externally, reverting to source"
        only source moved off cache    -> update  "source file modified"
        both moved                     -> update  "both source and remote modified"
    in current but not cache:
        source matches current         -> skip    "matches current remote state"
        otherwise                      -> update  "differs from current remote state"

A failed live query is passed as ``current=None`` and indexes to an empty
map, so every source key reconciles as ``create``.

The scope-based variant builds a parallel tree (workspace -> cue list -> cue)
with per-field source/cache/remote values. Conflict identification and the
merge step after resolution both work from that tree.
"""

import copy
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from reconcile.comparator import COMPARED_FIELDS, compare_detailed, compare_field
from reconcile.cue import Cue, CHILDREN_KEY, identity_key, cue_full_number, raw_identity
from reconcile.indexer import extract_cue_sequence, index_cues, iter_indexed
from reconcile.schemas import (
    ChangeType,
    ConflictScope,
    CueChangeResult,
    FieldConflict,
    MergedScope,
    ScopeComparison,
    ThreeWayComparison,
    UpdateAction,
)

logger = logging.getLogger("qlab.reconcile.engine")

REASON_NEW = "new cue"
REASON_UNCHANGED = "unchanged since last transmission"
REASON_REMOTE_MODIFIED = "remote modified externally, reverting to source"
REASON_SOURCE_MODIFIED = "source file modified"
REASON_BOTH_MODIFIED = "both source and remote modified"
REASON_MATCHES_REMOTE = "matches current remote state"
REASON_DIFFERS_REMOTE = "differs from current remote state"

# Fields pulled back into the source file when the remote side wins
REMOTE_EXTRACT_FIELDS = ("name", "fileTarget", "notes", "colorName")


# ============================================================================
# THREE-WAY COMPARISON
# ============================================================================

def reconcile(source: Dict[str, Any],
              cache: Optional[Dict[str, Any]] = None,
              current: Optional[Dict[str, Any]] = None) -> ThreeWayComparison:
    """Compute one CueChangeResult per identity key in ``source``."""
    comparison = ThreeWayComparison(
        has_cache=cache is not None,
        has_remote_data=current is not None,
        cached_data=cache,
        current_remote_data=current,
    )

    source_index = index_cues(source)
    cache_index = index_cues(cache)
    current_index = index_cues(current)
    logger.info("Reconciling %d source cues (cache: %d, remote: %d)",
                len(source_index), len(cache_index), len(current_index))

    if comparison.has_cache and comparison.has_remote_data:
        comparison.cache_matches_remote = cache_matches_current(cache_index, current_index)
        if comparison.cache_matches_remote:
            logger.info("Cache matches current remote state")
        else:
            logger.warning("Cache differs from current remote state")
        comparison.scope_comparison = perform_scope_based_comparison(source, cache, current)
    elif comparison.has_cache:
        logger.warning("Remote state unavailable - every cue will be created")

    for key, source_cue in source_index.items():
        comparison.cue_results[key] = classify_cue(
            key, source_cue, cache_index.get(key), current_index.get(key)
        )

    link_scope_data(comparison)
    return comparison


def classify_cue(key: str,
                 source_cue: Cue,
                 cached_cue: Optional[Cue],
                 current_cue: Optional[Cue]) -> CueChangeResult:
    if current_cue is None:
        return CueChangeResult(
            key=key, has_changed=True, action=UpdateAction.CREATE, reason=REASON_NEW
        )

    existing_id = current_cue.get_str("uniqueID")

    if cached_cue is None:
        diff = compare_detailed(source_cue, current_cue)
        if not diff:
            return CueChangeResult(
                key=key, has_changed=False, action=UpdateAction.SKIP,
                reason=REASON_MATCHES_REMOTE, existing_id=existing_id, cue_id=existing_id,
            )
        return CueChangeResult(
            key=key, has_changed=True, action=UpdateAction.UPDATE,
            reason=REASON_DIFFERS_REMOTE, existing_id=existing_id, cue_id=existing_id,
            changes=diff,
        )

    source_vs_cache = compare_detailed(source_cue, cached_cue)
    cache_vs_current = compare_detailed(cached_cue, current_cue)

    if not source_vs_cache and not cache_vs_current:
        return CueChangeResult(
            key=key, has_changed=False, action=UpdateAction.SKIP,
            reason=REASON_UNCHANGED, existing_id=existing_id, cue_id=existing_id,
        )
    if not source_vs_cache:
        reason, changes = REASON_REMOTE_MODIFIED, cache_vs_current
    elif not cache_vs_current:
        reason, changes = REASON_SOURCE_MODIFIED, source_vs_cache
    else:
        reason = REASON_BOTH_MODIFIED
        changes = {f"source_vs_cache_{k}": v for k, v in source_vs_cache.items()}
        changes.update({f"cache_vs_current_{k}": v for k, v in cache_vs_current.items()})

    return CueChangeResult(
        key=key, has_changed=True, action=UpdateAction.UPDATE, reason=reason,
        existing_id=existing_id, cue_id=existing_id, changes=changes,
    )


def cache_matches_current(cache_index: Dict[str, Cue], current_index: Dict[str, Cue]) -> bool:
    """True when the remote workspace still looks exactly like the snapshot."""
    if len(cache_index) != len(current_index):
        logger.debug("Cue count differs: cache %d, remote %d", len(cache_index), len(current_index))
        return False
    for key, cached in cache_index.items():
        current = current_index.get(key)
        if current is None:
            logger.debug("Cue %s in cache but not in remote", key)
            return False
        diff = compare_detailed(cached, current)
        if diff:
            logger.debug("Cue %s differs from cache: %s", key, diff)
            return False
    return True


# ============================================================================
# SCOPE-BASED COMPARISON
# ============================================================================

def perform_scope_based_comparison(source: Dict[str, Any],
                                   cache: Optional[Dict[str, Any]],
                                   current: Optional[Dict[str, Any]]) -> ScopeComparison:
    """Build the workspace -> cue list -> cue scope tree for ``source``."""
    cache_index = index_cues(cache)
    current_index = index_cues(current)

    workspace = ScopeComparison(scope=ConflictScope.WORKSPACE, identifier="workspace")
    top_level = [Cue.from_dict(raw) for raw in extract_cue_sequence(source)]
    for index, cue in enumerate(top_level):
        scope_type = ConflictScope.CUELIST if cue.is_list else ConflictScope.CUE
        child = _compare_cue_scope(cue, "", index, scope_type, cache_index, current_index)
        workspace.child_scopes.append(child)

    _aggregate(workspace)
    logger.debug("Scope comparison: changes=%s conflicts=%s",
                 workspace.has_changes, workspace.conflict_exists)
    return workspace


def _compare_cue_scope(cue: Cue,
                       parent_number: str,
                       index: int,
                       scope_type: ConflictScope,
                       cache_index: Dict[str, Cue],
                       current_index: Dict[str, Cue]) -> ScopeComparison:
    key = identity_key(cue, parent_number, index)
    cached = cache_index.get(key)
    remote = current_index.get(key)

    scope = ScopeComparison(
        scope=scope_type,
        identifier=key,
        source_data=cue.to_dict(include_children=False),
        cache_data=cached.to_dict(include_children=False) if cached else None,
        remote_data=remote.to_dict(include_children=False) if remote else None,
    )

    if remote is None:
        scope.change_type = ChangeType.CREATE
        scope.has_changes = True
    else:
        for field in COMPARED_FIELDS:
            source_vs_remote = compare_field(field, cue, remote)
            source_vs_cache = compare_field(field, cue, cached) if cached else None
            cache_vs_remote = compare_field(field, cached, remote) if cached else None
            if source_vs_remote is None and source_vs_cache is None and cache_vs_remote is None:
                continue
            scope.field_changes[field] = FieldConflict(
                field=field,
                source_value=cue.get(field),
                cache_value=cached.get(field) if cached else None,
                remote_value=remote.get(field),
            )
            if cache_vs_remote is not None:
                scope.conflict_exists = True
        if scope.field_changes:
            scope.change_type = ChangeType.UPDATE
            scope.has_changes = True

    number = cue_full_number(cue, parent_number)
    for child_index, child in enumerate(cue.children or []):
        scope.child_scopes.append(
            _compare_cue_scope(child, number, child_index, ConflictScope.CUE, cache_index, current_index)
        )
    return scope


def _aggregate(scope: ScopeComparison):
    for child in scope.child_scopes:
        _aggregate(child)
        scope.has_changes = scope.has_changes or child.has_changes
        scope.conflict_exists = scope.conflict_exists or child.conflict_exists


def iter_scopes(scope: Optional[ScopeComparison]):
    """Depth-first walk over ``scope`` and all of its descendants."""
    if scope is None:
        return
    yield scope
    for child in scope.child_scopes:
        yield from iter_scopes(child)


def link_scope_data(comparison: ThreeWayComparison):
    """Attach each cue scope (and its field conflicts) to its CueChangeResult."""
    for scope in iter_scopes(comparison.scope_comparison):
        if scope.scope not in (ConflictScope.CUE, ConflictScope.CUELIST):
            continue
        result = comparison.cue_results.get(scope.identifier)
        if result is not None:
            result.scope_data = scope
            result.field_conflicts = scope.field_changes


# ============================================================================
# MERGE
# ============================================================================

def _remote_chosen(comparison: ThreeWayComparison, key: str, field: str) -> bool:
    if key in comparison.chosen_remote_cues:
        return True
    return comparison.chosen_remote_fields.get(key, {}).get(field, False)


def generate_merged_scope(scope: ScopeComparison, comparison: ThreeWayComparison) -> MergedScope:
    """Resolve every field change of ``scope`` using the recorded choices."""
    merged = MergedScope(
        scope=scope.scope,
        identifier=scope.identifier,
        merged_data=copy.deepcopy(scope.source_data) if scope.source_data else {},
        applied_at=datetime.now(),
    )
    for field in merged.merged_data:
        merged.source_fields[field] = "source"

    for field, change in scope.field_changes.items():
        if _remote_chosen(comparison, scope.identifier, field):
            change.chosen_value = change.remote_value
            change.chosen_source = "remote"
        else:
            change.chosen_value = change.source_value
            change.chosen_source = "source"
        if change.chosen_value is None:
            merged.merged_data.pop(field, None)
        else:
            merged.merged_data[field] = change.chosen_value
        merged.source_fields[field] = change.chosen_source

    for child in scope.child_scopes:
        merged.child_scopes.append(generate_merged_scope(child, comparison))
    return merged


def extract_merged_workspace_data(merged: MergedScope) -> Dict[str, Any]:
    """Rebuild a ``{"cues": [...]}`` tree from a merged workspace scope."""
    return {CHILDREN_KEY: [_merged_cue_data(child) for child in merged.child_scopes]}


def _merged_cue_data(merged: MergedScope) -> Dict[str, Any]:
    data = dict(merged.merged_data)
    if merged.child_scopes:
        data[CHILDREN_KEY] = [_merged_cue_data(child) for child in merged.child_scopes]
    return data


def merge_comparison(comparison: ThreeWayComparison,
                     source: Dict[str, Any]) -> Dict[str, Any]:
    """Merged source tree, or ``source`` unchanged without a scope tree."""
    if comparison.scope_comparison is None:
        return source
    comparison.merged_scope = generate_merged_scope(comparison.scope_comparison, comparison)
    return extract_merged_workspace_data(comparison.merged_scope)


# ============================================================================
# REMOTE-CHOSEN EXTRACTION
# ============================================================================

def extract_remote_chosen_updates(comparison: ThreeWayComparison) -> Dict[str, Dict[str, Any]]:
    """Remote-authored values for every key resolved in favour of the remote.

    The caller writes these back into the source file.
    """
    updates: Dict[str, Dict[str, Any]] = {}
    wanted = set(comparison.chosen_remote_cues) | set(comparison.chosen_remote_fields)
    if not wanted or comparison.current_remote_data is None:
        return updates

    for key, cue, _parent in iter_indexed(comparison.current_remote_data):
        if key not in wanted:
            continue
        if key in comparison.chosen_remote_cues:
            fields = REMOTE_EXTRACT_FIELDS
        else:
            fields = tuple(f for f, chosen in comparison.chosen_remote_fields[key].items() if chosen)
        values = {f: cue.get(f) for f in fields if cue.has(f)}
        if values:
            updates[key] = values
    logger.info("Extracted remote values for %d cues", len(updates))
    return updates


# ============================================================================
# SNAPSHOT HELPERS
# ============================================================================

def _top_level_slots(tree: Dict[str, Any]) -> List[Tuple[List[Any], int]]:
    """(container, index) for each top-level cue, in indexer walk order."""
    slots: List[Tuple[List[Any], int]] = []

    def add(container):
        if isinstance(container, list):
            slots.extend((container, i) for i, c in enumerate(container) if isinstance(c, dict))

    if isinstance(tree.get(CHILDREN_KEY), list):
        add(tree[CHILDREN_KEY])
    elif isinstance(tree.get("workspace"), dict):
        add(tree["workspace"].get(CHILDREN_KEY))
    elif isinstance(tree.get("data"), dict):
        for cue_list in tree["data"].get("cueLists") or []:
            if isinstance(cue_list, dict):
                add(cue_list.get(CHILDREN_KEY))
        add(tree["data"].get(CHILDREN_KEY))
    elif isinstance(tree.get("data"), list):
        for cue_list in tree["data"]:
            if isinstance(cue_list, dict):
                add(cue_list.get(CHILDREN_KEY))
    return slots


def replace_cue_with_cached(tree: Dict[str, Any], cached_cue: Dict[str, Any], key: str) -> bool:
    """Swap the cue at identity ``key`` in ``tree`` for ``cached_cue``.

    Keeps the live cue's children. Returns False when ``key`` is not found.
    """
    slots = _top_level_slots(tree)
    for position, (container, index) in enumerate(slots):
        if _find_and_replace(container, index, position, "", cached_cue, key):
            return True
    return False


def _find_and_replace(container: List[Any], index: int, position: int, parent_number: str,
                      cached_cue: Dict[str, Any], key: str) -> bool:
    raw = container[index]
    raw_key, number = raw_identity(raw, parent_number, position)
    if raw_key == key:
        replacement = {k: v for k, v in cached_cue.items() if k != CHILDREN_KEY}
        if CHILDREN_KEY in raw:
            replacement[CHILDREN_KEY] = raw[CHILDREN_KEY]
        container[index] = replacement
        return True
    children = raw.get(CHILDREN_KEY)
    if isinstance(children, list):
        for child_index, child in enumerate(children):
            if isinstance(child, dict) and _find_and_replace(
                    children, child_index, child_index, number, cached_cue, key):
                return True
    return False


# ============================================================================
# REPORTING
# ============================================================================

def format_comparison_results(comparison: ThreeWayComparison) -> List[str]:
    counts = comparison.count_actions()
    lines = [
        "=== Three-Way Comparison Results ===",
        f"Has Cache: {comparison.has_cache}",
        f"Has Remote Data: {comparison.has_remote_data}",
        f"Cache Matches Remote: {comparison.cache_matches_remote}",
        f"Action Summary: {counts['create']} create, {counts['update']} update, {counts['skip']} skip",
    ]
    if not comparison.cue_results:
        lines.append("No cues found in source")
        return lines

    lines.append("--- Cue-by-Cue Results ---")
    for key, result in comparison.cue_results.items():
        status = "CHANGED" if result.has_changed else "UNCHANGED"
        info = f"Cue [{key}]"
        if result.existing_id:
            info += f" (existing ID: {result.existing_id})"
        lines.append(f"{info}: {status} - Action: {result.action.value} - Reason: {result.reason}")
        for field, diff in result.changes.items():
            lines.append(f"    {field}: {diff}")
    return lines


def print_comparison_results(comparison: ThreeWayComparison) -> Dict[str, int]:
    """Log the comparison summary and return the action counts."""
    for line in format_comparison_results(comparison):
        logger.info(line)
    return comparison.count_actions()


def summarize(comparison: ThreeWayComparison) -> Dict[str, Any]:
    """Action counts plus the comparison flags, for callers and reports."""
    summary: Dict[str, Any] = dict(comparison.count_actions())
    summary.update({
        "has_cache": comparison.has_cache,
        "has_remote_data": comparison.has_remote_data,
        "cache_matches_remote": comparison.cache_matches_remote,
        "total": len(comparison.cue_results),
    })
    return summary
