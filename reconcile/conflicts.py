"""
Conflict identification.

A conflict needs three observations: no live data, no cache, or a cache that
still matches the live workspace all mean "nothing changed remotely", so any
difference is an ordinary update and no conflicts are reported.

Otherwise conflicts come from the scope tree when one was built, else from
the flat per-cue results. Each is classified from its fields:

    source != cache and remote != cache   three_way_divergence
    remote != cache only                  cache_stale
    source != cache only                  source_modified
"""

import logging
from typing import Dict, List

from reconcile.comparator import fields_equivalent, normalize_property, strip_diff_prefix
from reconcile.engine import REASON_BOTH_MODIFIED
from reconcile.schemas import (
    ConflictScope,
    ConflictType,
    CueConflict,
    FieldConflict,
    ScopeComparison,
    ThreeWayComparison,
    UpdateAction,
)

logger = logging.getLogger("qlab.reconcile.conflicts")


def _differs(field: str, left, right) -> bool:
    return not fields_equivalent(field, normalize_property(left), normalize_property(right))


def source_changed(fc: FieldConflict) -> bool:
    return _differs(fc.field, fc.source_value, fc.cache_value)


def remote_changed(fc: FieldConflict) -> bool:
    return _differs(fc.field, fc.remote_value, fc.cache_value)


def is_field_conflict(fc: FieldConflict) -> bool:
    """True when the field moved away from the cache on either side."""
    return source_changed(fc) or remote_changed(fc)


def classify_field(fc: FieldConflict):
    """ConflictType of a single field, None when it matches the cache on both sides."""
    return classify_fields({fc.field: fc})


def classify_fields(field_conflicts: Dict[str, FieldConflict]):
    has_source = any(source_changed(fc) for fc in field_conflicts.values())
    has_remote = any(remote_changed(fc) for fc in field_conflicts.values())
    if has_source and has_remote:
        return ConflictType.THREE_WAY_DIVERGENCE
    if has_remote:
        return ConflictType.CACHE_STALE
    if has_source:
        return ConflictType.SOURCE_MODIFIED
    return None


def _describe(conflict_type: ConflictType, scope: str, key: str, fields: List[str]) -> str:
    field_list = "[" + " ".join(fields) + "]"
    if conflict_type == ConflictType.THREE_WAY_DIVERGENCE:
        return f"{scope} '{key}' has conflicting changes in source and remote (fields: {field_list})"
    if conflict_type == ConflictType.CACHE_STALE:
        return f"{scope} '{key}' modified in remote (fields: {field_list})"
    return f"{scope} '{key}' modified in source (fields: {field_list})"


def identify_conflicts(comparison: ThreeWayComparison) -> List[CueConflict]:
    """Conflicts that need a resolution decision, in tree order."""
    if not comparison.has_remote_data:
        logger.debug("No remote data - no conflicts to identify")
        return []
    if not comparison.has_cache:
        logger.debug("No cache - differences are plain updates")
        return []
    if comparison.cache_matches_remote:
        logger.debug("Cache matches remote - no conflicts")
        return []

    if comparison.scope_comparison is not None:
        conflicts = identify_conflicts_from_scope(comparison.scope_comparison)
    else:
        conflicts = _identify_from_results(comparison)
    logger.info("Identified %d conflicts", len(conflicts))
    return conflicts


def identify_conflicts_from_scope(scope: ScopeComparison) -> List[CueConflict]:
    conflicts: List[CueConflict] = []
    if scope is None:
        return conflicts

    # conflict_exists is aggregated upward; only scopes whose own fields
    # moved remotely produce a record
    own_remote_change = any(remote_changed(fc) for fc in scope.field_changes.values())
    if scope.conflict_exists and own_remote_change:
        field_conflicts = {
            name: fc for name, fc in scope.field_changes.items() if is_field_conflict(fc)
        }
        conflict_type = classify_fields(field_conflicts)
        if field_conflicts and conflict_type is not None:
            fields = list(field_conflicts)
            conflicts.append(CueConflict(
                key=scope.identifier,
                scope=scope.scope,
                conflict_type=conflict_type,
                fields=fields,
                field_conflicts=field_conflicts,
                description=_describe(conflict_type, scope.scope.value, scope.identifier, fields),
            ))
            logger.debug("Identified %s-level conflict: %s (%d fields)",
                         scope.scope.value, scope.identifier, len(fields))

    for child in scope.child_scopes:
        conflicts.extend(identify_conflicts_from_scope(child))
    return conflicts


def _identify_from_results(comparison: ThreeWayComparison) -> List[CueConflict]:
    conflicts: List[CueConflict] = []
    for key, result in comparison.cue_results.items():
        if result.action != UpdateAction.UPDATE:
            continue
        if REASON_BOTH_MODIFIED in result.reason:
            conflict_type = ConflictType.THREE_WAY_DIVERGENCE
        elif "modified externally" in result.reason:
            conflict_type = ConflictType.CACHE_STALE
        else:
            continue
        fields = sorted({strip_diff_prefix(name) for name in result.changes})
        conflicts.append(CueConflict(
            key=key,
            scope=ConflictScope.CUE,
            conflict_type=conflict_type,
            fields=fields,
            field_conflicts=dict(result.field_conflicts),
            description=f"cue '{key}': {result.reason} (fields: [{' '.join(fields)}])",
        ))
    return conflicts

