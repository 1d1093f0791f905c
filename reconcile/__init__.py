"""
Cue Reconciliation Package

Pure three-way reconciliation of a source cue tree against the last
transmitted snapshot and the live QLab workspace. Nothing in this package
touches the network.
"""

from .cue import Cue, normalize_number, full_number, position_key, identity_key
from .indexer import index_cues, iter_indexed
from .comparator import compare_detailed, compare_boolean, normalize_property
from .engine import (
    reconcile,
    cache_matches_current,
    perform_scope_based_comparison,
    generate_merged_scope,
    extract_merged_workspace_data,
    merge_comparison,
    extract_remote_chosen_updates,
    replace_cue_with_cached,
    print_comparison_results,
    summarize,
)
from .conflicts import identify_conflicts, is_field_conflict, classify_field
from .resolver import (
    ConflictResolver,
    PolicyResolver,
    CallbackResolver,
    ResolutionTimeout,
    apply_resolutions,
    resolve_conflicts,
    choose_remote_field,
)
from .schemas import (
    UpdateAction,
    ConflictType,
    ConflictScope,
    ResolutionChoice,
    FieldConflict,
    ScopeComparison,
    MergedScope,
    CueChangeResult,
    ThreeWayComparison,
    CueConflict,
    ResolutionRequest,
    ResolutionResponse,
    CueMapping,
    PendingTarget,
)

__all__ = [
    'Cue',
    'normalize_number',
    'full_number',
    'position_key',
    'identity_key',
    'index_cues',
    'iter_indexed',
    'compare_detailed',
    'compare_boolean',
    'normalize_property',
    'reconcile',
    'cache_matches_current',
    'perform_scope_based_comparison',
    'generate_merged_scope',
    'extract_merged_workspace_data',
    'merge_comparison',
    'extract_remote_chosen_updates',
    'replace_cue_with_cached',
    'print_comparison_results',
    'summarize',
    'identify_conflicts',
    'is_field_conflict',
    'classify_field',
    'ConflictResolver',
    'PolicyResolver',
    'CallbackResolver',
    'ResolutionTimeout',
    'apply_resolutions',
    'resolve_conflicts',
    'choose_remote_field',
    'UpdateAction',
    'ConflictType',
    'ConflictScope',
    'ResolutionChoice',
    'FieldConflict',
    'ScopeComparison',
    'MergedScope',
    'CueChangeResult',
    'ThreeWayComparison',
    'CueConflict',
    'ResolutionRequest',
    'ResolutionResponse',
    'CueMapping',
    'PendingTarget',
]
