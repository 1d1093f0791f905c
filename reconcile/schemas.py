"""
Pydantic schemas for one reconciliation pass.

Comparison models (built by the engine, mutated only by conflict resolution):
    - CueChangeResult: verdict for one identity key
    - ThreeWayComparison: all verdicts plus the data they were computed from
    - FieldConflict: one property's source / cache / remote values
    - ScopeComparison: hierarchical change/conflict tree
    - MergedScope: resolved tree produced after conflict resolution

Conflict models:
    - CueConflict: user-facing conflict record
    - ResolutionRequest / ResolutionResponse: one resolver round trip

Mutation models:
    - CueMapping: per-pass number -> uniqueID state for the cue writer
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field


class UpdateAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


class ConflictType(str, Enum):
    """Conflict category, from pairwise comparison against the cache."""
    THREE_WAY_DIVERGENCE = "three_way_divergence"
    CACHE_STALE = "cache_stale"
    SOURCE_MODIFIED = "source_modified"


class ConflictScope(str, Enum):
    WORKSPACE = "workspace"
    CUELIST = "cuelist"
    CUE = "cue"
    FIELD = "field"


class ResolutionChoice(str, Enum):
    USE_SOURCE = "use_source"
    KEEP_REMOTE = "keep_remote"
    SKIP = "skip"


class ChangeType(str, Enum):
    NONE = "none"
    CREATE = "create"
    UPDATE = "update"


# ============================================================================
# COMPARISON MODELS
# ============================================================================

class FieldConflict(BaseModel):
    """One property as seen by source, cache and remote."""
    field: str
    source_value: Any = None
    cache_value: Any = None
    remote_value: Any = None
    chosen_value: Any = None
    chosen_source: Optional[str] = Field(
        default=None,
        description="'source' or 'remote' once merged"
    )


class ScopeComparison(BaseModel):
    """Change/conflict flags for one node of the workspace tree."""
    scope: ConflictScope
    identifier: str
    change_type: ChangeType = ChangeType.NONE
    has_changes: bool = False
    conflict_exists: bool = False
    field_changes: Dict[str, FieldConflict] = Field(default_factory=dict)
    child_scopes: List["ScopeComparison"] = Field(default_factory=list)
    source_data: Optional[Dict[str, Any]] = None
    cache_data: Optional[Dict[str, Any]] = None
    remote_data: Optional[Dict[str, Any]] = None


class MergedScope(BaseModel):
    """Resolved data for one node, with the side each field came from."""
    scope: ConflictScope
    identifier: str
    merged_data: Dict[str, Any] = Field(default_factory=dict)
    source_fields: Dict[str, str] = Field(default_factory=dict)
    child_scopes: List["MergedScope"] = Field(default_factory=list)
    applied_at: Optional[datetime] = None


class CueChangeResult(BaseModel):
    """Verdict for one identity key after three-way comparison."""
    key: str
    has_changed: bool
    action: UpdateAction
    reason: str
    existing_id: str = ""
    cue_id: str = ""
    changes: Dict[str, str] = Field(default_factory=dict)
    field_conflicts: Dict[str, FieldConflict] = Field(default_factory=dict)
    scope_data: Optional[ScopeComparison] = None


class ThreeWayComparison(BaseModel):
    """Aggregate result for a whole source tree."""
    cue_results: Dict[str, CueChangeResult] = Field(default_factory=dict)
    has_cache: bool = False
    has_remote_data: bool = False
    cache_matches_remote: bool = False
    chosen_remote_cues: Set[str] = Field(default_factory=set)
    chosen_remote_fields: Dict[str, Dict[str, bool]] = Field(default_factory=dict)
    cached_data: Optional[Dict[str, Any]] = None
    current_remote_data: Optional[Dict[str, Any]] = None
    scope_comparison: Optional[ScopeComparison] = None
    merged_scope: Optional[MergedScope] = None

    def count_actions(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in UpdateAction}
        for result in self.cue_results.values():
            counts[result.action.value] += 1
        return counts

    def results_with_action(self, action: UpdateAction) -> List[CueChangeResult]:
        return [r for r in self.cue_results.values() if r.action == action]


# ============================================================================
# CONFLICT MODELS
# ============================================================================

class CueConflict(BaseModel):
    """A divergence that needs a resolution decision."""
    key: str
    scope: ConflictScope = ConflictScope.CUE
    conflict_type: ConflictType
    fields: List[str] = Field(default_factory=list)
    description: str
    field_conflicts: Dict[str, FieldConflict] = Field(default_factory=dict)
    resolved: bool = False
    resolution: Optional[ResolutionChoice] = None


class ResolutionRequest(BaseModel):
    request_id: str
    conflicts: List[CueConflict]


class ResolutionResponse(BaseModel):
    request_id: str
    choices: Dict[str, ResolutionChoice] = Field(default_factory=dict)


# ============================================================================
# MUTATION MODELS
# ============================================================================

class PendingTarget(BaseModel):
    """A start/stop cue whose target is known only by number."""
    cue_id: str
    target_number: str


class CueMapping(BaseModel):
    """Per-pass mutation state, never shared across passes."""
    number_to_id: Dict[str, str] = Field(default_factory=dict)
    list_name_to_id: Dict[str, str] = Field(default_factory=dict)
    existing_list_ids: Set[str] = Field(default_factory=set)
    pending_targets: List[PendingTarget] = Field(default_factory=list)

    def copy_for_pass(self) -> "CueMapping":
        return CueMapping(
            number_to_id=dict(self.number_to_id),
            list_name_to_id=dict(self.list_name_to_id),
            existing_list_ids=set(self.existing_list_ids),
        )
