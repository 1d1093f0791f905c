"""
Conflict resolution.

A resolver receives the whole conflict batch once and returns one choice per
conflict key. ``apply_resolutions`` then rewrites the matching
CueChangeResults:

    use_source   -> update  "user chose source"
    keep_remote  -> skip    "user chose remote"   (key recorded as remote-chosen)
    skip         -> skip    "user chose to skip, no changes"

``PolicyResolver`` applies a fixed policy. ``CallbackResolver`` is the
interactive variant: it hands a ResolutionRequest to a UI callback and blocks
until the UI submits the matching ResolutionResponse.
"""

import logging
import queue
import uuid
from typing import Callable, Dict, List, Optional

from reconcile.schemas import (
    ConflictType,
    CueConflict,
    ResolutionChoice,
    ResolutionRequest,
    ResolutionResponse,
    ThreeWayComparison,
    UpdateAction,
)

logger = logging.getLogger("qlab.reconcile.resolver")

REASON_USER_SOURCE = "user chose source"
REASON_USER_REMOTE = "user chose remote"
REASON_USER_SKIP = "user chose to skip, no changes"


class ResolutionTimeout(Exception):
    """No resolution response arrived in time."""
    pass


class ConflictResolver:
    """Base class: map each conflict key to a ResolutionChoice."""

    def resolve(self, conflicts: List[CueConflict]) -> Dict[str, ResolutionChoice]:
        raise NotImplementedError


class PolicyResolver(ConflictResolver):
    """Fixed-policy resolver.

    Args:
        default_choice: Choice for every conflict without a more specific rule
        overrides: Per-key choices
        by_type: Per-ConflictType choices (checked after ``overrides``)
    """

    def __init__(self,
                 default_choice: ResolutionChoice = ResolutionChoice.USE_SOURCE,
                 overrides: Optional[Dict[str, ResolutionChoice]] = None,
                 by_type: Optional[Dict[ConflictType, ResolutionChoice]] = None):
        self.default_choice = ResolutionChoice(default_choice)
        self.overrides = dict(overrides or {})
        self.by_type = dict(by_type or {})

    def resolve(self, conflicts: List[CueConflict]) -> Dict[str, ResolutionChoice]:
        choices: Dict[str, ResolutionChoice] = {}
        for conflict in conflicts:
            if conflict.key in self.overrides:
                choice = self.overrides[conflict.key]
            else:
                choice = self.by_type.get(conflict.conflict_type, self.default_choice)
            choices[conflict.key] = ResolutionChoice(choice)
        return choices


class CallbackResolver(ConflictResolver):
    """Interactive resolver driven by an external UI.

    ``request_callback`` receives a ResolutionRequest (typically on the
    reconciling thread) and must arrange for ``submit()`` to be called with a
    ResolutionResponse carrying the same ``request_id``. Responses for other
    request IDs are discarded.
    """

    def __init__(self,
                 request_callback: Callable[[ResolutionRequest], None],
                 timeout: Optional[float] = None):
        self.request_callback = request_callback
        self.timeout = timeout
        self._responses: "queue.Queue[ResolutionResponse]" = queue.Queue()

    def submit(self, response: ResolutionResponse):
        self._responses.put(response)

    def resolve(self, conflicts: List[CueConflict]) -> Dict[str, ResolutionChoice]:
        request = ResolutionRequest(request_id=uuid.uuid4().hex, conflicts=conflicts)
        logger.info("Requesting resolution for %d conflicts (request %s)",
                    len(conflicts), request.request_id)
        self.request_callback(request)

        while True:
            try:
                response = self._responses.get(timeout=self.timeout)
            except queue.Empty:
                raise ResolutionTimeout(
                    f"no resolution received for request {request.request_id} "
                    f"within {self.timeout}s"
                )
            if response.request_id != request.request_id:
                logger.warning("Discarding resolution for unknown request %s", response.request_id)
                continue
            return dict(response.choices)


def choose_remote_field(comparison: ThreeWayComparison, key: str, field: str):
    """Keep the remote value of one field while the rest of the cue follows source."""
    comparison.chosen_remote_fields.setdefault(key, {})[field] = True


def apply_resolutions(comparison: ThreeWayComparison,
                      conflicts: List[CueConflict],
                      choices: Dict[str, ResolutionChoice]):
    """Rewrite cue results according to ``choices`` and mark conflicts resolved."""
    for conflict in conflicts:
        choice = choices.get(conflict.key)
        if choice is None:
            logger.warning("No resolution for conflict on %s - leaving as is", conflict.key)
            continue
        choice = ResolutionChoice(choice)
        result = comparison.cue_results.get(conflict.key)

        if result is not None:
            if choice == ResolutionChoice.USE_SOURCE:
                result.action = UpdateAction.UPDATE
                result.reason = REASON_USER_SOURCE
            elif choice == ResolutionChoice.KEEP_REMOTE:
                result.action = UpdateAction.SKIP
                result.reason = REASON_USER_REMOTE
            else:
                result.action = UpdateAction.SKIP
                result.reason = REASON_USER_SKIP
        else:
            logger.warning("Conflict %s has no cue result", conflict.key)

        if choice == ResolutionChoice.KEEP_REMOTE:
            comparison.chosen_remote_cues.add(conflict.key)

        conflict.resolved = True
        conflict.resolution = choice
        logger.info("Conflict %s resolved: %s", conflict.key, choice.value)


def resolve_conflicts(comparison: ThreeWayComparison,
                      conflicts: List[CueConflict],
                      resolver: ConflictResolver) -> Dict[str, ResolutionChoice]:
    """Run ``resolver`` over the batch and apply its decisions."""
    if not conflicts:
        return {}
    choices = resolver.resolve(conflicts)
    apply_resolutions(comparison, conflicts, choices)
    return choices
