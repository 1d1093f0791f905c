"""
Remote State Indexer

Flattens a nested cue tree into ``{identity_key: Cue}``. Three input shapes
are accepted:

    {"cues": [...]}                                  source file
    {"workspace": {"cues": [...]}}                   parsed source workspace
    {"data": [{"cues": [...]}, ...]}                 /cueLists reply
    {"data": {"cueLists": [...], "cues": [...]}}     /cueLists reply, wrapped

Cue-list contents are concatenated and walked as one sequence, so positional
keys count across lists. Later duplicates overwrite earlier entries.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

from reconcile.cue import Cue, CHILDREN_KEY, cue_full_number, identity_key

logger = logging.getLogger("qlab.reconcile.indexer")


def extract_cue_sequence(tree: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Top-level cue dicts of ``tree`` in walk order."""
    if not isinstance(tree, dict):
        return []

    cues = tree.get(CHILDREN_KEY)
    if isinstance(cues, list):
        return [c for c in cues if isinstance(c, dict)]

    workspace = tree.get("workspace")
    if isinstance(workspace, dict):
        nested = workspace.get(CHILDREN_KEY)
        return [c for c in nested if isinstance(c, dict)] if isinstance(nested, list) else []

    data = tree.get("data")
    sequence: List[Dict[str, Any]] = []
    if isinstance(data, dict):
        for cue_list in data.get("cueLists") or []:
            if isinstance(cue_list, dict) and isinstance(cue_list.get(CHILDREN_KEY), list):
                sequence.extend(c for c in cue_list[CHILDREN_KEY] if isinstance(c, dict))
        direct = data.get(CHILDREN_KEY)
        if isinstance(direct, list):
            sequence.extend(c for c in direct if isinstance(c, dict))
    elif isinstance(data, list):
        for cue_list in data:
            if not isinstance(cue_list, dict):
                continue
            list_cues = cue_list.get(CHILDREN_KEY)
            if isinstance(list_cues, list):
                sequence.extend(c for c in list_cues if isinstance(c, dict))
            else:
                logger.debug("Cue list %r has no cues", cue_list.get("name"))
    return sequence


def walk(cues: List[Cue], parent_number: str = "") -> Iterator[Tuple[str, Cue, str]]:
    """Yield ``(key, cue, parent_number)`` depth-first, parents before children."""
    for index, cue in enumerate(cues):
        number = cue_full_number(cue, parent_number)
        key = identity_key(cue, parent_number, index)
        yield key, cue, parent_number
        if cue.children:
            # Unnumbered parents hand "" down, not their positional key
            yield from walk(cue.children, number)


def iter_indexed(tree: Optional[Dict[str, Any]]) -> Iterator[Tuple[str, Cue, str]]:
    cues = [Cue.from_dict(raw) for raw in extract_cue_sequence(tree)]
    return walk(cues)


def index_cues(tree: Optional[Dict[str, Any]]) -> Dict[str, Cue]:
    """Flat identity-key index of every cue in ``tree`` (empty for None)."""
    index: Dict[str, Cue] = {}
    for key, cue, _parent in iter_indexed(tree):
        index[key] = cue
    logger.debug("Indexed %d cues", len(index))
    return index
