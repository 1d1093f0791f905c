"""
Cue Writer

Executes a reconciled comparison against the workspace, one cue at a time:

    create  -> /new, then each defined property in turn; any failure aborts
               the pass (no rollback of the partly built cue)
    update  -> set only the fields named in the change result, in place
    skip    -> reuse the known uniqueID

Children are processed depth-first after their parent. Only newly created
cues are moved into their parent at their child index; updated and skipped
cues keep the position they have in QLab. Existing cue lists are reused by
name and never receive moves.

Targets named by number (start/stop/fade cues) are set in a second pass,
once every cue of the tree exists.
"""

import logging
from typing import Any, Dict, List, Optional

from reconcile.comparator import COMPARED_FIELDS, normalize_property, strip_diff_prefix
from reconcile.cue import CHILDREN_KEY, Cue, format_float, raw_identity
from reconcile.engine import merge_comparison
from reconcile.indexer import extract_cue_sequence
from reconcile.schemas import (
    CueChangeResult,
    CueMapping,
    PendingTarget,
    ThreeWayComparison,
    UpdateAction,
)

from .errors import CueNumberConflictError, QLabProtocolError, ReconcileError

logger = logging.getLogger("qlab.cue_writer")

# Fields an in-place update can write; armed/flagged are operational state
UPDATABLE_FIELDS = ("name", "fileTarget", "notes", "duration", "colorName", "cueTargetNumber")


def _string(value: Any) -> str:
    return normalize_property(value)


def _floats(value: Any, count: int) -> Optional[List[float]]:
    if not isinstance(value, (list, tuple)) or len(value) != count:
        return None
    try:
        return [float(v) for v in value]
    except (TypeError, ValueError):
        return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class CueWriter:
    """One mutation pass over a source tree"""

    def __init__(self, workspace, mapping: Optional[CueMapping] = None):
        """
        Args:
            workspace: QLabWorkspace providing the cue primitives
            mapping: Per-pass state, usually ``workspace.new_mapping()``
        """
        self.workspace = workspace
        self.mapping = mapping if mapping is not None else CueMapping()
        self.comparison: Optional[ThreeWayComparison] = None

    # ==================== PASS ====================

    def apply(self, comparison: ThreeWayComparison, source: Dict[str, Any]) -> CueMapping:
        """
        Apply ``comparison`` using the merged source tree.

        Returns:
            The pass's CueMapping (number -> uniqueID for every cue touched)

        Raises:
            ReconcileError: structural problem (empty tree, update without ID)
            QLabError: QLab rejected a mutation
        """
        self.comparison = comparison
        tree = merge_comparison(comparison, source)
        cues = extract_cue_sequence(tree)
        if not cues:
            raise ReconcileError("no cues found in source data")

        counts = comparison.count_actions()
        logger.info("Applying changes: %d create, %d update, %d skip",
                    counts["create"], counts["update"], counts["skip"])
        for index, cue_data in enumerate(cues):
            self.process_cue(cue_data, "", "", index)

        self.set_cue_targets()
        logger.info("Apply complete (%d numbered cues mapped)", len(self.mapping.number_to_id))
        return self.mapping

    def _result(self, key: str) -> Optional[CueChangeResult]:
        if self.comparison is None:
            return None
        return self.comparison.cue_results.get(key)

    def process_cue(self,
                    cue_data: Dict[str, Any],
                    parent_number: str,
                    parent_unique_id: str,
                    index: int) -> str:
        """
        Create, update or skip one cue, then its children.

        Returns:
            The cue's uniqueID
        """
        cue = Cue.from_dict(cue_data)
        key, number = raw_identity(cue_data, parent_number, index)
        name, cue_type = cue.get_str("name"), cue.get_str("type")
        result = self._result(key)

        created = False
        existing_list_id = None
        if cue.is_list and name:
            existing_list_id = self.mapping.list_name_to_id.get(name)

        if result is not None and result.action == UpdateAction.SKIP:
            logger.info("Skipping unchanged cue: [%s] %s (%s) - %s", key, name, cue_type, result.reason)
            unique_id = result.existing_id
            if number and unique_id:
                self.mapping.number_to_id[number] = unique_id
            # Group matching ignores children, so they get their own create/update/skip pass
            if unique_id:
                self._process_children(cue_data, number, unique_id)
            return unique_id

        if existing_list_id:
            logger.info("Using existing cue list: %s - ID %s", name, existing_list_id)
            unique_id = existing_list_id
        elif result is not None and result.action == UpdateAction.UPDATE:
            unique_id = result.existing_id
            if not unique_id:
                raise ReconcileError(f"cannot update cue {key}: no existing ID provided")
            logger.info("Updating changed cue: [%s] %s (%s) - %s", key, name, cue_type, result.reason)
            self.update_cue_properties(unique_id, cue_data, self._fields_to_update(key, result))
        else:
            reason = result.reason if result is not None else "no change data"
            logger.info("Creating cue: [%s] %s (%s) - %s", key, name, cue_type, reason)
            unique_id = self.create_cue_with_properties(cue_data, number)
            created = True
            if cue.is_list and name:
                self.mapping.list_name_to_id[name] = unique_id
            target = _string(cue_data.get("cueTargetNumber"))
            if target:
                self.mapping.pending_targets.append(PendingTarget(cue_id=unique_id, target_number=target))

        if number and unique_id:
            self.mapping.number_to_id[number] = unique_id

        self._process_children(cue_data, number, unique_id)

        if created and parent_unique_id:
            if parent_unique_id in self.mapping.existing_list_ids:
                logger.debug("Not moving %s - parent %s is an existing cue list", unique_id, parent_unique_id)
            else:
                self.workspace.move_cue(unique_id, index, parent_unique_id)
        return unique_id

    def _process_children(self, cue_data: Dict[str, Any], number: str, unique_id: str):
        children = cue_data.get(CHILDREN_KEY)
        if not isinstance(children, list):
            return
        for child_index, child in enumerate(children):
            if isinstance(child, dict):
                self.process_cue(child, number, unique_id, child_index)

    def _fields_to_update(self, key: str, result: CueChangeResult) -> Optional[List[str]]:
        """Diffed fields minus those resolved in favour of the remote.

        None means "no diff recorded", i.e. write every content field.
        """
        if not result.changes:
            return None
        remote_fields = {}
        if self.comparison is not None:
            remote_fields = self.comparison.chosen_remote_fields.get(key, {})
        fields: List[str] = []
        for name in result.changes:
            field = strip_diff_prefix(name)
            if field not in fields and not remote_fields.get(field, False):
                fields.append(field)
        return fields

    # ==================== CREATE ====================

    def create_cue_with_properties(self, cue_data: Dict[str, Any], number: str = "") -> str:
        """Create a cue and set every property it defines."""
        ws = self.workspace
        cue_type = cue_data.get("type")
        if not isinstance(cue_type, str) or not cue_type:
            raise ReconcileError(f"cannot create cue {cue_data.get('name')!r}: no cue type")

        unique_id = ws.create_cue(cue_type)

        name = _string(cue_data.get("name"))
        if name:
            ws.set_cue_property(unique_id, "name", name)

        if number:
            try:
                ws.set_cue_number(unique_id, number, self.mapping)
            except CueNumberConflictError as e:
                logger.warning("Skipping cue number assignment: %s", e)

        file_target = cue_data.get("fileTarget")
        if isinstance(file_target, str) and file_target:
            ws.set_cue_property(unique_id, "file", ws.resolve_file_path(file_target))

        notes = _string(cue_data.get("notes"))
        if notes:
            ws.set_cue_property(unique_id, "notes", notes)

        for prop in ("duration", "preWait"):
            value = _string(cue_data.get(prop))
            if value not in ("", "0"):
                ws.set_cue_property(unique_id, prop, value)

        armed = _string(cue_data.get("armed"))
        if armed == "true":
            ws.set_cue_property(unique_id, "armed", "1")
        elif armed == "false":
            ws.set_cue_property(unique_id, "armed", "0")

        color = _string(cue_data.get("colorName"))
        if color not in ("", "none"):
            ws.set_cue_property(unique_id, "colorName", color)

        self._set_type_properties(unique_id, cue_type.lower(), cue_data)
        return unique_id

    # ==================== UPDATE ====================

    def update_cue_properties(self,
                              unique_id: str,
                              cue_data: Dict[str, Any],
                              fields: Optional[List[str]] = None):
        """
        Write ``fields`` of ``cue_data`` to an existing cue.

        Args:
            fields: Comparator field names to write; None writes every
                updatable field that has a value
        """
        ws = self.workspace
        write_all = fields is None
        wanted = UPDATABLE_FIELDS if write_all else [f for f in fields if f in COMPARED_FIELDS]

        for field in wanted:
            if field == "type":
                logger.warning("Cue %s changed type - QLab cannot convert cue types in place", unique_id)
                continue
            if field not in UPDATABLE_FIELDS:
                continue
            value = _string(cue_data.get(field))
            if write_all and value == "":
                continue

            if field == "fileTarget":
                if value:
                    ws.set_cue_property(unique_id, "file", ws.resolve_file_path(value))
            elif field == "cueTargetNumber":
                if value:
                    self.mapping.pending_targets.append(
                        PendingTarget(cue_id=unique_id, target_number=value))
            elif field == "duration":
                ws.set_cue_property(unique_id, "duration", value or "0")
            elif field == "colorName":
                ws.set_cue_property(unique_id, "colorName", value or "none")
            else:
                ws.set_cue_property(unique_id, field, value)

        cue_type = cue_data.get("type")
        if write_all and isinstance(cue_type, str):
            self._set_type_properties(unique_id, cue_type.lower(), cue_data)

    # ==================== TYPE-SPECIFIC ====================

    def _set_type_properties(self, unique_id: str, cue_type: str, cue_data: Dict[str, Any]):
        ws = self.workspace
        if cue_type == "text":
            self._set_text_properties(unique_id, cue_data)
        elif cue_type == "audio":
            if _string(cue_data.get("infiniteLoop")) in ("true", "1"):
                ws.set_cue_property(unique_id, "infiniteLoop", "1")
        elif cue_type == "group":
            mode = _number(cue_data.get("mode"))
            if mode is not None:
                ws.set_cue_property(unique_id, "mode", "%.0f" % mode)

    def _set_text_properties(self, unique_id: str, cue_data: Dict[str, Any]):
        ws = self.workspace
        text = _string(cue_data.get("text"))
        if text:
            ws.set_cue_property(unique_id, "text", text)

        stage_name = _string(cue_data.get("stageName"))
        stage_id = _string(cue_data.get("stageID"))
        # Stage goes first; format properties need one
        if stage_name:
            self._set_optional(unique_id, "stageName", stage_name)
        elif stage_id:
            self._set_optional(unique_id, "stageID", stage_id)
        else:
            stages = ws.get_video_stages()
            first_id = stages[0].get("uniqueID") if stages else None
            if isinstance(first_id, str) and first_id:
                logger.debug("Auto-assigning text cue %s to first video stage: %s", unique_id, first_id)
                self._set_optional(unique_id, "stageID", first_id)
            else:
                logger.warning("No video stage available for text cue %s - format properties may not apply",
                               unique_id)

        for prop in ("text/format/color", "text/format/backgroundColor"):
            rgba = _floats(cue_data.get(prop), 4)
            if rgba is not None:
                self._set_optional(unique_id, prop, *rgba)

        font_size = _number(cue_data.get("text/format/fontSize"))
        if font_size is not None and font_size > 0:
            self._set_optional(unique_id, "text/format/fontSize", format_float(font_size))

        alignment = _string(cue_data.get("text/format/alignment"))
        if alignment:
            self._set_optional(unique_id, "text/format/alignment", alignment)

        translation = _floats(cue_data.get("translation"), 2)
        if translation is not None:
            self._set_optional(unique_id, "translation", *translation)

        opacity = _number(cue_data.get("opacity"))
        if opacity is not None and opacity > 0:
            self._set_optional(unique_id, "opacity", format_float(opacity))

    def _set_optional(self, unique_id: str, prop: str, *values):
        try:
            self.workspace.set_cue_property(unique_id, prop, *values)
        except QLabProtocolError as e:
            logger.warning("Failed to set %s for cue %s: %s", prop, unique_id, e)

    # ==================== TARGETS ====================

    def set_cue_targets(self):
        """Second pass: wire every pending number-based target."""
        for pending in self.mapping.pending_targets:
            target_id = self.mapping.number_to_id.get(pending.target_number)
            if target_id is None:
                logger.warning("Target cue number %s not found for cue %s",
                               pending.target_number, pending.cue_id)
                continue
            try:
                reply = self.workspace.set_cue_property(
                    pending.cue_id, "cueTargetNumber", pending.target_number)
                if reply.ok:
                    logger.info("Set cue target via number: %s -> %s",
                                pending.cue_id, pending.target_number)
                    continue
                logger.warning("No reply setting cueTargetNumber %s for cue %s, trying cueTargetID",
                               pending.target_number, pending.cue_id)
            except QLabProtocolError as e:
                logger.warning("Failed to set cueTargetNumber %s for cue %s, trying cueTargetID: %s",
                               pending.target_number, pending.cue_id, e)
            self.workspace.set_cue_property(pending.cue_id, "cueTargetID", target_id)
            logger.info("Set cue target via ID fallback: %s -> %s (%s)",
                        pending.cue_id, pending.target_number, target_id)
        self.mapping.pending_targets = []
