"""
Exception types for the QLab OSC client.

Timeouts are not in this hierarchy: the coordinator hands them back as
``OscReply`` values so callers can choose a fallback query instead of
aborting. These exceptions cover the cases where continuing makes no sense.
"""

import json
from typing import Any


class QLabError(Exception):
    """Base exception for QLab client errors"""
    pass


class QLabConnectionError(QLabError):
    """QLab did not answer the connect request"""
    pass


class QLabAuthError(QLabError):
    """QLab rejected the passcode (reply data was ``badpass``)"""
    pass


class QLabProtocolError(QLabError):
    """QLab answered with an explicit error status.

    The message embeds the offending address and, when the payload is
    structured, a pretty-printed copy of it.
    """

    def __init__(self, address: str, payload: Any = None, message: str = None):
        self.address = address
        self.payload = payload
        detail = message or "QLab reported an error"
        super().__init__(f"{detail} for {address}{format_payload(payload)}")


class CueNumberConflictError(QLabError):
    """A cue number is already taken by a different cue in the workspace."""

    def __init__(self, cue_number: str, existing_id: str, new_cue_id: str):
        self.cue_number = cue_number
        self.existing_id = existing_id
        self.new_cue_id = new_cue_id
        super().__init__(
            f"cue number '{cue_number}' already used by cue {existing_id} "
            f"(cannot assign to {new_cue_id})"
        )


class ReconcileError(QLabError):
    """Structural error during a mutation pass; the pass is aborted."""
    pass


def format_payload(payload: Any) -> str:
    """Render a reply payload for an error message (empty when absent)."""
    if payload is None or payload == "":
        return ""
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            return f": {payload}"
    try:
        return ":\n" + json.dumps(payload, indent=2, sort_keys=True)
    except (TypeError, ValueError):
        return f": {payload!r}"
