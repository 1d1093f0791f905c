"""
QLab OSC address resolution.

Workspace-level operations live under ``/workspace/{id}/...``; connection and
application-level operations are sent unprefixed. Cue-level operations are
addressed by uniqueID:

  /workspace/{id}/cue_id/{uniqueID}/{property}   get/set a property
  /workspace/{id}/move/{uniqueID}                [index, parentID]
  /workspace/{id}/delete_id/{uniqueID}
  /workspace/{id}/new                            [cueType]

QLab replies on ``/reply`` + the address it received.
"""

from typing import Optional

APP_LEVEL_ADDRESSES = frozenset({
    "/connect",
    "/disconnect",
    "/alwaysReply",
    "/version",
    "/updates",
    "/udpReplyPort",
    "/workspaces",
})

# Source-side property names that QLab spells differently
PROPERTY_MAP = {
    "file": "fileTarget",
    "cueTarget": "cueTargetID",
}

REPLY_PREFIX = "/reply"
UPDATE_PREFIX = "/update"

# Path fragments that never mutate the workspace
_READ_ONLY_SUFFIXES = (
    "/connect",
    "/alwaysReply",
    "/version",
    "/workspaces",
    "/cueLists",
    "/cueLists/shallow",
    "/cues",
    "/basePath",
    "/runningCues",
    "/runningCues/shallow",
    "/selectedCues",
    "/selectedCues/shallow",
    "/children",
    "/children/shallow",
    "/settings/video/stages",
)
_WRITE_FRAGMENTS = ("/new", "/move/", "/delete", "/cue_id/", "/cueList_id/")


def resolve_address(address: str, workspace_id: Optional[str]) -> str:
    """Apply the workspace prefix to workspace-level addresses."""
    if not address.startswith("/"):
        return address
    if address.startswith("/workspace/"):
        return address
    if address in APP_LEVEL_ADDRESSES:
        return address
    if not workspace_id:
        return address
    return f"/workspace/{workspace_id}{address}"


def reply_address(address: str) -> str:
    return REPLY_PREFIX + address


def is_read_only(address: str, has_args: bool = False) -> bool:
    """True when sending ``address`` cannot change the workspace.

    Property reads (``/cue_id/{id}/{prop}`` with no arguments) are read-only;
    the same address with arguments is a write. Unknown addresses count as
    writes.
    """
    if address in APP_LEVEL_ADDRESSES and address != "/disconnect":
        return True
    for suffix in _READ_ONLY_SUFFIXES:
        if address.endswith(suffix):
            return True
    if "/cue_id/" in address or "/cue/" in address:
        return not has_args
    return False


def is_write(address: str, has_args: bool = False) -> bool:
    if is_read_only(address, has_args):
        return False
    return True


def map_property(prop: str) -> str:
    return PROPERTY_MAP.get(prop, prop)


# ---------------------------------------------------------------------------
# Message builders (relative; pass through resolve_address before sending)
# ---------------------------------------------------------------------------

def connect() -> str:
    return "/connect"


def disconnect() -> str:
    return "/disconnect"


def always_reply() -> str:
    return "/alwaysReply"


def updates() -> str:
    return "/updates"


def udp_reply_port() -> str:
    return "/udpReplyPort"


def version() -> str:
    return "/version"


def cue_lists() -> str:
    return "/cueLists"


def cue_lists_shallow() -> str:
    return "/cueLists/shallow"


def new_cue() -> str:
    return "/new"


def base_path() -> str:
    return "/basePath"


def running_cues() -> str:
    return "/runningCues/shallow"


def selected_cues() -> str:
    return "/selectedCues/shallow"


def video_stages() -> str:
    return "/settings/video/stages"


def cue_property(unique_id: str, prop: str) -> str:
    return f"/cue_id/{unique_id}/{map_property(prop)}"


def cue_children(unique_id: str) -> str:
    return f"/cue_id/{unique_id}/children"


def cue_children_by_number(number: str) -> str:
    return f"/cue/{number}/children"


def move_cue(unique_id: str) -> str:
    return f"/move/{unique_id}"


def delete_cue(unique_id: str) -> str:
    return f"/delete_id/{unique_id}"
