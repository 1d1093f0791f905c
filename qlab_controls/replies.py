"""
Tagged reply type for QLab OSC requests.

QLab answers every request on ``/reply/<address>`` with a single JSON string:

    {"workspace_id": "...", "address": "...", "status": "ok", "data": ...}

``OscReply`` wraps that payload together with an explicit ``kind`` so callers
can branch on "timed out" versus "QLab said error" versus "bad passcode"
without catching exceptions.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .errors import QLabAuthError, QLabProtocolError

TIMEOUT_MESSAGE = "timeout waiting for reply from QLab"


class ReplyKind(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"
    AUTH = "auth"


@dataclass
class OscReply:
    """Result of one request/reply round trip."""
    address: str
    kind: ReplyKind = ReplyKind.OK
    status: str = "ok"
    data: Any = None
    workspace_id: Optional[str] = None
    error: Optional[str] = None
    raw: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind == ReplyKind.OK

    @property
    def timed_out(self) -> bool:
        return self.kind == ReplyKind.TIMEOUT

    @classmethod
    def timeout(cls, address: str) -> "OscReply":
        return cls(
            address=address,
            kind=ReplyKind.TIMEOUT,
            status="error",
            error=TIMEOUT_MESSAGE,
        )

    @classmethod
    def from_json(cls, address: str, payload: Any) -> "OscReply":
        """Parse the JSON string QLab sends as the only reply argument."""
        if not isinstance(payload, str):
            return cls(
                address=address,
                kind=ReplyKind.PROTOCOL,
                status="error",
                error=f"unexpected reply payload type {type(payload).__name__}",
                raw=repr(payload),
            )
        try:
            decoded = json.loads(payload)
        except ValueError as exc:
            return cls(
                address=address,
                kind=ReplyKind.PROTOCOL,
                status="error",
                error=f"invalid JSON in reply: {exc}",
                raw=payload,
            )
        if not isinstance(decoded, dict):
            return cls(address=address, data=decoded, raw=payload)

        status = decoded.get("status", "ok")
        data = decoded.get("data")
        reply = cls(
            address=decoded.get("address", address),
            status=status,
            data=data,
            workspace_id=decoded.get("workspace_id"),
            raw=payload,
        )
        if data == "badpass":
            reply.kind = ReplyKind.AUTH
            reply.error = "QLab authentication failed - check passcode and ensure workspace is connected"
        elif status == "error":
            reply.kind = ReplyKind.PROTOCOL
            reply.error = decoded.get("error") or "QLab reported an error"
        return reply

    def to_dict(self) -> Dict[str, Any]:
        """Legacy dict form: ``{"status", "data", "workspace_id", "error"}``."""
        result: Dict[str, Any] = {"status": self.status}
        if self.data is not None:
            result["data"] = self.data
        if self.workspace_id:
            result["workspace_id"] = self.workspace_id
        if self.error:
            result["error"] = self.error
        return result

    def raise_for_status(self) -> "OscReply":
        """Raise the matching ``QLabError`` unless the reply is OK."""
        if self.kind == ReplyKind.AUTH:
            raise QLabAuthError(self.error)
        if self.kind in (ReplyKind.PROTOCOL, ReplyKind.TIMEOUT):
            raise QLabProtocolError(self.address, self.raw, message=self.error)
        return self
