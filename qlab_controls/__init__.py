"""
QLab Controls Package

OSC client for QLab: transport, workspace session and cue writer.
"""

from .config import QLabSettings
from .controller import QLabController
from .replies import OscReply, ReplyKind
from .errors import (
    QLabError,
    QLabConnectionError,
    QLabAuthError,
    QLabProtocolError,
    CueNumberConflictError,
    ReconcileError,
)
from .workspace import QLabWorkspace
from .cue_writer import CueWriter

__all__ = [
    'QLabSettings',
    'QLabController',
    'OscReply',
    'ReplyKind',
    'QLabError',
    'QLabConnectionError',
    'QLabAuthError',
    'QLabProtocolError',
    'CueNumberConflictError',
    'ReconcileError',
    'QLabWorkspace',
    'CueWriter',
]
