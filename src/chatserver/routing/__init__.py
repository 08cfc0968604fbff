"""
=============================================================================
ROUTING
=============================================================================

Chat state and the decisions made on it.

    events.py      ClientJoined / Frame / ClientLeft
    registry.py    by_handle + by_name indexes, session states
    dispatcher.py  The single thread that consumes events and owns the registry
    access_log.py  One structured log line per dispatched frame

Only the dispatcher thread touches the registry. Everything else talks to
it through Dispatcher.post().

=============================================================================
"""

from .events import ClientJoined, Frame, ClientLeft, LeaveReason, Event
from .registry import Registry, ClientRecord, SessionState
from .dispatcher import Dispatcher, DEFAULT_QUEUE_SIZE, MAX_NAME_LENGTH
from .access_log import AccessLog, DispatchLog

__all__ = [
    "ClientJoined",
    "Frame",
    "ClientLeft",
    "LeaveReason",
    "Event",
    "Registry",
    "ClientRecord",
    "SessionState",
    "Dispatcher",
    "DEFAULT_QUEUE_SIZE",
    "MAX_NAME_LENGTH",
    "AccessLog",
    "DispatchLog",
]
