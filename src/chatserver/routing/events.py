"""
Dispatcher events.

Everything that can change chat state arrives at the dispatcher as one of
three events on a single queue. Producers never touch the registry; they
describe what happened and let the dispatcher decide.

    Acceptor ──► ClientJoined ──┐
                                │
    Reader   ──► Frame ─────────┼──► queue ──► Dispatcher
                                │
    Reader/Writer ► ClientLeft ─┘
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple, Union


class LeaveReason(Enum):
    """Why a connection left without (or after) sending EXIT."""

    PEER_CLOSED = "peer_closed"                # Clean EOF from the peer
    READ_FAILED = "read_failed"                # recv() raised
    WRITE_FAILED = "write_failed"              # sendall() raised
    PROTOCOL_VIOLATION = "protocol_violation"  # Line longer than the cap
    SHUTDOWN = "shutdown"                      # Server is stopping


@dataclass(frozen=True)
class ClientJoined:
    """
    A connection was accepted.

    Attributes:
        handle: Connection handle assigned by the acceptor.
        writer: Outbound writer for this connection (anything with
                send(text) and close()).
        address: Peer (ip, port), for logs.
    """

    handle: int
    writer: Any
    address: Optional[Tuple[str, int]] = None


@dataclass(frozen=True)
class Frame:
    """One decoded line from a connection, split into command and tail."""

    handle: int
    command: str
    tail: str


@dataclass(frozen=True)
class ClientLeft:
    """A connection is gone (or must go) for the given reason."""

    handle: int
    reason: LeaveReason = LeaveReason.PEER_CLOSED


Event = Union[ClientJoined, Frame, ClientLeft]
