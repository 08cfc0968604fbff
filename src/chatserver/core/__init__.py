"""
=============================================================================
CORE NETWORKING COMPONENTS
=============================================================================

The transport layer of the chat server: everything that touches a socket.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        Threads per process                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   SocketServer     1          accept() loop                          │
    │   Dispatcher       1          (routing package)                      │
    │   Reader           1 / conn   recv() + LineDecoder                   │
    │   OutboundWriter   1 / conn   sendall() from a private queue         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A blocking thread per connection keeps every read and write a plain
socket call. Chat servers hold few, long-lived, mostly idle connections,
so the cost is a parked thread per client rather than per request.

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState, next_handle
from .writer import OutboundWriter, WriterState

__all__ = [
    "SocketServer",     # Accepts connections
    "Connection",       # Client socket + reader thread + writer
    "ConnectionState",  # Transport lifecycle states
    "next_handle",      # Handle allocator
    "OutboundWriter",   # Serialized send path for one peer
    "WriterState",
]
