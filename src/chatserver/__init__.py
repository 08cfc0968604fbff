"""
=============================================================================
CHATSERVER - Multi-User TCP Chat Server
=============================================================================

A line-oriented chat server built on raw Python sockets. Clients connect
over TCP, register a display name, and exchange broadcast and private
messages.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CHATSERVER ARCHITECTURE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. ACCEPTOR                                                        │
    │      - One listening socket, one accept loop                         │
    │                                                                      │
    │   2. PER-CONNECTION READER + WRITER                                  │
    │      - Reader: recv() → line decoder → events                        │
    │      - Writer: private queue → sendall()                             │
    │                                                                      │
    │   3. DISPATCHER                                                      │
    │      - Single thread, single bounded queue                           │
    │      - Sole owner of the name/connection registry                    │
    │      - Decides who receives what                                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    chatserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m chatserver)
    ├── server.py            # ChatServer: wiring and shutdown
    ├── config.py            # ServerConfig dataclass
    ├── client.py            # Reference client (library + CLI)
    ├── core/                # Sockets and threads
    │   ├── socket_server.py # Acceptor
    │   ├── connection.py    # Connection + reader thread
    │   └── writer.py        # OutboundWriter
    ├── protocol/            # Wire format
    │   ├── codec.py         # LineDecoder, split_frame, encode_line
    │   ├── codes.py         # Command / ErrorCode enums
    │   └── replies.py       # Outbound frame text
    └── routing/             # Chat state
        ├── events.py        # Dispatcher events
        ├── registry.py      # by_handle / by_name
        ├── dispatcher.py    # The routing thread
        └── access_log.py    # Per-frame structured log

=============================================================================
QUICK START
=============================================================================

    from chatserver import ChatServer, ServerConfig

    server = ChatServer(ServerConfig(host="127.0.0.1", port=8080))
    server.run()

    $ nc 127.0.0.1 8080
    REG alice
    1 [alice]
    MESG hello

=============================================================================
"""

__version__ = "1.0.0"

from .server import ChatServer
from .config import ServerConfig, parse_listen_address

__all__ = ["ChatServer", "ServerConfig", "parse_listen_address", "__version__"]
