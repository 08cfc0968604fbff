"""
=============================================================================
CHAT SERVER
=============================================================================

Wires the acceptor, the dispatcher and the per-connection threads together
and owns the shutdown sequence.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          ChatServer                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   run()                                                              │
    │     ├──► _setup_logging()                                            │
    │     ├──► Dispatcher.start()          routing thread                  │
    │     └──► SocketServer.start()        accept loop (blocks here)       │
    │              │                                                       │
    │              └──► _handle_connection(conn)   for each client         │
    │                      ├──► post(ClientJoined)                         │
    │                      └──► conn.start()       reader + writer         │
    │                                                                      │
    │   shutdown()  ──►  cancellation event set                            │
    │                                                                      │
    │   _shutdown()  (end of run)                                          │
    │     ├──► acceptor already stopped                                    │
    │     ├──► Dispatcher.close() + join   drains, closes every writer     │
    │     └──► join readers                each closes its own socket      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import logging
import threading
from typing import List, Optional

from .config import ServerConfig
from .core import SocketServer, Connection
from .routing import Dispatcher, ClientJoined

logger = logging.getLogger(__name__)


class ChatServer:
    """
    Multi-user line-oriented TCP chat server.

    =========================================================================
    USAGE
    =========================================================================

        server = ChatServer(ServerConfig(port=8080))
        server.run()  # Blocks until Ctrl+C / SIGTERM / shutdown()

    In a background thread (tests):

        server = ChatServer(ServerConfig(port=0, show_banner=False))
        thread = threading.Thread(target=server.run, daemon=True)
        thread.start()
        server.wait_until_ready(5.0)
        host, port = server.address
        ...
        server.shutdown()
        thread.join()

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        # The cancellation signal every component observes
        self._cancel = threading.Event()

        self._socket_server = SocketServer(self.config, cancel_event=self._cancel)
        self._dispatcher = Dispatcher(
            queue_size=self.config.queue_size,
            max_name_length=self.config.max_name_length,
            log_format=self.config.log_format,
            poll_interval=self.config.accept_timeout,
        )

        # Live connections; touched only by the thread running run()
        self._connections: List[Connection] = []

        self._stopped = threading.Event()

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    @property
    def address(self):
        """Bound (host, port); resolves port 0 once listening."""
        return self._socket_server.address

    @property
    def stats(self) -> dict:
        """Point-in-time counters (approximate while running)."""
        return {
            "connections_accepted": self._socket_server.connections_accepted,
            "events_dispatched": self._dispatcher.events_dispatched,
            "events_failed": self._dispatcher.events_failed,
            "queue_depth": self._dispatcher.queue_depth,
        }

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listening socket is up."""
        return self._socket_server.wait_until_ready(timeout)

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until run() has finished tearing down."""
        return self._stopped.wait(timeout)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Start the server (blocking).

        Raises:
            OSError: If the listener fails (bind error or a broken listening
                     socket). Connections are torn down before it propagates.
        """
        self._setup_logging()
        self._dispatcher.start()

        if self.config.show_banner:
            self._print_startup_banner()

        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def shutdown(self):
        """Signal shutdown. Returns immediately; run() does the teardown."""
        self._socket_server.shutdown()

    def _print_startup_banner(self):
        print()
        print("╔══════════════════════════════════════════════════════════════╗")
        print(f"║  chatserver listening on {self.config.host}:{self.config.port}")
        print(f"║  queue: {self.config.queue_size} events, max line: {self.config.max_line_length} bytes")
        print("║  Press Ctrl+C to stop")
        print("╚══════════════════════════════════════════════════════════════╝")
        print()

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("chatserver").setLevel(level)

    def _shutdown(self):
        """
        Graceful shutdown.

        =====================================================================
        GRACEFUL SHUTDOWN PROCESS
        =====================================================================

        1. Stop accepting (the acceptor has already left its loop)
        2. Close the dispatcher: it drains queued events, then closes every
           writer, which shuts each socket down and wakes its reader
        3. Wait (bounded) for readers to post their departures and close
           their sockets

        =====================================================================
        """
        logger.info("Shutting down server...")
        self._cancel.set()

        self._dispatcher.close()
        self._dispatcher.join(self.config.drain_timeout)
        if self._dispatcher.is_alive():
            logger.warning("Dispatcher did not drain in time")

        for conn in self._connections:
            conn.join(self.config.drain_timeout)
            if conn.is_alive:
                logger.warning(f"[#{conn.handle}] Reader still running, closing socket")
                conn.close()
        self._connections.clear()

        self._stopped.set()
        logger.info("Server stopped")

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """
        Register a freshly accepted connection and start its threads.

        Called on the acceptor thread. ClientJoined is posted before the
        reader starts, so the dispatcher always sees the join before any
        frame from the same connection.
        """
        joined = ClientJoined(handle=conn.handle, writer=conn.writer, address=conn.address)
        if not self._dispatcher.post(joined):
            logger.debug(f"[#{conn.handle}] Dispatcher closed, dropping connection")
            conn.close()
            return

        conn.start(self._dispatcher.post)

        # Forget connections whose reader already finished
        self._connections = [c for c in self._connections if c.is_alive]
        self._connections.append(conn)

        logger.info(f"[#{conn.handle}] Client connected from {conn.client_ip}:{conn.client_port}")
