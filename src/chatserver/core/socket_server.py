"""
=============================================================================
TCP ACCEPTOR
=============================================================================

Owns the listening socket. Its only job is to turn incoming TCP
connections into Connection objects and hand them to the chat server,
which registers them with the dispatcher and starts their threads.

=============================================================================
SOCKET LIFECYCLE (Server Side)
=============================================================================

    1. socket()    Create the listening socket
    2. bind()      Reserve host:port
    3. listen()    Let the OS queue incoming handshakes (backlog)
    4. accept()    Take one connection off the queue
                   └─ returns a NEW socket for that client
                   └─ the listening socket keeps listening
    5. close()     Release the listening socket on shutdown

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── Created once at startup
                    └───────────┬───────────┘
                                │ accept()
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
  ┌───────────┐          ┌───────────┐          ┌───────────┐
  │ Client #1 │          │ Client #2 │          │ Client #3 │
  │ reader +  │          │ reader +  │          │ reader +  │
  │ writer    │          │ writer    │          │ writer    │
  └───────────┘          └───────────┘          └───────────┘

=============================================================================
INTERRUPTIBLE ACCEPT
=============================================================================

accept() blocks forever by default, which would make shutdown impossible
from another thread. The listening socket gets a short timeout instead, and
the loop re-checks the cancellation event every time it expires.

=============================================================================
"""

import errno
import signal
import socket
import logging
import threading
import time
from typing import Callable, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection

logger = logging.getLogger(__name__)

# accept() errors that concern one pending connection (or a momentary
# resource shortage), not the listening socket itself.
_TRANSIENT_ACCEPT_ERRORS = {
    errno.ECONNABORTED,
    errno.EINTR,
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
    errno.EPROTO,
}


class SocketServer:
    """
    Low-level TCP acceptor.

    Usage:
        def handle_connection(conn: Connection):
            ...

        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown()

    Args:
        config: Server configuration (host, port, backlog, timeouts).
        cancel_event: Shared cancellation signal. Setting it stops the
                      accept loop; shutdown() sets it.
    """

    def __init__(self, config: ServerConfig, cancel_event: Optional[threading.Event] = None):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._cancel = cancel_event or threading.Event()
        self._ready = threading.Event()
        self._bound_address: Optional[Tuple[str, int]] = None

        # Save original signal handlers so we can restore them
        self._original_handlers: dict = {}

        self.connections_accepted = 0

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port).

        Before the socket is bound this is the configured address; after,
        it is the real one (so port 0 resolves to the OS-assigned port).
        """
        return self._bound_address or (self.config.host, self.config.port)

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening. Returns False on timeout."""
        return self._ready.wait(timeout)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Avoid "Address already in use" while old sockets sit in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Chat lines are tiny and latency-sensitive; don't let Nagle batch them
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # Bounded accept() so the loop notices cancellation
        sock.settimeout(self.config.accept_timeout)

        return sock

    def _setup_signals(self):
        """
        Turn SIGTERM / SIGINT into a graceful shutdown.

        Python only allows installing handlers from the main thread; when
        the server runs elsewhere (tests, embedding) the caller is
        responsible for calling shutdown().
        """
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and accept until shutdown.

        Raises:
            OSError: If binding fails or the listening socket breaks. The
                     cancellation event is set before the error propagates.
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
            self._socket.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._cancel.set()
            self._cleanup()
            raise

        self._bound_address = self._socket.getsockname()[:2]
        self._setup_signals()
        self._ready.set()

        logger.info(f"Server listening on {self._bound_address[0]}:{self._bound_address[1]}")

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while not self._cancel.is_set():
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue  # Poll the cancellation event
            except OSError as e:
                if self._cancel.is_set():
                    break  # Socket closed under us during shutdown
                if e.errno in _TRANSIENT_ACCEPT_ERRORS:
                    logger.warning(f"Accept error: {e}")
                    if e.errno in (errno.EMFILE, errno.ENFILE):
                        # Out of descriptors; back off instead of spinning
                        time.sleep(self.config.accept_timeout)
                    continue
                logger.error(f"Listener failed: {e}")
                self._cancel.set()
                raise

            self.connections_accepted += 1
            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                max_line_length=self.config.max_line_length,
                drain_timeout=self.config.drain_timeout,
                max_pending_frames=self.config.max_pending_frames,
            )

            # Registers with the dispatcher and starts the threads
            connection_handler(conn)

    def shutdown(self):
        """Stop accepting. Idempotent and safe from any thread."""
        if not self._cancel.is_set():
            logger.info("Shutting down acceptor...")
        self._cancel.set()

    def _cleanup(self):
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        logger.info("Acceptor stopped")
