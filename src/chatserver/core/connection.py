"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps one accepted client socket together with everything that belongs to
it: the inbound line decoder, the reader thread and the outbound writer.

=============================================================================
CONNECTION RESPONSIBILITIES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. READING (reader thread)                                          │
    │     └── recv() in chunks, feed the LineDecoder                       │
    │     └── one Frame event per complete line, in arrival order          │
    │     └── ClientLeft when the peer closes, errors, or overflows        │
    │                                                                      │
    │  2. WRITING (writer thread)                                          │
    │     └── OutboundWriter serializes every frame for this peer          │
    │     └── a failed write is reported as ClientLeft(WRITE_FAILED)       │
    │                                                                      │
    │  3. FINAL RELEASE                                                    │
    │     └── the reader waits for the writer to finish, then closes       │
    │     └── no file descriptor outlives both threads                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The connection never looks at chat state. It only produces events; the
dispatcher decides what they mean.

=============================================================================
LIFECYCLE
=============================================================================

    Acceptor                Reader thread              Dispatcher
       │                         │                         │
       │ Connection(...)         │                         │
       │ post(ClientJoined) ─────┼───────────────────────► │ add record
       │ start() ───────────────►│                         │
       │                         │ recv / feed / post ───► │ route frames
       │                         │        ...              │
       │                         │ b"" or error            │
       │                         │ post(ClientLeft) ─────► │ unbind, writer.close()
       │                         │ wait for writer         │
       │                         │ socket.close()          │
       ▼                         ▼                         ▼

=============================================================================
"""

import itertools
import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..protocol import LineDecoder, FrameTooLongError, split_frame, DEFAULT_MAX_LINE_LENGTH
from ..routing.events import ClientLeft, Event, Frame, LeaveReason
from .writer import DEFAULT_MAX_PENDING, OutboundWriter

logger = logging.getLogger(__name__)

PostFn = Callable[[Event], bool]

# Process-wide handle sequence; handles are never reused.
_handle_counter = itertools.count(1)


def next_handle() -> int:
    """Allocate the next connection handle."""
    return next(_handle_counter)


class ConnectionState(Enum):
    """
    Connection lifecycle states (transport level, not chat session).
    """

    NEW = "new"            # Accepted, threads not started
    OPEN = "open"          # Reader running
    RELEASING = "releasing"  # Reader finished, waiting for the writer
    CLOSED = "closed"      # Socket closed, fd released


@dataclass
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        handle: Unique connection handle.
        buffer_size: recv() chunk size.
        max_line_length: Line length cap handed to the decoder.
        drain_timeout: How long release() waits for the writer.
        max_pending_frames: Outbound queue cap handed to the writer.
    """

    # Required parameters
    socket: socket.socket
    address: tuple

    # Generated/default parameters
    handle: int = field(default_factory=next_handle)
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)

    # Configuration (passed from ServerConfig)
    buffer_size: int = 4096
    max_line_length: int = DEFAULT_MAX_LINE_LENGTH
    drain_timeout: float = 2.0
    max_pending_frames: int = DEFAULT_MAX_PENDING

    # Counters
    frames_read: int = 0
    bytes_read: int = 0

    # Internal state (not shown in repr for cleaner logs)
    decoder: LineDecoder = field(init=False, repr=False)
    writer: OutboundWriter = field(init=False, repr=False)
    _post: Optional[PostFn] = field(default=None, repr=False)
    _reader: Optional[threading.Thread] = field(default=None, repr=False)

    def __post_init__(self):
        # Blocking socket; the reader parks in recv() until data, EOF, or
        # the writer shuts the socket down.
        self.socket.setblocking(True)
        self.decoder = LineDecoder(max_line_length=self.max_line_length)
        self.writer = OutboundWriter(
            self.socket,
            self.handle,
            on_failure=self._on_write_failed,
            max_pending=self.max_pending_frames,
        )

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.time() - self.created_at

    @property
    def is_alive(self) -> bool:
        """True while the reader thread is running."""
        return self._reader is not None and self._reader.is_alive()

    # =========================================================================
    # THREADS
    # =========================================================================

    def start(self, post: PostFn):
        """
        Start the writer and reader threads.

        Args:
            post: Dispatcher.post, used for every event this connection
                  produces.
        """
        self._post = post
        self.state = ConnectionState.OPEN
        self.writer.start()
        self._reader = threading.Thread(
            target=self.read_loop,
            name=f"Reader-{self.handle}",
            daemon=True,
        )
        self._reader.start()

    def join(self, timeout: Optional[float] = None):
        """Wait for the reader thread (and therefore the release) to finish."""
        if self._reader is not None:
            self._reader.join(timeout)

    # =========================================================================
    # READING
    # =========================================================================

    def read_loop(self):
        """
        Reader thread body.

        Reads until EOF, error, overflow or a closed dispatcher, posts
        exactly one ClientLeft, then releases the connection.
        """
        reason = LeaveReason.PEER_CLOSED

        try:
            while True:
                chunk = self.socket.recv(self.buffer_size)
                if not chunk:
                    break  # Peer closed, or our writer shut the socket down
                self.bytes_read += len(chunk)

                try:
                    lines = self.decoder.feed(chunk)
                except FrameTooLongError as e:
                    logger.warning(f"[#{self.handle}] Protocol violation: {e}")
                    self._post_frames(e.frames)
                    reason = LeaveReason.PROTOCOL_VIOLATION
                    break

                if not self._post_frames(lines):
                    reason = LeaveReason.SHUTDOWN
                    break
        except OSError as e:
            logger.warning(f"[#{self.handle}] Read failed: {e}")
            reason = LeaveReason.READ_FAILED

        posted = self._post(ClientLeft(self.handle, reason))
        logger.debug(f"[#{self.handle}] Reader finished ({reason.value})")
        self.release(acknowledged=posted)

    def _post_frames(self, lines: List[str]) -> bool:
        for line in lines:
            command, tail = split_frame(line)
            if not self._post(Frame(self.handle, command, tail)):
                return False
            self.frames_read += 1
        return True

    def _on_write_failed(self, handle: int):
        # Runs on the writer thread
        if self._post is not None:
            self._post(ClientLeft(handle, LeaveReason.WRITE_FAILED))

    # =========================================================================
    # CLOSING
    # =========================================================================

    def release(self, acknowledged: bool = True):
        """
        Final release of the connection's resources.

        The dispatcher closes the writer once it has processed our
        ClientLeft. If it never will (it is already shut down), close the
        writer ourselves. Either way the wait is bounded by drain_timeout.
        """
        self.state = ConnectionState.RELEASING

        if not acknowledged:
            self.writer.close()

        if self.writer.is_alive():
            self.writer.join(self.drain_timeout)
        if self.writer.is_alive():
            logger.warning(f"[#{self.handle}] Writer still busy after {self.drain_timeout}s, closing anyway")
            self.writer.close()

        self.close()

    def close(self):
        """Close the socket. Safe to call more than once."""
        if self.state == ConnectionState.CLOSED:
            return

        try:
            # Wakes a reader still parked in recv(); close() alone does not
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Already shut down by the writer

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(
            f"[#{self.handle}] Connection closed after {self.frames_read} frames "
            f"({self.age:.1f}s)"
        )
