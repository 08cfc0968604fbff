"""
=============================================================================
OUTBOUND WRITER
=============================================================================

One writer thread per connection. All frames for a peer go through its
writer's queue, so two broadcasts can never interleave bytes on the same
socket, and the dispatcher never blocks on a slow peer.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        Writer Loop                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Wait for the next frame on the queue (blocking)                │
    │          │                                                           │
    │          ├── Close sentinel → shut the socket down, exit            │
    │          │                                                           │
    │          └── Frame bytes → sendall()                                │
    │                  │                                                   │
    │                  ├── OK → back to 1                                 │
    │                  │                                                   │
    │                  └── OSError → report WRITE_FAILED, shut down, exit │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Shutting the socket down (rather than closing it) is what wakes the
reader thread blocked in recv(): recv() returns b"" and the reader runs
its normal departure path. The reader owns the final close().

The writer never retries a failed write.

A peer that stops reading fills its kernel buffer, then blocks its own
writer in sendall(), and from then on frames pile up in the queue. Past
max_pending queued frames the peer is treated as failed: send() marks the
writer FAILED and shuts the socket down, which breaks the blocked
sendall() (reported as WRITE_FAILED) and wakes the reader.

=============================================================================
"""

import logging
import queue
import socket
import threading
from enum import Enum
from typing import Callable, Optional

from ..protocol import encode_line

logger = logging.getLogger(__name__)

# Placed on the queue by close(); everything before it is flushed first.
_CLOSE = None


DEFAULT_MAX_PENDING = 1024


class WriterState(Enum):
    OPEN = "open"          # Accepting frames
    CLOSING = "closing"    # close() requested, flushing
    CLOSED = "closed"      # Socket shut down, thread exited
    FAILED = "failed"      # A write raised; later frames are discarded


class OutboundWriter(threading.Thread):
    """
    Serialized send path for one peer.

    Args:
        sock: The client socket (shared with the reader).
        handle: Connection handle, for logs and failure reports.
        on_failure: Called once, from the writer thread, when a write
                    fails. The connection uses it to post
                    ClientLeft(WRITE_FAILED).
        max_pending: Queued frames allowed before the peer is dropped.
    """

    def __init__(
        self,
        sock: socket.socket,
        handle: int,
        on_failure: Optional[Callable[[int], None]] = None,
        max_pending: int = DEFAULT_MAX_PENDING,
    ):
        super().__init__(name=f"Writer-{handle}", daemon=True)
        self.socket = sock
        self.handle = handle
        self.on_failure = on_failure
        self.max_pending = max_pending

        self.state = WriterState.OPEN
        self._queue: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._close_requested = threading.Event()

        self.frames_sent = 0
        self.bytes_sent = 0

    @property
    def is_open(self) -> bool:
        return self.state is WriterState.OPEN and not self._close_requested.is_set()

    def send(self, text: str) -> bool:
        """
        Queue one frame (without its LF) for delivery.

        Never blocks. Returns False if the writer is closing or failed,
        in which case the frame is dropped.
        """
        if not self.is_open:
            return False
        if self._queue.qsize() >= self.max_pending:
            logger.warning(f"[#{self.handle}] Peer is not reading ({self.max_pending} frames queued), dropping it")
            self.state = WriterState.FAILED
            self._shutdown_socket()
            return False
        self._queue.put(encode_line(text))
        return True

    def close(self):
        """Flush what is queued, then shut the socket down. Idempotent."""
        if self._close_requested.is_set():
            return
        self._close_requested.set()
        self._queue.put(_CLOSE)

    def run(self):
        logger.debug(f"[#{self.handle}] Writer started")

        while True:
            data = self._queue.get()
            if data is _CLOSE:
                self.state = WriterState.CLOSING
                break

            try:
                self.socket.sendall(data)
            except OSError as e:
                logger.warning(f"[#{self.handle}] Send failed: {e}")
                self.state = WriterState.FAILED
                if self.on_failure is not None:
                    self.on_failure(self.handle)
                break

            self.frames_sent += 1
            self.bytes_sent += len(data)

        self._shutdown_socket()
        if self.state is not WriterState.FAILED:
            self.state = WriterState.CLOSED
        logger.debug(f"[#{self.handle}] Writer stopped after {self.frames_sent} frames")

    def _shutdown_socket(self):
        try:
            # Sends FIN after the flushed data and wakes the reader
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Peer already gone
