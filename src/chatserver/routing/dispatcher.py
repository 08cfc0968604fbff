"""
=============================================================================
DISPATCHER
=============================================================================

The dispatcher is the single thread that owns all chat state. Every other
thread only produces events; this one consumes them, one at a time, and
is the only code that reads or writes the registry.

=============================================================================
WHY ONE THREAD?
=============================================================================

With a thread per connection, the obvious design is for each reader to
update the shared maps itself. That needs locks around every map access,
and even with locks the user-visible ordering gets murky: two REGs for the
same name can both pass the "is it taken?" check before either binds it.

Funnelling everything through one queue turns concurrent events into a
total order:

    ┌──────────┐
    │ Reader 1 │──┐
    └──────────┘  │      ┌─────────────────────┐      ┌────────────┐
    ┌──────────┐  │      │  bounded queue      │      │            │
    │ Reader 2 │──┼────► │ [J][F][F][L][F]...  │ ───► │ Dispatcher │
    └──────────┘  │      └─────────────────────┘      │            │
    ┌──────────┐  │                                   └─────┬──────┘
    │ Acceptor │──┘                                         │
    └──────────┘                                  ┌─────────┼─────────┐
                                                  ▼         ▼         ▼
                                              Writer 1  Writer 2  Writer 3

Each event is handled completely before the next one starts, so the
roster a joiner receives and the join broadcast everyone else receives are
computed from the same registry state.

=============================================================================
BACKPRESSURE
=============================================================================

The queue is bounded. When it is full, producers block in post(): a slow
dispatcher slows the readers, which stop calling recv(), which fills the
peers' TCP windows. Nothing is dropped.

The dispatcher itself never blocks on a peer: writers have their own
queues, so send() only enqueues.

=============================================================================
SHUTDOWN
=============================================================================

    close()  ──►  no new events accepted, sentinel queued
       │
       ▼
    run() drains everything queued before the sentinel (and anything that
    raced in after it), then closes every remaining writer. Closing a
    writer shuts its socket down, which wakes the blocked reader.

=============================================================================
"""

import logging
import queue
import threading
import time
from typing import Optional

from ..protocol import Command, ErrorCode, replies, split_frame
from ..protocol.codec import ENCODING
from .access_log import AccessLog
from .events import ClientJoined, ClientLeft, Event, Frame, LeaveReason
from .registry import ClientRecord, Registry, SessionState

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256
MAX_NAME_LENGTH = 20

# Queued after the last event; tells run() to stop.
_SENTINEL = None


class Dispatcher(threading.Thread):
    """
    Serializing event consumer and sole owner of the Registry.

    Usage:
        dispatcher = Dispatcher(queue_size=256)
        dispatcher.start()

        dispatcher.post(ClientJoined(handle=1, writer=writer))
        dispatcher.post(Frame(handle=1, command="REG", tail="alice"))

        dispatcher.close()
        dispatcher.join()

    Tests can skip the thread entirely and call handle(event) directly.
    """

    def __init__(
        self,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        max_name_length: int = MAX_NAME_LENGTH,
        log_format: str = "text",
        poll_interval: float = 0.5,
    ):
        super().__init__(name="Dispatcher", daemon=True)

        self.registry = Registry()
        self.max_name_length = max_name_length
        self.poll_interval = poll_interval

        self._queue: "queue.Queue[Optional[Event]]" = queue.Queue(maxsize=queue_size)
        self._closed = threading.Event()
        self._access_log = AccessLog(log_format=log_format)

        # Fan-out counter for the event being handled (access log only)
        self._delivered = 0

        # Metrics, written only by the dispatcher thread
        self.events_dispatched = 0
        self.events_failed = 0

    # =========================================================================
    # PRODUCER SIDE (any thread)
    # =========================================================================

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    def post(self, event: Event) -> bool:
        """
        Enqueue an event, blocking while the queue is full.

        Returns:
            True if the event was queued, False if the dispatcher is closed.
        """
        while not self._closed.is_set():
            try:
                self._queue.put(event, timeout=self.poll_interval)
                return True
            except queue.Full:
                # Still full; loop to re-check whether we were closed
                continue
        return False

    def close(self):
        """
        Stop accepting events and let run() drain and exit.

        Safe to call more than once and from any thread.
        """
        if self._closed.is_set():
            return
        self._closed.set()
        logger.debug("Dispatcher closing")

        # The consumer frees up space while it is alive; if it never
        # started there is nobody to wake.
        while True:
            try:
                self._queue.put(_SENTINEL, timeout=self.poll_interval)
                return
            except queue.Full:
                if not self.is_alive():
                    return

    # =========================================================================
    # CONSUMER LOOP (dispatcher thread)
    # =========================================================================

    def run(self):
        logger.debug("Dispatcher started")

        while True:
            event = self._queue.get()
            if event is _SENTINEL:
                break
            self._safe_handle(event)

        # Producers that were mid-put when close() ran may have landed
        # behind the sentinel.
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                break
            if event is not _SENTINEL:
                self._safe_handle(event)

        self._close_all()
        logger.debug(f"Dispatcher stopped after {self.events_dispatched} events")

    def _safe_handle(self, event: Event):
        try:
            self.handle(event)
        except Exception as e:
            # One bad event must not take the whole chat down
            self.events_failed += 1
            logger.exception(f"Failed to dispatch {type(event).__name__}: {e}")

    def _close_all(self):
        """Close every connection still in the registry (shutdown path)."""
        for handle in list(self.registry.by_handle):
            record = self.registry.remove(handle)
            if record is not None:
                record.writer.close()
        logger.info("All client connections closed")

    # =========================================================================
    # EVENT HANDLING
    # =========================================================================

    def handle(self, event: Event):
        """
        Apply one event to the registry and emit the resulting frames.

        Must only be called from the thread that owns the registry (the
        dispatcher thread, or a test driving it synchronously).
        """
        self.events_dispatched += 1

        if isinstance(event, Frame):
            self._on_frame(event)
        elif isinstance(event, ClientJoined):
            self._on_joined(event)
        elif isinstance(event, ClientLeft):
            self._on_left(event)
        else:
            raise TypeError(f"Unknown event type: {type(event).__name__}")

    def _on_joined(self, event: ClientJoined):
        if event.handle in self.registry:
            logger.warning(f"Duplicate join for handle #{event.handle}, ignoring")
            return
        self.registry.add(event.handle, event.writer, event.address)
        logger.debug(f"#{event.handle} joined from {event.address}")

    def _on_left(self, event: ClientLeft):
        record = self.registry.get(event.handle)
        if record is None:
            # Already gone: EXIT + EOF, or write failure + EOF
            logger.debug(f"#{event.handle} already departed ({event.reason.value})")
            return

        if record.is_registered:
            name = self.registry.unbind(record.handle)
            self._broadcast(replies.left(name), exclude=record.handle)
            logger.info(f"{name} left the chat ({event.reason.value})")

        self.registry.remove(record.handle)
        record.writer.close()
        logger.debug(f"#{record.handle} removed ({event.reason.value})")

    def _on_frame(self, event: Frame):
        started_at = time.perf_counter()
        self._delivered = 0

        record = self.registry.get(event.handle)
        if record is None:
            logger.debug(f"Dropping frame for departed handle #{event.handle}")
            return

        name = record.name
        command = Command.parse(event.command)
        if record.state is SessionState.CLOSED:
            # Bytes after EXIT are ignored
            outcome = "ignored"
        elif command is Command.REG:
            outcome = self._register(record, event.tail)
        elif command is Command.MESG:
            outcome = self._broadcast_message(record, event.tail)
        elif command is Command.PMSG:
            outcome = self._private_message(record, event.tail)
        elif command is Command.EXIT:
            outcome = self._exit(record)
        else:
            outcome = self._reject(record, ErrorCode.INVALID_COMMAND)

        self._access_log.record(
            handle=record.handle,
            name=name or record.name,
            # Raw tokens are client-controlled and stay out of the log
            command=command.value if command is not None else "unknown",
            outcome=outcome,
            recipients=self._delivered,
            started_at=started_at,
        )

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def _register(self, record: ClientRecord, tail: str) -> str:
        """
        REG <name>

        Validation order matters: a long name with a space in it is
        reported as too long, not as containing a space.
        """
        if record.state is not SessionState.UNREGISTERED:
            return self._reject(record, ErrorCode.INVALID_COMMAND)

        name = tail.strip()
        if not name:
            return self._reject(record, ErrorCode.INVALID_COMMAND)
        if len(name.encode(ENCODING)) > self.max_name_length:
            return self._reject(record, ErrorCode.NAME_TOO_LONG)
        if any(ch.isspace() for ch in name):
            return self._reject(record, ErrorCode.NAME_HAS_SPACE)
        if self.registry.is_taken(name):
            return self._reject(record, ErrorCode.NAME_TAKEN)

        self.registry.bind(record.handle, name)

        # Roster first so the joiner's reply precedes any frame about it
        self._deliver(record, replies.roster(self.registry.roster()))
        self._broadcast(replies.joined(name), exclude=record.handle)

        logger.info(f"{name} joined the chat (#{record.handle})")
        return "ok"

    def _broadcast_message(self, record: ClientRecord, body: str) -> str:
        """MESG <text>: everyone registered except the sender."""
        if not record.is_registered:
            return self._reject(record, ErrorCode.INVALID_COMMAND)

        self._broadcast(replies.public(record.name, body), exclude=record.handle)
        return "ok"

    def _private_message(self, record: ClientRecord, tail: str) -> str:
        """PMSG <recipient> <text>: the recipient only."""
        if not record.is_registered:
            return self._reject(record, ErrorCode.INVALID_COMMAND)

        recipient, body = split_frame(tail)
        target = self.registry.lookup(recipient)
        if target is None:
            return self._reject(record, ErrorCode.UNKNOWN_RECIPIENT)

        self._deliver(target, replies.private(record.name, body))
        return "ok"

    def _exit(self, record: ClientRecord) -> str:
        """
        EXIT

        Registered: unbind, send the post-removal roster to the leaver,
        tell everyone else, then close. Unregistered: close silently.
        The reader's later ClientLeft finds the record CLOSED and only
        removes it.
        """
        if not record.is_registered:
            self.registry.unbind(record.handle)
            record.writer.close()
            return "closed"

        name = self.registry.unbind(record.handle)
        self._deliver(record, replies.roster(self.registry.roster()))
        self._broadcast(replies.left(name), exclude=record.handle)
        record.writer.close()

        logger.info(f"{name} left the chat (#{record.handle})")
        return "ok"

    # =========================================================================
    # OUTPUT
    # =========================================================================

    def _deliver(self, record: ClientRecord, text: str):
        record.writer.send(text)
        self._delivered += 1

    def _broadcast(self, text: str, exclude: Optional[int] = None):
        for other in self.registry.registered(exclude=exclude):
            self._deliver(other, text)

    def _reject(self, record: ClientRecord, code: ErrorCode) -> str:
        self._deliver(record, replies.error(code))
        logger.debug(f"{record.label}: ERR {int(code)} ({code.description})")
        return f"ERR {int(code)}"
