"""
=============================================================================
CONNECTION REGISTRY
=============================================================================

Two in-memory indexes over the live connections:

    by_handle:  handle ──► ClientRecord   (every accepted connection)
    by_name:    name   ──► handle         (registered connections only)

    ┌──────────────────────────────┐        ┌─────────────────────────┐
    │ by_handle                    │        │ by_name                 │
    ├──────────────────────────────┤        ├─────────────────────────┤
    │ 1 ─► {REGISTERED, "alice"}   │ ◄───── │ "alice" ─► 1            │
    │ 2 ─► {UNREGISTERED, None}    │        │                         │
    │ 3 ─► {REGISTERED, "bob"}     │ ◄───── │ "bob"   ─► 3            │
    └──────────────────────────────┘        └─────────────────────────┘

=============================================================================
SINGLE WRITER, NO LOCKS
=============================================================================

The registry is owned by the dispatcher thread. Nothing else reads or
writes it, so there is no lock here. Keeping both maps behind one owner
also means a roster snapshot and the join/leave broadcast that follows it
are taken from the same state.

bind() and unbind() always update both maps together, which keeps these
true between events:

    I1. every name in by_name points at a REGISTERED record
    I2. every REGISTERED record is in by_name exactly once
    I3. no two records share a name

check_invariants() verifies them; the tests call it after every event.

=============================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


class SessionState(Enum):
    """
    Session lifecycle.

        UNREGISTERED ──REG ok──► REGISTERED ──EXIT──► CLOSED
             │                                           ▲
             └───────────────EXIT────────────────────────┘
    """

    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    CLOSED = "closed"


@dataclass
class ClientRecord:
    """Per-connection state held by the dispatcher."""

    handle: int
    writer: Any
    address: Optional[Tuple[str, int]] = None
    state: SessionState = SessionState.UNREGISTERED
    name: Optional[str] = None

    @property
    def is_registered(self) -> bool:
        return self.state is SessionState.REGISTERED

    @property
    def label(self) -> str:
        """Short identifier for log lines."""
        return f"#{self.handle}" if self.name is None else f"#{self.handle}/{self.name}"


class Registry:
    """Dual index of connections and display names."""

    def __init__(self):
        self.by_handle: Dict[int, ClientRecord] = {}
        self.by_name: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.by_handle)

    def __contains__(self, handle: int) -> bool:
        return handle in self.by_handle

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def add(self, handle: int, writer: Any, address: Optional[Tuple[str, int]] = None) -> ClientRecord:
        """Insert a fresh UNREGISTERED record for a new connection."""
        if handle in self.by_handle:
            raise KeyError(f"Handle {handle} already registered")

        record = ClientRecord(handle=handle, writer=writer, address=address)
        self.by_handle[handle] = record
        return record

    def get(self, handle: int) -> Optional[ClientRecord]:
        return self.by_handle.get(handle)

    def remove(self, handle: int) -> Optional[ClientRecord]:
        """
        Drop a connection. A still-bound name is unbound first so
        by_name never outlives the record it points at.
        """
        record = self.by_handle.get(handle)
        if record is None:
            return None
        if record.name is not None and self.by_name.get(record.name) == handle:
            self.unbind(handle)
        del self.by_handle[handle]
        return record

    # =========================================================================
    # NAMES
    # =========================================================================

    def is_taken(self, name: str) -> bool:
        return name in self.by_name

    def bind(self, handle: int, name: str) -> ClientRecord:
        """
        Bind a display name to a connection and mark it REGISTERED.

        Raises:
            KeyError: Unknown handle.
            ValueError: Name already bound, or the record is not
                        UNREGISTERED.
        """
        record = self.by_handle[handle]
        if record.state is not SessionState.UNREGISTERED:
            raise ValueError(f"Cannot bind {record.label} in state {record.state.value}")
        if name in self.by_name:
            raise ValueError(f"Name {name!r} is already bound")

        self.by_name[name] = handle
        record.name = name
        record.state = SessionState.REGISTERED
        return record

    def unbind(self, handle: int) -> Optional[str]:
        """
        Remove a connection's name and mark it CLOSED.

        Returns the name that was bound, or None if the connection was not
        registered (it is still marked CLOSED).
        """
        record = self.by_handle[handle]
        name = record.name

        if name is not None:
            self.by_name.pop(name, None)
        record.name = None
        record.state = SessionState.CLOSED
        return name

    def lookup(self, name: str) -> Optional[ClientRecord]:
        """Find the registered connection for a name."""
        handle = self.by_name.get(name)
        if handle is None:
            return None
        return self.by_handle.get(handle)

    def roster(self) -> List[str]:
        """Names of all registered connections."""
        return list(self.by_name)

    def registered(self, exclude: Optional[int] = None) -> Iterator[ClientRecord]:
        """Iterate registered records, optionally skipping one handle."""
        for handle in self.by_name.values():
            if handle != exclude:
                yield self.by_handle[handle]

    # =========================================================================
    # INVARIANTS
    # =========================================================================

    def check_invariants(self):
        """
        Verify I1-I3.

        Raises:
            AssertionError: Describing the first violation found.
        """
        for name, handle in self.by_name.items():
            record = self.by_handle.get(handle)
            if record is None:
                raise AssertionError(f"Name {name!r} points at missing handle {handle}")
            if record.state is not SessionState.REGISTERED:
                raise AssertionError(f"Name {name!r} points at {record.state.value} record")
            if record.name != name:
                raise AssertionError(f"Name {name!r} points at record named {record.name!r}")

        seen = set()
        for record in self.by_handle.values():
            if record.state is SessionState.REGISTERED:
                if self.by_name.get(record.name) != record.handle:
                    raise AssertionError(f"Registered {record.label} missing from by_name")
                if record.name in seen:
                    raise AssertionError(f"Name {record.name!r} shared by several handles")
                seen.add(record.name)
