"""
=============================================================================
DISPATCH ACCESS LOG
=============================================================================

One log entry per inbound frame, emitted by the dispatcher after the frame
has been routed. It answers "who sent what kind of command, what happened,
and how many peers got something back".

=============================================================================
LOG FORMATS
=============================================================================

    TEXT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ #3/alice MESG ok recipients=4 0.08ms                                │
    │ ──────── ──── ── ──────────── ──────                                │
    │ Handle   Cmd  Outcome  Fan-out  Duration                            │
    └─────────────────────────────────────────────────────────────────────┘

    JSON (for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"handle": 3, "name": "alice", "command": "MESG", "outcome": "ok",  │
    │  "recipients": 4, "duration_ms": 0.08, "timestamp": "..."}          │
    └─────────────────────────────────────────────────────────────────────┘

Message bodies, private message recipients and unrecognised command tokens
are never logged; an unknown command is recorded as "unknown".

=============================================================================
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

# Namespaced so deployments can route or silence it separately:
#   logging.getLogger("chatserver.access").setLevel(logging.WARNING)
logger = logging.getLogger("chatserver.access")


@dataclass
class DispatchLog:
    """Structured log entry for one dispatched frame."""

    handle: int
    name: Optional[str]
    command: str
    outcome: str
    recipients: int
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "handle": self.handle,
            "name": self.name,
            "command": self.command,
            "outcome": self.outcome,
            "recipients": self.recipients,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        who = f"#{self.handle}" if self.name is None else f"#{self.handle}/{self.name}"
        return (
            f"{who} {self.command or '-'} {self.outcome} "
            f"recipients={self.recipients} {self.duration_ms:.2f}ms"
        )


class AccessLog:
    """
    Emits DispatchLog entries in text or JSON.

    Args:
        log_format: "text" or "json".
        log_level: Level the entries are logged at.
    """

    def __init__(self, log_format: str = "text", log_level: int = logging.INFO):
        self.log_format = log_format
        self.log_level = log_level

    def record(
        self,
        handle: int,
        name: Optional[str],
        command: str,
        outcome: str,
        recipients: int,
        started_at: float,
    ) -> DispatchLog:
        entry = DispatchLog(
            handle=handle,
            name=name,
            command=command,
            outcome=outcome,
            recipients=recipients,
            duration_ms=(time.perf_counter() - started_at) * 1000,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        if logger.isEnabledFor(self.log_level):
            if self.log_format == "json":
                logger.log(self.log_level, json.dumps(entry.to_dict()))
            else:
                logger.log(self.log_level, entry.to_text())

        return entry
