"""
=============================================================================
PROTOCOL COMMANDS AND ERROR CODES
=============================================================================

The chat protocol has exactly four client commands and five numeric error
codes. Both are modelled as enums so the dispatcher never compares raw
strings or magic numbers.

=============================================================================
COMMANDS (client -> server)
=============================================================================

    ┌─────────┬──────────────────────────┬──────────────────────────────┐
    │ Token   │ Arguments                │ Accepted in state            │
    ├─────────┼──────────────────────────┼──────────────────────────────┤
    │ REG     │ <name>                   │ UNREGISTERED                 │
    │ MESG    │ <text>                   │ REGISTERED                   │
    │ PMSG    │ <recipient> <text>       │ REGISTERED                   │
    │ EXIT    │ (none)                   │ UNREGISTERED or REGISTERED   │
    └─────────┴──────────────────────────┴──────────────────────────────┘

Tokens are case-sensitive: "reg alice" is an unknown command.

=============================================================================
ERROR CODES (server -> client)
=============================================================================

Errors travel as "ERR <code>". The client only ever sees the number;
the description exists for our own log lines.

=============================================================================
"""

from enum import Enum, IntEnum
from typing import Optional


class Command(Enum):
    """Client command tokens."""

    REG = "REG"
    MESG = "MESG"
    PMSG = "PMSG"
    EXIT = "EXIT"

    @classmethod
    def parse(cls, token: str) -> Optional["Command"]:
        """
        Map a raw command token to a Command.

        Returns None for unknown or empty tokens instead of raising, since
        an unknown command is an ordinary protocol error (ERR 4), not an
        exceptional condition.
        """
        try:
            return cls(token)
        except ValueError:
            return None


class ErrorCode(IntEnum):
    """
    Numeric protocol errors.

    IntEnum so the code renders directly into the wire frame:
        >>> f"ERR {ErrorCode.NAME_TAKEN:d}"
        'ERR 0'
    """

    NAME_TAKEN = 0            # REG: another connection holds this name
    NAME_TOO_LONG = 1         # REG: more than 20 octets
    NAME_HAS_SPACE = 2        # REG: name contains whitespace
    UNKNOWN_RECIPIENT = 3     # PMSG: nobody registered under that name
    INVALID_COMMAND = 4       # Unknown command, or not allowed in this state

    @property
    def description(self) -> str:
        """Human readable description (logs only)."""
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    ErrorCode.NAME_TAKEN: "Username is already taken",
    ErrorCode.NAME_TOO_LONG: "Username is too long",
    ErrorCode.NAME_HAS_SPACE: "Username contains spaces",
    ErrorCode.UNKNOWN_RECIPIENT: "Unknown recipient for private message",
    ErrorCode.INVALID_COMMAND: "Unknown message format",
}
