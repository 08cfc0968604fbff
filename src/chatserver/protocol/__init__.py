"""
=============================================================================
CHAT WIRE PROTOCOL
=============================================================================

Line-oriented text protocol spoken between chat clients and the server.
Every frame is one UTF-8 line terminated by LF.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Request / Reply Examples                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   CLIENT                                         SERVER              │
    │      │   REG alice                                  │                │
    │      │  ─────────────────────────────────────────►  │                │
    │      │                                  1 [alice]   │                │
    │      │  ◄─────────────────────────────────────────  │                │
    │      │   PMSG carol hello                           │                │
    │      │  ─────────────────────────────────────────►  │                │
    │      │                                      ERR 3   │                │
    │      │  ◄─────────────────────────────────────────  │                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    codec.py    LineDecoder, split_frame(), encode_line()
    codes.py    Command and ErrorCode enums
    replies.py  Text of every server -> client frame

=============================================================================
"""

from .codec import (
    LineDecoder,
    FrameTooLongError,
    split_frame,
    encode_line,
    DEFAULT_MAX_LINE_LENGTH,
)
from .codes import Command, ErrorCode
from . import replies

__all__ = [
    # Framing
    "LineDecoder",
    "FrameTooLongError",
    "split_frame",
    "encode_line",
    "DEFAULT_MAX_LINE_LENGTH",

    # Vocabulary
    "Command",
    "ErrorCode",

    # Outbound text
    "replies",
]
