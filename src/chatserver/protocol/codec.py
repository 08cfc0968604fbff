"""
=============================================================================
LINE CODEC
=============================================================================

Turns the inbound TCP byte stream into protocol frames and renders
outbound frames back into bytes.

=============================================================================
WHY A STATEFUL DECODER?
=============================================================================

TCP is a byte stream, not a message stream. One recv() can return half a
line, or three lines glued together:

    Client sends:   "REG alice\\n"   "MESG hi\\n"

    recv() #1  ──►  b"REG al"                   (partial)
    recv() #2  ──►  b"ice\\nMESG hi\\n"          (rest + one more)

Treating one recv() as one message corrupts both frames. The decoder keeps
a residual buffer across reads and only emits a frame once its LF arrives:

    ┌──────────────┐   feed(b"REG al")         ┌──────────────────────┐
    │   residual   │ ◄──────────────────────── │ returns []           │
    │  b"REG al"   │                           └──────────────────────┘
    └──────┬───────┘
           │           feed(b"ice\\nMESG hi\\n")  ┌──────────────────────┐
           └─────────────────────────────────► │ returns ["REG alice",│
                                               │          "MESG hi"]  │
                                               └──────────────────────┘

A peer that never sends LF would make the residual grow forever, so the
decoder enforces a hard cap and raises FrameTooLongError past it. The
connection is then dropped as a protocol violation.

=============================================================================
FRAME ANATOMY
=============================================================================

    PMSG   bob sshh\\r\\n
    ────   ────────  ──
     │        │       └── terminator (CR is optional and stripped)
     │        └────────── tail: raw remainder after the first whitespace run
     └─────────────────── command token

The codec does no command-specific validation; that is the dispatcher's job.

=============================================================================
"""

import re
from typing import List, Tuple

ENCODING = "utf-8"
DEFAULT_MAX_LINE_LENGTH = 4096

_LF = b"\n"
_CR = b"\r"
_WHITESPACE_RUN = re.compile(r"\s+")


class FrameTooLongError(ValueError):
    """
    Raised when a peer exceeds the line length cap.

    Carries the frames that were completed in the same feed() call before
    the overflow, so the reader can still dispatch them before dropping
    the connection.
    """

    def __init__(self, length: int, limit: int, frames: List[str] = None):
        super().__init__(f"Frame of {length} bytes exceeds limit of {limit} bytes")
        self.length = length
        self.limit = limit
        self.frames = frames or []


class LineDecoder:
    """
    Incremental LF-delimited frame decoder.

    One decoder per connection. Not thread-safe; only the connection's
    reader thread feeds it.

    Usage:
        decoder = LineDecoder(max_line_length=4096)
        for line in decoder.feed(sock.recv(4096)):
            handle(line)
    """

    def __init__(self, max_line_length: int = DEFAULT_MAX_LINE_LENGTH):
        self.max_line_length = max_line_length
        self._buffer = b""

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet terminated by LF."""
        return len(self._buffer)

    def feed(self, data: bytes) -> List[str]:
        """
        Add received bytes and return every frame they complete.

        Raises:
            FrameTooLongError: If a line (or the unterminated residual)
                               is longer than max_line_length bytes.
        """
        self._buffer += data
        frames: List[str] = []

        while True:
            end = self._buffer.find(_LF)
            if end < 0:
                break

            raw = self._buffer[:end]
            self._buffer = self._buffer[end + 1:]

            if raw.endswith(_CR):
                raw = raw[:-1]
            if len(raw) > self.max_line_length:
                raise FrameTooLongError(len(raw), self.max_line_length, frames)

            frames.append(raw.decode(ENCODING, errors="replace"))

        # A trailing CR may still be followed by its LF and is not counted
        limit = self.max_line_length + (1 if self._buffer.endswith(_CR) else 0)
        if len(self._buffer) > limit:
            raise FrameTooLongError(len(self._buffer), self.max_line_length, frames)

        return frames


def split_frame(line: str) -> Tuple[str, str]:
    """
    Split a frame at its first maximal whitespace run.

    Returns (command, tail). Either part may be empty:

        >>> split_frame("PMSG bob  hi there")
        ('PMSG', 'bob  hi there')
        >>> split_frame("EXIT")
        ('EXIT', '')
        >>> split_frame("  REG x")
        ('', 'REG x')
    """
    match = _WHITESPACE_RUN.search(line)
    if match is None:
        return line, ""
    return line[:match.start()], line[match.end():]


def encode_line(text: str) -> bytes:
    """Render one outbound frame: UTF-8 text terminated by LF."""
    return text.encode(ENCODING) + _LF
