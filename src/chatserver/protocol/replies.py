"""
Outbound frame text.

Every line the server sends is built here, so the wire format lives in
one place. The functions return text without the LF terminator; the
writer encodes it with encode_line().

    roster(["alice", "bob"])   ->  "2 [alice bob]"
    joined("bob")              ->  "bob has joined the chat"
    left("bob")                ->  "bob has left the chat"
    public("alice", "hi")      ->  "alice: hi"
    private("alice", "sshh")   ->  "Private message from alice: sshh"
    error(ErrorCode.NAME_TAKEN) -> "ERR 0"
"""

from typing import Iterable

from .codes import ErrorCode


def roster(names: Iterable[str]) -> str:
    """Format the current roster as "<N> [<n1> <n2> ...]"."""
    names = list(names)
    return f"{len(names)} [{' '.join(names)}]"


def joined(name: str) -> str:
    return f"{name} has joined the chat"


def left(name: str) -> str:
    return f"{name} has left the chat"


def public(sender: str, body: str) -> str:
    return f"{sender}: {body}"


def private(sender: str, body: str) -> str:
    return f"Private message from {sender}: {body}"


def error(code: ErrorCode) -> str:
    return f"ERR {int(code)}"
