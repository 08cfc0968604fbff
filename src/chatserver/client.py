"""
=============================================================================
REFERENCE CLIENT
=============================================================================

A small client for the chat protocol: a ChatClient class for programs and
tests, plus an interactive terminal driver.

    python -m chatserver.client --connect 127.0.0.1:8080

    Enter your username: alice
    1 [alice]
    hello everyone              (sent as MESG hello everyone)
    /msg bob psst               (sent as PMSG bob psst)
    /quit                       (sent as EXIT)

=============================================================================
"""

import argparse
import collections
import socket
import sys
import threading
from typing import Deque, List, Optional

from .config import parse_listen_address
from .protocol import LineDecoder, encode_line, Command

DEFAULT_TIMEOUT = 5.0


class ChatClient:
    """
    Blocking line-oriented client.

    Usage:
        with ChatClient("127.0.0.1", 8080) as client:
            print(client.register("alice"))   # "1 [alice]"
            client.broadcast("hi all")
            line = client.read_line(timeout=1.0)
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8080, timeout: float = DEFAULT_TIMEOUT):
        self.host = host
        self.port = port
        self.timeout = timeout

        self._socket: Optional[socket.socket] = None
        self._decoder = LineDecoder()
        self._lines: Deque[str] = collections.deque()
        self._eof = False

    # =========================================================================
    # CONNECTION
    # =========================================================================

    def connect(self) -> "ChatClient":
        self._socket = socket.create_connection((self.host, self.port), timeout=self.timeout)
        return self

    def close(self):
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

    def __enter__(self) -> "ChatClient":
        if self._socket is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def at_eof(self) -> bool:
        """True once the server closed the connection and all lines were read."""
        return self._eof and not self._lines

    # =========================================================================
    # SENDING
    # =========================================================================

    def send_raw(self, data: bytes):
        """Send bytes as-is (tests use this to split or coalesce frames)."""
        self._socket.sendall(data)

    def send_line(self, line: str):
        self.send_raw(encode_line(line))

    def register(self, name: str) -> Optional[str]:
        """Send REG and return the server's reply line."""
        self.send_line(f"{Command.REG.value} {name}")
        return self.read_line()

    def broadcast(self, text: str):
        self.send_line(f"{Command.MESG.value} {text}")

    def private(self, recipient: str, text: str):
        self.send_line(f"{Command.PMSG.value} {recipient} {text}")

    def exit(self) -> Optional[str]:
        """Send EXIT and return the final roster line (None if unregistered)."""
        self.send_line(Command.EXIT.value)
        return self.read_line()

    # =========================================================================
    # RECEIVING
    # =========================================================================

    def read_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Return the next line from the server.

        Returns None at EOF.

        Raises:
            socket.timeout: No complete line within the timeout.
        """
        self._socket.settimeout(self.timeout if timeout is None else timeout)

        while not self._lines:
            if self._eof:
                return None
            chunk = self._socket.recv(4096)
            if not chunk:
                self._eof = True
                continue
            self._lines.extend(self._decoder.feed(chunk))

        return self._lines.popleft()

    def read_available(self, quiet: float = 0.2) -> List[str]:
        """
        Read every line that arrives until the connection has been quiet
        for `quiet` seconds (or closed).
        """
        lines = []
        while True:
            try:
                line = self.read_line(timeout=quiet)
            except socket.timeout:
                break
            if line is None:
                break
            lines.append(line)
        return lines


# =============================================================================
# INTERACTIVE DRIVER
# =============================================================================

def _to_command(text: str) -> str:
    """Map terminal input to a protocol line."""
    if text == "/quit":
        return Command.EXIT.value
    if text.startswith("/msg "):
        return f"{Command.PMSG.value} {text[5:].lstrip()}"
    return f"{Command.MESG.value} {text}"


def _print_incoming(client: ChatClient):
    while True:
        try:
            line = client.read_line(timeout=None)
        except socket.timeout:
            continue
        except OSError:
            break
        if line is None:
            break
        print(line, flush=True)
    print("\nDisconnected from server.")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="chatserver.client", description="Interactive chat client")
    parser.add_argument(
        "--connect", "-c",
        metavar="HOST:PORT",
        default="127.0.0.1:8080",
        help="Server address (default: 127.0.0.1:8080)"
    )
    parser.add_argument("--name", "-n", default=None, help="Username (prompted if omitted)")
    args = parser.parse_args(argv)

    try:
        host, port = parse_listen_address(args.connect)
    except ValueError as e:
        parser.error(str(e))

    try:
        client = ChatClient(host, port).connect()
    except OSError as e:
        print(f"Connection failed: {e}", file=sys.stderr)
        sys.exit(1)

    with client:
        name = args.name
        while True:
            if not name:
                name = input("Enter your username: ").strip()
            reply = client.register(name)
            if reply is None:
                print("Server closed the connection.", file=sys.stderr)
                sys.exit(1)
            print(reply)
            if not reply.startswith("ERR "):
                break
            name = None

        # Server lines are printed as they arrive from here on
        receiver = threading.Thread(target=_print_incoming, args=(client,), daemon=True)
        receiver.start()

        try:
            for text in sys.stdin:
                text = text.rstrip("\r\n")
                if not text:
                    continue
                line = _to_command(text)
                client.send_line(line)
                if line == Command.EXIT.value:
                    break
        except KeyboardInterrupt:
            try:
                client.send_line(Command.EXIT.value)
            except OSError:
                pass
        except OSError as e:
            print(f"Send failed: {e}", file=sys.stderr)

        receiver.join(DEFAULT_TIMEOUT)


if __name__ == "__main__":
    main()
