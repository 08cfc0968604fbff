"""
pytest configuration and fixtures.
"""

import threading
from typing import Callable, Generator, List

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chatserver import ChatServer, ServerConfig
from chatserver.client import ChatClient
from chatserver.routing import Dispatcher, ClientJoined, Frame


class RecordingWriter:
    """Stand-in for OutboundWriter that records what the dispatcher sends."""

    def __init__(self, handle: int):
        self.handle = handle
        self.sent: List[str] = []
        self.closed = False
        self.close_calls = 0

    def send(self, text: str) -> bool:
        if self.closed:
            return False
        self.sent.append(text)
        return True

    def close(self):
        self.close_calls += 1
        self.closed = True

    def take(self) -> List[str]:
        """Return and clear everything sent so far."""
        sent, self.sent = self.sent, []
        return sent


class DispatcherHarness:
    """
    Drives a Dispatcher synchronously (no thread) with recording writers.
    """

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher
        self.writers = {}
        self._next_handle = 1

    @property
    def registry(self):
        return self.dispatcher.registry

    def connect(self) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self.writers[handle] = RecordingWriter(handle)
        self.dispatcher.handle(ClientJoined(handle, self.writers[handle], ("127.0.0.1", 40000 + handle)))
        return handle

    def send(self, handle: int, command: str, tail: str = ""):
        self.dispatcher.handle(Frame(handle, command, tail))

    def register(self, name: str) -> int:
        handle = self.connect()
        self.send(handle, "REG", name)
        self.writers[handle].take()
        return handle

    def take(self, handle: int) -> List[str]:
        return self.writers[handle].take()

    def take_all(self):
        for writer in self.writers.values():
            writer.take()


@pytest.fixture
def harness() -> DispatcherHarness:
    """A dispatcher driven in-thread with recording writers."""
    return DispatcherHarness(Dispatcher(queue_size=16))


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        queue_size=64,
        accept_timeout=0.1,
        drain_timeout=2.0,
        log_level="WARNING",
        show_banner=False,
    )


class TestServer:
    """Test server helper that runs in a background thread."""

    __test__ = False  # Not a test class despite the name

    def __init__(self, server: ChatServer):
        self.server = server
        self._thread: threading.Thread = None
        self.error: BaseException = None

    @property
    def address(self):
        return self.server.address

    def _run(self):
        try:
            self.server.run()
        except BaseException as e:  # Surface listener errors to the test
            self.error = e

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(5.0):
            raise RuntimeError(f"Server failed to start: {self.error}")

    def stop(self):
        """Stop the server and wait for teardown."""
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)

    def client(self, timeout: float = 2.0) -> ChatClient:
        host, port = self.address
        return ChatClient(host, port, timeout=timeout).connect()


@pytest.fixture
def test_server(config: ServerConfig) -> Generator[TestServer, None, None]:
    """A running chat server on an ephemeral port."""
    srv = TestServer(ChatServer(config))
    srv.start()

    yield srv

    srv.stop()


@pytest.fixture
def connect(test_server: TestServer) -> Generator[Callable[[], ChatClient], None, None]:
    """Factory for clients connected to test_server; all closed at teardown."""
    clients = []

    def _connect(timeout: float = 2.0) -> ChatClient:
        client = test_server.client(timeout=timeout)
        clients.append(client)
        return client

    yield _connect

    for client in clients:
        client.close()
