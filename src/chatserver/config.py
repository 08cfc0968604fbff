"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the chat server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m chatserver --listen 0.0.0.0:9000                │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── CHAT_PORT=9000 python -m chatserver                       │
    │                                                                      │
    │   3. Defaults (this file)                                           │
    │      └── 127.0.0.1:8080                                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Tuple

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


@dataclass
class ServerConfig:
    """
    Configuration for the chat server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, accept_timeout

    PROTOCOL SETTINGS
    - max_line_length, max_name_length

    DISPATCH SETTINGS
    - queue_size, drain_timeout, max_pending_frames

    LOGGING
    - log_level, log_format, show_banner

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only (default)
    - "0.0.0.0" - All network interfaces
    """

    port: int = 8080
    """Port to listen on. 0 lets the OS pick a free port (tests)."""

    backlog: int = 128
    """Maximum number of handshakes queued by the OS before accept()."""

    buffer_size: int = 4096
    """Bytes requested per recv() call."""

    accept_timeout: float = 0.5
    """
    Timeout on the listening socket in seconds.
    This is how often the accept loop checks for shutdown.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_line_length: int = 4096
    """
    Hard cap on one inbound line in bytes.
    A peer that exceeds it is disconnected.
    """

    max_name_length: int = 20
    """Longest display name accepted by REG, in UTF-8 bytes."""

    # ─────────────────────────────────────────────────────────────────────
    # DISPATCH SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    queue_size: int = 256
    """
    Capacity of the dispatcher's inbound event queue.
    When full, readers block (backpressure) instead of dropping events.
    """

    drain_timeout: float = 2.0
    """
    Upper bound in seconds on each teardown wait: a reader waiting for its
    writer, and the server waiting for the dispatcher and readers.
    """

    max_pending_frames: int = 1024
    """
    Outbound frames a client may have queued before it is dropped as if
    its socket write had failed.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """
    Format of the dispatch access log: 'text' or 'json'.
    JSON is better for log aggregators, text for humans.
    """

    show_banner: bool = True
    """Print the startup banner to stdout."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        CHAT_HOST         Server host (default: 127.0.0.1)
        CHAT_PORT         Server port (default: 8080)
        CHAT_QUEUE_SIZE   Dispatcher queue capacity (default: 256)
        CHAT_MAX_LINE     Max inbound line in bytes (default: 4096)
        CHAT_LOG_LEVEL    Logging level (default: INFO)
        CHAT_LOG_FORMAT   Access log format, text or json (default: text)

        =====================================================================
        """
        return cls(
            host=os.getenv("CHAT_HOST", "127.0.0.1"),
            port=int(os.getenv("CHAT_PORT", "8080")),
            queue_size=int(os.getenv("CHAT_QUEUE_SIZE", "256")),
            max_line_length=int(os.getenv("CHAT_MAX_LINE", "4096")),
            log_level=os.getenv("CHAT_LOG_LEVEL", "INFO"),
            log_format=os.getenv("CHAT_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Fail fast: a bad value should stop the server at startup, not when
        the first client happens to trigger it.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 512:
            raise ValueError("buffer_size must be >= 512")

        if self.max_line_length < 64:
            raise ValueError("max_line_length must be >= 64")

        if self.max_name_length < 1:
            raise ValueError("max_name_length must be >= 1")

        if not 1 <= self.queue_size <= 1024:
            raise ValueError(f"queue_size must be between 1 and 1024, got {self.queue_size}")

        if self.accept_timeout <= 0:
            raise ValueError("accept_timeout must be > 0")

        if self.drain_timeout <= 0:
            raise ValueError("drain_timeout must be > 0")

        if self.max_pending_frames < 1:
            raise ValueError("max_pending_frames must be >= 1")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}, got {self.log_format!r}")


def parse_listen_address(value: str) -> Tuple[str, int]:
    """
    Parse "host:port" into (host, port).

        >>> parse_listen_address("127.0.0.1:8080")
        ('127.0.0.1', 8080)
        >>> parse_listen_address(":9000")
        ('127.0.0.1', 9000)

    Raises:
        ValueError: Missing colon, non-numeric or out-of-range port.
    """
    host, sep, port_text = value.rpartition(":")
    if not sep:
        raise ValueError(f"Expected host:port, got {value!r}")

    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid port in {value!r}") from None

    if not 0 <= port < 65536:
        raise ValueError(f"Port out of range in {value!r}")

    return host or "127.0.0.1", port
