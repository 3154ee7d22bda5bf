"""
Connectivity monitor.

Answers "can the backend be reached right now?" cheaply enough to be asked
before every remote call. The default probe opens a TCP connection to the
backend host; its answer is reused for a short TTL.
"""

import socket
import time
from typing import Callable, Optional
from urllib.parse import urlsplit

from .logging_config import get_logger

logger = get_logger(__name__)


def tcp_probe(backend_url: str, timeout: float) -> Callable[[], bool]:
    """
    Build a probe that tries a TCP connection to the backend.

    Args:
        backend_url: Backend base URL (scheme decides the default port)
        timeout: Connection timeout in seconds

    Returns:
        Zero-argument callable returning True if the host accepted a connection
    """
    parts = urlsplit(backend_url)
    host = parts.hostname or 'localhost'
    port = parts.port or (443 if parts.scheme == 'https' else 80)

    def probe() -> bool:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False

    return probe


class ConnectivityMonitor:
    """
    Cached reachability state of the backend.

    Args:
        probe: Callable returning True when the backend is reachable
        ttl_seconds: How long a probe answer is trusted
        clock: Monotonic clock (injectable for tests)
    """

    def __init__(
        self,
        probe: Callable[[], bool],
        ttl_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.probe = probe
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._connected = False
        self._checked_at: Optional[float] = None

    @property
    def last_known(self) -> bool:
        """Last probed state, without probing."""
        return self._connected

    def is_connected(self, force: bool = False) -> bool:
        """
        Return the current reachability, probing if the cached answer is stale.

        Args:
            force: Ignore the cached answer
        """
        now = self.clock()
        stale = self._checked_at is None or now - self._checked_at >= self.ttl_seconds

        if force or stale:
            connected = bool(self.probe())
            if connected != self._connected:
                logger.info('🌐 Backend reachable' if connected else '🌐 Backend unreachable')
            self._connected = connected
            self._checked_at = now

        return self._connected

    def mark_disconnected(self) -> None:
        """Record a failure seen mid-request so the next calls fail fast."""
        if self._connected:
            logger.warning('🌐 Connection lost during request')
        self._connected = False
        self._checked_at = self.clock()
