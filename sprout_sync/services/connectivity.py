"""Network reachability probe for the sync API host."""
import logging
import socket
import time
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class ConnectivityChecker:
    """TCP-connects to the API host to decide whether a sync is worth trying."""

    def __init__(self, host: str, port: int, timeout: float = 3.0):
        self.host = host
        self.port = port
        self.timeout = timeout

    @classmethod
    def from_url(cls, url: str, timeout: float = 3.0) -> "ConnectivityChecker":
        parsed = urlparse(url)
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        return cls(parsed.hostname or "", port, timeout)

    def latency_ms(self) -> float | None:
        """Connect round-trip in milliseconds, or ``None`` when unreachable."""
        start = time.monotonic()
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return (time.monotonic() - start) * 1000
        except OSError as e:
            logger.debug(f"{self.host}:{self.port} unreachable: {e}")
            return None

    def is_reachable(self) -> bool:
        if not self.host:
            return False
        return self.latency_ms() is not None
