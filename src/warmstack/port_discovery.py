"""
Port discovery for freshly started workers

The worker picks its own listening port unless told otherwise, so a newly
launched container is polled until its logs announce the port. Polling
stops early if the container dies, and gives up after a timeout.
"""

import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Pattern

from .errors import PortDiscoveryFailureReason

logger = logging.getLogger(__name__)

# Most specific first; the bare "port NNNN" match is the fallback
PORT_ANNOUNCEMENT_PATTERNS: List[Pattern] = [
    re.compile(r"listening on port (\d+)", re.IGNORECASE),
    re.compile(r"Server listening on .*:(\d+)", re.IGNORECASE),
    re.compile(r"port\s+(\d+)", re.IGNORECASE),
]


class DiscoveryState(Enum):
    """States of the port discovery state machine."""

    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PortDiscoveryResult:
    """Outcome of a port discovery run."""

    state: DiscoveryState
    port: Optional[int] = None
    reason: Optional[PortDiscoveryFailureReason] = None
    logs: str = ""
    elapsed: float = 0.0
    polls: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == DiscoveryState.SUCCEEDED


def find_announced_port(logs: str) -> Optional[int]:
    """
    Scan log text line by line for a port announcement.

    Args:
        logs: Raw log output

    Returns:
        The first announced port, or None if no line matches
    """
    for line in logs.splitlines():
        for pattern in PORT_ANNOUNCEMENT_PATTERNS:
            match = pattern.search(line)
            if not match:
                continue
            port = int(match.group(1))
            if 0 < port <= 65535:
                return port
    return None


class PortDiscovery:
    """
    Polls a container until its logs announce a listening port.

    Each tick checks liveness first (a dead container fails immediately),
    then fetches the logs and scans them. Missing or unreadable logs mean
    "not yet", not an error.
    """

    def __init__(
        self,
        is_alive: Callable[[], bool],
        fetch_logs: Callable[[], Optional[str]],
        timeout: float = 30.0,
        interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize port discovery.

        Args:
            is_alive: Returns whether the container is still running
            fetch_logs: Returns the container's logs so far, or None if unavailable
            timeout: Seconds before giving up
            interval: Seconds between polls
            clock: Monotonic clock, injectable for tests
            sleep: Sleep function, injectable for tests
        """
        self.is_alive = is_alive
        self.fetch_logs = fetch_logs
        self.timeout = timeout
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.state = DiscoveryState.POLLING

    def _fetch(self) -> str:
        try:
            return self.fetch_logs() or ""
        except OSError as e:
            logger.debug(f"Log fetch failed, retrying: {e}")
            return ""

    def run(self) -> PortDiscoveryResult:
        """Poll until the port is found, the container exits or time runs out."""
        start = self.clock()
        polls = 0
        logs = ""
        self.state = DiscoveryState.POLLING

        logger.info("Detecting server port from logs...")

        while True:
            polls += 1

            if not self.is_alive():
                logs = self._fetch() or logs
                self.state = DiscoveryState.FAILED
                logger.error("Container stopped unexpectedly during port discovery")
                return PortDiscoveryResult(
                    state=self.state,
                    reason=PortDiscoveryFailureReason.CONTAINER_EXITED,
                    logs=logs,
                    elapsed=self.clock() - start,
                    polls=polls,
                )

            current = self._fetch()
            if current:
                logs = current
                port = find_announced_port(current)
                if port is not None:
                    self.state = DiscoveryState.SUCCEEDED
                    logger.info(f"Detected port: {port}")
                    return PortDiscoveryResult(
                        state=self.state,
                        port=port,
                        logs=logs,
                        elapsed=self.clock() - start,
                        polls=polls,
                    )

            elapsed = self.clock() - start
            if elapsed >= self.timeout:
                self.state = DiscoveryState.FAILED
                logger.error(f"Timeout waiting for port announcement after {elapsed:.1f}s")
                return PortDiscoveryResult(
                    state=self.state,
                    reason=PortDiscoveryFailureReason.TIMEOUT,
                    logs=logs,
                    elapsed=elapsed,
                    polls=polls,
                )

            self.sleep(min(self.interval, self.timeout - elapsed))
