"""Detect tunnel readiness from the bore log.

Bore has no health endpoint; its output is the only evidence of what it is
doing. :func:`evaluate` classifies one snapshot of the log and
:class:`ReadinessMonitor` polls the log file until a verdict or a deadline.
"""

import asyncio
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog

from .errors import ParseFailedError
from .session import TunnelStatus

logger = structlog.get_logger()

SUCCESS_MARKERS = ("listening at", "forwarding", "tunnel established")
FAILURE_MARKERS = ("error", "failed", "connection refused")
URL_PATTERN = re.compile(r"https?://[^\s]+")
ADDRESS_PATTERN = re.compile(r"listening at ([^:\s]+):(\d+)")

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_PROGRESS_INTERVAL = 5.0


class Verdict(str, Enum):
    """Outcome of evaluating one log snapshot."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Why the tunnel did not come up."""

    TUNNEL_FAILED = "Tunnel failed"
    TIMEOUT = "Timeout"


@dataclass(frozen=True)
class Readiness:
    """Verdict for one log snapshot."""

    verdict: Verdict
    log_content: str = ""
    reason: FailureReason | None = None

    @property
    def ready(self) -> bool:
        return self.verdict is Verdict.READY

    @property
    def failed(self) -> bool:
        return self.verdict is Verdict.FAILED


@dataclass(frozen=True)
class TunnelAddress:
    """Public address reported by bore."""

    host: str
    port: str


def evaluate(log_content: str | bytes) -> Readiness:
    """Classify a log snapshot.

    Success markers are checked first, so a snapshot containing both a
    success and a failure marker is ready.
    """
    if isinstance(log_content, bytes):
        log_content = log_content.decode("utf-8", errors="replace")

    if any(marker in log_content for marker in SUCCESS_MARKERS) or URL_PATTERN.search(
        log_content
    ):
        return Readiness(Verdict.READY, log_content)

    if any(marker in log_content for marker in FAILURE_MARKERS):
        return Readiness(Verdict.FAILED, log_content, FailureReason.TUNNEL_FAILED)

    return Readiness(Verdict.PENDING, log_content)


def parse_tunnel_address(log_content: str) -> TunnelAddress:
    """Extract the public host and port from ``listening at <host>:<port>``.

    Raises:
        ParseFailedError: If no address line is present.
    """
    match = ADDRESS_PATTERN.search(log_content)
    if not match:
        raise ParseFailedError(
            f"Failed to parse tunnel information from: {log_content}",
            log_content=log_content,
        )
    return TunnelAddress(host=match.group(1), port=match.group(2))


def read_log(log_path: Path) -> str | None:
    """Read the whole log, or None if it is missing or unreadable right now."""
    try:
        return log_path.read_bytes().decode("utf-8", errors="replace")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug("Log not readable yet", path=str(log_path), error=str(e))
        return None


def reconstruct_status(log_content: str | None, alive: bool) -> TunnelStatus:
    """Derive a tunnel's status from its log and whether its PID is alive."""
    verdict = evaluate(log_content).verdict if log_content else Verdict.PENDING
    if not alive:
        return TunnelStatus.TERMINATED if verdict is Verdict.READY else TunnelStatus.FAILED
    if verdict is Verdict.READY:
        return TunnelStatus.READY
    if verdict is Verdict.FAILED:
        return TunnelStatus.FAILED
    return TunnelStatus.STARTING


class ReadinessMonitor:
    """Polls a bore log file until the tunnel is up, fails, or times out."""

    def __init__(
        self,
        log_path: Path,
        timeout_seconds: float,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        progress_interval: float = DEFAULT_PROGRESS_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the monitor.

        Args:
            log_path: Log file written by the bore process.
            timeout_seconds: Deadline for a verdict.
            poll_interval: Seconds between reads.
            progress_interval: Seconds between "still waiting" notices.
            clock: Monotonic clock, injectable for tests.
            sleep: Async sleep, injectable for tests.
        """
        self.log_path = log_path
        self.timeout_seconds = timeout_seconds
        self.poll_interval = poll_interval
        self.progress_interval = progress_interval
        self._clock = clock
        self._sleep = sleep

    def poll(self) -> Readiness:
        """Evaluate the current log content once."""
        content = read_log(self.log_path)
        if content is None:
            return Readiness(Verdict.PENDING)
        return evaluate(content)

    async def wait(self) -> Readiness:
        """Poll until a verdict is reached or the deadline passes.

        Returns:
            The first ready/failed result, or a failed result with reason
            ``Timeout`` carrying whatever the log holds at the deadline.
        """
        logger.info(
            "Waiting for tunnel to establish",
            timeout_seconds=self.timeout_seconds,
        )

        start = self._clock()
        last_progress = 0.0

        while (elapsed := self._clock() - start) < self.timeout_seconds:
            if elapsed - last_progress >= self.progress_interval:
                logger.info(
                    "Still waiting for tunnel",
                    elapsed=int(elapsed),
                    timeout_seconds=self.timeout_seconds,
                )
                last_progress = elapsed

            result = self.poll()
            if result.ready:
                logger.info("Tunnel established")
                return result
            if result.failed:
                return result

            await self._sleep(self.poll_interval)

        return Readiness(
            Verdict.FAILED,
            read_log(self.log_path) or "",
            FailureReason.TIMEOUT,
        )
