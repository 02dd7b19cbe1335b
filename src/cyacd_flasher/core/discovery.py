"""
Device discovery with an explicit retry policy.

Discovery is the only step that retries: a finder is polled until it returns
a transport, the attempt budget is spent, or the overall deadline passes.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import CommunicationError, DeviceNotFoundError
from ..protocol.transport import Transport

logger = logging.getLogger(__name__)

Finder = Callable[[], Optional[Transport]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attributes:
        max_attempts: Finder calls before giving up
        delay: Seconds between attempts (the first attempt is immediate)
        timeout: Overall wall-clock budget in seconds
    """
    max_attempts: int = 10
    delay: float = 0.2
    timeout: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay < 0 or self.timeout < 0:
            raise ValueError("delay and timeout must be >= 0")


def discover_transport(
    finder: Finder,
    policy: RetryPolicy = RetryPolicy(),
    *,
    label: str = "device",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Transport:
    """
    Poll ``finder`` under ``policy``.

    Finder errors count as a miss and are logged; the search goes on.

    Raises:
        DeviceNotFoundError: Attempts exhausted or timeout reached
    """
    deadline = clock() + policy.timeout
    last_error: Optional[Exception] = None

    for attempt in range(1, policy.max_attempts + 1):
        if attempt > 1:
            if clock() + policy.delay > deadline:
                raise DeviceNotFoundError(
                    f"Search for {label} timed out after {policy.timeout}s",
                    attempts=attempt - 1,
                )
            sleep(policy.delay)

        try:
            transport = finder()
        except CommunicationError as e:
            last_error = e
            logger.warning(f"Failed to open {label} (attempt {attempt}): {e}")
            continue

        if transport is not None:
            logger.debug(f"Found {label} on attempt {attempt}")
            return transport
        logger.debug(f"{label} not found (attempt {attempt}/{policy.max_attempts})")

    reason = f": {last_error}" if last_error else ""
    raise DeviceNotFoundError(
        f"No {label} found after {policy.max_attempts} attempts{reason}",
        attempts=policy.max_attempts,
    )
