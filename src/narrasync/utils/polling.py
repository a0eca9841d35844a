"""Bounded polling for long-running external jobs.

Synthesis providers that work asynchronously hand back a job handle that
has to be polled until it finishes. Polling here is an iterative loop with
a fixed interval and a hard deadline; it never recurses and never waits
forever.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 600.0
DEFAULT_INTERVAL_SECONDS = 5.0


class PollTimeoutError(Exception):
    """A polled operation did not complete before its deadline."""

    def __init__(self, description: str, elapsed: float, timeout: float) -> None:
        self.description = description
        self.elapsed = elapsed
        self.timeout = timeout
        super().__init__(
            f"{description} did not complete within {timeout:.0f}s "
            f"(gave up after {elapsed:.1f}s)"
        )


def poll_until_complete(
    check: Callable[[], T | None],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    interval: float = DEFAULT_INTERVAL_SECONDS,
    description: str = "operation",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``check`` until it returns a non-None result or the deadline passes.

    Args:
        check: Callable returning the final result, or None while pending.
            Exceptions it raises propagate unchanged.
        timeout: Hard ceiling in seconds.
        interval: Fixed delay between checks in seconds.
        description: Human-readable name used in logs and the timeout error.
        clock: Monotonic clock (injectable for tests).
        sleep: Sleep function (injectable for tests).

    Returns:
        The first non-None value returned by ``check``.

    Raises:
        PollTimeoutError: If the deadline passes first.
    """
    start = clock()
    deadline = start + timeout
    attempts = 0

    while True:
        attempts += 1
        result = check()
        if result is not None:
            elapsed = clock() - start
            logger.debug(f"{description} completed after {attempts} checks ({elapsed:.1f}s)")
            return result

        now = clock()
        if now + interval > deadline:
            raise PollTimeoutError(description, now - start, timeout)

        logger.debug(f"{description} pending (check {attempts}), retrying in {interval:.1f}s")
        sleep(interval)
