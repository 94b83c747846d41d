"""
Bounded polling helper for platforms that only expose poll-based status.
"""

import logging
import threading
import time
from typing import Callable, Optional

from errors import WaitCancelledError, WaitTimeoutError

logger = logging.getLogger(__name__)


def wait_until(
    condition: Callable[[], bool],
    timeout: float,
    interval: float,
    cancel: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Call ``condition`` until it returns True.

    The cancellation event is checked between attempts, never while the
    condition itself is running.

    Args:
        condition: Zero-argument predicate
        timeout: Total time budget (seconds)
        interval: Delay between attempts (seconds)
        cancel: Optional event that aborts the wait when set
        clock: Monotonic clock, injectable for tests
        sleep: Sleep function, injectable for tests

    Raises:
        WaitTimeoutError: If the timeout elapsed first
        WaitCancelledError: If ``cancel`` was set first
    """
    start = clock()

    while True:
        if cancel is not None and cancel.is_set():
            raise WaitCancelledError("wait cancelled")

        if clock() - start > timeout:
            raise WaitTimeoutError(f"timeout after {timeout:.0f}s")

        if condition():
            return

        logger.debug(f"Condition not met yet, retrying in {interval}s")
        if cancel is not None:
            # Event.wait returns early when the event is set
            cancel.wait(interval)
        else:
            sleep(interval)
