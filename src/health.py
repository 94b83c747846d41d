"""
Health monitoring of a freshly started workload.
"""

import logging
import threading
import time
from typing import Callable, Optional

from errors import WaitCancelledError
from models import HealthObservation, HealthReport, HealthStatus

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Polls a workload's health status with a grace period and bounded retries."""

    def __init__(
        self,
        grace_period: float = 15.0,
        retries: int = 5,
        interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        cancel: Optional[threading.Event] = None,
    ):
        """
        Initialize the health monitor.

        Args:
            grace_period: Delay before the first read (seconds)
            retries: Number of re-reads while the health check is still starting
            interval: Delay between reads (seconds)
            sleep: Sleep function, injectable for tests
            cancel: Optional event that aborts the watch when set
        """
        self.grace_period = grace_period
        self.retries = retries
        self.interval = interval
        self.sleep = sleep
        self.cancel = cancel

    def _pause(self, seconds: float) -> None:
        if self.cancel is None:
            self.sleep(seconds)
            return

        # Event.wait returns early when the event is set
        if self.cancel.is_set() or self.cancel.wait(seconds):
            raise WaitCancelledError("health check cancelled")

    def watch(self, read: Callable[[], HealthObservation]) -> HealthReport:
        """
        Observe health until healthy, unhealthy or out of retries.

        Errors raised by ``read`` (transport failures) are not caught.

        Args:
            read: Reads and classifies the platform's current status

        Returns:
            HealthReport describing the outcome

        Raises:
            WaitCancelledError: If the cancellation event was set
        """
        # A workload that crashes right after start still reads as running
        logger.debug(f"Waiting {self.grace_period}s before reading health status")
        self._pause(self.grace_period)
        observation = read()

        if not observation.declared:
            # No health check: the reader already flagged exited workloads
            healthy = observation.status is HealthStatus.HEALTHY
            if healthy:
                logger.info(
                    "No health check found for the workload. Assuming health check passed."
                )
            return HealthReport(
                healthy=healthy,
                status=observation.status.value,
                detail=observation.detail,
            )

        attempt = 0
        while True:
            if observation.status is HealthStatus.HEALTHY:
                return HealthReport(healthy=True, status=observation.status.value)

            if observation.status is HealthStatus.UNHEALTHY:
                logger.error(
                    f"Health check failed (status={observation.status.value}, logs={observation.detail})"
                )
                return HealthReport(
                    healthy=False,
                    status=observation.status.value,
                    detail=observation.detail,
                )

            if attempt >= self.retries:
                break

            attempt += 1
            logger.debug(f"Health check in progress (attempt {attempt}/{self.retries})")
            self._pause(self.interval)
            observation = read()

        logger.error(
            f"Health check timed out (status={observation.status.value}, logs={observation.detail})"
        )
        return HealthReport(
            healthy=False,
            status=observation.status.value,
            detail=observation.detail,
            timed_out=True,
        )
