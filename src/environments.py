"""
Capability interface implemented by each execution environment.

The upgrade state machine is the same everywhere; what differs is how a
successor is created, how traffic moves to it and how its health is read.
"""

import logging
from typing import Optional

from images import ImageFreshnessOracle
from models import HealthReport, WorkloadRef, WorkloadSpec

logger = logging.getLogger(__name__)


class UpgradeEnvironment:
    """Platform primitives driven by ``WorkloadUpgrader``."""

    name = "environment"

    def __init__(self, oracle: ImageFreshnessOracle):
        self.oracle = oracle

    def locate(self) -> WorkloadRef:
        """Find the running workload (raises LocateError)."""
        raise NotImplementedError

    def snapshot(self, ref: WorkloadRef) -> WorkloadSpec:
        """Capture the workload's configuration as an unaliased copy."""
        raise NotImplementedError

    def create(
        self, old: WorkloadRef, spec: WorkloadSpec, derived: WorkloadSpec
    ) -> WorkloadRef:
        """Create the successor (raises CreateError)."""
        raise NotImplementedError

    def cutover(self, old: WorkloadRef, new: WorkloadRef, derived: WorkloadSpec) -> None:
        """Move service responsibility to the successor (raises CutoverError)."""
        raise NotImplementedError

    def observe_health(self, new: WorkloadRef) -> HealthReport:
        """Watch the successor until it is healthy, unhealthy or timed out."""
        raise NotImplementedError

    def commit(self, old: WorkloadRef, new: WorkloadRef) -> WorkloadRef:
        """
        Discard the original and return the successor's final identity.

        Failures here are logged, never raised.
        """
        raise NotImplementedError

    def rollback(self, old: WorkloadRef, new: Optional[WorkloadRef]) -> None:
        """
        Restore the original and discard the successor.

        Each step is best effort; failures are logged, never raised.
        """
        raise NotImplementedError
