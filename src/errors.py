"""
Error types raised while updating a workload.
"""

from typing import Optional

from models import WorkloadRef

# Reason reported for every run that failed after the workload was touched
UPDATE_FAILURE = "update failure"


class UpdaterError(Exception):
    """Base class for all updater errors."""


class ConfigError(UpdaterError):
    """Invalid or incomplete configuration."""


class LocateError(UpdaterError):
    """The target workload could not be located."""


class NotFoundError(LocateError):
    """No workload matched any discovery strategy."""


class AmbiguousMatchError(LocateError):
    """More than one workload matched a strategy that requires a single match."""


class PullError(UpdaterError):
    """The target image could not be pulled."""


class CreateError(UpdaterError):
    """The successor workload could not be created.

    ``workload`` is set when the workload object exists but was left in a
    partial state (e.g. some networks were not joined).
    """

    def __init__(self, message: str, workload: Optional[WorkloadRef] = None):
        super().__init__(message)
        self.workload = workload


class CutoverError(UpdaterError):
    """Stopping the original or starting the successor failed."""


class HealthCheckError(UpdaterError):
    """The successor's health status could not be read."""


class WaitTimeoutError(UpdaterError):
    """A bounded wait elapsed before its condition was met."""


class WaitCancelledError(UpdaterError):
    """A bounded wait was interrupted by a cancellation signal."""
