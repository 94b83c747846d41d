"""
Data models for the Portainer updater.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# Reserved keys used to stamp the update correlation token on a workload
UPDATE_ID_ENV = "UPDATE_ID"
UPDATE_SCHEDULE_LABEL = "io.portainer.update.scheduleId"


@dataclass(frozen=True)
class WorkloadRef:
    """Reference to a running workload instance."""

    id: str  # container ID, service ID, namespace/deployment or job ID
    name: str  # human readable name
    kind: str = "container"  # container, service, deployment, job
    task: Optional[str] = None  # group/task pair for scheduler jobs

    @property
    def short_id(self) -> str:
        return self.id[:12]


@dataclass
class WorkloadSpec:
    """Declarative configuration of a workload."""

    name: str
    image: str
    env: List[str] = field(default_factory=list)  # "KEY=value" entries
    labels: Dict[str, str] = field(default_factory=dict)
    networks: List[str] = field(default_factory=list)
    hostname: Optional[str] = None
    healthcheck: Optional[Dict[str, Any]] = None
    host_config: Dict[str, Any] = field(default_factory=dict)  # copied verbatim
    raw: Dict[str, Any] = field(default_factory=dict)  # platform payload

    def env_value(self, key: str) -> Optional[str]:
        """Return the last value set for ``key`` in the environment."""
        value = None
        prefix = f"{key}="
        for entry in self.env:
            if entry.startswith(prefix):
                value = entry[len(prefix) :]
        return value


class ConfigMutator:
    """Policy applied to a derived spec after the built-in transform rules."""

    def apply(self, spec: WorkloadSpec) -> None:
        raise NotImplementedError


@dataclass
class UpgradeRequest:
    """Input of an upgrade run."""

    image: str
    schedule_id: str
    mutator: Optional[ConfigMutator] = None


class HealthStatus(Enum):
    """Classified health observation."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    PENDING = "pending"


@dataclass
class HealthObservation:
    """One read of the platform's health status."""

    status: HealthStatus
    detail: str = ""
    declared: bool = True  # False when the workload has no health check


@dataclass
class HealthReport:
    """Result of a health monitoring pass."""

    healthy: bool
    status: str
    detail: str = ""
    timed_out: bool = False


class OutcomeStatus(Enum):
    """Terminal status of an upgrade run."""

    UP_TO_DATE = "up_to_date"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class UpgradeOutcome:
    """Result of an upgrade run."""

    status: OutcomeStatus
    workload: Optional[WorkloadRef] = None
    reason: Optional[str] = None
    image: Optional[str] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration_seconds: Optional[float] = None
    rolled_back: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is not OutcomeStatus.FAILED
