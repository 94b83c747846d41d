"""
Upgrade of a Nomad service job running the workload as a docker task.

The job is re-registered with the new task image; Nomad replaces the
allocations and the new allocation's client status stands in for the
successor's health check.
"""

import copy
import logging
import threading
from typing import Dict, List, Optional, Tuple

from clients import NomadRestClient
from environments import UpgradeEnvironment
from errors import (
    CreateError,
    CutoverError,
    HealthCheckError,
    NotFoundError,
    WaitCancelledError,
    WaitTimeoutError,
)
from images import ImageFreshnessOracle
from locator import LocateStrategy, WorkloadLocator, WorkloadProfile
from models import HealthReport, WorkloadRef, WorkloadSpec
from transform import snapshot
from wait import wait_until

logger = logging.getLogger(__name__)

SECOND = 1_000_000_000  # Nomad durations are nanoseconds

# Mirrors the Nomad API's default update stanza
DEFAULT_UPDATE_STRATEGY = {
    "Stagger": 30 * SECOND,
    "MaxParallel": 1,
    "HealthCheck": "checks",
    "MinHealthyTime": 10 * SECOND,
    "HealthyDeadline": 300 * SECOND,
    "ProgressDeadline": 600 * SECOND,
    "AutoRevert": False,
    "AutoPromote": False,
    "Canary": 0,
}

FAILED_CLIENT_STATUSES = {"failed", "lost", "complete"}


def _find_task(job: Dict, group_name: str, task_name: str) -> Dict:
    for group in job.get("TaskGroups") or []:
        if group.get("Name") != group_name:
            continue
        for task in group.get("Tasks") or []:
            if task.get("Name") == task_name:
                return task
    raise NotFoundError(f"task {group_name}/{task_name} not found in job {job.get('ID')}")


def _split_task(ref: WorkloadRef) -> Tuple[str, str]:
    group, _, task = (ref.task or "").partition("/")
    return group, task


class NomadTaskImageStrategy(LocateStrategy):
    """First docker task of a service job whose image has a known prefix."""

    name = "findByTaskImage"

    def __init__(self, client: NomadRestClient, prefixes):
        self.client = client
        self.prefixes = tuple(prefixes)

    def find(self) -> Optional[WorkloadRef]:
        for stub in self.client.list_jobs():
            if stub.get("Type") != "service":
                continue

            job = self.client.get_job(stub["ID"])
            for group in job.get("TaskGroups") or []:
                for task in group.get("Tasks") or []:
                    if task.get("Driver") != "docker":
                        continue
                    image = (task.get("Config") or {}).get("image")
                    if isinstance(image, str) and image.startswith(self.prefixes):
                        return WorkloadRef(
                            id=job["ID"],
                            name=task["Name"],
                            kind="job",
                            task=f"{group['Name']}/{task['Name']}",
                        )
        return None


class NomadJobEnvironment(UpgradeEnvironment):
    """Re-registers the job and follows the replacement allocation."""

    name = "nomad"

    def __init__(
        self,
        client: NomadRestClient,
        profile: WorkloadProfile,
        oracle: ImageFreshnessOracle,
        rollout_timeout: float = 60.0,
        rollout_interval: float = 5.0,
        cancel: Optional[threading.Event] = None,
    ):
        """
        Initialize the Nomad environment.

        Args:
            client: Nomad REST client
            profile: Description of the workload to find
            oracle: Image availability check
            rollout_timeout: Maximum time to wait for the new allocation (seconds)
            rollout_interval: Delay between allocation reads (seconds)
            cancel: Optional cancellation event
        """
        super().__init__(oracle)
        self.client = client
        self.profile = profile
        self.rollout_timeout = rollout_timeout
        self.rollout_interval = rollout_interval
        self.cancel = cancel
        self.locator = WorkloadLocator(
            [NomadTaskImageStrategy(client, profile.image_prefixes)]
        )
        self._pending_job: Optional[Dict] = None
        self._prior_version: Optional[int] = None
        self._new_version: Optional[int] = None

    def locate(self) -> WorkloadRef:
        return self.locator.locate()

    def snapshot(self, ref: WorkloadRef) -> WorkloadSpec:
        job = self.client.get_job(ref.id)
        group, task_name = _split_task(ref)
        task = _find_task(job, group, task_name)

        env = [f"{key}={value}" for key, value in (task.get("Env") or {}).items()]
        return snapshot(
            WorkloadSpec(
                name=task_name,
                image=(task.get("Config") or {}).get("image", ""),
                env=env,
                labels=job.get("Meta") or {},
                raw=job,
            )
        )

    def create(
        self, old: WorkloadRef, spec: WorkloadSpec, derived: WorkloadSpec
    ) -> WorkloadRef:
        job = copy.deepcopy(derived.raw)
        group, task_name = _split_task(old)
        try:
            task = _find_task(job, group, task_name)
        except NotFoundError as e:
            raise CreateError(str(e)) from e

        task.setdefault("Config", {})["image"] = derived.image
        task["Env"] = dict(entry.partition("=")[::2] for entry in derived.env)
        job["Meta"] = dict(derived.labels)
        job["Update"] = dict(DEFAULT_UPDATE_STRATEGY)

        logger.info(
            f"Updating Portainer agent (image={derived.image}, task={task_name}, job={old.id})"
        )
        self._pending_job = job
        self._prior_version = spec.raw.get("Version")
        return old

    def cutover(self, old: WorkloadRef, new: WorkloadRef, derived: WorkloadSpec) -> None:
        job = self._pending_job
        try:
            response = self.client.register_job(job, job.get("JobModifyIndex", 0))
            registered = self.client.get_job(new.id)
        except Exception as e:
            raise CutoverError(f"failed to register job: {e}") from e

        self._new_version = registered.get("Version")
        logger.debug(
            f"Job registered (job={new.id}, version={self._new_version}, warnings={response.get('Warnings', '')})"
        )

    def _new_allocations(self, job_id: str) -> List[Dict]:
        return [
            alloc
            for alloc in self.client.job_allocations(job_id)
            if alloc.get("JobVersion") == self._new_version
        ]

    def observe_health(self, new: WorkloadRef) -> HealthReport:
        result: Dict = {}

        def allocation_settled() -> bool:
            logger.debug(f"Polling allocations (job={new.id}, version={self._new_version})")
            try:
                allocations = self._new_allocations(new.id)
            except Exception as e:
                raise HealthCheckError(f"failed to get allocations for job: {e}") from e

            for alloc in allocations:
                if alloc.get("ClientStatus") in FAILED_CLIENT_STATUSES:
                    result["failed"] = alloc
                    return True
            for alloc in allocations:
                if alloc.get("ClientStatus") == "running":
                    result["running"] = alloc
                    return True
            return False

        try:
            wait_until(
                allocation_settled,
                self.rollout_timeout,
                self.rollout_interval,
                cancel=self.cancel,
            )
        except WaitTimeoutError:
            logger.error(f"Timed out waiting for allocation to start (job={new.id})")
            return HealthReport(healthy=False, status="pending", timed_out=True)
        except WaitCancelledError:
            return HealthReport(healthy=False, status="cancelled")

        if "running" in result:
            logger.debug(f"Allocation success (allocation={result['running']['ID']})")
            return HealthReport(healthy=True, status="running")

        alloc = result["failed"]
        output = self._allocation_output(alloc, new)
        logger.error(
            f"Allocation failed (allocation={alloc['ID']}, status={alloc['ClientStatus']}, output={output})"
        )
        return HealthReport(
            healthy=False, status=f"allocation {alloc['ClientStatus']}", detail=output
        )

    def _allocation_output(self, alloc: Dict, ref: WorkloadRef) -> str:
        _, task_name = _split_task(ref)
        try:
            return self.client.allocation_logs(alloc["ID"], task_name)
        except Exception as e:
            logger.warning(f"Unable to read allocation logs (allocation={alloc['ID']}): {e}")
            return ""

    def commit(self, old: WorkloadRef, new: WorkloadRef) -> WorkloadRef:
        # Nomad already stopped the previous allocations
        return new

    def rollback(self, old: WorkloadRef, new: Optional[WorkloadRef]) -> None:
        if new is None or self._new_version is None or self._prior_version is None:
            return

        try:
            self.client.revert_job(old.id, self._prior_version)
            logger.info(f"Job reverted (job={old.id}, version={self._prior_version})")
        except Exception as e:
            logger.error(
                f"Unable to revert job {old.id} to version {self._prior_version}, please revert it manually: {e}"
            )
