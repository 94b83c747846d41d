"""
Declarative upgrade of a Docker swarm service.

The platform performs the rolling update itself; completion of the rollout
stands in for the successor's health check.
"""

import copy
import logging
import threading
from typing import Optional

from docker.types import UpdateConfig

from environments import UpgradeEnvironment
from errors import (
    AmbiguousMatchError,
    CreateError,
    CutoverError,
    NotFoundError,
    WaitCancelledError,
    WaitTimeoutError,
)
from images import ImageFreshnessOracle
from locator import WorkloadLocator, WorkloadProfile, container_locator
from models import HealthReport, WorkloadRef, WorkloadSpec
from transform import snapshot
from wait import wait_until

logger = logging.getLogger(__name__)

SERVICE_NAME_LABEL = "com.docker.swarm.service.name"
UPDATE_TERMINAL_STATES = {"completed", "paused", "rollback_completed", "rollback_paused"}


class SwarmEnvironment(UpgradeEnvironment):
    """Updates the service in place with a stop-first rolling update."""

    name = "swarm"

    def __init__(
        self,
        api,
        profile: WorkloadProfile,
        oracle: ImageFreshnessOracle,
        rollout_timeout: float = 60.0,
        rollout_interval: float = 5.0,
        cancel: Optional[threading.Event] = None,
    ):
        super().__init__(oracle)
        self.api = api
        self.profile = profile
        self.rollout_timeout = rollout_timeout
        self.rollout_interval = rollout_interval
        self.cancel = cancel
        self.container_locator: WorkloadLocator = container_locator(api, profile)
        self._original_template: Optional[dict] = None
        self._original_update_config: Optional[dict] = None
        self._version: Optional[int] = None

    def locate(self) -> WorkloadRef:
        container = self.container_locator.locate()
        attrs = self.api.inspect_container(container.id)
        labels = (attrs.get("Config") or {}).get("Labels") or {}

        service_name = labels.get(SERVICE_NAME_LABEL)
        if not service_name:
            raise NotFoundError("unable to find service name")

        # the name filter matches prefixes
        services = [
            service
            for service in self.api.services(filters={"name": service_name})
            if service.get("Spec", {}).get("Name") == service_name
        ]

        if not services:
            raise NotFoundError(f"unable to find service {service_name}")
        if len(services) > 1:
            raise AmbiguousMatchError(f"multiple services found named {service_name}")

        return WorkloadRef(id=services[0]["ID"], name=service_name, kind="service")

    def snapshot(self, ref: WorkloadRef) -> WorkloadSpec:
        service = self.api.inspect_service(ref.id)
        # Cutover submits against the index read together with the template
        self._version = service["Version"]["Index"]
        self._original_update_config = service["Spec"].get("UpdateConfig") or {}
        task_template = service["Spec"]["TaskTemplate"]
        container_spec = task_template.get("ContainerSpec") or {}
        networks = [n.get("Target") for n in task_template.get("Networks") or []]

        return snapshot(
            WorkloadSpec(
                name=service["Spec"].get("Name", ref.name),
                image=container_spec.get("Image", ""),
                env=container_spec.get("Env") or [],
                labels=container_spec.get("Labels") or {},
                networks=networks,
                hostname=container_spec.get("Hostname"),
                healthcheck=container_spec.get("Healthcheck"),
                raw=task_template,
            )
        )

    def create(
        self, old: WorkloadRef, spec: WorkloadSpec, derived: WorkloadSpec
    ) -> WorkloadRef:
        if not derived.raw.get("ContainerSpec"):
            raise CreateError("service has no container spec")
        self._original_template = copy.deepcopy(spec.raw)
        # The service object itself is the successor
        return old

    def _task_template(self, derived: WorkloadSpec) -> dict:
        # Hostname and health check stay as declared by the service
        template = copy.deepcopy(derived.raw)
        container_spec = template["ContainerSpec"]
        container_spec["Image"] = derived.image
        container_spec["Env"] = derived.env
        container_spec["Labels"] = derived.labels
        return template

    def cutover(self, old: WorkloadRef, new: WorkloadRef, derived: WorkloadSpec) -> None:
        try:
            response = self.api.update_service(
                new.id,
                self._version,
                task_template=self._task_template(derived),
                update_config=UpdateConfig(failure_action="rollback", order="stop-first"),
                fetch_current_spec=True,
            )
        except Exception as e:
            raise CutoverError(f"unable to update service: {e}") from e

        warnings = (response or {}).get("Warnings")
        if warnings:
            logger.warning(f"Warnings during service update (serviceId={new.id}): {warnings}")

    def observe_health(self, new: WorkloadRef) -> HealthReport:
        last = {"state": ""}

        def rollout_finished() -> bool:
            logger.debug(f"Waiting for service update to complete (serviceId={new.id})")
            service = self.api.inspect_service(new.id)
            last["state"] = (service.get("UpdateStatus") or {}).get("State", "")
            return last["state"] in UPDATE_TERMINAL_STATES

        try:
            wait_until(
                rollout_finished,
                self.rollout_timeout,
                self.rollout_interval,
                cancel=self.cancel,
            )
        except WaitTimeoutError:
            logger.error(f"Unable to wait for service update to complete (serviceId={new.id})")
            return HealthReport(healthy=False, status=last["state"], timed_out=True)
        except WaitCancelledError:
            return HealthReport(healthy=False, status="cancelled")

        return HealthReport(healthy=last["state"] == "completed", status=last["state"])

    def commit(self, old: WorkloadRef, new: WorkloadRef) -> WorkloadRef:
        logger.debug(f"Service rollout completed (serviceId={new.id})")
        return new

    def rollback(self, old: WorkloadRef, new: Optional[WorkloadRef]) -> None:
        if new is None or self._original_template is None:
            return

        try:
            service = self.api.inspect_service(old.id)
            state = (service.get("UpdateStatus") or {}).get("State", "")
            if state == "rollback_completed":
                logger.info(f"Service was rolled back by swarm (serviceId={old.id})")
                return

            self.api.update_service(
                old.id,
                service["Version"]["Index"],
                task_template=self._original_template,
                update_config=self._original_update_config,
                fetch_current_spec=True,
            )
            logger.info(f"Original service definition restored (serviceId={old.id})")
        except Exception as e:
            logger.error(f"Unable to restore service {old.id}, please restore it manually: {e}")
