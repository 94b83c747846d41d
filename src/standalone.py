"""
Replace-and-verify upgrade of a container on a single Docker host.
"""

import logging
import sys
from typing import List, Optional

from environments import UpgradeEnvironment
from errors import CreateError, CutoverError, HealthCheckError
from health import HealthMonitor
from images import ImageFreshnessOracle
from locator import WorkloadProfile, container_locator
from models import (
    HealthObservation,
    HealthReport,
    HealthStatus,
    WorkloadRef,
    WorkloadSpec,
)
from transform import build_temporary_name, snapshot

logger = logging.getLogger(__name__)

EXITED_STATES = {"exited", "dead"}
UNJOINABLE_NETWORK_MODES = {"host", "none"}


class StandaloneEnvironment(UpgradeEnvironment):
    """Creates a sibling container, swaps it in and removes the original."""

    name = "standalone"

    def __init__(
        self,
        api,
        profile: WorkloadProfile,
        oracle: ImageFreshnessOracle,
        monitor: Optional[HealthMonitor] = None,
    ):
        """
        Initialize the standalone environment.

        Args:
            api: Low-level Docker API client (docker.APIClient)
            profile: Description of the workload to find
            oracle: Image availability check
            monitor: Health monitor for the new container
        """
        super().__init__(oracle)
        self.api = api
        self.profile = profile
        self.monitor = monitor or HealthMonitor()
        self.locator = container_locator(api, profile)

    def locate(self) -> WorkloadRef:
        return self.locator.locate()

    def snapshot(self, ref: WorkloadRef) -> WorkloadSpec:
        logger.debug(f"Inspecting container (containerId={ref.short_id})")
        attrs = self.api.inspect_container(ref.id)
        config = attrs.get("Config") or {}
        networks = (attrs.get("NetworkSettings") or {}).get("Networks") or {}

        return snapshot(
            WorkloadSpec(
                name=str(attrs.get("Name", ref.name)).lstrip("/"),
                image=config.get("Image", ""),
                env=config.get("Env") or [],
                labels=config.get("Labels") or {},
                networks=list(networks),
                hostname=config.get("Hostname"),
                healthcheck=config.get("Healthcheck"),
                host_config=attrs.get("HostConfig") or {},
                raw=config,
            )
        )

    def create(
        self, old: WorkloadRef, spec: WorkloadSpec, derived: WorkloadSpec
    ) -> WorkloadRef:
        name = build_temporary_name(spec.name)
        logger.debug(f"Creating new container (containerName={name}, image={derived.image})")

        body = dict(derived.raw)
        body["Image"] = derived.image
        body["Env"] = derived.env
        body["Labels"] = derived.labels
        body["Hostname"] = derived.hostname or ""
        if derived.healthcheck is None:
            body.pop("Healthcheck", None)
        else:
            body["Healthcheck"] = derived.healthcheck
        body["HostConfig"] = derived.host_config

        try:
            response = self.api.create_container_from_config(body, name=name)
        except Exception as e:
            raise CreateError(f"unable to create new container: {e}") from e

        new = WorkloadRef(id=response["Id"], name=name)

        networks = self._joinable_networks(derived)
        # Networks are joined one by one after creation
        logger.debug(f"Joining container to Docker networks (containerId={new.short_id}, networks={networks})")
        for network in networks:
            try:
                self.api.connect_container_to_network(new.id, network)
            except Exception as e:
                raise CreateError(
                    f"unable to join container to network {network}: {e}", workload=new
                ) from e

        return new

    def _joinable_networks(self, spec: WorkloadSpec) -> List[str]:
        """Networks to join after creation, excluding the one it is created on."""
        mode = spec.host_config.get("NetworkMode") or "default"
        if mode in UNJOINABLE_NETWORK_MODES or mode.startswith("container:"):
            return []
        primary = "bridge" if mode == "default" else mode
        return [network for network in spec.networks if network != primary]

    def cutover(self, old: WorkloadRef, new: WorkloadRef, derived: WorkloadSpec) -> None:
        # Stop first so both containers never hold the same host resources
        logger.debug(f"Stopping old container (containerId={old.short_id})")
        try:
            self.api.stop(old.id)
        except Exception as e:
            raise CutoverError(f"unable to stop old container: {e}") from e

        logger.debug(f"Starting new container (containerId={new.short_id})")
        try:
            self.api.start(new.id)
        except Exception as e:
            raise CutoverError(f"unable to start new container: {e}") from e

    def observe_health(self, new: WorkloadRef) -> HealthReport:
        logger.debug(f"Monitoring new container health (containerId={new.short_id})")
        return self.monitor.watch(lambda: self._read_health(new))

    def _read_health(self, ref: WorkloadRef) -> HealthObservation:
        try:
            attrs = self.api.inspect_container(ref.id)
        except Exception as e:
            raise HealthCheckError(f"unable to inspect new container: {e}") from e

        state = attrs.get("State") or {}
        health = state.get("Health")

        if health is None:
            status = state.get("Status", "")
            if status in EXITED_STATES:
                return HealthObservation(
                    HealthStatus.UNHEALTHY,
                    detail=f"container exited unexpectedly (exitCode={state.get('ExitCode')})",
                    declared=False,
                )
            return HealthObservation(HealthStatus.HEALTHY, detail=status, declared=False)

        status = health.get("Status", "")
        detail = str(health.get("Log") or "")
        if status == "healthy":
            return HealthObservation(HealthStatus.HEALTHY, detail)
        if status == "unhealthy":
            return HealthObservation(HealthStatus.UNHEALTHY, detail)
        return HealthObservation(HealthStatus.PENDING, detail)

    def commit(self, old: WorkloadRef, new: WorkloadRef) -> WorkloadRef:
        logger.debug(f"Removing old container (containerId={old.short_id})")
        try:
            self.api.remove_container(old.id, force=True)
        except Exception as e:
            # The new container is live; leave cleanup to the operator
            logger.warning(f"Unable to remove old container {old.short_id}: {e}")

        try:
            self.api.rename(new.id, old.name)
        except Exception as e:
            logger.error(f"Unable to rename container {new.short_id} to {old.name}: {e}")
            return new

        return WorkloadRef(id=new.id, name=old.name)

    def rollback(self, old: WorkloadRef, new: Optional[WorkloadRef]) -> None:
        logger.debug("An error occurred during the update process - removing newly created container")

        try:
            self.api.start(old.id)
        except Exception as e:
            logger.error(
                f"Unable to restart container {old.short_id}, please restart it manually: {e}"
            )

        if new is None:
            return

        self._print_logs(new)

        try:
            self.api.remove_container(new.id, force=True)
        except Exception as e:
            logger.error(
                f"Unable to remove temporary container {new.short_id}, please remove it manually: {e}"
            )

    def _print_logs(self, ref: WorkloadRef) -> None:
        logger.debug(f"Printing container logs to stdout (containerId={ref.short_id})")
        try:
            logs = self.api.logs(ref.id, stdout=True, stderr=True)
        except Exception as e:
            logger.error(f"Unable to get container logs: {e}")
            return

        if isinstance(logs, bytes):
            logs = logs.decode("utf-8", errors="replace")
        sys.stdout.write(logs)
        sys.stdout.flush()
