"""
Declarative upgrade of a Kubernetes deployment.
"""

import logging
import threading
from typing import Dict, Optional

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
from models import HealthReport, WorkloadRef, WorkloadSpec
from transform import env_changes, snapshot
from wait import wait_until

logger = logging.getLogger(__name__)

NAMESPACE = "portainer"
LABEL_SELECTOR = "app.kubernetes.io/name=portainer"
PROGRESS_DEADLINE_EXCEEDED = "ProgressDeadlineExceeded"


class KubernetesEnvironment(UpgradeEnvironment):
    """Patches the deployment's first container and waits for the rollout."""

    name = "kubernetes"

    def __init__(
        self,
        apps_api,
        oracle: ImageFreshnessOracle,
        skip_pull: bool = False,
        namespace: str = NAMESPACE,
        label_selector: str = LABEL_SELECTOR,
        rollout_timeout: float = 60.0,
        rollout_interval: float = 5.0,
        cancel: Optional[threading.Event] = None,
    ):
        """
        Initialize the Kubernetes environment.

        Args:
            apps_api: kubernetes.client.AppsV1Api instance
            oracle: Image availability check
            skip_pull: Force imagePullPolicy=Never on the new pods
            namespace: Namespace holding the deployment
            label_selector: Selector matching exactly one deployment
            rollout_timeout: Maximum time to wait for the rollout (seconds)
            rollout_interval: Delay between rollout status reads (seconds)
            cancel: Optional cancellation event
        """
        super().__init__(oracle)
        self.apps = apps_api
        self.skip_pull = skip_pull
        self.namespace = namespace
        self.label_selector = label_selector
        self.rollout_timeout = rollout_timeout
        self.rollout_interval = rollout_interval
        self.cancel = cancel
        self._original: Optional[WorkloadSpec] = None
        self._derived: Optional[WorkloadSpec] = None

    def locate(self) -> WorkloadRef:
        result = self.apps.list_namespaced_deployment(
            self.namespace, label_selector=self.label_selector
        )
        if not result.items:
            raise NotFoundError("no deployments found")
        if len(result.items) > 1:
            raise AmbiguousMatchError("multiple deployments found")

        deployment = result.items[0]
        logger.debug(f"Found deployment (deploymentName={deployment.metadata.name})")
        return WorkloadRef(
            id=f"{self.namespace}/{deployment.metadata.name}",
            name=deployment.metadata.name,
            kind="deployment",
        )

    def snapshot(self, ref: WorkloadRef) -> WorkloadSpec:
        deployment = self.apps.read_namespaced_deployment(ref.name, self.namespace)
        containers = deployment.spec.template.spec.containers or []
        if not containers:
            raise NotFoundError(f"deployment {ref.name} has no containers")

        container = containers[0]
        env = [
            f"{var.name}={var.value or ''}"
            for var in container.env or []
            if var.value_from is None
        ]

        return snapshot(
            WorkloadSpec(
                name=ref.name,
                image=container.image,
                env=env,
                labels=dict(deployment.metadata.labels or {}),
                raw={
                    "container": container.name,
                    "imagePullPolicy": container.image_pull_policy,
                },
            )
        )

    def create(
        self, old: WorkloadRef, spec: WorkloadSpec, derived: WorkloadSpec
    ) -> WorkloadRef:
        if not spec.raw.get("container"):
            raise CreateError("unable to determine container name")
        self._original = spec
        self._derived = derived
        return old

    def _patch(self, ref: WorkloadRef, container: Dict, labels: Dict) -> None:
        body = {
            "metadata": {"labels": labels},
            "spec": {"template": {"spec": {"containers": [container]}}},
        }
        self.apps.patch_namespaced_deployment(ref.name, self.namespace, body)

    def cutover(self, old: WorkloadRef, new: WorkloadRef, derived: WorkloadSpec) -> None:
        original = self._original
        changes = env_changes(original.env, derived.env)

        container = {
            "name": original.raw["container"],
            "image": derived.image,
            "env": [{"name": key, "value": value} for key, value in changes.items()],
        }
        if self.skip_pull:
            container["imagePullPolicy"] = "Never"

        labels = {
            key: value
            for key, value in derived.labels.items()
            if original.labels.get(key) != value
        }

        try:
            self._patch(new, container, labels)
        except Exception as e:
            raise CutoverError(f"unable to patch deployment: {e}") from e

    def observe_health(self, new: WorkloadRef) -> HealthReport:
        last = {"status": "", "detail": "", "failed": False}

        def rollout_finished() -> bool:
            logger.debug(f"Waiting for deployment update to complete (deploymentName={new.name})")
            deployment = self.apps.read_namespaced_deployment_status(new.name, self.namespace)
            status = deployment.status
            desired = deployment.spec.replicas if deployment.spec.replicas is not None else 1
            updated = status.updated_replicas or 0
            available = status.available_replicas or 0
            total = status.replicas or 0
            last["status"] = f"updated={updated}/{desired} total={total} available={available}"

            for condition in status.conditions or []:
                if condition.type == "Progressing" and condition.reason == PROGRESS_DEADLINE_EXCEEDED:
                    last["status"] = "progress deadline exceeded"
                    last["detail"] = condition.message or ""
                    last["failed"] = True
                    return True

            # Same gates as `kubectl rollout status`
            if (status.observed_generation or 0) < (deployment.metadata.generation or 0):
                return False
            if updated < desired:
                return False
            if total > updated:
                # old replicas are pending termination
                return False
            return available >= updated

        try:
            wait_until(
                rollout_finished,
                self.rollout_timeout,
                self.rollout_interval,
                cancel=self.cancel,
            )
        except WaitTimeoutError:
            logger.error(f"Unable to wait for deployment update to complete (deploymentName={new.name})")
            return HealthReport(healthy=False, status=last["status"], timed_out=True)
        except WaitCancelledError:
            return HealthReport(healthy=False, status="cancelled")

        if last["failed"]:
            logger.error(
                f"Deployment update failed (deploymentName={new.name}, message={last['detail']})"
            )
            return HealthReport(healthy=False, status=last["status"], detail=last["detail"])

        return HealthReport(healthy=True, status=last["status"])

    def commit(self, old: WorkloadRef, new: WorkloadRef) -> WorkloadRef:
        logger.debug(f"Deployment rollout completed (deploymentName={new.name})")
        return new

    def rollback(self, old: WorkloadRef, new: Optional[WorkloadRef]) -> None:
        if new is None or self._original is None or self._derived is None:
            return

        original = self._original
        env = []
        for key in env_changes(original.env, self._derived.env):
            value = original.env_value(key)
            if value is not None:
                env.append({"name": key, "value": value})
            else:
                env.append({"name": key, "$patch": "delete"})

        container = {"name": original.raw["container"], "image": original.image, "env": env}
        if self.skip_pull and original.raw.get("imagePullPolicy"):
            container["imagePullPolicy"] = original.raw["imagePullPolicy"]

        # None removes labels the upgrade added
        labels = {
            key: original.labels.get(key)
            for key, value in self._derived.labels.items()
            if original.labels.get(key) != value
        }

        try:
            self._patch(old, container, labels)
            logger.info(f"Original deployment definition restored (deploymentName={old.name})")
        except Exception as e:
            logger.error(f"Unable to restore deployment {old.name}, please restore it manually: {e}")
