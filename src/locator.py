"""
Discovery of the running workload to update.

Strategies are tried in order and the first match wins. A strategy that
finds nothing lets the chain fall through; ambiguity and API errors abort the
whole lookup.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from errors import AmbiguousMatchError, LocateError, NotFoundError
from models import WorkloadRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkloadProfile:
    """How to recognise a given kind of workload."""

    name: str
    marker_label: str
    image_prefixes: Tuple[str, ...]
    log_banner: str


AGENT = WorkloadProfile(
    name="agent",
    marker_label="io.portainer.agent=true",
    image_prefixes=("portainer/agent", "portainerci/agent", "portainercd/agent"),
    log_banner="Starting Agent API server",
)

SERVER = WorkloadProfile(
    name="portainer",
    marker_label="io.portainer.server=true",
    image_prefixes=("portainer/portainer", "portainerci/portainer"),
    log_banner="starting Portainer",
)


class LocateStrategy:
    """One way of finding the workload."""

    name = "strategy"

    def find(self) -> Optional[WorkloadRef]:
        """Return the matching workload, or None when nothing matched."""
        raise NotImplementedError


class WorkloadLocator:
    """Runs a prioritized chain of strategies."""

    def __init__(self, strategies: Sequence[LocateStrategy]):
        self.strategies = list(strategies)

    def locate(self) -> WorkloadRef:
        """
        Find the workload.

        Returns:
            Reference of the first match

        Raises:
            AmbiguousMatchError: If a strategy matched several workloads
            LocateError: If a strategy failed talking to the platform
            NotFoundError: If no strategy matched
        """
        for strategy in self.strategies:
            try:
                ref = strategy.find()
            except LocateError:
                raise
            except Exception as e:
                raise LocateError(
                    f"failed finding workload with {strategy.name}: {e}"
                ) from e

            if ref is not None:
                logger.debug(f"Found workload {ref.id} (query={strategy.name})")
                return ref

            logger.debug(f"No workload found with {strategy.name}")

        raise NotFoundError("unable to find workload")


def _container_ref(container: dict) -> WorkloadRef:
    names = container.get("Names") or [""]
    return WorkloadRef(id=container["Id"], name=names[0].lstrip("/"))


def _running_containers(api, label: Optional[str] = None) -> List[dict]:
    filters = {"status": "running"}
    if label:
        filters["label"] = label
    return api.containers(filters=filters)


class ContainerLabelStrategy(LocateStrategy):
    """Matches the single running container carrying a marker label."""

    name = "findByLabel"

    def __init__(self, api, label: str):
        self.api = api
        self.label = label

    def find(self) -> Optional[WorkloadRef]:
        containers = _running_containers(self.api, label=self.label)
        if not containers:
            return None
        if len(containers) > 1:
            raise AmbiguousMatchError(
                f"multiple containers found with label {self.label}"
            )
        return _container_ref(containers[0])


class ContainerImageStrategy(LocateStrategy):
    """Matches the first running container whose image has a known prefix."""

    name = "findByImage"

    def __init__(self, api, prefixes: Iterable[str]):
        self.api = api
        self.prefixes = tuple(prefixes)

    def find(self) -> Optional[WorkloadRef]:
        # not using the ancestor filter because it only looks for the latest tag
        for container in _running_containers(self.api):
            if str(container.get("Image", "")).startswith(self.prefixes):
                return _container_ref(container)
        return None


class ContainerLogStrategy(LocateStrategy):
    """Matches the first running container whose logs contain a startup banner."""

    name = "findByLogs"

    def __init__(self, api, banner: str):
        self.api = api
        self.banner = banner

    def find(self) -> Optional[WorkloadRef]:
        for container in _running_containers(self.api):
            if self._logs_contain_banner(container["Id"]):
                return _container_ref(container)
        return None

    def _logs_contain_banner(self, container_id: str) -> bool:
        # follow defaults to stream in docker-py; a followed stream never ends
        stream = self.api.logs(
            container_id, stdout=True, stderr=True, stream=True, follow=False
        )
        try:
            buffered = ""
            for chunk in stream:
                if isinstance(chunk, bytes):
                    chunk = chunk.decode("utf-8", errors="replace")
                buffered += chunk
                lines = buffered.split("\n")
                buffered = lines.pop()
                if any(self.banner in line for line in lines):
                    return True
            return self.banner in buffered
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()


def container_locator(api, profile: WorkloadProfile) -> WorkloadLocator:
    """Standard label, image, logs chain for a Docker host."""
    return WorkloadLocator(
        [
            ContainerLabelStrategy(api, profile.marker_label),
            ContainerImageStrategy(api, profile.image_prefixes),
            ContainerLogStrategy(api, profile.log_banner),
        ]
    )
