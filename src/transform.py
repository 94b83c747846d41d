"""
Snapshot and transform of workload configuration.

A snapshot is a deep copy of the platform's view of a workload, so that the
derived configuration never shares mutable state with the original.
"""

import copy
import logging
from typing import Dict, List

from models import (
    UPDATE_ID_ENV,
    UPDATE_SCHEDULE_LABEL,
    ConfigMutator,
    UpgradeRequest,
    WorkloadSpec,
)

logger = logging.getLogger(__name__)

TEMP_NAME_SUFFIX = "-update"


def snapshot(spec: WorkloadSpec) -> WorkloadSpec:
    """Return a structural clone of ``spec`` with no shared substructures."""
    return copy.deepcopy(spec)


def upsert_env(env: List[str], key: str, value: str) -> List[str]:
    """
    Set ``key`` in a ``KEY=value`` list.

    An existing entry is replaced in place (the last one when the key repeats),
    otherwise the entry is appended.
    """
    entry = f"{key}={value}"
    prefix = f"{key}="
    found = -1
    for index, existing in enumerate(env):
        if existing.startswith(prefix):
            found = index

    if found != -1:
        env[found] = entry
    else:
        env.append(entry)
    return env


def transform(spec: WorkloadSpec, request: UpgradeRequest) -> WorkloadSpec:
    """
    Derive the successor's configuration from the original one.

    * the image is replaced with the requested one
    * the hostname is cleared to avoid DNS collisions while both run
    * the inherited health check is dropped in favour of the new image's
    * the update ID is upserted into the environment and the labels
    * the request's mutator, if any, runs last

    The original spec is left untouched.
    """
    derived = snapshot(spec)
    derived.image = request.image
    derived.hostname = None
    derived.healthcheck = None

    upsert_env(derived.env, UPDATE_ID_ENV, request.schedule_id)

    if derived.labels is None:
        derived.labels = {}
    derived.labels[UPDATE_SCHEDULE_LABEL] = request.schedule_id

    if request.mutator is not None:
        request.mutator.apply(derived)

    return derived


def env_changes(original: List[str], derived: List[str]) -> Dict[str, str]:
    """Return the ``KEY: value`` pairs of ``derived`` that differ from ``original``."""
    before = dict(_split_env(entry) for entry in original)
    after = dict(_split_env(entry) for entry in derived)
    return {key: value for key, value in after.items() if before.get(key) != value}


def _split_env(entry: str):
    key, _, value = entry.partition("=")
    return key, value


def build_temporary_name(name: str) -> str:
    """
    Name the successor after the original.

    The suffix is toggled so repeated failed runs converge on two names.
    """
    if name.endswith(TEMP_NAME_SUFFIX):
        return name[: -len(TEMP_NAME_SUFFIX)]
    return f"{name}{TEMP_NAME_SUFFIX}"


class LicenseKeyMutator(ConfigMutator):
    """Injects the Portainer EE license key into the environment."""

    ENV_KEY = "PORTAINER_LICENSE_KEY"

    def __init__(self, license_key: str):
        self.license_key = license_key

    def apply(self, spec: WorkloadSpec) -> None:
        if not self.license_key:
            return
        logger.debug("Injecting license key into workload environment")
        upsert_env(spec.env, self.ENV_KEY, self.license_key)
