"""
Portainer Updater.
"""

from config import UpdaterConfig
from environments import UpgradeEnvironment
from kube import KubernetesEnvironment
from log_utils import setup_logging
from models import UpgradeOutcome, UpgradeRequest, WorkloadRef, WorkloadSpec
from nomad_job import NomadJobEnvironment
from standalone import StandaloneEnvironment
from swarm import SwarmEnvironment
from upgrader import WorkloadUpgrader

__all__ = [
    "UpdaterConfig",
    "UpgradeEnvironment",
    "KubernetesEnvironment",
    "NomadJobEnvironment",
    "StandaloneEnvironment",
    "SwarmEnvironment",
    "setup_logging",
    "UpgradeOutcome",
    "UpgradeRequest",
    "WorkloadRef",
    "WorkloadSpec",
    "WorkloadUpgrader",
]
