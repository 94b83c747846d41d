"""Console entry point for the Portainer updater CLI."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from typing import List, Mapping

from clients import NomadRestClient, docker_api_client, kubernetes_apps_api
from config import (
    DEFAULT_AGENT_IMAGE,
    DEFAULT_SERVER_IMAGE,
    ENV_TYPES,
    UpdaterConfig,
    parse_flag,
)
from environments import UpgradeEnvironment
from health import HealthMonitor
from images import DockerPullOracle, NoPullOracle
from kube import KubernetesEnvironment
from license_check import validate_image_with_license
from locator import AGENT, SERVER
from log_utils import LEVELS, setup_logging
from models import UpgradeRequest
from nomad_job import NomadJobEnvironment
from standalone import StandaloneEnvironment
from swarm import SwarmEnvironment
from transform import LicenseKeyMutator
from upgrader import WorkloadUpgrader

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="portainer-updater",
        description="Update a running Portainer agent or server to a new image.",
    )

    logging_group = parser.add_argument_group("logging and output")
    logging_group.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO").upper(),
        type=str.upper,
        choices=[level for level in LEVELS if level != "WARNING"],
        help="Set the logging level (default: INFO, env: LOG_LEVEL)",
    )
    logging_group.add_argument(
        "--pretty-log",
        action="store_true",
        default=parse_flag(os.environ.get("PRETTY_LOG")),
        help="Human readable log lines instead of JSON (env: PRETTY_LOG)",
    )
    logging_group.add_argument(
        "--report-file",
        metavar="PATH",
        help="Write a JSON report of the run to PATH",
    )

    health = parser.add_argument_group("health check")
    health.add_argument(
        "--health-grace",
        type=float,
        default=15.0,
        metavar="SECONDS",
        help="Delay before the first health read of a new container (default: 15)",
    )
    health.add_argument(
        "--health-retries",
        type=int,
        default=5,
        metavar="N",
        help="Number of health reads before giving up (default: 5)",
    )
    health.add_argument(
        "--health-interval",
        type=float,
        default=5.0,
        metavar="SECONDS",
        help="Delay between health reads (default: 5)",
    )
    health.add_argument(
        "--rollout-timeout",
        type=float,
        default=60.0,
        metavar="SECONDS",
        help="Maximum time to wait for a service, deployment or job rollout (default: 60)",
    )
    health.add_argument(
        "--rollout-interval",
        type=float,
        default=5.0,
        metavar="SECONDS",
        help="Delay between rollout status reads (default: 5)",
    )

    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    agent = commands.add_parser("agent", help="Update an existing Portainer agent.")
    agent.add_argument("schedule_id", help="Update schedule ID stamped on the new agent")
    agent.add_argument(
        "image",
        nargs="?",
        default=DEFAULT_AGENT_IMAGE,
        help=f"Image of the agent to update to (default: {DEFAULT_AGENT_IMAGE})",
    )
    agent.add_argument(
        "--env-type",
        default="standalone",
        choices=ENV_TYPES["agent"],
        help="The environment type (default: standalone)",
    )

    server = commands.add_parser("portainer", help="Update an existing Portainer server.")
    server.add_argument("schedule_id", help="Update schedule ID stamped on the new server")
    server.add_argument(
        "image",
        nargs="?",
        default=DEFAULT_SERVER_IMAGE,
        help=f"Image of Portainer to update to (default: {DEFAULT_SERVER_IMAGE})",
    )
    server.add_argument(
        "--env-type",
        default="standalone",
        choices=ENV_TYPES["portainer"],
        help="The environment type (default: standalone)",
    )
    server.add_argument("--license", default="", help="License key to use for Portainer EE")

    return parser


def build_environment(
    config: UpdaterConfig, cancel: threading.Event
) -> UpgradeEnvironment:
    """Wire the environment selected by the target and environment type."""
    profile = AGENT if config.target == "agent" else SERVER

    if config.env_type == "nomad":
        return NomadJobEnvironment(
            NomadRestClient(config.nomad),
            profile,
            NoPullOracle(),
            rollout_timeout=config.rollout_timeout,
            rollout_interval=config.rollout_interval,
            cancel=cancel,
        )

    if config.env_type == "kubernetes":
        return KubernetesEnvironment(
            kubernetes_apps_api(),
            NoPullOracle(),
            skip_pull=config.skip_pull,
            rollout_timeout=config.rollout_timeout,
            rollout_interval=config.rollout_interval,
            cancel=cancel,
        )

    api = docker_api_client()
    oracle = DockerPullOracle(
        api, skip_pull=config.skip_pull, credentials=config.registry, cancel=cancel
    )

    if config.env_type == "swarm":
        return SwarmEnvironment(
            api,
            profile,
            oracle,
            rollout_timeout=config.rollout_timeout,
            rollout_interval=config.rollout_interval,
            cancel=cancel,
        )

    monitor = HealthMonitor(
        grace_period=config.health_grace,
        retries=config.health_retries,
        interval=config.health_interval,
        cancel=cancel,
    )
    return StandaloneEnvironment(api, profile, oracle, monitor=monitor)


def build_request(config: UpdaterConfig) -> UpgradeRequest:
    """Target image and config mutator for the run."""
    if config.target != "portainer":
        return UpgradeRequest(image=config.image, schedule_id=config.schedule_id)

    image = validate_image_with_license(config.license, config.image)
    mutator = LicenseKeyMutator(config.license) if config.license else None
    return UpgradeRequest(image=image, schedule_id=config.schedule_id, mutator=mutator)


def install_signal_handlers(cancel: threading.Event) -> None:
    """Turn SIGINT/SIGTERM into a cooperative cancellation."""

    def handler(signum, frame):
        logger.warning(f"Received signal {signum}, cancelling pending waits")
        cancel.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def main(argv: List[str] | None = None, environ: Mapping[str, str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(level=args.log_level, pretty=args.pretty_log)

    cancel = threading.Event()
    try:
        config = UpdaterConfig.from_args(args, environ)
        environment = build_environment(config, cancel)
    except Exception as e:
        logger.error(f"Unable to initialize the updater: {e}")
        return 1

    install_signal_handlers(cancel)

    outcome = WorkloadUpgrader(environment, report_file=config.report_file).run(
        build_request(config)
    )
    return 0 if outcome.succeeded else 1


def run() -> None:
    """Entry point for the console script."""
    sys.exit(main())
