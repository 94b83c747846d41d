"""
Configuration management for the Portainer updater.
"""

import base64
import binascii
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from errors import ConfigError, PullError

logger = logging.getLogger(__name__)

DEFAULT_AGENT_IMAGE = "portainer/agent:latest"
DEFAULT_SERVER_IMAGE = "portainer/portainer-ee:latest"
DEFAULT_NOMAD_ADDR = "http://127.0.0.1:4646"

ENV_TYPES = {
    "agent": ("standalone", "nomad"),
    "portainer": ("standalone", "swarm", "kubernetes"),
}


def parse_flag(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() not in ("0", "false", "no")


@dataclass
class RegistryCredentials:
    """Credentials attached to image pulls."""

    username: str
    password: str
    ecr: bool = False  # password is a base64 ECR authorization token

    def auth_config(self) -> Dict[str, str]:
        """
        Build the auth config for a pull.

        Raises:
            PullError: If the ECR token cannot be decoded
        """
        if not self.ecr:
            return {"username": self.username, "password": self.password}

        try:
            decoded = base64.b64decode(self.password, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise PullError(f"failed to decode ECR authorization token: {e}") from e

        # ECR tokens decode to "<user>:<password>"
        user, sep, secret = decoded.partition(":")
        if sep:
            return {"username": user, "password": secret}
        return {"username": self.username, "password": decoded}

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> Optional["RegistryCredentials"]:
        if not environ.get("REGISTRY_USED"):
            return None
        return cls(
            username=environ.get("REGISTRY_USERNAME", ""),
            password=environ.get("REGISTRY_PASSWORD", ""),
            ecr=bool(environ.get("REGISTRY_ECR_CERTIFICATE_ENABLED")),
        )


@dataclass
class NomadSettings:
    """Connection settings for the Nomad HTTP API."""

    address: str = DEFAULT_NOMAD_ADDR
    namespace: str = ""
    token: str = ""
    ca_cert_content: str = ""
    client_cert_content: str = ""
    client_key_content: str = ""
    tls_dir: str = field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "portainer-updater")
    )

    @property
    def uses_tls(self) -> bool:
        return self.address.startswith("https")

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "NomadSettings":
        settings = cls(
            address=environ.get("NOMAD_ADDR", DEFAULT_NOMAD_ADDR),
            namespace=environ.get("NOMAD_NAMESPACE", ""),
            token=environ.get("NOMAD_TOKEN", ""),
            ca_cert_content=environ.get("NOMAD_CACERT_CONTENT", ""),
            client_cert_content=environ.get("NOMAD_CLIENT_CERT_CONTENT", ""),
            client_key_content=environ.get("NOMAD_CLIENT_KEY_CONTENT", ""),
        )
        if environ.get("NOMAD_TLS_DIR"):
            settings.tls_dir = environ["NOMAD_TLS_DIR"]
        return settings


def stage_nomad_tls(settings: NomadSettings) -> Optional[Tuple[str, str, str]]:
    """
    Write the Nomad TLS material to disk.

    Args:
        settings: Nomad connection settings

    Returns:
        (ca_path, cert_path, key_path), or None for plain HTTP

    Raises:
        ConfigError: If any of the PEM contents is missing or cannot be written
    """
    if not settings.uses_tls:
        return None

    files = (
        ("ca.pem", settings.ca_cert_content, "Nomad CA certificate"),
        ("cert.pem", settings.client_cert_content, "Nomad client certificate"),
        ("key.pem", settings.client_key_content, "Nomad client key"),
    )

    paths = []
    try:
        os.makedirs(settings.tls_dir, mode=0o755, exist_ok=True)
        for filename, content, description in files:
            if not content:
                raise ConfigError(f"{description} is not exported")
            path = os.path.join(settings.tls_dir, filename)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(content)
            paths.append(path)
    except OSError as e:
        raise ConfigError(f"failed to write Nomad TLS material: {e}") from e

    logger.debug(f"Nomad TLS material written to {settings.tls_dir}")
    return paths[0], paths[1], paths[2]


@dataclass
class UpdaterConfig:
    """Configuration for a single update run."""

    target: str
    schedule_id: str
    image: str
    env_type: str = "standalone"
    license: str = ""
    log_level: str = "INFO"
    pretty_log: bool = False
    skip_pull: bool = False
    registry: Optional[RegistryCredentials] = None
    nomad: NomadSettings = field(default_factory=NomadSettings)
    health_grace: float = 15.0
    health_retries: int = 5
    health_interval: float = 5.0
    rollout_timeout: float = 60.0
    rollout_interval: float = 5.0
    report_file: Optional[str] = None

    def __post_init__(self):
        allowed = ENV_TYPES.get(self.target)
        if allowed is None:
            raise ConfigError(f"unknown update target: {self.target}")
        if self.env_type not in allowed:
            raise ConfigError(
                f"unknown environment type for {self.target}: {self.env_type}"
            )

    @classmethod
    def from_args(
        cls, args, environ: Optional[Mapping[str, str]] = None
    ) -> "UpdaterConfig":
        """
        Create configuration from command-line arguments and the environment.

        Args:
            args: Parsed argparse arguments
            environ: Environment variables (defaults to os.environ)

        Returns:
            UpdaterConfig instance
        """
        if environ is None:
            environ = os.environ

        return cls(
            target=args.command,
            schedule_id=args.schedule_id,
            image=args.image,
            env_type=args.env_type,
            license=getattr(args, "license", "") or "",
            log_level=args.log_level,
            pretty_log=args.pretty_log,
            skip_pull=parse_flag(environ.get("SKIP_PULL")),
            registry=RegistryCredentials.from_env(environ),
            nomad=NomadSettings.from_env(environ),
            health_grace=args.health_grace,
            health_retries=args.health_retries,
            health_interval=args.health_interval,
            rollout_timeout=args.rollout_timeout,
            rollout_interval=args.rollout_interval,
            report_file=args.report_file,
        )
