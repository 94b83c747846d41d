"""
Image availability checks.

Whether a pulled image was already current is read from the pull's status
output. That is a heuristic tied to the daemon's wording, which is why it
sits behind ``ImageFreshnessOracle``.
"""

import io
import logging
import sys
import threading
from typing import Optional, TextIO

from config import RegistryCredentials
from errors import PullError

logger = logging.getLogger(__name__)

UP_TO_DATE_MARKER = "Image is up to date"


class ImageFreshnessOracle:
    """Makes an image available and tells whether it was already current."""

    def ensure_image(self, image: str) -> bool:
        """
        Make ``image`` available.

        Returns:
            True if the local image was already up to date

        Raises:
            PullError: If the image could not be obtained
        """
        raise NotImplementedError


class NoPullOracle(ImageFreshnessOracle):
    """For schedulers that pull images themselves; never reports up to date."""

    def ensure_image(self, image: str) -> bool:
        logger.debug(f"Image pull delegated to the scheduler (image={image})")
        return False


class DockerPullOracle(ImageFreshnessOracle):
    """Pulls through the Docker Engine API."""

    def __init__(
        self,
        api,
        skip_pull: bool = False,
        credentials: Optional[RegistryCredentials] = None,
        output: Optional[TextIO] = None,
        cancel: Optional[threading.Event] = None,
    ):
        """
        Initialize the pull oracle.

        Args:
            api: Low-level Docker API client
            skip_pull: Skip the pull entirely (offline installs)
            credentials: Optional registry credentials
            output: Stream receiving the pull progress (defaults to stdout)
            cancel: Optional event that abandons the pull when set
        """
        self.api = api
        self.skip_pull = skip_pull
        self.credentials = credentials
        self.output = output
        self.cancel = cancel

    def ensure_image(self, image: str) -> bool:
        if self.skip_pull:
            logger.info(f"Skipping image pull (image={image})")
            return False

        auth_config = None
        if self.credentials is not None:
            auth_config = self.credentials.auth_config()

        logger.debug(f"Pulling Docker image (image={image})")

        try:
            stream = self.api.pull(
                image, stream=True, decode=True, auth_config=auth_config
            )
            # The pull only completes once its progress stream is consumed
            captured = self._consume(stream)
        except PullError:
            raise
        except Exception as e:
            raise PullError(f"unable to pull image {image}: {e}") from e

        return UP_TO_DATE_MARKER in captured

    def _consume(self, stream) -> str:
        out = self.output or sys.stdout
        buffer = io.StringIO()

        for event in stream:
            if self.cancel is not None and self.cancel.is_set():
                raise PullError("image pull cancelled")

            if "error" in event:
                raise PullError(str(event.get("error")))

            line = event.get("status", "")
            if event.get("id"):
                line = f"{event['id']}: {line}"
            if event.get("progress"):
                line = f"{line} {event['progress']}"

            out.write(line + "\n")
            buffer.write(line + "\n")

        out.flush()
        return buffer.getvalue()
