"""
Image validation against the Portainer EE license type.
"""

import logging
import re
from typing import Optional, Tuple

from packaging.version import Version

logger = logging.getLogger(__name__)

# Type 3 licenses are only understood from this release on
MIN_TYPE3_VERSION = "2.18.4"

# Semantic version tag, e.g. 2.18.3, v2.19 or 2.18.3-alpine
SEMVER_TAG = re.compile(
    r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)


def parse_tag(tag: str) -> Optional[Tuple[Version, str]]:
    """Split a semver tag into its release version and pre-release suffix."""
    match = SEMVER_TAG.match(tag)
    if match is None:
        return None
    major, minor, patch, prerelease = match.groups()
    return Version(f"{major}.{minor or 0}.{patch or 0}"), prerelease or ""


def is_newer_than(tag: Tuple[Version, str], minimum: str) -> bool:
    release, prerelease = tag
    floor = Version(minimum)
    # a pre-release sorts below the release it leads up to
    return release > floor or (release == floor and not prerelease)


def validate_image_with_license(license_key: str, image: str) -> str:
    """
    Raise the image tag to the minimum version supporting the license.

    Args:
        license_key: Portainer EE license key
        image: Requested image (``name:tag``)

    Returns:
        The image to deploy
    """
    if not license_key.startswith("3-"):
        logger.debug("License is not a type 3 license, leaving image as is")
        return image

    parts = image.split(":")
    if len(parts) != 2:
        logger.debug(f"Image is not a standard image (image:tag), leaving it as is (image={image})")
        return image

    name, tag = parts
    if not name.endswith("portainer-ee"):
        logger.debug(f"Image is not portainer-ee, leaving it as is (image={image})")
        return image

    requested = parse_tag(tag)
    if requested is None:
        logger.debug(f"Tag is not a valid semver, leaving it as is (tag={tag})")
        return image

    if is_newer_than(requested, MIN_TYPE3_VERSION):
        logger.debug(
            f"Tag is higher than minimum version, leaving it as is (tag={tag}, minVersion={MIN_TYPE3_VERSION})"
        )
        return image

    logger.info(
        f"Tag is lower than minimum version, updating version to {MIN_TYPE3_VERSION} (tag={tag})"
    )
    return f"{name}:{MIN_TYPE3_VERSION}"
