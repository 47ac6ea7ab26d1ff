# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""
Build list and build name helpers.

Provides utilities to pick the newest full build from the server build list,
extract the digest from a ``.sha256sum`` document and compare build names.

Build names look like ``<rom>-<android>-<flavor>-<device>-<YYYYMMDD>[...].zip``.
All comparisons below are plain string/digit policies: they trust the server
to name builds consistently and can misorder builds that do not.

Functions:
- parse_build_list: Parse ``<device>.json`` into the newest matching LatestBuild.
- is_matching_image: Whether a build file targets this device and Android version.
- parse_sha256sum: Extract the 64-character digest from a checksum document.
- build_date: Read the YYYYMMDD token of a build name.
- build_number: Concatenate all digits of a build name into one integer.
- is_newer_name: Lexicographic "is newer" comparison of two build names.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from .errors import MetadataError

logger = logging.getLogger(__name__)

SHA256_HEX_LEN = 64


@dataclass(frozen=True)
class LatestBuild:
    """Newest full build published for the device.

    Attributes:
        filename: Build file name (no directory part).
        url: Download URL override from the build list, or None.
        sha256_url: Checksum URL override from the build list, or None.
    """

    filename: str
    url: Optional[str] = None
    sha256_url: Optional[str] = None

    @property
    def has_overrides(self) -> bool:
        """True when both the download and checksum locations are overridden."""
        return bool(self.url and self.sha256_url)


def _version_tuple(version: str) -> tuple[int, ...]:
    parts = []
    for piece in version.split("."):
        digits = "".join(ch for ch in piece if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def is_matching_image(filename: str, device: str, android_version: str) -> bool:
    """
    Check whether a build file is a flashable image for this device.

    Args:
        filename: Build file name from the build list.
        device: Device code name.
        android_version: Android version of the running build (e.g. "13").

    Returns:
        True if the file is a ZIP for this device whose Android version token
        is at least the running one.
    """
    if not filename.endswith(".zip") or device not in filename:
        return False
    parts = filename.split("-")
    if len(parts) < 2:
        return False
    ok = _version_tuple(parts[1]) >= _version_tuple(android_version)
    if ok:
        logger.debug("matching image: %s", filename)
    return ok


def parse_build_list(text: str, device: str, android_version: str) -> Optional[LatestBuild]:
    """
    Parse the ``<device>.json`` build list.

    The last matching entry wins. ``url`` and ``sha256url`` keys override the
    default download locations; an override from any entry is kept.

    Args:
        text: Raw JSON document ``{"response": [{"filename": ..., ...}, ...]}``.
        device: Device code name.
        android_version: Android version of the running build.

    Returns:
        LatestBuild for the newest matching image, or None if no entry matches.

    Raises:
        MetadataError: If the document is not JSON or lacks the response list.
    """
    try:
        root = json.loads(text)
        builds = root["response"]
    except (ValueError, TypeError, KeyError) as exc:
        raise MetadataError("response", f"{device}.json") from exc
    if not isinstance(builds, list):
        raise MetadataError("response", f"{device}.json")

    latest = None
    url_override = None
    sum_override = None
    for build in builds:
        if not isinstance(build, dict):
            continue
        filename = build.get("filename")
        if not isinstance(filename, str) or not filename:
            logger.debug("Skipping build entry without filename")
            continue
        filename = os.path.basename(filename)
        if is_matching_image(filename, device, android_version):
            latest = filename
        if build.get("url"):
            url_override = str(build["url"])
        if build.get("sha256url"):
            sum_override = str(build["sha256url"])

    if latest is None:
        return None
    return LatestBuild(latest, url_override, sum_override if url_override else None)


def parse_sha256sum(text: str) -> str:
    """
    Extract the digest from a ``.sha256sum`` document.

    The digest is the leading 64 characters (``sha256sum`` output puts the
    file name after it); characters are stripped from the end while the text
    is longer than 64.

    Args:
        text: Checksum document.

    Returns:
        Lowercase digest string (may be shorter than 64 for truncated input).
    """
    text = text.strip()
    while len(text) > SHA256_HEX_LEN:
        text = text[:-1]
    return text.lower()


def build_date(name: str) -> int:
    """
    Return the YYYYMMDD date token of a build name.

    Raises:
        ValueError: If the name does not carry a date in its fifth field.
    """
    try:
        return int(name.split("-")[4][:8])
    except IndexError as exc:
        raise ValueError(f"Build name malformed: {name}") from exc


def build_number(name: str) -> int:
    """
    Concatenate every digit of a build name into a single integer.

    Raises:
        ValueError: If the name carries no digits.
    """
    digits = "".join(ch for ch in name if ch.isdigit())
    if not digits:
        raise ValueError(f"Build name malformed: {name}")
    return int(digits)


def is_newer_name(candidate: Optional[str], reference: Optional[str]) -> bool:
    """Return True if ``candidate`` sorts strictly after ``reference`` as a plain string."""
    if candidate is None or reference is None:
        return False
    return candidate > reference
