# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors
"""
Delta server configuration helpers.

This module defines the ServerConfig dataclass which centralizes the update
server endpoints and HTTP settings used by the delta client.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ServerConfig:
    """
    Configuration for the update server.

    Args:
        base_url: Base URL serving ``<device>.json`` and ``Changelog.txt``.
        delta_url: Base URL of ``.delta`` / ``.delta_revoked`` metadata documents.
        update_url: Base URL of delta payloads (``.update`` / ``.sign`` files).
        full_url: Base URL of full (official) builds.
        sum_url: Base URL of full build ``.sha256sum`` files.
        url_suffix: Suffix appended to full build and checksum URLs (e.g. ``?download``).
        user_agent: User-Agent header used for HTTP requests.
        auth_token: Optional bearer token sent with every request.
        connect_timeout: Connection timeout in seconds.
        read_timeout: Read timeout in seconds.
        chunk_size: Transfer chunk size in bytes.
        max_download_size: Hard ceiling on a single transfer's content length.
        max_metadata_size: Ceiling on in-memory metadata documents.
    """

    base_url: str = "https://example.org/ota"
    delta_url: str = "https://example.org/ota/delta/"
    update_url: str = "https://example.org/ota/delta/"
    full_url: str = "https://example.org/ota/full/"
    sum_url: str = "https://example.org/ota/full/"
    url_suffix: str = ""
    user_agent: str = "deltaota/1.0"
    auth_token: str = ""
    # Fixed per attempt, no retry in the transfer primitive
    connect_timeout: int = 30  # seconds
    read_timeout: int = 30  # seconds
    chunk_size: int = 256 * 1024
    max_download_size: int = 4 * 1024 * 1024 * 1024
    max_metadata_size: int = 1024 * 1024

    def build_list_url(self, device: str) -> str:
        """Return the URL of the device build list (``<base>/<device>.json``)."""
        return f"{self.base_url.rstrip('/')}/{device}.json"

    def changelog_url(self) -> str:
        """Return the URL of the changelog published next to the build list."""
        return f"{self.base_url.rstrip('/')}/Changelog.txt"

    def delta_metadata_url(self, build_name: str, revoked: bool = False) -> str:
        """Return the URL of the delta document starting at ``build_name``."""
        ext = ".delta_revoked" if revoked else ".delta"
        return f"{self.delta_url}{build_name}{ext}"

    def update_file_url(self, name: str) -> str:
        """Return the URL of a delta payload file."""
        return f"{self.update_url}{name}"

    def full_build_url(self, filename: str) -> str:
        """Return the default download URL of a full build."""
        return f"{self.full_url}{filename}{self.url_suffix}"

    def full_sum_url(self, filename: str) -> str:
        """Return the default checksum URL of a full build."""
        return f"{self.sum_url}{filename}.sha256sum{self.url_suffix}"


DEFAULT_CONFIG = ServerConfig()
