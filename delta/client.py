# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors


from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import DEFAULT_CONFIG, ServerConfig

logger = logging.getLogger(__name__)


class DeltaClient:
    """
    Update server HTTP client.

    Wraps a requests.Session with the configured headers and timeouts. All
    methods report failures by return value (None / 0) and log the cause;
    they never raise network errors to the caller.

    Args:
        cfg: Server configuration settings. Defaults to DEFAULT_CONFIG.
        session: Optional requests.Session for connection reuse.
    """

    def __init__(self, cfg: ServerConfig = DEFAULT_CONFIG, session: Optional[requests.Session] = None):
        self.cfg = cfg
        self.sess = session or requests.Session()

    def _headers(self, start: int = 0) -> dict:
        """
        Build request headers including User-Agent, Authorization and Range.

        Args:
            start: Byte offset to resume from; 0 requests the whole resource.

        Returns:
            dict: Headers dictionary for server requests.
        """
        headers = {"User-Agent": self.cfg.user_agent}
        if self.cfg.auth_token:
            headers["Authorization"] = f"Bearer {self.cfg.auth_token}"
        if start > 0:
            headers["Range"] = f"bytes={start}-"
        return headers

    def open(self, url: str, start: int = 0) -> Optional[requests.Response]:
        """
        Open a streaming GET request.

        Args:
            url: Resource URL.
            start: Byte offset for resume capability.

        Returns:
            requests.Response: Open streaming response (status 200 or 206), to be
                closed by the caller; None if the request failed.
        """
        try:
            r = self.sess.get(
                url,
                headers=self._headers(start),
                stream=True,
                timeout=(self.cfg.connect_timeout, self.cfg.read_timeout),
            )
        except requests.RequestException as ex:
            logger.info("Failed to connect to server: %s (%s)", url, ex)
            return None
        if r.status_code not in (200, 206):
            logger.debug("response: %d for %s", r.status_code, url)
            r.close()
            return None
        return r

    @staticmethod
    def content_length_of(resp: requests.Response) -> int:
        """Return the Content-Length header of a response, or -1 if absent or invalid."""
        value = resp.headers.get("Content-Length")
        try:
            return int(value) if value is not None else -1
        except ValueError:
            return -1

    def fetch_bytes(self, url: str) -> Optional[bytes]:
        """
        Download a small resource into memory.

        Args:
            url: Resource URL.

        Returns:
            bytes: Body of the response, or None if the request failed or the
                body exceeds ``cfg.max_metadata_size``.
        """
        logger.debug("download: %s", url)
        resp = self.open(url)
        if resp is None:
            return None
        with resp:
            length = self.content_length_of(resp)
            if length >= self.cfg.max_metadata_size:
                logger.info("Refusing oversized document (%d bytes): %s", length, url)
                return None
            try:
                body = bytearray()
                for chunk in resp.iter_content(chunk_size=64 * 1024):
                    body.extend(chunk)
                    if len(body) >= self.cfg.max_metadata_size:
                        logger.info("Refusing oversized document: %s", url)
                        return None
            except (requests.RequestException, OSError) as ex:
                logger.info("Download failed: %s (%s)", url, ex)
                return None
            return bytes(body)

    def fetch_text(self, url: str) -> Optional[str]:
        """Download a small resource and decode it as UTF-8, or return None."""
        data = self.fetch_bytes(url)
        if data is None:
            return None
        return data.decode("utf-8", errors="replace")

    def content_length(self, url: str) -> int:
        """
        Query the size of a remote resource.

        Returns:
            int: Content length in bytes, or 0 if unknown or the request failed.
        """
        logger.debug("content length: %s", url)
        resp = self.open(url)
        if resp is None:
            return 0
        with resp:
            return max(self.content_length_of(resp), 0)
