# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""
Delta chain resolution.

Starting from the build the device runs, the resolver follows the chain of
``.delta`` documents published by the server up to the newest build. A step
whose regular document is missing may still be published as
``.delta_revoked``; such steps are kept for chaining but their output is
never offered for flashing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from delta.client import DeltaClient
from delta.errors import MetadataError
from delta.models import STORE_SIGNED, DeltaStep, parse_delta

from .progress import ProgressFactory
from .verifier import match_file


@dataclass
class ChainResolution:
    """Result of resolving the chain.

    Attributes:
        steps: Steps still to apply, oldest first; never ends with a revoked step.
        cached_output: Path of an already reconstructed latest build, or None.
        cached_signed: True if the cached output carries the signature trailer.
    """

    steps: list[DeltaStep] = field(default_factory=list)
    cached_output: Optional[str] = None
    cached_signed: bool = False


def _strip_zip(name: str) -> str:
    return name[:-4] if name.endswith(".zip") else name


class ChainResolver:
    """
    Fetches and trims the delta chain for one device.

    Args:
        client: DeltaClient used for the metadata downloads.
        downloads_dir: Directory holding previously downloaded or built files.
    """

    def __init__(self, client: DeltaClient, downloads_dir: Path):
        self.client = client
        self.downloads_dir = Path(downloads_dir)
        self.logger = logging.getLogger(__name__)

    def _fetch_step(self, key: str, revoked: bool) -> Optional[DeltaStep]:
        url = self.client.cfg.delta_metadata_url(key, revoked=revoked)
        data = self.client.fetch_bytes(url)
        if not data:
            return None
        try:
            return parse_delta(data, revoked=revoked, source=url)
        except MetadataError as ex:
            self.logger.warning("Ignoring malformed delta document: %s", ex)
            return None

    def fetch_chain(self, current_name: str) -> list[DeltaStep]:
        """
        Walk the server chain starting at ``current_name``.

        Args:
            current_name: Build name of the running build, with or without ``.zip``.

        Returns:
            Steps oldest first. Empty when the server publishes no delta for
            the running build.
        """
        steps: list[DeltaStep] = []
        key = _strip_zip(current_name)
        while True:
            step = self._fetch_step(key, revoked=False)
            if step is None:
                step = self._fetch_step(key, revoked=True)
                if step is None:
                    break
            self.logger.debug("delta --> [%s]%s", step.out.name, " (revoked)" if step.revoked else "")
            steps.append(step)
            key = _strip_zip(step.out.name)
        return steps

    def trim_to_cache(
        self,
        steps: list[DeltaStep],
        latest_full_name: Optional[str],
        progress_factory: Optional[ProgressFactory] = None,
    ) -> ChainResolution:
        """
        Drop the steps already covered by a previously built output.

        The newest step whose output exists in the downloads directory, verifies
        by hash and is the latest full build ends the search; the steps up to
        and including it are removed. Trailing revoked steps are trimmed last.

        Args:
            steps: Chain as returned by fetch_chain().
            latest_full_name: Name of the latest full build on the server.
            progress_factory: Optional factory of hashing progress callbacks,
                called with ("checking", file name).
        """
        result = ChainResolution(steps=list(steps))
        for i in range(len(result.steps) - 1, -1, -1):
            out = result.steps[i].out
            path = self.downloads_dir / out.name
            cb = progress_factory("checking", out.name) if progress_factory else None
            variant = match_file(out, path, force_hash=True, progress_cb=cb)
            if variant is None or out.name != latest_full_name:
                continue
            result.cached_output = str(path)
            result.cached_signed = variant.kind == STORE_SIGNED
            self.logger.debug(
                "match found (%s): %s", "delta" if result.cached_signed else "full", out.name
            )
            del result.steps[: i + 1]
            break

        while result.steps and result.steps[-1].revoked:
            result.steps.pop()
        return result

    def resolve(
        self,
        current_name: str,
        latest_full_name: Optional[str],
        progress_factory: Optional[ProgressFactory] = None,
    ) -> ChainResolution:
        """Fetch the chain for ``current_name`` and trim it against local files."""
        return self.trim_to_cache(self.fetch_chain(current_name), latest_full_name, progress_factory)
