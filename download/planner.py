# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""
Update strategy planning.

Given the resolved delta chain, the planner decides whether to rebuild the
latest build from deltas, download it in full, or do nothing, and computes
the download size and disk space the chosen strategy needs.

Build names are compared with simple policies: the date token for the
no-delta case, digit concatenation for "is newer than the running build" and
plain string ordering for "is the full build newer than the delta output".
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from delta.builds import build_date, build_number, is_newer_name
from delta.models import STORE, DeltaStep

from .progress import ProgressFactory
from .verifier import match_file

logger = logging.getLogger(__name__)

BLOCK_SIZE = 262144


class Strategy(str, Enum):
    """How the latest build is obtained."""

    DELTA = "delta"
    FULL = "full"
    NONE = "none"
    READY = "ready"


def size_on_disk(size: int, block_size: int = BLOCK_SIZE) -> int:
    """Round ``size`` up to a whole number of blocks."""
    return (size + block_size - 1) // block_size * block_size


@dataclass(frozen=True)
class PlanPolicy:
    """Planning options.

    Attributes:
        apply_signature: Fetch and apply the signature patch after the last step.
        block_size: Filesystem block size used for disk space estimates.
    """

    apply_signature: bool = True
    block_size: int = BLOCK_SIZE


@dataclass
class BuildPlan:
    """Outcome of planning.

    Attributes:
        strategy: Chosen strategy.
        download_size: Bytes the chosen strategy downloads (0 when unknown).
        required_space: Free bytes needed in the downloads directory.
        delta_download_size: Bytes of deltas not yet present locally.
        full_download_size: Size of the full build.
        initial_file: Local file the chain starts from, or None.
        initial_needs_normalization: The initial file is not in canonical store form.
        flash_filename: Path the rebuilt or cached artifact ends up at.
        update_available: A newer build than the running one exists.
    """

    strategy: Strategy
    download_size: int = 0
    required_space: int = 0
    delta_download_size: int = 0
    full_download_size: int = 0
    initial_file: Optional[str] = None
    initial_needs_normalization: bool = False
    flash_filename: Optional[str] = None
    update_available: bool = False


def _zip_name(name: str) -> str:
    return name if name.endswith(".zip") else name + ".zip"


def _is_newer_number(candidate: Optional[str], current: str) -> bool:
    if candidate is None:
        return False
    try:
        return build_number(candidate) > build_number(current)
    except ValueError:
        logger.debug("Build name malformed: %s / %s", candidate, current)
        return False


class BuildPlanner:
    """
    Plans how to reach the latest build.

    Args:
        downloads_dir: Directory holding downloaded deltas and built outputs.
        policy: Planning options.
    """

    def __init__(self, downloads_dir: Path, policy: PlanPolicy = PlanPolicy()):
        self.downloads_dir = Path(downloads_dir)
        self.policy = policy
        self.logger = logging.getLogger(__name__)

    def _path(self, name: str) -> str:
        return os.path.join(self.downloads_dir, name)

    def _progress(self, factory: Optional[ProgressFactory], phase: str, name: str):
        return factory(phase, name) if factory else None

    def plan(
        self,
        steps: list[DeltaStep],
        latest_full_name: Optional[str],
        current_name: str,
        cached_output: Optional[str] = None,
        progress_factory: Optional[ProgressFactory] = None,
    ) -> BuildPlan:
        """
        Decide the strategy for the resolved chain.

        Args:
            steps: Chain still to apply (may be empty).
            latest_full_name: Latest full build on the server.
            current_name: Running build name, with or without ``.zip``.
            cached_output: Previously rebuilt latest build, if any.
            progress_factory: Optional factory of hashing progress callbacks.

        Returns:
            BuildPlan: Chosen strategy with its sizes. Update and signature
                descriptors of files already present are tagged.
        """
        current_zip = _zip_name(current_name)
        if not steps:
            return self._plan_without_deltas(latest_full_name, current_zip, cached_output)
        return self._plan_with_deltas(steps, latest_full_name, current_zip, progress_factory)

    def _plan_without_deltas(
        self, latest_full_name: Optional[str], current_zip: str, cached_output: Optional[str]
    ) -> BuildPlan:
        if cached_output is not None:
            return BuildPlan(Strategy.READY, flash_filename=cached_output, update_available=True)
        if latest_full_name is None:
            return BuildPlan(Strategy.NONE)
        try:
            newer = build_date(latest_full_name) > build_date(current_zip)
        except ValueError:
            self.logger.debug("Build name malformed: %s / %s", latest_full_name, current_zip)
            newer = False
        if not newer:
            return BuildPlan(Strategy.NONE)
        return BuildPlan(
            Strategy.FULL,
            flash_filename=self._path(latest_full_name),
            update_available=True,
        )

    def delta_download_size(self, steps: list[DeltaStep], progress_factory: Optional[ProgressFactory] = None) -> int:
        """Sum the sizes of the patch files not already present and verified."""
        total = 0
        for step in steps:
            update = step.update
            cb = self._progress(progress_factory, "checking", update.name)
            if match_file(update, self._path(update.name), force_hash=True, progress_cb=cb) != update.update:
                total += update.update.size
        if self.policy.apply_signature:
            signature = steps[-1].signature
            cb = self._progress(progress_factory, "checking", signature.name)
            if match_file(signature, self._path(signature.name), force_hash=True, progress_cb=cb) != signature.update:
                total += signature.update.size
        return total

    def find_initial_file(
        self,
        steps: list[DeltaStep],
        possible_match: str,
        progress_factory: Optional[ProgressFactory] = None,
    ) -> tuple[Optional[str], bool]:
        """
        Locate the file the chain starts from.

        The expected location is ``downloads_dir/<first step input>``. When it is
        also the possible match (a file this process built) a size-only check
        is tried first; otherwise the file is hashed.

        Returns:
            (path, needs_normalization): path is None when nothing matches;
                needs_normalization is True when the match is not the store form.
        """
        first_in = steps[0].in_
        expected = self._path(first_in.name)
        match = None
        initial = None
        if expected == possible_match:
            match = match_file(first_in, expected, force_hash=False)
            if match is not None:
                initial = possible_match
        if match is None:
            cb = self._progress(progress_factory, "searching", first_in.name)
            match = match_file(first_in, expected, force_hash=True, progress_cb=cb)
            if match is not None:
                initial = expected
        return initial, initial is not None and match.kind != STORE

    def required_space(self, steps: list[DeltaStep], strategy: Strategy) -> int:
        """Free space needed for ``strategy``, rounded up to whole blocks."""
        last = steps[-1]
        block = self.policy.block_size
        if strategy == Strategy.FULL:
            return size_on_disk(0 if last.out.tag is not None else last.out.official.size, block)
        space = 0
        for step in steps:
            if step.update.tag is None:
                space += size_on_disk(step.update.update.size, block)
        if self.policy.apply_signature:
            space += size_on_disk(last.signature.update.size, block)
        biggest = max(size_on_disk(step.update.applied.size, block) for step in steps)
        return space + 3 * size_on_disk(biggest, block)

    def _plan_with_deltas(
        self,
        steps: list[DeltaStep],
        latest_full_name: Optional[str],
        current_zip: str,
        progress_factory: Optional[ProgressFactory],
    ) -> BuildPlan:
        last = steps[-1]
        flash_filename = self._path(last.out.name)
        delta_size = self.delta_download_size(steps, progress_factory)
        full_size = last.out.official.size
        self.logger.debug("download size --> deltas[%d] vs full[%d]", delta_size, full_size)

        initial, needs_normalization = self.find_initial_file(steps, flash_filename, progress_factory)
        self.logger.debug("initial: %s", initial or "not found")

        delta_zip = last.out.name
        better_full = delta_size > full_size or is_newer_name(latest_full_name, delta_zip)
        full_possible = _is_newer_number(latest_full_name, current_zip)
        delta_possible = (
            initial is not None
            and _is_newer_number(delta_zip, current_zip)
            and delta_zip == latest_full_name
        )
        self.logger.debug(
            "delta possible = %s, full possible = %s, better full = %s",
            delta_possible,
            full_possible,
            better_full,
        )

        if not full_possible and not delta_possible:
            strategy = Strategy.NONE
        elif not delta_possible or (better_full and full_possible):
            strategy = Strategy.FULL
        else:
            strategy = Strategy.DELTA

        plan = BuildPlan(
            strategy,
            delta_download_size=delta_size,
            full_download_size=full_size,
            initial_file=initial,
            initial_needs_normalization=needs_normalization,
            update_available=strategy != Strategy.NONE,
        )
        if strategy == Strategy.NONE:
            return plan
        plan.download_size = delta_size if strategy == Strategy.DELTA else full_size
        plan.required_space = self.required_space(steps, strategy)
        if strategy == Strategy.DELTA:
            plan.flash_filename = flash_filename
        elif latest_full_name is not None:
            plan.flash_filename = self._path(latest_full_name)
        return plan
