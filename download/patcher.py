# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""
Patch application pipeline.

Rebuilds the latest build by applying every step of a delta chain to the
initial file. Intermediate results ping-pong between two temporary files; the
last patch (the signature patch when enabled) writes the final artifact into
the downloads directory.

The codec gives no progress feedback, so a sampler thread estimates progress
from the size of the output file being written.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from delta.codec import PatchCodec
from delta.errors import PatchError
from delta.models import DeltaStep

from .progress import SAMPLE_INTERVAL, percent_of

logger = logging.getLogger(__name__)

TEMP_NAMES = ("temp1", "temp2")

PatchProgress = Callable[[str, float, int, int], None]
"""Called with (display name, percent, done bytes, total bytes)."""


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as ex:
        logger.error("Failed to delete %s: %s", path, ex)


class _OutputSampler(threading.Thread):
    """Reports ``done_before + size(output)`` every 16 ms until stopped."""

    def __init__(self, output: str, display: str, done_before: int, total: int, progress_cb: PatchProgress):
        super().__init__(name="patch-progress", daemon=True)
        self.output = output
        self.display = display
        self.done_before = done_before
        self.total = total
        self.progress_cb = progress_cb
        self._stop_event = threading.Event()

    def run(self) -> None:
        while True:
            try:
                size = os.path.getsize(self.output)
            except OSError:
                size = 0
            done = self.done_before + size
            self.progress_cb(self.display, percent_of(done, self.total), done, self.total)
            if self._stop_event.wait(SAMPLE_INTERVAL):
                break

    def stop(self) -> None:
        self._stop_event.set()
        self.join()


class PatchPipeline:
    """
    Applies a chain of patches with a pluggable codec.

    Args:
        codec: PatchCodec performing normalize / apply_patch.
        downloads_dir: Directory holding the patch files and receiving the output.
        work_dir: Directory for the two temporary files; defaults to downloads_dir.
    """

    def __init__(self, codec: PatchCodec, downloads_dir: Path, work_dir: Optional[Path] = None):
        self.codec = codec
        self.downloads_dir = Path(downloads_dir)
        self.work_dir = Path(work_dir) if work_dir is not None else self.downloads_dir
        self.logger = logging.getLogger(__name__)

    def _path(self, name: str) -> str:
        return os.path.join(self.downloads_dir, name)

    def _run(
        self,
        label: str,
        output: str,
        display: str,
        done_before: int,
        total: int,
        progress_cb: Optional[PatchProgress],
        action: Callable[[], bool],
    ) -> None:
        self.logger.debug("%s --> [%s]", label, output)
        _remove(output)
        sampler = None
        if progress_cb is not None:
            sampler = _OutputSampler(output, display, done_before, total, progress_cb)
            sampler.start()
        started = time.monotonic()
        try:
            ok = action()
        except Exception as ex:
            raise PatchError(f"{label} failed for {display}: {ex}") from ex
        finally:
            if sampler is not None:
                sampler.stop()
        self.logger.debug("%s --> %s (%.1fs)", label, ok, time.monotonic() - started)
        if not ok:
            raise PatchError(f"{label} failed for {display}")

    def apply(
        self,
        steps: list[DeltaStep],
        initial_file: str,
        needs_normalization: bool,
        apply_signature: bool,
        progress_cb: Optional[PatchProgress] = None,
    ) -> Path:
        """
        Rebuild the output of the last step.

        Args:
            steps: Non-empty chain, oldest first; patch files must be in downloads_dir.
            initial_file: Input of the first step.
            needs_normalization: Normalize the initial file to store form first.
            apply_signature: Apply the last step's signature patch at the end.
            progress_cb: Optional patch progress callback.

        Returns:
            Path: The rebuilt artifact ``downloads_dir/<last out name>``.

        Raises:
            PatchError: If normalization or any patch fails. The partial
                artifact is removed. Temporary files are always removed.
        """
        first = steps[0]
        last = steps[-1]
        final = self._path(last.out.name)
        temps = [os.path.join(self.work_dir, name) for name in TEMP_NAMES]
        self.work_dir.mkdir(parents=True, exist_ok=True)

        total = sum(step.update.applied.size for step in steps)
        if needs_normalization:
            total += first.in_.store.size
        if apply_signature:
            total += last.signature.applied.size

        current = 0
        slot = 0
        try:
            if needs_normalization:
                out = temps[slot]
                self._run(
                    "normalize", out, os.path.basename(initial_file), current, total, progress_cb,
                    lambda: self.codec.normalize(initial_file, out),
                )
                slot = (slot + 1) % 2
                current += first.in_.store.size

            for index, step in enumerate(steps):
                source = temps[(slot + 1) % 2]
                if index == 0 and not needs_normalization:
                    source = initial_file
                out = temps[slot]
                if not apply_signature and step is last:
                    out = final
                patch = self._path(step.update.name)
                self._run(
                    "patch", out, step.update.name, current, total, progress_cb,
                    lambda s=source, p=patch, o=out: self.codec.apply_patch(s, p, o),
                )
                slot = (slot + 1) % 2
                current += step.update.applied.size

            if apply_signature:
                source = temps[(slot + 1) % 2]
                patch = self._path(last.signature.name)
                self._run(
                    "signature", final, last.signature.name, current, total, progress_cb,
                    lambda: self.codec.apply_patch(source, patch, final),
                )
        except PatchError:
            _remove(final)
            raise
        finally:
            for temp in temps:
                _remove(temp)
        self.logger.info("Patches applied: %s", final)
        return Path(final)
