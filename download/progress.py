# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Progress callback plumbing shared by the verifier, transfer and patcher.

Progress callbacks have the signature ``progress_cb(percent, done, total)``
where ``percent`` is a float in [0, 100].
"""

from __future__ import annotations

import time
from typing import Callable, Optional

ProgressCallback = Callable[[float, int, int], None]

DOWNLOAD_INTERVAL = 0.250
SAMPLE_INTERVAL = 0.016


def percent_of(done: int, total: int) -> float:
    """Return ``done`` as a percentage of ``total`` (0 when total is unknown)."""
    if total <= 0:
        return 0.0
    return min(100.0, done * 100.0 / total)


class Throttle:
    """Limits a progress callback to one call per ``interval`` seconds.

    ``report(..., force=True)`` always goes through; use it for the first and
    the final update.
    """

    def __init__(self, callback: Optional[ProgressCallback], interval: float):
        self.callback = callback
        self.interval = interval
        self._last = 0.0

    def report(self, done: int, total: int, *, force: bool = False) -> None:
        if self.callback is None:
            return
        now = time.monotonic()
        if not force and now - self._last < self.interval:
            return
        self._last = now
        self.callback(percent_of(done, total), done, total)


ProgressFactory = Callable[[str, str], Optional[ProgressCallback]]
"""Returns the hashing progress callback for ``(phase, filename)``.

``phase`` is "checking" while verifying known files and "searching" while
looking for the file a chain starts from.
"""
