# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""
Patch codec interface.

The binary patch format is opaque to this project. A codec exposes two
file-to-file primitives and reports success as a boolean:

- normalize: rewrite a flashable ZIP into its canonical stored form, so a
  file found on the device can be patched as if freshly downloaded.
- apply_patch: produce an output file from a source file and a patch file.

CommandCodec runs external tools for both primitives.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence


class PatchCodec(ABC):
    """Base class for patch codecs."""

    @abstractmethod
    def normalize(self, source: str, output: str) -> bool:
        """Write the canonical stored form of ``source`` to ``output``."""
        raise NotImplementedError

    @abstractmethod
    def apply_patch(self, source: str, patch: str, output: str) -> bool:
        """Apply ``patch`` to ``source`` and write the result to ``output``."""
        raise NotImplementedError


@dataclass
class CommandCodec(PatchCodec):
    """
    Codec backed by external command-line tools.

    Each command is an argument list in which ``{source}``, ``{patch}`` and
    ``{output}`` are substituted. A zero exit status means success.

    Attributes:
        normalize_cmd: Command used by normalize().
        patch_cmd: Command used by apply_patch().
        timeout: Optional timeout in seconds for a single invocation.
    """

    normalize_cmd: Sequence[str] = ("zipadjust", "--decompress", "{source}", "{output}")
    patch_cmd: Sequence[str] = ("dedelta", "{source}", "{patch}", "{output}")
    timeout: float | None = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__), repr=False)

    def _run(self, template: Sequence[str], **values: str) -> bool:
        args = [part.format(**values) for part in template]
        self.logger.debug("codec: %s", " ".join(args))
        try:
            proc = subprocess.run(args, check=False, capture_output=True, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as ex:
            self.logger.error("codec command failed to run: %s", ex)
            return False
        if proc.returncode != 0:
            self.logger.error(
                "codec command exited with %d: %s",
                proc.returncode,
                proc.stderr.decode("utf-8", errors="replace").strip(),
            )
            return False
        return True

    def normalize(self, source: str, output: str) -> bool:
        return self._run(self.normalize_cmd, source=source, output=output)

    def apply_patch(self, source: str, patch: str, output: str) -> bool:
        return self._run(self.patch_cmd, source=source, patch=patch, output=output)
