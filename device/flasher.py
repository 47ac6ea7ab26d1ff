"""Flashing collaborators.

The updater never installs anything itself. It hands the verified artifact to
a Flasher:

- A/B devices stream the package into the inactive slot (``install_ab``),
  reporting progress and completion through callbacks.
- Recovery-based devices get an OpenRecoveryScript written next to the
  recovery and are rebooted into it (``install_via_recovery_script``).

**Usage:**

.. code-block:: python

    from device.flasher import RecoveryScriptFlasher

    flasher = RecoveryScriptFlasher(
        script_path="/cache/recovery/openrecoveryscript",
        keys_path="/cache/recovery/keys",
        reboot=lambda: subprocess.run(["reboot", "recovery"], check=False),
    )
    flasher.install_via_recovery_script("/sdcard/OpenDelta/rom.zip", [], signature_mode=False)

Copyright (c) 2025 deltaota contributors
SPDX-License-Identifier: MIT
"""

from __future__ import annotations

import logging
import os
import threading
import zipfile
from typing import Callable, Optional, Sequence

from delta.errors import PlatformError

logger = logging.getLogger(__name__)

InstallProgress = Callable[[float, int, int], None]
"""Called with (percent, done, total) while an A/B install runs."""

InstallDone = Callable[[int, int], None]
"""Called with (status, error_code) when an A/B install ends; status 0 is success."""

AB_PAYLOAD_FILES = ("payload.bin", "payload_properties.txt")


def is_ab_package(path: str) -> bool:
    """Return True if ``path`` is a ZIP carrying an A/B payload."""
    try:
        with zipfile.ZipFile(path) as zf:
            names = set(zf.namelist())
    except (OSError, zipfile.BadZipFile) as ex:
        logger.error("Cannot read package %s: %s", path, ex)
        return False
    return all(name in names for name in AB_PAYLOAD_FILES)


def build_recovery_script(
    path: str,
    extras: Sequence[str],
    signature_mode: bool,
    secure_mode: bool,
) -> list[str]:
    """
    Compose the OpenRecoveryScript lines installing ``path``.

    With ``signature_mode`` the recovery's key store is swapped for the
    injected keys around the install and signature verification is enforced.
    Extra ZIPs are skipped in secure mode since anything could have placed them.

    Args:
        path: Package to install, relative to the storage root.
        extras: Additional packages installed after the update.
        signature_mode: Verify the package against the injected keys.
        secure_mode: Ignore extra packages.

    Returns:
        list[str]: Script lines without trailing newlines.
    """
    if signature_mode:
        lines = [
            "cmd cat /res/keys > /res/keys_org",
            "cmd cat /cache/recovery/keys > /res/keys",
            "set tw_signed_zip_verify 1",
            f"install {path}",
            "set tw_signed_zip_verify 0",
            "cmd cat /res/keys_org > /res/keys",
            "cmd rm /res/keys_org",
        ]
    else:
        lines = ["set tw_signed_zip_verify 0", f"install {path}"]
    if not secure_mode:
        lines.extend(f"install {extra}" for extra in extras)
    lines.append("wipe cache")
    return lines


class Flasher:
    """
    Base flasher. Tracks the "install running" flag; both install paths are
    unsupported unless a subclass provides them.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._installing = False
        self.logger = logging.getLogger(__name__)

    def is_installing(self) -> bool:
        with self._lock:
            return self._installing

    def set_installing(self, installing: bool) -> None:
        with self._lock:
            self._installing = installing

    def install_ab(self, path: str, progress_cb: InstallProgress, done_cb: InstallDone) -> bool:
        """Start streaming ``path`` into the inactive slot. Returns False if it could not start."""
        self.logger.error("A/B install not supported by %s", type(self).__name__)
        return False

    def resume_ab(self, path: str, progress_cb: InstallProgress, done_cb: InstallDone) -> bool:
        """Re-attach to an install started before a restart."""
        self.logger.error("A/B install not supported by %s", type(self).__name__)
        return False

    def install_via_recovery_script(self, path: str, extra_paths: Sequence[str], signature_mode: bool) -> None:
        """Schedule ``path`` for installation by the recovery and reboot into it.

        Raises:
            PlatformError: If the install could not be scheduled.
        """
        raise PlatformError("recovery install not supported")


class RecoveryScriptFlasher(Flasher):
    """
    Flasher writing an OpenRecoveryScript.

    Args:
        script_path: Location of the script the recovery executes.
        keys_path: Location of the injected verification keys.
        keys: Key material written to ``keys_path`` in signature mode.
        secure_mode: Ignore extra packages.
        storage_root: Prefix stripped from package paths, so they are relative
            to the storage root the recovery mounts.
        set_permissions: Called with each written file path.
        reboot: Reboots into recovery.
    """

    def __init__(
        self,
        script_path: str,
        keys_path: Optional[str] = None,
        keys: Optional[str] = None,
        secure_mode: bool = False,
        storage_root: Optional[str] = None,
        set_permissions: Optional[Callable[[str], None]] = None,
        reboot: Optional[Callable[[], None]] = None,
    ):
        super().__init__()
        self.script_path = script_path
        self.keys_path = keys_path
        self.keys = keys
        self.secure_mode = secure_mode
        self.storage_root = storage_root
        self.set_permissions = set_permissions
        self.reboot = reboot

    def _relative(self, path: str) -> str:
        if self.storage_root:
            root = os.path.join(self.storage_root, "")
            if path.startswith(root):
                return path[len(root):]
        return path

    def _write(self, path: str, lines: Sequence[str]) -> None:
        with open(path, "w", encoding="utf-8") as f:
            for line in lines:
                f.write(f"{line}\n")
        if self.set_permissions is not None:
            self.set_permissions(path)

    def install_via_recovery_script(self, path: str, extra_paths: Sequence[str], signature_mode: bool) -> None:
        signature_mode = signature_mode and bool(self.keys and self.keys_path)
        try:
            if signature_mode:
                self.logger.debug("writing %s", self.keys_path)
                self._write(self.keys_path, [self.keys])
            lines = build_recovery_script(
                self._relative(path),
                [self._relative(extra) for extra in extra_paths],
                signature_mode,
                self.secure_mode,
            )
            self.logger.debug("writing %s", self.script_path)
            self._write(self.script_path, lines)
        except OSError as ex:
            raise PlatformError(f"Failed to write recovery script: {ex}") from ex

        self.logger.info("Rebooting to recovery")
        if self.reboot is not None:
            self.reboot()
