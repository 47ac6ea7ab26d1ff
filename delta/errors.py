# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors
"""
Update error definitions.

This module defines the exceptions used across the update pipeline. Each
``UpdateError`` subclass names one failure class and the orchestrator state it
surfaces as, so callers map failures to states in a single place.

Exceptions:
    UpdateError: Base class for update pipeline errors.
    IneligibleError: The running build is not eligible for updates.
    ConnectivityError: No network or the server could not be reached.
    IntegrityError: A downloaded or assembled file failed hash verification.
    CapacityError: Not enough free space for the planned update.
    PatchError: The patch codec failed at some chain step.
    PlatformError: The flasher/installer rejected the artifact.
    PermissionDenied: Storage or reboot authorization is missing.
    MetadataError: A server document could not be parsed.
"""


class UpdateError(Exception):
    """Base class for update pipeline errors.

    Attributes:
        state: Orchestrator error state this failure surfaces as.
        retryable: Whether the next scheduled cycle may retry on its own.
        clears_state: Whether durable "latest known good" state must be dropped.
    """

    state = "error_unknown"
    retryable = True
    clears_state = False


class IneligibleError(UpdateError):
    """Raised when the running build is unofficial or otherwise not updatable."""

    state = "error_unofficial"
    retryable = False

    def __init__(self, version: str = ""):
        msg = "Build is not eligible for updates"
        if version:
            msg += f": {version}"
        super().__init__(msg)


class ConnectivityError(UpdateError):
    """Raised when there is no data connection or the server is unreachable."""

    state = "error_connection"


class DownloadFailed(UpdateError):
    """Raised when a transfer or metadata fetch fails."""

    state = "error_download"

    def __init__(self, target: str = ""):
        msg = "Download failed"
        if target:
            msg += f": {target}"
        super().__init__(msg)


class IntegrityError(UpdateError):
    """Raised when a file does not match its expected hash."""

    state = "error_unknown"
    clears_state = True

    def __init__(self, path: str = ""):
        msg = "Verification failed"
        if path:
            msg += f" for {path}"
        super().__init__(msg)


class CapacityError(UpdateError):
    """Raised when free disk space is below what the update requires."""

    state = "error_disk_space"

    def __init__(self, free: int = 0, required: int = 0):
        super().__init__(f"Not enough space: {free} bytes free, {required} bytes required")
        self.free = free
        self.required = required


class PatchError(UpdateError):
    """Raised when the patch codec fails at any chain step."""

    state = "error_unknown"
    clears_state = True


class PlatformError(UpdateError):
    """Raised when the flasher or installer rejects the artifact."""

    state = "error_flash"
    retryable = False


class PermissionDenied(UpdateError):
    """Raised when storage or reboot authorization is missing."""

    state = "error_permissions"
    retryable = False


class MetadataError(Exception):
    """Raised when a server metadata document is malformed.

    Args:
        field: The field that failed to parse.
        source: Optional document name for context.
    """

    def __init__(self, field: str = "", source: str = ""):
        msg = "Failed to parse metadata"
        if field:
            msg += f": missing or invalid '{field}' field"
        if source:
            msg += f" in {source}"
        super().__init__(msg)
