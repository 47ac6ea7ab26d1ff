# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Updater states and the state update record pushed to observers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class State(str, Enum):
    """Orchestrator states. Values are stable strings shown to observers."""

    NONE = "action_none"
    CHECKING = "action_checking"
    CHECKING_SUM = "action_checking_sum"
    SEARCHING = "action_searching"
    SEARCHING_SUM = "action_searching_sum"
    DOWNLOADING = "action_downloading"
    DOWNLOADING_PAUSED = "action_downloading_paused"
    APPLYING = "action_applying"
    APPLYING_PATCH = "action_applying_patch"
    APPLYING_SUM = "action_applying_sum"
    READY = "action_ready"
    BUILD = "action_build"
    AB_FLASH = "action_ab_flash"
    AB_FINISHED = "action_ab_finished"
    FLASH_FILE_READY = "action_flash_file_ready"

    ERROR_DISK_SPACE = "error_disk_space"
    ERROR_DOWNLOAD = "error_download"
    ERROR_DOWNLOAD_RESUME = "error_download_resume"
    ERROR_CONNECTION = "error_connection"
    ERROR_UNOFFICIAL = "error_unofficial"
    ERROR_UNKNOWN = "error_unknown"
    ERROR_FLASH = "error_flash"
    ERROR_AB_FLASH = "error_ab_flash"
    ERROR_PERMISSIONS = "error_permissions"
    ERROR_FLASH_FILE = "error_flash_file"

    def __str__(self) -> str:
        return self.value


PROGRESS_STATES = frozenset(
    {
        State.CHECKING,
        State.CHECKING_SUM,
        State.SEARCHING,
        State.SEARCHING_SUM,
        State.DOWNLOADING,
        State.APPLYING,
        State.APPLYING_PATCH,
        State.APPLYING_SUM,
        State.AB_FLASH,
    }
)

# error_permissions only blocks the action that hit it, not later cycles
ERROR_STATES = frozenset(
    {
        State.ERROR_DISK_SPACE,
        State.ERROR_DOWNLOAD,
        State.ERROR_DOWNLOAD_RESUME,
        State.ERROR_CONNECTION,
        State.ERROR_UNOFFICIAL,
        State.ERROR_UNKNOWN,
        State.ERROR_FLASH,
        State.ERROR_AB_FLASH,
        State.ERROR_FLASH_FILE,
    }
)


def is_progress_state(state: State) -> bool:
    return state in PROGRESS_STATES


def is_error_state(state: State) -> bool:
    return state in ERROR_STATES


@dataclass(frozen=True)
class StateUpdate:
    """One state change as seen by observers.

    Attributes:
        state: New state.
        progress: Percent complete, when the state carries progress.
        current: Bytes done.
        total: Bytes expected.
        filename: File the state refers to.
        ms: Elapsed milliseconds, or the last check time for idle states.
        error_code: Platform error code for install failures, -1 otherwise.
    """

    state: State
    progress: Optional[float] = None
    current: Optional[int] = None
    total: Optional[int] = None
    filename: Optional[str] = None
    ms: Optional[int] = None
    error_code: int = -1
