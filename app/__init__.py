# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Incremental OTA updater application.

This package wires the delta protocol (``delta``), the download and patch
pipeline (``download``) and the device collaborators (``device``) into the
update state machine, and exposes it on the command line.

Main Components:
    - UpdateOrchestrator: Check cycles, downloads, patching and flashing
    - State / StateUpdate: States pushed to observers
    - load_config: config.toml loading
    - UpdaterApp: argparse command-line front end

Example:
    Run a check from the command line::

        python -m app check

    Or programmatically::

        from app import UpdateOrchestrator, load_config
        from download import StateStore

        orch = UpdateOrchestrator(load_config(), StateStore())
        orch.subscribe(print)
        orch.check_now()
        orch.wait()

Copyright (c) 2025 deltaota contributors
SPDX-License-Identifier: MIT
"""

from app.config import AppConfig, AutoDownload, load_config
from app.orchestrator import Notifier, UpdateOrchestrator
from app.states import State, StateUpdate, is_error_state, is_progress_state

__all__ = [
    "AppConfig",
    "AutoDownload",
    "load_config",
    "Notifier",
    "UpdateOrchestrator",
    "State",
    "StateUpdate",
    "is_error_state",
    "is_progress_state",
]
