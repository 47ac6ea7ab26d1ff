"""Device collaborators of the updater.

This package holds what the updater needs from the device it runs on:

- Condition sensors (``NetworkState``, ``BatteryState``, ``ScreenState``)
  deciding whether a background cycle may download.
- Flashers taking the verified artifact: A/B streaming installs or an
  OpenRecoveryScript plus a reboot into recovery.

The platform binding feeds the sensors and provides the reboot and
permission hooks; nothing here talks to hardware directly.

**Usage:**

.. code-block:: python

    from device import NetworkState, RecoveryScriptFlasher

    network = NetworkState(connected=True, metered=True, metered_allowed=False)
    network.get_state()   # False: background downloads avoid metered networks

    flasher = RecoveryScriptFlasher("/cache/recovery/openrecoveryscript")

Copyright (c) 2025 deltaota contributors
SPDX-License-Identifier: MIT
"""

from .flasher import (
    Flasher,
    InstallDone,
    InstallProgress,
    RecoveryScriptFlasher,
    build_recovery_script,
    is_ab_package,
)
from .sensors import BatteryState, BooleanState, NetworkState, ScreenState

__all__ = [
    "Flasher",
    "InstallDone",
    "InstallProgress",
    "RecoveryScriptFlasher",
    "build_recovery_script",
    "is_ab_package",
    "BatteryState",
    "BooleanState",
    "NetworkState",
    "ScreenState",
]
