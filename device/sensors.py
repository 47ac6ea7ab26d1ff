"""Device condition sensors.

Background update checks only download when the device conditions allow it:
an unmetered (or explicitly allowed) connection, enough battery or a
charger, and optionally the screen being off. The platform binding that
observes the real hardware feeds these objects through their ``update()``
methods; the orchestrator only reads ``get_state()``.

Each sensor notifies its listeners when its boolean state changes.

Copyright (c) 2025 deltaota contributors
SPDX-License-Identifier: MIT
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)

StateListener = Callable[[bool], None]


class BooleanState(ABC):
    """Base class for a sensor exposing one boolean state with change listeners."""

    name = "sensor"

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: list[StateListener] = []
        self._last: Optional[bool] = None

    def add_listener(self, listener: StateListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @abstractmethod
    def _compute(self) -> bool:
        """Current boolean state; called with the lock held."""

    def get_state(self) -> bool:
        with self._lock:
            return self._compute()

    def _changed(self) -> None:
        """Re-evaluate the state and notify listeners if it flipped."""
        with self._lock:
            state = self._compute()
            if self._last is not None and self._last == state:
                return
            self._last = state
            listeners = list(self._listeners)
        logger.debug("%s state --> %d", self.name, 1 if state else 0)
        for listener in listeners:
            listener(state)


class NetworkState(BooleanState):
    """Connectivity and metered-network policy.

    ``is_connected()`` reports any connection; ``get_state()`` reports whether a
    background download may use the current connection.
    """

    name = "network"

    def __init__(self, connected: bool = True, metered: bool = False, metered_allowed: bool = False):
        super().__init__()
        self.connected = connected
        self.metered = metered
        self.metered_allowed = metered_allowed

    def _compute(self) -> bool:
        return self.connected and (not self.metered or self.metered_allowed)

    def is_connected(self) -> bool:
        with self._lock:
            return self.connected

    def update(self, connected: bool, metered: bool) -> None:
        with self._lock:
            self.connected = connected
            self.metered = metered
        self._changed()

    def set_metered_allowed(self, allowed: bool) -> None:
        with self._lock:
            self.metered_allowed = allowed
        self._changed()


class BatteryState(BooleanState):
    """Battery policy.

    With ``charge_only`` the state is True only while charging; otherwise it is
    True while the level is at least ``min_level``.
    """

    name = "battery"

    def __init__(self, min_level: int = 50, charge_only: bool = True, level: int = -1, charging: bool = False):
        super().__init__()
        self.min_level = min_level
        self.charge_only = charge_only
        self.level = level
        self.charging = charging

    def _compute(self) -> bool:
        return (self.charging and self.charge_only) or (self.level >= self.min_level and not self.charge_only)

    def update(self, level: int, charging: bool) -> None:
        with self._lock:
            self.level = level
            self.charging = charging
        self._changed()

    def configure(self, min_level: int, charge_only: bool) -> None:
        with self._lock:
            self.min_level = min_level
            self.charge_only = charge_only
        self._changed()


class ScreenState(BooleanState):
    """Screen on/off. ``get_state()`` is True while the screen is on."""

    name = "screen"

    def __init__(self, screen_on: bool = False):
        super().__init__()
        self.screen_on = screen_on

    def _compute(self) -> bool:
        return self.screen_on

    def update(self, screen_on: bool) -> None:
        with self._lock:
            self.screen_on = screen_on
        self._changed()
