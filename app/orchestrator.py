# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Update orchestration.

This module owns the updater state machine. A single background worker runs
one check cycle at a time: build list, delta chain, plan, downloads, patching
and final verification. Observers subscribe to state changes; every
transition goes through one locked method.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from delta.builds import parse_build_list, parse_sha256sum
from delta.client import DeltaClient
from delta.codec import CommandCodec, PatchCodec
from delta.errors import (
    CapacityError,
    ConnectivityError,
    DownloadFailed,
    IneligibleError,
    IntegrityError,
    MetadataError,
    PermissionDenied,
    PlatformError,
    UpdateError,
)
from delta.models import DeltaStep
from device.flasher import Flasher, is_ab_package
from device.sensors import BatteryState, NetworkState, ScreenState
from download import state_repository as keys
from download.chain import ChainResolution, ChainResolver
from download.check_log_repository import CheckLog
from download.config import PATHS, Paths
from download.patcher import PatchPipeline
from download.planner import BuildPlan, BuildPlanner, PlanPolicy, Strategy
from download.progress import DOWNLOAD_INTERVAL, ProgressCallback, Throttle
from download.state_repository import StateStore
from download.transfer import ResumableTransfer, TransferResult
from download.verifier import match_file, sha256_file

from app.config import AppConfig, AutoDownload
from app.states import State, StateUpdate, is_error_state, is_progress_state

SNOOZE_MS = 24 * 60 * 60 * 1000
DEFAULT_PAUSED_TOTAL = 1_500_000_000

Observer = Callable[[StateUpdate], None]

# Generate unique session ID for this application instance
_SESSION_ID = str(uuid.uuid4())


def get_session_id() -> str:
    """Get the current application session ID."""
    return _SESSION_ID


class Notifier:
    """User-visible notifications. The default implementation only logs."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def update_available(self, filename: Optional[str]) -> None:
        self.logger.info("Update available: %s", filename or "new build")

    def error(self, state: State) -> None:
        self.logger.warning("Update error: %s", state.value)

    def cancel(self) -> None:
        """Dismiss any pending update or error notification."""


@dataclass
class _CycleRecord:
    strategy: str = "unknown"
    latest_build: Optional[str] = None
    download_size: int = -1


def _delete(path: str | Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as ex:
        logging.getLogger(__name__).error("Failed to delete %s: %s", path, ex)


class UpdateOrchestrator:
    """
    Drives update checks, downloads, patching and flashing.

    Args:
        config: Application configuration.
        store: Durable updater state.
        history: Optional check cycle log.
        client: DeltaClient; built from ``config.server`` if omitted.
        codec: Patch codec; a CommandCodec from ``config.codec`` if omitted.
        flasher: Flasher receiving ready artifacts.
        network: Network sensor.
        battery: Battery sensor.
        screen: Screen sensor.
        paths: Data and downloads directories.
        notifier: User-visible notification sink.
        has_permissions: Returns whether storage/reboot authorization is granted.
        free_space: Returns the free bytes at a path.
        clock: Returns the wall clock time in seconds.
    """

    def __init__(
        self,
        config: AppConfig,
        store: StateStore,
        history: Optional[CheckLog] = None,
        client: Optional[DeltaClient] = None,
        codec: Optional[PatchCodec] = None,
        flasher: Optional[Flasher] = None,
        network: Optional[NetworkState] = None,
        battery: Optional[BatteryState] = None,
        screen: Optional[ScreenState] = None,
        paths: Paths = PATHS,
        notifier: Optional[Notifier] = None,
        has_permissions: Callable[[], bool] = lambda: True,
        free_space: Optional[Callable[[Path], int]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store
        self.history = history
        self.client = client or DeltaClient(config.server)
        self.codec = codec or CommandCodec(config.codec.normalize, config.codec.patch)
        self.flasher = flasher or Flasher()
        self.network = network or NetworkState(metered_allowed=config.policy.metered_allowed)
        self.battery = battery or BatteryState(config.policy.battery_min_level, config.policy.charge_only)
        self.screen = screen or ScreenState()
        self.paths = paths
        self.notifier = notifier or Notifier()
        self.has_permissions = has_permissions
        self.free_space = free_space or (lambda path: shutil.disk_usage(path).free)
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        downloads = self.paths.downloads_dir
        self.transfer = ResumableTransfer(self.client)
        self.resolver = ChainResolver(self.client, downloads)
        self.planner = BuildPlanner(downloads, PlanPolicy(apply_signature=config.policy.apply_signature))
        self.pipeline = PatchPipeline(self.codec, downloads)

        self._lock = threading.RLock()
        self._state = State.NONE
        self._observers: list[Observer] = []
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="update")
        self._future: Optional[Future] = None
        self._running = False
        self._stop_event = threading.Event()
        self._stop_mode: Optional[str] = None
        self._failed_count = 0

    # --- State --- #
    @property
    def state(self) -> State:
        with self._lock:
            return self._state

    @property
    def failed_count(self) -> int:
        return self._failed_count

    def subscribe(self, observer: Observer) -> None:
        """Register ``observer`` and push the current state to it."""
        with self._lock:
            self._observers.append(observer)
            update = StateUpdate(self._state)
        observer(update)

    def unsubscribe(self, observer: Observer) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def _update_state(
        self,
        state: State,
        progress: Optional[float] = None,
        current: Optional[int] = None,
        total: Optional[int] = None,
        filename: Optional[str] = None,
        ms: Optional[int] = None,
        error_code: int = -1,
    ) -> None:
        update = StateUpdate(state, progress, current, total, filename, ms, error_code)
        with self._lock:
            if state != self._state:
                self.logger.debug("state --> %s", state.value)
            self._state = state
            for observer in list(self._observers):
                observer(update)

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    # --- Helpers --- #
    @property
    def current_zip(self) -> str:
        return self.config.device.filename_base + ".zip"

    def _download_path(self, name: str) -> str:
        return os.path.join(self.paths.downloads_dir, name)

    def _in_downloads(self, path: str) -> bool:
        return path.startswith(os.path.join(str(self.paths.downloads_dir), ""))

    def _sum_progress(self, state: State, name: str) -> ProgressCallback:
        def cb(percent: float, done: int, total: int) -> None:
            self._update_state(state, percent, done, total, name)

        return cb

    def _hash_progress(self, phase: str, name: str) -> ProgressCallback:
        if phase == "searching":
            self._update_state(State.SEARCHING)
            return self._sum_progress(State.SEARCHING_SUM, name)
        return self._sum_progress(State.CHECKING_SUM, name)

    def _check_for_finished_update(self) -> bool:
        finished = self.store.get_bool(keys.PENDING_REBOOT) or self.state == State.AB_FINISHED
        if finished:
            self.logger.info("Previous update finished, pending reboot")
            self.store.put(keys.PENDING_REBOOT, False)
        return finished

    def _is_snoozed(self) -> bool:
        time_snooze = abs(self._now_ms() - self.store.get_int(keys.LAST_SNOOZE_TIME, 0)) <= SNOOZE_MS
        if time_snooze:
            latest = self.store.get_str(keys.LATEST_FULL_NAME)
            snoozed = self.store.get_str(keys.SNOOZED_BUILD_NAME)
            if latest is not None and snoozed is not None and latest != snoozed:
                return False
        return time_snooze

    def _notify_update(self, filename: Optional[str]) -> None:
        if self._is_snoozed():
            self.logger.debug("notification snoozed")
            return
        self.notifier.update_available(filename)

    def _update_available(self) -> bool:
        return (
            self.store.get_str(keys.LATEST_FULL_NAME) is not None
            or self.store.get_str(keys.LATEST_DELTA_NAME) is not None
        )

    def _should_show_error_notification(self, state: State) -> None:
        daily = self.config.policy.scheduler_mode == "daily"
        if daily or self._failed_count >= self.config.policy.error_notify_threshold:
            self.notifier.error(state)
            self._failed_count = 0

    def _screen_allows(self) -> bool:
        if self.config.policy.screen_off_only:
            return not self.screen.get_state()
        return True

    def _delete_part_files(self, keep: Optional[str] = None) -> Optional[Path]:
        """Delete ``*.part`` files in the downloads directory except ``keep``; return ``keep`` if found."""
        found = None
        downloads = self.paths.downloads_dir
        if not downloads.is_dir():
            return None
        for entry in downloads.iterdir():
            if not entry.is_file() or not entry.name.endswith(".part"):
                continue
            if keep is not None and entry.name == keep:
                found = entry
            else:
                _delete(entry)
        return found

    def _discard_partial_downloads(self) -> None:
        """Delete every ``*.part`` file and the partial file of a paused delta download."""
        self._delete_part_files()
        paused = self.store.get_str(keys.PAUSED_DELTA_NAME)
        if paused is not None:
            _delete(self._download_path(paused))
        self.store.put(keys.PAUSED_DELTA_NAME, None)
        self.store.put(keys.PAUSED_BYTES, None)

    def _update_paused(self, name: str, current: int, state: State = State.DOWNLOADING_PAUSED) -> None:
        total = self.store.get_int(keys.DOWNLOAD_SIZE, DEFAULT_PAUSED_TOTAL)
        if total <= 0:
            total = DEFAULT_PAUSED_TOTAL
        self._update_state(
            state,
            current * 100.0 / total,
            current,
            total,
            name,
            self.store.get_int(keys.LAST_DOWNLOAD_TIME, 0),
        )

    # --- Idle evaluation --- #
    def auto_state(self, user_initiated: bool = False, mode: AutoDownload = AutoDownload.CHECK, notify: bool = False) -> None:
        """Re-evaluate the idle state from durable state and local files."""
        with self._lock:
            if self._running:
                self.logger.debug("auto state skipped, cycle running")
                return
        self._auto_state(user_initiated, mode, notify)

    def _auto_state(self, user_initiated: bool, mode: AutoDownload, notify: bool) -> None:
        state = self.state
        self.logger.debug("auto state: state = %s, user = %s, mode = %s", state.value, user_initiated, mode.value)
        if is_error_state(state):
            return
        if self._check_for_finished_update():
            return

        if self.config.device.ab_device and self.flasher.is_installing():
            path = self.store.get_str(keys.CURRENT_AB_FILENAME) or ""
            name = os.path.basename(path)
            self._update_state(State.AB_FLASH, 0.0, 0, 100, name)
            if not self.flasher.resume_ab(path, self._ab_progress(name), self.on_install_completed):
                self._update_state(State.ERROR_AB_FLASH)
            return

        filename = self.store.get_str(keys.READY_FILENAME)
        if filename is not None and not os.path.exists(filename):
            filename = None

        latest = self.store.get_str(keys.LATEST_FULL_NAME)
        if latest is not None:
            part = self._delete_part_files(keep=latest + ".part")
            if part is not None:
                self._update_paused(latest, part.stat().st_size)
                return

        paused = self.store.get_str(keys.PAUSED_DELTA_NAME)
        if paused is not None and os.path.exists(self._download_path(paused)):
            self._update_paused(paused, self.store.get_int(keys.PAUSED_BYTES, 0))
            return

        last_check = self.store.get_int(keys.LAST_CHECK_TIME, 0)
        if mode == AutoDownload.CHECK and filename is None:
            if not self._update_available():
                self.logger.debug("System up to date")
                self._update_state(State.NONE, ms=last_check)
            else:
                self.logger.debug("Update available")
                self._update_state(State.BUILD, ms=last_check)
                if not user_initiated and notify:
                    self._notify_update(latest)
            return

        if filename is None:
            self.logger.debug("System up to date")
            self._update_state(State.NONE, ms=last_check)
        else:
            self.logger.info("Update found: %s", filename)
            self._update_state(State.READY, filename=os.path.basename(filename), ms=last_check)
            if not user_initiated and notify:
                self._notify_update(os.path.basename(filename))

    # --- Entry points --- #
    def _require_permissions(self) -> None:
        if not self.has_permissions():
            raise PermissionDenied("Missing storage or reboot permission")

    def _check_permissions(self) -> bool:
        try:
            self._require_permissions()
        except PermissionDenied as ex:
            self.logger.error("%s", ex)
            state = State(ex.state)
            repeated = self.state == state
            self._update_state(state)
            if not ex.retryable and not repeated:
                self.notifier.error(state)
            return False
        return True

    def _ensure_eligible(self) -> None:
        device = self.config.device
        if not device.official:
            raise IneligibleError(device.filename_base)
        if not self.network.is_connected():
            raise ConnectivityError("No data connection")

    def check_now(self) -> bool:
        """User request: check for updates without downloading."""
        return self._check_permissions() and self.check_for_updates(True, AutoDownload.CHECK)

    def download_now(self) -> bool:
        """User request: check and download the update."""
        return self._check_permissions() and self.check_for_updates(True, AutoDownload.FULL)

    def on_want_update_check(self) -> bool:
        """Scheduler request: run a background cycle according to the auto-download policy."""
        state = self.state
        if is_progress_state(state):
            self.logger.info("Blocked scheduler request while running in state %s", state.value)
            return False
        mode = self.config.policy.auto_download
        if mode == AutoDownload.DISABLED:
            return False
        self.logger.info("Scheduler requests check for updates")
        return self.check_for_updates(False, mode)

    def check_for_updates(self, user_initiated: bool, mode: AutoDownload) -> bool:
        """
        Start a check cycle on the worker.

        Args:
            user_initiated: The user asked for this cycle.
            mode: CHECK to stop after planning, FULL to download and build.

        Returns:
            bool: True if a cycle was started.
        """
        if self._check_for_finished_update():
            return False
        if self.config.device.ab_device and self.flasher.is_installing():
            self.logger.info("Ignoring request to check for updates - install running")
            return False

        with self._lock:
            if self._running:
                self.logger.info("Ignoring request to check for updates - busy")
                return False

            self.store.clear_state()
            self.notifier.cancel()
            # so we have a time even in the error case
            self.store.put(keys.LAST_CHECK_TIME, self._now_ms())

            try:
                self._ensure_eligible()
            except UpdateError as ex:
                self.logger.info("Ignoring request to check for updates - %s", ex)
                filename = self.config.device.filename_base if isinstance(ex, IneligibleError) else None
                state = State(ex.state)
                repeated = self.state == state
                self._update_state(state, filename=filename)
                # failures that need user action are surfaced once
                if not ex.retryable and not repeated:
                    self.notifier.error(state)
                return False

            if not user_initiated:
                if mode == AutoDownload.DISABLED:
                    self.logger.info("Ignoring request to check for updates")
                    return False
                if mode == AutoDownload.FULL:
                    allowed = self.network.get_state() and self.battery.get_state() and self._screen_allows()
                    if not allowed:
                        self.logger.info("Auto-download not possible - fallback to check only")
                        mode = AutoDownload.CHECK

            self.logger.info("Starting check for updates (user = %s, mode = %s)", user_initiated, mode.value)
            self._running = True
            self._stop_event.clear()
            self._stop_mode = None
            self._update_state(State.CHECKING)
            self._future = self._executor.submit(self._run_cycle, user_initiated, mode)
        return True

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the current cycle, if any, has finished."""
        future = self._future
        if future is not None:
            future.result(timeout=timeout)

    def shutdown(self) -> None:
        self._stop_mode = "pause"
        self._stop_event.set()
        self._executor.shutdown(wait=True)

    def pause_download(self) -> bool:
        """Pause a running download, or resume a paused one."""
        state = self.state
        if state in (State.DOWNLOADING_PAUSED, State.ERROR_DOWNLOAD_RESUME):
            self.logger.info("Resuming download")
            self._stop_mode = None
            return self.check_for_updates(True, AutoDownload.FULL)
        self.logger.info("Pausing download")
        self._stop_mode = "pause"
        self._stop_event.set()
        self.auto_state(True, AutoDownload.CHECK, False)
        return True

    def stop_download(self) -> None:
        """Stop a running or paused download and delete its partial file."""
        self.logger.info("Stopping download")
        self._stop_mode = "stop"
        self._stop_event.set()
        self.notifier.cancel()
        if self.state in (State.ERROR_DOWNLOAD_RESUME, State.DOWNLOADING_PAUSED):
            self._discard_partial_downloads()
            self._update_state(State.NONE)
            self.auto_state(True, AutoDownload.CHECK, False)

    def clear_install_lock(self) -> None:
        """Forget a stuck "install running" flag."""
        self.logger.info("Clearing install lock")
        self.flasher.set_installing(False)

    def snooze_notification(self) -> None:
        """Snooze the update notification for 24 h or until a newer build appears."""
        self.store.put(keys.LAST_SNOOZE_TIME, self._now_ms())
        latest = self.store.get_str(keys.LATEST_FULL_NAME)
        if latest is not None:
            self.logger.info("Snoozing notification for %s", latest)
            self.store.put(keys.SNOOZED_BUILD_NAME, latest)

    # --- Cycle --- #
    def _run_cycle(self, user_initiated: bool, mode: AutoDownload) -> None:
        record = _CycleRecord()
        log_id = None
        if self.history is not None:
            log_id = self.history.start(
                session_id=get_session_id(),
                user_initiated=user_initiated,
                mode="download" if mode == AutoDownload.FULL else "check",
                current_build=self.current_zip,
            )
        clears_state = False
        try:
            self._cycle(user_initiated, mode, record)
        except CapacityError as ex:
            self.logger.error("%s", ex)
            self._update_state(State(ex.state), current=ex.free, total=ex.required)
        except UpdateError as ex:
            self.logger.error("Update cycle failed: %s", ex)
            clears_state = ex.clears_state
            self._update_state(State(ex.state))
        except Exception:
            self.logger.exception("Unexpected error in update cycle")
            clears_state = True
            self._update_state(State.ERROR_UNKNOWN)
        finally:
            self.store.put(keys.LAST_CHECK_TIME, self._now_ms())
            state = self.state
            if is_error_state(state):
                self._failed_count += 1
                # transient failures keep the latest build for the next cycle
                if clears_state:
                    self.store.clear_state()
                if user_initiated:
                    self.notifier.error(state)
                else:
                    self._should_show_error_notification(state)
            else:
                self._failed_count = 0
                self._auto_state(user_initiated, mode, True)
            if self.history is not None and log_id is not None:
                self.history.finish(
                    log_id,
                    state=self.state.value,
                    strategy=record.strategy,
                    latest_build=record.latest_build,
                    download_size=record.download_size,
                )
            with self._lock:
                self._running = False

    def _cycle(self, user_initiated: bool, mode: AutoDownload, record: _CycleRecord) -> None:
        cfg = self.config
        server = cfg.server
        self.paths.downloads_dir.mkdir(parents=True, exist_ok=True)
        self.paths.flash_after_update_dir.mkdir(parents=True, exist_ok=True)

        list_url = server.build_list_url(cfg.device.name)
        text = self.client.fetch_text(list_url)
        if text is None:
            raise ConnectivityError(f"Build list unavailable: {list_url}")
        try:
            latest = parse_build_list(text, cfg.device.name, cfg.device.android_version)
        except MetadataError as ex:
            raise DownloadFailed(list_url) from ex
        if latest is None:
            self.logger.info("No build found at %s for %s", list_url, cfg.device.name)
            return

        name = latest.filename
        record.latest_build = name
        full_url = latest.url if latest.has_overrides else server.full_build_url(name)
        sum_url = latest.sha256_url if latest.has_overrides else server.full_sum_url(name)
        self.logger.info("Latest full build for %s is %s", cfg.device.name, full_url)
        self.store.put(keys.LATEST_FULL_NAME, name)
        self.store.put(keys.LATEST_CHANGELOG, self.client.fetch_text(server.changelog_url()))

        if cfg.device.ab_device:
            resolution = ChainResolution()
        else:
            resolution = self.resolver.resolve(cfg.device.filename_base, name, self._hash_progress)
            self._update_state(State.CHECKING)
        if resolution.cached_output is not None:
            self.store.put(keys.DELTA_SIGNATURE, resolution.cached_signed)

        plan = self.planner.plan(
            resolution.steps,
            name,
            self.current_zip,
            cached_output=resolution.cached_output,
            progress_factory=self._hash_progress,
        )
        self._update_state(State.CHECKING)
        record.strategy = plan.strategy.value
        self.logger.info(
            "Plan: %s (delta %d bytes, full %d bytes, required space %d)",
            plan.strategy.value,
            plan.delta_download_size,
            plan.full_download_size,
            plan.required_space,
        )

        if plan.strategy == Strategy.READY:
            self.store.put(keys.READY_FILENAME, plan.flash_filename)
            return

        if not resolution.steps:
            if plan.strategy == Strategy.NONE:
                self.store.put(keys.LATEST_FULL_NAME, None)
            else:
                if self._check_existing_full_build(name, sum_url):
                    return
                size = self.client.content_length(full_url)
                record.download_size = size
                self.store.put(keys.DOWNLOAD_SIZE, size)
            if mode == AutoDownload.CHECK or plan.strategy == Strategy.NONE:
                return
        else:
            self._store_plan(plan, resolution.steps, record)
            if plan.strategy == Strategy.FULL and self._check_existing_full_build(name, sum_url):
                return
            if plan.strategy == Strategy.NONE:
                return
            free = self.free_space(self.paths.downloads_dir)
            self.logger.debug("required space = %d, free space = %d", plan.required_space, free)
            if free < plan.required_space:
                raise CapacityError(free, plan.required_space)
            if mode == AutoDownload.CHECK:
                return
            if plan.strategy == Strategy.DELTA:
                self._build_from_deltas(resolution.steps, plan, user_initiated)
                return

        if mode != AutoDownload.FULL:
            return
        if not (user_initiated or self.network.get_state()):
            self.logger.info("Aborting download due to network state")
            raise DownloadFailed(name)
        digest = self._fetch_sha256sum(sum_url)
        if digest is None:
            self.logger.error("Aborting download, checksum not found: %s", sum_url)
            raise DownloadFailed(sum_url)
        self._download_full_build(full_url, digest, name)

    def _store_plan(self, plan: BuildPlan, steps: list[DeltaStep], record: _CycleRecord) -> None:
        if not plan.update_available:
            self.store.put(keys.LATEST_DELTA_NAME, None)
            self.store.put(keys.LATEST_FULL_NAME, None)
            return
        if plan.strategy == Strategy.FULL:
            self.store.put(keys.LATEST_DELTA_NAME, None)
        else:
            self.store.put(keys.LATEST_DELTA_NAME, steps[-1].out.name)
        record.download_size = plan.download_size
        self.store.put(keys.DOWNLOAD_SIZE, plan.download_size)

    # --- Full builds --- #
    def _fetch_sha256sum(self, sum_url: str) -> Optional[str]:
        text = self.client.fetch_text(sum_url)
        if text is None:
            return None
        digest = parse_sha256sum(text)
        self.logger.debug("sha256sum = %s", digest)
        return digest or None

    def _check_existing_full_build(self, name: str, sum_url: str) -> bool:
        path = self._download_path(name)
        if not os.path.exists(path):
            return False
        digest = self._fetch_sha256sum(sum_url)
        if digest is None:
            self.logger.info("Checksum unavailable, keeping %s unverified", path)
            return False
        if sha256_file(path, self._sum_progress(State.CHECKING_SUM, name)) == digest:
            self.logger.info("match found (full): %s", path)
            self.store.put(keys.READY_FILENAME, path)
            return True
        _delete(path)
        return False

    def _download_full_build(self, url: str, digest: str, name: str) -> None:
        path = self._download_path(name)
        part = Path(path + ".part")
        self.logger.info("download: %s --> %s", url, path)
        self._delete_part_files(keep=part.name)

        started = time.monotonic()
        if part.exists():
            started -= self.store.get_int(keys.LAST_DOWNLOAD_TIME, 0) / 1000.0
        self._update_state(State.DOWNLOADING, 0.0, 0, 0, name)

        size_recorded = False

        def progress(percent: float, done: int, total: int) -> None:
            nonlocal size_recorded
            if not size_recorded:
                self.store.put(keys.DOWNLOAD_SIZE, total)
                size_recorded = True
            ms = int((time.monotonic() - started) * 1000)
            self._update_state(State.DOWNLOADING, percent, done, total, name, ms)

        result = self.transfer.fetch(
            url,
            part,
            expected_sha256=digest,
            progress_cb=progress,
            stop_event=self._stop_event,
            free_space=lambda: self.free_space(self.paths.downloads_dir),
            hash_progress_cb=self._sum_progress(State.CHECKING_SUM, part.name),
        )
        if result:
            os.replace(part, path)
            self.logger.info("Full build downloaded: %s", path)
            self.store.put(keys.READY_FILENAME, path)
            return

        self.store.put(keys.LAST_DOWNLOAD_TIME, int((time.monotonic() - started) * 1000))
        if result == TransferResult.NO_SPACE:
            raise CapacityError(self.free_space(self.paths.downloads_dir), self.store.get_int(keys.DOWNLOAD_SIZE))
        if result == TransferResult.INTEGRITY:
            raise DownloadFailed(name)
        if self._stop_mode == "stop":
            _delete(part)
            self.logger.info("Download stopped")
            return

        paused = self._stop_mode == "pause"
        current = part.stat().st_size if part.exists() else 0
        self.logger.info("Download %s", "paused" if paused else "error")
        self._update_paused(name, current, State.DOWNLOADING_PAUSED if paused else State.ERROR_DOWNLOAD_RESUME)

    # --- Delta builds --- #
    def _download_deltas(self, steps: list[DeltaStep], total: int, force: bool) -> bool:
        """Fetch every patch file not present yet. Returns False if stopped or not allowed."""
        started = time.monotonic()
        self._update_state(State.DOWNLOADING, 0.0, 0, total)
        done_before = 0
        name = None

        def report(percent: float, done: int, _total: int) -> None:
            ms = int((time.monotonic() - started) * 1000)
            self._update_state(State.DOWNLOADING, percent, done, total, name, ms)

        throttle = Throttle(report, DOWNLOAD_INTERVAL)

        # progress spans all files of the chain
        def progress(_percent: float, done: int, _total: int) -> None:
            throttle.report(done_before + done, total)

        files = [step.update for step in steps]
        if self.config.policy.apply_signature:
            files.append(steps[-1].signature)

        for asset in files:
            if asset.tag is not None:
                self.logger.debug("have %s already", asset.name)
                continue
            if not (force or self.network.get_state()):
                self.logger.info("Aborting download due to network state")
                return False

            name = asset.name
            path = self._download_path(asset.name)
            url = self.config.server.update_file_url(asset.name)
            self.logger.debug("download: %s --> %s", url, path)
            result = self.transfer.fetch(url, path, expected_sha256=asset.update.sha256, progress_cb=progress, stop_event=self._stop_event)
            if result:
                asset.set_tag(path)
                done_before += asset.update.size
                continue
            if result == TransferResult.STOPPED and self._stop_mode == "pause":
                # the partial file is resumed with a range request by the next cycle
                partial = os.path.getsize(path) if os.path.exists(path) else 0
                self.store.put(keys.LAST_DOWNLOAD_TIME, int((time.monotonic() - started) * 1000))
                self.store.put(keys.PAUSED_DELTA_NAME, asset.name)
                self.store.put(keys.PAUSED_BYTES, done_before + partial)
                self.logger.info("Download paused: %s", asset.name)
                self._update_paused(asset.name, done_before + partial)
                return False
            _delete(path)
            if result == TransferResult.STOPPED:
                self.logger.info("Download stopped")
                return False
            self.logger.error("Download error: %s", asset.name)
            raise DownloadFailed(path)

        self._update_state(State.DOWNLOADING, 100.0, total, total)
        return True

    def _build_from_deltas(self, steps: list[DeltaStep], plan: BuildPlan, user_initiated: bool) -> None:
        if not self._download_deltas(steps, plan.download_size, user_initiated):
            return

        started = time.monotonic()
        self._update_state(State.APPLYING)

        def progress(name: str, percent: float, done: int, total: int) -> None:
            ms = int((time.monotonic() - started) * 1000)
            self._update_state(State.APPLYING_PATCH, percent, done, total, name, ms)

        final = self.pipeline.apply(
            steps,
            plan.initial_file,
            plan.initial_needs_normalization,
            self.config.policy.apply_signature,
            progress_cb=progress,
        )

        last = steps[-1]
        self._update_state(State.APPLYING_SUM)
        if match_file(last.out, final, force_hash=True, progress_cb=self._sum_progress(State.APPLYING_SUM, last.out.name)) is None:
            self.logger.error("final verification error")
            _delete(final)
            raise IntegrityError(str(final))
        self.logger.info("final verification complete")

        for step in steps:
            _delete(self._download_path(step.update.name))
            _delete(self._download_path(step.signature.name))
            if step is not last:
                _delete(self._download_path(step.out.name))
        # the initial file is kept until flashing so later deltas can start from it
        if plan.initial_file is not None and self._in_downloads(plan.initial_file):
            self.store.put(keys.INITIAL_FILE, plan.initial_file)
        self.store.put(keys.DELTA_SIGNATURE, True)
        self.store.put(keys.READY_FILENAME, str(final))

    # --- Flashing --- #
    def flash_file(self, path: str) -> bool:
        """Mark a user-chosen ZIP as the artifact to flash."""
        self.logger.info("Flash file set: %s", path)
        if not os.path.isfile(path) or not os.path.basename(path).endswith(".zip"):
            self._update_state(State.ERROR_FLASH_FILE)
            return False
        self.store.put(keys.READY_FILENAME, path)
        self.store.put(keys.FILE_FLASH, True)
        self._update_state(State.FLASH_FILE_READY, filename=os.path.basename(path))
        return True

    def _handle_update_cleanup(self) -> str:
        ready = self.store.get_str(keys.READY_FILENAME)
        initial = self.store.get_str(keys.INITIAL_FILE)
        file_flash = self.store.get_bool(keys.FILE_FLASH)
        if ready is None or (not file_flash and not self._in_downloads(ready)) or not os.path.exists(ready):
            self.store.clear_state()
            raise PlatformError(f"No valid file to flash found: {ready}")
        if initial is not None and os.path.exists(initial) and self._in_downloads(initial):
            _delete(initial)
            self.logger.debug("deleted initial file %s", initial)
        return ready

    def _delete_old_flash_file(self, new_filename: str) -> None:
        old = self.store.get_str(keys.CURRENT_FILENAME)
        if old is not None and old != new_filename and self._in_downloads(old) and os.path.exists(old):
            self.logger.debug("delete old flash file %s", old)
            _delete(old)

    def _flash_after_update_zips(self) -> list[str]:
        directory = self.paths.flash_after_update_dir
        if not directory.is_dir():
            return []
        return sorted(str(p) for p in directory.iterdir() if p.is_file() and p.name.lower().endswith(".zip"))

    def flash_now(self) -> bool:
        """Install the ready artifact."""
        if not self._check_permissions():
            return False
        if self.config.device.ab_device:
            return self._flash_ab()
        return self._flash_recovery()

    def _flash_recovery(self) -> bool:
        delta_signature = self.store.get_bool(keys.DELTA_SIGNATURE)
        try:
            path = self._handle_update_cleanup()
        except PlatformError as ex:
            self.logger.error("%s", ex)
            self._update_state(State.ERROR_FLASH)
            return False

        self._delete_old_flash_file(path)
        self.store.put(keys.CURRENT_FILENAME, path)
        self.store.clear_state()

        extras = self._flash_after_update_zips()
        self.logger.debug("extra files to flash: %s", extras)
        try:
            self.flasher.install_via_recovery_script(
                path, extras, self.config.flash.inject_signature and delta_signature
            )
        except PlatformError as ex:
            self.logger.error("%s", ex)
            self._update_state(State.ERROR_FLASH)
            return False
        return True

    def _ab_progress(self, name: str) -> ProgressCallback:
        started = time.monotonic()

        def report(percent: float, done: int, total: int) -> None:
            ms = int((time.monotonic() - started) * 1000)
            self._update_state(State.AB_FLASH, percent, done, total, name, ms)

        throttle = Throttle(report, DOWNLOAD_INTERVAL)
        return lambda percent, done, total: throttle.report(done, total)

    def _flash_ab(self) -> bool:
        try:
            path = self._handle_update_cleanup()
        except PlatformError as ex:
            self.logger.error("%s", ex)
            self._update_state(State.ERROR_AB_FLASH)
            return False

        self.store.put(keys.CURRENT_AB_FILENAME, path)
        # hide the download size while flashing
        self.store.put(keys.DOWNLOAD_SIZE, -1)
        name = os.path.basename(path)
        self._update_state(State.AB_FLASH, 0.0, 0, 100, name)

        if not is_ab_package(path):
            self.logger.error("Not an A/B package: %s", path)
            self._update_state(State.ERROR_AB_FLASH)
            return False
        if not self.flasher.install_ab(path, self._ab_progress(name), self.on_install_completed):
            self._update_state(State.ERROR_AB_FLASH)
            return False
        return True

    def on_install_completed(self, status: int, error_code: int = -1) -> None:
        """A/B install finished; ``status`` 0 means success."""
        self.logger.info("Install completed: status = %d", status)
        self.notifier.cancel()
        if status == 0:
            self.store.put(keys.PENDING_REBOOT, True)
            ready = self.store.get_str(keys.READY_FILENAME)
            if ready is not None:
                self._delete_old_flash_file(ready)
                self.store.put(keys.CURRENT_FILENAME, ready)
            self._update_state(State.AB_FINISHED)
        else:
            self._update_state(State.ERROR_AB_FLASH, error_code=error_code)
