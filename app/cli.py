# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Command-line front end for the updater.

Usage:
    python -m app check
    python -m app download
    python -m app flash
    python -m app history -n 20
"""

from __future__ import annotations

import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from delta.client import DeltaClient
from delta.codec import CommandCodec
from device.flasher import RecoveryScriptFlasher
from device.sensors import BatteryState, NetworkState, ScreenState
from download import PATHS, CheckLog, Paths, StateStore, init_db, is_healthy, repair_db

from app.config import AppConfig, AutoDownload, load_config
from app.orchestrator import UpdateOrchestrator, get_session_id
from app.progress_tracker import ProgressTracker, stage_for
from app.states import State, StateUpdate, is_error_state

VERSION = "1.0.0"


class ConsoleView:
    """Observer printing state changes and drawing a progress bar."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self.tracker = ProgressTracker(self._render)
        self._bar: Optional[tqdm] = None
        self._stage: Optional[str] = None
        self._last_state: Optional[State] = None

    def _close_bar(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
            self._stage = None

    def _render(self, stage: str, done: int, total: int, label: str) -> None:
        if self._bar is None or self._stage != stage:
            self._close_bar()
            self._bar = tqdm(total=total, unit="B", unit_scale=True, file=self.stream, bar_format="{l_bar}{bar}")
            self._stage = stage
        self._bar.total = total
        self._bar.n = done
        self._bar.set_description_str(label, refresh=False)
        self._bar.refresh()

    def __call__(self, update: StateUpdate) -> None:
        stage = stage_for(update.state)
        if stage is not None and update.total:
            self.tracker.update_progress(stage, update.current or 0, update.total, update.filename)
            return
        if update.state == self._last_state:
            return
        self._last_state = update.state
        self._close_bar()
        self.tracker.reset()
        message = describe(update)
        if message:
            print(message, file=self.stream)

    def close(self) -> None:
        self._close_bar()


def describe(update: StateUpdate) -> str:
    """One-line human readable description of a state update."""
    state = update.state
    name = update.filename or ""
    if state == State.NONE:
        return "System up to date"
    if state == State.BUILD:
        return "New build available"
    if state == State.READY:
        return f"Update ready to flash: {name}"
    if state == State.FLASH_FILE_READY:
        return f"File ready to flash: {name}"
    if state == State.DOWNLOADING_PAUSED:
        return f"Download paused: {name} ({update.progress or 0.0:.1f}%)"
    if state == State.AB_FINISHED:
        return "Update installed, reboot to finish"
    if state == State.ERROR_DISK_SPACE:
        return f"Not enough space: {update.current} bytes free, {update.total} bytes required"
    if is_error_state(state) or state == State.ERROR_PERMISSIONS:
        return f"Error: {state.value}" + (f" ({name})" if name else "")
    return f"{state.value.replace('action_', '').replace('_', ' ').capitalize()}..."


class UpdaterApp:
    """
    CLI application class for the updater.
    Parses arguments and dispatches to the orchestrator.
    """

    def __init__(self) -> None:
        """
        Initialize the top-level argument parser.
        """
        self.parser = argparse.ArgumentParser(
            prog="deltaota", description="Check, download and flash incremental OTA updates"
        )
        self._setup_args()
        self.logger = logging.getLogger(__name__)

    def _setup_args(self) -> None:
        """Define command-line arguments and subcommands."""
        p = self.parser
        p.add_argument("-c", "--config", type=Path, help="path to config.toml")
        p.add_argument("-d", "--data-dir", type=Path, help="data directory (default: $DELTA_DATA_DIR or ./data)")
        p.add_argument("-v", "--verbose", action="store_true", help="also log to stderr")
        p.add_argument("--version", action="version", version=f"deltaota {VERSION}")

        subs = p.add_subparsers(dest="command", required=True)
        subs.add_parser("check", help="check for an update without downloading")
        subs.add_parser("download", help="check, download and build the update (Ctrl+C pauses)")
        subs.add_parser("flash", help="install the ready update")
        ff = subs.add_parser("flash-file", help="mark a local ZIP as the file to flash")
        ff.add_argument("path", help="ZIP file to flash")
        subs.add_parser("stop", help="stop a paused download and delete the partial file")
        subs.add_parser("clear-install-lock", help="forget a stuck install-running flag")
        subs.add_parser("status", help="print the current state and stored update info")
        hist = subs.add_parser("history", help="list past check cycles")
        hist.add_argument("-n", "--limit", type=int, default=20, help="number of cycles to show")
        subs.add_parser("repair-db", help="check and repair the state database")

    def _setup_logging(self, paths: Paths, verbose: bool) -> None:
        """Setup logging to file in data directory."""
        log_dir = paths.data_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "app.log"

        handlers: list[logging.Handler] = [logging.FileHandler(log_file, mode="a", encoding="utf-8")]
        if verbose:
            handlers.append(logging.StreamHandler(sys.stderr))
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="%(asctime)s - %(levelname)s - %(message)s",
            handlers=handlers,
        )
        self.logger.info("=" * 60)
        self.logger.info("Application started")
        self.logger.info("Session ID: %s", get_session_id())

    def build_orchestrator(self, config: AppConfig, paths: Paths) -> UpdateOrchestrator:
        """Wire the orchestrator with the real network client, codec and flasher."""
        flash = config.flash
        flasher = RecoveryScriptFlasher(
            script_path=flash.script_path,
            keys_path=flash.keys_path,
            keys=flash.inject_signature_keys or None,
            secure_mode=flash.secure_mode,
            storage_root=flash.storage_root or None,
            set_permissions=lambda path: os.chmod(path, 0o644),
            reboot=lambda: subprocess.run(flash.reboot_cmd, check=False),
        )
        policy = config.policy
        paths.data_dir.mkdir(parents=True, exist_ok=True)
        return UpdateOrchestrator(
            config,
            StateStore(paths.db_path),
            history=CheckLog(paths.db_path),
            client=DeltaClient(config.server),
            codec=CommandCodec(tuple(config.codec.normalize), tuple(config.codec.patch)),
            flasher=flasher,
            network=NetworkState(metered_allowed=policy.metered_allowed),
            battery=BatteryState(policy.battery_min_level, policy.charge_only),
            screen=ScreenState(),
            paths=paths,
            has_permissions=lambda: os.access(paths.data_dir, os.W_OK),
        )

    def _wait(self, orch: UpdateOrchestrator) -> None:
        try:
            orch.wait()
        except KeyboardInterrupt:
            print("\npausing download...")
            orch.pause_download()
            orch.wait()

    def run(self, argv: Optional[list[str]] = None) -> int:
        """
        Entry point: parse args and invoke the appropriate command.

        :return: exit code (0 on success)
        """
        args = self.parser.parse_args(argv)
        paths = Paths.under(args.data_dir) if args.data_dir else PATHS
        self._setup_logging(paths, args.verbose)

        if args.command == "repair-db":
            if is_healthy(paths.db_path):
                print("database is healthy")
                return 0
            repair_db(paths.db_path)
            init_db(paths.db_path)
            print("database repaired")
            return 0

        if args.command == "history":
            for ev in CheckLog(paths.db_path).list_checks(limit=args.limit):
                print(
                    f"{ev.started_at}  {ev.mode:<8} {'user' if ev.user_initiated else 'auto':<4}  "
                    f"{ev.strategy:<7} {ev.state:<28} {ev.latest_build or '-'}"
                )
            return 0

        config = load_config(args.config)
        orch = self.build_orchestrator(config, paths)
        view = ConsoleView()
        try:
            orch.auto_state(True, AutoDownload.CHECK, False)
            orch.subscribe(view)
            ok = self._dispatch(args, orch)
        finally:
            view.close()
            orch.shutdown()
        if not ok or is_error_state(orch.state) or orch.state == State.ERROR_PERMISSIONS:
            return 1
        return 0

    def _dispatch(self, args: argparse.Namespace, orch: UpdateOrchestrator) -> bool:
        if args.command == "check":
            started = orch.check_now()
            if started:
                self._wait(orch)
            return started
        if args.command == "download":
            started = orch.download_now()
            if started:
                self._wait(orch)
            return started
        if args.command == "flash":
            return orch.flash_now()
        if args.command == "flash-file":
            return orch.flash_file(os.path.abspath(args.path))
        if args.command == "stop":
            orch.stop_download()
            return True
        if args.command == "clear-install-lock":
            orch.clear_install_lock()
            return True
        if args.command == "status":
            for key, value in sorted(orch.store.snapshot().items()):
                print(f"{key} = {value}")
            return True
        return False


def main(argv: Optional[list[str]] = None) -> int:
    return UpdaterApp().run(argv)
