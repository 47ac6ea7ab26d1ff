# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Configuration management for the updater application.

This module handles loading of configuration settings from the config.toml
file. Every section is optional; missing keys fall back to defaults.

Example config.toml::

    [device]
    name = "device"
    filename_base = "rom-13-device-20250101"
    android_version = "13"
    official = true
    ab_device = false

    [server]
    base_url = "https://example.org/ota"
    delta_url = "https://example.org/ota/delta/"

    [policy]
    auto_download = "check"   # disabled / check / full
    apply_signature = true
    metered_allowed = false
    battery_min_level = 50
    charge_only = true
    screen_off_only = true
    scheduler_mode = "smart"  # smart / daily

    [flash]
    script_path = "/cache/recovery/openrecoveryscript"
    inject_signature = false

    [codec]
    normalize = ["zipadjust", "--decompress", "{source}", "{output}"]
    patch = ["dedelta", "{source}", "{patch}", "{output}"]
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path

from delta.config import ServerConfig


class AutoDownload(str, Enum):
    """What background cycles are allowed to do."""

    DISABLED = "disabled"
    CHECK = "check"
    FULL = "full"


@dataclass
class DeviceConfig:
    """Running device description.

    Attributes:
        name: Device code name used in build names and the build list URL.
        filename_base: Name of the running build without ``.zip``.
        android_version: Android version of the running build.
        official: Whether the running build is an official build.
        ab_device: Whether the device installs A/B updates.
    """

    name: str = "device"
    filename_base: str = ""
    android_version: str = "0"
    official: bool = True
    ab_device: bool = False


@dataclass
class PolicyConfig:
    """Update policy settings.

    Attributes:
        auto_download: Background behavior.
        apply_signature: Fetch and apply the trailing signature patch.
        metered_allowed: Background downloads may use metered networks.
        battery_min_level: Minimum battery level when not charge-only.
        charge_only: Background downloads only while charging.
        screen_off_only: Background downloads only while the screen is off.
        scheduler_mode: "smart" or "daily"; daily surfaces every background error.
        error_notify_threshold: Consecutive background failures before an error notification.
    """

    auto_download: AutoDownload = AutoDownload.CHECK
    apply_signature: bool = True
    metered_allowed: bool = False
    battery_min_level: int = 50
    charge_only: bool = True
    screen_off_only: bool = True
    scheduler_mode: str = "smart"
    error_notify_threshold: int = 4


@dataclass
class FlashConfig:
    """Flashing settings.

    Attributes:
        script_path: OpenRecoveryScript location.
        keys_path: Injected verification keys location.
        inject_signature: Verify rebuilt packages against injected keys.
        inject_signature_keys: Key material for signature injection.
        secure_mode: Ignore extra ZIPs in the flash-after-update directory.
        storage_root: Prefix stripped from package paths in the script.
        reboot_cmd: Command rebooting into recovery after the script is written.
    """

    script_path: str = "/cache/recovery/openrecoveryscript"
    keys_path: str = "/cache/recovery/keys"
    inject_signature: bool = False
    inject_signature_keys: str = ""
    secure_mode: bool = False
    storage_root: str = ""
    reboot_cmd: list[str] = field(default_factory=lambda: ["reboot", "recovery"])


@dataclass
class CodecConfig:
    """External patch tool command templates."""

    normalize: list[str] = field(default_factory=lambda: ["zipadjust", "--decompress", "{source}", "{output}"])
    patch: list[str] = field(default_factory=lambda: ["dedelta", "{source}", "{patch}", "{output}"])


@dataclass
class AppConfig:
    """Application configuration settings."""

    device: DeviceConfig = field(default_factory=DeviceConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    flash: FlashConfig = field(default_factory=FlashConfig)
    codec: CodecConfig = field(default_factory=CodecConfig)


def _section(cls, data: dict, logger: logging.Logger, name: str):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("Ignoring unknown [%s] keys: %s", name, ", ".join(unknown))
    return cls(**{k: v for k, v in data.items() if k in known})


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from config.toml file.

    Args:
        config_path: Path to config.toml file. If None, uses app/config.toml.

    Returns:
        AppConfig instance with loaded or default settings.
    """
    if config_path is None:
        config_path = Path(__file__).parent / "config.toml"

    logger = logging.getLogger(__name__)

    try:
        with open(config_path, "rb") as f:
            config = tomllib.load(f)
    except (FileNotFoundError, OSError) as ex:
        # Use defaults if config file not found
        logger.warning("Config file not found or error reading: %s. Using defaults.", ex)
        return AppConfig()

    device = _section(DeviceConfig, config.get("device", {}), logger, "device")
    server = _section(ServerConfig, config.get("server", {}), logger, "server")
    policy = _section(PolicyConfig, config.get("policy", {}), logger, "policy")
    policy.auto_download = AutoDownload(policy.auto_download)
    flash = _section(FlashConfig, config.get("flash", {}), logger, "flash")
    codec = _section(CodecConfig, config.get("codec", {}), logger, "codec")

    logger.info(
        "Config loaded: device=%s, build=%s, auto_download=%s, ab_device=%s",
        device.name,
        device.filename_base,
        policy.auto_download.value,
        device.ab_device,
    )
    return AppConfig(device=device, server=server, policy=policy, flash=flash, codec=codec)
