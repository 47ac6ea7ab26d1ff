# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Download module configuration.

This module provides configuration for the data, database and downloads
paths used throughout the download module.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Paths:
    """Configuration paths for download operations.

    Attributes:
        data_dir: Root directory for application data storage.
        db_path: Path to the SQLite database file.
        downloads_dir: Directory where deltas and builds are downloaded and assembled.
        flash_after_update_dir: Directory of extra ZIPs flashed after the update.
    """

    data_dir: Path
    db_path: Path
    downloads_dir: Path
    flash_after_update_dir: Path

    @classmethod
    def under(cls, data_root: Path) -> "Paths":
        """Build the standard layout below ``data_root``."""
        data_root = Path(data_root)
        return cls(
            data_dir=data_root,
            db_path=data_root / "deltaota.db",
            downloads_dir=data_root / "downloads",
            flash_after_update_dir=data_root / "FlashAfterUpdate",
        )


def _resolve_paths() -> Paths:
    """Resolve configuration paths.

    Determines the root data directory from the DELTA_DATA_DIR environment
    variable or uses './data' as default, then constructs all required paths.

    Returns:
        Paths: Configuration object containing all resolved filesystem paths.
    """
    data_root = Path(os.environ.get("DELTA_DATA_DIR", "./data")).resolve()
    return Paths.under(data_root)


PATHS = _resolve_paths()
"""Global paths configuration instance."""
