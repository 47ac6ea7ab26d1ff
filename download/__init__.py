# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Local side of the delta update pipeline.

This package turns server metadata into a verified, flashable file on disk:
it resolves the delta chain, chooses between a delta rebuild and a full
download, transfers files with resume support, applies the patches and keeps
the durable updater state in SQLite.

Architecture:
    - State store: durable key-value updater state (``prefs`` table)
    - Check log: one record per update check cycle (``check_log`` table)
    - Verifier: size/hash matching of local files against descriptors
    - Transfer: resumable, integrity-checked downloads
    - Chain resolver: walks ``.delta`` / ``.delta_revoked`` documents
    - Planner: delta vs full decision, download size and disk space
    - Patch pipeline: applies the chain with two ping-pong temp files

Example:
    Resolve and plan an update::

        from delta import DeltaClient
        from download import PATHS, BuildPlanner, ChainResolver, PlanPolicy

        client = DeltaClient()
        resolver = ChainResolver(client, PATHS.downloads_dir)
        chain = resolver.resolve("rom-13-device-20250101", "rom-13-device-20250301.zip")
        plan = BuildPlanner(PATHS.downloads_dir, PlanPolicy()).plan(
            chain.steps, "rom-13-device-20250301.zip", "rom-13-device-20250101",
            cached_output=chain.cached_output,
        )
        print(plan.strategy, plan.download_size)

    Database management::

        from download import init_db, is_healthy, repair_db

        init_db()
        if not is_healthy():
            repair_db()

Configuration:
    Set ``DELTA_DATA_DIR`` to move the data directory (default ``./data``)::

        export DELTA_DATA_DIR="/path/to/data"
"""

from .chain import ChainResolution, ChainResolver
from .check_log_repository import CheckEvent, CheckLog
from .config import PATHS, Paths
from .db import get_db_path, init_db, is_healthy, repair_db
from .patcher import PatchPipeline
from .planner import BuildPlan, BuildPlanner, PlanPolicy, Strategy, size_on_disk
from .state_repository import StateStore
from .transfer import ResumableTransfer, TransferResult
from .verifier import match_file, sha256_file
