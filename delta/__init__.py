# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Delta update server client library.

This package implements the server side of the delta update protocol: build
list discovery, delta chain metadata, checksum documents and the pluggable
patch codec used to rebuild a flashable image from a chain of deltas.

Main Components:
    - DeltaClient: HTTP client with fixed timeouts and resumable streams
    - Metadata models: AssetDescriptor, Variant and DeltaStep
    - Build helpers: build list parsing, checksum parsing, name comparison
    - PatchCodec: normalize/apply_patch interface and a command-line backend
    - Errors: failure taxonomy mapped to orchestrator error states

Example:
    Parse a delta document::

        from delta import DeltaClient, parse_delta

        client = DeltaClient()
        data = client.fetch_bytes(client.cfg.delta_metadata_url("rom-13-device-20250101"))
        if data:
            step = parse_delta(data)
            print(step.out.name)
"""

from .builds import (
    LatestBuild,
    build_date,
    build_number,
    is_matching_image,
    is_newer_name,
    parse_build_list,
    parse_sha256sum,
)
from .client import DeltaClient
from .codec import CommandCodec, PatchCodec
from .config import DEFAULT_CONFIG, ServerConfig
from .errors import (
    CapacityError,
    ConnectivityError,
    DownloadFailed,
    IneligibleError,
    IntegrityError,
    MetadataError,
    PatchError,
    PermissionDenied,
    PlatformError,
    UpdateError,
)
from .models import AssetDescriptor, DeltaStep, Variant, parse_delta
