# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""
Content verification of local files against asset descriptors.

A file matches a descriptor when its size equals one of the descriptor's
variants and, unless the caller accepts the size-only fast path, its SHA-256
digest equals that variant's digest. Variants are tried in priority order.

Functions:
- sha256_file: Stream a file and return its normalized hex digest.
- match_file: Find the variant a local file matches and tag the descriptor.
"""

from __future__ import annotations

import hashlib
import logging
import os
from typing import Optional

from delta.models import AssetDescriptor, Variant

from .progress import SAMPLE_INTERVAL, ProgressCallback, Throttle

logger = logging.getLogger(__name__)

BUFFER_SIZE = 1024
DIGEST_LEN = 64


def _normalize_digest(hexdigest: str) -> str:
    return hexdigest.lower().rjust(DIGEST_LEN, "0")[:DIGEST_LEN]


def sha256_file(
    path: str | os.PathLike,
    progress_cb: Optional[ProgressCallback] = None,
    algorithm: str = "sha256",
    chunk_size: int = BUFFER_SIZE,
) -> Optional[str]:
    """
    Compute the hex digest of a file.

    Args:
        path: File to hash.
        progress_cb: Optional ``progress_cb(percent, done, total)``, called with
            a first and a final update and at most every 16 ms in between.
        algorithm: hashlib algorithm name.
        chunk_size: Read buffer size.

    Returns:
        Lowercase 64-character hex digest, or None if the file cannot be read
        or the algorithm is unsupported.
    """
    try:
        digest = hashlib.new(algorithm)
    except ValueError:
        logger.error("Unsupported digest algorithm: %s", algorithm)
        return None

    throttle = Throttle(progress_cb, SAMPLE_INTERVAL)
    try:
        total = os.path.getsize(path)
        done = 0
        throttle.report(done, total, force=True)
        with open(path, "rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                digest.update(chunk)
                done += len(chunk)
                throttle.report(done, total)
        throttle.report(done, total, force=True)
    except OSError as ex:
        logger.error("Failed to hash %s: %s", path, ex)
        return None
    return _normalize_digest(digest.hexdigest())


def match_file(
    descriptor: AssetDescriptor,
    path: str | os.PathLike,
    *,
    force_hash: bool,
    progress_cb: Optional[ProgressCallback] = None,
    algorithm: str = "sha256",
) -> Optional[Variant]:
    """
    Match a local file against the variants of a descriptor.

    With ``force_hash=False`` the first variant whose size equals the file size
    is accepted without reading the file. This is a weak check and only meant
    for files this process has already verified.

    Args:
        descriptor: Asset to match; its ``tag`` is set to ``path`` on success.
        path: Local file.
        force_hash: Hash the file and compare digests.
        progress_cb: Optional hashing progress callback.
        algorithm: hashlib algorithm name.

    Returns:
        The matching Variant, or None if the file is missing, unreadable or
        matches no variant.
    """
    path = os.fspath(path)
    try:
        size = os.path.getsize(path)
    except OSError:
        return None

    digest = None
    for variant in descriptor.variants:
        if variant.size != size:
            continue
        if not force_hash:
            logger.debug("match (size only): %s as %s", path, variant.kind)
            descriptor.set_tag(path)
            return variant
        if digest is None:
            digest = sha256_file(path, progress_cb, algorithm)
            if digest is None:
                return None
        if digest == variant.sha256:
            logger.debug("match: %s as %s", path, variant.kind)
            descriptor.set_tag(path)
            return variant
    return None
