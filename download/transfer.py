# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""
Resumable, integrity-checked file transfer.

A transfer resumes a shorter file already present at the destination with an
HTTP Range request, streams the body in fixed-size chunks and verifies the
SHA-256 digest when one is expected. Failures are reported as a
TransferResult, never raised.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import requests

from delta.client import DeltaClient

from .progress import DOWNLOAD_INTERVAL, ProgressCallback, Throttle
from .verifier import sha256_file

logger = logging.getLogger(__name__)


class TransferResult(Enum):
    """Outcome of a transfer. Only OK is truthy."""

    OK = "ok"
    FAILED = "failed"
    STOPPED = "stopped"
    INTEGRITY = "integrity"
    NO_SPACE = "no_space"

    def __bool__(self) -> bool:
        return self is TransferResult.OK


def _delete(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as ex:
        logger.error("Failed to delete %s: %s", path, ex)


class ResumableTransfer:
    """
    Downloads one URL to one file.

    Args:
        client: DeltaClient providing the HTTP session, timeouts and limits.
    """

    def __init__(self, client: DeltaClient):
        self.client = client
        self.logger = logging.getLogger(__name__)

    def fetch(
        self,
        url: str,
        destination: str | Path,
        expected_sha256: Optional[str] = None,
        progress_cb: Optional[ProgressCallback] = None,
        stop_event: Optional[threading.Event] = None,
        free_space: Optional[Callable[[], int]] = None,
        hash_progress_cb: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """
        Download ``url`` to ``destination``.

        If the destination exists and is shorter than the remote resource, the
        missing range is requested and appended. A server that ignores the
        range is handled by rewriting the file from the start.

        Args:
            url: Resource URL.
            destination: Target file.
            expected_sha256: Digest the complete file must have, or None to
                accept any content of the right length.
            progress_cb: Download progress, at most every 250 ms.
            stop_event: Checked after every chunk; when set the partial file is
                kept and STOPPED is returned.
            free_space: Returns the free bytes at the destination; a transfer
                needing more than that is refused with NO_SPACE.
            hash_progress_cb: Progress of the post-download hash of resumed files.

        Returns:
            TransferResult: OK on success. On INTEGRITY the destination has
                been deleted.
        """
        cfg = self.client.cfg
        dest = Path(destination)

        resp = self.client.open(url)
        if resp is None:
            return TransferResult.FAILED
        try:
            total = self.client.content_length_of(resp)
            if total <= 0 or total >= cfg.max_download_size:
                self.logger.info("Invalid content length %d for %s", total, url)
                return TransferResult.FAILED

            start = 0
            existing = dest.stat().st_size if dest.is_file() else 0
            if 0 < existing < total:
                resp.close()
                self.logger.info("Resuming %s at %d of %d", dest.name, existing, total)
                resp = self.client.open(url, start=existing)
                if resp is None:
                    return TransferResult.FAILED
                if resp.status_code == 206:
                    start = existing
                else:
                    self.logger.info("Server ignored range request, restarting %s", dest.name)

            remaining = total - start
            if free_space is not None and free_space() < remaining:
                self.logger.error("Not enough space for %s: need %d", dest.name, remaining)
                return TransferResult.NO_SPACE

            digest = hashlib.sha256() if start == 0 and expected_sha256 else None
            throttle = Throttle(progress_cb, DOWNLOAD_INTERVAL)
            done = start
            throttle.report(done, total, force=True)

            dest.parent.mkdir(parents=True, exist_ok=True)
            with open(dest, "ab" if start else "wb") as f:
                for chunk in resp.iter_content(chunk_size=cfg.chunk_size):
                    if chunk:
                        f.write(chunk)
                        done += len(chunk)
                        if digest is not None:
                            digest.update(chunk)
                        throttle.report(done, total)
                    if stop_event is not None and stop_event.is_set():
                        self.logger.info("Transfer stopped: %s at %d", dest.name, done)
                        return TransferResult.STOPPED
            throttle.report(done, total, force=True)
        except (requests.RequestException, OSError) as ex:
            self.logger.error("Transfer failed: %s (%s)", url, ex)
            return TransferResult.FAILED
        finally:
            if resp is not None:
                resp.close()

        if done != total:
            self.logger.error("Short transfer for %s: %d of %d", dest.name, done, total)
            return TransferResult.FAILED

        if expected_sha256:
            if digest is not None:
                actual = digest.hexdigest()
            else:
                actual = sha256_file(dest, hash_progress_cb)
            if actual != expected_sha256.lower():
                self.logger.error("Checksum mismatch for %s: %s != %s", dest.name, actual, expected_sha256)
                _delete(dest)
                return TransferResult.INTEGRITY
        self.logger.info("Transfer complete: %s (%d bytes)", dest.name, total)
        return TransferResult.OK
