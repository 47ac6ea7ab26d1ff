# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""
Delta metadata models.

Provides dataclasses describing the files of one delta step and a parser for
the JSON ``.delta`` documents published by the update server.

Functions:
- parse_delta: parse a ``.delta`` / ``.delta_revoked`` document into a DeltaStep.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Optional

from .errors import MetadataError

# Variant kinds, in the priority order they are matched
STORE = "store"
STORE_SIGNED = "store_signed"
OFFICIAL = "official"
UPDATE = "update"
APPLIED = "applied"

FULL_KINDS = (STORE, STORE_SIGNED, OFFICIAL)
PATCH_KINDS = (UPDATE, APPLIED)


@dataclass(frozen=True)
class Variant:
    """One size/hash pair of a logical file.

    Attributes:
        kind: Variant kind (store, store_signed, official, update or applied).
        size: Expected size in bytes.
        sha256: Expected lowercase hex SHA-256 digest.
    """

    kind: str
    size: int
    sha256: str


@dataclass
class AssetDescriptor:
    """A named file at one point of the delta chain.

    The variants are kept in matching priority order. ``tag`` records the
    local path of a file that has been verified against this descriptor; it
    is only ever set, never cleared.

    Attributes:
        name: File name on the server and in the downloads directory.
        variants: Size/hash variants in priority order.
        tag: Local path of a verified matching file, or None.
    """

    name: str
    variants: tuple[Variant, ...]
    tag: Optional[str] = field(default=None, compare=False)

    def get(self, kind: str) -> Optional[Variant]:
        """Return the variant of the given kind, or None if not described."""
        for variant in self.variants:
            if variant.kind == kind:
                return variant
        return None

    def _require(self, kind: str) -> Variant:
        variant = self.get(kind)
        if variant is None:
            raise KeyError(f"{self.name} has no '{kind}' variant")
        return variant

    @property
    def store(self) -> Variant:
        return self._require(STORE)

    @property
    def store_signed(self) -> Variant:
        return self._require(STORE_SIGNED)

    @property
    def official(self) -> Variant:
        return self._require(OFFICIAL)

    @property
    def update(self) -> Variant:
        return self._require(UPDATE)

    @property
    def applied(self) -> Variant:
        return self._require(APPLIED)

    def set_tag(self, path: str) -> None:
        """Mark ``path`` as a verified local copy of this asset."""
        self.tag = path


@dataclass
class DeltaStep:
    """One link of the delta chain.

    Attributes:
        in_: Build this step starts from.
        out: Build this step produces.
        update: Patch payload to fetch and apply.
        signature: Trailing signature patch, applied only after the last step.
        revoked: True if ``out`` must never be flashed.
    """

    in_: AssetDescriptor
    out: AssetDescriptor
    update: AssetDescriptor
    signature: AssetDescriptor
    revoked: bool = False


def _int(obj: dict, key: str, source: str) -> int:
    value = obj.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MetadataError(key, source)
    return value


def _sha(obj: dict, key: str, source: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        raise MetadataError(key, source)
    return value.strip().lower()


def _name(obj: dict, source: str) -> str:
    value = obj.get("name")
    if not isinstance(value, str) or not value:
        raise MetadataError("name", source)
    return value


def _full_asset(obj: object, source: str) -> AssetDescriptor:
    if not isinstance(obj, dict):
        raise MetadataError("file", source)
    variants = tuple(
        Variant(kind, _int(obj, f"size_{kind}", source), _sha(obj, f"sha256_{kind}", source))
        for kind in FULL_KINDS
    )
    return AssetDescriptor(_name(obj, source), variants)


def _patch_asset(obj: object, source: str) -> AssetDescriptor:
    if not isinstance(obj, dict):
        raise MetadataError("file", source)
    variants = (
        Variant(UPDATE, _int(obj, "size", source), _sha(obj, "sha256", source)),
        Variant(APPLIED, _int(obj, "size_applied", source), _sha(obj, "sha256_applied", source)),
    )
    return AssetDescriptor(_name(obj, source), variants)


def parse_delta(data: bytes | str, revoked: bool = False, source: str = "") -> DeltaStep:
    """
    Parse a ``.delta`` JSON document into a DeltaStep.

    Args:
        data: Raw document as returned by the server.
        revoked: Whether the document came from a ``.delta_revoked`` resource.
        source: Optional document name used in error messages.

    Returns:
        DeltaStep: Step with fresh (untagged) asset descriptors.

    Raises:
        MetadataError: If the document is not JSON or a required field is
            missing or has the wrong type.
    """
    try:
        root = json.loads(data)
    except (ValueError, TypeError) as exc:
        raise MetadataError("", source) from exc
    if not isinstance(root, dict):
        raise MetadataError("", source)

    return DeltaStep(
        in_=_full_asset(root.get("in"), source),
        out=_full_asset(root.get("out"), source),
        update=_patch_asset(root.get("update"), source),
        signature=_patch_asset(root.get("signature"), source),
        revoked=revoked,
    )
