"""
Test doubles: an in-memory update server behind a fake requests session,
a copying patch codec and builders for delta documents.
"""

import hashlib
import io
import json
import os
import shutil
import threading
from typing import Callable, Optional

import requests

from delta.codec import PatchCodec
from delta.config import ServerConfig

DEVICE = "device"

SERVER = ServerConfig(
    base_url="https://ota.test",
    delta_url="https://ota.test/delta/",
    update_url="https://ota.test/delta/",
    full_url="https://ota.test/full/",
    sum_url="https://ota.test/full/",
    chunk_size=16,
)


def sha(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_name(date: str) -> str:
    return f"rom-13-nightly-{DEVICE}-{date}.zip"


class _HookedStream(io.BytesIO):
    """BytesIO calling ``hook`` once, after the first non-empty read."""

    def __init__(self, data: bytes, hook: Callable[[], None]):
        super().__init__(data)
        self.hook = hook
        self.fired = False

    def read(self, size=-1):
        data = super().read(size)
        if data and not self.fired:
            self.fired = True
            self.hook()
        return data


def make_response(url: str, status: int, body: bytes, hook=None, with_length: bool = True) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp.encoding = "utf-8"
    if with_length:
        resp.headers["Content-Length"] = str(len(body))
    resp.raw = _HookedStream(body, hook) if hook is not None else io.BytesIO(body)
    return resp


class FakeSession:
    """Stands in for requests.Session; serves registered bodies and honors Range."""

    def __init__(self):
        self.routes: dict[str, bytes] = {}
        self.errors: dict[str, Exception] = {}
        self.hooks: dict[str, Callable[[], None]] = {}
        self.gates: dict[str, threading.Event] = {}
        self.ignore_range: set[str] = set()
        self.no_length: set[str] = set()
        self.calls: list[tuple[str, dict]] = []

    def add(self, url: str, body: bytes | str) -> None:
        self.routes[url] = body.encode("utf-8") if isinstance(body, str) else body

    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]

    def get(self, url, headers=None, stream=False, timeout=None):
        headers = dict(headers or {})
        self.calls.append((url, headers))
        gate = self.gates.get(url)
        if gate is not None:
            gate.wait(5)
        if url in self.errors:
            raise self.errors[url]
        body = self.routes.get(url)
        if body is None:
            return make_response(url, 404, b"")
        status = 200
        range_header = headers.get("Range")
        if range_header and url not in self.ignore_range:
            start = int(range_header[len("bytes="):-1])
            body = body[start:]
            status = 206
        return make_response(url, status, body, self.hooks.get(url), url not in self.no_length)


class CopyCodec(PatchCodec):
    """Codec whose patch result is the patch file itself."""

    def __init__(self, fail_on: Optional[str] = None, raise_on: Optional[str] = None):
        self.fail_on = fail_on
        self.raise_on = raise_on
        self.calls: list[tuple[str, ...]] = []
        self.temp_counts: list[int] = []

    def _count_temps(self, output: str) -> None:
        directory = os.path.dirname(output)
        self.temp_counts.append(len([n for n in os.listdir(directory) if n.startswith("temp")]))

    def normalize(self, source: str, output: str) -> bool:
        self.calls.append(("normalize", source, output))
        shutil.copyfile(source, output)
        self._count_temps(output)
        return True

    def apply_patch(self, source: str, patch: str, output: str) -> bool:
        self.calls.append(("patch", source, patch, output))
        name = os.path.basename(patch)
        if name == self.raise_on:
            raise RuntimeError("codec crashed")
        with open(output, "wb") as f:
            f.write(b"partial")
        if name == self.fail_on:
            return False
        shutil.copyfile(patch, output)
        self._count_temps(output)
        return True


class Build:
    """Contents of the three published forms of one build."""

    def __init__(self, name: str):
        self.name = name
        self.store = f"{name}:store".encode()
        self.signed = f"{name}:signed".encode()
        self.official = f"{name}:official".encode() * 40

    def descriptor(self) -> dict:
        return {
            "name": self.name,
            "size_store": len(self.store),
            "sha256_store": sha(self.store),
            "size_store_signed": len(self.signed),
            "sha256_store_signed": sha(self.signed),
            "size_official": len(self.official),
            "sha256_official": sha(self.official),
        }


def update_name(source: str) -> str:
    return source[:-4] + ".update"


def sign_name(source: str) -> str:
    return source[:-4] + ".sign"


def patch_descriptor(name: str, data: bytes) -> dict:
    return {
        "name": name,
        "size": len(data),
        "sha256": sha(data),
        "size_applied": len(data),
        "sha256_applied": sha(data),
    }


def delta_document(source: Build, target: Build) -> bytes:
    doc = {
        "in": source.descriptor(),
        "out": target.descriptor(),
        "update": patch_descriptor(update_name(source.name), target.store),
        "signature": patch_descriptor(sign_name(source.name), target.signed),
    }
    return json.dumps(doc).encode()


def publish_chain(session: FakeSession, builds: list[Build], revoked: tuple[str, ...] = (), cfg: ServerConfig = SERVER) -> None:
    """Publish the delta documents and payloads linking consecutive builds."""
    for source, target in zip(builds, builds[1:]):
        key = source.name[:-4]
        session.add(cfg.delta_metadata_url(key, revoked=target.name in revoked), delta_document(source, target))
        session.add(cfg.update_file_url(update_name(source.name)), target.store)
        session.add(cfg.update_file_url(sign_name(source.name)), target.signed)


def publish_build_list(session: FakeSession, names: list[str], cfg: ServerConfig = SERVER, **overrides) -> None:
    entries = [{"filename": name, **overrides} for name in names]
    session.add(cfg.build_list_url(DEVICE), json.dumps({"response": entries}))


def publish_full(session: FakeSession, build: Build, cfg: ServerConfig = SERVER) -> None:
    session.add(cfg.full_build_url(build.name), build.official)
    session.add(cfg.full_sum_url(build.name), f"{sha(build.official)}  {build.name}\n")
