"""
Shared fixtures for mirror tests.

Provides registry builders, in-memory archive builders and a fake
httpx client so the sync pipeline can run without network access.
"""

from __future__ import annotations

import io
import tarfile
import threading
import zipfile
from pathlib import Path
from typing import Dict, Optional

import pytest
import httpx

from archive_mirror.config.models import AdminServerSpec, MirrorSpec, Settings
from archive_mirror.config.registry import Registry
from archive_mirror.mirror.installer import ArchiveInstaller

ADMIN_TOKEN = "s3cret-token"


# ── Archives ─────────────────────────────────────────────────────────


def build_zip(entries: Dict[str, Optional[bytes]]) -> bytes:
    """Build a zip in memory. A None value makes a directory entry."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in entries.items():
            if data is None:
                zf.writestr(zipfile.ZipInfo(name), b"")
            else:
                zf.writestr(name, data)
    return buf.getvalue()


def build_tar(entries: Dict[str, Optional[bytes]], mode: str = "w:gz") -> bytes:
    """Build a tar archive in memory. A None value makes a directory entry."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        for name, data in entries.items():
            info = tarfile.TarInfo(name=name)
            if data is None:
                info.type = tarfile.DIRTYPE
                tar.addfile(info)
            else:
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture
def docs_archive() -> bytes:
    return build_zip({"a.txt": b"alpha\n", "sub/b.txt": b"bravo\n"})


# ── Fake HTTP ────────────────────────────────────────────────────────


class FakeResponse:
    """Minimal stand-in for a streamed httpx.Response."""

    def __init__(self, status_code: int = 200, body: bytes = b"", chunk_size: int = 7):
        self.status_code = status_code
        self._body = body
        self._chunk_size = chunk_size
        self.closed = False

    def iter_bytes(self, chunk_size: Optional[int] = None):
        for i in range(0, len(self._body), self._chunk_size):
            yield self._body[i:i + self._chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


class FakeClient:
    """
    Routes streamed GET requests to canned responses.

    ``routes`` maps a URL to ``(status, body)`` or to an exception
    instance that is raised instead.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def stream(self, method, url, **kwargs):
        assert method == "GET"
        self.calls.append((url, kwargs))
        route = self.routes.get(url, (404, b""))
        if isinstance(route, Exception):
            raise route
        status, body = route
        return FakeResponse(status, body)


class BlockingClient(FakeClient):
    """FakeClient whose GET waits until ``release`` is set."""

    def __init__(self, routes=None):
        super().__init__(routes)
        self.entered = threading.Event()
        self.release = threading.Event()

    def stream(self, method, url, **kwargs):
        self.entered.set()
        if not self.release.wait(timeout=10):
            raise httpx.ReadTimeout("test client never released")
        return super().stream(method, url, **kwargs)


# ── Installer ────────────────────────────────────────────────────────


class CountingInstaller(ArchiveInstaller):
    """ArchiveInstaller that records how often install() ran."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls = 0

    def install(self, archive, serving_dir, deadline=None):
        self.calls += 1
        return super().install(archive, serving_dir, deadline)


# ── Registry ─────────────────────────────────────────────────────────


@pytest.fixture
def make_registry(tmp_path: Path):
    """Factory building a Registry rooted in tmp_path."""

    def _make(mirrors=None, admin: bool = True, **settings) -> Registry:
        if mirrors is None:
            mirrors = [MirrorSpec(name="docs", source="http://upstream/archive.zip")]
        settings.setdefault("data_dir", tmp_path / "data")
        settings.setdefault("tmp_dir", tmp_path / "tmp")
        admin_spec = AdminServerSpec(listen="127.0.0.1:9090", token=ADMIN_TOKEN) if admin else None
        return Registry(mirrors, admin_spec, Settings(**settings))

    return _make


@pytest.fixture
def registry(make_registry) -> Registry:
    return make_registry()
