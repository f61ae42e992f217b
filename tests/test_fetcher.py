"""
Tests for the archive fetcher.

Only 200 counts as success; every failure leaves no scratch file behind.
"""

import time

import httpx
import pytest

from archive_mirror.errors import FetchError
from archive_mirror.mirror.fetcher import USER_AGENT, fetch_archive
from tests.conftest import FakeClient

URL = "http://upstream/archive.zip"


class TestFetchArchive:

    def test_success_streams_body(self, tmp_path):
        body = b"x" * 100
        http = FakeClient({URL: (200, body)})
        dest = tmp_path / "docs.archive"

        written = fetch_archive(URL, dest, client=http)

        assert written == 100
        assert dest.read_bytes() == body

    def test_request_options(self, tmp_path):
        http = FakeClient({URL: (200, b"abc")})
        fetch_archive(URL, tmp_path / "a", timeout=5, client=http)

        url, kwargs = http.calls[0]
        assert url == URL
        assert kwargs["follow_redirects"] is True
        assert kwargs["timeout"] == 5
        assert kwargs["headers"]["User-Agent"] == USER_AGENT

    def test_replaces_stale_file(self, tmp_path):
        dest = tmp_path / "docs.archive"
        dest.write_bytes(b"stale data from last run that is longer")
        http = FakeClient({URL: (200, b"new")})

        fetch_archive(URL, dest, client=http)

        assert dest.read_bytes() == b"new"

    @pytest.mark.parametrize("status", [404, 500, 204, 301])
    def test_non_200_is_failure(self, tmp_path, status):
        dest = tmp_path / "docs.archive"
        dest.write_bytes(b"stale")
        http = FakeClient({URL: (status, b"error page")})

        with pytest.raises(FetchError) as exc_info:
            fetch_archive(URL, dest, client=http)

        assert exc_info.value.status_code == status
        assert f"HTTP {status}" in str(exc_info.value)
        assert not dest.exists()

    def test_transport_error(self, tmp_path):
        dest = tmp_path / "docs.archive"
        http = FakeClient({URL: httpx.ConnectError("connection refused")})

        with pytest.raises(FetchError) as exc_info:
            fetch_archive(URL, dest, client=http)

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.cause, httpx.ConnectError)
        assert "connection refused" in str(exc_info.value)
        assert not dest.exists()

    def test_deadline_exceeded_removes_partial_file(self, tmp_path):
        dest = tmp_path / "docs.archive"
        http = FakeClient({URL: (200, b"y" * 50)})

        with pytest.raises(FetchError, match="sync timeout"):
            fetch_archive(URL, dest, deadline=time.monotonic() - 1, client=http)

        assert not dest.exists()

    def test_unwritable_destination(self, tmp_path):
        dest = tmp_path / "missing-dir" / "docs.archive"
        http = FakeClient({URL: (200, b"abc")})

        with pytest.raises(FetchError, match="cannot write"):
            fetch_archive(URL, dest, client=http)
