"""
Tests for admin sync API routes.

Tests POST /sync/<name> and GET /status, including the bearer-token
check that runs before routing.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

pytest.importorskip("flask")

from archive_mirror.admin import create_app
from archive_mirror.config.models import MirrorSpec
from archive_mirror.errors import MirrorNotFound, SyncInProgress
from archive_mirror.mirror.pipeline import MirrorSyncer
from archive_mirror.mirror.scheduler import SyncScheduler
from tests.conftest import ADMIN_TOKEN, BlockingClient, CountingInstaller, FakeClient

URL = "http://upstream/archive.zip"
AUTH = {"Authorization": f"Bearer {ADMIN_TOKEN}"}
T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def syncer(registry, docs_archive):
    syncer = MirrorSyncer(registry, client=FakeClient({URL: (200, docs_archive)}))
    yield syncer
    syncer.shutdown(wait=True)


@pytest.fixture
def app(syncer):
    app = create_app(syncer, ADMIN_TOKEN)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


# ── Authorization ────────────────────────────────────────────────────


class TestAuthorization:

    def test_missing_token(self, client):
        resp = client.post("/sync/docs")
        assert resp.status_code == 403
        assert resp.get_data(as_text=True) == "forbidden"

    @pytest.mark.parametrize("header", [
        "Bearer wrong",
        f"bearer {ADMIN_TOKEN}",
        ADMIN_TOKEN,
        f"Bearer {ADMIN_TOKEN}x",
        "Bearer",
    ])
    def test_wrong_token(self, client, header):
        resp = client.post("/sync/docs", headers={"Authorization": header})
        assert resp.status_code == 403

    def test_checked_before_routing(self, client):
        assert client.get("/sync/docs").status_code == 403
        assert client.post("/nowhere").status_code == 403
        assert client.get("/status").status_code == 403

    def test_no_sync_started_without_token(self, client, syncer):
        client.post("/sync/docs")
        assert syncer.state.get("docs").status == "never"


# ── POST /sync/<name> ────────────────────────────────────────────────


class TestSync:

    def test_sync_started(self, client, syncer, registry):
        resp = client.post("/sync/docs", headers=AUTH)

        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "sync started"

        syncer.shutdown(wait=True)
        assert (registry.serving_dir("docs") / "a.txt").read_bytes() == b"alpha\n"

    def test_unknown_mirror(self, client):
        resp = client.post("/sync/missing", headers=AUTH)
        assert resp.status_code == 404
        assert resp.get_data(as_text=True) == "not found"

    @pytest.mark.parametrize("path", ["/sync", "/sync/", "/sync/docs/extra", "/"])
    def test_malformed_path(self, client, path):
        assert client.post(path, headers=AUTH).status_code == 404

    def test_wrong_method(self, client):
        resp = client.get("/sync/docs", headers=AUTH)
        assert resp.status_code == 405
        assert resp.headers["Allow"] == "POST"

    def test_busy_mirror(self, registry, docs_archive):
        http = BlockingClient({URL: (200, docs_archive)})
        syncer = MirrorSyncer(registry, client=http)
        client = create_app(syncer, ADMIN_TOKEN).test_client()
        try:
            assert client.post("/sync/docs", headers=AUTH).status_code == 200
            assert http.entered.wait(timeout=5)

            resp = client.post("/sync/docs", headers=AUTH)

            assert resp.status_code == 409
            assert resp.get_data(as_text=True) == "sync already in progress"
        finally:
            http.release.set()
            syncer.shutdown(wait=True)

        assert len(http.calls) == 1

    def test_shutting_down(self):
        syncer = MagicMock()
        syncer.start.side_effect = RuntimeError("cannot schedule new futures after shutdown")
        client = create_app(syncer, ADMIN_TOKEN).test_client()

        resp = client.post("/sync/docs", headers=AUTH)

        assert resp.status_code == 503

    def test_errors_map_from_syncer(self):
        syncer = MagicMock()
        client = create_app(syncer, ADMIN_TOKEN).test_client()

        syncer.start.side_effect = MirrorNotFound("x")
        assert client.post("/sync/x", headers=AUTH).status_code == 404

        syncer.start.side_effect = SyncInProgress("x")
        assert client.post("/sync/x", headers=AUTH).status_code == 409


class TestAdminAndScheduler:
    """The admin API and the scheduler share one attempt per mirror."""

    @pytest.fixture
    def scheduled(self, make_registry, docs_archive):
        registry = make_registry(mirrors=[
            MirrorSpec(name="docs", source=URL, schedule="* * * * *"),
        ])
        http = BlockingClient({URL: (200, docs_archive)})
        installer = CountingInstaller()
        syncer = MirrorSyncer(registry, installer=installer, client=http)
        scheduler = SyncScheduler.from_registry(syncer, clock=lambda: T0)
        yield syncer, scheduler, http, installer
        http.release.set()
        syncer.shutdown(wait=True)

    def test_scheduled_run_skipped_while_admin_sync_runs(self, scheduled):
        syncer, scheduler, http, installer = scheduled
        client = create_app(syncer, ADMIN_TOKEN).test_client()

        assert client.post("/sync/docs", headers=AUTH).status_code == 200
        assert http.entered.wait(timeout=5)

        assert scheduler.run_pending(T0 + timedelta(minutes=2)) == []

        http.release.set()
        syncer.shutdown(wait=True)
        assert len(http.calls) == 1
        assert installer.calls == 1

    def test_admin_sync_rejected_while_scheduled_run_runs(self, scheduled):
        syncer, scheduler, http, installer = scheduled
        client = create_app(syncer, ADMIN_TOKEN).test_client()

        assert scheduler.run_pending(T0 + timedelta(minutes=2)) == ["docs"]
        assert http.entered.wait(timeout=5)

        assert client.post("/sync/docs", headers=AUTH).status_code == 409

        http.release.set()
        syncer.shutdown(wait=True)
        assert len(http.calls) == 1
        assert installer.calls == 1


# ── GET /status ──────────────────────────────────────────────────────


class TestStatus:

    def test_status_before_any_sync(self, client):
        resp = client.get("/status", headers=AUTH)

        assert resp.status_code == 200
        entry = resp.get_json()["mirrors"]["docs"]
        assert entry["status"] == "never"
        assert entry["syncing"] is False

    def test_status_after_sync(self, client, syncer):
        syncer.sync("docs")

        entry = client.get("/status", headers=AUTH).get_json()["mirrors"]["docs"]

        assert entry["status"] == "ok"
        assert entry["files_written"] == 2
