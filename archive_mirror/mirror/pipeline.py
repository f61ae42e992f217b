"""
Sync Pipeline — Fetch + install one mirror under its exclusion lock.

## Usage

    from archive_mirror.mirror.pipeline import MirrorSyncer

    syncer = MirrorSyncer(registry)
    outcome = syncer.sync("docs")          # blocking
    future = syncer.start("docs")          # background, returns a Future

Both entry points acquire the mirror's lock in the calling thread, so a
busy mirror is reported immediately with SyncInProgress instead of
queuing. Fetch and install failures are logged and returned in the
SyncOutcome; they never propagate and never affect other mirrors.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional

import httpx

from ..errors import FetchError, InstallError, SyncInProgress
from .fetcher import fetch_archive
from .installer import ArchiveInstaller, InstallReport
from .state import MirrorState

if TYPE_CHECKING:
    from ..config.models import MirrorSpec
    from ..config.registry import Registry

logger = logging.getLogger(__name__)


@dataclass
class SyncOutcome:
    """Result of one sync attempt."""

    name: str
    ok: bool
    bytes_fetched: int = 0
    report: Optional[InstallReport] = None
    error: Optional[Exception] = None
    duration: float = 0.0


class MirrorSyncer:
    """
    Runs sync attempts for the mirrors of one registry.

    Locks are created once per registered mirror. The registry never
    changes, so the lock table itself needs no guarding.
    """

    def __init__(
        self,
        registry: "Registry",
        installer: Optional[ArchiveInstaller] = None,
        client: Optional[httpx.Client] = None,
        state: Optional[MirrorState] = None,
    ):
        self.registry = registry
        self.settings = registry.settings
        self.installer = installer or ArchiveInstaller(atomic_swap=self.settings.atomic_swap)
        self.client = client
        self.state = state or MirrorState(registry.names)
        self._locks: Dict[str, threading.Lock] = {
            name: threading.Lock() for name in registry.names
        }
        # One worker per mirror: a mirror never has more than one attempt
        # in flight, so submissions never wait behind each other.
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, len(registry)),
            thread_name_prefix="mirror-sync",
        )

    # ─── Public API ─────────────────────────────────────────

    def is_syncing(self, name: str) -> bool:
        self.registry.lookup(name)
        return self._locks[name].locked()

    def sync(self, name: str) -> SyncOutcome:
        """
        Sync ``name`` in the calling thread.

        Raises:
            MirrorNotFound: Unknown mirror
            SyncInProgress: Another attempt holds the mirror's lock
        """
        mirror = self._acquire(name)
        return self._run_locked(mirror)

    def start(self, name: str) -> "Future[SyncOutcome]":
        """
        Sync ``name`` on the worker pool and return its Future.

        Raises:
            MirrorNotFound: Unknown mirror
            SyncInProgress: Another attempt holds the mirror's lock
        """
        mirror = self._acquire(name)
        try:
            future = self._executor.submit(self._run_locked, mirror)
        except RuntimeError:
            # Executor already shut down
            self._locks[name].release()
            raise

        def _release_if_cancelled(f: Future) -> None:
            if f.cancelled():
                self._locks[name].release()

        future.add_done_callback(_release_if_cancelled)
        return future

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for in-flight attempts."""
        self._executor.shutdown(wait=wait, cancel_futures=True)

    # ─── Internals ──────────────────────────────────────────

    def _acquire(self, name: str) -> "MirrorSpec":
        mirror = self.registry.lookup(name)
        if not self._locks[name].acquire(blocking=False):
            raise SyncInProgress(name)
        return mirror

    def _run_locked(self, mirror: "MirrorSpec") -> SyncOutcome:
        try:
            return self._run(mirror)
        finally:
            self._locks[mirror.name].release()

    def _run(self, mirror: "MirrorSpec") -> SyncOutcome:
        name = mirror.name
        log_extra = {"mirror": name}
        started = time.monotonic()
        deadline = started + self.settings.sync_timeout
        download = self.registry.download_path(name)
        serving_dir = self.registry.serving_dir(name)

        self.state.mark_running(name)
        logger.info(f"[{name}] Sync started from {mirror.source}", extra=log_extra)

        size = 0
        try:
            download.parent.mkdir(parents=True, exist_ok=True)
            size = fetch_archive(
                mirror.source,
                download,
                timeout=self.settings.fetch_timeout,
                deadline=deadline,
                client=self.client,
            )
            report = self.installer.install(download, serving_dir, deadline=deadline)
        except (FetchError, InstallError, OSError) as e:
            return self._failed(name, e, started, size)
        except Exception as e:
            logger.exception(f"[{name}] Unexpected error during sync", extra=log_extra)
            return self._failed(name, e, started, size)
        finally:
            self._remove_download(name, download)

        duration = time.monotonic() - started
        self.state.mark_ok(name, size, report.written, duration)
        logger.info(
            f"[{name}] Sync complete: {size} bytes, {report.written} file(s) "
            f"({report.format}, {report.mode}) in {duration:.1f}s",
            extra=log_extra,
        )
        if report.skipped:
            logger.warning(
                f"[{name}] Skipped {len(report.skipped)} unsafe archive entries",
                extra=log_extra,
            )
        return SyncOutcome(
            name=name,
            ok=True,
            bytes_fetched=size,
            report=report,
            duration=duration,
        )

    def _failed(self, name: str, error: Exception, started: float, size: int) -> SyncOutcome:
        duration = time.monotonic() - started
        self.state.mark_failed(name, str(error), duration)
        logger.error(f"[{name}] Sync failed: {error}", extra={"mirror": name})
        return SyncOutcome(
            name=name,
            ok=False,
            bytes_fetched=size,
            error=error,
            duration=duration,
        )

    @staticmethod
    def _remove_download(name: str, download: Path) -> None:
        try:
            download.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"[{name}] Could not remove {download}: {e}", extra={"mirror": name})
