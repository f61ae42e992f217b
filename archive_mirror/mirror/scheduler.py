"""
Sync Scheduler — Fire mirror syncs on their cron schedules.

Cron evaluation is delegated to croniter. Two expression forms are
accepted, both evaluated in UTC:

- 5 fields: ``minute hour day month weekday``
- 6 fields: ``second minute hour day month weekday``

A single daemon thread sleeps until the earliest due job, then hands
each due mirror to ``MirrorSyncer.start``. A mirror that is still
syncing is skipped for that tick, never queued.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from croniter import croniter

from ..errors import SyncInProgress

if TYPE_CHECKING:
    from .pipeline import MirrorSyncer

logger = logging.getLogger(__name__)

# Upper bound on a single wait, so clock jumps are noticed.
MAX_SLEEP_SECONDS = 60.0


def _cron_iter(expression: str, start: datetime) -> croniter:
    fields = expression.split()
    if len(fields) == 6:
        # croniter expects seconds as the trailing field
        fields = fields[1:] + fields[:1]
    elif len(fields) != 5:
        raise ValueError(f"expected 5 or 6 fields, got {len(fields)}")
    return croniter(" ".join(fields), start)


def validate_cron(expression: str) -> None:
    """Raise ValueError if ``expression`` is not a usable cron expression."""
    try:
        _cron_iter(expression, datetime.now(timezone.utc)).get_next(datetime)
    except (ValueError, KeyError) as e:
        raise ValueError(f"invalid cron expression '{expression}': {e}") from None


def next_fire_time(expression: str, after: datetime) -> datetime:
    """First fire time of ``expression`` strictly after ``after``."""
    return _cron_iter(expression, after).get_next(datetime)


@dataclass
class ScheduledJob:
    name: str
    expression: str
    next_run: datetime


class SyncScheduler:
    """Cron-driven trigger source for the sync pipeline."""

    def __init__(
        self,
        syncer: "MirrorSyncer",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.syncer = syncer
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._jobs: Dict[str, ScheduledJob] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_registry(cls, syncer: "MirrorSyncer", **kwargs) -> "SyncScheduler":
        """Register a job for every mirror that has a schedule."""
        scheduler = cls(syncer, **kwargs)
        for mirror in syncer.registry.scheduled():
            scheduler.add_job(mirror.name, mirror.schedule)
        return scheduler

    @property
    def jobs(self) -> List[ScheduledJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add_job(self, name: str, expression: str) -> ScheduledJob:
        if self.running:
            raise RuntimeError("cannot add jobs to a running scheduler")
        job = ScheduledJob(name, expression, next_fire_time(expression, self._clock()))
        self._jobs[name] = job
        logger.info(f"[{name}] Sync scheduled '{expression}', next run {job.next_run.isoformat()}")
        return job

    def start(self) -> None:
        """Start the dispatch thread. No-op without jobs."""
        if self.running:
            return
        if not self._jobs:
            logger.info("No scheduled mirrors, scheduler not started")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="mirror-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started with {len(self._jobs)} job(s)")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.debug("Scheduler stopped")

    def run_pending(self, now: Optional[datetime] = None) -> List[str]:
        """
        Dispatch every job due at ``now``.

        Returns:
            Names of the mirrors whose sync was started
        """
        now = now or self._clock()
        started: List[str] = []
        for job in self._jobs.values():
            if job.next_run > now:
                continue
            job.next_run = next_fire_time(job.expression, now)
            try:
                self.syncer.start(job.name)
            except SyncInProgress:
                logger.info(f"[{job.name}] Previous sync still running, skipping scheduled run")
                continue
            except RuntimeError as e:
                logger.warning(f"[{job.name}] Scheduled sync not started: {e}")
                continue
            started.append(job.name)
        return started

    def seconds_until_next(self, now: Optional[datetime] = None) -> float:
        now = now or self._clock()
        if not self._jobs:
            return MAX_SLEEP_SECONDS
        earliest = min(job.next_run for job in self._jobs.values())
        return max(0.0, min(MAX_SLEEP_SECONDS, (earliest - now).total_seconds()))

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_pending()
            except Exception:
                logger.exception("Scheduler tick failed")
            self._stop_event.wait(timeout=self.seconds_until_next())
