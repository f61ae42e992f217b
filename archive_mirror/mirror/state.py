"""
Mirror State — In-memory sync status for each mirror.

This is reporting state only (admin ``GET /status``). Mutual exclusion
lives in the pipeline's per-mirror locks, not here.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SyncStatus:
    """Status of the most recent sync attempts of one mirror."""

    status: str = "never"  # never, running, ok, failed
    last_started_iso: Optional[str] = None
    last_finished_iso: Optional[str] = None
    last_success_iso: Optional[str] = None
    last_error: Optional[str] = None
    bytes_fetched: Optional[int] = None
    files_written: Optional[int] = None
    duration_seconds: Optional[float] = None

    def mark_running(self) -> None:
        self.status = "running"
        self.last_started_iso = _now_iso()

    def mark_ok(self, bytes_fetched: int, files_written: int, duration: float) -> None:
        now = _now_iso()
        self.status = "ok"
        self.last_finished_iso = now
        self.last_success_iso = now
        self.last_error = None
        self.bytes_fetched = bytes_fetched
        self.files_written = files_written
        self.duration_seconds = round(duration, 3)

    def mark_failed(self, error: str, duration: float) -> None:
        self.status = "failed"
        self.last_finished_iso = _now_iso()
        self.last_error = error
        self.duration_seconds = round(duration, 3)


class MirrorState:
    """Thread-safe collection of SyncStatus records keyed by mirror name."""

    def __init__(self, names: Iterable[str]):
        self._lock = threading.Lock()
        self._status: Dict[str, SyncStatus] = {name: SyncStatus() for name in names}

    def mark_running(self, name: str) -> None:
        with self._lock:
            self._status[name].mark_running()

    def mark_ok(self, name: str, bytes_fetched: int, files_written: int, duration: float) -> None:
        with self._lock:
            self._status[name].mark_ok(bytes_fetched, files_written, duration)

    def mark_failed(self, name: str, error: str, duration: float) -> None:
        with self._lock:
            self._status[name].mark_failed(error, duration)

    def get(self, name: str) -> SyncStatus:
        """Return a copy of the status for ``name``."""
        with self._lock:
            return SyncStatus(**asdict(self._status[name]))

    def to_api_dict(self) -> Dict[str, dict]:
        """Return a dict suitable for the admin API response."""
        with self._lock:
            return {name: asdict(status) for name, status in self._status.items()}
