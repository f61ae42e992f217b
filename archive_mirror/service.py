"""
Mirror Service — Wires the registry, pipeline, triggers and servers.

Startup order:
1. Create every serving directory and the scratch directory
2. Register scheduler jobs
3. Start the admin server (if configured)
4. Run the startup sync of every mirror; each content server is bound
   once its mirror's startup sync has finished
5. Start the scheduler

Shutdown stops the scheduler, closes the HTTP servers, then waits for
in-flight syncs (each bounded by ``settings.sync_timeout``).
"""

from __future__ import annotations

import logging
import signal
import threading
from concurrent.futures import FIRST_COMPLETED, Future, wait
from typing import Dict, List, Optional

from flask import Flask
from werkzeug.serving import make_server

from .admin import create_app
from .config.registry import Registry
from .errors import SyncInProgress
from .mirror.pipeline import MirrorSyncer
from .mirror.scheduler import SyncScheduler
from .serve import create_content_app

logger = logging.getLogger(__name__)

# How often the startup sync wait checks for a stop request
STOP_POLL_SECONDS = 0.5


class ServerThread(threading.Thread):
    """A threaded Werkzeug server running in a background thread."""

    def __init__(self, label: str, host: str, port: int, app: Flask):
        super().__init__(name=f"http-{label}", daemon=True)
        self.label = label
        self.server = make_server(host, port, app, threaded=True)

    @property
    def port(self) -> int:
        return self.server.server_port

    def run(self) -> None:
        self.server.serve_forever()

    def shutdown(self) -> None:
        self.server.shutdown()
        self.server.server_close()


class MirrorService:
    """Owns every long-running component of the process."""

    def __init__(self, registry: Registry, syncer: Optional[MirrorSyncer] = None):
        self.registry = registry
        self.syncer = syncer or MirrorSyncer(registry)
        self.scheduler = SyncScheduler.from_registry(self.syncer)
        self.servers: List[ServerThread] = []
        self._stop_event = threading.Event()

    # ─── Startup ────────────────────────────────────────────

    def prepare_directories(self) -> None:
        settings = self.registry.settings
        settings.tmp_dir.mkdir(parents=True, exist_ok=True)
        for mirror in self.registry:
            logger.info(f"Initializing {mirror.name}")
            serving_dir = self.registry.serving_dir(mirror.name)
            self.syncer.installer.prepare(serving_dir)

    def start_admin_server(self) -> None:
        admin = self.registry.admin_server
        if admin is None:
            return
        host, port = admin.listen_address
        logger.info(f"Initializing admin server {admin.listen}")
        self._start_server("admin", host, port, create_app(self.syncer, admin.token))

    def start_content_server(self, name: str) -> None:
        mirror = self.registry.lookup(name)
        if mirror.listen_address is None:
            return
        host, port = mirror.listen_address
        logger.info(f"Initializing server {mirror.listen} for {name}")
        app = create_content_app(name, self.registry.serving_dir(name))
        self._start_server(name, host, port, app)

    def initial_sync(self) -> None:
        """Sync every mirror once, binding each content server as its sync ends."""
        if not self.registry.settings.sync_on_startup:
            for mirror in self.registry:
                self.start_content_server(mirror.name)
            return

        pending: Dict[Future, str] = {}
        for mirror in self.registry:
            try:
                pending[self.syncer.start(mirror.name)] = mirror.name
            except SyncInProgress:
                # Already triggered through the admin API
                self.start_content_server(mirror.name)

        remaining = set(pending)
        while remaining and not self._stop_event.is_set():
            done, remaining = wait(remaining, timeout=STOP_POLL_SECONDS, return_when=FIRST_COMPLETED)
            for future in done:
                name = pending[future]
                if not future.result().ok:
                    logger.warning(f"[{name}] Startup sync failed, serving existing content")
                if not self._stop_event.is_set():
                    self.start_content_server(name)

        if remaining:
            names = ", ".join(sorted(pending[f] for f in remaining))
            logger.info(f"Stop requested during startup sync, not waiting for: {names}")

    def start(self) -> None:
        self.prepare_directories()
        self.start_admin_server()
        self.initial_sync()
        if self._stop_event.is_set():
            return
        self.scheduler.start()

    # ─── Shutdown ───────────────────────────────────────────

    def stop(self) -> None:
        self._stop_event.set()
        self.scheduler.stop()
        for server in self.servers:
            logger.debug(f"Stopping server {server.label}")
            server.shutdown()
        self.servers.clear()
        logger.info("Waiting for running syncs to finish")
        self.syncer.shutdown(wait=True)
        logger.info("Stopped")

    def request_stop(self) -> None:
        self._stop_event.set()

    def run_forever(self) -> None:
        """Start everything and block until SIGINT or SIGTERM."""

        def _on_signal(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, shutting down")
            self.request_stop()

        signal.signal(signal.SIGINT, _on_signal)
        signal.signal(signal.SIGTERM, _on_signal)

        try:
            self.start()
            self._stop_event.wait()
        finally:
            self.stop()

    def _start_server(self, label: str, host: str, port: int, app: Flask) -> None:
        server = ServerThread(label, host, port, app)
        server.start()
        self.servers.append(server)
