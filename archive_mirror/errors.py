"""
Errors — Exception hierarchy for mirror operations.

ConfigError is fatal and raised only at startup. FetchError and
InstallError are caught at the sync pipeline boundary and never
propagate further. SyncInProgress and MirrorNotFound are signals for
trigger sources (admin API, scheduler), not failures.
"""

from __future__ import annotations

from typing import Optional


class MirrorError(Exception):
    """Base class for all archive-mirror errors."""


class ConfigError(MirrorError):
    """Raised when the configuration is missing, unparsable or invalid."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.field:
            return f"{self.field}: {self.message}"
        return self.message


class FetchError(MirrorError):
    """Raised when a remote archive cannot be downloaded."""

    def __init__(
        self,
        url: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
        reason: Optional[str] = None,
    ):
        self.url = url
        self.status_code = status_code
        self.cause = cause
        self.reason = reason
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.status_code is not None:
            return f"GET {self.url} returned HTTP {self.status_code}"
        if self.reason:
            return f"GET {self.url} failed: {self.reason}"
        return f"GET {self.url} failed: {self.cause}"


class InstallError(MirrorError):
    """Raised when an archive cannot be extracted into a serving directory."""


class SyncInProgress(MirrorError):
    """Raised when a sync is requested for a mirror that is already syncing."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"sync already in progress for mirror '{name}'")


class MirrorNotFound(MirrorError):
    """Raised when a mirror name is not in the registry."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"mirror '{name}' not found")
