"""
Config Models — Pydantic schemas for mirror.yml.

    mirrors:
      - name: docs
        source: https://example.org/docs.zip
        sync: "0 0 * * * *"
        serve: 127.0.0.1:8080
    admin_server:
      listen: 127.0.0.1:9090
      token: change-me
    settings:
      sync_timeout: 600
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..mirror.scheduler import validate_cron

_FORBIDDEN_NAME_CHARS = ("/", "\\", "\x00")


def parse_listen(value: str) -> Tuple[str, int]:
    """Split a ``host:port`` listen address. IPv6 hosts use ``[::1]:port``."""
    host, sep, port = value.strip().rpartition(":")
    if not sep or not host:
        raise ValueError(f"expected host:port, got '{value}'")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port_num = int(port)
    except ValueError:
        raise ValueError(f"invalid port in '{value}'") from None
    if not 0 < port_num < 65536:
        raise ValueError(f"port out of range in '{value}'")
    return host, port_num


# --- Mirrors ---


class MirrorSpec(BaseModel):
    """A single configured mirror."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    name: str
    source: str
    schedule: Optional[str] = Field(default=None, alias="sync")
    listen: Optional[str] = Field(default=None, alias="serve")

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        # The name is used as a directory name and as a URL path segment.
        if not value or not value.strip():
            raise ValueError("mirror name must not be empty")
        if value in (".", "..") or value.startswith("."):
            raise ValueError(f"mirror name '{value}' must not start with '.'")
        if any(ch in value for ch in _FORBIDDEN_NAME_CHARS):
            raise ValueError(f"mirror name '{value}' must be a single path segment")
        return value

    @field_validator("source")
    @classmethod
    def _check_source(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"source must be an http(s) URL, got '{value}'")
        return value

    @field_validator("schedule")
    @classmethod
    def _check_schedule(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        validate_cron(value)
        return value

    @field_validator("listen")
    @classmethod
    def _check_listen(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_listen(value)
        return value

    @property
    def listen_address(self) -> Optional[Tuple[str, int]]:
        return parse_listen(self.listen) if self.listen else None


# --- Admin server ---


class AdminServerSpec(BaseModel):
    """The optional admin endpoint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    listen: str
    token: str

    @field_validator("listen")
    @classmethod
    def _check_listen(cls, value: str) -> str:
        parse_listen(value)
        return value

    @field_validator("token")
    @classmethod
    def _check_token(cls, value: str) -> str:
        if not value:
            raise ValueError("admin token must not be empty")
        return value

    @property
    def listen_address(self) -> Tuple[str, int]:
        return parse_listen(self.listen)


# --- Runtime settings ---


class Settings(BaseModel):
    """Process-wide tunables. Every field has a default."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    data_dir: Path = Path("data")
    tmp_dir: Path = Path("tmp")
    sync_on_startup: bool = True
    sync_timeout: float = Field(default=600.0, gt=0)
    fetch_timeout: float = Field(default=30.0, gt=0)
    atomic_swap: bool = True


# --- Root document ---


class MirrorConfig(BaseModel):
    """The mirror.yml schema."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    mirrors: List[MirrorSpec] = Field(default_factory=list)
    admin_server: Optional[AdminServerSpec] = None
    settings: Settings = Field(default_factory=Settings)

    @model_validator(mode="after")
    def _check_mirrors(self) -> "MirrorConfig":
        if not self.mirrors:
            raise ValueError("No mirror found.")
        seen = set()
        for mirror in self.mirrors:
            if mirror.name in seen:
                raise ValueError(f"duplicate mirror name '{mirror.name}'")
            seen.add(mirror.name)
        return self
