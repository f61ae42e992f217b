"""
Mirror Registry — Read-only view of the configured mirrors.

Built once at startup from a validated MirrorConfig and passed down to
the sync pipeline, scheduler and admin server. Nothing mutates it after
construction, so concurrent readers need no locking.
"""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, List, Mapping, Optional

from ..errors import ConfigError, MirrorNotFound
from .models import AdminServerSpec, MirrorConfig, MirrorSpec, Settings


class Registry:
    """Name → MirrorSpec mapping plus the admin descriptor and settings."""

    def __init__(
        self,
        mirrors: Iterable[MirrorSpec],
        admin_server: Optional[AdminServerSpec] = None,
        settings: Optional[Settings] = None,
    ):
        by_name = {}
        for mirror in mirrors:
            if mirror.name in by_name:
                raise ConfigError(f"duplicate mirror name '{mirror.name}'", field="mirrors")
            by_name[mirror.name] = mirror
        if not by_name:
            raise ConfigError("No mirror found.", field="mirrors")

        self._mirrors: Mapping[str, MirrorSpec] = MappingProxyType(by_name)
        self.admin_server = admin_server
        self.settings = settings or Settings()

    @classmethod
    def from_config(cls, config: MirrorConfig) -> "Registry":
        return cls(config.mirrors, config.admin_server, config.settings)

    def __contains__(self, name: object) -> bool:
        return name in self._mirrors

    def __iter__(self) -> Iterator[MirrorSpec]:
        return iter(self._mirrors.values())

    def __len__(self) -> int:
        return len(self._mirrors)

    def get(self, name: str) -> Optional[MirrorSpec]:
        return self._mirrors.get(name)

    def lookup(self, name: str) -> MirrorSpec:
        """Return the mirror called ``name`` or raise MirrorNotFound."""
        mirror = self._mirrors.get(name)
        if mirror is None:
            raise MirrorNotFound(name)
        return mirror

    @property
    def names(self) -> List[str]:
        return list(self._mirrors)

    def scheduled(self) -> List[MirrorSpec]:
        """Mirrors with a cron schedule."""
        return [m for m in self._mirrors.values() if m.schedule]

    def served(self) -> List[MirrorSpec]:
        """Mirrors with a content server listen address."""
        return [m for m in self._mirrors.values() if m.listen]

    # ─── Filesystem layout ──────────────────────────────────

    def serving_dir(self, name: str) -> Path:
        return self.settings.data_dir / name

    def download_path(self, name: str) -> Path:
        return self.settings.tmp_dir / f"{name}.archive"
