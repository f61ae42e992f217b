"""
Archive Installer — Extract a downloaded archive into a serving directory.

Extraction is pluggable: each Extractor recognises one archive family by
sniffing the file content (zip, tar with any compression tarfile knows).

Two install modes:

- swap (default): ``data/{name}`` is a symlink to one snapshot under
  ``data/.{name}.snapshots/``. Each install extracts into a new snapshot,
  then replaces the link with a single rename, so a reader resolves
  either the old tree or the new one. A failed extraction never touches
  the link; the retired snapshot is deleted after the switch.
- overlay: extract straight into the serving directory, overwriting files
  of the same relative path and keeping everything else.

Entries that would resolve outside the destination (absolute names,
``..`` components, tar links) are skipped, never written.
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import time
import zipfile
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import InstallError

logger = logging.getLogger(__name__)

COPY_BUFFER = 64 * 1024


@dataclass
class ExtractResult:
    """What an extractor wrote and what it refused to write."""

    written: int = 0
    directories: int = 0
    skipped: List[str] = field(default_factory=list)


@dataclass
class InstallReport:
    """Outcome of a successful install."""

    serving_dir: Path
    mode: str
    format: str
    written: int = 0
    directories: int = 0
    skipped: List[str] = field(default_factory=list)


def resolve_member(root: Path, name: str, is_dir: bool = False) -> Optional[Path]:
    """
    Map an archive entry name to a path under ``root``.

    Returns None when the entry is absolute or escapes ``root``. Only a
    directory entry may resolve to ``root`` itself (e.g. ``./``).
    """
    normalized = name.replace("\\", "/")
    if not normalized or normalized.startswith("/"):
        return None

    base = root.resolve()
    target = (base / normalized).resolve()
    if target == base:
        return target if is_dir else None
    if base not in target.parents:
        return None
    return target


def _check_deadline(deadline: Optional[float]) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise InstallError("sync timeout exceeded during extraction")


def _write_stream(src, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as dst:
        shutil.copyfileobj(src, dst, COPY_BUFFER)


# ─── Extractors ─────────────────────────────────────────────


class Extractor(ABC):
    """Interface for one archive family."""

    format_name: str = "unknown"

    @abstractmethod
    def matches(self, archive: Path) -> bool:
        """Return True if ``archive`` looks like this format."""

    @abstractmethod
    def extract(
        self,
        archive: Path,
        dest: Path,
        deadline: Optional[float] = None,
    ) -> ExtractResult:
        """Extract every safe entry of ``archive`` into ``dest``."""


class ZipExtractor(Extractor):
    format_name = "zip"

    def matches(self, archive: Path) -> bool:
        return zipfile.is_zipfile(archive)

    def extract(self, archive, dest, deadline=None):
        result = ExtractResult()
        try:
            with zipfile.ZipFile(archive) as zf:
                for info in zf.infolist():
                    _check_deadline(deadline)
                    target = resolve_member(dest, info.filename, is_dir=info.is_dir())
                    if target is None:
                        logger.warning(f"Skipping unsafe zip entry: {info.filename}")
                        result.skipped.append(info.filename)
                        continue
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                        result.directories += 1
                        continue
                    with zf.open(info) as src:
                        _write_stream(src, target)
                    result.written += 1
        except InstallError:
            raise
        except (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError, OSError) as e:
            raise InstallError(f"cannot extract zip archive {archive.name}: {e}") from e
        return result


class TarExtractor(Extractor):
    format_name = "tar"

    def matches(self, archive: Path) -> bool:
        try:
            return tarfile.is_tarfile(archive)
        except OSError:
            return False

    def extract(self, archive, dest, deadline=None):
        result = ExtractResult()
        try:
            with tarfile.open(archive, "r:*") as tar:
                for member in tar:
                    _check_deadline(deadline)
                    target = resolve_member(dest, member.name, is_dir=member.isdir())
                    if target is None:
                        logger.warning(f"Skipping unsafe tar entry: {member.name}")
                        result.skipped.append(member.name)
                        continue
                    if member.isdir():
                        target.mkdir(parents=True, exist_ok=True)
                        result.directories += 1
                    elif member.isfile():
                        src = tar.extractfile(member)
                        if src is None:
                            raise InstallError(f"unreadable tar entry: {member.name}")
                        with src:
                            _write_stream(src, target)
                        result.written += 1
                    else:
                        # Links and device nodes could point outside dest.
                        logger.warning(f"Skipping non-regular tar entry: {member.name}")
                        result.skipped.append(member.name)
        except InstallError:
            raise
        except (tarfile.TarError, zlib.error, EOFError, OSError) as e:
            raise InstallError(f"cannot extract tar archive {archive.name}: {e}") from e
        return result


DEFAULT_EXTRACTORS: Sequence[Extractor] = (ZipExtractor(), TarExtractor())


# ─── Installer ──────────────────────────────────────────────


class ArchiveInstaller:
    """Installs archives into serving directories."""

    def __init__(
        self,
        extractors: Optional[Sequence[Extractor]] = None,
        atomic_swap: bool = True,
    ):
        self.extractors = list(extractors) if extractors is not None else list(DEFAULT_EXTRACTORS)
        self.atomic_swap = atomic_swap

    def detect(self, archive: Path) -> Extractor:
        """Pick the extractor for ``archive`` or raise InstallError."""
        if not archive.is_file():
            raise InstallError(f"archive not found: {archive}")
        for extractor in self.extractors:
            if extractor.matches(archive):
                return extractor
        raise InstallError(f"unrecognised archive format: {archive.name}")

    def install(
        self,
        archive: Path,
        serving_dir: Path,
        deadline: Optional[float] = None,
    ) -> InstallReport:
        """
        Extract ``archive`` into ``serving_dir``.

        Raises:
            InstallError: Corrupt archive, unreadable entry, filesystem
                error, or deadline exceeded
        """
        extractor = self.detect(archive)
        if self.atomic_swap:
            return self._install_swap(extractor, archive, serving_dir, deadline)
        return self._install_overlay(extractor, archive, serving_dir, deadline)

    def prepare(self, serving_dir: Path) -> None:
        """
        Make sure ``serving_dir`` exists before anything serves it.

        In swap mode a fresh serving directory is created as a link to an
        empty snapshot, so the first install is already an atomic swap.
        """
        self.recover(serving_dir)
        if serving_dir.is_dir():
            return
        if not self.atomic_swap:
            serving_dir.mkdir(parents=True, exist_ok=True)
            return
        snapshot = self._new_snapshot(serving_dir)
        self._point_to(serving_dir, snapshot)

    # ─── Overlay ────────────────────────────────────────────

    def _install_overlay(self, extractor, archive, serving_dir, deadline):
        try:
            serving_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InstallError(f"cannot create {serving_dir}: {e}") from e

        result = extractor.extract(archive, serving_dir, deadline)
        return InstallReport(
            serving_dir=serving_dir,
            mode="overlay",
            format=extractor.format_name,
            written=result.written,
            directories=result.directories,
            skipped=result.skipped,
        )

    # ─── Snapshots + link swap ──────────────────────────────
    #
    # data/docs -> .docs.snapshots/<ns>     (symlink, replaced atomically)
    # data/.docs.snapshots/<ns>/...         (one extracted tree per install)

    @staticmethod
    def snapshots_dir(serving_dir: Path) -> Path:
        return serving_dir.parent / f".{serving_dir.name}.snapshots"

    @staticmethod
    def link_tmp(serving_dir: Path) -> Path:
        return serving_dir.parent / f".{serving_dir.name}.link"

    @staticmethod
    def current_snapshot(serving_dir: Path) -> Optional[Path]:
        """Snapshot ``serving_dir`` links to, or None if it is not a link."""
        if not serving_dir.is_symlink():
            return None
        return serving_dir.resolve()

    def recover(self, serving_dir: Path) -> None:
        """
        Clean up after an interrupted install.

        Removes a leftover temporary link and unfinished snapshots. If the
        serving directory is missing or dangling, it is pointed back at the
        newest snapshot on disk.
        """
        _remove_tree(self.link_tmp(serving_dir))
        snapshots_dir = self.snapshots_dir(serving_dir)
        if not snapshots_dir.is_dir():
            return

        snapshots = sorted(
            (p for p in snapshots_dir.iterdir() if p.is_dir() and not p.is_symlink()),
            key=lambda p: p.name,
        )
        current = self.current_snapshot(serving_dir)
        if not serving_dir.is_dir() and snapshots:
            current = snapshots[-1]
            logger.warning(f"Restoring interrupted install: {serving_dir} -> {current.name}")
            self._point_to(serving_dir, current)

        keep = current.resolve() if current is not None else None
        for snapshot in snapshots:
            if snapshot.resolve() != keep:
                _remove_tree_quietly(snapshot)

    def _install_swap(self, extractor, archive, serving_dir, deadline):
        try:
            self.recover(serving_dir)
            snapshot = self._new_snapshot(serving_dir)
        except OSError as e:
            raise InstallError(f"cannot prepare snapshot for {serving_dir}: {e}") from e

        try:
            result = extractor.extract(archive, snapshot, deadline)
        except BaseException:
            _remove_tree_quietly(snapshot)
            raise

        try:
            retired = self._point_to(serving_dir, snapshot)
        except OSError as e:
            _remove_tree_quietly(snapshot)
            raise InstallError(f"cannot switch {serving_dir} to {snapshot.name}: {e}") from e

        if retired is not None:
            _remove_tree_quietly(retired)
        return InstallReport(
            serving_dir=serving_dir,
            mode="swap",
            format=extractor.format_name,
            written=result.written,
            directories=result.directories,
            skipped=result.skipped,
        )

    def _new_snapshot(self, serving_dir: Path) -> Path:
        snapshots_dir = self.snapshots_dir(serving_dir)
        snapshots_dir.mkdir(parents=True, exist_ok=True)
        snapshot = snapshots_dir / str(time.time_ns())
        snapshot.mkdir()
        return snapshot

    def _point_to(self, serving_dir: Path, snapshot: Path) -> Optional[Path]:
        """
        Atomically make ``serving_dir`` a link to ``snapshot``.

        Returns the tree that was served before, if any, for the caller to
        delete.
        """
        retired = self.current_snapshot(serving_dir)
        link = self.link_tmp(serving_dir)
        _remove_tree(link)
        link.symlink_to(snapshot.relative_to(serving_dir.parent), target_is_directory=True)

        legacy = None
        if serving_dir.is_dir() and not serving_dir.is_symlink():
            # A plain directory (overlay mode, or created by hand) cannot be
            # replaced by a link in one step; it is moved into the snapshots.
            legacy = self.snapshots_dir(serving_dir) / f"{time.time_ns()}-legacy"
            serving_dir.rename(legacy)
            retired = legacy

        try:
            link.replace(serving_dir)
        except OSError:
            if legacy is not None:
                legacy.rename(serving_dir)
            _remove_tree_quietly(link)
            raise
        return retired


def _remove_tree(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


def _remove_tree_quietly(path: Path) -> None:
    try:
        _remove_tree(path)
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")
