"""Per-profile cache of extracted package payloads."""

import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path

from .packages import strip_version

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Raised when a payload cannot be written to the cache."""

    pass


@dataclass
class ClearResult:
    cleared: int
    bytes_freed: int


def _dir_size(path: Path) -> int:
    total = 0
    for entry in path.rglob("*"):
        if entry.is_file() and not entry.is_symlink():
            total += entry.stat().st_size
    return total


class ModCache:
    """
    Stores extracted mods under ``<root>/<profile_id>/<namespace-name>``.

    The cache assumes exclusive access: no locking is performed, and a
    concurrent sync of the same profile is not supported.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def entry_dir(self, profile_id: str, full_name: str) -> Path:
        return self.root / profile_id / strip_version(full_name)

    def has(self, profile_id: str, full_name: str) -> bool:
        entry = self.entry_dir(profile_id, full_name)
        return entry.is_dir() and any(entry.iterdir())

    def copy_from(self, profile_id: str, full_name: str, dest_dir: Path) -> bool:
        """
        Copy a cached payload into dest_dir, replacing its contents.

        Returns False on a cache miss or if the copy failed.
        """
        if not self.has(profile_id, full_name):
            return False
        entry = self.entry_dir(profile_id, full_name)
        try:
            if dest_dir.exists():
                shutil.rmtree(dest_dir)
            dest_dir.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(entry, dest_dir)
        except OSError as e:
            logger.warning("Cache copy of %s failed: %s", full_name, e)
            shutil.rmtree(dest_dir, ignore_errors=True)
            return False
        return True

    def store(self, profile_id: str, full_name: str, source_dir: Path) -> None:
        """Copy an extracted payload into the cache, replacing any previous entry."""
        entry = self.entry_dir(profile_id, full_name)
        staging = entry.parent / f".staging-{uuid.uuid4().hex[:8]}"
        try:
            entry.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source_dir, staging)
            if entry.exists():
                shutil.rmtree(entry)
            staging.rename(entry)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise CacheError(f"Failed to cache {full_name}: {e}")

    def clear_profile(self, profile_id: str) -> ClearResult:
        """Drop every cached payload of one profile."""
        profile_dir = self.root / profile_id
        if not profile_dir.is_dir():
            return ClearResult(0, 0)
        cleared = sum(1 for p in profile_dir.iterdir() if p.is_dir() and not p.name.startswith("."))
        freed = _dir_size(profile_dir)
        shutil.rmtree(profile_dir)
        return ClearResult(cleared, freed)

    def clear_all(self) -> ClearResult:
        """Drop the whole cache."""
        if not self.root.is_dir():
            return ClearResult(0, 0)
        cleared = 0
        freed = 0
        for profile_dir in self.root.iterdir():
            if profile_dir.is_dir():
                result = self.clear_profile(profile_dir.name)
                cleared += result.cleared
                freed += result.bytes_freed
            else:
                freed += profile_dir.stat().st_size
                profile_dir.unlink()
        return ClearResult(cleared, freed)
