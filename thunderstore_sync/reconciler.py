"""Bring a game installation in line with a profile."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .api import IndexAPIError, ThunderstoreAPI
from .cache import CacheError, ModCache
from .game import GameInstallation, ModFilesError
from .installer import InstallRequest, Installer
from .packages import strip_version
from .profiles import InstalledMod, Profile

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    removed: int = 0
    to_install: list[str] = field(default_factory=list)
    already_installed: int = 0
    cached: int = 0
    installed: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def no_changes(self) -> bool:
        return self.removed == 0 and not self.to_install and self.cached == 0

    def summary(self) -> str:
        if self.no_changes:
            return "Nothing to do, profile is in sync"
        parts = [
            f"removed {self.removed}",
            f"installed {len(self.installed)}/{len(self.to_install)}",
            f"already installed {self.already_installed}",
        ]
        if self.cached:
            parts.append(f"cached {self.cached}")
        text = ", ".join(parts)
        if self.failed:
            text += f", failed: [{', '.join(name for name, _ in self.failed)}]"
        return text


class Reconciler:
    """Diffs a profile's enabled mods against the plugin directory and applies the difference."""

    def __init__(self, index: ThunderstoreAPI, installer: Installer, cache: ModCache):
        self.index = index
        self.installer = installer
        self.cache = cache

    def sync(
        self,
        profile: Profile,
        game: GameInstallation,
        use_legacy_cache: bool = False,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> SyncReport:
        """
        Remove directories with no enabled entry, then install missing entries.

        Directories and entries are matched by namespace-name only, so a
        version mismatch counts as installed. Every removal finishes before
        the first install. Per-item failures end up in the report.
        """
        report = SyncReport()

        present: dict[str, list[str]] = {}
        for name in game.list_installed_mod_names():
            present.setdefault(strip_version(name).lower(), []).append(name)
        wanted = {mod.package_name.lower(): mod for mod in profile.enabled_mods()}

        stale: list[str] = []
        kept: dict[str, str] = {}
        for key, names in present.items():
            if key not in wanted:
                stale.extend(names)
                continue
            # Unversioned directory wins; other copies of the same mod go
            names.sort(key=lambda name: name.lower() != key)
            kept[key] = names[0]
            stale.extend(names[1:])

        for name in stale:
            try:
                if game.delete_dir(name):
                    report.removed += 1
                    logger.info("Removed %s", name)
            except ModFilesError as e:
                logger.error("%s", e)
                report.failed.append((name, str(e)))

        missing: list[InstalledMod] = []
        for key, mod in wanted.items():
            if key in kept:
                report.already_installed += 1
                if use_legacy_cache and self._reverse_cache(profile, mod, game.plugin_dir / kept[key]):
                    report.cached += 1
            else:
                missing.append(mod)
                report.to_install.append(mod.full_name)

        pending: list[InstalledMod] = []
        for mod in missing:
            restored = use_legacy_cache and self.installer.restore_from_cache(
                profile.id, mod.full_name, game.mod_dir(mod.full_name)
            )
            if restored:
                logger.info("Restored %s from cache", mod.full_name)
                report.installed.append(mod.full_name)
            else:
                pending.append(mod)

        if pending:
            requests = self._requests_for(pending, profile, report)
            batch = self.installer.install_batch(
                requests, game, profile.id, use_cache=use_legacy_cache, on_progress=on_progress
            )
            report.installed.extend(r.full_name for r in batch.succeeded)
            report.failed.extend(batch.failed)

        return report

    def _requests_for(
        self, mods: list[InstalledMod], profile: Profile, report: SyncReport
    ) -> list[InstallRequest]:
        try:
            lookup = self.index.lookup_by_names(profile.game_identifier, [m.full_name for m in mods])
        except IndexAPIError as e:
            logger.error("Package lookup failed: %s", e)
            report.failed.extend((m.full_name, str(e)) for m in mods)
            return []

        packages = {p.full_name: p for p in lookup.found}
        requests = []
        for mod in mods:
            package = packages.get(mod.package_name)
            version = None
            if package is not None:
                version = package.get_version(mod.version_number) or package.latest
            if version is None:
                logger.warning("%s is not in the package index", mod.full_name)
                report.failed.append((mod.full_name, "not found in the package index"))
                continue
            requests.append(InstallRequest(full_name=mod.full_name, download_url=version.download_url))
        return requests

    def _reverse_cache(self, profile: Profile, mod: InstalledMod, mod_dir: Path) -> bool:
        """Copy an installed mod into the cache if it is not there yet."""
        try:
            if self.cache.has(profile.id, mod.full_name):
                return False
            self.cache.store(profile.id, mod.full_name, mod_dir)
        except (CacheError, OSError) as e:
            logger.warning("%s", e)
            return False
        return True
