"""Orphaned dependency detection for uninstalls."""

import logging
from dataclasses import dataclass, field
from enum import Enum

from .api import ThunderstoreAPI
from .packages import Package, PackageVersion
from .profiles import InstalledMod, Profile

# Mod loader runtime, never offered for removal
BOOTSTRAP_PACKAGE = "BepInEx-BepInExPack"

logger = logging.getLogger(__name__)


class RemovalChoice(Enum):
    MOD_ONLY = "mod_only"
    WITH_ORPHANS = "with_orphans"
    WITH_ALL_DEPS = "with_all_deps"


@dataclass
class RemovalPlan:
    """What can go along with a mod being uninstalled."""

    mod: InstalledMod
    orphans: list[InstalledMod] = field(default_factory=list)
    all_deps: list[InstalledMod] = field(default_factory=list)

    @property
    def needs_choice(self) -> bool:
        """False when the mod has no installed dependencies to ask about."""
        return bool(self.all_deps)

    def targets(self, choice: RemovalChoice) -> list[InstalledMod]:
        if choice is RemovalChoice.WITH_ORPHANS:
            return [self.mod, *self.orphans]
        if choice is RemovalChoice.WITH_ALL_DEPS:
            return [self.mod, *self.all_deps]
        return [self.mod]


def _installed_version(package: Package, mod: InstalledMod) -> PackageVersion | None:
    return package.get_version(mod.version_number) or package.latest


class OrphanDetector:
    def __init__(self, index: ThunderstoreAPI, game_id: str):
        self.index = index
        self.game_id = game_id

    def detect(self, mod: InstalledMod, profile: Profile) -> RemovalPlan:
        """
        Split the installed dependencies of mod into orphans and shared ones.

        A dependency is an orphan when no other mod of the profile depends
        on it. Metadata for every mod comes from one batch lookup; an index
        failure raises ``IndexAPIError``.
        """
        others = [m for m in profile.mods if m.uuid4 != mod.uuid4]
        lookup = self.index.lookup_by_names(
            self.game_id, [mod.full_name, *(m.full_name for m in others)]
        )
        packages = {p.full_name: p for p in lookup.found}
        for name in lookup.unknown:
            logger.debug("No index entry for %s, treating it as dependency-free", name)

        own_deps = self._dependency_names(packages.get(mod.package_name), mod)
        own_deps.discard(BOOTSTRAP_PACKAGE)
        own_deps.discard(mod.package_name)

        shared: set[str] = set()
        for other in others:
            shared |= self._dependency_names(packages.get(other.package_name), other)

        plan = RemovalPlan(mod=mod)
        for entry in profile.mods:
            if entry.uuid4 == mod.uuid4 or entry.package_name not in own_deps:
                continue
            plan.all_deps.append(entry)
            if entry.package_name not in shared:
                plan.orphans.append(entry)
        return plan

    def _dependency_names(self, package: Package | None, mod: InstalledMod) -> set[str]:
        if package is None:
            return set()
        version = _installed_version(package, mod)
        if version is None:
            return set()
        return {spec.full_name for spec in version.dependency_specifiers()}
