"""Transitive dependency resolution against a profile."""

import logging
from dataclasses import dataclass, field

from .api import IndexAPIError, ThunderstoreAPI
from .packages import DependencySpecifier, Package, PackageVersion
from .profiles import Profile

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """
    Packages to install for a root, dependencies before their dependents.

    The root is always the last entry of ``packages``.
    """

    packages: list[PackageVersion] = field(default_factory=list)
    unknown: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def dependencies(self) -> list[PackageVersion]:
        return self.packages[:-1]


@dataclass
class _Frame:
    version: PackageVersion
    children: list[PackageVersion] | None = None
    next_child: int = 0


def select_version(package: Package, spec: DependencySpecifier | None) -> PackageVersion | None:
    """Pick the pinned version when the index has it, else the latest."""
    if spec is not None:
        pinned = package.get_version(str(spec.version))
        if pinned is not None:
            return pinned
        logger.info(
            "%s is not in the index, using %s instead",
            spec, package.latest.full_name if package.latest else "nothing",
        )
    return package.latest


class DependencyResolver:
    """Expands a package version into the ordered set of packages to install."""

    def __init__(self, index: ThunderstoreAPI, game_id: str):
        self.index = index
        self.game_id = game_id

    def resolve(self, root: PackageVersion, profile: Profile) -> Resolution:
        """
        Resolve root's transitive dependencies that the profile lacks.

        Dependencies already in the profile (same namespace-name, any
        version) are satisfied and not upgraded. Each package appears once
        and after everything it depends on; cycles are cut by the visited
        set. Unknown names and failed lookups are recorded and skipped.
        """
        result = Resolution()
        visited: set[str] = {root.identity.full_name}
        known: dict[str, Package] = {}
        stack = [_Frame(root)]

        while stack:
            frame = stack[-1]
            if frame.children is None:
                frame.children = self._expand(frame.version, profile, visited, known, result)

            if frame.next_child < len(frame.children):
                child = frame.children[frame.next_child]
                frame.next_child += 1
                name = child.identity.full_name
                if name in visited:
                    continue
                visited.add(name)
                stack.append(_Frame(child))
                continue

            stack.pop()
            result.packages.append(frame.version)

        return result

    def _expand(
        self,
        version: PackageVersion,
        profile: Profile,
        visited: set[str],
        known: dict[str, Package],
        result: Resolution,
    ) -> list[PackageVersion]:
        """Look up the unsatisfied, unvisited dependencies of one package in a single batch."""
        pending: list[DependencySpecifier] = []
        for spec in version.dependency_specifiers():
            if spec.full_name in visited:
                continue
            if profile.find_package(spec.full_name) is not None:
                continue
            if any(p.full_name == spec.full_name for p in pending):
                continue
            pending.append(spec)

        if not pending:
            return []

        to_lookup = [str(spec) for spec in pending if spec.full_name not in known]
        if to_lookup:
            try:
                lookup = self.index.lookup_by_names(self.game_id, to_lookup)
            except IndexAPIError as e:
                logger.error("Dependency lookup for %s failed: %s", version.full_name, e)
                result.failed.extend((name, str(e)) for name in to_lookup)
                return []
            for name in lookup.unknown:
                logger.warning("Dependency %s of %s not found in the index", name, version.full_name)
                result.unknown.append(name)
            for package in lookup.found:
                known[package.full_name] = package

        children = []
        for spec in pending:
            package = known.get(spec.full_name)
            if package is None:
                continue
            chosen = select_version(package, spec)
            if chosen is not None:
                children.append(chosen)
        return children
