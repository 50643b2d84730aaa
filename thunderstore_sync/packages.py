"""Package identities, versions and dependency string parsing."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# The trailing "-X.Y.Z" is the only unambiguous anchor in a dependency string;
# namespaces and names may both contain hyphens.
VERSION_SUFFIX_RE = re.compile(r"^(?P<name>.+)-(?P<version>\d+\.\d+\.\d+)$")
SEMVER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


class DependencyParseError(Exception):
    """Raised when a dependency string cannot be parsed."""

    pass


@dataclass(frozen=True, order=True)
class SemVer:
    """A major.minor.patch version number."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, text: str) -> "SemVer":
        match = SEMVER_RE.match(text.strip())
        if not match:
            raise DependencyParseError(f"Invalid version number: {text!r}")
        return cls(*(int(part) for part in match.groups()))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class PackageIdentity:
    """A package within one community index, independent of version."""

    namespace: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.namespace}-{self.name}"

    @classmethod
    def parse(cls, full_name: str) -> "PackageIdentity":
        """
        Parse an unversioned ``namespace-name`` string.

        Namespaces never contain a hyphen, so the first hyphen separates the
        namespace from a name that may itself contain hyphens.
        """
        namespace, sep, name = full_name.partition("-")
        if not sep or not namespace or not name:
            raise DependencyParseError(f"Invalid package name: {full_name!r}")
        return cls(namespace=namespace, name=name)

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class DependencySpecifier:
    """A pinned dependency, serialized as ``namespace-name-X.Y.Z``."""

    identity: PackageIdentity
    version: SemVer

    @property
    def full_name(self) -> str:
        return self.identity.full_name

    def __str__(self) -> str:
        return f"{self.identity.full_name}-{self.version}"


def parse_dependency(spec: str) -> DependencySpecifier:
    """
    Parse a dependency string such as ``BepInEx-BepInExPack-5.4.2100``.

    The version is split off the end first; only the remainder is split
    into namespace and name.
    """
    match = VERSION_SUFFIX_RE.match(spec.strip())
    if not match:
        raise DependencyParseError(f"Dependency has no version suffix: {spec!r}")
    identity = PackageIdentity.parse(match.group("name"))
    return DependencySpecifier(identity=identity, version=SemVer.parse(match.group("version")))


def strip_version(full_name: str) -> str:
    """Return ``namespace-name`` for a versioned or unversioned full name."""
    match = VERSION_SUFFIX_RE.match(full_name.strip())
    if match:
        return match.group("name")
    return full_name.strip()


def split_version(full_name: str) -> tuple[str, str | None]:
    """Split a full name into (namespace-name, version or None)."""
    match = VERSION_SUFFIX_RE.match(full_name.strip())
    if match:
        return match.group("name"), match.group("version")
    return full_name.strip(), None


@dataclass
class PackageVersion:
    """One published version of a package."""

    full_name: str
    name: str
    version_number: str
    download_url: str
    file_size: int = 0
    dependencies: list[str] = field(default_factory=list)
    icon: str | None = None
    description: str = ""
    uuid4: str = ""
    downloads: int = 0
    date_created: str = ""

    @property
    def identity(self) -> PackageIdentity:
        return PackageIdentity.parse(strip_version(self.full_name))

    def dependency_specifiers(self) -> list[DependencySpecifier]:
        """Parse dependency strings, skipping (and logging) malformed ones."""
        specifiers = []
        for dep in self.dependencies:
            try:
                specifiers.append(parse_dependency(dep))
            except DependencyParseError as e:
                logger.warning("Ignoring dependency of %s: %s", self.full_name, e)
        return specifiers

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageVersion":
        size = data.get("file_size") or 0
        if isinstance(size, str):
            size = int(size) if size.isdigit() else 0
        return cls(
            full_name=data.get("full_name", ""),
            name=data.get("name", ""),
            version_number=data.get("version_number", "0.0.0"),
            download_url=data.get("download_url", ""),
            file_size=size,
            dependencies=list(data.get("dependencies") or []),
            icon=data.get("icon"),
            description=data.get("description", ""),
            uuid4=data.get("uuid4", ""),
            downloads=data.get("downloads", 0) or 0,
            date_created=data.get("date_created", ""),
        )


@dataclass
class Package:
    """A package listing with all of its versions, newest first."""

    owner: str
    name: str
    full_name: str
    uuid4: str = ""
    categories: list[str] = field(default_factory=list)
    is_deprecated: bool = False
    has_nsfw_content: bool = False
    is_pinned: bool = False
    rating_score: int = 0
    date_created: str = ""
    date_updated: str = ""
    package_url: str = ""
    versions: list[PackageVersion] = field(default_factory=list)

    @property
    def identity(self) -> PackageIdentity:
        return PackageIdentity.parse(self.full_name)

    @property
    def latest(self) -> PackageVersion | None:
        return self.versions[0] if self.versions else None

    @property
    def total_downloads(self) -> int:
        return sum(v.downloads for v in self.versions)

    @property
    def is_modpack(self) -> bool:
        return "Modpacks" in self.categories

    def get_version(self, version_number: str | None) -> PackageVersion | None:
        """Return the matching version, or None if the index lacks it."""
        if version_number is None:
            return self.latest
        for version in self.versions:
            if version.version_number == version_number:
                return version
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Package":
        return cls(
            owner=data.get("owner", ""),
            name=data.get("name", ""),
            full_name=data.get("full_name", ""),
            uuid4=data.get("uuid4", ""),
            categories=list(data.get("categories") or []),
            is_deprecated=bool(data.get("is_deprecated", False)),
            has_nsfw_content=bool(data.get("has_nsfw_content", False)),
            is_pinned=bool(data.get("is_pinned", False)),
            rating_score=data.get("rating_score", 0) or 0,
            date_created=data.get("date_created", ""),
            date_updated=data.get("date_updated", ""),
            package_url=data.get("package_url", ""),
            versions=[PackageVersion.from_dict(v) for v in data.get("versions") or []],
        )
