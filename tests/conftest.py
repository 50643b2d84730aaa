import io
import zipfile
from pathlib import Path

import pytest
import requests

from thunderstore_sync.api import IndexAPIError, LookupResult
from thunderstore_sync.cache import ModCache
from thunderstore_sync.downloader import DownloadError
from thunderstore_sync.game import GameInstallation
from thunderstore_sync.installer import Installer
from thunderstore_sync.packages import Package, PackageVersion, strip_version
from thunderstore_sync.profiles import InstalledMod, Profile

GAME = "test-game"


def zip_bytes(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def make_version(name: str, version: str = "1.0.0", deps: list[str] | None = None) -> PackageVersion:
    return PackageVersion(
        full_name=f"{name}-{version}",
        name=name.partition("-")[2],
        version_number=version,
        download_url=f"https://example.invalid/{name}/{version}/",
        dependencies=list(deps or []),
        uuid4=f"uuid-{name}-{version}",
    )


def make_package(
    name: str,
    versions: list[str] | None = None,
    deps: list[str] | None = None,
    **kwargs,
) -> Package:
    """A package whose versions (newest first) all share the same dependencies."""
    namespace, _, short = name.partition("-")
    return Package(
        owner=namespace,
        name=short,
        full_name=name,
        uuid4=f"uuid-{name}",
        versions=[make_version(name, v, deps) for v in versions or ["1.0.0"]],
        **kwargs,
    )


def make_mod(name: str, version: str = "1.0.0", enabled: bool = True) -> InstalledMod:
    return InstalledMod(
        uuid4=f"uuid-{name}-{version}",
        full_name=f"{name}-{version}",
        version_number=version,
        enabled=enabled,
    )


def make_profile(*mods: InstalledMod, profile_id: str = "p1") -> Profile:
    return Profile(id=profile_id, name="Test", game_identifier=GAME, mods=list(mods))


class FakeIndex:
    """In-memory stand-in for the package index client."""

    def __init__(self, packages: list[Package]):
        self.packages = {p.full_name: p for p in packages}
        self.lookups: list[list[str]] = []
        self.fail_on: set[str] = set()

    def lookup_by_names(self, game_id: str, names: list[str]) -> LookupResult:
        self.lookups.append(list(names))
        if any(strip_version(n) in self.fail_on for n in names):
            raise IndexAPIError("index unavailable")
        found, unknown = [], []
        for name in names:
            package = self.packages.get(strip_version(name))
            if package is None:
                unknown.append(name)
            else:
                found.append(package)
        return LookupResult(found=found, unknown=unknown)


class IndexResponse:
    def __init__(self, url: str, status_code: int = 404, payload=None):
        self.url = url
        self.status_code = status_code
        self.payload = payload
        self.headers: dict[str, str] = {}

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self):
        return self.payload


class IndexSession:
    """Answers index API calls from a table; unlisted URLs get a 404."""

    def __init__(self, payloads: dict | None = None, unreachable: bool = False):
        self.headers: dict[str, str] = {}
        self.payloads = payloads or {}
        self.unreachable = unreachable
        self.requested: list[str] = []

    def get(self, url: str, **kwargs) -> IndexResponse:
        self.requested.append(url)
        if self.unreachable:
            raise requests.ConnectionError(f"cannot reach {url}")
        if url in self.payloads:
            return IndexResponse(url, 200, self.payloads[url])
        return IndexResponse(url)


class FakeDownloader:
    """Writes a small zip for every URL instead of touching the network."""

    def __init__(self):
        self.calls: list[str] = []
        self.failing: set[str] = set()
        self.payloads: dict[str, bytes] = {}

    def download(self, url: str, dest_path: Path, on_progress=None) -> Path:
        self.calls.append(url)
        if url in self.failing:
            raise DownloadError(f"HTTP 500 downloading {url}")
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        payload = self.payloads.get(url) or zip_bytes({
            "manifest.json": url.encode(),
            "plugins/mod.dll": b"\x00dll",
        })
        dest_path.write_bytes(payload)
        return dest_path


@pytest.fixture
def game(tmp_path: Path) -> GameInstallation:
    installation = GameInstallation(tmp_path / "game")
    installation.plugin_dir.mkdir(parents=True)
    return installation


@pytest.fixture
def cache(tmp_path: Path) -> ModCache:
    return ModCache(tmp_path / "cache")


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def installer(downloader: FakeDownloader, cache: ModCache, tmp_path: Path) -> Installer:
    return Installer(downloader, cache, tmp_path / "tmp")
