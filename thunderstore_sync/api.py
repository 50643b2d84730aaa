"""Thunderstore package index client."""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

from . import __version__
from .packages import Package, strip_version

BASE_URL = "https://thunderstore.io"
INDEX_CACHE_TTL = 3600  # seconds

SORT_FIELDS = {"last_updated", "downloads", "rating", "name", "created"}

logger = logging.getLogger(__name__)


class IndexAPIError(Exception):
    """Base exception for package index errors."""

    pass


class IndexRateLimited(IndexAPIError):
    """Raised when rate limited by the API."""

    def __init__(self, retry_after: int = 60):
        self.retry_after = retry_after
        super().__init__(f"Rate limited. Retry after {retry_after} seconds.")


@dataclass
class SortOptions:
    field: str = "last_updated"
    direction: str = "desc"  # asc or desc


@dataclass
class FilterOptions:
    nsfw: bool = False
    deprecated: bool = False
    categories: list[str] = field(default_factory=list)
    mods: bool = False
    modpacks: bool = False


@dataclass
class LookupResult:
    found: list[Package]
    unknown: list[str]


class ThunderstoreAPI:
    """Client for the Thunderstore package index with a per-game package cache."""

    def __init__(
        self,
        cache_dir: Path | None = None,
        base_url: str = BASE_URL,
        session: requests.Session | None = None,
        timeout: float = 60.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": f"thunderstore-sync/{__version__}"})
        self._packages: dict[str, list[Package]] = {}
        self._last_request_time = 0.0
        self._min_request_interval = 0.2

    def _rate_limit_wait(self) -> None:
        """Ensure we don't hammer the API."""
        elapsed = time.time() - self._last_request_time
        if elapsed < self._min_request_interval:
            time.sleep(self._min_request_interval - elapsed)
        self._last_request_time = time.time()

    def _get(self, url: str, **kwargs: Any) -> requests.Response:
        self._rate_limit_wait()
        try:
            return self.session.get(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise IndexAPIError(f"Request to {url} failed: {e}")

    def _handle_response(self, response: requests.Response) -> Any:
        """Handle API response and raise appropriate errors."""
        if response.status_code == 429:
            retry_after = int(response.headers.get("Retry-After", 60))
            raise IndexRateLimited(retry_after)
        if response.status_code == 404:
            raise IndexAPIError(f"Resource not found: {response.url}")
        if not response.ok:
            raise IndexAPIError(f"HTTP {response.status_code} from {response.url}")
        try:
            return response.json()
        except ValueError as e:
            raise IndexAPIError(f"Invalid JSON from {response.url}: {e}")

    # -- communities --

    def fetch_communities(self) -> list[dict[str, Any]]:
        """Return every community (game) listed on the index."""
        communities: list[dict[str, Any]] = []
        url: str | None = f"{self.base_url}/api/experimental/community/"
        while url:
            data = self._handle_response(self._get(url))
            communities.extend(data.get("results", []))
            url = (data.get("pagination") or {}).get("next_link")
        return communities

    # -- package index --

    def _index_cache_file(self, game_id: str) -> Path | None:
        if self.cache_dir is None:
            return None
        return self.cache_dir / f"{game_id}_packages.json"

    def _read_index_cache(self, game_id: str) -> list[dict[str, Any]] | None:
        cache_file = self._index_cache_file(game_id)
        if cache_file is None or not cache_file.exists():
            return None
        age = time.time() - cache_file.stat().st_mtime
        if age >= INDEX_CACHE_TTL:
            return None
        try:
            with open(cache_file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable index cache %s: %s", cache_file, e)
            return None
        logger.debug("Serving %s packages from %s", game_id, cache_file)
        return data if isinstance(data, list) else None

    def _write_index_cache(self, game_id: str, raw: list[dict[str, Any]]) -> None:
        cache_file = self._index_cache_file(game_id)
        if cache_file is None:
            return
        try:
            cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(cache_file, "w") as f:
                json.dump(raw, f)
        except OSError as e:
            logger.warning("Failed to write index cache %s: %s", cache_file, e)

    def fetch_by_game(self, game_id: str) -> int:
        """
        Populate the package index for a community.

        Memory first, then the on-disk cache (one hour), then the API.
        Returns the number of packages loaded.
        """
        packages = self._packages.get(game_id)
        if packages:
            return len(packages)

        raw = self._read_index_cache(game_id)
        if raw is None:
            logger.info("Fetching package index for %s", game_id)
            url = f"{self.base_url}/c/{game_id}/api/v1/package/"
            raw = self._handle_response(self._get(url))
            if not isinstance(raw, list):
                raise IndexAPIError(f"Unexpected package index response for {game_id}")
            self._write_index_cache(game_id, raw)

        self._packages[game_id] = [Package.from_dict(p) for p in raw]
        return len(self._packages[game_id])

    def load_packages(self, game_id: str, packages: list[Package]) -> None:
        """Seed the in-memory index directly."""
        self._packages[game_id] = list(packages)

    def _index(self, game_id: str) -> list[Package]:
        if game_id not in self._packages:
            self.fetch_by_game(game_id)
        return self._packages[game_id]

    def get_page(
        self,
        game_id: str,
        page: int,
        page_size: int,
        search: str = "",
        sort: SortOptions | None = None,
        filters: FilterOptions | None = None,
    ) -> list[Package]:
        """Return one page of packages after search, filtering and sorting."""
        packages = self._index(game_id)
        filters = filters or FilterOptions()

        if search:
            needle = search.lower()
            packages = [
                p for p in packages
                if needle in p.name.lower()
                or needle in p.full_name.lower()
                or needle in p.owner.lower()
            ]

        packages = [p for p in packages if _passes_filters(p, filters)]

        if sort is not None:
            packages = _sort_packages(packages, sort)

        start = page * page_size
        return packages[start:start + page_size]

    def get_by_name(self, game_id: str, full_name: str) -> Package | None:
        """Find a package by (optionally versioned) full name."""
        clean_name = strip_version(full_name)
        target = clean_name.lower()

        try:
            packages = self._index(game_id)
        except IndexAPIError as e:
            logger.warning("Package index for %s unavailable: %s", game_id, e)
            packages = []

        for package in packages:
            if package.full_name.lower() == target:
                return package

        namespace, sep, name = clean_name.partition("-")
        if not sep:
            return None

        logger.debug("Index miss for %s, querying the API", clean_name)
        response = self._get(f"{self.base_url}/api/v1/package/{namespace}/{name}/")
        if response.status_code == 404:
            return None
        return Package.from_dict(self._handle_response(response))

    def lookup_by_names(self, game_id: str, names: list[str]) -> LookupResult:
        """
        Batch lookup of package names against the index.

        Names may carry a version suffix. Names the index does not know are
        returned in ``unknown`` unchanged.
        """
        by_name = {p.full_name: p for p in self._index(game_id)}
        found: list[Package] = []
        unknown: list[str] = []
        for name in names:
            package = by_name.get(strip_version(name))
            if package is None:
                unknown.append(name)
            else:
                found.append(package)
        return LookupResult(found=found, unknown=unknown)

    def get_available_categories(self, game_id: str) -> list[str]:
        """Return the sorted set of categories used by a community's packages."""
        categories: set[str] = set()
        for package in self._index(game_id):
            categories.update(package.categories)
        return sorted(categories)

    # -- profile sharing --

    def fetch_legacy_profile(self, code: str) -> str | None:
        """Fetch a shared profile payload by code. Returns None if not a profile."""
        url = f"{self.base_url}/api/experimental/legacyprofile/get/{code}/"
        response = self._get(url)
        if not response.ok:
            return None
        return response.text

    def create_legacy_profile(self, payload: str) -> str:
        """Upload a profile payload and return its share code."""
        self._rate_limit_wait()
        url = f"{self.base_url}/api/experimental/legacyprofile/create/"
        try:
            response = self.session.post(
                url,
                data=payload.encode("utf-8"),
                headers={"Content-Type": "application/octet-stream"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise IndexAPIError(f"Profile upload failed: {e}")
        data = self._handle_response(response)
        key = data.get("key") if isinstance(data, dict) else None
        if not key:
            raise IndexAPIError(f"Unexpected upload response: {data}")
        return key


def _passes_filters(package: Package, filters: FilterOptions) -> bool:
    if package.has_nsfw_content and not filters.nsfw:
        return False
    if package.is_deprecated and not filters.deprecated:
        return False
    if filters.mods and not filters.modpacks and package.is_modpack:
        return False
    if filters.modpacks and not filters.mods and not package.is_modpack:
        return False
    if filters.categories and not set(filters.categories) & set(package.categories):
        return False
    return True


def _sort_packages(packages: list[Package], sort: SortOptions) -> list[Package]:
    if sort.field not in SORT_FIELDS:
        raise ValueError(f"Unknown sort field: {sort.field}")
    keys = {
        "last_updated": lambda p: p.date_updated,
        "created": lambda p: p.date_created,
        "downloads": lambda p: p.total_downloads,
        "rating": lambda p: p.rating_score,
        "name": lambda p: p.name.lower(),
    }
    ordered = sorted(packages, key=keys[sort.field], reverse=sort.direction == "desc")
    # Pinned packages stay on top regardless of sort order
    return sorted(ordered, key=lambda p: not p.is_pinned)
