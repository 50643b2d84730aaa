"""Service layer - business logic behind the CLI for programmatic use."""

import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .api import FilterOptions, SortOptions, ThunderstoreAPI
from .cache import ClearResult, ModCache
from .config import Settings
from .downloader import Downloader
from .game import GameInstallation
from .installer import InstallError, InstallRequest, Installer
from .orphans import OrphanDetector, RemovalChoice, RemovalPlan
from .packages import Package, PackageVersion, split_version
from .profile_export import (
    ExportError,
    build_export,
    decode_share_payload,
    encode_share_payload,
    read_export,
    write_export,
)
from .profiles import InstalledMod, JsonProfileStorage, Profile, ProfileError, ProfileStore
from .reconciler import Reconciler, SyncReport
from .resolver import DependencyResolver

logger = logging.getLogger(__name__)

# progress callback: (event_type, percentage 0-1, message)
ProgressCallback = Callable[[str, float, str], None]


class NoProfileSelected(Exception):
    """Raised when an operation needs a profile and none is active."""

    pass


class NoGamePathConfigured(Exception):
    """Raised when the game installation of a profile cannot be located."""

    pass


class PackageNotFound(Exception):
    """Raised when a requested package or version is not in the index."""

    pass


class AlreadyInstalled(Exception):
    """Raised when a package is already part of the profile."""

    pass


@dataclass
class InstallOutcome:
    package: str
    installed: list[str] = field(default_factory=list)
    unknown: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class ImportResult:
    profile: Profile
    installed: list[str] = field(default_factory=list)
    unknown: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    disabled: int = 0


def _noop_progress(event: str, pct: float, msg: str) -> None:
    pass


def _entry_for(version: PackageVersion, enabled: bool = True) -> InstalledMod:
    return InstalledMod(
        uuid4=version.uuid4 or str(uuid.uuid4()),
        full_name=version.full_name,
        version_number=version.version_number,
        enabled=enabled,
        icon_url=version.icon,
    )


class ModManagerService:
    """Business logic for managing Thunderstore mod profiles."""

    def __init__(
        self,
        settings: Settings,
        api: ThunderstoreAPI | None = None,
        downloader: Downloader | None = None,
    ):
        self.settings = settings
        self._api = api
        self.downloader = downloader or Downloader()
        self.cache = ModCache(settings.mod_cache_dir)
        self.installer = Installer(self.downloader, self.cache, settings.temp_dir)
        self.store = ProfileStore(
            JsonProfileStorage(settings.profiles_file),
            remove_mod_files=self._remove_mod_files,
            delete_profile_files=self._delete_profile_files,
        )
        self.store.load()
        if settings.active_profile_id and self.store.get_profile(settings.active_profile_id):
            self.store.active_profile_id = settings.active_profile_id

    @property
    def api(self) -> ThunderstoreAPI:
        if self._api is None:
            self._api = ThunderstoreAPI(cache_dir=self.settings.cache_dir)
        return self._api

    # -- preconditions --

    def _require_profile(self, profile_id: str | None = None) -> Profile:
        if profile_id is None:
            profile = self.store.active_profile
            if profile is None:
                raise NoProfileSelected("No profile selected. Create or select one first.")
            return profile
        profile = self.store.get_profile(profile_id)
        if profile is None:
            raise ProfileError(f"Unknown profile: {profile_id}")
        return profile

    def _require_game(self, game_id: str) -> GameInstallation:
        path = self.settings.resolve_game_path(game_id)
        if path is None:
            raise NoGamePathConfigured(
                f"Game directory for {game_id} not found. Set it with set-game-path."
            )
        return GameInstallation(path)

    def _remember_active(self) -> None:
        self.settings.active_profile_id = self.store.active_profile_id
        self.settings.save()

    # -- file hooks for the profile store --

    def _remove_mod_files(self, profile: Profile, mod: InstalledMod) -> None:
        game = self._require_game(profile.game_identifier)
        if not game.delete_mod_dir(mod.full_name):
            logger.debug("No directory for %s in %s", mod.full_name, game.plugin_dir)

    def _delete_profile_files(self, profile: Profile) -> None:
        result = self.cache.clear_profile(profile.id)
        logger.info("Cleared %d cached mods of %s", result.cleared, profile.name)

    # -- profiles --

    def list_profiles(self) -> list[Profile]:
        return list(self.store.profiles)

    @property
    def active_profile(self) -> Profile | None:
        return self.store.active_profile

    def create_profile(self, name: str, game_id: str) -> Profile:
        profile = self.store.create_profile(name, game_id)
        self._remember_active()
        return profile

    def select_profile(self, profile_id: str) -> Profile:
        profile = self.store.select_profile(profile_id)
        self._remember_active()
        return profile

    def delete_profile(self, profile_id: str) -> None:
        """Delete a profile and its cached payloads. Installed mod files are left alone."""
        self.store.delete_profile(profile_id)
        self._remember_active()

    def set_game_path(self, game_id: str, path: Path) -> None:
        self.settings.game_paths[game_id] = str(Path(path).expanduser())
        self.settings.save()

    def set_use_legacy_cache(self, enabled: bool) -> None:
        self.settings.use_legacy_cache = enabled
        self.settings.save()

    # -- browsing --

    def search(
        self,
        game_id: str,
        query: str = "",
        page: int = 0,
        page_size: int = 20,
        sort: SortOptions | None = None,
        filters: FilterOptions | None = None,
    ) -> list[Package]:
        return self.api.get_page(game_id, page, page_size, search=query, sort=sort, filters=filters)

    # -- install / uninstall --

    def install_package(
        self,
        name: str,
        version: str | None = None,
        profile_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> InstallOutcome:
        """
        Install a package and its missing dependencies into a profile.

        Dependency failures are collected in the outcome. A failure of the
        package itself raises InstallError; dependencies installed before it
        stay recorded.
        """
        progress = on_progress or _noop_progress
        profile = self._require_profile(profile_id)
        game = self._require_game(profile.game_identifier)
        use_cache = self.settings.use_legacy_cache
        if version is None:
            name, version = split_version(name)

        progress("resolve", 0.0, f"Looking up {name}...")
        package = self.api.get_by_name(profile.game_identifier, name)
        if package is None:
            raise PackageNotFound(f"{name} not found for {profile.game_identifier}")
        root = package.get_version(version)
        if root is None:
            raise PackageNotFound(f"{package.full_name} has no version {version}")
        if profile.find_package(root.full_name) is not None:
            raise AlreadyInstalled(f"{package.full_name} is already in {profile.name}")

        resolution = DependencyResolver(self.api, profile.game_identifier).resolve(root, profile)
        outcome = InstallOutcome(
            package=root.full_name,
            unknown=list(resolution.unknown),
            failed=list(resolution.failed),
        )

        total = len(resolution.packages)
        for i, dep in enumerate(resolution.dependencies):
            progress("install", i / total, f"Installing dependency {dep.full_name}...")
            try:
                self.installer.install(dep.download_url, dep.full_name, game, profile.id, use_cache)
            except InstallError as e:
                logger.error("%s", e)
                outcome.failed.append((dep.full_name, str(e)))
                continue
            self.store.add_mod(profile.id, _entry_for(dep))
            outcome.installed.append(dep.full_name)

        progress("install", (total - 1) / total, f"Installing {root.full_name}...")
        self.installer.install(root.download_url, root.full_name, game, profile.id, use_cache)
        self.store.add_mod(profile.id, _entry_for(root))
        outcome.installed.append(root.full_name)

        progress("done", 1.0, f"Installed {root.full_name}")
        return outcome

    def plan_uninstall(self, mod_id: str, profile_id: str | None = None) -> RemovalPlan:
        profile = self._require_profile(profile_id)
        mod = profile.get_mod(mod_id)
        if mod is None:
            raise ProfileError(f"Mod {mod_id} is not in profile {profile.name}")
        return OrphanDetector(self.api, profile.game_identifier).detect(mod, profile)

    def uninstall(
        self,
        mod_id: str,
        choice: RemovalChoice = RemovalChoice.MOD_ONLY,
        profile_id: str | None = None,
        plan: RemovalPlan | None = None,
    ) -> list[InstalledMod]:
        """
        Remove a mod, plus the dependencies selected by choice.

        A plan from plan_uninstall can be passed in to skip a second index lookup.
        """
        profile = self._require_profile(profile_id)
        self._require_game(profile.game_identifier)
        mod = profile.get_mod(mod_id)
        if mod is None:
            raise ProfileError(f"Mod {mod_id} is not in profile {profile.name}")

        if choice is RemovalChoice.MOD_ONLY:
            targets = [mod]
        else:
            if plan is None or plan.mod.uuid4 != mod.uuid4:
                plan = self.plan_uninstall(mod_id, profile.id)
            targets = plan.targets(choice)

        removed = []
        for target in targets:
            entry = self.store.remove_mod(profile.id, target.uuid4)
            if entry is not None:
                removed.append(entry)
        return removed

    def toggle_mod(self, mod_id: str, profile_id: str | None = None) -> bool:
        """Flip a mod's enabled flag. Files follow on the next sync."""
        profile = self._require_profile(profile_id)
        return self.store.toggle_mod(profile.id, mod_id)

    def sync_profile(
        self,
        profile_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SyncReport:
        progress = on_progress or _noop_progress
        profile = self._require_profile(profile_id)
        game = self._require_game(profile.game_identifier)

        def on_batch(done: int, total: int) -> None:
            progress("install", done / total, f"Installed {done}/{total}")

        progress("sync", 0.0, f"Syncing {profile.name} into {game.plugin_dir}...")
        reconciler = Reconciler(self.api, self.installer, self.cache)
        report = reconciler.sync(profile, game, self.settings.use_legacy_cache, on_progress=on_batch)
        self.store.update_profile(profile.id, last_used=int(time.time() * 1000))
        progress("done", 1.0, report.summary())
        return report

    # -- import / export --

    def import_profile(
        self,
        source: str | Path,
        game_id: str,
        name: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ImportResult:
        """
        Create a profile from an export file or a share code.

        Names the index does not know are reported and skipped. Enabled mods
        are installed in batches; disabled ones are only recorded.
        """
        progress = on_progress or _noop_progress
        game = self._require_game(game_id)

        progress("fetch", 0.0, "Reading profile...")
        export = read_export(self._read_export_source(source))

        lookup = self.api.lookup_by_names(game_id, [m.full_name for m in export.mods])
        for unknown in lookup.unknown:
            logger.warning("%s not found for %s, skipping", unknown, game_id)
        packages = {p.full_name: p for p in lookup.found}

        profile = self.create_profile(name or export.profile_name, game_id)
        result = ImportResult(profile=profile, unknown=list(lookup.unknown))

        ordered: list[InstalledMod] = []
        requests: list[InstallRequest] = []
        for mod in export.mods:
            package = packages.get(mod.name)
            if package is None:
                continue
            version = package.get_version(mod.version) or package.latest
            if version is None:
                result.unknown.append(mod.full_name)
                continue
            ordered.append(_entry_for(version, enabled=mod.enabled))
            if mod.enabled:
                requests.append(InstallRequest.for_version(version))

        def on_batch(done: int, total: int) -> None:
            progress("install", done / total, f"Installed {done}/{total}")

        batch = self.installer.install_batch(
            requests, game, profile.id, self.settings.use_legacy_cache, on_progress=on_batch
        )
        succeeded = {installed.full_name for installed in batch.succeeded}
        # Entries keep the order of the export
        for entry in ordered:
            if not entry.enabled:
                self.store.add_mod(profile.id, entry)
                result.disabled += 1
            elif entry.full_name in succeeded:
                self.store.add_mod(profile.id, entry)
                result.installed.append(entry.full_name)
        result.failed = list(batch.failed)
        result.profile = self.store.get_profile(profile.id) or profile

        progress("done", 1.0, batch.summary())
        return result

    def _read_export_source(self, source: str | Path) -> bytes:
        path = Path(source).expanduser()
        if path.is_file():
            try:
                return path.read_bytes()
            except OSError as e:
                raise ExportError(f"Cannot read {path}: {e}")

        code = str(source).strip()
        payload = self.api.fetch_legacy_profile(code)
        if payload is None:
            raise ExportError(f"No shared profile found for code {code}")
        return decode_share_payload(payload)

    def export_profile(self, dest: Path, profile_id: str | None = None) -> Path:
        profile = self._require_profile(profile_id)
        return write_export(profile, dest)

    def share_profile(self, profile_id: str | None = None) -> str:
        """Upload a profile and return its share code."""
        profile = self._require_profile(profile_id)
        return self.api.create_legacy_profile(encode_share_payload(build_export(profile)))

    # -- cache --

    def clear_cache(self, profile_id: str | None = None) -> ClearResult:
        if profile_id is not None:
            return self.cache.clear_profile(profile_id)
        return self.cache.clear_all()
