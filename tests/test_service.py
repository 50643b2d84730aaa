from pathlib import Path

import pytest

from thunderstore_sync.api import IndexAPIError, ThunderstoreAPI
from thunderstore_sync.config import Settings
from thunderstore_sync.installer import InstallError
from thunderstore_sync.orphans import RemovalChoice
from thunderstore_sync.profile_export import build_export, encode_share_payload
from thunderstore_sync.service import (
    AlreadyInstalled,
    ModManagerService,
    NoGamePathConfigured,
    NoProfileSelected,
    PackageNotFound,
)

from conftest import GAME, FakeDownloader, IndexSession, make_mod, make_package, make_profile


@pytest.fixture
def game_root(tmp_path: Path) -> Path:
    root = tmp_path / "game"
    root.mkdir()
    return root


@pytest.fixture
def api() -> ThunderstoreAPI:
    client = ThunderstoreAPI(session=IndexSession())
    client.load_packages(GAME, [
        make_package("Ns-Solo"),
        make_package("Ns-Root", deps=["Ns-Lib-1.0.0", "Ns-Util-1.0.0"]),
        make_package("Ns-Lib", deps=["Ns-Util-1.0.0"]),
        make_package("Ns-Util"),
        make_package("Ns-One"),
        make_package("Ns-Two"),
        make_package("Ns-Three"),
        make_package("Ns-Four"),
    ])
    return client


@pytest.fixture
def service(tmp_path: Path, game_root: Path, api: ThunderstoreAPI, downloader: FakeDownloader) -> ModManagerService:
    settings = Settings(
        data_dir=tmp_path / "data",
        cache_dir=tmp_path / "index",
        game_paths={GAME: str(game_root)},
    )
    return ModManagerService(settings, api=api, downloader=downloader)


def _plugins(game_root: Path) -> list[str]:
    return sorted(p.name for p in (game_root / "BepInEx" / "plugins").iterdir())


def test_install_requires_profile(service: ModManagerService) -> None:
    with pytest.raises(NoProfileSelected):
        service.install_package("Ns-Solo")


def test_install_requires_game_path(service: ModManagerService) -> None:
    service.create_profile("Other", "unknown-game")
    with pytest.raises(NoGamePathConfigured):
        service.install_package("Ns-Solo")


def test_install_with_dependencies(service: ModManagerService, game_root: Path) -> None:
    service.create_profile("Main", GAME)

    outcome = service.install_package("Ns-Root")

    assert outcome.installed == ["Ns-Util-1.0.0", "Ns-Lib-1.0.0", "Ns-Root-1.0.0"]
    assert _plugins(game_root) == ["Ns-Lib", "Ns-Root", "Ns-Util"]
    assert [m.full_name for m in service.active_profile.mods] == outcome.installed


def test_install_rejects_unknown_and_duplicate(service: ModManagerService) -> None:
    service.create_profile("Main", GAME)
    with pytest.raises(PackageNotFound):
        service.install_package("Ns-Nope")
    service.install_package("Ns-Solo")
    with pytest.raises(AlreadyInstalled):
        service.install_package("Ns-Solo-1.0.0")


def test_unreachable_index_surfaces_as_api_error(service: ModManagerService, api: ThunderstoreAPI) -> None:
    service.create_profile("Main", GAME)
    api.session = IndexSession(unreachable=True)

    with pytest.raises(IndexAPIError, match="Ns/Nope"):
        service.install_package("Ns-Nope")


def test_root_install_failure_propagates(service: ModManagerService, downloader: FakeDownloader) -> None:
    service.create_profile("Main", GAME)
    downloader.failing.add("https://example.invalid/Ns-Solo/1.0.0/")

    with pytest.raises(InstallError):
        service.install_package("Ns-Solo")

    assert service.active_profile.mods == []


def test_uninstall_without_dependencies_removes_directly(service: ModManagerService, game_root: Path) -> None:
    service.create_profile("Main", GAME)
    service.install_package("Ns-Solo")
    mod = service.active_profile.mods[0]

    plan = service.plan_uninstall(mod.uuid4)
    removed = service.uninstall(mod.uuid4)

    assert not plan.needs_choice
    assert removed == [mod]
    assert service.active_profile.mods == []
    assert _plugins(game_root) == []


def test_uninstall_with_orphans(service: ModManagerService, game_root: Path) -> None:
    service.create_profile("Main", GAME)
    service.install_package("Ns-Root")
    root = service.active_profile.find_package("Ns-Root")

    removed = service.uninstall(root.uuid4, RemovalChoice.WITH_ORPHANS)

    # Ns-Util is still a dependency of Ns-Lib, so only Ns-Lib is orphaned
    assert sorted(m.package_name for m in removed) == ["Ns-Lib", "Ns-Root"]
    assert _plugins(game_root) == ["Ns-Util"]


def test_uninstall_reuses_given_plan(
    service: ModManagerService, api: ThunderstoreAPI, monkeypatch: pytest.MonkeyPatch
) -> None:
    service.create_profile("Main", GAME)
    service.install_package("Ns-Root")
    root = service.active_profile.find_package("Ns-Root")
    plan = service.plan_uninstall(root.uuid4)
    lookups: list[list[str]] = []
    original = api.lookup_by_names
    monkeypatch.setattr(api, "lookup_by_names", lambda game, names: lookups.append(names) or original(game, names))

    removed = service.uninstall(root.uuid4, RemovalChoice.WITH_ALL_DEPS, plan=plan)

    assert lookups == []
    assert len(removed) == 3


def test_import_reports_unknown_and_installs_rest(
    service: ModManagerService, tmp_path: Path, game_root: Path
) -> None:
    exported = make_profile(
        make_mod("Ns-One"),
        make_mod("Ns-Two"),
        make_mod("Ns-Ghost"),
        make_mod("Ns-Three"),
        make_mod("Ns-Four"),
    )
    source = tmp_path / "friends.r2z"
    source.write_bytes(build_export(exported))

    result = service.import_profile(source, GAME)

    assert result.unknown == ["Ns-Ghost-1.0.0"]
    assert sorted(result.installed) == ["Ns-Four-1.0.0", "Ns-One-1.0.0", "Ns-Three-1.0.0", "Ns-Two-1.0.0"]
    assert result.failed == []
    assert len(result.profile.mods) == 4
    assert _plugins(game_root) == ["Ns-Four", "Ns-One", "Ns-Three", "Ns-Two"]
    assert service.active_profile.id == result.profile.id


def test_import_from_code_records_disabled_without_installing(
    service: ModManagerService, api: ThunderstoreAPI, game_root: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    payload = encode_share_payload(build_export(make_profile(make_mod("Ns-One"), make_mod("Ns-Two", enabled=False))))
    monkeypatch.setattr(api, "fetch_legacy_profile", lambda code: payload if code == "abc123" else None)

    result = service.import_profile("abc123", GAME, name="Shared")

    assert result.profile.name == "Shared"
    assert result.disabled == 1
    assert [m.enabled for m in result.profile.mods] == [True, False]
    assert _plugins(game_root) == ["Ns-One"]


def test_import_keeps_export_order(service: ModManagerService, tmp_path: Path) -> None:
    exported = make_profile(make_mod("Ns-One"), make_mod("Ns-Two", enabled=False), make_mod("Ns-Three"))
    source = tmp_path / "ordered.r2z"
    source.write_bytes(build_export(exported))

    result = service.import_profile(source, GAME)

    assert [m.package_name for m in result.profile.mods] == ["Ns-One", "Ns-Two", "Ns-Three"]
    assert result.installed == ["Ns-One-1.0.0", "Ns-Three-1.0.0"]


def test_toggle_and_sync(service: ModManagerService, game_root: Path) -> None:
    service.create_profile("Main", GAME)
    service.install_package("Ns-Solo")
    mod = service.active_profile.mods[0]

    assert service.toggle_mod(mod.uuid4) is False
    report = service.sync_profile()

    assert report.removed == 1
    assert _plugins(game_root) == []
    assert service.sync_profile().no_changes


def test_active_profile_survives_restart(
    service: ModManagerService, api: ThunderstoreAPI, downloader: FakeDownloader
) -> None:
    created = service.create_profile("Main", GAME)

    restarted = ModManagerService(Settings.load(service.settings.data_dir), api=api, downloader=downloader)

    assert restarted.active_profile.id == created.id


def test_delete_profile_clears_its_cache(service: ModManagerService) -> None:
    profile = service.create_profile("Main", GAME)
    service.settings.use_legacy_cache = True
    service.install_package("Ns-Solo")
    assert service.cache.has(profile.id, "Ns-Solo")

    service.delete_profile(profile.id)

    assert not service.cache.has(profile.id, "Ns-Solo")
    assert service.active_profile is None
