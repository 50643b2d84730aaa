import json
from pathlib import Path

import pytest

from thunderstore_sync.api import FilterOptions, IndexAPIError, SortOptions, ThunderstoreAPI

from conftest import GAME, IndexSession, make_package


class OfflineSession:
    def __init__(self):
        self.headers: dict[str, str] = {}

    def get(self, url: str, **kwargs):
        raise AssertionError(f"unexpected request to {url}")


@pytest.fixture
def api() -> ThunderstoreAPI:
    client = ThunderstoreAPI(session=OfflineSession())
    client.load_packages(GAME, [
        make_package("Ns-Alpha", rating_score=5, date_updated="2024-03-01", categories=["Tools"]),
        make_package("Ns-Beta", rating_score=9, date_updated="2024-01-01", categories=["Modpacks"]),
        make_package("Ns-Gamma", rating_score=1, date_updated="2024-02-01", is_pinned=True),
        make_package("Ns-Old", is_deprecated=True),
        make_package("Ns-Spicy", has_nsfw_content=True),
    ])
    return client


def _names(packages) -> list[str]:
    return [p.full_name for p in packages]


def test_default_filters_hide_nsfw_and_deprecated(api: ThunderstoreAPI) -> None:
    names = _names(api.get_page(GAME, 0, 50))
    assert "Ns-Old" not in names
    assert "Ns-Spicy" not in names
    assert len(names) == 3


def test_sort_keeps_pinned_on_top(api: ThunderstoreAPI) -> None:
    page = api.get_page(GAME, 0, 50, sort=SortOptions(field="rating", direction="desc"))
    assert _names(page) == ["Ns-Gamma", "Ns-Beta", "Ns-Alpha"]


def test_search_and_paging(api: ThunderstoreAPI) -> None:
    assert _names(api.get_page(GAME, 0, 50, search="bet")) == ["Ns-Beta"]
    assert len(api.get_page(GAME, 1, 2, sort=SortOptions(field="name", direction="asc"))) == 1


def test_category_and_modpack_filters(api: ThunderstoreAPI) -> None:
    assert _names(api.get_page(GAME, 0, 50, filters=FilterOptions(categories=["Tools"]))) == ["Ns-Alpha"]
    assert _names(api.get_page(GAME, 0, 50, filters=FilterOptions(modpacks=True))) == ["Ns-Beta"]
    assert "Ns-Beta" not in _names(api.get_page(GAME, 0, 50, filters=FilterOptions(mods=True)))


def test_lookup_by_names(api: ThunderstoreAPI) -> None:
    result = api.lookup_by_names(GAME, ["Ns-Alpha-1.0.0", "Ns-Missing-2.0.0", "Ns-Beta"])
    assert _names(result.found) == ["Ns-Alpha", "Ns-Beta"]
    assert result.unknown == ["Ns-Missing-2.0.0"]


def test_get_by_name_is_case_insensitive(api: ThunderstoreAPI) -> None:
    assert api.get_by_name(GAME, "ns-alpha-1.0.0").full_name == "Ns-Alpha"


def test_categories(api: ThunderstoreAPI) -> None:
    assert api.get_available_categories(GAME) == ["Modpacks", "Tools"]


def test_fresh_disk_cache_avoids_network(tmp_path: Path) -> None:
    raw = [{"owner": "Ns", "name": "Cached", "full_name": "Ns-Cached", "versions": []}]
    (tmp_path / f"{GAME}_packages.json").write_text(json.dumps(raw))
    client = ThunderstoreAPI(cache_dir=tmp_path, session=OfflineSession())

    assert client.fetch_by_game(GAME) == 1
    assert client.get_by_name(GAME, "Ns-Cached") is not None


def test_get_by_name_falls_back_to_package_endpoint() -> None:
    url = "https://thunderstore.io/api/v1/package/Ns/Remote/"
    session = IndexSession({url: {"owner": "Ns", "name": "Remote", "full_name": "Ns-Remote", "versions": []}})
    client = ThunderstoreAPI(session=session)
    client.load_packages(GAME, [])

    assert client.get_by_name(GAME, "Ns-Remote-1.0.0").full_name == "Ns-Remote"
    assert client.get_by_name(GAME, "Ns-Nope") is None
    assert session.requested == [url, "https://thunderstore.io/api/v1/package/Ns/Nope/"]


def test_get_by_name_fallback_failure_raises() -> None:
    client = ThunderstoreAPI(session=IndexSession(unreachable=True))
    client.load_packages(GAME, [])

    with pytest.raises(IndexAPIError, match="Request to .*Ns/Nope/ failed"):
        client.get_by_name(GAME, "Ns-Nope")
