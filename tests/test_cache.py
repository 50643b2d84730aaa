from pathlib import Path

from thunderstore_sync.cache import ModCache


def _payload(root: Path, size: int = 10) -> Path:
    root.mkdir(parents=True)
    (root / "BepInEx").mkdir()
    (root / "BepInEx" / "mod.dll").write_bytes(b"x" * size)
    return root


def test_store_and_copy(tmp_path: Path) -> None:
    cache = ModCache(tmp_path / "cache")
    cache.store("p1", "Ns-Mod-1.0.0", _payload(tmp_path / "src"))

    assert cache.has("p1", "Ns-Mod")
    assert not cache.has("p2", "Ns-Mod")

    dest = tmp_path / "game" / "Ns-Mod"
    assert cache.copy_from("p1", "Ns-Mod-2.0.0", dest)
    assert (dest / "BepInEx" / "mod.dll").exists()


def test_copy_miss(tmp_path: Path) -> None:
    cache = ModCache(tmp_path / "cache")
    assert not cache.copy_from("p1", "Ns-Mod-1.0.0", tmp_path / "dest")
    assert not (tmp_path / "dest").exists()


def test_store_replaces_entry(tmp_path: Path) -> None:
    cache = ModCache(tmp_path / "cache")
    cache.store("p1", "Ns-Mod-1.0.0", _payload(tmp_path / "v1"))
    newer = tmp_path / "v2"
    newer.mkdir()
    (newer / "new.dll").write_bytes(b"new")

    cache.store("p1", "Ns-Mod-2.0.0", newer)

    entry = cache.entry_dir("p1", "Ns-Mod")
    assert sorted(p.name for p in entry.iterdir()) == ["new.dll"]
    assert [p.name for p in entry.parent.iterdir()] == ["Ns-Mod"]


def test_clear(tmp_path: Path) -> None:
    cache = ModCache(tmp_path / "cache")
    cache.store("p1", "Ns-A-1.0.0", _payload(tmp_path / "a", 10))
    cache.store("p1", "Ns-B-1.0.0", _payload(tmp_path / "b", 20))
    cache.store("p2", "Ns-A-1.0.0", _payload(tmp_path / "c", 5))

    one = cache.clear_profile("p1")
    assert (one.cleared, one.bytes_freed) == (2, 30)
    assert cache.has("p2", "Ns-A")

    rest = cache.clear_all()
    assert (rest.cleared, rest.bytes_freed) == (1, 5)
    assert cache.clear_all().cleared == 0
