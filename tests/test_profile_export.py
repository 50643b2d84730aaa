import json
from pathlib import Path

import pytest
import yaml

from thunderstore_sync.profile_export import (
    ExportError,
    build_export,
    decode_share_payload,
    encode_share_payload,
    read_export,
    write_export,
)

from conftest import make_mod, make_profile, zip_bytes


def test_build_export_layout() -> None:
    profile = make_profile(make_mod("Ns-Some-Mod", "1.2.3"), make_mod("Ns-Off", enabled=False))

    archive = build_export(profile)
    exported = read_export(archive)

    assert exported.profile_name == "Test"
    assert [(m.name, m.version, m.enabled) for m in exported.mods] == [
        ("Ns-Some-Mod", "1.2.3", True),
        ("Ns-Off", "1.0.0", False),
    ]
    assert exported.mods[0].full_name == "Ns-Some-Mod-1.2.3"


def test_read_r2x_version_objects() -> None:
    document = {
        "profileName": "Friends",
        "mods": [
            {"name": "BepInEx-BepInExPack", "version": {"major": 5, "minor": 4, "patch": 2100}, "enabled": True},
            {"name": "Ns-Mod", "version": "0.3.1"},
        ],
    }
    archive = zip_bytes({"export.r2x": yaml.safe_dump(document).encode()})

    exported = read_export(archive)

    assert [m.full_name for m in exported.mods] == ["BepInEx-BepInExPack-5.4.2100", "Ns-Mod-0.3.1"]
    assert exported.mods[1].enabled


def test_read_legacy_manifest() -> None:
    archive = zip_bytes({"manifest.json": json.dumps({"mods": [{"name": "Ns-Mod", "version": "1.0.0"}]}).encode()})

    exported = read_export(archive)

    assert exported.profile_name == "Imported Profile"
    assert exported.mods[0].name == "Ns-Mod"


def test_read_rejects_archive_without_profile() -> None:
    with pytest.raises(ExportError):
        read_export(zip_bytes({"readme.txt": b"hi"}))
    with pytest.raises(ExportError):
        read_export(b"not a zip")


def test_write_export_into_directory(tmp_path: Path) -> None:
    path = write_export(make_profile(make_mod("Ns-Mod")), tmp_path)

    assert path == tmp_path / "Test.r2z"
    assert read_export(path).mods[0].name == "Ns-Mod"


def test_share_payload() -> None:
    archive = build_export(make_profile(make_mod("Ns-Mod")))

    payload = encode_share_payload(archive)

    assert payload.startswith("#r2modman\n")
    assert decode_share_payload(payload + "\n") == archive
    with pytest.raises(ExportError):
        decode_share_payload("plain text")
    with pytest.raises(ExportError):
        decode_share_payload("#r2modman\n***")
