"""r2modman-compatible profile export files and share payloads."""

import base64
import binascii
import io
import json
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .packages import strip_version
from .profiles import Profile

EXPORT_FILENAME = "export.r2x"
LEGACY_MANIFEST = "manifest.json"
SHARE_HEADER = "#r2modman"
DEFAULT_PROFILE_NAME = "Imported Profile"


class ExportError(Exception):
    """Raised when a profile export cannot be read or written."""

    pass


@dataclass
class ExportedMod:
    name: str
    version: str
    enabled: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.name}-{self.version}"


@dataclass
class ProfileExport:
    profile_name: str
    mods: list[ExportedMod] = field(default_factory=list)


def _version_string(value: Any) -> str:
    # Either {major, minor, patch} or a plain "X.Y.Z"
    if isinstance(value, dict):
        return "{}.{}.{}".format(
            int(value.get("major", 0)), int(value.get("minor", 0)), int(value.get("patch", 0))
        )
    if value is None:
        return "0.0.0"
    return str(value)


def _version_dict(version: str) -> dict[str, int]:
    parts = version.split(".")
    numbers = []
    for i in range(3):
        try:
            numbers.append(int(parts[i]))
        except (IndexError, ValueError):
            numbers.append(0)
    return {"major": numbers[0], "minor": numbers[1], "patch": numbers[2]}


def _parse_document(data: Any) -> ProfileExport:
    if not isinstance(data, dict):
        raise ExportError("Invalid profile export: expected a mapping")

    mods = []
    for entry in data.get("mods") or []:
        if not isinstance(entry, dict) or not entry.get("name"):
            continue
        try:
            version = _version_string(entry.get("version"))
        except (TypeError, ValueError) as e:
            raise ExportError(f"Invalid version for {entry.get('name')}: {e}")
        mods.append(ExportedMod(
            name=strip_version(str(entry["name"])),
            version=version,
            enabled=bool(entry.get("enabled", True)),
        ))

    return ProfileExport(
        profile_name=data.get("profileName") or DEFAULT_PROFILE_NAME,
        mods=mods,
    )


def read_export(source: Path | bytes) -> ProfileExport:
    """Read an .r2z archive from a path or raw bytes."""
    try:
        handle = io.BytesIO(source) if isinstance(source, bytes) else source
        with zipfile.ZipFile(handle) as zf:
            names = zf.namelist()
            if EXPORT_FILENAME in names:
                data = yaml.safe_load(zf.read(EXPORT_FILENAME).decode("utf-8"))
            elif LEGACY_MANIFEST in names:
                data = json.loads(zf.read(LEGACY_MANIFEST).decode("utf-8"))
            else:
                raise ExportError(
                    f"Invalid profile: missing {EXPORT_FILENAME} or {LEGACY_MANIFEST}"
                )
    except (zipfile.BadZipFile, OSError) as e:
        raise ExportError(f"Cannot read profile export: {e}")
    except (yaml.YAMLError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ExportError(f"Invalid profile export: {e}")

    return _parse_document(data)


def build_export(profile: Profile) -> bytes:
    """Serialize a profile into .r2z archive bytes."""
    document = {
        "profileName": profile.name,
        "mods": [
            {
                "name": mod.package_name,
                "version": _version_dict(mod.version_number),
                "enabled": mod.enabled,
            }
            for mod in profile.mods
        ],
    }
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as zf:
        zf.writestr(EXPORT_FILENAME, yaml.safe_dump(document, sort_keys=False))
    return buffer.getvalue()


def write_export(profile: Profile, dest: Path) -> Path:
    """Write a profile export to dest, or to ``<dest>/<profile name>.r2z`` if dest is a directory."""
    dest = Path(dest)
    if dest.is_dir():
        dest = dest / f"{profile.name}.r2z"
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(build_export(profile))
    except OSError as e:
        raise ExportError(f"Cannot write {dest}: {e}")
    return dest


def encode_share_payload(archive: bytes) -> str:
    return f"{SHARE_HEADER}\n{base64.b64encode(archive).decode('ascii')}"


def decode_share_payload(text: str) -> bytes:
    """Decode a shared profile payload back into archive bytes."""
    text = text.strip()
    if not text.startswith(SHARE_HEADER):
        raise ExportError("Not an r2modman profile payload")
    body = "".join(text[len(SHARE_HEADER):].split())
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ExportError(f"Invalid profile payload: {e}")
