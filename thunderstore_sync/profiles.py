"""Profiles and their persisted store."""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable

from .packages import strip_version

PROFILES_FILENAME = "profiles.json"

logger = logging.getLogger(__name__)


class ProfileError(Exception):
    """Raised when profile file operations fail or a profile is unknown."""

    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class InstalledMod:
    """A mod declared in a profile."""

    uuid4: str
    full_name: str
    version_number: str
    enabled: bool = True
    icon_url: str | None = None

    @property
    def package_name(self) -> str:
        """namespace-name without the version suffix."""
        return strip_version(self.full_name)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "uuid4": self.uuid4,
            "fullName": self.full_name,
            "versionNumber": self.version_number,
            "enabled": self.enabled,
        }
        if self.icon_url is not None:
            data["iconUrl"] = self.icon_url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstalledMod":
        return cls(
            uuid4=data.get("uuid4") or str(uuid.uuid4()),
            full_name=data.get("fullName", ""),
            version_number=data.get("versionNumber", ""),
            enabled=data.get("enabled", True),
            icon_url=data.get("iconUrl"),
        )


@dataclass
class Profile:
    """A named, declared set of mods for one game."""

    id: str
    name: str
    game_identifier: str
    mods: list[InstalledMod] = field(default_factory=list)
    date_created: int = field(default_factory=_now_ms)
    last_used: int = field(default_factory=_now_ms)

    def enabled_mods(self) -> list[InstalledMod]:
        return [m for m in self.mods if m.enabled]

    def get_mod(self, mod_id: str) -> InstalledMod | None:
        for mod in self.mods:
            if mod.uuid4 == mod_id:
                return mod
        return None

    def find_package(self, name: str) -> InstalledMod | None:
        """Find an entry by package name, ignoring any version suffix."""
        target = strip_version(name)
        for mod in self.mods:
            if mod.package_name == target:
                return mod
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "gameIdentifier": self.game_identifier,
            "mods": [m.to_dict() for m in self.mods],
            "dateCreated": self.date_created,
            "lastUsed": self.last_used,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Profile":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            game_identifier=data.get("gameIdentifier", ""),
            mods=[InstalledMod.from_dict(m) for m in data.get("mods", [])],
            date_created=data.get("dateCreated", 0),
            last_used=data.get("lastUsed", 0),
        )


class JsonProfileStorage:
    """Whole-collection JSON persistence of profiles."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load_profiles(self) -> list[Profile]:
        if not self.path.exists():
            return []
        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ProfileError(f"Invalid profiles file: {e}")
        except OSError as e:
            raise ProfileError(f"Cannot read {self.path}: {e}")
        if not isinstance(data, list):
            raise ProfileError(f"Invalid profiles file: expected a list in {self.path}")
        return [Profile.from_dict(p) for p in data]

    def save_profiles(self, profiles: list[Profile]) -> None:
        """Overwrite the stored collection with profiles."""
        temp = self.path.with_name(f".{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp, "w") as f:
                json.dump([p.to_dict() for p in profiles], f, indent=2)
            temp.replace(self.path)
        except OSError as e:
            raise ProfileError(f"Cannot write {self.path}: {e}")


class ProfileStore:
    """
    In-memory profile collection with full-overwrite persistence.

    Every mutation builds the new collection, applies it, then saves the
    whole collection. File cleanup hooks run before state changes and their
    failures never block the state change.
    """

    def __init__(
        self,
        storage: JsonProfileStorage,
        remove_mod_files: Callable[[Profile, InstalledMod], None] | None = None,
        delete_profile_files: Callable[[Profile], None] | None = None,
    ):
        self.storage = storage
        self.remove_mod_files = remove_mod_files
        self.delete_profile_files = delete_profile_files
        self.profiles: list[Profile] = []
        self.active_profile_id: str | None = None

    def load(self) -> list[Profile]:
        self.profiles = self.storage.load_profiles()
        return self.profiles

    def _commit(self, profiles: list[Profile]) -> None:
        self.profiles = profiles
        self.storage.save_profiles(profiles)

    def _index_of(self, profile_id: str) -> int:
        for i, profile in enumerate(self.profiles):
            if profile.id == profile_id:
                return i
        raise ProfileError(f"Unknown profile: {profile_id}")

    def get_profile(self, profile_id: str) -> Profile | None:
        for profile in self.profiles:
            if profile.id == profile_id:
                return profile
        return None

    @property
    def active_profile(self) -> Profile | None:
        if self.active_profile_id is None:
            return None
        return self.get_profile(self.active_profile_id)

    def select_profile(self, profile_id: str) -> Profile:
        profile = self.profiles[self._index_of(profile_id)]
        self.active_profile_id = profile_id
        return profile

    def create_profile(self, name: str, game_identifier: str) -> Profile:
        """Create a profile and make it the active one."""
        profile = Profile(id=str(uuid.uuid4()), name=name, game_identifier=game_identifier)
        self._commit([*self.profiles, profile])
        self.active_profile_id = profile.id
        return profile

    def delete_profile(self, profile_id: str) -> None:
        """Delete a profile's files (best effort), then its record."""
        profile = self.profiles[self._index_of(profile_id)]
        if self.delete_profile_files:
            try:
                self.delete_profile_files(profile)
            except Exception as e:
                logger.error("Failed to delete files of profile %s: %s", profile.name, e)

        self._commit([p for p in self.profiles if p.id != profile_id])
        if self.active_profile_id == profile_id:
            self.active_profile_id = None

    def update_profile(self, profile_id: str, **changes: Any) -> Profile:
        index = self._index_of(profile_id)
        updated = replace(self.profiles[index], **changes)
        profiles = list(self.profiles)
        profiles[index] = updated
        self._commit(profiles)
        return updated

    def add_mod(self, profile_id: str, mod: InstalledMod) -> bool:
        """Add a mod entry. Returns False if the same install id is already present."""
        index = self._index_of(profile_id)
        profile = self.profiles[index]
        if profile.get_mod(mod.uuid4) is not None:
            return False
        self._replace_mods(index, [*profile.mods, mod])
        return True

    def remove_mod(self, profile_id: str, mod_id: str) -> InstalledMod | None:
        """
        Remove a mod entry, deleting its files first.

        File deletion failures are logged; the entry is removed regardless.
        """
        index = self._index_of(profile_id)
        profile = self.profiles[index]
        mod = profile.get_mod(mod_id)
        if mod is None:
            return None

        if self.remove_mod_files:
            try:
                self.remove_mod_files(profile, mod)
            except Exception as e:
                logger.error("Failed to remove files of %s: %s", mod.full_name, e)

        index = self._index_of(profile_id)
        remaining = [m for m in self.profiles[index].mods if m.uuid4 != mod_id]
        self._replace_mods(index, remaining)
        return mod

    def toggle_mod(self, profile_id: str, mod_id: str) -> bool:
        """Flip a mod's enabled flag. Returns the new flag."""
        index = self._index_of(profile_id)
        profile = self.profiles[index]
        mod = profile.get_mod(mod_id)
        if mod is None:
            raise ProfileError(f"Mod {mod_id} is not in profile {profile.name}")
        mods = [replace(m, enabled=not m.enabled) if m.uuid4 == mod_id else m for m in profile.mods]
        self._replace_mods(index, mods)
        return not mod.enabled

    def _replace_mods(self, index: int, mods: list[InstalledMod]) -> None:
        profiles = list(self.profiles)
        profiles[index] = replace(profiles[index], mods=mods)
        self._commit(profiles)
