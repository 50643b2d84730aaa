"""Application directories and persisted settings."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .profiles import PROFILES_FILENAME
from .steam import find_game_dir

APP_NAME = "thunderstore-sync"
SETTINGS_FILENAME = "settings.json"


class ConfigError(Exception):
    """Raised when the settings file cannot be read or written."""

    pass


def default_data_dir() -> Path:
    """``$TS_SYNC_HOME``, else ``$XDG_DATA_HOME/thunderstore-sync``."""
    home = os.environ.get("TS_SYNC_HOME")
    if home:
        return Path(home).expanduser()
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".local" / "share"
    return base / APP_NAME


def default_cache_dir() -> Path:
    """Where the package index is cached between runs."""
    home = os.environ.get("TS_SYNC_HOME")
    if home:
        return Path(home).expanduser() / "index-cache"
    xdg = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".cache"
    return base / APP_NAME


@dataclass
class Settings:
    data_dir: Path = field(default_factory=default_data_dir)
    cache_dir: Path = field(default_factory=default_cache_dir)
    steam_path: Path | None = None
    game_paths: dict[str, str] = field(default_factory=dict)
    active_profile_id: str | None = None
    use_legacy_cache: bool = False

    @property
    def settings_file(self) -> Path:
        return self.data_dir / SETTINGS_FILENAME

    @property
    def profiles_file(self) -> Path:
        return self.data_dir / PROFILES_FILENAME

    @property
    def mod_cache_dir(self) -> Path:
        """Per-profile extracted payloads."""
        return self.data_dir / "cache"

    @property
    def temp_dir(self) -> Path:
        return self.data_dir / "tmp"

    @classmethod
    def load(cls, data_dir: Path | None = None) -> "Settings":
        """Load settings from data_dir, falling back to defaults for missing keys."""
        settings = cls(data_dir=Path(data_dir)) if data_dir else cls()
        path = settings.settings_file
        if not path.exists():
            return settings

        try:
            with open(path) as f:
                data: dict[str, Any] = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid settings file: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}")

        if data.get("steamPath"):
            settings.steam_path = Path(data["steamPath"])
        settings.game_paths = dict(data.get("gamePaths") or {})
        settings.active_profile_id = data.get("activeProfileId")
        settings.use_legacy_cache = bool(data.get("useLegacyCache", False))
        return settings

    def save(self) -> None:
        data = {
            "steamPath": str(self.steam_path) if self.steam_path else None,
            "gamePaths": self.game_paths,
            "activeProfileId": self.active_profile_id,
            "useLegacyCache": self.use_legacy_cache,
        }
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise ConfigError(f"Cannot write {self.settings_file}: {e}")

    def resolve_game_path(self, game_id: str) -> Path | None:
        """Configured path for a game, else the Steam library location."""
        configured = self.game_paths.get(game_id)
        if configured:
            return Path(configured)
        return find_game_dir(game_id, self.steam_path)
