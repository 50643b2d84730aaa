"""Steam library detection and game path resolution."""

import re
from pathlib import Path


# Map Thunderstore community identifiers to Steam app IDs
STEAM_APP_IDS = {
    "lethal-company": "1966720",
    "risk-of-rain-2": "632360",
    "valheim": "892970",
    "content-warning": "2881650",
    "repo": "3241660",
    "h3vr": "450540",
    "dyson-sphere-program": "1366540",
    "peak": "3527290",
}

# Common Steam install locations on Linux and macOS
STEAM_PATHS = [
    Path.home() / ".steam" / "debian-installation",
    Path.home() / ".steam" / "steam",
    Path.home() / ".local" / "share" / "Steam",
    Path.home() / "Library" / "Application Support" / "Steam",
    Path("/usr/share/steam"),
]


def find_steam_root() -> Path | None:
    """Find the Steam installation root directory."""
    for path in STEAM_PATHS:
        if (path / "steamapps").is_dir() or (path / "config" / "libraryfolders.vdf").exists():
            return path
    return None


def parse_library_folders(steam_root: Path) -> list[Path]:
    """Parse libraryfolders.vdf to get all Steam library paths."""
    paths = [steam_root]
    for vdf_path in (
        steam_root / "steamapps" / "libraryfolders.vdf",
        steam_root / "config" / "libraryfolders.vdf",
    ):
        if not vdf_path.exists():
            continue
        text = vdf_path.read_text(errors="replace")
        # Match "path" values in Valve KV1 format
        for match in re.finditer(r'"path"\s+"([^"]+)"', text):
            lib_path = Path(match.group(1))
            if lib_path.exists() and lib_path not in paths:
                paths.append(lib_path)
    return paths


def parse_install_dir(manifest: Path) -> Path | None:
    """Read installdir from an appmanifest and return the game directory if present."""
    text = manifest.read_text(errors="replace")
    match = re.search(r'"installdir"\s+"([^"]+)"', text)
    if not match:
        return None
    game_dir = manifest.parent / "common" / match.group(1)
    return game_dir if game_dir.exists() else None


def find_game_dir(game_id: str, steam_root: Path | None = None) -> Path | None:
    """Find the game install directory by searching Steam libraries."""
    app_id = STEAM_APP_IDS.get(game_id)
    if not app_id:
        return None

    steam_root = steam_root or find_steam_root()
    if not steam_root:
        return None

    for lib_path in parse_library_folders(steam_root):
        manifest = lib_path / "steamapps" / f"appmanifest_{app_id}.acf"
        if manifest.exists():
            game_dir = parse_install_dir(manifest)
            if game_dir:
                return game_dir

    return None
