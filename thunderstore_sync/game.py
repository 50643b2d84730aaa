"""Access to the mod directories of a game installation."""

import shutil
from pathlib import Path

from .packages import strip_version

PLUGIN_SUBDIR = Path("BepInEx") / "plugins"


class ModFilesError(Exception):
    """Raised when mod directories cannot be created or removed."""

    pass


class GameInstallation:
    """A game root with one child directory per installed mod under the plugin dir."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"GameInstallation({str(self.root)!r})"

    @property
    def plugin_dir(self) -> Path:
        return self.root / PLUGIN_SUBDIR

    def mod_dir(self, name: str) -> Path:
        """Directory for a mod, named after its unversioned package name."""
        return self.plugin_dir / strip_version(name)

    def list_installed_mod_names(self) -> list[str]:
        """Names of the mod directories physically present, sorted."""
        if not self.plugin_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.plugin_dir.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )

    def find_mod_dirs(self, name: str) -> list[str]:
        """
        Physical directory names holding a mod, matched case-insensitively
        by namespace-name so ``Ns-Mod`` and ``Ns-Mod-1.0.0`` both count.

        The unversioned directory, when present, comes first.
        """
        key = strip_version(name).lower()
        found = [
            installed
            for installed in self.list_installed_mod_names()
            if strip_version(installed).lower() == key
        ]
        return sorted(found, key=lambda installed: installed.lower() != key)

    def delete_dir(self, dir_name: str) -> bool:
        """
        Delete one directory under the plugin dir, by its exact name.

        Returns False if it does not exist; raises ModFilesError if it
        could not be removed.
        """
        path = self.plugin_dir / dir_name
        if not path.is_dir():
            return False
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise ModFilesError(f"Failed to remove {path}: {e}")
        return True

    def delete_mod_dir(self, name: str) -> bool:
        """Delete every directory holding a mod, whatever version suffix it carries."""
        removed = False
        for dir_name in self.find_mod_dirs(name):
            removed = self.delete_dir(dir_name) or removed
        return removed
