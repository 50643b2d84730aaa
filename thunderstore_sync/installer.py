"""Download, extract and cache packages into a game installation."""

import logging
import shutil
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .cache import CacheError, ModCache
from .downloader import DownloadError, Downloader
from .extractor import ExtractionError, extract_archive
from .game import GameInstallation
from .packages import PackageVersion, strip_version

# Installs issued concurrently per batch
BATCH_SIZE = 5

logger = logging.getLogger(__name__)


class InstallError(Exception):
    """Raised when a package could not be installed."""

    pass


@dataclass
class InstallRequest:
    full_name: str
    download_url: str

    @classmethod
    def for_version(cls, version: PackageVersion) -> "InstallRequest":
        return cls(full_name=version.full_name, download_url=version.download_url)


@dataclass
class InstallResult:
    full_name: str
    mod_dir: Path
    from_cache: bool = False
    cached: bool = False


@dataclass
class BatchResult:
    total: int = 0
    succeeded: list[InstallResult] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    def summary(self) -> str:
        text = f"{len(self.succeeded)}/{self.total} installed"
        if self.failed:
            text += f", failed: [{', '.join(name for name, _ in self.failed)}]"
        return text


class Installer:
    """
    Installs a package into ``<plugins>/<namespace-name>``.

    Archives are downloaded into temp_dir and always removed afterwards.
    Extraction happens in a hidden staging directory next to the final
    one, so a failed install never leaves a partial mod directory.
    """

    def __init__(self, downloader: Downloader, cache: ModCache, temp_dir: Path):
        self.downloader = downloader
        self.cache = cache
        self.temp_dir = Path(temp_dir)

    def install(
        self,
        download_url: str,
        full_name: str,
        game: GameInstallation,
        profile_id: str,
        use_cache: bool = False,
    ) -> InstallResult:
        mod_dir = game.mod_dir(full_name)

        if use_cache and self.restore_from_cache(profile_id, full_name, mod_dir):
            logger.info("Installed %s from cache", full_name)
            return InstallResult(full_name=full_name, mod_dir=mod_dir, from_cache=True)

        if not download_url:
            raise InstallError(f"No download URL for {full_name}")

        token = uuid.uuid4().hex[:8]
        archive = self.temp_dir / f"{strip_version(full_name)}-{token}.zip"
        staging = game.plugin_dir / f".installing-{strip_version(full_name)}-{token}"
        try:
            self.downloader.download(download_url, archive)
            extract_archive(archive, staging)
            if mod_dir.exists():
                shutil.rmtree(mod_dir)
            staging.rename(mod_dir)
        except (DownloadError, ExtractionError, OSError) as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise InstallError(f"Failed to install {full_name}: {e}")
        finally:
            archive.unlink(missing_ok=True)

        result = InstallResult(full_name=full_name, mod_dir=mod_dir)
        if use_cache:
            try:
                self.cache.store(profile_id, full_name, mod_dir)
                result.cached = True
            except CacheError as e:
                logger.warning("%s", e)

        logger.info("Installed %s", full_name)
        return result

    def restore_from_cache(self, profile_id: str, full_name: str, mod_dir: Path) -> bool:
        """Copy a cached payload into mod_dir; an unreadable cache counts as a miss."""
        try:
            return self.cache.copy_from(profile_id, full_name, mod_dir)
        except OSError as e:
            logger.warning("Cache unreadable for %s, downloading instead: %s", full_name, e)
            return False

    def install_batch(
        self,
        requests: list[InstallRequest],
        game: GameInstallation,
        profile_id: str,
        use_cache: bool = False,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> BatchResult:
        """
        Install requests in batches of BATCH_SIZE.

        Items of one batch run concurrently; the next batch starts only once
        every item of the current one has finished. Failures are collected,
        not raised. on_progress receives (completed, total) per batch.
        """
        result = BatchResult(total=len(requests))
        done = 0

        for start in range(0, len(requests), BATCH_SIZE):
            batch = requests[start:start + BATCH_SIZE]
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                futures = [
                    (req, pool.submit(
                        self.install, req.download_url, req.full_name, game, profile_id, use_cache
                    ))
                    for req in batch
                ]
                for req, future in futures:
                    try:
                        result.succeeded.append(future.result())
                    except InstallError as e:
                        logger.error("%s", e)
                        result.failed.append((req.full_name, str(e)))
                    except Exception as e:
                        logger.exception("Unexpected error installing %s", req.full_name)
                        result.failed.append((req.full_name, f"Failed to install {req.full_name}: {e}"))

            done += len(batch)
            if on_progress:
                on_progress(done, len(requests))

        return result
