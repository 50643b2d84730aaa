"""Download transport with a single-hop redirect policy."""

import logging
from pathlib import Path
from typing import Callable
from urllib.parse import urljoin

import requests

from . import __version__

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
MAX_REDIRECTS = 1

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    """Raised when a download fails."""

    pass


class RedirectLimitExceeded(DownloadError):
    """Raised when a download redirects more than once."""

    pass


class Downloader:
    """Fetches package archives over HTTP."""

    def __init__(self, session: requests.Session | None = None, timeout: float = 120.0):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": f"thunderstore-sync/{__version__}"})
        self.timeout = timeout

    def _open(self, url: str) -> requests.Response:
        """
        GET a URL, following at most one redirect hop.

        A second redirect or any non-2xx status is terminal.
        """
        current = url
        for hop in range(MAX_REDIRECTS + 1):
            try:
                response = self.session.get(
                    current, stream=True, allow_redirects=False, timeout=self.timeout
                )
            except requests.RequestException as e:
                raise DownloadError(f"Failed to download {url}: {e}")

            if response.status_code in REDIRECT_STATUSES:
                location = response.headers.get("Location")
                response.close()
                if not location:
                    raise DownloadError(f"Redirect without location from {current}")
                if hop == MAX_REDIRECTS:
                    raise RedirectLimitExceeded(f"Too many redirects downloading {url}")
                current = urljoin(current, location)
                logger.debug("Following redirect %s -> %s", url, current)
                continue

            if not 200 <= response.status_code < 300:
                response.close()
                raise DownloadError(f"HTTP {response.status_code} downloading {current}")
            return response

        raise RedirectLimitExceeded(f"Too many redirects downloading {url}")

    def download(
        self,
        url: str,
        dest_path: Path,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> Path:
        """
        Download a file to dest_path.

        Args:
            on_progress: Optional callback(bytes_downloaded, total_bytes).

        Returns dest_path.
        """
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = dest_path.parent / f".downloading_{dest_path.name}"

        response = self._open(url)
        try:
            total_size = int(response.headers.get("content-length", 0))
            bytes_downloaded = 0
            with open(temp_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)
                        bytes_downloaded += len(chunk)
                        if on_progress:
                            on_progress(bytes_downloaded, total_size)
            temp_path.replace(dest_path)
            return dest_path

        except (OSError, requests.RequestException) as e:
            # Clean up temp file on error
            if temp_path.exists():
                temp_path.unlink()
            raise DownloadError(f"Failed to download {url}: {e}")
        finally:
            response.close()

