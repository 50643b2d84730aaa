"""Archive extraction for package payloads."""

import io
import shutil
import subprocess
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import py7zr
import rarfile

ZIP_MAGIC = b"PK"
SEVEN_ZIP_MAGIC = b"7z\xbc\xaf'\x1c"
RAR_MAGIC = b"Rar!"


class ExtractionError(Exception):
    """Raised when archive extraction fails."""

    pass


def _sniff(header: bytes) -> str | None:
    if header[:2] == ZIP_MAGIC:
        return "zip"
    if header[:6] == SEVEN_ZIP_MAGIC:
        return "7z"
    if header[:4] == RAR_MAGIC:
        return "rar"
    return None


def detect_archive_type(source: Path | bytes) -> str | None:
    """
    Detect archive type by magic bytes, then fall back to extension.

    Returns: 'zip', '7z', 'rar', or None if not an archive.
    """
    if isinstance(source, bytes):
        return _sniff(source[:8])

    try:
        with open(source, "rb") as f:
            kind = _sniff(f.read(8))
        if kind:
            return kind
    except OSError:
        pass

    return {".zip": "zip", ".7z": "7z", ".rar": "rar"}.get(source.suffix.lower())


def extract_archive(source: Path | bytes, target_dir: Path, overwrite: bool = True) -> list[Path]:
    """
    Extract an archive (file path or raw bytes) into target_dir.

    With overwrite, any existing contents of target_dir are replaced.
    Returns list of extracted file paths.
    """
    archive_type = detect_archive_type(source)
    if archive_type is None:
        label = "<bytes>" if isinstance(source, bytes) else source
        raise ExtractionError(f"Unknown archive type: {label}")

    try:
        if overwrite and target_dir.exists():
            shutil.rmtree(target_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExtractionError(f"Cannot prepare {target_dir}: {e}")

    try:
        if archive_type == "zip":
            return _extract_zip(source, target_dir)
        if archive_type == "7z":
            return _extract_7z(source, target_dir)
        return _extract_rar(source, target_dir)
    except ExtractionError:
        raise
    except Exception as e:
        raise ExtractionError(f"Failed to extract into {target_dir}: {e}")


def _extract_zip(source: Path | bytes, target_dir: Path) -> list[Path]:
    """Extract a ZIP archive, skipping members that escape target_dir."""
    extracted = []
    root = target_dir.resolve()
    handle = io.BytesIO(source) if isinstance(source, bytes) else source
    with zipfile.ZipFile(handle, "r") as zf:
        for member in zf.infolist():
            # Some archives are built on Windows with backslash separators
            name = member.filename.replace("\\", "/")
            dest = (target_dir / name).resolve()
            if dest != root and root not in dest.parents:
                continue
            if name.endswith("/"):
                dest.mkdir(parents=True, exist_ok=True)
                continue
            dest.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(member) as src, open(dest, "wb") as out:
                shutil.copyfileobj(src, out)
            extracted.append(dest)
    return extracted


def _extract_7z(source: Path | bytes, target_dir: Path) -> list[Path]:
    """Extract a 7z archive. Falls back to system 7z for unsupported codecs (e.g. BCJ2)."""
    handle = io.BytesIO(source) if isinstance(source, bytes) else source
    try:
        with py7zr.SevenZipFile(handle, "r") as szf:
            szf.extractall(target_dir)
        return [p for p in target_dir.rglob("*") if p.is_file()]
    except (py7zr.UnsupportedCompressionMethodError, py7zr.Bad7zFile):
        # py7zr can't handle this codec - try system 7z
        with _as_file(source, ".7z") as archive_path:
            return _extract_7z_system(archive_path, target_dir)


def _extract_7z_system(archive_path: Path, target_dir: Path) -> list[Path]:
    """Extract a 7z archive using the system 7z command."""
    sz_bin = shutil.which("7z") or shutil.which("7zz")
    if not sz_bin:
        raise ExtractionError(
            f"py7zr cannot extract {archive_path.name} (unsupported compression). "
            "Install p7zip-full (apt install p7zip-full) for broader 7z support."
        )

    result = subprocess.run(
        [sz_bin, "x", str(archive_path), f"-o{target_dir}", "-y"],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise ExtractionError(
            f"7z extraction failed for {archive_path.name}: {result.stderr.strip()}"
        )
    return [p for p in target_dir.rglob("*") if p.is_file()]


def _extract_rar(source: Path | bytes, target_dir: Path) -> list[Path]:
    """Extract a RAR archive. rarfile needs a real file on disk."""
    with _as_file(source, ".rar") as archive_path:
        with rarfile.RarFile(archive_path, "r") as rf:
            rf.extractall(target_dir)
    return [p for p in target_dir.rglob("*") if p.is_file()]


@contextmanager
def _as_file(source: Path | bytes, suffix: str) -> Iterator[Path]:
    """Yield a path for a path-or-bytes archive source."""
    if not isinstance(source, bytes):
        yield source
        return
    fd, name = tempfile.mkstemp(suffix=suffix)
    temp_path = Path(name)
    try:
        with open(fd, "wb") as f:
            f.write(source)
        yield temp_path
    finally:
        temp_path.unlink(missing_ok=True)
