"""Opening of compressed tar archives.

Package archives and repository databases are tar archives compressed
with gzip, xz, bzip2 or zstd, or not compressed at all. The compression
is detected from magic bytes rather than the file extension. The stdlib
tarfile module reads everything except zstd, which is decompressed by
the ``zstd`` command line tool.
"""

import io
import subprocess
import tarfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

from ..common.logger import get_logger

logger = get_logger("formats.archive")


# Magic byte signatures of the supported compressions
MAGIC_SIGNATURES: Dict[str, bytes] = {
    "gzip": b"\x1f\x8b",
    "xz": b"\xfd7zXZ",
    "bz2": b"BZh",
    "zstd": b"\x28\xb5\x2f\xfd",
}

# tarfile open modes per compression
_TAR_MODES = {
    "gzip": "r:gz",
    "xz": "r:xz",
    "bz2": "r:bz2",
    "tar": "r:",
}


class ArchiveError(RuntimeError):
    """Raised when an archive cannot be opened or decompressed."""


def read_magic_bytes(path: Path, num_bytes: int = 8) -> bytes:
    """Read magic bytes from file.

    Args:
        path: Path to file
        num_bytes: Number of bytes to read

    Returns:
        First num_bytes bytes of the file, empty if unreadable
    """
    try:
        with open(path, "rb") as f:
            return f.read(num_bytes)
    except OSError:
        return b""


def detect_compression(path: Path) -> Optional[str]:
    """Detect the compression of an archive.

    Args:
        path: Path to the archive

    Returns:
        One of 'gzip', 'xz', 'bz2', 'zstd', 'tar', or None if the file is
        neither compressed nor a tar archive
    """
    magic = read_magic_bytes(path)
    for name, signature in MAGIC_SIGNATURES.items():
        if magic.startswith(signature):
            return name
    if check_tar_magic(path):
        return "tar"
    return None


def check_tar_magic(path: Path) -> bool:
    """Check if file is an uncompressed tar archive.

    Tar magic is at offset 257, not at start.
    """
    try:
        with open(path, "rb") as f:
            f.seek(257)
            return f.read(5) == b"ustar"
    except OSError:
        return False


def _decompress_zstd(path: Path) -> bytes:
    try:
        result = subprocess.run(
            ["zstd", "-dc", str(path)],
            capture_output=True,
            check=True,
            timeout=120,
        )
    except FileNotFoundError as e:
        raise ArchiveError(f"{path}: zstd is required to read this archive") from e
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode(errors="replace") if e.stderr else str(e)
        raise ArchiveError(f"{path}: zstd failed: {stderr.strip()}") from e
    except subprocess.TimeoutExpired as e:
        raise ArchiveError(f"{path}: zstd decompression timed out") from e
    return result.stdout


@contextmanager
def open_archive(path: Path) -> Iterator[tarfile.TarFile]:
    """Open a possibly compressed tar archive for reading.

    Args:
        path: Path to the archive

    Yields:
        An open tarfile.TarFile

    Raises:
        ArchiveError: If the compression is unknown or the archive is corrupt
    """
    path = Path(path)
    compression = detect_compression(path)
    if compression is None:
        raise ArchiveError(f"{path}: unrecognized archive format")

    logger.debug(f"Opening {path.name} ({compression})")
    try:
        if compression == "zstd":
            tar = tarfile.open(fileobj=io.BytesIO(_decompress_zstd(path)), mode="r:")
        else:
            tar = tarfile.open(path, _TAR_MODES[compression])
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ArchiveError(f"{path}: {e}") from e

    with tar:
        yield tar
