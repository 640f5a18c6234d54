"""Pacman package format handler.

Implements metadata parsing for pacman binary packages, which are tar
archives named ``<name>-<version>-<release>-<arch>.pkg.tar[.<compression>]``
carrying their metadata in a ``.PKGINFO`` member.
"""

import tarfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..common.logger import get_logger
from .archive import ArchiveError, detect_compression, open_archive
from .base import PackageFormat, PackageOrigin, PackageReadError, PackageRecord

logger = get_logger("formats.pacman")


PACKAGE_EXTENSIONS = [
    ".pkg.tar",
    ".pkg.tar.xz",
    ".pkg.tar.gz",
    ".pkg.tar.bz2",
    ".pkg.tar.zst",
]

DATABASE_EXTENSIONS = [
    ".db.tar",
    ".db.tar.xz",
    ".db.tar.gz",
    ".db.tar.bz2",
    ".db.tar.zst",
]

SIGNATURE_EXTENSION = ".sig"

# .PKGINFO keys that may occur several times, and the record field they fill
_LIST_FIELDS = {
    "depend": "depends",
    "optdepend": "opt_depends",
    "makedepend": "make_depends",
    "checkdepend": "check_depends",
    "replaces": "replaces",
    "provides": "provides",
    "conflict": "conflicts",
    "group": "groups",
    "license": "licenses",
}

# .PKGINFO keys carried in raw_metadata only
_RAW_LIST_FIELDS = {"backup", "makepkgopt", "xdata"}


def has_package_format(filename: str) -> bool:
    """Check whether a filename looks like a package archive."""
    return any(filename.endswith(ext) for ext in PACKAGE_EXTENSIONS)


def has_database_format(filename: str) -> bool:
    """Check whether a filename looks like a repository database.

    Symlinks such as ``repo.db`` pointing at ``repo.db.tar.zst`` are
    accepted as well.
    """
    return filename.endswith(".db") or any(
        filename.endswith(ext) for ext in DATABASE_EXTENSIONS
    )


def signature_path(path: Path) -> Path:
    """Return the detached signature companion of a package file."""
    return path.with_name(path.name + SIGNATURE_EXTENSION)


class PacmanPackageFormat(PackageFormat):
    """Handler for pacman package archives (.pkg.tar.* files).

    Package archives contain:
    - .PKGINFO: Package metadata as ``key = value`` lines
    - .BUILDINFO, .MTREE: Build and file metadata (ignored)
    - .INSTALL: Optional install script (ignored)
    - Package files
    """

    @property
    def format_name(self) -> str:
        """Return format identifier."""
        return "pacman"

    @property
    def file_extensions(self) -> List[str]:
        """Return supported file extensions."""
        return PACKAGE_EXTENSIONS

    def detect(self, path: Path) -> bool:
        """Detect if file is a pacman package.

        The name must carry a package extension and the content must be
        a recognizable archive.

        Args:
            path: Path to the file

        Returns:
            True if file is a pacman package
        """
        if not path.is_file() or not self.has_format(path.name):
            return False
        return detect_compression(path) is not None

    def parse_filename(self, filename: str) -> Tuple[str, str]:
        """Parse package name and version from filename.

        Format: name-version-release-arch.pkg.tar[.ext]

        Args:
            filename: Package filename

        Returns:
            Tuple of (name, version-release)
        """
        stem, _ = super().parse_filename(filename)
        parts = stem.rsplit("-", 3)
        if len(parts) == 4:
            name, version, release, _ = parts
            return name, f"{version}-{release}"
        return stem, "unknown"

    def parse_filename_arch(self, filename: str) -> Optional[str]:
        """Parse the architecture from a package filename."""
        stem, _ = super().parse_filename(filename)
        parts = stem.rsplit("-", 3)
        return parts[3] if len(parts) == 4 else None

    def parse_metadata(self, path: Path) -> PackageRecord:
        """Parse package metadata from .PKGINFO.

        Args:
            path: Path to the package archive

        Returns:
            PackageRecord with FILE origin

        Raises:
            PackageReadError: If the archive or its .PKGINFO cannot be read
        """
        try:
            with open_archive(path) as tar:
                content = self._read_pkginfo(tar)
        except (ArchiveError, tarfile.TarError, EOFError, OSError) as e:
            raise PackageReadError(str(path), f"cannot read archive: {e}") from e

        if content is None:
            raise PackageReadError(str(path), "no .PKGINFO in archive")

        record = parse_pkginfo(content, str(path))
        record.origin = PackageOrigin.FILE
        if not record.architecture:
            record.architecture = self.parse_filename_arch(path.name)
        record.filename = str(path)
        return record

    def _read_pkginfo(self, tar: tarfile.TarFile) -> Optional[str]:
        for member in tar:
            if member.name in (".PKGINFO", "./.PKGINFO"):
                f = tar.extractfile(member)
                if f:
                    return f.read().decode("utf-8", errors="replace")
        return None


def parse_pkginfo(content: str, source: str = ".PKGINFO") -> PackageRecord:
    """Parse .PKGINFO file content.

    Args:
        content: .PKGINFO file content
        source: Name used in error messages

    Returns:
        PackageRecord with UNKNOWN origin

    Raises:
        PackageReadError: If a numeric field or the epoch is malformed
    """
    info: Dict[str, str] = {}
    lists: Dict[str, List[str]] = {}
    raw: Dict[str, object] = {}

    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if " = " not in line:
            continue

        key, value = line.split(" = ", 1)
        key = key.strip()
        value = value.strip()

        if key in _LIST_FIELDS:
            lists.setdefault(_LIST_FIELDS[key], []).append(value)
        elif key in _RAW_LIST_FIELDS:
            raw.setdefault(key, []).append(value)
        elif key in ("pkgname", "pkgver", "pkgdesc", "pkgbase", "url",
                     "packager", "arch", "epoch", "builddate", "size"):
            info[key] = value
        else:
            logger.debug(f"{source}: ignoring unknown .PKGINFO field '{key}'")
            raw[key] = value

    if "pkgname" not in info or "pkgver" not in info:
        raise PackageReadError(source, "pkgname or pkgver missing in .PKGINFO")

    version = _merge_epoch(info["pkgver"], info.get("epoch"), source)

    return PackageRecord(
        name=info["pkgname"],
        version=version,
        base=info.get("pkgbase"),
        description=info.get("pkgdesc"),
        url=info.get("url"),
        architecture=info.get("arch"),
        packager=info.get("packager"),
        build_date=_parse_timestamp(info.get("builddate"), source),
        size=_parse_int(info.get("size"), "size", source),
        raw_metadata=raw,
        **lists,
    )


def _merge_epoch(version: str, epoch: Optional[str], source: str) -> str:
    """Fold a separate epoch field into the version string.

    If the version already carries an epoch the larger one is kept.
    """
    if not epoch:
        return version
    e = _parse_int(epoch, "epoch", source)
    if not e:
        return version
    if ":" in version:
        prefix, rest = version.split(":", 1)
        e = max(e, _parse_int(prefix, "epoch", source))
        version = rest
    return f"{e}:{version}"


def _parse_int(value: Optional[str], field: str, source: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise PackageReadError(source, f"cannot parse {field} value '{value}'") from e


def _parse_timestamp(value: Optional[str], source: str) -> Optional[datetime]:
    seconds = _parse_int(value, "build time", source)
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as e:
        raise PackageReadError(source, f"build time {seconds} is out of range") from e
