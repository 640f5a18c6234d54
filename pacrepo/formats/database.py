"""Readers for pacman databases.

Covers three stores sharing the ``desc`` file format:

- repository databases: tar archives with one ``<name>-<version>/desc``
  entry per package (DATABASE origin)
- sync databases of the repositories enabled in pacman.conf, i.e. the
  mirror snapshots (DATABASE origin)
- the local database of installed packages, a directory tree with one
  ``<name>-<version>/desc`` file per package (LOCAL origin)

A ``desc`` file is a sequence of ``%KEY%`` headers, each followed by one
value per line until the next blank line.
"""

import os
import tarfile
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..common.logger import get_logger
from .archive import ArchiveError, open_archive
from .base import PackageOrigin, PackageReadError, PackageRecord

logger = get_logger("formats.database")


LOCK_SUFFIX = ".lck"

# desc sections holding a single value, and the record field they fill
_SCALAR_FIELDS = {
    "filename": "filename",
    "name": "name",
    "version": "version",
    "desc": "description",
    "base": "base",
    "url": "url",
    "packager": "packager",
    "arch": "architecture",
}

_LIST_FIELDS = {
    "license": "licenses",
    "depends": "depends",
    "optdepends": "opt_depends",
    "makedepends": "make_depends",
    "checkdepends": "check_depends",
    "replaces": "replaces",
    "provides": "provides",
    "conflicts": "conflicts",
    "groups": "groups",
}

# Sections that are read but only kept in raw_metadata
_RAW_FIELDS = {
    "isize", "md5sum", "sha256sum", "pgpsig", "backup", "xdata",
    "installdate", "size", "validation", "reason", "files",
}


def parse_desc(content: str, source: str = "desc") -> PackageRecord:
    """Parse the content of a desc file.

    Args:
        content: desc file content
        source: Name used in error messages

    Returns:
        PackageRecord with UNKNOWN origin

    Raises:
        PackageReadError: If the entry has no name or version, or a
            numeric field is malformed
    """
    scalars: Dict[str, str] = {}
    lists: Dict[str, List[str]] = {}
    raw: Dict[str, List[str]] = {}
    section: Optional[str] = None
    build_date = None
    size = None

    for line in content.splitlines():
        line = line.strip()
        if not line:
            continue
        if len(line) > 2 and line.startswith("%") and line.endswith("%"):
            section = line.strip("%").lower()
            continue
        if section is None:
            continue

        if section in _SCALAR_FIELDS:
            scalars[_SCALAR_FIELDS[section]] = line
        elif section in _LIST_FIELDS:
            lists.setdefault(_LIST_FIELDS[section], []).append(line)
        elif section == "builddate":
            build_date = _parse_timestamp(line, source)
        elif section == "csize":
            size = _parse_size(line, source)
        else:
            if section not in _RAW_FIELDS:
                logger.debug(f"{source}: unknown database field '{section}'")
            raw.setdefault(section, []).append(line)

    if "name" not in scalars or "version" not in scalars:
        raise PackageReadError(source, "database entry lacks %NAME% or %VERSION%")

    return PackageRecord(
        build_date=build_date,
        size=size,
        raw_metadata=dict(raw),
        **scalars,
        **lists,
    )


def _parse_timestamp(value: str, source: str) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as e:
        raise PackageReadError(source, f"cannot parse build time '{value}'") from e


def _parse_size(value: str, source: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise PackageReadError(source, f"cannot parse size value '{value}'") from e


def lock_path(db_path: Path) -> Path:
    """Return the path of the advisory lock marker of a database."""
    db_path = Path(db_path)
    return db_path.with_name(db_path.name + LOCK_SUFFIX)


def is_database_locked(db_path: Path) -> bool:
    """Check whether the database is currently locked for writing.

    Args:
        db_path: Path to the database

    Returns:
        True if the sibling lock marker exists
    """
    return lock_path(db_path).exists()


def read_database(db_path: Path) -> List[PackageRecord]:
    """Read all package entries from a database archive.

    Filenames of the entries are made relative to the database directory,
    so they point at where the package files are expected to be.

    Args:
        db_path: Path to the database archive

    Returns:
        List of PackageRecords with DATABASE origin

    Raises:
        PackageReadError: If the database does not exist or cannot be read
    """
    db_path = Path(db_path)
    logger.debug(f"Reading database {db_path}")
    if not db_path.exists():
        raise PackageReadError(str(db_path), "no such file")

    # Entries are grouped by directory; older databases split each entry
    # into desc and depends files.
    entries: "OrderedDict[str, List[str]]" = OrderedDict()
    try:
        with open_archive(db_path) as tar:
            for member in tar:
                if not member.isfile():
                    continue
                entry, _, leaf = member.name.rpartition("/")
                if leaf not in ("desc", "depends"):
                    continue
                f = tar.extractfile(member)
                if f is None:
                    continue
                entries.setdefault(entry, []).append(
                    f.read().decode("utf-8", errors="replace")
                )
    except (ArchiveError, tarfile.TarError, EOFError, OSError) as e:
        raise PackageReadError(str(db_path), f"cannot read database: {e}") from e

    records = []
    directory = db_path.parent
    for entry, parts in entries.items():
        record = parse_desc("\n".join(parts), f"{db_path}:{entry}")
        record.origin = PackageOrigin.DATABASE
        if record.filename:
            record.filename = str(directory / record.filename)
        records.append(record)

    logger.debug(f"Read {len(records)} entries from {db_path.name}")
    return records


def read_local_database(local_db_path: Path) -> List[PackageRecord]:
    """Read the database of locally installed packages.

    Unreadable entries are logged and skipped, so a partially broken
    store still yields every readable package.

    Args:
        local_db_path: Directory of the local package store

    Returns:
        List of PackageRecords with LOCAL origin
    """
    local_db_path = Path(local_db_path)
    records = []
    if not local_db_path.is_dir():
        logger.warning(f"Local package database not found: {local_db_path}")
        return records

    for desc in sorted(local_db_path.glob("*/desc")):
        try:
            record = parse_desc(desc.read_text(errors="replace"), str(desc))
        except (PackageReadError, OSError) as e:
            logger.warning(f"Skipping local package entry: {e}")
            continue
        record.origin = PackageOrigin.LOCAL
        record.filename = str(desc.parent)
        records.append(record)

    return records


def enabled_repositories(conf_path: Path) -> List[str]:
    """List the repositories enabled in a pacman configuration file.

    Args:
        conf_path: Path to pacman.conf

    Returns:
        Repository names in configuration order

    Raises:
        OSError: If the configuration cannot be read
    """
    repos = []
    with open(conf_path, "r") as f:
        for line in f:
            line = line.strip()
            if not (line.startswith("[") and line.endswith("]")):
                continue
            name = line[1:-1].strip()
            if name and name != "options":
                repos.append(name)
    return repos


def read_sync_databases(
    conf_path: Path,
    sync_db_format: str,
    ignore: Optional[List[str]] = None,
) -> List[PackageRecord]:
    """Read the sync databases of every enabled repository.

    Args:
        conf_path: Path to pacman.conf
        sync_db_format: Database path template with a ``{name}`` field
        ignore: Repository names to leave out, e.g. the managed repository

    Returns:
        All records of the enabled repositories

    Raises:
        OSError: If pacman.conf cannot be read
        PackageReadError: If a sync database cannot be read
    """
    ignore = set(ignore or [])
    records: List[PackageRecord] = []
    for name in enabled_repositories(conf_path):
        if name in ignore:
            continue
        db_path = Path(sync_db_format.format(name=name))
        if not db_path.exists():
            logger.warning(f"Sync database of repository {name} missing: {db_path}")
            continue
        records.extend(read_database(db_path))
    return records


def database_mtime(db_path: Path) -> Optional[datetime]:
    """Return the modification time of a database, or None if it is missing."""
    try:
        return datetime.fromtimestamp(os.stat(db_path).st_mtime, tz=timezone.utc)
    except FileNotFoundError:
        return None
