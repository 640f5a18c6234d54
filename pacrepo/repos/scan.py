"""Scanning of repository directories for package files.

Scanning is a lazy sequence of ScanResult items, one per candidate file,
each carrying either a record or the error raised while reading it. What
happens to errors is decided by folding the sequence with an ErrorPolicy,
which keeps the scanner itself free of recovery logic.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from ..common.logger import get_logger
from ..formats.base import PackageOrigin, PackageReadError, PackageRecord
from ..formats.pacman import PacmanPackageFormat

logger = get_logger("repos.scan")


class ErrorPolicy(Enum):
    """What to do with a file that cannot be read."""

    COLLECT = "collect"  # keep going, return errors with the records
    LOG = "log"  # keep going, log errors as warnings
    ABORT = "abort"  # raise the first error


@dataclass
class ScanResult:
    """Outcome of reading one package file."""

    path: Path
    record: Optional[PackageRecord] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ScanReport:
    """Records read from a directory plus the errors that were collected."""

    records: List[PackageRecord] = field(default_factory=list)
    errors: List[ScanResult] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


def list_package_files(directory: Path) -> List[Path]:
    """List the package files of a directory, sorted by name.

    Args:
        directory: Directory to list; subdirectories are not descended into

    Returns:
        Paths of files with a package extension
    """
    handler = PacmanPackageFormat()
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and handler.has_format(p.name)
    )


def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(os.stat(path).st_mtime, tz=timezone.utc)


class DirectoryScanner:
    """Reads the package files of a repository directory.

    When the repository database is newer than a package file and lists
    its filename, the database entry stands in for the file so the
    archive does not have to be opened.
    """

    def __init__(
        self,
        database: Optional[Iterable[PackageRecord]] = None,
        database_mtime: Optional[datetime] = None,
        workers: int = 1,
    ):
        """Initialize the scanner.

        Args:
            database: Records of the repository database
            database_mtime: Modification time of the repository database
            workers: Number of threads reading archives; 1 reads serially
        """
        self.handler = PacmanPackageFormat()
        self.database_mtime = database_mtime
        self.workers = max(1, workers)
        self._indexed: Dict[str, PackageRecord] = {}
        for record in database or []:
            if record.basename:
                self._indexed[record.basename] = record

    def read(self, path: Path) -> ScanResult:
        """Read a single package file into a ScanResult."""
        try:
            reused = self._reuse(path)
            if reused is not None:
                return ScanResult(path=path, record=reused)
            return ScanResult(path=path, record=self.handler.parse_metadata(path))
        except (PackageReadError, OSError) as e:
            return ScanResult(path=path, error=e)

    def _reuse(self, path: Path) -> Optional[PackageRecord]:
        if self.database_mtime is None:
            return None
        indexed = self._indexed.get(path.name)
        if indexed is None or _mtime(path) >= self.database_mtime:
            return None
        logger.debug(f"Reusing database entry for {path.name}")
        return replace(indexed, origin=PackageOrigin.FILE, filename=str(path))

    def scan(self, paths: Iterable[Path]) -> Iterator[ScanResult]:
        """Read the given files lazily.

        Results come out in the order of the input, also when several
        workers are used.

        Args:
            paths: Package files to read

        Yields:
            One ScanResult per path
        """
        if self.workers == 1:
            for path in paths:
                yield self.read(path)
            return

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            yield from executor.map(self.read, paths)

    def scan_directory(self, directory: Path) -> Iterator[ScanResult]:
        """Read every package file of a directory lazily."""
        return self.scan(list_package_files(directory))


def scan_directory(
    directory: Path,
    database: Optional[Iterable[PackageRecord]] = None,
    database_mtime: Optional[datetime] = None,
    workers: int = 1,
) -> Iterator[ScanResult]:
    """Read every package file of a directory lazily.

    Args:
        directory: Directory to scan
        database: Records of the repository database, for reuse
        database_mtime: Modification time of the repository database
        workers: Number of threads reading archives

    Returns:
        Iterator of one ScanResult per package file, ordered by filename
    """
    scanner = DirectoryScanner(database, database_mtime, workers)
    return scanner.scan_directory(directory)


def collect(
    results: Iterable[ScanResult],
    policy: ErrorPolicy = ErrorPolicy.COLLECT,
) -> ScanReport:
    """Fold scan results into a report according to an error policy.

    Args:
        results: Scan results, typically from scan_directory
        policy: What to do with failed results

    Returns:
        ScanReport with the records and, for COLLECT, the failed results

    Raises:
        Exception: The first scan error, when policy is ABORT
    """
    report = ScanReport()
    for result in results:
        if result.ok:
            report.records.append(result.record)
            continue

        if policy == ErrorPolicy.ABORT:
            raise result.error
        if policy == ErrorPolicy.LOG:
            logger.warning(f"Skipping unreadable package file: {result.error}")
        else:
            report.errors.append(result)

    return report
