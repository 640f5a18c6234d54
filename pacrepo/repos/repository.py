"""Management of a local pacman repository.

A repository is a directory of package files plus the database that
indexes them. Repository reads both, reconciles them per package name
and applies the resulting changes: new files are indexed, vanished
packages are purged from the database and obsolete files are dispatched,
that is deleted or moved to a backup directory.
"""

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..common.config import PacmanConfig, ProfileConfig
from ..common.logger import get_logger
from ..formats.base import PackageRecord
from ..formats.database import (
    database_mtime,
    is_database_locked,
    lock_path,
    read_database,
    read_local_database,
    read_sync_databases,
)
from ..formats.pacman import PacmanPackageFormat, signature_path
from ..graph.resolver import Resolution, ResolveOptions, Resolver
from .base import DatabaseLockedError, IndexManagerProtocol
from .meta import MetaPackage, ReconcilePlan, attach_registry, plan, reconcile
from .repoadd import RepoAddManager
from .scan import DirectoryScanner, ErrorPolicy, ScanReport, collect

logger = get_logger("repos.repository")


ADD_MODES = {"copy": "Copying", "move": "Moving", "link": "Linking"}


@dataclass
class Upgrade:
    """A package with a newer version in the registry."""

    old: PackageRecord
    new: PackageRecord

    @property
    def name(self) -> str:
        return self.old.name

    def __str__(self) -> str:
        return f"{self.name}: {self.old.version} -> {self.new.version}"


@dataclass
class UpgradeReport:
    """Upgrades found in the registry, plus the names it does not know."""

    upgrades: List[Upgrade] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


@dataclass
class DownloadReport:
    """Snapshots downloaded from the registry."""

    paths: List[Path] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


class Repository:
    """A directory of package files and its database."""

    def __init__(
        self,
        directory: str,
        database: str,
        index: Optional[IndexManagerProtocol] = None,
        registry=None,
        backup: bool = False,
        backup_dir: str = "backup",
        require_signature: bool = False,
        ignore_registry: Optional[List[str]] = None,
        error_policy: ErrorPolicy = ErrorPolicy.LOG,
        workers: int = 1,
    ):
        """Initialize the repository.

        Args:
            directory: Absolute path of the repository directory
            database: Database filename within the directory
            index: Database manager; repo-add is used if None
            registry: RegistryClient for registry operations
            backup: Move obsolete files to backup_dir instead of deleting
            backup_dir: Backup directory, relative to directory unless absolute
            require_signature: Refuse package files without a .sig companion
            ignore_registry: Names left out of upgrade checks by default
            error_policy: What to do with unreadable package files
            workers: Threads used for reading package files
        """
        if not os.path.isabs(directory):
            raise ValueError(f"repository directory must be absolute: {directory}")
        self.directory = Path(directory)
        self.database = database
        self.index = index or RepoAddManager(str(self.directory / database))
        self.registry = registry
        self.backup = backup
        self.backup_dir = backup_dir
        self.require_signature = require_signature
        self.ignore_registry = list(ignore_registry or [])
        self.error_policy = error_policy
        self.workers = workers
        self.handler = PacmanPackageFormat()
        self.last_scan: Optional[ScanReport] = None

    @classmethod
    def from_profile(cls, profile: ProfileConfig, registry=None, **kwargs) -> "Repository":
        """Create a repository from a configuration profile."""
        index = RepoAddManager(
            profile.repo,
            add_params=profile.add_params,
            rm_params=profile.rm_params,
        )
        return cls(
            profile.directory,
            profile.database,
            index=index,
            registry=registry,
            backup=profile.backup,
            backup_dir=profile.backup_dir,
            require_signature=profile.require_signature,
            ignore_registry=profile.ignore_registry,
            **kwargs,
        )

    @property
    def name(self) -> str:
        """Repository name: the database filename up to the first period."""
        return self.database.split(".", 1)[0]

    @property
    def database_path(self) -> Path:
        return self.directory / self.database

    @property
    def backup_path(self) -> Path:
        """Absolute backup directory."""
        if os.path.isabs(self.backup_dir):
            return Path(os.path.normpath(self.backup_dir))
        return Path(os.path.normpath(self.directory / self.backup_dir))

    def is_obsolete_cached(self) -> bool:
        """Check whether obsolete files stay where they are.

        This is the case when backing up into the repository directory.
        """
        return self.backup and self.backup_path == Path(os.path.normpath(self.directory))

    def _require_registry(self):
        if self.registry is None:
            raise RuntimeError("no registry configured")
        return self.registry

    def _assert_unlocked(self) -> None:
        if is_database_locked(self.database_path):
            raise DatabaseLockedError(lock_path(self.database_path))

    def read_database(self) -> List[PackageRecord]:
        """Read the repository database; empty if it does not exist yet.

        Raises:
            PackageReadError: If the database exists but cannot be read
        """
        if not self.database_path.exists():
            return []
        return read_database(self.database_path)

    def scan(
        self,
        database: Optional[List[PackageRecord]] = None,
        policy: Optional[ErrorPolicy] = None,
    ) -> ScanReport:
        """Read the package files of the repository directory.

        Args:
            database: Database records, reused for files older than the database
            policy: Error policy; defaults to the repository's

        Returns:
            ScanReport
        """
        scanner = DirectoryScanner(
            database=database,
            database_mtime=database_mtime(self.database_path) if database else None,
            workers=self.workers,
        )
        report = collect(scanner.scan_directory(self.directory), policy or self.error_policy)
        self.last_scan = report
        return report

    def read_meta(
        self,
        names: Optional[Iterable[str]] = None,
        policy: Optional[ErrorPolicy] = None,
    ) -> List[MetaPackage]:
        """Reconcile package files and database entries.

        Args:
            names: Restrict to these names; all packages if None
            policy: Error policy for unreadable package files

        Returns:
            MetaPackages sorted by name
        """
        database = self.read_database()
        report = self.scan(database, policy)
        return reconcile(report.records, database, names)

    def status(self, fetch_registry: bool = False) -> Tuple[List[MetaPackage], List[str]]:
        """Return the state of every package.

        Args:
            fetch_registry: Also look the packages up in the registry

        Returns:
            Tuple of (MetaPackages, names missing from the registry)
        """
        metas = self.read_meta()
        missing: List[str] = []
        if fetch_registry:
            missing = attach_registry(metas, self._require_registry())
        return metas, missing

    def _signed(self, filename: str) -> bool:
        if not self.require_signature:
            return True
        if signature_path(Path(filename)).exists():
            return True
        logger.warning(f"Skipping {filename}: signature required but none found")
        return False

    def update(self, names: Optional[Iterable[str]] = None) -> ReconcilePlan:
        """Bring the database in line with the package files.

        Missing packages are purged from the database, the newest files
        are indexed and obsolete files are dispatched. With explicit
        names, the newest file of each is indexed even when the database
        is up to date.

        Args:
            names: Restrict to these names; the whole repository if None

        Returns:
            The ReconcilePlan that was applied

        Raises:
            DatabaseLockedError: If the database is locked
        """
        self._assert_unlocked()
        names = list(names) if names else None
        metas = self.read_meta(names)
        result = plan(metas, force=bool(names))
        result.to_index = [f for f in result.to_index if self._signed(f)]

        self.index.remove(result.to_purge)
        self.index.add(result.to_index)
        self.dispatch([r.filename for r in result.obsolete])
        return result

    def create(self) -> bool:
        """Create the repository directory and an empty database.

        Returns:
            False if the database already existed
        """
        if self.database_path.exists():
            logger.debug(f"Database already exists: {self.database_path}")
            return False
        self._assert_unlocked()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.index.create()
        return True

    def reset(self) -> ReconcilePlan:
        """Delete the database and rebuild it from the package files.

        An empty database is created when there are no package files.
        """
        self._assert_unlocked()
        self.index.delete()
        result = self.update()
        self.index.create()
        return result

    def dispatch(self, files: Iterable[str]) -> List[str]:
        """Delete obsolete package files or move them to the backup directory.

        Signature files follow their package.

        Args:
            files: Paths of package files

        Returns:
            Paths that were deleted or moved
        """
        files = [f for f in files if f]
        if not files:
            return []
        if self.backup:
            if self.is_obsolete_cached():
                for f in files:
                    logger.debug(f"Cached: {f}")
                return []
            return self._backup(files)
        return self._unlink(files)

    def _companions(self, filename: str) -> List[Path]:
        path = Path(filename)
        paths = [path]
        sig = signature_path(path)
        if sig.exists():
            paths.append(sig)
        return paths

    def _backup(self, files: List[str]) -> List[str]:
        self.backup_path.mkdir(parents=True, exist_ok=True)
        moved = []
        for f in files:
            for path in self._companions(f):
                logger.info(f"Backing up: {path.name}")
                shutil.move(str(path), str(self.backup_path / path.name))
                moved.append(str(path))
        return moved

    def _unlink(self, files: List[str]) -> List[str]:
        deleted = []
        for f in files:
            for path in self._companions(f):
                logger.info(f"Deleting: {path.name}")
                path.unlink()
                deleted.append(str(path))
        return deleted

    def _transfer(self, src: Path, dst: Path, mode: str) -> None:
        if src.resolve() == dst.resolve():
            return
        if mode == "move":
            shutil.move(str(src), str(dst))
        elif mode == "link":
            if dst.exists():
                dst.unlink()
            try:
                os.link(src, dst)
            except OSError:
                shutil.copy2(src, dst)
        else:
            shutil.copy2(src, dst)

    def add(self, files: Iterable[str], mode: str = "copy") -> List[str]:
        """Bring package files into the repository and index them.

        Older files of the added packages are dispatched afterwards.

        Args:
            files: Paths of package files anywhere on the filesystem
            mode: One of 'copy', 'move' or 'link'; links fall back to copies

        Returns:
            Paths of the added files within the repository

        Raises:
            ValueError: If mode is unknown
            DatabaseLockedError: If the database is locked
        """
        if mode not in ADD_MODES:
            raise ValueError(f"unknown add mode: {mode}")
        self._assert_unlocked()
        self.directory.mkdir(parents=True, exist_ok=True)

        added = []
        names = set()
        for f in files:
            src = Path(f)
            if not src.is_file():
                logger.warning(f"Skipping {f}: no such file")
                continue
            if not self.handler.has_format(src.name):
                logger.warning(f"Skipping {f}: not a package file")
                continue
            if not self._signed(str(src)):
                continue

            for path in self._companions(str(src)):
                logger.info(f"{ADD_MODES[mode]} to repository: {path.name}")
                self._transfer(path, self.directory / path.name, mode)
            added.append(str(self.directory / src.name))
            names.add(self.handler.parse_filename(src.name)[0])

        self.index.add(added)
        if added:
            result = plan(self.read_meta(names))
            self.dispatch([r.filename for r in result.obsolete])
        return added

    def remove(self, names: Iterable[str]) -> List[MetaPackage]:
        """Remove packages from the database and dispatch all their files.

        Args:
            names: Package names

        Returns:
            MetaPackages of the removed packages

        Raises:
            DatabaseLockedError: If the database is locked
        """
        self._assert_unlocked()
        names = list(names)
        if not names:
            return []
        metas = self.read_meta(names)
        self.index.remove([m.name for m in metas if m.database is not None])
        self.dispatch([r.filename for m in metas for r in m.files])
        return metas

    def find_upgrades(self, names: Optional[Iterable[str]] = None) -> UpgradeReport:
        """Find packages with newer versions in the registry.

        Packages in ignore_registry are left out unless named explicitly.

        Args:
            names: Restrict to these names; all packages if None

        Returns:
            UpgradeReport with upgrades sorted by name

        Raises:
            RegistryError: If the registry cannot be reached
        """
        names = list(names) if names else None
        metas = self.read_meta(names)
        if names is None:
            ignored = set(self.ignore_registry)
            metas = [m for m in metas if m.name not in ignored]

        missing = attach_registry(metas, self._require_registry())
        upgrades = [
            Upgrade(old=m.current, new=m.registry)
            for m in metas
            if m.has_upstream_upgrade()
        ]
        return UpgradeReport(upgrades=upgrades, missing=missing)

    def dependency_graph(
        self,
        names: Iterable[str],
        pacman: Optional[PacmanConfig] = None,
        options: Optional[ResolveOptions] = None,
        cancel=None,
    ) -> Resolution:
        """Resolve registry packages and their dependencies.

        Installed packages and packages of the enabled sync databases are
        read according to the pacman configuration.

        Args:
            names: Requested package names
            pacman: Locations of the package manager's state
            options: Resolution options; skips installed packages and
                truncates at mirrors by default
            cancel: threading.Event cancelling the resolution

        Returns:
            Resolution
        """
        pacman = pacman or PacmanConfig()
        if options is None:
            options = ResolveOptions(skip_installed=True, truncate=True)

        local = read_local_database(Path(pacman.local_db_path)) if options.skip_installed else []
        sync = read_sync_databases(
            Path(pacman.conf_path), pacman.sync_db_format, pacman.ignore_repos
        )
        resolver = Resolver(self._require_registry(), local=local, sync=sync)
        return resolver.resolve(names, options, cancel=cancel)

    def download(
        self,
        names: Iterable[str],
        dest_dir: Path,
        extract: bool = True,
        clobber: bool = False,
    ) -> DownloadReport:
        """Download the build recipe snapshots of registry packages.

        Packages sharing a base are downloaded once.

        Args:
            names: Package names
            dest_dir: Output directory
            extract: Unpack the snapshots
            clobber: Overwrite existing output

        Returns:
            DownloadReport

        Raises:
            RegistryError: If the registry cannot be reached
            FileExistsError: If output exists and clobber is False
        """
        registry = self._require_registry()
        result = registry.query(list(names))

        bases: Dict[str, PackageRecord] = {}
        for record in result.packages.values():
            bases.setdefault(record.base or record.name, record)

        report = DownloadReport(missing=list(result.missing))
        for base in sorted(bases):
            path = registry.download_snapshot(
                bases[base], dest_dir, extract=extract, clobber=clobber
            )
            report.paths.append(path)
        return report


def write_build_order(resolution: Resolution, path: Path) -> None:
    """Write the registry packages of a resolution, dependencies first.

    Args:
        resolution: Resolution from Repository.dependency_graph
        path: Output file; one package name per line
    """
    with open(path, "w") as f:
        for name in resolution.remote_order:
            f.write(f"{name}\n")
    logger.debug(f"Wrote build order of {len(resolution.remote_order)} package(s) to {path}")
