"""Reconciliation of package files, database entries and the registry.

A package name can be observed in three places: as one or more package
files in the repository directory, as an entry in the repository
database, and in the remote registry. MetaPackage binds these together
per name; the package files take priority. The derived predicates drive
which files get indexed, which names get purged from the database and
which files are obsolete.

MetaPackages are computed fresh for every invocation and never cached.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..common.logger import get_logger
from ..formats import vercmp
from ..formats.base import PackageRecord

logger = get_logger("repos.meta")


def _file_order(record: PackageRecord):
    return vercmp.version_key()(record.version), record.filename or ""


@dataclass
class MetaPackage:
    """State of a single package name across files, database and registry.

    Files are sorted strictly descending by version, ties broken by
    filename, so that files[0] is the current candidate and the rest are
    obsolete. A MetaPackage always has files or a database entry.
    """

    name: str
    files: List[PackageRecord] = field(default_factory=list)
    database: Optional[PackageRecord] = None
    registry: Optional[PackageRecord] = None

    def __post_init__(self):
        if not self.files and self.database is None:
            raise ValueError(f"{self.name}: package has neither files nor database entry")
        self.files = sorted(self.files, key=_file_order, reverse=True)

    @property
    def newest(self) -> Optional[PackageRecord]:
        """Newest package file, or None if there are no files."""
        return self.files[0] if self.files else None

    @property
    def current(self) -> PackageRecord:
        """Newest package file, falling back to the database entry."""
        return self.newest or self.database

    @property
    def version(self) -> str:
        """Version of the current package."""
        return self.current.version

    @property
    def version_registered(self) -> str:
        """Version registered in the database, empty if unregistered."""
        return self.database.version if self.database else ""

    @property
    def obsolete(self) -> List[PackageRecord]:
        """Package files superseded by the newest one."""
        return self.files[1:]

    def has_files(self) -> bool:
        return len(self.files) > 0

    def has_obsolete(self) -> bool:
        return len(self.files) > 1

    def is_registered(self) -> bool:
        """Check if the database entry is exactly the newest package file."""
        if self.database is None or self.newest is None:
            return False
        return self.database.identity == self.newest.identity

    def has_pending_update(self) -> bool:
        """Check if the newest package file still needs to be indexed."""
        if self.newest is None:
            return False
        return self.database is None or self.database.older_than(self.newest)

    def has_pending_removal(self) -> bool:
        """Check if the database entry has no package file left."""
        return self.database is not None and not self.files

    def has_upstream_upgrade(self) -> bool:
        """Check if the registry has a newer version than the current one."""
        if self.registry is None:
            return False
        return self.registry.newer_than(self.current)

    def has_pending(self) -> bool:
        """Check for any pending change to the files or the database.

        This does not consider the registry.
        """
        if self.database is None or len(self.files) != 1:
            return True
        if self.newest.basename != self.database.basename:
            return True
        return vercmp.compare(self.newest.version, self.database.version) != 0

    def is_synced(self) -> bool:
        """Check that nothing is pending and no upgrade is available."""
        return not self.has_pending() and not self.has_upstream_upgrade()


def reconcile(
    files: Iterable[PackageRecord],
    database: Iterable[PackageRecord],
    names: Optional[Iterable[str]] = None,
) -> List[MetaPackage]:
    """Group file and database records into MetaPackages.

    Args:
        files: Records of the package files in the repository directory
        database: Records of the repository database
        names: Restrict the result to these names, if given

    Returns:
        MetaPackages sorted by name
    """
    wanted = set(names) if names else None
    grouped: Dict[str, List[PackageRecord]] = {}
    indexed: Dict[str, PackageRecord] = {}

    for record in files:
        if wanted is None or record.name in wanted:
            grouped.setdefault(record.name, []).append(record)

    for record in database:
        if wanted is not None and record.name not in wanted:
            continue
        if record.name in indexed:
            logger.warning(f"Duplicate database entry for {record.name}, keeping the first")
            continue
        indexed[record.name] = record

    metas = []
    for name in sorted(set(grouped) | set(indexed)):
        metas.append(
            MetaPackage(name=name, files=grouped.get(name, []), database=indexed.get(name))
        )
    return metas


@dataclass
class ReconcilePlan:
    """Pending actions derived from a set of MetaPackages.

    to_index holds the files to add to the database, to_purge the names
    to remove from it and obsolete the superseded files to dispatch.
    """

    to_index: List[str] = field(default_factory=list)
    to_purge: List[str] = field(default_factory=list)
    obsolete: List[PackageRecord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_index or self.to_purge or self.obsolete)


def plan(metas: Iterable[MetaPackage], force: bool = False) -> ReconcilePlan:
    """Compute the pending actions for a set of MetaPackages.

    Args:
        metas: MetaPackages from reconcile
        force: Index the newest file of every package, also when the
            database is up to date, e.g. when names were given explicitly

    Returns:
        ReconcilePlan
    """
    result = ReconcilePlan()
    for meta in metas:
        if not meta.has_files():
            result.to_purge.append(meta.name)
            continue
        result.obsolete.extend(meta.obsolete)
        if force or meta.has_pending_update():
            result.to_index.append(meta.newest.filename)
    return result


def attach_registry(metas: Iterable[MetaPackage], registry) -> List[str]:
    """Query the registry for all MetaPackages and attach what it knows.

    Names the registry does not know are a normal outcome, not an error.

    Args:
        metas: MetaPackages to look up
        registry: Object with a ``query(names)`` method returning a
            RegistryResult, such as RegistryClient

    Returns:
        Sorted names the registry does not know

    Raises:
        RegistryError: If the registry cannot be reached
    """
    metas = list(metas)
    if not metas:
        return []

    result = registry.query([m.name for m in metas])
    for meta in metas:
        meta.registry = result.packages.get(meta.name)

    if result.missing:
        logger.info(f"{len(result.missing)} package(s) not found in registry")
    return sorted(result.missing)
