"""Repository reconciliation and management.

This module reconciles the package files of a repository directory with
its database and the registry, and applies the resulting changes through
a database manager.
"""

from .base import DatabaseLockedError, IndexManager, IndexManagerProtocol
from .meta import MetaPackage, ReconcilePlan, attach_registry, plan, reconcile
from .repoadd import IndexCommandError, RepoAddManager
from .repository import Repository, Upgrade, write_build_order
from .scan import ErrorPolicy, ScanReport, ScanResult, collect, scan_directory

__all__ = [
    "DatabaseLockedError",
    "ErrorPolicy",
    "IndexCommandError",
    "IndexManager",
    "IndexManagerProtocol",
    "MetaPackage",
    "ReconcilePlan",
    "RepoAddManager",
    "Repository",
    "ScanReport",
    "ScanResult",
    "Upgrade",
    "attach_registry",
    "collect",
    "plan",
    "reconcile",
    "scan_directory",
    "write_build_order",
]
