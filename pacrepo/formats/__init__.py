"""Package records, version ordering and readers for pacman formats.

This module provides the uniform package record shared by package files,
repository databases, the local package store and the registry, together
with the readers that produce such records.
"""

from .base import (
    PackageFormat,
    PackageOrigin,
    PackageReadError,
    PackageRecord,
    dependency_name,
    dependency_names,
)
from .database import (
    enabled_repositories,
    is_database_locked,
    read_database,
    read_local_database,
    read_sync_databases,
)
from .pacman import PacmanPackageFormat, has_database_format, has_package_format
from .vercmp import compare, version_key

__all__ = [
    "PackageFormat",
    "PackageOrigin",
    "PackageReadError",
    "PackageRecord",
    "PacmanPackageFormat",
    "compare",
    "dependency_name",
    "dependency_names",
    "enabled_repositories",
    "has_database_format",
    "has_package_format",
    "is_database_locked",
    "read_database",
    "read_local_database",
    "read_sync_databases",
    "version_key",
]
