"""Base classes for package records and package format handlers.

Defines the uniform package representation shared by every place a
package can be observed (package file, repository database, local
installation, registry) and the interface package format handlers
implement.
"""

import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from . import vercmp


class PackageOrigin(Enum):
    """Where a package record was observed.

    The origin documents which fields of a PackageRecord can be expected
    to be filled in.
    """

    UNKNOWN = auto()
    FILE = auto()  # package archive in a directory
    DATABASE = auto()  # repository or sync database entry
    LOCAL = auto()  # locally installed package
    REGISTRY = auto()  # remote registry query result


_CONSTRAINT = re.compile(r"[<>=:]")


def dependency_name(dependency: str) -> str:
    """Strip version constraints and descriptions from a dependency.

    Args:
        dependency: Dependency string, e.g. ``"glibc>=2.38"`` or
            ``"python-pip: install helper"``

    Returns:
        The bare package name
    """
    return _CONSTRAINT.split(dependency, 1)[0].strip()


def dependency_names(dependencies: Iterable[str]) -> List[str]:
    """Strip constraints from a list of dependencies, dropping duplicates."""
    names: List[str] = []
    for dep in dependencies:
        name = dependency_name(dep)
        if name and name not in names:
            names.append(name)
    return names


@dataclass
class PackageRecord:
    """Standardized package record across all origins.

    Dependency lists contain name references (possibly with version
    constraints), never nested records.
    """

    name: str
    version: str
    origin: PackageOrigin = PackageOrigin.UNKNOWN
    filename: Optional[str] = None  # Path for FILE origin, index filename otherwise
    base: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    licenses: List[str] = field(default_factory=list)
    architecture: Optional[str] = None
    packager: Optional[str] = None
    build_date: Optional[datetime] = None
    size: Optional[int] = None
    depends: List[str] = field(default_factory=list)
    make_depends: List[str] = field(default_factory=list)
    check_depends: List[str] = field(default_factory=list)
    opt_depends: List[str] = field(default_factory=list)
    provides: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    replaces: List[str] = field(default_factory=list)
    groups: List[str] = field(default_factory=list)
    raw_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def basename(self) -> Optional[str]:
        """Filename without directory, if the record refers to a file."""
        if not self.filename:
            return None
        return os.path.basename(self.filename)

    @property
    def identity(self) -> Tuple[str, str, Optional[str]]:
        """Name, version and file basename identifying a concrete package."""
        return self.name, self.version, self.basename

    def all_depends(self) -> List[str]:
        """Names of the runtime and build dependencies of this package."""
        return dependency_names(self.depends + self.make_depends)

    def newer_than(self, other: Optional["PackageRecord"]) -> bool:
        """Check if this version is newer; always True against None."""
        if other is None:
            return True
        return vercmp.compare(self.version, other.version) > 0

    def older_than(self, other: Optional["PackageRecord"]) -> bool:
        """Check if this version is older; always False against None."""
        if other is None:
            return False
        return vercmp.compare(self.version, other.version) < 0

    def __str__(self) -> str:
        return f"{self.name} {self.version}"


class PackageFormat(ABC):
    """Abstract base class for package format handlers.

    Each format handler must implement methods for:
    - Detecting if a file is of this format
    - Parsing package metadata into a PackageRecord
    - Parsing package name and version from a filename
    """

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Return the format identifier (e.g., 'pacman')."""
        pass

    @property
    @abstractmethod
    def file_extensions(self) -> List[str]:
        """Return supported file extensions (e.g., ['.pkg.tar.zst'])."""
        pass

    @abstractmethod
    def detect(self, path: Path) -> bool:
        """Detect if a file is of this format.

        Args:
            path: Path to the package file

        Returns:
            True if file is of this format
        """
        pass

    @abstractmethod
    def parse_metadata(self, path: Path) -> PackageRecord:
        """Parse package metadata without full extraction.

        Args:
            path: Path to the package file

        Returns:
            PackageRecord with FILE origin

        Raises:
            PackageReadError: If parsing fails
        """
        pass

    def has_format(self, filename: str) -> bool:
        """Check a filename against the supported extensions."""
        return any(filename.endswith(ext) for ext in self.file_extensions)

    def parse_filename(self, filename: str) -> Tuple[str, str]:
        """Parse package name and version from filename.

        Args:
            filename: Package filename

        Returns:
            Tuple of (name, version)
        """
        name = os.path.basename(filename)
        for ext in self.file_extensions:
            if name.endswith(ext):
                name = name[: -len(ext)]
                break
        return name, "unknown"


class PackageReadError(RuntimeError):
    """Raised when a package file or database entry cannot be read."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
