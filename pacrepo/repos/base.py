"""Base classes for repository database managers.

Defines the interface that all database managers must implement. The
database of a repository is mutated only through an IndexManager, and
every mutation must respect the advisory lock held by other writers.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Protocol


class DatabaseLockedError(RuntimeError):
    """Raised when the database is locked by another writer."""

    def __init__(self, lock_path: Path):
        super().__init__(f"database is locked: {lock_path}")
        self.lock_path = lock_path


class IndexManager(ABC):
    """Abstract base class for repository database managers.

    Each database manager must implement methods for:
    - Creating an empty database
    - Adding package files to the database
    - Removing package names from the database
    - Deleting the database
    """

    @property
    @abstractmethod
    def manager_name(self) -> str:
        """Return the manager identifier (e.g., 'repo-add')."""
        pass

    @property
    @abstractmethod
    def database_path(self) -> Path:
        """Return the path of the managed database."""
        pass

    @abstractmethod
    def create(self) -> None:
        """Create an empty database if none exists yet."""
        pass

    @abstractmethod
    def add(self, files: List[str]) -> None:
        """Add package files to the database.

        Args:
            files: Paths of the package files

        Raises:
            DatabaseLockedError: If the database is locked
            RuntimeError: If the database could not be updated
        """
        pass

    @abstractmethod
    def remove(self, names: List[str]) -> None:
        """Remove package names from the database.

        Args:
            names: Package names to remove

        Raises:
            DatabaseLockedError: If the database is locked
            RuntimeError: If the database could not be updated
        """
        pass

    @abstractmethod
    def delete(self) -> bool:
        """Delete the database, leaving the package files alone.

        Returns:
            True if a database was deleted
        """
        pass


class IndexManagerProtocol(Protocol):
    """Protocol for type checking database managers."""

    @property
    def database_path(self) -> Path: ...

    def create(self) -> None: ...

    def add(self, files: List[str]) -> None: ...

    def remove(self, names: List[str]) -> None: ...

    def delete(self) -> bool: ...
