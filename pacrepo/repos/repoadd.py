"""repo-add database manager for pacman repositories.

Wraps the repo-add and repo-remove command-line tools shipped with
pacman. Both run inside the repository directory, so the database is
named relative to it.
"""

import subprocess
from pathlib import Path
from typing import List, Optional

from ..common.logger import get_logger
from ..formats.database import is_database_locked, lock_path
from .base import DatabaseLockedError, IndexManager

logger = get_logger("repos.repoadd")


class IndexCommandError(RuntimeError):
    """Raised when repo-add or repo-remove fails."""

    def __init__(self, command: List[str], output: str, returncode: Optional[int] = None):
        message = f"command failed: {' '.join(command)}"
        if returncode is not None:
            message += f" (exit status {returncode})"
        if output.strip():
            message += f"\n{output.rstrip()}"
        super().__init__(message)
        self.command = command
        self.output = output
        self.returncode = returncode


class RepoAddManager(IndexManager):
    """Database manager using repo-add and repo-remove."""

    def __init__(
        self,
        database_path: str,
        add_params: Optional[List[str]] = None,
        rm_params: Optional[List[str]] = None,
        repo_add: str = "repo-add",
        repo_remove: str = "repo-remove",
        timeout: int = 600,
    ):
        """Initialize the manager.

        Args:
            database_path: Absolute path of the repository database
            add_params: Extra arguments for repo-add, e.g. ["--sign"]
            rm_params: Extra arguments for repo-remove
            repo_add: repo-add executable
            repo_remove: repo-remove executable
            timeout: Command timeout in seconds
        """
        self._database_path = Path(database_path)
        self.add_params = list(add_params or [])
        self.rm_params = list(rm_params or [])
        self.repo_add = repo_add
        self.repo_remove = repo_remove
        self.timeout = timeout

    @property
    def manager_name(self) -> str:
        """Return manager identifier."""
        return "repo-add"

    @property
    def database_path(self) -> Path:
        """Return the path of the managed database."""
        return self._database_path

    @property
    def directory(self) -> Path:
        return self._database_path.parent

    def _check_lock(self) -> None:
        if is_database_locked(self._database_path):
            raise DatabaseLockedError(lock_path(self._database_path))

    def _run(self, cmd: List[str]) -> str:
        """Run a database command in the repository directory.

        Args:
            cmd: Full command line

        Returns:
            Combined stdout and stderr

        Raises:
            IndexCommandError: If the command cannot be run or fails
        """
        logger.debug(f"Executing: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                cwd=self.directory,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise IndexCommandError(cmd, f"{cmd[0]} not found") from e
        except subprocess.TimeoutExpired as e:
            output = e.output.decode(errors="replace") if e.output else ""
            raise IndexCommandError(cmd, output or "timed out") from e

        output = result.stdout.decode(errors="replace") if result.stdout else ""
        if result.returncode != 0:
            logger.error(f"Error executing: {' '.join(cmd)}")
            raise IndexCommandError(cmd, output, result.returncode)
        return output

    def create(self) -> None:
        """Create an empty database if none exists yet."""
        if self._database_path.exists():
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        logger.info(f"Creating database: {self._database_path}")
        self._run([self.repo_add] + self.add_params + [self._database_path.name])

    def add(self, files: List[str]) -> None:
        """Add package files to the database.

        Args:
            files: Paths of the package files

        Raises:
            DatabaseLockedError: If the database is locked
            IndexCommandError: If repo-add fails
        """
        if not files:
            return
        self._check_lock()
        for f in files:
            logger.info(f"Adding package to database: {f}")
        self._run(
            [self.repo_add] + self.add_params + [self._database_path.name] + [str(f) for f in files]
        )

    def remove(self, names: List[str]) -> None:
        """Remove package names from the database.

        Args:
            names: Package names to remove

        Raises:
            DatabaseLockedError: If the database is locked
            IndexCommandError: If repo-remove fails
        """
        if not names:
            return
        self._check_lock()
        for name in names:
            logger.info(f"Removing package from database: {name}")
        self._run(
            [self.repo_remove] + self.rm_params + [self._database_path.name] + list(names)
        )

    def delete(self) -> bool:
        """Delete the database, leaving the package files alone.

        Returns:
            True if a database was deleted

        Raises:
            DatabaseLockedError: If the database is locked
        """
        self._check_lock()
        if not self._database_path.exists():
            return False
        logger.info(f"Deleting database: {self._database_path}")
        self._database_path.unlink()
        return True
