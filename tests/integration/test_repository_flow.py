"""Integration tests for repository maintenance across several runs.

The database manager used here writes real database archives, so every
step reads back what the previous one produced.
"""

import tarfile
import time
from io import BytesIO
from pathlib import Path
from typing import Dict, List

import pytest

from pacrepo.formats.base import PackageRecord
from pacrepo.formats.database import read_database
from pacrepo.formats.pacman import PacmanPackageFormat
from pacrepo.repos.base import IndexManager
from pacrepo.repos.repository import Repository


def _desc(record: PackageRecord) -> bytes:
    sections = [
        ("FILENAME", [record.basename]),
        ("NAME", [record.name]),
        ("VERSION", [record.version]),
        ("DEPENDS", record.depends),
    ]
    return "".join(
        f"%{key}%\n" + "\n".join(values) + "\n\n" for key, values in sections if values
    ).encode()


class TarballIndex(IndexManager):
    """Database manager writing gzip compressed database archives."""

    def __init__(self, database_path: Path):
        self._database_path = database_path
        self.handler = PacmanPackageFormat()

    @property
    def manager_name(self) -> str:
        return "tarball"

    @property
    def database_path(self) -> Path:
        return self._database_path

    def _entries(self) -> Dict[str, PackageRecord]:
        if not self._database_path.exists():
            return {}
        return {r.name: r for r in read_database(self._database_path)}

    def _write(self, entries: Dict[str, PackageRecord]) -> None:
        with tarfile.open(self._database_path, "w:gz") as tar:
            for record in entries.values():
                data = _desc(record)
                info = tarfile.TarInfo(name=f"{record.name}-{record.version}/desc")
                info.size = len(data)
                info.mtime = int(time.time())
                tar.addfile(info, BytesIO(data))

    def create(self) -> None:
        if not self._database_path.exists():
            self._write({})

    def add(self, files: List[str]) -> None:
        if not files:
            return
        entries = self._entries()
        for f in files:
            record = self.handler.parse_metadata(Path(f))
            entries[record.name] = record
        self._write(entries)

    def remove(self, names: List[str]) -> None:
        if not names:
            return
        entries = self._entries()
        for name in names:
            entries.pop(name, None)
        self._write(entries)

    def delete(self) -> bool:
        if not self._database_path.exists():
            return False
        self._database_path.unlink()
        return True


@pytest.fixture
def repo(tmp_path):
    directory = tmp_path / "repo"
    directory.mkdir()
    index = TarballIndex(directory / "main.db.tar.gz")
    return Repository(str(directory), "main.db.tar.gz", index=index, backup=True)


@pytest.fixture
def incoming(tmp_path):
    path = tmp_path / "incoming"
    path.mkdir()
    return path


def _registered(repo: Repository) -> Dict[str, str]:
    return {r.name: r.version for r in repo.read_database()}


class TestRepositoryFlow:
    """Tests running several repository operations in sequence."""

    def test_add_update_remove(self, repo, incoming, make_package):
        foo = make_package(incoming, "foo", "1.0-1", depends=["bar"])
        bar = make_package(incoming, "bar", "1.0-1")

        repo.add([str(foo), str(bar)])
        assert _registered(repo) == {"foo": "1.0-1", "bar": "1.0-1"}
        assert all(m.is_registered() for m in repo.read_meta())

        newer = make_package(incoming, "foo", "1.1-1", depends=["bar"])
        repo.add([str(newer)], mode="move")

        assert _registered(repo) == {"foo": "1.1-1", "bar": "1.0-1"}
        assert (repo.backup_path / foo.name).exists()
        assert not (repo.directory / foo.name).exists()

        repo.remove(["bar"])
        assert _registered(repo) == {"foo": "1.1-1"}
        assert (repo.backup_path / bar.name).exists()

        metas = repo.read_meta()
        assert [m.name for m in metas] == ["foo"]
        assert metas[0].is_synced()

    def test_update_picks_up_dropped_files(self, repo, make_package):
        old = make_package(repo.directory, "alpha", "1-1")
        repo.update()
        assert _registered(repo) == {"alpha": "1-1"}

        make_package(repo.directory, "alpha", "2-1")
        make_package(repo.directory, "beta", "1-1")
        result = repo.update()

        assert _registered(repo) == {"alpha": "2-1", "beta": "1-1"}
        assert [r.filename for r in result.obsolete] == [str(old)]
        assert (repo.backup_path / old.name).exists()
        assert repo.update().is_empty

    def test_vanished_package_purged(self, repo, make_package):
        path = make_package(repo.directory, "gone", "1-1")
        make_package(repo.directory, "kept", "1-1")
        repo.update()

        path.unlink()
        metas = repo.read_meta()
        assert metas[0].name == "gone"
        assert metas[0].has_pending_removal()

        result = repo.update()
        assert result.to_purge == ["gone"]
        assert _registered(repo) == {"kept": "1-1"}

    def test_reset_rebuilds_database(self, repo, make_package):
        make_package(repo.directory, "alpha", "1-1")
        make_package(repo.directory, "beta", "1-1")
        repo.update()
        repo.index.remove(["beta"])
        assert _registered(repo) == {"alpha": "1-1"}

        repo.reset()
        assert _registered(repo) == {"alpha": "1-1", "beta": "1-1"}

    def test_reset_empty_repository(self, repo):
        result = repo.reset()

        assert result.is_empty
        assert repo.database_path.exists()
        assert _registered(repo) == {}

    def test_upgrades_against_registry(self, repo, make_package, fake_registry):
        make_package(repo.directory, "foo", "1.0-1")
        make_package(repo.directory, "bar", "2:0.1-1")
        repo.update()
        repo.registry = fake_registry({"foo": ("1.0.1-1", []), "bar": ("9.9-1", [])})

        report = repo.find_upgrades()

        assert [str(u) for u in report.upgrades] == ["foo: 1.0-1 -> 1.0.1-1"]
        assert report.missing == []
