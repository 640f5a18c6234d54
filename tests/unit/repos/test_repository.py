"""Tests for repository management."""

import logging
from pathlib import Path
from typing import List
from unittest.mock import MagicMock

import pytest

from pacrepo.common.config import PacmanConfig, ProfileConfig
from pacrepo.formats.base import PackageOrigin, PackageRecord
from pacrepo.graph.resolver import Resolution, ResolveOptions
from pacrepo.graph.graph import DependencyGraph
from pacrepo.repos.base import DatabaseLockedError, IndexManager
from pacrepo.repos.repoadd import RepoAddManager
from pacrepo.repos.repository import Repository, write_build_order


class FakeIndex(IndexManager):
    """Database manager recording the calls it receives."""

    def __init__(self, database_path: Path):
        self._database_path = database_path
        self.added: List[List[str]] = []
        self.removed: List[List[str]] = []
        self.deleted = False
        self.created = False

    @property
    def manager_name(self) -> str:
        return "fake"

    @property
    def database_path(self) -> Path:
        return self._database_path

    def create(self):
        self.created = True

    def add(self, files):
        if files:
            self.added.append(list(files))

    def remove(self, names):
        if names:
            self.removed.append(list(names))

    def delete(self):
        self.deleted = True
        return True


@pytest.fixture
def repo_dir(tmp_path):
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest.fixture
def make_repo(repo_dir):
    """Factory for a repository using a recording database manager."""

    def _make(**kwargs):
        index = FakeIndex(repo_dir / "main.db.tar.gz")
        return Repository(str(repo_dir), "main.db.tar.gz", index=index, **kwargs)

    return _make


class TestRepositoryBasics:
    """Tests for construction and derived paths."""

    def test_relative_directory_rejected(self):
        with pytest.raises(ValueError, match="absolute"):
            Repository("repo", "main.db.tar.gz")

    def test_name_and_paths(self, make_repo, repo_dir):
        repo = make_repo(backup=True, backup_dir="old")

        assert repo.name == "main"
        assert repo.database_path == repo_dir / "main.db.tar.gz"
        assert repo.backup_path == repo_dir / "old"
        assert not repo.is_obsolete_cached()

    def test_backup_into_repository_is_cached(self, make_repo):
        assert make_repo(backup=True, backup_dir=".").is_obsolete_cached()
        assert not make_repo(backup=False, backup_dir=".").is_obsolete_cached()

    def test_default_index_is_repo_add(self, repo_dir):
        repo = Repository(str(repo_dir), "main.db.tar.gz")
        assert isinstance(repo.index, RepoAddManager)

    def test_from_profile(self, tmp_path):
        profile = ProfileConfig(
            name="main",
            repo=str(tmp_path / "main.db.tar.zst"),
            backup=True,
            add_params=["--sign"],
            ignore_registry=["foo-git"],
        )
        repo = Repository.from_profile(profile)

        assert repo.directory == tmp_path
        assert repo.database == "main.db.tar.zst"
        assert repo.backup
        assert repo.index.add_params == ["--sign"]
        assert repo.ignore_registry == ["foo-git"]

    def test_registry_required(self, make_repo):
        with pytest.raises(RuntimeError, match="no registry"):
            make_repo().find_upgrades()


class TestRepositoryUpdate:
    """Tests for reconciling the database with the package files."""

    @pytest.fixture
    def populated(self, repo_dir, make_package, make_database):
        old = make_package(repo_dir, "foo", "1.0-1", mtime=1_000_000_000)
        new = make_package(repo_dir, "foo", "1.1-1")
        bar = make_package(repo_dir, "bar", "1-1")
        make_database(
            repo_dir / "main.db.tar.gz",
            [("foo", "1.0-1", old.name), ("gone", "1-1", "gone-1-1-x86_64.pkg.tar.gz")],
        )
        return {"old": old, "new": new, "bar": bar}

    def test_read_meta(self, make_repo, populated):
        metas = make_repo().read_meta()

        assert [m.name for m in metas] == ["bar", "foo", "gone"]
        assert metas[1].newest.version == "1.1-1"
        assert metas[1].database.version == "1.0-1"
        assert metas[2].has_pending_removal()

    def test_update(self, make_repo, populated):
        repo = make_repo()
        result = repo.update()

        assert repo.index.removed == [["gone"]]
        assert repo.index.added == [[str(populated["bar"]), str(populated["new"])]]
        assert [r.filename for r in result.obsolete] == [str(populated["old"])]
        assert not populated["old"].exists()
        assert populated["new"].exists()

    def test_update_names_forces_reindex(self, make_repo, repo_dir, make_package, make_database):
        pkg = make_package(repo_dir, "foo", "1.0-1")
        make_database(repo_dir / "main.db.tar.gz", [("foo", "1.0-1", pkg.name)])
        repo = make_repo()

        repo.update()
        assert repo.index.added == []

        repo.update(["foo"])
        assert repo.index.added == [[str(pkg)]]

    def test_update_with_backup(self, make_repo, repo_dir, populated):
        sig = Path(str(populated["old"]) + ".sig")
        sig.write_bytes(b"signature")
        repo = make_repo(backup=True)

        repo.update()

        backup = repo_dir / "backup"
        assert (backup / populated["old"].name).exists()
        assert (backup / sig.name).exists()
        assert not sig.exists()

    def test_update_with_cached_backup(self, make_repo, populated):
        repo = make_repo(backup=True, backup_dir=".")
        repo.update()
        assert populated["old"].exists()

    def test_update_requires_signature(self, make_repo, populated, caplog):
        Path(str(populated["bar"]) + ".sig").write_bytes(b"signature")
        repo = make_repo(require_signature=True)

        with caplog.at_level(logging.WARNING, logger="pacrepo"):
            repo.update()

        assert repo.index.added == [[str(populated["bar"])]]
        assert "signature required" in caplog.text

    def test_update_locked(self, make_repo, repo_dir, populated):
        (repo_dir / "main.db.tar.gz.lck").touch()
        repo = make_repo()

        with pytest.raises(DatabaseLockedError):
            repo.update()
        assert repo.index.added == []
        assert populated["old"].exists()

    def test_reset(self, make_repo, populated):
        repo = make_repo()
        repo.reset()

        assert repo.index.deleted
        assert repo.index.created
        assert repo.index.added == [[str(populated["bar"]), str(populated["new"])]]

    def test_create(self, tmp_path):
        directory = tmp_path / "new" / "repo"
        repo = Repository(
            str(directory), "main.db.tar.gz", index=FakeIndex(directory / "main.db.tar.gz")
        )

        assert repo.create()
        assert directory.is_dir()
        assert repo.index.created

    def test_create_existing(self, make_repo, repo_dir):
        (repo_dir / "main.db.tar.gz").touch()
        repo = make_repo()

        assert not repo.create()
        assert not repo.index.created

    def test_create_locked(self, make_repo, repo_dir):
        (repo_dir / "main.db.tar.gz.lck").touch()
        repo = make_repo()

        with pytest.raises(DatabaseLockedError):
            repo.create()

    def test_unreadable_file_skipped(self, make_repo, repo_dir, make_package):
        make_package(repo_dir, "good", "1-1")
        (repo_dir / "bad-1-1-any.pkg.tar.gz").write_bytes(b"junk")
        repo = make_repo()

        repo.update()

        assert repo.index.added == [[str(repo_dir / "good-1-1-x86_64.pkg.tar.gz")]]


class TestRepositoryAdd:
    """Tests for adding files from outside the repository."""

    @pytest.fixture
    def incoming(self, tmp_path):
        path = tmp_path / "incoming"
        path.mkdir()
        return path

    def test_add_copy(self, make_repo, repo_dir, incoming, make_package):
        src = make_package(incoming, "foo", "1.0-1")
        repo = make_repo()

        added = repo.add([str(src)])

        assert added == [str(repo_dir / src.name)]
        assert (repo_dir / src.name).exists()
        assert src.exists()
        assert repo.index.added == [added]

    def test_add_move_with_signature(self, make_repo, repo_dir, incoming, make_package):
        src = make_package(incoming, "foo", "1.0-1")
        sig = Path(str(src) + ".sig")
        sig.write_bytes(b"signature")
        repo = make_repo()

        repo.add([str(src)], mode="move")

        assert not src.exists()
        assert not sig.exists()
        assert (repo_dir / sig.name).exists()

    def test_add_link(self, make_repo, repo_dir, incoming, make_package):
        src = make_package(incoming, "foo", "1.0-1")
        make_repo().add([str(src)], mode="link")

        assert (repo_dir / src.name).read_bytes() == src.read_bytes()

    def test_add_dispatches_older_files(self, make_repo, repo_dir, incoming, make_package):
        old = make_package(repo_dir, "foo", "1.0-1")
        src = make_package(incoming, "foo", "2.0-1")

        make_repo().add([str(src)])

        assert not old.exists()
        assert (repo_dir / src.name).exists()

    def test_add_skips_bad_input(self, make_repo, incoming, caplog):
        other = incoming / "README"
        other.write_text("hello")
        repo = make_repo()

        with caplog.at_level(logging.WARNING, logger="pacrepo"):
            added = repo.add([str(other), str(incoming / "missing-1-1-any.pkg.tar.gz")])

        assert added == []
        assert repo.index.added == []
        assert "not a package file" in caplog.text
        assert "no such file" in caplog.text

    def test_add_bad_mode(self, make_repo):
        with pytest.raises(ValueError, match="unknown add mode"):
            make_repo().add([], mode="teleport")


class TestRepositoryRemove:
    """Tests for removing packages."""

    def test_remove(self, make_repo, repo_dir, make_package, make_database):
        foo = make_package(repo_dir, "foo", "1.0-1")
        bar = make_package(repo_dir, "bar", "1.0-1")
        make_database(repo_dir / "main.db.tar.gz", [("foo", "1.0-1", foo.name)])
        repo = make_repo()

        metas = repo.remove(["foo", "bar", "unknown"])

        assert [m.name for m in metas] == ["bar", "foo"]
        assert repo.index.removed == [["foo"]]
        assert not foo.exists()
        assert not bar.exists()

    def test_remove_nothing(self, make_repo):
        repo = make_repo()
        assert repo.remove([]) == []
        assert repo.index.removed == []


class TestRepositoryRegistry:
    """Tests for registry backed operations."""

    @pytest.fixture
    def packages(self, repo_dir, make_package):
        make_package(repo_dir, "foo", "1.0-1")
        make_package(repo_dir, "bar", "1.0-1")
        make_package(repo_dir, "baz-git", "1.0-1")
        make_package(repo_dir, "local-only", "1.0-1")

    def test_find_upgrades(self, make_repo, packages, fake_registry):
        registry = fake_registry({
            "foo": ("1.1-1", []),
            "bar": ("1.0-1", []),
            "baz-git": ("2.0-1", []),
        })
        repo = make_repo(registry=registry, ignore_registry=["baz-git"])

        report = repo.find_upgrades()

        assert [u.name for u in report.upgrades] == ["foo"]
        assert str(report.upgrades[0]) == "foo: 1.0-1 -> 1.1-1"
        assert report.missing == ["local-only"]
        assert "baz-git" not in registry.queried_names

    def test_find_upgrades_explicit_names(self, make_repo, packages, fake_registry):
        registry = fake_registry({"baz-git": ("2.0-1", [])})
        repo = make_repo(registry=registry, ignore_registry=["baz-git"])

        report = repo.find_upgrades(["baz-git"])

        assert [u.name for u in report.upgrades] == ["baz-git"]

    def test_status_with_registry(self, make_repo, packages, fake_registry):
        registry = fake_registry({"foo": ("1.1-1", [])})
        metas, missing = make_repo(registry=registry).status(fetch_registry=True)

        assert missing == ["bar", "baz-git", "local-only"]
        assert metas[[m.name for m in metas].index("foo")].has_upstream_upgrade()

    def test_status_without_registry(self, make_repo, packages):
        metas, missing = make_repo().status()
        assert len(metas) == 4
        assert missing == []

    def test_download_deduplicates_bases(self, make_repo, tmp_path):
        first = PackageRecord(name="pair-a", version="1", origin=PackageOrigin.REGISTRY, base="pair")
        second = PackageRecord(name="pair-b", version="1", origin=PackageOrigin.REGISTRY, base="pair")
        registry = MagicMock()
        registry.query.return_value = MagicMock(
            packages={"pair-a": first, "pair-b": second}, missing=["nope"]
        )
        registry.download_snapshot.return_value = tmp_path / "pair"

        report = make_repo(registry=registry).download(["pair-a", "pair-b", "nope"], tmp_path)

        assert report.paths == [tmp_path / "pair"]
        assert report.missing == ["nope"]
        registry.download_snapshot.assert_called_once_with(
            first, tmp_path, extract=True, clobber=False
        )

    def test_dependency_graph(self, make_repo, tmp_path, make_database, fake_registry):
        sync = tmp_path / "sync"
        sync.mkdir()
        make_database(sync / "core.db", [("glibc", "2.38-7", "glibc-2.38-7-x86_64.pkg.tar.zst")])
        conf = tmp_path / "pacman.conf"
        conf.write_text("[options]\n\n[core]\nInclude = /etc/pacman.d/mirrorlist\n")
        local = tmp_path / "local"
        local.mkdir()
        pacman = PacmanConfig(
            conf_path=str(conf),
            local_db_path=str(local),
            sync_db_format=str(sync / "{name}.db"),
        )
        registry = fake_registry({"foo": ("1-1", ["bar", "glibc"]), "bar": ("1-1", [])})

        resolution = make_repo(registry=registry).dependency_graph(
            ["foo"], pacman, ResolveOptions(skip_installed=False, truncate=True)
        )

        assert resolution.remote_order == ["bar", "foo"]
        assert "glibc" in resolution.build_order
        assert not resolution.graph.node_by_name("glibc").remote


class TestWriteBuildOrder:
    """Tests for writing the build order file."""

    def test_write(self, tmp_path):
        resolution = Resolution(graph=DependencyGraph(), remote_order=["baz", "bar", "foo"])
        path = tmp_path / "order.txt"

        write_build_order(resolution, path)

        assert path.read_text() == "baz\nbar\nfoo\n"
