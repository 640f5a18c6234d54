"""Pytest configuration and shared fixtures."""

import os
import tarfile
import time
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from pacrepo.formats.base import PackageOrigin, PackageRecord
from pacrepo.registry.client import RegistryResult


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mtime = int(time.time())
    tar.addfile(info, BytesIO(data))


def _add_dir(tar: tarfile.TarFile, name: str) -> None:
    info = tarfile.TarInfo(name=name)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    tar.addfile(info)


@pytest.fixture
def make_package():
    """Factory writing a gzip compressed package archive with a .PKGINFO."""

    def _make(
        directory: Path,
        name: str,
        version: str,
        arch: str = "x86_64",
        depends: Optional[List[str]] = None,
        makedepends: Optional[List[str]] = None,
        extra: str = "",
        mtime: Optional[float] = None,
        builddate: str = "1700000000",
    ) -> Path:
        path = Path(directory) / f"{name}-{version}-{arch}.pkg.tar.gz"
        lines = [
            "# Generated by makepkg",
            f"pkgname = {name}",
            f"pkgbase = {name}",
            f"pkgver = {version}",
            f"pkgdesc = The {name} package",
            "url = https://example.com",
            f"builddate = {builddate}",
            "packager = Test <test@example.com>",
            "size = 1024",
            f"arch = {arch}",
            "license = MIT",
        ]
        lines += [f"depend = {d}" for d in depends or []]
        lines += [f"makedepend = {d}" for d in makedepends or []]
        content = "\n".join(lines) + "\n" + extra

        with tarfile.open(path, "w:gz") as tar:
            _add_bytes(tar, ".PKGINFO", content.encode())
            _add_dir(tar, "usr")
            _add_bytes(tar, f"usr/bin/{name}", b"#!/bin/sh\necho hello\n")

        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _make


@pytest.fixture
def make_database():
    """Factory writing a gzip compressed repository database.

    Entries are (name, version, filename) tuples or dicts of desc sections.
    """

    def _make(path: Path, entries: List, mtime: Optional[float] = None) -> Path:
        path = Path(path)
        with tarfile.open(path, "w:gz") as tar:
            for entry in entries:
                if isinstance(entry, tuple):
                    name, version, filename = entry
                    entry = {"FILENAME": [filename], "NAME": [name], "VERSION": [version]}
                dirname = f"{entry['NAME'][0]}-{entry['VERSION'][0]}"
                desc = "".join(
                    f"%{key}%\n" + "\n".join(values) + "\n\n"
                    for key, values in entry.items()
                )
                _add_dir(tar, dirname)
                _add_bytes(tar, f"{dirname}/desc", desc.encode())

        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _make


class FakeRegistry:
    """In-memory registry answering multi-name lookups."""

    def __init__(self, packages: Dict[str, PackageRecord]):
        self.packages = packages
        self.queries: List[List[str]] = []

    def query(self, names):
        names = list(names)
        self.queries.append(names)
        found = {n: self.packages[n] for n in names if n in self.packages}
        return RegistryResult(
            packages=found,
            missing=[n for n in names if n not in found],
        )

    @property
    def queried_names(self) -> List[str]:
        return [n for q in self.queries for n in q]


def registry_record(name: str, version: str = "1.0-1", depends=None, makedepends=None):
    return PackageRecord(
        name=name,
        version=version,
        origin=PackageOrigin.REGISTRY,
        base=name,
        depends=list(depends or []),
        make_depends=list(makedepends or []),
        raw_metadata={"url_path": f"/cgit/aur.git/snapshot/{name}.tar.gz"},
    )


@pytest.fixture
def fake_registry():
    """Factory for an in-memory registry.

    Accepts a mapping of name to (version, depends) or PackageRecord.
    """

    def _make(packages: Dict) -> FakeRegistry:
        records = {}
        for name, value in packages.items():
            if isinstance(value, PackageRecord):
                records[name] = value
            else:
                version, depends = value
                records[name] = registry_record(name, version, depends)
        return FakeRegistry(records)

    return _make


@pytest.fixture
def record():
    """Factory for plain package records."""

    def _make(
        name: str,
        version: str,
        origin: PackageOrigin = PackageOrigin.FILE,
        filename: Optional[str] = None,
        depends=None,
    ) -> PackageRecord:
        if filename is None and origin in (PackageOrigin.FILE, PackageOrigin.DATABASE):
            filename = f"/srv/repo/{name}-{version}-x86_64.pkg.tar.zst"
        return PackageRecord(
            name=name,
            version=version,
            origin=origin,
            filename=filename,
            depends=list(depends or []),
        )

    return _make


@pytest.fixture
def make_registry_record():
    """Factory for registry records carrying a snapshot path."""
    return registry_record
