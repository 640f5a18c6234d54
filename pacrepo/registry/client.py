"""Client for the package registry RPC interface.

Speaks version 5 of the AUR RPC interface over httpx. A multi-info
lookup for many names is split into chunks the server accepts and the
results are merged; names the registry does not know are reported
alongside the found packages instead of failing the lookup.
"""

import io
import tarfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx

from ..common.logger import get_logger
from ..formats.base import PackageOrigin, PackageRecord

logger = get_logger("registry.client")


DEFAULT_URL = "https://aur.archlinux.org"
RPC_PATH = "/rpc.php"
RPC_VERSION = "5"
DEFAULT_BATCH_SIZE = 200


class RegistryError(RuntimeError):
    """Raised when the registry cannot be reached or answers garbage."""


@dataclass
class RegistryResult:
    """Outcome of a multi-name registry lookup.

    packages maps each found name to its record; missing lists the
    requested names the registry does not know, in request order.
    """

    packages: Dict[str, PackageRecord] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing

    def merge(self, other: "RegistryResult") -> None:
        self.packages.update(other.packages)
        self.missing.extend(n for n in other.missing if n not in self.missing)

    def missing_message(self) -> str:
        """Human readable description of the missing names."""
        names = [f'"{n}"' for n in self.missing]
        if not names:
            return ""
        if len(names) == 1:
            return f"package {names[0]} could not be found in the registry"
        if len(names) == 2:
            listed = f"{names[0]} and {names[1]}"
        else:
            listed = ", ".join(names[:-1]) + f", and {names[-1]}"
        return f"packages {listed} could not be found in the registry"


def _timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def record_from_result(result: Dict[str, Any]) -> PackageRecord:
    """Convert one RPC result object into a REGISTRY record.

    Args:
        result: Entry of the ``results`` array of an RPC response

    Returns:
        PackageRecord with REGISTRY origin; votes, popularity and the
        snapshot path live in raw_metadata
    """
    raw = {
        "id": result.get("ID"),
        "package_base_id": result.get("PackageBaseID"),
        "num_votes": result.get("NumVotes", 0),
        "popularity": result.get("Popularity", 0.0),
        "out_of_date": result.get("OutOfDate"),
        "maintainer": result.get("Maintainer"),
        "first_submitted": _timestamp(result.get("FirstSubmitted")),
        "last_modified": _timestamp(result.get("LastModified")),
        "url_path": result.get("URLPath"),
        "keywords": _as_list(result.get("Keywords")),
    }
    return PackageRecord(
        name=result["Name"],
        version=result["Version"],
        origin=PackageOrigin.REGISTRY,
        base=result.get("PackageBase"),
        description=result.get("Description"),
        url=result.get("URL"),
        licenses=_as_list(result.get("License")),
        depends=_as_list(result.get("Depends")),
        make_depends=_as_list(result.get("MakeDepends")),
        check_depends=_as_list(result.get("CheckDepends")),
        opt_depends=_as_list(result.get("OptDepends")),
        provides=_as_list(result.get("Provides")),
        conflicts=_as_list(result.get("Conflicts")),
        replaces=_as_list(result.get("Replaces")),
        groups=_as_list(result.get("Groups")),
        raw_metadata=raw,
    )


class RegistryClient:
    """Client for an AUR compatible package registry.

    Usable as a context manager; the underlying httpx.Client is closed on
    exit.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        timeout: float = 30.0,
        batch_size: int = DEFAULT_BATCH_SIZE,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Registry base URL
            timeout: Request timeout in seconds
            batch_size: Maximum number of names per multi-info request
            transport: Optional httpx transport, e.g. for testing
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.base_url = base_url.rstrip("/")
        self.batch_size = batch_size
        self.calls = 0
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _rpc(self, params: List[tuple]) -> List[Dict[str, Any]]:
        """Perform an RPC request and return its results array.

        Raises:
            RegistryError: On transport errors, HTTP errors or error replies
        """
        self.calls += 1
        try:
            response = self._client.get(RPC_PATH, params=[("v", RPC_VERSION)] + params)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise RegistryError(f"registry request failed: {e}") from e
        except ValueError as e:
            raise RegistryError(f"registry returned invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise RegistryError("registry returned an unexpected response")
        if body.get("type") == "error":
            raise RegistryError(f"registry error: {body.get('error', 'unknown error')}")

        results = body.get("results")
        if not isinstance(results, list):
            raise RegistryError("registry response lacks a results array")
        return results

    def _query_chunk(self, names: List[str]) -> RegistryResult:
        params = [("type", "multiinfo")] + [("arg[]", n) for n in names]
        results = self._rpc(params)

        found: Dict[str, PackageRecord] = {}
        for entry in results:
            try:
                record = record_from_result(entry)
            except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
                raise RegistryError(f"malformed registry result: {e}") from e
            found[record.name] = record

        missing = [n for n in names if n not in found]
        return RegistryResult(packages=found, missing=missing)

    def query(self, names: Iterable[str]) -> RegistryResult:
        """Look up many packages by name.

        Args:
            names: Package names; duplicates are queried once

        Returns:
            RegistryResult with the found records and the missing names

        Raises:
            RegistryError: If any request fails
        """
        unique: List[str] = []
        for name in names:
            if name not in unique:
                unique.append(name)

        result = RegistryResult()
        for start in range(0, len(unique), self.batch_size):
            chunk = unique[start:start + self.batch_size]
            logger.debug(f"Querying registry for {len(chunk)} package(s)")
            result.merge(self._query_chunk(chunk))

        if result.missing:
            logger.debug(result.missing_message())
        return result

    def search(self, query: str) -> List[PackageRecord]:
        """Search packages by name.

        Args:
            query: Search term

        Returns:
            Matching records sorted by name

        Raises:
            RegistryError: If the request fails
        """
        results = self._rpc([("type", "search"), ("by", "name"), ("arg", query)])
        records = []
        for entry in results:
            try:
                records.append(record_from_result(entry))
            except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
                raise RegistryError(f"malformed registry result: {e}") from e
        return sorted(records, key=lambda r: r.name)

    def download_url(self, record: PackageRecord) -> str:
        """Return the URL of the build recipe snapshot of a package.

        Raises:
            RegistryError: If the record carries no snapshot path
        """
        url_path = record.raw_metadata.get("url_path")
        if not url_path:
            raise RegistryError(f"{record.name}: registry gave no snapshot path")
        return f"{self.base_url}{url_path}"

    def download_snapshot(
        self,
        record: PackageRecord,
        dest_dir: Path,
        extract: bool = False,
        clobber: bool = False,
    ) -> Path:
        """Download the build recipe snapshot of a package.

        Args:
            record: REGISTRY record of the package
            dest_dir: Directory to write to
            extract: Unpack the tarball instead of saving it
            clobber: Overwrite existing output

        Returns:
            Path of the saved tarball, or of the extracted directory

        Raises:
            FileExistsError: If the output exists and clobber is False
            RegistryError: If the download or extraction fails
        """
        url = self.download_url(record)
        dest_dir = Path(dest_dir)
        tarball = dest_dir / url.rsplit("/", 1)[-1]
        base = record.base or record.name
        target = dest_dir / base if extract else tarball
        if target.exists() and not clobber:
            raise FileExistsError(f"{target} already exists")

        self.calls += 1
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RegistryError(f"download of {record.name} failed: {e}") from e

        dest_dir.mkdir(parents=True, exist_ok=True)
        if not extract:
            logger.info(f"Downloading {record.name} to {tarball}")
            tarball.write_bytes(response.content)
            return tarball

        logger.info(f"Downloading and extracting {record.name} to {target}")
        try:
            with tarfile.open(fileobj=io.BytesIO(response.content), mode="r:*") as tar:
                tar.extractall(dest_dir, filter="data")
        except (tarfile.TarError, EOFError) as e:
            raise RegistryError(f"cannot extract snapshot of {record.name}: {e}") from e
        return target
