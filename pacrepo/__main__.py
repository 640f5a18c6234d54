"""Command line interface for pacrepo."""

import argparse
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import yaml

from . import __version__
from .common.config import (
    PacrepoConfig,
    default_config_path,
    load_typed_config,
    parse_profile_config,
)
from .common.logger import setup_logger
from .formats.base import PackageRecord
from .graph.resolver import ResolveOptions
from .registry.client import RegistryClient
from .repos.repository import Repository, write_build_order
from .repos.scan import ErrorPolicy


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse the command line."""
    parser = argparse.ArgumentParser(
        prog="pacrepo",
        description="Manage local pacman repositories and their registry upgrades",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", dest="config", type=str,
                        help=f"Configuration file (default: {default_config_path()})")
    parser.add_argument("-P", "--profile", dest="profile", type=str,
                        help="Configuration profile to use")
    parser.add_argument("-r", "--repo", dest="repo", type=str,
                        help="Absolute path of the repository database, bypassing the configuration")
    parser.add_argument("-q", "--quiet", dest="quiet", action="store_true",
                        help="Only log warnings and errors")
    parser.add_argument("--loglevel", dest="log_level", type=str.upper,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Set the logging level")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List packages in the repository")
    p.add_argument("-v", "--versions", action="store_true", help="Show versions")
    p.add_argument("-p", "--pending", action="store_true",
                   help="Only list packages with pending changes")

    p = sub.add_parser("status", help="Show pending changes and available upgrades")
    p.add_argument("-a", "--registry", dest="registry", action="store_true",
                   help="Check the registry for upgrades")
    p.add_argument("-m", "--missing", action="store_true",
                   help="Highlight packages missing in the registry")

    p = sub.add_parser("update", help="Update the database from the package files")
    p.add_argument("names", nargs="*", help="Restrict to these packages")

    p = sub.add_parser("add", help="Add package files to the repository")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("-m", "--move", dest="mode", action="store_const", const="move",
                      help="Move the files instead of copying")
    mode.add_argument("-l", "--link", dest="mode", action="store_const", const="link",
                      help="Hard link the files instead of copying")
    p.add_argument("files", nargs="+", help="Package files")

    p = sub.add_parser("remove", help="Remove packages from the repository")
    p.add_argument("names", nargs="+", help="Package names")

    sub.add_parser("reset", help="Recreate the database from the package files")

    sub.add_parser("new", help="Create the repository directory and an empty database")

    p = sub.add_parser("search", help="Search the registry by package name")
    p.add_argument("query", help="Search term")

    p = sub.add_parser("query", help="Show registry information on packages")
    p.add_argument("names", nargs="+", help="Package names")

    p = sub.add_parser("down", help="Download build recipes from the registry")
    p.add_argument("names", nargs="*", help="Package names")
    p.add_argument("-u", "--upgrades", action="store_true",
                   help="Download recipes of all upgrades")
    p.add_argument("-a", "--all", dest="all", action="store_true",
                   help="Download recipes of all packages in the repository")
    p.add_argument("-R", "--recursive", action="store_true",
                   help="Also download registry dependencies")
    p.add_argument("-o", "--order", type=str,
                   help="Write the build order to this file, implies --recursive")
    p.add_argument("-n", "--dry-run", action="store_true", help="Do not download anything")
    p.add_argument("-d", "--dest", type=str, default=".", help="Output directory")
    p.add_argument("--no-extract", dest="extract", action="store_false",
                   help="Keep the tarballs instead of extracting them")
    p.add_argument("--clobber", action="store_true", help="Overwrite existing output")

    return parser.parse_args(argv)


def _load_config(args: argparse.Namespace) -> PacrepoConfig:
    if args.repo:
        config = PacrepoConfig()
        profile = parse_profile_config("command-line", {"repo": args.repo})
        config.profiles[profile.name] = profile
        config.default_profile = profile.name
        return config
    return load_typed_config(args.config)


def _warn(message: str) -> None:
    print(f"warning: {message}", file=sys.stderr)


def cmd_list(repo: Repository, args: argparse.Namespace) -> int:
    metas, _ = repo.status()
    for meta in metas:
        if args.pending and not meta.has_pending():
            continue
        print(f"{meta.name} {meta.version}" if args.versions else meta.name)
    return 0


def cmd_status(repo: Repository, args: argparse.Namespace) -> int:
    print(f"On repo {repo.name}\n")
    metas, missing = repo.status(fetch_registry=args.registry or args.missing)
    ignored = set(repo.ignore_registry)

    nothing = True
    for meta in metas:
        flags = []
        if meta.has_upstream_upgrade() and meta.name not in ignored:
            flags.append(f"upgrade({meta.version}->{meta.registry.version})")
        if meta.has_pending_update():
            flags.append(f"update({meta.version_registered}->{meta.version})")
        if meta.has_pending_removal():
            flags.append("removal")
        if meta.has_obsolete():
            flags.append(f"obsolete({len(meta.obsolete)})")
        if args.missing and meta.name in missing and meta.name not in ignored:
            flags.append("!registry")

        if flags:
            nothing = False
            print(f"\t{meta.name}: {' '.join(flags)}")

    if nothing:
        print("Everything up-to-date.")
    return 0


def cmd_update(repo: Repository, args: argparse.Namespace) -> int:
    result = repo.update(args.names)
    if result.is_empty:
        print("Nothing to do.")
    return 0


def cmd_add(repo: Repository, args: argparse.Namespace) -> int:
    added = repo.add(args.files, mode=args.mode or "copy")
    if len(added) < len(args.files):
        _warn(f"{len(args.files) - len(added)} file(s) were not added")
    return 0


def cmd_remove(repo: Repository, args: argparse.Namespace) -> int:
    removed = repo.remove(args.names)
    for name in sorted(set(args.names) - {m.name for m in removed}):
        _warn(f"package {name} is not in the repository")
    return 0


def cmd_reset(repo: Repository, args: argparse.Namespace) -> int:
    repo.reset()
    return 0


def cmd_new(repo: Repository, args: argparse.Namespace) -> int:
    if not repo.create():
        _warn(f"repository {repo.database_path} already exists")
    return 0


def cmd_search(repo: Repository, args: argparse.Namespace) -> int:
    for record in repo.registry.search(args.query):
        print(f"{record.name} {record.version}")
        if record.description:
            print(f"    {record.description}")
    return 0


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S %Z") if value else "unknown"


def format_registry_record(record: PackageRecord, snapshot_url: Optional[str] = None) -> List[str]:
    """Render the registry metadata of a package, leaving out empty lists."""
    raw = record.raw_metadata
    lines = [f"    Name: {record.name}"]
    if record.base and record.base != record.name:
        lines.append(f"    Base Name: {record.base}")
    lines.append(f"    Version: {record.version}")
    lines.append(f"    Description: {record.description or ''}")
    if record.url:
        lines.append(f"    URL: {record.url}")

    for label, values in [
        ("Licenses", record.licenses),
        ("Groups", record.groups),
        ("Provides", record.provides),
        ("Conflicts", record.conflicts),
        ("Replaces", record.replaces),
        ("Dependencies", record.depends),
        ("Build Dependencies", record.make_depends),
        ("Check Dependencies", record.check_depends),
        ("Keywords", raw.get("keywords") or []),
    ]:
        if values:
            lines.append(f"    {label}: {' '.join(values)}")
    if record.opt_depends:
        lines.append("    Optional Dependencies:")
        lines.extend(f"        {d}" for d in record.opt_depends)

    if snapshot_url:
        lines.append(f"    Snapshot URL: {snapshot_url}")
    lines.append(f"    Maintainer: {raw.get('maintainer') or 'orphan'}")
    lines.append(f"    Votes: {raw.get('num_votes', 0)}")
    lines.append(f"    Popularity: {raw.get('popularity', 0.0):f}")
    lines.append(f"    First Submitted: {_format_time(raw.get('first_submitted'))}")
    lines.append(f"    Last Updated: {_format_time(raw.get('last_modified'))}")
    lines.append(f"    Out-Of-Date: {'yes' if raw.get('out_of_date') else 'no'}")
    return lines


def cmd_query(repo: Repository, args: argparse.Namespace) -> int:
    result = repo.registry.query(args.names)
    for name in result.missing:
        _warn(f"unknown package {name}")

    for name in sorted(result.packages):
        record = result.packages[name]
        snapshot_url = None
        if record.raw_metadata.get("url_path"):
            snapshot_url = repo.registry.download_url(record)
        print(f"{record.name} {record.version} ({record.raw_metadata.get('num_votes', 0)})")
        print("\n".join(format_registry_record(record, snapshot_url)))
    return 0


def _resolve_interruptibly(repo: Repository, names: List[str], config: PacrepoConfig):
    """Resolve dependencies in a worker so Ctrl-C cancels between rounds."""
    cancel = threading.Event()
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(
            repo.dependency_graph,
            names,
            config.pacman,
            ResolveOptions(skip_installed=True, truncate=True),
            cancel,
        )
        try:
            return future.result()
        except KeyboardInterrupt:
            cancel.set()
            return future.result()


def cmd_down(repo: Repository, args: argparse.Namespace, config: PacrepoConfig) -> int:
    names = list(args.names)
    if args.all:
        metas, _ = repo.status()
        names.extend(m.name for m in metas)
    if args.upgrades:
        report = repo.find_upgrades()
        names.extend(u.name for u in report.upgrades)

    if not names:
        _warn("no packages to download")
        return 0

    if args.recursive or args.order:
        resolution = _resolve_interruptibly(repo, names, config)
        for name in resolution.unresolved:
            _warn(f"unknown package {name}")
            for dependent in resolution.required_by.get(name, []):
                print(f"         required by: {dependent}", file=sys.stderr)
        if args.order:
            write_build_order(resolution, Path(args.order))
        names = resolution.remote_order

    if args.dry_run:
        return 0

    report = repo.download(names, Path(args.dest), extract=args.extract, clobber=args.clobber)
    for name in report.missing:
        _warn(f"package {name} could not be found in the registry")
    for path in report.paths:
        print(path)
    return 0


COMMANDS = {
    "list": cmd_list,
    "status": cmd_status,
    "update": cmd_update,
    "add": cmd_add,
    "remove": cmd_remove,
    "reset": cmd_reset,
    "new": cmd_new,
    "search": cmd_search,
    "query": cmd_query,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the pacrepo CLI."""
    args = parse_args(argv)

    try:
        config = _load_config(args)
        level = args.log_level or ("WARNING" if args.quiet else config.logging.level)
        setup_logger(
            "pacrepo",
            log_dir=config.logging.log_dir,
            level=level,
            file_logging=config.logging.file_logging,
        )

        profile = config.select_profile(args.profile)
        with RegistryClient(
            base_url=config.registry.url,
            timeout=config.registry.timeout,
            batch_size=config.registry.batch_size,
        ) as registry:
            repo = Repository.from_profile(
                profile, registry=registry, error_policy=ErrorPolicy.LOG
            )
            if args.command == "down":
                return cmd_down(repo, args, config)
            return COMMANDS[args.command](repo, args)
    except (RuntimeError, OSError, ValueError, yaml.YAMLError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
