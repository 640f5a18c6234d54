"""Resolution of registry packages into a dependency graph.

Starting from a set of requested names, the resolver repeatedly queries
the registry for the names it has not seen yet and expands the
dependencies of what it finds. Dependencies available from a mirror
become leaf nodes whose own dependencies are only followed within the
mirror, and not at all when truncating; dependencies already installed
can be skipped. Names nobody knows are collected rather than failing
the resolution.

The expansion is an explicit worklist, so deep or cyclic dependency
data neither grows the stack nor loops forever.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from ..common.logger import get_logger
from ..formats.base import PackageRecord
from .graph import DependencyGraph, Node

logger = get_logger("graph.resolver")


class ResolutionCancelled(RuntimeError):
    """Raised when a resolution is cancelled between two rounds."""


@dataclass
class ResolveOptions:
    """Options of a resolution.

    Attributes:
        skip_installed: Leave out dependencies that are installed locally
        truncate: Do not expand the dependencies of mirror packages
    """

    skip_installed: bool = False
    truncate: bool = False


@dataclass
class Resolution:
    """Outcome of a resolution.

    build_order lists every node dependency first; remote_order lists
    only the packages that have to be built from the registry.
    unresolved holds the names found nowhere and required_by the
    packages that asked for each of them.
    """

    graph: DependencyGraph
    build_order: List[str] = field(default_factory=list)
    remote_order: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)
    required_by: Dict[str, List[str]] = field(default_factory=dict)
    registry_calls: int = 0

    @property
    def complete(self) -> bool:
        return not self.unresolved


def _by_name(records: Optional[Iterable[PackageRecord]]) -> Dict[str, PackageRecord]:
    mapping: Dict[str, PackageRecord] = {}
    for record in records or []:
        mapping.setdefault(record.name, record)
    return mapping


class Resolver:
    """Builds dependency graphs of registry packages."""

    def __init__(
        self,
        registry,
        local: Optional[Iterable[PackageRecord]] = None,
        sync: Optional[Iterable[PackageRecord]] = None,
    ):
        """Initialize the resolver.

        Args:
            registry: Object with a ``query(names)`` method returning a
                RegistryResult, such as RegistryClient
            local: Records of the locally installed packages
            sync: Records available from the mirrors
        """
        self.registry = registry
        self.local = _by_name(local)
        self.sync = _by_name(sync)

    def resolve(
        self,
        names: Iterable[str],
        options: Optional[ResolveOptions] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Resolution:
        """Resolve the given registry packages and their dependencies.

        Args:
            names: Requested package names
            options: Resolution options
            cancel: Event checked before every round

        Returns:
            Resolution with the graph, the build order and unresolved names

        Raises:
            ResolutionCancelled: If cancel was set
            RegistryError: If the registry cannot be reached
        """
        options = options or ResolveOptions()
        roots = list(OrderedDict.fromkeys(names))
        graph = DependencyGraph()
        resolution = Resolution(graph=graph)

        unresolved: Set[str] = set()
        required_by: Dict[str, Set[str]] = {}
        # dependency name -> ids of nodes waiting for an edge to it
        pending: Dict[str, List[int]] = {}

        frontier: List[str] = roots
        leaves: List[Node] = []
        while frontier or leaves:
            if cancel is not None and cancel.is_set():
                raise ResolutionCancelled("dependency resolution cancelled")

            expand = self._fetch(graph, frontier, pending, unresolved, required_by, resolution)
            expand.extend(leaves)

            next_frontier: "OrderedDict[str, None]" = OrderedDict()
            leaves = []
            for node in expand:
                for dep in node.record.all_depends():
                    target = graph.node_by_name(dep)
                    if target is not None:
                        graph.add_edge(node.id, target.id)
                        continue

                    if options.skip_installed and dep in self.local:
                        continue

                    if dep in self.sync:
                        leaf, created = graph.add_node(self.sync[dep], remote=False)
                        graph.add_edge(node.id, leaf.id)
                        if created and not options.truncate:
                            leaves.append(leaf)
                        continue

                    # Mirror packages are satisfied by the package manager,
                    # their dependencies are never looked up in the registry.
                    if not node.remote:
                        continue

                    if dep in unresolved:
                        required_by[dep].add(node.name)
                        continue

                    pending.setdefault(dep, []).append(node.id)
                    next_frontier[dep] = None

            frontier = list(next_frontier)

        order = graph.build_order(roots)
        resolution.build_order = [n.name for n in order]
        resolution.remote_order = [n.name for n in order if n.remote]
        resolution.unresolved = sorted(unresolved)
        resolution.required_by = {
            name: sorted(required_by[name]) for name in resolution.unresolved
        }

        logger.debug(
            f"Resolved {len(graph)} package(s) with {resolution.registry_calls} "
            f"registry call(s), {len(unresolved)} unresolved"
        )
        return resolution

    def _fetch(
        self,
        graph: DependencyGraph,
        frontier: List[str],
        pending: Dict[str, List[int]],
        unresolved: Set[str],
        required_by: Dict[str, Set[str]],
        resolution: Resolution,
    ) -> List[Node]:
        """Query the registry for the frontier and register what it returns.

        Returns:
            The newly created nodes, whose dependencies still need expanding
        """
        wanted = [n for n in frontier if not graph.has_name(n)]
        for name in frontier:
            existing = graph.node_by_name(name)
            if existing is not None:
                for dependent in pending.pop(name, []):
                    graph.add_edge(dependent, existing.id)

        if not wanted:
            return []

        resolution.registry_calls += 1
        result = self.registry.query(wanted)

        created_nodes = []
        for name in wanted:
            record = result.packages.get(name)
            if record is None:
                unresolved.add(name)
                dependents = pending.pop(name, [])
                required_by.setdefault(name, set()).update(
                    graph.node(i).name for i in dependents
                )
                logger.debug(f"Package {name} not found in registry")
                continue

            node, created = graph.add_node(record, remote=True)
            for dependent in pending.pop(name, []):
                graph.add_edge(dependent, node.id)
            if created:
                created_nodes.append(node)

        return created_nodes
