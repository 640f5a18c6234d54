"""Dependency graph of packages.

Nodes are referenced by integer ids; edges are stored as adjacency lists
of ids, never as references between nodes. A node is registered under
its package name exactly once and the first registration wins, which
keeps cyclic dependency data finite.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..formats.base import PackageRecord


@dataclass
class Node:
    """A package in the dependency graph.

    Remote nodes have to be fetched and built from the registry. Other
    nodes are satisfiable from a mirror and are leaves of the build.
    """

    id: int
    record: PackageRecord
    remote: bool = True

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def version(self) -> str:
        return self.record.version


class DependencyGraph:
    """Directed graph from packages to their dependencies."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids: Dict[str, int] = {}
        self._nodes: Dict[int, Node] = {}
        self._edges: Dict[int, List[int]] = {}
        self._reverse: Dict[int, List[int]] = {}
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, name: str) -> bool:
        return name in self._ids

    def has_name(self, name: str) -> bool:
        return name in self._ids

    def add_node(self, record: PackageRecord, remote: bool = True) -> Tuple[Node, bool]:
        """Register a package under its name.

        If the name is already registered, the existing node is returned
        and the record is discarded.

        Args:
            record: Package record
            remote: Whether the package comes from the registry

        Returns:
            Tuple of (node, created)
        """
        with self._lock:
            existing = self._ids.get(record.name)
            if existing is not None:
                return self._nodes[existing], False

            node = Node(id=self._next_id, record=record, remote=remote)
            self._next_id += 1
            self._ids[record.name] = node.id
            self._nodes[node.id] = node
            self._edges[node.id] = []
            self._reverse[node.id] = []
            return node, True

    def add_edge(self, from_id: int, to_id: int) -> None:
        """Record that node from_id depends on node to_id."""
        if from_id == to_id:
            return
        with self._lock:
            if to_id not in self._edges[from_id]:
                self._edges[from_id].append(to_id)
                self._reverse[to_id].append(from_id)

    def node(self, node_id: int) -> Node:
        return self._nodes[node_id]

    def node_by_name(self, name: str) -> Optional[Node]:
        node_id = self._ids.get(name)
        return None if node_id is None else self._nodes[node_id]

    def nodes(self) -> List[Node]:
        """All nodes in registration order."""
        return list(self._nodes.values())

    def dependencies(self, node_id: int) -> List[Node]:
        """Nodes the given node depends on."""
        return [self._nodes[i] for i in self._edges[node_id]]

    def dependents(self, node_id: int) -> List[Node]:
        """Nodes depending on the given node."""
        return [self._nodes[i] for i in self._reverse[node_id]]

    def has_edge(self, from_name: str, to_name: str) -> bool:
        if from_name not in self._ids or to_name not in self._ids:
            return False
        return self._ids[to_name] in self._edges[self._ids[from_name]]

    def roots(self) -> List[Node]:
        """Nodes no other node depends on, in registration order."""
        return [n for n in self._nodes.values() if not self._reverse[n.id]]

    def build_order(self, roots: Optional[Iterable[str]] = None) -> List[Node]:
        """Order the nodes so that dependencies come before dependents.

        Every node reachable from a root is visited depth first and
        emitted after all of its dependencies. Nodes not reachable from
        the given roots, such as members of a cycle nobody else depends
        on, are emitted afterwards. Within a cycle the order is only
        guaranteed to list each member once.

        Args:
            roots: Names to start from; defaults to the graph's roots

        Returns:
            Every node exactly once
        """
        if roots is None:
            start = [n.id for n in self.roots()]
        else:
            start = [self._ids[name] for name in roots if name in self._ids]

        order: List[Node] = []
        visited: Set[int] = set()
        for node_id in start + list(self._nodes):
            if node_id not in visited:
                self._visit(node_id, visited, order)
        return order

    def _visit(self, root: int, visited: Set[int], order: List[Node]) -> None:
        visited.add(root)
        stack = [(root, iter(self._edges[root]))]
        while stack:
            node_id, deps = stack[-1]
            for dep in deps:
                if dep not in visited:
                    visited.add(dep)
                    stack.append((dep, iter(self._edges[dep])))
                    break
            else:
                stack.pop()
                order.append(self._nodes[node_id])
