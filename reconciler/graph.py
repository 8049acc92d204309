"""
Dependency graph
Ordering between resources comes only from depends_on and references
"""

import heapq
from typing import Dict, Iterable, List, Set

from .errors import CycleError, UnknownReferenceError
from .resources import ResourceSpec


class DependencyGraph:
    """Directed graph where an edge A -> B means A depends on B"""

    def __init__(self):
        self._dependencies: Dict[str, Set[str]] = {}
        self._dependents: Dict[str, Set[str]] = {}

    @classmethod
    def from_specs(cls, specs: Dict[str, ResourceSpec]) -> "DependencyGraph":
        """Build the graph for declared resources, rejecting unknown references"""
        graph = cls()
        for address in specs:
            graph.add_node(address)
        for address, spec in specs.items():
            for dependency in spec.dependencies():
                if dependency not in specs:
                    raise UnknownReferenceError(address, dependency)
                graph.add_edge(address, dependency)
        graph.check_acyclic()
        return graph

    @classmethod
    def from_edges(cls, edges: Dict[str, Iterable[str]]) -> "DependencyGraph":
        """Build a graph from recorded dependencies; unknown targets are ignored"""
        graph = cls()
        for address in edges:
            graph.add_node(address)
        for address, dependencies in edges.items():
            for dependency in dependencies:
                if dependency in edges:
                    graph.add_edge(address, dependency)
        return graph

    def add_node(self, address: str) -> None:
        self._dependencies.setdefault(address, set())
        self._dependents.setdefault(address, set())

    def add_edge(self, address: str, dependency: str) -> None:
        self.add_node(address)
        self.add_node(dependency)
        self._dependencies[address].add(dependency)
        self._dependents[dependency].add(address)

    @property
    def nodes(self) -> List[str]:
        return sorted(self._dependencies)

    def dependencies(self, address: str) -> Set[str]:
        return set(self._dependencies.get(address, ()))

    def dependents(self, address: str) -> Set[str]:
        return set(self._dependents.get(address, ()))

    def transitive_dependents(self, address: str) -> Set[str]:
        seen: Set[str] = set()
        stack = list(self._dependents.get(address, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependents.get(current, ()))
        return seen

    def check_acyclic(self) -> None:
        """Raise CycleError naming the first cycle found"""
        visiting: Set[str] = set()
        done: Set[str] = set()
        path: List[str] = []

        def visit(node: str) -> None:
            visiting.add(node)
            path.append(node)
            for dependency in sorted(self._dependencies[node]):
                if dependency in visiting:
                    start = path.index(dependency)
                    raise CycleError(path[start:] + [dependency])
                if dependency not in done:
                    visit(dependency)
            path.pop()
            visiting.discard(node)
            done.add(node)

        for node in self.nodes:
            if node not in done:
                visit(node)

    def topological_order(self) -> List[str]:
        """Dependencies first; ties broken alphabetically so plans are stable"""
        remaining = {node: len(deps) for node, deps in self._dependencies.items()}
        ready = [node for node, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        order = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for dependent in self._dependents[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, dependent)
        if len(order) != len(remaining):
            self.check_acyclic()
        return order

