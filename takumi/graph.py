"""Dependency graph with level-based topological sorting and cycle detection."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field


class CycleError(ValueError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, nodes: list[str]) -> None:
        self.nodes = list(nodes)
        super().__init__(
            f"dependency cycle detected involving: [{' '.join(self.nodes)}]"
        )


@dataclass
class Level:
    """A group of packages with no interdependencies, buildable in parallel."""

    index: int
    packages: list[str] = field(default_factory=list)


class Graph:
    """A directed graph mapping each node to the nodes it depends on."""

    def __init__(self) -> None:
        self._nodes: dict[str, list[str]] = {}

    def add_node(self, name: str, deps: Iterable[str] | None = None) -> None:
        """Register a node with its dependencies.

        Dependencies that are not registered as nodes are ignored when sorting.
        """
        self._nodes[name] = list(deps or [])

    def nodes(self) -> list[str]:
        """Return all registered node names."""
        return list(self._nodes)

    def deps_of(self, name: str) -> list[str]:
        """Return the direct dependencies of a node (empty if unknown)."""
        return list(self._nodes.get(name, []))

    def dependents(self, name: str) -> list[str]:
        """Return all nodes that directly depend on ``name``."""
        return [node for node, deps in self._nodes.items() if name in deps]

    def sort(self) -> list[Level]:
        """Order nodes into levels using Kahn's algorithm.

        If A depends on B, B appears in an earlier level than A.
        Raises CycleError when not every node can be placed.
        """
        in_degree = {
            name: sum(1 for d in deps if d in self._nodes)
            for name, deps in self._nodes.items()
        }
        queue = [name for name, degree in in_degree.items() if degree == 0]

        levels: list[Level] = []
        processed = 0
        while queue:
            levels.append(Level(index=len(levels), packages=queue))
            processed += len(queue)

            next_queue: list[str] = []
            for done in queue:
                for name, deps in self._nodes.items():
                    if in_degree[name] <= 0:
                        continue
                    if done in deps:
                        in_degree[name] -= 1
                        if in_degree[name] == 0:
                            next_queue.append(name)
            queue = next_queue

        if processed < len(self._nodes):
            raise CycleError([name for name, degree in in_degree.items() if degree > 0])
        return levels

    def flatten(self) -> list[str]:
        """Return every node in build order."""
        return [name for level in self.sort() for name in level.packages]

    def transitive_dependents(self, name: str) -> list[str]:
        """Return every node that depends on ``name`` directly or indirectly."""
        visited = {name}
        queue = deque([name])
        result: list[str] = []
        while queue:
            current = queue.popleft()
            for dependent in self.dependents(current):
                if dependent not in visited:
                    visited.add(dependent)
                    result.append(dependent)
                    queue.append(dependent)
        return result