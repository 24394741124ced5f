"""Dependency graph over resolved elements.

An edge a -> b means b must be constructed before a. The construction
order is a topological order that, among the nodes ready at each step,
picks the one that completes first in the document. With no forward
references that is exactly document completion order.
"""

from __future__ import annotations

import heapq


class Cycle:
    """A dependency cycle, each node listed once in cycle order."""

    def __init__(self, nodes: list[str]):
        self.nodes: list[str] = nodes

    def __repr__(self) -> str:
        return "Cycle(" + " -> ".join(self.nodes) + ")"


class DependencyGraph:
    def __init__(self) -> None:
        self.keys: list[str] = []
        self.priority: dict[str, int] = {}
        self.edges: dict[str, set[str]] = {}

    def add_node(self, key: str, priority: int) -> None:
        if key in self.priority:
            return
        self.keys.append(key)
        self.priority[key] = priority
        self.edges[key] = set()

    def add_edge(self, dependent: str, dependency: str) -> None:
        """dependency must come before dependent."""
        if dependent in self.edges and dependency in self.edges:
            self.edges[dependent].add(dependency)

    def dependencies(self, key: str) -> set[str]:
        return self.edges.get(key, set())

    def order(self) -> tuple[list[str], list[Cycle]]:
        """Kahn's algorithm. Returns the order and any cycles found."""
        pending: dict[str, int] = {}
        dependents: dict[str, list[str]] = {k: [] for k in self.keys}
        for key in self.keys:
            pending[key] = len(self.edges[key])
            for dep in self.edges[key]:
                dependents[dep].append(key)
        ready: list[tuple[int, str]] = []
        for key in self.keys:
            if pending[key] == 0:
                heapq.heappush(ready, (self.priority[key], key))
        result: list[str] = []
        while ready:
            _, key = heapq.heappop(ready)
            result.append(key)
            for dependent in dependents[key]:
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    heapq.heappush(ready, (self.priority[dependent], dependent))
        if len(result) == len(self.keys):
            return result, []
        done = set(result)
        remaining = [k for k in self.keys if k not in done]
        return result, self._cycles(remaining)

    def _cycles(self, remaining: list[str]) -> list[Cycle]:
        """One cycle per strongly connected component that has one."""
        members = set(remaining)
        sub = {k: {d for d in self.edges[k] if d in members} for k in remaining}
        cycles: list[Cycle] = []
        for scc in _compute_sccs(remaining, sub):
            if len(scc) == 1 and scc[0] not in sub[scc[0]]:
                continue
            start = min(scc, key=lambda k: self.priority[k])
            cycles.append(Cycle(self._cycle_from(start, set(scc), sub)))
        cycles.sort(key=lambda c: self.priority[c.nodes[0]])
        return cycles

    def _cycle_from(self, start: str, scc: set[str], sub: dict[str, set[str]]) -> list[str]:
        """Shortest path from start back to itself inside one component."""
        parent: dict[str, str] = {}
        frontier = [start]
        while frontier:
            nxt: list[str] = []
            for node in frontier:
                for dep in sorted(sub[node], key=lambda k: self.priority[k]):
                    if dep not in scc:
                        continue
                    if dep == start:
                        path = [node]
                        while path[-1] != start:
                            path.append(parent[path[-1]])
                        path.reverse()
                        return path
                    if dep not in parent:
                        parent[dep] = node
                        nxt.append(dep)
            frontier = nxt
        return [start]


class _TarjanState:
    """Mutable state for Tarjan's SCC algorithm."""

    def __init__(self, edges: dict[str, set[str]]) -> None:
        self.edges = edges
        self.index: int = 0
        self.stack: list[str] = []
        self.on_stack: set[str] = set()
        self.indices: dict[str, int] = {}
        self.lowlinks: dict[str, int] = {}
        self.result: list[list[str]] = []


def _strongconnect(v: str, st: _TarjanState) -> None:
    st.indices[v] = st.index
    st.lowlinks[v] = st.index
    st.index += 1
    st.stack.append(v)
    st.on_stack.add(v)
    for w in sorted(st.edges.get(v, set())):
        if w not in st.indices:
            _strongconnect(w, st)
            st.lowlinks[v] = min(st.lowlinks[v], st.lowlinks[w])
        elif w in st.on_stack:
            st.lowlinks[v] = min(st.lowlinks[v], st.indices[w])
    if st.lowlinks[v] == st.indices[v]:
        scc: list[str] = []
        while True:
            w = st.stack.pop()
            st.on_stack.discard(w)
            scc.append(w)
            if w == v:
                break
        st.result.append(scc)


def _compute_sccs(keys: list[str], edges: dict[str, set[str]]) -> list[list[str]]:
    """Tarjan's SCC algorithm. Returns SCCs in reverse topological order."""
    st = _TarjanState(edges)
    for v in keys:
        if v not in st.indices:
            _strongconnect(v, st)
    return st.result
