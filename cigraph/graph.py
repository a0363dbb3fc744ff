"""Dependency graph construction.

`build_graph` closes the requested step set over its requirements, pulling in
implicit producers where needed, and derives the `(before, after)` edge set.
It performs no I/O; every structural problem is a ConfigurationError raised
before anything runs.
"""
from __future__ import annotations

import hashlib
import json
import logging
from collections import deque
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from .errors import CyclicDependencyError, DuplicateProviderError, UnsatisfiableDependencyError
from .link import StepLink, all_steps_link
from .step import Step


logger = logging.getLogger(__name__)

Edge = Tuple[str, str]


class StepGraph:
    """A closed, acyclic set of steps plus the edges between them."""

    def __init__(self, steps: Sequence[Step], edges: Iterable[Edge]) -> None:
        self.steps: Tuple[Step, ...] = tuple(steps)
        self.edges: FrozenSet[Edge] = frozenset(edges)
        self.by_name: Dict[str, Step] = {s.name: s for s in self.steps}
        self._deps: Dict[str, Set[str]] = {s.name: set() for s in self.steps}
        self._dependents: Dict[str, Set[str]] = {s.name: set() for s in self.steps}
        for before, after in self.edges:
            self._deps[after].add(before)
            self._dependents[before].add(after)

    def __len__(self) -> int:
        return len(self.steps)

    def __contains__(self, name: object) -> bool:
        return name in self.by_name

    def dependencies(self, name: str) -> Set[str]:
        return set(self._deps[name])

    def dependents(self, name: str) -> Set[str]:
        return set(self._dependents[name])

    def topological_order(self) -> List[Step]:
        """Steps in an order respecting every edge; ties keep declaration order."""
        position = {s.name: i for i, s in enumerate(self.steps)}
        indeg = {name: len(deps) for name, deps in self._deps.items()}
        ready = deque(s.name for s in self.steps if indeg[s.name] == 0)
        order: List[Step] = []
        while ready:
            name = ready.popleft()
            order.append(self.by_name[name])
            for child in sorted(self._dependents[name], key=position.__getitem__):
                indeg[child] -= 1
                if indeg[child] == 0:
                    ready.append(child)
        return order

    def input_digest(self) -> str:
        """Stable hash of all steps' external inputs."""
        inputs = {s.name: sorted(s.inputs() or []) for s in self.steps}
        payload = json.dumps(inputs, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _index(steps: Iterable[Step], into: Optional[Dict[StepLink, Step]] = None) -> Dict[StepLink, Step]:
    index: Dict[StepLink, Step] = into if into is not None else {}
    for step in steps:
        for link in step.creates():
            other = index.get(link)
            if other is not None and other is not step:
                raise DuplicateProviderError(str(link), other.name, step.name)
            index[link] = step
    return index


def build_graph(requested: Sequence[Step], implicit: Sequence[Step] = ()) -> StepGraph:
    """Resolve `requested` plus the implicit steps it transitively needs.

    Raises:
        DuplicateProviderError: two steps share a name or create the same link.
        UnsatisfiableDependencyError: a requirement has no possible producer.
        CyclicDependencyError: the resulting edge set contains a cycle.
    """
    steps: List[Step] = []
    names: Dict[str, Step] = {}
    for step in requested:
        if step.name in names:
            raise DuplicateProviderError(f"step name {step.name!r}", names[step.name].name, step.name)
        names[step.name] = step
        steps.append(step)

    producers = _index(steps)
    optional = _index(s for s in implicit if s.name not in names)

    queue = deque(steps)
    while queue:
        step = queue.popleft()
        for link in step.requires():
            if link.is_wildcard or link in producers:
                continue
            candidate = optional.get(link)
            if candidate is None:
                raise UnsatisfiableDependencyError(step.name, str(link))
            logger.debug(f"Adding implicit step {candidate.name} to satisfy {link} for {step.name}")
            names[candidate.name] = candidate
            steps.append(candidate)
            _index([candidate], into=producers)
            queue.append(candidate)

    wildcard = all_steps_link()
    waits_for_all = {s.name for s in steps if wildcard in s.requires()}
    edges: Set[Edge] = set()
    for step in steps:
        for link in step.requires():
            if link.is_wildcard:
                edges.update((other.name, step.name) for other in steps if other.name not in waits_for_all)
            else:
                edges.add((producers[link].name, step.name))

    _check_acyclic([s.name for s in steps], edges)
    return StepGraph(steps, edges)


def _check_acyclic(names: List[str], edges: Set[Edge]) -> None:
    adjacency: Dict[str, List[str]] = {n: [] for n in names}
    for before, after in sorted(edges):
        adjacency[before].append(after)

    # Iterative DFS; `path` mirrors the stack of gray nodes.
    white, gray, black = 0, 1, 2
    color = {n: white for n in names}
    for root in names:
        if color[root] != white:
            continue
        color[root] = gray
        path: List[str] = [root]
        stack: List[Iterator[str]] = [iter(adjacency[root])]
        while stack:
            for nxt in stack[-1]:
                if color[nxt] == gray:
                    raise CyclicDependencyError(path[path.index(nxt):] + [nxt])
                if color[nxt] == white:
                    color[nxt] = gray
                    path.append(nxt)
                    stack.append(iter(adjacency[nxt]))
                    break
            else:
                color[path.pop()] = black
                stack.pop()
