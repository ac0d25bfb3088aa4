"""Publish ordering of a package set.

Kahn's algorithm over in-set edges. Ready packages are taken in discovery
order, so identical input always yields the identical plan.
"""

from __future__ import annotations

import heapq
import logging
from typing import Mapping

from .errors import CycleError
from .models import Package

logger = logging.getLogger(__name__)


def dependency_graph(packages: Mapping[str, Package]) -> dict[str, tuple[str, ...]]:
    """Map each package to the in-set packages it must be published after.

    Dependencies on names outside the set are assumed to be satisfied by the
    registry already and are left out.
    """
    graph: dict[str, tuple[str, ...]] = {}
    for name, package in packages.items():
        deps: list[str] = []
        for dep in package.ordering_dependencies():
            if dep.name not in packages:
                logger.debug("%s: dependency %s is outside the workspace, not ordered", name, dep.name)
                continue
            if dep.name not in deps:
                deps.append(dep.name)
        graph[name] = tuple(deps)
    return graph


def sort(packages: Mapping[str, Package]) -> tuple[str, ...]:
    """Return package names so that every package follows its in-set dependencies.

    Raises:
        CycleError: if the in-set graph has a cycle. All packages that could
            not be ordered are reported, in discovery order.
    """
    position = {name: index for index, name in enumerate(packages)}
    graph = dependency_graph(packages)

    in_degree = {name: len(deps) for name, deps in graph.items()}
    dependents: dict[str, list[str]] = {name: [] for name in graph}
    for name, deps in graph.items():
        for dep in deps:
            dependents[dep].append(name)

    ready = [position[name] for name, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    names = list(packages)
    order: list[str] = []
    while ready:
        name = names[heapq.heappop(ready)]
        order.append(name)
        for dependent in dependents[name]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, position[dependent])

    if len(order) != len(names):
        done = set(order)
        raise CycleError([name for name in names if name not in done])
    return tuple(order)


__all__ = ["dependency_graph", "sort"]
