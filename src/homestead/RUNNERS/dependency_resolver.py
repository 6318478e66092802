"""
Dependency resolution for services to determine startup and shutdown order.
"""
import heapq
from typing import Dict, List, Optional, Set
from ..MODELS.service_catalog import ServiceCatalog
from ..errors import ConfigError


class DependencyResolver:
    """
    Orders services so that every service comes after its dependencies.
    Ties are broken by declaration order, so the result is deterministic.
    """
    @staticmethod
    def graph_of(catalog: ServiceCatalog) -> Dict[str, List[str]]:
        return {name: list(svc.depends_on) for name, svc in catalog.services.items()}

    def resolve_order(self, catalog: ServiceCatalog) -> List[str]:
        """
        Determines the order to start the catalog's services.

        :param catalog: The service catalog.
        :return: Service names in the order they should be started.
        :raises ConfigError: On an undeclared dependency or a cycle.
        """
        graph = self.graph_of(catalog)
        self.check_declared(graph)
        return self.order(graph)

    def check_declared(self, graph: Dict[str, List[str]]) -> None:
        for name, deps in graph.items():
            for dep in deps:
                if dep not in graph:
                    raise ConfigError(f"depends on undeclared service '{dep}'", service=name, field="depends_on")

    def order(self, graph: Dict[str, List[str]], strict: bool = True) -> List[str]:
        """
        Topologically sorts ``graph`` (name -> dependencies) using Kahn's
        algorithm, always taking the earliest declared ready node next.

        :param graph: Dependency lists keyed by name, in declaration order.
        :param strict: Raise on a cycle. When False, dependencies outside the
            graph are ignored and nodes stuck in a cycle are appended in
            declaration order.
        :return: Names in dependency order.
        :raises ConfigError: If ``strict`` and a cycle is detected.
        """
        position = {name: idx for idx, name in enumerate(graph)}
        remaining = {name: {d for d in deps if d in graph} for name, deps in graph.items()}
        dependents: Dict[str, List[str]] = {name: [] for name in graph}
        for name, deps in remaining.items():
            for dep in deps:
                dependents[dep].append(name)

        ready = [position[name] for name, deps in remaining.items() if not deps]
        heapq.heapify(ready)
        names = list(graph)
        ordered = []
        while ready:
            name = names[heapq.heappop(ready)]
            ordered.append(name)
            for child in dependents[name]:
                remaining[child].discard(name)
                if not remaining[child]:
                    heapq.heappush(ready, position[child])

        if len(ordered) != len(graph):
            if strict:
                cycle = self.find_cycle(graph) or [n for n in names if n not in ordered]
                raise ConfigError(
                    f"circular dependency detected: {' -> '.join(cycle)}",
                    service=cycle[0],
                    field="depends_on",
                )
            ordered.extend(n for n in names if n not in ordered)
        return ordered

    def find_cycle(self, graph: Dict[str, List[str]]) -> Optional[List[str]]:
        """
        Returns one dependency cycle as a path whose first and last entries
        are the same service, or None when the graph is acyclic.
        """
        visited: Set[str] = set()
        stack: List[str] = []
        on_stack: Set[str] = set()

        def visit(name):
            visited.add(name)
            stack.append(name)
            on_stack.add(name)
            for dep in graph.get(name, []):
                if dep not in graph:
                    continue
                if dep in on_stack:
                    return stack[stack.index(dep):] + [dep]
                if dep not in visited:
                    found = visit(dep)
                    if found:
                        return found
            stack.pop()
            on_stack.discard(name)
            return None

        for name in graph:
            if name not in visited:
                found = visit(name)
                if found:
                    return found
        return None

    @staticmethod
    def dependents_of(graph: Dict[str, List[str]], name: str) -> Set[str]:
        """
        Returns every service that depends on ``name``, directly or transitively.
        """
        reverse: Dict[str, List[str]] = {}
        for svc, deps in graph.items():
            for dep in deps:
                reverse.setdefault(dep, []).append(svc)

        found: Set[str] = set()
        pending = list(reverse.get(name, []))
        while pending:
            svc = pending.pop()
            if svc in found:
                continue
            found.add(svc)
            pending.extend(reverse.get(svc, []))
        return found
