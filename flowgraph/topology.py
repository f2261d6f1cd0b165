import logging
from typing import TYPE_CHECKING

import networkx as nx
from networkx import generate_network_text

from .exceptions import (
    CyclicFlowError,
    DuplicateStepError,
    FlowValidationError,
    InvalidInputSourceError,
    MissingDependencyError,
)

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable

    from networkx import DiGraph

    from .step import Step

logger = logging.getLogger(__name__)

Wave = frozenset[str]

_WHITE, _GRAY, _BLACK = 0, 1, 2


class Topology:
    def __init__(
        self, *, digraph: "DiGraph", order: list[str], waves: list[Wave]
    ) -> None:
        self.digraph = digraph
        self.order = order
        self.waves = waves

    def dependencies(self, step_id: str) -> set[str]:
        """Every step that must finish before `step_id`, directly or transitively."""
        return nx.ancestors(self.digraph, step_id)

    def __str__(self) -> str:
        return "\n".join(generate_network_text(self.digraph, vertical_chains=True))


class DependencyResolver:
    """
    Validates the dependency graph of a set of steps and groups them into waves.

    Edges point from a dependency to the step that depends on it. Steps keep their
    declaration order wherever the graph leaves the order open, so the same
    definition always resolves to the same order and waves.
    """

    def __init__(self, steps: "Iterable[Step]") -> None:
        self.steps: dict[str, "Step"] = {}
        for step in steps:
            if step.id in self.steps:
                raise DuplicateStepError(step.id)

            self.steps[step.id] = step

        self._position = {step_id: i for i, step_id in enumerate(self.steps)}

        self.digraph = nx.DiGraph()
        self.digraph.add_nodes_from(self.steps)

        for step in self.steps.values():
            for dependency_id in sorted(step.depends_on, key=self._sort_key):
                if dependency_id not in self.steps:
                    raise MissingDependencyError(dependency_id, step.id)

                self.digraph.add_edge(dependency_id, step.id)

        self._acyclic = False

    def _sort_key(self, step_id: str) -> tuple[int, str]:
        # unknown ids sort last so the first missing dependency is reported
        return (self._position.get(step_id, len(self._position)), step_id)

    def detect_cycles(self) -> None:
        """
        Depth-first search with three-color marking over an explicit stack. Reaching
        a gray node means the current path loops back onto itself.
        """
        if self._acyclic:
            return

        color = dict.fromkeys(self.steps, _WHITE)

        for root in self.steps:
            if color[root] != _WHITE:
                continue

            color[root] = _GRAY
            path: list[str] = [root]
            stack = [iter(self.digraph.successors(root))]

            while stack:
                for child in stack[-1]:
                    if color[child] == _GRAY:
                        cycle = [*path[path.index(child) :], child]
                        raise CyclicFlowError(cycle)

                    if color[child] == _WHITE:
                        color[child] = _GRAY
                        path.append(child)
                        stack.append(iter(self.digraph.successors(child)))
                        break
                else:
                    color[path.pop()] = _BLACK
                    stack.pop()

        self._acyclic = True

    def topological_sort(self) -> list[str]:
        """Every step appears after all of its dependencies."""
        self.detect_cycles()
        return list(
            nx.lexicographical_topological_sort(self.digraph, key=self._sort_key)
        )

    def resolve(self) -> list[Wave]:
        """
        Peel the graph into waves: wave 0 holds the steps without dependencies, wave k
        the remaining steps whose dependencies all sit in waves 0..k-1.
        """
        order = self.topological_sort()
        waves: list[Wave] = []
        assigned: set[str] = set()

        while len(assigned) < len(order):
            wave = frozenset(
                step_id
                for step_id in order
                if step_id not in assigned
                and self.steps[step_id].depends_on <= assigned
            )
            if not wave:
                raise FlowValidationError("Unable to determine execution waves.")

            waves.append(wave)
            assigned |= wave

        logger.debug("resolved %d steps into %d waves", len(order), len(waves))
        return waves

    group_into_waves = resolve

    def validate_input_sources(self, topology: Topology) -> None:
        """Steps may only read outputs that are guaranteed final when they start."""
        for step in self.steps.values():
            if not step.source_step_ids:
                continue

            ancestors = topology.dependencies(step.id)
            for source_id in step.source_step_ids:
                if source_id not in self.steps:
                    raise MissingDependencyError(source_id, step.id)
                elif source_id not in ancestors:
                    raise InvalidInputSourceError(source_id, step.id)

    def topology(self) -> Topology:
        order = self.topological_sort()
        waves = self.resolve()
        topology = Topology(digraph=self.digraph, order=order, waves=waves)
        self.validate_input_sources(topology)
        return topology
