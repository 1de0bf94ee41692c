"""Validation and dependency ordering of task registrations."""

from __future__ import annotations

import heapq
import logging
from collections import defaultdict
from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING

from pipewright.artifacts.reference import ArtifactReference
from pipewright.errors import TaskDependencyError

if TYPE_CHECKING:
    from pipewright.pipeline import TaskRegistration

logger = logging.getLogger(__name__)


def capabilities(registration: TaskRegistration) -> frozenset[str]:
    """Identifiers other tasks may use to depend on this registration."""

    task = registration.task
    return frozenset(task.kinds) | {task.name}


class Scheduler:
    """Turns registrations into an execution order safe to run left to right.

    A registration runs after every task providing a capability it requires and
    after the producer of every artifact it consumes. Optional capabilities only
    order tasks when honoring them does not close a cycle. Unrelated tasks keep
    their registration order.
    """

    def __init__(
        self,
        registrations: Sequence[TaskRegistration],
        *,
        has_artifact_manager: bool = True,
    ) -> None:
        self.registrations = list(registrations)
        self.has_artifact_manager = has_artifact_manager

    def validate(self) -> None:
        """Raise one ``TaskDependencyError`` listing every violation found."""

        providers = self._providers()
        producers = self._producers()
        problems: list[str] = []

        missing_tasks: list[tuple[str, str]] = []
        for index, registration in enumerate(self.registrations):
            task_name = registration.task.name
            for capability in sorted(registration.task.required_tasks):
                if not [other for other in providers.get(capability, []) if other != index]:
                    missing_tasks.append((task_name, capability))
                    problems.append(
                        f"Task {task_name} requires task {capability!r}"
                        " but no registered task provides it"
                    )

        missing_artifacts: list[tuple[str, str]] = []
        for registration in self.registrations:
            task_name = registration.task.name
            for reference in sorted(registration.task.required_artifacts, key=str):
                if reference not in producers:
                    missing_artifacts.append((task_name, reference.identifier))
                    problems.append(
                        f"Task {task_name} requires artifact {reference.identifier}"
                        " but no registered task produces it"
                    )

        conflicts: list[tuple[str, list[str]]] = []
        for reference, indexes in producers.items():
            if len(indexes) > 1:
                names = [self.registrations[index].task.name for index in indexes]
                conflicts.append((reference.identifier, names))
                problems.append(
                    f"Artifact {reference.identifier} is produced by more than one task:"
                    f" {', '.join(names)}"
                )

        if not self.has_artifact_manager:
            for registration in self.registrations:
                bound = registration.bound_artifacts
                if bound:
                    identifiers = ", ".join(reference.identifier for reference in bound)
                    problems.append(
                        f"Task {registration.task.name} binds artifacts ({identifiers})"
                        " but the pipeline has no artifact manager"
                    )

        cycles = self._cycles(self._hard_edges(providers, producers))
        problems.extend(f"Dependency cycle: {' -> '.join(cycle)}" for cycle in cycles)

        if problems:
            raise TaskDependencyError(
                "Pipeline validation failed:\n" + "\n".join(f" * {line}" for line in problems),
                missing_tasks=missing_tasks,
                missing_artifacts=missing_artifacts,
                conflicts=conflicts,
                cycles=cycles,
            )

    def order(self) -> list[TaskRegistration]:
        """Return registrations in dependency order, registration order breaking ties."""

        providers = self._providers()
        producers = self._producers()
        edges = self._hard_edges(providers, producers)
        cycles = self._cycles(edges)
        if cycles:
            raise TaskDependencyError(
                "Dependency cycle: " + "; ".join(" -> ".join(cycle) for cycle in cycles),
                cycles=cycles,
            )
        for before, after in self._soft_edges(providers):
            if after in edges[before]:
                continue
            if self._reachable(edges, after, before):
                logger.debug(
                    "Ignoring optional dependency of %s on %s: it would close a cycle",
                    self.registrations[after].task.name,
                    self.registrations[before].task.name,
                )
                continue
            edges[before].add(after)

        indegree = [0] * len(self.registrations)
        for successors in edges.values():
            for successor in successors:
                indegree[successor] += 1
        ready = [index for index, degree in enumerate(indegree) if degree == 0]
        heapq.heapify(ready)

        ordered: list[TaskRegistration] = []
        while ready:
            current = heapq.heappop(ready)
            ordered.append(self.registrations[current])
            for successor in edges[current]:
                indegree[successor] -= 1
                if indegree[successor] == 0:
                    heapq.heappush(ready, successor)
        return ordered

    def _providers(self) -> dict[str, list[int]]:
        providers: dict[str, list[int]] = defaultdict(list)
        for index, registration in enumerate(self.registrations):
            for capability in capabilities(registration):
                providers[capability].append(index)
        return providers

    def _producers(self) -> dict[ArtifactReference, list[int]]:
        producers: dict[ArtifactReference, list[int]] = {}
        for index, registration in enumerate(self.registrations):
            for reference in registration.produced_artifacts:
                producers.setdefault(reference, []).append(index)
        return producers

    def _hard_edges(
        self,
        providers: dict[str, list[int]],
        producers: dict[ArtifactReference, list[int]],
    ) -> dict[int, set[int]]:
        edges: dict[int, set[int]] = {index: set() for index in range(len(self.registrations))}
        for index, registration in enumerate(self.registrations):
            task = registration.task
            for capability in task.required_tasks:
                for provider in providers.get(capability, []):
                    if provider != index:
                        edges[provider].add(index)
            consumed = set(task.required_artifacts) | set(registration.consumed_artifacts)
            for reference in consumed:
                for producer in producers.get(reference, []):
                    if producer != index:
                        edges[producer].add(index)
        return edges

    def _soft_edges(self, providers: dict[str, list[int]]) -> list[tuple[int, int]]:
        soft: list[tuple[int, int]] = []
        for index, registration in enumerate(self.registrations):
            for capability in sorted(registration.task.optional_tasks):
                soft.extend(
                    (provider, index)
                    for provider in providers.get(capability, [])
                    if provider != index
                )
        return soft

    @staticmethod
    def _reachable(edges: dict[int, set[int]], start: int, goal: int) -> bool:
        stack = [start]
        seen = {start}
        while stack:
            current = stack.pop()
            if current == goal:
                return True
            for successor in edges[current]:
                if successor not in seen:
                    seen.add(successor)
                    stack.append(successor)
        return False

    def _cycles(self, edges: dict[int, set[int]]) -> list[list[str]]:
        """Strongly connected groups of more than one task, named in registration order."""

        counter = 0
        index_of: dict[int, int] = {}
        lowlink: dict[int, int] = {}
        stack: list[int] = []
        on_stack: set[int] = set()
        groups: list[list[int]] = []

        def visit(node: int) -> Iterator[int]:
            nonlocal counter
            index_of[node] = lowlink[node] = counter
            counter += 1
            stack.append(node)
            on_stack.add(node)
            return iter(sorted(edges[node]))

        for root in range(len(self.registrations)):
            if root in index_of:
                continue
            # Explicit work stack; chains may be longer than the recursion limit.
            work: list[tuple[int, Iterator[int]]] = [(root, visit(root))]
            while work:
                node, successors = work[-1]
                descended = False
                for successor in successors:
                    if successor not in index_of:
                        work.append((successor, visit(successor)))
                        descended = True
                        break
                    if successor in on_stack:
                        lowlink[node] = min(lowlink[node], index_of[successor])
                if descended:
                    continue

                work.pop()
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node])
                if lowlink[node] == index_of[node]:
                    group: list[int] = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        group.append(member)
                        if member == node:
                            break
                    if len(group) > 1:
                        groups.append(sorted(group))

        groups.sort()
        return [[self.registrations[member].task.name for member in group] for group in groups]
