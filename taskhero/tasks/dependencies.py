"""Dependency validation and repair for the task graph.

This module checks the dependency relation over all tasks and subtasks
(dependencies may cross nesting levels) for dangling references,
self-dependencies, duplicate entries and cycles, and repairs them while
reporting every edge it removes.
"""

from __future__ import annotations

import heapq
from enum import Enum
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from taskhero.core.config import CycleBreakStrategy
from taskhero.core.errors import CycleDetectedError, InvalidArgumentError
from taskhero.tasks.ids import id_sort_key, sort_ids

if TYPE_CHECKING:
    from taskhero.tasks.graph import TaskGraph


# =============================================================================
# RESULT MODELS
# =============================================================================


class ViolationKind(str, Enum):
    """Kind of dependency problem."""

    DANGLING_REFERENCE = "DanglingReference"
    SELF_DEPENDENCY = "SelfDependency"
    CYCLE = "Cycle"
    DUPLICATE_REFERENCE = "DuplicateReference"


class Violation(BaseModel):
    """A single dependency problem on one task."""

    model_config = ConfigDict(frozen=True)

    kind: ViolationKind = Field(description="Violation kind")
    task_id: str = Field(description="Task holding the offending dependency")
    dependency_id: str | None = Field(default=None, description="Offending dependency id")
    cycle: list[str] = Field(
        default_factory=list,
        description="Cycle path, first id repeated at the end",
    )

    @property
    def message(self) -> str:
        """Human-readable description."""
        if self.kind == ViolationKind.CYCLE:
            return f"Task {self.task_id} is part of a cycle: {' -> '.join(self.cycle)}"
        if self.kind == ViolationKind.SELF_DEPENDENCY:
            return f"Task {self.task_id} depends on itself"
        if self.kind == ViolationKind.DUPLICATE_REFERENCE:
            return f"Task {self.task_id} lists dependency {self.dependency_id} more than once"
        return f"Task {self.task_id} depends on missing task {self.dependency_id}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "taskId": self.task_id,
            "dependencyId": self.dependency_id,
            "message": self.message,
        }
        if self.cycle:
            data["cycle"] = list(self.cycle)
        return data


class FixChange(BaseModel):
    """One dependency edge removed by the fixer."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    dependency_id: str
    reason: ViolationKind
    cycle: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "taskId": self.task_id,
            "dependencyId": self.dependency_id,
            "reason": self.reason.value,
        }
        if self.cycle:
            data["cycle"] = list(self.cycle)
        return data


class FixSummary(BaseModel):
    """Everything ``fix`` changed, or would change in dry-run mode."""

    strategy: str
    dry_run: bool = False
    changes: list[FixChange] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    @property
    def changed_task_ids(self) -> list[str]:
        """Ids of tasks whose dependency list was (or would be) edited."""
        return sort_ids({c.task_id for c in self.changes})

    def count(self, reason: ViolationKind) -> int:
        return sum(1 for c in self.changes if c.reason == reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "dryRun": self.dry_run,
            "changedTaskIds": self.changed_task_ids,
            "changes": [c.to_dict() for c in self.changes],
        }


# =============================================================================
# GRAPH ALGORITHMS
# =============================================================================


def find_back_edges(graph: dict[str, list[str]]) -> list[tuple[str, str, list[str]]]:
    """
    Find every DFS back edge in the dependency graph.

    Roots and neighbours are visited in ascending id order, so the result
    is deterministic. Dependencies on ids that are not nodes, and
    self-loops, are ignored here; they are reported separately.

    Args:
        graph: Dependency graph (task_id -> [dependency_ids]).

    Returns:
        List of ``(source, target, cycle)`` where ``cycle`` runs from
        ``target`` along dependency edges back to ``target``.

    Example:
        >>> find_back_edges({"1": ["2"], "2": ["1"]})
        [('2', '1', ['1', '2', '1'])]
    """
    WHITE, GRAY, BLACK = 0, 1, 2
    colors: dict[str, int] = {node: WHITE for node in graph}
    ordered_deps = {
        node: sort_ids({d for d in deps if d in colors and d != node})
        for node, deps in graph.items()
    }
    back_edges: list[tuple[str, str, list[str]]] = []

    for root in sort_ids(graph):
        if colors[root] != WHITE:
            continue

        path: list[str] = [root]
        colors[root] = GRAY
        stack: list[tuple[str, int]] = [(root, 0)]

        while stack:
            node, index = stack[-1]
            neighbors = ordered_deps[node]
            if index == len(neighbors):
                stack.pop()
                path.pop()
                colors[node] = BLACK
                continue

            stack[-1] = (node, index + 1)
            neighbor = neighbors[index]
            if colors[neighbor] == GRAY:
                cycle_start = path.index(neighbor)
                back_edges.append((node, neighbor, path[cycle_start:] + [neighbor]))
            elif colors[neighbor] == WHITE:
                colors[neighbor] = GRAY
                path.append(neighbor)
                stack.append((neighbor, 0))

    return back_edges


def detect_cycles(graph: dict[str, list[str]]) -> list[list[str]] | None:
    """
    Detect cycles in the dependency graph using DFS.

    Args:
        graph: Dependency graph (task_id -> [dependency_ids]).

    Returns:
        List of cycle paths if found, None otherwise.

    Example:
        >>> detect_cycles({"1": ["2"], "2": ["1"]})
        [['1', '2', '1']]
    """
    cycles = [cycle for _, _, cycle in find_back_edges(graph)]
    return cycles if cycles else None


def find_path(graph: dict[str, list[str]], start: str, goal: str) -> list[str] | None:
    """Find a dependency path from ``start`` to ``goal``.

    Returns:
        The path including both ends, or None if ``goal`` is unreachable.
    """
    if start == goal:
        return [start]
    previous: dict[str, str] = {}
    stack = [start]
    visited = {start}
    while stack:
        node = stack.pop()
        for dep in graph.get(node, []):
            if dep in visited or dep not in graph:
                continue
            previous[dep] = node
            if dep == goal:
                path = [goal]
                while path[-1] != start:
                    path.append(previous[path[-1]])
                return list(reversed(path))
            visited.add(dep)
            stack.append(dep)
    return None


def topological_order(graph: dict[str, list[str]]) -> list[str]:
    """
    Order task ids so that every task comes after its dependencies.

    Ties are broken by ascending id.

    Raises:
        CycleDetectedError: If the graph contains a cycle.
    """
    cycles = detect_cycles(graph)
    if cycles:
        raise CycleDetectedError(cycles[0])

    remaining: dict[str, int] = {}
    dependents: dict[str, list[str]] = {node: [] for node in graph}
    for node, deps in graph.items():
        valid = {d for d in deps if d in graph and d != node}
        remaining[node] = len(valid)
        for dep in valid:
            dependents[dep].append(node)

    ready = [(id_sort_key(n), n) for n, count in remaining.items() if count == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, node = heapq.heappop(ready)
        order.append(node)
        for dependent in dependents[node]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (id_sort_key(dependent), dependent))
    return order


# =============================================================================
# VALIDATOR / FIXER
# =============================================================================


class DependencyValidator:
    """
    Validate and repair task dependencies.

    Validation collects every violation instead of failing fast, so that
    ``fix`` can act on the complete set in one pass.

    Example:
        >>> validator = DependencyValidator(graph)
        >>> violations = validator.validate()
        >>> summary = validator.fix()
        >>> summary.changed_task_ids
        ['1']
    """

    STRATEGIES = ("back-edge", "highest-id")

    def __init__(self, graph: TaskGraph) -> None:
        self._graph = graph

    def validate(self) -> list[Violation]:
        """
        Check every task and subtask.

        Returns:
            All violations, per-task problems first, then cycles.
        """
        violations: list[Violation] = []
        known = self._graph.all_ids()

        for task in self._graph.iter_nodes():
            seen: set[str] = set()
            for dep in task.dependencies:
                if dep == task.id:
                    kind = ViolationKind.SELF_DEPENDENCY
                elif dep in seen:
                    kind = ViolationKind.DUPLICATE_REFERENCE
                elif dep not in known:
                    kind = ViolationKind.DANGLING_REFERENCE
                else:
                    seen.add(dep)
                    continue
                seen.add(dep)
                violations.append(Violation(kind=kind, task_id=task.id, dependency_id=dep))

        for source, target, cycle in find_back_edges(self._graph.adjacency()):
            violations.append(
                Violation(
                    kind=ViolationKind.CYCLE,
                    task_id=source,
                    dependency_id=target,
                    cycle=cycle,
                )
            )

        if violations:
            logger.warning(f"Found {len(violations)} dependency violations")
        else:
            logger.debug("Dependency graph is valid")
        return violations

    def is_valid(self) -> bool:
        """True if ``validate`` finds nothing."""
        return not self.validate()

    def fix(
        self,
        strategy: CycleBreakStrategy = "back-edge",
        dry_run: bool = False,
    ) -> FixSummary:
        """
        Remove dangling, self and duplicate references, then break cycles.

        Args:
            strategy: ``back-edge`` drops the DFS back edge closing each cycle;
                ``highest-id`` drops the cycle edge leaving the member with
                the highest id.
            dry_run: Compute the summary without touching the graph.

        Returns:
            FixSummary listing every removed edge and why.
        """
        if strategy not in self.STRATEGIES:
            raise InvalidArgumentError(f"Unknown cycle break strategy: {strategy}")

        summary = FixSummary(strategy=strategy, dry_run=dry_run)
        known = self._graph.all_ids()
        adjacency: dict[str, list[str]] = {}

        for task in self._graph.iter_nodes():
            kept: list[str] = []
            for dep in task.dependencies:
                if dep == task.id:
                    reason = ViolationKind.SELF_DEPENDENCY
                elif dep in kept:
                    reason = ViolationKind.DUPLICATE_REFERENCE
                elif dep not in known:
                    reason = ViolationKind.DANGLING_REFERENCE
                else:
                    kept.append(dep)
                    continue
                summary.changes.append(FixChange(task_id=task.id, dependency_id=dep, reason=reason))
            adjacency[task.id] = kept

        while True:
            back_edges = find_back_edges(adjacency)
            if not back_edges:
                break
            source, target, cycle = back_edges[0]
            if strategy == "highest-id":
                members = cycle[:-1]
                source = max(members, key=id_sort_key)
                target = cycle[members.index(source) + 1]
            adjacency[source].remove(target)
            summary.changes.append(
                FixChange(
                    task_id=source,
                    dependency_id=target,
                    reason=ViolationKind.CYCLE,
                    cycle=cycle,
                )
            )
            logger.info(f"Breaking cycle {' -> '.join(cycle)} by dropping {source} -> {target}")

        if not dry_run and summary.changed:
            for task_id in summary.changed_task_ids:
                task = self._graph.get(task_id)
                task.dependencies = adjacency[task_id]
                task.touch()
            self._graph.mark_modified()

        logger.info(
            f"Dependency fix {'(dry run) ' if dry_run else ''}removed {len(summary.changes)} "
            f"edges on {len(summary.changed_task_ids)} tasks"
        )
        return summary
