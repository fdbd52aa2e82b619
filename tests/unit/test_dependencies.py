"""Unit tests for dependency validation and repair."""

import pytest

from taskhero.core.errors import CycleDetectedError, InvalidArgumentError
from taskhero.tasks.dependencies import (
    DependencyValidator,
    ViolationKind,
    detect_cycles,
    find_back_edges,
    topological_order,
)
from taskhero.tasks.graph import TaskGraph
from taskhero.tasks.models import TaskSnapshot

pytestmark = pytest.mark.unit


def graph_from(deps: dict[str, list[str]]) -> TaskGraph:
    """Build a flat graph from an id -> dependencies mapping."""
    snapshot = TaskSnapshot.model_validate(
        {"tasks": [{"id": i, "title": f"Task {i}", "dependencies": d} for i, d in deps.items()]}
    )
    return TaskGraph.from_snapshot(snapshot)


class TestCycleDetection:
    """Tests for the DFS cycle search."""

    def test_no_cycles(self) -> None:
        """Test an acyclic graph."""
        assert detect_cycles({"1": [], "2": ["1"], "3": ["1", "2"]}) is None

    def test_two_node_cycle(self) -> None:
        """Test detecting a simple cycle."""
        assert find_back_edges({"1": ["2"], "2": ["1"]}) == [("2", "1", ["1", "2", "1"])]

    def test_ignores_unknown_and_self(self) -> None:
        """Test that dangling and self edges are not reported as cycles."""
        assert detect_cycles({"1": ["1", "9"], "2": ["1"]}) is None

    def test_visit_order_is_numeric(self) -> None:
        """Test that roots are visited in numeric id order."""
        edges = find_back_edges({"10": ["2"], "2": ["10"]})

        assert edges == [("10", "2", ["2", "10", "2"])]

    def test_deep_chain(self) -> None:
        """Test that long chains do not hit the recursion limit."""
        graph = {str(i): [str(i + 1)] for i in range(1, 5000)}
        graph["5000"] = []

        assert detect_cycles(graph) is None


class TestTopologicalOrder:
    """Tests for dependency ordering."""

    def test_order(self, sample_graph: TaskGraph) -> None:
        """Test that dependencies come first and ties break by id."""
        assert topological_order(sample_graph.adjacency()) == ["1", "2", "3", "3.1", "3.2"]

    def test_cycle_raises(self) -> None:
        """Test ordering a cyclic graph."""
        with pytest.raises(CycleDetectedError):
            topological_order({"1": ["2"], "2": ["1"]})


class TestValidate:
    """Tests for collecting violations."""

    def test_valid_graph(self, sample_graph: TaskGraph) -> None:
        """Test that a clean graph has no violations."""
        assert DependencyValidator(sample_graph).validate() == []
        assert DependencyValidator(sample_graph).is_valid()

    def test_self_dependency(self) -> None:
        """Test reporting a self-reference."""
        violations = DependencyValidator(graph_from({"1": ["1"]})).validate()

        assert len(violations) == 1
        assert violations[0].kind == ViolationKind.SELF_DEPENDENCY
        assert violations[0].task_id == "1"

    def test_dangling_reference(self) -> None:
        """Test reporting a reference to a missing task."""
        violations = DependencyValidator(graph_from({"1": [], "2": ["99"]})).validate()

        assert [(v.kind, v.task_id, v.dependency_id) for v in violations] == [
            (ViolationKind.DANGLING_REFERENCE, "2", "99")
        ]

    def test_duplicate_reference(self) -> None:
        """Test reporting a repeated dependency."""
        violations = DependencyValidator(graph_from({"1": [], "2": ["1", "1"]})).validate()

        assert [v.kind for v in violations] == [ViolationKind.DUPLICATE_REFERENCE]

    def test_cycle(self) -> None:
        """Test reporting a cycle with its path."""
        violations = DependencyValidator(graph_from({"1": ["2"], "2": ["1"]})).validate()

        assert len(violations) == 1
        assert violations[0].kind == ViolationKind.CYCLE
        assert violations[0].cycle == ["1", "2", "1"]
        assert "1 -> 2 -> 1" in violations[0].message

    def test_collects_all(self) -> None:
        """Test that validation does not stop at the first problem."""
        graph = graph_from({"1": ["1"], "2": ["7", "3"], "3": ["2"]})

        kinds = sorted(v.kind.value for v in DependencyValidator(graph).validate())

        assert kinds == ["Cycle", "DanglingReference", "SelfDependency"]

    def test_subtask_dependencies_checked(self) -> None:
        """Test that subtasks are validated too."""
        snapshot = TaskSnapshot.model_validate(
            {
                "tasks": [
                    {
                        "id": "1",
                        "title": "Parent",
                        "subtasks": [{"id": "1.1", "title": "Child", "dependencies": ["1.5"]}],
                    }
                ]
            }
        )

        violations = DependencyValidator(TaskGraph.from_snapshot(snapshot)).validate()

        assert violations[0].task_id == "1.1"
        assert violations[0].kind == ViolationKind.DANGLING_REFERENCE


class TestFix:
    """Tests for repairing violations."""

    def test_removes_self_dependency(self) -> None:
        """Test that a self-reference is removed and reported."""
        graph = graph_from({"1": ["1"]})

        summary = DependencyValidator(graph).fix()

        assert summary.changed_task_ids == ["1"]
        assert summary.count(ViolationKind.SELF_DEPENDENCY) == 1
        assert graph.get("1").dependencies == []
        assert graph.modified

    def test_removes_dangling_and_duplicates(self) -> None:
        """Test cleaning dangling and repeated entries."""
        graph = graph_from({"1": [], "2": ["1", "1", "42"]})

        summary = DependencyValidator(graph).fix()

        assert graph.get("2").dependencies == ["1"]
        assert {c.reason for c in summary.changes} == {
            ViolationKind.DUPLICATE_REFERENCE,
            ViolationKind.DANGLING_REFERENCE,
        }

    def test_dry_run_does_not_mutate(self) -> None:
        """Test that a dry run reports without changing the graph."""
        graph = graph_from({"1": ["2"], "2": ["1"]})

        summary = DependencyValidator(graph).fix(dry_run=True)

        assert summary.dry_run
        assert summary.changed
        assert graph.get("2").dependencies == ["1"]
        assert not graph.modified

    def test_back_edge_strategy(self) -> None:
        """Test that back-edge drops the edge closing the DFS cycle."""
        graph = graph_from({"1": ["3"], "2": ["1"], "3": ["2"]})

        summary = DependencyValidator(graph).fix("back-edge")

        assert [(c.task_id, c.dependency_id) for c in summary.changes] == [("2", "1")]
        assert summary.changes[0].cycle == ["1", "3", "2", "1"]
        assert graph.get("2").dependencies == []
        assert graph.get("3").dependencies == ["2"]

    def test_highest_id_strategy(self) -> None:
        """Test that highest-id drops the edge leaving the highest member."""
        graph = graph_from({"1": ["3"], "2": ["1"], "3": ["2"]})

        summary = DependencyValidator(graph).fix("highest-id")

        assert [(c.task_id, c.dependency_id) for c in summary.changes] == [("3", "2")]
        assert graph.get("3").dependencies == []
        assert graph.get("2").dependencies == ["1"]

    def test_result_is_acyclic(self) -> None:
        """Test that overlapping cycles are all broken."""
        graph = graph_from(
            {"1": ["2"], "2": ["3"], "3": ["1", "4"], "4": ["2", "5"], "5": ["4"]}
        )

        DependencyValidator(graph).fix()

        assert detect_cycles(graph.adjacency()) is None
        assert DependencyValidator(graph).validate() == []

    def test_unknown_strategy(self) -> None:
        """Test that an unknown strategy is rejected."""
        with pytest.raises(InvalidArgumentError):
            DependencyValidator(graph_from({"1": []})).fix("random")  # type: ignore[arg-type]

    def test_nothing_to_fix(self, sample_graph: TaskGraph) -> None:
        """Test that a clean graph is left untouched."""
        summary = DependencyValidator(sample_graph).fix()

        assert not summary.changed
        assert not sample_graph.modified
