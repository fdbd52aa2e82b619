"""Unit tests for PRD registry integrity checks and repair."""

from pathlib import Path

import pytest

from taskhero.core.errors import FileIOError
from taskhero.prd.files import PrdLayout
from taskhero.prd.integrity import IntegrityChecker, IntegrityIssueKind
from taskhero.prd.models import PrdStatus
from taskhero.prd.registry import PrdRegistry
from taskhero.tasks.graph import TaskGraph

pytestmark = pytest.mark.unit


@pytest.fixture
def layout(tmp_path: Path) -> PrdLayout:
    """Provide a lifecycle layout with its directories created."""
    layout = PrdLayout(tmp_path, tmp_path / ".taskhero" / "prd")
    layout.ensure_directories()
    return layout


@pytest.fixture
def registry(tmp_path: Path, layout: PrdLayout) -> PrdRegistry:
    """Provide an empty registry."""
    return PrdRegistry.load(tmp_path / ".taskhero" / "prd" / "prds.json", layout)


@pytest.fixture
def managed_prd(layout: PrdLayout) -> Path:
    """Provide a PRD file in the pending lifecycle directory."""
    path = layout.directory(PrdStatus.PENDING) / "search.md"
    path.write_text("# Search\n")
    return path


class TestCheck:
    """Tests for finding integrity issues."""

    def test_consistent_registry(self, registry: PrdRegistry, managed_prd: Path) -> None:
        """Test that a freshly registered PRD has no issues."""
        registry.register(managed_prd)

        report = IntegrityChecker(registry, TaskGraph()).check()

        assert report.issues == []
        assert report.valid

    def test_unregistered_source(self, registry: PrdRegistry, prd_file: Path) -> None:
        """Test tasks stamped with a path no PRD is registered under."""
        registry.register(prd_file)
        graph = TaskGraph()
        graph.add_task("Model")
        graph.add_task("Login")
        registry.link_tasks(graph, "prd_001", ["1", "2"])
        registry.relink_path(graph, "docs/auth.md", "specs/auth.md")

        report = IntegrityChecker(registry, graph).check()

        issues = [i for i in report.issues if i.kind == IntegrityIssueKind.UNREGISTERED_SOURCE]
        assert len(issues) == 1
        assert issues[0].path == "specs/auth.md"
        assert issues[0].task_ids == ["1", "2"]
        assert issues[0].prd_id == "prd_001"
        assert issues[0].expected_path == "docs/auth.md"
        assert not report.valid

    def test_wrong_directory(self, registry: PrdRegistry, managed_prd: Path) -> None:
        """Test a file that sits in the directory of another status."""
        registry.register(managed_prd).status = PrdStatus.DONE

        report = IntegrityChecker(registry, TaskGraph()).check()

        assert [i.kind for i in report.issues] == [IntegrityIssueKind.WRONG_DIRECTORY]
        assert report.issues[0].expected_path == ".taskhero/prd/done/search.md"

    def test_outside_file_of_done_prd(self, registry: PrdRegistry, prd_file: Path) -> None:
        """Test that a done PRD left outside the lifecycle root is misplaced."""
        registry.register(prd_file).status = PrdStatus.DONE

        report = IntegrityChecker(registry, TaskGraph()).check()

        assert report.issues[0].kind == IntegrityIssueKind.WRONG_DIRECTORY
        assert report.issues[0].expected_path == ".taskhero/prd/done/auth.md"

    def test_outside_file_of_pending_prd_is_fine(self, registry: PrdRegistry, prd_file: Path) -> None:
        """Test that an unfinished PRD may live outside the lifecycle root."""
        registry.register(prd_file)

        assert IntegrityChecker(registry, TaskGraph()).check().issues == []

    def test_missing_file_found_elsewhere(
        self, registry: PrdRegistry, layout: PrdLayout, managed_prd: Path
    ) -> None:
        """Test that a file moved by hand to another lifecycle directory is located."""
        registry.register(managed_prd)
        managed_prd.rename(layout.directory(PrdStatus.IN_PROGRESS) / "search.md")

        report = IntegrityChecker(registry, TaskGraph()).check()

        assert report.issues[0].kind == IntegrityIssueKind.MISSING_FILE
        assert report.issues[0].expected_path == ".taskhero/prd/in-progress/search.md"

    def test_stale_stats(self, registry: PrdRegistry, prd_file: Path) -> None:
        """Test that linking without syncing leaves statistics behind."""
        registry.register(prd_file)
        graph = TaskGraph()
        graph.add_task("Model")
        registry.link_tasks(graph, "prd_001", ["1"])

        report = IntegrityChecker(registry, graph).check()

        assert [i.kind for i in report.issues] == [IntegrityIssueKind.STALE_STATS]
        assert report.issues[0].task_ids == ["1"]

    def test_check_does_not_mutate(self, registry: PrdRegistry, managed_prd: Path) -> None:
        """Test that checking moves nothing and edits nothing."""
        registry.register(managed_prd).status = PrdStatus.DONE
        registry.modified = False

        IntegrityChecker(registry, TaskGraph()).check()

        assert managed_prd.exists()
        assert not registry.modified


class TestRepair:
    """Tests for repairing integrity issues."""

    def test_relinks_stale_task_paths(self, registry: PrdRegistry, prd_file: Path) -> None:
        """Test that tasks follow the one PRD sharing their file name."""
        registry.register(prd_file)
        graph = TaskGraph()
        graph.add_task("Model")
        registry.link_tasks(graph, "prd_001", ["1"])
        registry.relink_path(graph, "docs/auth.md", "specs/auth.md")

        report = IntegrityChecker(registry, graph).repair()

        assert report.valid
        assert report.repaired
        assert graph.get("1").prd_source.file_path == "docs/auth.md"
        assert registry.get("prd_001").task_stats.total == 1

    def test_unmatched_source_left_alone(self, registry: PrdRegistry, prd_file: Path) -> None:
        """Test that a stamp with no candidate PRD is reported but kept."""
        registry.register(prd_file)
        graph = TaskGraph()
        graph.add_task("Orphan")
        registry.link_tasks(graph, "prd_001", ["1"])
        registry.relink_path(graph, "docs/auth.md", "docs/gone.md")

        report = IntegrityChecker(registry, graph).repair()

        assert len(report.issues) == 1
        assert report.issues[0].prd_id is None
        assert not report.issues[0].fixed
        assert not report.valid
        assert graph.get("1").prd_source.file_path == "docs/gone.md"

    def test_moves_misplaced_file(
        self, registry: PrdRegistry, layout: PrdLayout, managed_prd: Path
    ) -> None:
        """Test that a file is moved to the directory of its status."""
        registry.register(managed_prd).status = PrdStatus.DONE

        report = IntegrityChecker(registry, TaskGraph()).repair()

        target = layout.directory(PrdStatus.DONE) / "search.md"
        assert report.valid
        assert target.read_text() == "# Search\n"
        assert not managed_prd.exists()
        assert registry.get("prd_001").file_path == ".taskhero/prd/done/search.md"
        assert report.actions[0].target_path == ".taskhero/prd/done/search.md"

    def test_repoints_and_replaces_moved_file(
        self, registry: PrdRegistry, layout: PrdLayout, managed_prd: Path
    ) -> None:
        """Test that a hand-moved file is found, then put back where its status says."""
        registry.register(managed_prd)
        graph = TaskGraph()
        graph.add_task("Ranking")
        registry.link_tasks(graph, "prd_001", ["1"])
        managed_prd.rename(layout.directory(PrdStatus.IN_PROGRESS) / "search.md")

        report = IntegrityChecker(registry, graph).repair()

        assert report.valid
        assert managed_prd.exists()
        assert registry.get("prd_001").file_path == ".taskhero/prd/pending/search.md"
        assert graph.get("1").prd_source.file_path == ".taskhero/prd/pending/search.md"

    def test_missing_file_nowhere_to_be_found(self, registry: PrdRegistry, prd_file: Path) -> None:
        """Test that a deleted file stays reported."""
        registry.register(prd_file)
        prd_file.unlink()

        report = IntegrityChecker(registry, TaskGraph()).repair()

        assert report.issues[0].kind == IntegrityIssueKind.MISSING_FILE
        assert not report.issues[0].fixed
        assert registry.get("prd_001").file_path == "docs/auth.md"

    def test_second_repair_finds_nothing(
        self, registry: PrdRegistry, managed_prd: Path
    ) -> None:
        """Test that a repaired registry checks clean."""
        registry.register(managed_prd).status = PrdStatus.IN_PROGRESS
        graph = TaskGraph()

        IntegrityChecker(registry, graph).repair()

        assert IntegrityChecker(registry, graph).check().issues == []

    def test_failed_move_rolls_back(
        self, registry: PrdRegistry, layout: PrdLayout, managed_prd: Path, prd_file: Path
    ) -> None:
        """Test that a refused move undoes relinks and registry edits."""
        registry.register(managed_prd).status = PrdStatus.DONE
        registry.register(prd_file)
        graph = TaskGraph()
        graph.add_task("Model")
        registry.link_tasks(graph, "prd_002", ["1"])
        registry.relink_path(graph, "docs/auth.md", "specs/auth.md")
        blocker = layout.directory(PrdStatus.DONE) / "search.md"
        blocker.write_text("# Someone else's file\n")

        with pytest.raises(FileIOError):
            IntegrityChecker(registry, graph).repair()

        assert managed_prd.exists()
        assert blocker.read_text() == "# Someone else's file\n"
        assert registry.get("prd_001").file_path == ".taskhero/prd/pending/search.md"
        assert registry.get("prd_001").status == PrdStatus.DONE
        assert registry.get("prd_002").task_stats.total == 0
        assert graph.get("1").prd_source.file_path == "specs/auth.md"
