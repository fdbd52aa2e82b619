"""Unit tests for PRD status sync and relocation."""

from pathlib import Path

import pytest

from taskhero.core.errors import FileIOError, InvalidArgumentError
from taskhero.prd.files import PrdFileMover, PrdLayout
from taskhero.prd.models import PrdStatus
from taskhero.prd.registry import PrdRegistry
from taskhero.prd.sync import SyncEngine, derive_status, plan_sync
from taskhero.tasks.graph import TaskGraph
from taskhero.tasks.models import Task

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


def linked_graph(registry: PrdRegistry, prd_id: str, count: int = 3) -> TaskGraph:
    """Build a graph of ``count`` tasks all linked to ``prd_id``."""
    graph = TaskGraph()
    for n in range(1, count + 1):
        graph.add_task(f"Task {n}")
    registry.link_tasks(graph, prd_id, [str(n) for n in range(1, count + 1)])
    return graph


class TestDeriveStatus:
    """Tests for the status derivation rule."""

    def tasks(self, *statuses: str) -> list[Task]:
        return [Task(id=str(i), title="t", status=s) for i, s in enumerate(statuses, start=1)]

    def test_all_done(self) -> None:
        """Test that all tasks done means done."""
        assert derive_status(PrdStatus.PENDING, self.tasks("done", "done")) == PrdStatus.DONE

    def test_partially_done(self) -> None:
        """Test that some progress means in-progress."""
        assert (
            derive_status(PrdStatus.PENDING, self.tasks("done", "pending"))
            == PrdStatus.IN_PROGRESS
        )
        assert (
            derive_status(PrdStatus.PENDING, self.tasks("in-progress", "pending"))
            == PrdStatus.IN_PROGRESS
        )

    def test_nothing_started_keeps_status(self) -> None:
        """Test that untouched tasks leave the status alone."""
        assert derive_status(PrdStatus.PENDING, self.tasks("pending", "blocked")) == PrdStatus.PENDING

    def test_no_tasks_never_transitions(self) -> None:
        """Test that a PRD without tasks keeps its status."""
        assert derive_status(PrdStatus.IN_PROGRESS, []) == PrdStatus.IN_PROGRESS

    def test_archived_is_terminal(self) -> None:
        """Test that archived PRDs never change."""
        assert derive_status(PrdStatus.ARCHIVED, self.tasks("pending")) == PrdStatus.ARCHIVED


class TestSyncOutsideLifecycleRoot:
    """Tests for a PRD file kept outside the lifecycle directories."""

    def test_progress_then_done(self, registry: PrdRegistry, layout: PrdLayout, prd_file: Path) -> None:
        """Test in-progress in place, then relocation to done/."""
        registry.register(prd_file)
        graph = linked_graph(registry, "prd_001")
        graph.set_status("1", "done")
        graph.set_status("2", "done")

        SyncEngine(registry, graph).sync("prd_001")

        record = registry.get("prd_001")
        assert record.status == PrdStatus.IN_PROGRESS
        assert record.task_stats.completed == 2
        assert prd_file.exists()

        graph.set_status("3", "done")
        SyncEngine(registry, graph).sync("prd_001")

        record = registry.get("prd_001")
        target = layout.directory(PrdStatus.DONE) / "auth.md"
        assert record.status == PrdStatus.DONE
        assert target.exists()
        assert not prd_file.exists()
        assert record.file_path == ".taskhero/prd/done/auth.md"
        assert all(t.prd_source.file_path == record.file_path for t in graph.iter_nodes())

    def test_bytes_preserved(self, registry: PrdRegistry, layout: PrdLayout, prd_file: Path) -> None:
        """Test that relocation does not alter the file."""
        content = prd_file.read_bytes()
        registry.register(prd_file)
        graph = linked_graph(registry, "prd_001", count=1)
        graph.set_status("1", "done")

        SyncEngine(registry, graph).sync()

        assert (layout.directory(PrdStatus.DONE) / "auth.md").read_bytes() == content


class TestSyncInsideLifecycleRoot:
    """Tests for a PRD file that already lives in a lifecycle directory."""

    @pytest.fixture
    def managed_prd(self, layout: PrdLayout) -> Path:
        path = layout.directory(PrdStatus.PENDING) / "search.md"
        path.write_text("# Search\n")
        return path

    def test_follows_every_transition(
        self, registry: PrdRegistry, layout: PrdLayout, managed_prd: Path
    ) -> None:
        """Test relocation to in-progress/ and then done/."""
        registry.register(managed_prd)
        graph = linked_graph(registry, "prd_001", count=2)

        graph.set_status("1", "in-progress")
        SyncEngine(registry, graph).sync()
        assert (layout.directory(PrdStatus.IN_PROGRESS) / "search.md").exists()

        graph.set_status("1", "done")
        graph.set_status("2", "done")
        SyncEngine(registry, graph).sync()
        assert (layout.directory(PrdStatus.DONE) / "search.md").exists()
        assert not managed_prd.exists()

    def test_misplaced_file_is_replaced(self, registry: PrdRegistry, layout: PrdLayout) -> None:
        """Test that a file in the wrong lifecycle directory is moved."""
        path = layout.directory(PrdStatus.DONE) / "early.md"
        path.write_text("# Early\n")
        registry.register(path)

        actions = plan_sync(registry, TaskGraph(), layout)

        assert len(actions) == 1
        assert actions[0].target_path == ".taskhero/prd/pending/early.md"


class TestIdempotence:
    """Tests for repeated sync runs."""

    def test_second_sync_changes_nothing(
        self, registry: PrdRegistry, layout: PrdLayout, prd_file: Path
    ) -> None:
        """Test that a second run plans no actions and moves no files."""
        registry.register(prd_file)
        graph = linked_graph(registry, "prd_001")
        graph.set_status("1", "done")
        SyncEngine(registry, graph).sync()
        state = registry.dump()

        actions = SyncEngine(registry, graph).sync()

        assert actions == []
        assert registry.dump() == state

    def test_plan_is_pure(self, registry: PrdRegistry, layout: PrdLayout, prd_file: Path) -> None:
        """Test that planning does not touch the registry or files."""
        registry.register(prd_file)
        graph = linked_graph(registry, "prd_001", count=1)
        graph.set_status("1", "done")
        state = registry.dump()

        actions = plan_sync(registry, graph, layout)

        assert actions[0].new_status == PrdStatus.DONE
        assert registry.dump() == state
        assert prd_file.exists()

    def test_archived_skipped(self, registry: PrdRegistry, layout: PrdLayout, prd_file: Path) -> None:
        """Test that archived PRDs are left out of sync."""
        registry.register(prd_file)
        graph = linked_graph(registry, "prd_001", count=1)
        SyncEngine(registry, graph).archive("prd_001", force=True)
        graph.set_status("1", "done")

        assert plan_sync(registry, graph, layout) == []


class TestArchive:
    """Tests for explicit archiving."""

    def test_requires_done(self, registry: PrdRegistry, prd_file: Path) -> None:
        """Test that an unfinished PRD cannot be archived without force."""
        registry.register(prd_file)
        graph = linked_graph(registry, "prd_001", count=1)

        with pytest.raises(InvalidArgumentError):
            SyncEngine(registry, graph).archive("prd_001")

    def test_archive_done_prd(self, registry: PrdRegistry, layout: PrdLayout, prd_file: Path) -> None:
        """Test archiving a finished PRD moves it to archived/."""
        registry.register(prd_file)
        graph = linked_graph(registry, "prd_001", count=1)
        graph.set_status("1", "done")
        engine = SyncEngine(registry, graph)
        engine.sync()

        action = engine.archive("prd_001")

        assert action.new_status == PrdStatus.ARCHIVED
        assert registry.get("prd_001").status == PrdStatus.ARCHIVED
        assert (layout.directory(PrdStatus.ARCHIVED) / "auth.md").exists()

    def test_force_archive(self, registry: PrdRegistry, layout: PrdLayout, prd_file: Path) -> None:
        """Test forcing an archive of an unfinished PRD."""
        registry.register(prd_file)
        graph = linked_graph(registry, "prd_001", count=1)

        SyncEngine(registry, graph).archive("prd_001", force=True)

        assert registry.get("prd_001").is_archived
        assert graph.get("1").prd_source.file_path == ".taskhero/prd/archived/auth.md"

    def test_archive_twice(self, registry: PrdRegistry, prd_file: Path) -> None:
        """Test that archiving an archived PRD is refused."""
        registry.register(prd_file)
        graph = linked_graph(registry, "prd_001", count=1)
        engine = SyncEngine(registry, graph)
        engine.archive("prd_001", force=True)

        with pytest.raises(InvalidArgumentError):
            engine.archive("prd_001", force=True)


class TestRollback:
    """Tests for all-or-nothing relocation."""

    def test_existing_target_rolls_back(
        self, registry: PrdRegistry, layout: PrdLayout, prd_file: Path, tmp_path: Path
    ) -> None:
        """Test that a blocked move leaves files, registry and tasks untouched."""
        other = tmp_path / "docs" / "billing.md"
        other.write_text("# Billing\n")
        registry.register(other)
        registry.register(prd_file)
        graph = TaskGraph()
        graph.add_task("Invoices")
        graph.add_task("Login")
        registry.link_tasks(graph, "prd_001", ["1"])
        registry.link_tasks(graph, "prd_002", ["2"])
        graph.set_status("1", "done")
        graph.set_status("2", "done")
        (layout.directory(PrdStatus.DONE) / "auth.md").write_text("someone else's file")
        state = registry.dump()

        with pytest.raises(FileIOError):
            SyncEngine(registry, graph).sync()

        assert other.exists()
        assert prd_file.exists()
        assert registry.dump() == state
        assert graph.get("1").prd_source.file_path == "docs/billing.md"
        assert graph.get("2").prd_source.file_path == "docs/auth.md"

    def test_mover_refuses_overwrite(self, tmp_path: Path) -> None:
        """Test that the mover never overwrites a file."""
        source = tmp_path / "a.md"
        target = tmp_path / "b.md"
        source.write_text("a")
        target.write_text("b")

        with pytest.raises(FileIOError):
            PrdFileMover().move(source, target)
        assert target.read_text() == "b"
