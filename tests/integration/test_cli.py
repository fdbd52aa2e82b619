"""Integration tests for the Typer CLI."""

import json
from collections.abc import Generator
from pathlib import Path

import pytest
from loguru import logger
from typer.testing import CliRunner

from taskhero import __version__
from taskhero.cli.main import app

pytestmark = pytest.mark.integration


@pytest.fixture
def runner(mock_settings) -> Generator[CliRunner, None, None]:
    """Provide a CLI runner; drop the log sink bound to the captured stderr afterwards."""
    yield CliRunner()
    logger.remove()


@pytest.fixture
def invoke(runner: CliRunner, tmp_path: Path):
    """Invoke the CLI against the temporary project."""

    def run(*args: str, input: str | None = None):
        return runner.invoke(app, ["--project", str(tmp_path), *args], input=input)

    return run


class TestTaskCommands:
    """Tests for task commands."""

    def test_version(self, runner: CliRunner) -> None:
        """Test the version flag."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_add_and_list(self, invoke) -> None:
        """Test adding a task and listing it."""
        added = invoke("add", "Set up repository", "--priority", "high")
        assert added.exit_code == 0
        assert "Created task 1:" in added.stdout

        result = invoke("list")
        assert result.exit_code == 0
        assert "Set up repository" in result.stdout

    def test_list_json(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test that --json prints the operation result."""
        runner.invoke(app, ["--project", str(tmp_path), "add", "Write docs"])

        result = runner.invoke(app, ["--project", str(tmp_path), "--json", "list"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["success"] is True
        assert data["data"]["tasks"][0]["title"] == "Write docs"

    def test_next(self, invoke) -> None:
        """Test that next shows the highest priority ready task."""
        invoke("add", "Low", "--priority", "low")
        invoke("add", "Urgent", "--priority", "high")

        result = invoke("next")

        assert result.exit_code == 0
        assert "Urgent" in result.stdout

    def test_unknown_task_fails(self, invoke) -> None:
        """Test that a failed operation exits non-zero."""
        result = invoke("show", "42")

        assert result.exit_code == 1
        assert "NotFound" in result.stdout

    def test_set_status(self, invoke) -> None:
        """Test setting a status from the command line."""
        invoke("add", "A")

        result = invoke("set-status", "1", "done")

        assert result.exit_code == 0
        assert "Set 1 to" in result.stdout


class TestDependencyCommands:
    """Tests for dependency commands."""

    @pytest.fixture
    def cyclic(self, tmp_path: Path) -> Path:
        """Write a snapshot where tasks 1 and 2 depend on each other."""
        path = tmp_path / ".taskhero" / "tasks" / "tasks.json"
        path.parent.mkdir(parents=True)
        path.write_text(
            json.dumps(
                {
                    "tasks": [
                        {"id": "1", "title": "A", "dependencies": ["2"]},
                        {"id": "2", "title": "B", "dependencies": ["1"]},
                    ]
                }
            )
        )
        return path

    def test_validate_clean(self, invoke) -> None:
        """Test validating a project without problems."""
        invoke("add", "A")

        result = invoke("validate-deps")

        assert result.exit_code == 0
        assert "All dependencies are valid." in result.stdout

    def test_fix_nothing(self, invoke) -> None:
        """Test fixing a clean project."""
        invoke("add", "A")

        result = invoke("fix-deps")

        assert "Nothing to fix." in result.stdout

    def test_fix_confirmed(self, invoke, cyclic: Path) -> None:
        """Test that confirming breaks the cycle."""
        result = invoke("fix-deps", input="y\n")

        assert result.exit_code == 0
        tasks = json.loads(cyclic.read_text())["tasks"]
        assert sum(len(t["dependencies"]) for t in tasks) == 1

    def test_fix_declined(self, invoke, cyclic: Path) -> None:
        """Test that declining leaves the snapshot alone."""
        before = cyclic.read_text()

        result = invoke("fix-deps", input="n\n")

        assert result.exit_code == 1
        assert "Aborted." in result.stdout
        assert cyclic.read_text() == before

    def test_fix_yes_flag(self, invoke, cyclic: Path) -> None:
        """Test that --yes skips the prompt."""
        result = invoke("fix-deps", "--yes")

        assert result.exit_code == 0
        assert "All dependencies are valid." in invoke("validate-deps").stdout


class TestPrdCommands:
    """Tests for PRD commands."""

    def test_register_and_list(self, invoke, prd_file: Path) -> None:
        """Test registering a PRD and listing it."""
        registered = invoke("prd", "register", str(prd_file), "--title", "Auth")
        assert registered.exit_code == 0
        assert "prd_001" in registered.stdout

        listed = invoke("prd", "list")
        assert listed.exit_code == 0
        assert "Auth" in listed.stdout

    def test_check_unmodified(self, invoke, prd_file: Path) -> None:
        """Test change detection output."""
        invoke("prd", "register", str(prd_file))

        result = invoke("prd", "check")

        assert result.exit_code == 0
        assert "unmodified" in result.stdout

    def test_sync_in_sync(self, invoke, prd_file: Path) -> None:
        """Test syncing a PRD without linked tasks."""
        invoke("prd", "register", str(prd_file))

        result = invoke("prd", "sync")

        assert result.exit_code == 0
        assert "PRDs are in sync." in result.stdout

    def test_link_then_unlink(self, invoke, prd_file: Path) -> None:
        """Test detaching a manual task that was linked to a PRD."""
        invoke("add", "Manual")
        invoke("prd", "register", str(prd_file))
        invoke("prd", "link", "prd_001", "1")

        result = invoke("prd", "unlink", "prd_001", "1")

        assert result.exit_code == 0
        assert "Unlinked from prd_001:" in result.stdout

    def test_remove_refused_with_linked_tasks(self, invoke, prd_file: Path) -> None:
        """Test that removal needs --unlink-tasks while tasks are linked."""
        invoke("add", "Manual")
        invoke("prd", "register", str(prd_file))
        invoke("prd", "link", "prd_001", "1")

        refused = invoke("prd", "remove", "prd_001")
        assert refused.exit_code == 1
        assert "InvalidReference" in refused.stdout

        removed = invoke("prd", "remove", "prd_001", "--unlink-tasks")
        assert removed.exit_code == 0
        assert "Removed prd_001" in removed.stdout
        assert prd_file.exists()

    def test_integrity_fix(self, invoke, prd_file: Path, tmp_path: Path) -> None:
        """Test that --fix re-points a PRD moved into a lifecycle directory."""
        invoke("prd", "register", str(prd_file))
        prd_file.rename(tmp_path / ".taskhero" / "prd" / "pending" / "auth.md")

        checked = invoke("--json", "prd", "integrity")
        assert checked.exit_code == 0
        assert json.loads(checked.stdout)["data"]["issues"][0]["kind"] == "missing-file"

        fixed = invoke("--json", "prd", "integrity", "--fix")
        assert fixed.exit_code == 0
        assert json.loads(fixed.stdout)["data"]["valid"] is True

        clean = invoke("prd", "integrity")
        assert "PRD registry is consistent." in clean.stdout
