"""Pytest configuration and shared fixtures."""

import json
import os
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

# Set test environment
os.environ.setdefault("TASKHERO_DEBUG", "false")
os.environ.setdefault("TASKHERO_LOG_LEVEL", "WARNING")


@pytest.fixture
def mock_settings() -> Generator:
    """Clear the settings cache around a test."""
    from taskhero.core.config import clear_settings_cache

    # Clear any cached settings
    clear_settings_cache()

    yield

    # Clear again after test
    clear_settings_cache()


@pytest.fixture
def settings(tmp_path: Path):
    """Provide settings rooted in a temporary project directory."""
    from taskhero.core.config import Settings

    return Settings(project_root=tmp_path, lock_timeout=1.0)


@pytest.fixture
def hero(settings):
    """Provide a service facade bound to the temporary project."""
    from taskhero.core.service import TaskHero

    return TaskHero(settings)


@pytest.fixture
def write_snapshot(settings) -> Callable[[dict[str, Any]], Path]:
    """Write a raw task snapshot to the project's tasks file."""

    def write(data: dict[str, Any]) -> Path:
        path = settings.tasks_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))
        return path

    return write


@pytest.fixture
def sample_graph():
    """
    Provide a small task graph.

    1 (high)           no dependencies
    2                  depends on 1
    3                  depends on 1, 2
      3.1              no dependencies
      3.2              depends on 3.1
    """
    from taskhero.tasks.graph import TaskGraph

    graph = TaskGraph()
    graph.add_task("Initialize project", priority="high")
    graph.add_task("Create data model", dependencies=["1"])
    graph.add_task("Build API", dependencies=["1", "2"])
    graph.add_subtask("3", "Define routes")
    graph.add_subtask("3", "Implement handlers", dependencies=["3.1"])
    graph.modified = False
    return graph


@pytest.fixture
def nested_snapshot() -> dict[str, Any]:
    """Provide a snapshot with a two-level subtree under task 5."""
    return {
        "tasks": [
            {
                "id": "5",
                "title": "Payments",
                "subtasks": [
                    {"id": "5.1", "title": "Provider research"},
                    {
                        "id": "5.2",
                        "title": "Checkout flow",
                        "subtasks": [
                            {"id": "5.2.1", "title": "Cart summary"},
                            {"id": "5.2.2", "title": "Card form", "dependencies": ["5.2.1"]},
                        ],
                    },
                ],
            },
            {"id": "6", "title": "Receipts", "dependencies": ["5.2"]},
            {"id": "8", "title": "Refunds", "dependencies": ["5.2.1", "5.1"]},
        ]
    }


@pytest.fixture
def prd_file(tmp_path: Path) -> Path:
    """Provide a PRD markdown file outside the lifecycle directories."""
    path = tmp_path / "docs" / "auth.md"
    path.parent.mkdir(parents=True)
    path.write_text("# Authentication\n\nUsers can sign up, log in and log out.\n")
    return path


@pytest.fixture
def prd_drafts() -> list[dict[str, Any]]:
    """Provide draft tasks as produced by the PRD parser."""
    return [
        {"id": "1", "title": "User model", "priority": "high"},
        {"id": "2", "title": "Login endpoint", "dependencies": ["1"]},
        {"id": "3", "title": "Logout endpoint", "dependencies": ["2"]},
    ]


# Markers
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
