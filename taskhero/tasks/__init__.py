"""Task graph - hierarchical ids, dependency validation and next-task selection.

This module provides:
- Identifier scheme (dotted ids with numeric ordering)
- Task graph (add, remove, move, status and dependency edits)
- Snapshot persistence
- Dependency validation and repair
- Next-task selection
"""

from taskhero.tasks.dependencies import (
    DependencyValidator,
    FixChange,
    FixSummary,
    Violation,
    ViolationKind,
    detect_cycles,
    topological_order,
)
from taskhero.tasks.graph import MoveResult, RemoveResult, TaskGraph
from taskhero.tasks.models import PrdSource, Task, TaskFilter, TaskPriority, TaskSnapshot, TaskStatus
from taskhero.tasks.selector import NextTaskReason, NextTaskResult, next_task
from taskhero.tasks.store import TaskStore

__all__ = [
    "DependencyValidator",
    "FixChange",
    "FixSummary",
    "MoveResult",
    "NextTaskReason",
    "NextTaskResult",
    "PrdSource",
    "RemoveResult",
    "Task",
    "TaskFilter",
    "TaskGraph",
    "TaskPriority",
    "TaskSnapshot",
    "TaskStatus",
    "TaskStore",
    "Violation",
    "ViolationKind",
    "detect_cycles",
    "next_task",
    "topological_order",
]
