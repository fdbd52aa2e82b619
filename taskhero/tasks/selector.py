"""Next-task selection.

A task is eligible when it is pending and every dependency is done.
Eligible tasks are ranked by priority, then by id, then by insertion
order.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from taskhero.tasks.graph import TaskGraph
from taskhero.tasks.ids import id_sort_key, parent_of, sort_ids
from taskhero.tasks.models import Task, TaskStatus


class NextTaskReason(str, Enum):
    """Why ``next_task`` returned what it returned."""

    FOUND = "found"
    EMPTY = "empty"
    NO_PENDING = "no-pending"
    ALL_BLOCKED = "all-blocked"


class NextTaskResult(BaseModel):
    """Selected task, or the reason nothing was selected."""

    task: Task | None = None
    reason: NextTaskReason
    blocked_ids: list[str] = Field(
        default_factory=list,
        description="Pending tasks waiting on dependencies or a parent (all-blocked only)",
    )

    @property
    def found(self) -> bool:
        return self.task is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason.value,
            "task": self.task.to_dict() if self.task else None,
            "blockedIds": self.blocked_ids,
        }


def is_ready(graph: TaskGraph, task: Task) -> bool:
    """True if every dependency of ``task`` exists and is done."""
    for dep in task.dependencies:
        dep_task = graph.find(dep)
        if dep_task is None or dep_task.status != TaskStatus.DONE:
            return False
    return True


def _parent_started(graph: TaskGraph, task: Task) -> bool:
    if parent_of(task.id) is None:
        return True
    parent = graph.parent(task.id)
    return parent is not None and parent.status == TaskStatus.IN_PROGRESS


def next_task(graph: TaskGraph, subtasks_require_started_parent: bool = True) -> NextTaskResult:
    """
    Pick the next task to work on.

    Args:
        graph: Task graph to inspect.
        subtasks_require_started_parent: Offer a pending subtask only when
            its parent is in-progress.

    Returns:
        NextTaskResult with the task and ``found``, or no task and one of
        ``empty``, ``no-pending`` or ``all-blocked``.

    Example:
        >>> result = next_task(graph)
        >>> result.reason, result.task.id
        (<NextTaskReason.FOUND: 'found'>, '1')
    """
    if graph.is_empty():
        return NextTaskResult(reason=NextTaskReason.EMPTY)

    pending = [t for t in graph.iter_nodes() if t.status == TaskStatus.PENDING]
    if not pending:
        return NextTaskResult(reason=NextTaskReason.NO_PENDING)

    candidates = [
        t
        for t in pending
        if is_ready(graph, t)
        and (not subtasks_require_started_parent or _parent_started(graph, t))
    ]
    if not candidates:
        # Subtasks held back by an unstarted parent count as blocked too.
        return NextTaskResult(
            reason=NextTaskReason.ALL_BLOCKED,
            blocked_ids=sort_ids(t.id for t in pending),
        )

    best = min(
        candidates,
        key=lambda t: (-t.priority.rank, id_sort_key(t.id), graph.insertion_index(t.id)),
    )
    return NextTaskResult(task=best, reason=NextTaskReason.FOUND)
