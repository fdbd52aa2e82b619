"""PRD status synchronization.

``plan_sync`` is a pure function that decides, from task state, what each
PRD's status, task statistics and on-disk location should be.
``SyncEngine`` applies those decisions to the registry, the tasks'
``prdSource`` stamps and the filesystem as one unit: if any step fails,
the earlier steps are undone.
"""

from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel

from taskhero.core.errors import InvalidArgumentError, TaskHeroError
from taskhero.prd.files import PrdFileMover, PrdLayout
from taskhero.prd.models import PrdRecord, PrdStatus, TaskStats
from taskhero.prd.registry import PrdRegistry, linked_tasks
from taskhero.tasks.graph import TaskGraph
from taskhero.tasks.ids import sort_ids
from taskhero.tasks.models import Task, TaskStatus


# =============================================================================
# DECISIONS
# =============================================================================


class SyncAction(BaseModel):
    """Planned change for one PRD."""

    prd_id: str
    old_status: PrdStatus
    new_status: PrdStatus
    task_stats: TaskStats
    source_path: str
    target_path: str | None = None

    @property
    def status_changed(self) -> bool:
        return self.old_status != self.new_status

    @property
    def relocates(self) -> bool:
        return self.target_path is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "prdIdentifier": self.prd_id,
            "oldStatus": self.old_status.value,
            "newStatus": self.new_status.value,
            "taskStats": self.task_stats.to_dict(),
            "sourcePath": self.source_path,
            "targetPath": self.target_path,
        }


def derive_status(current: PrdStatus, tasks: list[Task]) -> PrdStatus:
    """
    Status a PRD should have given its linked tasks.

    ``done`` when every task is done, ``in-progress`` when work has started
    but is not finished, otherwise the current status is kept. A PRD with no
    linked tasks never changes on its own.

    Example:
        >>> derive_status(PrdStatus.PENDING, [done_task, pending_task])
        <PrdStatus.IN_PROGRESS: 'in-progress'>
    """
    if current == PrdStatus.ARCHIVED or not tasks:
        return current
    statuses = {t.status for t in tasks}
    if statuses == {TaskStatus.DONE}:
        return PrdStatus.DONE
    if statuses & {TaskStatus.DONE, TaskStatus.IN_PROGRESS}:
        return PrdStatus.IN_PROGRESS
    return current


def _plan_one(
    record: PrdRecord, graph: TaskGraph, layout: PrdLayout, status: PrdStatus | None = None
) -> SyncAction | None:
    tasks = linked_tasks(graph, record)
    new_status = status or derive_status(record.status, tasks)
    stats = TaskStats.from_tasks(tasks)

    target: Path | None = None
    if layout.to_absolute(record.file_path).exists():
        target = layout.target_for(record, new_status)
    else:
        logger.warning(f"PRD file {record.file_path} of {record.prd_identifier} is missing")

    if new_status == record.status and stats == record.task_stats and target is None:
        return None
    return SyncAction(
        prd_id=record.prd_identifier,
        old_status=record.status,
        new_status=new_status,
        task_stats=stats,
        source_path=record.file_path,
        target_path=layout.to_relative(target) if target is not None else None,
    )


def plan_placement(record: PrdRecord, graph: TaskGraph, layout: PrdLayout) -> SyncAction | None:
    """Re-check file location and task stats of a record, keeping its status."""
    return _plan_one(record, graph, layout, status=record.status)


def plan_sync(
    registry: PrdRegistry,
    graph: TaskGraph,
    layout: PrdLayout,
    prd_id: str | None = None,
) -> list[SyncAction]:
    """
    Decide what syncing would change, without changing anything.

    Args:
        registry: PRD registry.
        graph: Task graph holding the linked tasks.
        layout: Lifecycle directory layout.
        prd_id: Restrict to one PRD; all non-archived PRDs when None.

    Returns:
        One action per PRD whose status, stats or location would change.
    """
    records = [registry.get(prd_id)] if prd_id else registry.list()
    actions: list[SyncAction] = []
    for record in records:
        if record.is_archived:
            logger.debug(f"Skipping archived PRD {record.prd_identifier}")
            continue
        action = _plan_one(record, graph, layout)
        if action is not None:
            actions.append(action)
    return actions


# =============================================================================
# EFFECTS
# =============================================================================


class SyncEngine:
    """
    Apply sync actions to registry, tasks and files.

    Example:
        >>> engine = SyncEngine(registry, graph)
        >>> applied = engine.apply(plan_sync(registry, graph, registry.layout))
        >>> registry.save(); store.save(graph)
    """

    def __init__(self, registry: PrdRegistry, graph: TaskGraph) -> None:
        self.registry = registry
        self.graph = graph
        self._mover = PrdFileMover()
        self._registry_state: dict[str, Any] | None = None
        self._relinked: list[tuple[str, str]] = []

    @property
    def layout(self) -> PrdLayout:
        return self.registry.layout

    def apply(self, actions: list[SyncAction]) -> list[SyncAction]:
        """
        Apply every action or none of them.

        Raises:
            FileIOError: If a relocation fails; earlier moves are undone.
        """
        if not actions:
            return []

        self._mover = PrdFileMover()
        self._relinked = []
        self._registry_state = self.registry.dump()
        try:
            for action in actions:
                self._apply_one(action)
        except TaskHeroError:
            self.rollback()
            raise

        logger.info(f"Applied {len(actions)} PRD sync actions")
        return actions

    def _apply_one(self, action: SyncAction) -> None:
        record = self.registry.get(action.prd_id)
        if action.target_path is not None:
            source = self.layout.to_absolute(action.source_path)
            target = self.layout.to_absolute(action.target_path)
            self._mover.move(source, target)
            self.registry.relink_path(self.graph, action.source_path, action.target_path)
            self._relinked.append((action.source_path, action.target_path))
            record.file_path = action.target_path
            record.file_name = target.name

        if action.status_changed:
            logger.info(
                f"PRD {action.prd_id}: {action.old_status.value} -> {action.new_status.value}"
            )
        record.status = action.new_status
        record.task_stats = action.task_stats
        record.touch()
        self.registry.mark_modified()

    def rollback(self) -> None:
        """Undo moves, task relinks and registry edits made by ``apply``."""
        self._mover.rollback()
        for old_path, new_path in reversed(self._relinked):
            self.registry.relink_path(self.graph, new_path, old_path)
        self._relinked.clear()
        if self._registry_state is not None:
            self.registry.restore(self._registry_state)
            self._registry_state = None

    def sync(self, prd_id: str | None = None) -> list[SyncAction]:
        """Plan and apply in one step."""
        return self.apply(plan_sync(self.registry, self.graph, self.layout, prd_id))

    def archive(self, prd_id: str, force: bool = False) -> SyncAction:
        """
        Archive a PRD and move its file to ``archived/``.

        Args:
            prd_id: PRD to archive.
            force: Skip the check that the PRD and all its tasks are done.

        Raises:
            InvalidArgumentError: If the PRD is already archived, or is not
                complete and ``force`` is False.
        """
        record = self.registry.get(prd_id)
        if record.is_archived:
            raise InvalidArgumentError(f"PRD {prd_id} is already archived", [prd_id])

        if not force:
            if record.status != PrdStatus.DONE:
                raise InvalidArgumentError(
                    f"PRD {prd_id} is {record.status.value}, not done; use force to archive",
                    [prd_id],
                )
            unfinished = [
                t.id for t in linked_tasks(self.graph, record) if t.status != TaskStatus.DONE
            ]
            if unfinished:
                unfinished = sort_ids(unfinished)
                raise InvalidArgumentError(
                    f"PRD {prd_id} has unfinished tasks: {', '.join(unfinished)}",
                    [prd_id, *unfinished],
                )

        action = _plan_one(record, self.graph, self.layout, status=PrdStatus.ARCHIVED)
        self.apply([action])
        logger.info(f"Archived PRD {prd_id}")
        return action
