"""Service facade for TaskHero.

Every public method of ``TaskHero`` runs one load -> mutate -> persist
cycle under the project lock and returns an ``OperationResult``. Domain
errors never escape: they are logged and turned into a failed result
carrying the error kind, message and the ids involved.
"""

from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel

from taskhero.core.config import CycleBreakStrategy, Settings, get_settings
from taskhero.core.errors import InvalidArgumentError, TaskHeroError
from taskhero.core.locking import project_lock
from taskhero.prd.files import PrdLayout
from taskhero.prd.integrity import IntegrityChecker
from taskhero.prd.models import PrdStatus
from taskhero.prd.registry import PrdRegistry
from taskhero.prd.sync import SyncAction, SyncEngine, plan_sync
from taskhero.tasks.dependencies import DependencyValidator
from taskhero.tasks.graph import TaskGraph
from taskhero.tasks.models import Task, TaskFilter, TaskPriority, TaskStatus
from taskhero.tasks.selector import is_ready, next_task
from taskhero.tasks.store import TaskStore


class OperationResult(BaseModel):
    """Structured outcome of a service operation."""

    success: bool
    data: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None) -> "OperationResult":
        return cls(success=True, data=data or {})

    @classmethod
    def fail(cls, error: TaskHeroError) -> "OperationResult":
        return cls(success=False, error=error.to_dict())

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}


def split_ids(value: str | Iterable[str]) -> list[str]:
    """Accept ``"1,2.3"`` or an iterable of ids."""
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = [str(v) for v in value]
    ids = [p.strip() for p in parts if p.strip()]
    if not ids:
        raise InvalidArgumentError("No task ids given")
    return ids


class TaskHero:
    """
    Entry point for all task and PRD operations.

    Example:
        >>> hero = TaskHero(Settings(project_root=tmp_path))
        >>> hero.add_task("Set up CI").data["task"]["id"]
        '1'
        >>> hero.next_task().data["reason"]
        'found'
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.store = TaskStore(self.settings.tasks_path)
        self.layout = PrdLayout(self.settings.project_root, self.settings.prd_root)

    # =========================================================================
    # PLUMBING
    # =========================================================================

    def _run(self, operation: str, fn: Callable[[], dict[str, Any]]) -> OperationResult:
        try:
            with project_lock(self.settings.lock_path, self.settings.lock_timeout):
                data = fn()
        except TaskHeroError as e:
            logger.error(f"{operation} failed [{e.kind}]: {e.message}")
            return OperationResult.fail(e)
        except ValueError as e:
            logger.error(f"{operation} failed [InvalidArgument]: {e}")
            return OperationResult.fail(InvalidArgumentError(str(e)))
        logger.debug(f"{operation} succeeded")
        return OperationResult.ok(data)

    def _mutate_tasks(self, fn: Callable[[TaskGraph], dict[str, Any]]) -> dict[str, Any]:
        graph = self.store.load()
        data = fn(graph)
        if graph.modified:
            self.store.save(graph)
        return data

    def _load_registry(self) -> PrdRegistry:
        return PrdRegistry.load(self.settings.prds_path, self.layout)

    def _commit_sync(self, engine: SyncEngine | IntegrityChecker, graph: TaskGraph) -> None:
        """Persist tasks and registry after a sync; undo everything on failure."""
        tasks_saved = False
        try:
            if graph.modified:
                self.store.save(graph)
                tasks_saved = True
            if engine.registry.modified:
                engine.registry.save()
        except TaskHeroError:
            engine.rollback()
            if tasks_saved:
                self.store.save(graph)
            raise

    def _auto_sync(self, graph: TaskGraph, task_ids: list[str]) -> list[SyncAction]:
        """Re-derive status of PRDs linked to the given tasks."""
        if not self.settings.auto_sync_prd_status or not self.settings.prds_path.exists():
            return []
        paths = {
            task.prd_source.file_path
            for task_id in task_ids
            if (task := graph.find(task_id)) is not None and task.prd_source is not None
        }
        if not paths:
            return []

        registry = self._load_registry()
        actions: list[SyncAction] = []
        for path in sorted(paths):
            record = registry.find_by_path(path)
            if record is not None and not record.is_archived:
                actions.extend(plan_sync(registry, graph, self.layout, record.prd_identifier))

        engine = SyncEngine(registry, graph)
        engine.apply(actions)
        self._commit_sync(engine, graph)
        return actions

    # =========================================================================
    # TASKS
    # =========================================================================

    def add_task(
        self,
        title: str,
        description: str = "",
        details: str = "",
        test_strategy: str = "",
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        dependencies: Iterable[str] = (),
    ) -> OperationResult:
        """Create a top-level task with the next free id."""

        def op(graph: TaskGraph) -> dict[str, Any]:
            task = graph.add_task(
                title,
                description=description,
                details=details,
                test_strategy=test_strategy,
                priority=priority,
                dependencies=dependencies,
            )
            return {"task": task.to_dict()}

        return self._run("add_task", lambda: self._mutate_tasks(op))

    def add_subtask(
        self,
        parent_id: str,
        title: str,
        description: str = "",
        details: str = "",
        test_strategy: str = "",
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        dependencies: Iterable[str] = (),
    ) -> OperationResult:
        """Create a subtask under ``parent_id``."""

        def op(graph: TaskGraph) -> dict[str, Any]:
            task = graph.add_subtask(
                parent_id,
                title,
                description=description,
                details=details,
                test_strategy=test_strategy,
                priority=priority,
                dependencies=dependencies,
            )
            return {"task": task.to_dict(), "parentId": parent_id}

        return self._run("add_subtask", lambda: self._mutate_tasks(op))

    def update_task(self, task_id: str, **fields: Any) -> OperationResult:
        """Edit title, description, details, test strategy or priority."""

        def op(graph: TaskGraph) -> dict[str, Any]:
            return {"task": graph.update_task(task_id, **fields).to_dict()}

        return self._run("update_task", lambda: self._mutate_tasks(op))

    def remove_task(self, task_id: str, cascade_dependents: bool = False) -> OperationResult:
        """Remove a task and its subtasks."""
        return self._run(
            "remove_task",
            lambda: self._mutate_tasks(
                lambda graph: graph.remove_task(task_id, cascade_dependents).to_dict()
            ),
        )

    def move_task(self, from_id: str, to_id: str, insert_placeholder: bool = False) -> OperationResult:
        """Move and renumber a subtree."""
        return self._run(
            "move_task",
            lambda: self._mutate_tasks(
                lambda graph: graph.move_task(from_id, to_id, insert_placeholder).to_dict()
            ),
        )

    def set_status(self, task_ids: str | Iterable[str], status: TaskStatus | str) -> OperationResult:
        """
        Set the status of one or more tasks.

        Args:
            task_ids: Id or comma-separated ids, e.g. ``"1,2.3"``.
            status: New status; ``done`` cascades to subtasks.

        Returns:
            Changed ids plus any PRD sync actions that followed.
        """

        def op() -> dict[str, Any]:
            ids = split_ids(task_ids)
            graph = self.store.load()
            for task_id in ids:
                graph.get(task_id)

            changed: list[str] = []
            for task_id in ids:
                changed.extend(c for c in graph.set_status(task_id, status) if c not in changed)
            if graph.modified:
                self.store.save(graph)

            data: dict[str, Any] = {
                "taskIds": ids,
                "status": TaskStatus(status).value,
                "changed": changed,
                "prdSync": [],
            }
            # The status change is already persisted; a failed PRD sync is reported, not fatal.
            try:
                data["prdSync"] = [a.to_dict() for a in self._auto_sync(graph, changed)]
            except TaskHeroError as e:
                logger.warning(f"PRD sync after status change failed: {e.message}")
                data["prdSyncError"] = e.to_dict()
            return data

        return self._run("set_status", op)

    def list_tasks(
        self,
        statuses: Iterable[TaskStatus | str] | None = None,
        prd: str | None = None,
        manual_only: bool = False,
        prd_only: bool = False,
        include_subtasks: bool = False,
    ) -> OperationResult:
        """List tasks matching the given filters."""

        def op() -> dict[str, Any]:
            task_filter = TaskFilter(
                statuses=frozenset(TaskStatus(s) for s in statuses or ()),
                prd=prd,
                manual_only=manual_only,
                prd_only=prd_only,
                include_subtasks=include_subtasks,
            )
            graph = self.store.load()
            tasks = graph.list_tasks(task_filter)
            return {
                "tasks": [t.summary() for t in tasks],
                "total": len(graph),
                "counts": graph.status_counts(),
            }

        return self._run("list_tasks", op)

    def get_task(self, task_id: str) -> OperationResult:
        """Show one task with its dependents and readiness."""

        def op() -> dict[str, Any]:
            graph = self.store.load()
            task = graph.get(task_id)
            parent = graph.parent(task.id)
            return {
                "task": task.to_dict(),
                "parentId": parent.id if parent else None,
                "dependents": graph.dependents_of(task.id),
                "ready": is_ready(graph, task),
            }

        return self._run("get_task", op)

    def ingest_tasks(self, prd_id: str, drafts: list[Task | dict[str, Any]]) -> OperationResult:
        """
        Insert tasks generated from a registered PRD.

        Draft ids are renumbered after the current maximum and every
        inserted task is stamped with the PRD's source. A failure of the
        PRD sync that follows is returned as ``prdSyncError``.
        """

        def op() -> dict[str, Any]:
            if not drafts:
                raise InvalidArgumentError("No draft tasks to ingest")
            parsed = [d if isinstance(d, Task) else Task.model_validate(d) for d in drafts]
            registry = self._load_registry()
            record = registry.get(prd_id)
            graph = self.store.load()
            id_map = graph.insert_batch(parsed, registry.source_for(record))
            self.store.save(graph)

            data: dict[str, Any] = {"prdIdentifier": prd_id, "idMap": id_map, "prdSync": []}
            # The inserted tasks are already persisted; a failed PRD sync is reported, not fatal.
            try:
                actions = self._auto_sync(graph, list(id_map.values()))
                data["prdSync"] = [a.to_dict() for a in actions]
            except TaskHeroError as e:
                logger.warning(f"PRD sync after ingesting tasks failed: {e.message}")
                data["prdSyncError"] = e.to_dict()
            return data

        return self._run("ingest_tasks", op)

    # =========================================================================
    # DEPENDENCIES
    # =========================================================================

    def add_dependency(self, task_id: str, depends_on: str) -> OperationResult:
        """Add a dependency edge, refusing self-references and cycles."""

        def op(graph: TaskGraph) -> dict[str, Any]:
            added = graph.add_dependency(task_id, depends_on)
            return {"taskId": task_id, "dependsOn": depends_on, "added": added}

        return self._run("add_dependency", lambda: self._mutate_tasks(op))

    def remove_dependency(self, task_id: str, depends_on: str) -> OperationResult:
        """Remove a dependency edge."""

        def op(graph: TaskGraph) -> dict[str, Any]:
            graph.remove_dependency(task_id, depends_on)
            return {"taskId": task_id, "dependsOn": depends_on}

        return self._run("remove_dependency", lambda: self._mutate_tasks(op))

    def validate_dependencies(self) -> OperationResult:
        """Report every dependency violation without changing anything."""

        def op() -> dict[str, Any]:
            violations = DependencyValidator(self.store.load()).validate()
            return {"valid": not violations, "violations": [v.to_dict() for v in violations]}

        return self._run("validate_dependencies", op)

    def fix_dependencies(
        self, dry_run: bool = False, strategy: CycleBreakStrategy | None = None
    ) -> OperationResult:
        """Repair dependency violations, or preview the repair with ``dry_run``."""
        strategy = strategy or self.settings.cycle_break_strategy
        return self._run(
            "fix_dependencies",
            lambda: self._mutate_tasks(
                lambda graph: DependencyValidator(graph).fix(strategy, dry_run).to_dict()
            ),
        )

    def next_task(self) -> OperationResult:
        """Pick the next eligible task."""

        def op() -> dict[str, Any]:
            graph = self.store.load()
            return next_task(graph, self.settings.subtasks_require_started_parent).to_dict()

        return self._run("next_task", op)

    # =========================================================================
    # PRDS
    # =========================================================================

    def register_prd(self, file_path: Path | str, title: str | None = None) -> OperationResult:
        """Start tracking a PRD file."""

        def op() -> dict[str, Any]:
            self.layout.ensure_directories()
            registry = self._load_registry()
            record = registry.register(Path(file_path), title)
            registry.save()
            return {"prd": record.to_dict()}

        return self._run("register_prd", op)

    def list_prds(self, status: PrdStatus | str | None = None) -> OperationResult:
        """List registered PRDs, optionally by status."""

        def op() -> dict[str, Any]:
            records = self._load_registry().list(status)
            return {"prds": [r.to_dict() for r in records]}

        return self._run("list_prds", op)

    def check_prd_changes(self, prd_id: str | None = None) -> OperationResult:
        """Compare PRD files against their stored hashes."""

        def op() -> dict[str, Any]:
            changes = self._load_registry().check_changes(self.store.load(), prd_id)
            return {"changes": [c.to_dict() for c in changes]}

        return self._run("check_prd_changes", op)

    def update_prd_metadata(self, prd_id: str) -> OperationResult:
        """Accept the current PRD file content as the new baseline."""

        def op() -> dict[str, Any]:
            registry = self._load_registry()
            record = registry.update_metadata(prd_id)
            registry.save()
            return {"prd": record.to_dict()}

        return self._run("update_prd_metadata", op)

    def link_prd_tasks(self, prd_id: str, task_ids: str | Iterable[str]) -> OperationResult:
        """Stamp a PRD's source onto existing tasks."""

        def op() -> dict[str, Any]:
            registry = self._load_registry()
            graph = self.store.load()
            stamped = registry.link_tasks(graph, prd_id, split_ids(task_ids))
            self.store.save(graph)
            return {"prdIdentifier": prd_id, "linkedTaskIds": stamped}

        return self._run("link_prd_tasks", op)

    def unlink_prd_tasks(self, prd_id: str, task_ids: str | Iterable[str]) -> OperationResult:
        """Clear a PRD's source from tasks; its statistics follow when auto-sync is on."""

        def op() -> dict[str, Any]:
            registry = self._load_registry()
            graph = self.store.load()
            cleared = registry.unlink_tasks(graph, prd_id, split_ids(task_ids))
            engine = SyncEngine(registry, graph)
            actions: list[SyncAction] = []
            if self.settings.auto_sync_prd_status and not registry.get(prd_id).is_archived:
                actions = engine.apply(plan_sync(registry, graph, self.layout, prd_id))
            self._commit_sync(engine, graph)
            return {
                "prdIdentifier": prd_id,
                "unlinkedTaskIds": cleared,
                "prdSync": [a.to_dict() for a in actions],
            }

        return self._run("unlink_prd_tasks", op)

    def sync_prd_status(self, prd_id: str | None = None, dry_run: bool = False) -> OperationResult:
        """Derive PRD statuses from their tasks and relocate files accordingly."""

        def op() -> dict[str, Any]:
            registry = self._load_registry()
            graph = self.store.load()
            actions = plan_sync(registry, graph, self.layout, prd_id)
            if not dry_run and actions:
                engine = SyncEngine(registry, graph)
                engine.apply(actions)
                self._commit_sync(engine, graph)
            return {"dryRun": dry_run, "actions": [a.to_dict() for a in actions]}

        return self._run("sync_prd_status", op)

    def archive_prd(self, prd_id: str, force: bool = False) -> OperationResult:
        """Archive a finished PRD and move its file to ``archived/``."""

        def op() -> dict[str, Any]:
            registry = self._load_registry()
            graph = self.store.load()
            engine = SyncEngine(registry, graph)
            action = engine.archive(prd_id, force)
            self._commit_sync(engine, graph)
            return {"action": action.to_dict()}

        return self._run("archive_prd", op)

    def remove_prd(self, prd_id: str, unlink_tasks: bool = False) -> OperationResult:
        """
        Stop tracking a PRD. The file is left where it is.

        Refused while tasks are linked, unless ``unlink_tasks`` clears them.
        """

        def op() -> dict[str, Any]:
            registry = self._load_registry()
            graph = self.store.load()
            record, cleared = registry.remove(graph, prd_id, unlink_tasks)
            registry.save()
            if graph.modified:
                self.store.save(graph)
            return {"prd": record.to_dict(), "unlinkedTaskIds": cleared}

        return self._run("remove_prd", op)

    def check_prd_integrity(self, repair: bool = False) -> OperationResult:
        """
        Report registry state that disagrees with tasks or files.

        With ``repair``, misplaced files are moved to the directory of their
        status, stale paths and statistics are rewritten, and the result
        lists what was fixed.
        """

        def op() -> dict[str, Any]:
            registry = self._load_registry()
            graph = self.store.load()
            checker = IntegrityChecker(registry, graph)
            if not repair:
                return checker.check().to_dict()
            report = checker.repair()
            self._commit_sync(checker, graph)
            return report.to_dict()

        return self._run("check_prd_integrity", op)
