"""In-memory task graph.

``TaskGraph`` owns the task tree for the duration of one operation. It is
an explicit object passed to every component that needs it; nothing here
is cached at module level. All structural edits (add, remove, move,
dependency changes) go through this class so that the id index, the
subtask invariants and the dependency references stay consistent.
"""

from collections.abc import Iterable, Iterator
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from taskhero.core.errors import (
    CycleDetectedError,
    DuplicateIdError,
    InvalidArgumentError,
    InvalidReferenceError,
    MoveConflictError,
    NotFoundError,
)
from taskhero.tasks.dependencies import detect_cycles, find_path
from taskhero.tasks.ids import (
    compose_id,
    in_subtree,
    is_valid_id,
    last_segment,
    parent_of,
    remap_id,
    sort_ids,
)
from taskhero.tasks.models import (
    PrdSource,
    Task,
    TaskFilter,
    TaskPriority,
    TaskSnapshot,
    TaskStatus,
    utc_now,
)

EDITABLE_FIELDS = frozenset({"title", "description", "details", "test_strategy", "priority"})


# =============================================================================
# OPERATION RESULTS
# =============================================================================


class RemoveResult(BaseModel):
    """Outcome of removing a task subtree."""

    removed_ids: list[str] = Field(default_factory=list)
    stripped_references: list[tuple[str, str]] = Field(
        default_factory=list,
        description="(task_id, removed_dependency_id) pairs cleaned from other tasks",
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "removedIds": self.removed_ids,
            "strippedReferences": [
                {"taskId": t, "dependencyId": d} for t, d in self.stripped_references
            ],
        }


class RemappedReference(BaseModel):
    """A dependency entry rewritten because its target moved."""

    task_id: str
    old_dependency_id: str
    new_dependency_id: str
    internal: bool = Field(description="True if the referencing task moved too")


class MoveResult(BaseModel):
    """Outcome of moving a task subtree."""

    from_id: str
    requested_id: str
    new_id: str
    placeholder_used: bool = False
    id_map: dict[str, str] = Field(default_factory=dict)
    remapped_references: list[RemappedReference] = Field(default_factory=list)

    @property
    def moved_count(self) -> int:
        return len(self.id_map)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fromId": self.from_id,
            "requestedId": self.requested_id,
            "newId": self.new_id,
            "placeholderUsed": self.placeholder_used,
            "idMap": self.id_map,
            "remappedReferences": [
                {
                    "taskId": r.task_id,
                    "from": r.old_dependency_id,
                    "to": r.new_dependency_id,
                    "internal": r.internal,
                }
                for r in self.remapped_references
            ],
        }


# =============================================================================
# TASK GRAPH
# =============================================================================


class TaskGraph:
    """
    Tree of tasks plus the dependency relation between them.

    Example:
        >>> graph = TaskGraph()
        >>> setup = graph.add_task("Set up repository")
        >>> api = graph.add_task("Build API", dependencies=[setup.id])
        >>> graph.add_subtask(api.id, "Define routes").id
        '2.1'
    """

    def __init__(self, tasks: list[Task] | None = None) -> None:
        self._tasks: list[Task] = tasks if tasks is not None else []
        self._index: dict[str, Task] = {}
        self._parents: dict[str, str | None] = {}
        self._order: dict[str, int] = {}
        self._next_order = 0
        self.modified = False
        self._reindex()

    @classmethod
    def from_snapshot(cls, snapshot: TaskSnapshot) -> "TaskGraph":
        """Build a graph from a validated snapshot."""
        return cls(snapshot.tasks)

    def to_snapshot(self) -> TaskSnapshot:
        """Return the snapshot backing this graph."""
        return TaskSnapshot(tasks=self._tasks)

    # =========================================================================
    # INDEX
    # =========================================================================

    def _reindex(self) -> None:
        """Rebuild id and parent lookups; keep insertion order for known ids."""
        self._index = {}
        self._parents = {}

        def visit(task: Task, parent_id: str | None) -> None:
            self._index[task.id] = task
            self._parents[task.id] = parent_id
            if task.id not in self._order:
                self._order[task.id] = self._next_order
                self._next_order += 1
            for sub in task.subtasks:
                visit(sub, task.id)

        for task in self._tasks:
            visit(task, None)

        for stale in set(self._order) - set(self._index):
            del self._order[stale]

    def mark_modified(self) -> None:
        """Flag the graph as needing persistence."""
        self.modified = True

    # =========================================================================
    # QUERIES
    # =========================================================================

    @property
    def tasks(self) -> list[Task]:
        """Top-level tasks in stored order."""
        return self._tasks

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._index

    def is_empty(self) -> bool:
        return not self._index

    def all_ids(self) -> set[str]:
        """Ids of every task and subtask."""
        return set(self._index)

    def iter_nodes(self) -> Iterator[Task]:
        """All tasks and subtasks, pre-order."""
        for task in self._tasks:
            yield from task.iter_tree()

    def find(self, task_id: str) -> Task | None:
        """Look up a task or subtask, returning None if absent."""
        return self._index.get(str(task_id))

    def get(self, task_id: str) -> Task:
        """
        Look up a task or subtask.

        Raises:
            NotFoundError: If no task has this id.
        """
        task = self.find(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found", [str(task_id)])
        return task

    def parent(self, task_id: str) -> Task | None:
        """Parent task, or None for top-level tasks."""
        parent_id = self._parents.get(task_id)
        return self._index[parent_id] if parent_id is not None else None

    def insertion_index(self, task_id: str) -> int:
        """Position of the task in creation/load order."""
        return self._order[task_id]

    def adjacency(self) -> dict[str, list[str]]:
        """Dependency graph over every node (task_id -> [dependency_ids])."""
        return {task.id: list(task.dependencies) for task in self.iter_nodes()}

    def dependents_of(self, task_id: str) -> list[str]:
        """Ids of tasks that list ``task_id`` as a dependency."""
        return sort_ids(t.id for t in self.iter_nodes() if task_id in t.dependencies)

    def list_tasks(self, task_filter: TaskFilter | None = None) -> list[Task]:
        """
        List tasks matching a filter.

        Args:
            task_filter: Predicate; defaults to every top-level task.

        Returns:
            Matching tasks in stored order (pre-order if subtasks are included).
        """
        task_filter = task_filter or TaskFilter()
        candidates: Iterable[Task] = (
            self.iter_nodes() if task_filter.include_subtasks else self._tasks
        )
        return [t for t in candidates if task_filter.matches(t)]

    def status_counts(self) -> dict[str, int]:
        """Number of tasks and subtasks per status."""
        counts = {status.value: 0 for status in TaskStatus}
        for task in self.iter_nodes():
            counts[task.status.value] += 1
        return counts

    # =========================================================================
    # ID ALLOCATION
    # =========================================================================

    def _children(self, parent_id: str | None) -> list[Task]:
        return self._tasks if parent_id is None else self.get(parent_id).subtasks

    def next_id(self, parent_id: str | None = None) -> str:
        """Next free id under ``parent_id`` (top level if None)."""
        children = self._children(parent_id)
        highest = max((last_segment(c.id) for c in children), default=0)
        return compose_id(parent_id, highest + 1)

    def _insert_sorted(self, siblings: list[Task], task: Task) -> None:
        key = last_segment(task.id)
        for position, sibling in enumerate(siblings):
            if last_segment(sibling.id) > key:
                siblings.insert(position, task)
                return
        siblings.append(task)

    # =========================================================================
    # CREATE / UPDATE / DELETE
    # =========================================================================

    def _check_dependencies(self, task_id: str, dependencies: Iterable[str]) -> list[str]:
        deps: list[str] = []
        for dep in dependencies:
            dep = str(dep)
            if dep == task_id:
                raise InvalidReferenceError(f"Task {task_id} cannot depend on itself", [task_id])
            if dep not in self._index:
                raise InvalidReferenceError(
                    f"Dependency {dep} of task {task_id} does not exist", [task_id, dep]
                )
            if dep not in deps:
                deps.append(dep)
        return deps

    def _new_task(
        self,
        task_id: str,
        title: str,
        description: str,
        details: str,
        test_strategy: str,
        priority: TaskPriority | str,
        dependencies: Iterable[str],
        prd_source: PrdSource | None,
    ) -> Task:
        if not title or not title.strip():
            raise InvalidArgumentError("Task title must not be empty")
        try:
            priority = TaskPriority(priority)
        except ValueError as e:
            raise InvalidArgumentError(f"Invalid priority: {priority}") from e
        now = utc_now()
        return Task(
            id=task_id,
            title=title.strip(),
            description=description,
            details=details,
            test_strategy=test_strategy,
            priority=priority,
            dependencies=self._check_dependencies(task_id, dependencies),
            prd_source=prd_source,
            created_at=now,
            updated_at=now,
        )

    def add_task(
        self,
        title: str,
        description: str = "",
        details: str = "",
        test_strategy: str = "",
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        dependencies: Iterable[str] = (),
        prd_source: PrdSource | None = None,
        task_id: str | None = None,
    ) -> Task:
        """
        Add a top-level task.

        Args:
            title: Task title.
            task_id: Explicit id; the next free id is used when omitted.

        Returns:
            The created task.

        Raises:
            DuplicateIdError: If ``task_id`` is taken.
            InvalidReferenceError: If a dependency does not exist.
        """
        if task_id is None:
            task_id = self.next_id()
        elif not is_valid_id(task_id) or parent_of(task_id) is not None:
            raise InvalidArgumentError(f"Invalid top-level task id: {task_id}", [task_id])
        if task_id in self._index:
            raise DuplicateIdError(f"Task {task_id} already exists", [task_id])

        task = self._new_task(
            task_id, title, description, details, test_strategy, priority, dependencies, prd_source
        )
        self._insert_sorted(self._tasks, task)
        self._reindex()
        self.mark_modified()
        logger.info(f"Added task {task.id}: {task.title}")
        return task

    def add_subtask(
        self,
        parent_id: str,
        title: str,
        description: str = "",
        details: str = "",
        test_strategy: str = "",
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        dependencies: Iterable[str] = (),
    ) -> Task:
        """Add a subtask under ``parent_id`` with the next sequence number.

        The subtask inherits the parent's PRD source.
        """
        parent = self.get(parent_id)
        task_id = self.next_id(parent.id)
        source = parent.prd_source.model_copy() if parent.prd_source else None
        task = self._new_task(
            task_id, title, description, details, test_strategy, priority, dependencies, source
        )
        parent.subtasks.append(task)
        parent.touch()
        self._reindex()
        self.mark_modified()
        logger.info(f"Added subtask {task.id} to task {parent.id}")
        return task

    def insert_batch(self, drafts: list[Task], prd_source: PrdSource | None = None) -> dict[str, str]:
        """
        Insert generated tasks, renumbering them after the current maximum id.

        Draft ids are local to the batch; dependencies may point at other
        drafts (remapped) or at existing tasks (kept).

        Args:
            drafts: Top-level draft tasks, possibly with subtasks.
            prd_source: Source stamp applied to every inserted task.

        Returns:
            Mapping of draft id -> assigned id for every inserted node.

        Raises:
            InvalidReferenceError: If a dependency resolves to nothing.
            CycleDetectedError: If the drafts form a dependency cycle.
        """
        id_map: dict[str, str] = {}
        next_seq = last_segment(self.next_id())
        for offset, draft in enumerate(drafts):
            new_root = compose_id(None, next_seq + offset)
            for node in draft.iter_tree():
                if node.id in id_map:
                    raise DuplicateIdError(f"Draft id {node.id} appears twice", [node.id])
                id_map[node.id] = remap_id(node.id, draft.id, new_root)

        now = utc_now()
        inserted: list[Task] = []
        for draft in drafts:
            root = draft.model_copy(deep=True)
            for node in root.iter_tree():
                deps: list[str] = []
                for dep in node.dependencies:
                    target = id_map.get(dep, dep if dep in self._index else None)
                    if target is None:
                        raise InvalidReferenceError(
                            f"Draft task {node.id} depends on unknown task {dep}", [node.id, dep]
                        )
                    if target == id_map[node.id]:
                        raise InvalidReferenceError(
                            f"Draft task {node.id} cannot depend on itself", [node.id]
                        )
                    if target not in deps:
                        deps.append(target)
                node.id = id_map[node.id]
                node.dependencies = deps
                node.created_at = node.updated_at = now
                if prd_source is not None:
                    node.prd_source = prd_source.model_copy()
            inserted.append(root)

        adjacency = self.adjacency()
        for root in inserted:
            for node in root.iter_tree():
                adjacency[node.id] = list(node.dependencies)
        cycles = detect_cycles(adjacency)
        if cycles:
            raise CycleDetectedError(cycles[0])

        self._tasks.extend(inserted)
        self._reindex()
        self.mark_modified()
        logger.info(f"Inserted {len(id_map)} tasks from batch of {len(drafts)}")
        return id_map

    def update_task(self, task_id: str, **fields: Any) -> Task:
        """
        Edit descriptive fields of a task.

        Only title, description, details, test_strategy and priority can be
        changed here; status, dependencies and ids have dedicated operations.
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise InvalidArgumentError(
                f"Fields cannot be updated directly: {', '.join(sorted(unknown))}", [task_id]
            )
        task = self.get(task_id)
        if "priority" in fields:
            try:
                fields["priority"] = TaskPriority(fields["priority"])
            except ValueError as e:
                raise InvalidArgumentError(f"Invalid priority: {fields['priority']}") from e
        if "title" in fields and not str(fields["title"]).strip():
            raise InvalidArgumentError("Task title must not be empty", [task_id])

        for name, value in fields.items():
            setattr(task, name, value)
        task.touch()
        self.mark_modified()
        return task

    def remove_task(self, task_id: str, cascade_dependents: bool = False) -> RemoveResult:
        """
        Remove a task and its whole subtree.

        Args:
            task_id: Task to remove.
            cascade_dependents: Strip references held by other tasks instead
                of refusing the removal.

        Raises:
            NotFoundError: If the task does not exist.
            InvalidReferenceError: If other tasks depend on the subtree and
                ``cascade_dependents`` is False.
        """
        task = self.get(task_id)
        removed = {node.id for node in task.iter_tree()}
        dependents = [
            (node.id, dep)
            for node in self.iter_nodes()
            if node.id not in removed
            for dep in node.dependencies
            if dep in removed
        ]

        if dependents and not cascade_dependents:
            holders = sort_ids({holder for holder, _ in dependents})
            raise InvalidReferenceError(
                f"Cannot remove task {task_id}: tasks {', '.join(holders)} depend on it",
                [task_id, *holders],
            )

        for holder_id, dep in dependents:
            holder = self._index[holder_id]
            holder.dependencies = [d for d in holder.dependencies if d != dep]
            holder.touch()

        parent = self.parent(task_id)
        siblings = parent.subtasks if parent else self._tasks
        siblings.remove(task)
        if parent:
            parent.touch()

        self._reindex()
        self.mark_modified()
        logger.info(f"Removed task {task_id} ({len(removed)} nodes)")
        return RemoveResult(removed_ids=sort_ids(removed), stripped_references=dependents)

    # =========================================================================
    # STATUS
    # =========================================================================

    def set_status(self, task_id: str, status: TaskStatus | str) -> list[str]:
        """
        Set a task's status; ``done`` cascades to every subtask.

        Returns:
            Ids whose status actually changed.
        """
        try:
            status = TaskStatus(status)
        except ValueError as e:
            valid = ", ".join(s.value for s in TaskStatus)
            raise InvalidArgumentError(f"Invalid status {status!r}. Use one of: {valid}") from e

        task = self.get(task_id)
        targets = list(task.iter_tree()) if status == TaskStatus.DONE else [task]
        changed: list[str] = []
        for node in targets:
            if node.status != status:
                node.status = status
                node.touch()
                changed.append(node.id)

        if changed:
            self.mark_modified()
            logger.info(f"Set status of {', '.join(changed)} to {status.value}")
        return changed

    # =========================================================================
    # DEPENDENCIES
    # =========================================================================

    def add_dependency(self, task_id: str, depends_on: str) -> bool:
        """
        Make ``task_id`` depend on ``depends_on``.

        Returns:
            False if the dependency already existed.

        Raises:
            NotFoundError: If ``task_id`` does not exist.
            InvalidReferenceError: For self-references or unknown targets.
            CycleDetectedError: If the edge would close a cycle.
        """
        task = self.get(task_id)
        depends_on = str(depends_on)
        if depends_on == task.id:
            raise InvalidReferenceError(f"Task {task_id} cannot depend on itself", [task_id])
        if depends_on not in self._index:
            raise InvalidReferenceError(
                f"Dependency target {depends_on} does not exist", [task_id, depends_on]
            )
        if depends_on in task.dependencies:
            return False

        path = find_path(self.adjacency(), depends_on, task.id)
        if path is not None:
            raise CycleDetectedError([task.id, *path])

        task.dependencies.append(depends_on)
        task.touch()
        self.mark_modified()
        logger.info(f"Task {task_id} now depends on {depends_on}")
        return True

    def remove_dependency(self, task_id: str, depends_on: str) -> None:
        """
        Drop the dependency ``task_id`` -> ``depends_on``.

        Raises:
            NotFoundError: If the task or the dependency entry does not exist.
        """
        task = self.get(task_id)
        depends_on = str(depends_on)
        if depends_on not in task.dependencies:
            raise NotFoundError(
                f"Task {task_id} does not depend on {depends_on}", [task_id, depends_on]
            )
        task.dependencies = [d for d in task.dependencies if d != depends_on]
        task.touch()
        self.mark_modified()
        logger.info(f"Removed dependency {task_id} -> {depends_on}")

    # =========================================================================
    # MOVE / RENUMBER
    # =========================================================================

    def move_task(self, from_id: str, to_id: str, insert_placeholder: bool = False) -> MoveResult:
        """
        Move a subtree so that its root gets id ``to_id``.

        The moved node and every descendant are renumbered under the new
        prefix, and every dependency entry in the graph that points into the
        subtree is rewritten.

        Args:
            from_id: Root of the subtree to move.
            to_id: Requested new id; its parent must exist.
            insert_placeholder: If ``to_id`` is taken, use the next free
                sibling id after it instead of failing.

        Returns:
            MoveResult with the id mapping and every rewritten reference.

        Raises:
            NotFoundError: If ``from_id`` or the destination parent is missing.
            MoveConflictError: If the destination is occupied (without
                ``insert_placeholder``) or lies inside the moved subtree.

        Example:
            >>> result = graph.move_task("5.2", "7")
            >>> result.id_map
            {'5.2': '7', '5.2.1': '7.1', '5.2.2': '7.2'}
        """
        node = self.get(from_id)
        if not is_valid_id(to_id):
            raise InvalidArgumentError(f"Invalid destination id: {to_id}", [to_id])
        if in_subtree(to_id, from_id):
            raise MoveConflictError(
                f"Cannot move task {from_id} into its own subtree ({to_id})", [from_id, to_id]
            )

        new_parent_id = parent_of(to_id)
        if new_parent_id is not None and new_parent_id not in self._index:
            raise NotFoundError(
                f"Destination parent {new_parent_id} does not exist", [new_parent_id]
            )

        requested = to_id
        if to_id in self._index:
            if not insert_placeholder:
                raise MoveConflictError(
                    f"Destination {to_id} is already occupied", [from_id, to_id]
                )
            seq = last_segment(to_id) + 1
            while compose_id(new_parent_id, seq) in self._index:
                seq += 1
            to_id = compose_id(new_parent_id, seq)
            logger.info(f"Destination {requested} occupied, using {to_id}")

        moved_nodes = list(node.iter_tree())
        id_map = {n.id: remap_id(n.id, from_id, to_id) for n in moved_nodes}

        old_parent = self.parent(from_id)
        (old_parent.subtasks if old_parent else self._tasks).remove(node)
        if old_parent:
            old_parent.touch()

        for moved in moved_nodes:
            self._order[id_map[moved.id]] = self._order.pop(moved.id)
            moved.id = id_map[moved.id]
            moved.touch()

        moved_ids = set(id_map.values())
        remapped: list[RemappedReference] = []
        for task in self.iter_nodes_with(node):
            new_deps = [id_map.get(dep, dep) for dep in task.dependencies]
            if new_deps == task.dependencies:
                continue
            for old_dep, new_dep in zip(task.dependencies, new_deps):
                if old_dep != new_dep:
                    remapped.append(
                        RemappedReference(
                            task_id=task.id,
                            old_dependency_id=old_dep,
                            new_dependency_id=new_dep,
                            internal=task.id in moved_ids,
                        )
                    )
            task.dependencies = new_deps
            task.touch()

        new_parent = self._index[new_parent_id] if new_parent_id is not None else None
        self._insert_sorted(new_parent.subtasks if new_parent else self._tasks, node)
        if new_parent:
            new_parent.touch()

        self._reindex()
        self.mark_modified()

        logger.info(
            f"Moved task {from_id} to {to_id} ({len(id_map)} nodes, "
            f"{len(remapped)} references remapped)"
        )
        return MoveResult(
            from_id=from_id,
            requested_id=requested,
            new_id=to_id,
            placeholder_used=to_id != requested,
            id_map=id_map,
            remapped_references=remapped,
        )

    def iter_nodes_with(self, detached: Task) -> Iterator[Task]:
        """Iterate the attached tree plus a subtree currently detached from it."""
        yield from self.iter_nodes()
        yield from detached.iter_tree()
