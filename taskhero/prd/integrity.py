"""PRD registry integrity checks and repair.

Finds state that disagrees with the registry:

- tasks whose ``prdSource`` names a path no PRD is registered under
- registered files that no longer exist
- files sitting in the wrong lifecycle directory for their status
- task statistics that fell behind the linked tasks

Content drift (hash and size) is left to change detection.
"""

from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from taskhero.core.errors import TaskHeroError
from taskhero.prd.models import PrdRecord, PrdStatus, TaskStats
from taskhero.prd.registry import PrdRegistry, linked_tasks
from taskhero.prd.sync import SyncAction, SyncEngine, plan_placement
from taskhero.tasks.graph import TaskGraph
from taskhero.tasks.ids import sort_ids


class IntegrityIssueKind(str, Enum):
    UNREGISTERED_SOURCE = "unregistered-source"
    MISSING_FILE = "missing-file"
    WRONG_DIRECTORY = "wrong-directory"
    STALE_STATS = "stale-stats"


class IntegrityIssue(BaseModel):
    """One integrity problem; ``expected_path`` is where a repair would point."""

    kind: IntegrityIssueKind
    message: str
    path: str
    prd_id: str | None = None
    expected_path: str | None = None
    task_ids: list[str] = Field(default_factory=list)
    fixed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "path": self.path,
            "prdIdentifier": self.prd_id,
            "expectedPath": self.expected_path,
            "taskIds": self.task_ids,
            "fixed": self.fixed,
        }


class IntegrityReport(BaseModel):
    issues: list[IntegrityIssue] = Field(default_factory=list)
    actions: list[SyncAction] = Field(default_factory=list)
    repaired: bool = False

    @property
    def valid(self) -> bool:
        """True when nothing is left to fix."""
        return all(issue.fixed for issue in self.issues)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "repaired": self.repaired,
            "issues": [i.to_dict() for i in self.issues],
            "actions": [a.to_dict() for a in self.actions],
        }


class IntegrityChecker:
    """
    Check the registry against tasks and files, and optionally repair it.

    Example:
        >>> checker = IntegrityChecker(registry, graph)
        >>> report = checker.repair()
        >>> registry.save(); store.save(graph)
    """

    def __init__(self, registry: PrdRegistry, graph: TaskGraph) -> None:
        self.registry = registry
        self.graph = graph
        self._engine = SyncEngine(registry, graph)
        self._registry_state: dict[str, Any] | None = None
        self._relinked: list[tuple[str, str]] = []

    # =========================================================================
    # CHECKS
    # =========================================================================

    def check(self) -> IntegrityReport:
        issues: list[IntegrityIssue] = []
        for record in self.registry.list():
            issues.extend(self._check_record(record))
        issues.extend(self._check_sources())
        if issues:
            logger.warning(f"Found {len(issues)} PRD integrity issues")
        return IntegrityReport(issues=issues)

    def _check_record(self, record: PrdRecord) -> list[IntegrityIssue]:
        layout = self.registry.layout
        prd_id = record.prd_identifier
        task_ids = sort_ids(t.id for t in linked_tasks(self.graph, record))
        issues: list[IntegrityIssue] = []

        if not layout.to_absolute(record.file_path).exists():
            found = self._find_moved_file(record)
            issues.append(
                IntegrityIssue(
                    kind=IntegrityIssueKind.MISSING_FILE,
                    message=f"PRD file {record.file_path} of {prd_id} is missing",
                    path=record.file_path,
                    prd_id=prd_id,
                    expected_path=layout.to_relative(found) if found is not None else None,
                    task_ids=task_ids,
                )
            )
        else:
            target = layout.target_for(record, record.status)
            if target is not None:
                issues.append(
                    IntegrityIssue(
                        kind=IntegrityIssueKind.WRONG_DIRECTORY,
                        message=(
                            f"PRD {prd_id} is {record.status.value} "
                            f"but its file is at {record.file_path}"
                        ),
                        path=record.file_path,
                        prd_id=prd_id,
                        expected_path=layout.to_relative(target),
                        task_ids=task_ids,
                    )
                )

        stats = TaskStats.from_tasks(linked_tasks(self.graph, record))
        if stats != record.task_stats:
            issues.append(
                IntegrityIssue(
                    kind=IntegrityIssueKind.STALE_STATS,
                    message=f"Task statistics of PRD {prd_id} are out of date",
                    path=record.file_path,
                    prd_id=prd_id,
                    task_ids=task_ids,
                )
            )
        return issues

    def _check_sources(self) -> list[IntegrityIssue]:
        registered = {record.file_path for record in self.registry.list()}
        by_path: dict[str, list[str]] = {}
        for task in self.graph.iter_nodes():
            source = task.prd_source
            if source is not None and source.file_path not in registered:
                by_path.setdefault(source.file_path, []).append(task.id)

        issues: list[IntegrityIssue] = []
        for path, task_ids in sorted(by_path.items()):
            match = self._match_by_name(Path(path).name)
            issues.append(
                IntegrityIssue(
                    kind=IntegrityIssueKind.UNREGISTERED_SOURCE,
                    message=f"Tasks point at unregistered PRD {path}",
                    path=path,
                    prd_id=match.prd_identifier if match is not None else None,
                    expected_path=match.file_path if match is not None else None,
                    task_ids=sort_ids(task_ids),
                )
            )
        return issues

    def _find_moved_file(self, record: PrdRecord) -> Path | None:
        """Look for the file under its name in the lifecycle directories."""
        layout = self.registry.layout
        statuses = [record.status, *[s for s in PrdStatus if s != record.status]]
        for status in statuses:
            candidate = layout.directory(status) / record.file_name
            if not candidate.exists():
                continue
            owner = self.registry.find_by_path(layout.to_relative(candidate))
            if owner is None:
                return candidate
        return None

    def _match_by_name(self, file_name: str) -> PrdRecord | None:
        matches = [r for r in self.registry.list() if r.file_name == file_name]
        return matches[0] if len(matches) == 1 else None

    # =========================================================================
    # REPAIR
    # =========================================================================

    def repair(self) -> IntegrityReport:
        """
        Fix what can be fixed, all or nothing.

        Missing files found elsewhere in the lifecycle directories are
        re-pointed, tasks stamped with a stale path are relinked to the one
        PRD sharing the file name, then every PRD is moved to the directory
        of its status and its statistics recomputed. Issues with no
        ``expected_path`` are left unfixed.

        Raises:
            FileIOError: If a move fails; every change is undone.
        """
        report = self.check()
        report.repaired = True
        self._registry_state = self.registry.dump()
        self._relinked = []
        try:
            for issue in report.issues:
                if issue.expected_path is None or issue.prd_id is None:
                    continue
                if issue.kind == IntegrityIssueKind.MISSING_FILE:
                    self._repoint(issue.prd_id, issue.expected_path)
                    issue.fixed = True
                elif issue.kind == IntegrityIssueKind.UNREGISTERED_SOURCE:
                    self.registry.relink_path(self.graph, issue.path, issue.expected_path)
                    self._relinked.append((issue.path, issue.expected_path))
                    issue.fixed = True

            actions = [
                action
                for record in self.registry.list()
                if (action := plan_placement(record, self.graph, self.registry.layout))
                is not None
            ]
            report.actions = self._engine.apply(actions)
        except TaskHeroError:
            self.rollback()
            raise

        touched = {a.prd_id for a in report.actions}
        moved = {a.prd_id for a in report.actions if a.relocates}
        for issue in report.issues:
            if issue.kind == IntegrityIssueKind.WRONG_DIRECTORY and issue.prd_id in moved:
                issue.fixed = True
            elif issue.kind == IntegrityIssueKind.STALE_STATS and issue.prd_id in touched:
                issue.fixed = True

        fixed = sum(1 for issue in report.issues if issue.fixed)
        logger.info(f"Repaired {fixed} of {len(report.issues)} PRD integrity issues")
        return report

    def _repoint(self, prd_id: str, new_path: str) -> None:
        record = self.registry.get(prd_id)
        old_path = record.file_path
        self.registry.relink_path(self.graph, old_path, new_path)
        self._relinked.append((old_path, new_path))
        record.file_path = new_path
        record.touch()
        self.registry.mark_modified()
        logger.info(f"PRD {prd_id} found at {new_path}")

    def rollback(self) -> None:
        """Undo everything ``repair`` changed."""
        self._engine.rollback()
        for old_path, new_path in reversed(self._relinked):
            self.registry.relink_path(self.graph, new_path, old_path)
        self._relinked.clear()
        if self._registry_state is not None:
            self.registry.restore(self._registry_state)
            self._registry_state = None
