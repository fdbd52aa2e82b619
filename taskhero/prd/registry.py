"""PRD registry and change detection.

The registry keeps one record per tracked PRD file. Change detection
compares the stored SHA-256 baseline with the file on disk and reports
which tasks were generated from a drifted file.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from taskhero.core.errors import (
    DuplicateIdError,
    InvalidArgumentError,
    InvalidReferenceError,
    MalformedSnapshotError,
    NotFoundError,
)
from taskhero.core.locking import atomic_write_json, read_json
from taskhero.prd.files import PrdLayout, hash_file
from taskhero.prd.models import PrdRecord, PrdRegistrySnapshot, PrdStatus
from taskhero.tasks.graph import TaskGraph
from taskhero.tasks.models import PrdSource, Task, utc_now


class ChangeClassification(str, Enum):
    """Drift state of a PRD file relative to its baseline."""

    UNMODIFIED = "unmodified"
    MODIFIED = "modified"
    MISSING = "missing"


class PrdChange(BaseModel):
    """Change-detection result for one PRD."""

    prd: PrdRecord
    classification: ChangeClassification
    affected_task_ids: list[str] = Field(default_factory=list)
    current_hash: str | None = None
    current_size: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "prdIdentifier": self.prd.prd_identifier,
            "filePath": self.prd.file_path,
            "classification": self.classification.value,
            "storedHash": self.prd.file_hash,
            "currentHash": self.current_hash,
            "currentSize": self.current_size,
            "affectedTaskIds": self.affected_task_ids,
        }


def linked_tasks(graph: TaskGraph, record: PrdRecord) -> list[Task]:
    """Tasks and subtasks whose ``prdSource.filePath`` is the PRD's path."""
    return [
        t
        for t in graph.iter_nodes()
        if t.prd_source is not None and t.prd_source.file_path == record.file_path
    ]


class PrdRegistry:
    """
    In-memory PRD registry bound to its snapshot file.

    Example:
        >>> registry = PrdRegistry.load(settings.prds_path, layout)
        >>> prd = registry.register(Path("docs/auth.md"))
        >>> prd.prd_identifier
        'prd_001'
        >>> registry.save()
    """

    def __init__(self, path: Path, layout: PrdLayout, snapshot: PrdRegistrySnapshot) -> None:
        self.path = path
        self.layout = layout
        self._snapshot = snapshot
        self.modified = False

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    @classmethod
    def load(cls, path: Path, layout: PrdLayout) -> "PrdRegistry":
        """
        Read the registry snapshot; a missing file is an empty registry.

        Raises:
            MalformedSnapshotError: If the snapshot is invalid.
            FileIOError: If the file cannot be read.
        """
        try:
            data = read_json(path)
        except ValueError as e:
            raise MalformedSnapshotError(f"PRD registry {path} is not valid JSON: {e}") from e

        if data is None:
            return cls(path, layout, PrdRegistrySnapshot())
        if not isinstance(data, dict):
            raise MalformedSnapshotError(f"PRD registry {path} must be a JSON object")
        try:
            snapshot = PrdRegistrySnapshot.model_validate(data)
        except ValidationError as e:
            raise MalformedSnapshotError(f"PRD registry {path} is invalid: {e}") from e

        logger.debug(f"Loaded {len(snapshot.prds)} PRDs from {path}")
        return cls(path, layout, snapshot)

    def save(self) -> None:
        """Persist the full registry snapshot atomically."""
        self._snapshot.metadata.last_updated = utc_now()
        atomic_write_json(self.path, self._snapshot.to_dict())
        self.modified = False
        logger.debug(f"Saved {len(self._snapshot.prds)} PRDs to {self.path}")

    def dump(self) -> dict[str, Any]:
        """Copy of the current state, used to restore after a failed operation."""
        return self._snapshot.model_dump()

    def restore(self, state: dict[str, Any]) -> None:
        self._snapshot = PrdRegistrySnapshot.model_validate(state)

    def mark_modified(self) -> None:
        self.modified = True

    # =========================================================================
    # QUERIES
    # =========================================================================

    def __len__(self) -> int:
        return len(self._snapshot.prds)

    def find(self, prd_id: str) -> PrdRecord | None:
        for prd in self._snapshot.prds:
            if prd.prd_identifier == prd_id:
                return prd
        return None

    def get(self, prd_id: str) -> PrdRecord:
        """
        Look up a PRD record.

        Raises:
            NotFoundError: If the id is unknown.
        """
        prd = self.find(prd_id)
        if prd is None:
            raise NotFoundError(f"PRD {prd_id} not found", [prd_id])
        return prd

    def find_by_path(self, file_path: str) -> PrdRecord | None:
        for prd in self._snapshot.prds:
            if prd.file_path == file_path:
                return prd
        return None

    def list(self, status: PrdStatus | str | None = None) -> list[PrdRecord]:
        """All records, optionally restricted to one status."""
        if status is None:
            return list(self._snapshot.prds)
        status = PrdStatus(status)
        return [p for p in self._snapshot.prds if p.status == status]

    def next_id(self) -> str:
        """Next ``prd_NNN`` identifier."""
        numbers = [int(p.prd_identifier.split("_", 1)[1]) for p in self._snapshot.prds]
        return f"prd_{max(numbers, default=0) + 1:03d}"

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def register(self, file_path: Path, title: str | None = None) -> PrdRecord:
        """
        Start tracking a PRD file.

        Args:
            file_path: PRD file, absolute or relative to the project root.
            title: Display title; defaults to the file stem.

        Returns:
            The new record with status ``pending``.

        Raises:
            DuplicateIdError: If the path is already registered.
            FileIOError: If the file cannot be hashed.
        """
        absolute = self.layout.to_absolute(str(file_path))
        relative = self.layout.to_relative(absolute)
        existing = self.find_by_path(relative)
        if existing is not None:
            raise DuplicateIdError(
                f"PRD file {relative} is already registered as {existing.prd_identifier}",
                [existing.prd_identifier],
            )

        file_hash, file_size = hash_file(absolute)
        now = utc_now()
        record = PrdRecord(
            prd_identifier=self.next_id(),
            title=title or absolute.stem,
            file_path=relative,
            file_name=absolute.name,
            file_hash=file_hash,
            file_size=file_size,
            status=PrdStatus.PENDING,
            parsed_date=now,
            last_modified=now,
        )
        self._snapshot.prds.append(record)
        self.mark_modified()
        logger.info(f"Registered PRD {record.prd_identifier}: {relative}")
        return record

    def check_changes(self, graph: TaskGraph, prd_id: str | None = None) -> list[PrdChange]:
        """
        Compare every PRD (or one) against its stored hash.

        A file that no longer exists is ``missing``; a hash mismatch is
        ``modified``. Nothing is mutated.

        Raises:
            FileIOError: If an existing file cannot be read.
        """
        records = [self.get(prd_id)] if prd_id else self._snapshot.prds
        changes: list[PrdChange] = []
        for record in records:
            affected = [t.id for t in linked_tasks(graph, record)]
            path = self.layout.to_absolute(record.file_path)
            if not path.exists():
                changes.append(
                    PrdChange(
                        prd=record,
                        classification=ChangeClassification.MISSING,
                        affected_task_ids=affected,
                    )
                )
                continue

            current_hash, current_size = hash_file(path)
            modified = current_hash != record.file_hash
            changes.append(
                PrdChange(
                    prd=record,
                    classification=(
                        ChangeClassification.MODIFIED
                        if modified
                        else ChangeClassification.UNMODIFIED
                    ),
                    affected_task_ids=affected,
                    current_hash=current_hash,
                    current_size=current_size,
                )
            )
            if modified:
                logger.warning(
                    f"PRD {record.prd_identifier} changed since last parse; "
                    f"{len(affected)} tasks affected"
                )
        return changes

    def update_metadata(self, prd_id: str) -> PrdRecord:
        """
        Re-hash the PRD file and make it the new baseline.

        Generated tasks are left untouched.
        """
        record = self.get(prd_id)
        file_hash, file_size = hash_file(self.layout.to_absolute(record.file_path))
        record.file_hash = file_hash
        record.file_size = file_size
        record.touch()
        self.mark_modified()
        logger.info(f"Updated baseline of PRD {prd_id}")
        return record

    def source_for(self, record: PrdRecord) -> PrdSource:
        """``prdSource`` stamp for tasks generated from ``record``."""
        return PrdSource(
            file_path=record.file_path,
            file_name=record.file_name,
            parsed_date=record.parsed_date or utc_now(),
            file_hash=record.file_hash,
            file_size=record.file_size,
        )

    def link_tasks(self, graph: TaskGraph, prd_id: str, task_ids: list[str]) -> list[str]:
        """
        Stamp ``prdSource`` of a PRD onto tasks and their subtasks.

        Returns:
            Ids of every task that was stamped.
        """
        if not task_ids:
            raise InvalidArgumentError("No task ids given to link")
        record = self.get(prd_id)
        tasks = [graph.get(task_id) for task_id in task_ids]
        stamped: list[str] = []
        for task in tasks:
            for node in task.iter_tree():
                node.prd_source = self.source_for(record)
                node.touch()
                stamped.append(node.id)
        graph.mark_modified()
        logger.info(f"Linked {len(stamped)} tasks to PRD {prd_id}")
        return stamped

    def relink_path(self, graph: TaskGraph, old_path: str, new_path: str) -> list[str]:
        """Point every task stamped with ``old_path`` at ``new_path``."""
        rewritten: list[str] = []
        for task in graph.iter_nodes():
            if task.prd_source is not None and task.prd_source.file_path == old_path:
                task.prd_source.file_path = new_path
                task.touch()
                rewritten.append(task.id)
        if rewritten:
            graph.mark_modified()
        return rewritten

    def unlink_tasks(self, graph: TaskGraph, prd_id: str, task_ids: list[str]) -> list[str]:
        """
        Clear the ``prdSource`` of a PRD from tasks and their subtasks.

        Subtasks stamped with a different PRD keep their link.

        Raises:
            InvalidArgumentError: If a named task is not linked to the PRD.
        """
        if not task_ids:
            raise InvalidArgumentError("No task ids given to unlink")
        record = self.get(prd_id)
        tasks = [graph.get(task_id) for task_id in task_ids]
        foreign = [
            t.id
            for t in tasks
            if t.prd_source is None or t.prd_source.file_path != record.file_path
        ]
        if foreign:
            raise InvalidArgumentError(
                f"Tasks not linked to PRD {prd_id}: {', '.join(foreign)}", [prd_id, *foreign]
            )

        cleared: list[str] = []
        for task in tasks:
            for node in task.iter_tree():
                source = node.prd_source
                if source is None or source.file_path != record.file_path:
                    continue
                node.prd_source = None
                node.touch()
                cleared.append(node.id)
        graph.mark_modified()
        logger.info(f"Unlinked {len(cleared)} tasks from PRD {prd_id}")
        return cleared

    def remove(
        self, graph: TaskGraph, prd_id: str, unlink_tasks: bool = False
    ) -> tuple[PrdRecord, list[str]]:
        """
        Drop a PRD from the registry. The file itself stays on disk.

        Args:
            graph: Task graph holding the linked tasks.
            prd_id: PRD to remove.
            unlink_tasks: Clear the links of tasks still pointing at the PRD.

        Returns:
            The removed record and the ids of tasks that were unlinked.

        Raises:
            InvalidReferenceError: If tasks are still linked and ``unlink_tasks``
                is False.
        """
        record = self.get(prd_id)
        linked = [t.id for t in linked_tasks(graph, record)]
        if linked and not unlink_tasks:
            raise InvalidReferenceError(
                f"PRD {prd_id} still has linked tasks: {', '.join(linked)}", [prd_id, *linked]
            )

        for task_id in linked:
            task = graph.get(task_id)
            task.prd_source = None
            task.touch()
        if linked:
            graph.mark_modified()

        self._snapshot.prds.remove(record)
        self.mark_modified()
        logger.info(f"Removed PRD {prd_id} ({record.file_path})")
        return record, linked
