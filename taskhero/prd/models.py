"""Pydantic models for the PRD registry."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import ConfigDict, Field, model_validator

from taskhero.tasks.models import CamelModel, Task, TaskStatus, utc_now

REGISTRY_VERSION = "1.0.0"


class PrdStatus(str, Enum):
    """Lifecycle status of a PRD; ``archived`` is terminal."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    ARCHIVED = "archived"


class TaskStats(CamelModel):
    """Status counts over the tasks linked to one PRD."""

    total: int = 0
    completed: int = 0
    pending: int = 0
    in_progress: int = 0
    blocked: int = 0
    deferred: int = 0
    cancelled: int = 0
    review: int = 0
    completion_percentage: int = 0

    @classmethod
    def from_tasks(cls, tasks: list[Task]) -> "TaskStats":
        """Count statuses; the percentage is rounded to an integer."""
        counts = {status: 0 for status in TaskStatus}
        for task in tasks:
            counts[task.status] += 1
        total = len(tasks)
        done = counts[TaskStatus.DONE]
        return cls(
            total=total,
            completed=done,
            pending=counts[TaskStatus.PENDING],
            in_progress=counts[TaskStatus.IN_PROGRESS],
            blocked=counts[TaskStatus.BLOCKED],
            deferred=counts[TaskStatus.DEFERRED],
            cancelled=counts[TaskStatus.CANCELLED],
            review=counts[TaskStatus.REVIEW],
            completion_percentage=round(done * 100 / total) if total else 0,
        )


class PrdRecord(CamelModel):
    """Registry entry for one tracked PRD file."""

    model_config = ConfigDict(extra="allow")

    prd_identifier: str = Field(..., pattern=r"^prd_\d+$", description="Registry id")
    title: str = Field(default="", description="Display title")
    file_path: str = Field(..., min_length=1, description="Path relative to project root")
    file_name: str = Field(..., min_length=1)
    file_hash: str = Field(default="", description="SHA-256 hex digest at last baseline")
    file_size: int = Field(default=0, ge=0)
    status: PrdStatus = Field(default=PrdStatus.PENDING)
    parsed_date: datetime | None = None
    last_modified: datetime | None = None
    task_stats: TaskStats = Field(default_factory=TaskStats)

    @property
    def is_archived(self) -> bool:
        return self.status == PrdStatus.ARCHIVED

    def touch(self) -> None:
        self.last_modified = utc_now()


class RegistryMetadata(CamelModel):
    version: str = REGISTRY_VERSION
    last_updated: datetime | None = None
    total_prds: int = 0


class PrdRegistrySnapshot(CamelModel):
    """Persisted registry: ``{"prds": [...], "metadata": {...}}``."""

    model_config = ConfigDict(extra="allow")

    prds: list[PrdRecord] = Field(default_factory=list)
    metadata: RegistryMetadata = Field(default_factory=RegistryMetadata)

    @model_validator(mode="after")
    def check_unique(self) -> "PrdRegistrySnapshot":
        ids: set[str] = set()
        paths: set[str] = set()
        for prd in self.prds:
            if prd.prd_identifier in ids:
                raise ValueError(f"duplicate PRD id {prd.prd_identifier!r}")
            if prd.file_path in paths:
                raise ValueError(f"PRD path {prd.file_path!r} registered twice")
            ids.add(prd.prd_identifier)
            paths.add(prd.file_path)
        return self

    def to_dict(self) -> dict[str, Any]:
        self.metadata.total_prds = len(self.prds)
        return super().to_dict()
