"""Pydantic models for the task graph.

This module defines the persisted shape of tasks: the task snapshot, the
recursive task/subtask model, the PRD source stamp, and the filters used
when listing tasks. JSON keys are camelCase, attributes snake_case.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from taskhero.tasks.ids import is_valid_id, parent_of


def utc_now() -> datetime:
    """Current UTC time, second precision."""
    return datetime.now(timezone.utc).replace(microsecond=0)


class CamelModel(BaseModel):
    """Base model serializing to camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=False,
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# ENUMS
# =============================================================================


class TaskStatus(str, Enum):
    """Lifecycle status of a task or subtask."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    REVIEW = "review"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """Task priority level."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is more urgent."""
        return {"low": 1, "medium": 2, "high": 3}[self.value]


# =============================================================================
# TASKS
# =============================================================================


class PrdSource(CamelModel):
    """Stamp linking a task to the PRD file it was generated from."""

    file_path: str = Field(..., min_length=1, description="PRD path relative to project root")
    file_name: str = Field(..., min_length=1, description="PRD file name")
    parsed_date: datetime | None = Field(default=None, description="When the PRD was parsed")
    file_hash: str | None = Field(default=None, description="SHA-256 of the PRD at parse time")
    file_size: int | None = Field(default=None, ge=0, description="PRD size in bytes")


class Task(CamelModel):
    """A task or subtask.

    Subtasks are Tasks themselves; a subtask's id is always its parent's id
    followed by a dot and a sequence number.

    Example:
        >>> task = Task(
        ...     id="3",
        ...     title="Implement login",
        ...     dependencies=["1", "2.1"],
        ...     subtasks=[Task(id="3.1", title="Design form")],
        ... )
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Hierarchical task id")
    title: str = Field(..., min_length=1, description="Task title")
    description: str = Field(default="", description="Short description")
    details: str = Field(default="", description="Implementation details")
    test_strategy: str = Field(default="", description="How to verify the task")
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    dependencies: list[str] = Field(
        default_factory=list,
        description="Ids of tasks/subtasks that must be done first",
    )
    subtasks: list["Task"] = Field(default_factory=list)
    prd_source: PrdSource | None = Field(default=None)
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Accept numeric ids from older snapshots."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not is_valid_id(v):
            raise ValueError(f"invalid task id {v!r}")
        return v

    @field_validator("dependencies", mode="before")
    @classmethod
    def coerce_dependencies(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [str(d) if isinstance(d, int) and not isinstance(d, bool) else d for d in v]
        return v

    @model_validator(mode="after")
    def check_subtask_ids(self) -> "Task":
        """Every subtask id must be ``<id>.<seq>`` and unique among siblings."""
        seen: set[str] = set()
        for sub in self.subtasks:
            if parent_of(sub.id) != self.id:
                raise ValueError(f"subtask id {sub.id!r} is not a child of task {self.id!r}")
            if sub.id in seen:
                raise ValueError(f"duplicate subtask id {sub.id!r} under task {self.id!r}")
            seen.add(sub.id)
        return self

    @property
    def is_manual(self) -> bool:
        """True if the task was not generated from a PRD."""
        return self.prd_source is None

    def touch(self) -> None:
        """Record a modification."""
        self.updated_at = utc_now()

    def iter_tree(self):
        """Yield this task and all descendants, pre-order."""
        yield self
        for sub in self.subtasks:
            yield from sub.iter_tree()

    def descendant_count(self) -> int:
        """Number of tasks strictly below this one."""
        return sum(1 for _ in self.iter_tree()) - 1

    def summary(self) -> dict[str, Any]:
        """Compact representation for listings and results."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "priority": self.priority.value,
            "dependencies": list(self.dependencies),
            "subtaskCount": len(self.subtasks),
        }


class TaskSnapshot(CamelModel):
    """The complete persisted task state: ``{"tasks": [...]}``."""

    model_config = ConfigDict(extra="allow")

    tasks: list[Task] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_top_level_ids(self) -> "TaskSnapshot":
        seen: set[str] = set()
        for task in self.tasks:
            if parent_of(task.id) is not None:
                raise ValueError(f"top-level task has dotted id {task.id!r}")
            if task.id in seen:
                raise ValueError(f"duplicate task id {task.id!r}")
            seen.add(task.id)
        return self


# =============================================================================
# FILTERS
# =============================================================================


class TaskFilter(BaseModel):
    """Predicate for listing tasks.

    ``prd`` matches either the PRD file path or file name recorded in
    ``prdSource``.
    """

    model_config = ConfigDict(frozen=True)

    statuses: frozenset[TaskStatus] = Field(default_factory=frozenset)
    prd: str | None = None
    manual_only: bool = False
    prd_only: bool = False
    include_subtasks: bool = False

    @model_validator(mode="after")
    def check_exclusive(self) -> "TaskFilter":
        if self.manual_only and (self.prd_only or self.prd):
            raise ValueError("manual_only cannot be combined with PRD filters")
        return self

    def matches(self, task: Task) -> bool:
        """Check a single task against the filter."""
        if self.statuses and task.status not in self.statuses:
            return False
        if self.manual_only and not task.is_manual:
            return False
        if self.prd_only and task.is_manual:
            return False
        if self.prd is not None:
            source = task.prd_source
            if source is None:
                return False
            if self.prd not in (source.file_path, source.file_name):
                return False
        return True
