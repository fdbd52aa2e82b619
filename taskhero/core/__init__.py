"""Core module - configuration, errors, locking and the service facade."""

from taskhero.core.config import Settings, clear_settings_cache, get_settings
from taskhero.core.errors import (
    CycleDetectedError,
    DuplicateIdError,
    FileIOError,
    InvalidArgumentError,
    InvalidReferenceError,
    MalformedSnapshotError,
    MoveConflictError,
    NotFoundError,
    TaskHeroError,
)
from taskhero.core.service import OperationResult, TaskHero

__all__ = [
    "CycleDetectedError",
    "DuplicateIdError",
    "FileIOError",
    "InvalidArgumentError",
    "InvalidReferenceError",
    "MalformedSnapshotError",
    "MoveConflictError",
    "NotFoundError",
    "OperationResult",
    "Settings",
    "TaskHero",
    "TaskHeroError",
    "clear_settings_cache",
    "get_settings",
]
