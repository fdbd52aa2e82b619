"""Exception hierarchy for TaskHero.

Every error carries a machine-readable ``kind`` and the ids it concerns so
the service layer can turn it into a structured result without parsing
messages.
"""

from collections.abc import Iterable


class TaskHeroError(Exception):
    """Base exception for TaskHero errors."""

    kind = "Error"

    def __init__(self, message: str, ids: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.ids = list(ids)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for structured output."""
        return {"kind": self.kind, "message": self.message, "ids": self.ids}


class NotFoundError(TaskHeroError):
    """A task or PRD id does not exist."""

    kind = "NotFound"


class InvalidReferenceError(TaskHeroError):
    """A dependency points at an id that cannot be referenced."""

    kind = "InvalidReference"


class CycleDetectedError(TaskHeroError):
    """An operation would create (or found) a dependency cycle."""

    kind = "CycleDetected"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}", cycle)
        self.cycle = cycle


class DuplicateIdError(TaskHeroError):
    """An id is already taken."""

    kind = "DuplicateId"


class MalformedSnapshotError(TaskHeroError):
    """A snapshot file failed schema validation."""

    kind = "MalformedSnapshot"


class FileIOError(TaskHeroError):
    """Reading, writing, hashing or moving a file failed."""

    kind = "FileIOError"


class MoveConflictError(TaskHeroError):
    """The destination of a move is occupied or invalid."""

    kind = "MoveConflict"


class InvalidArgumentError(TaskHeroError):
    """A caller supplied a value outside the accepted domain."""

    kind = "InvalidArgument"
