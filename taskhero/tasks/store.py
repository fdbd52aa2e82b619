"""Persistence of the task snapshot."""

from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from taskhero.core.errors import MalformedSnapshotError
from taskhero.core.locking import atomic_write_json, read_json
from taskhero.tasks.graph import TaskGraph
from taskhero.tasks.models import TaskSnapshot


class TaskStore:
    """
    Load and save the task snapshot file.

    A missing file is an empty store. Saving always writes the complete
    snapshot through a temp file and an atomic rename.

    Example:
        >>> store = TaskStore(Path(".taskhero/tasks/tasks.json"))
        >>> graph = store.load()
        >>> graph.add_task("Write docs")
        >>> store.save(graph)
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> TaskGraph:
        """
        Read and validate the snapshot.

        Raises:
            MalformedSnapshotError: If the file is not a valid snapshot.
            FileIOError: If the file cannot be read.
        """
        try:
            data = read_json(self.path)
        except ValueError as e:
            raise MalformedSnapshotError(f"Task snapshot {self.path} is not valid JSON: {e}") from e

        if data is None:
            logger.debug(f"No task snapshot at {self.path}, starting empty")
            return TaskGraph()
        if not isinstance(data, dict):
            raise MalformedSnapshotError(f"Task snapshot {self.path} must be a JSON object")

        try:
            snapshot = TaskSnapshot.model_validate(data)
        except ValidationError as e:
            raise MalformedSnapshotError(f"Task snapshot {self.path} is invalid: {e}") from e

        graph = TaskGraph.from_snapshot(snapshot)
        logger.debug(f"Loaded {len(graph)} tasks from {self.path}")
        return graph

    def save(self, graph: TaskGraph) -> None:
        """Persist the full snapshot and clear the graph's modified flag."""
        atomic_write_json(self.path, graph.to_snapshot().to_dict())
        graph.modified = False
        logger.debug(f"Saved {len(graph)} tasks to {self.path}")
