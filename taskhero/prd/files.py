"""File-system side of the PRD lifecycle.

The lifecycle root contains one directory per PRD status. ``PrdLayout``
answers where a PRD file belongs; ``PrdFileMover`` performs the moves and
can undo them if a later step of the same operation fails.
"""

import hashlib
import shutil
from pathlib import Path

from loguru import logger

from taskhero.core.errors import FileIOError
from taskhero.prd.models import PrdRecord, PrdStatus

CHUNK_SIZE = 64 * 1024


def hash_file(path: Path) -> tuple[str, int]:
    """
    Compute the SHA-256 digest and size of a file.

    Returns:
        Tuple of (hex digest, size in bytes).

    Raises:
        FileIOError: If the file cannot be read.
    """
    digest = hashlib.sha256()
    size = 0
    try:
        with open(path, "rb") as f:
            while chunk := f.read(CHUNK_SIZE):
                digest.update(chunk)
                size += len(chunk)
    except OSError as e:
        raise FileIOError(f"Cannot hash {path}: {e}", [str(path)]) from e
    return digest.hexdigest(), size


class PrdLayout:
    """
    Maps PRD statuses to lifecycle directories.

    Example:
        >>> layout = PrdLayout(Path("/repo"), Path("/repo/.taskhero/prd"))
        >>> layout.directory(PrdStatus.DONE)
        PosixPath('/repo/.taskhero/prd/done')
    """

    def __init__(self, project_root: Path, prd_root: Path) -> None:
        self.project_root = project_root.resolve()
        self.prd_root = prd_root.resolve()

    def directory(self, status: PrdStatus) -> Path:
        return self.prd_root / status.value

    def ensure_directories(self) -> None:
        """Create every lifecycle directory."""
        try:
            for status in PrdStatus:
                self.directory(status).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileIOError(f"Cannot create PRD directories under {self.prd_root}: {e}") from e

    def to_absolute(self, file_path: str) -> Path:
        """Resolve a registry path against the project root."""
        path = Path(file_path)
        return path if path.is_absolute() else self.project_root / path

    def to_relative(self, path: Path) -> str:
        """Registry form of a path: project-relative when possible, POSIX separators."""
        path = path.resolve()
        try:
            return path.relative_to(self.project_root).as_posix()
        except ValueError:
            return path.as_posix()

    def is_managed(self, path: Path) -> bool:
        """True if ``path`` lies inside the lifecycle root."""
        try:
            path.resolve().relative_to(self.prd_root)
        except ValueError:
            return False
        return True

    def status_of(self, path: Path) -> PrdStatus | None:
        """Lifecycle directory the file currently sits in, if any."""
        parent = path.resolve().parent
        for status in PrdStatus:
            if parent == self.directory(status):
                return status
        return None

    def target_for(self, record: PrdRecord, status: PrdStatus) -> Path | None:
        """
        Where the PRD file should live for ``status``.

        Files inside the lifecycle root follow every status; files elsewhere
        are only collected once they reach ``done`` or ``archived``.

        Returns:
            Target path, or None if the file is already where it belongs.
        """
        current = self.to_absolute(record.file_path)
        if not self.is_managed(current) and status not in (PrdStatus.DONE, PrdStatus.ARCHIVED):
            return None
        if self.status_of(current) == status:
            return None
        return self.directory(status) / current.name


class PrdFileMover:
    """Moves PRD files and remembers how to put them back."""

    def __init__(self) -> None:
        self._moves: list[tuple[Path, Path]] = []

    def move(self, source: Path, target: Path) -> None:
        """
        Move ``source`` to ``target`` preserving its bytes.

        Raises:
            FileIOError: If the source is missing, the target exists, or the
                move fails.
        """
        if not source.exists():
            raise FileIOError(f"PRD file {source} does not exist", [str(source)])
        if target.exists():
            raise FileIOError(
                f"Refusing to overwrite existing file {target}", [str(source), str(target)]
            )
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
        except OSError as e:
            raise FileIOError(f"Cannot move {source} to {target}: {e}", [str(source)]) from e
        self._moves.append((source, target))
        logger.info(f"Moved PRD file {source} -> {target}")

    @property
    def moves(self) -> list[tuple[Path, Path]]:
        return list(self._moves)

    def rollback(self) -> None:
        """Undo every recorded move, newest first."""
        while self._moves:
            source, target = self._moves.pop()
            try:
                shutil.move(str(target), str(source))
                logger.warning(f"Rolled back PRD move {target} -> {source}")
            except OSError as e:
                logger.error(f"Could not roll back PRD move {target} -> {source}: {e}")
