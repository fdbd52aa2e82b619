"""
Advisory locking and atomic writes for snapshot files.

Uses flock on a single project lock file so that two CLI invocations
cannot interleave their load -> mutate -> persist cycles.
"""

import fcntl
import json
import os
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger

from taskhero.core.errors import FileIOError


class LockTimeout(FileIOError):
    """Lock acquisition timed out."""


POLL_INTERVAL = 0.1


@contextmanager
def project_lock(lock_file: Path, timeout: float = 30.0) -> Iterator[None]:
    """
    Acquire the exclusive project lock, yield, release on exit.

    Args:
        lock_file: Path to the lock file (created if missing).
        timeout: Seconds to wait before giving up.

    Raises:
        LockTimeout: If another process holds the lock for longer than timeout.
        FileIOError: If the lock file cannot be opened.
    """
    try:
        lock_file.parent.mkdir(parents=True, exist_ok=True)
        fd = open(lock_file, "a+")
    except OSError as e:
        raise FileIOError(f"Cannot open lock file {lock_file}: {e}") from e

    start = time.monotonic()
    try:
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start >= timeout:
                    raise LockTimeout(
                        f"Could not acquire project lock {lock_file} within {timeout}s"
                    ) from None
                time.sleep(POLL_INTERVAL)

        logger.debug(f"Acquired project lock {lock_file}")
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug(f"Released project lock {lock_file}")
    finally:
        fd.close()


def atomic_write(path: Path, content: str) -> None:
    """Write file atomically via temp + rename.

    The temp file lives in the target directory so ``os.replace`` never
    crosses filesystems; readers see either the old or the new content.

    Raises:
        FileIOError: If writing or renaming fails.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise FileIOError(f"Error preparing write to {path}: {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise FileIOError(f"Error writing {path}: {e}") from e


def atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    """Write JSON file atomically."""
    atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def read_json(path: Path) -> dict[str, Any] | None:
    """Load a JSON object from ``path``.

    Returns:
        The decoded object, or None if the file does not exist.

    Raises:
        FileIOError: If the file cannot be read.
        ValueError: If the content is not valid JSON.
    """
    if not path.exists():
        return None
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FileIOError(f"Error reading {path}: {e}") from e
    return json.loads(content)
