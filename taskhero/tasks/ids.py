"""Hierarchical task identifiers.

Task ids are dot-separated decimal paths: ``"5"`` is a top-level task,
``"5.2"`` its second subtask and ``"5.2.1"`` a subtask of that. Ids are
always strings, and ordering is numeric per segment, so ``"10"`` sorts
after ``"2"`` and a parent sorts before its children.
"""

import re

_ID_PATTERN = re.compile(r"^(0|[1-9][0-9]*)(\.(0|[1-9][0-9]*))*$")


def is_valid_id(task_id: str) -> bool:
    """Check whether ``task_id`` is a well-formed hierarchical id."""
    return isinstance(task_id, str) and bool(_ID_PATTERN.match(task_id))


def parse_id(task_id: str) -> tuple[int, ...]:
    """Split an id into its numeric path segments.

    Args:
        task_id: Hierarchical id such as ``"5.2.1"``.

    Returns:
        Tuple of segments, e.g. ``(5, 2, 1)``.

    Raises:
        ValueError: If the id is malformed.

    Example:
        >>> parse_id("12.3")
        (12, 3)
    """
    if not is_valid_id(task_id):
        raise ValueError(f"Invalid task id: {task_id!r}")
    return tuple(int(part) for part in task_id.split("."))


def compose_id(parent_id: str | None, seq: int) -> str:
    """Build the id of child number ``seq`` under ``parent_id``.

    Example:
        >>> compose_id("5.2", 3)
        '5.2.3'
        >>> compose_id(None, 7)
        '7'
    """
    if seq < 0:
        raise ValueError(f"Sequence must be non-negative, got {seq}")
    if parent_id is None:
        return str(seq)
    parse_id(parent_id)
    return f"{parent_id}.{seq}"


def compare_ids(a: str, b: str) -> int:
    """Compare two ids numerically per segment.

    Returns:
        -1 if ``a`` sorts first, 1 if ``b`` sorts first, 0 if equal.
    """
    key_a, key_b = parse_id(a), parse_id(b)
    if key_a < key_b:
        return -1
    if key_a > key_b:
        return 1
    return 0


def id_sort_key(task_id: str) -> tuple[int, ...]:
    """Sort key implementing :func:`compare_ids`."""
    return parse_id(task_id)


def sort_ids(ids) -> list[str]:
    """Return ids sorted numerically."""
    return sorted(ids, key=id_sort_key)


def parent_of(task_id: str) -> str | None:
    """Return the parent id, or None for a top-level id."""
    parse_id(task_id)
    if "." not in task_id:
        return None
    return task_id.rsplit(".", 1)[0]


def last_segment(task_id: str) -> int:
    """Return the sequence number of ``task_id`` within its parent."""
    return parse_id(task_id)[-1]


def depth(task_id: str) -> int:
    """Nesting depth: 1 for top-level tasks."""
    return len(parse_id(task_id))


def is_descendant(task_id: str, ancestor_id: str) -> bool:
    """True if ``task_id`` lies strictly inside the subtree of ``ancestor_id``."""
    return task_id.startswith(ancestor_id + ".")


def in_subtree(task_id: str, root_id: str) -> bool:
    """True if ``task_id`` is ``root_id`` or one of its descendants."""
    return task_id == root_id or is_descendant(task_id, root_id)


def remap_id(task_id: str, old_prefix: str, new_prefix: str) -> str:
    """Rewrite an id inside a moved subtree.

    Ids outside the subtree rooted at ``old_prefix`` are returned unchanged.

    Example:
        >>> remap_id("5.2.1", "5.2", "7")
        '7.1'
    """
    if task_id == old_prefix:
        return new_prefix
    if is_descendant(task_id, old_prefix):
        return new_prefix + task_id[len(old_prefix):]
    return task_id
