"""Positional operations over ordered sequences of child ids.

Board.lists, BoardList.cards and Card.checklist are plain Python lists; these
helpers give them the insert/remove/move semantics the mutation engine relies on.

Out-of-range indices are clamped rather than rejected: a negative index lands
at the front and an index past the end appends.
"""

from __future__ import annotations

from typing import List, Optional, TypeVar

T = TypeVar("T")


def append(seq: List[T], child: T) -> int:
    seq.append(child)
    return len(seq) - 1


def clamp_index(seq: List[T], index: Optional[int]) -> int:
    """Return the position ``insert_at`` would use for ``index``."""
    if index is None:
        return len(seq)
    return max(0, min(index, len(seq)))


def insert_at(seq: List[T], child: T, index: Optional[int] = None) -> int:
    """Insert ``child`` at ``index`` (clamped) and return where it landed.

    ``None`` appends.
    """
    position = clamp_index(seq, index)
    seq.insert(position, child)
    return position


def remove_by_value(seq: List[T], child: T) -> bool:
    """Remove the first occurrence of ``child``.

    Returns ``False`` when it was not present; that is not an error.
    """
    try:
        seq.remove(child)
    except ValueError:
        return False
    return True


def move_to_index(
    child: T,
    source: List[T],
    target: List[T],
    to_index: Optional[int] = None,
) -> Optional[int]:
    """Relocate ``child`` from ``source`` into ``target`` at ``to_index``.

    ``source`` and ``target`` may be the same list, in which case this is a
    reposition and later entries shift as usual. Nothing is inserted when
    ``child`` is already in ``target`` after the removal, so a repeated move
    leaves both lists as the first call did.

    Returns the final position of ``child`` in ``target``, or ``None`` when it
    was already there and nothing was inserted.
    """
    remove_by_value(source, child)
    if child in target:
        return None
    return insert_at(target, child, to_index)
