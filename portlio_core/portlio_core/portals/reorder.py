"""Content block reordering.

Block orders within a portal are always the dense sequence ``1..N``.
Moving one block rebuilds the whole sequence from array positions, so
ties and gaps cannot survive a reorder.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

T = TypeVar("T")


def move(items: Sequence[T], from_position: int, to_position: int) -> list[T]:
    """Return a copy of *items* with one element moved.

    Parameters
    ----------
    items:
        The current ordered list.
    from_position:
        1-based position of the element to move.
    to_position:
        1-based position the element should end up at.

    Raises
    ------
    ValueError
        If either position is outside ``1..len(items)``.
    """
    size = len(items)
    for name, pos in (("from_position", from_position), ("to_position", to_position)):
        if not 1 <= pos <= size:
            raise ValueError(f"{name} must be between 1 and {size}, got {pos}")
    reordered = list(items)
    moved = reordered.pop(from_position - 1)
    reordered.insert(to_position - 1, moved)
    return reordered


def assign_orders(ids: Sequence[int]) -> dict[int, int]:
    """Map each id to its 1-based position."""
    return {block_id: index for index, block_id in enumerate(ids, start=1)}


def changed_orders(current: dict[int, int], ids_in_new_order: Sequence[int]) -> dict[int, int]:
    """Return only the ``{id: new_order}`` entries that differ from *current*.

    Parameters
    ----------
    current:
        Stored ``{block_id: block_order}``.
    ids_in_new_order:
        Block ids in their target order.
    """
    target = assign_orders(ids_in_new_order)
    return {block_id: order for block_id, order in target.items() if current.get(block_id) != order}


def plan_move(current: dict[int, int], from_position: int, to_position: int) -> dict[int, int]:
    """Compute the order updates for moving a block between positions.

    *current* may contain gaps or duplicates; the blocks are first sorted
    by ``(order, id)`` and the result is always dense.
    """
    ordered = sorted(current, key=lambda block_id: (current[block_id], block_id))
    return changed_orders(current, move(ordered, from_position, to_position))
