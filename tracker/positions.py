"""
Position manager: ordering of items inside a container.

A container is a column (tasks), a task (checklists) or a checklist (items).
Positions are zero-based and ascending in display order. The functions here
are pure; they work on dataclasses or plain dicts carrying ``id`` and
``position`` and never touch storage.

Contract:
  - append assigns max(position) + 1, or 0 in an empty container. It never
    renumbers, so gaps left by deletes are tolerated.
  - remove drops an item without compacting the rest.
  - a batch of moves is validated as a whole before anything is applied, and
    is then applied verbatim. The caller owns the renumbering; plan_move
    computes it for a drag-and-drop gesture.
"""
from typing import Any, Dict, Iterable, List, Optional

from .errors import NotFoundError, ValidationError
from .schema import TaskMove


def _get(item: Any, key: str) -> Any:
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key)


def _set(item: Any, key: str, value: Any) -> None:
    if isinstance(item, dict):
        item[key] = value
    else:
        setattr(item, key, value)


def ordered(items: Iterable[Any]) -> List[Any]:
    """Items sorted by position (stable for equal positions)."""
    return sorted(items, key=lambda i: _get(i, "position"))


def next_position(items: Iterable[Any]) -> int:
    """Position for a brand-new item: one past the current maximum."""
    positions = [_get(i, "position") for i in items]
    return max(positions) + 1 if positions else 0


def append(items: Iterable[Any], new_item: Any) -> Any:
    """Set ``new_item.position`` for insertion at the end of ``items``."""
    _set(new_item, "position", next_position(items))
    return new_item


def remove(items: Iterable[Any], item_id: str) -> List[Any]:
    """Return ``items`` without ``item_id``. Remaining positions keep their gaps."""
    items = list(items)
    remaining = [i for i in items if _get(i, "id") != item_id]
    if len(remaining) == len(items):
        raise NotFoundError(f"Item {item_id} not found")
    return remaining


def renumber(items: Iterable[Any]) -> List[Any]:
    """Rewrite positions to 0..N-1 following the current order of ``items``."""
    items = list(items)
    for index, item in enumerate(items):
        _set(item, "position", index)
    return items


def is_dense(positions: Iterable[int]) -> bool:
    """True when positions are exactly {0, 1, ..., N-1}."""
    positions = sorted(positions)
    return positions == list(range(len(positions)))


def parse_moves(payload: Any, container_key: str = "column_id") -> List[TaskMove]:
    """Validate a raw batch payload into TaskMove entries.

    The whole payload is rejected on the first bad entry: an empty or
    non-list payload, an entry missing its id or container, a negative or
    non-integer position, or the same item listed twice.
    """
    if not isinstance(payload, list) or not payload:
        raise ValidationError("Tasks array is required")

    moves = []
    seen = set()
    for raw in payload:
        if isinstance(raw, TaskMove):
            item_id, container_id, position = raw.id, raw.column_id, raw.position
        elif isinstance(raw, dict):
            item_id = raw.get("id")
            container_id = raw.get(container_key)
            position = raw.get("position")
        else:
            raise ValidationError("Each move must be an object")

        if not item_id or not isinstance(item_id, str):
            raise ValidationError("Each move requires an id")
        if not container_id or not isinstance(container_id, str):
            raise ValidationError(f"Move for {item_id} requires {container_key}")
        # bool is an int subclass; reject it explicitly
        if isinstance(position, bool) or not isinstance(position, int) or position < 0:
            raise ValidationError(f"Move for {item_id} requires a non-negative integer position")
        if item_id in seen:
            raise ValidationError(f"Item {item_id} appears more than once")
        seen.add(item_id)
        moves.append(TaskMove(id=item_id, column_id=container_id, position=position))
    return moves


def affected_containers(moves: Iterable[TaskMove]) -> List[str]:
    """Container ids touched by a batch, in first-seen order."""
    seen: Dict[str, None] = {}
    for move in moves:
        seen.setdefault(move.column_id, None)
    return list(seen)


def apply_moves(
    items_by_id: Dict[str, Any],
    moves: List[TaskMove],
    containers: Optional[Iterable[str]] = None,
    container_key: str = "column_id",
) -> None:
    """Apply a validated batch to in-memory items, all or nothing.

    Every referenced item (and, when ``containers`` is given, every target
    container) is checked before the first assignment.
    """
    known = set(containers) if containers is not None else None
    for move in moves:
        if move.id not in items_by_id:
            raise NotFoundError(f"Task {move.id} not found")
        if known is not None and move.column_id not in known:
            raise NotFoundError(f"Column {move.column_id} not found")

    for move in moves:
        item = items_by_id[move.id]
        _set(item, container_key, move.column_id)
        _set(item, "position", move.position)


def plan_move(
    source_items: Iterable[Any],
    dest_items: Iterable[Any],
    item_id: str,
    dest_index: int,
    source_id: str,
    dest_id: str,
) -> List[TaskMove]:
    """Compute the batch a drag-and-drop gesture submits.

    Removes ``item_id`` from the source, inserts it at ``dest_index`` in the
    destination and renumbers both containers 0..N-1. The source container's
    entries come first; the destination's follow when it is a different
    container. Dropping an item back where it was yields no moves.
    """
    if dest_index < 0:
        raise ValidationError("Destination index must be non-negative")

    source_ids = [_get(i, "id") for i in ordered(source_items)]
    if item_id not in source_ids:
        raise NotFoundError(f"Task {item_id} not found in column {source_id}")
    source_index = source_ids.index(item_id)

    if source_id == dest_id:
        if source_index == dest_index:
            return []
        source_ids.pop(source_index)
        source_ids.insert(min(dest_index, len(source_ids)), item_id)
        return [TaskMove(id=i, column_id=source_id, position=n) for n, i in enumerate(source_ids)]

    source_ids.pop(source_index)
    dest_ids = [_get(i, "id") for i in ordered(dest_items) if _get(i, "id") != item_id]
    dest_ids.insert(min(dest_index, len(dest_ids)), item_id)

    moves = [TaskMove(id=i, column_id=source_id, position=n) for n, i in enumerate(source_ids)]
    moves += [TaskMove(id=i, column_id=dest_id, position=n) for n, i in enumerate(dest_ids)]
    return moves
