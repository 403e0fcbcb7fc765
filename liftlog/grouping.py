"""
Grouping engine: superset / tri-set structure over an ordered list of exercise instances.

Every function is pure. It returns a new list, never mutates its input and never drops
an instance. After every mutation all members of a group occupy consecutive positions,
and a group left with fewer than two members dissolves.
"""

from __future__ import annotations

import uuid
from typing import Iterable, Optional

from loguru import logger

from .errors import GroupInvariantViolation
from .models import ExerciseInstance, GroupInfo, SessionItem

Items = list[ExerciseInstance]


def new_group_id() -> str:
    return f"group_{uuid.uuid4().hex}"


def _with_group(ex: ExerciseInstance, group_id: Optional[str]) -> ExerciseInstance:
    return ex.model_copy(update={"group_id": group_id})


def _index_of(items: Items, instance_id: str) -> int:
    return next((i for i, ex in enumerate(items) if ex.instance_id == instance_id), -1)


def group_members(items: Items, group_id: str) -> Items:
    """Members of group_id in display order."""
    return [ex for ex in items if ex.group_id == group_id]


def group_ids(items: Items) -> list[str]:
    """Distinct group ids in order of first appearance."""
    seen: dict[str, None] = {}
    for ex in items:
        if ex.group_id:
            seen.setdefault(ex.group_id, None)
    return list(seen)


# --- Contiguity ---

def is_contiguous(items: Items, group_id: str) -> bool:
    positions = [i for i, ex in enumerate(items) if ex.group_id == group_id]
    return not positions or positions[-1] - positions[0] == len(positions) - 1


def find_violations(items: Items) -> list[str]:
    """Group ids that are split or have fewer than two members."""
    return [
        gid for gid in group_ids(items)
        if not is_contiguous(items, gid) or len(group_members(items, gid)) < 2
    ]


def ensure_contiguous(items: Items, group_id: str) -> Items:
    """
    Pull every member of group_id into one block anchored at the first member's position.
    Members keep their relative order; non-members keep theirs around the block.
    """
    members = group_members(items, group_id)
    if not members:
        return list(items)
    anchor = next(i for i, ex in enumerate(items) if ex.group_id == group_id)
    others = [ex for ex in items if ex.group_id != group_id]
    # everything before the anchor is a non-member, so the anchor is also an index into others
    return others[:anchor] + members + others[anchor:]


def normalize_groups(items: Items) -> Items:
    """Dissolve groups with fewer than two members, then re-contiguize every group."""
    counts: dict[str, int] = {}
    for ex in items:
        if ex.group_id:
            counts[ex.group_id] = counts.get(ex.group_id, 0) + 1
    result = [
        _with_group(ex, None) if ex.group_id and counts[ex.group_id] < 2 else ex
        for ex in items
    ]
    for gid in group_ids(result):
        result = ensure_contiguous(result, gid)
    return result


# --- Group mutations ---

def create_group(items: Items, instance_ids: Iterable[str]) -> Items:
    """Group the named instances under a fresh group id. Needs at least two existing ids."""
    present = {ex.instance_id for ex in items}
    wanted = [i for i in dict.fromkeys(instance_ids) if i in present]
    if len(wanted) < 2:
        logger.debug("create_group ignored: fewer than two instances ({})", wanted)
        return list(items)
    gid = new_group_id()
    updated = [_with_group(ex, gid) if ex.instance_id in wanted else ex for ex in items]
    return normalize_groups(ensure_contiguous(updated, gid))


def add_to_group(items: Items, group_id: str, instance_id: str) -> Items:
    if _index_of(items, instance_id) == -1:
        return list(items)
    updated = [_with_group(ex, group_id) if ex.instance_id == instance_id else ex for ex in items]
    return normalize_groups(ensure_contiguous(updated, group_id))


def merge_groups(items: Items, group_id_1: str, group_id_2: str) -> Items:
    """Relabel every member of group_id_2 to group_id_1; group_id_1 survives."""
    if group_id_1 == group_id_2 or not group_members(items, group_id_1) or not group_members(items, group_id_2):
        logger.warning("merge_groups aborted: {} / {}", group_id_1, group_id_2)
        return list(items)
    updated = [_with_group(ex, group_id_1) if ex.group_id == group_id_2 else ex for ex in items]
    return normalize_groups(ensure_contiguous(updated, group_id_1))


def ungroup(items: Items, instance_id: str) -> Items:
    """Remove one member. A two-member group dissolves entirely."""
    idx = _index_of(items, instance_id)
    if idx == -1 or not items[idx].group_id:
        return list(items)
    gid = items[idx].group_id
    if len(group_members(items, gid)) <= 2:
        return ungroup_all(items, gid)
    updated = [_with_group(ex, None) if ex.instance_id == instance_id else ex for ex in items]
    return ensure_contiguous(updated, gid)


def ungroup_all(items: Items, group_id: str) -> Items:
    return [_with_group(ex, None) if ex.group_id == group_id else ex for ex in items]


def validate_group_swap(items: Items, group_id: str, source_id: str, replacement_id: str) -> None:
    """Check swap preconditions in order. Raises GroupInvariantViolation on the first failure."""
    src = _index_of(items, source_id)
    if src == -1 or items[src].group_id != group_id:
        raise GroupInvariantViolation(f"{source_id} is not a member of {group_id}")
    rep = _index_of(items, replacement_id)
    if rep == -1:
        raise GroupInvariantViolation(f"replacement {replacement_id} not found")
    if items[rep].group_id is not None:
        raise GroupInvariantViolation(
            f"replacement {replacement_id} already belongs to {items[rep].group_id}"
        )


def swap_group_member(items: Items, group_id: str, source_id: str, replacement_id: str) -> Items:
    """
    Put replacement into the exact slot source held within the group.
    Source leaves the group with its sets intact and lands right after the block.
    Returns the list unchanged if any precondition fails.
    """
    try:
        validate_group_swap(items, group_id, source_id, replacement_id)
    except GroupInvariantViolation as exc:
        logger.warning("swap_group_member aborted: {}", exc)
        return list(items)
    source = items[_index_of(items, source_id)]
    replacement = items[_index_of(items, replacement_id)]
    result = [ex for ex in items if ex.instance_id != replacement_id]
    result[_index_of(result, source_id)] = _with_group(replacement, group_id)
    block_end = max(i for i, ex in enumerate(result) if ex.group_id == group_id)
    result.insert(block_end + 1, _with_group(source, None))
    return normalize_groups(ensure_contiguous(result, group_id))


def move_to_end(items: Items, instance_ids: Iterable[str]) -> Items:
    """Move the named instances, as one block in their current order, to the end."""
    ids = set(instance_ids)
    return [ex for ex in items if ex.instance_id not in ids] + [ex for ex in items if ex.instance_id in ids]


def move_to(items: Items, instance_id: str, index: int) -> Items:
    """
    Move an instance to `index` (a position in the list without it). A grouped instance
    takes its whole block along. An index landing inside another group's block ends up
    right after that block.
    """
    idx = _index_of(items, instance_id)
    if idx == -1:
        return list(items)
    gid = items[idx].group_id
    block = group_members(items, gid) if gid else [items[idx]]
    block_ids = {ex.instance_id for ex in block}
    rest = [ex for ex in items if ex.instance_id not in block_ids]
    at = min(max(index, 0), len(rest))
    return normalize_groups(rest[:at] + block + rest[at:])


# --- Queries ---

def get_group_info(items: Items, instance_id: str) -> GroupInfo:
    idx = _index_of(items, instance_id)
    if idx == -1 or not items[idx].group_id:
        return GroupInfo()
    members = group_members(items, items[idx].group_id)
    pos = next(i for i, ex in enumerate(members) if ex.instance_id == instance_id)
    return GroupInfo(
        group_id=items[idx].group_id,
        members=members,
        is_first_in_group=pos == 0,
        is_last_in_group=pos == len(members) - 1,
    )


def build_session_items(items: Items) -> list[SessionItem]:
    """Collapse the list into display slots: one per standalone exercise, one per group."""
    out: list[SessionItem] = []
    seen_groups: set[str] = set()
    for ex in items:
        gid = ex.group_id
        if gid and gid in seen_groups:
            continue
        members = group_members(items, gid) if gid else []
        if gid and len(members) >= 2:
            seen_groups.add(gid)
            out.append(SessionItem(
                id=gid,
                type="superset",
                exercise_ids=[m.instance_id for m in members],
                is_complete=all(m.is_complete for m in members),
            ))
        else:
            out.append(SessionItem(
                id=ex.instance_id,
                type="exercise",
                exercise_ids=[ex.instance_id],
                is_complete=ex.is_complete,
            ))
    return out
