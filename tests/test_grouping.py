"""Tests for the grouping engine: contiguity, dissolution, merge, swap, display items."""

import random

import pytest

from liftlog.errors import GroupInvariantViolation
from liftlog.grouping import (
    add_to_group,
    build_session_items,
    create_group,
    ensure_contiguous,
    find_violations,
    get_group_info,
    group_members,
    merge_groups,
    move_to,
    move_to_end,
    normalize_groups,
    swap_group_member,
    ungroup,
    ungroup_all,
    validate_group_swap,
)
from liftlog.models import ExerciseInstance, SetRecord


def _ex(instance_id: str, group_id: str | None = None, sets: int = 0) -> ExerciseInstance:
    return ExerciseInstance(
        instance_id=instance_id,
        name=instance_id.upper(),
        group_id=group_id,
        sets=[SetRecord(id=f"{instance_id}_s{i}", weight=100, reps=5, timestamp=1000 + i) for i in range(sets)],
    )


def _ids(items: list[ExerciseInstance]) -> list[str]:
    return [ex.instance_id for ex in items]


def test_create_group_pulls_members_together() -> None:
    """Grouping A and C out of [A, B, C, D] yields [A, C, B, D] under one id."""
    items = [_ex("a"), _ex("b"), _ex("c"), _ex("d")]
    out = create_group(items, ["a", "c"])
    assert _ids(out) == ["a", "c", "b", "d"]
    assert out[0].group_id and out[0].group_id == out[1].group_id
    assert out[2].group_id is None
    assert find_violations(out) == []


def test_create_group_needs_two_existing_ids() -> None:
    items = [_ex("a"), _ex("b")]
    assert create_group(items, ["a"]) == items
    assert create_group(items, ["a", "missing"]) == items
    assert create_group(items, ["a", "a"]) == items


def test_inputs_are_not_mutated() -> None:
    items = [_ex("a"), _ex("b"), _ex("c")]
    snapshot = [ex.model_copy(deep=True) for ex in items]
    create_group(items, ["a", "c"])
    assert items == snapshot


def test_ungroup_two_member_group_dissolves() -> None:
    items = [_ex("a", "g"), _ex("b", "g"), _ex("c")]
    out = ungroup(items, "a")
    assert [ex.group_id for ex in out] == [None, None, None]
    assert _ids(out) == ["a", "b", "c"]


def test_ungroup_middle_member_of_triset() -> None:
    """Removing the middle member leaves the remaining pair contiguous, the member right after it."""
    items = [_ex("a", "g"), _ex("b", "g"), _ex("c", "g"), _ex("d")]
    out = ungroup(items, "b")
    assert _ids(out) == ["a", "c", "b", "d"]
    assert [ex.group_id for ex in out] == ["g", "g", None, None]


def test_ungroup_first_member_stays_in_front() -> None:
    items = [_ex("a", "g"), _ex("b", "g"), _ex("c", "g")]
    out = ungroup(items, "a")
    assert _ids(out) == ["a", "b", "c"]
    assert [ex.group_id for ex in out] == [None, "g", "g"]


def test_ungroup_all_clears_every_member() -> None:
    items = [_ex("a", "g"), _ex("b", "g"), _ex("c", "h"), _ex("d", "h")]
    out = ungroup_all(items, "g")
    assert [ex.group_id for ex in out] == [None, None, "h", "h"]


def test_add_to_group_moves_instance_into_block() -> None:
    items = [_ex("a", "g"), _ex("b", "g"), _ex("c"), _ex("d")]
    out = add_to_group(items, "g", "d")
    assert _ids(out) == ["a", "b", "d", "c"]
    assert len(group_members(out, "g")) == 3


def test_merge_groups_relabels_second_group() -> None:
    items = [_ex("a", "g1"), _ex("b", "g1"), _ex("x"), _ex("c", "g2"), _ex("d", "g2")]
    out = merge_groups(items, "g1", "g2")
    assert _ids(out) == ["a", "b", "c", "d", "x"]
    assert [ex.group_id for ex in out] == ["g1", "g1", "g1", "g1", None]


def test_merge_groups_with_itself_is_aborted() -> None:
    items = [_ex("a", "g"), _ex("b", "g")]
    assert merge_groups(items, "g", "g") == items
    assert merge_groups(items, "g", "missing") == items


def test_swap_group_member_takes_exact_slot() -> None:
    """Group [X, Y] with Z later: swapping X for Z gives [Z, Y, X, ...] with X ungrouped and its sets kept."""
    items = [_ex("x", "g", sets=2), _ex("y", "g"), _ex("z"), _ex("w")]
    out = swap_group_member(items, "g", "x", "z")
    assert _ids(out) == ["z", "y", "x", "w"]
    assert [ex.group_id for ex in out] == ["g", "g", None, None]
    assert len(out[2].sets) == 2


def test_swap_refused_when_replacement_grouped() -> None:
    items = [_ex("x", "g"), _ex("y", "g"), _ex("p", "h"), _ex("q", "h")]
    with pytest.raises(GroupInvariantViolation):
        validate_group_swap(items, "g", "x", "p")
    assert swap_group_member(items, "g", "x", "p") == items


def test_swap_preconditions_checked_in_order() -> None:
    items = [_ex("x", "g"), _ex("y", "g"), _ex("z")]
    with pytest.raises(GroupInvariantViolation, match="not a member"):
        validate_group_swap(items, "g", "z", "missing")
    with pytest.raises(GroupInvariantViolation, match="not found"):
        validate_group_swap(items, "g", "x", "missing")


def test_normalize_dissolves_singletons_and_rejoins_split_groups() -> None:
    items = [_ex("a", "g"), _ex("b"), _ex("c", "g"), _ex("d", "lonely")]
    out = normalize_groups(items)
    assert _ids(out) == ["a", "c", "b", "d"]
    assert out[3].group_id is None
    assert find_violations(out) == []


def test_ensure_contiguous_anchors_at_first_member() -> None:
    items = [_ex("b"), _ex("a", "g"), _ex("c"), _ex("d", "g")]
    assert _ids(ensure_contiguous(items, "g")) == ["b", "a", "d", "c"]


def test_move_to_end_keeps_block_order() -> None:
    items = [_ex("a"), _ex("b", "g"), _ex("c", "g"), _ex("d")]
    assert _ids(move_to_end(items, ["b", "c"])) == ["a", "d", "b", "c"]


def test_move_to_standalone_exercise() -> None:
    items = [_ex("a"), _ex("b"), _ex("c"), _ex("d")]
    assert _ids(move_to(items, "d", 1)) == ["a", "d", "b", "c"]
    assert _ids(move_to(items, "a", 3)) == ["b", "c", "d", "a"]


def test_move_to_carries_whole_group() -> None:
    items = [_ex("a"), _ex("b", "g"), _ex("c", "g"), _ex("d")]
    out = move_to(items, "c", 0)
    assert _ids(out) == ["b", "c", "a", "d"]
    assert [ex.group_id for ex in out] == ["g", "g", None, None]
    assert _ids(move_to(items, "b", 2)) == ["a", "d", "b", "c"]


def test_move_to_never_splits_another_group() -> None:
    """[A, B] grouped, C moved between them: C lands after the block."""
    items = [_ex("a", "h"), _ex("b", "h"), _ex("c")]
    out = move_to(items, "c", 1)
    assert _ids(out) == ["a", "b", "c"]
    assert find_violations(out) == []


def test_move_to_clamps_index_and_ignores_unknown_id() -> None:
    items = [_ex("a"), _ex("b"), _ex("c")]
    assert _ids(move_to(items, "a", 99)) == ["b", "c", "a"]
    assert _ids(move_to(items, "c", -4)) == ["c", "a", "b"]
    assert _ids(move_to(items, "zz", 0)) == ["a", "b", "c"]


def test_group_info_and_session_items() -> None:
    items = [_ex("a"), _ex("b", "g"), _ex("c", "g")]
    info = get_group_info(items, "c")
    assert info.group_id == "g"
    assert _ids(info.members) == ["b", "c"]
    assert info.is_last_in_group and not info.is_first_in_group
    assert get_group_info(items, "a").group_id is None

    slots = build_session_items(items)
    assert [(s.id, s.type) for s in slots] == [("a", "exercise"), ("g", "superset")]
    assert slots[1].exercise_ids == ["b", "c"]


def test_contiguity_holds_after_random_operation_sequences() -> None:
    """Any sequence of grouping operations leaves every group contiguous with at least two members."""
    rng = random.Random(7)
    for _ in range(50):
        items = [_ex(f"e{i}") for i in range(8)]
        for _ in range(25):
            ids = [ex.instance_id for ex in items]
            groups = sorted({ex.group_id for ex in items if ex.group_id})
            op = rng.choice(["create", "add", "merge", "ungroup", "ungroup_all", "swap", "move", "move_to"])
            if op == "create":
                items = create_group(items, rng.sample(ids, rng.randint(2, 4)))
            elif op == "add" and groups:
                items = add_to_group(items, rng.choice(groups), rng.choice(ids))
            elif op == "merge" and len(groups) >= 2:
                g1, g2 = rng.sample(groups, 2)
                items = merge_groups(items, g1, g2)
            elif op == "ungroup":
                items = ungroup(items, rng.choice(ids))
            elif op == "ungroup_all" and groups:
                items = ungroup_all(items, rng.choice(groups))
            elif op == "swap" and groups:
                gid = rng.choice(groups)
                items = swap_group_member(items, gid, rng.choice(ids), rng.choice(ids))
            elif op == "move":
                items = normalize_groups(move_to_end(items, rng.sample(ids, 2)))
            elif op == "move_to":
                items = move_to(items, rng.choice(ids), rng.randint(0, len(ids)))
            assert find_violations(items) == []
            assert sorted(ex.instance_id for ex in items) == sorted(ids)
