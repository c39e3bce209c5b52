# tests/test_renumber.py

from __future__ import annotations

import pytest

from schedule_outline.outline.hierarchy import is_contiguous, parent_of
from schedule_outline.outline.models import DropPosition, Task
from schedule_outline.outline.renumber import (
    OutlineConsistencyError,
    can_drop_at,
    can_indent,
    can_move_down,
    can_move_up,
    can_outdent,
    compute_delete,
    compute_indent,
    compute_insert,
    compute_move_down,
    compute_move_up,
    compute_normalization,
    compute_outdent,
    compute_reposition,
    needs_normalization,
    verify_batch,
)

from .fakes import apply_updates, make_tasks, numbers_by_id, task_id


def _by_number(tasks, h):
    return next(t for t in tasks if t.hierarchy_number == h)


def _parents(tasks) -> set[tuple[str, str | None]]:
    """(task id, parent task id) pairs; isomorphism check independent of numbers."""
    ids = {t.hierarchy_number: t.id for t in tasks}
    return {(t.id, ids.get(parent_of(t.hierarchy_number or "") or "")) for t in tasks}


# ---- indent ----


def test_indent_scenario_a() -> None:
    tasks = make_tasks("1", "2", "3")
    updates = compute_indent(_by_number(tasks, "2"), tasks)
    final = numbers_by_id(tasks, updates)
    assert final == {task_id("1"): "1", task_id("2"): "1.1", task_id("3"): "2"}


def test_indent_appends_after_existing_children_and_carries_subtree() -> None:
    tasks = make_tasks("1", "1.1", "2", "2.1", "2.1.1", "3")
    updates = compute_indent(_by_number(tasks, "2"), tasks)
    final = numbers_by_id(tasks, updates)
    assert final[task_id("2")] == "1.2"
    assert final[task_id("2.1")] == "1.2.1"
    assert final[task_id("2.1.1")] == "1.2.1.1"
    assert final[task_id("3")] == "2"
    assert is_contiguous(apply_updates(tasks, updates))


def test_indent_nested_closes_gap_in_own_run() -> None:
    tasks = make_tasks("1", "1.1", "1.2", "1.3", "1.3.1", "2")
    updates = compute_indent(_by_number(tasks, "1.2"), tasks)
    final = numbers_by_id(tasks, updates)
    assert final[task_id("1.2")] == "1.1.1"
    assert final[task_id("1.3")] == "1.2"
    assert final[task_id("1.3.1")] == "1.2.1"
    assert final[task_id("2")] == "2"
    assert is_contiguous(apply_updates(tasks, updates))


def test_indent_first_sibling_is_rejected() -> None:
    tasks = make_tasks("1", "1.1", "1.2", "2")
    for h in ("1", "1.1"):
        task = _by_number(tasks, h)
        assert not can_indent(task, tasks)
        assert compute_indent(task, tasks) == []


def test_indent_rejected_when_target_number_is_taken() -> None:
    # Drifted outline: "1" has a single child numbered 1.2, so the next child
    # slot of "1" collides with it.
    tasks = make_tasks("1", "1.2", "2")
    task = _by_number(tasks, "2")
    assert not can_indent(task, tasks)
    assert compute_indent(task, tasks) == []


# ---- outdent ----


def test_outdent_scenario_b() -> None:
    tasks = make_tasks("1", "1.1", "1.2")
    updates = compute_outdent(_by_number(tasks, "1.2"), tasks)
    final = numbers_by_id(tasks, updates)
    assert final == {task_id("1"): "1", task_id("1.1"): "1.1", task_id("1.2"): "2"}


def test_outdent_shifts_later_roots_and_later_children() -> None:
    tasks = make_tasks("1", "1.1", "1.2", "1.2.1", "1.3", "2", "2.1")
    updates = compute_outdent(_by_number(tasks, "1.2"), tasks)
    final = numbers_by_id(tasks, updates)
    assert final[task_id("1.2")] == "2"
    assert final[task_id("1.2.1")] == "2.1"
    assert final[task_id("1.3")] == "1.2"
    assert final[task_id("2")] == "3"
    assert final[task_id("2.1")] == "3.1"
    assert is_contiguous(apply_updates(tasks, updates))


def test_outdent_boundaries() -> None:
    tasks = make_tasks("1", "1.1", "1.1.1")
    assert not can_outdent(_by_number(tasks, "1"), tasks)
    assert compute_outdent(_by_number(tasks, "1"), tasks) == []
    # Deeper outdent is not supported.
    assert not can_outdent(_by_number(tasks, "1.1.1"), tasks)
    assert can_outdent(_by_number(tasks, "1.1"), tasks)


def test_indent_then_outdent_round_trip_is_isomorphic() -> None:
    tasks = make_tasks("1", "1.1", "2", "2.1", "3")
    before = _parents(tasks)

    after_indent = apply_updates(tasks, compute_indent(_by_number(tasks, "2"), tasks))
    moved = next(t for t in after_indent if t.id == task_id("2"))
    assert moved.hierarchy_number == "1.2"

    after_outdent = apply_updates(after_indent, compute_outdent(moved, after_indent))
    assert _parents(after_outdent) == before
    assert is_contiguous(after_outdent)


# ---- move up / down ----


def test_move_down_scenario_c_swaps_subtrees() -> None:
    tasks = make_tasks("1", "2", "3", "3.1", "4", "4.1", "4.2")
    updates = compute_move_down(_by_number(tasks, "3"), tasks)
    final = numbers_by_id(tasks, updates)
    assert final[task_id("3")] == "4"
    assert final[task_id("3.1")] == "4.1"
    assert final[task_id("4")] == "3"
    assert final[task_id("4.1")] == "3.1"
    assert final[task_id("4.2")] == "3.2"
    assert is_contiguous(apply_updates(tasks, updates))


def test_move_up_nested() -> None:
    tasks = make_tasks("1", "1.1", "1.2", "1.2.1")
    updates = compute_move_up(_by_number(tasks, "1.2"), tasks)
    final = numbers_by_id(tasks, updates)
    assert final[task_id("1.2")] == "1.1"
    assert final[task_id("1.2.1")] == "1.1.1"
    assert final[task_id("1.1")] == "1.2"


def test_move_boundaries() -> None:
    tasks = make_tasks("1", "1.1", "1.2", "2")
    assert not can_move_up(_by_number(tasks, "1"), tasks)
    assert not can_move_down(_by_number(tasks, "2"), tasks)
    assert not can_move_down(_by_number(tasks, "1.2"), tasks)
    assert compute_move_down(_by_number(tasks, "1.2"), tasks) == []
    assert can_move_down(_by_number(tasks, "1"), tasks)


# ---- drag / reposition ----


def test_drag_scenario_d() -> None:
    tasks = make_tasks("1", "2", "3", "4")
    dragged, target = _by_number(tasks, "2"), _by_number(tasks, "4")
    updates = compute_reposition(dragged, target, DropPosition.AFTER, tasks)
    final = numbers_by_id(tasks, updates)
    assert final == {task_id("1"): "1", task_id("3"): "2", task_id("4"): "3", task_id("2"): "4"}


def test_drag_before_moves_subtrees() -> None:
    tasks = make_tasks("1", "2", "3", "3.1")
    updates = compute_reposition(_by_number(tasks, "3"), _by_number(tasks, "1"), DropPosition.BEFORE, tasks)
    final = numbers_by_id(tasks, updates)
    assert final[task_id("3")] == "1"
    assert final[task_id("3.1")] == "1.1"
    assert final[task_id("1")] == "2"
    assert final[task_id("2")] == "3"


def test_drop_on_self_descendant_or_non_sibling_is_illegal() -> None:
    tasks = make_tasks("1", "1.1", "2", "2.1")
    one, one_one, two_one = (_by_number(tasks, h) for h in ("1", "1.1", "2.1"))
    for position in DropPosition:
        assert not can_drop_at(one, one, position, tasks)
        assert not can_drop_at(one, one_one, position, tasks)
        assert not can_drop_at(one_one, two_one, position, tasks)
        assert compute_reposition(one, one_one, position, tasks) == []


def test_drop_into_same_slot_is_a_noop() -> None:
    tasks = make_tasks("1", "2", "3")
    two, one, three = (_by_number(tasks, h) for h in ("2", "1", "3"))
    assert not can_drop_at(two, one, DropPosition.AFTER, tasks)
    assert not can_drop_at(two, three, DropPosition.BEFORE, tasks)
    assert can_drop_at(two, three, DropPosition.AFTER, tasks)


# ---- insert / delete ----


def test_insert_last_child_and_root() -> None:
    tasks = make_tasks("1", "1.1", "2")
    plan = compute_insert(tasks, parent="1")
    assert plan is not None and plan.hierarchy_number == "1.2" and plan.updates == []
    root = compute_insert(tasks)
    assert root is not None and root.hierarchy_number == "3"
    assert compute_insert(tasks, parent="9") is None


def test_insert_above_anchor_shifts_later_siblings() -> None:
    tasks = make_tasks("1", "2", "2.1", "3")
    plan = compute_insert(tasks, anchor=_by_number(tasks, "2"), position=DropPosition.BEFORE)
    assert plan is not None
    assert plan.hierarchy_number == "2"
    final = numbers_by_id(tasks, plan.updates)
    assert final[task_id("2")] == "3"
    assert final[task_id("2.1")] == "3.1"
    assert final[task_id("3")] == "4"


def test_delete_removes_subtree_and_closes_gap() -> None:
    tasks = make_tasks("1", "2", "2.1", "3", "3.1")
    plan = compute_delete(_by_number(tasks, "2"), tasks)
    assert plan is not None
    assert set(plan.deleted_ids) == {task_id("2"), task_id("2.1")}
    assert set(plan.deleted_numbers) == {"2", "2.1"}
    final = numbers_by_id(tasks, plan.updates)
    assert final[task_id("3")] == "2"
    assert final[task_id("3.1")] == "2.1"
    remaining = [t for t in apply_updates(tasks, plan.updates) if t.id not in plan.deleted_ids]
    assert is_contiguous(remaining)


# ---- contiguity property over many operations ----


@pytest.mark.parametrize(
    "numbers",
    [
        ("1", "2", "3", "4"),
        ("1", "1.1", "1.2", "1.3", "2", "2.1", "3"),
        ("1", "1.1", "1.1.1", "1.1.2", "1.2", "2", "3", "3.1", "3.2", "3.3"),
    ],
)
def test_every_legal_operation_keeps_outline_contiguous(numbers) -> None:
    tasks = make_tasks(*numbers)
    for task in tasks:
        for compute in (compute_indent, compute_outdent, compute_move_up, compute_move_down):
            result = apply_updates(tasks, compute(task, tasks))
            assert is_contiguous(result), (compute.__name__, task.hierarchy_number)
        for target in tasks:
            for position in DropPosition:
                if can_drop_at(task, target, position, tasks):
                    result = apply_updates(tasks, compute_reposition(task, target, position, tasks))
                    assert is_contiguous(result)


# ---- normalization / consistency ----


def test_normalization_repairs_gaps_orphans_and_unnumbered() -> None:
    tasks = make_tasks("1", "1.3", "4", "4.2.7")
    tasks.append(Task(id="loose", project_id="p1", name="Loose", hierarchy_number=None, order_index=99))
    assert needs_normalization(tasks)

    updates = compute_normalization(tasks)
    final = numbers_by_id(tasks, updates)
    assert final[task_id("1")] == "1"
    assert final[task_id("1.3")] == "1.1"
    assert final[task_id("4")] == "2"
    assert final[task_id("4.2.7")] == "2.1"
    assert final["loose"] == "3"
    normalized = apply_updates(tasks, updates)
    assert is_contiguous(normalized)
    assert not needs_normalization(normalized)
    assert compute_normalization(normalized) == []


def test_verify_batch_rejects_duplicate_numbers() -> None:
    tasks = make_tasks("1", "2")
    with pytest.raises(OutlineConsistencyError):
        verify_batch(tasks, {task_id("2"): "1"})
