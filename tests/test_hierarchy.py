# tests/test_hierarchy.py

from __future__ import annotations

from schedule_outline.outline.hierarchy import (
    ancestors_of,
    children_of,
    descendants_of,
    find_contiguity_violations,
    is_descendant_of,
    is_sibling_of,
    is_valid_hierarchy,
    level_of,
    parent_of,
    replace_prefix,
    sort_tasks,
)

from .fakes import make_tasks


def test_level_and_parent() -> None:
    assert level_of("3") == 0
    assert level_of("3.2.1") == 2
    assert parent_of("3") is None
    assert parent_of("3.2.1") == "3.2"


def test_descendant_and_sibling_use_whole_segments() -> None:
    assert is_descendant_of("1.2.3", "1.2")
    assert is_descendant_of("1.2.3", "1")
    assert not is_descendant_of("1.2", "1.2")
    assert not is_descendant_of("12.1", "1")

    assert is_sibling_of("2.1", "2.5")
    assert not is_sibling_of("2.1", "3.1")
    assert not is_sibling_of("2", "2.1")


def test_numeric_ordering_not_lexicographic() -> None:
    tasks = make_tasks("10", "9", "1", "9.10", "9.2")
    assert [t.hierarchy_number for t in sort_tasks(tasks)] == ["1", "9", "9.2", "9.10", "10"]


def test_children_and_descendants() -> None:
    tasks = make_tasks("1", "1.1", "1.2", "1.2.1", "2", "2.1")
    assert [t.hierarchy_number for t in children_of("1", tasks)] == ["1.1", "1.2"]
    assert [t.hierarchy_number for t in children_of(None, tasks)] == ["1", "2"]
    assert [t.hierarchy_number for t in descendants_of("1", tasks)] == ["1.1", "1.2", "1.2.1"]


def test_ancestors_nearest_first() -> None:
    assert ancestors_of("1.2.3") == ["1.2", "1"]
    assert ancestors_of("1.2.3", include_self=True) == ["1.2.3", "1.2", "1"]
    assert ancestors_of("4") == []


def test_replace_prefix_does_not_touch_lookalikes() -> None:
    assert replace_prefix("2.10.1", "2", "3") == "3.10.1"
    assert replace_prefix("2", "2", "3") == "3"
    assert replace_prefix("21.1", "2", "3") == "21.1"


def test_valid_hierarchy() -> None:
    assert is_valid_hierarchy("1.2.3")
    assert not is_valid_hierarchy("0.1")
    assert not is_valid_hierarchy("1..2")
    assert not is_valid_hierarchy("")
    assert not is_valid_hierarchy(None)


def test_contiguity_violations() -> None:
    assert find_contiguity_violations(make_tasks("1", "1.1", "1.2", "2")) == []

    problems = find_contiguity_violations(make_tasks("1", "1.2", "3", "4.1"))
    text = "\n".join(problems)
    assert "children of 1 are [2]" in text
    assert "'4.1' has no parent task '4'" in text
    assert "children of root are [1, 3]" in text

    dup = find_contiguity_violations(make_tasks("1", "2", "2"))
    assert any("duplicate" in p for p in dup)
