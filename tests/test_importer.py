# tests/test_importer.py

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from schedule_outline.outline.importer import OutlineImportError, load_outline, parse_outline


def _outline(*tasks: dict) -> dict:
    return {"project": {"name": "Warehouse"}, "tasks": list(tasks)}


def test_load_outline_numbers_by_position(tmp_path: Path) -> None:
    path = tmp_path / "outline.yaml"
    path.write_text(
        """
project:
  name: Warehouse
tasks:
  - name: Site work
    children:
      - name: Survey
        start_date: 2026-03-02
        duration: 3
      - name: Grading
        start_date: 2026-03-05
        end_date: 2026-03-09
        predecessors: ["1.1"]
  - name: Handover
    progress: 10
    predecessors: ["1FS+2d"]
""",
        encoding="utf-8",
    )

    outline = load_outline(path)

    assert outline.project_name == "Warehouse"
    assert [(t.hierarchy_number, t.name) for t in outline.tasks] == [
        ("1", "Site work"),
        ("1.1", "Survey"),
        ("1.2", "Grading"),
        ("2", "Handover"),
    ]
    survey, grading = outline.tasks[1], outline.tasks[2]
    assert survey.end_date == date(2026, 3, 4)
    assert grading.duration == 5
    assert grading.predecessors == ("1.1",)
    assert outline.tasks[3].predecessors == ("1FS+2d",)


@pytest.mark.parametrize(
    ("data", "fragment"),
    [
        ([], "expected mapping at top level"),
        ({"tasks": []}, "missing required mapping 'project'"),
        (_outline({"name": "A", "colour": "red"}), "tasks[0]: unexpected fields ['colour']"),
        (_outline({"name": "  "}), "tasks[0].name: expected non-empty string"),
        (
            _outline({"name": "P", "duration": 2, "children": [{"name": "C"}]}),
            "tasks[0]: parent tasks must not define ['duration']",
        ),
        (
            _outline({"name": "A", "start_date": "2026-01-01", "duration": 2, "end_date": "2026-01-02"}),
            "choose either duration or end_date",
        ),
        (_outline({"name": "A", "end_date": "2026-01-02"}), "end_date requires start_date"),
        (_outline({"name": "A", "progress": 101}), "tasks[0].progress: expected integer 0..100"),
        (_outline({"name": "A", "start_date": "soon"}), "tasks[0].start_date: expected YYYY-MM-DD"),
        (
            _outline({"name": "P", "children": [{"name": "C", "predecessors": ["9"]}]}),
            "tasks[0].children[0].predecessors[0]: unknown task '9'",
        ),
        (
            _outline({"name": "P", "children": [{"name": "C", "predecessors": ["1"]}]}),
            "is the task itself or in its own chain",
        ),
    ],
)
def test_invalid_outlines_report_the_path(data, fragment: str) -> None:
    with pytest.raises(OutlineImportError) as excinfo:
        parse_outline(data)
    assert fragment in str(excinfo.value)


def test_integer_predecessors_are_accepted() -> None:
    outline = parse_outline(_outline({"name": "A"}, {"name": "B", "predecessors": [1]}))
    assert outline.tasks[1].predecessors == ("1",)


def test_to_tasks_offsets_roots_and_references() -> None:
    outline = parse_outline(
        _outline(
            {"name": "P", "children": [{"name": "C"}, {"name": "D", "predecessors": ["1.1SS+1d"]}]},
            {"name": "E", "predecessors": ["1"]},
        )
    )

    tasks = outline.to_tasks("p1", root_offset=3, order_start=10)

    assert [t.hierarchy_number for t in tasks] == ["4", "4.1", "4.2", "5"]
    assert tasks[2].predecessors == ["4.1SS+1d"]
    assert tasks[3].predecessors == ["4"]
    assert [t.order_index for t in tasks] == [10, 11, 12, 13]
    assert len({t.id for t in tasks}) == 4
    assert all(t.project_id == "p1" for t in tasks)
