# src/schedule_outline/outline/importer.py

"""
YAML outline import.

    project:
      name: Warehouse
    tasks:
      - name: Site work
        children:
          - name: Survey
            start_date: 2026-03-02
            duration: 3
          - name: Grading
            duration: 5
            predecessors: ["1.1"]

Numbers are assigned by position (1, 1.1, 1.2, ...). Parent tasks must not
carry scheduling fields; their values come from roll-up.
"""

from __future__ import annotations

import datetime as _dt
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .hierarchy import child_number, is_descendant_of
from .models import Task
from .predecessors import reference_target


class OutlineImportError(ValueError):
    """The YAML document does not describe a valid outline."""


@dataclass(frozen=True)
class _Path:
    """Readable YAML path strings like tasks[0].children[1]."""

    parts: tuple[str, ...] = ()

    def child(self, segment: str) -> _Path:
        return _Path(self.parts + (segment,))

    def __str__(self) -> str:
        return ".".join(self.parts) if self.parts else "root"


@dataclass(frozen=True, slots=True)
class NewTask:
    hierarchy_number: str
    name: str
    start_date: _dt.date | None = None
    end_date: _dt.date | None = None
    duration: int = 1
    progress: int = 0
    predecessors: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class OutlineImport:
    project_name: str
    tasks: list[NewTask] = field(default_factory=list)

    def to_tasks(self, project_id: str, *, root_offset: int = 0, order_start: int = 0) -> list[Task]:
        """
        Materialize tasks with fresh ids.

        root_offset shifts every imported root (and all references to the
        imported tasks) so the outline can be appended after existing roots.
        """
        out: list[Task] = []
        for i, item in enumerate(self.tasks):
            out.append(
                Task(
                    id=uuid.uuid4().hex,
                    project_id=project_id,
                    name=item.name,
                    hierarchy_number=_offset(item.hierarchy_number, root_offset),
                    predecessors=[_offset_reference(p, root_offset) for p in item.predecessors],
                    start_date=item.start_date,
                    end_date=item.end_date,
                    duration=item.duration,
                    progress=item.progress,
                    order_index=order_start + i,
                )
            )
        return out


def _offset(h: str, offset: int) -> str:
    if not offset:
        return h
    head, _, rest = h.partition(".")
    shifted = str(int(head) + offset)
    return f"{shifted}.{rest}" if rest else shifted


def _offset_reference(raw: str, offset: int) -> str:
    target = reference_target(raw) or ""
    return _offset(target, offset) + raw.strip()[len(target):]


def load_outline(path: str | Path) -> OutlineImport:
    """Load and validate an outline from a YAML file."""
    with open(path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    return parse_outline(raw)


def parse_outline(data: Any) -> OutlineImport:
    root = _Path()
    if not isinstance(data, dict):
        raise OutlineImportError(f"{root}: expected mapping at top level")
    _assert_allowed_keys(data, {"project", "tasks"}, root)

    project_raw = data.get("project")
    if not isinstance(project_raw, dict):
        raise OutlineImportError(f"{root}: missing required mapping 'project'")
    _assert_allowed_keys(project_raw, {"name"}, root.child("project"))
    name = _require_str(project_raw, "name", root.child("project"))

    tasks_raw = data.get("tasks")
    if not isinstance(tasks_raw, list):
        raise OutlineImportError(f"{root}.tasks: expected list")

    out: list[NewTask] = []
    refs: list[tuple[NewTask, _Path]] = []
    for idx, item in enumerate(tasks_raw):
        _parse_task(item, root.child(f"tasks[{idx}]"), child_number(None, idx + 1), out, refs)

    _check_references(out, refs)
    return OutlineImport(project_name=name.strip(), tasks=out)


def _parse_task(
    data: Any,
    path: _Path,
    number: str,
    out: list[NewTask],
    refs: list[tuple[NewTask, _Path]],
) -> None:
    if not isinstance(data, dict):
        raise OutlineImportError(f"{path}: expected mapping for task")
    _assert_allowed_keys(
        data,
        {"name", "start_date", "end_date", "duration", "progress", "predecessors", "children"},
        path,
    )
    name = _require_str(data, "name", path).strip()
    predecessors = _parse_predecessors(data.get("predecessors"), path.child("predecessors"))

    children = data.get("children")
    if children is not None:
        if not isinstance(children, list):
            raise OutlineImportError(f"{path}.children: expected list")
        scheduled = sorted({"start_date", "end_date", "duration", "progress"} & set(data))
        if children and scheduled:
            raise OutlineImportError(f"{path}: parent tasks must not define {scheduled}")

    if children:
        task = NewTask(hierarchy_number=number, name=name, predecessors=predecessors)
        out.append(task)
        refs.append((task, path))
        for idx, item in enumerate(children):
            _parse_task(item, path.child(f"children[{idx}]"), child_number(number, idx + 1), out, refs)
        return

    if "duration" in data and "end_date" in data:
        raise OutlineImportError(f"{path}: choose either duration or end_date, not both")

    start = _parse_date(data["start_date"], path.child("start_date")) if "start_date" in data else None
    end = _parse_date(data["end_date"], path.child("end_date")) if "end_date" in data else None
    duration = 1
    if "duration" in data:
        duration = data["duration"]
        if not isinstance(duration, int) or isinstance(duration, bool) or duration < 1:
            raise OutlineImportError(f"{path}.duration: expected positive integer")
        if start is not None:
            end = start + _dt.timedelta(days=duration - 1)
    elif end is not None:
        if start is None:
            raise OutlineImportError(f"{path}: end_date requires start_date")
        if end < start:
            raise OutlineImportError(f"{path}.end_date: before start_date")
        duration = (end - start).days + 1

    progress = data.get("progress", 0)
    if not isinstance(progress, int) or isinstance(progress, bool) or not 0 <= progress <= 100:
        raise OutlineImportError(f"{path}.progress: expected integer 0..100")

    task = NewTask(
        hierarchy_number=number,
        name=name,
        start_date=start,
        end_date=end,
        duration=duration,
        progress=progress,
        predecessors=predecessors,
    )
    out.append(task)
    refs.append((task, path))


def _parse_predecessors(value: Any, path: _Path) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise OutlineImportError(f"{path}: expected list of hierarchy numbers")
    out: list[str] = []
    for idx, item in enumerate(value):
        # YAML reads a bare 3 as an int.
        if isinstance(item, int) and not isinstance(item, bool):
            item = str(item)
        if not isinstance(item, str) or reference_target(item) is None:
            raise OutlineImportError(f"{path}[{idx}]: expected reference like '1.2' or '1.2FS+2d'")
        out.append(item.strip())
    return tuple(out)


def _check_references(tasks: list[NewTask], refs: list[tuple[NewTask, _Path]]) -> None:
    known = {t.hierarchy_number for t in tasks}
    for task, path in refs:
        own = task.hierarchy_number
        for idx, pred in enumerate(task.predecessors):
            target = reference_target(pred) or ""
            where = path.child(f"predecessors[{idx}]")
            if target not in known:
                raise OutlineImportError(f"{where}: unknown task '{target}'")
            if target == own or is_descendant_of(target, own) or is_descendant_of(own, target):
                raise OutlineImportError(f"{where}: '{target}' is the task itself or in its own chain")


def _assert_allowed_keys(data: dict[str, Any], allowed: set[str], path: _Path) -> None:
    extras = sorted(set(data.keys()) - allowed)
    if extras:
        raise OutlineImportError(f"{path}: unexpected fields {extras}")


def _require_str(data: dict[str, Any], key: str, path: _Path) -> str:
    if key not in data:
        raise OutlineImportError(f"{path}: missing required field '{key}'")
    value = data[key]
    if not isinstance(value, str) or not value.strip():
        raise OutlineImportError(f"{path.child(key)}: expected non-empty string")
    return value


def _parse_date(value: Any, path: _Path) -> _dt.date:
    # safe_load already turns unquoted ISO dates into date objects.
    if isinstance(value, _dt.datetime):
        return value.date()
    if isinstance(value, _dt.date):
        return value
    if not isinstance(value, str):
        raise OutlineImportError(f"{path}: expected YYYY-MM-DD string")
    try:
        return _dt.date.fromisoformat(value)
    except ValueError as exc:
        raise OutlineImportError(f"{path}: expected YYYY-MM-DD string") from exc
