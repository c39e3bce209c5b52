# src/schedule_outline/cli/commands.py

from __future__ import annotations

import inspect
import logging
import re
from collections.abc import Awaitable, Callable
from datetime import date
from typing import cast

from ..core.state import AppState
from ..outline.coordinator import OperationResult
from ..outline.hierarchy import find_contiguity_violations, level_of
from ..outline.importer import OutlineImportError, load_outline
from ..outline.models import DropPosition, Task
from ..outline.predecessors import find_self_references, parse_predecessors, validate_predecessors

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], Awaitable[str]]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^(\d+)d$", re.IGNORECASE)
_PROGRESS_RE = re.compile(r"^(\d+)%$")


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /indent, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return await h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return await h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _find(state: AppState, number: str) -> Task | None:
    return state.coordinator.cache.find_by_hierarchy(number.strip())


def _missing(number: str) -> str:
    return f"No task numbered {number}."


def _outcome(result: OperationResult, done: str) -> str:
    if result.ok:
        return done
    return result.reason or result.kind.failure_message


def format_task_line(task: Task) -> str:
    h = task.hierarchy_number or "?"
    indent = "  " * (level_of(h) if task.hierarchy_number else 0)
    parts = [f"{indent}{h:<8} {task.name}"]
    if task.start_date or task.end_date:
        start = task.start_date.isoformat() if task.start_date else "?"
        end = task.end_date.isoformat() if task.end_date else "?"
        parts.append(f"[{start} .. {end}, {task.duration}d, {task.progress}%]")
    preds = parse_predecessors(task.predecessors)
    if preds:
        parts.append(f"after {', '.join(preds)}")
    return "  ".join(parts)


def _split_refs(args: list[str]) -> list[str]:
    return [p.strip() for a in args for p in a.split(",") if p.strip()]


# ---- commands ----


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_list(state: AppState, args: list[str]) -> str:
    tasks = state.coordinator.cache.tasks()
    if not tasks:
        return "Outline is empty. Use /add <name> to create a task."
    return "\n".join(format_task_line(t) for t in tasks)


async def cmd_add(state: AppState, args: list[str]) -> str:
    """
    /add <name>                 -> new last root task
    /add <name> under <N>       -> new last child of N
    /add <name> above|below <N> -> new sibling right before/after N
    """
    if not args:
        return "Usage: /add <name> [under N | above N | below N]"

    parent: str | None = None
    anchor_id: str | None = None
    position = DropPosition.AFTER
    words = list(args)
    if len(words) >= 3 and words[-2].lower() in ("under", "above", "below"):
        mode, ref = words[-2].lower(), words[-1]
        words = words[:-2]
        target = _find(state, ref)
        if target is None:
            return _missing(ref)
        if mode == "under":
            parent = target.hierarchy_number
        else:
            anchor_id = target.id
            position = DropPosition.BEFORE if mode == "above" else DropPosition.AFTER

    result = await state.coordinator.insert_task(
        " ".join(words), parent=parent, anchor_id=anchor_id, position=position
    )
    if not result.ok:
        return _outcome(result, "")
    created = state.coordinator.cache.get(result.task_id or "")
    number = created.hierarchy_number if created else "?"
    return f"Added {number} {' '.join(words)}."


def _single_task_command(
    action: str,
    usage: str,
) -> Callable[[AppState, list[str]], Awaitable[str]]:
    async def handler(state: AppState, args: list[str]) -> str:
        if len(args) != 1:
            return f"Usage: {usage}"
        task = _find(state, args[0])
        if task is None:
            return _missing(args[0])
        op = getattr(state.coordinator, action)
        result = await op(task.id)
        if not result.ok:
            return _outcome(result, "")
        moved = state.coordinator.cache.get(task.id)
        if moved is None:
            return f"Deleted {args[0]}."
        return f"{task.name}: {args[0]} -> {moved.hierarchy_number}"

    return handler


cmd_indent = _single_task_command("indent", "/indent <N>")
cmd_outdent = _single_task_command("outdent", "/outdent <N>")
cmd_up = _single_task_command("move_up", "/up <N>")
cmd_down = _single_task_command("move_down", "/down <N>")
cmd_delete = _single_task_command("delete_task", "/delete <N>")


async def cmd_drop(state: AppState, args: list[str]) -> str:
    """/drop <N> before|after <M>"""
    if len(args) != 3 or args[1].lower() not in ("before", "after"):
        return "Usage: /drop <N> before|after <M>"
    dragged, target = _find(state, args[0]), _find(state, args[2])
    if dragged is None:
        return _missing(args[0])
    if target is None:
        return _missing(args[2])
    position = DropPosition.parse(args[1])
    if not state.coordinator.can_drop_at(dragged.id, target.id, position):
        return f"Cannot drop {args[0]} {position.value} {args[2]}."
    result = await state.coordinator.reposition(dragged.id, target.id, position)
    moved = state.coordinator.cache.get(dragged.id)
    return _outcome(result, f"{dragged.name}: {args[0]} -> {moved.hierarchy_number if moved else '?'}")


async def cmd_pred(state: AppState, args: list[str]) -> str:
    """
    /pred <N>               -> clear predecessors
    /pred <N> 1.1,2SS+3d    -> set predecessors
    """
    if not args:
        return "Usage: /pred <N> [refs, comma separated]"
    task = _find(state, args[0])
    if task is None:
        return _missing(args[0])
    refs = _split_refs(args[1:])
    result = await state.coordinator.set_predecessors(task.id, refs)
    shown = ", ".join(refs) if refs else "none"
    return _outcome(result, f"Predecessors of {args[0]}: {shown}")


async def cmd_dates(state: AppState, args: list[str]) -> str:
    """
    /dates <N> [start] [end] [<days>d] [<pct>%]
    e.g. /dates 1.2 2026-03-02 5d 40%
    """
    if len(args) < 2:
        return "Usage: /dates <N> [YYYY-MM-DD [YYYY-MM-DD]] [<days>d] [<pct>%]"
    task = _find(state, args[0])
    if task is None:
        return _missing(args[0])

    dates: list[date] = []
    duration: int | None = None
    progress: int | None = None
    for token in args[1:]:
        if m := _DURATION_RE.match(token):
            duration = int(m.group(1))
        elif m := _PROGRESS_RE.match(token):
            progress = int(m.group(1))
        else:
            try:
                dates.append(date.fromisoformat(token))
            except ValueError:
                return f"Cannot parse '{token}' (expected YYYY-MM-DD, <days>d or <pct>%)."
    if len(dates) > 2:
        return "At most a start and an end date."

    result = await state.coordinator.edit_schedule(
        task.id,
        start_date=dates[0] if dates else None,
        end_date=dates[1] if len(dates) > 1 else None,
        duration=duration,
        progress=progress,
    )
    updated = state.coordinator.cache.get(task.id)
    return _outcome(result, format_task_line(updated) if updated else "Updated.")


async def cmd_undo(state: AppState, args: list[str]) -> str:
    result = await state.coordinator.undo()
    return _outcome(result, "Undone.")


async def cmd_normalize(state: AppState, args: list[str]) -> str:
    result = await state.coordinator.normalize()
    changes = result.changes
    n = len(changes.hierarchy_updates) if changes else 0
    return _outcome(result, f"Renumbered {n} task(s).")


async def cmd_check(state: AppState, args: list[str]) -> str:
    tasks = state.coordinator.cache.tasks()
    problems = find_contiguity_violations(tasks)
    for fix in find_self_references(tasks):
        task = state.coordinator.cache.get(fix.task_id)
        problems.append(f"{task.hierarchy_number if task else fix.task_id} references itself or a subtask")
    for t in tasks:
        if not t.predecessors:
            continue
        check = validate_predecessors(t.id, t.predecessors, tasks)
        problems.extend(f"{t.hierarchy_number}: {e}" for e in check.errors)
    if not problems:
        return f"Outline OK ({len(tasks)} task(s))."
    unique = list(dict.fromkeys(problems))
    return "Problems found (use /normalize to repair numbering):\n" + "\n".join(f"  - {p}" for p in unique)


async def cmd_import(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """/import <path.yaml> -> append a YAML outline after the existing roots"""
    if len(args) != 1:
        return "Usage: /import <path.yaml>"
    try:
        outline = load_outline(args[0])
    except FileNotFoundError:
        return f"File not found: {args[0]}"
    except OutlineImportError as exc:
        return f"Invalid outline: {exc}"
    if emit is not None:
        emit(f"Importing {len(outline.tasks)} task(s) from '{outline.project_name}'...")
    logger.debug("Import of %s requested (%d tasks)", args[0], len(outline.tasks))
    result = await state.coordinator.import_outline(outline)
    return _outcome(result, f"Imported {len(outline.tasks)} task(s).")


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("list", cmd_list, help_text="Show the outline.", aliases=["ls"])
registry.register("add", cmd_add, help_text="Add a task: /add <name> [under N | above N | below N].")
registry.register("indent", cmd_indent, help_text="Make N a child of its preceding sibling.")
registry.register("outdent", cmd_outdent, help_text="Promote second-level task N to a root.")
registry.register("up", cmd_up, help_text="Swap N with its previous sibling.")
registry.register("down", cmd_down, help_text="Swap N with its next sibling.")
registry.register("drop", cmd_drop, help_text="Reorder: /drop N before|after M.")
registry.register("delete", cmd_delete, help_text="Delete N with its subtasks.", aliases=["rm"])
registry.register("pred", cmd_pred, help_text="Set predecessors: /pred N 1.1,2SS+3d (no refs clears).")
registry.register("dates", cmd_dates, help_text="Edit schedule: /dates N 2026-03-02 5d 40%.")
registry.register("undo", cmd_undo, help_text="Undo the last change.")
registry.register("normalize", cmd_normalize, help_text="Repair numbering and self references.")
registry.register("check", cmd_check, help_text="Report numbering and predecessor problems.")
registry.register("import", cmd_import, help_text="Append a YAML outline: /import path.yaml.")
