"""Show command - list the entities of one collection."""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import date

from rich.console import Console
from rich.table import Table

from ..config import OrgSyncConfig
from ..models import Entity, Habit, ListItem, Project, Task
from ..vault.loader import Vault


def _short(entity_id: str) -> str:
    return entity_id[:8]


def _fmt_date(value: date | None) -> str:
    return value.isoformat() if value else ""


def _task_table(kind: str, tasks: list[Task], habits: bool) -> Table:
    table = Table(title=kind)
    table.add_column("ID", style="dim")
    table.add_column("State", style="bold")
    table.add_column("Pri")
    table.add_column("Title")
    table.add_column("Scheduled")
    table.add_column("Deadline")
    table.add_column("Contexts")
    if habits:
        table.add_column("Streak", justify="right")
        table.add_column("Best", justify="right")
    else:
        table.add_column("Cost", justify="right")
    for task in tasks:
        row = [
            _short(task.id),
            task.state.value,
            task.priority or "",
            task.title,
            _fmt_date(task.scheduled) + (f" {task.recurrence}" if task.recurrence else ""),
            _fmt_date(task.deadline),
            " ".join(task.contexts),
        ]
        if habits and isinstance(task, Habit):
            row += [str(task.streak), str(task.best_streak)]
        elif habits:
            row += ["", ""]
        else:
            row.append("" if task.cost is None else str(task.cost))
        table.add_row(*row)
    return table


def _project_table(projects: list[Project]) -> Table:
    table = Table(title="projects")
    table.add_column("ID", style="dim")
    table.add_column("Project", style="bold")
    table.add_column("Next action")
    table.add_column("Done", justify="right")
    table.add_column("Stuck")
    for project in projects:
        action = project.next_action()
        done, total = project.completion_ratio()
        table.add_row(
            _short(project.id),
            project.name,
            action.title if action else "",
            f"{done}/{total}",
            "[red]yes[/red]" if project.is_stuck() else "",
        )
    return table


def _list_table(kind: str, items: list[ListItem]) -> Table:
    table = Table(title=kind)
    table.add_column("ID", style="dim")
    table.add_column("Done")
    table.add_column("Title")
    for item in items:
        table.add_row(_short(item.id), "✓" if item.done else "", item.title)
    return table


def run_show(
    config: OrgSyncConfig,
    kind: str,
    reference: date,
    today_only: bool = False,
    output_json: bool = False,
) -> int:
    """
    Print one collection.

    Args:
        config: Loaded configuration
        kind: Collection kind (``next``, ``projects``, ``dayplan``, ...)
        reference: Day used for habit streaks, ``--today`` and day-plan staleness
        today_only: Only tasks that are due or scheduled for ``reference``
        output_json: Output entities as JSON

    Returns:
        Exit code
    """
    console = Console()
    vault = Vault(config)

    if kind == "dayplan":
        plan = vault.read_dayplan(reference)
        if output_json:
            print(json.dumps(asdict(plan) if plan else None, indent=2, default=str))
            return 0
        if plan is None:
            console.print(f"No day plan for {reference.isoformat()}.", style="dim")
            return 0
        console.print(
            f"[bold]{plan.date.isoformat()}[/bold]  spoons {plan.spent_spoons}/{plan.spoon_budget}"
            f" ({plan.remaining_budget()} left)"
        )
        console.print(f"  contexts: {' '.join(plan.active_contexts) or '-'}", highlight=False)
        console.print(f"  confirmed: {len(plan.confirmed_task_ids)}  completed: {len(plan.completed_tasks)}")
        for done in plan.completed_tasks:
            console.print(f"    ✓ {done.title} ({done.cost if done.cost is not None else '-'})", highlight=False)
        return 0

    entities: list[Entity] = list(vault.load(kind, reference))
    if today_only:
        entities = [e for e in entities if isinstance(e, Task) and e.is_today(reference)]

    if output_json:
        print(json.dumps([e.to_dict() for e in entities], indent=2, default=str))
        return 0

    if not entities:
        console.print(f"[dim]No entries in {kind}.[/dim]")
        return 0

    projects = [e for e in entities if isinstance(e, Project)]
    tasks = [e for e in entities if isinstance(e, Task)]
    items = [e for e in entities if isinstance(e, ListItem)]
    if projects:
        console.print(_project_table(projects))
    if tasks:
        console.print(_task_table(kind, tasks, habits=any(isinstance(t, Habit) for t in tasks)))
    if items:
        console.print(_list_table(kind, items))
    return 0
