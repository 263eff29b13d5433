"""
Domain converter: heading trees <-> typed entities.

Reading mints missing identities in place so the next save persists them.
Writing is merge-on-write: it starts from the previously parsed document
and only rewrites what the domain model owns. Unknown properties, plain
timestamps, foreign log lines and untouched bodies are carried over.
"""

from __future__ import annotations

import copy
import logging
import textwrap
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Callable, Iterable, Iterator

from ..config import TaskConfig
from ..models import (
    PRIORITIES,
    CompletedTask,
    DayPlan,
    Entity,
    Habit,
    ListItem,
    Project,
    StateChange,
    Task,
    TaskState,
    new_id,
)
from ..org.document import Document, Heading, LogEntry, TodoVocabulary
from ..org.timestamps import Timestamp, TimestampKind, format_inactive, parse_inactive
from ..recurrence import Recurrence

logger = logging.getLogger(__name__)

NOTES_INDENT = "  "
PROJECT_PREFIX = "Project: "
HABIT_TAG = "habit"

DAYPLAN_SECTIONS = {
    "Active Contexts": "active_contexts",
    "Confirmed Tasks": "confirmed_task_ids",
    "Completed Tasks": "completed_tasks",
    "Picked Media": "picked_media_ids",
    "Picked Shopping": "picked_shopping_ids",
}
# Cost slot of a completed task line with no recorded cost.
NO_COST = "-"


class Layout(str, Enum):
    TASKS = "tasks"
    PROJECTS = "projects"
    HABITS = "habits"
    LIST = "list"
    DAYPLAN = "dayplan"


LAYOUTS = {
    "inbox": Layout.TASKS,
    "next": Layout.TASKS,
    "waiting": Layout.TASKS,
    "someday": Layout.TASKS,
    "archive": Layout.TASKS,
    "projects": Layout.PROJECTS,
    "habits": Layout.HABITS,
    "media": Layout.LIST,
    "shopping": Layout.LIST,
    "dayplan": Layout.DAYPLAN,
}


@dataclass
class ConversionDiagnostic:
    """A property whose value did not fit its domain field."""

    entity_id: str
    field: str
    raw: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"entity_id": self.entity_id, "field": self.field, "raw": self.raw, "message": self.message}


@dataclass
class ConversionResult:
    entities: list[Entity] = field(default_factory=list)
    diagnostics: list[ConversionDiagnostic] = field(default_factory=list)
    minted: list[str] = field(default_factory=list)


# --- property codecs -------------------------------------------------------
# Each parser returns None for a value it cannot read.


def _parse_text(raw: str) -> str | None:
    value = raw.strip()
    return value or None


def _parse_int(raw: str) -> int | None:
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _parse_date(raw: str) -> date | None:
    value = parse_inactive(raw)
    if isinstance(value, datetime):
        return value.date()
    return value


def _parse_datetime(raw: str) -> datetime | None:
    value = parse_inactive(raw)
    if value is None or isinstance(value, datetime):
        return value
    return datetime.combine(value, time())


def _single_line(value: str) -> str:
    return " ".join(value.split())


@dataclass(frozen=True)
class OwnedProperty:
    key: str
    attr: str
    parse: Callable[[str], Any]
    format: Callable[[Any], str]


def _text_property(key: str, attr: str) -> OwnedProperty:
    return OwnedProperty(key, attr, _parse_text, _single_line)


TASK_PROPERTIES = (
    OwnedProperty("CREATED", "created", _parse_datetime, format_inactive),
    OwnedProperty("ESC", "cost", _parse_int, str),
    _text_property("WAITING_FOR", "waiting_for"),
    OwnedProperty("DELEGATED", "delegated", _parse_date, format_inactive),
    OwnedProperty("FOLLOW_UP", "follow_up", _parse_date, format_inactive),
    OwnedProperty("COMPLETED", "completed", _parse_datetime, format_inactive),
    _text_property("SYNC_UID", "sync_uid"),
)
PROJECT_PROPERTIES = (
    _text_property("PURPOSE", "purpose"),
    _text_property("OUTCOME", "outcome"),
)
LIST_PROPERTIES = (OwnedProperty("CREATED", "created", _parse_datetime, format_inactive),)


def _owned_properties(entity_type: type) -> tuple[OwnedProperty, ...]:
    if issubclass(entity_type, Task):
        return TASK_PROPERTIES
    if issubclass(entity_type, Project):
        return PROJECT_PROPERTIES
    return LIST_PROPERTIES


# --- body and log helpers --------------------------------------------------


def notes_of(body: list[str]) -> str:
    """Body lines as note text: outer blank lines dropped, common indent removed."""
    lines = list(body)
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return textwrap.dedent("\n".join(lines))


def merge_body(previous: list[str], notes: str) -> list[str]:
    if notes_of(previous) == notes:
        return previous
    trailing: list[str] = []
    for line in reversed(previous):
        if line.strip():
            break
        trailing.append(line)
    lines = [NOTES_INDENT + line if line.strip() else "" for line in notes.split("\n")] if notes else []
    return lines + trailing


def _as_datetime(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        return value.replace(second=0, microsecond=0)
    return datetime.combine(value, time())


def format_state_change(change: StateChange) -> str:
    return f'- State "{change.new}" from "{change.old}" {format_inactive(change.at)}'


def history_of(log: list[LogEntry]) -> list[StateChange]:
    history = []
    for entry in log:
        change = entry.state_change()
        if change is not None:
            history.append(StateChange(new=change[0], old=change[1], at=_as_datetime(entry.timestamp)))
    return history


def merge_log(previous: list[LogEntry], history: list[StateChange]) -> list[LogEntry]:
    """Keep foreign entries and matching state changes; append new state changes."""
    pending = list(history)
    result: list[LogEntry] = []
    for entry in previous:
        change = entry.state_change()
        if change is None:
            result.append(entry)
            continue
        key = (change[0], change[1], _as_datetime(entry.timestamp))
        for pos, candidate in enumerate(pending):
            if (candidate.new, candidate.old, _as_datetime(candidate.at)) == key:
                pending.pop(pos)
                result.append(entry)
                break
    for change in pending:
        result.append(LogEntry(timestamp=change.at, text=format_state_change(change)))
    return result


def merge_tags(previous: list[str], wanted: Iterable[str]) -> list[str]:
    wanted = list(dict.fromkeys(wanted))
    kept = [tag for tag in previous if tag in wanted]
    return kept + [tag for tag in wanted if tag not in kept]


def merge_timestamps(
    previous: list[Timestamp],
    scheduled: date | None,
    deadline: date | None,
    recurrence: Recurrence | None,
) -> list[Timestamp]:
    """
    Rewrite the first SCHEDULED/DEADLINE stamps to the entity's dates.

    A stamp whose date and repeater already match is kept as-is (including
    any clock time). Plain and range stamps are never touched.
    """
    wanted = {TimestampKind.SCHEDULED: scheduled, TimestampKind.DEADLINE: deadline}
    repeat_kind = next(
        (s.kind for s in previous if s.kind in wanted and s.repeater is not None and wanted[s.kind] is not None),
        None,
    )
    if repeat_kind is None:
        repeat_kind = TimestampKind.SCHEDULED if scheduled else TimestampKind.DEADLINE if deadline else None
    repeater = recurrence.to_repeater() if recurrence else None

    result: list[Timestamp] = []
    placed: set[TimestampKind] = set()
    for stamp in previous:
        if stamp.kind not in wanted or stamp.kind in placed:
            result.append(stamp)
            continue
        placed.add(stamp.kind)
        day = wanted[stamp.kind]
        if day is None:
            continue
        want_repeater = repeater if stamp.kind == repeat_kind else None
        if stamp.date == day and stamp.repeater == want_repeater:
            result.append(stamp)
        else:
            result.append(replace(stamp, date=day, repeater=want_repeater, end_date=None))
    for kind, day in wanted.items():
        if day is not None and kind not in placed:
            result.append(Timestamp(kind=kind, date=day, repeater=repeater if kind == repeat_kind else None))
    return result


# --- converter -------------------------------------------------------------


class DomainConverter:
    """
    Bidirectional mapping between documents and entities for one vault.

    Args:
        vocabulary: State keywords used for new documents and for mapping
            custom keywords onto task states.
        tasks: Cost range and known contexts.
    """

    def __init__(self, vocabulary: TodoVocabulary | None = None, tasks: TaskConfig | None = None):
        self.vocabulary = vocabulary or TodoVocabulary()
        self.tasks = tasks or TaskConfig()

    # -- classification --

    def entity_headings(self, document: Document, layout: Layout) -> Iterator[tuple[Heading, type, Heading | None]]:
        """Yield ``(heading, entity type, project heading)`` for headings that map to entities."""
        if layout == Layout.TASKS:
            for heading in document.walk():
                yield heading, Task, None
        elif layout == Layout.LIST:
            for heading in document.walk():
                yield heading, ListItem, None
        elif layout == Layout.HABITS:
            for heading in document.walk():
                if self.is_habit(heading):
                    yield heading, Habit, None
        elif layout == Layout.PROJECTS:
            for root_index in document.roots:
                root = document.headings[root_index]
                if root.keyword is None:
                    yield root, Project, None
                    for sub in list(document.subtree(root_index))[1:]:
                        yield sub, Task, root
                else:
                    for sub in document.subtree(root_index):
                        yield sub, Task, None

    @staticmethod
    def is_habit(heading: Heading) -> bool:
        style = heading.properties.get("STYLE") or ""
        return HABIT_TAG in heading.tags or style.strip().lower() == HABIT_TAG

    def state_of(self, keyword: str | None, vocabulary: TodoVocabulary | None = None) -> TaskState:
        vocabulary = vocabulary or self.vocabulary
        state = TaskState.from_keyword(keyword)
        if state is not None:
            return state
        if keyword and vocabulary.is_closed(keyword):
            return TaskState.DONE
        return TaskState.TODO

    # -- reading --

    def to_domain(self, document: Document, kind: str, reference: date | None = None) -> ConversionResult:
        """
        Convert a parsed document into entities.

        Headings without an ``ID`` (or with an ID already used earlier in the
        document) get a fresh one written into the heading's properties.

        Args:
            document: Parsed document; modified in place when IDs are minted.
            kind: Collection kind (``next``, ``projects``, ...).
            reference: Day used for habit streaks.
        """
        layout = LAYOUTS[kind]
        if layout == Layout.DAYPLAN:
            raise ValueError("Day plans are read with read_dayplan()")

        result = ConversionResult()
        seen: set[str] = set()
        projects: dict[int, Project] = {}
        for heading, entity_type, container in self.entity_headings(document, layout):
            ident = (heading.properties.get("ID") or "").strip()
            if not ident or ident in seen:
                ident = new_id()
                heading.properties["ID"] = ident
                result.minted.append(ident)
                logger.info("Assigned id %s to heading at line %d", ident, heading.lineno)
            seen.add(ident)

            values, passthrough = self._read_properties(heading, entity_type, ident, result.diagnostics)
            values["id"] = ident
            values["passthrough"] = passthrough

            if issubclass(entity_type, Task):
                if container is not None:
                    values["project"] = projects[container.index].name
                entity = self._read_task(heading, entity_type, values, document.vocabulary, result.diagnostics)
                if container is not None:
                    projects[container.index].tasks.append(entity)
                if isinstance(entity, Habit) and reference is not None:
                    entity.recalculate_streak(reference)
            elif entity_type is Project:
                title = heading.title
                values["name"] = title[len(PROJECT_PREFIX):] if title.startswith(PROJECT_PREFIX) else title
                values["notes"] = notes_of(heading.body)
                values["tags"] = list(heading.tags)
                entity = Project(**values)
                projects[heading.index] = entity
            else:
                values["title"] = heading.title
                values["notes"] = notes_of(heading.body)
                values["done"] = document.vocabulary.is_closed(heading.keyword)
                values["tags"] = list(heading.tags)
                entity = ListItem(**values)
            result.entities.append(entity)
        return result

    def _read_properties(
        self,
        heading: Heading,
        entity_type: type,
        ident: str,
        diagnostics: list[ConversionDiagnostic],
    ) -> tuple[dict[str, Any], dict[str, str]]:
        owned = {prop.key: prop for prop in _owned_properties(entity_type)}
        values: dict[str, Any] = {}
        passthrough: dict[str, str] = {}
        for key, raw in heading.properties.items():
            norm = key.upper()
            if norm == "ID":
                continue
            prop = owned.get(norm)
            if prop is None:
                passthrough[key] = raw
                continue
            value = prop.parse(raw)
            if value is None:
                passthrough[key] = raw
                if raw.strip():
                    diagnostics.append(
                        ConversionDiagnostic(ident, prop.attr, raw, f"{norm} value {raw!r} is not valid; kept as text")
                    )
                continue
            if prop.attr == "cost":
                clamped = min(max(value, self.tasks.cost_min), self.tasks.cost_max)
                if clamped != value:
                    diagnostics.append(
                        ConversionDiagnostic(
                            ident,
                            "cost",
                            raw,
                            f"ESC {value} outside {self.tasks.cost_min}..{self.tasks.cost_max}; clamped to {clamped}",
                        )
                    )
                value = clamped
            values[prop.attr] = value
        return values, passthrough

    def _read_task(
        self,
        heading: Heading,
        entity_type: type,
        values: dict[str, Any],
        vocabulary: TodoVocabulary,
        diagnostics: list[ConversionDiagnostic],
    ) -> Task:
        values["title"] = heading.title
        values["state"] = self.state_of(heading.keyword, vocabulary)
        if heading.priority in PRIORITIES:
            values["priority"] = heading.priority
        elif heading.priority:
            diagnostics.append(
                ConversionDiagnostic(values["id"], "priority", heading.priority, "Priority outside A-C ignored")
            )
        values["contexts"] = [tag for tag in heading.tags if tag.startswith("@")]
        values["tags"] = [tag for tag in heading.tags if not tag.startswith("@")]

        scheduled = heading.timestamp_of(TimestampKind.SCHEDULED)
        deadline = heading.timestamp_of(TimestampKind.DEADLINE)
        values["scheduled"] = scheduled.date if scheduled else None
        values["deadline"] = deadline.date if deadline else None
        for stamp in (scheduled, deadline):
            if stamp is not None and stamp.repeater is not None:
                values["recurrence"] = Recurrence.from_repeater(stamp.repeater)
                break

        values["notes"] = notes_of(heading.body)
        values["history"] = history_of(heading.log)
        return entity_type(**values)

    # -- writing --

    def new_document(self, title: str) -> Document:
        document = Document(vocabulary=self.vocabulary)
        document.preamble = [f"#+TITLE: {title}", f"#+TODO: {self.vocabulary.header_value()}", ""]
        return document

    def from_domain(self, entities: Iterable[Entity], previous: Document | None, kind: str) -> Document:
        """
        Build the document to save for ``entities``.

        Args:
            entities: Entities of this collection, in the desired order for
                newly added ones.
            previous: The document the entities were loaded from, or None
                for a fresh file. It is not modified.
            kind: Collection kind.

        Returns:
            A new Document; existing headings keep their position.
        """
        layout = LAYOUTS[kind]
        document = copy.deepcopy(previous) if previous is not None else self.new_document(kind.capitalize())

        existing: dict[str, Heading] = {}
        for heading, _, _ in list(self.entity_headings(document, layout)):
            ident = (heading.properties.get("ID") or "").strip()
            if ident:
                existing.setdefault(ident, heading)

        wanted = [entity for entity in entities if self._accepts(layout, entity)]
        wanted_ids = {entity.id for entity in wanted}
        for ident, heading in existing.items():
            if ident not in wanted_ids:
                document.remove(heading.index)

        # Projects first so their tasks can be placed under them.
        wanted.sort(key=lambda e: 0 if isinstance(e, Project) else 1)
        project_headings: dict[str, Heading] = {}
        for entity in wanted:
            heading = existing.get(entity.id)
            is_new = heading is None
            if heading is None:
                heading = Heading(depth=1)
                parent = None
                if layout == Layout.PROJECTS and isinstance(entity, Task) and entity.project in project_headings:
                    parent = project_headings[entity.project].index
                    heading.depth = project_headings[entity.project].depth + 1
                document.add(heading, parent=parent)
            elif layout == Layout.PROJECTS and isinstance(entity, Task):
                self._place_project_task(document, heading, entity, project_headings)

            if isinstance(entity, Project):
                self._write_project(heading, entity, is_new)
                project_headings[entity.name] = heading
            elif isinstance(entity, Task):
                self._write_task(heading, entity, is_new, document.vocabulary)
            else:
                self._write_list_item(heading, entity, is_new, document.vocabulary)
        return document

    @staticmethod
    def _accepts(layout: Layout, entity: Entity) -> bool:
        if layout == Layout.LIST:
            return isinstance(entity, ListItem)
        if layout == Layout.PROJECTS:
            return isinstance(entity, (Project, Task))
        if layout == Layout.HABITS:
            return isinstance(entity, Habit)
        return isinstance(entity, Task)

    @staticmethod
    def _place_project_task(
        document: Document, heading: Heading, task: Task, project_headings: dict[str, Heading]
    ) -> None:
        top = heading
        for ancestor in document.ancestors(heading.index):
            top = ancestor
        current = None
        if top is not heading and top.keyword is None:
            current = top.title[len(PROJECT_PREFIX):] if top.title.startswith(PROJECT_PREFIX) else top.title
        if current == task.project:
            return
        if task.project in project_headings:
            document.move(heading.index, project_headings[task.project].index)
        elif task.project is None and current is not None:
            document.move(heading.index, None)

    def _write_properties(self, heading: Heading, entity: Entity, owned: tuple[OwnedProperty, ...]) -> None:
        props = heading.properties
        if (props.get("ID") or "").strip() != entity.id:
            props["ID"] = entity.id
        for key, raw in entity.passthrough.items():
            if key not in props:
                props[key] = raw
        for prop in owned:
            current = getattr(entity, prop.attr)
            raw = props.get(prop.key)
            if current is None:
                if raw is not None and prop.parse(raw) is not None:
                    props.pop(prop.key)
                continue
            if raw is not None and prop.parse(raw) == current:
                continue
            props[prop.key] = prop.format(current)

    def _keyword_for(self, state: TaskState, previous: str | None, is_new: bool, vocabulary: TodoVocabulary) -> str | None:
        if not is_new and self.state_of(previous, vocabulary) == state:
            return previous
        return state.value

    def _write_task(self, heading: Heading, task: Task, is_new: bool, vocabulary: TodoVocabulary) -> None:
        heading.title = _single_line(task.title)
        heading.keyword = self._keyword_for(task.state, heading.keyword, is_new, vocabulary)
        if task.priority in PRIORITIES:
            heading.priority = task.priority
        elif heading.priority in PRIORITIES:
            heading.priority = None
        heading.tags = merge_tags(heading.tags, [*task.tags, *task.contexts])
        heading.timestamps = merge_timestamps(heading.timestamps, task.scheduled, task.deadline, task.recurrence)
        self._write_properties(heading, task, TASK_PROPERTIES)
        if isinstance(task, Habit) and not self.is_habit(heading):
            heading.properties["STYLE"] = HABIT_TAG
        heading.log = merge_log(heading.log, task.history)
        heading.body = merge_body(heading.body, task.notes)

    def _write_project(self, heading: Heading, project: Project, is_new: bool) -> None:
        current = heading.title[len(PROJECT_PREFIX):] if heading.title.startswith(PROJECT_PREFIX) else heading.title
        if is_new or current != project.name:
            heading.title = PROJECT_PREFIX + _single_line(project.name)
        heading.keyword = None
        heading.tags = merge_tags(heading.tags, project.tags)
        self._write_properties(heading, project, PROJECT_PROPERTIES)
        heading.body = merge_body(heading.body, project.notes)

    def _write_list_item(self, heading: Heading, item: ListItem, is_new: bool, vocabulary: TodoVocabulary) -> None:
        heading.title = _single_line(item.title)
        if is_new or vocabulary.is_closed(heading.keyword) != item.done:
            heading.keyword = "DONE" if item.done else None
        heading.tags = merge_tags(heading.tags, item.tags)
        self._write_properties(heading, item, LIST_PROPERTIES)
        heading.body = merge_body(heading.body, item.notes)


# --- day plan --------------------------------------------------------------


def _read_completed(item: str) -> CompletedTask:
    """Read ``id | title | cost``; the title may itself contain `` | ``."""
    ident, _, rest = item.partition(" | ")
    title, cost = rest, None
    head, sep, tail = rest.rpartition(" | ")
    if sep and (tail.strip() == NO_COST or _parse_int(tail) is not None):
        title, cost = head, _parse_int(tail)
    return CompletedTask(id=ident.strip(), title=title.strip(), cost=cost)


def read_dayplan(document: Document, reference: date | None = None, default_budget: int = 50) -> DayPlan | None:
    """
    Read the day plan from its document.

    Returns None when the file has no valid ``#+DATE:``, or when
    ``reference`` is given and the plan is for another day.
    """
    raw_date = document.keyword("DATE")
    if not raw_date:
        return None
    try:
        plan_date = date.fromisoformat(raw_date.strip()[:10])
    except ValueError:
        return None

    budget = _parse_int(document.keyword("SPOON_BUDGET") or "")
    spent = _parse_int(document.keyword("SPENT_SPOONS") or "")
    plan = DayPlan(
        date=plan_date,
        spoon_budget=budget if budget is not None else default_budget,
        spent_spoons=spent or 0,
    )
    if reference is not None and plan.is_stale(reference):
        return None

    for index in document.roots:
        heading = document.headings[index]
        attr = DAYPLAN_SECTIONS.get(heading.title)
        if attr is None:
            continue
        for line in heading.body:
            item = line.strip()
            if not item.startswith("- "):
                continue
            item = item[2:].strip()
            if attr == "completed_tasks":
                plan.completed_tasks.append(_read_completed(item))
            elif item:
                getattr(plan, attr).append(item)
    return plan


def write_dayplan(plan: DayPlan) -> Document:
    """Render the plan as a fresh document; the previous file is replaced wholesale."""
    document = Document()
    document.preamble = [
        "#+TITLE: Day Plan",
        f"#+DATE: {plan.date.isoformat()}",
        f"#+SPOON_BUDGET: {plan.spoon_budget}",
        f"#+SPENT_SPOONS: {plan.spent_spoons}",
        "",
    ]
    for title, attr in DAYPLAN_SECTIONS.items():
        heading = Heading(depth=1, title=title)
        if attr == "completed_tasks":
            for done in plan.completed_tasks:
                cost = str(done.cost) if done.cost is not None else NO_COST
                parts = [done.id, _single_line(done.title), cost]
                heading.body.append(f"{NOTES_INDENT}- " + " | ".join(parts))
        else:
            heading.body.extend(f"{NOTES_INDENT}- {_single_line(item)}" for item in getattr(plan, attr))
        document.add(heading)
    return document
