"""Domain entities: tasks, projects, habits, list items and the day plan."""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Iterator

from .errors import InvalidTransition
from .recurrence import Recurrence


def new_id() -> str:
    return str(uuid.uuid4())


class Lifecycle(str, Enum):
    OPEN_UNSTARTED = "open-unstarted"
    OPEN_ACTIVE = "open-active"
    OPEN_DELEGATED = "open-delegated"
    OPEN_DEFERRED = "open-deferred"
    CLOSED_DONE = "closed-done"
    CLOSED_CANCELLED = "closed-cancelled"


class TaskState(str, Enum):
    TODO = "TODO"
    NEXT = "NEXT"
    WAITING = "WAITING"
    SOMEDAY = "SOMEDAY"
    DONE = "DONE"
    CANCELLED = "CANCELLED"

    @property
    def lifecycle(self) -> Lifecycle:
        return _LIFECYCLE[self]

    @property
    def is_closed(self) -> bool:
        return self in (TaskState.DONE, TaskState.CANCELLED)

    @property
    def is_open(self) -> bool:
        return not self.is_closed

    @classmethod
    def from_keyword(cls, keyword: str | None) -> "TaskState | None":
        try:
            return cls(keyword) if keyword else None
        except ValueError:
            return None


_LIFECYCLE = {
    TaskState.TODO: Lifecycle.OPEN_UNSTARTED,
    TaskState.NEXT: Lifecycle.OPEN_ACTIVE,
    TaskState.WAITING: Lifecycle.OPEN_DELEGATED,
    TaskState.SOMEDAY: Lifecycle.OPEN_DEFERRED,
    TaskState.DONE: Lifecycle.CLOSED_DONE,
    TaskState.CANCELLED: Lifecycle.CLOSED_CANCELLED,
}

PRIORITIES = ("A", "B", "C")


@dataclass(frozen=True)
class StateChange:
    """One logbook state transition (``- State "NEW" from "OLD" [when]``)."""

    new: str
    old: str
    at: datetime


# Field codecs for to_dict()/from_dict(); fields not listed are plain JSON values.
_DATE_FIELDS = frozenset({"scheduled", "deadline", "delegated", "follow_up"})
_DATETIME_FIELDS = frozenset({"created", "completed"})


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Recurrence):
        return str(value)
    if isinstance(value, StateChange):
        return {"new": value.new, "old": value.old, "at": value.at.isoformat()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    return value


def _decode(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _DATE_FIELDS:
        return date.fromisoformat(value)
    if name in _DATETIME_FIELDS:
        return datetime.fromisoformat(value)
    if name == "state":
        return TaskState(value)
    if name == "recurrence":
        return Recurrence.parse(value)
    if name in ("contexts", "tags"):
        return list(value)
    return value


@dataclass
class Entity:
    """
    Base class for identifiable domain entities.

    Assigning to any field bumps ``revision`` when the value changes.
    In-place mutation of list fields does not; call ``touch()`` after it.
    """

    KIND: ClassVar[str] = "entity"
    SYNC_FIELDS: ClassVar[tuple[str, ...]] = ()
    UNTRACKED: ClassVar[frozenset[str]] = frozenset({"revision"})

    id: str = field(default_factory=new_id)
    revision: int = field(default=0, compare=False)
    passthrough: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_tracking", True)

    def __setattr__(self, name: str, value: Any) -> None:
        tracking = self.__dict__.get("_tracking", False)
        changed = tracking and name not in self.UNTRACKED and self.__dict__.get(name) != value
        object.__setattr__(self, name, value)
        if changed:
            self.touch()

    def touch(self) -> None:
        object.__setattr__(self, "revision", self.revision + 1)

    def field_values(self) -> dict[str, Any]:
        """JSON-ready values of the fields a remote source can model."""
        return {name: _encode(getattr(self, name)) for name in self.SYNC_FIELDS}

    def apply_fields(self, values: dict[str, Any]) -> None:
        """Set synced fields from ``field_values()``-shaped data."""
        for name, value in values.items():
            if name in self.SYNC_FIELDS:
                setattr(self, name, _decode(name, value))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.KIND, "id": self.id}
        for f in fields(self):
            name = f.name
            if name in ("id", "revision", "tasks"):
                continue
            data[name] = _encode(getattr(self, name))
        return data

    def clone(self) -> "Entity":
        return copy.deepcopy(self)


@dataclass
class Task(Entity):
    KIND: ClassVar[str] = "task"
    SYNC_FIELDS: ClassVar[tuple[str, ...]] = (
        "title",
        "state",
        "priority",
        "contexts",
        "scheduled",
        "deadline",
        "recurrence",
        "notes",
        "waiting_for",
        "cost",
        "delegated",
        "follow_up",
    )

    title: str = ""
    state: TaskState = TaskState.TODO
    priority: str | None = None
    contexts: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    scheduled: date | None = None
    deadline: date | None = None
    recurrence: Recurrence | None = None
    notes: str = ""
    created: datetime | None = None
    completed: datetime | None = None
    project: str | None = None
    waiting_for: str | None = None
    cost: int | None = None
    delegated: date | None = None
    follow_up: date | None = None
    sync_uid: str | None = None
    history: list[StateChange] = field(default_factory=list)

    def transition(self, new_state: TaskState, on: datetime) -> "Task | None":
        """
        Move the task to ``new_state``.

        Closed tasks cannot transition. Closing a recurring task leaves this
        instance closed and returns a new open instance scheduled at the next
        occurrence.

        Args:
            new_state: Target state.
            on: When the transition happened; recorded in the history.

        Returns:
            The follow-up instance for a closed recurring task, else None.

        Raises:
            InvalidTransition: If the task is already closed.
        """
        if self.state.is_closed:
            raise InvalidTransition(f"Task {self.id} is {self.state.value}; closed tasks cannot change state")
        if new_state == self.state:
            return None

        self.history = [*self.history, StateChange(new=new_state.value, old=self.state.value, at=on)]
        self.state = new_state
        if not new_state.is_closed:
            return None

        self.completed = on
        if self.recurrence is None or self.scheduled is None:
            return None
        return self._next_instance(on)

    def complete(self, on: datetime) -> "Task | None":
        return self.transition(TaskState.DONE, on)

    def cancel(self, on: datetime) -> "Task | None":
        return self.transition(TaskState.CANCELLED, on)

    def _next_instance(self, on: datetime) -> "Task":
        assert self.recurrence is not None and self.scheduled is not None
        scheduled = self.recurrence.next_date(self.scheduled, on.date())
        deadline = None
        if self.deadline is not None:
            deadline = self.deadline + (scheduled - self.scheduled)
        return Task(
            title=self.title,
            state=TaskState.TODO,
            priority=self.priority,
            contexts=list(self.contexts),
            tags=list(self.tags),
            scheduled=scheduled,
            deadline=deadline,
            recurrence=self.recurrence,
            notes=self.notes,
            created=on,
            project=self.project,
            waiting_for=self.waiting_for,
            cost=self.cost,
            passthrough=dict(self.passthrough),
        )

    def is_today(self, reference: date) -> bool:
        """Open and scheduled on/before ``reference``, or due within 7 days."""
        if self.state.is_closed:
            return False
        if self.scheduled is not None and self.scheduled <= reference:
            return True
        if self.deadline is not None:
            days_until = (self.deadline - reference).days
            return 0 <= days_until <= 7
        return False

    def has_context(self, context: str) -> bool:
        return context in self.contexts


@dataclass
class Habit(Task):
    """A recurring task whose completions are kept as DONE state changes."""

    KIND: ClassVar[str] = "habit"
    UNTRACKED: ClassVar[frozenset[str]] = frozenset({"revision", "streak", "best_streak"})

    streak: int = field(default=0, compare=False)
    best_streak: int = field(default=0, compare=False)

    @property
    def completions(self) -> list[datetime]:
        return [change.at for change in self.history if change.new == TaskState.DONE.value]

    def recalculate_streak(self, reference: date) -> None:
        """
        Recompute ``streak`` and ``best_streak`` from the completion history.

        The current streak counts consecutive completed days ending at
        ``reference``; if ``reference`` itself has no completion yet the count
        starts from the day before.
        """
        days = sorted({moment.date() for moment in self.completions})
        if not days:
            self.streak = 0
            self.best_streak = 0
            return

        check = reference if reference in days else reference - timedelta(days=1)
        streak = 0
        for day in reversed(days):
            if day == check:
                streak += 1
                check -= timedelta(days=1)
            elif day < check:
                break

        best = current = 1
        for previous, day in zip(days, days[1:]):
            if (day - previous).days == 1:
                current += 1
            else:
                best = max(best, current)
                current = 1
        self.streak = streak
        self.best_streak = max(best, current, streak)

    def is_due(self, reference: date) -> bool:
        return not any(moment.date() == reference for moment in self.completions)

    def complete(self, on: datetime) -> None:
        """Record a completion and move the schedule forward; the habit stays open."""
        self.history = [*self.history, StateChange(new=TaskState.DONE.value, old=self.state.value, at=on)]
        if self.recurrence is not None and self.scheduled is not None:
            self.scheduled = self.recurrence.next_date(self.scheduled, on.date())
        self.recalculate_streak(on.date())


@dataclass
class Project(Entity):
    KIND: ClassVar[str] = "project"
    SYNC_FIELDS: ClassVar[tuple[str, ...]] = ("name", "purpose", "outcome", "notes")

    name: str = ""
    purpose: str | None = None
    outcome: str | None = None
    notes: str = ""
    tags: list[str] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list, compare=False, repr=False)

    def next_action(self) -> Task | None:
        """First NEXT task, else first TODO task."""
        for wanted in (TaskState.NEXT, TaskState.TODO):
            for task in self.tasks:
                if task.state == wanted:
                    return task
        return None

    def is_stuck(self) -> bool:
        return any(task.state.is_open for task in self.tasks) and self.next_action() is None

    def completion_ratio(self) -> tuple[int, int]:
        """Return ``(done, total)``."""
        done = sum(1 for task in self.tasks if task.state.is_closed)
        return done, len(self.tasks)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["tasks"] = [task.id for task in self.tasks]
        return data


@dataclass
class ListItem(Entity):
    KIND: ClassVar[str] = "list_item"
    SYNC_FIELDS: ClassVar[tuple[str, ...]] = ("title", "notes", "done")

    title: str = ""
    notes: str = ""
    created: datetime | None = None
    done: bool = False
    tags: list[str] = field(default_factory=list)


@dataclass
class CompletedTask:
    id: str
    title: str
    cost: int | None = None


@dataclass
class DayPlan:
    """The single current-day plan; saved wholesale."""

    date: date
    spoon_budget: int = 50
    spent_spoons: int = 0
    active_contexts: list[str] = field(default_factory=list)
    confirmed_task_ids: list[str] = field(default_factory=list)
    completed_tasks: list[CompletedTask] = field(default_factory=list)
    picked_media_ids: list[str] = field(default_factory=list)
    picked_shopping_ids: list[str] = field(default_factory=list)

    def is_stale(self, reference: date) -> bool:
        return self.date != reference

    def remaining_budget(self) -> int:
        return max(0, self.spoon_budget - self.spent_spoons)

    def complete_task(self, task_id: str, title: str, cost: int | None = None) -> None:
        """Move a task from confirmed to completed and spend its cost."""
        self.confirmed_task_ids = [tid for tid in self.confirmed_task_ids if tid != task_id]
        self.completed_tasks.append(CompletedTask(id=task_id, title=title, cost=cost))
        self.spent_spoons += cost or 0

    def uncomplete_task(self, task_id: str) -> None:
        for pos, done in enumerate(self.completed_tasks):
            if done.id == task_id:
                self.completed_tasks.pop(pos)
                self.spent_spoons = max(0, self.spent_spoons - (done.cost or 0))
                self.confirmed_task_ids.append(task_id)
                return


ENTITY_TYPES: dict[str, type[Entity]] = {
    Task.KIND: Task,
    Habit.KIND: Habit,
    Project.KIND: Project,
    ListItem.KIND: ListItem,
}


def entity_from_dict(data: dict[str, Any]) -> Entity:
    """Rebuild an entity from ``Entity.to_dict()`` output."""
    cls = ENTITY_TYPES[data.get("kind", Task.KIND)]
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        name = f.name
        if name not in data or name in ("revision", "tasks"):
            continue
        value = data[name]
        if name == "history":
            value = [
                StateChange(new=h["new"], old=h["old"], at=datetime.fromisoformat(h["at"])) for h in value or []
            ]
        elif name == "passthrough":
            value = dict(value or {})
        else:
            value = _decode(name, value)
        kwargs[name] = value
    return cls(**kwargs)


class EntityCollection:
    """
    Ordered, id-keyed entities of one collection (one file).

    Identity is unique within a collection; ``add`` refuses duplicates.
    """

    def __init__(self, kind: str, entities: list[Entity] | None = None):
        self.kind = kind
        self._entities: dict[str, Entity] = {}
        for entity in entities or []:
            self.add(entity)

    def __iter__(self) -> Iterator[Entity]:
        return iter(list(self._entities.values()))

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def get(self, entity_id: str) -> Entity | None:
        return self._entities.get(entity_id)

    def add(self, entity: Entity) -> None:
        if entity.id in self._entities:
            raise ValueError(f"Duplicate entity id {entity.id} in {self.kind}")
        self._entities[entity.id] = entity

    def replace(self, entity: Entity) -> None:
        """Insert or overwrite ``entity`` keeping its position if present."""
        self._entities[entity.id] = entity

    def remove(self, entity_id: str) -> Entity | None:
        return self._entities.pop(entity_id, None)

    def restore(self, entities: list[Entity]) -> None:
        """Put back exactly ``entities``, in order, as taken from ``list(collection)``."""
        self._entities = {entity.id: entity for entity in entities}

    def of_type(self, cls: type) -> list:
        return [e for e in self._entities.values() if isinstance(e, cls)]

    def tasks(self) -> list[Task]:
        return self.of_type(Task)

    def copy(self) -> "EntityCollection":
        """Deep copy for use as a consistent read snapshot."""
        return EntityCollection(self.kind, [e.clone() for e in self._entities.values()])

    def revisions(self) -> dict[str, int]:
        return {entity_id: entity.revision for entity_id, entity in self._entities.items()}
