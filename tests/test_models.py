"""Tests for domain entities and their lifecycle rules."""

from __future__ import annotations

import json
from datetime import date, datetime

import pytest

from orgsync.errors import InvalidTransition
from orgsync.models import (
    DayPlan,
    EntityCollection,
    Habit,
    Lifecycle,
    Project,
    StateChange,
    Task,
    TaskState,
    entity_from_dict,
)
from orgsync.recurrence import Recurrence

ON = datetime(2026, 2, 20, 8, 0)


class TestTaskTransitions:
    def test_open_transition_records_history(self):
        task = Task(title="Write report")
        assert task.transition(TaskState.NEXT, ON) is None
        assert task.state == TaskState.NEXT
        assert task.history == [StateChange(new="NEXT", old="TODO", at=ON)]
        assert task.completed is None

    def test_closing_sets_completed(self):
        task = Task(title="Write report")
        task.complete(ON)
        assert task.state == TaskState.DONE
        assert task.completed == ON

    def test_closed_task_cannot_transition(self):
        task = Task(title="Write report", state=TaskState.CANCELLED)
        with pytest.raises(InvalidTransition):
            task.transition(TaskState.TODO, ON)

    def test_same_state_is_a_no_op(self):
        task = Task(title="Write report")
        task.transition(TaskState.TODO, ON)
        assert task.history == []
        assert task.revision == 0

    def test_recurring_task_spawns_next_instance(self):
        task = Task(
            title="Water the plants",
            scheduled=date(2026, 2, 1),
            deadline=date(2026, 2, 3),
            recurrence=Recurrence.parse("+1w"),
            contexts=["@home"],
        )
        follow_up = task.complete(ON)
        assert task.state == TaskState.DONE
        assert follow_up.state == TaskState.TODO
        assert follow_up.scheduled == date(2026, 2, 8)
        assert follow_up.deadline == date(2026, 2, 10)
        assert follow_up.contexts == ["@home"]
        assert follow_up.id != task.id
        assert follow_up.created == ON

    def test_relative_recurrence_from_completion(self):
        task = Task(title="Stretch", scheduled=date(2026, 2, 1), recurrence=Recurrence.parse(".+1w"))
        assert task.complete(ON).scheduled == date(2026, 2, 27)

    def test_cancelling_recurring_task_also_advances(self):
        task = Task(title="Stretch", scheduled=date(2026, 2, 1), recurrence=Recurrence.parse("+1d"))
        assert task.cancel(ON).scheduled == date(2026, 2, 2)

    def test_lifecycle(self):
        assert TaskState.WAITING.lifecycle == Lifecycle.OPEN_DELEGATED
        assert TaskState.CANCELLED.is_closed
        assert TaskState.from_keyword("MAYBE") is None


class TestToday:
    def test_scheduled_on_or_before(self):
        ref = date(2026, 2, 20)
        assert Task(scheduled=date(2026, 2, 20)).is_today(ref)
        assert Task(scheduled=date(2026, 2, 1)).is_today(ref)
        assert not Task(scheduled=date(2026, 2, 21)).is_today(ref)

    def test_deadline_within_a_week(self):
        ref = date(2026, 2, 20)
        assert Task(deadline=date(2026, 2, 27)).is_today(ref)
        assert not Task(deadline=date(2026, 2, 28)).is_today(ref)
        assert not Task(deadline=date(2026, 2, 19)).is_today(ref)

    def test_closed_tasks_never_today(self):
        assert not Task(state=TaskState.DONE, scheduled=date(2026, 2, 1)).is_today(date(2026, 2, 20))


class TestRevisions:
    def test_assignment_bumps_revision(self):
        task = Task(title="A")
        assert task.revision == 0
        task.title = "B"
        assert task.revision == 1
        task.title = "B"
        assert task.revision == 1

    def test_clone_is_independent(self):
        task = Task(title="A", contexts=["@home"])
        copy = task.clone()
        copy.contexts.append("@work")
        assert task.contexts == ["@home"]

    def test_dict_round_trip(self):
        task = Task(
            title="Call",
            state=TaskState.WAITING,
            priority="B",
            contexts=["@phone"],
            scheduled=date(2026, 2, 20),
            recurrence=Recurrence.parse("++1m"),
            created=datetime(2026, 2, 1, 9, 30),
            cost=15,
            passthrough={"FAVORITE": "yes"},
            history=[StateChange(new="WAITING", old="TODO", at=ON)],
        )
        assert entity_from_dict(task.to_dict()) == task

    def test_to_dict_is_plain_json(self):
        data = Task(title="x").to_dict()
        assert json.loads(json.dumps(data)) == data
        assert not {"KIND", "SYNC_FIELDS", "UNTRACKED"} & set(data)
        assert entity_from_dict(data).title == "x"

    def test_field_values_are_json_ready(self):
        task = Task(title="Call", scheduled=date(2026, 2, 20), recurrence=Recurrence.parse("+1w"))
        values = task.field_values()
        assert values["scheduled"] == "2026-02-20"
        assert values["recurrence"] == "+1w"
        assert values["state"] == "TODO"
        assert "passthrough" not in values


class TestHabits:
    def _habit(self, *days: int) -> Habit:
        history = [StateChange(new="DONE", old="TODO", at=datetime(2026, 2, day, 7, 0)) for day in days]
        return Habit(title="Stretch", history=history)

    def test_streak_ending_today(self):
        habit = self._habit(17, 18, 19, 20)
        habit.recalculate_streak(date(2026, 2, 20))
        assert habit.streak == 4

    def test_streak_continues_until_today_is_done(self):
        habit = self._habit(17, 18, 19)
        habit.recalculate_streak(date(2026, 2, 20))
        assert habit.streak == 3
        assert habit.is_due(date(2026, 2, 20))
        assert not habit.is_due(date(2026, 2, 19))

    def test_broken_streak_keeps_best(self):
        habit = self._habit(2, 3, 4, 5, 10, 11)
        habit.recalculate_streak(date(2026, 2, 15))
        assert habit.streak == 0
        assert habit.best_streak == 4

    def test_no_history(self):
        habit = Habit(title="Stretch")
        habit.recalculate_streak(date(2026, 2, 20))
        assert (habit.streak, habit.best_streak) == (0, 0)

    def test_complete_advances_schedule(self):
        habit = self._habit(18, 19)
        habit.scheduled = date(2026, 2, 20)
        habit.recurrence = Recurrence.parse(".+1d")
        habit.complete(datetime(2026, 2, 20, 7, 0))
        assert habit.state == TaskState.TODO
        assert habit.scheduled == date(2026, 2, 21)
        assert habit.streak == 3
        assert len(habit.completions) == 3


class TestProjects:
    def test_next_action_prefers_next(self):
        project = Project(
            name="Kitchen",
            tasks=[Task(title="a", state=TaskState.TODO), Task(title="b", state=TaskState.NEXT)],
        )
        assert project.next_action().title == "b"
        assert not project.is_stuck()

    def test_stuck_when_only_waiting(self):
        project = Project(name="Spanish", tasks=[Task(title="books", state=TaskState.WAITING)])
        assert project.next_action() is None
        assert project.is_stuck()

    def test_finished_project_is_not_stuck(self):
        project = Project(name="Taxes", tasks=[Task(state=TaskState.DONE), Task(state=TaskState.CANCELLED)])
        assert not project.is_stuck()
        assert project.completion_ratio() == (2, 2)

    def test_to_dict_lists_task_ids(self):
        task = Task(id="t1")
        assert Project(name="P", tasks=[task]).to_dict()["tasks"] == ["t1"]


class TestCollection:
    def test_duplicate_id_rejected(self):
        collection = EntityCollection("next", [Task(id="a")])
        with pytest.raises(ValueError):
            collection.add(Task(id="a"))

    def test_replace_keeps_position(self):
        collection = EntityCollection("next", [Task(id="a"), Task(id="b")])
        collection.replace(Task(id="a", title="new"))
        assert [e.id for e in collection] == ["a", "b"]
        assert collection.get("a").title == "new"

    def test_copy_is_detached(self):
        collection = EntityCollection("next", [Task(id="a", title="old")])
        snapshot = collection.copy()
        collection.get("a").title = "new"
        assert snapshot.get("a").title == "old"
        assert collection.revisions() == {"a": 1}


class TestDayPlan:
    def test_complete_and_uncomplete(self):
        plan = DayPlan(date=date(2026, 2, 20), spoon_budget=40, confirmed_task_ids=["a", "b"])
        plan.complete_task("a", "Call", 15)
        assert plan.confirmed_task_ids == ["b"]
        assert plan.spent_spoons == 15
        assert plan.remaining_budget() == 25
        plan.uncomplete_task("a")
        assert plan.completed_tasks == []
        assert plan.spent_spoons == 0
        assert plan.confirmed_task_ids == ["b", "a"]

    def test_remaining_never_negative(self):
        plan = DayPlan(date=date(2026, 2, 20), spoon_budget=10, spent_spoons=25)
        assert plan.remaining_budget() == 0

    def test_stale(self):
        plan = DayPlan(date=date(2026, 2, 20))
        assert not plan.is_stale(date(2026, 2, 20))
        assert plan.is_stale(date(2026, 2, 21))
