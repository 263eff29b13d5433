"""Tests for converting heading trees to entities and back."""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path

from orgsync.config import TaskConfig
from orgsync.models import DayPlan, Habit, ListItem, Project, StateChange, Task, TaskState
from orgsync.org.parser import parse
from orgsync.org.writer import write
from orgsync.recurrence import Recurrence, RecurrencePolicy
from orgsync.vault.convert import DomainConverter, read_dayplan, write_dayplan


def _convert(text: str, kind: str = "next", reference: date | None = None, converter: DomainConverter | None = None):
    converter = converter or DomainConverter()
    document, _ = parse(text)
    return converter, document, converter.to_domain(document, kind, reference)


def _by_id(entities) -> dict:
    return {entity.id: entity for entity in entities}


class TestReadTasks:
    def test_fixture_fields(self, fixtures_dir: Path):
        _, _, result = _convert((fixtures_dir / "next.org").read_text())
        assert result.diagnostics == []
        assert result.minted == []
        tasks = _by_id(result.entities)

        dentist = tasks["task-dentist"]
        assert dentist.title == "Call the dentist"
        assert dentist.state == TaskState.NEXT
        assert dentist.priority == "A"
        assert dentist.contexts == ["@phone"]
        assert dentist.tags == ["health"]
        assert dentist.scheduled == date(2026, 2, 20)
        assert dentist.deadline == date(2026, 2, 25)
        assert dentist.created == datetime(2026, 2, 1, 9, 30)
        assert dentist.cost == 20
        assert dentist.notes == "Ask about the Thursday slot."
        assert dentist.passthrough == {"FAVORITE": "yes"}

        plants = tasks["task-plants"]
        assert plants.recurrence == Recurrence(RecurrencePolicy.STANDARD, 1, "w")

        taxes = tasks["task-taxes"]
        assert taxes.state == TaskState.DONE
        assert taxes.completed == datetime(2026, 2, 10, 18, 0)
        assert taxes.history == [StateChange(new="DONE", old="TODO", at=datetime(2026, 2, 10, 18, 0))]

    def test_missing_and_duplicate_ids_are_minted(self):
        text = "* TODO One\n* TODO Two\n  :PROPERTIES:\n  :ID: same\n  :END:\n* TODO Three\n  :PROPERTIES:\n  :ID: same\n  :END:\n"
        _, document, result = _convert(text)
        ids = [entity.id for entity in result.entities]
        assert ids[1] == "same"
        assert len(set(ids)) == 3
        assert len(result.minted) == 2
        assert document.headings[0].properties["ID"] == ids[0]
        assert "  :ID: " + ids[0] in write(document)

    def test_cost_is_clamped(self):
        text = "* TODO Big job\n  :PROPERTIES:\n  :ID: big\n  :ESC: 200\n  :END:\n"
        converter, document, result = _convert(text)
        task = result.entities[0]
        assert task.cost == 100
        assert len(result.diagnostics) == 1
        assert result.diagnostics[0].field == "cost"

        saved = write(converter.from_domain(result.entities, document, "next"))
        assert "  :ESC: 100" in saved

    def test_configured_cost_range(self):
        converter = DomainConverter(tasks=TaskConfig(cost_min=1, cost_max=10))
        _, _, result = _convert("* TODO x\n  :PROPERTIES:\n  :ESC: 0\n  :END:\n", converter=converter)
        assert result.entities[0].cost == 1

    def test_invalid_owned_value_kept_as_text(self):
        text = "* TODO Odd\n  :PROPERTIES:\n  :ID: odd\n  :CREATED: sometime last week\n  :END:\n"
        converter, document, result = _convert(text)
        task = result.entities[0]
        assert task.created is None
        assert task.passthrough == {"CREATED": "sometime last week"}
        assert result.diagnostics[0].field == "created"
        assert write(converter.from_domain(result.entities, document, "next")) == text

    def test_custom_closed_keyword_maps_to_done(self):
        _, _, result = _convert("#+TODO: OPEN | SHIPPED\n\n* SHIPPED Release\n")
        assert result.entities[0].state == TaskState.DONE

    def test_priority_outside_range_ignored(self):
        _, _, result = _convert("* TODO [#D] Someday maybe\n")
        assert result.entities[0].priority is None
        assert result.diagnostics[0].field == "priority"


class TestWriteTasks:
    def test_unknown_content_preserved_on_unrelated_edit(self, fixtures_dir: Path):
        original = (fixtures_dir / "next.org").read_text()
        converter, document, result = _convert(original)
        tasks = _by_id(result.entities)
        tasks["task-dentist"].title = "Call the dentist today"

        saved = write(converter.from_domain(result.entities, document, "next"))
        assert saved == original.replace("Call the dentist", "Call the dentist today")

    def test_new_task_is_appended(self, fixtures_dir: Path):
        converter, document, result = _convert((fixtures_dir / "next.org").read_text())
        task = Task(id="new-1", title="Buy stamps", contexts=["@errands"], deadline=date(2026, 3, 2))
        saved = write(converter.from_domain([*result.entities, task], document, "next"))
        assert saved.endswith(
            "* TODO Buy stamps :@errands:\n"
            "  DEADLINE: <2026-03-02 Mon>\n"
            "  :PROPERTIES:\n"
            "  :ID: new-1\n"
            "  :END:\n"
        )

    def test_removed_task_disappears(self, fixtures_dir: Path):
        converter, document, result = _convert((fixtures_dir / "next.org").read_text())
        kept = [e for e in result.entities if e.id != "task-plants"]
        saved = write(converter.from_domain(kept, document, "next"))
        assert "Water the plants" not in saved
        assert "File taxes" in saved

    def test_completing_recurring_task(self, fixtures_dir: Path):
        converter, document, result = _convert((fixtures_dir / "next.org").read_text())
        plants = _by_id(result.entities)["task-plants"]
        follow_up = plants.complete(datetime(2026, 2, 20, 8, 0))
        saved = write(converter.from_domain([*result.entities, follow_up], document, "next"))

        _, _, reloaded = _convert(saved)
        tasks = _by_id(reloaded.entities)
        assert tasks["task-plants"].state == TaskState.DONE
        assert tasks["task-plants"].completed == datetime(2026, 2, 20, 8, 0)
        assert tasks["task-plants"].history[-1] == StateChange("DONE", "TODO", datetime(2026, 2, 20, 8, 0))
        assert tasks[follow_up.id].scheduled == date(2026, 2, 8)
        assert tasks[follow_up.id].recurrence == plants.recurrence
        assert '- State "DONE" from "TODO" [2026-02-20 Fri 08:00]' in saved

    def test_notes_edit_rewrites_body_only(self):
        text = "* TODO Plan\n  :PROPERTIES:\n  :ID: p\n  :END:\n  old note\n"
        converter, document, result = _convert(text)
        result.entities[0].notes = "first line\nsecond line"
        saved = write(converter.from_domain(result.entities, document, "next"))
        assert saved == "* TODO Plan\n  :PROPERTIES:\n  :ID: p\n  :END:\n  first line\n  second line\n"

    def test_state_keyword_kept_when_state_unchanged(self):
        text = "#+TODO: OPEN | SHIPPED\n\n* SHIPPED Release\n  :PROPERTIES:\n  :ID: r\n  :END:\n"
        converter, document, result = _convert(text)
        assert write(converter.from_domain(result.entities, document, "next")) == text


class TestProjects:
    def test_projects_and_their_tasks(self, fixtures_dir: Path):
        _, _, result = _convert((fixtures_dir / "projects.org").read_text(), kind="projects")
        entities = _by_id(result.entities)

        kitchen = entities["proj-kitchen"]
        assert isinstance(kitchen, Project)
        assert kitchen.name == "Kitchen renovation"
        assert kitchen.purpose == "Cook comfortably"
        assert kitchen.tags == ["home"]
        assert [t.id for t in kitchen.tasks] == ["kt-measure", "kt-order", "kt-electrician"]
        assert kitchen.next_action().id == "kt-order"
        assert kitchen.completion_ratio() == (1, 3)

        spanish = entities["proj-spanish"]
        assert spanish.is_stuck()
        assert entities["sp-materials"].waiting_for == "Bookshop"
        assert entities["sp-materials"].project == "Learn Spanish"

        loose = entities["loose-1"]
        assert isinstance(loose, Task)
        assert loose.project is None

    def test_moving_task_between_projects(self, fixtures_dir: Path):
        converter, document, result = _convert((fixtures_dir / "projects.org").read_text(), kind="projects")
        _by_id(result.entities)["kt-electrician"].project = "Learn Spanish"
        saved = write(converter.from_domain(result.entities, document, "projects"))

        _, _, reloaded = _convert(saved, kind="projects")
        entities = _by_id(reloaded.entities)
        assert entities["kt-electrician"].project == "Learn Spanish"
        assert [t.id for t in entities["proj-spanish"].tasks] == ["sp-materials", "kt-electrician"]
        assert [t.id for t in entities["proj-kitchen"].tasks] == ["kt-measure", "kt-order"]


class TestHabits:
    def test_only_habit_headings_are_entities(self, fixtures_dir: Path):
        _, _, result = _convert((fixtures_dir / "habits.org").read_text(), kind="habits", reference=date(2026, 2, 19))
        assert [e.id for e in result.entities] == ["habit-stretch"]
        habit = result.entities[0]
        assert isinstance(habit, Habit)
        assert habit.streak == 3
        assert habit.recurrence.policy == RecurrencePolicy.RELATIVE

    def test_completion_is_logged(self, fixtures_dir: Path):
        converter, document, result = _convert((fixtures_dir / "habits.org").read_text(), kind="habits")
        habit = result.entities[0]
        habit.complete(datetime(2026, 2, 20, 7, 0))
        saved = write(converter.from_domain(result.entities, document, "habits"))

        assert "SCHEDULED: <2026-02-21 Sat .+1d>" in saved
        assert '- State "DONE" from "TODO" [2026-02-20 Fri 07:00]' in saved
        assert "* TODO Not a habit" in saved
        _, _, reloaded = _convert(saved, kind="habits", reference=date(2026, 2, 20))
        assert reloaded.entities[0].streak == 4


class TestLists:
    def test_list_items(self):
        converter, document, result = _convert("* Dune :scifi:\n* DONE Foundation\n", kind="media")
        dune, foundation = result.entities
        assert isinstance(dune, ListItem)
        assert dune.tags == ["scifi"]
        assert not dune.done
        assert foundation.done

        dune.done = True
        saved = write(converter.from_domain(result.entities, document, "media"))
        assert saved.startswith("* DONE Dune :scifi:\n")


class TestDayPlan:
    def test_read(self, fixtures_dir: Path):
        document, _ = parse((fixtures_dir / "dayplan.org").read_text())
        plan = read_dayplan(document, date(2026, 2, 20))
        assert plan.spoon_budget == 40
        assert plan.spent_spoons == 15
        assert plan.active_contexts == ["@home", "@phone"]
        assert plan.confirmed_task_ids == ["task-plants"]
        assert plan.completed_tasks[0].title == "Call the dentist"
        assert plan.completed_tasks[0].cost == 15
        assert plan.picked_media_ids == []

    def test_stale_plan_is_ignored(self, fixtures_dir: Path):
        document, _ = parse((fixtures_dir / "dayplan.org").read_text())
        assert read_dayplan(document, date(2026, 2, 21)) is None
        assert read_dayplan(document) is not None

    def test_missing_date(self):
        document, _ = parse("#+TITLE: Day Plan\n")
        assert read_dayplan(document) is None

    def test_completed_title_with_separator(self):
        plan = DayPlan(date=date(2026, 2, 20))
        plan.complete_task("a", "Read | annotate", 5)
        plan.complete_task("b", "Compare A | 5", None)
        reloaded = read_dayplan(parse(write(write_dayplan(plan)))[0])
        assert [(t.id, t.title, t.cost) for t in reloaded.completed_tasks] == [
            ("a", "Read | annotate", 5),
            ("b", "Compare A | 5", None),
        ]

    def test_completed_line_without_cost(self):
        document, _ = parse("#+DATE: 2026-02-20\n\n* Completed Tasks\n  - a | Call mum\n")
        (done,) = read_dayplan(document).completed_tasks
        assert (done.id, done.title, done.cost) == ("a", "Call mum", None)

    def test_write_matches_file_layout(self, fixtures_dir: Path):
        text = (fixtures_dir / "dayplan.org").read_text()
        plan = read_dayplan(parse(text)[0])
        assert write(write_dayplan(plan)) == text
