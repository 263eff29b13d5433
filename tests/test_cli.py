"""Tests for the orgsync command line."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest
from click.testing import CliRunner

from orgsync.cli import cli
from orgsync.commands.conflicts_cmd import find_conflict
from orgsync.commands.show import run_show
from orgsync.config import OrgSyncConfig
from orgsync.errors import UnknownConflict
from orgsync.sync.ledger import ConflictLedger
from orgsync.sync.merge import Conflict, ConflictKind


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _invoke(runner: CliRunner, org_dir: Path, *args: str):
    return runner.invoke(cli, ["--org-dir", str(org_dir), *args])


def test_version(runner: CliRunner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "orgsync, version 0.1.0" in result.output


class TestCheck:
    def test_json_report(self, runner: CliRunner, org_dir: Path):
        result = _invoke(runner, org_dir, "check", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["diagnostics"] == 5
        by_kind = {f["kind"]: f for f in data["files"]}
        assert by_kind["inbox"]["missing_ids"] == 2
        assert by_kind["next"]["canonical"] is True
        assert by_kind["media"]["exists"] is False

    def test_strict_fails_on_diagnostics(self, runner: CliRunner, org_dir: Path):
        assert _invoke(runner, org_dir, "check", "--strict").exit_code == 1

    def test_table(self, runner: CliRunner, org_dir: Path):
        result = _invoke(runner, org_dir, "check")
        assert result.exit_code == 0
        assert "5 diagnostic(s)" in result.output


def test_fmt_then_check(runner: CliRunner, org_dir: Path):
    before = (org_dir / "next.org").read_text()
    assert _invoke(runner, org_dir, "fmt", "--check").exit_code == 1

    assert _invoke(runner, org_dir, "fmt").exit_code == 0
    assert _invoke(runner, org_dir, "fmt", "--check").exit_code == 0
    assert (org_dir / "next.org").read_text() == before
    data = json.loads(_invoke(runner, org_dir, "check", "--json").stdout)
    assert {f["kind"]: f["missing_ids"] for f in data["files"]}["inbox"] == 0


class TestShow:
    def test_next_json(self, runner: CliRunner, org_dir: Path):
        result = _invoke(runner, org_dir, "show", "next", "--json", "--date", "2026-02-20")
        assert result.exit_code == 0
        ids = [e["id"] for e in json.loads(result.stdout)]
        assert ids == ["task-dentist", "task-plants", "task-taxes"]

    def test_today_filter(self, runner: CliRunner, org_dir: Path):
        result = _invoke(runner, org_dir, "show", "next", "--json", "--today", "--date", "2026-02-20")
        ids = [e["id"] for e in json.loads(result.stdout)]
        assert "task-dentist" in ids
        assert "task-taxes" not in ids

    def test_projects(self, config: OrgSyncConfig, capsys: pytest.CaptureFixture):
        assert run_show(config, "projects", date(2026, 2, 20), output_json=True) == 0
        entities = json.loads(capsys.readouterr().out)
        assert len(entities) == 7
        assert {e["kind"] for e in entities} == {"project", "task"}

    def test_projects_table(self, runner: CliRunner, org_dir: Path):
        result = _invoke(runner, org_dir, "show", "projects")
        assert result.exit_code == 0
        assert "1/3" in result.output

    def test_dayplan(self, runner: CliRunner, org_dir: Path):
        result = _invoke(runner, org_dir, "show", "dayplan", "--json", "--date", "2026-02-20")
        plan = json.loads(result.stdout)
        assert plan["spoon_budget"] == 40
        assert plan["spent_spoons"] == 15

    def test_stale_dayplan(self, runner: CliRunner, org_dir: Path):
        result = _invoke(runner, org_dir, "show", "dayplan", "--date", "2026-02-21")
        assert "No day plan for 2026-02-21" in result.output

    def test_empty_collection(self, runner: CliRunner, org_dir: Path):
        result = _invoke(runner, org_dir, "show", "media")
        assert "No entries in media" in result.output


def test_init(runner: CliRunner, tmp_path: Path):
    org_dir = tmp_path / "fresh"
    result = _invoke(runner, org_dir, "init")
    assert result.exit_code == 0
    assert (org_dir / "orgsync.toml").exists()
    assert (org_dir / "next.org").read_text().startswith("#+TITLE: ")
    assert not (org_dir / "dayplan.org").exists()

    again = _invoke(runner, org_dir, "init")
    assert "All collection files already exist." in again.output


def test_bad_config_is_a_clean_error(runner: CliRunner, org_dir: Path):
    (org_dir / "orgsync.toml").write_text("[tasks\n")
    result = _invoke(runner, org_dir, "check")
    assert result.exit_code == 1
    assert "Error" in result.output
    assert "Traceback" not in result.output


class TestSync:
    def test_no_sources(self, runner: CliRunner, org_dir: Path):
        result = _invoke(runner, org_dir, "sync")
        assert result.exit_code == 0
        assert "No sync sources configured" in result.output

    def test_json_run(self, runner: CliRunner, org_dir: Path, adapters):
        (org_dir / "orgsync.toml").write_text(
            '[[sources]]\nname = "tablet"\nadapter = "jsondir"\noptions = { path = "remote" }\n'
        )
        result = _invoke(runner, org_dir, "sync", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["failures"] == {}
        (report,) = data["reports"]
        assert report["source"] == "tablet"
        assert report["pushed"] == 3

        again = json.loads(_invoke(runner, org_dir, "sync", "--json").stdout)
        assert again["reports"][0]["unchanged"] == 3

    def test_unknown_source(self, runner: CliRunner, org_dir: Path, adapters):
        (org_dir / "orgsync.toml").write_text(
            '[[sources]]\nname = "tablet"\nadapter = "jsondir"\noptions = { path = "remote" }\n'
        )
        result = _invoke(runner, org_dir, "sync", "--json", "phone")
        assert result.exit_code == 1
        assert "phone" in json.loads(result.stdout)["failures"]


class TestConflicts:
    def _record(self, config: OrgSyncConfig, *entity_ids: str) -> ConflictLedger:
        ledger = ConflictLedger(config.resolved_state_dir)
        for entity_id in entity_ids:
            ledger.record(
                Conflict(
                    entity_id=entity_id,
                    kind=ConflictKind.BOTH_CHANGED,
                    local={"kind": "task", "id": entity_id, "title": "mine"},
                    remote={"kind": "task", "id": entity_id, "title": "theirs"},
                    base_fingerprint="abc",
                    source="tablet",
                    remote_id=entity_id,
                    fields=["title"],
                )
            )
        return ledger

    def test_empty_list(self, runner: CliRunner, org_dir: Path):
        result = _invoke(runner, org_dir, "conflicts", "list")
        assert result.exit_code == 0
        assert "No open conflicts." in result.output

    def test_list_json(self, runner: CliRunner, org_dir: Path, config: OrgSyncConfig):
        self._record(config, "task-plants")
        result = _invoke(runner, org_dir, "conflicts", "list", "--json")
        (conflict,) = json.loads(result.stdout)
        assert conflict["entity_id"] == "task-plants"
        assert conflict["kind"] == "both-changed"

    def test_find_by_prefix(self, config: OrgSyncConfig):
        ledger = self._record(config, "task-plants", "task-taxes")
        assert find_conflict(ledger, "tablet:task-taxes").entity_id == "task-taxes"
        assert find_conflict(ledger, "task-pl").entity_id == "task-plants"
        with pytest.raises(UnknownConflict):
            find_conflict(ledger, "task-")
        with pytest.raises(UnknownConflict):
            find_conflict(ledger, "nope")

    def test_resolve_unknown_is_an_error(self, runner: CliRunner, org_dir: Path, adapters):
        result = _invoke(runner, org_dir, "conflicts", "resolve", "nope", "local")
        assert result.exit_code == 1
        assert "No open conflict" in result.output


def test_undecodable_file_is_a_clean_error(runner: CliRunner, org_dir: Path):
    (org_dir / "inbox.org").write_bytes(b"* TODO caf\xe9\n")
    result = _invoke(runner, org_dir, "check")
    assert result.exit_code == 1
    assert "Failed to decode" in result.output
    assert "Traceback" not in result.output
