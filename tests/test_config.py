"""Tests for orgsync.toml loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from orgsync.config import CONFIG_FILENAME, load_config
from orgsync.errors import ConfigError
from orgsync.org.document import TodoVocabulary


def _write(org_dir: Path, text: str) -> None:
    (org_dir / CONFIG_FILENAME).write_text(text, encoding="utf-8")


def test_missing_file_gives_defaults(tmp_path: Path):
    config = load_config(tmp_path)
    assert config.sources == ()
    assert config.spoon_budget == 50
    assert config.vocabulary == TodoVocabulary()
    assert config.tasks.cost_max == 100
    assert config.path_for("next") == tmp_path / "next.org"
    assert config.resolved_state_dir == tmp_path / ".orgsync"


def test_full_file(tmp_path: Path):
    _write(
        tmp_path,
        """
state_dir = "state"

[files]
next = "actions.org"

[todo]
open = ["TODO", "STARTED"]
closed = ["DONE"]

[tasks]
cost_min = 1
cost_max = 10
contexts = ["@desk"]

[dayplan]
spoon_budget = 30

[[sources]]
name = "tablet"
adapter = "jsondir"
collection = "inbox"
credential = "env:TABLET_TOKEN"
options = { path = "../tablet" }
""",
    )
    config = load_config(tmp_path)
    assert config.path_for("next") == tmp_path / "actions.org"
    assert config.vocabulary.open == ("TODO", "STARTED")
    assert config.tasks.cost_min == 1
    assert config.tasks.contexts == ("@desk",)
    assert config.spoon_budget == 30
    assert config.resolved_state_dir == tmp_path / "state"

    source = config.source("tablet")
    assert source.collection == "inbox"
    assert source.credential == "env:TABLET_TOKEN"
    assert source.options == {"path": "../tablet"}


def test_malformed_toml(tmp_path: Path):
    _write(tmp_path, "[tasks\ncost_min = 1\n")
    with pytest.raises(ConfigError):
        load_config(tmp_path)


@pytest.mark.parametrize(
    "text",
    [
        '[tasks]\ncost_min = "low"\n',
        "[tasks]\ncost_min = 20\ncost_max = 10\n",
        '[files]\ncalendar = "cal.org"\n',
        "[todo]\nopen = [1, 2]\n",
        '[[sources]]\nadapter = "jsondir"\n',
        '[[sources]]\nname = "a"\n\n[[sources]]\nname = "a"\n',
        '[[sources]]\nname = "a"\ncollection = "calendar"\n',
        "sources = 3\n",
    ],
)
def test_invalid_values(tmp_path: Path, text: str):
    _write(tmp_path, text)
    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_explicit_path_must_exist(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_config(tmp_path, tmp_path / "elsewhere.toml")


def test_unknown_source(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_config(tmp_path).source("nope")
