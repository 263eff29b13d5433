"""
Configuration loading (``orgsync.toml``).

A missing file yields defaults. A file that exists but is not valid TOML,
or whose values have the wrong shape, raises ConfigError.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .org.document import TodoVocabulary

CONFIG_FILENAME = "orgsync.toml"

COLLECTION_KINDS = (
    "inbox",
    "next",
    "waiting",
    "someday",
    "projects",
    "habits",
    "media",
    "shopping",
    "dayplan",
    "archive",
)

DEFAULT_CONTEXTS = ("@home", "@work", "@errands", "@computer", "@phone", "@anywhere")


def _coerce_dict(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"[{where}] must be a table")
    return value


def _as_int(value: Any, *, default: int, where: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{where} must be an integer, got {value!r}")
    return value


def _as_str_list(value: Any, *, default: tuple[str, ...], where: str) -> tuple[str, ...]:
    if value is None:
        return default
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{where} must be a list of strings")
    return tuple(v.strip() for v in value if v.strip())


def _as_str(value: Any, *, default: str, where: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{where} must be a non-empty string")
    return value.strip()


@dataclass(frozen=True)
class TaskConfig:
    cost_min: int = 0
    cost_max: int = 100
    contexts: tuple[str, ...] = DEFAULT_CONTEXTS


@dataclass(frozen=True)
class SourceConfig:
    """One ``[[sources]]`` entry."""

    name: str
    adapter: str
    collection: str = "next"
    credential: str | None = None
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OrgSyncConfig:
    org_dir: Path
    files: dict[str, str] = field(default_factory=lambda: {kind: f"{kind}.org" for kind in COLLECTION_KINDS})
    vocabulary: TodoVocabulary = field(default_factory=TodoVocabulary)
    tasks: TaskConfig = field(default_factory=TaskConfig)
    spoon_budget: int = 50
    state_dir: Path | None = None
    sources: tuple[SourceConfig, ...] = ()

    def path_for(self, kind: str) -> Path:
        return self.org_dir / self.files[kind]

    @property
    def resolved_state_dir(self) -> Path:
        return self.state_dir if self.state_dir is not None else self.org_dir / ".orgsync"

    def source(self, name: str) -> SourceConfig:
        for source in self.sources:
            if source.name == name:
                return source
        raise ConfigError(f"Unknown sync source: {name}")


def _load_sources(raw: Any) -> tuple[SourceConfig, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigError("[[sources]] must be an array of tables")
    sources: list[SourceConfig] = []
    seen: set[str] = set()
    for i, entry in enumerate(raw):
        entry = _coerce_dict(entry, f"sources[{i}]")
        name = _as_str(entry.get("name"), default="", where=f"sources[{i}].name") if "name" in entry else ""
        if not name:
            raise ConfigError(f"sources[{i}].name is required")
        if name in seen:
            raise ConfigError(f"Duplicate sync source name: {name}")
        seen.add(name)
        collection = _as_str(entry.get("collection"), default="next", where=f"sources[{i}].collection")
        if collection not in COLLECTION_KINDS:
            raise ConfigError(f"sources[{i}].collection must be one of {', '.join(COLLECTION_KINDS)}")
        credential = entry.get("credential")
        sources.append(
            SourceConfig(
                name=name,
                adapter=_as_str(entry.get("adapter"), default="jsondir", where=f"sources[{i}].adapter"),
                collection=collection,
                credential=str(credential) if credential else None,
                options=dict(_coerce_dict(entry.get("options"), f"sources[{i}].options")),
            )
        )
    return tuple(sources)


def load_config(org_dir: Path, path: Path | None = None) -> OrgSyncConfig:
    """
    Load configuration for ``org_dir``.

    Args:
        org_dir: Directory holding the collection files.
        path: Explicit config file; defaults to ``org_dir / orgsync.toml``.

    Returns:
        The resolved configuration.
    """
    org_dir = Path(org_dir)
    config_path = path or org_dir / CONFIG_FILENAME
    if not config_path.exists():
        if path is not None:
            raise ConfigError(f"Config file not found: {config_path}")
        return OrgSyncConfig(org_dir=org_dir)

    try:
        data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{config_path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read {config_path}: {exc}") from exc

    files = {kind: f"{kind}.org" for kind in COLLECTION_KINDS}
    for kind, name in _coerce_dict(data.get("files"), "files").items():
        if kind not in COLLECTION_KINDS:
            raise ConfigError(f"[files] has unknown collection '{kind}'")
        files[kind] = _as_str(name, default=files[kind], where=f"files.{kind}")

    todo = _coerce_dict(data.get("todo"), "todo")
    defaults = TodoVocabulary()
    vocabulary = TodoVocabulary(
        open=_as_str_list(todo.get("open"), default=defaults.open, where="todo.open"),
        closed=_as_str_list(todo.get("closed"), default=defaults.closed, where="todo.closed"),
    )

    tasks_raw = _coerce_dict(data.get("tasks"), "tasks")
    tasks = TaskConfig(
        cost_min=_as_int(tasks_raw.get("cost_min"), default=TaskConfig.cost_min, where="tasks.cost_min"),
        cost_max=_as_int(tasks_raw.get("cost_max"), default=TaskConfig.cost_max, where="tasks.cost_max"),
        contexts=_as_str_list(tasks_raw.get("contexts"), default=DEFAULT_CONTEXTS, where="tasks.contexts"),
    )
    if tasks.cost_min > tasks.cost_max:
        raise ConfigError("tasks.cost_min must not exceed tasks.cost_max")

    dayplan = _coerce_dict(data.get("dayplan"), "dayplan")
    spoon_budget = _as_int(dayplan.get("spoon_budget"), default=50, where="dayplan.spoon_budget")

    state_dir = None
    if data.get("state_dir") is not None:
        state_dir = Path(_as_str(data["state_dir"], default="", where="state_dir"))
        if not state_dir.is_absolute():
            state_dir = org_dir / state_dir

    return OrgSyncConfig(
        org_dir=org_dir,
        files=files,
        vocabulary=vocabulary,
        tasks=tasks,
        spoon_budget=spoon_budget,
        state_dir=state_dir,
        sources=_load_sources(data.get("sources")),
    )
