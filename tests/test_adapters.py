"""Tests for the adapter registry, credential lookup and the jsondir adapter."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest

from orgsync.errors import ConfigError
from orgsync.models import ListItem, Task
from orgsync.sync.adapter import get_adapter, list_adapters
from orgsync.sync.adapters import JsonDirAdapter
from orgsync.sync.secrets import (
    CompositeSecretsProvider,
    EnvSecretsProvider,
    MemorySecretsProvider,
    service_env_name,
)


class TestSecrets:
    def test_service_env_name(self):
        assert service_env_name("my-caldav") == "ORGSYNC_SECRET_MY_CALDAV"

    def test_env_provider(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("TABLET_TOKEN", "t0k3n")
        monkeypatch.setenv("ORGSYNC_SECRET_CALDAV", "hunter2")
        provider = EnvSecretsProvider()
        assert provider.get("env:TABLET_TOKEN") == "t0k3n"
        assert provider.get("caldav") == "hunter2"
        assert provider.get("carddav") is None

    def test_composite_order(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("ORGSYNC_SECRET_CALDAV", "from-env")
        memory = MemorySecretsProvider({"caldav": "from-memory"})
        assert CompositeSecretsProvider([memory, EnvSecretsProvider()]).get("caldav") == "from-memory"
        assert CompositeSecretsProvider([EnvSecretsProvider(), memory]).get("caldav") == "from-env"

    def test_put_goes_to_first_supporting_provider(self):
        memory = MemorySecretsProvider()
        composite = CompositeSecretsProvider([memory])
        composite.put("imap", "pw")
        assert memory.get("imap") == "pw"
        with pytest.raises(KeyError):
            composite.put("env:IMAP_PASSWORD", "pw")


class TestRegistry:
    def test_builtin_adapters(self, adapters):
        assert list_adapters() == ["jsondir"]
        assert get_adapter("jsondir") is JsonDirAdapter
        assert get_adapter("caldav") is None


@pytest.fixture
def store(tmp_path: Path) -> JsonDirAdapter:
    return JsonDirAdapter("tablet", {"path": "remote", "base_dir": str(tmp_path)})


class TestJsonDirAdapter:
    def test_path_required(self):
        with pytest.raises(ConfigError):
            JsonDirAdapter("tablet", {})

    def test_relative_path_uses_base_dir(self, store: JsonDirAdapter, tmp_path: Path):
        assert store.root == tmp_path / "remote"

    def test_empty_store(self, store: JsonDirAdapter):
        assert list(store.pull(None)) == []
        assert store.current_revision() is None

    def test_push_then_pull(self, store: JsonDirAdapter):
        task = Task(id="t1", title="Buy milk", scheduled=date(2026, 2, 20), passthrough={"FAVORITE": "yes"})
        result = store.push(task)
        assert result.remote_id == "t1"
        assert result.revision == "1"
        assert store.current_revision() == "1"

        (item,) = store.pull(None)
        assert item.remote_id == "t1"
        assert item.revision == "1"
        assert item.entity.title == "Buy milk"
        assert item.entity.scheduled == date(2026, 2, 20)
        assert item.entity.passthrough == {}

        document = json.loads((store.items_dir / "t1.json").read_text())
        assert "passthrough" not in document["entity"]

    def test_incremental_pull(self, store: JsonDirAdapter):
        store.push(Task(id="t1", title="A"))
        store.push(Task(id="t2", title="B"))
        store.push(Task(id="t1", title="A2"), "t1")
        items = list(store.pull("2"))
        assert [(i.remote_id, i.revision, i.entity.title) for i in items] == [("t1", "3", "A2")]

    def test_unsafe_or_taken_ids_get_fresh_remote_ids(self, store: JsonDirAdapter):
        first = store.push(Task(id="../escape", title="A"))
        assert first.remote_id != "../escape"
        store.push(Task(id="dup", title="B"))
        second = store.push(Task(id="dup", title="C"))
        assert second.remote_id != "dup"
        assert len(list(store.items_dir.glob("*.json"))) == 3

    def test_delete_leaves_tombstone(self, store: JsonDirAdapter):
        store.push(Task(id="t1", title="A"))
        assert store.delete("t1") is True
        assert store.delete("t1") is False
        assert store.delete("missing") is False

        (item,) = store.pull("1")
        assert item.deleted
        assert item.entity is None
        assert item.revision == "2"

    def test_credential_must_resolve(self, tmp_path: Path):
        options = {"path": str(tmp_path / "remote")}
        locked = JsonDirAdapter("tablet", options, MemorySecretsProvider(), credential="tablet")
        with pytest.raises(LookupError):
            locked.current_revision()

        unlocked = JsonDirAdapter("tablet", options, MemorySecretsProvider({"tablet": "s3cret"}), credential="tablet")
        assert unlocked.current_revision() is None

    def test_same_item(self, store: JsonDirAdapter):
        local = Task(title="Call the dentist", scheduled=date(2026, 2, 20))
        assert store.same_item(local, Task(title="call the dentist ", scheduled=date(2026, 2, 20)))
        assert not store.same_item(local, Task(title="Call the dentist", scheduled=date(2026, 2, 21)))
        assert not store.same_item(local, ListItem(title="Call the dentist"))
        assert not store.same_item(Task(title=""), Task(title=""))
