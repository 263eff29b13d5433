"""Pytest configuration and fixtures."""

import shutil
from pathlib import Path

import pytest

from orgsync.config import OrgSyncConfig, load_config
from orgsync.sync.adapter import clear_adapters
from orgsync.sync.adapters import register_all
from orgsync.vault.loader import Vault


@pytest.fixture
def fixtures_dir() -> Path:
    """Path to the fixture collection files."""
    return Path(__file__).parent / "fixtures" / "org"


@pytest.fixture
def org_dir(tmp_path: Path, fixtures_dir: Path) -> Path:
    """A writable copy of the fixture collections."""
    target = tmp_path / "org"
    shutil.copytree(fixtures_dir, target)
    return target


@pytest.fixture
def config(org_dir: Path) -> OrgSyncConfig:
    return load_config(org_dir)


@pytest.fixture
def vault(config: OrgSyncConfig) -> Vault:
    return Vault(config)


@pytest.fixture
def adapters():
    """Adapter registry holding only the built-in adapters."""
    clear_adapters()
    register_all()
    yield
    clear_adapters()
    register_all()
