"""
Protocol adapter interface and registry.

An adapter translates one remote system's items into entities and back.
The sync engine is written once against ``SyncAdapter``; concrete
adapters register a factory under a short kind name (``jsondir``, ...).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Iterator

from ..models import Entity
from .secrets import SecretsProvider


@dataclass
class RemoteItem:
    """One pulled item, already translated to the shared entity shape."""

    remote_id: str
    revision: str
    entity: Entity | None
    deleted: bool = False


@dataclass(frozen=True)
class PushResult:
    remote_id: str
    revision: str


class SyncAdapter(ABC):
    """
    Uniform capability set over one remote protocol.

    Subclasses set ``kind`` and, if they model only part of an entity,
    ``synced_fields``.
    """

    kind: ClassVar[str] = ""
    synced_fields: ClassVar[tuple[str, ...] | None] = None

    def __init__(
        self,
        name: str,
        options: dict[str, Any] | None = None,
        secrets: SecretsProvider | None = None,
        credential: str | None = None,
    ):
        self.name = name
        self.options = dict(options or {})
        self.secrets = secrets
        self.credential = credential

    def secret(self) -> str | None:
        """Resolve the configured credential reference (None if no credential is configured)."""
        if not self.credential:
            return None
        value = self.secrets.get(self.credential) if self.secrets is not None else None
        if value is None:
            raise LookupError(f"Credential {self.credential!r} for source {self.name!r} is not available")
        return value

    @abstractmethod
    def pull(self, since_revision: str | None) -> Iterator[RemoteItem]:
        """
        Yield items changed after ``since_revision`` (all items when None).

        The iterator is lazy and can only be restarted from a revision
        token, not resumed mid-stream.
        """

    @abstractmethod
    def current_revision(self) -> str | None:
        """Collection-level token to hand to the next ``pull``."""

    @abstractmethod
    def push(self, entity: Entity, remote_id: str | None = None) -> PushResult:
        """Create (``remote_id`` None) or update a remote item."""

    @abstractmethod
    def delete(self, remote_id: str) -> bool:
        """Delete a remote item; False if it did not exist."""

    def same_item(self, local: Entity, remote: Entity) -> bool:
        """Whether two independently created items are the same real-world item."""
        return False

    def close(self) -> None:
        pass


AdapterFactory = Callable[..., SyncAdapter]

# Global registry: adapter kind -> factory
_ADAPTERS: dict[str, AdapterFactory] = {}


def register_adapter(kind: str, factory: AdapterFactory) -> None:
    """
    Register an adapter factory by kind.

    Args:
        kind: Name used in ``[[sources]] adapter = "..."``.
        factory: Callable taking ``(name, options, secrets, credential)``.
    """
    _ADAPTERS[kind] = factory


def get_adapter(kind: str) -> AdapterFactory | None:
    return _ADAPTERS.get(kind)


def list_adapters() -> list[str]:
    return sorted(_ADAPTERS)


def clear_adapters() -> None:
    """Clear all registered adapters (for testing)."""
    _ADAPTERS.clear()
