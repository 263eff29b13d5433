"""
Concrete protocol adapters.

Adapters are registered by kind when ``register_all()`` runs.
"""

from __future__ import annotations

from .jsondir import JsonDirAdapter

__all__ = [
    "JsonDirAdapter",
]


def register_all() -> None:
    """Register all bundled adapters with the registry."""
    from ..adapter import register_adapter

    register_adapter(JsonDirAdapter.kind, JsonDirAdapter)
