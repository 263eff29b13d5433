"""
Append-only conflict ledger.

Every detected conflict and every resolution is one JSON line in
``<state_dir>/conflicts.jsonl``. Lines are written once and never
modified; the open set is the fold of all events in append order.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Sequence

from ..errors import PersistenceFailure, UnknownConflict
from .merge import Conflict

logger = logging.getLogger(__name__)

CONFLICT_RECORDED = "conflict.recorded"
CONFLICT_RESOLVED = "conflict.resolved"

EVENT_TYPES = frozenset({CONFLICT_RECORDED, CONFLICT_RESOLVED})


@dataclass(frozen=True)
class ConflictEvent:
    """Immutable ledger line."""

    event_type: str
    key: str
    timestamp: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Invalid event_type: {self.event_type}")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "event_type": self.event_type,
            "key": self.key,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.payload:
            result["payload"] = self.payload
        return result

    def to_json(self) -> str:
        """Serialize to JSON string (single line)."""
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True)

    @classmethod
    def from_json(cls, line: str) -> "ConflictEvent":
        data = json.loads(line)
        return cls(
            event_type=data["event_type"],
            key=data["key"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            payload=data.get("payload", {}),
        )


def apply_event(open_conflicts: dict[str, Conflict], event: ConflictEvent) -> None:
    if event.event_type == CONFLICT_RECORDED:
        open_conflicts[event.key] = Conflict.from_dict(event.payload["conflict"])
    elif event.event_type == CONFLICT_RESOLVED:
        open_conflicts.pop(event.key, None)


def fold_events(events: Iterator[ConflictEvent] | Sequence[ConflictEvent]) -> dict[str, Conflict]:
    """Project events into the open conflict set, keyed by ``source:entity_id``."""
    open_conflicts: dict[str, Conflict] = {}
    for event in events:
        apply_event(open_conflicts, event)
    return open_conflicts


def _identity(conflict: Conflict | None) -> dict[str, Any] | None:
    if conflict is None:
        return None
    data = conflict.to_dict()
    data.pop("detected_at", None)
    return data


class ConflictLedger:
    """
    Open conflicts awaiting a user decision.

    The sync commit step adds (``record_many``) and explicit resolution
    removes (``resolve``); nothing else writes here.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir
        self.ledger_path = state_dir / "conflicts.jsonl"
        self._open: dict[str, Conflict] | None = None

    def iter_events(self) -> Iterator[ConflictEvent]:
        """Events in append order."""
        if not self.ledger_path.exists():
            return
        try:
            with self.ledger_path.open("r", encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        yield ConflictEvent.from_json(line)
                    except (ValueError, KeyError) as exc:
                        raise PersistenceFailure(self.ledger_path, exc, action=f"decode line {lineno} of") from exc
        except OSError as exc:
            raise PersistenceFailure(self.ledger_path, exc, action="read") from exc

    def _state(self) -> dict[str, Conflict]:
        if self._open is None:
            self._open = fold_events(self.iter_events())
        return self._open

    def _append_many(self, events: Sequence[ConflictEvent]) -> None:
        if not events:
            return
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with self.ledger_path.open("a", encoding="utf-8") as f:
                f.write("".join(event.to_json() + "\n" for event in events))
        except OSError as exc:
            raise PersistenceFailure(self.ledger_path, exc, action="append to") from exc
        if self._open is not None:
            for event in events:
                apply_event(self._open, event)

    def record(self, conflict: Conflict) -> None:
        self.record_many([conflict])

    def record_many(self, conflicts: Sequence[Conflict]) -> None:
        """
        Record conflicts; one already open under the same key is replaced.

        A conflict identical to the open one apart from its detection time
        is not written again.
        """
        state = self._state()
        fresh = [c for c in conflicts if _identity(state.get(c.key)) != _identity(c)]
        now = datetime.now(timezone.utc)
        events = [
            ConflictEvent(CONFLICT_RECORDED, c.key, c.detected_at or now, {"conflict": c.to_dict()}) for c in fresh
        ]
        self._append_many(events)
        for conflict in fresh:
            logger.info("Conflict recorded: %s (%s)", conflict.key, conflict.kind.value)

    def resolve(self, key: str, choice: str = "") -> Conflict:
        """
        Remove an open conflict.

        Args:
            key: Conflict key (``source:entity_id``).
            choice: Resolution recorded with the event.

        Returns:
            The conflict that was open.

        Raises:
            UnknownConflict: No open conflict under ``key``.
        """
        conflict = self.get(key)
        if conflict is None:
            raise UnknownConflict(f"No open conflict {key!r}")
        self._append_many([ConflictEvent(CONFLICT_RESOLVED, key, datetime.now(timezone.utc), {"choice": choice})])
        logger.info("Conflict resolved: %s (%s)", key, choice or "unspecified")
        return conflict

    def get(self, key: str) -> Conflict | None:
        return self._state().get(key)

    def open_conflicts(self, source: str | None = None) -> list[Conflict]:
        """Open conflicts in detection order, optionally for one source."""
        return [c for c in self._state().values() if source is None or c.source == source]

    def __len__(self) -> int:
        return len(self._state())

    def __contains__(self, key: str) -> bool:
        return key in self._state()
