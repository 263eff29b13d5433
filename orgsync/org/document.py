"""
Format-level heading tree.

Headings live in a flat arena (``Document.headings``) and reference each
other by index. Removing a heading leaves its slot orphaned; traversal
always starts from ``Document.roots`` so orphans are never visited.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Iterator

from .timestamps import Timestamp, find_inactive
from .tokens import KEYWORD_RE

STATE_CHANGE_RE = re.compile(r'^-\s+State\s+"(?P<new>[^"]*)"\s+from\s+"(?P<old>[^"]*)"')


@dataclass(frozen=True)
class TodoVocabulary:
    """Open and closed state keywords recognized on headlines."""

    open: tuple[str, ...] = ("TODO", "NEXT", "WAITING", "SOMEDAY")
    closed: tuple[str, ...] = ("DONE", "CANCELLED")

    @property
    def all(self) -> tuple[str, ...]:
        return self.open + self.closed

    def __contains__(self, keyword: object) -> bool:
        return keyword in self.open or keyword in self.closed

    def is_closed(self, keyword: str | None) -> bool:
        return keyword in self.closed

    def header_value(self) -> str:
        """Render as the value of a ``#+TODO:`` line."""
        return " ".join(self.open) + " | " + " ".join(self.closed)

    @classmethod
    def from_keyword_values(cls, values: Iterable[str]) -> "TodoVocabulary | None":
        """
        Build a vocabulary from one or more ``#+TODO:`` values.

        Words after ``|`` are closed states. Without a separator the last
        word is the only closed state. Fast-access keys like ``TODO(t)``
        are stripped.
        """
        open_states: list[str] = []
        closed_states: list[str] = []
        for value in values:
            words = [re.sub(r"\(.*\)$", "", w) for w in value.split()]
            words = [w for w in words if w]
            if not words:
                continue
            if "|" in words:
                split = words.index("|")
                opens, closes = words[:split], [w for w in words[split + 1 :] if w != "|"]
            else:
                opens, closes = words[:-1], words[-1:]
            open_states.extend(w for w in opens if w not in open_states)
            closed_states.extend(w for w in closes if w not in closed_states)
        if not open_states and not closed_states:
            return None
        return cls(open=tuple(open_states), closed=tuple(closed_states))


class PropertyMap:
    """
    Ordered property mapping with case-insensitive keys.

    The spelling of a key is kept from its first insertion so user text
    round-trips; lookups ignore case.
    """

    def __init__(self, items: Iterable[tuple[str, str]] = ()):
        self._data: dict[str, tuple[str, str]] = {}
        for key, value in items:
            self[key] = value

    def __getitem__(self, key: str) -> str:
        return self._data[key.upper()][1]

    def __setitem__(self, key: str, value: str) -> None:
        norm = key.upper()
        existing = self._data.get(norm)
        self._data[norm] = (existing[0] if existing else key, value)

    def __delitem__(self, key: str) -> None:
        del self._data[key.upper()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.upper() in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return (spelled for spelled, _ in self._data.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PropertyMap):
            return NotImplemented
        return list(self.items()) == list(other.items())

    def __repr__(self) -> str:
        return f"PropertyMap({list(self.items())!r})"

    def get(self, key: str, default: str | None = None) -> str | None:
        entry = self._data.get(key.upper())
        return entry[1] if entry else default

    def pop(self, key: str, default: str | None = None) -> str | None:
        entry = self._data.pop(key.upper(), None)
        return entry[1] if entry else default

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(self._data.values())

    def copy(self) -> "PropertyMap":
        return PropertyMap(self.items())


@dataclass
class LogEntry:
    """A logbook line. ``text`` is the whole line without indentation."""

    timestamp: datetime | date
    text: str

    @classmethod
    def parse(cls, line: str) -> "LogEntry | None":
        found = find_inactive(line)
        if found is None:
            return None
        return cls(timestamp=found[0], text=line.strip())

    def state_change(self) -> tuple[str, str] | None:
        """Return ``(new_state, old_state)`` for ``- State "X" from "Y"`` entries."""
        match = STATE_CHANGE_RE.match(self.text)
        if not match:
            return None
        return match["new"], match["old"]


@dataclass
class Heading:
    depth: int
    title: str = ""
    keyword: str | None = None
    priority: str | None = None
    tags: list[str] = field(default_factory=list)
    properties: PropertyMap = field(default_factory=PropertyMap)
    timestamps: list[Timestamp] = field(default_factory=list)
    log: list[LogEntry] = field(default_factory=list)
    closed: str | None = None
    # Unreadable lines found inside the property drawer and logbook, kept in place.
    drawer_extra: list[str] = field(default_factory=list)
    log_extra: list[str] = field(default_factory=list)
    body: list[str] = field(default_factory=list)
    children: list[int] = field(default_factory=list)
    parent: int | None = None
    index: int = -1
    lineno: int = field(default=0, compare=False)

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def timestamp_of(self, kind) -> Timestamp | None:
        for stamp in self.timestamps:
            if stamp.kind == kind:
                return stamp
        return None


@dataclass
class Document:
    """A parsed file: verbatim preamble lines plus the heading arena."""

    preamble: list[str] = field(default_factory=list)
    headings: list[Heading] = field(default_factory=list)
    roots: list[int] = field(default_factory=list)
    vocabulary: TodoVocabulary = field(default_factory=TodoVocabulary)

    def keyword(self, name: str) -> str | None:
        """Last value of ``#+NAME:`` in the preamble."""
        found = None
        for line in self.preamble:
            match = KEYWORD_RE.match(line)
            if match and match["key"].upper() == name.upper():
                found = match["value"]
        return found

    def set_keyword(self, name: str, value: str) -> None:
        """Replace the last ``#+NAME:`` preamble line, or append one."""
        line = f"#+{name.upper()}: {value}"
        for pos in range(len(self.preamble) - 1, -1, -1):
            match = KEYWORD_RE.match(self.preamble[pos])
            if match and match["key"].upper() == name.upper():
                self.preamble[pos] = line
                return
        insert_at = len(self.preamble)
        while insert_at > 0 and not self.preamble[insert_at - 1].strip():
            insert_at -= 1
        self.preamble.insert(insert_at, line)

    def add(self, heading: Heading, parent: int | None = None, position: int | None = None) -> int:
        """Insert ``heading`` under ``parent`` (or as a root) and return its index."""
        heading.index = len(self.headings)
        heading.parent = parent
        self.headings.append(heading)
        siblings = self.roots if parent is None else self.headings[parent].children
        if position is None:
            siblings.append(heading.index)
        else:
            siblings.insert(position, heading.index)
        return heading.index

    def siblings_of(self, index: int) -> list[int]:
        parent = self.headings[index].parent
        return self.roots if parent is None else self.headings[parent].children

    def remove(self, index: int) -> None:
        """
        Detach a heading, promoting its children into its place.

        Promoted subtrees are shifted up so their top level takes the removed
        heading's depth.
        """
        heading = self.headings[index]
        siblings = self.siblings_of(index)
        position = siblings.index(index)
        for child in heading.children:
            shift = self.headings[child].depth - heading.depth
            for sub in self.subtree(child):
                sub.depth = max(1, sub.depth - shift)
            self.headings[child].parent = heading.parent
        siblings[position : position + 1] = heading.children
        heading.children = []
        heading.parent = None

    def move(self, index: int, parent: int | None) -> None:
        """Re-attach a heading and its subtree as the last child of ``parent``."""
        heading = self.headings[index]
        self.siblings_of(index).remove(index)
        target_depth = 1 if parent is None else self.headings[parent].depth + 1
        shift = target_depth - heading.depth
        for sub in self.subtree(index):
            sub.depth += shift
        heading.parent = parent
        (self.roots if parent is None else self.headings[parent].children).append(index)

    def subtree(self, index: int) -> Iterator[Heading]:
        """Pre-order walk of ``index`` and its descendants."""
        stack = [index]
        while stack:
            current = self.headings[stack.pop()]
            yield current
            stack.extend(reversed(current.children))

    def walk(self) -> Iterator[Heading]:
        """Pre-order walk of every reachable heading."""
        for root in self.roots:
            yield from self.subtree(root)

    def ancestors(self, index: int) -> Iterator[Heading]:
        parent = self.headings[index].parent
        while parent is not None:
            yield self.headings[parent]
            parent = self.headings[parent].parent
