"""
Document parser.

``parse`` never raises on malformed input. Constructs it cannot read are
kept verbatim on the heading they belong to (inside the drawer they were
found in, or as body text), and a ``ParseDiagnostic`` records what was
demoted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .document import Document, Heading, LogEntry, TodoVocabulary
from .timestamps import parse_planning, parse_timestamp_line
from .tokens import LineKind, Token, tokenize

PRIORITY_RE = re.compile(r"^\[#(?P<priority>[A-Z0-9])\](?:[ \t]+|$)")
TAGS_RE = re.compile(r"(?:^|[ \t]+)(?P<tags>:(?:[^\s:]+:)+)[ \t]*$")
FIRST_WORD_RE = re.compile(r"^(?P<word>\S+)(?:[ \t]+(?P<rest>.*))?$")

TODO_KEYWORDS = ("TODO", "SEQ_TODO", "TYP_TODO")


class DiagnosticKind(str, Enum):
    UNTERMINATED_DRAWER = "unterminated-drawer"
    MALFORMED_PROPERTY = "malformed-property"
    DUPLICATE_PROPERTY = "duplicate-property"
    BAD_TIMESTAMP = "bad-timestamp"
    BAD_PLANNING = "bad-planning"
    BAD_LOG_ENTRY = "bad-log-entry"


@dataclass
class ParseDiagnostic:
    """A construct that was demoted to plain text (or overridden) during parsing."""

    line: int
    kind: DiagnosticKind
    message: str
    text: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "line": self.line,
            "kind": self.kind.value,
            "message": self.message,
            "text": self.text,
        }


def parse_headline(rest: str, depth: int, vocabulary: TodoVocabulary) -> Heading:
    """Split a headline (without its stars) into keyword, priority, title and tags."""
    heading = Heading(depth=depth)
    text = rest.strip()

    match = FIRST_WORD_RE.match(text)
    if match and match["word"] in vocabulary:
        heading.keyword = match["word"]
        text = (match["rest"] or "").strip()

    match = PRIORITY_RE.match(text)
    if match:
        heading.priority = match["priority"]
        text = text[match.end():]

    match = TAGS_RE.search(text)
    if match:
        for tag in match["tags"].strip(":").split(":"):
            if tag:
                heading.add_tag(tag)
        text = text[: match.start()]

    heading.title = text.strip()
    return heading


class _SectionParser:
    """Reads the lines between one headline and the next."""

    def __init__(self, heading: Heading, lines: list[Token], diagnostics: list[ParseDiagnostic]):
        self.heading = heading
        self.lines = lines
        self.diagnostics = diagnostics

    def note(self, token: Token, kind: DiagnosticKind, message: str) -> None:
        self.diagnostics.append(ParseDiagnostic(line=token.lineno, kind=kind, message=message, text=token.text))

    def run(self) -> None:
        lines = self.lines
        pos = 0
        blanks: list[str] = []
        while pos < len(lines):
            token = lines[pos]
            if token.kind == LineKind.BLANK:
                blanks.append(token.text)
                pos += 1
                continue

            if token.kind == LineKind.PLANNING:
                planning = parse_planning(token.text)
                if planning is None or (planning.closed and self.heading.closed):
                    self.note(token, DiagnosticKind.BAD_PLANNING, "Unrecognized planning line kept as text")
                    break
                self.heading.timestamps.extend(planning.stamps)
                if planning.closed:
                    self.heading.closed = planning.closed
                pos += 1
            elif token.kind == LineKind.TIMESTAMP:
                stamp = parse_timestamp_line(token.text)
                if stamp is None:
                    self.note(token, DiagnosticKind.BAD_TIMESTAMP, "Unparseable timestamp kept as text")
                    break
                self.heading.timestamps.append(stamp)
                pos += 1
            elif token.kind == LineKind.DRAWER_START:
                close = self._find_drawer_end(pos + 1)
                if close is None:
                    self.note(token, DiagnosticKind.UNTERMINATED_DRAWER, f":{token.key}: drawer has no :END:")
                    break
                if token.key == "PROPERTIES":
                    self._read_properties(lines[pos + 1 : close])
                else:
                    self._read_logbook(lines[pos + 1 : close])
                pos = close + 1
            else:
                break
            blanks = []

        self.heading.body = blanks + [t.text for t in lines[pos:]]

    def _find_drawer_end(self, start: int) -> int | None:
        for pos in range(start, len(self.lines)):
            if self.lines[pos].kind == LineKind.DRAWER_END:
                return pos
        return None

    def _read_properties(self, tokens: list[Token]) -> None:
        properties = self.heading.properties
        for token in tokens:
            if token.kind == LineKind.BLANK:
                continue
            if token.kind != LineKind.PROPERTY:
                self.note(token, DiagnosticKind.MALFORMED_PROPERTY, "Line in property drawer is not ':KEY: value'")
                self.heading.drawer_extra.append(token.text)
                continue
            if token.key in properties:
                self.note(token, DiagnosticKind.DUPLICATE_PROPERTY, f"Duplicate property {token.key}; last value wins")
            properties[token.key] = token.value

    def _read_logbook(self, tokens: list[Token]) -> None:
        for token in tokens:
            if token.kind == LineKind.BLANK:
                continue
            entry = LogEntry.parse(token.text)
            if entry is None:
                self.note(token, DiagnosticKind.BAD_LOG_ENTRY, "Log line has no bracketed timestamp")
                self.heading.log_extra.append(token.text)
                continue
            self.heading.log.append(entry)


def parse(text: str, vocabulary: TodoVocabulary | None = None) -> tuple[Document, list[ParseDiagnostic]]:
    """
    Parse outline text into a Document.

    Args:
        text: Raw file contents.
        vocabulary: State keywords to use when the file declares none with
            ``#+TODO:``.

    Returns:
        Tuple of (document, diagnostics).
    """
    tokens = list(tokenize(text))
    document = Document()
    diagnostics: list[ParseDiagnostic] = []

    pos = 0
    while pos < len(tokens) and tokens[pos].kind != LineKind.HEADING:
        document.preamble.append(tokens[pos].text)
        pos += 1

    declared = TodoVocabulary.from_keyword_values(
        t.value for t in tokens[:pos] if t.kind == LineKind.KEYWORD and t.key in TODO_KEYWORDS
    )
    document.vocabulary = declared or vocabulary or TodoVocabulary()

    stack: list[int] = []
    while pos < len(tokens):
        token = tokens[pos]
        heading = parse_headline(token.value, token.depth, document.vocabulary)
        heading.lineno = token.lineno

        while stack and document.headings[stack[-1]].depth >= heading.depth:
            stack.pop()
        stack.append(document.add(heading, parent=stack[-1] if stack else None))

        end = pos + 1
        while end < len(tokens) and tokens[end].kind != LineKind.HEADING:
            end += 1
        _SectionParser(heading, tokens[pos + 1 : end], diagnostics).run()
        pos = end

    return document, diagnostics
