"""
Line tokenizer for outline files.

Splits raw text into classified lines. Classification is purely lexical:
a PROPERTY token is only a property if the parser finds it inside a
property drawer, and a TIMESTAMP token is only a timestamp if it parses.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

from .timestamps import PLANNING_PREFIX_RE

HEADING_RE = re.compile(r"^(?P<stars>\*+)[ \t](?P<rest>.*)$")
KEYWORD_RE = re.compile(r"^#\+(?P<key>[A-Za-z][\w-]*):[ \t]*(?P<value>.*?)[ \t]*$")
DRAWER_START_RE = re.compile(r"^[ \t]*:(?P<name>PROPERTIES|LOGBOOK):[ \t]*$", re.IGNORECASE)
DRAWER_END_RE = re.compile(r"^[ \t]*:END:[ \t]*$", re.IGNORECASE)
PROPERTY_RE = re.compile(r"^[ \t]*:(?P<key>[^:\s]+):(?:[ \t]+(?P<value>.*?))?[ \t]*$")
TIMESTAMP_LINE_RE = re.compile(r"^[ \t]*<\d{4}-")


class LineKind(str, Enum):
    HEADING = "heading"
    KEYWORD = "keyword"
    DRAWER_START = "drawer_start"
    DRAWER_END = "drawer_end"
    PROPERTY = "property"
    PLANNING = "planning"
    TIMESTAMP = "timestamp"
    BLANK = "blank"
    TEXT = "text"


@dataclass(frozen=True)
class Token:
    """One classified source line. ``lineno`` is 1-based."""

    kind: LineKind
    lineno: int
    text: str
    depth: int = 0
    key: str = ""
    value: str = ""


def split_lines(text: str) -> list[str]:
    """Split on newlines, dropping carriage returns and the final terminator."""
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def classify(line: str, lineno: int) -> Token:
    if not line.strip():
        return Token(LineKind.BLANK, lineno, line)

    match = HEADING_RE.match(line)
    if match:
        return Token(LineKind.HEADING, lineno, line, depth=len(match["stars"]), value=match["rest"])

    match = KEYWORD_RE.match(line)
    if match:
        return Token(LineKind.KEYWORD, lineno, line, key=match["key"].upper(), value=match["value"])

    match = DRAWER_START_RE.match(line)
    if match:
        return Token(LineKind.DRAWER_START, lineno, line, key=match["name"].upper())

    if DRAWER_END_RE.match(line):
        return Token(LineKind.DRAWER_END, lineno, line)

    match = PROPERTY_RE.match(line)
    if match:
        return Token(LineKind.PROPERTY, lineno, line, key=match["key"], value=match["value"] or "")

    if PLANNING_PREFIX_RE.match(line.lstrip()):
        return Token(LineKind.PLANNING, lineno, line)

    if TIMESTAMP_LINE_RE.match(line):
        return Token(LineKind.TIMESTAMP, lineno, line)

    return Token(LineKind.TEXT, lineno, line)


def tokenize(text: str) -> Iterator[Token]:
    """Yield one token per line of ``text``."""
    for lineno, line in enumerate(split_lines(text), start=1):
        yield classify(line, lineno)
