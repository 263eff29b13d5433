"""
Timestamp grammar for the outline format.

Active timestamps look like ``<2026-02-24 Tue>``, optionally followed by a
time (``10:00``) or a time range (``10:00-11:30``) and a repeater token
(``+1w``, ``.+1d``, ``++1m``). Two active timestamps joined by ``--`` form a
date range. Inactive timestamps use square brackets and appear in
property values and log entries.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum

# Locale-independent day names, Monday first (matches date.weekday()).
DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

REPEATER_MARKS = ("++", ".+", "+")
REPEATER_UNITS = ("d", "w", "m", "y")

_STAMP_BODY = (
    r"(?P<y>\d{4})-(?P<m>\d{2})-(?P<d>\d{2})"
    r"(?:[ \t]+(?P<day>[^\s\d>\]+.][^\s>\]]*))?"
    r"(?:[ \t]+(?P<h>\d{1,2}):(?P<mi>\d{2})(?:-(?P<eh>\d{1,2}):(?P<emi>\d{2}))?)?"
    r"(?:[ \t]+(?P<mark>\.\+|\+\+|\+)(?P<count>\d+)(?P<unit>[dwmy]))?"
    r"[ \t]*"
)

ACTIVE_RE = re.compile(r"<" + _STAMP_BODY + r">")
INACTIVE_RE = re.compile(r"\[" + _STAMP_BODY + r"\]")
RANGE_LINE_RE = re.compile(r"^(?P<start><[^<>]*>)--(?P<end><[^<>]*>)$")
PLANNING_ITEM_RE = re.compile(
    r"(?P<keyword>SCHEDULED|DEADLINE|CLOSED):[ \t]*(?P<stamp><[^<>]*>|\[[^\[\]]*\])"
)
PLANNING_PREFIX_RE = re.compile(r"^(?:SCHEDULED|DEADLINE|CLOSED):")


class TimestampKind(str, Enum):
    """Role of a timestamp attached to a heading."""

    SCHEDULED = "scheduled"
    DEADLINE = "deadline"
    PLAIN = "plain"
    RANGE = "range"


@dataclass(frozen=True)
class Repeater:
    """A repeater token such as ``+1w``; ``mark`` is one of ``+``, ``.+``, ``++``."""

    mark: str
    count: int
    unit: str

    def __str__(self) -> str:
        return f"{self.mark}{self.count}{self.unit}"


@dataclass(frozen=True)
class Timestamp:
    """A parsed timestamp with its role on the heading."""

    kind: TimestampKind
    date: date
    time: time | None = None
    end_time: time | None = None
    end_date: date | None = None
    repeater: Repeater | None = None


def parse_repeater(token: str) -> Repeater | None:
    """Parse a bare repeater token (``+1w``, ``.+2d``, ``++1m``)."""
    token = token.strip()
    for mark in REPEATER_MARKS:
        if token.startswith(mark):
            rest = token[len(mark):]
            break
    else:
        return None
    if len(rest) < 2 or rest[-1] not in REPEATER_UNITS or not rest[:-1].isdigit():
        return None
    count = int(rest[:-1])
    if count <= 0:
        return None
    return Repeater(mark=mark, count=count, unit=rest[-1])


def _time_of(hour: str | None, minute: str | None) -> time | None:
    if hour is None or minute is None:
        return None
    return time(int(hour), int(minute))


def _from_match(match: re.Match, kind: TimestampKind) -> Timestamp | None:
    try:
        day = date(int(match["y"]), int(match["m"]), int(match["d"]))
        start = _time_of(match["h"], match["mi"])
        end = _time_of(match["eh"], match["emi"])
    except ValueError:
        return None
    repeater = None
    if match["mark"]:
        repeater = Repeater(mark=match["mark"], count=int(match["count"]), unit=match["unit"])
        if repeater.count <= 0:
            return None
    if end is not None and kind == TimestampKind.PLAIN:
        kind = TimestampKind.RANGE
    return Timestamp(kind=kind, date=day, time=start, end_time=end, repeater=repeater)


def parse_active(text: str, kind: TimestampKind = TimestampKind.PLAIN) -> Timestamp | None:
    """Parse exactly one active timestamp (the whole of ``text``)."""
    match = ACTIVE_RE.fullmatch(text.strip())
    if not match:
        return None
    return _from_match(match, kind)


def parse_timestamp_line(line: str) -> Timestamp | None:
    """Parse a line that consists solely of a plain timestamp or a date range."""
    stripped = line.strip()
    range_match = RANGE_LINE_RE.match(stripped)
    if range_match:
        start = parse_active(range_match["start"])
        end = parse_active(range_match["end"])
        if start is None or end is None or start.repeater or end.repeater:
            return None
        if end.date < start.date:
            return None
        return Timestamp(
            kind=TimestampKind.RANGE,
            date=start.date,
            time=start.time,
            end_time=end.time,
            end_date=end.date,
        )
    return parse_active(stripped)


@dataclass(frozen=True)
class Planning:
    """
    Items of one planning line.

    ``closed`` is the raw inactive stamp of a ``CLOSED:`` item, kept as
    written.
    """

    stamps: list[Timestamp]
    closed: str | None = None


def parse_planning(line: str) -> Planning | None:
    """
    Parse a planning line (``SCHEDULED: <...> DEADLINE: <...> CLOSED: [...]``).

    Returns None unless every item on the line is well formed, so callers
    can keep the line verbatim.
    """
    stripped = line.strip()
    stamps: list[Timestamp] = []
    closed: str | None = None
    pos = 0
    found = False
    for match in PLANNING_ITEM_RE.finditer(stripped):
        if stripped[pos:match.start()].strip():
            return None
        keyword, raw = match["keyword"], match["stamp"]
        if keyword == "CLOSED":
            inactive = INACTIVE_RE.fullmatch(raw)
            if closed is not None or inactive is None or _from_match(inactive, TimestampKind.PLAIN) is None:
                return None
            closed = raw
        else:
            kind = TimestampKind.SCHEDULED if keyword == "SCHEDULED" else TimestampKind.DEADLINE
            stamp = parse_active(raw, kind)
            if stamp is None:
                return None
            stamps.append(stamp)
        found = True
        pos = match.end()
    if not found or stripped[pos:].strip():
        return None
    return Planning(stamps=stamps, closed=closed)


def _format_body(day: date, start: time | None, end: time | None, repeater: Repeater | None) -> str:
    parts = [day.isoformat(), DAY_NAMES[day.weekday()]]
    if start is not None:
        clock = start.strftime("%H:%M")
        if end is not None:
            clock += "-" + end.strftime("%H:%M")
        parts.append(clock)
    if repeater is not None:
        parts.append(str(repeater))
    return " ".join(parts)


def format_timestamp(stamp: Timestamp) -> str:
    """Render a timestamp in canonical active form (without planning keyword)."""
    if stamp.end_date is not None:
        start = _format_body(stamp.date, stamp.time, None, None)
        end = _format_body(stamp.end_date, stamp.end_time, None, None)
        return f"<{start}>--<{end}>"
    return "<" + _format_body(stamp.date, stamp.time, stamp.end_time, stamp.repeater) + ">"


def format_inactive(moment: datetime | date) -> str:
    """Render ``[2026-02-23 Mon 14:00]`` (or ``[2026-02-23 Mon]`` for a date)."""
    if isinstance(moment, datetime):
        return "[" + _format_body(moment.date(), moment.time().replace(second=0, microsecond=0), None, None) + "]"
    return "[" + _format_body(moment, None, None, None) + "]"


def parse_inactive(text: str) -> datetime | date | None:
    """
    Parse an inactive stamp or a bare ISO date/datetime.

    Accepts ``[2026-02-23 Mon 14:00]``, ``[2026-02-23]``, ``2026-02-23`` and
    ``2026-02-23 14:00``. Returns a datetime when a clock time is present.
    """
    text = text.strip()
    match = INACTIVE_RE.fullmatch(text)
    if match is None and not text.startswith("["):
        match = re.fullmatch(_STAMP_BODY, text)
    if match is None:
        return None
    try:
        day = date(int(match["y"]), int(match["m"]), int(match["d"]))
        clock = _time_of(match["h"], match["mi"])
    except ValueError:
        return None
    if clock is None:
        return day
    return datetime.combine(day, clock)


def find_inactive(text: str) -> tuple[datetime | date, re.Match] | None:
    """Find the first parseable inactive stamp inside free text."""
    for match in INACTIVE_RE.finditer(text):
        value = parse_inactive(match.group(0))
        if value is not None:
            return value, match
    return None
