"""Utility functions for the doit CLI and store."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from doit.models import Issue, Status, now_utc, parse_timestamp

_DURATION_RE = re.compile(r"(\d+)(ms|d|h|m|s)")


def format_priority(priority: int) -> str:
    """Format priority as P0-P4."""
    return f"P{priority}"


def parse_priority(s: str) -> int | None:
    """Parse priority from string. Accepts P0-P4 or 0-4."""
    s = s.strip().upper()
    if s.startswith("P"):
        s = s[1:]
    try:
        p = int(s)
        if 0 <= p <= 4:
            return p
    except ValueError:
        pass
    return None


def priority_label(priority: int) -> str:
    """Return human-readable priority label."""
    labels = {0: "critical", 1: "high", 2: "medium", 3: "low", 4: "backlog"}
    return labels.get(priority, f"P{priority}")


def status_symbol(status: str) -> str:
    """Return a symbol for status display."""
    symbols = {
        Status.OPEN: " ",
        Status.IN_PROGRESS: ">",
        Status.BLOCKED: "!",
        Status.DEFERRED: "~",
        Status.CLOSED: "x",
        Status.PINNED: "^",
        Status.HOOKED: "@",
    }
    return symbols.get(status, "?")


def format_time_ago(dt: datetime) -> str:
    """Format a datetime as a relative time string."""
    now = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    seconds = int((now - dt).total_seconds())
    if seconds < 0:
        return "in the future"
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 30:
        return f"{days}d ago"
    months = days // 30
    if months < 12:
        return f"{months}mo ago"
    return f"{days // 365}y ago"


def parse_duration(s: str) -> timedelta | None:
    """Parse a Go-style duration string (e.g., '5s', '1h30m', '168h', '7d').

    Returns None when the string is empty or not a valid duration.
    """
    if not s:
        return None
    remaining = s.strip()
    if not remaining:
        return None
    units = {"d": 86400, "h": 3600, "m": 60, "s": 1, "ms": 0.001}
    total_seconds = 0.0
    pos = 0
    for m in _DURATION_RE.finditer(remaining):
        if m.start() != pos:
            return None
        total_seconds += int(m.group(1)) * units[m.group(2)]
        pos = m.end()
    if pos != len(remaining):
        return None
    return timedelta(seconds=total_seconds)


def parse_time_spec(value: datetime | str, now: datetime | None = None) -> datetime | None:
    """Parse an absolute or relative point in time.

    Accepts a datetime, an ISO 8601 string, or an offset from now such as
    ``+6h`` or ``+2d``. An empty string means "unset" and yields None.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value
    text = str(value).strip()
    if not text:
        return None
    if text.startswith("+"):
        delta = parse_duration(text[1:])
        if delta is None:
            raise ValueError(f"invalid relative time: {text}")
        return (now or now_utc()) + delta
    return parse_timestamp(text)


def truncate(s: str, max_len: int = 60) -> str:
    """Truncate a string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[:max_len - 3] + "..."


def format_issue_row(issue: Issue, long_format: bool = False) -> str:
    """Format an issue as a single-line row for list display."""
    sym = status_symbol(issue.status)
    pri = format_priority(issue.priority)
    age = format_time_ago(issue.created_at)
    title = truncate(issue.title, 50)

    if long_format:
        assignee = issue.assignee or "-"
        return f"[{sym}] {issue.id:<20} {pri} {issue.issue_type:<8} {assignee:<15} {title}  ({age})"
    return f"[{sym}] {issue.id:<20} {pri} {title}  ({age})"
