"""Progressive content decay for old closed issues.

Levels only move forward: 0 (full) → 1 (summarized) → 2 (minimal). Each
transition snapshots the full content first, so nothing is lost, and is
committed per issue; an interrupted run simply resumes on the next call.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from doit.errors import DoitError, ValidationError
from doit.models import CompactResult, Issue, IssueFilter, SortBy, Status, now_utc
from doit.scope import Scope
from doit.storage.interface import Storage
from doit.utils import parse_duration

logger = logging.getLogger(__name__)

DEFAULT_CLOSED_AGE = "168h"
BATCH_SIZE = 500


def target_level(age: timedelta, threshold: timedelta) -> int:
    """Compaction level an issue closed ``age`` ago should be at."""
    if age > 2 * threshold:
        return 2
    if age > threshold:
        return 1
    return 0


def generate_summary(issue: Issue, level: int) -> str:
    """Deterministic summary kept in place of the description.

    Level 1 keeps the first two description lines; level 2 keeps only the
    header and the close reason.
    """
    parts = [f"[{issue.issue_type}] {issue.title}"]
    if level == 1 and issue.description.strip():
        lines = issue.description.strip().splitlines()[:2]
        parts.append(" ".join(line.strip() for line in lines))
    if issue.close_reason:
        parts.append(f"Closed: {issue.close_reason}")
    return " | ".join(parts)


def _as_threshold(closed_age: timedelta | str) -> timedelta:
    if isinstance(closed_age, timedelta):
        threshold = closed_age
    else:
        threshold = parse_duration(closed_age)
        if threshold is None:
            raise ValidationError(f"invalid duration: {closed_age!r}")
    if threshold <= timedelta(0):
        raise ValidationError("closed age must be positive")
    return threshold


class Compactor:
    """Batch job that moves aged closed issues up the compaction levels."""

    def __init__(self, store: Storage, batch_size: int = BATCH_SIZE):
        self._store = store
        self.batch_size = batch_size

    def _candidates(self, scope: Scope, threshold: timedelta, now: datetime) -> list[Issue]:
        """Oldest closed issues that can still move up a level.

        Issues already at the level their age calls for are never selected,
        so a full batch always makes progress.
        """
        due: dict[str, Issue] = {}
        for below, age in ((2, 2 * threshold), (1, threshold)):
            for issue in self._store.list_issues(scope, IssueFilter(
                status=Status.CLOSED, compaction_below=below, closed_before=now - age,
                sort=SortBy.CLOSED, limit=self.batch_size,
            )):
                due[issue.id] = issue
        ordered = sorted(due.values(), key=lambda i: (i.closed_at, i.id))
        return ordered[:self.batch_size]

    def compact_old(self, scope: Scope, closed_age: timedelta | str = DEFAULT_CLOSED_AGE,
                    now: datetime | None = None, actor: str = "compactor") -> list[CompactResult]:
        threshold = _as_threshold(closed_age)
        now = now or now_utc()
        candidates = self._candidates(scope, threshold, now)

        results: list[CompactResult] = []
        for issue in candidates:
            if issue.closed_at is None:
                continue
            level = target_level(now - issue.closed_at, threshold)
            if level <= issue.compaction_level:
                continue
            summary = generate_summary(issue, level)
            try:
                applied = self._store.compact_issue(scope, issue.id, level, summary, actor)
            except DoitError:
                logger.error("compaction aborted at %s after %d transition(s)",
                             issue.id, len(results))
                raise
            if not applied:
                # Another run got there first
                continue
            logger.info("compacted %s: level %d -> %d", issue.id,
                        issue.compaction_level, level)
            results.append(CompactResult(issue.id, issue.compaction_level, level))
        return results
