"""Tests for compaction."""

from datetime import timedelta

import pytest

from doit.compact import Compactor, generate_summary, target_level
from doit.errors import ValidationError
from doit.models import EventType, Issue, Status
from doit.scope import Scope
from doit.storage.sqlite_store import SQLiteStorage

DAY = timedelta(hours=24)


def _closed(store: SQLiteStorage, scope: Scope, **kwargs) -> Issue:
    fields = dict(title="Old work", description="line one\nline two\nline three",
                  design="design notes", acceptance_criteria="it works", notes="misc")
    fields.update(kwargs)
    issue = store.create_issue(scope, Issue(**fields), "alice")
    return store.close_issue(scope, issue.id, "shipped", "alice")


def test_target_level():
    assert target_level(timedelta(hours=1), DAY) == 0
    assert target_level(DAY, DAY) == 0
    assert target_level(timedelta(hours=25), DAY) == 1
    assert target_level(2 * DAY, DAY) == 1
    assert target_level(timedelta(hours=49), DAY) == 2


def test_generate_summary():
    issue = Issue(title="Fix it", issue_type="bug", description="first\nsecond\nthird",
                  close_reason="done")
    assert generate_summary(issue, 1) == "[bug] Fix it | first second | Closed: done"
    assert generate_summary(issue, 2) == "[bug] Fix it | Closed: done"


class TestCompactor:
    def test_progressive_levels(self, store: SQLiteStorage, scope: Scope):
        issue = _closed(store, scope)
        t0 = issue.closed_at
        compactor = Compactor(store)

        assert compactor.compact_old(scope, "24h", now=t0 + timedelta(hours=1)) == []
        assert store.get_issue(scope, issue.id).compaction_level == 0

        results = compactor.compact_old(scope, "24h", now=t0 + timedelta(hours=25))
        assert [(r.issue_id, r.old_level, r.new_level) for r in results] == [(issue.id, 0, 1)]
        got = store.get_issue(scope, issue.id)
        assert got.compaction_level == 1
        assert got.description == "[task] Old work | line one line two | Closed: shipped"
        assert got.design == ""
        assert got.notes == ""
        assert got.acceptance_criteria == "it works"
        assert got.compacted_at is not None

        results = compactor.compact_old(scope, "24h", now=t0 + timedelta(hours=49))
        assert [(r.old_level, r.new_level) for r in results] == [(1, 2)]
        got = store.get_issue(scope, issue.id)
        assert got.compaction_level == 2
        assert got.acceptance_criteria == ""

        assert compactor.compact_old(scope, "24h", now=t0 + timedelta(days=30)) == []

    def test_skips_directly_to_level_two(self, store: SQLiteStorage, scope: Scope):
        issue = _closed(store, scope)
        results = Compactor(store).compact_old(scope, "24h", now=issue.closed_at + 3 * DAY)
        assert [(r.old_level, r.new_level) for r in results] == [(0, 2)]

    def test_snapshots_preserve_original(self, store: SQLiteStorage, scope: Scope):
        issue = _closed(store, scope)
        original_size = issue.content_size()
        compactor = Compactor(store)
        compactor.compact_old(scope, "24h", now=issue.closed_at + timedelta(hours=25))
        compactor.compact_old(scope, "24h", now=issue.closed_at + timedelta(hours=49))

        snaps = store.get_compaction_snapshots(scope, issue.id)
        assert [s.level for s in snaps] == [1, 2]
        assert snaps[0].description == "line one\nline two\nline three"
        assert snaps[0].design == "design notes"
        assert snaps[1].description == snaps[0].summary
        assert store.get_issue(scope, issue.id).original_size == original_size

    def test_small_batches_reach_every_issue(self, store: SQLiteStorage, scope: Scope):
        issues = [_closed(store, scope, title=f"Old {n}") for n in range(3)]
        now = issues[-1].closed_at + 30 * DAY
        compactor = Compactor(store, batch_size=2)

        first = compactor.compact_old(scope, "24h", now=now)
        second = compactor.compact_old(scope, "24h", now=now)
        assert [r.issue_id for r in first] == [issues[0].id, issues[1].id]
        assert [r.issue_id for r in second] == [issues[2].id]
        assert all(store.get_issue(scope, i.id).compaction_level == 2 for i in issues)
        assert compactor.compact_old(scope, "24h", now=now) == []

    def test_settled_issues_do_not_fill_the_batch(self, store: SQLiteStorage, scope: Scope):
        older = _closed(store, scope, title="Older")
        newer = _closed(store, scope, title="Newer")
        now = newer.closed_at + timedelta(hours=25)
        compactor = Compactor(store, batch_size=1)

        assert [r.issue_id for r in compactor.compact_old(scope, "24h", now=now)] == [older.id]
        # Older sits at level 1 until it is 48h old; the next run moves on
        assert [r.issue_id for r in compactor.compact_old(scope, "24h", now=now)] == [newer.id]
        assert store.get_issue(scope, newer.id).compaction_level == 1

    def test_open_issues_untouched(self, store: SQLiteStorage, scope: Scope):
        issue = store.create_issue(scope, Issue(title="Still open"), "alice")
        results = Compactor(store).compact_old(scope, "1s",
                                               now=issue.created_at + timedelta(days=365))
        assert results == []

    def test_invalid_age(self, store: SQLiteStorage, scope: Scope):
        with pytest.raises(ValidationError):
            Compactor(store).compact_old(scope, "a while")
        with pytest.raises(ValidationError):
            Compactor(store).compact_old(scope, timedelta(0))


class TestCompactIssue:
    def test_level_never_decreases(self, store: SQLiteStorage, scope: Scope):
        issue = _closed(store, scope)
        assert store.compact_issue(scope, issue.id, 2, "summary", "alice")
        assert not store.compact_issue(scope, issue.id, 1, "older summary", "alice")
        assert not store.compact_issue(scope, issue.id, 2, "again", "alice")
        got = store.get_issue(scope, issue.id)
        assert got.compaction_level == 2
        assert got.description == "summary"
        assert len(store.get_compaction_snapshots(scope, issue.id)) == 1

    def test_records_event(self, store: SQLiteStorage, scope: Scope):
        issue = _closed(store, scope)
        store.compact_issue(scope, issue.id, 1, "summary", "janitor")
        event = store.get_events(scope, issue.id, limit=1)[0]
        assert event.event_type == EventType.COMPACTED
        assert (event.old_value, event.new_value, event.actor) == ("0", "1", "janitor")

    def test_invalid_level(self, store: SQLiteStorage, scope: Scope):
        issue = _closed(store, scope)
        with pytest.raises(ValidationError):
            store.compact_issue(scope, issue.id, 3, "summary", "alice")

    def test_status_preserved(self, store: SQLiteStorage, scope: Scope):
        issue = _closed(store, scope)
        store.compact_issue(scope, issue.id, 1, "summary", "alice")
        assert store.get_issue(scope, issue.id).status == Status.CLOSED
