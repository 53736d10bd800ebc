"""Tests for lessons learned."""

import re
import time

import pytest

from doit.errors import NotFoundError, ValidationError
from doit.models import Issue, Lesson, LessonFilter, LessonStatus
from doit.scope import Scope
from doit.storage.sqlite_store import SQLiteStorage


def _lesson(title: str = "Pin the version", **kwargs) -> Lesson:
    fields = dict(title=title, mistake="Upgraded blindly", correction="Pin and test first")
    fields.update(kwargs)
    return Lesson(**fields)


class TestRecord:
    def test_record_and_get(self, store: SQLiteStorage, scope: Scope):
        recorded = store.record_lesson(
            scope, _lesson(components=["db", " cli ", "db", ""], expert="bob"), "alice")
        assert re.fullmatch(r"lsn-[0-9a-f]{3,8}", recorded.id)
        assert recorded.status == LessonStatus.OPEN
        assert recorded.components == ["cli", "db"]
        assert recorded.severity == 2
        assert recorded.created_by == "alice"

        got = store.get_lesson(scope, recorded.id)
        assert got.to_dict() == recorded.to_dict()

    def test_validation(self, store: SQLiteStorage, scope: Scope):
        with pytest.raises(ValidationError):
            store.record_lesson(scope, _lesson(title=""), "alice")
        with pytest.raises(ValidationError):
            store.record_lesson(scope, _lesson(mistake="  "), "alice")
        with pytest.raises(ValidationError):
            store.record_lesson(scope, _lesson(severity=5), "alice")
        assert store.list_lessons(scope) == []

    def test_linked_issue_must_be_in_scope(self, store: SQLiteStorage, scope: Scope):
        store.create_issue(scope, Issue(id="test-1", title="Broke prod"), "alice")
        linked = store.record_lesson(scope, _lesson(issue_id="test-1"), "alice")
        assert linked.issue_id == "test-1"
        with pytest.raises(NotFoundError):
            store.record_lesson(scope, _lesson(issue_id="test-404"), "alice")

    def test_project_outside_scope(self, store: SQLiteStorage, scope: Scope):
        web = store.create_project(scope, "Web", "web")
        api = store.create_project(scope, "API", "api")
        web_only = Scope(tenant_id=scope.tenant_id, project_ids=(web.id,))
        with pytest.raises(ValidationError):
            store.record_lesson(web_only, _lesson(project_id=api.id), "alice")


class TestList:
    def test_ordered_by_severity_then_newest(self, store: SQLiteStorage, scope: Scope):
        minor = store.record_lesson(scope, _lesson("Minor", severity=3), "alice")
        old_major = store.record_lesson(scope, _lesson("Old major", severity=1), "alice")
        time.sleep(0.01)
        new_major = store.record_lesson(scope, _lesson("New major", severity=1), "alice")
        assert [lsn.id for lsn in store.list_lessons(scope)] == [
            new_major.id, old_major.id, minor.id]

    def test_filters(self, store: SQLiteStorage, scope: Scope):
        db = store.record_lesson(scope, _lesson("DB", components=["db"], expert="bob"), "alice")
        cli = store.record_lesson(scope, _lesson("CLI", components=["cli"], severity=0), "alice")
        store.resolve_lesson(scope, cli.id, "alice")

        def ids(**kwargs) -> list[str]:
            return [lsn.id for lsn in store.list_lessons(scope, LessonFilter(**kwargs))]

        assert ids(component="db") == [db.id]
        assert ids(expert="bob") == [db.id]
        assert ids(severity=0) == [cli.id]
        assert ids(status=LessonStatus.OPEN) == [db.id]
        assert ids(status=LessonStatus.RESOLVED) == [cli.id]
        assert len(ids(limit=1)) == 1

    def test_invalid_filter(self, store: SQLiteStorage, scope: Scope):
        with pytest.raises(ValidationError):
            store.list_lessons(scope, LessonFilter(status="done"))
        with pytest.raises(ValidationError):
            store.list_lessons(scope, LessonFilter(limit=-1))

    def test_project_allow_list(self, store: SQLiteStorage, scope: Scope):
        web = store.create_project(scope, "Web", "web")
        in_web = store.record_lesson(scope, _lesson("Web", project_id=web.id), "alice")
        store.record_lesson(scope, _lesson("Unscoped"), "alice")
        web_only = Scope(tenant_id=scope.tenant_id, project_ids=(web.id,))
        assert [lsn.id for lsn in store.list_lessons(web_only)] == [in_web.id]
        assert len(store.list_lessons(scope, LessonFilter(project_id=web.id))) == 1

    def test_tenant_isolation(self, store: SQLiteStorage, scope: Scope):
        mine = store.record_lesson(scope, _lesson(), "alice")
        other = Scope(tenant_id=store.create_tenant("Globex", "globex").id)
        assert store.list_lessons(other) == []
        with pytest.raises(NotFoundError):
            store.get_lesson(other, mine.id)
        with pytest.raises(NotFoundError):
            store.resolve_lesson(other, mine.id, "mallory")


class TestResolve:
    def test_resolve(self, store: SQLiteStorage, scope: Scope):
        recorded = store.record_lesson(scope, _lesson(), "alice")
        resolved = store.resolve_lesson(scope, recorded.id, "bob")
        assert resolved.status == LessonStatus.RESOLVED
        assert resolved.resolved_by == "bob"
        assert resolved.resolved_at is not None

    def test_resolving_twice_keeps_first(self, store: SQLiteStorage, scope: Scope):
        recorded = store.record_lesson(scope, _lesson(), "alice")
        first = store.resolve_lesson(scope, recorded.id, "bob")
        again = store.resolve_lesson(scope, recorded.id, "carol")
        assert (again.resolved_by, again.resolved_at) == ("bob", first.resolved_at)

    def test_missing(self, store: SQLiteStorage, scope: Scope):
        with pytest.raises(NotFoundError):
            store.resolve_lesson(scope, "lsn-404", "alice")
