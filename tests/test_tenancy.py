"""Tests for tenant isolation, projects and API keys."""

import pytest

from doit.auth import KEY_PREFIX, generate_api_key, hash_api_key, resolve_scope, scope_for_tenant
from doit.errors import NotFoundError, ValidationError
from doit.models import Dependency, DepType, Issue, IssueFilter
from doit.scope import Scope
from doit.storage.sqlite_store import SQLiteStorage


@pytest.fixture
def other_scope(store: SQLiteStorage) -> Scope:
    t = store.create_tenant("Globex", "globex")
    return Scope(tenant_id=t.id, actor="mallory")


class TestTenants:
    def test_create_and_list(self, store: SQLiteStorage, tenant):
        store.create_tenant("Initech", "initech")
        assert [t.slug for t in store.list_tenants()] == ["acme", "initech"]
        assert store.get_tenant_by_slug("acme").id == tenant.id

    def test_duplicate_slug(self, store: SQLiteStorage, tenant):
        with pytest.raises(ValidationError):
            store.create_tenant("Acme again", "acme")

    def test_invalid_slug(self, store: SQLiteStorage):
        with pytest.raises(ValidationError):
            store.create_tenant("Bad", "Not A Slug")

    def test_unknown_slug(self, store: SQLiteStorage):
        with pytest.raises(NotFoundError):
            store.get_tenant_by_slug("nobody")


class TestIsolation:
    def test_issues_invisible_across_tenants(self, store: SQLiteStorage, scope: Scope,
                                             other_scope: Scope):
        mine = store.create_issue(scope, Issue(title="Mine"), "alice")
        store.create_issue(other_scope, Issue(title="Theirs"), "mallory")

        assert [i.title for i in store.list_issues(scope)] == ["Mine"]
        assert [i.title for i in store.list_ready(other_scope)] == ["Theirs"]
        with pytest.raises(NotFoundError):
            store.get_issue(other_scope, mine.id)
        with pytest.raises(NotFoundError):
            store.update_issue(other_scope, mine.id, {"title": "hijacked"}, "mallory")
        with pytest.raises(NotFoundError):
            store.delete_issue(other_scope, mine.id)
        assert store.resolve_id(other_scope, mine.id) is None
        assert store.get_issue(scope, mine.id).title == "Mine"

    def test_no_cross_tenant_edges(self, store: SQLiteStorage, scope: Scope,
                                   other_scope: Scope):
        mine = store.create_issue(scope, Issue(title="Mine"), "alice")
        theirs = store.create_issue(other_scope, Issue(title="Theirs"), "mallory")
        with pytest.raises(NotFoundError):
            store.add_dependency(other_scope, Dependency(theirs.id, mine.id, DepType.BLOCKS),
                                 "mallory")

    def test_remove_dependency_scoped(self, store: SQLiteStorage, scope: Scope,
                                      other_scope: Scope):
        a = store.create_issue(scope, Issue(title="A"), "alice")
        b = store.create_issue(scope, Issue(title="B"), "alice")
        store.add_dependency(scope, Dependency(a.id, b.id, DepType.BLOCKS), "alice")
        store.remove_dependency(other_scope, a.id, b.id, "mallory")
        assert len(store.list_dependencies(scope, a.id)) == 1

    def test_child_of_foreign_parent(self, store: SQLiteStorage, scope: Scope,
                                     other_scope: Scope):
        parent = store.create_issue(scope, Issue(title="Parent"), "alice")
        with pytest.raises(NotFoundError):
            store.create_issue(other_scope, Issue(title="Child"), "mallory", parent_id=parent.id)


class TestProjects:
    def test_create_list_update(self, store: SQLiteStorage, scope: Scope):
        store.create_project(scope, "Web", "web")
        store.create_project(scope, "API", "api")
        assert [p.slug for p in store.list_projects(scope)] == ["api", "web"]
        renamed = store.update_project(scope, "web", name="Website", new_slug="site")
        assert (renamed.name, renamed.slug) == ("Website", "site")
        with pytest.raises(NotFoundError):
            store.get_project_by_slug(scope, "web")

    def test_update_to_taken_slug(self, store: SQLiteStorage, scope: Scope):
        store.create_project(scope, "Web", "web")
        store.create_project(scope, "API", "api")
        with pytest.raises(ValidationError):
            store.update_project(scope, "web", new_slug="api")

    def test_projects_are_per_tenant(self, store: SQLiteStorage, scope: Scope,
                                     other_scope: Scope):
        store.create_project(scope, "Web", "web")
        store.create_project(other_scope, "Web", "web")
        assert store.list_projects(other_scope)[0].tenant_id == other_scope.tenant_id

    def test_project_allow_list(self, store: SQLiteStorage, scope: Scope):
        web = store.create_project(scope, "Web", "web")
        api = store.create_project(scope, "API", "api")
        store.create_issue(scope, Issue(title="Web bug", project_id=web.id), "alice")
        store.create_issue(scope, Issue(title="API bug", project_id=api.id), "alice")
        store.create_issue(scope, Issue(title="Unfiled"), "alice")

        web_only = Scope(tenant_id=scope.tenant_id, project_ids=(web.id,))
        assert [i.title for i in store.list_issues(web_only)] == ["Web bug"]
        assert len(store.list_issues(scope)) == 3
        with pytest.raises(ValidationError):
            store.create_issue(web_only, Issue(title="Wrong", project_id=api.id), "alice")

    def test_foreign_project_rejected(self, store: SQLiteStorage, scope: Scope,
                                      other_scope: Scope):
        theirs = store.create_project(other_scope, "Secret", "secret")
        with pytest.raises(NotFoundError):
            store.create_issue(scope, Issue(title="Sneaky", project_id=theirs.id), "alice")


class TestAPIKeys:
    def test_generate(self):
        raw, prefix = generate_api_key()
        assert raw.startswith(KEY_PREFIX)
        assert raw.startswith(prefix)
        assert len(prefix) == len(KEY_PREFIX) + 8
        assert hash_api_key(raw) != raw
        assert hash_api_key(raw) == hash_api_key(raw)

    def test_resolve_and_revoke(self, store: SQLiteStorage, tenant):
        raw, prefix = generate_api_key()
        key = store.create_api_key("acme", "ci", hash_api_key(raw), prefix)
        assert not key.revoked

        scope = resolve_scope(store, raw, actor="ci-bot")
        assert scope.tenant_id == tenant.id
        assert scope.actor == "ci-bot"

        store.revoke_api_key(prefix)
        with pytest.raises(NotFoundError):
            resolve_scope(store, raw)
        with pytest.raises(NotFoundError):
            store.revoke_api_key(prefix)
        assert store.list_api_keys("acme")[0].revoked

    def test_unknown_key(self, store: SQLiteStorage, tenant):
        with pytest.raises(NotFoundError):
            resolve_scope(store, "doit_not-a-real-key")
        with pytest.raises(NotFoundError):
            resolve_scope(store, "")

    def test_key_for_unknown_tenant(self, store: SQLiteStorage):
        raw, prefix = generate_api_key()
        with pytest.raises(NotFoundError):
            store.create_api_key("nobody", "", hash_api_key(raw), prefix)

    def test_resolve_with_projects(self, store: SQLiteStorage, scope: Scope):
        web = store.create_project(scope, "Web", "web")
        raw, prefix = generate_api_key()
        store.create_api_key("acme", "", hash_api_key(raw), prefix)
        resolved = resolve_scope(store, raw, ["web"])
        assert resolved.project_ids == (web.id,)
        with pytest.raises(NotFoundError):
            resolve_scope(store, raw, ["mobile"])

    def test_scope_for_tenant(self, store: SQLiteStorage, tenant):
        assert scope_for_tenant(store, "acme").tenant_id == tenant.id
        with pytest.raises(NotFoundError):
            scope_for_tenant(store, "nobody")

    def test_keys_only_list_own_tenant(self, store: SQLiteStorage, tenant, other_scope: Scope):
        raw, prefix = generate_api_key()
        store.create_api_key("globex", "", hash_api_key(raw), prefix)
        assert store.list_api_keys("acme") == []
        assert len(store.list_api_keys("globex")) == 1
        assert store.list_issues(resolve_scope(store, raw), IssueFilter()) == []
