"""Tests for hierarchy traversal."""

from datetime import datetime, timedelta, timezone

import pytest

from doit.errors import NotFoundError, ValidationError
from doit.hierarchy import walk_tree
from doit.models import Dependency, DepType, Issue
from doit.scope import Scope
from doit.storage.sqlite_store import SQLiteStorage

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _graph(edges: dict[str, list[str]], priorities: dict[str, int] | None = None):
    priorities = priorities or {}
    issues = {}
    for n, issue_id in enumerate(sorted(set(edges) | {c for cs in edges.values() for c in cs})):
        issues[issue_id] = Issue(id=issue_id, title=issue_id,
                                 priority=priorities.get(issue_id, 2),
                                 created_at=T0 + timedelta(minutes=n))

    def children_of(issue_id: str) -> list[Issue]:
        return [issues[c] for c in edges.get(issue_id, [])]

    return issues, children_of


def test_walk_orders_by_depth_then_priority():
    issues, children_of = _graph(
        {"r": ["a", "b"], "a": ["a1"], "b": ["b1"]},
        priorities={"b": 0, "a1": 1, "b1": 3},
    )
    nodes = walk_tree(issues["r"], children_of)
    assert [(n.issue.id, n.depth) for n in nodes] == [
        ("r", 0), ("b", 1), ("a", 1), ("a1", 2), ("b1", 2),
    ]
    assert nodes[1].parent_id == "r"
    assert nodes[3].parent_id == "a"


def test_walk_terminates_on_cycle():
    issues, children_of = _graph({"r": ["a"], "a": ["b"], "b": ["r", "a"]})
    nodes = walk_tree(issues["r"], children_of)
    assert [n.issue.id for n in nodes] == ["r", "a", "b"]


def test_walk_emits_shared_child_once():
    issues, children_of = _graph({"r": ["a", "b"], "a": ["c"], "b": ["c"]})
    ids = [n.issue.id for n in walk_tree(issues["r"], children_of)]
    assert ids.count("c") == 1


def test_walk_truncates_at_max_depth():
    issues, children_of = _graph({"r": ["a"], "a": ["b"], "b": ["c"]})
    nodes = walk_tree(issues["r"], children_of, max_depth=1)
    assert [n.issue.id for n in nodes] == ["r", "a"]
    assert nodes[1].truncated
    assert not nodes[0].truncated


def test_walk_depth_zero():
    issues, children_of = _graph({"r": ["a"]})
    nodes = walk_tree(issues["r"], children_of, max_depth=0)
    assert len(nodes) == 1
    assert nodes[0].truncated


def test_leaf_not_truncated():
    issues, children_of = _graph({"r": ["a"]})
    nodes = walk_tree(issues["r"], children_of, max_depth=1)
    assert not nodes[1].truncated


def test_walk_negative_depth():
    issues, children_of = _graph({"r": []})
    with pytest.raises(ValidationError):
        walk_tree(issues["r"], children_of, max_depth=-1)


class TestStoreTree:
    def test_tree_from_children(self, store: SQLiteStorage, scope: Scope):
        epic = store.create_issue(scope, Issue(title="Epic", issue_type="epic"), "alice")
        a = store.create_issue(scope, Issue(title="A", priority=1), "alice", parent_id=epic.id)
        b = store.create_issue(scope, Issue(title="B", priority=0), "alice", parent_id=epic.id)
        a1 = store.create_issue(scope, Issue(title="A1"), "alice", parent_id=a.id)

        nodes = store.get_dependency_tree(scope, epic.id)
        assert [(n.issue.id, n.depth) for n in nodes] == [
            (epic.id, 0), (b.id, 1), (a.id, 1), (a1.id, 2),
        ]

    def test_tree_ignores_other_edge_types(self, store: SQLiteStorage, scope: Scope):
        root = store.create_issue(scope, Issue(title="Root"), "alice")
        other = store.create_issue(scope, Issue(title="Other"), "alice")
        store.add_dependency(scope, Dependency(other.id, root.id, DepType.BLOCKS), "alice")
        assert [n.issue.id for n in store.get_dependency_tree(scope, root.id)] == [root.id]

    def test_tree_with_cycle(self, store: SQLiteStorage, scope: Scope):
        root = store.create_issue(scope, Issue(title="Root"), "alice")
        child = store.create_issue(scope, Issue(title="Child"), "alice", parent_id=root.id)
        store.add_dependency(scope, Dependency(root.id, child.id, DepType.PARENT_CHILD), "alice")
        nodes = store.get_dependency_tree(scope, root.id)
        assert [n.issue.id for n in nodes] == [root.id, child.id]

    def test_tree_truncated(self, store: SQLiteStorage, scope: Scope):
        root = store.create_issue(scope, Issue(title="Root"), "alice")
        child = store.create_issue(scope, Issue(title="Child"), "alice", parent_id=root.id)
        store.create_issue(scope, Issue(title="Grandchild"), "alice", parent_id=child.id)
        nodes = store.get_dependency_tree(scope, root.id, max_depth=1)
        assert [n.issue.id for n in nodes] == [root.id, child.id]
        assert nodes[1].truncated

    def test_tree_missing_root(self, store: SQLiteStorage, scope: Scope):
        with pytest.raises(NotFoundError):
            store.get_dependency_tree(scope, "test-404")

    def test_tree_negative_depth(self, store: SQLiteStorage, scope: Scope):
        root = store.create_issue(scope, Issue(title="Root"), "alice")
        with pytest.raises(ValidationError):
            store.get_dependency_tree(scope, root.id, max_depth=-1)
