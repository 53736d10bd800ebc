"""Translation of typed predicates into parameterized SQL.

All clauses reference the issues table through the alias ``i``. Values
always travel as bound parameters; only fixed SQL text comes from here.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from doit.errors import ValidationError
from doit.models import DepType, SortBy, Status, format_timestamp
from doit.predicates import (
    AssigneeIs, ClosedBefore, CompactionBelow, CreatedAfter, CreatedBefore,
    EphemeralIs, LabelsAll, LabelsAny, NotBlocked, NotDeferred, Overdue, OwnerIs,
    ParentIs, PinnedIs, Predicate, PriorityIs, ProjectIn, StatusIs, StatusNotIn,
    TenantIs, TextSearch, TypeIs, TypeNotIn, UpdatedAfter, UpdatedBefore,
)

Clause = tuple[str, list[Any]]


def _placeholders(n: int) -> str:
    return ",".join("?" * n)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _in_clause(column: str, values: tuple, negate: bool = False) -> Clause:
    if not values:
        # IN () matches nothing, NOT IN () matches everything
        return ("1=1", []) if negate else ("1=0", [])
    op = "NOT IN" if negate else "IN"
    return f"{column} {op} ({_placeholders(len(values))})", list(values)


def _text_search(p: TextSearch) -> Clause:
    pattern = f"%{_escape_like(p.text)}%"
    return ("(i.title LIKE ? ESCAPE '\\' OR i.description LIKE ? ESCAPE '\\')",
            [pattern, pattern])


def _labels_all(p: LabelsAll) -> Clause:
    clauses = []
    params: list[Any] = []
    for label in p.labels:
        clauses.append("EXISTS (SELECT 1 FROM labels l WHERE l.issue_id = i.id AND l.label = ?)")
        params.append(label)
    return " AND ".join(clauses) or "1=1", params


def _labels_any(p: LabelsAny) -> Clause:
    if not p.labels:
        return "1=0", []
    return (
        "EXISTS (SELECT 1 FROM labels l WHERE l.issue_id = i.id "
        f"AND l.label IN ({_placeholders(len(p.labels))}))",
        list(p.labels),
    )


def _project_in(p: ProjectIn) -> Clause:
    return _in_clause("i.project_id", p.project_ids)


def _not_blocked(p: NotBlocked) -> Clause:
    gates = DepType.READY_GATES
    return (
        "NOT EXISTS (SELECT 1 FROM dependencies d "
        "JOIN issues blocker ON blocker.id = d.depends_on_id "
        f"WHERE d.issue_id = i.id AND d.type IN ({_placeholders(len(gates))}) "
        "AND blocker.status != ?)",
        [*gates, Status.CLOSED],
    )


_COMPILERS: dict[type, Callable[[Any], Clause]] = {
    StatusIs: lambda p: ("i.status = ?", [p.status]),
    StatusNotIn: lambda p: _in_clause("i.status", p.statuses, negate=True),
    PriorityIs: lambda p: ("i.priority = ?", [p.priority]),
    TypeIs: lambda p: ("i.issue_type = ?", [p.issue_type]),
    TypeNotIn: lambda p: _in_clause("i.issue_type", p.issue_types, negate=True),
    AssigneeIs: lambda p: ("i.assignee = ?", [p.assignee]),
    OwnerIs: lambda p: ("i.owner = ?", [p.owner]),
    EphemeralIs: lambda p: ("i.ephemeral = ?", [int(p.ephemeral)]),
    PinnedIs: lambda p: ("i.pinned = ?", [int(p.pinned)]),
    ParentIs: lambda p: (
        "EXISTS (SELECT 1 FROM dependencies pc WHERE pc.issue_id = i.id "
        "AND pc.depends_on_id = ? AND pc.type = ?)",
        [p.parent_id, DepType.PARENT_CHILD],
    ),
    TextSearch: _text_search,
    LabelsAll: _labels_all,
    LabelsAny: _labels_any,
    CreatedAfter: lambda p: ("i.created_at > ?", [format_timestamp(p.at)]),
    CreatedBefore: lambda p: ("i.created_at < ?", [format_timestamp(p.at)]),
    UpdatedAfter: lambda p: ("i.updated_at > ?", [format_timestamp(p.at)]),
    UpdatedBefore: lambda p: ("i.updated_at < ?", [format_timestamp(p.at)]),
    Overdue: lambda p: (
        "(i.due_at IS NOT NULL AND i.due_at < ? AND i.status != ?)",
        [format_timestamp(p.now), Status.CLOSED],
    ),
    TenantIs: lambda p: ("i.tenant_id = ?", [p.tenant_id]),
    ProjectIn: _project_in,
    NotBlocked: _not_blocked,
    CompactionBelow: lambda p: ("i.compaction_level < ?", [p.level]),
    ClosedBefore: lambda p: (
        "(i.closed_at IS NOT NULL AND i.closed_at < ?)", [format_timestamp(p.at)],
    ),
    NotDeferred: lambda p: (
        "(i.defer_until IS NULL OR i.defer_until <= ?)",
        [format_timestamp(p.now)],
    ),
}


def compile_predicate(p: Predicate) -> Clause:
    compiler = _COMPILERS.get(type(p))
    if compiler is None:
        raise ValidationError(f"unsupported filter: {type(p).__name__}")
    return compiler(p)


def build_where(predicates: Iterable[Predicate]) -> Clause:
    """AND together the clauses for ``predicates``."""
    clauses = []
    params: list[Any] = []
    for p in predicates:
        sql, values = compile_predicate(p)
        clauses.append(sql)
        params.extend(values)
    if not clauses:
        return "1=1", params
    return " AND ".join(clauses), params


_ORDERINGS = {
    SortBy.PRIORITY: "i.priority ASC, i.created_at ASC, i.id ASC",
    SortBy.OLDEST: "i.created_at ASC, i.id ASC",
    SortBy.UPDATED: "i.updated_at DESC, i.id ASC",
    SortBy.HYBRID: "i.priority ASC, i.updated_at DESC, i.id ASC",
    SortBy.CLOSED: "i.closed_at ASC, i.id ASC",
}


def order_by(sort: str) -> str:
    try:
        return _ORDERINGS[sort]
    except KeyError:
        raise ValidationError(f"unknown sort order: {sort}") from None


def paginate(limit: int, offset: int) -> Clause:
    if limit < 0 or offset < 0:
        raise ValidationError("limit and offset cannot be negative")
    if limit == 0 and offset == 0:
        return "", []
    # SQLite requires a LIMIT before OFFSET; -1 means unbounded
    return " LIMIT ? OFFSET ?", [limit if limit > 0 else -1, offset]


def select_issues(predicates: Iterable[Predicate], sort: str,
                  limit: int = 0, offset: int = 0) -> Clause:
    """Full SELECT statement over issues for the given predicates."""
    where, params = build_where(predicates)
    sql = f"SELECT i.* FROM issues i WHERE {where} ORDER BY {order_by(sort)}"
    page_sql, page_params = paginate(limit, offset)
    return sql + page_sql, params + page_params
