"""SQLite storage implementation for doit."""

from __future__ import annotations

import logging
import re
import sqlite3
from typing import Any

from doit.errors import NotFoundError, ResourceExhaustedError, ValidationError
from doit.hierarchy import DEFAULT_MAX_DEPTH, walk_tree
from doit.id_gen import (
    DEFAULT_PREFIX, MAX_ATTEMPTS, candidate_id, generate_child_id,
    hash_length_for, should_lengthen,
)
from doit.models import (
    APIKey, Comment, CompactionSnapshot, Dependency, DepType, Direction, Event,
    EventType, Issue, IssueFilter, IssueType, Lesson, LessonFilter, LessonStatus,
    Project, SortBy, Status, Tenant, TreeNode, content_hash, format_timestamp,
    now_utc, parse_timestamp,
)
from doit.predicates import NotBlocked, NotDeferred, StatusIs
from doit.scope import Scope
from doit.storage.interface import Storage
from doit.storage.pool import DEFAULT_POOL_SIZE, DEFAULT_TIMEOUT, ConnectionPool
from doit.storage.query import build_where, select_issues
from doit.storage.schema import apply_migrations
from doit.utils import parse_time_spec

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")

# Fields update_issue accepts; anything else is rejected
_UPDATABLE = {
    "title", "description", "design", "acceptance_criteria", "notes",
    "status", "priority", "issue_type", "assignee", "owner", "due_at",
    "defer_until", "close_reason", "external_ref", "pinned", "ephemeral",
}
_TIME_FIELDS = {"due_at", "defer_until"}
_BOOL_FIELDS = {"pinned", "ephemeral"}

LESSON_PREFIX = "lsn"
DEFAULT_LESSON_LIMIT = 50


def _validate_slug(slug: str) -> None:
    if not _SLUG_RE.match(slug or ""):
        raise ValidationError(
            f"invalid slug {slug!r}: use lowercase letters, digits and hyphens"
        )


def _row_to_issue(row: sqlite3.Row) -> Issue:
    """Convert a database row to an Issue object."""
    issue = Issue()
    issue.id = row["id"]
    issue.tenant_id = row["tenant_id"]
    issue.project_id = row["project_id"]
    issue.content_hash = row["content_hash"] or ""
    issue.title = row["title"]
    issue.description = row["description"] or ""
    issue.design = row["design"] or ""
    issue.acceptance_criteria = row["acceptance_criteria"] or ""
    issue.notes = row["notes"] or ""
    issue.status = row["status"]
    issue.priority = row["priority"]
    issue.issue_type = row["issue_type"]
    issue.assignee = row["assignee"] or ""
    issue.owner = row["owner"] or ""
    issue.created_by = row["created_by"] or ""
    issue.created_at = parse_timestamp(row["created_at"]) or now_utc()
    issue.updated_at = parse_timestamp(row["updated_at"]) or now_utc()
    issue.closed_at = parse_timestamp(row["closed_at"])
    issue.close_reason = row["close_reason"] or ""
    issue.due_at = parse_timestamp(row["due_at"])
    issue.defer_until = parse_timestamp(row["defer_until"])
    issue.external_ref = row["external_ref"] or ""
    issue.compaction_level = row["compaction_level"] or 0
    issue.compacted_at = parse_timestamp(row["compacted_at"])
    issue.original_size = row["original_size"] or 0
    issue.ephemeral = bool(row["ephemeral"])
    issue.pinned = bool(row["pinned"])
    return issue


def _row_to_dependency(row: sqlite3.Row) -> Dependency:
    return Dependency(
        issue_id=row["issue_id"],
        depends_on_id=row["depends_on_id"],
        type=row["type"],
        created_at=parse_timestamp(row["created_at"]) or now_utc(),
        created_by=row["created_by"] or "",
        thread_id=row["thread_id"] or "",
    )


def _row_to_tenant(row: sqlite3.Row) -> Tenant:
    return Tenant(id=row["id"], name=row["name"], slug=row["slug"],
                  created_at=parse_timestamp(row["created_at"]) or now_utc())


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(id=row["id"], tenant_id=row["tenant_id"], name=row["name"],
                   slug=row["slug"],
                   created_at=parse_timestamp(row["created_at"]) or now_utc())


def _row_to_api_key(row: sqlite3.Row) -> APIKey:
    return APIKey(id=row["id"], tenant_id=row["tenant_id"], prefix=row["prefix"],
                  label=row["label"] or "",
                  created_at=parse_timestamp(row["created_at"]) or now_utc(),
                  revoked_at=parse_timestamp(row["revoked_at"]))


def _row_to_lesson(row: sqlite3.Row) -> Lesson:
    return Lesson(
        id=row["id"],
        tenant_id=row["tenant_id"],
        project_id=row["project_id"],
        issue_id=row["issue_id"],
        title=row["title"],
        mistake=row["mistake"],
        correction=row["correction"],
        expert=row["expert"] or "",
        severity=row["severity"],
        status=row["status"],
        created_at=parse_timestamp(row["created_at"]) or now_utc(),
        created_by=row["created_by"] or "",
        resolved_at=parse_timestamp(row["resolved_at"]),
        resolved_by=row["resolved_by"] or "",
    )


def _lesson_scope(scope: Scope) -> tuple[str, list[Any]]:
    """Tenant and project allow-list clause for the ``lessons l`` alias."""
    clauses = ["l.tenant_id = ?"]
    params: list[Any] = [scope.require_tenant()]
    if scope.project_ids:
        clauses.append(f"l.project_id IN ({','.join('?' * len(scope.project_ids))})")
        params.extend(scope.project_ids)
    return " AND ".join(clauses), params


class SQLiteStorage(Storage):
    """SQLite-based storage backend.

    Every issue-scoped method takes a ``Scope`` first and only ever sees
    rows belonging to that tenant (and project allow-list, when set).
    """

    def __init__(self, db_path: str, query_timeout: float = DEFAULT_TIMEOUT,
                 pool_size: int = DEFAULT_POOL_SIZE, id_prefix: str = DEFAULT_PREFIX):
        self._db_path = db_path
        self.id_prefix = id_prefix or DEFAULT_PREFIX
        self._pool = ConnectionPool(db_path, size=pool_size, timeout=query_timeout)
        with self._pool.connection() as conn:
            version = apply_migrations(conn)
        logger.debug("opened %s at schema version %d", db_path, version)

    def path(self) -> str:
        return self._db_path

    def close(self) -> None:
        self._pool.close()

    # --- Helpers ---

    def _scoped_issue_row(self, conn: sqlite3.Connection, scope: Scope,
                          issue_id: str) -> sqlite3.Row:
        where, params = build_where(scope.predicates())
        row = conn.execute(
            f"SELECT i.* FROM issues i WHERE i.id = ? AND {where}",
            [issue_id, *params]
        ).fetchone()
        if row is None:
            raise NotFoundError(f"issue {issue_id} not found")
        return row

    def _record_event(self, conn: sqlite3.Connection, issue_id: str,
                      event_type: str, actor: str,
                      old_value: str | None = None, new_value: str | None = None,
                      comment: str | None = None) -> None:
        """Record an audit trail event."""
        conn.execute(
            "INSERT INTO events (issue_id, event_type, actor, old_value, new_value, comment, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (issue_id, event_type, actor, old_value, new_value, comment,
             format_timestamp(now_utc()))
        )

    def _id_taken(self, conn: sqlite3.Connection, table: str, candidate: str) -> bool:
        if conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (candidate,)).fetchone():
            return True
        if table != "issues":
            return False
        # A deleted parent's ID stays retired while its children may live on
        return conn.execute(
            "SELECT 1 FROM child_counters WHERE parent_id = ?", (candidate,)
        ).fetchone() is not None

    def _generate_id(self, conn: sqlite3.Connection, prefix: str,
                     table: str = "issues") -> str:
        count = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        length = hash_length_for(count)
        for attempt in range(MAX_ATTEMPTS):
            candidate = candidate_id(prefix, length, attempt)
            if not self._id_taken(conn, table, candidate):
                return candidate
            logger.debug("id collision on %s (attempt %d)", candidate, attempt + 1)
            if should_lengthen(attempt, length):
                length += 1
        raise ResourceExhaustedError(
            f"failed to generate unique ID after {MAX_ATTEMPTS} attempts"
        )

    def _allocate_child(self, conn: sqlite3.Connection, parent_id: str) -> int:
        row = conn.execute(
            "INSERT INTO child_counters (parent_id, last_child) VALUES (?, 1) "
            "ON CONFLICT (parent_id) DO UPDATE SET last_child = child_counters.last_child + 1 "
            "RETURNING last_child",
            (parent_id,)
        ).fetchone()
        return row[0]

    def _require_project(self, conn: sqlite3.Connection, tenant_id: int,
                         project_id: int) -> None:
        row = conn.execute(
            "SELECT 1 FROM projects WHERE id = ? AND tenant_id = ?",
            (project_id, tenant_id)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"project {project_id} not found")

    def _tenant_id_for_slug(self, conn: sqlite3.Connection, slug: str) -> int:
        row = conn.execute("SELECT id FROM tenants WHERE slug = ?", (slug,)).fetchone()
        if row is None:
            raise NotFoundError(f"tenant {slug} not found")
        return row["id"]

    # --- Identifier allocation ---

    def generate_id(self, scope: Scope, prefix: str | None = None) -> str:
        scope.require_tenant()
        with self._pool.connection() as conn:
            return self._generate_id(conn, prefix or self.id_prefix)

    def next_child_id(self, scope: Scope, parent_id: str) -> str:
        with self._pool.transaction() as conn:
            self._scoped_issue_row(conn, scope, parent_id)
            n = self._allocate_child(conn, parent_id)
        return generate_child_id(parent_id, n)

    # --- Issue CRUD ---

    def create_issue(self, scope: Scope, issue: Issue, actor: str,
                     parent_id: str | None = None) -> Issue:
        tenant_id = scope.require_tenant()
        issue.issue_type = IssueType.normalize(issue.issue_type)
        err = issue.validate()
        if err:
            raise ValidationError(err)
        if not scope.allows_project(issue.project_id):
            raise ValidationError(f"project {issue.project_id} is outside the caller's scope")

        now = now_utc()
        if issue.status == Status.CLOSED:
            issue.closed_at = issue.closed_at or now
        else:
            issue.closed_at = None
        issue.tenant_id = tenant_id
        issue.created_by = issue.created_by or actor
        issue.content_hash = issue.compute_content_hash()

        with self._pool.transaction() as conn:
            if issue.project_id is not None:
                self._require_project(conn, tenant_id, issue.project_id)
            if parent_id:
                self._scoped_issue_row(conn, scope, parent_id)

            if not issue.id:
                if parent_id:
                    issue.id = generate_child_id(parent_id, self._allocate_child(conn, parent_id))
                else:
                    issue.id = self._generate_id(conn, self.id_prefix)
            elif conn.execute("SELECT 1 FROM issues WHERE id = ?", (issue.id,)).fetchone():
                raise ValidationError(f"issue {issue.id} already exists")

            conn.execute(
                """INSERT INTO issues (
                    id, tenant_id, project_id, content_hash, title, description,
                    design, acceptance_criteria, notes, status, priority,
                    issue_type, assignee, owner, created_by, created_at,
                    updated_at, closed_at, close_reason, due_at, defer_until,
                    external_ref, compaction_level, compacted_at, original_size,
                    ephemeral, pinned
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                          ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    issue.id, tenant_id, issue.project_id, issue.content_hash,
                    issue.title, issue.description, issue.design,
                    issue.acceptance_criteria, issue.notes, issue.status,
                    issue.priority, issue.issue_type, issue.assignee,
                    issue.owner, issue.created_by,
                    format_timestamp(issue.created_at),
                    format_timestamp(issue.updated_at),
                    format_timestamp(issue.closed_at), issue.close_reason,
                    format_timestamp(issue.due_at),
                    format_timestamp(issue.defer_until), issue.external_ref,
                    issue.compaction_level, format_timestamp(issue.compacted_at),
                    issue.original_size, int(issue.ephemeral), int(issue.pinned),
                )
            )

            if parent_id:
                conn.execute(
                    "INSERT INTO dependencies (issue_id, depends_on_id, type, created_at, created_by) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (issue.id, parent_id, DepType.PARENT_CHILD,
                     format_timestamp(now), actor)
                )

            for label in issue.labels:
                conn.execute(
                    "INSERT INTO labels (issue_id, label) VALUES (?, ?) "
                    "ON CONFLICT (issue_id, label) DO NOTHING",
                    (issue.id, label)
                )

            self._record_event(conn, issue.id, EventType.CREATED, actor,
                               new_value=issue.title)

        logger.debug("created issue %s in tenant %d", issue.id, tenant_id)
        return self.get_issue(scope, issue.id)

    def get_issue(self, scope: Scope, issue_id: str) -> Issue:
        with self._pool.connection() as conn:
            issue = _row_to_issue(self._scoped_issue_row(conn, scope, issue_id))
            issue.labels = [
                row["label"] for row in conn.execute(
                    "SELECT label FROM labels WHERE issue_id = ? ORDER BY label",
                    (issue_id,)
                ).fetchall()
            ]
            issue.dependencies = [
                _row_to_dependency(row) for row in conn.execute(
                    "SELECT * FROM dependencies WHERE issue_id = ? "
                    "ORDER BY created_at, depends_on_id",
                    (issue_id,)
                ).fetchall()
            ]
        for dep in issue.dependencies:
            if dep.type == DepType.PARENT_CHILD:
                issue.parent_id = dep.depends_on_id
                break
        return issue

    def update_issue(self, scope: Scope, issue_id: str, updates: dict[str, Any],
                     actor: str) -> Issue:
        unknown = sorted(set(updates) - _UPDATABLE)
        if unknown:
            raise ValidationError(f"unknown update field(s): {', '.join(unknown)}")
        changes = {k: v for k, v in updates.items() if v is not None}
        now = now_utc()

        with self._pool.transaction() as conn:
            current = _row_to_issue(self._scoped_issue_row(conn, scope, issue_id))
            old_status = current.status

            set_clauses = []
            params: list[Any] = []
            for key, value in changes.items():
                if key in _TIME_FIELDS:
                    try:
                        value = parse_time_spec(value, now)
                    except ValueError as e:
                        raise ValidationError(f"{key}: {e}") from None
                    setattr(current, key, value)
                    value = format_timestamp(value)
                elif key in _BOOL_FIELDS:
                    value = bool(value)
                    setattr(current, key, value)
                    value = int(value)
                elif key == "priority":
                    try:
                        value = int(value)
                    except (TypeError, ValueError):
                        raise ValidationError(f"priority must be an integer (got {value!r})") from None
                    setattr(current, key, value)
                else:
                    setattr(current, key, value)
                set_clauses.append(f"{key} = ?")
                params.append(value)

            err = current.validate()
            if err:
                raise ValidationError(err)

            if changes.get("status") == Status.CLOSED and old_status != Status.CLOSED:
                set_clauses.append("closed_at = ?")
                params.append(format_timestamp(now))

            set_clauses.append("updated_at = ?")
            params.append(format_timestamp(now))
            set_clauses.append("content_hash = ?")
            params.append(current.compute_content_hash())

            params.append(issue_id)
            conn.execute(f"UPDATE issues SET {', '.join(set_clauses)} WHERE id = ?", params)

            if "status" in changes:
                self._record_event(conn, issue_id, EventType.STATUS_CHANGED, actor,
                                   old_status, changes["status"])
            else:
                self._record_event(conn, issue_id, EventType.UPDATED, actor,
                                   comment=", ".join(sorted(changes)) or None)

        return self.get_issue(scope, issue_id)

    def close_issue(self, scope: Scope, issue_id: str, reason: str, actor: str) -> Issue:
        now = format_timestamp(now_utc())
        with self._pool.transaction() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            conn.execute(
                "UPDATE issues SET status = ?, closed_at = ?, close_reason = ?, updated_at = ? WHERE id = ?",
                (Status.CLOSED, now, reason, now, issue_id)
            )
            self._record_event(conn, issue_id, EventType.CLOSED, actor, comment=reason or None)
        return self.get_issue(scope, issue_id)

    def reopen_issue(self, scope: Scope, issue_id: str, actor: str) -> Issue:
        now = format_timestamp(now_utc())
        with self._pool.transaction() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            conn.execute(
                "UPDATE issues SET status = ?, closed_at = NULL, close_reason = '', updated_at = ? WHERE id = ?",
                (Status.OPEN, now, issue_id)
            )
            self._record_event(conn, issue_id, EventType.REOPENED, actor)
        return self.get_issue(scope, issue_id)

    def delete_issue(self, scope: Scope, issue_id: str) -> None:
        with self._pool.transaction() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            edges = conn.execute(
                "DELETE FROM dependencies WHERE issue_id = ? OR depends_on_id = ?",
                (issue_id, issue_id)
            ).rowcount
            for table in ("labels", "comments", "events", "compaction_snapshots"):
                conn.execute(f"DELETE FROM {table} WHERE issue_id = ?", (issue_id,))
            # Lessons outlive the issue they came from
            conn.execute("UPDATE lessons SET issue_id = NULL WHERE issue_id = ?", (issue_id,))
            conn.execute("DELETE FROM issues WHERE id = ?", (issue_id,))
        logger.info("deleted issue %s and %d dependency edge(s)", issue_id, edges)

    def resolve_id(self, scope: Scope, partial: str) -> str | None:
        """Resolve a partial ID to a full ID within the scope."""
        where, params = build_where(scope.predicates())
        with self._pool.connection() as conn:
            row = conn.execute(
                f"SELECT i.id FROM issues i WHERE i.id = ? AND {where}",
                [partial, *params]
            ).fetchone()
            if row:
                return row["id"]
            rows = conn.execute(
                f"SELECT i.id FROM issues i WHERE i.id LIKE ? ESCAPE '\\' AND {where} LIMIT 2",
                [partial.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%",
                 *params]
            ).fetchall()
        if len(rows) == 1:
            return rows[0]["id"]
        return None

    # --- Query ---

    def list_issues(self, scope: Scope, filter: IssueFilter | None = None) -> list[Issue]:
        filter = filter or IssueFilter()
        filter.validate()
        sql, params = select_issues(
            scope.predicates() + filter.predicates(),
            filter.sort, filter.limit, filter.offset,
        )
        with self._pool.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_issue(row) for row in rows]

    def list_ready(self, scope: Scope, filter: IssueFilter | None = None) -> list[Issue]:
        """Open issues with no unclosed blocker and no future deferral."""
        filter = filter or IssueFilter()
        filter.validate()
        now = now_utc()
        preds = scope.predicates() + [
            StatusIs(Status.OPEN), NotBlocked(), NotDeferred(now),
        ] + filter.predicates(now)
        # Readiness always ranks by urgency, then age
        sql, params = select_issues(preds, SortBy.PRIORITY, filter.limit, filter.offset)
        with self._pool.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_issue(row) for row in rows]

    def count_issues_by_status(self, scope: Scope) -> dict[str, int]:
        where, params = build_where(scope.predicates())
        with self._pool.connection() as conn:
            rows = conn.execute(
                f"SELECT i.status, COUNT(*) AS cnt FROM issues i WHERE {where} GROUP BY i.status",
                params
            ).fetchall()
        return {row["status"]: row["cnt"] for row in rows}

    # --- Dependencies ---

    def add_dependency(self, scope: Scope, dep: Dependency, actor: str) -> Dependency:
        if not DepType.is_valid(dep.type):
            raise ValidationError(f"invalid dependency type: {dep.type}")
        if dep.issue_id == dep.depends_on_id:
            raise ValidationError(f"issue {dep.issue_id} cannot depend on itself")

        with self._pool.transaction() as conn:
            self._scoped_issue_row(conn, scope, dep.issue_id)
            self._scoped_issue_row(conn, scope, dep.depends_on_id)
            conn.execute(
                "INSERT INTO dependencies (issue_id, depends_on_id, type, created_at, created_by, thread_id) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (issue_id, depends_on_id) DO UPDATE SET "
                "type = excluded.type, thread_id = excluded.thread_id",
                (dep.issue_id, dep.depends_on_id, dep.type,
                 format_timestamp(dep.created_at), dep.created_by or actor,
                 dep.thread_id)
            )
            self._record_event(conn, dep.issue_id, EventType.DEPENDENCY_ADDED, actor,
                               new_value=dep.depends_on_id, comment=dep.type)
            row = conn.execute(
                "SELECT * FROM dependencies WHERE issue_id = ? AND depends_on_id = ?",
                (dep.issue_id, dep.depends_on_id)
            ).fetchone()
        return _row_to_dependency(row)

    def remove_dependency(self, scope: Scope, issue_id: str, depends_on_id: str,
                          actor: str) -> None:
        where, params = build_where(scope.predicates())
        with self._pool.transaction() as conn:
            removed = conn.execute(
                "DELETE FROM dependencies WHERE issue_id = ? AND depends_on_id = ? "
                f"AND issue_id IN (SELECT i.id FROM issues i WHERE {where})",
                [issue_id, depends_on_id, *params]
            ).rowcount
            if removed:
                self._record_event(conn, issue_id, EventType.DEPENDENCY_REMOVED, actor,
                                   old_value=depends_on_id)

    def list_dependencies(self, scope: Scope, issue_id: str,
                          direction: str = Direction.BOTH) -> list[Dependency]:
        if not Direction.is_valid(direction):
            raise ValidationError(f"invalid direction: {direction}")
        if direction == Direction.UPSTREAM:
            cond, params = "issue_id = ?", [issue_id]
        elif direction == Direction.DOWNSTREAM:
            cond, params = "depends_on_id = ?", [issue_id]
        else:
            cond, params = "(issue_id = ? OR depends_on_id = ?)", [issue_id, issue_id]

        with self._pool.connection() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            rows = conn.execute(
                f"SELECT * FROM dependencies WHERE {cond} "
                "ORDER BY created_at, issue_id, depends_on_id",
                params
            ).fetchall()
        return [_row_to_dependency(row) for row in rows]

    def get_dependency_tree(self, scope: Scope, root_id: str,
                            max_depth: int = DEFAULT_MAX_DEPTH) -> list[TreeNode]:
        if max_depth < 0:
            raise ValidationError(f"max_depth cannot be negative (got {max_depth})")
        where, scope_params = build_where(scope.predicates())

        with self._pool.connection() as conn:
            root = _row_to_issue(self._scoped_issue_row(conn, scope, root_id))

            def children_of(parent_id: str) -> list[Issue]:
                rows = conn.execute(
                    "SELECT i.* FROM issues i JOIN dependencies d ON d.issue_id = i.id "
                    f"WHERE d.depends_on_id = ? AND d.type = ? AND {where}",
                    [parent_id, DepType.PARENT_CHILD, *scope_params]
                ).fetchall()
                return [_row_to_issue(row) for row in rows]

            return walk_tree(root, children_of, max_depth)

    # --- Labels ---

    def add_label(self, scope: Scope, issue_id: str, label: str, actor: str) -> None:
        label = label.strip()
        if not label:
            raise ValidationError("label cannot be empty")
        with self._pool.transaction() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            added = conn.execute(
                "INSERT INTO labels (issue_id, label) VALUES (?, ?) "
                "ON CONFLICT (issue_id, label) DO NOTHING",
                (issue_id, label)
            ).rowcount
            if added:
                self._record_event(conn, issue_id, EventType.LABEL_ADDED, actor, new_value=label)

    def remove_label(self, scope: Scope, issue_id: str, label: str, actor: str) -> None:
        with self._pool.transaction() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            removed = conn.execute(
                "DELETE FROM labels WHERE issue_id = ? AND label = ?",
                (issue_id, label)
            ).rowcount
            if removed:
                self._record_event(conn, issue_id, EventType.LABEL_REMOVED, actor, old_value=label)

    def get_labels(self, scope: Scope, issue_id: str) -> list[str]:
        with self._pool.connection() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            rows = conn.execute(
                "SELECT label FROM labels WHERE issue_id = ? ORDER BY label",
                (issue_id,)
            ).fetchall()
        return [row["label"] for row in rows]

    # --- Comments ---

    def add_comment(self, scope: Scope, issue_id: str, author: str, text: str) -> Comment:
        if not text.strip():
            raise ValidationError("comment text cannot be empty")
        now = now_utc()
        with self._pool.transaction() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            cur = conn.execute(
                "INSERT INTO comments (issue_id, author, text, created_at) VALUES (?, ?, ?, ?)",
                (issue_id, author, text, format_timestamp(now))
            )
            self._record_event(conn, issue_id, EventType.COMMENTED, author, new_value=text)
        return Comment(id=cur.lastrowid or 0, issue_id=issue_id, author=author,
                       text=text, created_at=now)

    def get_comments(self, scope: Scope, issue_id: str) -> list[Comment]:
        with self._pool.connection() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            rows = conn.execute(
                "SELECT * FROM comments WHERE issue_id = ? ORDER BY created_at ASC, id ASC",
                (issue_id,)
            ).fetchall()
        return [
            Comment(
                id=row["id"],
                issue_id=row["issue_id"],
                author=row["author"],
                text=row["text"],
                created_at=parse_timestamp(row["created_at"]) or now_utc(),
            )
            for row in rows
        ]

    # --- Events ---

    def get_events(self, scope: Scope, issue_id: str, limit: int = 0) -> list[Event]:
        if limit < 0:
            raise ValidationError(f"limit cannot be negative (got {limit})")
        sql = "SELECT * FROM events WHERE issue_id = ? ORDER BY created_at DESC, id DESC"
        params: list[Any] = [issue_id]
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        with self._pool.connection() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            rows = conn.execute(sql, params).fetchall()
        return [
            Event(
                id=row["id"],
                issue_id=row["issue_id"],
                event_type=row["event_type"],
                actor=row["actor"],
                old_value=row["old_value"],
                new_value=row["new_value"],
                comment=row["comment"],
                created_at=parse_timestamp(row["created_at"]) or now_utc(),
            )
            for row in rows
        ]

    # --- Compaction ---

    def compact_issue(self, scope: Scope, issue_id: str, level: int, summary: str,
                      actor: str) -> bool:
        """Move an issue to compaction ``level`` in one transaction.

        Snapshots the current content, replaces it with ``summary`` and
        records the transition. Returns False without writing anything when
        the issue is already at or beyond ``level``.
        """
        if level not in (1, 2):
            raise ValidationError(f"invalid compaction level: {level}")
        now = now_utc()
        with self._pool.transaction() as conn:
            current = _row_to_issue(self._scoped_issue_row(conn, scope, issue_id))
            if current.compaction_level >= level:
                return False

            conn.execute(
                "INSERT INTO compaction_snapshots (issue_id, level, title, description, "
                "design, acceptance_criteria, notes, summary, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (issue_id, level, current.title, current.description, current.design,
                 current.acceptance_criteria, current.notes, summary,
                 format_timestamp(now))
            )

            acceptance = "" if level >= 2 else current.acceptance_criteria
            new_hash = content_hash(current.title, summary, "", acceptance, "")
            conn.execute(
                "UPDATE issues SET description = ?, design = '', notes = '', "
                "acceptance_criteria = ?, compaction_level = ?, compacted_at = ?, "
                "original_size = CASE WHEN original_size = 0 THEN ? ELSE original_size END, "
                "content_hash = ? "
                "WHERE id = ? AND compaction_level < ?",
                (summary, acceptance, level, format_timestamp(now),
                 current.content_size(), new_hash, issue_id, level)
            )
            self._record_event(conn, issue_id, EventType.COMPACTED, actor,
                               old_value=str(current.compaction_level),
                               new_value=str(level))
        return True

    def get_compaction_snapshots(self, scope: Scope, issue_id: str) -> list[CompactionSnapshot]:
        with self._pool.connection() as conn:
            self._scoped_issue_row(conn, scope, issue_id)
            rows = conn.execute(
                "SELECT * FROM compaction_snapshots WHERE issue_id = ? ORDER BY level",
                (issue_id,)
            ).fetchall()
        return [
            CompactionSnapshot(
                id=row["id"],
                issue_id=row["issue_id"],
                level=row["level"],
                title=row["title"],
                description=row["description"],
                design=row["design"],
                acceptance_criteria=row["acceptance_criteria"],
                notes=row["notes"],
                summary=row["summary"],
                created_at=parse_timestamp(row["created_at"]) or now_utc(),
            )
            for row in rows
        ]

    # --- Tenants ---

    def create_tenant(self, name: str, slug: str) -> Tenant:
        _validate_slug(slug)
        if not name.strip():
            raise ValidationError("tenant name cannot be empty")
        now = format_timestamp(now_utc())
        with self._pool.transaction() as conn:
            if conn.execute("SELECT 1 FROM tenants WHERE slug = ?", (slug,)).fetchone():
                raise ValidationError(f"tenant {slug} already exists")
            cur = conn.execute(
                "INSERT INTO tenants (name, slug, created_at) VALUES (?, ?, ?)",
                (name, slug, now)
            )
            row = conn.execute("SELECT * FROM tenants WHERE id = ?", (cur.lastrowid,)).fetchone()
        logger.info("created tenant %s", slug)
        return _row_to_tenant(row)

    def get_tenant_by_slug(self, slug: str) -> Tenant:
        with self._pool.connection() as conn:
            row = conn.execute("SELECT * FROM tenants WHERE slug = ?", (slug,)).fetchone()
        if row is None:
            raise NotFoundError(f"tenant {slug} not found")
        return _row_to_tenant(row)

    def list_tenants(self) -> list[Tenant]:
        with self._pool.connection() as conn:
            rows = conn.execute("SELECT * FROM tenants ORDER BY slug").fetchall()
        return [_row_to_tenant(row) for row in rows]

    # --- API keys ---

    def create_api_key(self, tenant_slug: str, label: str, key_hash: str,
                       prefix: str) -> APIKey:
        if not key_hash or not prefix:
            raise ValidationError("key hash and prefix are required")
        now = format_timestamp(now_utc())
        with self._pool.transaction() as conn:
            tenant_id = self._tenant_id_for_slug(conn, tenant_slug)
            if conn.execute("SELECT 1 FROM api_keys WHERE prefix = ?", (prefix,)).fetchone():
                raise ValidationError(f"api key prefix {prefix} already in use")
            cur = conn.execute(
                "INSERT INTO api_keys (tenant_id, key_hash, prefix, label, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (tenant_id, key_hash, prefix, label, now)
            )
            row = conn.execute("SELECT * FROM api_keys WHERE id = ?", (cur.lastrowid,)).fetchone()
        logger.info("created api key %s for tenant %s", prefix, tenant_slug)
        return _row_to_api_key(row)

    def resolve_api_key(self, key_hash: str) -> int:
        with self._pool.connection() as conn:
            row = conn.execute(
                "SELECT tenant_id FROM api_keys WHERE key_hash = ? AND revoked_at IS NULL",
                (key_hash,)
            ).fetchone()
        if row is None:
            raise NotFoundError("invalid or revoked API key")
        return row["tenant_id"]

    def revoke_api_key(self, prefix: str) -> None:
        with self._pool.transaction() as conn:
            revoked = conn.execute(
                "UPDATE api_keys SET revoked_at = ? WHERE prefix = ? AND revoked_at IS NULL",
                (format_timestamp(now_utc()), prefix)
            ).rowcount
        if not revoked:
            raise NotFoundError(f"api key {prefix} not found or already revoked")
        logger.info("revoked api key %s", prefix)

    def list_api_keys(self, tenant_slug: str) -> list[APIKey]:
        with self._pool.connection() as conn:
            tenant_id = self._tenant_id_for_slug(conn, tenant_slug)
            rows = conn.execute(
                "SELECT * FROM api_keys WHERE tenant_id = ? ORDER BY created_at, id",
                (tenant_id,)
            ).fetchall()
        return [_row_to_api_key(row) for row in rows]

    # --- Projects ---

    def create_project(self, scope: Scope, name: str, slug: str) -> Project:
        tenant_id = scope.require_tenant()
        _validate_slug(slug)
        if not name.strip():
            raise ValidationError("project name cannot be empty")
        with self._pool.transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM projects WHERE tenant_id = ? AND slug = ?", (tenant_id, slug)
            ).fetchone():
                raise ValidationError(f"project {slug} already exists")
            cur = conn.execute(
                "INSERT INTO projects (tenant_id, name, slug, created_at) VALUES (?, ?, ?, ?)",
                (tenant_id, name, slug, format_timestamp(now_utc()))
            )
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (cur.lastrowid,)).fetchone()
        return _row_to_project(row)

    def get_project_by_slug(self, scope: Scope, slug: str) -> Project:
        tenant_id = scope.require_tenant()
        with self._pool.connection() as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE tenant_id = ? AND slug = ?", (tenant_id, slug)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"project {slug} not found")
        return _row_to_project(row)

    def list_projects(self, scope: Scope) -> list[Project]:
        tenant_id = scope.require_tenant()
        with self._pool.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM projects WHERE tenant_id = ? ORDER BY slug", (tenant_id,)
            ).fetchall()
        return [_row_to_project(row) for row in rows]

    def update_project(self, scope: Scope, slug: str, name: str | None = None,
                       new_slug: str | None = None) -> Project:
        tenant_id = scope.require_tenant()
        if new_slug is not None:
            _validate_slug(new_slug)
        if name is not None and not name.strip():
            raise ValidationError("project name cannot be empty")
        with self._pool.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE tenant_id = ? AND slug = ?", (tenant_id, slug)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"project {slug} not found")
            if new_slug and new_slug != slug and conn.execute(
                "SELECT 1 FROM projects WHERE tenant_id = ? AND slug = ?", (tenant_id, new_slug)
            ).fetchone():
                raise ValidationError(f"project {new_slug} already exists")
            conn.execute(
                "UPDATE projects SET name = ?, slug = ? WHERE id = ?",
                (name if name is not None else row["name"],
                 new_slug if new_slug is not None else row["slug"], row["id"])
            )
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (row["id"],)).fetchone()
        return _row_to_project(row)

    # --- Lessons ---

    def _scoped_lesson_row(self, conn: sqlite3.Connection, scope: Scope,
                           lesson_id: str) -> sqlite3.Row:
        where, params = _lesson_scope(scope)
        row = conn.execute(
            f"SELECT l.* FROM lessons l WHERE l.id = ? AND {where}",
            [lesson_id, *params]
        ).fetchone()
        if row is None:
            raise NotFoundError(f"lesson {lesson_id} not found")
        return row

    def _with_components(self, conn: sqlite3.Connection,
                         rows: list[sqlite3.Row]) -> list[Lesson]:
        lessons = [_row_to_lesson(row) for row in rows]
        if not lessons:
            return lessons
        by_id = {lesson.id: lesson for lesson in lessons}
        placeholders = ",".join("?" * len(by_id))
        for row in conn.execute(
            f"SELECT lesson_id, component FROM lesson_components "
            f"WHERE lesson_id IN ({placeholders}) ORDER BY component",
            list(by_id)
        ).fetchall():
            by_id[row["lesson_id"]].components.append(row["component"])
        return lessons

    def record_lesson(self, scope: Scope, lesson: Lesson, actor: str) -> Lesson:
        tenant_id = scope.require_tenant()
        lesson.components = sorted({c.strip() for c in lesson.components if c.strip()})
        lesson.status = LessonStatus.OPEN
        err = lesson.validate()
        if err:
            raise ValidationError(err)
        if not scope.allows_project(lesson.project_id):
            raise ValidationError(f"project {lesson.project_id} is outside the caller's scope")

        with self._pool.transaction() as conn:
            if lesson.project_id is not None:
                self._require_project(conn, tenant_id, lesson.project_id)
            if lesson.issue_id:
                self._scoped_issue_row(conn, scope, lesson.issue_id)
            lesson.id = self._generate_id(conn, LESSON_PREFIX, table="lessons")
            conn.execute(
                """INSERT INTO lessons (
                    id, tenant_id, project_id, issue_id, title, mistake, correction,
                    expert, severity, status, created_at, created_by
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (lesson.id, tenant_id, lesson.project_id, lesson.issue_id or None,
                 lesson.title, lesson.mistake, lesson.correction, lesson.expert,
                 lesson.severity, lesson.status, format_timestamp(now_utc()),
                 lesson.created_by or actor)
            )
            conn.executemany(
                "INSERT INTO lesson_components (lesson_id, component) VALUES (?, ?)",
                [(lesson.id, c) for c in lesson.components]
            )
        logger.debug("recorded lesson %s in tenant %d", lesson.id, tenant_id)
        return self.get_lesson(scope, lesson.id)

    def get_lesson(self, scope: Scope, lesson_id: str) -> Lesson:
        with self._pool.connection() as conn:
            row = self._scoped_lesson_row(conn, scope, lesson_id)
            return self._with_components(conn, [row])[0]

    def list_lessons(self, scope: Scope, filter: LessonFilter | None = None) -> list[Lesson]:
        filter = filter or LessonFilter()
        filter.validate()
        where, params = _lesson_scope(scope)
        where_clauses = [where]

        if filter.project_id is not None:
            where_clauses.append("l.project_id = ?")
            params.append(filter.project_id)
        if filter.status is not None:
            where_clauses.append("l.status = ?")
            params.append(filter.status)
        if filter.expert is not None:
            where_clauses.append("l.expert = ?")
            params.append(filter.expert)
        if filter.severity is not None:
            where_clauses.append("l.severity = ?")
            params.append(filter.severity)
        if filter.component is not None:
            where_clauses.append(
                "EXISTS (SELECT 1 FROM lesson_components c "
                "WHERE c.lesson_id = l.id AND c.component = ?)"
            )
            params.append(filter.component)

        params.append(filter.limit or DEFAULT_LESSON_LIMIT)
        with self._pool.connection() as conn:
            rows = conn.execute(
                f"SELECT l.* FROM lessons l WHERE {' AND '.join(where_clauses)} "
                "ORDER BY l.severity ASC, l.created_at DESC, l.id ASC LIMIT ?",
                params
            ).fetchall()
            return self._with_components(conn, rows)

    def resolve_lesson(self, scope: Scope, lesson_id: str, actor: str) -> Lesson:
        with self._pool.transaction() as conn:
            self._scoped_lesson_row(conn, scope, lesson_id)
            conn.execute(
                "UPDATE lessons SET status = ?, resolved_at = ?, resolved_by = ? "
                "WHERE id = ? AND status != ?",
                (LessonStatus.RESOLVED, format_timestamp(now_utc()), actor,
                 lesson_id, LessonStatus.RESOLVED)
            )
        return self.get_lesson(scope, lesson_id)
