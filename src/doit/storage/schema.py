"""SQLite schema, expressed as an ordered list of versioned migrations.

Foreign keys deliberately carry no ON DELETE CASCADE: deleting an issue
removes its dependent rows explicitly inside one transaction. Child
counters are keyed by ID only and are never deleted.
"""

from __future__ import annotations

import logging
import sqlite3

from doit.models import format_timestamp, now_utc

logger = logging.getLogger(__name__)


MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    applied_at TEXT NOT NULL
)
"""

_V1 = [
    """CREATE TABLE tenants (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        created_at TEXT NOT NULL
    )""",
    """CREATE TABLE projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id INTEGER NOT NULL REFERENCES tenants(id),
        name TEXT NOT NULL,
        slug TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (tenant_id, slug)
    )""",
    """CREATE TABLE api_keys (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id INTEGER NOT NULL REFERENCES tenants(id),
        key_hash TEXT NOT NULL UNIQUE,
        prefix TEXT NOT NULL UNIQUE,
        label TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        revoked_at TEXT
    )""",
    """CREATE TABLE issues (
        id TEXT PRIMARY KEY,
        tenant_id INTEGER NOT NULL REFERENCES tenants(id),
        project_id INTEGER REFERENCES projects(id),
        content_hash TEXT NOT NULL DEFAULT '',
        title TEXT NOT NULL CHECK(length(title) <= 500),
        description TEXT NOT NULL DEFAULT '',
        design TEXT NOT NULL DEFAULT '',
        acceptance_criteria TEXT NOT NULL DEFAULT '',
        notes TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'open',
        priority INTEGER NOT NULL DEFAULT 2 CHECK(priority >= 0 AND priority <= 4),
        issue_type TEXT NOT NULL DEFAULT 'task',
        assignee TEXT NOT NULL DEFAULT '',
        owner TEXT NOT NULL DEFAULT '',
        created_by TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        closed_at TEXT,
        close_reason TEXT NOT NULL DEFAULT '',
        due_at TEXT,
        defer_until TEXT,
        external_ref TEXT NOT NULL DEFAULT '',
        compaction_level INTEGER NOT NULL DEFAULT 0
            CHECK(compaction_level >= 0 AND compaction_level <= 2),
        compacted_at TEXT,
        original_size INTEGER NOT NULL DEFAULT 0,
        ephemeral INTEGER NOT NULL DEFAULT 0,
        pinned INTEGER NOT NULL DEFAULT 0
    )""",
    "CREATE INDEX idx_issues_tenant_status ON issues(tenant_id, status)",
    "CREATE INDEX idx_issues_priority ON issues(priority, created_at)",
    "CREATE INDEX idx_issues_project ON issues(project_id)",
    """CREATE TABLE dependencies (
        issue_id TEXT NOT NULL REFERENCES issues(id),
        depends_on_id TEXT NOT NULL REFERENCES issues(id),
        type TEXT NOT NULL DEFAULT 'blocks',
        created_at TEXT NOT NULL,
        created_by TEXT NOT NULL DEFAULT '',
        thread_id TEXT NOT NULL DEFAULT '',
        PRIMARY KEY (issue_id, depends_on_id)
    )""",
    "CREATE INDEX idx_dependencies_depends_on ON dependencies(depends_on_id, type)",
    """CREATE TABLE labels (
        issue_id TEXT NOT NULL REFERENCES issues(id),
        label TEXT NOT NULL,
        PRIMARY KEY (issue_id, label)
    )""",
    "CREATE INDEX idx_labels_label ON labels(label)",
    """CREATE TABLE comments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        issue_id TEXT NOT NULL REFERENCES issues(id),
        author TEXT NOT NULL,
        text TEXT NOT NULL,
        created_at TEXT NOT NULL
    )""",
    "CREATE INDEX idx_comments_issue ON comments(issue_id)",
    """CREATE TABLE events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        issue_id TEXT NOT NULL REFERENCES issues(id),
        event_type TEXT NOT NULL,
        actor TEXT NOT NULL,
        old_value TEXT,
        new_value TEXT,
        comment TEXT,
        created_at TEXT NOT NULL
    )""",
    "CREATE INDEX idx_events_issue ON events(issue_id, created_at)",
    """CREATE TABLE child_counters (
        parent_id TEXT PRIMARY KEY REFERENCES issues(id),
        last_child INTEGER NOT NULL DEFAULT 0
    )""",
    """CREATE TABLE compaction_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        issue_id TEXT NOT NULL REFERENCES issues(id),
        level INTEGER NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        design TEXT NOT NULL DEFAULT '',
        acceptance_criteria TEXT NOT NULL DEFAULT '',
        notes TEXT NOT NULL DEFAULT '',
        summary TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        UNIQUE (issue_id, level)
    )""",
]

_V2 = [
    "CREATE INDEX idx_issues_closed ON issues(tenant_id, status, closed_at)",
    "CREATE INDEX idx_issues_defer ON issues(defer_until)",
]

# Child counters outlive their parent so dotted IDs are never handed out twice
_V3 = [
    """CREATE TABLE child_counters_v3 (
        parent_id TEXT PRIMARY KEY,
        last_child INTEGER NOT NULL DEFAULT 0
    )""",
    "INSERT INTO child_counters_v3 (parent_id, last_child) "
    "SELECT parent_id, last_child FROM child_counters",
    "DROP TABLE child_counters",
    "ALTER TABLE child_counters_v3 RENAME TO child_counters",
]

_V4 = [
    """CREATE TABLE lessons (
        id TEXT PRIMARY KEY,
        tenant_id INTEGER NOT NULL REFERENCES tenants(id),
        project_id INTEGER REFERENCES projects(id),
        issue_id TEXT REFERENCES issues(id),
        title TEXT NOT NULL CHECK(length(title) <= 500),
        mistake TEXT NOT NULL,
        correction TEXT NOT NULL,
        expert TEXT NOT NULL DEFAULT '',
        severity INTEGER NOT NULL DEFAULT 2 CHECK(severity >= 0 AND severity <= 4),
        status TEXT NOT NULL DEFAULT 'open',
        created_at TEXT NOT NULL,
        created_by TEXT NOT NULL DEFAULT '',
        resolved_at TEXT,
        resolved_by TEXT NOT NULL DEFAULT ''
    )""",
    "CREATE INDEX idx_lessons_tenant_status ON lessons(tenant_id, status)",
    "CREATE INDEX idx_lessons_issue ON lessons(issue_id)",
    """CREATE TABLE lesson_components (
        lesson_id TEXT NOT NULL REFERENCES lessons(id),
        component TEXT NOT NULL,
        PRIMARY KEY (lesson_id, component)
    )""",
    "CREATE INDEX idx_lesson_components_component ON lesson_components(component)",
]

# (version, description, statements); append only, never edit a released entry
MIGRATIONS: list[tuple[int, str, list[str]]] = [
    (1, "initial schema", _V1),
    (2, "indexes for compaction and readiness", _V2),
    (3, "child counters survive parent deletion", _V3),
    (4, "lessons", _V4),
]


def current_version(conn: sqlite3.Connection) -> int:
    conn.execute(MIGRATIONS_TABLE)
    row = conn.execute("SELECT MAX(version) FROM schema_migrations").fetchone()
    return row[0] or 0


def apply_migrations(conn: sqlite3.Connection) -> int:
    """Apply pending migrations. Returns the resulting schema version.

    Each migration runs in its own write transaction and re-reads the
    version under the lock, so concurrent openers apply it at most once.
    The connection must be in autocommit mode (``isolation_level=None``).
    """
    conn.execute(MIGRATIONS_TABLE)
    for version, description, statements in MIGRATIONS:
        conn.execute("BEGIN IMMEDIATE")
        try:
            row = conn.execute(
                "SELECT 1 FROM schema_migrations WHERE version = ?", (version,)
            ).fetchone()
            if row is not None:
                conn.execute("COMMIT")
                continue
            for stmt in statements:
                conn.execute(stmt)
            conn.execute(
                "INSERT INTO schema_migrations (version, description, applied_at) "
                "VALUES (?, ?, ?)",
                (version, description, format_timestamp(now_utc()))
            )
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
        logger.info("applied schema migration %d (%s)", version, description)
    return current_version(conn)
