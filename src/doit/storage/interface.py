"""Storage interface (abstract base) for doit."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from doit.models import (
    APIKey, Comment, CompactionSnapshot, Dependency, Direction, Event, Issue,
    IssueFilter, Lesson, LessonFilter, Project, Tenant, TreeNode,
)
from doit.scope import Scope


class Storage(ABC):
    """Abstract base class defining all storage operations.

    Issue-scoped operations take the caller's ``Scope`` as their first
    argument. Missing rows raise ``NotFoundError``; malformed input raises
    ``ValidationError``.
    """

    @abstractmethod
    def path(self) -> str:
        """Return the database file path."""

    @abstractmethod
    def close(self) -> None:
        """Close all pooled connections."""

    # --- Identifier allocation ---

    @abstractmethod
    def generate_id(self, scope: Scope, prefix: str | None = None) -> str:
        """Return an unused top-level issue ID."""

    @abstractmethod
    def next_child_id(self, scope: Scope, parent_id: str) -> str:
        """Atomically allocate the next ``<parent>.<n>`` child ID."""

    # --- Issue CRUD ---

    @abstractmethod
    def create_issue(self, scope: Scope, issue: Issue, actor: str,
                     parent_id: str | None = None) -> Issue:
        """Create an issue with its labels, parent edge and creation event."""

    @abstractmethod
    def get_issue(self, scope: Scope, issue_id: str) -> Issue:
        """Get an issue with labels and outgoing dependencies."""

    @abstractmethod
    def update_issue(self, scope: Scope, issue_id: str, updates: dict[str, Any],
                     actor: str) -> Issue:
        """Apply the non-None fields in ``updates``."""

    @abstractmethod
    def close_issue(self, scope: Scope, issue_id: str, reason: str, actor: str) -> Issue:
        """Close an issue with optional reason."""

    @abstractmethod
    def reopen_issue(self, scope: Scope, issue_id: str, actor: str) -> Issue:
        """Reopen a closed issue."""

    @abstractmethod
    def delete_issue(self, scope: Scope, issue_id: str) -> None:
        """Hard-delete an issue and every row that references it."""

    @abstractmethod
    def resolve_id(self, scope: Scope, partial: str) -> str | None:
        """Resolve an unambiguous ID prefix to a full ID."""

    # --- Query ---

    @abstractmethod
    def list_issues(self, scope: Scope, filter: IssueFilter | None = None) -> list[Issue]:
        """List issues with filters, sorting and pagination."""

    @abstractmethod
    def list_ready(self, scope: Scope, filter: IssueFilter | None = None) -> list[Issue]:
        """List issues ready to work on."""

    @abstractmethod
    def count_issues_by_status(self, scope: Scope) -> dict[str, int]:
        """Issue counts keyed by status."""

    # --- Dependencies ---

    @abstractmethod
    def add_dependency(self, scope: Scope, dep: Dependency, actor: str) -> Dependency:
        """Add or retype a dependency edge."""

    @abstractmethod
    def remove_dependency(self, scope: Scope, issue_id: str, depends_on_id: str,
                          actor: str) -> None:
        """Remove a dependency edge. Missing edges are ignored."""

    @abstractmethod
    def list_dependencies(self, scope: Scope, issue_id: str,
                          direction: str = Direction.BOTH) -> list[Dependency]:
        """List edges touching an issue."""

    @abstractmethod
    def get_dependency_tree(self, scope: Scope, root_id: str,
                            max_depth: int = 10) -> list[TreeNode]:
        """Bounded walk of the parent-child hierarchy below ``root_id``."""

    # --- Labels ---

    @abstractmethod
    def add_label(self, scope: Scope, issue_id: str, label: str, actor: str) -> None:
        """Add a label to an issue."""

    @abstractmethod
    def remove_label(self, scope: Scope, issue_id: str, label: str, actor: str) -> None:
        """Remove a label from an issue."""

    @abstractmethod
    def get_labels(self, scope: Scope, issue_id: str) -> list[str]:
        """Get all labels for an issue."""

    # --- Comments & events ---

    @abstractmethod
    def add_comment(self, scope: Scope, issue_id: str, author: str, text: str) -> Comment:
        """Append a comment."""

    @abstractmethod
    def get_comments(self, scope: Scope, issue_id: str) -> list[Comment]:
        """Get all comments for an issue, oldest first."""

    @abstractmethod
    def get_events(self, scope: Scope, issue_id: str, limit: int = 0) -> list[Event]:
        """Get audit events for an issue, newest first."""

    # --- Compaction ---

    @abstractmethod
    def compact_issue(self, scope: Scope, issue_id: str, level: int, summary: str,
                      actor: str) -> bool:
        """Snapshot and summarize an issue at a higher compaction level."""

    @abstractmethod
    def get_compaction_snapshots(self, scope: Scope, issue_id: str) -> list[CompactionSnapshot]:
        """Snapshots for an issue ordered by level."""

    # --- Tenancy ---

    @abstractmethod
    def create_tenant(self, name: str, slug: str) -> Tenant:
        """Create a tenant."""

    @abstractmethod
    def get_tenant_by_slug(self, slug: str) -> Tenant:
        """Look up a tenant."""

    @abstractmethod
    def list_tenants(self) -> list[Tenant]:
        """List all tenants."""

    @abstractmethod
    def create_api_key(self, tenant_slug: str, label: str, key_hash: str,
                       prefix: str) -> APIKey:
        """Register a hashed API key for a tenant."""

    @abstractmethod
    def resolve_api_key(self, key_hash: str) -> int:
        """Return the tenant ID for an unrevoked key hash."""

    @abstractmethod
    def revoke_api_key(self, prefix: str) -> None:
        """Revoke a key by its display prefix."""

    @abstractmethod
    def list_api_keys(self, tenant_slug: str) -> list[APIKey]:
        """List a tenant's keys, revoked ones included."""

    @abstractmethod
    def create_project(self, scope: Scope, name: str, slug: str) -> Project:
        """Create a project in the scope's tenant."""

    @abstractmethod
    def get_project_by_slug(self, scope: Scope, slug: str) -> Project:
        """Look up a project in the scope's tenant."""

    @abstractmethod
    def list_projects(self, scope: Scope) -> list[Project]:
        """List the tenant's projects."""

    @abstractmethod
    def update_project(self, scope: Scope, slug: str, name: str | None = None,
                       new_slug: str | None = None) -> Project:
        """Rename a project or change its slug."""

    @abstractmethod
    def record_lesson(self, scope: Scope, lesson: Lesson, actor: str) -> Lesson:
        """Store a new open lesson with a generated ``lsn-`` ID."""

    @abstractmethod
    def get_lesson(self, scope: Scope, lesson_id: str) -> Lesson:
        """Get a lesson visible to the scope."""

    @abstractmethod
    def list_lessons(self, scope: Scope, filter: LessonFilter | None = None) -> list[Lesson]:
        """List lessons, most severe first, newest first within a severity."""

    @abstractmethod
    def resolve_lesson(self, scope: Scope, lesson_id: str, actor: str) -> Lesson:
        """Mark a lesson resolved. Resolving twice keeps the first resolution."""
