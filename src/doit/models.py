"""Core data models: issues, edges, audit rows, snapshots and tenancy."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from doit.errors import ValidationError
from doit.predicates import (
    AssigneeIs, ClosedBefore, CompactionBelow, CreatedAfter, CreatedBefore,
    EphemeralIs, LabelsAll, LabelsAny, Overdue, OwnerIs, ParentIs, PinnedIs,
    Predicate, PriorityIs, StatusIs, StatusNotIn, TextSearch, TypeIs, TypeNotIn,
    UpdatedAfter, UpdatedBefore,
)


# --- Status constants ---

class Status:
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CLOSED = "closed"
    PINNED = "pinned"
    HOOKED = "hooked"

    _VALID = {OPEN, IN_PROGRESS, BLOCKED, DEFERRED, CLOSED, PINNED, HOOKED}

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls._VALID


# --- IssueType constants ---

class IssueType:
    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"
    DECISION = "decision"
    MESSAGE = "message"
    MOLECULE = "molecule"
    EVENT = "event"

    _VALID = {BUG, FEATURE, TASK, EPIC, CHORE, DECISION, MESSAGE, MOLECULE, EVENT}

    @classmethod
    def is_valid(cls, t: str) -> bool:
        return t in cls._VALID

    @classmethod
    def normalize(cls, t: str) -> str:
        lower = t.lower()
        if lower in ("enhancement", "feat"):
            return cls.FEATURE
        return lower


# --- DependencyType constants ---

class DepType:
    BLOCKS = "blocks"
    CONDITIONAL_BLOCKS = "conditional-blocks"
    WAITS_FOR = "waits-for"
    PARENT_CHILD = "parent-child"
    RELATED = "related"
    RELATES_TO = "relates-to"
    DISCOVERED_FROM = "discovered-from"
    CAUSED_BY = "caused-by"
    REPLIES_TO = "replies-to"
    DUPLICATES = "duplicates"
    SUPERSEDES = "supersedes"
    AUTHORED_BY = "authored-by"
    ASSIGNED_TO = "assigned-to"
    APPROVED_BY = "approved-by"
    ATTESTS = "attests"
    VALIDATES = "validates"
    TRACKS = "tracks"
    UNTIL = "until"
    DELEGATED_FROM = "delegated-from"

    _VALID = {
        BLOCKS, CONDITIONAL_BLOCKS, WAITS_FOR, PARENT_CHILD, RELATED,
        RELATES_TO, DISCOVERED_FROM, CAUSED_BY, REPLIES_TO, DUPLICATES,
        SUPERSEDES, AUTHORED_BY, ASSIGNED_TO, APPROVED_BY, ATTESTS,
        VALIDATES, TRACKS, UNTIL, DELEGATED_FROM,
    }

    @classmethod
    def is_valid(cls, dep_type: str) -> bool:
        return dep_type in cls._VALID

    # Edge types that hold an issue out of ready work; everything else is informational.
    READY_GATES = (BLOCKS,)


# --- EventType constants ---

class EventType:
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    COMMENTED = "commented"
    CLOSED = "closed"
    REOPENED = "reopened"
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"
    LABEL_ADDED = "label_added"
    LABEL_REMOVED = "label_removed"
    COMPACTED = "compacted"


# --- Sort orders ---

class SortBy:
    PRIORITY = "priority"  # priority asc, created asc
    OLDEST = "oldest"      # created asc
    UPDATED = "updated"    # updated desc
    HYBRID = "hybrid"      # priority asc, updated desc
    CLOSED = "closed"      # closed asc, oldest closures first

    _VALID = {PRIORITY, OLDEST, UPDATED, HYBRID, CLOSED}

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls._VALID


class Direction:
    UPSTREAM = "upstream"      # edges where the issue is the source
    DOWNSTREAM = "downstream"  # edges where the issue is the target
    BOTH = "both"

    _VALID = {UPSTREAM, DOWNSTREAM, BOTH}

    @classmethod
    def is_valid(cls, d: str) -> bool:
        return d in cls._VALID


class LessonStatus:
    OPEN = "open"
    RESOLVED = "resolved"

    _VALID = {OPEN, RESOLVED}

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls._VALID


# --- Helper: timestamp handling ---

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def parse_timestamp(s: str | None) -> datetime | None:
    """Parse an RFC3339 timestamp string to an aware datetime."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        dt = None
    if dt is None:
        for fmt in ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%d %H:%M:%S"):
            try:
                dt = datetime.strptime(s, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        raise ValueError(f"Cannot parse timestamp: {s}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime | None) -> str | None:
    """Format a datetime as fixed-width UTC RFC3339.

    Fixed width keeps lexicographic order equal to chronological order,
    which the SQL comparisons and ORDER BY clauses rely on.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def now_utc() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def content_hash(title: str, description: str, design: str,
                 acceptance_criteria: str, notes: str) -> str:
    """Digest of the five free-text fields, for change detection only."""
    h = hashlib.sha256()
    for part in (title, description, design, acceptance_criteria, notes):
        h.update((part or "").encode("utf-8"))
        h.update(b"\x00")
    return h.hexdigest()[:16]


# --- Dataclasses ---

@dataclass
class Dependency:
    issue_id: str
    depends_on_id: str
    type: str = DepType.BLOCKS
    created_at: datetime = field(default_factory=now_utc)
    created_by: str = ""
    thread_id: str = ""

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "issue_id": self.issue_id,
            "depends_on_id": self.depends_on_id,
            "type": self.type,
            "created_at": format_timestamp(self.created_at),
        }
        if self.created_by:
            d["created_by"] = self.created_by
        if self.thread_id:
            d["thread_id"] = self.thread_id
        return d


@dataclass
class Comment:
    id: int = 0
    issue_id: str = ""
    author: str = ""
    text: str = ""
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "author": self.author,
            "text": self.text,
            "created_at": format_timestamp(self.created_at),
        }


@dataclass
class Event:
    id: int = 0
    issue_id: str = ""
    event_type: str = ""
    actor: str = ""
    old_value: str | None = None
    new_value: str | None = None
    comment: str | None = None
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "issue_id": self.issue_id,
            "event_type": self.event_type,
            "actor": self.actor,
            "created_at": format_timestamp(self.created_at),
        }
        if self.old_value is not None:
            d["old_value"] = self.old_value
        if self.new_value is not None:
            d["new_value"] = self.new_value
        if self.comment is not None:
            d["comment"] = self.comment
        return d


@dataclass
class CompactionSnapshot:
    """Issue content as it was immediately before a compaction transition."""
    id: int = 0
    issue_id: str = ""
    level: int = 0
    title: str = ""
    description: str = ""
    design: str = ""
    acceptance_criteria: str = ""
    notes: str = ""
    summary: str = ""
    created_at: datetime = field(default_factory=now_utc)

    @property
    def original(self) -> str:
        parts = [f"Title: {self.title}"]
        if self.description:
            parts.append(f"Description: {self.description}")
        if self.design:
            parts.append(f"Design: {self.design}")
        if self.acceptance_criteria:
            parts.append(f"Acceptance Criteria: {self.acceptance_criteria}")
        if self.notes:
            parts.append(f"Notes: {self.notes}")
        return "\n".join(parts)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "level": self.level,
            "summary": self.summary,
            "original": self.original,
            "created_at": format_timestamp(self.created_at),
        }


@dataclass
class Issue:
    """A unit of work."""

    # Core identification
    id: str = ""
    content_hash: str = ""

    # Issue content
    title: str = ""
    description: str = ""
    design: str = ""
    acceptance_criteria: str = ""
    notes: str = ""

    # Status & workflow
    status: str = Status.OPEN
    priority: int = 2
    issue_type: str = IssueType.TASK

    # Assignment
    assignee: str = ""
    owner: str = ""

    # Timestamps
    created_at: datetime = field(default_factory=now_utc)
    created_by: str = ""
    updated_at: datetime = field(default_factory=now_utc)
    closed_at: datetime | None = None
    close_reason: str = ""

    # Time-based scheduling
    due_at: datetime | None = None
    defer_until: datetime | None = None

    external_ref: str = ""

    # Compaction metadata
    compaction_level: int = 0
    compacted_at: datetime | None = None
    original_size: int = 0

    # Context markers
    ephemeral: bool = False
    pinned: bool = False

    # Tenancy
    tenant_id: int | None = None
    project_id: int | None = None

    # Relational data (populated by get_issue)
    labels: list[str] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)
    parent_id: str = ""

    def compute_content_hash(self) -> str:
        return content_hash(self.title, self.description, self.design,
                            self.acceptance_criteria, self.notes)

    def content_size(self) -> int:
        return sum(len(s) for s in (self.title, self.description, self.design,
                                    self.acceptance_criteria, self.notes))

    def validate(self) -> str | None:
        """Validate issue fields. Returns error message or None if valid."""
        if not self.title:
            return "title is required"
        if len(self.title) > 500:
            return f"title must be 500 characters or less (got {len(self.title)})"
        if self.priority < 0 or self.priority > 4:
            return f"priority must be between 0 and 4 (got {self.priority})"
        if not Status.is_valid(self.status):
            return f"invalid status: {self.status}"
        if not IssueType.is_valid(self.issue_type):
            return f"invalid issue type: {self.issue_type}"
        if self.compaction_level not in (0, 1, 2):
            return f"invalid compaction level: {self.compaction_level}"
        return None

    def to_dict(self) -> dict:
        """Serialize to a JSON-ready dict, omitting empty optional fields."""
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
        }

        if self.description:
            d["description"] = self.description
        if self.design:
            d["design"] = self.design
        if self.acceptance_criteria:
            d["acceptance_criteria"] = self.acceptance_criteria
        if self.notes:
            d["notes"] = self.notes
        d["status"] = self.status
        # 0 is a valid priority (P0), never omitted
        d["priority"] = self.priority
        d["issue_type"] = self.issue_type
        if self.assignee:
            d["assignee"] = self.assignee
        if self.owner:
            d["owner"] = self.owner

        d["created_at"] = format_timestamp(self.created_at)
        if self.created_by:
            d["created_by"] = self.created_by
        d["updated_at"] = format_timestamp(self.updated_at)
        if self.closed_at:
            d["closed_at"] = format_timestamp(self.closed_at)
        if self.close_reason:
            d["close_reason"] = self.close_reason
        if self.due_at:
            d["due_at"] = format_timestamp(self.due_at)
        if self.defer_until:
            d["defer_until"] = format_timestamp(self.defer_until)
        if self.external_ref:
            d["external_ref"] = self.external_ref

        if self.compaction_level:
            d["compaction_level"] = self.compaction_level
        if self.compacted_at:
            d["compacted_at"] = format_timestamp(self.compacted_at)
        if self.original_size:
            d["original_size"] = self.original_size

        if self.ephemeral:
            d["ephemeral"] = self.ephemeral
        if self.pinned:
            d["pinned"] = self.pinned
        if self.project_id is not None:
            d["project_id"] = self.project_id

        if self.parent_id:
            d["parent_id"] = self.parent_id
        if self.labels:
            d["labels"] = self.labels
        if self.dependencies:
            d["dependencies"] = [dep.to_dict() for dep in self.dependencies]
        return d


@dataclass
class TreeNode:
    issue: Issue
    depth: int
    parent_id: str | None = None
    truncated: bool = False

    def to_dict(self) -> dict:
        d = self.issue.to_dict()
        d["depth"] = self.depth
        if self.parent_id:
            d["tree_parent_id"] = self.parent_id
        if self.truncated:
            d["truncated"] = True
        return d


@dataclass
class Tenant:
    id: int = 0
    name: str = ""
    slug: str = ""
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "slug": self.slug,
                "created_at": format_timestamp(self.created_at)}


@dataclass
class Project:
    id: int = 0
    tenant_id: int = 0
    name: str = ""
    slug: str = ""
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {"id": self.id, "tenant_id": self.tenant_id, "name": self.name,
                "slug": self.slug, "created_at": format_timestamp(self.created_at)}


@dataclass
class APIKey:
    id: int = 0
    tenant_id: int = 0
    prefix: str = ""
    label: str = ""
    created_at: datetime = field(default_factory=now_utc)
    revoked_at: datetime | None = None

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "prefix": self.prefix,
            "label": self.label,
            "created_at": format_timestamp(self.created_at),
        }
        if self.revoked_at:
            d["revoked_at"] = format_timestamp(self.revoked_at)
        return d


@dataclass
class IssueFilter:
    """Filter for issue queries."""
    status: str | None = None
    status_not: list[str] = field(default_factory=list)
    priority: int | None = None
    issue_type: str | None = None
    type_not: list[str] = field(default_factory=list)
    assignee: str | None = None
    owner: str | None = None
    ephemeral: bool | None = None
    pinned: bool | None = None
    parent_id: str | None = None
    search: str = ""
    labels: list[str] = field(default_factory=list)
    labels_any: list[str] = field(default_factory=list)
    created_after: datetime | None = None
    created_before: datetime | None = None
    updated_after: datetime | None = None
    updated_before: datetime | None = None
    closed_before: datetime | None = None
    compaction_below: int | None = None
    overdue: bool = False
    sort: str = SortBy.HYBRID
    limit: int = 0
    offset: int = 0

    def validate(self) -> None:
        if not SortBy.is_valid(self.sort):
            raise ValidationError(f"unknown sort order: {self.sort}")
        if self.limit < 0:
            raise ValidationError(f"limit cannot be negative (got {self.limit})")
        if self.offset < 0:
            raise ValidationError(f"offset cannot be negative (got {self.offset})")
        if self.priority is not None and not 0 <= self.priority <= 4:
            raise ValidationError(f"priority must be between 0 and 4 (got {self.priority})")
        for s in [self.status, *self.status_not]:
            if s is not None and not Status.is_valid(s):
                raise ValidationError(f"invalid status: {s}")
        for t in [self.issue_type, *self.type_not]:
            if t is not None and not IssueType.is_valid(t):
                raise ValidationError(f"invalid issue type: {t}")

    def predicates(self, now: datetime | None = None) -> list[Predicate]:
        """Translate the set fields into typed predicates."""
        preds: list[Predicate] = []
        if self.status is not None:
            preds.append(StatusIs(self.status))
        if self.status_not:
            preds.append(StatusNotIn(tuple(self.status_not)))
        if self.priority is not None:
            preds.append(PriorityIs(self.priority))
        if self.issue_type is not None:
            preds.append(TypeIs(self.issue_type))
        if self.type_not:
            preds.append(TypeNotIn(tuple(self.type_not)))
        if self.assignee is not None:
            preds.append(AssigneeIs(self.assignee))
        if self.owner is not None:
            preds.append(OwnerIs(self.owner))
        if self.ephemeral is not None:
            preds.append(EphemeralIs(self.ephemeral))
        if self.pinned is not None:
            preds.append(PinnedIs(self.pinned))
        if self.parent_id is not None:
            preds.append(ParentIs(self.parent_id))
        if self.search:
            preds.append(TextSearch(self.search))
        if self.labels:
            preds.append(LabelsAll(tuple(self.labels)))
        if self.labels_any:
            preds.append(LabelsAny(tuple(self.labels_any)))
        if self.created_after:
            preds.append(CreatedAfter(self.created_after))
        if self.created_before:
            preds.append(CreatedBefore(self.created_before))
        if self.updated_after:
            preds.append(UpdatedAfter(self.updated_after))
        if self.updated_before:
            preds.append(UpdatedBefore(self.updated_before))
        if self.closed_before:
            preds.append(ClosedBefore(self.closed_before))
        if self.compaction_below is not None:
            preds.append(CompactionBelow(self.compaction_below))
        if self.overdue:
            preds.append(Overdue(now or now_utc()))
        return preds


@dataclass
class CompactResult:
    issue_id: str
    old_level: int
    new_level: int

    def to_dict(self) -> dict:
        return {"issue_id": self.issue_id, "old_level": self.old_level,
                "new_level": self.new_level}


# --- Lessons ---

@dataclass
class Lesson:
    """A recorded mistake and its correction, optionally tied to an issue."""
    id: str = ""
    tenant_id: int = 0
    project_id: int | None = None
    issue_id: str | None = None
    title: str = ""
    mistake: str = ""
    correction: str = ""
    expert: str = ""
    components: list[str] = field(default_factory=list)
    severity: int = 2
    status: str = LessonStatus.OPEN
    created_at: datetime = field(default_factory=now_utc)
    created_by: str = ""
    resolved_at: datetime | None = None
    resolved_by: str = ""

    def validate(self) -> str | None:
        if not self.title:
            return "title is required"
        if len(self.title) > 500:
            return f"title must be 500 characters or less (got {len(self.title)})"
        if not self.mistake.strip():
            return "mistake is required"
        if not self.correction.strip():
            return "correction is required"
        if self.severity < 0 or self.severity > 4:
            return f"severity must be between 0 and 4 (got {self.severity})"
        if not LessonStatus.is_valid(self.status):
            return f"invalid lesson status: {self.status}"
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "mistake": self.mistake,
            "correction": self.correction,
            "components": list(self.components),
            "severity": self.severity,
            "status": self.status,
            "created_at": format_timestamp(self.created_at),
        }
        if self.project_id is not None:
            d["project_id"] = self.project_id
        if self.issue_id:
            d["issue_id"] = self.issue_id
        if self.expert:
            d["expert"] = self.expert
        if self.created_by:
            d["created_by"] = self.created_by
        if self.resolved_at:
            d["resolved_at"] = format_timestamp(self.resolved_at)
        if self.resolved_by:
            d["resolved_by"] = self.resolved_by
        return d


@dataclass
class LessonFilter:
    project_id: int | None = None
    status: str | None = None
    expert: str | None = None
    component: str | None = None
    severity: int | None = None
    limit: int = 50

    def validate(self) -> None:
        if self.status is not None and not LessonStatus.is_valid(self.status):
            raise ValidationError(f"invalid lesson status: {self.status}")
        if self.severity is not None and not 0 <= self.severity <= 4:
            raise ValidationError(f"severity must be between 0 and 4 (got {self.severity})")
        if self.limit < 0:
            raise ValidationError(f"limit cannot be negative (got {self.limit})")
