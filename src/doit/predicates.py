"""Typed filter predicates.

Every filter dimension the store understands is a small frozen dataclass.
Callers build lists of these values; ``doit.storage.query`` is the only
place that turns them into SQL.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class StatusIs:
    status: str


@dataclass(frozen=True)
class StatusNotIn:
    statuses: tuple[str, ...]


@dataclass(frozen=True)
class PriorityIs:
    priority: int


@dataclass(frozen=True)
class TypeIs:
    issue_type: str


@dataclass(frozen=True)
class TypeNotIn:
    issue_types: tuple[str, ...]


@dataclass(frozen=True)
class AssigneeIs:
    assignee: str


@dataclass(frozen=True)
class OwnerIs:
    owner: str


@dataclass(frozen=True)
class EphemeralIs:
    ephemeral: bool


@dataclass(frozen=True)
class PinnedIs:
    pinned: bool


@dataclass(frozen=True)
class ParentIs:
    """Issue is a direct child of ``parent_id`` via a parent-child edge."""
    parent_id: str


@dataclass(frozen=True)
class TextSearch:
    """Case-insensitive substring match over title and description."""
    text: str


@dataclass(frozen=True)
class LabelsAll:
    labels: tuple[str, ...]


@dataclass(frozen=True)
class LabelsAny:
    labels: tuple[str, ...]


@dataclass(frozen=True)
class CreatedAfter:
    at: datetime


@dataclass(frozen=True)
class CreatedBefore:
    at: datetime


@dataclass(frozen=True)
class UpdatedAfter:
    at: datetime


@dataclass(frozen=True)
class UpdatedBefore:
    at: datetime


@dataclass(frozen=True)
class ClosedBefore:
    at: datetime


@dataclass(frozen=True)
class CompactionBelow:
    level: int


@dataclass(frozen=True)
class Overdue:
    now: datetime


@dataclass(frozen=True)
class TenantIs:
    tenant_id: int


@dataclass(frozen=True)
class ProjectIn:
    project_ids: tuple[int, ...]


@dataclass(frozen=True)
class NotBlocked:
    """No readiness-gating edge from the issue to a target that is still unclosed."""


@dataclass(frozen=True)
class NotDeferred:
    """``defer_until`` is unset or no later than ``now``."""
    now: datetime


Predicate = (
    StatusIs | StatusNotIn | PriorityIs | TypeIs | TypeNotIn | AssigneeIs
    | OwnerIs | EphemeralIs | PinnedIs | ParentIs | TextSearch | LabelsAll
    | LabelsAny | CreatedAfter | CreatedBefore | UpdatedAfter | UpdatedBefore
    | ClosedBefore | CompactionBelow | Overdue | TenantIs | ProjectIn | NotBlocked | NotDeferred
)
