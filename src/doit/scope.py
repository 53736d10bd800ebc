"""Tenant scope passed explicitly to every store operation."""

from __future__ import annotations

from dataclasses import dataclass

from doit.errors import ScopeError
from doit.predicates import Predicate, ProjectIn, TenantIs


@dataclass(frozen=True)
class Scope:
    """Resolved caller identity.

    ``project_ids`` is an allow-list; empty means every project in the
    tenant (including issues with no project).
    """
    tenant_id: int | None
    project_ids: tuple[int, ...] = ()
    actor: str = ""

    def require_tenant(self) -> int:
        if self.tenant_id is None:
            raise ScopeError("no tenant in scope")
        return self.tenant_id

    def predicates(self) -> list[Predicate]:
        preds: list[Predicate] = [TenantIs(self.require_tenant())]
        if self.project_ids:
            preds.append(ProjectIn(tuple(self.project_ids)))
        return preds

    def allows_project(self, project_id: int | None) -> bool:
        if not self.project_ids:
            return True
        return project_id in self.project_ids
