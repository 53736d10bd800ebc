"""API key minting and resolution of raw keys to tenant scopes.

Only the SHA256 digest of a key is stored; the raw key is shown once at
creation. The short display prefix identifies a key for listing and
revocation without revealing it.
"""

from __future__ import annotations

import hashlib
import secrets
from collections.abc import Iterable

from doit.errors import NotFoundError
from doit.scope import Scope
from doit.storage.interface import Storage

KEY_PREFIX = "doit_"
_PREFIX_LEN = len(KEY_PREFIX) + 8


def generate_api_key() -> tuple[str, str]:
    """Return (raw_key, display_prefix)."""
    raw = KEY_PREFIX + secrets.token_hex(24)
    return raw, raw[:_PREFIX_LEN]


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def resolve_scope(store: Storage, raw_key: str, project_slugs: Iterable[str] = (),
                  actor: str = "") -> Scope:
    """Resolve a raw API key (and optional project slugs) to a Scope.

    Raises NotFoundError for unknown or revoked keys and for project slugs
    that do not exist in the key's tenant.
    """
    if not raw_key:
        raise NotFoundError("no API key provided")
    tenant_id = store.resolve_api_key(hash_api_key(raw_key))
    tenant_scope = Scope(tenant_id=tenant_id, actor=actor)
    project_ids = tuple(
        store.get_project_by_slug(tenant_scope, slug).id for slug in project_slugs
    )
    return Scope(tenant_id=tenant_id, project_ids=project_ids, actor=actor)


def scope_for_tenant(store: Storage, tenant_slug: str, project_slugs: Iterable[str] = (),
                     actor: str = "") -> Scope:
    """Resolve a tenant slug directly, for local single-user setups."""
    tenant = store.get_tenant_by_slug(tenant_slug)
    tenant_scope = Scope(tenant_id=tenant.id, actor=actor)
    project_ids = tuple(
        store.get_project_by_slug(tenant_scope, slug).id for slug in project_slugs
    )
    return Scope(tenant_id=tenant.id, project_ids=project_ids, actor=actor)
