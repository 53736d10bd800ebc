"""Shared fixtures: a temporary store with one tenant."""

import os
import tempfile

import pytest

from doit.scope import Scope
from doit.storage.sqlite_store import SQLiteStorage


@pytest.fixture
def store():
    """Create a temporary storage for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        s = SQLiteStorage(os.path.join(tmpdir, "test.db"), id_prefix="test")
        yield s
        s.close()


@pytest.fixture
def tenant(store: SQLiteStorage):
    return store.create_tenant("Acme", "acme")


@pytest.fixture
def scope(tenant) -> Scope:
    return Scope(tenant_id=tenant.id, actor="alice")
