"""Exception taxonomy shared by the store, the compactor and the CLI."""

from __future__ import annotations


class DoitError(Exception):
    """Base class for every error raised by doit."""


class NotFoundError(DoitError, LookupError):
    """A referenced issue, dependency, tenant, project or key does not exist."""


class ValidationError(DoitError, ValueError):
    """Malformed input: bad field value, unknown filter, illegal edge."""


class ScopeError(DoitError):
    """An operation was invoked without a tenant scope."""


class ResourceExhaustedError(DoitError):
    """ID allocation gave up after the maximum number of attempts."""


class StorageError(DoitError):
    """Unexpected failure in the storage layer."""


class TransientStorageError(StorageError):
    """Timeout, lock contention or pool exhaustion. Safe to retry."""
