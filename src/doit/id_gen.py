"""ID generation helpers.

Top-level IDs are ``<prefix>-<hex>`` where the hex part is a truncated
SHA256 of a time/random/attempt seed. The hex length grows with the issue
population so short IDs stay collision-free in small databases. Existence
checks and retries live in the store, which owns the data.

Child IDs are ``<parent>.<n>`` with ``n`` drawn from a per-parent counter.
"""

from __future__ import annotations

import hashlib
import random
import time

DEFAULT_PREFIX = "doit"
MAX_ATTEMPTS = 30
MAX_HASH_LENGTH = 8

# (population above which, hash length)
_LENGTH_TIERS = ((1500, 6), (500, 5), (100, 4))
_MIN_HASH_LENGTH = 3


def hash_length_for(count: int) -> int:
    """Hex length to use for a store holding ``count`` issues.

    Examples:
        0..100    → 3
        101..500  → 4
        501..1500 → 5
        1501+     → 6
    """
    for threshold, length in _LENGTH_TIERS:
        if count > threshold:
            return length
    return _MIN_HASH_LENGTH


def candidate_id(prefix: str, length: int, attempt: int) -> str:
    """Build one candidate top-level ID."""
    seed = f"{time.time_ns()}-{random.getrandbits(63)}-{attempt}"
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()
    return f"{prefix}-{digest[:length]}"


def should_lengthen(attempt: int, length: int) -> bool:
    """After every 10th consecutive collision, grow the hash by one char."""
    return attempt % 10 == 9 and length < MAX_HASH_LENGTH


# --- Hierarchical (child) IDs ---

def generate_child_id(parent_id: str, child_number: int) -> str:
    """Create a hierarchical child ID.

    Format: parent.N (e.g., "doit-a3f.1", "doit-a3f.1.2")
    """
    return f"{parent_id}.{child_number}"
