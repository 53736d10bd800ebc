"""JSONL export of a tenant's issues.

- One JSON object per line, oldest issue first
- Labels and outgoing dependencies inlined
- Ephemeral issues are never exported
- Written to a temp file and renamed into place
"""

from __future__ import annotations

import json
import logging
import os

from doit.models import IssueFilter, SortBy
from doit.scope import Scope
from doit.storage.interface import Storage

logger = logging.getLogger(__name__)


def export_jsonl(store: Storage, scope: Scope, jsonl_path: str) -> int:
    """Export the scope's non-ephemeral issues. Returns the number written."""
    issues = store.list_issues(scope, IssueFilter(ephemeral=False, sort=SortBy.OLDEST))

    tmp_path = jsonl_path + ".tmp"
    count = 0
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            for issue in issues:
                full = store.get_issue(scope, issue.id)
                line = json.dumps(full.to_dict(), ensure_ascii=False, separators=(",", ":"))
                f.write(line + "\n")
                count += 1
        os.replace(tmp_path, jsonl_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise

    logger.info("exported %d issue(s) to %s", count, jsonl_path)
    return count
