"""Bounded breadth-first traversal of parent-child edges."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable

from doit.errors import ValidationError
from doit.models import Issue, TreeNode

DEFAULT_MAX_DEPTH = 10


def _node_order(node: TreeNode) -> tuple:
    return (node.depth, node.issue.priority, node.issue.created_at, node.issue.id)


def walk_tree(root: Issue, children_of: Callable[[str], list[Issue]],
              max_depth: int = DEFAULT_MAX_DEPTH) -> list[TreeNode]:
    """Walk the hierarchy below ``root``.

    ``children_of(id)`` returns the direct children of an issue. Each issue
    is emitted at most once, at the shallowest depth it is reached, so a
    cycle in the parent-child edges terminates. Nodes sitting at
    ``max_depth`` whose children were not expanded carry ``truncated=True``.

    Result order: depth, then priority, then creation time.
    """
    if max_depth < 0:
        raise ValidationError(f"max_depth cannot be negative (got {max_depth})")

    root_node = TreeNode(issue=root, depth=0)
    nodes = [root_node]
    visited = {root.id}
    frontier = deque([root_node])

    while frontier:
        node = frontier.popleft()
        children = [c for c in children_of(node.issue.id) if c.id not in visited]
        if node.depth >= max_depth:
            node.truncated = bool(children)
            continue
        children.sort(key=lambda c: (c.priority, c.created_at, c.id))
        for child in children:
            if child.id in visited:
                continue
            visited.add(child.id)
            child_node = TreeNode(issue=child, depth=node.depth + 1,
                                  parent_id=node.issue.id)
            nodes.append(child_node)
            frontier.append(child_node)

    nodes.sort(key=_node_order)
    return nodes
