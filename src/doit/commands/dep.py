"""doit dep - manage dependencies."""

from __future__ import annotations

import click

from doit.cli import DoitContext, pass_ctx
from doit.hierarchy import DEFAULT_MAX_DEPTH
from doit.models import Dependency, DepType, Direction
from doit.utils import format_priority, status_symbol, truncate


@click.group("dep")
def dep() -> None:
    """Manage issue dependencies."""


@dep.command("add")
@click.argument("issue_id")
@click.argument("depends_on_id")
@click.option("--type", "dep_type", default=DepType.BLOCKS, help="Dependency type")
@pass_ctx
def dep_add(ctx: DoitContext, issue_id: str, depends_on_id: str,
            dep_type: str) -> None:
    """Add a dependency: ISSUE_ID depends on DEPENDS_ON_ID."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_issue = ctx.resolve_issue_id(issue_id)
    full_depends = ctx.resolve_issue_id(depends_on_id)

    added = ctx.store.add_dependency(
        ctx.scope,
        Dependency(issue_id=full_issue, depends_on_id=full_depends,
                   type=dep_type, created_by=ctx.actor),
        ctx.actor,
    )

    if ctx.json_output:
        ctx.output(added.to_dict())
    elif not ctx.quiet:
        click.echo(f"Added dependency: {full_issue} depends on {full_depends} ({dep_type})")


@dep.command("remove")
@click.argument("issue_id")
@click.argument("depends_on_id")
@pass_ctx
def dep_remove(ctx: DoitContext, issue_id: str, depends_on_id: str) -> None:
    """Remove a dependency."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_issue = ctx.resolve_issue_id(issue_id)
    full_depends = ctx.resolve_issue_id(depends_on_id)

    ctx.store.remove_dependency(ctx.scope, full_issue, full_depends, ctx.actor)

    if not ctx.quiet:
        click.echo(f"Removed dependency: {full_issue} → {full_depends}")


@dep.command("list")
@click.argument("issue_id")
@click.option("--direction", default=Direction.BOTH,
              type=click.Choice([Direction.UPSTREAM, Direction.DOWNSTREAM, Direction.BOTH]),
              help="upstream: what this depends on; downstream: what depends on this")
@pass_ctx
def dep_list(ctx: DoitContext, issue_id: str, direction: str) -> None:
    """List dependencies for an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_id = ctx.resolve_issue_id(issue_id)
    edges = ctx.store.list_dependencies(ctx.scope, full_id, direction)

    if ctx.json_output:
        ctx.output([d.to_dict() for d in edges])
        return

    if not edges:
        click.echo(f"No dependencies for {full_id}")
        return

    for d in edges:
        if d.issue_id == full_id:
            click.echo(f"  → {d.depends_on_id} [{d.type}]")
        else:
            click.echo(f"  ← {d.issue_id} [{d.type}]")


@dep.command("tree")
@click.argument("issue_id")
@click.option("--max-depth", default=DEFAULT_MAX_DEPTH, type=click.IntRange(0),
              help="Maximum hops below the root")
@pass_ctx
def dep_tree(ctx: DoitContext, issue_id: str, max_depth: int) -> None:
    """Show the parent-child hierarchy below an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_id = ctx.resolve_issue_id(issue_id)
    nodes = ctx.store.get_dependency_tree(ctx.scope, full_id, max_depth)

    if ctx.json_output:
        ctx.output([n.to_dict() for n in nodes])
        return

    for node in nodes:
        indent = "  " * node.depth
        more = " …" if node.truncated else ""
        click.echo(f"{indent}[{status_symbol(node.issue.status)}] {node.issue.id} "
                   f"{format_priority(node.issue.priority)} {truncate(node.issue.title)}{more}")
