"""doit reopen - reopen a closed issue."""

from __future__ import annotations

import sys

import click

from doit.cli import DoitContext, pass_ctx
from doit.models import Status


@click.command("reopen")
@click.argument("issue_id")
@pass_ctx
def reopen(ctx: DoitContext, issue_id: str) -> None:
    """Reopen a closed issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_id = ctx.resolve_issue_id(issue_id)
    issue = ctx.store.get_issue(ctx.scope, full_id)
    if issue.status != Status.CLOSED:
        click.echo(f"Error: issue is not closed (status: {issue.status})", err=True)
        sys.exit(1)

    ctx.store.reopen_issue(ctx.scope, full_id, ctx.actor)

    if ctx.json_output:
        ctx.output({"id": full_id, "status": Status.OPEN})
    elif not ctx.quiet:
        click.echo(f"Reopened {full_id}: {issue.title}")
