"""doit delete - permanently delete an issue."""

from __future__ import annotations

import click

from doit.cli import DoitContext, pass_ctx


@click.command("delete")
@click.argument("issue_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@pass_ctx
def delete(ctx: DoitContext, issue_id: str, yes: bool) -> None:
    """Delete an issue with its edges, labels, comments and history."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_id = ctx.resolve_issue_id(issue_id)
    if not yes:
        click.confirm(f"Permanently delete {full_id}?", abort=True)

    ctx.store.delete_issue(ctx.scope, full_id)

    if ctx.json_output:
        ctx.output({"deleted": full_id})
    elif not ctx.quiet:
        click.echo(f"Deleted {full_id}")
