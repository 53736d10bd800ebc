"""doit close - close one or more issues."""

from __future__ import annotations

import click

from doit.cli import DoitContext, pass_ctx
from doit.models import IssueFilter, Status


@click.command("close")
@click.argument("issue_ids", nargs=-1, required=True)
@click.option("--reason", "-r", default="", help="Close reason")
@click.option("--suggest-next", is_flag=True, help="Suggest next issue to work on")
@pass_ctx
def close(ctx: DoitContext, issue_ids: tuple[str, ...], reason: str,
          suggest_next: bool) -> None:
    """Close one or more issues."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    closed_ids = []
    for partial_id in issue_ids:
        full_id = ctx.resolve_issue_id(partial_id)
        issue = ctx.store.get_issue(ctx.scope, full_id)
        if issue.status == Status.CLOSED:
            click.echo(f"Already closed: {full_id}", err=True)
            continue

        ctx.store.close_issue(ctx.scope, full_id, reason, ctx.actor)
        closed_ids.append(full_id)

        if not ctx.quiet and not ctx.json_output:
            click.echo(f"Closed {full_id}: {issue.title}")

    if ctx.json_output:
        ctx.output({"closed": closed_ids})

    if suggest_next and closed_ids:
        ready = ctx.store.list_ready(ctx.scope, IssueFilter(limit=3))
        if ready:
            click.echo("\nSuggested next:")
            for r in ready:
                click.echo(f"  {r.id} P{r.priority} {r.title}")
