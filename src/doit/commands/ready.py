"""doit ready - show issues ready to work on."""

from __future__ import annotations

import click

from doit.cli import DoitContext, pass_ctx
from doit.models import IssueFilter
from doit.utils import format_issue_row


@click.command("ready")
@click.option("--type", "issue_type", default=None, help="Filter by type")
@click.option("--priority", "-p", type=click.IntRange(0, 4), default=None,
              help="Filter by priority")
@click.option("--assignee", "-a", default=None, help="Filter by assignee")
@click.option("--label", "-l", multiple=True, help="Filter by label")
@click.option("--limit", default=0, type=int, help="Max issues")
@click.option("--long", "-L", "long_format", is_flag=True, help="Long format")
@pass_ctx
def ready(ctx: DoitContext, issue_type: str | None, priority: int | None,
          assignee: str | None, label: tuple[str, ...], limit: int,
          long_format: bool) -> None:
    """Show open issues with no unresolved blockers, most urgent first."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    f = IssueFilter(issue_type=issue_type, priority=priority, assignee=assignee,
                    labels=list(label), limit=ctx.limit(limit))
    issues = ctx.store.list_ready(ctx.scope, f)

    if ctx.json_output:
        ctx.output([i.to_dict() for i in issues])
        return

    if not issues:
        click.echo("No ready issues.")
        return

    for issue in issues:
        click.echo(format_issue_row(issue, long_format=long_format))

    if not ctx.quiet:
        click.echo(f"\n{len(issues)} ready issue(s)")
