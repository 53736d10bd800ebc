"""doit list - list issues."""

from __future__ import annotations

import click

from doit.cli import DoitContext, pass_ctx
from doit.models import IssueFilter, SortBy, Status
from doit.utils import format_issue_row

SORT_CHOICES = [SortBy.HYBRID, SortBy.PRIORITY, SortBy.OLDEST, SortBy.UPDATED]


@click.command("list")
@click.option("--status", "-s", "status", default=None, help="Filter by status")
@click.option("--priority", "-p", type=click.IntRange(0, 4), default=None,
              help="Filter by priority")
@click.option("--assignee", "-a", default=None, help="Filter by assignee")
@click.option("--owner", default=None, help="Filter by owner")
@click.option("--type", "issue_type", default=None, help="Filter by issue type")
@click.option("--label", "-l", multiple=True, help="Filter by label (AND)")
@click.option("--label-any", multiple=True, help="Filter by label (OR)")
@click.option("--parent", default=None, help="Only direct children of this issue")
@click.option("--search", default="", help="Substring match on title/description")
@click.option("--overdue", is_flag=True, help="Only issues past their due date")
@click.option("--limit", default=0, type=int, help="Max issues to show")
@click.option("--offset", default=0, type=int, help="Skip this many issues")
@click.option("--all", "show_all", is_flag=True, help="Include closed issues")
@click.option("--sort", "sort_by", default=SortBy.HYBRID, type=click.Choice(SORT_CHOICES),
              help="Sort order")
@click.option("--long", "-L", "long_format", is_flag=True, help="Long format with extra fields")
@pass_ctx
def list_cmd(ctx: DoitContext, status: str | None, priority: int | None,
             assignee: str | None, owner: str | None, issue_type: str | None,
             label: tuple[str, ...], label_any: tuple[str, ...], parent: str | None,
             search: str, overdue: bool, limit: int, offset: int, show_all: bool,
             sort_by: str, long_format: bool) -> None:
    """List issues with filters."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    f = IssueFilter(
        status=status,
        priority=priority,
        issue_type=issue_type,
        assignee=assignee,
        owner=owner,
        search=search,
        labels=list(label),
        labels_any=list(label_any),
        overdue=overdue,
        sort=sort_by,
        limit=ctx.limit(limit),
        offset=offset,
    )
    if not status and not show_all:
        f.status_not = [Status.CLOSED]
    if parent:
        f.parent_id = ctx.resolve_issue_id(parent)

    issues = ctx.store.list_issues(ctx.scope, f)

    if ctx.json_output:
        ctx.output([i.to_dict() for i in issues])
        return

    if not issues:
        click.echo("No issues found.")
        return

    for issue in issues:
        click.echo(format_issue_row(issue, long_format=long_format))

    if not ctx.quiet:
        click.echo(f"\n{len(issues)} issue(s)")
