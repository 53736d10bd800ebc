"""doit show - display issue details."""

from __future__ import annotations

import click

from doit.cli import DoitContext, pass_ctx
from doit.models import Direction, format_timestamp
from doit.utils import format_priority, format_time_ago, priority_label


def _section(heading: str, text: str) -> None:
    click.echo(f"\n  {heading}:")
    for line in text.split("\n"):
        click.echo(f"    {line}")


@click.command("show")
@click.argument("issue_id")
@click.option("--events", "show_events", is_flag=True, help="Include the audit trail")
@pass_ctx
def show(ctx: DoitContext, issue_id: str, show_events: bool) -> None:
    """Show detailed view of an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_id = ctx.resolve_issue_id(issue_id)
    issue = ctx.store.get_issue(ctx.scope, full_id)
    edges = ctx.store.list_dependencies(ctx.scope, full_id, Direction.BOTH)
    outgoing = [e for e in edges if e.issue_id == full_id]
    incoming = [e for e in edges if e.depends_on_id == full_id]
    comment_list = ctx.store.get_comments(ctx.scope, full_id)
    events = ctx.store.get_events(ctx.scope, full_id) if show_events else []

    if ctx.json_output:
        data = issue.to_dict()
        data["dependents"] = [d.to_dict() for d in incoming]
        data["comments"] = [c.to_dict() for c in comment_list]
        if show_events:
            data["events"] = [e.to_dict() for e in events]
        if issue.compaction_level:
            data["snapshots"] = [
                s.to_dict() for s in ctx.store.get_compaction_snapshots(ctx.scope, full_id)
            ]
        ctx.output(data)
        return

    click.echo(f"{'─' * 60}")
    click.echo(f"  {issue.id}")
    click.echo(f"{'─' * 60}")
    click.echo(f"  Title:    {issue.title}")
    click.echo(f"  Status:   {issue.status}")
    click.echo(f"  Priority: {format_priority(issue.priority)} ({priority_label(issue.priority)})")
    click.echo(f"  Type:     {issue.issue_type}")

    if issue.assignee:
        click.echo(f"  Assignee: {issue.assignee}")
    if issue.owner:
        click.echo(f"  Owner:    {issue.owner}")
    if issue.parent_id:
        click.echo(f"  Parent:   {issue.parent_id}")

    click.echo(f"  Created:  {format_time_ago(issue.created_at)}")
    if issue.created_by:
        click.echo(f"  By:       {issue.created_by}")
    click.echo(f"  Updated:  {format_time_ago(issue.updated_at)}")

    if issue.closed_at:
        click.echo(f"  Closed:   {format_time_ago(issue.closed_at)}")
    if issue.close_reason:
        click.echo(f"  Reason:   {issue.close_reason}")
    if issue.due_at:
        click.echo(f"  Due:      {format_timestamp(issue.due_at)}")
    if issue.defer_until:
        click.echo(f"  Deferred: until {format_timestamp(issue.defer_until)}")
    if issue.compaction_level:
        click.echo(f"  Compacted: level {issue.compaction_level} "
                   f"({issue.original_size} chars originally)")
    if issue.labels:
        click.echo(f"  Labels:   {', '.join(issue.labels)}")

    if issue.description:
        _section("Description", issue.description)
    if issue.design:
        _section("Design", issue.design)
    if issue.acceptance_criteria:
        _section("Acceptance Criteria", issue.acceptance_criteria)
    if issue.notes:
        _section("Notes", issue.notes)

    if outgoing:
        click.echo("\n  Depends on:")
        for dep in outgoing:
            click.echo(f"    → {dep.depends_on_id} [{dep.type}]")
    if incoming:
        click.echo("\n  Depended on by:")
        for dep in incoming:
            click.echo(f"    ← {dep.issue_id} [{dep.type}]")

    if comment_list:
        click.echo(f"\n  Comments ({len(comment_list)}):")
        for c in comment_list:
            click.echo(f"    [{format_time_ago(c.created_at)}] {c.author}: {c.text}")

    if events:
        click.echo("\n  Events:")
        for e in events:
            detail = " → ".join(v for v in (e.old_value, e.new_value) if v)
            click.echo(f"    [{format_time_ago(e.created_at)}] {e.event_type} by {e.actor}"
                       + (f": {detail}" if detail else ""))

    click.echo()
