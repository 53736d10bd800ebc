"""doit msg - lightweight messages between actors.

A message is an issue of type ``message``: the subject is its title, the
body its description, the recipient its assignee. Replies link to the
message they answer with a ``replies-to`` edge whose thread id is the
first message of the conversation.
"""

from __future__ import annotations

import sys

import click

from doit.cli import DoitContext, pass_ctx
from doit.models import Dependency, DepType, Direction, Issue, IssueFilter, IssueType, SortBy, Status
from doit.utils import format_time_ago, truncate

READ_REASON = "read"


def _thread_root(ctx: DoitContext, message_id: str) -> str:
    assert ctx.store is not None and ctx.scope is not None
    for edge in ctx.store.list_dependencies(ctx.scope, message_id, Direction.UPSTREAM):
        if edge.type == DepType.REPLIES_TO:
            return edge.thread_id or edge.depends_on_id
    return message_id


@click.group("msg")
def msg() -> None:
    """Send and read messages."""


@msg.command("send")
@click.option("--to", "recipient", required=True, help="Recipient actor")
@click.option("--subject", "-s", required=True, help="Message subject")
@click.option("--body", "-b", default="", help="Message body")
@click.option("--reply-to", default="", help="Message ID this answers")
@click.option("--priority", "-p", default=2, type=click.IntRange(0, 4), help="Priority")
@pass_ctx
def msg_send(ctx: DoitContext, recipient: str, subject: str, body: str,
             reply_to: str, priority: int) -> None:
    """Send a message to another actor."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    original = ctx.resolve_issue_id(reply_to) if reply_to else None

    message = ctx.store.create_issue(ctx.scope, Issue(
        title=subject,
        description=body,
        issue_type=IssueType.MESSAGE,
        priority=priority,
        assignee=recipient,
        created_by=ctx.actor,
    ), ctx.actor)

    if original:
        ctx.store.add_dependency(
            ctx.scope,
            Dependency(issue_id=message.id, depends_on_id=original,
                       type=DepType.REPLIES_TO, created_by=ctx.actor,
                       thread_id=_thread_root(ctx, original)),
            ctx.actor,
        )

    if ctx.json_output:
        ctx.output(ctx.store.get_issue(ctx.scope, message.id).to_dict())
    elif not ctx.quiet:
        click.echo(f"Sent {message.id} to {recipient}: {subject}")


@msg.command("list")
@click.option("--to", "recipient", default=None, help="Recipient (default: yourself)")
@click.option("--all", "show_all", is_flag=True, help="Include read messages")
@click.option("--limit", default=0, type=int, help="Max messages")
@pass_ctx
def msg_list(ctx: DoitContext, recipient: str | None, show_all: bool, limit: int) -> None:
    """List messages addressed to an actor."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    f = IssueFilter(issue_type=IssueType.MESSAGE, assignee=recipient or ctx.actor,
                    sort=SortBy.OLDEST, limit=ctx.limit(limit))
    if not show_all:
        f.status_not = [Status.CLOSED]
    messages = ctx.store.list_issues(ctx.scope, f)

    if ctx.json_output:
        ctx.output([m.to_dict() for m in messages])
        return

    if not messages:
        click.echo("No messages.")
        return

    for m in messages:
        marker = " " if m.status == Status.CLOSED else "*"
        click.echo(f"{marker} {m.id:<20} {m.created_by or '-':<20} "
                   f"{truncate(m.title, 40)}  ({format_time_ago(m.created_at)})")


@msg.command("read")
@click.argument("message_id")
@pass_ctx
def msg_read(ctx: DoitContext, message_id: str) -> None:
    """Show a message and mark it read."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_id = ctx.resolve_issue_id(message_id)
    message = ctx.store.get_issue(ctx.scope, full_id)
    if message.issue_type != IssueType.MESSAGE:
        click.echo(f"Error: {full_id} is not a message", err=True)
        sys.exit(1)

    if message.status != Status.CLOSED:
        message = ctx.store.close_issue(ctx.scope, full_id, READ_REASON, ctx.actor)

    if ctx.json_output:
        ctx.output(message.to_dict())
        return

    click.echo(f"From:    {message.created_by}")
    click.echo(f"To:      {message.assignee}")
    click.echo(f"Subject: {message.title}")
    click.echo(f"Sent:    {format_time_ago(message.created_at)}")
    thread = _thread_root(ctx, full_id)
    if thread != full_id:
        click.echo(f"Thread:  {thread}")
    if message.description:
        click.echo()
        click.echo(message.description)
