"""doit comments / doit comment - read and add comments."""

from __future__ import annotations

import click

from doit.cli import DoitContext, pass_ctx
from doit.utils import format_time_ago


@click.command("comments")
@click.argument("issue_id")
@pass_ctx
def comments(ctx: DoitContext, issue_id: str) -> None:
    """List comments for an issue, oldest first."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_id = ctx.resolve_issue_id(issue_id)
    comment_list = ctx.store.get_comments(ctx.scope, full_id)

    if ctx.json_output:
        ctx.output([c.to_dict() for c in comment_list])
        return

    if not comment_list:
        click.echo(f"No comments on {full_id}")
        return

    for c in comment_list:
        click.echo(f"  [{format_time_ago(c.created_at)}] {c.author}: {c.text}")


@click.command("comment")
@click.argument("issue_id")
@click.argument("text")
@pass_ctx
def comment_add(ctx: DoitContext, issue_id: str, text: str) -> None:
    """Add a comment to an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_id = ctx.resolve_issue_id(issue_id)
    comment = ctx.store.add_comment(ctx.scope, full_id, ctx.actor, text)

    if ctx.json_output:
        ctx.output(comment.to_dict())
    elif not ctx.quiet:
        click.echo(f"Added comment to {full_id}")
