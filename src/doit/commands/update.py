"""doit update - update an issue."""

from __future__ import annotations

import sys

import click

from doit.cli import DoitContext, pass_ctx
from doit.models import Status


@click.command("update")
@click.argument("issue_id")
@click.option("--status", "-s", default=None, help="New status")
@click.option("--priority", "-p", type=click.IntRange(0, 4), default=None,
              help="New priority (0-4)")
@click.option("--title", "-t", default=None, help="New title")
@click.option("--type", "issue_type", default=None, help="New issue type")
@click.option("--assignee", "-a", default=None, help="New assignee (empty to clear)")
@click.option("--owner", default=None, help="New owner")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--design", default=None, help="New design notes")
@click.option("--acceptance", default=None, help="New acceptance criteria")
@click.option("--notes", "-n", default=None, help="New notes")
@click.option("--append-notes", default=None, help="Append to notes")
@click.option("--external-ref", default=None, help="External reference")
@click.option("--add-label", multiple=True, help="Add label")
@click.option("--remove-label", multiple=True, help="Remove label")
@click.option("--due", default=None, help="Due date (ISO 8601 or +2d, empty to clear)")
@click.option("--defer", "defer_until", default=None,
              help="Defer until (ISO 8601 or +6h, empty to clear)")
@click.option("--pinned/--unpinned", default=None, help="Pin or unpin")
@click.option("--claim", is_flag=True, help="Claim issue (set assignee to actor, status to in_progress)")
@pass_ctx
def update(ctx: DoitContext, issue_id: str, status: str | None,
           priority: int | None, title: str | None, issue_type: str | None,
           assignee: str | None, owner: str | None, description: str | None,
           design: str | None, acceptance: str | None, notes: str | None,
           append_notes: str | None, external_ref: str | None,
           add_label: tuple[str, ...], remove_label: tuple[str, ...],
           due: str | None, defer_until: str | None, pinned: bool | None,
           claim: bool) -> None:
    """Update an existing issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    full_id = ctx.resolve_issue_id(issue_id)

    updates: dict = {
        "status": status,
        "priority": priority,
        "title": title,
        "issue_type": issue_type,
        "assignee": assignee,
        "owner": owner,
        "description": description,
        "design": design,
        "acceptance_criteria": acceptance,
        "notes": notes,
        "external_ref": external_ref,
        "due_at": due,
        "defer_until": defer_until,
        "pinned": pinned,
    }
    if claim:
        updates["assignee"] = ctx.actor
        updates["status"] = Status.IN_PROGRESS
    if append_notes is not None:
        current = ctx.store.get_issue(ctx.scope, full_id)
        updates["notes"] = f"{current.notes}\n{append_notes}" if current.notes else append_notes

    updates = {k: v for k, v in updates.items() if v is not None}
    if not updates and not add_label and not remove_label:
        click.echo("No updates specified.", err=True)
        sys.exit(1)

    if updates:
        ctx.store.update_issue(ctx.scope, full_id, updates, ctx.actor)

    for lbl in add_label:
        ctx.store.add_label(ctx.scope, full_id, lbl, ctx.actor)
    for lbl in remove_label:
        ctx.store.remove_label(ctx.scope, full_id, lbl, ctx.actor)

    if ctx.json_output:
        ctx.output(ctx.store.get_issue(ctx.scope, full_id).to_dict())
    elif not ctx.quiet:
        click.echo(f"Updated {full_id}")
