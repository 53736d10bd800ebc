"""doit create - create a new issue."""

from __future__ import annotations

import click

from doit.cli import DoitContext, pass_ctx
from doit.models import Dependency, DepType, Issue, IssueType, Status, now_utc
from doit.utils import parse_time_spec

ISSUE_TYPES = sorted(IssueType._VALID)


def _time_option(value: str, hint: str):
    if not value:
        return None
    try:
        return parse_time_spec(value, now_utc())
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint=hint) from None


@click.command("create")
@click.option("--title", "-t", required=True, help="Issue title")
@click.option("--type", "issue_type", default="task", type=click.Choice(ISSUE_TYPES),
              help="Issue type")
@click.option("--priority", "-p", default=2, type=click.IntRange(0, 4),
              help="Priority (0=critical, 2=medium, 4=backlog)")
@click.option("--description", "-d", default="", help="Issue description")
@click.option("--design", default="", help="Design notes")
@click.option("--acceptance", default="", help="Acceptance criteria")
@click.option("--notes", "-n", default="", help="Additional notes")
@click.option("--assignee", "-a", default="", help="Assignee")
@click.option("--owner", default="", help="Owner")
@click.option("--labels", "-l", multiple=True, help="Labels (repeatable)")
@click.option("--parent", default="", help="Parent issue ID (creates a child ID)")
@click.option("--deps", multiple=True, help="Issue IDs that block this one")
@click.option("--project", "project_slug", default="", help="Project slug")
@click.option("--due", default="", help="Due date (ISO 8601 or relative like +2d)")
@click.option("--defer", "defer_until", default="",
              help="Defer until (ISO 8601 or relative like +6h)")
@click.option("--ephemeral", is_flag=True, help="Exclude from export")
@click.option("--id", "custom_id", default="", help="Custom issue ID")
@click.option("--silent", is_flag=True, help="Only output the issue ID")
@pass_ctx
def create(ctx: DoitContext, title: str, issue_type: str, priority: int,
           description: str, design: str, acceptance: str, notes: str,
           assignee: str, owner: str, labels: tuple[str, ...], parent: str,
           deps: tuple[str, ...], project_slug: str, due: str, defer_until: str,
           ephemeral: bool, custom_id: str, silent: bool) -> None:
    """Create a new issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    issue = Issue(
        id=custom_id,
        title=title,
        description=description,
        design=design,
        acceptance_criteria=acceptance,
        notes=notes,
        status=Status.OPEN,
        priority=priority,
        issue_type=issue_type,
        assignee=assignee,
        owner=owner,
        created_by=ctx.actor,
        ephemeral=ephemeral,
        labels=list(labels),
        due_at=_time_option(due, "--due"),
        defer_until=_time_option(defer_until, "--defer"),
    )
    if project_slug:
        issue.project_id = ctx.store.get_project_by_slug(ctx.scope, project_slug).id

    parent_id = ctx.resolve_issue_id(parent) if parent else None
    blockers = [ctx.resolve_issue_id(d) for d in deps]

    created = ctx.store.create_issue(ctx.scope, issue, ctx.actor, parent_id=parent_id)

    for blocker in blockers:
        ctx.store.add_dependency(
            ctx.scope,
            Dependency(issue_id=created.id, depends_on_id=blocker,
                       type=DepType.BLOCKS, created_by=ctx.actor),
            ctx.actor,
        )

    if ctx.json_output:
        ctx.output(ctx.store.get_issue(ctx.scope, created.id).to_dict())
    elif silent:
        click.echo(created.id)
    else:
        click.echo(f"Created {issue_type} {created.id}: {title}")
