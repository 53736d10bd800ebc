"""doit lesson - record mistakes and their corrections."""

from __future__ import annotations

import click

from doit.cli import DoitContext, pass_ctx
from doit.models import Lesson, LessonFilter, LessonStatus
from doit.utils import format_time_ago, truncate


def _project_id(ctx: DoitContext, slug: str) -> int | None:
    if not slug:
        return None
    assert ctx.store is not None and ctx.scope is not None
    return ctx.store.get_project_by_slug(ctx.scope, slug).id


@click.group("lesson")
def lesson() -> None:
    """Manage lessons learned."""


@lesson.command("record")
@click.option("--title", "-t", required=True, help="Short name for the lesson")
@click.option("--mistake", "-m", required=True, help="What went wrong")
@click.option("--correction", "-c", required=True, help="What to do instead")
@click.option("--issue", "issue_id", default="", help="Issue the lesson came from")
@click.option("--expert", default="", help="Who to ask about it")
@click.option("--component", "components", multiple=True,
              help="Affected component (repeatable)")
@click.option("--severity", "-s", default=2, type=click.IntRange(0, 4),
              help="Severity (0=critical, 4=minor)")
@click.option("--project", "project_slug", default="", help="Project slug")
@pass_ctx
def lesson_record(ctx: DoitContext, title: str, mistake: str, correction: str,
                  issue_id: str, expert: str, components: tuple[str, ...],
                  severity: int, project_slug: str) -> None:
    """Record a lesson learned."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    recorded = ctx.store.record_lesson(ctx.scope, Lesson(
        title=title,
        mistake=mistake,
        correction=correction,
        issue_id=ctx.resolve_issue_id(issue_id) if issue_id else None,
        expert=expert,
        components=list(components),
        severity=severity,
        project_id=_project_id(ctx, project_slug),
        created_by=ctx.actor,
    ), ctx.actor)

    if ctx.json_output:
        ctx.output(recorded.to_dict())
    else:
        click.echo(f"Recorded lesson {recorded.id}: {recorded.title}")


@lesson.command("list")
@click.option("--status", type=click.Choice(sorted(LessonStatus._VALID)), default=None,
              help="Filter by status")
@click.option("--expert", default=None, help="Filter by expert")
@click.option("--component", default=None, help="Filter by component")
@click.option("--severity", type=click.IntRange(0, 4), default=None,
              help="Filter by severity")
@click.option("--project", "project_slug", default="", help="Filter by project slug")
@click.option("--limit", default=0, type=click.IntRange(min=0), help="Max lessons to show")
@pass_ctx
def lesson_list(ctx: DoitContext, status: str | None, expert: str | None,
                component: str | None, severity: int | None, project_slug: str,
                limit: int) -> None:
    """List lessons, most severe first."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    lessons = ctx.store.list_lessons(ctx.scope, LessonFilter(
        project_id=_project_id(ctx, project_slug),
        status=status,
        expert=expert,
        component=component,
        severity=severity,
        limit=limit,
    ))

    if ctx.json_output:
        ctx.output([lsn.to_dict() for lsn in lessons])
        return

    if not lessons:
        click.echo("No lessons found.")
        return

    for lsn in lessons:
        mark = "x" if lsn.status == LessonStatus.RESOLVED else " "
        tags = f" [{', '.join(lsn.components)}]" if lsn.components else ""
        click.echo(f"[{mark}] {lsn.id} S{lsn.severity} {truncate(lsn.title)}{tags}")
        if ctx.verbose:
            click.echo(f"    mistake:    {lsn.mistake}")
            click.echo(f"    correction: {lsn.correction}")
            click.echo(f"    recorded {format_time_ago(lsn.created_at)}")


@lesson.command("resolve")
@click.argument("lesson_id")
@pass_ctx
def lesson_resolve(ctx: DoitContext, lesson_id: str) -> None:
    """Mark a lesson as resolved."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    resolved = ctx.store.resolve_lesson(ctx.scope, lesson_id, ctx.actor)

    if ctx.json_output:
        ctx.output(resolved.to_dict())
    else:
        click.echo(f"Resolved lesson {resolved.id}: {resolved.title}")
