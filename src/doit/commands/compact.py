"""doit compact - decay old closed issues."""

from __future__ import annotations

import click

from doit.cli import DoitContext, pass_ctx
from doit.compact import DEFAULT_CLOSED_AGE, Compactor


@click.command("compact")
@click.option("--age", "closed_age", default=DEFAULT_CLOSED_AGE, show_default=True,
              help="Closed for longer than this reaches level 1; twice this reaches level 2")
@pass_ctx
def compact(ctx: DoitContext, closed_age: str) -> None:
    """Summarize closed issues that have aged past the threshold."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    results = Compactor(ctx.store).compact_old(ctx.scope, closed_age, actor=ctx.actor)

    if ctx.json_output:
        ctx.output([r.to_dict() for r in results])
        return

    if not results:
        click.echo("Nothing to compact.")
        return

    for r in results:
        click.echo(f"  {r.issue_id}: level {r.old_level} → {r.new_level}")
    if not ctx.quiet:
        click.echo(f"\nCompacted {len(results)} issue(s)")
