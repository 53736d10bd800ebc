"""doit export - write issues to JSONL."""

from __future__ import annotations

import os

import click

from doit.cli import DoitContext, pass_ctx
from doit.export import export_jsonl

DEFAULT_EXPORT_FILE = "issues.jsonl"


@click.command("export")
@click.option("--output", "-o", "output_path", default=None,
              help="Output file (default: .doit/issues.jsonl)")
@pass_ctx
def export_cmd(ctx: DoitContext, output_path: str | None) -> None:
    """Export non-ephemeral issues as one JSON object per line."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None and ctx.doit_dir is not None

    path = output_path or os.path.join(ctx.doit_dir, DEFAULT_EXPORT_FILE)
    count = export_jsonl(ctx.store, ctx.scope, path)

    if ctx.json_output:
        ctx.output({"exported": count, "path": path})
    elif not ctx.quiet:
        click.echo(f"Exported {count} issue(s) to {path}")
