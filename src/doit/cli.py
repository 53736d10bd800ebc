"""Click CLI root and global flags for doit."""

from __future__ import annotations

import json
import logging
import sys

import click

from doit import __version__
from doit.auth import resolve_scope, scope_for_tenant
from doit.config import DoitConfig, find_doit_dir, get_actor, get_db_path
from doit.errors import DoitError
from doit.scope import Scope
from doit.storage.sqlite_store import SQLiteStorage

logger = logging.getLogger(__name__)


class DoitContext:
    """Shared context for all commands."""

    def __init__(self) -> None:
        self.doit_dir: str | None = None
        self.store: SQLiteStorage | None = None
        self.config: DoitConfig | None = None
        self.scope: Scope | None = None
        self.actor: str = ""
        self.db: str | None = None
        self.tenant: str | None = None
        self.api_key: str | None = None
        self.projects: tuple[str, ...] = ()
        self.json_output: bool = False
        self.verbose: bool = False
        self.quiet: bool = False

    def ensure_store(self) -> None:
        """Locate .doit/, load config and open the store."""
        if self.store is not None:
            return
        self.doit_dir = find_doit_dir()
        if self.doit_dir is None:
            click.echo("Error: not in a doit project (no .doit/ directory found)", err=True)
            click.echo("Run 'doit init' to create one", err=True)
            sys.exit(1)
        self.config = DoitConfig.load(self.doit_dir)
        if self.db:
            self.config.db = self.db
        if self.tenant:
            self.config.tenant = self.tenant
        if self.api_key:
            self.config.api_key = self.api_key
        if not self.verbose:
            try:
                logging.getLogger("doit").setLevel(self.config.log_level.upper())
            except ValueError:
                logger.warning("unknown log level %r", self.config.log_level)
        if not self.actor:
            self.actor = get_actor(self.config)
        if not self.json_output:
            self.json_output = self.config.json_output

        db_path = get_db_path(self.doit_dir, self.config)
        self.store = SQLiteStorage(
            db_path,
            query_timeout=self.config.query_timeout_seconds(),
            id_prefix=self.config.id_prefix,
        )

    def ensure_initialized(self) -> None:
        """Open the store and resolve the caller's tenant scope."""
        self.ensure_store()
        if self.scope is not None:
            return
        assert self.store is not None and self.config is not None
        if self.config.api_key:
            self.scope = resolve_scope(self.store, self.config.api_key,
                                       self.projects, actor=self.actor)
        else:
            self.scope = scope_for_tenant(self.store, self.config.tenant,
                                          self.projects, actor=self.actor)
        logger.debug("resolved scope tenant=%s projects=%s",
                     self.scope.tenant_id, self.scope.project_ids)

    def resolve_issue_id(self, partial: str) -> str:
        """Resolve a partial issue ID or exit with error."""
        assert self.store is not None and self.scope is not None
        full_id = self.store.resolve_id(self.scope, partial)
        if full_id is None:
            click.echo(f"Error: issue not found or ambiguous: {partial}", err=True)
            sys.exit(1)
        return full_id

    def limit(self, requested: int) -> int:
        assert self.config is not None
        return self.config.clamp_limit(requested)

    def close(self) -> None:
        if self.store is not None:
            self.store.close()
            self.store = None
            self.scope = None

    def output(self, data: dict | list) -> None:
        """Output data as JSON."""
        click.echo(json.dumps(data, indent=2, default=str))


pass_ctx = click.make_pass_decorator(DoitContext, ensure=True)


class DoitGroup(click.Group):
    """Root group that reports doit errors as a single line and exit 1."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except DoitError as e:
            logger.debug("command failed", exc_info=True)
            click.echo(f"Error: {e}", err=True)
            ctx.exit(1)


@click.group(cls=DoitGroup, invoke_without_command=True)
@click.option("--db", envvar="DOIT_DB", help="Path to database file")
@click.option("--actor", envvar="DOIT_ACTOR", help="Actor name for audit trails")
@click.option("--tenant", envvar="DOIT_TENANT", help="Tenant slug to operate in")
@click.option("--api-key", envvar="DOIT_API_KEY", help="API key (overrides --tenant)")
@click.option("--project", "projects", multiple=True, help="Restrict to project slug (repeatable)")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.version_option(__version__, prog_name="doit")
@click.pass_context
def cli(ctx: click.Context, db: str | None, actor: str | None, tenant: str | None,
        api_key: str | None, projects: tuple[str, ...], json_output: bool,
        verbose: bool, quiet: bool) -> None:
    """doit - dependency-aware work tracking"""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    dctx = ctx.ensure_object(DoitContext)
    ctx.call_on_close(dctx.close)
    dctx.verbose = verbose
    dctx.quiet = quiet
    dctx.projects = projects
    if json_output:
        dctx.json_output = True
    if actor:
        dctx.actor = actor
    dctx.db = db
    dctx.tenant = tenant
    dctx.api_key = api_key

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# --- Register all command groups ---

from doit.commands.init_cmd import init_cmd
from doit.commands.create import create
from doit.commands.list_cmd import list_cmd
from doit.commands.show import show
from doit.commands.update import update
from doit.commands.close import close
from doit.commands.reopen import reopen
from doit.commands.delete import delete
from doit.commands.ready import ready
from doit.commands.dep import dep
from doit.commands.labels import label
from doit.commands.comments import comments, comment_add
from doit.commands.compact import compact
from doit.commands.export_cmd import export_cmd
from doit.commands.tenant import apikey, project, tenant
from doit.commands.msg import msg
from doit.commands.lesson import lesson

cli.add_command(init_cmd, "init")
cli.add_command(create, "create")
cli.add_command(create, "new")  # Alias
cli.add_command(list_cmd, "list")
cli.add_command(show, "show")
cli.add_command(update, "update")
cli.add_command(close, "close")
cli.add_command(reopen, "reopen")
cli.add_command(delete, "delete")
cli.add_command(ready, "ready")
cli.add_command(dep, "dep")
cli.add_command(label, "label")
cli.add_command(comments, "comments")
cli.add_command(comment_add, "comment")
cli.add_command(compact, "compact")
cli.add_command(export_cmd, "export")
cli.add_command(tenant, "tenant")
cli.add_command(apikey, "apikey")
cli.add_command(project, "project")
cli.add_command(msg, "msg")
cli.add_command(lesson, "lesson")


def main() -> None:
    cli(auto_envvar_prefix="DOIT")
