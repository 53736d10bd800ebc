"""doit init - initialize a new .doit/ directory."""

from __future__ import annotations

import os

import click

from doit.cli import DoitContext, pass_ctx
from doit.config import DEFAULT_TENANT, DOIT_DIR, DoitConfig, get_db_path
from doit.errors import NotFoundError
from doit.id_gen import DEFAULT_PREFIX
from doit.storage.sqlite_store import SQLiteStorage


@click.command("init")
@click.option("--prefix", help="Issue ID prefix (default: directory name)")
@click.option("--tenant", "tenant_slug", default=DEFAULT_TENANT, show_default=True,
              help="Tenant slug to create and use")
@pass_ctx
def init_cmd(ctx: DoitContext, prefix: str | None, tenant_slug: str) -> None:
    """Initialize a new doit project in the current directory."""
    doit_dir = os.path.join(os.getcwd(), DOIT_DIR)

    if os.path.exists(doit_dir):
        click.echo(f"doit already initialized at {doit_dir}")
        return

    if not prefix:
        prefix = os.path.basename(os.getcwd()).lower()
        prefix = "".join(c if c.isalnum() or c == "-" else "-" for c in prefix)
        prefix = prefix.strip("-") or DEFAULT_PREFIX

    os.makedirs(doit_dir, exist_ok=True)

    config = DoitConfig(id_prefix=prefix, tenant=tenant_slug)
    config.save(doit_dir)

    with open(os.path.join(doit_dir, ".gitignore"), "w") as f:
        f.write("# doit local files\n")
        f.write("*.db\n")
        f.write("*.db-wal\n")
        f.write("*.db-shm\n")

    db_path = get_db_path(doit_dir, config)
    store = SQLiteStorage(db_path, id_prefix=prefix)
    try:
        try:
            store.get_tenant_by_slug(tenant_slug)
        except NotFoundError:
            store.create_tenant(tenant_slug, tenant_slug)
    finally:
        store.close()

    click.echo(f"Initialized doit in {doit_dir}")
    click.echo(f"  Issue prefix: {prefix}")
    click.echo(f"  Tenant: {tenant_slug}")
    click.echo(f"  Database: {os.path.basename(db_path)}")
