"""doit tenant / apikey / project - tenancy administration."""

from __future__ import annotations

import click

from doit.auth import generate_api_key, hash_api_key
from doit.cli import DoitContext, pass_ctx


@click.group("tenant")
def tenant() -> None:
    """Manage tenants."""


@tenant.command("create")
@click.argument("slug")
@click.option("--name", default="", help="Display name (default: slug)")
@pass_ctx
def tenant_create(ctx: DoitContext, slug: str, name: str) -> None:
    """Create a tenant."""
    ctx.ensure_store()
    assert ctx.store is not None

    created = ctx.store.create_tenant(name or slug, slug)

    if ctx.json_output:
        ctx.output(created.to_dict())
    elif not ctx.quiet:
        click.echo(f"Created tenant {created.slug}")


@tenant.command("list")
@pass_ctx
def tenant_list(ctx: DoitContext) -> None:
    """List tenants."""
    ctx.ensure_store()
    assert ctx.store is not None

    tenants = ctx.store.list_tenants()

    if ctx.json_output:
        ctx.output([t.to_dict() for t in tenants])
        return

    for t in tenants:
        click.echo(f"  {t.slug:<20} {t.name}")


@click.group("apikey")
def apikey() -> None:
    """Manage API keys."""


@apikey.command("create")
@click.argument("tenant_slug")
@click.option("--label", default="", help="Free-form note for the key")
@pass_ctx
def apikey_create(ctx: DoitContext, tenant_slug: str, label: str) -> None:
    """Mint an API key for a tenant. The key is shown only once."""
    ctx.ensure_store()
    assert ctx.store is not None

    raw, prefix = generate_api_key()
    key = ctx.store.create_api_key(tenant_slug, label, hash_api_key(raw), prefix)

    if ctx.json_output:
        data = key.to_dict()
        data["key"] = raw
        ctx.output(data)
        return

    click.echo(f"Created API key {prefix} for tenant {tenant_slug}")
    click.echo(f"  {raw}")
    click.echo("Store it now; it cannot be shown again.")


@apikey.command("list")
@click.argument("tenant_slug")
@pass_ctx
def apikey_list(ctx: DoitContext, tenant_slug: str) -> None:
    """List a tenant's API keys."""
    ctx.ensure_store()
    assert ctx.store is not None

    keys = ctx.store.list_api_keys(tenant_slug)

    if ctx.json_output:
        ctx.output([k.to_dict() for k in keys])
        return

    if not keys:
        click.echo(f"No API keys for {tenant_slug}")
        return

    for k in keys:
        state = "revoked" if k.revoked else "active"
        click.echo(f"  {k.prefix}  {state:<8} {k.label}")


@apikey.command("revoke")
@click.argument("prefix")
@pass_ctx
def apikey_revoke(ctx: DoitContext, prefix: str) -> None:
    """Revoke an API key by its display prefix."""
    ctx.ensure_store()
    assert ctx.store is not None

    ctx.store.revoke_api_key(prefix)

    if not ctx.quiet:
        click.echo(f"Revoked {prefix}")


@click.group("project")
def project() -> None:
    """Manage projects within the current tenant."""


@project.command("create")
@click.argument("slug")
@click.option("--name", default="", help="Display name (default: slug)")
@pass_ctx
def project_create(ctx: DoitContext, slug: str, name: str) -> None:
    """Create a project."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    created = ctx.store.create_project(ctx.scope, name or slug, slug)

    if ctx.json_output:
        ctx.output(created.to_dict())
    elif not ctx.quiet:
        click.echo(f"Created project {created.slug}")


@project.command("list")
@pass_ctx
def project_list(ctx: DoitContext) -> None:
    """List projects in the current tenant."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.scope is not None

    projects = ctx.store.list_projects(ctx.scope)

    if ctx.json_output:
        ctx.output([p.to_dict() for p in projects])
        return

    if not projects:
        click.echo("No projects.")
        return

    for p in projects:
        click.echo(f"  {p.slug:<20} {p.name}")
