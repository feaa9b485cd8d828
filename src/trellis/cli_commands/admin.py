"""CLI commands for tenants and tenant admins."""

from __future__ import annotations

import json as json_mod
import sqlite3

import click

from trellis.cli_common import fail, get_db
from trellis.errors import ValidationError
from trellis.presets import BUILTIN_PRESETS


@click.group()
def tenant() -> None:
    """Manage tenants and their admins."""


@tenant.command("create")
@click.argument("name")
@click.option("--id", "tenant_id", default=None, help="Explicit tenant id (default: generated)")
@click.option("--preset", "preset_key", type=click.Choice(sorted(BUILTIN_PRESETS)), default=None, help="Current preset key")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def create_tenant(name: str, tenant_id: str | None, preset_key: str | None, as_json: bool) -> None:
    """Create a tenant."""
    with get_db() as db:
        try:
            t = db.create_tenant(name, tenant_id=tenant_id, preset_key=preset_key or "")
        except ValidationError as e:
            fail(e, as_json=as_json)
        except sqlite3.IntegrityError:
            fail(f"Tenant already exists: {tenant_id}", as_json=as_json)
        if as_json:
            click.echo(json_mod.dumps(t.to_dict(), indent=2))
        else:
            click.echo(f"Created tenant {t.id}: {t.name}")


@tenant.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_tenants(as_json: bool) -> None:
    """List tenants."""
    with get_db() as db:
        tenants = db.list_tenants()
        if as_json:
            click.echo(json_mod.dumps([t.to_dict() for t in tenants], indent=2))
            return
        if not tenants:
            click.echo("No tenants.")
            return
        for t in tenants:
            click.echo(f"{t.id}  {t.name}  [{t.preset_key}]")


@tenant.command("grant-admin")
@click.argument("tenant_id")
@click.argument("admin_actor")
def grant_admin(tenant_id: str, admin_actor: str) -> None:
    """Allow ADMIN_ACTOR to migrate and roll back TENANT_ID."""
    with get_db() as db:
        try:
            added = db.grant_admin(tenant_id, admin_actor)
        except KeyError:
            fail(f"Tenant not found: {tenant_id}")
        if added:
            click.echo(f"Granted admin on {tenant_id} to {admin_actor}")
        else:
            click.echo(f"{admin_actor} is already an admin of {tenant_id}")


@tenant.command("revoke-admin")
@click.argument("tenant_id")
@click.argument("admin_actor")
def revoke_admin(tenant_id: str, admin_actor: str) -> None:
    """Remove ADMIN_ACTOR's admin rights on TENANT_ID."""
    with get_db() as db:
        if db.revoke_admin(tenant_id, admin_actor):
            click.echo(f"Revoked admin on {tenant_id} from {admin_actor}")
        else:
            fail(f"{admin_actor} is not an admin of {tenant_id}")


@tenant.command("set-preset")
@click.argument("tenant_id")
@click.argument("preset_key", type=click.Choice(sorted(BUILTIN_PRESETS)))
def set_preset(tenant_id: str, preset_key: str) -> None:
    """Record PRESET_KEY as the tenant's current preset."""
    with get_db() as db:
        try:
            t = db.set_tenant_preset(tenant_id, preset_key)
        except KeyError:
            fail(f"Tenant not found: {tenant_id}")
        click.echo(f"Tenant {t.id} now uses preset {t.preset_key}")
