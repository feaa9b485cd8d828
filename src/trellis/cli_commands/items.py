"""CLI commands for work items: create, list, show, import."""

from __future__ import annotations

import json as json_mod
import sqlite3
from typing import IO

import click

from trellis.cli_common import fail, get_db
from trellis.core import WorkItem
from trellis.errors import ValidationError


def _format_item(wi: WorkItem) -> str:
    parent = f" (parent: {wi.parent_id})" if wi.parent_id else ""
    return f"{wi.id}  [{wi.type}] {wi.title}{parent}"


@click.group()
def item() -> None:
    """Manage a tenant's work items."""


@item.command("create")
@click.argument("tenant_id")
@click.argument("item_type", metavar="TYPE")
@click.argument("title", default="")
@click.option("--parent", default=None, help="Parent item id")
@click.option("--id", "item_id", default=None, help="Explicit item id (default: generated)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def create_item(tenant_id: str, item_type: str, title: str, parent: str | None, item_id: str | None, as_json: bool) -> None:
    """Create a work item of TYPE (company, product, epic, feature, story, task, bug, ...)."""
    with get_db() as db:
        try:
            wi = db.create_item(tenant_id, item_type, title, parent_id=parent, item_id=item_id)
        except KeyError:
            fail(f"Tenant not found: {tenant_id}", as_json=as_json)
        except ValidationError as e:
            fail(e, as_json=as_json)
        except sqlite3.IntegrityError as e:
            fail(f"Could not create item: {e}", as_json=as_json)
        if as_json:
            click.echo(json_mod.dumps(wi.to_dict(), indent=2))
        else:
            click.echo(f"Created {wi.id}: [{wi.type}] {wi.title}")


@item.command("list")
@click.argument("tenant_id")
@click.option("--type", "item_type", default=None, help="Only items of this type")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_items(tenant_id: str, item_type: str | None, as_json: bool) -> None:
    """List a tenant's work items in creation order."""
    with get_db() as db:
        items = db.list_items(tenant_id)
        if item_type:
            items = [i for i in items if i.type == item_type]
        if as_json:
            click.echo(json_mod.dumps([i.to_dict() for i in items], indent=2))
            return
        if not items:
            click.echo("No items.")
            return
        for wi in items:
            click.echo(_format_item(wi))


@item.command("show")
@click.argument("item_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show_item(item_id: str, as_json: bool) -> None:
    """Show a work item with its parent and children."""
    with get_db() as db:
        wi = db.get_item(item_id)
        if wi is None:
            fail(f"Not found: {item_id}", as_json=as_json)
        if as_json:
            click.echo(json_mod.dumps(wi.to_dict(), indent=2))
            return
        click.echo(f"{wi.id}: {wi.title}")
        click.echo(f"  Type:     {wi.type}")
        click.echo(f"  Tenant:   {wi.tenant_id}")
        click.echo(f"  Parent:   {wi.parent_id or '-'}")
        click.echo(f"  Children: {', '.join(wi.children_ids) if wi.children_ids else '-'}")


@item.command("import")
@click.argument("tenant_id")
@click.argument("input_file", type=click.File("r"))
def import_items(tenant_id: str, input_file: IO[str]) -> None:
    """Load work items from a JSON array of records.

    Records use ``id``, ``type``, ``title``, ``parentId`` and optionally
    ``childrenIds``. Parent links are stored as given.
    """
    try:
        records = json_mod.load(input_file)
    except json_mod.JSONDecodeError as e:
        fail(f"Invalid JSON: {e}")
    if not isinstance(records, list):
        fail("Expected a JSON array of item records")
    with get_db() as db:
        try:
            count = db.import_items(tenant_id, records)
        except KeyError:
            fail(f"Tenant not found: {tenant_id}")
        except ValidationError as e:
            fail(e)
        except sqlite3.IntegrityError as e:
            fail(f"Import failed (duplicate id?): {e}")
        click.echo(f"Imported {count} items into {tenant_id}")
