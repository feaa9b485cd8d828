"""CLI for trellis.

Convention-based: discovers .trellis/ by walking up from cwd.

Usage:
    trellis init                                   # Initialize .trellis/ in cwd
    trellis tenant create "Acme"                   # Create a tenant
    trellis tenant grant-admin <tenant> alice      # Let alice migrate the tenant
    trellis item import <tenant> items.json        # Load a work-item snapshot
    trellis item list <tenant>                     # List a tenant's items
    trellis preset list                            # Built-in presets
    trellis scan <tenant> --preset less            # Preview without a job
    trellis migrate <tenant> less                  # DRY_RUN migration
    trellis migrate <tenant> less --apply          # APPLY migration
    trellis rollback <tenant> <job>                # Undo a COMPLETED job
    trellis jobs <tenant>                          # Migration history
    trellis serve                                  # HTTP API
"""

from __future__ import annotations

from pathlib import Path

import click

from trellis import __version__
from trellis.cli_commands.admin import tenant
from trellis.cli_commands.items import item
from trellis.cli_commands.migration import job, jobs, migrate, preset, rollback, scan
from trellis.core import (
    DB_FILENAME,
    TRELLIS_DIR_NAME,
    TrellisDB,
    read_config,
    write_config,
)
from trellis.presets import BUILTIN_PRESETS, DEFAULT_PRESET_KEY


@click.group()
@click.version_option(version=__version__, prog_name="trellis")
@click.option("--actor", default=None, help="Actor identity for audit trail (default: $TRELLIS_ACTOR or cli)")
@click.pass_context
def cli(ctx: click.Context, actor: str | None) -> None:
    """Trellis: work-item hierarchy migration between taxonomy presets."""
    from trellis.cli_common import default_actor

    ctx.ensure_object(dict)
    ctx.obj["actor"] = actor or default_actor()


@cli.command()
@click.option("--prefix", default=None, help="ID prefix for generated ids (default: directory name)")
@click.option(
    "--default-preset",
    type=click.Choice(sorted(BUILTIN_PRESETS)),
    default=None,
    help=f"Preset key reported for tenants that never chose one (default: {DEFAULT_PRESET_KEY})",
)
def init(prefix: str | None, default_preset: str | None) -> None:
    """Initialize .trellis/ in the current directory."""
    cwd = Path.cwd()
    trellis_dir = cwd / TRELLIS_DIR_NAME

    if trellis_dir.exists():
        click.echo(f"{TRELLIS_DIR_NAME}/ already exists in {cwd}")
        # Still ensure DB is initialized
        config = read_config(trellis_dir)
        db = TrellisDB(trellis_dir / DB_FILENAME, prefix=config.get("prefix", "trellis"))
        db.initialize()
        db.close()
        return

    prefix = prefix or cwd.name
    trellis_dir.mkdir()
    config = {"prefix": prefix, "version": 1, "default_preset": default_preset or DEFAULT_PRESET_KEY}
    write_config(trellis_dir, config)

    db = TrellisDB(trellis_dir / DB_FILENAME, prefix=prefix)
    db.initialize()
    db.close()

    click.echo(f"Initialized {TRELLIS_DIR_NAME}/ in {cwd}")
    click.echo(f"  Prefix: {prefix}")
    click.echo(f"  Database: {trellis_dir / DB_FILENAME}")
    click.echo("\nNext: trellis tenant create <name>")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8377, type=int, help="Port to listen on")
def serve(host: str, port: int) -> None:
    """Serve the migration HTTP API for this project."""
    from trellis.api import main as api_main

    api_main(host=host, port=port)


cli.add_command(tenant)
cli.add_command(item)
cli.add_command(preset)
cli.add_command(scan)
cli.add_command(migrate)
cli.add_command(rollback)
cli.add_command(jobs)
cli.add_command(job)


if __name__ == "__main__":
    cli()
