"""CLI commands for presets, scans, migrations, rollbacks and job history."""

from __future__ import annotations

import json as json_mod
from typing import IO, Any

import click

from trellis import service
from trellis.cli_common import fail, get_db
from trellis.errors import ExecutionError, TrellisError
from trellis.presets import get_preset, list_presets


def _load_preset_file(preset_file: IO[str] | None, *, as_json: bool = False) -> Any:
    if preset_file is None:
        return None
    try:
        return json_mod.load(preset_file)
    except json_mod.JSONDecodeError as e:
        fail(f"Invalid preset JSON: {e}", as_json=as_json)


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


@click.group()
def preset() -> None:
    """Inspect built-in presets."""


@preset.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_presets_cmd(as_json: bool) -> None:
    """List built-in presets."""
    presets = list_presets()
    if as_json:
        click.echo(json_mod.dumps([p.to_dict() for p in presets], indent=2))
        return
    for p in presets:
        click.echo(f"{p.key:<10} {p.name:<26} {p.description}")


@preset.command("show")
@click.argument("key")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show_preset(key: str, as_json: bool) -> None:
    """Show a preset's enabled types and hierarchy."""
    try:
        p = get_preset(key)
    except KeyError:
        fail(f"Unknown preset: {key}", as_json=as_json)
    data = p.to_dict()
    if as_json:
        click.echo(json_mod.dumps(data, indent=2))
        return
    click.echo(f"{data['name']} ({p.key})")
    if p.description:
        click.echo(f"  {p.description}")
    click.echo(f"  Enabled: {', '.join(data['enabledTypes'])}")
    click.echo("  Hierarchy:")
    for parent, children in data["hierarchy"].items():
        click.echo(f"    {parent} -> {', '.join(children) if children else '(leaf)'}")


# ---------------------------------------------------------------------------
# Scan / migrate / rollback
# ---------------------------------------------------------------------------


@click.command()
@click.argument("tenant_id")
@click.option("--preset", "preset_key", default=None, help="Built-in preset key to scan against")
@click.option("--preset-file", type=click.File("r"), default=None, help="JSON preset payload (enabledTypes, hierarchy)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def scan(ctx: click.Context, tenant_id: str, preset_key: str | None, preset_file: IO[str] | None, as_json: bool) -> None:
    """Preview how TENANT_ID's items fit a preset. Changes nothing."""
    payload = _load_preset_file(preset_file, as_json=as_json)
    if preset_key is None and payload is None:
        fail("Provide --preset or --preset-file", as_json=as_json)
    with get_db() as db:
        try:
            result = service.preview(db, tenant_id, preset_key, payload, ctx.obj["actor"])
        except TrellisError as e:
            fail(e, as_json=as_json)
    if as_json:
        click.echo(json_mod.dumps(result, indent=2))
        return
    click.echo(
        f"{len(result['issues'])} issues, {len(result['review_queue'])} for review, "
        f"{len(result['recommended_moves'])} recommended moves"
    )
    for issue in result["issues"]:
        click.echo(f"  {issue['severity']:<5} {issue['type']:<14} {issue['item_id']}: {issue['message']}")
    for move in result["recommended_moves"]:
        click.echo(f"  MOVE  {move['confidence']:<4} {move['item_id']}: {move['from_parent_id']} -> {move['to_parent_id']}")
    for review in result["review_queue"]:
        click.echo(f"  REVIEW {review['item_id']} [{review['item_type']}]: {review['reason']}")


@click.command()
@click.argument("tenant_id")
@click.argument("to_preset_key")
@click.option("--apply", "apply_moves", is_flag=True, help="Apply HIGH confidence moves (default: dry run)")
@click.option("--preset-file", type=click.File("r"), default=None, help="JSON preset payload (default: built-in TO_PRESET_KEY)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def migrate(
    ctx: click.Context,
    tenant_id: str,
    to_preset_key: str,
    apply_moves: bool,
    preset_file: IO[str] | None,
    as_json: bool,
) -> None:
    """Migrate TENANT_ID to TO_PRESET_KEY."""
    payload = _load_preset_file(preset_file, as_json=as_json)
    mode = "APPLY" if apply_moves else "DRY_RUN"
    with get_db() as db:
        try:
            result = service.migrate(db, tenant_id, to_preset_key, mode, payload, ctx.obj["actor"])
        except ExecutionError as e:
            fail(f"Migration job {e.job_id} failed: {e}", as_json=as_json)
        except TrellisError as e:
            fail(e, as_json=as_json)
    if as_json:
        click.echo(json_mod.dumps(result, indent=2))
        return
    summary = result["summary"]
    click.echo(f"Job {result['job_id']} {result['status']} ({mode})")
    click.echo(f"  Moved:              {summary['moved_items']}")
    click.echo(f"  Flagged for review: {summary['flagged_for_review']}")
    click.echo(f"  Invalid items:      {summary['invalid_items']}")


@click.command()
@click.argument("tenant_id")
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def rollback(ctx: click.Context, tenant_id: str, job_id: str, as_json: bool) -> None:
    """Undo a COMPLETED migration job."""
    with get_db() as db:
        try:
            result = service.rollback(db, tenant_id, job_id, ctx.obj["actor"])
        except TrellisError as e:
            fail(e, as_json=as_json)
    if as_json:
        click.echo(json_mod.dumps(result, indent=2))
    else:
        click.echo(f"Rolled back {job_id}: {result['reverted_moves']} moves reverted")


# ---------------------------------------------------------------------------
# Job history
# ---------------------------------------------------------------------------


@click.command()
@click.argument("tenant_id")
@click.option("--limit", default=20, type=click.IntRange(min=1), help="Max jobs to show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def jobs(tenant_id: str, limit: int, as_json: bool) -> None:
    """List a tenant's migration jobs, newest first."""
    with get_db() as db:
        history = db.list_jobs(tenant_id, limit=limit)
    if as_json:
        click.echo(json_mod.dumps([j.to_dict() for j in history], indent=2))
        return
    if not history:
        click.echo("No migration jobs.")
        return
    for j in history:
        click.echo(
            f"{j.id}  {j.status:<11} {j.mode:<7} {j.from_preset_key} -> {j.to_preset_key}  "
            f"moved={j.summary['moved_items']} started={j.started_at}"
        )


@click.group()
def job() -> None:
    """Inspect one migration job."""


@job.command("show")
@click.argument("tenant_id")
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show_job(tenant_id: str, job_id: str, as_json: bool) -> None:
    """Show a job with its report."""
    with get_db() as db:
        j = db.get_job(tenant_id, job_id)
        if j is None:
            fail(f"Job not found: {job_id}", as_json=as_json)
        report = db.get_report(job_id)
    if as_json:
        click.echo(json_mod.dumps({"job": j.to_dict(), "report": report.to_dict() if report else None}, indent=2))
        return
    click.echo(f"{j.id}: {j.status} ({j.mode}) {j.from_preset_key} -> {j.to_preset_key}")
    click.echo(f"  Actor:    {j.actor}")
    click.echo(f"  Started:  {j.started_at}")
    click.echo(f"  Finished: {j.finished_at or '-'}")
    click.echo(f"  Progress: {j.progress['done']}/{j.progress['total']}")
    if j.errors:
        click.echo(f"  Errors:   {'; '.join(j.errors)}")
    if report is None:
        return
    click.echo(f"  Issues: {len(report.issues)}  Review queue: {len(report.review_queue)}")
    for moved in report.moved_items:
        click.echo(f"    moved {moved['item_id']}: {moved['from_parent_id']} -> {moved['to_parent_id']}")


@job.command("moves")
@click.argument("tenant_id")
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show_moves(tenant_id: str, job_id: str, as_json: bool) -> None:
    """Show a job's move log in append order."""
    with get_db() as db:
        if db.get_job(tenant_id, job_id) is None:
            fail(f"Job not found: {job_id}", as_json=as_json)
        moves = db.get_moves(job_id)
    if as_json:
        click.echo(json_mod.dumps([m.to_dict() for m in moves], indent=2))
        return
    if not moves:
        click.echo("No moves logged.")
        return
    for m in moves:
        click.echo(f"#{m.seq} {m.item_id}: {m.prev_parent_id} -> {m.next_parent_id} by {m.moved_by} at {m.moved_at}")
