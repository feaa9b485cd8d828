"""Caller-facing migration operations.

Every entry point validates its raw inputs (ValidationError) and checks that
the actor is a tenant admin (AuthorizationError) before touching any state.
Only then does it hand off to the orchestrator, executor or scanner. Both the
CLI and the HTTP API call these functions rather than the classes directly.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypedDict

from trellis.errors import AuthorizationError, ValidationError
from trellis.migration import MigrationOrchestrator, RollbackExecutor
from trellis.presets import resolve_preset
from trellis.scanner import scan_compatibility
from trellis.types.migration import JobStatus, MigrationMode, MigrationResult, ScanResultDict
from trellis.validation import require_actor, require_id

if TYPE_CHECKING:
    from trellis.core import TrellisDB

logger = logging.getLogger(__name__)

VALID_MODES: frozenset[str] = frozenset({"DRY_RUN", "APPLY"})


class RollbackResult(TypedDict):
    job_id: str
    tenant_id: str
    status: JobStatus
    reverted_moves: int


def parse_mode(value: Any) -> MigrationMode:
    """Normalize a mode string. ``None`` means DRY_RUN."""
    if value is None:
        return "DRY_RUN"
    if not isinstance(value, str) or value.strip().upper().replace("-", "_") not in VALID_MODES:
        msg = f"mode must be one of: {', '.join(sorted(VALID_MODES))}"
        raise ValidationError(msg)
    mode: MigrationMode = value.strip().upper().replace("-", "_")  # type: ignore[assignment]
    return mode


def authorize(db: TrellisDB, tenant_id: str, actor: str) -> None:
    """Raise AuthorizationError unless *actor* administers *tenant_id*."""
    if not db.is_tenant_admin(tenant_id, actor):
        logger.warning("Denied %s on tenant %s", actor, tenant_id, extra={"tenant_id": tenant_id})
        msg = "Only tenant admins can run framework migration."
        raise AuthorizationError(msg)


def migrate(
    db: TrellisDB,
    tenant_id: Any,
    to_preset_key: Any,
    mode: Any,
    preset_payload: Any,
    actor: Any,
) -> MigrationResult:
    """Run a DRY_RUN or APPLY migration of a tenant to a target preset.

    *preset_payload* may be omitted when *to_preset_key* names a built-in
    preset. No job is created if validation or authorization fails.
    """
    tenant_id = require_id(tenant_id, "tenant_id")
    to_preset_key = require_id(to_preset_key, "toPresetKey")
    parsed_mode = parse_mode(mode)
    actor = require_actor(actor)
    preset = resolve_preset(to_preset_key, preset_payload)
    authorize(db, tenant_id, actor)

    return MigrationOrchestrator(db).run(
        tenant_id,
        to_preset_key=to_preset_key,
        mode=parsed_mode,
        preset=preset,
        actor=actor,
    )


def rollback(db: TrellisDB, tenant_id: Any, job_id: Any, actor: Any) -> RollbackResult:
    """Reverse a COMPLETED migration job."""
    tenant_id = require_id(tenant_id, "tenant_id")
    job_id = require_id(job_id, "job_id")
    actor = require_actor(actor)
    authorize(db, tenant_id, actor)

    reverted = RollbackExecutor(db).run(tenant_id, job_id)
    return {"job_id": job_id, "tenant_id": tenant_id, "status": "ROLLED_BACK", "reverted_moves": reverted}


def preview(db: TrellisDB, tenant_id: Any, preset_key: Any, preset_payload: Any, actor: Any) -> ScanResultDict:
    """Scan a tenant against a preset without creating a job.

    The preset is resolved the same way :func:`migrate` resolves it. Returns
    the full scan result, which :func:`migrate` never does.
    """
    tenant_id = require_id(tenant_id, "tenant_id")
    actor = require_actor(actor)
    if preset_key is None and preset_payload is not None:
        preset_key = "custom"
    preset = resolve_preset(require_id(preset_key, "presetKey"), preset_payload)
    authorize(db, tenant_id, actor)
    return scan_compatibility(db.list_items(tenant_id), preset).to_dict()
