"""Migration apply and rollback.

:class:`MigrationOrchestrator` owns the job lifecycle
(RUNNING -> COMPLETED | FAILED). In APPLY mode it executes only HIGH
confidence moves, each in its own transaction together with its move-log
entry. A failure stops the run and marks the job FAILED; moves already
committed stay committed.

:class:`RollbackExecutor` replays a COMPLETED job's move log newest first and
marks the job ROLLED_BACK. It writes no log of its own, so a rolled-back job
cannot be rolled back again.

Neither class serializes work per tenant. Callers must not run two of these
against the same tenant at once.
"""

from __future__ import annotations

import logging
from time import perf_counter
from typing import TYPE_CHECKING

from trellis.db_base import _now_iso
from trellis.errors import ExecutionError, PreconditionError
from trellis.scanner import RecommendedMove, scan_compatibility
from trellis.types.migration import JobSummary, MigrationMode, MigrationResult, MovedItemDict

if TYPE_CHECKING:
    from trellis.core import TrellisDB
    from trellis.db_jobs import MigrationJob, MoveRecord
    from trellis.presets import Preset

logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """Scan a tenant against a preset and, in APPLY mode, reparent items."""

    def __init__(self, db: TrellisDB) -> None:
        self.db = db

    def run(
        self,
        tenant_id: str,
        *,
        to_preset_key: str,
        mode: MigrationMode,
        preset: Preset,
        actor: str,
    ) -> MigrationResult:
        """Create a job, scan, optionally apply, and persist the report.

        Inputs are assumed validated and the actor authorized. Returns only
        the job id, status and summary counters. Raises ExecutionError after
        marking the job FAILED if anything goes wrong once the job exists.
        """
        job = self.db.create_job(
            tenant_id,
            from_preset_key=self.db.get_tenant_preset_key(tenant_id),
            to_preset_key=to_preset_key,
            mode=mode,
            actor=actor,
        )
        log_extra = {"tenant_id": tenant_id, "job_id": job.id, "mode": mode}
        logger.info("Migration started: %s -> %s", job.from_preset_key, to_preset_key, extra=log_extra)
        started = perf_counter()

        try:
            items = self.db.list_items(tenant_id)
            self.db.update_job(job.id, progress={"total": len(items), "done": 0})
            scan = scan_compatibility(items, preset)

            moved_items: list[MovedItemDict] = []
            if mode == "APPLY":
                for move in scan.high_confidence_moves:
                    applied = self._apply_move(job, move, actor)
                    if applied is not None:
                        moved_items.append(applied)

            self.db.save_report(job.id, tenant_id, scan, moved_items)
            summary: JobSummary = {
                "moved_items": len(moved_items),
                "flagged_for_review": len(scan.review_queue),
                "invalid_items": scan.error_count,
            }
            self.db.update_job(
                job.id,
                status="COMPLETED",
                finished_at=_now_iso(),
                progress={"total": len(items), "done": len(items)},
                summary=summary,
            )
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.exception("Migration failed", extra={**log_extra, "error": message})
            self._mark_failed(job, message)
            raise ExecutionError(message, job_id=job.id) from e
        except BaseException as e:
            # Interrupted (Ctrl-C, shutdown): the job must not stay RUNNING.
            message = f"Interrupted: {e.__class__.__name__}"
            logger.warning("Migration interrupted", extra={**log_extra, "error": message})
            self._mark_failed(job, message)
            raise

        duration_ms = round((perf_counter() - started) * 1000, 1)
        logger.info(
            "Migration completed: %d moved, %d flagged, %d invalid",
            summary["moved_items"],
            summary["flagged_for_review"],
            summary["invalid_items"],
            extra={**log_extra, "duration_ms": duration_ms},
        )
        return {"job_id": job.id, "tenant_id": tenant_id, "status": "COMPLETED", "summary": summary}

    def _apply_move(self, job: MigrationJob, move: RecommendedMove, actor: str) -> MovedItemDict | None:
        """Reparent one item and log it, atomically.

        The item's current parent is re-read inside the transaction. Returns
        None when the item has vanished or already sits under the target.
        """
        with self.db.transaction():
            current = self.db.get_item(move.item_id)
            if current is None:
                logger.warning("Skipping move of vanished item %s", move.item_id, extra={"job_id": job.id})
                return None
            prev_parent_id = current.parent_id
            next_parent_id = move.to_parent_id
            if prev_parent_id == next_parent_id:
                logger.debug("Item %s already under %s", move.item_id, next_parent_id, extra={"job_id": job.id})
                return None

            self.db.set_parent(move.item_id, next_parent_id)
            prev_position = self.db.remove_child(prev_parent_id, move.item_id) if prev_parent_id else None
            if next_parent_id:
                self.db.add_child(next_parent_id, move.item_id)
            self.db.append_move(
                job.id,
                item_id=move.item_id,
                prev_parent_id=prev_parent_id,
                next_parent_id=next_parent_id,
                prev_position=prev_position,
                actor=actor,
            )

        logger.debug(
            "Moved %s: %s -> %s",
            move.item_id,
            prev_parent_id,
            next_parent_id,
            extra={"job_id": job.id, "item_id": move.item_id},
        )
        return {"item_id": move.item_id, "from_parent_id": prev_parent_id, "to_parent_id": next_parent_id}

    def _mark_failed(self, job: MigrationJob, message: str) -> None:
        try:
            self.db.update_job(job.id, status="FAILED", finished_at=_now_iso(), errors=[message])
        except Exception:
            logger.exception("Could not mark job %s FAILED", job.id, extra={"job_id": job.id})


def rollback_order(moves: list[MoveRecord]) -> list[MoveRecord]:
    """Most recent first; append sequence breaks timestamp ties."""
    return sorted(moves, key=lambda m: (m.moved_at, m.seq), reverse=True)


class RollbackExecutor:
    """Undo a COMPLETED migration by replaying its move log backward."""

    def __init__(self, db: TrellisDB) -> None:
        self.db = db

    def run(self, tenant_id: str, job_id: str) -> int:
        """Revert every logged move, then mark the job ROLLED_BACK.

        Returns the number of moves reverted. Raises PreconditionError, with
        no mutation, unless the job exists and is COMPLETED. Items deleted
        since the migration are skipped.
        """
        job = self.db.get_job(tenant_id, job_id)
        if job is None or job.status != "COMPLETED":
            msg = "Job not found or not in COMPLETED state."
            raise PreconditionError(msg)

        log_extra = {"tenant_id": tenant_id, "job_id": job_id}
        moves = rollback_order(self.db.get_moves(job_id))
        logger.info("Rollback started: %d moves", len(moves), extra=log_extra)
        started = perf_counter()

        reverted = 0
        try:
            for move in moves:
                if self._revert(move):
                    reverted += 1
            self.db.update_job(job_id, status="ROLLED_BACK", finished_at=_now_iso())
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.exception("Rollback failed after %d moves", reverted, extra={**log_extra, "error": message})
            raise ExecutionError(message, job_id=job_id) from e

        duration_ms = round((perf_counter() - started) * 1000, 1)
        logger.info("Rollback completed: %d reverted", reverted, extra={**log_extra, "duration_ms": duration_ms})
        return reverted

    def _revert(self, move: MoveRecord) -> bool:
        with self.db.transaction():
            if self.db.get_item(move.item_id) is None:
                logger.warning("Skipping rollback of vanished item %s", move.item_id, extra={"job_id": move.job_id})
                return False
            self.db.set_parent(move.item_id, move.prev_parent_id)
            if move.next_parent_id:
                self.db.remove_child(move.next_parent_id, move.item_id)
            if move.prev_parent_id:
                self.db.add_child(move.prev_parent_id, move.item_id, position=move.prev_position)
        logger.debug(
            "Reverted %s: %s -> %s",
            move.item_id,
            move.next_parent_id,
            move.prev_parent_id,
            extra={"job_id": move.job_id, "item_id": move.item_id},
        )
        return True
