"""JobsMixin: migration job records, the append-only move log, and reports.

All methods access ``self.conn`` and ``self.transaction()`` via Python's MRO
when composed into ``TrellisDB``.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from trellis.db_base import DBMixinProtocol, _now_iso
from trellis.types.core import ISOTimestamp
from trellis.types.migration import (
    JobProgress,
    JobStatus,
    JobSummary,
    MigrationJobDict,
    MigrationMode,
    MigrationReportDict,
    MovedItemDict,
    MoveRecordDict,
    ReviewItemDict,
    ScanIssueDict,
)

if TYPE_CHECKING:
    from trellis.scanner import ScanResult

# Sentinel so update_job can distinguish "leave alone" from "set to None".
_UNSET: Any = object()


def _zero_summary() -> JobSummary:
    return {"moved_items": 0, "flagged_for_review": 0, "invalid_items": 0}


@dataclass
class MigrationJob:
    id: str
    tenant_id: str
    to_preset_key: str
    mode: MigrationMode
    status: JobStatus = "RUNNING"
    from_preset_key: str = ""
    actor: str = ""
    started_at: str = ""
    finished_at: str | None = None
    progress: JobProgress = field(default_factory=lambda: JobProgress(total=0, done=0))
    summary: JobSummary = field(default_factory=_zero_summary)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> MigrationJobDict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "from_preset_key": self.from_preset_key,
            "to_preset_key": self.to_preset_key,
            "mode": self.mode,
            "status": self.status,
            "actor": self.actor,
            "started_at": ISOTimestamp(self.started_at),
            "finished_at": ISOTimestamp(self.finished_at) if self.finished_at is not None else None,
            "progress": self.progress.copy(),
            "summary": self.summary.copy(),
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class MoveRecord:
    """One logged reparent. Never mutated after creation."""

    job_id: str
    seq: int
    item_id: str
    prev_parent_id: str | None
    next_parent_id: str | None
    moved_at: str
    moved_by: str = ""
    # Index the item held in the previous parent's children_ids.
    prev_position: int | None = None

    def to_dict(self) -> MoveRecordDict:
        return {
            "job_id": self.job_id,
            "seq": self.seq,
            "item_id": self.item_id,
            "prev_parent_id": self.prev_parent_id,
            "prev_position": self.prev_position,
            "next_parent_id": self.next_parent_id,
            "moved_at": ISOTimestamp(self.moved_at),
            "moved_by": self.moved_by,
        }


@dataclass
class MigrationReport:
    job_id: str
    tenant_id: str
    issues: list[ScanIssueDict] = field(default_factory=list)
    review_queue: list[ReviewItemDict] = field(default_factory=list)
    moved_items: list[MovedItemDict] = field(default_factory=list)
    generated_at: str = ""

    def to_dict(self) -> MigrationReportDict:
        return {
            "job_id": self.job_id,
            "tenant_id": self.tenant_id,
            "issues": list(self.issues),
            "review_queue": list(self.review_queue),
            "moved_items": list(self.moved_items),
            "generated_at": ISOTimestamp(self.generated_at),
        }


class JobsMixin(DBMixinProtocol):
    """Durable records for migration jobs, their move logs and reports."""

    # -- Jobs ----------------------------------------------------------------

    def _build_job(self, row: sqlite3.Row) -> MigrationJob:
        return MigrationJob(
            id=row["id"],
            tenant_id=row["tenant_id"],
            from_preset_key=row["from_preset_key"],
            to_preset_key=row["to_preset_key"],
            mode=row["mode"],
            status=row["status"],
            actor=row["actor"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            progress={"total": row["progress_total"], "done": row["progress_done"]},
            summary={
                "moved_items": row["moved_items"],
                "flagged_for_review": row["flagged_for_review"],
                "invalid_items": row["invalid_items"],
            },
            errors=json.loads(row["errors"] or "[]"),
        )

    def create_job(
        self,
        tenant_id: str,
        *,
        from_preset_key: str,
        to_preset_key: str,
        mode: MigrationMode,
        actor: str = "",
    ) -> MigrationJob:
        """Insert a RUNNING job with zeroed progress and summary."""
        with self.transaction() as conn:
            job_id = self._generate_unique_id("migration_jobs", "job")
            conn.execute(
                "INSERT INTO migration_jobs (id, tenant_id, from_preset_key, to_preset_key, mode, status, actor, started_at) "
                "VALUES (?, ?, ?, ?, ?, 'RUNNING', ?, ?)",
                (job_id, tenant_id, from_preset_key, to_preset_key, mode, actor, _now_iso()),
            )
        job = self.get_job(tenant_id, job_id)
        assert job is not None
        return job

    def update_job(
        self,
        job_id: str,
        *,
        status: JobStatus | None = None,
        finished_at: str | None = _UNSET,
        progress: JobProgress | None = None,
        summary: JobSummary | None = None,
        errors: list[str] | None = None,
    ) -> None:
        updates: list[str] = []
        params: list[Any] = []
        if status is not None:
            updates.append("status = ?")
            params.append(status)
        if finished_at is not _UNSET:
            updates.append("finished_at = ?")
            params.append(finished_at)
        if progress is not None:
            updates.extend(["progress_total = ?", "progress_done = ?"])
            params.extend([progress["total"], progress["done"]])
        if summary is not None:
            updates.extend(["moved_items = ?", "flagged_for_review = ?", "invalid_items = ?"])
            params.extend([summary["moved_items"], summary["flagged_for_review"], summary["invalid_items"]])
        if errors is not None:
            updates.append("errors = ?")
            params.append(json.dumps(errors))
        if not updates:
            return
        params.append(job_id)
        with self.transaction() as conn:
            cursor = conn.execute(f"UPDATE migration_jobs SET {', '.join(updates)} WHERE id = ?", params)
            if cursor.rowcount == 0:
                raise KeyError(job_id)

    def get_job(self, tenant_id: str, job_id: str) -> MigrationJob | None:
        """Return the job, or None when missing or owned by another tenant."""
        row = self.conn.execute(
            "SELECT * FROM migration_jobs WHERE id = ? AND tenant_id = ?",
            (job_id, tenant_id),
        ).fetchone()
        if row is None:
            return None
        return self._build_job(row)

    def list_jobs(self, tenant_id: str, *, limit: int = 20) -> list[MigrationJob]:
        """Jobs for a tenant, newest first."""
        rows = self.conn.execute(
            "SELECT * FROM migration_jobs WHERE tenant_id = ? ORDER BY started_at DESC, rowid DESC LIMIT ?",
            (tenant_id, limit),
        ).fetchall()
        return [self._build_job(r) for r in rows]

    # -- Move log ------------------------------------------------------------

    def append_move(
        self,
        job_id: str,
        *,
        item_id: str,
        prev_parent_id: str | None,
        next_parent_id: str | None,
        prev_position: int | None = None,
        actor: str = "",
    ) -> MoveRecord:
        """Append one entry to the job's move log.

        ``seq`` increases per job and breaks ties between equal timestamps.
        Joins the caller's transaction when there is one.
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(seq), -1) + 1 AS next_seq FROM migration_moves WHERE job_id = ?",
                (job_id,),
            ).fetchone()
            record = MoveRecord(
                job_id=job_id,
                seq=row["next_seq"],
                item_id=item_id,
                prev_parent_id=prev_parent_id,
                next_parent_id=next_parent_id,
                moved_at=_now_iso(),
                moved_by=actor,
                prev_position=prev_position,
            )
            conn.execute(
                "INSERT INTO migration_moves "
                "(job_id, seq, item_id, prev_parent_id, prev_position, next_parent_id, moved_at, moved_by) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.job_id,
                    record.seq,
                    record.item_id,
                    record.prev_parent_id,
                    record.prev_position,
                    record.next_parent_id,
                    record.moved_at,
                    record.moved_by,
                ),
            )
        return record

    def get_moves(self, job_id: str) -> list[MoveRecord]:
        """The job's move log in append order."""
        rows = self.conn.execute(
            "SELECT * FROM migration_moves WHERE job_id = ? ORDER BY seq",
            (job_id,),
        ).fetchall()
        return [
            MoveRecord(
                job_id=r["job_id"],
                seq=r["seq"],
                item_id=r["item_id"],
                prev_parent_id=r["prev_parent_id"],
                next_parent_id=r["next_parent_id"],
                moved_at=r["moved_at"],
                moved_by=r["moved_by"],
                prev_position=r["prev_position"],
            )
            for r in rows
        ]

    # -- Reports -------------------------------------------------------------

    def save_report(
        self,
        job_id: str,
        tenant_id: str,
        scan: ScanResult,
        moved_items: list[MovedItemDict],
    ) -> MigrationReport:
        report = MigrationReport(
            job_id=job_id,
            tenant_id=tenant_id,
            issues=[i.to_dict() for i in scan.issues],
            review_queue=[r.to_dict() for r in scan.review_queue],
            moved_items=list(moved_items),
            generated_at=_now_iso(),
        )
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO migration_reports (job_id, tenant_id, issues, review_queue, moved_items, generated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    job_id,
                    tenant_id,
                    json.dumps(report.issues),
                    json.dumps(report.review_queue),
                    json.dumps(report.moved_items),
                    report.generated_at,
                ),
            )
        return report

    def get_report(self, job_id: str) -> MigrationReport | None:
        row = self.conn.execute("SELECT * FROM migration_reports WHERE job_id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        return MigrationReport(
            job_id=row["job_id"],
            tenant_id=row["tenant_id"],
            issues=json.loads(row["issues"]),
            review_queue=json.loads(row["review_queue"]),
            moved_items=json.loads(row["moved_items"]),
            generated_at=row["generated_at"],
        )
