"""Tests for migration job records, the move log and reports."""

from __future__ import annotations

import pytest

from tests.conftest import TenantDB
from trellis.core import TrellisDB
from trellis.presets import get_preset
from trellis.scanner import scan_compatibility


def _job(db: TrellisDB, tenant_id: str = "acme", mode: str = "APPLY") -> str:
    return db.create_job(
        tenant_id,
        from_preset_key="safe",
        to_preset_key="less",
        mode=mode,  # type: ignore[arg-type]
        actor="alice",
    ).id


class TestJobs:
    def test_create_starts_running_and_zeroed(self, tenant_db: TenantDB) -> None:
        job = tenant_db.db.create_job("acme", from_preset_key="safe", to_preset_key="less", mode="DRY_RUN", actor="alice")
        assert job.status == "RUNNING"
        assert job.id.startswith("test-job-")
        assert job.started_at
        assert job.finished_at is None
        assert job.progress == {"total": 0, "done": 0}
        assert job.summary == {"moved_items": 0, "flagged_for_review": 0, "invalid_items": 0}
        assert job.errors == []

    def test_update_fields(self, tenant_db: TenantDB) -> None:
        db = tenant_db.db
        job_id = _job(db)
        db.update_job(
            job_id,
            status="COMPLETED",
            finished_at="2026-01-01T00:00:00+00:00",
            progress={"total": 3, "done": 3},
            summary={"moved_items": 1, "flagged_for_review": 2, "invalid_items": 3},
        )
        job = db.get_job("acme", job_id)
        assert job is not None
        assert job.status == "COMPLETED"
        assert job.finished_at == "2026-01-01T00:00:00+00:00"
        assert job.progress == {"total": 3, "done": 3}
        assert job.summary["flagged_for_review"] == 2

    def test_update_errors(self, tenant_db: TenantDB) -> None:
        db = tenant_db.db
        job_id = _job(db)
        db.update_job(job_id, status="FAILED", errors=["boom"])
        job = db.get_job("acme", job_id)
        assert job is not None
        assert job.errors == ["boom"]

    def test_update_missing_job(self, tenant_db: TenantDB) -> None:
        with pytest.raises(KeyError):
            tenant_db.db.update_job("nope", status="FAILED")

    def test_get_job_is_tenant_scoped(self, tenant_db: TenantDB) -> None:
        db = tenant_db.db
        db.create_tenant("Globex", tenant_id="globex")
        job_id = _job(db)
        assert db.get_job("globex", job_id) is None
        assert db.get_job("acme", "missing") is None

    def test_list_jobs_newest_first(self, tenant_db: TenantDB) -> None:
        db = tenant_db.db
        ids = [_job(db) for _ in range(3)]
        assert [j.id for j in db.list_jobs("acme")] == list(reversed(ids))
        assert len(db.list_jobs("acme", limit=2)) == 2


class TestMoveLog:
    def test_seq_increases_per_job(self, tenant_db: TenantDB) -> None:
        db = tenant_db.db
        a, b = _job(db), _job(db)
        m0 = db.append_move(a, item_id="x", prev_parent_id="p", next_parent_id="q", actor="alice")
        m1 = db.append_move(a, item_id="y", prev_parent_id="p", next_parent_id="q", prev_position=2, actor="alice")
        other = db.append_move(b, item_id="z", prev_parent_id=None, next_parent_id="q")
        assert (m0.seq, m1.seq, other.seq) == (0, 1, 0)

    def test_get_moves_in_append_order(self, tenant_db: TenantDB) -> None:
        db = tenant_db.db
        job_id = _job(db)
        for item in ("x", "y", "z"):
            db.append_move(job_id, item_id=item, prev_parent_id="p", next_parent_id="q", prev_position=1)
        moves = db.get_moves(job_id)
        assert [m.item_id for m in moves] == ["x", "y", "z"]
        assert all(m.prev_position == 1 for m in moves)

    def test_append_joins_outer_transaction(self, tenant_db: TenantDB) -> None:
        db = tenant_db.db
        job_id = _job(db)
        with pytest.raises(RuntimeError), db.transaction():
            db.append_move(job_id, item_id="x", prev_parent_id="p", next_parent_id="q")
            raise RuntimeError("abort")
        assert db.get_moves(job_id) == []


class TestReports:
    def test_save_and_get(self, basic_tenant: TenantDB) -> None:
        db = basic_tenant.db
        job_id = _job(db)
        scan = scan_compatibility(db.list_items("acme"), get_preset("less"))
        moved = [{"item_id": "f1", "from_parent_id": "e1", "to_parent_id": "p1"}]
        db.save_report(job_id, "acme", scan, moved)  # type: ignore[arg-type]
        report = db.get_report(job_id)
        assert report is not None
        assert report.moved_items == moved
        assert report.issues == [i.to_dict() for i in scan.issues]
        assert report.review_queue == [r.to_dict() for r in scan.review_queue]

    def test_missing_report(self, tenant_db: TenantDB) -> None:
        assert tenant_db.db.get_report("nope") is None
