"""Tests for the migration orchestrator (DRY_RUN and APPLY)."""

from __future__ import annotations

import logging
from typing import Any

import pytest

import trellis.migration
from tests.conftest import SIBLINGS, TenantDB
from trellis.errors import ExecutionError
from trellis.migration import MigrationOrchestrator
from trellis.presets import get_preset
from trellis.scanner import scan_compatibility


def _run(t: TenantDB, mode: str, key: str = "less") -> Any:
    return MigrationOrchestrator(t.db).run(
        t.tenant_id,
        to_preset_key=key,
        mode=mode,  # type: ignore[arg-type]
        preset=get_preset(key),
        actor=t.admin,
    )


class TestDryRun:
    def test_counts_without_mutation(self, basic_tenant: TenantDB) -> None:
        before = basic_tenant.hierarchy()
        result = _run(basic_tenant, "DRY_RUN")
        assert result["status"] == "COMPLETED"
        assert result["summary"] == {"moved_items": 0, "flagged_for_review": 1, "invalid_items": 2}
        assert basic_tenant.hierarchy() == before
        assert basic_tenant.db.get_moves(result["job_id"]) == []

    def test_report_is_saved(self, basic_tenant: TenantDB) -> None:
        result = _run(basic_tenant, "DRY_RUN")
        report = basic_tenant.db.get_report(result["job_id"])
        assert report is not None
        assert report.moved_items == []
        assert [r["item_id"] for r in report.review_queue] == ["e1"]
        assert {i["item_id"] for i in report.issues} == {"e1", "f1"}


class TestApply:
    def test_moves_high_confidence_items(self, basic_tenant: TenantDB) -> None:
        result = _run(basic_tenant, "APPLY")
        assert result["summary"] == {"moved_items": 1, "flagged_for_review": 1, "invalid_items": 2}
        h = basic_tenant.hierarchy()
        assert h["f1"] == ("p1", [])
        assert h["e1"] == ("p1", [])
        assert h["p1"] == (None, ["e1", "f1"])

    def test_logs_each_move(self, basic_tenant: TenantDB) -> None:
        result = _run(basic_tenant, "APPLY")
        (move,) = basic_tenant.db.get_moves(result["job_id"])
        assert (move.item_id, move.prev_parent_id, move.next_parent_id) == ("f1", "e1", "p1")
        assert move.prev_position == 0
        assert move.moved_by == "alice"

    def test_job_record(self, basic_tenant: TenantDB) -> None:
        result = _run(basic_tenant, "APPLY")
        job = basic_tenant.db.get_job("acme", result["job_id"])
        assert job is not None
        assert job.status == "COMPLETED"
        assert job.mode == "APPLY"
        assert job.from_preset_key == "safe"
        assert job.to_preset_key == "less"
        assert job.actor == "alice"
        assert job.finished_at is not None
        assert job.progress == {"total": 3, "done": 3}
        assert job.summary == result["summary"]

    def test_report_lists_moved_items(self, basic_tenant: TenantDB) -> None:
        result = _run(basic_tenant, "APPLY")
        report = basic_tenant.db.get_report(result["job_id"])
        assert report is not None
        assert report.moved_items == [{"item_id": "f1", "from_parent_id": "e1", "to_parent_id": "p1"}]

    def test_low_confidence_is_not_applied(self, tenant_db: TenantDB) -> None:
        tenant_db.load(
            [
                {"id": "p1", "type": "product"},
                {"id": "e1", "type": "epic", "parentId": "p1"},
                {"id": "s1", "type": "story", "parentId": "e1"},
                {"id": "p2", "type": "product"},
                {"id": "fx", "type": "feature", "parentId": "p2"},
            ]
        )
        before = tenant_db.hierarchy()
        result = _run(tenant_db, "APPLY")
        assert result["summary"]["moved_items"] == 0
        assert tenant_db.hierarchy() == before

    def test_converges(self, basic_tenant: TenantDB) -> None:
        _run(basic_tenant, "APPLY")
        rescan = scan_compatibility(basic_tenant.db.list_items("acme"), get_preset("less"))
        assert rescan.high_confidence_moves == []
        again = _run(basic_tenant, "APPLY")
        assert again["summary"]["moved_items"] == 0

    def test_sibling_moves_keep_order(self, tenant_db: TenantDB) -> None:
        tenant_db.load(SIBLINGS)
        result = _run(tenant_db, "APPLY")
        assert result["summary"]["moved_items"] == 3
        assert tenant_db.hierarchy()["p1"] == (None, ["e1", "fa", "fb", "fc"])
        assert [m.seq for m in tenant_db.db.get_moves(result["job_id"])] == [0, 1, 2]

    def test_empty_tenant(self, tenant_db: TenantDB) -> None:
        result = _run(tenant_db, "APPLY")
        assert result["summary"] == {"moved_items": 0, "flagged_for_review": 0, "invalid_items": 0}

    def test_does_not_change_tenant_preset(self, basic_tenant: TenantDB) -> None:
        _run(basic_tenant, "APPLY")
        assert basic_tenant.db.get_tenant_preset_key("acme") == "safe"


class TestApplyRecheck:
    """Each move re-reads the item inside its transaction before reparenting."""

    def _scan_then(self, monkeypatch: pytest.MonkeyPatch, after_scan: Any) -> None:
        real_scan = trellis.migration.scan_compatibility

        def scan_and_mutate(*args: Any, **kwargs: Any) -> Any:
            result = real_scan(*args, **kwargs)
            after_scan()
            return result

        monkeypatch.setattr(trellis.migration, "scan_compatibility", scan_and_mutate)

    def test_item_deleted_after_scan_is_skipped(self, tenant_db: TenantDB, monkeypatch: pytest.MonkeyPatch) -> None:
        tenant_db.load(SIBLINGS)

        def delete_fb() -> None:
            tenant_db.db.conn.execute("DELETE FROM work_items WHERE id = 'fb'")
            tenant_db.db.conn.commit()

        self._scan_then(monkeypatch, delete_fb)
        result = _run(tenant_db, "APPLY")

        assert result["status"] == "COMPLETED"
        assert result["summary"]["moved_items"] == 2
        assert [m.item_id for m in tenant_db.db.get_moves(result["job_id"])] == ["fa", "fc"]
        report = tenant_db.db.get_report(result["job_id"])
        assert report is not None
        assert [m["item_id"] for m in report.moved_items] == ["fa", "fc"]

    def test_item_already_under_target_is_skipped(self, tenant_db: TenantDB, monkeypatch: pytest.MonkeyPatch) -> None:
        tenant_db.load(SIBLINGS)
        db = tenant_db.db

        def move_fb_to_p1() -> None:
            with db.transaction():
                db.set_parent("fb", "p1")
                db.remove_child("e1", "fb")
                db.add_child("p1", "fb")

        self._scan_then(monkeypatch, move_fb_to_p1)
        result = _run(tenant_db, "APPLY")

        assert result["summary"]["moved_items"] == 2
        assert [m.item_id for m in db.get_moves(result["job_id"])] == ["fa", "fc"]
        h = tenant_db.hierarchy()
        assert h["fb"][0] == "p1"
        assert h["p1"][1].count("fb") == 1
        assert h["e1"][1] == []


class TestFailure:
    def test_failed_move_marks_job_failed(self, basic_tenant: TenantDB, monkeypatch: pytest.MonkeyPatch) -> None:
        def boom(*args: Any, **kwargs: Any) -> bool:
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(basic_tenant.db, "add_child", boom)
        before = basic_tenant.hierarchy()

        with pytest.raises(ExecutionError, match="disk on fire") as exc:
            _run(basic_tenant, "APPLY")

        job_id = exc.value.job_id
        assert job_id is not None
        job = basic_tenant.db.get_job("acme", job_id)
        assert job is not None
        assert job.status == "FAILED"
        assert job.errors == ["disk on fire"]
        assert job.finished_at is not None
        # The failing move rolled back as a unit.
        assert basic_tenant.hierarchy() == before
        assert basic_tenant.db.get_moves(job_id) == []
        assert basic_tenant.db.get_report(job_id) is None

    def test_earlier_moves_stay_committed(self, tenant_db: TenantDB, monkeypatch: pytest.MonkeyPatch) -> None:
        tenant_db.load(SIBLINGS)
        real_add_child = tenant_db.db.add_child
        calls = {"n": 0}

        def flaky(*args: Any, **kwargs: Any) -> bool:
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("second move fails")
            return real_add_child(*args, **kwargs)

        monkeypatch.setattr(tenant_db.db, "add_child", flaky)
        with pytest.raises(ExecutionError) as exc:
            _run(tenant_db, "APPLY")

        assert exc.value.job_id is not None
        moves = tenant_db.db.get_moves(exc.value.job_id)
        assert [m.item_id for m in moves] == ["fa"]
        h = tenant_db.hierarchy()
        assert h["fa"][0] == "p1"
        assert h["fb"][0] == "e1"
        assert h["e1"][1] == ["fb", "fc"]

    def test_interrupt_marks_job_failed_and_propagates(
        self, basic_tenant: TenantDB, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def interrupt(*args: Any, **kwargs: Any) -> bool:
            raise KeyboardInterrupt

        monkeypatch.setattr(basic_tenant.db, "add_child", interrupt)
        before = basic_tenant.hierarchy()

        with pytest.raises(KeyboardInterrupt):
            _run(basic_tenant, "APPLY")

        (job,) = basic_tenant.db.list_jobs("acme")
        assert job.status == "FAILED"
        assert job.errors == ["Interrupted: KeyboardInterrupt"]
        assert job.finished_at is not None
        assert basic_tenant.hierarchy() == before
        assert basic_tenant.db.get_moves(job.id) == []


class TestLogging:
    def test_start_and_completion_logged(self, basic_tenant: TenantDB, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="trellis")
        result = _run(basic_tenant, "APPLY")
        messages = [r.getMessage() for r in caplog.records if getattr(r, "job_id", None) == result["job_id"]]
        assert any(m.startswith("Migration started") for m in messages)
        assert any(m.startswith("Migration completed") for m in messages)
