"""Tests for the rollback executor."""

from __future__ import annotations

from typing import Any

import pytest

from tests.conftest import SIBLINGS, TenantDB
from trellis.db_jobs import MoveRecord
from trellis.errors import ExecutionError, PreconditionError
from trellis.migration import MigrationOrchestrator, RollbackExecutor, rollback_order
from trellis.presets import get_preset


def _apply(t: TenantDB, mode: str = "APPLY") -> str:
    result = MigrationOrchestrator(t.db).run(
        t.tenant_id,
        to_preset_key="less",
        mode=mode,  # type: ignore[arg-type]
        preset=get_preset("less"),
        actor=t.admin,
    )
    return result["job_id"]


class TestRollback:
    def test_restores_exact_hierarchy(self, basic_tenant: TenantDB) -> None:
        before = basic_tenant.hierarchy()
        job_id = _apply(basic_tenant)
        assert basic_tenant.hierarchy() != before

        assert RollbackExecutor(basic_tenant.db).run("acme", job_id) == 1
        assert basic_tenant.hierarchy() == before

    def test_restores_sibling_order(self, tenant_db: TenantDB) -> None:
        tenant_db.load(SIBLINGS)
        before = tenant_db.hierarchy()
        job_id = _apply(tenant_db)
        RollbackExecutor(tenant_db.db).run("acme", job_id)
        assert tenant_db.hierarchy() == before
        assert tenant_db.hierarchy()["e1"][1] == ["fa", "fb", "fc"]

    def test_restores_middle_position(self, tenant_db: TenantDB) -> None:
        tenant_db.load(
            [
                {"id": "p1", "type": "product"},
                {"id": "fa", "type": "feature", "parentId": "p1"},
                {"id": "e1", "type": "epic", "parentId": "p1"},
                {"id": "fb", "type": "feature", "parentId": "p1"},
                {"id": "fx", "type": "feature", "parentId": "e1"},
            ]
        )
        tenant_db.db.conn.execute("UPDATE work_items SET children_ids = '[\"s0\", \"fx\", \"s2\"]' WHERE id = 'e1'")
        tenant_db.db.conn.commit()
        before = tenant_db.hierarchy()
        job_id = _apply(tenant_db)
        assert tenant_db.hierarchy()["e1"][1] == ["s0", "s2"]
        RollbackExecutor(tenant_db.db).run("acme", job_id)
        assert tenant_db.hierarchy() == before

    def test_marks_job_rolled_back(self, basic_tenant: TenantDB) -> None:
        job_id = _apply(basic_tenant)
        RollbackExecutor(basic_tenant.db).run("acme", job_id)
        job = basic_tenant.db.get_job("acme", job_id)
        assert job is not None
        assert job.status == "ROLLED_BACK"

    def test_dry_run_job_rolls_back_trivially(self, basic_tenant: TenantDB) -> None:
        before = basic_tenant.hierarchy()
        job_id = _apply(basic_tenant, mode="DRY_RUN")
        assert RollbackExecutor(basic_tenant.db).run("acme", job_id) == 0
        assert basic_tenant.hierarchy() == before

    def test_vanished_item_is_skipped(self, tenant_db: TenantDB) -> None:
        tenant_db.load(SIBLINGS)
        job_id = _apply(tenant_db)
        tenant_db.db.conn.execute("DELETE FROM work_items WHERE id = 'fb'")
        tenant_db.db.conn.commit()

        assert RollbackExecutor(tenant_db.db).run("acme", job_id) == 2
        h = tenant_db.hierarchy()
        assert h["fa"][0] == "e1"
        assert h["fc"][0] == "e1"


class TestPreconditions:
    def _assert_rejected(self, t: TenantDB, job_id: str) -> None:
        before = [i.to_dict() for i in t.db.list_items("acme")]
        with pytest.raises(PreconditionError, match="not in COMPLETED state"):
            RollbackExecutor(t.db).run("acme", job_id)
        assert [i.to_dict() for i in t.db.list_items("acme")] == before

    def test_missing_job(self, basic_tenant: TenantDB) -> None:
        self._assert_rejected(basic_tenant, "no-such-job")

    def test_other_tenants_job(self, basic_tenant: TenantDB) -> None:
        job_id = _apply(basic_tenant)
        basic_tenant.db.create_tenant("Globex", tenant_id="globex")
        with pytest.raises(PreconditionError):
            RollbackExecutor(basic_tenant.db).run("globex", job_id)

    def test_running_job(self, basic_tenant: TenantDB) -> None:
        job = basic_tenant.db.create_job("acme", from_preset_key="safe", to_preset_key="less", mode="APPLY", actor="alice")
        self._assert_rejected(basic_tenant, job.id)

    def test_failed_job(self, basic_tenant: TenantDB) -> None:
        job_id = _apply(basic_tenant)
        basic_tenant.db.update_job(job_id, status="FAILED")
        self._assert_rejected(basic_tenant, job_id)

    def test_second_rollback(self, basic_tenant: TenantDB) -> None:
        job_id = _apply(basic_tenant)
        RollbackExecutor(basic_tenant.db).run("acme", job_id)
        self._assert_rejected(basic_tenant, job_id)


class TestRollbackFailure:
    def test_failure_leaves_job_completed_and_retry_succeeds(
        self, tenant_db: TenantDB, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        tenant_db.load(SIBLINGS)
        before = tenant_db.hierarchy()
        job_id = _apply(tenant_db)

        real_set_parent = tenant_db.db.set_parent
        calls = {"n": 0}

        def flaky(*args: Any, **kwargs: Any) -> None:
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("lock timeout")
            real_set_parent(*args, **kwargs)

        monkeypatch.setattr(tenant_db.db, "set_parent", flaky)
        with pytest.raises(ExecutionError, match="lock timeout") as exc:
            RollbackExecutor(tenant_db.db).run("acme", job_id)
        assert exc.value.job_id == job_id
        job = tenant_db.db.get_job("acme", job_id)
        assert job is not None
        assert job.status == "COMPLETED"

        monkeypatch.setattr(tenant_db.db, "set_parent", real_set_parent)
        RollbackExecutor(tenant_db.db).run("acme", job_id)
        assert tenant_db.hierarchy() == before


class TestRollbackOrder:
    def test_newest_first_with_seq_tiebreak(self) -> None:
        same = "2026-01-01T00:00:00+00:00"
        moves = [
            MoveRecord(job_id="j", seq=0, item_id="a", prev_parent_id="x", next_parent_id="y", moved_at=same),
            MoveRecord(job_id="j", seq=1, item_id="b", prev_parent_id="x", next_parent_id="y", moved_at=same),
            MoveRecord(job_id="j", seq=2, item_id="c", prev_parent_id="x", next_parent_id="y", moved_at="2026-01-01T00:00:01+00:00"),
        ]
        assert [m.item_id for m in rollback_order(moves)] == ["c", "b", "a"]
